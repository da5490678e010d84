"""Shared fixtures: in-memory store and host doubles, a fresh event bus per test."""

import time
from typing import Any, Dict, List, Optional, Tuple

import pytest

from quicklaunch.daemon.bus import EventBus
from quicklaunch.daemon.config import LaunchConfig, ReconcileConfig
from quicklaunch.daemon.error_handling import HostActionError, RetryPolicy, StoreError
from quicklaunch.daemon.history import HistoryCache, ReconciliationWorker
from quicklaunch.daemon.host import HostActions
from quicklaunch.daemon.models import AppInfo, HistoryEntry
from quicklaunch.daemon.paths import display_name_for, normalize
from quicklaunch.daemon.search import ResultLists


class FakeStore:
    """In-memory BackendStore with failure injection."""

    def __init__(self):
        self.history: Dict[str, HistoryEntry] = {}
        self.apps: Dict[str, AppInfo] = {}
        self.calls: List[Tuple[str, str]] = []
        self.fail_add_use = 0
        self.fail_list = 0
        self.fail_remove_index = False
        self.fail_delete_history = False
        self.clock = time.time

    async def add_use(self, path: str) -> None:
        self.calls.append(("add_use", path))
        if self.fail_add_use:
            self.fail_add_use -= 1
            raise StoreError(f"add_use failed for {path}")
        key = normalize(path)
        existing = self.history.get(key)
        now = self.clock()
        if existing:
            self.history[key] = HistoryEntry(
                path=existing.path,
                name=existing.name,
                last_used=now,
                use_count=existing.use_count + 1,
                is_folder=existing.is_folder,
            )
        else:
            self.history[key] = HistoryEntry(
                path=path, name=display_name_for(path), last_used=now, use_count=1
            )

    async def delete_history(self, path: str) -> None:
        self.calls.append(("delete_history", path))
        if self.fail_delete_history:
            raise StoreError(f"delete failed for {path}")
        if self.history.pop(normalize(path), None) is None:
            raise StoreError(f"No history record for {path}")

    async def list_all_history(self) -> List[HistoryEntry]:
        self.calls.append(("list_all_history", ""))
        if self.fail_list:
            self.fail_list -= 1
            raise StoreError("list failed")
        return sorted(self.history.values(), key=lambda e: e.last_used, reverse=True)

    async def remove_from_index(self, path: str) -> None:
        self.calls.append(("remove_from_index", path))
        if self.fail_remove_index:
            raise StoreError(f"index removal failed for {path}")
        if self.apps.pop(normalize(path), None) is None:
            raise StoreError(f"No index entry for {path}")

    async def list_apps(self) -> List[AppInfo]:
        return sorted(self.apps.values(), key=lambda a: a.name)

    async def upsert_app(self, app: AppInfo) -> None:
        self.apps[normalize(app.path)] = app

    def count(self, call: str) -> int:
        return sum(1 for name, _ in self.calls if name == call)


class FakeHost(HostActions):
    """Records every primitive invoked; raise_on maps primitive name to an exception."""

    def __init__(self):
        self.actions: List[Tuple[str, Any]] = []
        self.raise_on: Dict[str, Exception] = {}

    def _record(self, name: str, arg: Any = None) -> None:
        self.actions.append((name, arg))
        if name in self.raise_on:
            raise self.raise_on[name]

    async def launch_application(self, app: AppInfo) -> None:
        self._record("launch_application", app.path)

    async def launch_file(self, path: str) -> None:
        self._record("launch_file", path)

    async def open_url(self, url: str) -> None:
        self._record("open_url", url)

    async def copy_text(self, text: str) -> None:
        self._record("copy_text", text)

    async def show_view(self, view: str, payload: Optional[Dict[str, Any]] = None) -> None:
        self._record("show_view", view)

    async def execute_plugin(self, plugin_id: str, query: str) -> None:
        self._record("execute_plugin", (plugin_id, query))

    async def hide_launcher(self) -> None:
        self._record("hide_launcher")

    async def reset_query(self) -> None:
        self._record("reset_query")

    def names(self) -> List[str]:
        return [name for name, _ in self.actions]


@pytest.fixture
def event_bus():
    return EventBus()


@pytest.fixture
def store():
    return FakeStore()


@pytest.fixture
def host():
    return FakeHost()


@pytest.fixture
def reconcile_config():
    return ReconcileConfig(max_persist_attempts=3, list_retries=0, retry_base_delay=0)


@pytest.fixture
def cache(store, event_bus):
    return HistoryCache(store, event_bus=event_bus, retry_policy=RetryPolicy(max_retries=0))


@pytest.fixture
def worker(cache, store, reconcile_config):
    return ReconciliationWorker(cache, store, reconcile_config)


@pytest.fixture
def results():
    return ResultLists()


@pytest.fixture
def launch_config():
    return LaunchConfig(feedback_delay_ms=0)


def missing_app_error(path: str) -> HostActionError:
    """A host failure carrying only message text, no structured code."""
    return HostActionError(f"应用程序未找到: {path}")
