"""Host action primitives: open URLs, launch files and apps, clipboard, internal views."""

import asyncio
import os
import subprocess
import sys
import webbrowser
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Set, Union

import psutil
import pyperclip
from loguru import logger

from .bus import Event, EventBus, UI_HIDE, UI_RESET_QUERY, VIEW_OPEN, get_event_bus
from .error_handling import HostActionError, HostErrorCode
from .models import AppInfo
from .paths import is_lnk_path, is_opaque_identifier


PluginHandler = Callable[[str], Union[None, Awaitable[None]]]


class HostActions(ABC):
    """
    Capability surface the launch dispatcher drives.

    Every primitive either returns or raises HostActionError; a code is
    attached whenever the failure is recognisable.
    """

    @abstractmethod
    async def launch_application(self, app: AppInfo) -> None: ...

    @abstractmethod
    async def launch_file(self, path: str) -> None: ...

    @abstractmethod
    async def open_url(self, url: str) -> None: ...

    @abstractmethod
    async def copy_text(self, text: str) -> None: ...

    @abstractmethod
    async def show_view(self, view: str, payload: Optional[Dict[str, Any]] = None) -> None: ...

    @abstractmethod
    async def execute_plugin(self, plugin_id: str, query: str) -> None: ...

    @abstractmethod
    async def hide_launcher(self) -> None: ...

    async def reset_query(self) -> None:
        """Ask the UI to clear the query box. Optional for hosts."""


def _shell_open(path: str) -> None:
    """Open path via the OS shell."""
    if sys.platform == "win32":
        os.startfile(path)  # type: ignore[attr-defined]
    elif sys.platform == "darwin":
        subprocess.Popen(["open", path])
    else:
        subprocess.Popen(["xdg-open", path])


def running_executables() -> Set[str]:
    """Lower-cased executable paths and names of running processes."""
    names: Set[str] = set()
    for proc in psutil.process_iter(['name', 'exe']):
        try:
            info = proc.info
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
        if info.get('exe'):
            names.add(info['exe'].lower().replace("\\", "/"))
        if info.get('name'):
            names.add(info['name'].lower())
    return names


class SystemHostActions(HostActions):
    """
    Host actions backed by the local OS.

    Internal views and window visibility belong to the UI shell, so those
    primitives publish events on the bus instead of drawing anything.
    """

    def __init__(self, event_bus: Optional[EventBus] = None):
        self._event_bus = event_bus or get_event_bus()
        self._plugins: Dict[str, PluginHandler] = {}

    def register_plugin(self, plugin_id: str, handler: PluginHandler) -> None:
        self._plugins[plugin_id] = handler
        logger.debug(f"Registered plugin: {plugin_id}")

    async def launch_application(self, app: AppInfo) -> None:
        path = app.path
        if not is_opaque_identifier(path):
            target = Path(path)
            if not target.exists():
                if is_lnk_path(path):
                    raise HostActionError(
                        f"快捷方式文件不存在: {path}",
                        code=HostErrorCode.SHORTCUT_MISSING,
                    )
                raise HostActionError(
                    f"应用程序未找到: {path}",
                    code=HostErrorCode.APP_NOT_FOUND,
                )

        logger.info(f"Launching application {app.name} -> {path}")
        await self._spawn(path)

    async def launch_file(self, path: str) -> None:
        if not is_opaque_identifier(path) and not Path(path).exists():
            raise HostActionError(
                f"Path not found: {path}",
                code=HostErrorCode.PATH_NOT_FOUND,
            )
        logger.info(f"Opening file {path}")
        await self._spawn(path)

    async def _spawn(self, path: str) -> None:
        try:
            await asyncio.to_thread(_shell_open, path)
        except FileNotFoundError as e:
            raise HostActionError(f"Path not found: {path}", code=HostErrorCode.PATH_NOT_FOUND) from e
        except OSError as e:
            raise HostActionError(f"Failed to open {path}: {e}") from e

    async def open_url(self, url: str) -> None:
        logger.info(f"Opening URL {url}")
        opened = await asyncio.to_thread(webbrowser.open, url)
        if not opened:
            raise HostActionError(f"No browser available to open {url}")

    async def copy_text(self, text: str) -> None:
        try:
            await asyncio.to_thread(pyperclip.copy, text)
        except pyperclip.PyperclipException as e:
            raise HostActionError(
                f"Clipboard unavailable: {e}",
                code=HostErrorCode.CLIPBOARD_UNAVAILABLE,
            ) from e

    async def show_view(self, view: str, payload: Optional[Dict[str, Any]] = None) -> None:
        await self._event_bus.emit(Event(
            type=VIEW_OPEN,
            data={"view": view, "payload": payload or {}},
            source="host",
        ))

    async def execute_plugin(self, plugin_id: str, query: str) -> None:
        handler = self._plugins.get(plugin_id)
        if handler is None:
            raise HostActionError(
                f"Plugin not registered: {plugin_id}",
                code=HostErrorCode.PLUGIN_NOT_FOUND,
            )
        result = handler(query)
        if asyncio.iscoroutine(result):
            await result

    async def hide_launcher(self) -> None:
        await self._event_bus.emit(Event(type=UI_HIDE, data={}, source="host"))

    async def reset_query(self) -> None:
        await self._event_bus.emit(Event(type=UI_RESET_QUERY, data={}, source="host"))
