"""Launch dispatcher: one selected candidate in, one host action out."""

import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

import ulid
from loguru import logger

from .bus import (
    Event, EventBus, get_event_bus,
    LAUNCH_APP_LAUNCHED, LAUNCH_COMPLETED, LAUNCH_FEEDBACK, LAUNCH_PRUNED, UI_MESSAGE,
)
from .config import LaunchConfig
from .error_handling import (
    FailureKind, HostActionError, MalformedCandidateError, classify_failure, error_message,
)
from .history import HistoryCache
from .host import HostActions
from .models import Candidate, CandidateKind
from .paths import is_web_url
from .search import ResultLists
from .store import BackendStore


class LaunchState(Enum):
    IDLE = "idle"
    HISTORY_RECORDING = "history_recording"
    HOST_ACTION_INVOKED = "host_action_invoked"
    SUCCESS = "success"
    SELF_HEALED = "self_healed"
    HARD_FAILURE = "hard_failure"


# Targets that open something; an http(s) path on any of them goes to the browser
OPENABLE_KINDS = frozenset({
    CandidateKind.APP,
    CandidateKind.FILE,
    CandidateKind.URL,
    CandidateKind.SEARCH,
    CandidateKind.EVERYTHING,
})

# Kinds whose target can disappear from disk
SELF_HEALING_KINDS = frozenset({
    CandidateKind.APP,
    CandidateKind.FILE,
    CandidateKind.EVERYTHING,
})


@dataclass
class LaunchOutcome:
    """Terminal result of one launch attempt."""
    state: LaunchState
    candidate: Optional[Candidate] = None
    hide_launcher: bool = False
    message: Optional[str] = None
    error: Optional[str] = None
    pruned_path: Optional[str] = None
    recorded: bool = False
    attempt_id: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.state is LaunchState.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        return {
            "state": self.state.value,
            "hide_launcher": self.hide_launcher,
            "message": self.message,
            "error": self.error,
            "pruned_path": self.pruned_path,
            "recorded": self.recorded,
            "attempt_id": self.attempt_id,
        }


@dataclass
class _Action:
    """What a handler did: whether to hide the window and what to tell the user."""
    hide_launcher: bool = True
    message: Optional[str] = None
    extra_events: List[Event] = field(default_factory=list)


Handler = Callable[[Candidate, str], Awaitable[_Action]]


class LaunchDispatcher:
    """
    Drives a single launch attempt:

        Idle -> HistoryRecording -> HostActionInvoked
             -> Success | SelfHealed | HardFailure -> Idle

    History is recorded optimistically before the host action; persistence
    and reconciliation run detached in the worker. Exactly one host action
    runs per launch, chosen by the candidate's type tag.
    """

    def __init__(
        self,
        history: HistoryCache,
        store: BackendStore,
        host: HostActions,
        results: ResultLists,
        config: Optional[LaunchConfig] = None,
        event_bus: Optional[EventBus] = None,
    ):
        self.config = config or LaunchConfig()
        self._history = history
        self._store = store
        self._host = host
        self._results = results
        self._event_bus = event_bus or get_event_bus()
        self._lock = asyncio.Lock()
        self.state = LaunchState.IDLE

        self._handlers: Dict[CandidateKind, Handler] = {
            CandidateKind.APP: self._launch_app,
            CandidateKind.FILE: self._launch_file,
            CandidateKind.EVERYTHING: self._launch_everything,
            CandidateKind.URL: self._open_url,
            CandidateKind.SEARCH: self._open_search,
            CandidateKind.EMAIL: self._copy_email,
            CandidateKind.JSON_FORMATTER: self._open_json_formatter,
            CandidateKind.HISTORY: self._open_history_view,
            CandidateKind.SETTINGS: self._open_settings,
            CandidateKind.MEMO: self._open_memo,
            CandidateKind.PLUGIN: self._run_plugin,
            CandidateKind.AI: self._show_ai_answer,
        }
        missing = set(CandidateKind) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No launch handler for: {sorted(k.value for k in missing)}")

    async def launch(self, candidate: Candidate, query: str = "") -> LaunchOutcome:
        """Run one launch attempt. Never raises for host or backend failures."""
        async with self._lock:
            try:
                return await self._launch(candidate, query)
            finally:
                self.state = LaunchState.IDLE

    async def _launch(self, candidate: Candidate, query: str) -> LaunchOutcome:
        attempt_id = str(ulid.ULID())

        try:
            candidate.validate()
        except MalformedCandidateError as e:
            logger.warning(f"Ignoring malformed candidate {candidate.path!r}: {e}")
            return LaunchOutcome(state=LaunchState.IDLE, candidate=candidate, attempt_id=attempt_id)

        self.state = LaunchState.HISTORY_RECORDING
        recorded = self._history.record_use(candidate.path, candidate.kind)

        self.state = LaunchState.HOST_ACTION_INVOKED
        try:
            action = await self._invoke(candidate, query)
        except Exception as e:
            outcome = await self._handle_failure(candidate, e)
            outcome.recorded = recorded
            outcome.attempt_id = attempt_id
            self._publish_outcome(outcome)
            return outcome

        self.state = LaunchState.SUCCESS
        hide = action.hide_launcher and self.config.hide_after_launch
        if hide:
            try:
                await self._host.hide_launcher()
            except Exception as e:
                logger.warning(f"Failed to hide launcher: {e}")
        if action.message:
            await self._event_bus.emit(Event(
                type=UI_MESSAGE,
                data={"level": "success", "text": action.message},
                source="dispatcher",
                correlation_id=attempt_id,
            ))
        for event in action.extra_events:
            event.correlation_id = attempt_id
            await self._event_bus.emit(event)

        outcome = LaunchOutcome(
            state=LaunchState.SUCCESS,
            candidate=candidate,
            hide_launcher=hide,
            message=action.message,
            recorded=recorded,
            attempt_id=attempt_id,
        )
        self._publish_outcome(outcome)
        return outcome

    async def _invoke(self, candidate: Candidate, query: str) -> _Action:
        if candidate.kind in OPENABLE_KINDS and is_web_url(candidate.path):
            await self._host.open_url(candidate.path.strip())
            return _Action()
        return await self._handlers[candidate.kind](candidate, query)

    # Failure handling

    async def _handle_failure(self, candidate: Candidate, error: Exception) -> LaunchOutcome:
        message = error_message(error)
        kind = candidate.kind
        if kind in SELF_HEALING_KINDS and classify_failure(error, kind) is FailureKind.TARGET_MISSING:
            self.state = LaunchState.SELF_HEALED
            return await self._self_heal(candidate, message)

        self.state = LaunchState.HARD_FAILURE
        if not isinstance(error, HostActionError):
            logger.exception(f"Unexpected launch failure for {candidate.path}")
        else:
            logger.error(f"Launch failed for {candidate.path}: {message}")
        return LaunchOutcome(
            state=LaunchState.HARD_FAILURE,
            candidate=candidate,
            error=message,
        )

    async def _self_heal(self, candidate: Candidate, message: str) -> LaunchOutcome:
        """
        Remove a stale target from the index and the history.

        Both deletions run to completion independently; neither one's failure
        stops the other. In-memory lists are pruned regardless.
        """
        path = candidate.path
        logger.info(f"Target missing, pruning {path}")

        index_result, history_result = await asyncio.gather(
            self._store.remove_from_index(path),
            self._history.remove_entry(path),
            return_exceptions=True,
        )
        if isinstance(index_result, Exception):
            logger.debug(f"Index removal for {path} failed: {index_result}")
        if isinstance(history_result, Exception):
            # Usually just means the path was never in history
            logger.debug(f"History removal for {path} failed: {history_result}")

        pruned = self._results.prune(path)
        logger.debug(f"Pruned {pruned} result(s) for {path}")

        if isinstance(index_result, Exception) and isinstance(history_result, Exception):
            notice = message
        else:
            notice = f"{message}\n\nThe stale entry was removed automatically."

        try:
            await self._event_bus.emit(Event(
                type=LAUNCH_PRUNED,
                data={"path": path, "kind": candidate.kind.value},
                source="dispatcher",
            ))
        except Exception as e:
            logger.warning(f"Failed to publish prune notice for {path}: {e}")

        return LaunchOutcome(
            state=LaunchState.SELF_HEALED,
            candidate=candidate,
            error=notice,
            pruned_path=path,
        )

    def _publish_outcome(self, outcome: LaunchOutcome) -> None:
        self._event_bus.emit_nowait(Event(
            type=LAUNCH_COMPLETED,
            data=outcome.to_dict(),
            source="dispatcher",
            correlation_id=outcome.attempt_id,
        ))

    # One handler per kind

    async def _launch_app(self, candidate: Candidate, query: str) -> _Action:
        app = candidate.app
        await self._event_bus.emit(Event(
            type=LAUNCH_FEEDBACK,
            data={"path": app.path},
            source="dispatcher",
        ))
        try:
            if self.config.feedback_delay_ms:
                await asyncio.sleep(self.config.feedback_delay_ms / 1000)
            await self._host.launch_application(app)
        finally:
            await self._event_bus.emit(Event(
                type=LAUNCH_FEEDBACK,
                data={"path": None},
                source="dispatcher",
            ))
        return _Action(extra_events=[Event(
            type=LAUNCH_APP_LAUNCHED,
            data={"name": app.name, "path": app.path},
            source="dispatcher",
        )])

    async def _launch_file(self, candidate: Candidate, query: str) -> _Action:
        await self._host.launch_file(candidate.file.path)
        return _Action()

    async def _launch_everything(self, candidate: Candidate, query: str) -> _Action:
        await self._host.launch_file(candidate.everything.path)
        return _Action()

    async def _open_url(self, candidate: Candidate, query: str) -> _Action:
        await self._host.open_url(candidate.url)
        return _Action()

    async def _open_search(self, candidate: Candidate, query: str) -> _Action:
        await self._host.open_url(candidate.path)
        return _Action()

    async def _copy_email(self, candidate: Candidate, query: str) -> _Action:
        await self._host.copy_text(candidate.email)
        return _Action(hide_launcher=False, message=f"Copied email address: {candidate.email}")

    async def _open_json_formatter(self, candidate: Candidate, query: str) -> _Action:
        await self._host.show_view("json_formatter", {"content": candidate.json_content})
        return _Action()

    async def _open_history_view(self, candidate: Candidate, query: str) -> _Action:
        await self._host.show_view("history")
        return _Action(hide_launcher=False)

    async def _open_settings(self, candidate: Candidate, query: str) -> _Action:
        await self._host.hide_launcher()
        await self._host.show_view("settings")
        return _Action(hide_launcher=False)

    async def _open_memo(self, candidate: Candidate, query: str) -> _Action:
        memo = candidate.memo
        await self._host.show_view("memo", {"id": memo.id, "title": memo.title, "content": memo.content})
        return _Action(hide_launcher=False)

    async def _run_plugin(self, candidate: Candidate, query: str) -> _Action:
        await self._host.execute_plugin(candidate.plugin.id, query)
        await self._host.reset_query()
        return _Action(hide_launcher=False)

    async def _show_ai_answer(self, candidate: Candidate, query: str) -> _Action:
        # The answer is already on screen
        return _Action(hide_launcher=False)
