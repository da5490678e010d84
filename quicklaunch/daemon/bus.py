"""Async event bus connecting the daemon's components to UI shells."""

import asyncio
import inspect
import weakref
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Optional

from loguru import logger


# Event types published by the daemon
HISTORY_CHANGED = "history.changed"
LAUNCH_FEEDBACK = "launch.feedback"
LAUNCH_APP_LAUNCHED = "launch.app_launched"
LAUNCH_COMPLETED = "launch.completed"
LAUNCH_PRUNED = "launch.pruned"
SEARCH_COMPLETED = "search.completed"
VIEW_OPEN = "view.open"
UI_HIDE = "ui.hide"
UI_RESET_QUERY = "ui.reset_query"
UI_MESSAGE = "ui.message"


Handler = Callable[["Event"], Any]


@dataclass
class Event:
    """A notification; data must stay JSON-serializable for UI shells."""
    type: str
    data: Dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    source: Optional[str] = None
    correlation_id: Optional[str] = None


class EventBus:
    """
    Async pub/sub event bus for in-process communication.

    Event types follow pattern: category.action
    Examples: history.changed, launch.pruned, view.open

    Handlers are held weakly so a discarded listener never keeps running.
    Publishing never blocks the publisher; a full queue drops the event.
    """

    def __init__(self, maxsize: int = 1000):
        self._subscribers: Dict[str, List[weakref.ref]] = defaultdict(list)
        self._event_queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize)
        self._running = False
        self._processor_task: Optional[asyncio.Task] = None
        self._stats = defaultdict(int)

    @property
    def running(self) -> bool:
        return self._running

    def subscribe(self, event_pattern: str, handler: Handler) -> Callable[[], None]:
        """
        Subscribe to events matching pattern ('launch.*' matches all launch events).

        Returns a callable that removes the subscription.
        """
        if inspect.ismethod(handler):
            handler_ref = weakref.WeakMethod(handler)
        else:
            handler_ref = weakref.ref(handler)
        self._subscribers[event_pattern].append(handler_ref)
        logger.debug(f"Subscribed handler to pattern: {event_pattern}")
        return lambda: self.unsubscribe(event_pattern, handler)

    def unsubscribe(self, event_pattern: str, handler: Handler) -> None:
        refs = self._subscribers.get(event_pattern, [])
        self._subscribers[event_pattern] = [
            ref for ref in refs
            if ref() is not None and ref() != handler
        ]

    async def emit(self, event: Event) -> None:
        self.emit_nowait(event)

    def emit_nowait(self, event: Event) -> bool:
        """Queue an event from sync or async code. False when it was dropped."""
        try:
            self._event_queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(f"Event queue full, dropping event: {event.type}")
            self._stats['dropped'] += 1
            return False
        self._stats['emitted'] += 1
        logger.debug(f"Emitted event: {event.type}")
        return True

    async def start(self) -> None:
        """Start the event processor."""
        if self._running:
            logger.warning("Event bus already running")
            return

        self._running = True
        self._processor_task = asyncio.create_task(self._process_events())
        logger.info("Event bus started")

    async def stop(self) -> None:
        """Stop the event processor. Queued events are left unprocessed."""
        self._running = False
        if self._processor_task:
            await self._processor_task
            self._processor_task = None
        logger.info("Event bus stopped")

    async def drain(self) -> None:
        """Wait until every queued event has been delivered."""
        if self._running:
            await self._event_queue.join()

    async def _process_events(self) -> None:
        while self._running:
            try:
                # Short timeout so stop() is honoured promptly
                event = await asyncio.wait_for(self._event_queue.get(), timeout=0.2)
            except asyncio.TimeoutError:
                continue

            try:
                await self._dispatch(event)
                self._stats['processed'] += 1
            except Exception as e:
                logger.error(f"Error processing event: {e}")
                self._stats['processing_errors'] += 1
            finally:
                self._event_queue.task_done()

    async def _dispatch(self, event: Event) -> None:
        handlers = self._live_handlers(event.type)
        if not handlers:
            return

        calls = []
        for handler in handlers:
            if inspect.iscoroutinefunction(handler):
                calls.append(handler(event))
            else:
                calls.append(asyncio.to_thread(handler, event))

        results = await asyncio.gather(*calls, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"Handler error for event {event.type}: {result}")
                self._stats['handler_errors'] += 1

    def _live_handlers(self, event_type: str) -> List[Handler]:
        """Resolve weak refs for every matching pattern, pruning dead ones."""
        handlers = []
        for pattern, refs in list(self._subscribers.items()):
            if not self._matches_pattern(event_type, pattern):
                continue
            alive = [ref for ref in refs if ref() is not None]
            self._subscribers[pattern] = alive
            handlers.extend(ref() for ref in alive)
        return [h for h in handlers if h is not None]

    def _matches_pattern(self, event_type: str, pattern: str) -> bool:
        if pattern == "*":
            return True
        if pattern.endswith(".*"):
            return event_type.startswith(pattern[:-1])
        return event_type == pattern

    def get_stats(self) -> Dict[str, int]:
        stats = dict(self._stats)
        stats['queued'] = self._event_queue.qsize()
        return stats

    def reset_stats(self) -> None:
        self._stats.clear()


# Global event bus instance
_event_bus: Optional[EventBus] = None


def get_event_bus() -> EventBus:
    """Get the global event bus instance."""
    global _event_bus
    if _event_bus is None:
        _event_bus = EventBus()
    return _event_bus
