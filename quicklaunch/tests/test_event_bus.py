"""Tests for event bus."""

import asyncio
import pytest

from quicklaunch.daemon.bus import EventBus, Event


@pytest.mark.asyncio
async def test_event_emit_and_subscribe():
    """Test basic pub/sub functionality."""
    bus = EventBus()
    await bus.start()

    received_events = []

    async def handler(event: Event):
        received_events.append(event)

    bus.subscribe("history.*", handler)

    await bus.emit(Event(
        type="history.changed",
        data={"count": 3}
    ))

    # Give time for processing
    await asyncio.sleep(0.1)

    assert len(received_events) == 1
    assert received_events[0].type == "history.changed"
    assert received_events[0].data["count"] == 3

    await bus.stop()


@pytest.mark.asyncio
async def test_wildcard_subscription():
    """Test wildcard pattern matching."""
    bus = EventBus()
    await bus.start()

    all_events = []
    launch_events = []

    async def all_handler(event: Event):
        all_events.append(event)

    async def launch_handler(event: Event):
        launch_events.append(event)

    bus.subscribe("*", all_handler)
    bus.subscribe("launch.*", launch_handler)

    await bus.emit(Event(type="launch.completed", data={}))
    await bus.emit(Event(type="view.open", data={}))
    await bus.emit(Event(type="launch.pruned", data={}))

    await asyncio.sleep(0.1)

    assert len(all_events) == 3
    assert len(launch_events) == 2

    await bus.stop()


@pytest.mark.asyncio
async def test_bound_method_handlers_stay_subscribed():
    """Bound methods are held weakly but survive while their owner lives."""
    bus = EventBus()
    await bus.start()

    class Listener:
        def __init__(self):
            self.seen = []

        async def on_event(self, event: Event):
            self.seen.append(event.type)

    listener = Listener()
    bus.subscribe("ui.*", listener.on_event)

    await bus.emit(Event(type="ui.hide", data={}))
    await asyncio.sleep(0.1)

    assert listener.seen == ["ui.hide"]

    await bus.stop()


@pytest.mark.asyncio
async def test_sync_handler_runs_in_thread():
    bus = EventBus()
    await bus.start()

    seen = []

    def handler(event: Event):
        seen.append(event.type)

    bus.subscribe("ui.message", handler)
    bus.emit_nowait(Event(type="ui.message", data={"text": "hi"}))
    await asyncio.sleep(0.1)

    assert seen == ["ui.message"]

    await bus.stop()


@pytest.mark.asyncio
async def test_handler_error_is_counted():
    bus = EventBus()
    await bus.start()

    async def broken(event: Event):
        raise ValueError("nope")

    bus.subscribe("launch.completed", broken)
    await bus.emit(Event(type="launch.completed", data={}))
    await asyncio.sleep(0.1)

    assert bus.get_stats()["handler_errors"] == 1

    await bus.stop()


@pytest.mark.asyncio
async def test_event_queue_full():
    """Test behavior when event queue is full."""
    bus = EventBus(maxsize=2)

    await bus.emit(Event(type="test.1", data={}))
    await bus.emit(Event(type="test.2", data={}))

    # This should be dropped
    await bus.emit(Event(type="test.3", data={}))
    assert not bus.emit_nowait(Event(type="test.4", data={}))

    stats = bus.get_stats()
    assert stats['dropped'] == 2


def test_unsubscribe():
    bus = EventBus()

    async def handler(event: Event):
        pass

    bus.subscribe("ui.hide", handler)
    bus.unsubscribe("ui.hide", handler)

    assert bus._subscribers["ui.hide"] == []


def test_pattern_matching():
    """Test pattern matching logic."""
    bus = EventBus()

    # Exact match
    assert bus._matches_pattern("launch.completed", "launch.completed")
    assert not bus._matches_pattern("launch.completed", "launch.pruned")

    # Wildcard
    assert bus._matches_pattern("launch.pruned", "launch.*")
    assert bus._matches_pattern("history.changed", "history.*")
    assert not bus._matches_pattern("launch.completed", "history.*")
    assert not bus._matches_pattern("launcher.x", "launch.*")

    # Global wildcard
    assert bus._matches_pattern("anything", "*")
    assert bus._matches_pattern("launch.completed", "*")


@pytest.mark.asyncio
async def test_drain_waits_for_delivery():
    bus = EventBus()
    await bus.start()

    seen = []

    async def slow_handler(event: Event):
        await asyncio.sleep(0.05)
        seen.append(event.data["n"])

    unsubscribe = bus.subscribe("launch.completed", slow_handler)
    for n in range(3):
        bus.emit_nowait(Event(type="launch.completed", data={"n": n}))

    await bus.drain()
    assert seen == [0, 1, 2]

    unsubscribe()
    bus.emit_nowait(Event(type="launch.completed", data={"n": 3}))
    await bus.drain()
    assert seen == [0, 1, 2]

    await bus.stop()
