from __future__ import annotations

import asyncio
import logging
from typing import Any

import pytest

from gitweave.events import Broadcaster, EventBus, NullBroadcaster, OperationEvents, WorkflowEvent


class ExplodingBroadcaster:
    def emit(self, name: str, payload: dict[str, Any]) -> None:
        raise RuntimeError("transport down")


def test_operation_events_start_before_single_terminal(recorder) -> None:
    """started comes first and only the first terminal phase is delivered."""
    events = OperationEvents(recorder, "merge", "/work/tree")

    events.progress("merged")
    events.success(branch="main")
    events.failure(error="late")
    events.progress("ignored")

    assert recorder.names == ["merge:started", "merge:progress", "merge:success"]
    assert events.terminal_phase == "success"
    assert all(payload["worktree_path"] == "/work/tree" for _, payload in recorder.events)
    assert recorder.events[1][1]["step"] == "merged"


def test_terminal_event_without_explicit_start(recorder) -> None:
    events = OperationEvents(recorder, "pull", "/w")
    events.failure(error="boom")
    events.started()
    assert recorder.names == ["pull:started", "pull:failure"]


def test_broadcaster_errors_are_logged_not_raised(caplog: pytest.LogCaptureFixture) -> None:
    events = OperationEvents(ExplodingBroadcaster(), "rebase", "/w")
    with caplog.at_level(logging.WARNING, logger="gitweave.events"):
        events.started(onto="main")
        events.success()

    assert events.terminal_phase == "success"
    assert "Broadcaster failed to deliver rebase:started" in caplog.text


def test_broadcaster_protocol_is_structural(recorder) -> None:
    assert isinstance(recorder, Broadcaster)
    assert isinstance(NullBroadcaster(), Broadcaster)
    assert isinstance(EventBus(), Broadcaster)


def test_event_bus_callbacks_and_unsubscribe() -> None:
    bus = EventBus()
    seen: list[WorkflowEvent] = []
    unsubscribe = bus.subscribe(seen.append)

    bus.emit("stash:started", {"action": "list"})
    unsubscribe()
    bus.emit("stash:success", {"action": "list"})

    assert [event.name for event in seen] == ["stash:started"]
    assert seen[0].operation == "stash"
    assert seen[0].phase == "started"
    assert seen[0].payload == {"action": "list"}


def test_event_bus_isolates_failing_callbacks() -> None:
    bus = EventBus()
    seen: list[str] = []

    def broken(event: WorkflowEvent) -> None:
        raise ValueError("subscriber bug")

    bus.subscribe(broken)
    bus.subscribe(lambda event: seen.append(event.name))

    bus.emit("abort:success", {})

    assert seen == ["abort:success"]


def test_event_bus_instances_are_independent() -> None:
    first, second = EventBus(), EventBus()
    seen: list[str] = []
    first.subscribe(lambda event: seen.append(event.name))

    second.emit("pull:started", {})

    assert seen == []


def test_event_bus_delivers_to_async_queue() -> None:
    bus = EventBus()

    async def scenario() -> WorkflowEvent:
        queue = await bus.register()
        bus.emit("cherry-pick:conflict", {"conflict_files": ["a.txt"]})
        event = await asyncio.wait_for(queue.get(), timeout=1)
        await bus.unregister(queue)
        return event

    event = asyncio.run(scenario())

    assert event.name == "cherry-pick:conflict"
    assert event.payload["conflict_files"] == ["a.txt"]
