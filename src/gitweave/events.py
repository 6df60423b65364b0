"""Lifecycle notifications for git workflows.

Workflows never reach for a global emitter: a :class:`Broadcaster` is passed
in explicitly, so tests can substitute a recording double.
"""

from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass
from threading import Lock
from typing import Any, AsyncIterator, Callable, Protocol, runtime_checkable

logger = logging.getLogger(__name__)

PHASE_STARTED = "started"
PHASE_PROGRESS = "progress"
PHASE_SUCCESS = "success"
PHASE_CONFLICT = "conflict"
PHASE_ABORT = "abort"
PHASE_FAILURE = "failure"

TERMINAL_PHASES = frozenset({PHASE_SUCCESS, PHASE_CONFLICT, PHASE_ABORT, PHASE_FAILURE})


@runtime_checkable
class Broadcaster(Protocol):
    """Receiver of ``{operation}:{phase}`` notifications."""

    def emit(self, name: str, payload: dict[str, Any]) -> None: ...


class NullBroadcaster:
    """Broadcaster that drops every event."""

    def emit(self, name: str, payload: dict[str, Any]) -> None:
        return None


@dataclass(slots=True)
class WorkflowEvent:
    """Structured event emitted for workflow lifecycle changes."""

    name: str
    payload: dict[str, Any]
    timestamp: float

    @property
    def operation(self) -> str:
        return self.name.split(":", 1)[0]

    @property
    def phase(self) -> str:
        return self.name.split(":", 1)[1] if ":" in self.name else ""


class EventBus:
    """Lightweight pub/sub bus implementing :class:`Broadcaster`.

    Supports plain callbacks and asyncio queue subscribers; each bus is an
    independent instance.
    """

    def __init__(self) -> None:
        self._subscribers: set[tuple[asyncio.AbstractEventLoop, asyncio.Queue[WorkflowEvent]]] = set()
        self._callbacks: list[Callable[[WorkflowEvent], None]] = []
        self._lock = Lock()

    def subscribe(self, callback: Callable[[WorkflowEvent], None]) -> Callable[[], None]:
        """Register a synchronous callback; returns an unsubscribe function."""
        with self._lock:
            self._callbacks.append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                if callback in self._callbacks:
                    self._callbacks.remove(callback)

        return _unsubscribe

    async def register(self) -> asyncio.Queue[WorkflowEvent]:
        """Register a new subscriber queue."""
        loop = asyncio.get_running_loop()
        queue: asyncio.Queue[WorkflowEvent] = asyncio.Queue()
        with self._lock:
            self._subscribers.add((loop, queue))
        return queue

    async def unregister(self, queue: asyncio.Queue[WorkflowEvent]) -> None:
        """Remove a subscriber queue."""
        with self._lock:
            self._subscribers = {item for item in self._subscribers if item[1] is not queue}

    def publish(self, event: WorkflowEvent) -> None:
        """Broadcast an event to all subscribers."""
        with self._lock:
            targets = list(self._subscribers)
            callbacks = list(self._callbacks)
        for callback in callbacks:
            try:
                callback(event)
            except Exception:
                logger.warning("Event subscriber failed for %s", event.name, exc_info=True)
        for loop, queue in targets:
            loop.call_soon_threadsafe(queue.put_nowait, event)

    def emit(self, name: str, payload: dict[str, Any]) -> None:
        self.publish(WorkflowEvent(name=name, payload=payload, timestamp=time.time()))

    async def iterate(self) -> AsyncIterator[WorkflowEvent]:
        """Yield events for the lifetime of the subscription."""
        queue = await self.register()
        try:
            while True:
                yield await queue.get()
        finally:
            await self.unregister(queue)


class OperationEvents:
    """Emit the events of one operation in lifecycle order.

    ``started`` is sent first and at most one terminal phase follows it;
    later terminal emissions are dropped with a warning.
    """

    def __init__(self, broadcaster: Broadcaster, operation: str, worktree: object) -> None:
        self._broadcaster = broadcaster
        self.operation = operation
        self._base = {"worktree_path": str(worktree)}
        self._started = False
        self.terminal_phase: str | None = None

    def _emit(self, phase: str, payload: dict[str, Any]) -> None:
        name = f"{self.operation}:{phase}"
        data = {**self._base, **payload}
        try:
            self._broadcaster.emit(name, data)
        except Exception:
            logger.warning("Broadcaster failed to deliver %s", name, exc_info=True)

    def started(self, **payload: Any) -> None:
        if self._started:
            return
        self._started = True
        self._emit(PHASE_STARTED, payload)

    def progress(self, step: str, **payload: Any) -> None:
        if self.terminal_phase is not None:
            return
        self.started()
        self._emit(PHASE_PROGRESS, {"step": step, **payload})

    def success(self, **payload: Any) -> None:
        self._terminal(PHASE_SUCCESS, payload)

    def conflict(self, **payload: Any) -> None:
        self._terminal(PHASE_CONFLICT, payload)

    def abort(self, **payload: Any) -> None:
        self._terminal(PHASE_ABORT, payload)

    def failure(self, **payload: Any) -> None:
        self._terminal(PHASE_FAILURE, payload)

    def _terminal(self, phase: str, payload: dict[str, Any]) -> None:
        if self.terminal_phase is not None:
            logger.warning(
                "Dropping %s:%s after terminal %s", self.operation, phase, self.terminal_phase
            )
            return
        self.started()
        self.terminal_phase = phase
        self._emit(phase, payload)
