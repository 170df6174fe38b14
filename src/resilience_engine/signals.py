"""In-process signal bus for recovery and health notifications.

Observers either register listeners (sync or async callables) or
subscribe to an ``asyncio.Queue``. Delivery is advisory: a failing
listener is logged and never interrupts the publisher.
"""

from __future__ import annotations

import asyncio
import inspect
from collections import defaultdict, deque
from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import structlog
from pydantic import BaseModel, Field

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


class Signal(StrEnum):
    """Signals emitted by the recovery registry and health monitor."""

    RECOVERY_SUCCESS = "recovery:success"
    RECOVERY_FAILURE = "recovery:failure"
    ERROR_THRESHOLD_EXCEEDED = "error:threshold-exceeded"
    CHECK_COMPLETE = "check:complete"
    CHECK_ERROR = "check:error"
    STATUS_CHANGE = "status:change"


class SignalEvent(BaseModel):
    """One published signal."""

    id: int = Field(ge=1)
    signal: Signal
    ts: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))
    payload: dict[str, Any] = Field(default_factory=dict)


Listener = Callable[[SignalEvent], Awaitable[None] | None]


class SignalBus:
    """Publish/subscribe bus with a bounded per-signal history."""

    def __init__(self, history_size: int = 100) -> None:
        self._history_size = history_size
        self._next_id = 1
        self._history: dict[Signal, deque[SignalEvent]] = defaultdict(
            lambda: deque(maxlen=self._history_size)
        )
        self._listeners: dict[Signal, list[Listener]] = defaultdict(list)
        self._subscribers: dict[Signal, set[asyncio.Queue[SignalEvent]]] = defaultdict(
            set
        )
        self._pending: set[asyncio.Task[None]] = set()

    def connect(self, signal: Signal, listener: Listener) -> None:
        self._listeners[signal].append(listener)

    def disconnect(self, signal: Signal, listener: Listener) -> None:
        if listener in self._listeners[signal]:
            self._listeners[signal].remove(listener)

    def subscribe(self, signal: Signal) -> asyncio.Queue[SignalEvent]:
        queue: asyncio.Queue[SignalEvent] = asyncio.Queue()
        self._subscribers[signal].add(queue)
        return queue

    def unsubscribe(self, signal: Signal, queue: asyncio.Queue[SignalEvent]) -> None:
        self._subscribers[signal].discard(queue)

    def publish(self, signal: Signal, **payload: Any) -> SignalEvent:
        """Record and fan out a signal.

        Async listeners are scheduled on the running loop; without one they
        are skipped with a warning.

        Args:
            signal: The signal being emitted.
            **payload: Signal-specific data (strategy name, error, status).

        Returns:
            The recorded event.
        """
        event = SignalEvent(id=self._next_id, signal=signal, payload=payload)
        self._next_id += 1
        self._history[signal].append(event)

        for queue in list(self._subscribers.get(signal, set())):
            queue.put_nowait(event)

        for listener in list(self._listeners.get(signal, [])):
            self._deliver(listener, event)

        return event

    def recent(self, signal: Signal) -> list[SignalEvent]:
        return list(self._history.get(signal, []))

    def count(self, signal: Signal) -> int:
        return len(self._history.get(signal, []))

    def _deliver(self, listener: Listener, event: SignalEvent) -> None:
        try:
            outcome = listener(event)
        except Exception:
            logger.exception("signal_listener_failed", signal=event.signal.value)
            return

        if not inspect.isawaitable(outcome):
            return

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.warning("signal_listener_skipped_no_loop", signal=event.signal.value)
            if inspect.iscoroutine(outcome):
                outcome.close()
            return

        task = loop.create_task(self._await_listener(outcome, event))
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    @staticmethod
    async def _await_listener(outcome: Awaitable[None], event: SignalEvent) -> None:
        try:
            await outcome
        except Exception:
            logger.exception("signal_listener_failed", signal=event.signal.value)
