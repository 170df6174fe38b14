"""Unit tests for resilience_engine.signals - the in-process signal bus."""

from __future__ import annotations

import asyncio

import pytest

from resilience_engine.signals import Signal, SignalBus, SignalEvent


class TestPublish:
    def test_records_history_with_increasing_ids(self) -> None:
        bus = SignalBus()
        first = bus.publish(Signal.RECOVERY_SUCCESS, strategy="db")
        second = bus.publish(Signal.RECOVERY_SUCCESS, strategy="cache")

        assert second.id == first.id + 1
        assert [e.payload["strategy"] for e in bus.recent(Signal.RECOVERY_SUCCESS)] == [
            "db",
            "cache",
        ]
        assert bus.count(Signal.RECOVERY_SUCCESS) == 2
        assert bus.count(Signal.RECOVERY_FAILURE) == 0

    def test_history_is_bounded(self) -> None:
        bus = SignalBus(history_size=3)
        for n in range(5):
            bus.publish(Signal.CHECK_COMPLETE, n=n)
        assert [e.payload["n"] for e in bus.recent(Signal.CHECK_COMPLETE)] == [2, 3, 4]

    def test_sync_listener_receives_event(self) -> None:
        bus = SignalBus()
        received: list[SignalEvent] = []
        bus.connect(Signal.STATUS_CHANGE, received.append)

        bus.publish(Signal.STATUS_CHANGE, status="unhealthy")

        assert len(received) == 1
        assert received[0].signal is Signal.STATUS_CHANGE

    def test_disconnect_stops_delivery(self) -> None:
        bus = SignalBus()
        received: list[SignalEvent] = []
        bus.connect(Signal.STATUS_CHANGE, received.append)
        bus.disconnect(Signal.STATUS_CHANGE, received.append)

        bus.publish(Signal.STATUS_CHANGE)

        assert received == []

    def test_failing_listener_does_not_break_publisher(self) -> None:
        bus = SignalBus()
        received: list[SignalEvent] = []

        def broken(_: SignalEvent) -> None:
            raise RuntimeError("listener bug")

        bus.connect(Signal.CHECK_ERROR, broken)
        bus.connect(Signal.CHECK_ERROR, received.append)

        event = bus.publish(Signal.CHECK_ERROR, name="db")

        assert received == [event]

    def test_async_listener_without_loop_is_skipped(self) -> None:
        bus = SignalBus()
        calls: list[SignalEvent] = []

        async def listener(event: SignalEvent) -> None:
            calls.append(event)

        bus.connect(Signal.CHECK_COMPLETE, listener)
        bus.publish(Signal.CHECK_COMPLETE)

        assert calls == []


class TestAsyncDelivery:
    @pytest.mark.asyncio
    async def test_async_listener_is_scheduled(self) -> None:
        bus = SignalBus()
        done = asyncio.Event()

        async def listener(_: SignalEvent) -> None:
            done.set()

        bus.connect(Signal.RECOVERY_FAILURE, listener)
        bus.publish(Signal.RECOVERY_FAILURE)

        await asyncio.wait_for(done.wait(), timeout=1.0)

    @pytest.mark.asyncio
    async def test_queue_subscription(self) -> None:
        bus = SignalBus()
        queue = bus.subscribe(Signal.ERROR_THRESHOLD_EXCEEDED)

        published = bus.publish(Signal.ERROR_THRESHOLD_EXCEEDED, error_key="k")
        received = await asyncio.wait_for(queue.get(), timeout=1.0)

        assert received is published
        bus.unsubscribe(Signal.ERROR_THRESHOLD_EXCEEDED, queue)
        bus.publish(Signal.ERROR_THRESHOLD_EXCEEDED, error_key="k")
        assert queue.empty()
