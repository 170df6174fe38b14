"""Shared pytest fixtures for the resilience-engine test suite."""

from __future__ import annotations

import pytest

from resilience_engine.circuit_breaker import CircuitBreakerRegistry
from resilience_engine.config import (
    CircuitBreakerSettings,
    ErrorFrequencySettings,
    HealthSettings,
)
from resilience_engine.health.monitor import HealthMonitor
from resilience_engine.recovery.frequency import ErrorFrequencyCounter
from resilience_engine.recovery.models import ErrorContext
from resilience_engine.recovery.registry import RecoveryRegistry
from resilience_engine.retry import RetryOptions
from resilience_engine.signals import SignalBus

# ---------------------------------------------------------------------------
# Time
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock."""

    def __init__(self, start: float = 1_000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Engine components
# ---------------------------------------------------------------------------


@pytest.fixture()
def signals() -> SignalBus:
    return SignalBus(history_size=50)


@pytest.fixture()
def fast_retry() -> RetryOptions:
    """Retry options without any waiting between attempts."""
    return RetryOptions(
        max_attempts=3,
        initial_delay=0.0,
        max_delay=0.0,
        jitter=False,
        retry_condition=None,
    )


@pytest.fixture()
def registry(
    clock: FakeClock, signals: SignalBus, fast_retry: RetryOptions
) -> RecoveryRegistry:
    """A registry with no strategies, a small breaker threshold and a fake clock."""
    return RecoveryRegistry(
        breakers=CircuitBreakerRegistry(
            CircuitBreakerSettings(
                failure_threshold=3, recovery_timeout=60, monitoring_period=120
            ),
            clock=clock,
        ),
        frequency=ErrorFrequencyCounter.from_settings(
            ErrorFrequencySettings(window_seconds=300, default_threshold=10),
            clock=clock,
        ),
        signals=signals,
        retry_options=fast_retry,
    )


@pytest.fixture()
def monitor(registry: RecoveryRegistry, signals: SignalBus) -> HealthMonitor:
    return HealthMonitor(
        registry,
        settings=HealthSettings(default_timeout=1.0),
        signals=signals,
        version="9.9.9",
    )


@pytest.fixture()
def context() -> ErrorContext:
    return ErrorContext(service="orders-db", operation="load_order")
