"""Per-key circuit breaker guarding calls to a downstream dependency.

A breaker starts ``closed``. Once ``failure_threshold`` failures have been
recorded within ``monitoring_period`` seconds it opens and sheds calls
with ``CircuitOpenError`` without invoking them. After
``recovery_timeout`` seconds without a new failure the next call is let
through as a ``half-open`` probe: success closes the circuit, failure
reopens it.
"""

from __future__ import annotations

import threading
import time
from collections import deque
from collections.abc import Awaitable, Callable
from enum import StrEnum
from typing import TYPE_CHECKING, TypeVar

import structlog
from pydantic import BaseModel, Field

from resilience_engine.exceptions import CircuitOpenError

if TYPE_CHECKING:
    from resilience_engine.config import CircuitBreakerSettings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]


class CircuitState(StrEnum):
    """Circuit breaker states."""

    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class CircuitBreakerSnapshot(BaseModel):
    """Point-in-time view of one breaker."""

    key: str
    state: CircuitState
    failure_count: int = Field(ge=0)
    last_failure_time: float | None = None


class CircuitBreaker:
    """Closed/open/half-open state machine with a decaying failure window.

    Each recorded failure counts toward ``failure_count`` for
    ``monitoring_period`` seconds, so long-lived processes heal their
    counters even without explicit successes. Transitions are guarded by a
    lock so a breaker may be shared between threads as well as tasks.

    Attributes:
        key: Name of the guarded dependency.
        failure_threshold: Failures within the window that open the circuit.
        recovery_timeout: Seconds an open circuit waits before a probe.
        monitoring_period: Seconds a failure keeps counting.
    """

    def __init__(
        self,
        failure_threshold: int = 5,
        recovery_timeout: float = 60.0,
        monitoring_period: float = 120.0,
        *,
        key: str = "",
        clock: Clock = time.monotonic,
    ) -> None:
        self.key = key
        self.failure_threshold = failure_threshold
        self.recovery_timeout = recovery_timeout
        self.monitoring_period = monitoring_period
        self._clock = clock

        self._state = CircuitState.CLOSED
        self._failures: deque[float] = deque()
        self._last_failure_time: float | None = None
        self._lock = threading.Lock()

    @classmethod
    def from_settings(
        cls,
        settings: CircuitBreakerSettings,
        *,
        key: str = "",
        clock: Clock = time.monotonic,
    ) -> CircuitBreaker:
        """Build a breaker from configured thresholds."""
        return cls(
            failure_threshold=settings.failure_threshold,
            recovery_timeout=settings.recovery_timeout,
            monitoring_period=settings.monitoring_period,
            key=key,
            clock=clock,
        )

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def state(self) -> CircuitState:
        """Current state, applying the time-based ``open -> half-open`` move."""
        with self._lock:
            self._maybe_half_open(self._clock())
            return self._state

    @property
    def failure_count(self) -> int:
        """Failures recorded within the last ``monitoring_period`` seconds."""
        with self._lock:
            self._prune(self._clock())
            return len(self._failures)

    @property
    def last_failure_time(self) -> float | None:
        return self._last_failure_time

    def get_state(self) -> CircuitState:
        return self.state

    def get_failure_count(self) -> int:
        return self.failure_count

    def snapshot(self) -> CircuitBreakerSnapshot:
        with self._lock:
            now = self._clock()
            self._maybe_half_open(now)
            self._prune(now)
            return CircuitBreakerSnapshot(
                key=self.key,
                state=self._state,
                failure_count=len(self._failures),
                last_failure_time=self._last_failure_time,
            )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run ``operation`` through the breaker.

        Args:
            operation: Zero-argument coroutine factory.

        Returns:
            The operation's result.

        Raises:
            CircuitOpenError: If the circuit is open; ``operation`` is not
                invoked.
            Exception: Whatever ``operation`` raised, unchanged, after the
                failure has been recorded.
        """
        with self._lock:
            now = self._clock()
            self._maybe_half_open(now)
            if self._state is CircuitState.OPEN:
                raise CircuitOpenError(self.key, retry_after=self._retry_after(now))

        try:
            result = await operation()
        except Exception:
            self._record_failure()
            raise

        self._record_success()
        return result

    def reset(self) -> None:
        """Close the circuit and forget all recorded failures."""
        with self._lock:
            self._reset_locked()

    # ------------------------------------------------------------------
    # Bookkeeping
    # ------------------------------------------------------------------

    def _record_failure(self) -> None:
        with self._lock:
            now = self._clock()
            self._failures.append(now)
            self._last_failure_time = now
            self._prune(now)

            probe_failed = self._state is CircuitState.HALF_OPEN
            if probe_failed or len(self._failures) >= self.failure_threshold:
                if self._state is not CircuitState.OPEN:
                    logger.warning(
                        "circuit_opened",
                        key=self.key,
                        failure_count=len(self._failures),
                        probe_failed=probe_failed,
                    )
                self._state = CircuitState.OPEN

    def _record_success(self) -> None:
        with self._lock:
            if self._state is CircuitState.HALF_OPEN:
                self._reset_locked()
                logger.info("circuit_closed", key=self.key)

    def _reset_locked(self) -> None:
        self._state = CircuitState.CLOSED
        self._failures.clear()
        self._last_failure_time = None

    def _maybe_half_open(self, now: float) -> None:
        if self._state is not CircuitState.OPEN or self._last_failure_time is None:
            return
        if now - self._last_failure_time > self.recovery_timeout:
            self._state = CircuitState.HALF_OPEN
            logger.info("circuit_half_open", key=self.key)

    def _prune(self, now: float) -> None:
        cutoff = now - self.monitoring_period
        while self._failures and self._failures[0] <= cutoff:
            self._failures.popleft()

    def _retry_after(self, now: float) -> float | None:
        if self._last_failure_time is None:
            return None
        return max(0.0, self.recovery_timeout - (now - self._last_failure_time))


class CircuitBreakerRegistry:
    """Lazily created breakers, one per key, living as long as the registry."""

    def __init__(
        self,
        settings: CircuitBreakerSettings,
        *,
        clock: Clock = time.monotonic,
    ) -> None:
        self._settings = settings
        self._clock = clock
        self._breakers: dict[str, CircuitBreaker] = {}
        self._lock = threading.Lock()

    def get(self, key: str) -> CircuitBreaker:
        """Return the breaker for ``key``, creating it on first use."""
        with self._lock:
            breaker = self._breakers.get(key)
            if breaker is None:
                breaker = CircuitBreaker.from_settings(
                    self._settings, key=key, clock=self._clock
                )
                self._breakers[key] = breaker
                logger.debug("circuit_breaker_created", key=key)
            return breaker

    def __contains__(self, key: object) -> bool:
        return key in self._breakers

    def __len__(self) -> int:
        return len(self._breakers)

    def snapshot(self) -> list[CircuitBreakerSnapshot]:
        with self._lock:
            breakers = list(self._breakers.values())
        return [breaker.snapshot() for breaker in breakers]
