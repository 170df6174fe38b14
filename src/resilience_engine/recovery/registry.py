"""Recovery strategy registry: match, repair, and retry failing operations.

``RecoveryRegistry.handle_error`` finds the strategies whose predicate
matches an error and runs their repair actions, in registration order,
through the circuit breaker of the reporting service.
``execute_with_recovery`` combines this with the retry executor: every
failed attempt triggers a recovery before the next one, and after the
retries are exhausted one more recovery plus one more attempt is made.
"""

from __future__ import annotations

import functools
import inspect
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from resilience_engine.circuit_breaker import CircuitBreakerRegistry, CircuitState
from resilience_engine.config import CircuitBreakerSettings, ErrorFrequencySettings
from resilience_engine.exceptions import CircuitOpenError, RetryExhaustedError
from resilience_engine.logging import bind_error_context, error_context_fields
from resilience_engine.recovery.frequency import ErrorFrequencyCounter, error_key_for
from resilience_engine.recovery.models import RecoveryStatus
from resilience_engine.retry import RetryOptions, retry
from resilience_engine.signals import Signal, SignalBus

if TYPE_CHECKING:
    from resilience_engine.config import Settings
    from resilience_engine.recovery.models import ErrorContext, RecoveryStrategy

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

T = TypeVar("T")


class RecoveryRegistry:
    """Ordered recovery strategies guarded by per-service circuit breakers."""

    def __init__(
        self,
        *,
        breakers: CircuitBreakerRegistry | None = None,
        frequency: ErrorFrequencyCounter | None = None,
        signals: SignalBus | None = None,
        retry_options: RetryOptions | None = None,
    ) -> None:
        self._breakers = (
            breakers
            if breakers is not None
            else CircuitBreakerRegistry(CircuitBreakerSettings())
        )
        self._frequency = (
            frequency
            if frequency is not None
            else ErrorFrequencyCounter.from_settings(ErrorFrequencySettings())
        )
        self.signals = signals if signals is not None else SignalBus()
        self._retry_options = (
            retry_options if retry_options is not None else RetryOptions()
        )
        self._strategies: dict[str, RecoveryStrategy] = {}
        self._started_at = time.monotonic()
        self._succeeded = 0
        self._failed = 0

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        signals: SignalBus | None = None,
    ) -> RecoveryRegistry:
        """Build a registry from config settings."""
        return cls(
            breakers=CircuitBreakerRegistry(settings.circuit_breaker),
            frequency=ErrorFrequencyCounter.from_settings(settings.error_frequency),
            signals=signals,
            retry_options=RetryOptions.from_settings(settings.retry),
        )

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_strategy(self, strategy: RecoveryStrategy) -> None:
        """Register ``strategy``; a strategy with the same name is replaced in place."""
        replaced = strategy.name in self._strategies
        self._strategies[strategy.name] = strategy
        logger.info("recovery_strategy_added", name=strategy.name, replaced=replaced)

    def remove_strategy(self, name: str) -> bool:
        removed = self._strategies.pop(name, None) is not None
        if removed:
            logger.info("recovery_strategy_removed", name=name)
        return removed

    @property
    def strategies(self) -> list[str]:
        return list(self._strategies)

    @property
    def breakers(self) -> CircuitBreakerRegistry:
        return self._breakers

    @property
    def frequency(self) -> ErrorFrequencyCounter:
        return self._frequency

    def set_error_threshold(self, error_key: str, threshold: int) -> None:
        """Override the threshold-exceeded limit for one derived error key."""
        self._frequency.set_threshold(error_key, threshold)

    # ------------------------------------------------------------------
    # Recovery
    # ------------------------------------------------------------------

    async def handle_error(self, error: BaseException, context: ErrorContext) -> bool:
        """Try to repair the cause of ``error``.

        Args:
            error: The failure to recover from.
            context: Where the failure originated; ``context.service`` selects
                the circuit breaker guarding the recovery actions.

        Returns:
            True if a matching strategy's action completed, False if the
            service's circuit is open, nothing matched, or every matching
            action failed.
        """
        log = logger.bind(**error_context_fields(context))
        error_key = error_key_for(error)
        self._record_occurrence(error_key)

        log.error("handling_error", error_type=type(error).__name__, error=str(error))

        breaker = self._breakers.get(context.service)
        if breaker.state is CircuitState.OPEN:
            log.warning("recovery_skipped_circuit_open")
            return False

        applicable = [
            strategy
            for strategy in self._strategies.values()
            if self._matches(strategy, error)
        ]
        if not applicable:
            log.warning("no_recovery_strategy", error=str(error))
            return False

        for strategy in applicable:
            try:
                await breaker.execute(functools.partial(strategy.recover, error, context))
            except CircuitOpenError:
                log.warning("recovery_aborted_circuit_open", strategy=strategy.name)
                return False
            except Exception as exc:
                self._failed += 1
                log.error(
                    "recovery_strategy_failed",
                    strategy=strategy.name,
                    error=str(exc),
                    original_error=str(error),
                )
                self.signals.publish(
                    Signal.RECOVERY_FAILURE,
                    strategy=strategy.name,
                    error=error,
                    recovery_error=exc,
                )
                continue

            self._succeeded += 1
            self._frequency.reset(error_key)
            log.info("recovery_succeeded", strategy=strategy.name, error=str(error))
            self.signals.publish(
                Signal.RECOVERY_SUCCESS, strategy=strategy.name, error=error
            )
            return True

        return False

    async def execute_with_recovery(
        self,
        operation: Callable[[], Awaitable[T]],
        context: ErrorContext,
        options: RetryOptions | None = None,
        **overrides: Any,
    ) -> T:
        """Run ``operation`` with retries, recovering between attempts.

        After the retries give up, ``handle_error`` runs once more with the
        last underlying error; if that recovers, ``operation`` is invoked one
        final time and its outcome is returned or raised as is.

        Args:
            operation: Zero-argument coroutine factory.
            context: Origin of the operation, used for recovery and logging.
            options: Retry options; defaults to the registry's configured policy.
            **overrides: Per-call overrides of individual ``RetryOptions`` fields.

        Returns:
            The operation's result.

        Raises:
            RetryExhaustedError: If every attempt failed and recovery did not help.
            Exception: A non-retryable error that recovery could not fix,
                unchanged.
        """
        base = (options if options is not None else self._retry_options).merge(
            **overrides
        )
        caller_on_retry = base.on_retry

        async def recover_between_attempts(error: BaseException, attempt: int) -> None:
            if caller_on_retry is not None:
                outcome = caller_on_retry(error, attempt)
                if inspect.isawaitable(outcome):
                    await outcome
            await self.handle_error(error, context)

        opts = base.merge(on_retry=recover_between_attempts)

        with bind_error_context(context) as log:
            try:
                return await retry(operation, opts)
            except Exception as exc:
                cause = exc.last_error if isinstance(exc, RetryExhaustedError) else exc
                if not await self.handle_error(cause, context):
                    raise
                log.info("retrying_after_recovery", error=str(cause))
                return await operation()

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def get_status(self) -> RecoveryStatus:
        return RecoveryStatus(
            strategies=self.strategies,
            circuit_breakers=self._breakers.snapshot(),
            error_counts=self._frequency.snapshot(),
            recoveries_succeeded=self._succeeded,
            recoveries_failed=self._failed,
            uptime=time.monotonic() - self._started_at,
        )

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _record_occurrence(self, error_key: str) -> None:
        if not self._frequency.record(error_key):
            return
        count = self._frequency.count(error_key)
        threshold = self._frequency.threshold_for(error_key)
        logger.warning(
            "error_threshold_exceeded",
            error_key=error_key,
            count=count,
            threshold=threshold,
        )
        self.signals.publish(
            Signal.ERROR_THRESHOLD_EXCEEDED,
            error_key=error_key,
            count=count,
            threshold=threshold,
        )

    @staticmethod
    def _matches(strategy: RecoveryStrategy, error: BaseException) -> bool:
        try:
            return bool(strategy.can_recover(error))
        except Exception:
            logger.exception("recovery_predicate_failed", strategy=strategy.name)
            return False
