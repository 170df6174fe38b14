"""Composition root wiring the signal bus, recovery registry and health monitor.

A process builds one ``ResilienceEngine`` at startup and passes it (or its
``registry``/``monitor``) to every collaborator that wraps risky calls or
reports health.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, TypeVar

import structlog

from resilience_engine.health.checks import default_checks
from resilience_engine.health.monitor import HealthMonitor
from resilience_engine.recovery.registry import RecoveryRegistry
from resilience_engine.recovery.strategies import default_strategies
from resilience_engine.signals import SignalBus

if TYPE_CHECKING:
    from resilience_engine.config import Settings
    from resilience_engine.health.models import HealthCheck, SystemHealth
    from resilience_engine.recovery.models import ErrorContext, RecoveryStrategy
    from resilience_engine.recovery.strategies import RecoveryHooks
    from resilience_engine.retry import RetryOptions

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

T = TypeVar("T")


class ResilienceEngine:
    """Facade over one registry and one monitor sharing a signal bus."""

    def __init__(
        self,
        registry: RecoveryRegistry,
        monitor: HealthMonitor,
        signals: SignalBus,
    ) -> None:
        self.registry = registry
        self.monitor = monitor
        self.signals = signals

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        *,
        hooks: RecoveryHooks | None = None,
        install_default_strategies: bool = True,
        install_default_checks: bool = False,
    ) -> ResilienceEngine:
        """Build an engine from config settings.

        Args:
            settings: Resolved settings.
            hooks: Repair actions for the default strategies.
            install_default_strategies: Register the stock recovery strategies.
            install_default_checks: Register the memory/cpu/disk checks.

        Returns:
            A wired engine; call :meth:`start` inside the event loop to
            begin periodic checks.
        """
        signals = SignalBus(history_size=settings.health.signal_history)
        registry = RecoveryRegistry.from_settings(settings, signals=signals)
        monitor = HealthMonitor(registry, settings=settings.health, signals=signals)
        engine = cls(registry, monitor, signals)

        if install_default_strategies:
            for strategy in default_strategies(hooks):
                engine.add_strategy(strategy)
        if install_default_checks:
            for check in default_checks(settings.health):
                engine.add_check(check)

        logger.info(
            "resilience_engine_ready",
            strategies=len(registry.strategies),
            checks=len(monitor.checks),
        )
        return engine

    # Registration

    def add_strategy(self, strategy: RecoveryStrategy) -> None:
        self.registry.add_strategy(strategy)

    def add_check(self, check: HealthCheck) -> None:
        self.monitor.add_check(check)

    # Recovery

    async def execute_with_recovery(
        self,
        operation: Callable[[], Awaitable[T]],
        context: ErrorContext,
        options: RetryOptions | None = None,
        **overrides: Any,
    ) -> T:
        return await self.registry.execute_with_recovery(
            operation, context, options, **overrides
        )

    async def handle_error(self, error: BaseException, context: ErrorContext) -> bool:
        return await self.registry.handle_error(error, context)

    # Health

    async def check_health(self) -> SystemHealth:
        return await self.monitor.check_health()

    def get_status(self) -> SystemHealth:
        return self.monitor.get_status()

    # Lifecycle

    def start(self) -> None:
        self.monitor.start()

    def stop(self) -> None:
        self.monitor.stop()

    async def aclose(self) -> None:
        await self.monitor.aclose()
