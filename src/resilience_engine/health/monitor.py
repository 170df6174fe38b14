"""Periodic health monitoring with recovery for critical dependencies.

Each registered check runs either on its own interval (as an asyncio task)
or on demand from ``check_health``. Every run is raced against the check's
timeout, stored with its timestamp, and folded into the aggregate system
status. When a critical check is unhealthy the recovery registry is asked
to repair it and the check is run once more to confirm.
"""

from __future__ import annotations

import asyncio
import time
from datetime import UTC, datetime
from typing import TYPE_CHECKING

import structlog

from resilience_engine import __version__
from resilience_engine.config import HealthSettings
from resilience_engine.exceptions import (
    HealthCheckTimeoutError,
    UnhealthyServiceError,
    UnknownHealthCheckError,
)
from resilience_engine.health.models import (
    CheckResult,
    HealthCheck,
    HealthStatus,
    SystemHealth,
    SystemStatus,
    aggregate_status,
)
from resilience_engine.recovery.models import ErrorContext
from resilience_engine.signals import Signal, SignalBus

if TYPE_CHECKING:
    from resilience_engine.recovery.registry import RecoveryRegistry

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_MONITOR_SERVICE = "health-monitor"


class HealthMonitor:
    """Runs health checks and maintains the aggregate system status."""

    def __init__(
        self,
        registry: RecoveryRegistry,
        *,
        settings: HealthSettings | None = None,
        signals: SignalBus | None = None,
        version: str = __version__,
    ) -> None:
        self._registry = registry
        self._settings = settings if settings is not None else HealthSettings()
        self.signals = signals if signals is not None else registry.signals
        self._version = version

        self._checks: dict[str, HealthCheck] = {}
        self._results: dict[str, CheckResult] = {}
        self._tasks: dict[str, asyncio.Task[None]] = {}
        self._status = SystemStatus.HEALTHY
        self._started_at = time.monotonic()
        self._stopped = False

    # ------------------------------------------------------------------
    # Registration and scheduling
    # ------------------------------------------------------------------

    def add_check(self, check: HealthCheck) -> None:
        """Register ``check``, replacing any check with the same name.

        A check with a truthy ``interval`` runs immediately and then every
        ``interval`` seconds. Outside a running event loop the schedule is
        deferred until :meth:`start`.
        Replacing a check discards the previous check's cached result.
        """
        replaced = check.name in self._checks
        self._checks[check.name] = check
        self._cancel_task(check.name)
        if replaced:
            self._results.pop(check.name, None)
            self._update_status()
        logger.info(
            "health_check_added",
            name=check.name,
            critical=check.critical,
            interval=check.interval,
        )
        if check.interval:
            self._schedule(check)

    def remove_check(self, name: str) -> None:
        if self._checks.pop(name, None) is None:
            raise UnknownHealthCheckError(name)
        self._cancel_task(name)
        self._results.pop(name, None)
        self._update_status()

    @property
    def checks(self) -> list[str]:
        return list(self._checks)

    def start(self) -> None:
        """Schedule every periodic check that is not already running.

        Must be called from inside the running event loop.
        """
        self._stopped = False
        for check in self._checks.values():
            task = self._tasks.get(check.name)
            if check.interval and (task is None or task.done()):
                self._schedule(check)

    def stop(self) -> None:
        """Cancel all periodic checks; ``check_health`` remains usable."""
        self._stopped = True
        for task in self._tasks.values():
            task.cancel()
        self._tasks.clear()
        logger.info("health_monitor_stopped")

    async def aclose(self) -> None:
        """Stop and wait for the cancelled periodic tasks to finish."""
        tasks = list(self._tasks.values())
        self.stop()
        await asyncio.gather(*tasks, return_exceptions=True)

    def _schedule(self, check: HealthCheck) -> None:
        if self._stopped:
            return
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            logger.debug("health_check_schedule_deferred", name=check.name)
            return
        self._tasks[check.name] = loop.create_task(
            self._run_periodically(check), name=f"health-check:{check.name}"
        )

    def _cancel_task(self, name: str) -> None:
        task = self._tasks.pop(name, None)
        if task is not None:
            task.cancel()

    async def _run_periodically(self, check: HealthCheck) -> None:
        assert check.interval
        while True:
            try:
                await self.run_check(check)
            except Exception:
                logger.exception("periodic_health_check_failed", name=check.name)
            await asyncio.sleep(check.interval)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run_check(
        self, check: HealthCheck | str, *, recover: bool = True
    ) -> CheckResult:
        """Run one check, store its result, and recover it if critical.

        Args:
            check: The check or the name it was registered under.
            recover: Whether an unhealthy critical result triggers recovery
                and a confirming re-run.

        Returns:
            The check's latest stored result (the re-run's, when recovery ran).

        Raises:
            UnknownHealthCheckError: If ``check`` names no registered check.
        """
        if isinstance(check, str):
            check = self._get(check)

        timeout = (
            check.timeout
            if check.timeout is not None
            else self._settings.default_timeout
        )
        started = time.monotonic()
        error: BaseException | None = None
        deadline = asyncio.timeout(timeout)
        try:
            async with deadline:
                raw = await check.check()
            status = (
                raw if isinstance(raw, HealthStatus) else HealthStatus.model_validate(raw)
            )
        except TimeoutError as exc:
            # Only our own deadline counts as a timeout; a TimeoutError raised
            # by the check itself is an ordinary failure.
            if deadline.expired():
                error = HealthCheckTimeoutError(check.name, timeout)
                status = HealthStatus(healthy=False, message=str(error))
            else:
                error = exc
                status = HealthStatus(healthy=False, message=f"Check failed: {exc}")
        except Exception as exc:
            error = exc
            status = HealthStatus(healthy=False, message=f"Check failed: {exc}")

        result = CheckResult(
            healthy=status.healthy,
            message=status.message,
            latency=(
                status.latency
                if status.latency is not None
                else time.monotonic() - started
            ),
            details=status.details,
            last_checked_at=datetime.now(tz=UTC),
        )
        self._results[check.name] = result
        self._update_status()

        if error is None:
            logger.debug("health_check_complete", name=check.name, healthy=result.healthy)
            self.signals.publish(Signal.CHECK_COMPLETE, name=check.name, result=result)
        else:
            logger.warning("health_check_error", name=check.name, error=str(error))
            self.signals.publish(Signal.CHECK_ERROR, name=check.name, error=error)

        if check.critical and not result.healthy and recover:
            await self._recover(check, result, error)
            return self._results.get(check.name, result)
        return result

    async def _recover(
        self,
        check: HealthCheck,
        result: CheckResult,
        error: BaseException | None,
    ) -> None:
        logger.error("critical_service_unhealthy", name=check.name, message=result.message)

        failure = UnhealthyServiceError(check.name, result.message)
        if error is not None:
            failure.__cause__ = error
        context = ErrorContext(
            service=_MONITOR_SERVICE,
            operation=f"health-check-{check.name}",
            metadata={
                "check_name": check.name,
                "healthy": result.healthy,
                "message": result.message,
            },
        )
        recovered = await self._registry.handle_error(failure, context)
        logger.info("rechecking_after_recovery", name=check.name, recovered=recovered)
        await self.run_check(check, recover=False)

    async def check_health(self) -> SystemHealth:
        """Run every on-demand check concurrently and return the snapshot.

        Periodic checks are not forced; their cached results are reported.
        """
        on_demand = [check for check in self._checks.values() if not check.interval]
        outcomes = await asyncio.gather(
            *(self.run_check(check) for check in on_demand),
            return_exceptions=True,
        )
        for check, outcome in zip(on_demand, outcomes, strict=True):
            if isinstance(outcome, Exception):
                logger.error(
                    "health_check_run_failed", name=check.name, error=str(outcome)
                )
            elif isinstance(outcome, BaseException):
                raise outcome
        return self.get_status()

    def get_status(self) -> SystemHealth:
        """Return the cached aggregate without running any check."""
        return SystemHealth(
            status=self._status,
            checks=dict(self._results),
            uptime=time.monotonic() - self._started_at,
            version=self._version,
        )

    @property
    def status(self) -> SystemStatus:
        return self._status

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get(self, name: str) -> HealthCheck:
        try:
            return self._checks[name]
        except KeyError:
            raise UnknownHealthCheckError(name) from None

    def _update_status(self) -> None:
        critical = {name for name, check in self._checks.items() if check.critical}
        previous = self._status
        self._status = aggregate_status(self._results, critical)
        if self._status is not previous:
            logger.info(
                "system_status_changed",
                previous=previous.value,
                status=self._status.value,
            )
            self.signals.publish(
                Signal.STATUS_CHANGE, status=self._status, previous=previous
            )
