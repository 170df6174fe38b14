"""Health check definitions and aggregate health models."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field


class SystemStatus(StrEnum):
    """Aggregate status across all health checks."""

    HEALTHY = "healthy"
    DEGRADED = "degraded"
    UNHEALTHY = "unhealthy"


_STATUS_SCORES = {
    SystemStatus.HEALTHY: 1.0,
    SystemStatus.DEGRADED: 0.5,
    SystemStatus.UNHEALTHY: 0.0,
}


class HealthStatus(BaseModel):
    """Outcome of one health check execution."""

    healthy: bool
    message: str | None = None
    latency: float | None = Field(default=None, ge=0.0, description="Seconds.")
    details: Any = None


class CheckResult(HealthStatus):
    """A ``HealthStatus`` stamped with when the check ran."""

    last_checked_at: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))


@dataclass(frozen=True)
class HealthCheck:
    """A named dependency probe.

    A truthy ``interval`` (seconds) makes the monitor run the check on its
    own schedule; otherwise it runs on demand from ``check_health``.
    ``timeout`` falls back to the monitor's default when None and must
    otherwise be positive.
    """

    name: str
    check: Callable[[], Awaitable[HealthStatus]]
    critical: bool = False
    interval: float | None = None
    timeout: float | None = None

    def __post_init__(self) -> None:
        if self.timeout is not None and self.timeout <= 0:
            raise ValueError(f"Health check {self.name!r} timeout must be positive")
        if self.interval is not None and self.interval < 0:
            raise ValueError(f"Health check {self.name!r} interval must not be negative")


class SystemHealth(BaseModel):
    """Aggregate snapshot of every check's latest result."""

    status: SystemStatus
    checks: dict[str, CheckResult] = Field(default_factory=dict)
    uptime: float = Field(ge=0.0)
    version: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(tz=UTC))

    @property
    def status_score(self) -> float:
        """Gauge value: 1.0 healthy, 0.5 degraded, 0.0 unhealthy."""
        return _STATUS_SCORES[self.status]


def aggregate_status(
    results: dict[str, CheckResult], critical: set[str]
) -> SystemStatus:
    """Derive the system status from the latest result of each check.

    Args:
        results: Latest result per check name; checks never run are absent.
        critical: Names of checks whose failure makes the system unhealthy.

    Returns:
        ``unhealthy`` if any critical check is unhealthy, else ``degraded``
        if any check is unhealthy, else ``healthy``.
    """
    if any(not results[name].healthy for name in critical if name in results):
        return SystemStatus.UNHEALTHY
    if any(not result.healthy for result in results.values()):
        return SystemStatus.DEGRADED
    return SystemStatus.HEALTHY
