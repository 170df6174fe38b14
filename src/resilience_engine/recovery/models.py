"""Models used by recovery orchestration."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from resilience_engine.circuit_breaker import CircuitBreakerSnapshot


class ErrorContext(BaseModel):
    """Origin of a failure, passed through call chains for correlation."""

    model_config = ConfigDict(frozen=True)

    service: str
    operation: str
    user_id: str | None = None
    organization_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)

    def extend(self, **metadata: Any) -> ErrorContext:
        """Return a copy whose metadata also carries ``metadata``."""
        return self.model_copy(update={"metadata": {**self.metadata, **metadata}})


@dataclass(frozen=True)
class RecoveryStrategy:
    """Named repair action applicable to a class of errors.

    ``recover`` should be idempotent: it may run once per failed retry
    attempt and again after the retries are exhausted.
    """

    name: str
    can_recover: Callable[[BaseException], bool]
    recover: Callable[[BaseException, ErrorContext], Awaitable[None]]


class RecoveryStatus(BaseModel):
    """Registry-level recovery telemetry."""

    strategies: list[str] = Field(default_factory=list)
    circuit_breakers: list[CircuitBreakerSnapshot] = Field(default_factory=list)
    error_counts: dict[str, int] = Field(default_factory=dict)
    recoveries_succeeded: int = Field(default=0, ge=0)
    recoveries_failed: int = Field(default=0, ge=0)
    uptime: float = Field(default=0.0, ge=0.0)
