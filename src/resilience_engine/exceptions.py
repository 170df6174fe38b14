"""Centralized exception hierarchy for the resilience-engine package.

All synthetic failures raised by the engine inherit from ``ResilienceError``
so callers can catch the entire family with a single ``except`` clause.
Errors raised by wrapped operations are never converted into this family;
they propagate unchanged or travel as ``__cause__``.
"""

from __future__ import annotations


class ResilienceError(Exception):
    """Base exception for all resilience-engine errors."""


# ---------------------------------------------------------------------------
# Circuit breaker errors
# ---------------------------------------------------------------------------


class CircuitOpenError(ResilienceError):
    """Raised when an open circuit sheds a call without invoking it."""

    def __init__(self, key: str = "", retry_after: float | None = None) -> None:
        self.key = key
        self.retry_after = retry_after
        target = f" for '{key}'" if key else ""
        super().__init__(f"Circuit breaker is open{target}")


# ---------------------------------------------------------------------------
# Retry errors
# ---------------------------------------------------------------------------


class RetryExhaustedError(ResilienceError):
    """Raised when an operation still fails after every allowed attempt."""

    def __init__(self, attempts: int, last_error: BaseException) -> None:
        self.attempts = attempts
        self.last_error = last_error
        super().__init__(
            f"Function failed after {attempts} attempts. Last error: {last_error}"
        )


# ---------------------------------------------------------------------------
# Health errors
# ---------------------------------------------------------------------------


class HealthCheckTimeoutError(ResilienceError):
    """Raised when a health check overruns its timeout."""

    def __init__(self, name: str, timeout: float) -> None:
        self.name = name
        self.timeout = timeout
        super().__init__(f"Health check timeout after {timeout:g}s")


class UnhealthyServiceError(ResilienceError):
    """Reported to the recovery registry when a critical check fails."""

    def __init__(self, check_name: str, message: str | None = None) -> None:
        self.check_name = check_name
        super().__init__(message or "Service unhealthy")


class UnknownHealthCheckError(ResilienceError, KeyError):
    """Raised when a health check name is not registered."""

    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Unknown health check: {name!r}")

    def __str__(self) -> str:
        return str(self.args[0])
