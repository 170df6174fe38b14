"""Retry executor with exponential backoff for async operations.

``retry`` runs an operation up to ``max_attempts`` times, consulting a
retry predicate and the backoff calculator between attempts and invoking
an ``on_retry`` observer before each sleep. When every attempt fails a
``RetryExhaustedError`` carrying the attempt count and the last error is
raised; non-retryable errors propagate unchanged.
"""

from __future__ import annotations

import asyncio
import functools
import inspect
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field

from resilience_engine.backoff import compute_delay
from resilience_engine.exceptions import RetryExhaustedError

if TYPE_CHECKING:
    from resilience_engine.config import RetrySettings

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

T = TypeVar("T")
P = ParamSpec("P")

RetryCondition = Callable[[BaseException], bool]
RetryObserver = Callable[[BaseException, int], Awaitable[None] | None]

TRANSIENT_ERROR_MARKERS: tuple[str, ...] = (
    "ECONNRESET",
    "ENOTFOUND",
    "ECONNREFUSED",
    "ETIMEDOUT",
    "TIMEOUT",
    "NETWORK_ERROR",
    "SERVER_ERROR",
)

_NETWORK_ERROR_MARKERS: tuple[str, ...] = ("ECONNRESET", "ENOTFOUND", "ETIMEDOUT")
_SERVER_ERROR_CODES: tuple[str, ...] = ("500", "502", "503", "504")


def _error_mentions(error: BaseException, markers: tuple[str, ...]) -> bool:
    message = str(error)
    name = type(error).__name__
    return any(marker in message or marker in name for marker in markers)


def is_transient_error(error: BaseException) -> bool:
    """Default retry predicate for network, timeout and server failures."""
    if isinstance(error, (ConnectionError, TimeoutError)):
        return True
    return _error_mentions(error, TRANSIENT_ERROR_MARKERS)


def is_retryable_http_error(error: BaseException) -> bool:
    """Retry predicate for HTTP calls: network failures and 5xx responses."""
    if _error_mentions(error, _NETWORK_ERROR_MARKERS):
        return True
    message = str(error)
    return any(code in message for code in _SERVER_ERROR_CODES)


# ---------------------------------------------------------------------------
# Options
# ---------------------------------------------------------------------------


class RetryOptions(BaseModel):
    """Immutable retry policy for a single ``retry`` call."""

    model_config = ConfigDict(frozen=True, arbitrary_types_allowed=True)

    max_attempts: int = Field(default=3, ge=1)
    initial_delay: float = Field(default=1.0, ge=0.0)
    max_delay: float = Field(default=30.0, ge=0.0)
    backoff_factor: float = Field(default=2.0, ge=1.0)
    jitter: bool = True
    retry_condition: RetryCondition | None = is_transient_error
    on_retry: RetryObserver | None = None

    @classmethod
    def from_settings(cls, settings: RetrySettings) -> RetryOptions:
        """Build options from the configured default retry policy."""
        return cls(
            max_attempts=settings.max_attempts,
            initial_delay=settings.initial_delay,
            max_delay=settings.max_delay,
            backoff_factor=settings.backoff_factor,
            jitter=settings.jitter,
        )

    def merge(self, **overrides: Any) -> RetryOptions:
        """Return a validated copy with ``overrides`` applied."""
        if not overrides:
            return self
        return type(self).model_validate({**dict(self), **overrides})


DEFAULT_RETRY_OPTIONS = RetryOptions()


# ---------------------------------------------------------------------------
# Executor
# ---------------------------------------------------------------------------


async def retry(
    operation: Callable[[], Awaitable[T]],
    options: RetryOptions | None = None,
    **overrides: Any,
) -> T:
    """Run ``operation`` with retries and exponential backoff.

    Args:
        operation: Zero-argument coroutine factory, invoked once per attempt.
        options: Base retry options (defaults to ``DEFAULT_RETRY_OPTIONS``).
        **overrides: Per-call overrides of individual ``RetryOptions`` fields.

    Returns:
        The first successful result of ``operation``.

    Raises:
        RetryExhaustedError: If every attempt failed.
        BaseException: The original error when the retry predicate rejects
            it, or when it is a cancellation or interpreter exit.
    """
    opts = (options or DEFAULT_RETRY_OPTIONS).merge(**overrides)
    last_error: BaseException | None = None

    for attempt in range(1, opts.max_attempts + 1):
        try:
            return await operation()
        except Exception as exc:
            last_error = exc

            if attempt == opts.max_attempts:
                break

            if opts.retry_condition is not None and not opts.retry_condition(exc):
                logger.debug(
                    "retry_condition_rejected",
                    attempt=attempt,
                    error_type=type(exc).__name__,
                )
                raise

            delay = compute_delay(attempt, opts)
            logger.info(
                "retrying_operation",
                attempt=attempt,
                max_attempts=opts.max_attempts,
                delay=round(delay, 3),
                error=str(exc),
            )

            if opts.on_retry is not None:
                outcome = opts.on_retry(exc, attempt)
                if inspect.isawaitable(outcome):
                    await outcome

            await asyncio.sleep(delay)

    assert last_error is not None
    logger.warning(
        "retry_exhausted",
        attempts=opts.max_attempts,
        error_type=type(last_error).__name__,
        error=str(last_error),
    )
    raise RetryExhaustedError(opts.max_attempts, last_error) from last_error


# ---------------------------------------------------------------------------
# Preset strategies
# ---------------------------------------------------------------------------


async def retry_with_linear_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    delay: float = 1.0,
) -> T:
    """Retry with a constant ``delay`` between attempts."""
    return await retry(
        operation,
        max_attempts=max_attempts,
        initial_delay=delay,
        max_delay=delay,
        backoff_factor=1.0,
        jitter=False,
    )


async def retry_with_exponential_backoff(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
    initial_delay: float = 1.0,
) -> T:
    """Retry with doubling, jittered delays capped at 30 seconds."""
    return await retry(
        operation,
        max_attempts=max_attempts,
        initial_delay=initial_delay,
        max_delay=30.0,
        backoff_factor=2.0,
        jitter=True,
    )


async def retry_on_specific_errors(
    operation: Callable[[], Awaitable[T]],
    retryable_error_codes: list[str],
    max_attempts: int = 3,
) -> T:
    """Retry only errors whose message or type name contains one of the codes."""
    codes = tuple(retryable_error_codes)
    return await retry(
        operation,
        max_attempts=max_attempts,
        retry_condition=lambda error: _error_mentions(error, codes),
    )


async def retry_http_request(
    operation: Callable[[], Awaitable[T]],
    max_attempts: int = 3,
) -> T:
    """Retry an HTTP call on network errors and 500/502/503/504 responses."""
    return await retry(
        operation,
        max_attempts=max_attempts,
        retry_condition=is_retryable_http_error,
    )


def retryable(
    options: RetryOptions | None = None, **overrides: Any
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Decorate a coroutine function so every call goes through ``retry``.

    Example::

        @retryable(max_attempts=5, initial_delay=0.2)
        async def fetch_profile(user_id: str) -> dict[str, Any]:
            ...
    """

    def decorator(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await retry(lambda: fn(*args, **kwargs), options, **overrides)

        return wrapper

    return decorator
