"""Decorators that route coroutine functions through recovery or fallbacks."""

from __future__ import annotations

import functools
import inspect
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING, Any, ParamSpec, TypeVar

import structlog

from resilience_engine.recovery.models import ErrorContext

if TYPE_CHECKING:
    from resilience_engine.recovery.registry import RecoveryRegistry

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

T = TypeVar("T")
P = ParamSpec("P")


def auto_recover(
    registry: RecoveryRegistry,
    *,
    service: str | None = None,
    operation: str | None = None,
    **retry_overrides: Any,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Run every call of the decorated coroutine through ``execute_with_recovery``.

    The context's service defaults to the function's module and its
    operation to the function's qualified name.
    """

    def decorator(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        context = ErrorContext(
            service=service or fn.__module__,
            operation=operation or fn.__qualname__,
        )

        @functools.wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            return await registry.execute_with_recovery(
                lambda: fn(*args, **kwargs), context, **retry_overrides
            )

        return wrapper

    return decorator


def graceful_degradation(
    fallback: Any = None,
) -> Callable[[Callable[P, Awaitable[T]]], Callable[P, Awaitable[T]]]:
    """Return ``fallback`` instead of raising when the decorated coroutine fails.

    A callable fallback is invoked as ``fallback(error, *args, **kwargs)``;
    if it returns an awaitable, that is awaited.
    """

    def decorator(fn: Callable[P, Awaitable[T]]) -> Callable[P, Awaitable[T]]:
        @functools.wraps(fn)
        async def wrapper(*args: P.args, **kwargs: P.kwargs) -> T:
            try:
                return await fn(*args, **kwargs)
            except Exception as exc:
                logger.warning(
                    "using_fallback",
                    method=fn.__qualname__,
                    error=str(exc),
                )
                if not callable(fallback):
                    return fallback
                value = fallback(exc, *args, **kwargs)
                if inspect.isawaitable(value):
                    return await value
                return value

        return wrapper

    return decorator
