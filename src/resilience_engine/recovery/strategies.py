"""Default recovery strategies and the hooks they drive.

Each strategy pairs an error predicate with an idempotent repair action.
The actions never talk to a datastore directly; they call a
``RecoveryHooks`` implementation supplied by the service that owns the
dependency. ``LoggingRecoveryHooks`` is the inert default.
"""

from __future__ import annotations

import gc
import re
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import structlog

from resilience_engine.recovery.models import RecoveryStrategy

if TYPE_CHECKING:
    from collections.abc import Iterable

    from resilience_engine.recovery.models import ErrorContext

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

_DATABASE_MARKERS = ("ECONNREFUSED", "Connection lost", "PROTOCOL_CONNECTION_LOST")
_API_MARKERS = ("ETIMEDOUT", "ENOTFOUND")
_SERVER_STATUS = re.compile(r"status code 5\d\d")
_MEMORY_MARKERS = ("out of memory", "heap out of memory")
_TASK_MARKERS = ("Task failed", "Agent error")
_REDIS_PORT = "6379"


@runtime_checkable
class RecoveryHooks(Protocol):
    """Repair actions implemented by the owners of each dependency."""

    async def reconnect_database(self) -> None: ...

    async def clear_database_pool(self) -> None: ...

    async def verify_database_connection(self) -> None: ...

    async def reconnect_cache(self) -> None: ...

    async def switch_to_backup_endpoint(self, endpoint: str) -> None: ...

    async def clear_api_cache(self, endpoint: str | None) -> None: ...

    async def clear_all_caches(self) -> None: ...

    async def reduce_worker_pool_size(self) -> None: ...

    async def mark_task_for_retry(self, task_id: str) -> None: ...

    async def reassign_task(self, task_id: str) -> None: ...


class LoggingRecoveryHooks:
    """Hooks that only log; used until a service installs real ones."""

    async def reconnect_database(self) -> None:
        logger.info("reconnecting_database")

    async def clear_database_pool(self) -> None:
        logger.info("clearing_database_pool")

    async def verify_database_connection(self) -> None:
        logger.info("verifying_database_connection")

    async def reconnect_cache(self) -> None:
        logger.info("reconnecting_cache")

    async def switch_to_backup_endpoint(self, endpoint: str) -> None:
        logger.info("switching_to_backup_endpoint", endpoint=endpoint)

    async def clear_api_cache(self, endpoint: str | None) -> None:
        logger.info("clearing_api_cache", endpoint=endpoint)

    async def clear_all_caches(self) -> None:
        logger.info("clearing_all_caches")

    async def reduce_worker_pool_size(self) -> None:
        logger.info("reducing_worker_pool_size")

    async def mark_task_for_retry(self, task_id: str) -> None:
        logger.info("marking_task_for_retry", task_id=task_id)

    async def reassign_task(self, task_id: str) -> None:
        logger.info("reassigning_task", task_id=task_id)


# ---------------------------------------------------------------------------
# Predicates
# ---------------------------------------------------------------------------


def _mentions_any(error: BaseException, markers: Iterable[str]) -> bool:
    message = str(error)
    return any(marker in message for marker in markers)


def is_database_error(error: BaseException) -> bool:
    return _mentions_any(error, _DATABASE_MARKERS)


def is_cache_error(error: BaseException) -> bool:
    message = str(error)
    return "Redis connection" in message or (
        "ECONNREFUSED" in message and _REDIS_PORT in message
    )


def is_upstream_api_error(error: BaseException) -> bool:
    return _mentions_any(error, _API_MARKERS) or bool(_SERVER_STATUS.search(str(error)))


def is_memory_error(error: BaseException) -> bool:
    return isinstance(error, MemoryError) or _mentions_any(error, _MEMORY_MARKERS)


def is_task_error(error: BaseException) -> bool:
    return _mentions_any(error, _TASK_MARKERS)


# ---------------------------------------------------------------------------
# Strategies
# ---------------------------------------------------------------------------


def default_strategies(hooks: RecoveryHooks | None = None) -> list[RecoveryStrategy]:
    """Build the stock strategies in their registration order.

    Args:
        hooks: Repair actions to drive; defaults to ``LoggingRecoveryHooks``.

    Returns:
        Strategies for datastore, cache, upstream API, memory and task
        failures.
    """
    actions: RecoveryHooks = hooks or LoggingRecoveryHooks()

    async def recover_database(error: BaseException, context: ErrorContext) -> None:
        logger.info("attempting_database_recovery", error=str(error))
        await actions.reconnect_database()
        await actions.clear_database_pool()
        await actions.verify_database_connection()

    async def recover_cache(error: BaseException, context: ErrorContext) -> None:
        logger.info("attempting_cache_recovery", error=str(error))
        await actions.reconnect_cache()

    async def recover_api(error: BaseException, context: ErrorContext) -> None:
        endpoint = context.metadata.get("endpoint")
        logger.info("attempting_api_recovery", error=str(error), endpoint=endpoint)
        if endpoint:
            await actions.switch_to_backup_endpoint(str(endpoint))
        await actions.clear_api_cache(str(endpoint) if endpoint else None)

    async def recover_memory(error: BaseException, context: ErrorContext) -> None:
        logger.warning("attempting_memory_recovery", error=str(error))
        gc.collect()
        await actions.clear_all_caches()
        await actions.reduce_worker_pool_size()

    async def recover_task(error: BaseException, context: ErrorContext) -> None:
        task_id = context.metadata.get("task_id")
        logger.info("attempting_task_recovery", error=str(error), task_id=task_id)
        if task_id:
            await actions.mark_task_for_retry(str(task_id))
            await actions.reassign_task(str(task_id))

    return [
        RecoveryStrategy("database-recovery", is_database_error, recover_database),
        RecoveryStrategy("redis-recovery", is_cache_error, recover_cache),
        RecoveryStrategy("api-recovery", is_upstream_api_error, recover_api),
        RecoveryStrategy("memory-recovery", is_memory_error, recover_memory),
        RecoveryStrategy("task-recovery", is_task_error, recover_task),
    ]
