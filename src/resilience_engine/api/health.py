"""FastAPI health endpoints backed by a ``HealthMonitor``."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING, Any

import structlog
from fastapi import APIRouter, FastAPI
from fastapi.responses import JSONResponse

from resilience_engine import __version__
from resilience_engine.config import Settings
from resilience_engine.engine import ResilienceEngine
from resilience_engine.health.models import SystemStatus

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

    from resilience_engine.health.monitor import HealthMonitor

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)


def _http_status(status: SystemStatus) -> int:
    return 503 if status is SystemStatus.UNHEALTHY else 200


def create_health_router(monitor: HealthMonitor) -> APIRouter:
    """Build the ``/health`` routes for ``monitor``.

    ``/health`` runs the on-demand checks, ``/health/ready`` reports the
    cached status only, and ``/health/live`` never touches the monitor.
    """
    router = APIRouter(prefix="/health", tags=["health"])

    @router.get("")
    async def health() -> JSONResponse:
        snapshot = await monitor.check_health()
        return JSONResponse(
            content=snapshot.model_dump(mode="json"),
            status_code=_http_status(snapshot.status),
        )

    @router.get("/live")
    async def live() -> dict[str, str]:
        return {"status": "alive"}

    @router.get("/ready")
    async def ready() -> JSONResponse:
        snapshot = monitor.get_status()
        body: dict[str, Any] = {
            "ready": snapshot.status is not SystemStatus.UNHEALTHY,
            "status": snapshot.status.value,
            "checks": [
                {"name": name, "healthy": result.healthy, "message": result.message}
                for name, result in snapshot.checks.items()
            ],
        }
        return JSONResponse(content=body, status_code=_http_status(snapshot.status))

    return router


def create_app(
    settings: Settings | None = None,
    engine: ResilienceEngine | None = None,
) -> FastAPI:
    """Create the health server app.

    Without an explicit ``engine`` one is built from ``settings`` with the
    built-in host resource checks installed. Periodic checks run for the
    lifetime of the app.
    """
    app_settings = settings or Settings.load()
    app_engine = engine or ResilienceEngine.from_settings(
        app_settings, install_default_checks=True
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI) -> AsyncIterator[None]:
        app_engine.start()
        logger.info("health_server_started", checks=app_engine.monitor.checks)
        try:
            yield
        finally:
            await app_engine.aclose()

    app = FastAPI(title="resilience-engine health", version=__version__, lifespan=lifespan)
    app.state.settings = app_settings
    app.state.engine = app_engine
    app.include_router(create_health_router(app_engine.monitor))
    return app
