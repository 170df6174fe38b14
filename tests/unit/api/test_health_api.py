"""Tests for the FastAPI health endpoints."""

from __future__ import annotations

from typing import TYPE_CHECKING

import pytest

pytest.importorskip("fastapi")
from fastapi import FastAPI
from fastapi.testclient import TestClient

from resilience_engine.api.health import create_app, create_health_router
from resilience_engine.config import Settings
from resilience_engine.engine import ResilienceEngine
from resilience_engine.health.models import HealthCheck, HealthStatus

if TYPE_CHECKING:
    from pathlib import Path

    from resilience_engine.health.monitor import HealthMonitor


def _check(name: str, healthy: bool, *, critical: bool = False) -> HealthCheck:
    async def run() -> HealthStatus:
        return HealthStatus(healthy=healthy, message="up" if healthy else "down")

    return HealthCheck(name=name, check=run, critical=critical)


def _client(monitor: HealthMonitor) -> TestClient:
    app = FastAPI()
    app.include_router(create_health_router(monitor))
    return TestClient(app)


def test_live_is_always_alive(monitor: HealthMonitor) -> None:
    monitor.add_check(_check("db", False, critical=True))
    with _client(monitor) as client:
        resp = client.get("/health/live")
    assert resp.status_code == 200
    assert resp.json() == {"status": "alive"}


def test_health_ok_when_healthy(monitor: HealthMonitor) -> None:
    monitor.add_check(_check("db", True, critical=True))
    with _client(monitor) as client:
        resp = client.get("/health")
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "healthy"
    assert body["version"] == "9.9.9"
    assert body["checks"]["db"]["healthy"] is True


def test_health_degraded_is_still_200(monitor: HealthMonitor) -> None:
    monitor.add_check(_check("db", True, critical=True))
    monitor.add_check(_check("disk", False))
    with _client(monitor) as client:
        resp = client.get("/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "degraded"


def test_health_unhealthy_is_503(monitor: HealthMonitor) -> None:
    monitor.add_check(_check("db", False, critical=True))
    with _client(monitor) as client:
        resp = client.get("/health")
    assert resp.status_code == 503
    assert resp.json()["status"] == "unhealthy"


def test_ready_reports_cached_status(monitor: HealthMonitor) -> None:
    monitor.add_check(_check("db", False, critical=True))
    with _client(monitor) as client:
        before = client.get("/health/ready")
        client.get("/health")
        after = client.get("/health/ready")

    assert before.status_code == 200
    assert before.json() == {"ready": True, "status": "healthy", "checks": []}
    assert after.status_code == 503
    assert after.json() == {
        "ready": False,
        "status": "unhealthy",
        "checks": [{"name": "db", "healthy": False, "message": "down"}],
    }


def test_create_app_lifespan(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.chdir(tmp_path)
    settings = Settings()
    engine = ResilienceEngine.from_settings(settings)
    engine.add_check(_check("db", True, critical=True))

    app = create_app(settings, engine=engine)
    with TestClient(app) as client:
        resp = client.get("/health")
        openapi = client.get("/openapi.json")

    assert resp.status_code == 200
    assert openapi.status_code == 200
    assert app.state.engine is engine
