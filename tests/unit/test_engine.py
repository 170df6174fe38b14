"""Unit tests for resilience_engine.engine - the composition root."""

from __future__ import annotations

from pathlib import Path

import pytest

from resilience_engine.config import Settings
from resilience_engine.engine import ResilienceEngine
from resilience_engine.health.models import HealthCheck, HealthStatus, SystemStatus
from resilience_engine.recovery.models import ErrorContext
from resilience_engine.recovery.strategies import LoggingRecoveryHooks
from resilience_engine.signals import Signal


@pytest.fixture()
def settings(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Settings:
    monkeypatch.chdir(tmp_path)
    return Settings.load(
        retry={"initial_delay": 0.0, "max_delay": 0.0, "jitter": False},
        circuit_breaker={"failure_threshold": 4},
        health={"signal_history": 5},
    )


class TestFromSettings:
    def test_installs_default_strategies(self, settings: Settings) -> None:
        engine = ResilienceEngine.from_settings(settings)
        assert engine.registry.strategies == [
            "database-recovery",
            "redis-recovery",
            "api-recovery",
            "memory-recovery",
            "task-recovery",
        ]
        assert engine.monitor.checks == []

    def test_optional_default_checks(self, settings: Settings) -> None:
        engine = ResilienceEngine.from_settings(
            settings, install_default_strategies=False, install_default_checks=True
        )
        assert engine.registry.strategies == []
        assert engine.monitor.checks == ["memory", "cpu", "disk"]

    def test_components_share_signal_bus(self, settings: Settings) -> None:
        engine = ResilienceEngine.from_settings(settings)
        assert engine.registry.signals is engine.signals
        assert engine.monitor.signals is engine.signals

    def test_breakers_use_configured_threshold(self, settings: Settings) -> None:
        engine = ResilienceEngine.from_settings(settings)
        breaker = engine.registry.breakers.get("db")
        assert breaker.failure_threshold == 4


class TestFacade:
    @pytest.mark.asyncio
    async def test_execute_with_recovery_uses_default_strategies(
        self, settings: Settings
    ) -> None:
        class Hooks(LoggingRecoveryHooks):
            reconnects = 0

            async def reconnect_database(self) -> None:
                Hooks.reconnects += 1

        engine = ResilienceEngine.from_settings(settings, hooks=Hooks())
        calls = {"count": 0}

        async def query() -> str:
            calls["count"] += 1
            if calls["count"] == 1:
                raise ConnectionError("connect ECONNREFUSED 10.0.0.5:5432")
            return "row"

        result = await engine.execute_with_recovery(
            query, ErrorContext(service="orders-db", operation="select")
        )

        assert result == "row"
        assert Hooks.reconnects == 1
        assert engine.signals.count(Signal.RECOVERY_SUCCESS) == 1

    @pytest.mark.asyncio
    async def test_health_round_trip(self, settings: Settings) -> None:
        engine = ResilienceEngine.from_settings(settings)

        async def ok() -> HealthStatus:
            return HealthStatus(healthy=True)

        engine.add_check(HealthCheck(name="db", check=ok, critical=True))
        engine.start()

        health = await engine.check_health()

        assert health.status is SystemStatus.HEALTHY
        assert engine.get_status().checks.keys() == {"db"}
        engine.stop()
        await engine.aclose()

    @pytest.mark.asyncio
    async def test_handle_error_without_match(self, settings: Settings) -> None:
        engine = ResilienceEngine.from_settings(settings)
        recovered = await engine.handle_error(
            ValueError("bad input"), ErrorContext(service="api", operation="parse")
        )
        assert recovered is False
