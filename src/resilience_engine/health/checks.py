"""Built-in health checks: dependency probes and host resource checks."""

from __future__ import annotations

import asyncio
import shutil
import time
from collections.abc import Awaitable, Callable
from typing import TYPE_CHECKING

import psutil

from resilience_engine.health.models import HealthCheck, HealthStatus

if TYPE_CHECKING:
    from pathlib import Path

    from resilience_engine.config import HealthSettings


def probe_check(
    name: str,
    probe: Callable[[], Awaitable[object]],
    *,
    critical: bool = False,
    interval: float | None = None,
    timeout: float | None = None,
    label: str | None = None,
) -> HealthCheck:
    """Wrap a connectivity probe (``SELECT 1``, ``PING``...) as a health check.

    The probe succeeding means healthy; any exception it raises becomes an
    unhealthy status carrying the error message.
    """
    display = label or name.capitalize()

    async def run() -> HealthStatus:
        started = time.monotonic()
        try:
            await probe()
        except Exception as exc:
            return HealthStatus(
                healthy=False,
                message=f"{display} error: {exc}",
                details={"error": str(exc)},
            )
        return HealthStatus(
            healthy=True,
            latency=time.monotonic() - started,
            message=f"{display} connection is healthy",
        )

    return HealthCheck(
        name=name, check=run, critical=critical, interval=interval, timeout=timeout
    )


def memory_check(max_percent: float = 90.0, interval: float | None = 60.0) -> HealthCheck:
    """Unhealthy when system memory usage exceeds ``max_percent``."""

    async def run() -> HealthStatus:
        memory = psutil.virtual_memory()
        details = {"percent": memory.percent, "used": memory.used, "total": memory.total}
        if memory.percent > max_percent:
            return HealthStatus(
                healthy=False,
                message=f"High memory usage: {memory.percent:.2f}%",
                details=details,
            )
        return HealthStatus(
            healthy=True, message=f"Memory usage: {memory.percent:.2f}%", details=details
        )

    return HealthCheck(name="memory", check=run, interval=interval)


def cpu_check(
    max_percent: float = 80.0,
    interval: float | None = 60.0,
    sample_seconds: float = 0.5,
) -> HealthCheck:
    """Unhealthy when CPU utilisation over a short sample exceeds ``max_percent``."""

    async def run() -> HealthStatus:
        percent = await asyncio.to_thread(psutil.cpu_percent, sample_seconds)
        details = {"percent": percent, "cpu_count": psutil.cpu_count()}
        if percent > max_percent:
            return HealthStatus(
                healthy=False, message=f"High CPU usage: {percent:.2f}%", details=details
            )
        return HealthStatus(
            healthy=True, message=f"CPU usage: {percent:.2f}%", details=details
        )

    return HealthCheck(name="cpu", check=run, interval=interval)


def disk_check(
    path: Path | str = "/",
    min_free_percent: float = 10.0,
    interval: float | None = 300.0,
) -> HealthCheck:
    """Unhealthy when free space on ``path`` drops below ``min_free_percent``."""

    async def run() -> HealthStatus:
        usage = await asyncio.to_thread(shutil.disk_usage, path)
        available = usage.free / usage.total * 100 if usage.total else 0.0
        details = {
            "available_percent": round(available, 2),
            "total": usage.total,
            "free": usage.free,
        }
        if available < min_free_percent:
            return HealthStatus(
                healthy=False,
                message=f"Low disk space: {available:.2f}% available",
                details=details,
            )
        return HealthStatus(
            healthy=True,
            message=f"Disk space: {available:.2f}% available",
            details=details,
        )

    return HealthCheck(name="disk", check=run, interval=interval)


def default_checks(settings: HealthSettings) -> list[HealthCheck]:
    """Host resource checks configured from ``settings``."""
    return [
        memory_check(settings.memory_max_percent, settings.memory_interval),
        cpu_check(settings.cpu_max_percent, settings.cpu_interval),
        disk_check(
            settings.disk_path, settings.disk_min_free_percent, settings.disk_interval
        ),
    ]
