"""Health monitoring exports."""

from resilience_engine.health.checks import (
    cpu_check,
    default_checks,
    disk_check,
    memory_check,
    probe_check,
)
from resilience_engine.health.models import (
    CheckResult,
    HealthCheck,
    HealthStatus,
    SystemHealth,
    SystemStatus,
    aggregate_status,
)
from resilience_engine.health.monitor import HealthMonitor

__all__ = [
    "CheckResult",
    "HealthCheck",
    "HealthMonitor",
    "HealthStatus",
    "SystemHealth",
    "SystemStatus",
    "aggregate_status",
    "cpu_check",
    "default_checks",
    "disk_check",
    "memory_check",
    "probe_check",
]
