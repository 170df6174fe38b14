"""Recovery orchestration exports."""

from resilience_engine.recovery.decorators import auto_recover, graceful_degradation
from resilience_engine.recovery.frequency import ErrorFrequencyCounter, error_key_for
from resilience_engine.recovery.models import ErrorContext, RecoveryStatus, RecoveryStrategy
from resilience_engine.recovery.registry import RecoveryRegistry
from resilience_engine.recovery.strategies import (
    LoggingRecoveryHooks,
    RecoveryHooks,
    default_strategies,
)

__all__ = [
    "ErrorContext",
    "ErrorFrequencyCounter",
    "LoggingRecoveryHooks",
    "RecoveryHooks",
    "RecoveryRegistry",
    "RecoveryStatus",
    "RecoveryStrategy",
    "auto_recover",
    "default_strategies",
    "error_key_for",
    "graceful_degradation",
]
