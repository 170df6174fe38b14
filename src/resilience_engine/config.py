"""Configuration with 4-layer resolution: defaults -> YAML -> env -> overrides.

Uses pydantic-settings with YamlConfigSettingsSource for layered configuration.
Supports ``.env`` file loading, ``RESILIENCE_ENGINE_`` prefixed env vars, and
nested delimiter ``__`` for overriding sub-model fields.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, ClassVar, Literal

from pydantic import BaseModel, Field, ValidationError
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)


# ---------------------------------------------------------------------------
# Sub-models
# ---------------------------------------------------------------------------


class RetrySettings(BaseModel):
    """Default retry/backoff policy applied to ``execute_with_recovery``."""

    max_attempts: int = Field(default=3, ge=1, le=20)
    initial_delay: float = Field(
        default=1.0, ge=0.0, description="Delay before the second attempt, seconds."
    )
    max_delay: float = Field(default=30.0, ge=0.0, description="Backoff cap, seconds.")
    backoff_factor: float = Field(default=2.0, ge=1.0)
    jitter: bool = True


class CircuitBreakerSettings(BaseModel):
    """Thresholds for the per-service circuit breakers."""

    failure_threshold: int = Field(default=5, ge=1, le=1000)
    recovery_timeout: float = Field(
        default=60.0,
        gt=0.0,
        description="Seconds an open circuit waits before allowing a probe call.",
    )
    monitoring_period: float = Field(
        default=120.0,
        gt=0.0,
        description="Seconds a recorded failure keeps counting toward the threshold.",
    )


class ErrorFrequencySettings(BaseModel):
    """Rolling error-frequency window used to raise threshold signals."""

    window_seconds: float = Field(default=300.0, gt=0.0)
    default_threshold: int = Field(default=10, ge=1)
    thresholds: dict[str, int] = Field(
        default_factory=dict,
        description="Per error-key overrides of the default threshold.",
    )


class HealthSettings(BaseModel):
    """Health monitor defaults and built-in check thresholds."""

    default_timeout: float = Field(
        default=10.0, gt=0.0, description="Per-check timeout in seconds."
    )
    memory_interval: float = Field(default=60.0, gt=0.0)
    memory_max_percent: float = Field(default=90.0, gt=0.0, le=100.0)
    cpu_interval: float = Field(default=60.0, gt=0.0)
    cpu_max_percent: float = Field(default=80.0, gt=0.0, le=100.0)
    disk_interval: float = Field(default=300.0, gt=0.0)
    disk_min_free_percent: float = Field(default=10.0, ge=0.0, le=100.0)
    disk_path: Path = Path("/")
    signal_history: int = Field(
        default=100, ge=1, le=10_000, description="Signals kept per signal name."
    )


class APISettings(BaseModel):
    """FastAPI health server settings."""

    host: str = "0.0.0.0"
    port: int = Field(default=8080, ge=1, le=65535)


class LoggingSettings(BaseModel):
    """Logging / observability configuration."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = "INFO"
    format: Literal["console", "json"] = "console"
    file: Path | None = None


# ---------------------------------------------------------------------------
# Main Settings (4-layer resolution)
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Top-level engine settings.

    Resolution order (last wins):
        1. Field defaults (defined above)
        2. YAML config file (``resilience.yaml`` or ``config_path``)
        3. Environment variables (prefixed ``RESILIENCE_ENGINE_``)
        4. Programmatic overrides passed to :meth:`load`
    """

    model_config = SettingsConfigDict(
        env_prefix="RESILIENCE_ENGINE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file="resilience.yaml",
        yaml_file_encoding="utf-8",
        extra="ignore",
    )

    _config_path_override: ClassVar[Path | None] = None

    retry: RetrySettings = Field(default_factory=RetrySettings)
    circuit_breaker: CircuitBreakerSettings = Field(
        default_factory=CircuitBreakerSettings
    )
    error_frequency: ErrorFrequencySettings = Field(
        default_factory=ErrorFrequencySettings
    )
    health: HealthSettings = Field(default_factory=HealthSettings)
    api: APISettings = Field(default_factory=APISettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Customise settings source priority.

        Resolution order (first = highest priority):
            init_settings > env_settings > dotenv (.env) > yaml > defaults

        Args:
            settings_cls: The settings class.
            init_settings: Init / programmatic overrides.
            env_settings: Environment variable source.
            dotenv_settings: Dotenv file source (.env).
            file_secret_settings: Secret file source (unused).

        Returns:
            Ordered tuple of settings sources (first = highest priority).
        """
        yaml_file = cls._config_path_override or settings_cls.model_config.get(
            "yaml_file", "resilience.yaml"
        )
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls, yaml_file=yaml_file),
        )

    @classmethod
    def load(cls, config_path: Path | None = None, **overrides: Any) -> Settings:
        """Load settings with optional config path and overrides.

        Args:
            config_path: Optional path to a YAML config file.
            **overrides: Key-value overrides applied at highest priority.

        Returns:
            Fully-resolved Settings instance.

        Raises:
            ValidationError: If any setting value fails validation.
        """
        cls._config_path_override = config_path
        try:
            return cls(**overrides)
        finally:
            cls._config_path_override = None


def format_validation_error(exc: ValidationError) -> str:
    """Format a Pydantic ValidationError into a user-friendly message.

    Args:
        exc: The validation error to format.

    Returns:
        A multi-line string with each error on its own line.
    """
    lines: list[str] = []
    for error in exc.errors():
        loc = " -> ".join(str(part) for part in error["loc"])
        msg = error["msg"]
        raw_input = error.get("input")
        if raw_input is not None:
            lines.append(f"  {loc}: {msg} (got {raw_input!r})")
        else:
            lines.append(f"  {loc}: {msg}")
    return "Configuration error:\n" + "\n".join(lines)
