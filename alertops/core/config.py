"""Pydantic settings loaded from YAML configuration."""

from __future__ import annotations

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, SecretStr, ValidationError

from alertops.core.exceptions import ConfigError
from alertops.core.types import AlertChannel

_settings: Settings | None = None

_DEFAULT_CONFIG_PATH = Path("config/settings.yaml")


class AlertsConfig(BaseModel):
    """Alert store, deduplication and delivery configuration."""

    enabled: bool = True
    max_active_alerts: int = 1000
    deduplication_window_secs: float = 300.0
    escalation_enabled: bool = True
    default_escalation_policy: str = "default_escalation"
    # False keeps the historical behaviour where any active suppression
    # rule also withholds every critical alert.
    strict_suppression: bool = False
    install_default_rules: bool = True
    cleanup_after_secs: float = 7 * 24 * 3600.0
    max_attempts: int = 3
    retry_base_secs: float = 30.0
    channels: list[AlertChannel] = []


class EscalationConfig(BaseModel):
    """Alert escalation configuration."""

    alert_age_threshold_secs: float = 300.0
    # True re-sends the current level on every tick while the alert stays
    # active past the threshold.
    repeat_every_tick: bool = True


class SeverityThresholds(BaseModel):
    """Active-alert counts that open an incident, per severity."""

    critical: int = 1
    error: int = 3
    warning: int = 5


class IncidentsConfig(BaseModel):
    """Incident lifecycle and correlation configuration."""

    auto_create_enabled: bool = True
    auto_assign_enabled: bool = True
    escalation_enabled: bool = True
    communication_enabled: bool = True
    post_mortem_enabled: bool = True
    default_assignee: str | None = None
    communication_channels: list[str] = ["slack", "email"]
    severity_thresholds: SeverityThresholds = SeverityThresholds()
    correlation_window_secs: float = 300.0
    action_delay_secs: float = 5.0


class SchedulerConfig(BaseModel):
    """Tick loop configuration."""

    tick_interval_secs: float = 30.0


class ApiConfig(BaseModel):
    """Status HTTP API configuration."""

    enabled: bool = False
    host: str = "127.0.0.1"
    port: int = 8080
    auth_username: str = ""
    auth_password: SecretStr = SecretStr("")


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: str = "INFO"
    format: str = "json"


class Settings(BaseModel):
    """Root settings container."""

    alerts: AlertsConfig = AlertsConfig()
    escalation: EscalationConfig = EscalationConfig()
    incidents: IncidentsConfig = IncidentsConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    api: ApiConfig = ApiConfig()
    logging: LoggingConfig = LoggingConfig()


def load_settings(path: str | Path | None = None) -> Settings:
    """Load settings from a YAML file and cache globally.

    Args:
        path: Path to YAML config. Defaults to config/settings.yaml.

    Returns:
        Parsed Settings instance.

    Raises:
        ConfigError: The file exists but does not describe valid settings.
    """
    global _settings  # noqa: PLW0603

    config_path = Path(path) if path else _DEFAULT_CONFIG_PATH

    data: dict[str, Any] = {}
    if config_path.exists():
        with open(config_path) as f:
            raw = yaml.safe_load(f)
            if isinstance(raw, dict):
                data = raw

    try:
        _settings = Settings(**data)
    except ValidationError as exc:
        raise ConfigError(f"invalid settings in {config_path}: {exc}") from exc
    return _settings


def get_settings() -> Settings:
    """Return the cached settings, loading defaults if not yet loaded."""
    global _settings  # noqa: PLW0603
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Reset the cached settings (useful for testing)."""
    global _settings  # noqa: PLW0603
    _settings = None
