"""Core module — config, types, events, logging."""

from alertops.core.config import Settings, get_settings, load_settings, reset_settings
from alertops.core.events import EventBus
from alertops.core.exceptions import AlertOpsError, ConfigError
from alertops.core.logging import setup_logging
from alertops.core.types import (
    Alert,
    AlertChannel,
    AlertCondition,
    AlertNotification,
    AlertRule,
    AlertStatus,
    EscalationPolicy,
    MonitoringEvent,
    Severity,
    SuppressionRule,
)

__all__ = [
    "Alert",
    "AlertChannel",
    "AlertCondition",
    "AlertNotification",
    "AlertOpsError",
    "AlertRule",
    "AlertStatus",
    "ConfigError",
    "EscalationPolicy",
    "EventBus",
    "MonitoringEvent",
    "Settings",
    "Severity",
    "SuppressionRule",
    "get_settings",
    "load_settings",
    "reset_settings",
    "setup_logging",
]
