"""Domain types for alerting — rules, alerts, channels, notifications, events."""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from enum import StrEnum
from typing import Annotated, Any, Literal, Protocol

from pydantic import BaseModel, Field, SecretStr

# Returns the current wall-clock time in epoch seconds.
Clock = Callable[[], float]


def new_id(prefix: str) -> str:
    """Return a short unique id such as ``alert_3f9c1a2b7d4e``."""
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


class Severity(StrEnum):
    """Alert / incident severity."""

    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK: dict[Severity, int] = {
    Severity.INFO: 0,
    Severity.WARNING: 1,
    Severity.ERROR: 2,
    Severity.CRITICAL: 3,
}


# ── Metrics & rules ─────────────────────────────────────────────


class MetricSample(BaseModel):
    """A single timestamped metric observation."""

    timestamp: float
    value: float


class Operator(StrEnum):
    """Comparison operator for a rule condition."""

    GT = "gt"
    GTE = "gte"
    LT = "lt"
    LTE = "lte"
    EQ = "eq"
    NE = "ne"


class Aggregation(StrEnum):
    """Reduction applied to the metric window before comparison."""

    AVG = "avg"
    MAX = "max"
    MIN = "min"
    SUM = "sum"
    COUNT = "count"


class AlertCondition(BaseModel):
    """Threshold condition evaluated against a metric window."""

    metric: str
    operator: Operator
    value: float
    duration: float | None = None  # seconds; None/0 means whole history
    aggregation: Aggregation | None = None


# ── Channels ────────────────────────────────────────────────────


class ChannelType(StrEnum):
    """Notification channel kind."""

    EMAIL = "email"
    SLACK = "slack"
    WEBHOOK = "webhook"
    SMS = "sms"
    PAGERDUTY = "pagerduty"


class EmailChannelConfig(BaseModel):
    type: Literal["email"] = "email"
    address: str = ""


class SlackChannelConfig(BaseModel):
    type: Literal["slack"] = "slack"
    webhook_url: SecretStr = SecretStr("")
    channel: str = ""


class WebhookChannelConfig(BaseModel):
    type: Literal["webhook"] = "webhook"
    url: SecretStr = SecretStr("")


class SmsChannelConfig(BaseModel):
    type: Literal["sms"] = "sms"
    phone_number: str = ""
    provider: str = ""


class PagerDutyChannelConfig(BaseModel):
    type: Literal["pagerduty"] = "pagerduty"
    service_key: SecretStr = SecretStr("")
    escalation_policy: str = ""


ChannelConfig = Annotated[
    EmailChannelConfig
    | SlackChannelConfig
    | WebhookChannelConfig
    | SmsChannelConfig
    | PagerDutyChannelConfig,
    Field(discriminator="type"),
]


class AlertChannel(BaseModel):
    """A configured delivery destination."""

    id: str
    name: str = ""
    enabled: bool = True
    config: ChannelConfig

    @property
    def type(self) -> ChannelType:
        return ChannelType(self.config.type)


class AlertRule(BaseModel):
    """Threshold rule evaluated on every scheduler tick."""

    id: str
    name: str
    description: str = ""
    condition: AlertCondition
    severity: Severity = Severity.WARNING
    channels: list[AlertChannel] = Field(default_factory=list)
    enabled: bool = True
    cooldown: float = 0.0
    last_triggered: float | None = None
    trigger_count: int = 0

    def in_cooldown(self, now: float) -> bool:
        """True while ``now`` is before ``last_triggered + cooldown``."""
        if self.last_triggered is None:
            return False
        return now - self.last_triggered < self.cooldown


# ── Alerts ──────────────────────────────────────────────────────


class AlertStatus(StrEnum):
    """Lifecycle status of an alert."""

    ACTIVE = "active"
    ACKNOWLEDGED = "acknowledged"
    RESOLVED = "resolved"
    SUPPRESSED = "suppressed"


class Alert(BaseModel):
    """One instance of a rule condition (or manual trigger) becoming true."""

    id: str
    rule_id: str | None = None
    name: str
    description: str = ""
    severity: Severity = Severity.WARNING
    status: AlertStatus = AlertStatus.ACTIVE
    timestamp: float = Field(default_factory=time.time)
    metric: str = ""
    value: float = 0.0
    threshold: float = 0.0
    channels: list[AlertChannel] = Field(default_factory=list)
    acknowledged_by: str | None = None
    acknowledged_at: float | None = None
    resolved_by: str | None = None
    resolved_at: float | None = None
    updated_at: float | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class SuppressionRule(BaseModel):
    """Temporary override withholding notifications for matching alerts."""

    id: str
    name: str = ""
    description: str = ""
    condition: AlertCondition | None = None
    duration: float
    reason: str = ""
    created_by: str = "system"
    created_at: float = Field(default_factory=time.time)
    active: bool = True

    def expired(self, now: float) -> bool:
        return now - self.created_at > self.duration


class DeliveryDecision(StrEnum):
    """Outcome of the notification gate for a newly created alert."""

    NOTIFY = "notify"
    DUPLICATE = "duplicate"
    SUPPRESSED = "suppressed"


# ── Notifications ───────────────────────────────────────────────


class NotificationStatus(StrEnum):
    PENDING = "pending"
    SENT = "sent"
    FAILED = "failed"
    DELIVERED = "delivered"


class AlertNotification(BaseModel):
    """A single (subject, channel) delivery with its retry state.

    ``subject_id`` is the alert id, or the incident id for incident
    communications (in which case ``alert`` is None).
    """

    id: str = Field(default_factory=lambda: new_id("notif"))
    subject_id: str
    alert: Alert | None = None
    channel: AlertChannel
    message: str
    status: NotificationStatus = NotificationStatus.PENDING
    attempt: int = 0
    max_attempts: int = 3
    timestamp: float = Field(default_factory=time.time)
    next_attempt: float | None = None
    error: str | None = None
    escalation_level: int | None = None

    @property
    def key(self) -> tuple[str, str, int]:
        """In-flight guard key: subject + channel + attempt."""
        return (self.subject_id, self.channel.id, self.attempt)


# ── Escalation ──────────────────────────────────────────────────


class EscalationLevel(BaseModel):
    level: int
    timeout: float  # seconds since alert creation
    targets: list[str] = Field(default_factory=list)
    channels: list[AlertChannel] = Field(default_factory=list)


class EscalationPolicy(BaseModel):
    """Ordered response tiers; levels are kept ascending by timeout."""

    id: str
    name: str = ""
    description: str = ""
    levels: list[EscalationLevel] = Field(default_factory=list)
    repeat_interval: float = 3600.0
    max_escalations: int = 3


# ── Events ──────────────────────────────────────────────────────


class EventType(StrEnum):
    METRIC = "metric"
    HEALTH = "health"
    ALERT = "alert"
    INCIDENT = "incident"
    CUSTOM = "custom"


class MonitoringEvent(BaseModel):
    """Mutation notice delivered to event listeners (live dashboards)."""

    id: str
    type: EventType = EventType.CUSTOM
    source: str
    timestamp: float = Field(default_factory=time.time)
    data: dict[str, Any] = Field(default_factory=dict)
    tags: dict[str, str] = Field(default_factory=dict)


# ── Cross-module interfaces ─────────────────────────────────────


class AlertQuery(Protocol):
    """What the incident side needs from the alert store."""

    def get_alerts(self, status: AlertStatus | None = None) -> list[Alert]: ...

    def resolve_alert(
        self, alert_id: str, user: str | None = None, message: str | None = None,
    ) -> Alert | None: ...
