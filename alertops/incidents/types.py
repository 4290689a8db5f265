"""Incident domain types — incidents, actions, templates, correlation, post-mortems."""

from __future__ import annotations

import time
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from alertops.core.types import Severity, new_id


class IncidentStatus(StrEnum):
    """Lifecycle status; progresses open → in_progress → resolved → closed."""

    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"

    @property
    def rank(self) -> int:
        return list(IncidentStatus).index(self)


class IncidentCategory(StrEnum):
    PERFORMANCE = "performance"
    AVAILABILITY = "availability"
    SECURITY = "security"
    DATA = "data"
    INFRASTRUCTURE = "infrastructure"
    DEPLOYMENT = "deployment"
    USER_ERROR = "user_error"


class ImpactScope(StrEnum):
    SYSTEM = "system"
    SERVICE = "service"
    FEATURE = "feature"
    USER = "user"


class BusinessImpact(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class IncidentImpact(BaseModel):
    scope: ImpactScope = ImpactScope.SYSTEM
    affected_users: int = 0
    business_impact: BusinessImpact = BusinessImpact.MEDIUM
    sla_breach: bool = False


class TimelineEntryType(StrEnum):
    CREATED = "created"
    UPDATED = "updated"
    ASSIGNED = "assigned"
    ESCALATED = "escalated"
    RESOLVED = "resolved"
    CLOSED = "closed"
    COMMENT = "comment"


class IncidentTimelineEntry(BaseModel):
    """Append-only record of something that happened to an incident."""

    model_config = ConfigDict(frozen=True)

    timestamp: float
    type: TimelineEntryType
    message: str
    user: str = "system"
    details: dict[str, Any] | None = None


class ActionType(StrEnum):
    INVESTIGATION = "investigation"
    MITIGATION = "mitigation"
    RESOLUTION = "resolution"
    COMMUNICATION = "communication"


class ActionStatus(StrEnum):
    """Strictly forward: pending → in_progress → completed."""

    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class IncidentAction(BaseModel):
    id: str = Field(default_factory=lambda: new_id("action"))
    type: ActionType
    description: str
    assigned_to: str = "system"
    status: ActionStatus = ActionStatus.PENDING
    created_at: float = Field(default_factory=time.time)
    completed_at: float | None = None
    result: str | None = None


class PostMortemAction(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    description: str
    assignee: str
    due_date: float
    status: ActionStatus = ActionStatus.PENDING


class PostMortem(BaseModel):
    """Generated once, on first resolution; never replaced."""

    model_config = ConfigDict(frozen=True)

    summary: str
    timeline: str
    root_cause: str
    impact: str
    resolution: str
    lessons_learned: tuple[str, ...]
    action_items: tuple[PostMortemAction, ...]
    created_at: float
    author: str = "system"


class Incident(BaseModel):
    id: str = Field(default_factory=lambda: new_id("incident"))
    title: str = "Untitled Incident"
    description: str = "No description provided"
    severity: Severity = Severity.ERROR
    status: IncidentStatus = IncidentStatus.OPEN
    impact: IncidentImpact = Field(default_factory=IncidentImpact)
    category: IncidentCategory = IncidentCategory.PERFORMANCE
    created_by: str = "system"
    created_at: float = Field(default_factory=time.time)
    updated_at: float = Field(default_factory=time.time)
    resolved_at: float | None = None
    closed_at: float | None = None
    assignee: str | None = None
    alerts: list[str] = Field(default_factory=list)
    timeline: list[IncidentTimelineEntry] = Field(default_factory=list)
    actions: list[IncidentAction] = Field(default_factory=list)
    root_cause: str | None = None
    resolution: str | None = None
    post_mortem: PostMortem | None = None
    template_id: str | None = None

    @property
    def is_open(self) -> bool:
        """Open or in progress."""
        return self.status in (IncidentStatus.OPEN, IncidentStatus.IN_PROGRESS)

    def get_action(self, action_id: str) -> IncidentAction | None:
        return next((a for a in self.actions if a.id == action_id), None)


class AutoAction(BaseModel):
    """Action blueprint cloned onto incidents that match a template."""

    id: str
    type: ActionType
    description: str
    assigned_to: str = "system"


class IncidentTemplate(BaseModel):
    id: str
    name: str
    keywords: list[str] = Field(default_factory=list)
    category: IncidentCategory
    description: str = ""
    impact: IncidentImpact = Field(default_factory=IncidentImpact)
    severity: Severity = Severity.ERROR
    auto_actions: list[AutoAction] = Field(default_factory=list)
    communication_template: str = ""
    investigation_steps: list[str] = Field(default_factory=list)


# ── Correlation ─────────────────────────────────────────────────


class CorrelationAction(StrEnum):
    MERGE = "merge"
    RELATE = "relate"
    CREATE_PARENT = "create_parent"


class CorrelationCondition(BaseModel):
    """Every constraint that is set must match; unset ones are ignored.

    ``category`` and ``service`` are compared against the alert's metadata.
    """

    alert_rule: str | None = None
    severity: Severity | None = None
    category: str | None = None
    service: str | None = None


class CorrelationRule(BaseModel):
    id: str
    name: str = ""
    description: str = ""
    conditions: list[CorrelationCondition] = Field(default_factory=list)
    action: CorrelationAction
    time_window: float = 300.0


# ── Analytics ───────────────────────────────────────────────────


class IncidentAnalytics(BaseModel):
    total_incidents: int = 0
    incidents_by_category: dict[str, int] = Field(default_factory=dict)
    incidents_by_severity: dict[str, int] = Field(default_factory=dict)
    average_resolution_time: float = 0.0
    average_response_time: float = 0.0
    mttr: float = 0.0
    mtbf: float = 0.0
    recurring_issues: list[str] = Field(default_factory=list)
    top_causes: list[str] = Field(default_factory=list)
    system_health_score: float = 100.0
