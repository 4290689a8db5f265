"""Post-mortem generation for resolved incidents."""

from __future__ import annotations

import datetime

from alertops.core.types import Severity
from alertops.incidents.types import (
    ActionType,
    Incident,
    IncidentCategory,
    PostMortem,
    PostMortemAction,
)

_DAY = 24 * 3600.0

_ROOT_CAUSES: dict[IncidentCategory, str] = {
    IncidentCategory.INFRASTRUCTURE: "Infrastructure-related issue identified",
    IncidentCategory.DEPLOYMENT: "Recent deployment may have caused the issue",
}


def _clock_time(ts: float) -> str:
    return datetime.datetime.fromtimestamp(ts, datetime.UTC).strftime("%H:%M:%S")


def timeline_summary(incident: Incident) -> str:
    """One ``HH:MM:SS: message (user)`` line per timeline entry, oldest first."""
    entries = sorted(incident.timeline, key=lambda e: e.timestamp)
    return "\n".join(f"{_clock_time(e.timestamp)}: {e.message} ({e.user})" for e in entries)


def root_cause(incident: Incident) -> str:
    if incident.root_cause:
        return incident.root_cause
    return _ROOT_CAUSES.get(incident.category, "Root cause analysis in progress")


def lessons_learned(incident: Incident) -> list[str]:
    lessons: list[str] = []
    if incident.severity == Severity.CRITICAL:
        lessons.append("Critical incidents require faster response times")
        lessons.append("Improve monitoring and alerting for critical systems")
    if any(a.type == ActionType.INVESTIGATION for a in incident.actions):
        lessons.append("Standardize investigation procedures")
    lessons.append("Document incident response procedures")
    return lessons


def action_items(now: float) -> list[PostMortemAction]:
    return [
        PostMortemAction(
            id="review_monitoring",
            description="Review and improve monitoring coverage",
            assignee="operations",
            due_date=now + 7 * _DAY,
        ),
        PostMortemAction(
            id="update_runbook",
            description="Update incident response runbook",
            assignee="engineering",
            due_date=now + 3 * _DAY,
        ),
    ]


def generate_post_mortem(incident: Incident, now: float, author: str = "system") -> PostMortem:
    """Build the post-mortem document for a resolved incident.

    An explicitly recorded ``root_cause`` wins over the category guess.
    """
    impact = incident.impact
    return PostMortem(
        summary=f"Analysis of {incident.title}",
        timeline=timeline_summary(incident),
        root_cause=root_cause(incident),
        impact=(
            f"Affected {impact.affected_users} users with "
            f"{impact.business_impact.value} business impact"
        ),
        resolution=incident.resolution or "No resolution documented",
        lessons_learned=tuple(lessons_learned(incident)),
        action_items=tuple(action_items(now)),
        created_at=now,
        author=author,
    )
