"""Tests for post-mortem generation."""

from __future__ import annotations

from alertops.core.types import Severity
from alertops.incidents.postmortem import (
    generate_post_mortem,
    lessons_learned,
    root_cause,
    timeline_summary,
)
from alertops.incidents.types import (
    ActionType,
    Incident,
    IncidentAction,
    IncidentCategory,
    IncidentImpact,
    IncidentTimelineEntry,
    TimelineEntryType,
)

DAY = 24 * 3600.0


def _incident(**kw: object) -> Incident:
    data: dict[str, object] = {
        "title": "Disk pressure",
        "created_at": 0.0,
        "timeline": [
            IncidentTimelineEntry(
                timestamp=3_725.0, type=TimelineEntryType.RESOLVED, message="Resolved: ok",
                user="bob",
            ),
            IncidentTimelineEntry(
                timestamp=0.0, type=TimelineEntryType.CREATED, message="Incident created",
            ),
        ],
    }
    data.update(kw)
    return Incident(**data)  # type: ignore[arg-type]


class TestSections:
    def test_timeline_sorted_and_formatted(self) -> None:
        assert timeline_summary(_incident()) == (
            "00:00:00: Incident created (system)\n01:02:05: Resolved: ok (bob)"
        )

    def test_root_cause_by_category(self) -> None:
        assert root_cause(_incident(category=IncidentCategory.INFRASTRUCTURE)) == (
            "Infrastructure-related issue identified"
        )
        assert root_cause(_incident(category=IncidentCategory.DEPLOYMENT)) == (
            "Recent deployment may have caused the issue"
        )
        assert root_cause(_incident()) == "Root cause analysis in progress"

    def test_recorded_root_cause_wins(self) -> None:
        inc = _incident(category=IncidentCategory.DEPLOYMENT, root_cause="Bad config push")
        assert root_cause(inc) == "Bad config push"

    def test_lessons_for_critical_with_investigation(self) -> None:
        inc = _incident(
            severity=Severity.CRITICAL,
            actions=[IncidentAction(type=ActionType.INVESTIGATION, description="look")],
        )
        assert lessons_learned(inc) == [
            "Critical incidents require faster response times",
            "Improve monitoring and alerting for critical systems",
            "Standardize investigation procedures",
            "Document incident response procedures",
        ]

    def test_lessons_minimal(self) -> None:
        assert lessons_learned(_incident()) == ["Document incident response procedures"]


class TestGenerate:
    def test_document(self) -> None:
        inc = _incident(
            resolution="Expanded volume",
            impact=IncidentImpact(affected_users=250),
        )
        pm = generate_post_mortem(inc, now=10_000.0)
        assert pm.summary == "Analysis of Disk pressure"
        assert pm.impact == "Affected 250 users with medium business impact"
        assert pm.resolution == "Expanded volume"
        assert pm.created_at == 10_000.0
        assert pm.author == "system"
        assert [a.id for a in pm.action_items] == ["review_monitoring", "update_runbook"]
        assert pm.action_items[0].due_date == 10_000.0 + 7 * DAY
        assert pm.action_items[1].due_date == 10_000.0 + 3 * DAY

    def test_missing_resolution(self) -> None:
        pm = generate_post_mortem(_incident(), now=0.0)
        assert pm.resolution == "No resolution documented"
        assert len(pm.action_items) == 2
