"""Incident analytics — MTTR, MTBF, recurring issues and a health score."""

from __future__ import annotations

import re
from collections import Counter
from collections.abc import Sequence

from alertops.core.types import Severity
from alertops.incidents.types import Incident, IncidentAnalytics, TimelineEntryType

_WEEK = 7 * 24 * 3600.0

_DIGITS = re.compile(r"\d+")
_SYSTEM_WORDS = re.compile(r"api|service|database")


def title_pattern(title: str) -> str:
    """Normalise a title so that recurring incidents share one pattern."""
    pattern = _DIGITS.sub("NUMBER", title.lower())
    return _SYSTEM_WORDS.sub("SYSTEM", pattern).lower()


def _resolution_times(incidents: Sequence[Incident]) -> list[float]:
    return [i.resolved_at - i.created_at for i in incidents if i.resolved_at is not None]


def _response_times(incidents: Sequence[Incident]) -> list[float]:
    """Creation to first assignment, for incidents that were assigned."""
    times: list[float] = []
    for incident in incidents:
        first = next(
            (e for e in incident.timeline if e.type == TimelineEntryType.ASSIGNED), None,
        )
        if first is not None:
            times.append(first.timestamp - incident.created_at)
    return times


def mean_time_between_failures(incidents: Sequence[Incident]) -> float:
    """Mean gap between consecutive resolution times; 0 with fewer than two."""
    resolved = sorted(i.resolved_at for i in incidents if i.resolved_at is not None)
    if len(resolved) < 2:
        return 0.0
    gaps = [b - a for a, b in zip(resolved, resolved[1:])]
    return sum(gaps) / len(gaps)


def recurring_issues(incidents: Sequence[Incident], min_count: int = 3) -> list[str]:
    counts = Counter(title_pattern(i.title) for i in incidents)
    return [pattern for pattern, n in counts.items() if n >= min_count]


def top_causes(incidents: Sequence[Incident], limit: int = 5) -> list[str]:
    counts = Counter(i.category.value for i in incidents)
    return [category for category, _ in counts.most_common(limit)]


def health_score(incidents: Sequence[Incident], now: float) -> float:
    recent = [i for i in incidents if now - i.created_at < _WEEK]
    critical = sum(1 for i in recent if i.severity == Severity.CRITICAL)
    score = 100 - 10 * critical - 2 * len(recent)
    return float(max(0, min(100, score)))


def compute_incident_analytics(incidents: Sequence[Incident], now: float) -> IncidentAnalytics:
    """Aggregate statistics over every known incident."""
    resolution = _resolution_times(incidents)
    response = _response_times(incidents)
    mttr = sum(resolution) / len(resolution) if resolution else 0.0
    return IncidentAnalytics(
        total_incidents=len(incidents),
        incidents_by_category=dict(Counter(i.category.value for i in incidents)),
        incidents_by_severity=dict(Counter(i.severity.value for i in incidents)),
        average_resolution_time=mttr,
        average_response_time=sum(response) / len(response) if response else 0.0,
        mttr=mttr,
        mtbf=mean_time_between_failures(incidents),
        recurring_issues=recurring_issues(incidents),
        top_causes=top_causes(incidents),
        system_health_score=health_score(incidents, now),
    )
