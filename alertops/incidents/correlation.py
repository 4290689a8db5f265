"""CorrelationEngine — groups recent alerts into incidents.

Each run has two phases, both computed from an immutable snapshot of the
active alerts and then applied:

1. *Volume*: when enough recent alerts of one severity are active, extend
   the open incident that already references one of them, or open a new
   incident for the group.
2. *Rules*: each correlation rule picks the alerts that match one of its
   conditions; two or more matches trigger the rule's action (create a
   parent incident, merge incidents, or relate them).
"""

from __future__ import annotations

import time
from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from alertops.core.config import SeverityThresholds
from alertops.core.types import Alert, AlertQuery, AlertStatus, Clock, Severity
from alertops.incidents.manager import IncidentManager
from alertops.incidents.types import (
    CorrelationAction,
    CorrelationCondition,
    CorrelationRule,
    IncidentCategory,
    TimelineEntryType,
)

logger = structlog.get_logger(__name__)

_SYSTEM = "system"


def default_correlation_rules() -> list[CorrelationRule]:
    return [
        CorrelationRule(
            id="multiple_critical_alerts",
            name="Multiple Critical Alerts",
            description="Correlate multiple critical alerts within time window",
            conditions=[CorrelationCondition(severity=Severity.CRITICAL)],
            action=CorrelationAction.CREATE_PARENT,
            time_window=300,
        ),
        CorrelationRule(
            id="same_service_alerts",
            name="Same Service Alerts",
            description="Correlate alerts from the same service",
            conditions=[CorrelationCondition(severity=Severity.ERROR)],
            action=CorrelationAction.MERGE,
            time_window=600,
        ),
        CorrelationRule(
            id="performance_chain",
            name="Performance Chain",
            description="Correlate performance-related alerts",
            conditions=[CorrelationCondition(category="performance")],
            action=CorrelationAction.RELATE,
            time_window=900,
        ),
    ]


def condition_matches(condition: CorrelationCondition, alert: Alert) -> bool:
    if condition.alert_rule is not None and alert.rule_id != condition.alert_rule:
        return False
    if condition.severity is not None and alert.severity != condition.severity:
        return False
    if condition.category is not None and alert.metadata.get("category") != condition.category:
        return False
    if condition.service is not None and alert.metadata.get("service") != condition.service:
        return False
    return True


def rule_matches(rule: CorrelationRule, alert: Alert) -> bool:
    return any(condition_matches(c, alert) for c in rule.conditions)


# ── Plans ───────────────────────────────────────────────────────


@dataclass(frozen=True)
class VolumePlan:
    severity: Severity
    alert_ids: tuple[str, ...]
    rule_ids: tuple[str, ...]
    names: tuple[str, ...]


@dataclass(frozen=True)
class RulePlan:
    rule_id: str
    action: CorrelationAction
    alert_ids: tuple[str, ...]


def plan_volume(
    alerts: Sequence[Alert], thresholds: SeverityThresholds,
) -> VolumePlan | None:
    """First severity (critical, error, warning) whose count meets its threshold."""
    for severity, threshold in (
        (Severity.CRITICAL, thresholds.critical),
        (Severity.ERROR, thresholds.error),
        (Severity.WARNING, thresholds.warning),
    ):
        group = [a for a in alerts if a.severity == severity]
        if group and len(group) >= threshold:
            rule_ids = tuple(dict.fromkeys(a.rule_id or a.name for a in group))
            return VolumePlan(
                severity=severity,
                alert_ids=tuple(a.id for a in group),
                rule_ids=rule_ids,
                names=tuple(a.name for a in group),
            )
    return None


def plan_rule(rule: CorrelationRule, alerts: Sequence[Alert], now: float) -> RulePlan | None:
    matched = [
        a for a in alerts
        if now - a.timestamp < rule.time_window and rule_matches(rule, a)
    ]
    if len(matched) < 2:
        return None
    return RulePlan(rule_id=rule.id, action=rule.action, alert_ids=tuple(a.id for a in matched))


# ── Engine ──────────────────────────────────────────────────────


class CorrelationEngine:
    """Applies volume thresholds and correlation rules each tick."""

    def __init__(
        self,
        incidents: IncidentManager,
        alerts: AlertQuery,
        window_secs: float = 300.0,
        thresholds: SeverityThresholds | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._incidents = incidents
        self._alerts = alerts
        self._window_secs = window_secs
        self._thresholds = thresholds or SeverityThresholds()
        self._clock = clock
        self._rules: dict[str, CorrelationRule] = {}
        for rule in default_correlation_rules():
            self.create_rule(rule)

    # ── Rule CRUD ───────────────────────────────────────────────

    def create_rule(self, rule: CorrelationRule) -> CorrelationRule:
        self._rules[rule.id] = rule
        return rule

    def remove_rule(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    def get_rules(self) -> list[CorrelationRule]:
        return list(self._rules.values())

    # ── Running ─────────────────────────────────────────────────

    def snapshot(self, now: float) -> tuple[Alert, ...]:
        """Active alerts created inside the correlation window."""
        return tuple(
            a.model_copy()
            for a in self._alerts.get_alerts(AlertStatus.ACTIVE)
            if now - a.timestamp < self._window_secs
        )

    def run(self, now: float | None = None) -> list[RulePlan]:
        """Run both phases; returns the rule plans that were applied."""
        t = self._clock() if now is None else now

        volume = plan_volume(self.snapshot(t), self._thresholds)
        if volume is not None:
            self.apply_volume(volume)

        applied: list[RulePlan] = []
        for rule in list(self._rules.values()):
            plan = plan_rule(rule, self.snapshot(t), t)
            if plan is None:
                continue
            self.apply_rule(plan)
            applied.append(plan)
        return applied

    def apply_volume(self, plan: VolumePlan) -> str:
        """Extend an existing open incident or create one; returns its id."""
        existing = self._incidents.open_incidents_referencing(plan.alert_ids)
        if existing:
            target = existing[0]
            added = self._incidents.attach_alerts(target.id, plan.alert_ids)
            if added:
                logger.info("incident_extended", incident_id=target.id, added=added)
            return target.id

        prefix = "Critical" if plan.severity == Severity.CRITICAL else "Multiple"
        plural = "s" if len(plan.alert_ids) > 1 else ""
        incident = self._incidents.create_incident(
            title=f"{prefix} Alert{plural}: {', '.join(plan.rule_ids)}",
            description=f"Multiple {plan.severity.value} alerts detected: {', '.join(plan.names)}",
            severity=plan.severity,
            category=IncidentCategory.PERFORMANCE,
            alerts=list(plan.alert_ids),
            created_by=_SYSTEM,
        )
        return incident.id

    def apply_rule(self, plan: RulePlan) -> None:
        logger.info(
            "correlation_rule_matched",
            rule_id=plan.rule_id,
            action=plan.action.value,
            alerts=len(plan.alert_ids),
        )
        if plan.action == CorrelationAction.CREATE_PARENT:
            self._create_parent(plan.alert_ids)
        elif plan.action == CorrelationAction.MERGE:
            self._merge(plan.alert_ids)
        elif plan.action == CorrelationAction.RELATE:
            self._relate(plan.alert_ids)

    def _create_parent(self, alert_ids: Sequence[str]) -> None:
        self._incidents.create_incident(
            title="Multiple Related Alerts",
            description="Multiple related alerts detected requiring coordinated response",
            severity=Severity.ERROR,
            category=IncidentCategory.PERFORMANCE,
            alerts=list(alert_ids),
            created_by=_SYSTEM,
        )
        for alert_id in alert_ids:
            self._alerts.resolve_alert(alert_id, _SYSTEM, "Merged into parent incident")

    def _merge(self, alert_ids: Sequence[str]) -> None:
        related = self._incidents.open_incidents_referencing(alert_ids)
        if len(related) < 2:
            return
        primary, others = related[0], related[1:]
        for other in others:
            self._incidents.attach_alerts(primary.id, other.alerts)
            self._incidents.transfer_actions(other.id, primary.id)
            self._incidents.close_incident(other.id, _SYSTEM)
        self._incidents.add_timeline_entry(
            primary.id,
            TimelineEntryType.UPDATED,
            f"Merged {len(others)} related incident(s)",
            details={"merged_incidents": [o.id for o in others]},
        )
        logger.info("incidents_merged", primary=primary.id, merged=[o.id for o in others])

    def _relate(self, alert_ids: Sequence[str]) -> None:
        related = sorted(alert_ids)
        for incident in self._incidents.open_incidents_referencing(alert_ids):
            noted = [
                e for e in incident.timeline
                if e.details and "related_alerts" in e.details
            ]
            if noted and sorted(noted[-1].details["related_alerts"]) == related:
                continue
            self._incidents.add_timeline_entry(
                incident.id,
                TimelineEntryType.UPDATED,
                "Related alerts detected",
                details={"related_alerts": list(alert_ids)},
            )
