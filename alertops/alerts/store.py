"""AlertStore — alert records, deduplication and suppression."""

from __future__ import annotations

import time
from collections.abc import Iterable
from typing import Any

import structlog

from alertops.core.config import AlertsConfig
from alertops.core.events import EventBus
from alertops.core.types import (
    Alert,
    AlertChannel,
    AlertCondition,
    AlertStatus,
    Clock,
    DeliveryDecision,
    EventType,
    Operator,
    Severity,
    SuppressionRule,
    new_id,
)
from alertops.notify.dispatcher import NotificationDispatcher

logger = structlog.get_logger(__name__)

_SOURCE = "alert_manager"


class AlertStore:
    """Creates and holds alerts; decides whether a new alert notifies.

    A new alert is always stored. It produces notifications only when it is
    neither suppressed nor a duplicate:

    - *suppressed*: an active, unexpired suppression rule matches it
      (``alert.rule_id == rule.id``, or — unless ``strict_suppression`` —
      the alert is critical);
    - *duplicate*: another active alert of the same rule was created within
      the deduplication window.

    Operations on unknown alert ids are silent no-ops returning None.
    """

    def __init__(
        self,
        dispatcher: NotificationDispatcher,
        bus: EventBus | None = None,
        config: AlertsConfig | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._dispatcher = dispatcher
        self._bus = bus or EventBus(clock)
        self._config = config or AlertsConfig()
        self._clock = clock
        self._alerts: dict[str, Alert] = {}
        self._suppressions: dict[str, SuppressionRule] = {}
        # Suppressions created by suppress_alert(), keyed to their alert.
        self._alert_suppressions: dict[str, str] = {}

    # ── Creation ────────────────────────────────────────────────

    def create_alert(
        self,
        name: str,
        description: str = "",
        severity: Severity = Severity.WARNING,
        rule_id: str | None = None,
        metric: str = "",
        value: float = 0.0,
        threshold: float = 0.0,
        channels: Iterable[AlertChannel] | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Alert:
        """Store a new active alert and queue its notifications if allowed."""
        now = self._clock()
        alert = Alert(
            id=new_id("alert"),
            rule_id=rule_id,
            name=name,
            description=description,
            severity=severity,
            status=AlertStatus.ACTIVE,
            timestamp=now,
            metric=metric,
            value=value,
            threshold=threshold,
            channels=list(channels or []),
            metadata=dict(metadata or {}),
        )

        active = sum(1 for a in self._alerts.values() if a.status == AlertStatus.ACTIVE)
        if active >= self._config.max_active_alerts:
            logger.warning(
                "max_active_alerts_reached",
                active=active,
                limit=self._config.max_active_alerts,
            )

        self._alerts[alert.id] = alert
        decision = self.delivery_decision(alert)
        if decision == DeliveryDecision.NOTIFY:
            self._dispatcher.enqueue(alert, alert.channels)

        logger.info(
            "alert_created",
            alert_id=alert.id,
            rule_id=rule_id,
            severity=severity.value,
            delivery=decision.value,
        )
        self._bus.emit(
            "alert_created",
            _SOURCE,
            subject_id=alert.id,
            event_type=EventType.ALERT,
            data={"alert": alert, "delivery": decision.value},
            tags={"alertId": alert.id, "severity": severity.value},
        )
        return alert

    def delivery_decision(self, alert: Alert) -> DeliveryDecision:
        if self.is_suppressed(alert):
            return DeliveryDecision.SUPPRESSED
        if self.is_duplicate(alert):
            return DeliveryDecision.DUPLICATE
        return DeliveryDecision.NOTIFY

    def is_duplicate(self, alert: Alert) -> bool:
        """Another active alert of the same rule inside the dedup window."""
        if alert.rule_id is None:
            return False
        window = self._config.deduplication_window_secs
        return any(
            other.id != alert.id
            and other.rule_id == alert.rule_id
            and other.status == AlertStatus.ACTIVE
            and alert.timestamp - other.timestamp < window
            for other in self._alerts.values()
        )

    def is_suppressed(self, alert: Alert) -> bool:
        now = self._clock()
        for rule in self._suppressions.values():
            if not rule.active:
                continue
            if rule.expired(now):
                rule.active = False
                continue
            if self._suppression_matches(rule, alert):
                return True
        return False

    def _suppression_matches(self, rule: SuppressionRule, alert: Alert) -> bool:
        if alert.rule_id is not None and alert.rule_id == rule.id:
            return True
        if alert.id in self._alert_suppressions and self._alert_suppressions[alert.id] == rule.id:
            return True
        # Historical behaviour: any live suppression also covers every
        # critical alert, regardless of the rule's scope.
        return not self._config.strict_suppression and alert.severity == Severity.CRITICAL

    # ── Transitions ─────────────────────────────────────────────

    def update_alert(self, alert_id: str, **changes: Any) -> Alert | None:
        alert = self._alerts.get(alert_id)
        if alert is None:
            return None
        unknown = sorted(set(changes) - set(Alert.model_fields))
        if unknown:
            logger.warning("alert_update_unknown_fields", alert_id=alert_id, fields=unknown)
        for field, value in changes.items():
            if field not in unknown:
                setattr(alert, field, value)
        alert.updated_at = self._clock()
        self._bus.emit(
            "alert_updated",
            _SOURCE,
            subject_id=alert_id,
            event_type=EventType.ALERT,
            data={"alert": alert},
            tags={"alertId": alert_id, "status": alert.status.value},
        )
        return alert

    def acknowledge_alert(
        self, alert_id: str, user: str, message: str | None = None,
    ) -> Alert | None:
        alert = self.update_alert(
            alert_id,
            status=AlertStatus.ACKNOWLEDGED,
            acknowledged_by=user,
            acknowledged_at=self._clock(),
        )
        if alert is not None:
            logger.info("alert_acknowledged", alert_id=alert_id, user=user, note=message)
        return alert

    def resolve_alert(
        self, alert_id: str, user: str | None = None, message: str | None = None,
    ) -> Alert | None:
        alert = self.update_alert(
            alert_id,
            status=AlertStatus.RESOLVED,
            resolved_by=user,
            resolved_at=self._clock(),
        )
        if alert is not None:
            logger.info("alert_resolved", alert_id=alert_id, user=user, note=message)
        return alert

    def suppress_alert(
        self, alert_id: str, duration: float, reason: str, user: str,
    ) -> SuppressionRule | None:
        """Mark the alert suppressed and open a self-expiring suppression."""
        alert = self.update_alert(alert_id, status=AlertStatus.SUPPRESSED)
        if alert is None:
            return None
        rule = SuppressionRule(
            id=f"suppression_{alert_id}",
            name=f"Suppression for {alert_id}",
            description=reason,
            condition=AlertCondition(metric="", operator=Operator.EQ, value=0),
            duration=duration,
            reason=reason,
            created_by=user,
            created_at=self._clock(),
        )
        self._suppressions[rule.id] = rule
        self._alert_suppressions[alert_id] = rule.id
        logger.info("alert_suppressed", alert_id=alert_id, duration=duration, user=user)
        return rule

    # ── Suppression rules ───────────────────────────────────────

    def create_suppression_rule(self, rule: SuppressionRule) -> SuppressionRule:
        self._suppressions[rule.id] = rule
        logger.info("suppression_rule_created", rule_id=rule.id, duration=rule.duration)
        self._emit_rule("suppression_rule_created", rule.id, {"rule": rule})
        return rule

    def remove_suppression_rule(self, rule_id: str) -> bool:
        rule = self._suppressions.pop(rule_id, None)
        if rule is None:
            return False
        logger.info("suppression_rule_removed", rule_id=rule_id)
        self._emit_rule("suppression_rule_removed", rule_id, {"rule": rule})
        return True

    def _emit_rule(self, action: str, rule_id: str, data: dict[str, Any]) -> None:
        self._bus.emit(
            action,
            _SOURCE,
            subject_id=rule_id,
            event_type=EventType.ALERT,
            data=data,
            tags={"ruleId": rule_id},
        )

    def get_suppression_rules(self, active_only: bool = False) -> list[SuppressionRule]:
        rules = list(self._suppressions.values())
        return [r for r in rules if r.active] if active_only else rules

    def expire_suppressions(self, now: float | None = None) -> list[str]:
        """Deactivate expired rules; drop those opened by suppress_alert().

        An alert whose own suppression lapses returns to ``active``.
        Returns the ids of rules deactivated by this call.
        """
        t = self._clock() if now is None else now
        expired: list[str] = []
        for rule in list(self._suppressions.values()):
            if rule.active and rule.expired(t):
                rule.active = False
                expired.append(rule.id)

        for alert_id, rule_id in list(self._alert_suppressions.items()):
            rule = self._suppressions.get(rule_id)
            if rule is not None and rule.active:
                continue
            self._suppressions.pop(rule_id, None)
            del self._alert_suppressions[alert_id]
            alert = self._alerts.get(alert_id)
            if alert is not None and alert.status == AlertStatus.SUPPRESSED:
                self.update_alert(alert_id, status=AlertStatus.ACTIVE)
        return expired

    # ── Queries & housekeeping ──────────────────────────────────

    def get_alert(self, alert_id: str) -> Alert | None:
        return self._alerts.get(alert_id)

    def get_alerts(self, status: AlertStatus | None = None) -> list[Alert]:
        alerts = list(self._alerts.values())
        return [a for a in alerts if a.status == status] if status else alerts

    def cleanup(self, now: float | None = None) -> list[str]:
        """Purge resolved alerts older than the retention period.

        Also sweeps expired suppression rules.
        """
        t = self._clock() if now is None else now
        self.expire_suppressions(t)
        cutoff = t - self._config.cleanup_after_secs
        purged = [
            a.id
            for a in self._alerts.values()
            if a.status == AlertStatus.RESOLVED
            and a.resolved_at is not None
            and a.resolved_at < cutoff
        ]
        for alert_id in purged:
            del self._alerts[alert_id]
            self._dispatcher.drop(alert_id)
        if purged:
            logger.info("alerts_purged", count=len(purged))
        return purged

    def summary(self) -> dict[str, object]:
        """Alert counts by status and severity plus delivery counts."""
        by_status = {s.value: 0 for s in AlertStatus}
        by_severity = {s.value: 0 for s in Severity}
        for alert in self._alerts.values():
            by_status[alert.status.value] += 1
            by_severity[alert.severity.value] += 1
        return {
            "total": len(self._alerts),
            "by_status": by_status,
            "by_severity": by_severity,
            "notifications": self._dispatcher.stats(),
            "active_suppressions": len(self.get_suppression_rules(active_only=True)),
        }
