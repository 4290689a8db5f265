"""End-to-end tests for AlertingService — metrics in, alerts, incidents and deliveries out."""

from __future__ import annotations

import asyncio

from alertops.alerts.source import InMemoryMetricSource
from alertops.core.config import AlertsConfig, SchedulerConfig, Settings
from alertops.core.types import (
    AlertChannel,
    AlertCondition,
    AlertNotification,
    AlertRule,
    AlertStatus,
    ChannelType,
    EmailChannelConfig,
    EscalationLevel,
    EscalationPolicy,
    MonitoringEvent,
    NotificationStatus,
    Operator,
    Severity,
    SuppressionRule,
)
from alertops.incidents.types import ActionType, IncidentStatus
from alertops.notify.channels import NotificationSink
from alertops.service import AlertingService


# ── Helpers ─────────────────────────────────────────────────────


class FakeClock:
    def __init__(self, t: float = 1_000_000.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t

    def advance(self, secs: float) -> None:
        self.t += secs


class FakeSink(NotificationSink):
    def __init__(self) -> None:
        self.sent: list[AlertNotification] = []
        self.closed = False

    async def send(self, notification: AlertNotification) -> bool:
        self.sent.append(notification)
        return True

    async def close(self) -> None:
        self.closed = True


EMAIL = AlertChannel(id="ops-email", config=EmailChannelConfig(address="ops@example.com"))


class Harness:
    def __init__(self, **alerts_cfg: object) -> None:
        self.clock = FakeClock()
        self.source = InMemoryMetricSource()
        self.sink = FakeSink()
        settings = Settings(
            alerts=AlertsConfig(channels=[EMAIL], **alerts_cfg),  # type: ignore[arg-type]
            scheduler=SchedulerConfig(tick_interval_secs=3600),
        )
        self.service = AlertingService(
            self.source, settings, sinks={ChannelType.EMAIL: self.sink}, clock=self.clock,
        )
        self.events: list[MonitoringEvent] = []
        self.service.add_event_listener(self.events.append)

    def record(self, metric: str, value: float) -> None:
        self.source.record(metric, value, timestamp=self.clock())

    def actions(self) -> list[str]:
        return [e.data["action"] for e in self.events]


# ── Alert pipeline ──────────────────────────────────────────────


class TestAlertPipeline:
    async def test_memory_breach_creates_one_critical_alert(self) -> None:
        h = Harness()
        h.record("memory_usage", 97.0)
        await h.service.tick()
        await h.service.wait_idle()

        (alert,) = h.service.get_alerts()
        assert alert.rule_id == "high_memory_usage"
        assert alert.severity == Severity.CRITICAL
        assert alert.value == 97.0
        assert alert.threshold == 90
        (note,) = h.service.get_notifications(alert.id)
        assert note.status == NotificationStatus.SENT
        assert note.channel.id == "ops-email"

    async def test_cooldown_prevents_repeat(self) -> None:
        h = Harness()
        h.record("memory_usage", 97.0)
        await h.service.tick()
        h.clock.advance(30)
        h.record("memory_usage", 98.0)
        await h.service.tick()
        assert len(h.service.get_alerts()) == 1
        rule = next(r for r in h.service.get_alert_rules() if r.id == "high_memory_usage")
        assert rule.trigger_count == 1

    async def test_no_breach_no_alert(self) -> None:
        h = Harness()
        h.record("memory_usage", 50.0)
        await h.service.tick()
        assert h.service.get_alerts() == []
        assert h.service.get_incidents() == []

    async def test_suppression_withholds_critical_notifications(self) -> None:
        h = Harness()
        h.service.create_suppression_rule(SuppressionRule(
            id="maintenance_window", duration=3600, created_at=h.clock(),
        ))
        h.record("memory_usage", 97.0)
        await h.service.tick()
        await h.service.wait_idle()

        (alert,) = h.service.get_alerts()
        assert h.service.get_notifications(alert.id) == []
        assert all(n.subject_id != alert.id for n in h.sink.sent)

    async def test_strict_suppression_only_matches_rule_id(self) -> None:
        h = Harness(strict_suppression=True)
        h.service.create_suppression_rule(SuppressionRule(
            id="maintenance_window", duration=3600, created_at=h.clock(),
        ))
        h.record("memory_usage", 97.0)
        await h.service.tick()
        (alert,) = h.service.get_alerts()
        assert len(h.service.get_notifications(alert.id)) == 1

    async def test_rules_disabled(self) -> None:
        h = Harness(enabled=False)
        h.record("memory_usage", 97.0)
        await h.service.tick()
        assert h.service.get_alerts() == []

    async def test_custom_rule_uses_its_own_channels(self) -> None:
        h = Harness(install_default_rules=False)
        pager = AlertChannel(id="pager", config=EmailChannelConfig(address="p@example.com"))
        h.service.create_alert_rule(AlertRule(
            id="queue_backlog",
            name="Queue Backlog",
            condition=AlertCondition(metric="queue_depth", operator=Operator.GTE, value=100),
            channels=[pager],
        ))
        h.record("queue_depth", 100.0)
        (alert,) = h.service.evaluate_rules()
        assert [c.id for c in alert.channels] == ["pager"]


# ── Incidents ───────────────────────────────────────────────────


class TestIncidentFlow:
    async def test_critical_alert_opens_incident_and_communicates(self) -> None:
        h = Harness()
        h.record("memory_usage", 97.0)
        await h.service.tick()
        (incident,) = h.service.get_incidents()
        assert incident.title == "Critical Alert: high_memory_usage"
        assert incident.status == IncidentStatus.OPEN
        assert incident.alerts == [a.id for a in h.service.get_alerts()]

        h.clock.advance(30)
        await h.service.tick()
        await h.service.wait_idle()
        messages = [n.message for n in h.sink.sent if n.subject_id == incident.id]
        assert len(messages) == 1
        assert messages[0].startswith("NEW INCIDENT: Critical Alert: high_memory_usage")

    async def test_escalation_policy_channels(self) -> None:
        h = Harness()
        h.service.create_escalation_policy(EscalationPolicy(
            id="default_escalation",
            levels=[EscalationLevel(level=1, timeout=300, channels=[EMAIL])],
        ))
        h.record("memory_usage", 97.0)
        await h.service.tick()
        (alert,) = h.service.get_alerts()

        h.clock.advance(301)
        await h.service.tick()
        levels = [n.escalation_level for n in h.service.get_notifications(alert.id)]
        assert levels == [None, 1]

    async def test_acknowledged_alert_not_escalated(self) -> None:
        h = Harness()
        h.service.create_escalation_policy(EscalationPolicy(
            id="default_escalation",
            levels=[EscalationLevel(level=1, timeout=300, channels=[EMAIL])],
        ))
        h.record("memory_usage", 97.0)
        await h.service.tick()
        (alert,) = h.service.get_alerts()
        h.service.acknowledge_alert(alert.id, "alice")

        h.clock.advance(301)
        await h.service.tick()
        assert len(h.service.get_notifications(alert.id)) == 1
        assert alert.status == AlertStatus.ACKNOWLEDGED


# ── Events & lifecycle ──────────────────────────────────────────


class TestEventsAndLifecycle:
    async def test_tick_emits_in_order(self) -> None:
        h = Harness()
        h.record("memory_usage", 97.0)
        await h.service.tick()
        assert h.actions() == ["alert_created", "incident_created", "metrics_updated"]
        metrics = h.events[-1].data
        assert metrics["alerts"]["total"] == 1
        assert metrics["analytics"].total_incidents == 1
        assert h.service.tick_count == 1

    async def test_start_and_stop(self) -> None:
        h = Harness()
        await h.service.start()
        assert h.service.running is True
        await asyncio.sleep(0)
        assert h.service.tick_count == 1
        await h.service.stop()
        assert h.service.running is False
        assert h.sink.closed is True

    async def test_context_manager(self) -> None:
        h = Harness()
        async with h.service as service:
            assert service.running is True
        assert h.service.running is False

    async def test_tick_errors_are_counted(self) -> None:
        h = Harness()

        def _boom(now: float | None = None) -> list[str]:
            raise RuntimeError("cleanup failed")

        h.service.alerts.cleanup = _boom  # type: ignore[method-assign]
        await h.service.start()
        await asyncio.sleep(0)
        await h.service.stop()
        assert h.service.error_count == 1
        assert h.service.tick_count == 0


# ── Facade ──────────────────────────────────────────────────────


class TestFacade:
    def test_incident_operations(self) -> None:
        h = Harness()
        svc = h.service
        inc = svc.create_incident(title="Disk pressure")
        action = svc.add_action(inc.id, ActionType.MITIGATION, "Rotate logs", "bob")
        assert action is not None
        svc.start_action(inc.id, action.id)
        svc.complete_action(inc.id, action.id, "rotated")
        assert action.result == "rotated"
        svc.assign_incident(inc.id, "bob")
        svc.resolve_incident(inc.id, "fixed", "bob")
        svc.close_incident(inc.id, "bob")
        assert svc.get_incident(inc.id).status == IncidentStatus.CLOSED  # type: ignore[union-attr]
        assert [t.id for t in svc.get_incident_templates()] == [
            "api_service_outage", "performance_degradation", "database_issue",
        ]

    def test_channel_registry(self) -> None:
        h = Harness()
        svc = h.service
        assert [c.id for c in svc.get_channels()] == ["ops-email"]
        svc.update_channel("ops-email", enabled=False)
        alert = svc.create_alert(name="Manual page", severity=Severity.WARNING)
        assert svc.get_notifications(alert.id) == []
        assert svc.remove_channel("ops-email") is True
        assert svc.get_channels() == []

    def test_configuration_changes_emit_events(self) -> None:
        h = Harness()
        svc = h.service
        svc.create_alert_rule(AlertRule(
            id="queue_backlog",
            name="Queue Backlog",
            condition=AlertCondition(metric="queue_depth", operator=Operator.GTE, value=100),
        ))
        svc.update_alert_rule("queue_backlog", cooldown=60)
        svc.delete_alert_rule("queue_backlog")
        svc.delete_alert_rule("queue_backlog")
        svc.add_channel(AlertChannel(id="pager", config=EmailChannelConfig()))
        svc.update_channel("pager", enabled=False)
        svc.update_channel("missing", enabled=False)
        svc.remove_channel("pager")
        svc.create_escalation_policy(EscalationPolicy(
            id="night", levels=[EscalationLevel(level=1, timeout=300)],
        ))
        svc.update_escalation_policy("night", name="Night shift")
        svc.create_suppression_rule(SuppressionRule(id="maintenance", duration=600))
        svc.remove_suppression_rule("maintenance")
        assert h.actions() == [
            "rule_created",
            "rule_updated",
            "rule_deleted",
            "channel_added",
            "channel_updated",
            "channel_removed",
            "escalation_policy_created",
            "escalation_policy_updated",
            "suppression_rule_created",
            "suppression_rule_removed",
        ]
        assert h.events[0].tags == {"ruleId": "queue_backlog"}
        assert h.events[0].source == "alert_manager"

    def test_incident_mutations_emit_events(self) -> None:
        h = Harness()
        svc = h.service
        inc = svc.create_incident(title="Disk pressure")
        action = svc.add_action(inc.id, ActionType.MITIGATION, "Rotate logs", "bob")
        assert action is not None
        svc.complete_action(inc.id, action.id, "rotated")
        svc.assign_incident(inc.id, "bob")
        assert h.actions() == [
            "incident_created", "action_added", "action_completed", "incident_assigned",
        ]
        assert all(e.tags["incidentId"] == inc.id for e in h.events)
