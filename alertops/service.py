"""AlertingService — composition root and scheduler for the alerting pipeline."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Mapping
from types import TracebackType
from typing import Any

import structlog

from alertops.alerts.rules import RuleEngine, compare, default_rules
from alertops.alerts.source import MetricSource
from alertops.alerts.store import AlertStore
from alertops.core.config import Settings
from alertops.core.events import EventBus, EventCallback
from alertops.core.types import (
    Alert,
    AlertChannel,
    AlertNotification,
    AlertRule,
    AlertStatus,
    ChannelType,
    Clock,
    EscalationPolicy,
    SuppressionRule,
)
from alertops.escalation.engine import EscalationEngine
from alertops.incidents.correlation import CorrelationEngine
from alertops.incidents.manager import IncidentManager
from alertops.incidents.types import (
    ActionType,
    Incident,
    IncidentAction,
    IncidentAnalytics,
    IncidentStatus,
    IncidentTemplate,
    IncidentTimelineEntry,
    TimelineEntryType,
)
from alertops.notify.channels import NotificationSink, default_sinks
from alertops.notify.dispatcher import NotificationDispatcher

logger = structlog.get_logger(__name__)

_SOURCE = "alert_manager"


class AlertingService:
    """Wires every component together and runs the periodic tick.

    Usage::

        source = InMemoryMetricSource()
        service = AlertingService(source, settings)
        async with service:
            source.record("memory_usage", 97.0)
            ...

    ``tick()`` can also be awaited directly, which is how tests drive time.
    """

    def __init__(
        self,
        metric_source: MetricSource,
        settings: Settings | None = None,
        sinks: Mapping[ChannelType | str, NotificationSink] | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._settings = settings or Settings()
        self._clock = clock
        alerts_cfg = self._settings.alerts
        incidents_cfg = self._settings.incidents

        self.events = EventBus(clock)
        self.dispatcher = NotificationDispatcher(
            sinks=default_sinks() if sinks is None else sinks,
            channels=alerts_cfg.channels,
            max_attempts=alerts_cfg.max_attempts,
            retry_base_secs=alerts_cfg.retry_base_secs,
            clock=clock,
        )
        self.rules = RuleEngine(metric_source, clock)
        self.alerts = AlertStore(self.dispatcher, self.events, alerts_cfg, clock)
        self.escalation = EscalationEngine(
            self.dispatcher,
            self._settings.escalation,
            default_policy_id=alerts_cfg.default_escalation_policy,
            clock=clock,
        )
        self.incidents = IncidentManager(
            incidents_cfg, self.events, communicate=self._communicate, clock=clock,
        )
        self.correlation = CorrelationEngine(
            self.incidents,
            self.alerts,
            window_secs=incidents_cfg.correlation_window_secs,
            thresholds=incidents_cfg.severity_thresholds,
            clock=clock,
        )

        if alerts_cfg.install_default_rules:
            for rule in default_rules():
                self.rules.create_rule(rule)

        self._task: asyncio.Task[None] | None = None
        self._running = False
        self._tick_count = 0
        self._error_count = 0

    @property
    def settings(self) -> Settings:
        return self._settings

    @property
    def running(self) -> bool:
        return self._running

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def error_count(self) -> int:
        return self._error_count

    # ── Scheduler ───────────────────────────────────────────────

    async def tick(self) -> None:
        """One scheduler pass; steps run in a fixed order."""
        now = self._clock()
        alerts_cfg = self._settings.alerts

        self.alerts.expire_suppressions(now)
        if alerts_cfg.enabled:
            self.evaluate_rules(now)
        self.dispatcher.process(now)
        if alerts_cfg.escalation_enabled:
            self.escalation.check(self.alerts.get_alerts(), now)
        if self._settings.incidents.auto_create_enabled:
            self.correlation.run(now)
        self.incidents.process_auto_actions()
        self.incidents.check_escalations(now)
        self.alerts.cleanup(now)

        self._tick_count += 1
        self.events.emit(
            "metrics_updated",
            "incident_manager",
            data={
                "analytics": self.incidents.get_incident_analytics(now),
                "alerts": self.alerts.summary(),
            },
        )

    def evaluate_rules(self, now: float | None = None) -> list[Alert]:
        """Create an alert for every due rule whose condition holds."""
        t = self._clock() if now is None else now
        created: list[Alert] = []
        for rule in self.rules.due_rules(t):
            value = self.rules.measure(rule, t)
            if value is None or not compare(value, rule.condition.operator, rule.condition.value):
                continue
            created.append(self.alerts.create_alert(
                name=rule.name,
                description=rule.description,
                severity=rule.severity,
                rule_id=rule.id,
                metric=rule.condition.metric,
                value=value,
                threshold=rule.condition.value,
                channels=rule.channels or self.dispatcher.channels,
            ))
            self.rules.mark_triggered(rule, t)
        return created

    async def start(self) -> None:
        """Start the background tick loop."""
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._loop())
        logger.info(
            "alerting_service_started",
            tick_interval_secs=self._settings.scheduler.tick_interval_secs,
            rules=len(self.rules.get_rules()),
            channels=len(self.dispatcher.channels),
        )

    async def stop(self) -> None:
        """Stop the loop, cancel pending work and close sinks."""
        self._running = False
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        await self.incidents.close()
        await self.dispatcher.close()
        logger.info("alerting_service_stopped", ticks=self._tick_count)

    async def _loop(self) -> None:
        interval = self._settings.scheduler.tick_interval_secs
        while self._running:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception:
                self._error_count += 1
                logger.exception("tick_error", error_count=self._error_count)
            try:
                await asyncio.sleep(interval)
            except asyncio.CancelledError:
                break

    async def wait_idle(self) -> None:
        """Wait for in-flight deliveries and scheduled action completions."""
        await self.dispatcher.wait_idle()
        await self.incidents.wait_idle()

    async def __aenter__(self) -> AlertingService:
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.stop()

    def _communicate(self, incident: Incident, message: str) -> None:
        channels = self.dispatcher.resolve_channels(
            self._settings.incidents.communication_channels,
        )
        self.dispatcher.notify_incident(incident.id, message, channels)

    # ── Rules ───────────────────────────────────────────────────

    def create_alert_rule(self, rule: AlertRule) -> AlertRule:
        created = self.rules.create_rule(rule)
        self._emit_config("rule_created", "ruleId", rule.id, {"rule": created})
        return created

    def update_alert_rule(self, rule_id: str, **changes: Any) -> AlertRule | None:
        updated = self.rules.update_rule(rule_id, **changes)
        if updated is not None:
            self._emit_config("rule_updated", "ruleId", rule_id, {"rule": updated})
        return updated

    def delete_alert_rule(self, rule_id: str) -> bool:
        deleted = self.rules.delete_rule(rule_id)
        if deleted:
            self._emit_config("rule_deleted", "ruleId", rule_id)
        return deleted

    def get_alert_rules(self) -> list[AlertRule]:
        return self.rules.get_rules()

    # ── Alerts ──────────────────────────────────────────────────

    def create_alert(self, **data: Any) -> Alert:
        if "channels" not in data:
            data["channels"] = self.dispatcher.channels
        return self.alerts.create_alert(**data)

    def update_alert(self, alert_id: str, **changes: Any) -> Alert | None:
        return self.alerts.update_alert(alert_id, **changes)

    def acknowledge_alert(
        self, alert_id: str, user: str, message: str | None = None,
    ) -> Alert | None:
        return self.alerts.acknowledge_alert(alert_id, user, message)

    def resolve_alert(
        self, alert_id: str, user: str | None = None, message: str | None = None,
    ) -> Alert | None:
        return self.alerts.resolve_alert(alert_id, user, message)

    def suppress_alert(
        self, alert_id: str, duration: float, reason: str, user: str,
    ) -> SuppressionRule | None:
        return self.alerts.suppress_alert(alert_id, duration, reason, user)

    def get_alerts(self, status: AlertStatus | None = None) -> list[Alert]:
        return self.alerts.get_alerts(status)

    def get_alert(self, alert_id: str) -> Alert | None:
        return self.alerts.get_alert(alert_id)

    def get_notifications(self, subject_id: str | None = None) -> list[AlertNotification]:
        return self.dispatcher.get_notifications(subject_id)

    def alert_summary(self) -> dict[str, object]:
        return self.alerts.summary()

    # ── Configuration ───────────────────────────────────────────

    def add_channel(self, channel: AlertChannel) -> None:
        self.dispatcher.add_channel(channel)
        self._emit_config("channel_added", "channelId", channel.id, {"channel": channel})

    def remove_channel(self, channel_id: str) -> bool:
        removed = self.dispatcher.remove_channel(channel_id)
        if removed:
            self._emit_config("channel_removed", "channelId", channel_id)
        return removed

    def update_channel(self, channel_id: str, **changes: Any) -> AlertChannel | None:
        updated = self.dispatcher.update_channel(channel_id, **changes)
        if updated is not None:
            self._emit_config("channel_updated", "channelId", channel_id, {"channel": updated})
        return updated

    def get_channels(self) -> list[AlertChannel]:
        return self.dispatcher.get_channels()

    def create_escalation_policy(self, policy: EscalationPolicy) -> EscalationPolicy:
        created = self.escalation.create_policy(policy)
        self._emit_config("escalation_policy_created", "policyId", policy.id, {"policy": created})
        return created

    def update_escalation_policy(
        self, policy_id: str, **changes: Any,
    ) -> EscalationPolicy | None:
        updated = self.escalation.update_policy(policy_id, **changes)
        if updated is not None:
            self._emit_config(
                "escalation_policy_updated", "policyId", policy_id, {"policy": updated},
            )
        return updated

    def create_suppression_rule(self, rule: SuppressionRule) -> SuppressionRule:
        return self.alerts.create_suppression_rule(rule)

    def remove_suppression_rule(self, rule_id: str) -> bool:
        return self.alerts.remove_suppression_rule(rule_id)

    # ── Incidents ───────────────────────────────────────────────

    def create_incident(self, **partial: Any) -> Incident:
        return self.incidents.create_incident(**partial)

    def update_incident(self, incident_id: str, **changes: Any) -> Incident | None:
        return self.incidents.update_incident(incident_id, **changes)

    def assign_incident(
        self, incident_id: str, assignee: str, message: str | None = None,
    ) -> Incident | None:
        return self.incidents.assign_incident(incident_id, assignee, message)

    def escalate_incident(self, incident_id: str, level: int, reason: str) -> Incident | None:
        return self.incidents.escalate_incident(incident_id, level, reason)

    def resolve_incident(
        self, incident_id: str, resolution: str, resolved_by: str = "system",
    ) -> Incident | None:
        return self.incidents.resolve_incident(incident_id, resolution, resolved_by)

    def close_incident(self, incident_id: str, closed_by: str = "system") -> Incident | None:
        return self.incidents.close_incident(incident_id, closed_by)

    def add_timeline_entry(
        self,
        incident_id: str,
        entry_type: TimelineEntryType,
        message: str,
        user: str = "system",
        details: dict[str, Any] | None = None,
    ) -> IncidentTimelineEntry | None:
        return self.incidents.add_timeline_entry(incident_id, entry_type, message, user, details)

    def add_action(
        self,
        incident_id: str,
        action_type: ActionType,
        description: str,
        assigned_to: str = "system",
    ) -> IncidentAction | None:
        return self.incidents.add_action(incident_id, action_type, description, assigned_to)

    def start_action(self, incident_id: str, action_id: str) -> IncidentAction | None:
        return self.incidents.start_action(incident_id, action_id)

    def execute_action(self, incident_id: str, action_id: str) -> IncidentAction | None:
        return self.incidents.execute_action(incident_id, action_id)

    def complete_action(
        self, incident_id: str, action_id: str, result: str,
    ) -> IncidentAction | None:
        return self.incidents.complete_action(incident_id, action_id, result)

    def get_incidents(self, status: IncidentStatus | None = None) -> list[Incident]:
        return self.incidents.get_incidents(status)

    def get_incident(self, incident_id: str) -> Incident | None:
        return self.incidents.get_incident(incident_id)

    def create_incident_template(self, template: IncidentTemplate) -> IncidentTemplate:
        created = self.incidents.create_template(template)
        self._emit_config(
            "incident_template_created", "templateId", template.id, {"template": created},
        )
        return created

    def get_incident_templates(self) -> list[IncidentTemplate]:
        return self.incidents.get_templates()

    def get_incident_analytics(self) -> IncidentAnalytics:
        return self.incidents.get_incident_analytics()

    # ── Events ──────────────────────────────────────────────────

    def add_event_listener(self, callback: EventCallback) -> Callable[[], None]:
        return self.events.add_listener(callback)

    def _emit_config(
        self, action: str, tag: str, subject_id: str, data: dict[str, Any] | None = None,
    ) -> None:
        self.events.emit(action, _SOURCE, subject_id=subject_id, data=data, tags={tag: subject_id})

