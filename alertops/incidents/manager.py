"""IncidentManager — incident lifecycle, actions, escalation and communication."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable, Iterable
from typing import Any

import structlog

from alertops.core.config import IncidentsConfig
from alertops.core.events import EventBus
from alertops.core.types import Clock, EventType, Severity
from alertops.incidents.analytics import compute_incident_analytics
from alertops.incidents.postmortem import generate_post_mortem
from alertops.incidents.templates import (
    apply_template,
    default_templates,
    match_template,
    render_communication,
)
from alertops.incidents.types import (
    ActionStatus,
    ActionType,
    Incident,
    IncidentAction,
    IncidentAnalytics,
    IncidentStatus,
    IncidentTemplate,
    IncidentTimelineEntry,
    TimelineEntryType,
)

logger = structlog.get_logger(__name__)

_SOURCE = "incident_manager"
_SYSTEM = "system"

# Fields create_incident() accepts from callers.
_CREATE_FIELDS = frozenset({
    "title", "description", "severity", "impact", "category",
    "created_by", "alerts", "actions", "assignee", "root_cause",
})

# (severity, age in seconds, level) for automatic incident escalation.
_ESCALATION_RULES: tuple[tuple[Severity, float, int, str], ...] = (
    (Severity.CRITICAL, 15 * 60, 2, "Critical incident not resolved within 15 minutes"),
    (Severity.ERROR, 30 * 60, 1, "Error incident not resolved within 30 minutes"),
)

CommunicateCallback = Callable[[Incident, str], Any]


class IncidentManager:
    """Owns incidents and drives their lifecycle.

    Lifecycle methods on unknown ids are no-ops returning None. Status only
    moves forward through ``update_incident``/``resolve_incident``;
    ``close_incident`` is allowed from any state.

    System-assigned actions are executed automatically: the action moves to
    ``in_progress`` at once and is completed by a delayed asyncio task
    (``action_delay_secs``). Closing an incident cancels its pending
    completions.
    """

    def __init__(
        self,
        config: IncidentsConfig | None = None,
        bus: EventBus | None = None,
        communicate: CommunicateCallback | None = None,
        clock: Clock = time.time,
    ) -> None:
        self._config = config or IncidentsConfig()
        self._bus = bus or EventBus(clock)
        self._communicate = communicate
        self._clock = clock
        self._incidents: dict[str, Incident] = {}
        self._templates: dict[str, IncidentTemplate] = {}
        self._action_tasks: dict[tuple[str, str], asyncio.Task[None]] = {}
        self._escalated: dict[str, int] = {}
        for template in default_templates():
            self.create_template(template)

    @property
    def config(self) -> IncidentsConfig:
        return self._config

    # ── Templates ───────────────────────────────────────────────

    def create_template(self, template: IncidentTemplate) -> IncidentTemplate:
        self._templates[template.id] = template
        return template

    def get_templates(self) -> list[IncidentTemplate]:
        return list(self._templates.values())

    def get_template(self, template_id: str | None) -> IncidentTemplate | None:
        return self._templates.get(template_id) if template_id else None

    # ── Creation ────────────────────────────────────────────────

    def create_incident(self, **partial: Any) -> Incident:
        """Open an incident, apply a matching template and start system actions."""
        now = self._clock()
        unknown = set(partial) - _CREATE_FIELDS
        if unknown:
            raise TypeError(f"unexpected incident fields: {sorted(unknown)}")
        fields = {k: v for k, v in partial.items() if v is not None}
        incident = Incident(**fields, created_at=now, updated_at=now)
        incident.status = IncidentStatus.OPEN
        incident.timeline = [IncidentTimelineEntry(
            timestamp=now,
            type=TimelineEntryType.CREATED,
            message="Incident created",
            user=incident.created_by,
        )]

        template = match_template(incident.title, self._templates.values())
        if template is not None:
            apply_template(incident, template, now)

        self._incidents[incident.id] = incident

        if self._config.auto_assign_enabled and self._config.default_assignee:
            incident.assignee = self._config.default_assignee
            self.add_timeline_entry(
                incident.id,
                TimelineEntryType.ASSIGNED,
                f"Assigned to {self._config.default_assignee}",
            )

        logger.info(
            "incident_created",
            incident_id=incident.id,
            title=incident.title,
            severity=incident.severity.value,
            template=incident.template_id,
            alerts=len(incident.alerts),
        )

        for action in list(incident.actions):
            if action.assigned_to == _SYSTEM:
                self.execute_action(incident.id, action.id)

        self._send(
            incident,
            f"NEW INCIDENT: {incident.title}\n\n{incident.description}\n"
            f"Severity: {incident.severity.value}",
        )
        self._emit("incident_created", incident, tags={"severity": incident.severity.value})
        return incident

    # ── Lifecycle ───────────────────────────────────────────────

    def update_incident(self, incident_id: str, **changes: Any) -> Incident | None:
        """Apply field changes; a backwards status change is ignored."""
        incident = self._incidents.get(incident_id)
        if incident is None:
            return None

        old_status = incident.status
        new_status = changes.pop("status", None)
        if new_status is not None:
            new_status = IncidentStatus(new_status)
            if new_status.rank < old_status.rank:
                logger.warning(
                    "incident_status_regression_ignored",
                    incident_id=incident_id,
                    current=old_status.value,
                    requested=new_status.value,
                )
                new_status = None

        unknown = sorted(set(changes) - set(Incident.model_fields))
        if unknown:
            logger.warning(
                "incident_update_unknown_fields", incident_id=incident_id, fields=unknown,
            )
        for field, value in changes.items():
            if field not in unknown:
                setattr(incident, field, value)
        if new_status is not None:
            incident.status = new_status
        incident.updated_at = self._clock()

        if new_status is not None and new_status != old_status:
            self.add_timeline_entry(
                incident_id, TimelineEntryType.UPDATED, f"Status changed to {new_status.value}",
            )
        self._emit("incident_updated", incident, tags={"status": incident.status.value})
        return incident

    def assign_incident(
        self, incident_id: str, assignee: str, message: str | None = None,
    ) -> Incident | None:
        incident = self._incidents.get(incident_id)
        if incident is None:
            return None
        incident.assignee = assignee
        text = f"Assigned to {assignee}" + (f": {message}" if message else "")
        self.add_timeline_entry(incident_id, TimelineEntryType.ASSIGNED, text)
        logger.info("incident_assigned", incident_id=incident_id, assignee=assignee)
        self._emit("incident_assigned", incident, data={"assignee": assignee})
        return incident

    def escalate_incident(self, incident_id: str, level: int, reason: str) -> Incident | None:
        incident = self._incidents.get(incident_id)
        if incident is None:
            return None
        self.add_timeline_entry(
            incident_id, TimelineEntryType.ESCALATED, f"Escalated to level {level}: {reason}",
        )
        self._escalated[incident_id] = max(level, self._escalated.get(incident_id, 0))
        minutes = round((self._clock() - incident.created_at) / 60)
        self._send(
            incident,
            f"ESCALATION ({level}): {incident.title}\n\n"
            f"Reason: {reason}\nTime since creation: {minutes} minutes",
        )
        logger.warning("incident_escalated", incident_id=incident_id, level=level, reason=reason)
        self._emit("incident_escalated", incident, data={"level": level, "reason": reason})
        return incident

    def resolve_incident(
        self, incident_id: str, resolution: str, resolved_by: str = _SYSTEM,
    ) -> Incident | None:
        """Mark resolved and attach a post-mortem on first resolution.

        Resolving a closed incident changes nothing.
        """
        incident = self._incidents.get(incident_id)
        if incident is None:
            return None
        if incident.status == IncidentStatus.CLOSED:
            logger.info("incident_already_closed", incident_id=incident_id)
            return incident

        now = self._clock()
        incident.status = IncidentStatus.RESOLVED
        incident.resolution = resolution
        if incident.resolved_at is None:
            incident.resolved_at = now
        self.add_timeline_entry(
            incident_id, TimelineEntryType.RESOLVED, f"Resolved: {resolution}", resolved_by,
        )
        logger.info("incident_resolved", incident_id=incident_id, resolved_by=resolved_by)
        self._emit("incident_resolved", incident)

        if self._config.post_mortem_enabled and incident.post_mortem is None:
            incident.post_mortem = generate_post_mortem(incident, now)
            self._emit(
                "post_mortem_generated",
                incident,
                data={"post_mortem": incident.post_mortem},
                event_type=EventType.CUSTOM,
            )
        return incident

    def close_incident(self, incident_id: str, closed_by: str = _SYSTEM) -> Incident | None:
        incident = self._incidents.get(incident_id)
        if incident is None:
            return None
        incident.status = IncidentStatus.CLOSED
        incident.closed_at = self._clock()
        self.add_timeline_entry(incident_id, TimelineEntryType.CLOSED, "Incident closed", closed_by)
        self._cancel_actions(incident_id)
        self._escalated.pop(incident_id, None)
        logger.info("incident_closed", incident_id=incident_id, closed_by=closed_by)
        self._emit("incident_closed", incident)
        return incident

    def add_timeline_entry(
        self,
        incident_id: str,
        entry_type: TimelineEntryType,
        message: str,
        user: str = _SYSTEM,
        details: dict[str, Any] | None = None,
    ) -> IncidentTimelineEntry | None:
        incident = self._incidents.get(incident_id)
        if incident is None:
            return None
        now = self._clock()
        entry = IncidentTimelineEntry(
            timestamp=now, type=entry_type, message=message, user=user, details=details,
        )
        incident.timeline.append(entry)
        incident.updated_at = now
        return entry

    def attach_alerts(self, incident_id: str, alert_ids: Iterable[str]) -> list[str]:
        """Append alert ids the incident does not reference yet."""
        incident = self._incidents.get(incident_id)
        if incident is None:
            return []
        added = [a for a in alert_ids if a not in incident.alerts]
        if added:
            incident.alerts.extend(added)
            incident.updated_at = self._clock()
        return added

    # ── Actions ─────────────────────────────────────────────────

    def add_action(
        self,
        incident_id: str,
        action_type: ActionType,
        description: str,
        assigned_to: str = _SYSTEM,
    ) -> IncidentAction | None:
        incident = self._incidents.get(incident_id)
        if incident is None:
            return None
        action = IncidentAction(
            type=action_type,
            description=description,
            assigned_to=assigned_to,
            created_at=self._clock(),
        )
        incident.actions.append(action)
        self.add_timeline_entry(
            incident_id, TimelineEntryType.UPDATED, f"Action added: {description}",
        )
        self._emit("action_added", incident, data={"action_id": action.id})
        if assigned_to == _SYSTEM:
            self.execute_action(incident_id, action.id)
        return action

    def transfer_actions(self, source_id: str, target_id: str) -> list[IncidentAction]:
        """Copy the source's actions the target lacks onto the target.

        System actions still in flight restart under the target.
        """
        source = self._incidents.get(source_id)
        target = self._incidents.get(target_id)
        if source is None or target is None:
            return []
        known = {a.id for a in target.actions}
        moved: list[IncidentAction] = []
        restart: list[str] = []
        for action in source.actions:
            if action.id in known:
                continue
            copy = action.model_copy()
            if copy.status == ActionStatus.IN_PROGRESS and copy.assigned_to == _SYSTEM:
                copy.status = ActionStatus.PENDING
                restart.append(copy.id)
            target.actions.append(copy)
            moved.append(copy)
        if moved:
            target.updated_at = self._clock()
        for action_id in restart:
            self.execute_action(target_id, action_id)
        return moved

    def start_action(self, incident_id: str, action_id: str) -> IncidentAction | None:
        action = self._find_action(incident_id, action_id)
        if action is None:
            return None
        if action.status == ActionStatus.PENDING:
            action.status = ActionStatus.IN_PROGRESS
            self._incidents[incident_id].updated_at = self._clock()
        return action

    def complete_action(
        self, incident_id: str, action_id: str, result: str,
    ) -> IncidentAction | None:
        """Record the result and mark the action completed.

        A pending action is started first, so it still passes through
        ``in_progress``. Completing twice keeps the first result.
        """
        action = self._find_action(incident_id, action_id)
        if action is None:
            return None
        if action.status == ActionStatus.COMPLETED:
            return action
        if action.status == ActionStatus.PENDING:
            logger.info("incident_action_started", incident_id=incident_id, action_id=action_id)
            action.status = ActionStatus.IN_PROGRESS
        action.status = ActionStatus.COMPLETED
        action.completed_at = self._clock()
        action.result = result
        self.add_timeline_entry(
            incident_id, TimelineEntryType.UPDATED, f"Action completed: {action.description}",
        )
        logger.info("incident_action_completed", incident_id=incident_id, action_id=action_id)
        self._emit(
            "action_completed",
            self._incidents[incident_id],
            data={"action_id": action_id, "result": result},
        )
        return action

    def execute_action(self, incident_id: str, action_id: str) -> IncidentAction | None:
        """Start a pending action and schedule its completion.

        Outside a running event loop the action completes immediately.
        """
        action = self._find_action(incident_id, action_id)
        if action is None or action.status != ActionStatus.PENDING:
            return action
        action.status = ActionStatus.IN_PROGRESS

        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self._finish_action(incident_id, action_id)
            return action

        key = (incident_id, action_id)
        task = loop.create_task(self._run_action(incident_id, action_id))
        self._action_tasks[key] = task
        task.add_done_callback(lambda t, k=key: self._on_action_done(k, t))
        return action

    async def _run_action(self, incident_id: str, action_id: str) -> None:
        await asyncio.sleep(self._config.action_delay_secs)
        self._finish_action(incident_id, action_id)

    def _finish_action(self, incident_id: str, action_id: str) -> None:
        incident = self._incidents.get(incident_id)
        action = self._find_action(incident_id, action_id)
        if incident is None or action is None:
            return
        self.complete_action(incident_id, action_id, self._action_result(incident, action))

    def _action_result(self, incident: Incident, action: IncidentAction) -> str:
        if action.type == ActionType.INVESTIGATION:
            return f"Investigation completed for: {action.description}"
        if action.type == ActionType.MITIGATION:
            return f"Mitigation applied for: {action.description}"
        if action.type == ActionType.COMMUNICATION:
            message = render_communication(incident, self.get_template(incident.template_id))
            self._send(incident, message or action.description)
            return f"Communication sent for: {action.description}"
        return "Action completed"

    def _on_action_done(self, key: tuple[str, str], task: asyncio.Task[None]) -> None:
        if self._action_tasks.get(key) is task:
            del self._action_tasks[key]
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "incident_action_error",
                incident_id=key[0],
                action_id=key[1],
                error=str(exc),
                exc_info=exc,
            )

    def _cancel_actions(self, incident_id: str) -> None:
        for key, task in list(self._action_tasks.items()):
            if key[0] == incident_id:
                task.cancel()

    def _find_action(self, incident_id: str, action_id: str) -> IncidentAction | None:
        incident = self._incidents.get(incident_id)
        return incident.get_action(action_id) if incident else None

    @property
    def pending_action_count(self) -> int:
        return len(self._action_tasks)

    async def wait_idle(self) -> None:
        """Wait for every scheduled action completion."""
        while self._action_tasks:
            await asyncio.gather(*list(self._action_tasks.values()), return_exceptions=True)

    async def close(self) -> None:
        """Cancel outstanding action completions."""
        tasks = list(self._action_tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    # ── Tick work ───────────────────────────────────────────────

    def process_auto_actions(self) -> int:
        """Execute pending system actions on open incidents."""
        started = 0
        for incident in list(self._incidents.values()):
            if incident.status != IncidentStatus.OPEN:
                continue
            for action in list(incident.actions):
                if action.status == ActionStatus.PENDING and action.assigned_to == _SYSTEM:
                    self.execute_action(incident.id, action.id)
                    started += 1
        return started

    def check_escalations(self, now: float | None = None) -> list[str]:
        """Escalate open incidents that have stayed unresolved too long.

        Each incident is escalated at most once per level.
        """
        if not self._config.escalation_enabled:
            return []
        t = self._clock() if now is None else now
        escalated: list[str] = []
        for incident in list(self._incidents.values()):
            if incident.status != IncidentStatus.OPEN:
                continue
            age = t - incident.created_at
            for severity, threshold, level, reason in _ESCALATION_RULES:
                if incident.severity != severity or age <= threshold:
                    continue
                if self._escalated.get(incident.id, 0) >= level:
                    break
                self.escalate_incident(incident.id, level, reason)
                escalated.append(incident.id)
                break
        return escalated

    # ── Queries ─────────────────────────────────────────────────

    def get_incident(self, incident_id: str) -> Incident | None:
        return self._incidents.get(incident_id)

    def get_incidents(self, status: IncidentStatus | None = None) -> list[Incident]:
        incidents = list(self._incidents.values())
        return [i for i in incidents if i.status == status] if status else incidents

    def open_incidents_referencing(self, alert_ids: Iterable[str]) -> list[Incident]:
        """Open incidents (in creation order) that reference any of the alerts."""
        wanted = set(alert_ids)
        return [
            i for i in self._incidents.values()
            if i.is_open and wanted.intersection(i.alerts)
        ]

    def get_incident_analytics(self, now: float | None = None) -> IncidentAnalytics:
        t = self._clock() if now is None else now
        return compute_incident_analytics(list(self._incidents.values()), t)

    # ── Internals ───────────────────────────────────────────────

    def _send(self, incident: Incident, message: str) -> None:
        if not self._config.communication_enabled:
            return
        logger.info(
            "incident_communication",
            incident_id=incident.id,
            channels=self._config.communication_channels,
            message=message,
        )
        if self._communicate is None:
            return
        try:
            self._communicate(incident, message)
        except Exception:
            logger.exception("incident_communication_error", incident_id=incident.id)

    def _emit(
        self,
        action: str,
        incident: Incident,
        data: dict[str, Any] | None = None,
        tags: dict[str, str] | None = None,
        event_type: EventType = EventType.INCIDENT,
    ) -> None:
        payload: dict[str, Any] = {"incident": incident}
        payload.update(data or {})
        self._bus.emit(
            action,
            _SOURCE,
            subject_id=incident.id,
            event_type=event_type,
            data=payload,
            tags={"incidentId": incident.id, **(tags or {})},
        )
