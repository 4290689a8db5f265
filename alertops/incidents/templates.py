"""Built-in incident templates and title-keyword matching."""

from __future__ import annotations

from collections.abc import Iterable

import structlog

from alertops.core.types import Severity, new_id
from alertops.incidents.types import (
    ActionType,
    AutoAction,
    BusinessImpact,
    ImpactScope,
    Incident,
    IncidentAction,
    IncidentCategory,
    IncidentImpact,
    IncidentTemplate,
)

logger = structlog.get_logger(__name__)


def default_templates() -> list[IncidentTemplate]:
    """Templates matched in order: API/service, performance, database."""
    return [
        IncidentTemplate(
            id="api_service_outage",
            name="API Service Outage",
            keywords=["api", "service"],
            category=IncidentCategory.AVAILABILITY,
            description="API services are experiencing downtime or severe degradation",
            impact=IncidentImpact(
                scope=ImpactScope.SERVICE,
                affected_users=1000,
                business_impact=BusinessImpact.HIGH,
                sla_breach=True,
            ),
            severity=Severity.CRITICAL,
            auto_actions=[
                AutoAction(
                    id="check_api_health",
                    type=ActionType.INVESTIGATION,
                    description="Check API health endpoints",
                ),
                AutoAction(
                    id="notify_on_call",
                    type=ActionType.COMMUNICATION,
                    description="Notify on-call engineer",
                ),
            ],
            communication_template=(
                "API SERVICE OUTAGE: {description}\n\n"
                "Impact: {impact}\nInvestigation in progress."
            ),
            investigation_steps=[
                "Check API health endpoints",
                "Verify service dependencies",
                "Review recent deployments",
                "Check system metrics",
            ],
        ),
        IncidentTemplate(
            id="performance_degradation",
            name="Performance Degradation",
            keywords=["performance", "slow"],
            category=IncidentCategory.PERFORMANCE,
            description="System performance has degraded beyond acceptable thresholds",
            impact=IncidentImpact(
                scope=ImpactScope.SYSTEM,
                affected_users=500,
                business_impact=BusinessImpact.MEDIUM,
                sla_breach=False,
            ),
            severity=Severity.ERROR,
            auto_actions=[
                AutoAction(
                    id="analyze_performance",
                    type=ActionType.INVESTIGATION,
                    description="Analyze performance metrics",
                ),
            ],
            communication_template="PERFORMANCE DEGRADATION: {description}\n\nImpact: {impact}",
            investigation_steps=[
                "Review performance metrics",
                "Identify bottlenecks",
                "Check recent changes",
                "Analyze resource usage",
            ],
        ),
        IncidentTemplate(
            id="database_issue",
            name="Database Connectivity Issue",
            keywords=["database", "db"],
            category=IncidentCategory.INFRASTRUCTURE,
            description="Database connectivity or performance issues",
            impact=IncidentImpact(
                scope=ImpactScope.SERVICE,
                affected_users=2000,
                business_impact=BusinessImpact.HIGH,
                sla_breach=True,
            ),
            severity=Severity.CRITICAL,
            auto_actions=[
                AutoAction(
                    id="check_database",
                    type=ActionType.INVESTIGATION,
                    description="Check database connectivity and performance",
                ),
            ],
            communication_template="DATABASE ISSUE: {description}\n\nImpact: {impact}",
            investigation_steps=[
                "Test database connectivity",
                "Check database metrics",
                "Review query performance",
                "Check database logs",
            ],
        ),
    ]


def match_template(
    title: str, templates: Iterable[IncidentTemplate],
) -> IncidentTemplate | None:
    """First template with a keyword contained in the lower-cased title."""
    lowered = title.lower()
    for template in templates:
        if any(kw.lower() in lowered for kw in template.keywords):
            return template
    return None


def describe_impact(impact: IncidentImpact) -> str:
    text = (
        f"{impact.affected_users} users, {impact.business_impact.value} business impact"
        f" ({impact.scope.value} scope)"
    )
    if impact.sla_breach:
        text += ", SLA breached"
    return text


def apply_template(incident: Incident, template: IncidentTemplate, now: float) -> None:
    """Overwrite category, impact and severity, and clone the auto-actions."""
    incident.template_id = template.id
    incident.category = template.category
    incident.impact = template.impact.model_copy()
    incident.severity = template.severity
    for auto in template.auto_actions:
        incident.actions.append(IncidentAction(
            id=new_id(auto.id),
            type=auto.type,
            description=auto.description,
            assigned_to=auto.assigned_to,
            created_at=now,
        ))


def render_communication(incident: Incident, template: IncidentTemplate | None) -> str | None:
    """Fill ``{description}`` and ``{impact}`` into the template's message.

    Returns None when there is no message or it names other placeholders.
    """
    if template is None or not template.communication_template:
        return None
    try:
        return template.communication_template.format(
            description=incident.description,
            impact=describe_impact(incident.impact),
        )
    except (AttributeError, KeyError, IndexError, ValueError) as exc:
        logger.warning(
            "communication_template_error",
            template_id=template.id,
            incident_id=incident.id,
            error=repr(exc),
        )
        return None
