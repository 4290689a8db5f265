"""Incident lifecycle, correlation, post-mortems and analytics."""

from alertops.incidents.analytics import compute_incident_analytics
from alertops.incidents.correlation import CorrelationEngine
from alertops.incidents.manager import IncidentManager
from alertops.incidents.postmortem import generate_post_mortem
from alertops.incidents.types import (
    Incident,
    IncidentAnalytics,
    IncidentStatus,
    PostMortem,
)

__all__ = [
    "CorrelationEngine",
    "Incident",
    "IncidentAnalytics",
    "IncidentManager",
    "IncidentStatus",
    "PostMortem",
    "compute_incident_analytics",
    "generate_post_mortem",
]
