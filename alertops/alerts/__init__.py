"""Alert rules, metric sources and the alert store."""

from alertops.alerts.rules import RuleEngine, default_rules
from alertops.alerts.source import InMemoryMetricSource, MetricSource
from alertops.alerts.store import AlertStore

__all__ = [
    "AlertStore",
    "InMemoryMetricSource",
    "MetricSource",
    "RuleEngine",
    "default_rules",
]
