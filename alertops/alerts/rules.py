"""RuleEngine — threshold rules evaluated over recent metric windows."""

from __future__ import annotations

import time
from collections.abc import Sequence

import structlog

from alertops.alerts.source import MetricSource
from alertops.core.types import (
    Aggregation,
    AlertCondition,
    AlertRule,
    Clock,
    MetricSample,
    Operator,
    Severity,
)

logger = structlog.get_logger(__name__)


# ── Pure helpers ────────────────────────────────────────────────


def window(
    samples: Sequence[MetricSample], duration: float | None, now: float,
) -> list[MetricSample]:
    """Samples inside ``[now - duration, now]``; whole history if unset."""
    if not duration:
        return list(samples)
    cutoff = now - duration
    return [s for s in samples if s.timestamp >= cutoff]


def aggregate(values: Sequence[float], aggregation: Aggregation | None) -> float:
    """Reduce *values* to a scalar. Averages when no aggregation is given."""
    agg = aggregation or Aggregation.AVG
    if agg == Aggregation.COUNT:
        return float(len(values))
    if not values:
        return 0.0
    if agg == Aggregation.MAX:
        return max(values)
    if agg == Aggregation.MIN:
        return min(values)
    if agg == Aggregation.SUM:
        return float(sum(values))
    return sum(values) / len(values)


def compare(value: float, operator: Operator, threshold: float) -> bool:
    """Apply a rule operator: ``value <op> threshold``."""
    if operator == Operator.GT:
        return value > threshold
    if operator == Operator.GTE:
        return value >= threshold
    if operator == Operator.LT:
        return value < threshold
    if operator == Operator.LTE:
        return value <= threshold
    if operator == Operator.EQ:
        return value == threshold
    if operator == Operator.NE:
        return value != threshold
    return False


def default_rules() -> list[AlertRule]:
    """Built-in rules for memory, error rate and service health."""
    return [
        AlertRule(
            id="high_memory_usage",
            name="High Memory Usage",
            description="Memory usage exceeds critical threshold",
            condition=AlertCondition(
                metric="memory_usage", operator=Operator.GT, value=90, duration=300,
            ),
            severity=Severity.CRITICAL,
            cooldown=600,
        ),
        AlertRule(
            id="high_error_rate",
            name="High Error Rate",
            description="Error rate exceeds threshold",
            condition=AlertCondition(
                metric="error_rate", operator=Operator.GT, value=5, duration=180,
            ),
            severity=Severity.ERROR,
            cooldown=300,
        ),
        AlertRule(
            id="service_health_critical",
            name="Service Health Critical",
            description="Service health status is critical",
            condition=AlertCondition(
                # 2 is the "critical" health status code.
                metric="service_health", operator=Operator.EQ, value=2, duration=60,
            ),
            severity=Severity.CRITICAL,
            cooldown=300,
        ),
    ]


# ── Engine ──────────────────────────────────────────────────────


class RuleEngine:
    """Holds alert rules and evaluates them against a metric source.

    The engine never creates alerts itself; the service asks for
    :meth:`due_rules`, calls :meth:`measure` and, on a breach, creates the
    alert and calls :meth:`mark_triggered`.
    """

    def __init__(self, source: MetricSource, clock: Clock = time.time) -> None:
        self._source = source
        self._clock = clock
        self._rules: dict[str, AlertRule] = {}

    # ── Rule CRUD ───────────────────────────────────────────────

    def create_rule(self, rule: AlertRule) -> AlertRule:
        self._rules[rule.id] = rule
        return rule

    def update_rule(self, rule_id: str, **changes: object) -> AlertRule | None:
        rule = self._rules.get(rule_id)
        if rule is None:
            return None
        updated = rule.model_copy(update=changes)
        self._rules[rule_id] = updated
        return updated

    def delete_rule(self, rule_id: str) -> bool:
        return self._rules.pop(rule_id, None) is not None

    def get_rule(self, rule_id: str) -> AlertRule | None:
        return self._rules.get(rule_id)

    def get_rules(self) -> list[AlertRule]:
        return list(self._rules.values())

    # ── Evaluation ──────────────────────────────────────────────

    def measure(self, rule: AlertRule, now: float | None = None) -> float | None:
        """Aggregate the rule's metric window, or None when there is no data."""
        cond = rule.condition
        try:
            samples = self._source.get_performance_metrics(cond.metric)
        except Exception:
            logger.debug("metric_source_error", rule_id=rule.id, metric=cond.metric, exc_info=True)
            return None
        recent = window(samples, cond.duration, self._clock() if now is None else now)
        if not recent:
            return None
        return aggregate([s.value for s in recent], cond.aggregation)

    def evaluate(self, rule: AlertRule, now: float | None = None) -> bool:
        """True when the rule's condition holds over its window."""
        value = self.measure(rule, now)
        if value is None:
            return False
        return compare(value, rule.condition.operator, rule.condition.value)

    def due_rules(self, now: float | None = None) -> list[AlertRule]:
        """Enabled rules that are not inside their cooldown."""
        t = self._clock() if now is None else now
        return [r for r in self._rules.values() if r.enabled and not r.in_cooldown(t)]

    def mark_triggered(self, rule: AlertRule, now: float | None = None) -> None:
        rule.last_triggered = self._clock() if now is None else now
        rule.trigger_count += 1
