"""Tests for RuleEngine — windows, aggregation, operators, cooldown, source errors."""

from __future__ import annotations

import pytest

from alertops.alerts.rules import RuleEngine, aggregate, compare, default_rules, window
from alertops.alerts.source import InMemoryMetricSource
from alertops.core.types import (
    Aggregation,
    AlertCondition,
    AlertRule,
    MetricSample,
    Operator,
    Severity,
)

NOW = 1_000_000.0


# ── Helpers ─────────────────────────────────────────────────────


def _rule(**kw: object) -> AlertRule:
    defaults: dict[str, object] = {
        "id": "cpu_high",
        "name": "CPU High",
        "condition": AlertCondition(metric="cpu", operator=Operator.GT, value=80, duration=60),
        "severity": Severity.WARNING,
        "cooldown": 300,
    }
    defaults.update(kw)
    return AlertRule(**defaults)  # type: ignore[arg-type]


class BrokenSource:
    def get_performance_metrics(self, metric_name: str) -> list[MetricSample]:
        raise ConnectionError("metrics backend down")


# ── Pure helpers ────────────────────────────────────────────────


class TestWindow:
    def test_filters_to_duration(self) -> None:
        samples = [MetricSample(timestamp=NOW - d, value=d) for d in (120, 60, 30, 0)]
        assert [s.value for s in window(samples, 60, NOW)] == [60, 30, 0]

    def test_no_duration_keeps_everything(self) -> None:
        samples = [MetricSample(timestamp=NOW - d, value=d) for d in (9999, 1)]
        assert len(window(samples, None, NOW)) == 2
        assert len(window(samples, 0, NOW)) == 2


class TestAggregate:
    @pytest.mark.parametrize(
        ("agg", "expected"),
        [
            (None, 2.0),
            (Aggregation.AVG, 2.0),
            (Aggregation.MAX, 3.0),
            (Aggregation.MIN, 1.0),
            (Aggregation.SUM, 6.0),
            (Aggregation.COUNT, 3.0),
        ],
    )
    def test_aggregations(self, agg: Aggregation | None, expected: float) -> None:
        assert aggregate([1.0, 2.0, 3.0], agg) == expected

    def test_count_of_empty(self) -> None:
        assert aggregate([], Aggregation.COUNT) == 0.0


class TestCompare:
    @pytest.mark.parametrize(
        ("op", "value", "expected"),
        [
            (Operator.GT, 91, True),
            (Operator.GT, 90, False),
            (Operator.GTE, 90, True),
            (Operator.LT, 89, True),
            (Operator.LTE, 90, True),
            (Operator.EQ, 90, True),
            (Operator.NE, 90, False),
        ],
    )
    def test_operators(self, op: Operator, value: float, expected: bool) -> None:
        assert compare(value, op, 90) is expected


# ── Engine ──────────────────────────────────────────────────────


class TestEvaluate:
    def test_breach_over_window_average(self) -> None:
        src = InMemoryMetricSource()
        src.record("cpu", 70, NOW - 200)  # outside 60s window
        src.record("cpu", 85, NOW - 30)
        src.record("cpu", 95, NOW - 10)
        engine = RuleEngine(src, clock=lambda: NOW)
        rule = engine.create_rule(_rule())
        assert engine.measure(rule) == 90.0
        assert engine.evaluate(rule) is True

    def test_no_samples_is_false(self) -> None:
        engine = RuleEngine(InMemoryMetricSource(), clock=lambda: NOW)
        rule = engine.create_rule(_rule())
        assert engine.measure(rule) is None
        assert engine.evaluate(rule) is False

    def test_only_stale_samples_is_false(self) -> None:
        src = InMemoryMetricSource()
        src.record("cpu", 99, NOW - 3600)
        engine = RuleEngine(src, clock=lambda: NOW)
        assert engine.evaluate(_rule()) is False

    def test_source_error_is_false(self) -> None:
        engine = RuleEngine(BrokenSource(), clock=lambda: NOW)
        assert engine.evaluate(_rule()) is False


class TestCooldown:
    def test_triggered_rule_not_due_until_cooldown_passes(self) -> None:
        engine = RuleEngine(InMemoryMetricSource(), clock=lambda: NOW)
        rule = engine.create_rule(_rule(cooldown=600))
        engine.mark_triggered(rule, NOW)
        assert rule.trigger_count == 1
        assert rule.last_triggered == NOW
        assert engine.due_rules(NOW + 599) == []
        assert engine.due_rules(NOW + 600) == [rule]

    def test_disabled_rules_never_due(self) -> None:
        engine = RuleEngine(InMemoryMetricSource(), clock=lambda: NOW)
        engine.create_rule(_rule(enabled=False))
        assert engine.due_rules() == []


class TestRuleCrud:
    def test_update_and_delete(self) -> None:
        engine = RuleEngine(InMemoryMetricSource())
        engine.create_rule(_rule())
        updated = engine.update_rule("cpu_high", severity=Severity.CRITICAL)
        assert updated is not None
        assert engine.get_rule("cpu_high").severity == Severity.CRITICAL  # type: ignore[union-attr]
        assert engine.update_rule("missing", enabled=False) is None
        assert engine.delete_rule("cpu_high") is True
        assert engine.delete_rule("cpu_high") is False
        assert engine.get_rules() == []

    def test_default_rules(self) -> None:
        rules = {r.id: r for r in default_rules()}
        assert set(rules) == {"high_memory_usage", "high_error_rate", "service_health_critical"}
        mem = rules["high_memory_usage"]
        assert mem.condition.metric == "memory_usage"
        assert mem.condition.value == 90
        assert mem.condition.duration == 300
        assert mem.severity == Severity.CRITICAL
        assert mem.cooldown == 600
        assert rules["service_health_critical"].condition.operator == Operator.EQ


class TestInMemorySource:
    def test_out_of_order_timestamp_clamped(self) -> None:
        src = InMemoryMetricSource()
        src.record("m", 1, 100.0)
        sample = src.record("m", 2, 50.0)
        assert sample.timestamp == 100.0

    def test_bounded_history(self) -> None:
        src = InMemoryMetricSource(max_samples=2)
        for i in range(5):
            src.record("m", i, float(i))
        assert [s.value for s in src.get_performance_metrics("m")] == [3, 4]

    def test_clear(self) -> None:
        src = InMemoryMetricSource()
        src.record("a", 1, 1.0)
        src.record("b", 1, 1.0)
        assert src.metric_names == ["a", "b"]
        src.clear("a")
        assert src.metric_names == ["b"]
        src.clear()
        assert src.get_performance_metrics("b") == []
