"""Metric source interface and an in-memory implementation."""

from __future__ import annotations

import time
from collections import deque
from typing import Protocol

from alertops.core.types import MetricSample


class MetricSource(Protocol):
    """Supplies time-ascending samples for a metric name."""

    def get_performance_metrics(self, metric_name: str) -> list[MetricSample]: ...


class InMemoryMetricSource:
    """Bounded per-metric sample history, appended in time order."""

    def __init__(self, max_samples: int = 10_000) -> None:
        self._max_samples = max_samples
        self._series: dict[str, deque[MetricSample]] = {}

    @property
    def metric_names(self) -> list[str]:
        return sorted(self._series)

    def record(self, metric_name: str, value: float, timestamp: float | None = None) -> MetricSample:
        """Append a sample; timestamps older than the latest are clamped forward."""
        series = self._series.setdefault(metric_name, deque(maxlen=self._max_samples))
        ts = time.time() if timestamp is None else timestamp
        if series and ts < series[-1].timestamp:
            ts = series[-1].timestamp
        sample = MetricSample(timestamp=ts, value=value)
        series.append(sample)
        return sample

    def get_performance_metrics(self, metric_name: str) -> list[MetricSample]:
        return list(self._series.get(metric_name, ()))

    def clear(self, metric_name: str | None = None) -> None:
        if metric_name is None:
            self._series.clear()
        else:
            self._series.pop(metric_name, None)
