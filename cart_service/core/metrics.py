"""
Metrics for the cart service.

Provides Prometheus-compatible metrics for monitoring:
- Cart operation counts and latency
- Store errors by operation
- Optimistic update conflicts
"""
from __future__ import annotations

import asyncio
import time
from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import wraps
from typing import Any

from cart_service.core.exceptions import InvalidArgumentException


@dataclass
class MetricValue:
    """Single metric value with metadata."""

    value: float
    labels: dict[str, str] = field(default_factory=dict)


class Counter:
    """Prometheus-style counter metric."""

    def __init__(self, name: str, description: str, labels: list[str] | None = None):
        self.name = name
        self.description = description
        self.label_names = labels or []
        self._values: dict[tuple, float] = defaultdict(float)

    def inc(self, amount: float = 1, **labels) -> None:
        """Increment counter by amount."""
        key = self._labels_to_key(labels)
        self._values[key] += amount

    def _labels_to_key(self, labels: dict) -> tuple:
        return tuple(labels.get(name, "") for name in self.label_names)

    def get(self, **labels) -> float:
        """Get current counter value."""
        key = self._labels_to_key(labels)
        return self._values.get(key, 0)

    def total(self) -> float:
        return sum(self._values.values())

    def collect(self) -> list[MetricValue]:
        """Collect all metric values."""
        result = []
        for key, value in self._values.items():
            labels = dict(zip(self.label_names, key))
            result.append(MetricValue(value=value, labels=labels))
        return result


class Histogram:
    """Prometheus-style histogram metric."""

    DEFAULT_BUCKETS = (0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10, float("inf"))

    def __init__(
        self,
        name: str,
        description: str,
        labels: list[str] | None = None,
        buckets: tuple | None = None,
    ):
        self.name = name
        self.description = description
        self.label_names = labels or []
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._counts: dict[tuple, dict[float, int]] = defaultdict(
            lambda: dict.fromkeys(self.buckets, 0)
        )
        self._sums: dict[tuple, float] = defaultdict(float)
        self._totals: dict[tuple, int] = defaultdict(int)

    def observe(self, value: float, **labels) -> None:
        """Observe a value."""
        key = self._labels_to_key(labels)
        self._sums[key] += value
        self._totals[key] += 1
        for bucket in self.buckets:
            if value <= bucket:
                self._counts[key][bucket] += 1

    def _labels_to_key(self, labels: dict) -> tuple:
        return tuple(labels.get(name, "") for name in self.label_names)

    def count(self, **labels) -> int:
        """Number of observations for one label set."""
        return self._totals.get(self._labels_to_key(labels), 0)

    def get_percentile(self, percentile: float, **labels) -> float:
        """Approximate percentile from histogram."""
        total = self.count(**labels)
        if total == 0:
            return 0

        key = self._labels_to_key(labels)
        target = total * percentile / 100
        prev_bucket = 0

        for bucket in sorted(self.buckets):
            if bucket == float("inf"):
                continue
            if self._counts[key][bucket] >= target:
                return bucket
            prev_bucket = bucket

        return prev_bucket

    def get_avg(self, **labels) -> float:
        """Get average value."""
        total = self.count(**labels)
        if total == 0:
            return 0
        return self._sums.get(self._labels_to_key(labels), 0) / total

    def collect(self) -> list[MetricValue]:
        """Collect all metric values (sum and count per label set)."""
        result = []
        for key in self._totals.keys():
            labels = dict(zip(self.label_names, key))
            result.append(MetricValue(value=self._sums.get(key, 0), labels={**labels, "le": "sum"}))
            result.append(
                MetricValue(value=self._totals.get(key, 0), labels={**labels, "le": "count"})
            )
        return result


class MetricsRegistry:
    """Central registry for all metrics."""

    def __init__(self):
        self._metrics: dict[str, Any] = {}
        self._start_time = datetime.now(timezone.utc)

        self.operations_total = self.counter(
            "cart_operations_total", "Total cart operations", ["operation", "status"]
        )

        self.operation_duration = self.histogram(
            "cart_operation_duration_seconds", "Cart operation duration in seconds", ["operation"]
        )

        self.errors_total = self.counter(
            "cart_errors_total", "Total failed cart operations", ["operation", "error_type"]
        )

        self.update_conflicts = self.counter(
            "cart_update_conflicts_total",
            "Conditional cart writes rejected because of a concurrent writer",
            ["operation"],
        )

    def counter(self, name: str, description: str, labels: list[str] | None = None) -> Counter:
        """Create or get a counter metric."""
        if name not in self._metrics:
            self._metrics[name] = Counter(name, description, labels)
        return self._metrics[name]

    def histogram(
        self,
        name: str,
        description: str,
        labels: list[str] | None = None,
        buckets: tuple | None = None,
    ) -> Histogram:
        """Create or get a histogram metric."""
        if name not in self._metrics:
            self._metrics[name] = Histogram(name, description, labels, buckets)
        return self._metrics[name]

    def uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self._start_time).total_seconds()

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines = [
            "# HELP cart_uptime_seconds Service uptime in seconds",
            "# TYPE cart_uptime_seconds gauge",
            f"cart_uptime_seconds {self.uptime_seconds():.2f}",
            "",
        ]

        for name, metric in self._metrics.items():
            lines.append(f"# HELP {name} {metric.description}")
            if isinstance(metric, Counter):
                lines.append(f"# TYPE {name} counter")
            elif isinstance(metric, Histogram):
                lines.append(f"# TYPE {name} histogram")

            for mv in metric.collect():
                if mv.labels:
                    label_str = ",".join(f'{k}="{v}"' for k, v in mv.labels.items())
                    lines.append(f"{name}{{{label_str}}} {mv.value}")
                else:
                    lines.append(f"{name} {mv.value}")

            lines.append("")

        return "\n".join(lines)

    def get_summary(self) -> dict[str, Any]:
        """Get human-readable metrics summary."""
        return {
            "uptime_hours": round(self.uptime_seconds() / 3600, 2),
            "total_operations": self.operations_total.total(),
            "total_errors": self.errors_total.total(),
            "update_conflicts": self.update_conflicts.total(),
            "avg_operation_duration_ms": round(self.operation_duration.get_avg() * 1000, 2),
            "p95_operation_duration_ms": round(
                self.operation_duration.get_percentile(95) * 1000, 2
            ),
        }


# Global metrics instance
metrics = MetricsRegistry()


def track_operation(operation: str, registry: MetricsRegistry | None = None):
    """Decorator recording count, latency and failures of a cart operation.

    Client mistakes (``InvalidArgumentException``) are counted with status
    ``rejected`` and do not show up in ``cart_errors_total``.
    """

    def decorator(func: Callable):
        @wraps(func)
        async def wrapper(*args, **kwargs):
            reg = registry or metrics
            start_time = time.perf_counter()
            status = "success"

            try:
                return await func(*args, **kwargs)
            except InvalidArgumentException:
                status = "rejected"
                raise
            except Exception as e:
                status = "error"
                reg.errors_total.inc(operation=operation, error_type=type(e).__name__)
                raise
            finally:
                reg.operations_total.inc(operation=operation, status=status)
                reg.operation_duration.observe(
                    time.perf_counter() - start_time, operation=operation
                )

        if not asyncio.iscoroutinefunction(func):
            raise TypeError("track_operation only wraps coroutine functions")
        return wrapper

    return decorator
