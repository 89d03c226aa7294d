"""In-process metrics for the resilience layer.

Rendered in Prometheus text format by ``generate_metrics()``:
- Cache metrics: cache_lookups_total (by source), kv_errors_total
- Upstream metrics: upstream_latency_seconds, upstream_retries_total
- Circuit metrics: circuit_rejections_total, circuit_transitions_total, circuit_state
- Dedup metrics: dedup_shared_total
- Warming metrics: cache_warming_passes_total
"""

import threading
from typing import Optional


class _Metric:
    """Shared label handling for all metric types."""

    kind = "untyped"

    def __init__(self, name: str, description: str, labels: Optional[list[str]] = None):
        self.name = name
        self.description = description
        self._label_names = labels or []
        self._values: dict[tuple, float] = {}
        self._lock = threading.Lock()

    def _key(self, labels: dict) -> tuple:
        return tuple(str(labels.get(l, "")) for l in self._label_names)

    def _format_labels(self, label_values: tuple, extra: str = "") -> str:
        parts = [f'{l}="{v}"' for l, v in zip(self._label_names, label_values)]
        if extra:
            parts.append(extra)
        return "{" + ",".join(parts) + "}" if parts else ""

    def get_all(self) -> dict[tuple, float]:
        """Get all values keyed by label tuple."""
        with self._lock:
            return self._values.copy()

    def get(self, **labels) -> float:
        """Get the value for one label combination (0 if never set)."""
        with self._lock:
            return self._values.get(self._key(labels), 0.0)

    def clear(self) -> None:
        """Drop all recorded values."""
        with self._lock:
            self._values.clear()

    def _header(self) -> list[str]:
        return [f"# HELP {self.name} {self.description}", f"# TYPE {self.name} {self.kind}"]

    def to_prometheus(self) -> str:
        """Format as Prometheus text."""
        lines = self._header()
        with self._lock:
            for label_values, value in self._values.items():
                lines.append(f"{self.name}{self._format_labels(label_values)} {value}")
        return "\n".join(lines)


class Counter(_Metric):
    """A counter that can only increase."""

    kind = "counter"

    def inc(self, value: float = 1.0, **labels) -> None:
        """Increment the counter for the given labels."""
        if value < 0:
            raise ValueError("Counters can only increase")
        key = self._key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value


class Gauge(_Metric):
    """A gauge that can be set to any value."""

    kind = "gauge"

    def set(self, value: float, **labels) -> None:
        """Set the gauge for the given labels."""
        with self._lock:
            self._values[self._key(labels)] = value


class Histogram(_Metric):
    """A histogram of observed values."""

    kind = "histogram"
    DEFAULT_BUCKETS = (0.01, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)

    def __init__(
        self,
        name: str,
        description: str,
        labels: Optional[list[str]] = None,
        buckets: Optional[tuple] = None,
    ):
        super().__init__(name, description, labels)
        self.buckets = buckets or self.DEFAULT_BUCKETS
        self._observations: dict[tuple, list[float]] = {}

    def observe(self, value: float, **labels) -> None:
        """Record an observation."""
        key = self._key(labels)
        with self._lock:
            self._observations.setdefault(key, []).append(value)

    def get_observations(self, **labels) -> list[float]:
        """Get observations for one label combination."""
        with self._lock:
            return list(self._observations.get(self._key(labels), []))

    def clear(self) -> None:
        with self._lock:
            self._observations.clear()

    def to_prometheus(self) -> str:
        lines = self._header()
        with self._lock:
            for label_values, observations in self._observations.items():
                for bucket in self.buckets:
                    count = sum(1 for o in observations if o <= bucket)
                    labels = self._format_labels(label_values, f'le="{bucket}"')
                    lines.append(f"{self.name}_bucket{labels} {count}")
                labels = self._format_labels(label_values, 'le="+Inf"')
                lines.append(f"{self.name}_bucket{labels} {len(observations)}")
                plain = self._format_labels(label_values)
                lines.append(f"{self.name}_sum{plain} {sum(observations)}")
                lines.append(f"{self.name}_count{plain} {len(observations)}")
        return "\n".join(lines)


# =============================================================================
# Cache Metrics
# =============================================================================

cache_lookups_total = Counter(
    name="pricegate_cache_lookups_total",
    description="Cache lookups by the source that answered them",
    labels=["source"],
)

kv_errors_total = Counter(
    name="pricegate_kv_errors_total",
    description="Key-value store operations that raised",
    labels=["operation"],
)


# =============================================================================
# Upstream Metrics
# =============================================================================

upstream_latency_seconds = Histogram(
    name="pricegate_upstream_latency_seconds",
    description="Latency of upstream calls including retries",
    labels=["endpoint"],
)

upstream_retries_total = Counter(
    name="pricegate_upstream_retries_total",
    description="Retry attempts against upstream APIs",
)


# =============================================================================
# Circuit Breaker Metrics
# =============================================================================

circuit_rejections_total = Counter(
    name="pricegate_circuit_rejections_total",
    description="Calls rejected because the circuit was open",
    labels=["endpoint"],
)

circuit_transitions_total = Counter(
    name="pricegate_circuit_transitions_total",
    description="Circuit breaker state transitions",
    labels=["endpoint", "to_state"],
)

# 0 = closed, 1 = half-open, 2 = open
circuit_state = Gauge(
    name="pricegate_circuit_state",
    description="Last observed circuit state per endpoint",
    labels=["endpoint"],
)


# =============================================================================
# Dedup / Warming Metrics
# =============================================================================

dedup_shared_total = Counter(
    name="pricegate_dedup_shared_total",
    description="Calls that joined an identical in-flight request",
)

cache_warming_passes_total = Counter(
    name="pricegate_cache_warming_passes_total",
    description="Cache warming passes by outcome",
    labels=["outcome"],
)


_ALL_METRICS = [
    cache_lookups_total,
    kv_errors_total,
    upstream_latency_seconds,
    upstream_retries_total,
    circuit_rejections_total,
    circuit_transitions_total,
    circuit_state,
    dedup_shared_total,
    cache_warming_passes_total,
]


def generate_metrics() -> str:
    """Generate all metrics in Prometheus text format."""
    return "\n\n".join(metric.to_prometheus() for metric in _ALL_METRICS)


def reset_metrics() -> None:
    """Clear every registered metric."""
    for metric in _ALL_METRICS:
        metric.clear()
