"""Monitoring module for pricegate.

This module provides:
- In-process counters, gauges and histograms
- Prometheus text rendering
"""

from .metrics import (
    Counter,
    Gauge,
    Histogram,
    cache_lookups_total,
    cache_warming_passes_total,
    circuit_rejections_total,
    circuit_state,
    circuit_transitions_total,
    dedup_shared_total,
    generate_metrics,
    kv_errors_total,
    reset_metrics,
    upstream_latency_seconds,
    upstream_retries_total,
)

__all__ = [
    "Counter",
    "Gauge",
    "Histogram",
    "cache_lookups_total",
    "kv_errors_total",
    "upstream_latency_seconds",
    "upstream_retries_total",
    "circuit_rejections_total",
    "circuit_transitions_total",
    "circuit_state",
    "dedup_shared_total",
    "cache_warming_passes_total",
    "generate_metrics",
    "reset_metrics",
]
