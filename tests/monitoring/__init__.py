"""Tests for monitoring module."""

import pytest


def test_monitoring_imports():
    """Test that all monitoring module components can be imported."""
    from pricegate.monitoring import (
        cache_lookups_total,
        kv_errors_total,
        upstream_latency_seconds,
        upstream_retries_total,
        circuit_rejections_total,
        circuit_transitions_total,
        circuit_state,
        dedup_shared_total,
        cache_warming_passes_total,
        generate_metrics,
    )

    assert cache_lookups_total is not None
    assert generate_metrics is not None
