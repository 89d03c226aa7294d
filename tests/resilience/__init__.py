"""Tests for resilience module."""

import pytest


def test_resilience_imports():
    """Test that resilience module can be imported."""
    from pricegate.resilience import (
        retry_with_backoff,
        RetryExecutor,
        CircuitBreaker,
        CircuitState,
        RequestDeduplicator,
        FallbackCache,
        CacheWarmer,
        with_deadline,
    )

    assert retry_with_backoff is not None
    assert CircuitBreaker is not None
    assert FallbackCache is not None
    assert CacheWarmer is not None
