"""Pytest configuration and fixtures for pricegate tests."""

import pytest

from pricegate.config import Settings
from pricegate.monitoring.metrics import reset_metrics
from pricegate.storage.memory import InMemoryKVStore


class FakeClock:
    """Manually advanced clock, callable like time.time."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FailingKVStore:
    """KV store whose every operation raises, like an unreachable Redis."""

    def __init__(self):
        self.calls = 0

    async def get(self, key):
        self.calls += 1
        raise ConnectionError("KV store unavailable")

    async def put(self, key, value, ttl_seconds):
        self.calls += 1
        raise ConnectionError("KV store unavailable")

    async def delete(self, key):
        self.calls += 1
        raise ConnectionError("KV store unavailable")


@pytest.fixture(autouse=True)
def use_test_environment(monkeypatch):
    """Ensure all tests use test environment variables."""
    monkeypatch.setenv("PRICEGATE_KV_BACKEND", "memory")
    monkeypatch.setenv("PRICEGATE_REDIS_URL", "redis://localhost:6379/0")


@pytest.fixture(autouse=True)
def clean_metrics():
    """Start every test with empty metrics."""
    reset_metrics()
    yield
    reset_metrics()


@pytest.fixture
def clock():
    """Fake wall clock."""
    return FakeClock()


@pytest.fixture
def kv_store(clock):
    """In-memory KV store sharing the fake clock."""
    return InMemoryKVStore(clock=clock)


@pytest.fixture
def failing_kv_store():
    """KV store that always raises."""
    return FailingKVStore()


@pytest.fixture
def test_settings():
    """Settings with tiny backoff so retries do not slow tests down."""
    return Settings(
        kv_backend="memory",
        failure_threshold=5,
        recovery_timeout=60.0,
        max_attempts=3,
        backoff_base=0.001,
        backoff_max=0.01,
        backoff_jitter_max=0.0,
        fresh_ttl=60,
        popular_ttl=300,
        fallback_ttl=3600,
    )


@pytest.fixture
def sample_quote():
    """Sample price payload as returned by an upstream."""
    return {
        "bitcoin": {"usd": 64250.12, "usd_24h_change": -1.25},
        "ethereum": {"usd": 3120.55, "usd_24h_change": 0.85},
    }
