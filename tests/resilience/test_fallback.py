"""Tests for the two-tier fallback cache."""

import asyncio
import json
from unittest.mock import AsyncMock

import pytest

from pricegate.monitoring.metrics import cache_lookups_total, upstream_latency_seconds
from pricegate.resilience.backoff import BackoffConfig
from pricegate.resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerStore,
    CircuitState,
)
from pricegate.resilience.dedup import RequestDeduplicator
from pricegate.resilience.errors import (
    CircuitOpenError,
    NotFoundError,
    RetriesExhaustedError,
    UpstreamUnavailableError,
)
from pricegate.resilience.fallback import CacheConfig, CacheResult, CacheSource, FallbackCache
from pricegate.resilience.retry import RetryConfig, RetryExecutor


def build_cache(store, clock, failure_threshold=5, max_attempts=2):
    """Cache wired with a fast retry executor."""
    breaker = CircuitBreaker(
        CircuitBreakerStore(store),
        CircuitBreakerConfig(failure_threshold=failure_threshold),
        clock=clock,
    )
    retry = RetryExecutor(
        RetryConfig(max_attempts=max_attempts, backoff=BackoffConfig(jitter_max=0)),
        sleep=AsyncMock(),
    )
    return FallbackCache(
        store,
        breaker,
        RequestDeduplicator(),
        retry,
        CacheConfig(fresh_ttl=60, fallback_ttl=3600),
    )


@pytest.fixture
def cache(kv_store, clock):
    return build_cache(kv_store, clock)


class TestCacheResult:
    """Test CacheResult."""

    def test_stale_only_for_fallback(self):
        assert CacheResult(1, CacheSource.FALLBACK).is_stale
        assert not CacheResult(1, CacheSource.FRESH).is_stale
        assert not CacheResult(1, CacheSource.UPSTREAM).is_stale


class TestFallbackCache:
    """Test fresh hits, fetches and fallbacks."""

    @pytest.mark.asyncio
    async def test_miss_fetches_and_stores_both_tiers(self, cache, kv_store, sample_quote):
        fetch = AsyncMock(return_value=sample_quote)

        result = await cache.fetch("prices_btc_eth", "coingecko_prices", fetch)

        assert result.value == sample_quote
        assert result.source == CacheSource.UPSTREAM
        assert json.loads(await kv_store.get("fresh_prices_btc_eth")) == sample_quote
        assert json.loads(await kv_store.get("fallback_prices_btc_eth")) == sample_quote
        assert cache_lookups_total.get(source="upstream") == 1
        assert len(upstream_latency_seconds.get_observations(endpoint="coingecko_prices")) == 1

    @pytest.mark.asyncio
    async def test_fresh_hit_skips_upstream(self, cache, sample_quote):
        fetch = AsyncMock(return_value=sample_quote)
        await cache.get_or_fetch("prices", "coingecko_prices", fetch)

        result = await cache.fetch("prices", "coingecko_prices", fetch)

        assert result.source == CacheSource.FRESH
        assert result.value == sample_quote
        assert fetch.await_count == 1
        assert cache_lookups_total.get(source="fresh") == 1

    @pytest.mark.asyncio
    async def test_fresh_entry_expires(self, cache, clock):
        fetch = AsyncMock(side_effect=["first", "second"])
        await cache.get_or_fetch("k", "general", fetch, fresh_ttl=30)

        clock.advance(31)

        assert await cache.get_or_fetch("k", "general", fetch) == "second"
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_fallback_served_when_upstream_fails(self, cache, clock):
        """A retryable failure after the fresh entry expired yields stale data."""
        await cache.get_or_fetch("k", "cmc_quotes", AsyncMock(return_value={"usd": 1}))
        clock.advance(61)

        failing = AsyncMock(side_effect=UpstreamUnavailableError("503"))
        result = await cache.fetch("k", "cmc_quotes", failing)

        assert result.value == {"usd": 1}
        assert result.source == CacheSource.FALLBACK
        assert result.is_stale
        assert failing.await_count == 2
        assert cache_lookups_total.get(source="fallback") == 1

    @pytest.mark.asyncio
    async def test_error_raised_without_fallback(self, cache):
        failing = AsyncMock(side_effect=UpstreamUnavailableError("503"))

        with pytest.raises(RetriesExhaustedError):
            await cache.get_or_fetch("never_cached", "cmc_quotes", failing)

        assert cache_lookups_total.get(source="error") == 1

    @pytest.mark.asyncio
    async def test_fatal_error_uses_fallback_but_spares_breaker(self, cache, clock):
        await cache.get_or_fetch("k", "cmc_quotes", AsyncMock(return_value="old"))
        clock.advance(61)

        result = await cache.fetch("k", "cmc_quotes", AsyncMock(side_effect=NotFoundError("gone")))

        assert result.source == CacheSource.FALLBACK
        status = await cache.breaker.get_status("cmc_quotes")
        assert status.failure_count == 0

    @pytest.mark.asyncio
    async def test_open_circuit_serves_fallback_without_upstream(self, kv_store, clock):
        cache = build_cache(kv_store, clock, failure_threshold=1)
        await cache.get_or_fetch("k", "cmc_quotes", AsyncMock(return_value="cached"))
        clock.advance(61)

        await cache.fetch("k", "cmc_quotes", AsyncMock(side_effect=UpstreamUnavailableError("down")))
        assert (await cache.breaker.get_status("cmc_quotes")).state == CircuitState.OPEN

        fetch = AsyncMock(return_value="new")
        result = await cache.fetch("k", "cmc_quotes", fetch)

        assert result.value == "cached"
        assert result.source == CacheSource.FALLBACK
        fetch.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_open_circuit_without_fallback_raises(self, kv_store, clock):
        cache = build_cache(kv_store, clock, failure_threshold=1)
        with pytest.raises(RetriesExhaustedError):
            await cache.fetch("k", "cmc_quotes", AsyncMock(side_effect=UpstreamUnavailableError("down")))

        with pytest.raises(CircuitOpenError):
            await cache.fetch("k", "cmc_quotes", AsyncMock(return_value="x"))

    @pytest.mark.asyncio
    async def test_bypass_fresh_refreshes(self, cache, kv_store):
        await cache.get_or_fetch("k", "general", AsyncMock(return_value="old"))

        result = await cache.fetch("k", "general", AsyncMock(return_value="new"), bypass_fresh=True)

        assert result.source == CacheSource.UPSTREAM
        assert result.value == "new"
        assert json.loads(await kv_store.get("fresh_k")) == "new"

    @pytest.mark.asyncio
    async def test_concurrent_misses_share_fetch(self, cache):
        release = asyncio.Event()
        calls = 0

        async def fetch():
            nonlocal calls
            calls += 1
            await release.wait()
            return "shared"

        tasks = [asyncio.ensure_future(cache.get_or_fetch("k", "general", fetch)) for _ in range(5)]
        await asyncio.sleep(0.01)
        release.set()

        assert await asyncio.gather(*tasks) == ["shared"] * 5
        assert calls == 1

    @pytest.mark.asyncio
    async def test_abandoned_fetch_is_cached(self, cache, kv_store):
        """The shared fetch writes both tiers even when its only waiter left."""
        release = asyncio.Event()

        async def fetch():
            await release.wait()
            return "late"

        waiter = asyncio.ensure_future(cache.get_or_fetch("k", "general", fetch))
        await asyncio.sleep(0.01)
        waiter.cancel()
        with pytest.raises(asyncio.CancelledError):
            await waiter

        release.set()
        await asyncio.sleep(0.01)

        assert json.loads(await kv_store.get("fresh_k")) == "late"
        assert json.loads(await kv_store.get("fallback_k")) == "late"

    @pytest.mark.asyncio
    async def test_null_value_is_cached(self, cache):
        fetch = AsyncMock(return_value=None)

        await cache.get_or_fetch("k", "general", fetch)
        result = await cache.fetch("k", "general", fetch)

        assert result.source == CacheSource.FRESH
        assert result.value is None
        assert fetch.await_count == 1

    @pytest.mark.asyncio
    async def test_unserializable_value_is_returned_not_cached(self, cache, kv_store):
        value = {"at": object()}

        assert await cache.get_or_fetch("k", "general", AsyncMock(return_value=value)) is value
        assert await kv_store.get("fresh_k") is None

    @pytest.mark.asyncio
    async def test_invalidate_deletes_both_tiers(self, cache, kv_store):
        await cache.get_or_fetch("k", "general", AsyncMock(return_value=1))

        await cache.invalidate("k")

        assert await kv_store.get("fresh_k") is None
        assert await kv_store.get("fallback_k") is None


class TestKVOutage:
    """Cache degrades to pass-through when the store is down."""

    @pytest.mark.asyncio
    async def test_fetch_succeeds_without_store(self, failing_kv_store, clock):
        cache = build_cache(failing_kv_store, clock)
        fetch = AsyncMock(return_value="live")

        assert await cache.get_or_fetch("k", "general", fetch) == "live"
        assert await cache.get_or_fetch("k", "general", fetch) == "live"
        assert fetch.await_count == 2

    @pytest.mark.asyncio
    async def test_failure_without_store_raises_upstream_error(self, failing_kv_store, clock):
        cache = build_cache(failing_kv_store, clock)

        with pytest.raises(RetriesExhaustedError):
            await cache.get_or_fetch("k", "general", AsyncMock(side_effect=UpstreamUnavailableError("x")))
