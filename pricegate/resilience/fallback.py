"""Two-tier cache that serves stale data when the upstream fails.

Each logical key has two entries in the KV store:
- ``fresh_<key>``: short TTL, answers requests without an upstream call
- ``fallback_<key>``: long TTL, rewritten on every successful fetch and read
  only when the upstream call fails

Availability wins over freshness: once the upstream is degraded callers may
receive data up to ``fallback_ttl`` old.
"""

import logging
import time
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from ..monitoring.metrics import cache_lookups_total, upstream_latency_seconds
from ..storage.base import KVStore
from ..storage.json_kv import JsonKV, is_missing
from .circuit_breaker import CircuitBreaker
from .dedup import RequestDeduplicator
from .errors import UpstreamError
from .retry import RetryExecutor

logger = logging.getLogger(__name__)

T = TypeVar("T")


class CacheSource(str, Enum):
    """Where a cache lookup got its value."""

    FRESH = "fresh"  # Fresh tier hit
    UPSTREAM = "upstream"  # Fetched from upstream just now
    FALLBACK = "fallback"  # Stale value served after an upstream failure


@dataclass
class CacheConfig:
    """Configuration for the fallback cache."""

    fresh_ttl: int = 60  # Default fresh TTL in seconds
    fallback_ttl: int = 3600  # Fallback tier TTL in seconds


@dataclass
class CacheResult(Generic[T]):
    """A looked-up value and where it came from."""

    value: T
    source: CacheSource

    @property
    def is_stale(self) -> bool:
        return self.source == CacheSource.FALLBACK


class FallbackCache:
    """Fresh/fallback cache in front of the breaker, deduplicator and retries.

    Usage:
        cache = FallbackCache(kv, breaker, dedup, retry)
        quotes = await cache.get_or_fetch("bitcoin_usd", "cmc_quotes", fetch_quotes)
    """

    FRESH_PREFIX = "fresh_"
    FALLBACK_PREFIX = "fallback_"

    def __init__(
        self,
        store: KVStore,
        breaker: CircuitBreaker,
        deduplicator: RequestDeduplicator,
        retry: RetryExecutor,
        config: Optional[CacheConfig] = None,
    ):
        self._kv = JsonKV(store)
        self.breaker = breaker
        self.deduplicator = deduplicator
        self.retry = retry
        self.config = config or CacheConfig()

    @staticmethod
    def fingerprint(key: str, endpoint_id: str) -> str:
        """Deterministic identity of a fetch for deduplication."""
        return f"{endpoint_id}:{key}"

    async def get_or_fetch(
        self,
        key: str,
        endpoint_id: str,
        fetch_fn: Callable[[], Awaitable[T]],
        fresh_ttl: Optional[int] = None,
        bypass_fresh: bool = False,
    ) -> T:
        """Return cached data or fetch it, falling back to stale data on failure.

        Args:
            key: Logical cache key
            endpoint_id: Upstream endpoint identifier (selects the breaker)
            fetch_fn: Zero-argument coroutine function calling the upstream
            fresh_ttl: Fresh-tier TTL in seconds (defaults to config)
            bypass_fresh: Skip the fresh tier and always call the upstream

        Returns:
            Fresh, newly fetched or stale fallback data

        Raises:
            UpstreamError: The fetch failed and no fallback entry exists
        """
        result = await self.fetch(key, endpoint_id, fetch_fn, fresh_ttl, bypass_fresh)
        return result.value

    async def fetch(
        self,
        key: str,
        endpoint_id: str,
        fetch_fn: Callable[[], Awaitable[T]],
        fresh_ttl: Optional[int] = None,
        bypass_fresh: bool = False,
    ) -> CacheResult[T]:
        """Like ``get_or_fetch`` but reports the source of the value."""
        if not bypass_fresh:
            fresh = await self._kv.get(self.FRESH_PREFIX + key)
            if not is_missing(fresh):
                logger.debug(f"Cache hit for key: {key}")
                cache_lookups_total.inc(source=CacheSource.FRESH.value)
                return CacheResult(fresh, CacheSource.FRESH)

        logger.debug(f"Cache miss for key: {key}, fetching fresh data")
        fingerprint = self.fingerprint(key, endpoint_id)

        async def guarded() -> T:
            return await self.deduplicator.dedupe(
                fingerprint,
                lambda: self._fetch_and_store(key, fetch_fn, fresh_ttl),
            )

        started = time.monotonic()
        try:
            value = await self.breaker.execute(endpoint_id, guarded)
        except UpstreamError as e:
            upstream_latency_seconds.observe(time.monotonic() - started, endpoint=endpoint_id)
            return await self._serve_fallback(key, e)

        upstream_latency_seconds.observe(time.monotonic() - started, endpoint=endpoint_id)
        cache_lookups_total.inc(source=CacheSource.UPSTREAM.value)
        return CacheResult(value, CacheSource.UPSTREAM)

    async def _fetch_and_store(
        self,
        key: str,
        fetch_fn: Callable[[], Awaitable[T]],
        fresh_ttl: Optional[int],
    ) -> T:
        # Runs in the shared task: caches the result even after every waiter left
        value = await self.retry.run(fetch_fn)
        await self.store(key, value, fresh_ttl)
        return value

    async def _serve_fallback(self, key: str, error: UpstreamError) -> CacheResult[Any]:
        logger.info(f"Primary request failed, attempting fallback cache for: {key}")

        stale = await self._kv.get(self.FALLBACK_PREFIX + key)
        if is_missing(stale):
            cache_lookups_total.inc(source="error")
            raise error

        logger.warning(f"Using fallback cache for: {key} ({error})")
        cache_lookups_total.inc(source=CacheSource.FALLBACK.value)
        return CacheResult(stale, CacheSource.FALLBACK)

    async def store(self, key: str, value: Any, fresh_ttl: Optional[int] = None) -> None:
        """Write a value to both tiers."""
        ttl = fresh_ttl if fresh_ttl is not None else self.config.fresh_ttl
        await self._kv.put(self.FRESH_PREFIX + key, value, ttl)
        await self._kv.put(self.FALLBACK_PREFIX + key, value, self.config.fallback_ttl)

    async def invalidate(self, key: str) -> None:
        """Delete both tiers of a key."""
        await self._kv.delete(self.FRESH_PREFIX + key)
        await self._kv.delete(self.FALLBACK_PREFIX + key)
        logger.info(f"Invalidated cache for key: {key}")
