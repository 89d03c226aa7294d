"""Price-data service: the entry point command handlers talk to.

Wires the key-value store, circuit breaker, deduplicator, retry executor,
fallback cache and cache warmer together. Construct one per process and pass
it to handlers; nothing here is a module-level singleton.
"""

import logging
import time
from typing import Any, Awaitable, Callable, Optional, Sequence, TypeVar

from .config import Settings
from .resilience.backoff import BackoffConfig
from .resilience.circuit_breaker import (
    CircuitBreaker,
    CircuitBreakerConfig,
    CircuitBreakerStore,
    CircuitState,
    CircuitStatus,
)
from .resilience.dedup import RequestDeduplicator
from .resilience.errors import UpstreamError
from .resilience.fallback import CacheConfig, CacheResult, FallbackCache
from .resilience.retry import RetryConfig, RetryExecutor
from .resilience.timeout import with_deadline
from .resilience.warmer import CacheWarmer, WarmTarget
from .storage.base import KVStore
from .storage.memory import InMemoryKVStore
from .storage.redis_store import RedisKVStore

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEGRADED_MESSAGE = "⚠️ Service experiencing issues. Using cached data when available."


class PriceDataService:
    """Resilient access to rate-limited price-data APIs.

    Usage:
        service = PriceDataService(InMemoryKVStore())
        quotes = await service.get_or_fetch("bitcoin", "cmc_quotes", fetch_quotes)
        message = await service.get_human_message("cmc_quotes")
    """

    def __init__(
        self,
        kv_store: KVStore,
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize the service.

        Args:
            kv_store: Shared key-value store
            settings: Configuration (defaults read from the environment)
            clock: Wall-clock source in epoch seconds
        """
        self.settings = settings or Settings()
        self.kv_store = kv_store
        s = self.settings

        self.breaker = CircuitBreaker(
            CircuitBreakerStore(kv_store, ttl_seconds=s.circuit_state_ttl),
            CircuitBreakerConfig(
                failure_threshold=s.failure_threshold,
                recovery_timeout=s.recovery_timeout,
                state_ttl=s.circuit_state_ttl,
                degraded_failure_count=s.degraded_failure_count,
            ),
            clock=clock,
        )
        self.deduplicator = RequestDeduplicator()
        self.retry = RetryExecutor(
            RetryConfig(
                max_attempts=s.max_attempts,
                backoff=BackoffConfig(
                    base_delay=s.backoff_base,
                    multiplier=s.backoff_multiplier,
                    max_delay=s.backoff_max,
                    jitter_max=s.backoff_jitter_max,
                ),
            )
        )
        self.cache = FallbackCache(
            kv_store,
            self.breaker,
            self.deduplicator,
            self.retry,
            CacheConfig(fresh_ttl=s.fresh_ttl, fallback_ttl=s.fallback_ttl),
        )
        self.warmer = CacheWarmer(
            self.cache,
            self.breaker,
            ttl=s.popular_ttl,
            interval_ratio=s.warm_interval_ratio,
            concurrency=s.warm_concurrency,
            clock=clock,
        )

    def ttl_for_key(self, key: str) -> int:
        """Fresh TTL for a key: popular keys are cached longer."""
        if key in self.settings.popular_keys:
            return self.settings.popular_ttl
        return self.settings.fresh_ttl

    async def get_or_fetch(
        self,
        key: str,
        endpoint_id: str,
        fetch_fn: Callable[[], Awaitable[T]],
        ttl_seconds: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> T:
        """Return data for ``key``, from cache, upstream or the fallback tier.

        Args:
            key: Logical cache key
            endpoint_id: Upstream endpoint identifier
            fetch_fn: Zero-argument coroutine function calling the upstream
            ttl_seconds: Fresh TTL (defaults to ``ttl_for_key``)
            timeout: Caller deadline in seconds

        Returns:
            The requested data (possibly stale after an upstream failure)

        Raises:
            CircuitOpenError: Endpoint circuit open and no fallback entry
            RetriesExhaustedError: Upstream kept failing and no fallback entry
            FatalUpstreamError: Upstream rejected the request and no fallback entry
            RequestTimeoutError: ``timeout`` elapsed
        """
        result = await self.fetch(key, endpoint_id, fetch_fn, ttl_seconds, timeout)
        return result.value

    async def fetch(
        self,
        key: str,
        endpoint_id: str,
        fetch_fn: Callable[[], Awaitable[T]],
        ttl_seconds: Optional[int] = None,
        timeout: Optional[float] = None,
    ) -> CacheResult[T]:
        """Like ``get_or_fetch`` but returns the value with its source."""
        self.warmer.schedule()
        ttl = ttl_seconds if ttl_seconds is not None else self.ttl_for_key(key)
        return await with_deadline(
            self.cache.fetch(key, endpoint_id, fetch_fn, ttl),
            timeout,
            description=f"Lookup of {key}",
        )

    async def get_circuit_status(self, endpoint_id: str) -> CircuitStatus:
        """Get breaker status for an endpoint."""
        return await self.breaker.get_status(endpoint_id)

    async def get_human_message(self, endpoint_id: str) -> Optional[str]:
        """User-facing explanation of a degraded endpoint, or None if healthy."""
        status = await self.breaker.get_status(endpoint_id)

        if status.state == CircuitState.OPEN and status.retry_after_seconds > 0:
            return (
                f"⚠️ Service temporarily unavailable due to API limits. "
                f"Retry in {status.retry_after_seconds} seconds."
            )

        if status.failure_count >= self.settings.degraded_failure_count:
            return DEGRADED_MESSAGE

        return None

    async def should_use_fallback(self, endpoint_id: str) -> bool:
        """True if the endpoint is open or degraded."""
        status = await self.breaker.get_status(endpoint_id)
        return status.state == CircuitState.OPEN or not status.healthy

    async def batch_fetch(
        self,
        ids: Sequence[str],
        endpoint_id: str,
        fetch_batch: Callable[[list[str]], Awaitable[dict[str, Any]]],
        batch_size: Optional[int] = None,
        ttl_seconds: Optional[int] = None,
    ) -> dict[str, Any]:
        """Fetch many ids in batches, merging the per-batch results.

        Each batch goes through ``get_or_fetch`` under its own cache key, so
        batches are cached, deduplicated and protected individually. A failing
        batch is logged and left out of the result.

        Args:
            ids: Identifiers to fetch (e.g. coin ids)
            endpoint_id: Upstream endpoint identifier
            fetch_batch: Coroutine function taking a list of ids, returning a dict
            batch_size: Ids per upstream call (defaults to settings)
            ttl_seconds: Fresh TTL for the batch entries

        Returns:
            Merged mapping of id to data
        """
        size = batch_size or self.settings.batch_size
        if size <= 0:
            raise ValueError(f"batch_size must be positive, got {size}")

        results: dict[str, Any] = {}
        for i in range(0, len(ids), size):
            batch = list(ids[i : i + size])
            batch_key = f"batch_{','.join(batch)}"
            try:
                data = await self.get_or_fetch(
                    batch_key,
                    endpoint_id,
                    lambda batch=batch: fetch_batch(batch),
                    ttl_seconds=ttl_seconds,
                )
            except UpstreamError as e:
                logger.error(f"Batch request failed for ids: {','.join(batch)}: {e}")
                continue
            results.update(data)

        return results

    def register_warm_target(
        self,
        key: str,
        endpoint_id: str,
        fetch_fn: Callable[[], Awaitable[Any]],
        ttl: Optional[int] = None,
    ) -> None:
        """Keep ``key`` warm with ``fetch_fn``."""
        self.warmer.add_target(
            WarmTarget(
                key=key,
                endpoint_id=endpoint_id,
                fetch_fn=fetch_fn,
                ttl=ttl if ttl is not None else self.ttl_for_key(key),
            )
        )

    async def maybe_warm(self) -> bool:
        """Run a cache warming pass now if one is due."""
        return await self.warmer.maybe_warm()


def create_kv_store(settings: Settings) -> KVStore:
    """Build the KV store selected by ``settings.kv_backend``."""
    if settings.kv_backend == "memory":
        return InMemoryKVStore()
    if settings.kv_backend == "redis":
        return RedisKVStore.from_url(settings.redis_url, prefix=settings.redis_key_prefix)
    raise ValueError(f"Unknown kv_backend: {settings.kv_backend}")


def create_service(settings: Optional[Settings] = None) -> PriceDataService:
    """Build a PriceDataService from settings."""
    settings = settings or Settings()
    return PriceDataService(create_kv_store(settings), settings)
