"""Traffic-triggered cache warming for popular keys.

There is no scheduler thread: each inbound request calls ``schedule()``,
which starts a warming pass in the background when one is due. A pass is
due when none is running and the previous one started at least
``interval_ratio * ttl`` seconds ago, so popular entries are refreshed
before they expire.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional

from ..monitoring.metrics import cache_warming_passes_total
from .circuit_breaker import CircuitBreaker
from .fallback import CacheSource, FallbackCache

logger = logging.getLogger(__name__)


@dataclass
class WarmTarget:
    """A popular cache key and how to refresh it."""

    key: str
    endpoint_id: str
    fetch_fn: Callable[[], Awaitable[Any]]
    ttl: Optional[int] = None


class CacheWarmer:
    """Refreshes a fixed set of popular keys ahead of expiry."""

    def __init__(
        self,
        cache: FallbackCache,
        breaker: CircuitBreaker,
        targets: Optional[list[WarmTarget]] = None,
        ttl: int = 300,
        interval_ratio: float = 0.8,
        concurrency: int = 1,
        clock: Callable[[], float] = time.time,
    ):
        """Initialize cache warmer.

        Args:
            cache: Cache whose entries are refreshed
            breaker: Breaker consulted for endpoint health
            targets: Keys to keep warm
            ttl: Fresh TTL of the warmed entries in seconds
            interval_ratio: Fraction of ``ttl`` between passes
            concurrency: Max targets refreshed at once
            clock: Wall-clock source in epoch seconds
        """
        self.cache = cache
        self.breaker = breaker
        self.targets: list[WarmTarget] = list(targets or [])
        self.ttl = ttl
        self.interval_ratio = interval_ratio
        self.concurrency = max(1, concurrency)
        self._clock = clock
        self._in_progress = False
        self._last_warming_time = 0.0
        self._lock = threading.Lock()
        self._background: Optional[asyncio.Task] = None

    @property
    def interval(self) -> float:
        return self.ttl * self.interval_ratio

    def add_target(self, target: WarmTarget) -> None:
        self.targets.append(target)

    def should_warm(self) -> bool:
        """Check whether a warming pass is due."""
        with self._lock:
            return self._is_due()

    def _is_due(self) -> bool:
        if self._in_progress or not self.targets:
            return False
        return self._clock() - self._last_warming_time >= self.interval

    async def maybe_warm(self) -> bool:
        """Run a warming pass if one is due.

        Returns:
            True if a pass ran (even if it skipped unhealthy endpoints)
        """
        with self._lock:
            if not self._is_due():
                return False
            self._in_progress = True
            self._last_warming_time = self._clock()

        try:
            logger.info("Starting cache warming for popular keys...")
            targets = await self._healthy_targets()
            if not targets:
                logger.info("No healthy endpoints, skipping cache warming")
                cache_warming_passes_total.inc(outcome="skipped")
                return True

            semaphore = asyncio.Semaphore(self.concurrency)

            async def warm(target: WarmTarget) -> bool:
                async with semaphore:
                    return await self._warm_target(target)

            results = await asyncio.gather(*(warm(t) for t in targets))
            logger.info(f"Cache warming completed: {sum(results)}/{len(targets)} keys refreshed")
            cache_warming_passes_total.inc(outcome="completed")
            return True
        finally:
            with self._lock:
                self._in_progress = False

    async def _healthy_targets(self) -> list[WarmTarget]:
        health: dict[str, bool] = {}
        for target in self.targets:
            if target.endpoint_id not in health:
                status = await self.breaker.get_status(target.endpoint_id)
                health[target.endpoint_id] = status.healthy
                if not status.healthy:
                    logger.info(
                        f"Endpoint {target.endpoint_id} not healthy "
                        f"({status.state.value}), skipping its keys"
                    )
        return [t for t in self.targets if health[t.endpoint_id]]

    async def _warm_target(self, target: WarmTarget) -> bool:
        ttl = target.ttl if target.ttl is not None else self.ttl
        try:
            result = await self.cache.fetch(
                target.key,
                target.endpoint_id,
                target.fetch_fn,
                fresh_ttl=ttl,
                bypass_fresh=True,
            )
        except Exception as e:
            logger.warning(f"Cache warming failed for {target.key}, will retry next cycle: {e}")
            return False
        return result.source == CacheSource.UPSTREAM

    def schedule(self) -> Optional[asyncio.Task]:
        """Start a background warming pass if one is due.

        Must be called from a running event loop.

        Returns:
            The background task, or None if no pass is due
        """
        if not self.should_warm():
            return None
        self._background = asyncio.ensure_future(self.maybe_warm())
        self._background.add_done_callback(_log_background_failure)
        return self._background

    def get_status(self) -> dict[str, Any]:
        """Get cache warming status."""
        with self._lock:
            return {
                "in_progress": self._in_progress,
                "last_warming_time": self._last_warming_time,
                "next_warming_time": self._last_warming_time + self.interval,
                "targets": len(self.targets),
            }


def _log_background_failure(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.error(f"Background cache warming error: {error}")
