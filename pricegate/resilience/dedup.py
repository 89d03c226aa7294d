"""Request deduplication for concurrent identical upstream calls."""

import asyncio
import logging
import threading
from typing import Any, Awaitable, Callable, TypeVar

from ..monitoring.metrics import dedup_shared_total

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RequestDeduplicator:
    """Collapses concurrent calls with the same fingerprint into one.

    The first caller for a fingerprint starts the operation as a task; later
    callers await that same task until it settles. Every caller observes the
    same value or the same exception.

    Usage:
        dedup = RequestDeduplicator()
        prices = await dedup.dedupe("cmc_quotes:bitcoin", fetch_prices)
    """

    def __init__(self):
        self._in_flight: dict[str, asyncio.Task] = {}
        self._lock = threading.Lock()

    async def dedupe(self, fingerprint: str, op: Callable[[], Awaitable[T]]) -> T:
        """Run ``op`` unless an identical request is already in flight.

        Args:
            fingerprint: Deterministic request identity
            op: Zero-argument coroutine function

        Returns:
            The shared result
        """
        with self._lock:
            task = self._in_flight.get(fingerprint)
            if task is None:
                task = asyncio.ensure_future(self._run(fingerprint, op))
                task.add_done_callback(_consume_exception)
                self._in_flight[fingerprint] = task
                shared = False
            else:
                shared = True

        if shared:
            logger.debug(f"Deduplicating request: {fingerprint}")
            dedup_shared_total.inc()

        # A waiter giving up must not cancel the fetch for everyone else
        return await asyncio.shield(task)

    async def _run(self, fingerprint: str, op: Callable[[], Awaitable[T]]) -> T:
        try:
            return await op()
        finally:
            # Deregister before the result reaches any waiter
            with self._lock:
                if self._in_flight.get(fingerprint) is asyncio.current_task():
                    del self._in_flight[fingerprint]

    def is_in_flight(self, fingerprint: str) -> bool:
        with self._lock:
            return fingerprint in self._in_flight

    @property
    def in_flight_count(self) -> int:
        with self._lock:
            return len(self._in_flight)


def _consume_exception(task: "asyncio.Task[Any]") -> None:
    """Mark a failed shared task's exception as retrieved.

    When every waiter has timed out nobody awaits the task, which would
    otherwise log 'exception was never retrieved'.
    """
    if not task.cancelled():
        task.exception()
