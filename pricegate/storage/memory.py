"""In-memory key-value store with per-key TTL."""

import threading
import time
from typing import Callable, Optional


class InMemoryKVStore:
    """Process-local KVStore for tests and single-process deployments.

    Expired entries are dropped lazily on read.
    """

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        """Initialize the store.

        Args:
            clock: Time source in seconds, injectable for tests
        """
        self._clock = clock
        self._data: dict[str, tuple[bytes, float]] = {}
        self._lock = threading.Lock()

    async def get(self, key: str) -> Optional[bytes]:
        with self._lock:
            item = self._data.get(key)
            if item is None:
                return None
            value, expires_at = item
            if self._clock() >= expires_at:
                del self._data[key]
                return None
            return value

    async def put(self, key: str, value: bytes, ttl_seconds: int) -> None:
        if ttl_seconds <= 0:
            raise ValueError(f"ttl_seconds must be positive, got {ttl_seconds}")
        with self._lock:
            self._data[key] = (value, self._clock() + ttl_seconds)

    async def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def keys(self) -> list[str]:
        """Return keys that have not expired."""
        now = self._clock()
        with self._lock:
            return [k for k, (_, expires_at) in self._data.items() if expires_at > now]

    def clear(self) -> None:
        """Remove every entry."""
        with self._lock:
            self._data.clear()
