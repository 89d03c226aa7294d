"""Key-value store interface consumed by the resilience layer."""

from typing import Optional, Protocol, runtime_checkable


@runtime_checkable
class KVStore(Protocol):
    """Durable, TTL-capable byte store.

    Implementations may raise on connectivity problems; callers in this
    package log those errors and carry on without caching.
    """

    async def get(self, key: str) -> Optional[bytes]:
        """Return the stored bytes, or None if absent or expired."""
        ...

    async def put(self, key: str, value: bytes, ttl_seconds: int) -> None:
        """Store ``value`` under ``key`` for ``ttl_seconds``."""
        ...

    async def delete(self, key: str) -> None:
        """Remove ``key`` if present."""
        ...
