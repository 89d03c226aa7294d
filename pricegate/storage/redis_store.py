"""Redis-backed key-value store.

Uses ``redis.asyncio`` so every store operation is an await point. Keys are
namespaced with a configurable prefix so several bots can share one Redis.
"""

import logging
from typing import Any, Optional

import redis.asyncio as aioredis

logger = logging.getLogger(__name__)


class RedisKVStore:
    """KVStore implementation on top of a Redis server.

    Usage:
        store = RedisKVStore.from_url("redis://localhost:6379/0")
        await store.put("fresh_bitcoin", b"{...}", 60)
    """

    def __init__(self, client: Any, prefix: str = "pricegate:"):
        """Initialize with an existing async Redis client.

        Args:
            client: ``redis.asyncio.Redis`` (or compatible) client
            prefix: Namespace prepended to every key
        """
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(
        cls,
        url: str,
        prefix: str = "pricegate:",
        socket_timeout: float = 2.0,
    ) -> "RedisKVStore":
        """Create a store from a Redis URL.

        Args:
            url: Redis connection URL
            prefix: Key namespace
            socket_timeout: Per-operation socket timeout in seconds

        Returns:
            Configured RedisKVStore
        """
        client = aioredis.from_url(url, socket_timeout=socket_timeout)
        logger.info(f"RedisKVStore configured for {url}")
        return cls(client, prefix=prefix)

    def _key(self, key: str) -> str:
        return f"{self.prefix}{key}"

    async def get(self, key: str) -> Optional[bytes]:
        value = await self.client.get(self._key(key))
        if value is None:
            return None
        if isinstance(value, str):
            return value.encode("utf-8")
        return value

    async def put(self, key: str, value: bytes, ttl_seconds: int) -> None:
        await self.client.set(self._key(key), value, ex=int(ttl_seconds))

    async def delete(self, key: str) -> None:
        await self.client.delete(self._key(key))

    async def ping(self) -> bool:
        """Check connectivity.

        Returns:
            True if Redis answered
        """
        try:
            return bool(await self.client.ping())
        except Exception as e:
            logger.warning(f"Redis ping failed: {e}")
            return False

    async def close(self) -> None:
        """Close the underlying connection pool."""
        await self.client.aclose()
