"""JSON access to a KVStore that logs and absorbs store failures.

Caching is an optimization: a KV outage turns reads into misses and writes
into no-ops instead of failing the request.
"""

import json
import logging
from typing import Any, Optional

from ..monitoring.metrics import kv_errors_total
from .base import KVStore

logger = logging.getLogger(__name__)

_MISSING = object()


class JsonKV:
    """Stores JSON-serializable values in a KVStore."""

    MISSING = _MISSING

    def __init__(self, store: KVStore):
        self.store = store

    async def get(self, key: str) -> Any:
        """Read and decode a value.

        Args:
            key: Store key

        Returns:
            The decoded value, or ``JsonKV.MISSING`` on miss, store error or
            undecodable payload
        """
        try:
            raw = await self.store.get(key)
        except Exception as e:
            kv_errors_total.inc(operation="get")
            logger.error(f"Failed to get cache for key {key}: {e}")
            return _MISSING

        if raw is None:
            return _MISSING

        try:
            return json.loads(raw)
        except (ValueError, UnicodeDecodeError) as e:
            logger.warning(f"Discarding undecodable cache entry {key}: {e}")
            return _MISSING

    async def put(self, key: str, value: Any, ttl_seconds: int) -> bool:
        """Encode and store a value.

        Args:
            key: Store key
            value: JSON-serializable value
            ttl_seconds: Time to live

        Returns:
            True if the value was stored
        """
        try:
            payload = json.dumps(value).encode("utf-8")
        except (TypeError, ValueError) as e:
            logger.warning(f"Value for key {key} is not JSON-serializable, not caching: {e}")
            return False

        try:
            await self.store.put(key, payload, ttl_seconds)
        except Exception as e:
            kv_errors_total.inc(operation="put")
            logger.error(f"Failed to cache data for key {key}: {e}")
            return False

        logger.debug(f"Cached data for key: {key} with TTL: {ttl_seconds}s")
        return True

    async def delete(self, key: str) -> bool:
        """Delete a key.

        Returns:
            True if the store accepted the delete
        """
        try:
            await self.store.delete(key)
        except Exception as e:
            kv_errors_total.inc(operation="delete")
            logger.error(f"Failed to delete cache for key {key}: {e}")
            return False
        return True


def is_missing(value: Optional[Any]) -> bool:
    """True if ``value`` is the JsonKV miss sentinel."""
    return value is _MISSING
