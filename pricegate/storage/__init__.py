"""Key-value storage backends for pricegate.

This module provides:
- The KVStore protocol
- An in-memory store
- A Redis store
- JSON access that absorbs store failures
"""

from .base import KVStore
from .json_kv import JsonKV, is_missing
from .memory import InMemoryKVStore
from .redis_store import RedisKVStore

__all__ = [
    "KVStore",
    "JsonKV",
    "is_missing",
    "InMemoryKVStore",
    "RedisKVStore",
]
