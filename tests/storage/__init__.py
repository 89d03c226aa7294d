"""Tests for storage module."""


def test_storage_imports():
    """Test that storage backends can be imported."""
    from pricegate.storage import InMemoryKVStore, JsonKV, KVStore, RedisKVStore

    assert isinstance(InMemoryKVStore(), KVStore)
    assert JsonKV is not None
    assert RedisKVStore is not None
