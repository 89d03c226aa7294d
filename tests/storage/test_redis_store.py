"""Tests for the Redis KV store with a mocked client."""

from unittest.mock import AsyncMock, patch

import pytest

from pricegate.storage.redis_store import RedisKVStore


@pytest.fixture
def client():
    mock = AsyncMock()
    mock.get.return_value = None
    return mock


class TestRedisKVStore:
    """Test RedisKVStore."""

    @pytest.mark.asyncio
    async def test_get_prefixes_key(self, client):
        client.get.return_value = b"payload"
        store = RedisKVStore(client, prefix="test:")

        assert await store.get("fresh_bitcoin") == b"payload"
        client.get.assert_awaited_once_with("test:fresh_bitcoin")

    @pytest.mark.asyncio
    async def test_get_missing(self, client):
        assert await RedisKVStore(client).get("k") is None

    @pytest.mark.asyncio
    async def test_get_decoded_client_returns_bytes(self, client):
        client.get.return_value = '{"usd": 1}'

        assert await RedisKVStore(client).get("k") == b'{"usd": 1}'

    @pytest.mark.asyncio
    async def test_put_sets_expiry(self, client):
        store = RedisKVStore(client)

        await store.put("fallback_bitcoin", b"v", 3600)

        client.set.assert_awaited_once_with("pricegate:fallback_bitcoin", b"v", ex=3600)

    @pytest.mark.asyncio
    async def test_delete(self, client):
        await RedisKVStore(client, prefix="").delete("k")
        client.delete.assert_awaited_once_with("k")

    @pytest.mark.asyncio
    async def test_errors_propagate(self, client):
        client.get.side_effect = ConnectionError("Connection refused")

        with pytest.raises(ConnectionError):
            await RedisKVStore(client).get("k")

    @pytest.mark.asyncio
    async def test_ping(self, client):
        client.ping.return_value = True
        assert await RedisKVStore(client).ping() is True

        client.ping.side_effect = ConnectionError("down")
        assert await RedisKVStore(client).ping() is False

    @pytest.mark.asyncio
    async def test_close(self, client):
        await RedisKVStore(client).close()
        client.aclose.assert_awaited_once()

    def test_from_url(self):
        with patch("pricegate.storage.redis_store.aioredis.from_url") as from_url:
            store = RedisKVStore.from_url("redis://cache:6379/1", prefix="bot:")

        from_url.assert_called_once_with("redis://cache:6379/1", socket_timeout=2.0)
        assert store.client is from_url.return_value
        assert store.prefix == "bot:"
