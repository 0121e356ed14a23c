"""Tests for Redis utilities: cache helpers and pub/sub channels."""
import time
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from redis.exceptions import WatchError

from src.core.redis import (
    _memory_channels,
    _memory_store,
    cache_delete,
    cache_get,
    cache_set,
    cache_set_if,
    open_channel,
    publish_message,
)


@pytest.fixture(autouse=True)
def clear_memory_store():
    """Clear the memory store before and after each test."""
    _memory_store.clear()
    _memory_channels.clear()
    yield
    _memory_store.clear()
    _memory_channels.clear()


@pytest.fixture
def mock_redis_unavailable():
    """Mock Redis as unavailable (use memory fallback)."""
    with patch("src.core.redis.get_redis", return_value=None):
        yield


class TestCacheOperations:
    """Tests for cache get/set/delete."""

    @pytest.mark.asyncio
    async def test_cache_set_and_get(self, mock_redis_unavailable):
        """Should store and retrieve values."""
        await cache_set("test_key", "test_value", 3600)

        result = await cache_get("test_key")

        assert result == "test_value"

    @pytest.mark.asyncio
    async def test_cache_get_returns_none_for_missing(self, mock_redis_unavailable):
        """Should return None for missing key."""
        result = await cache_get("nonexistent_key")

        assert result is None

    @pytest.mark.asyncio
    async def test_cache_get_returns_none_for_expired(self, mock_redis_unavailable):
        """Should return None and evict an expired key."""
        _memory_store["expired_key"] = ("value", time.time() - 100)

        result = await cache_get("expired_key")

        assert result is None
        assert "expired_key" not in _memory_store

    @pytest.mark.asyncio
    async def test_cache_set_without_expiry(self, mock_redis_unavailable):
        """Should keep values forever when no expiry is given."""
        await cache_set("sticky_key", "value", expire_seconds=None)

        _, expiry = _memory_store["sticky_key"]
        assert expiry is None
        assert await cache_get("sticky_key") == "value"

    @pytest.mark.asyncio
    async def test_cache_set_default_expiry(self, mock_redis_unavailable):
        """Should use a one hour expiry by default."""
        before = time.time()
        await cache_set("default_expiry_key", "value")

        _, expiry = _memory_store["default_expiry_key"]
        assert before + 3600 <= expiry <= time.time() + 3600

    @pytest.mark.asyncio
    async def test_cache_delete(self, mock_redis_unavailable):
        """Should delete key from cache."""
        await cache_set("delete_key", "value", 3600)

        await cache_delete("delete_key")

        assert await cache_get("delete_key") is None

    @pytest.mark.asyncio
    async def test_cache_delete_nonexistent(self, mock_redis_unavailable):
        """Should not raise when deleting nonexistent key."""
        await cache_delete("nonexistent_key")

    @pytest.mark.asyncio
    async def test_cache_uses_redis_when_available(self):
        """Should call setex on the Redis client when an expiry is given."""
        client = AsyncMock()
        with patch("src.core.redis.get_redis", return_value=client):
            await cache_set("key", "value", 60)

        client.setex.assert_awaited_once_with("key", 60, "value")


def _redis_pipeline(current, execute_side_effect=None):
    """A Redis client whose transaction pipeline reports ``current`` for GET."""
    pipe = MagicMock()
    pipe.__aenter__ = AsyncMock(return_value=pipe)
    pipe.__aexit__ = AsyncMock(return_value=False)
    pipe.watch = AsyncMock()
    pipe.unwatch = AsyncMock()
    pipe.get = AsyncMock(return_value=current)
    pipe.execute = AsyncMock(side_effect=execute_side_effect, return_value=[True])
    client = MagicMock()
    client.pipeline.return_value = pipe
    return client, pipe


class TestCacheSetIf:
    """Tests for the compare-and-set write."""

    @pytest.mark.asyncio
    async def test_writes_when_allowed(self, mock_redis_unavailable):
        written = await cache_set_if("cas_key", "new", lambda current: current is None)

        assert written is True
        assert await cache_get("cas_key") == "new"

    @pytest.mark.asyncio
    async def test_keeps_value_when_refused(self, mock_redis_unavailable):
        await cache_set("cas_key", "old")

        written = await cache_set_if("cas_key", "new", lambda current: current != "old")

        assert written is False
        assert await cache_get("cas_key") == "old"

    @pytest.mark.asyncio
    async def test_expired_value_reads_as_missing(self, mock_redis_unavailable):
        _memory_store["cas_key"] = ("old", time.time() - 10)
        seen = []

        await cache_set_if("cas_key", "new", lambda current: seen.append(current) or True)

        assert seen == [None]

    @pytest.mark.asyncio
    async def test_redis_retries_after_concurrent_write(self):
        """Should start over when the watched key changed before EXEC."""
        client, pipe = _redis_pipeline("old", execute_side_effect=[WatchError(), [True]])

        with patch("src.core.redis.get_redis", AsyncMock(return_value=client)):
            written = await cache_set_if("cas_key", "new", lambda current: True, expire_seconds=30)

        assert written is True
        assert pipe.watch.await_count == 2
        assert pipe.execute.await_count == 2
        pipe.setex.assert_called_with("cas_key", 30, "new")

    @pytest.mark.asyncio
    async def test_redis_refusal_unwatches(self):
        client, pipe = _redis_pipeline("old")

        with patch("src.core.redis.get_redis", AsyncMock(return_value=client)):
            written = await cache_set_if("cas_key", "new", lambda current: False)

        assert written is False
        pipe.unwatch.assert_awaited_once()
        pipe.execute.assert_not_awaited()


class TestChannels:
    """Tests for the in-process pub/sub fallback."""

    @pytest.mark.asyncio
    async def test_publish_reaches_every_listener(self, mock_redis_unavailable):
        first = await open_channel("changes:1")
        second = await open_channel("changes:1")

        delivered = await publish_message("changes:1", "payload")

        assert delivered == 2
        assert await first.get(timeout=0.1) == "payload"
        assert await second.get(timeout=0.1) == "payload"

    @pytest.mark.asyncio
    async def test_publish_without_listeners(self, mock_redis_unavailable):
        assert await publish_message("changes:empty", "payload") == 0

    @pytest.mark.asyncio
    async def test_channels_are_isolated(self, mock_redis_unavailable):
        listener = await open_channel("changes:1")

        await publish_message("changes:2", "payload")

        assert await listener.get(timeout=0.05) is None

    @pytest.mark.asyncio
    async def test_close_unregisters_and_is_idempotent(self, mock_redis_unavailable):
        listener = await open_channel("changes:1")

        await listener.close()
        await listener.close()

        assert "changes:1" not in _memory_channels
        assert await listener.get(timeout=0.01) is None

    @pytest.mark.asyncio
    async def test_redis_pubsub_listener(self):
        """Should read data messages from a Redis PubSub."""
        pubsub = MagicMock()
        pubsub.subscribe = AsyncMock()
        pubsub.get_message = AsyncMock(return_value={"type": "message", "data": "payload"})
        client = MagicMock()
        client.pubsub.return_value = pubsub

        with patch("src.core.redis.get_redis", AsyncMock(return_value=client)):
            listener = await open_channel("changes:1")

        pubsub.subscribe.assert_awaited_once_with("changes:1")
        assert await listener.get(timeout=0.1) == "payload"
        pubsub.get_message.assert_awaited_once_with(ignore_subscribe_messages=True, timeout=0.1)
