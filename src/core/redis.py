"""Redis client and utilities for shared state and change notifications."""
import asyncio
import logging
import time
from typing import Any, Callable

from redis.exceptions import WatchError

from src.config.settings import settings

logger = logging.getLogger(__name__)

# In-memory fallback for development when Redis is not available
_memory_store: dict[str, tuple[str, float | None]] = {}
_memory_channels: dict[str, list[asyncio.Queue]] = {}
_use_memory_fallback = False
_client = None


async def get_redis():
    """Get Redis client instance or memory fallback."""
    global _use_memory_fallback, _client

    if _use_memory_fallback:
        return None
    if _client is not None:
        return _client

    try:
        import redis.asyncio as redis

        pool = redis.ConnectionPool.from_url(
            settings.REDIS_URL,
            decode_responses=True,
        )
        client = redis.Redis(connection_pool=pool)
        await client.ping()
        _client = client
        return client
    except Exception as e:
        logger.warning(f"Redis not available, using in-memory fallback: {e}")
        _use_memory_fallback = True
        return None


async def cache_get(key: str) -> Any | None:
    """Get a value from cache."""
    client = await get_redis()
    if client:
        return await client.get(key)
    else:
        if key in _memory_store:
            value, expiry = _memory_store[key]
            if expiry is None or time.time() < expiry:
                return value
            else:
                del _memory_store[key]
        return None


async def cache_set(key: str, value: Any, expire_seconds: int | None = 3600) -> None:
    """Set a value in cache, optionally with an expiration."""
    client = await get_redis()
    if client:
        if expire_seconds:
            await client.setex(key, expire_seconds, value)
        else:
            await client.set(key, value)
    else:
        expiry = time.time() + expire_seconds if expire_seconds else None
        _memory_store[key] = (value, expiry)


async def cache_set_if(
    key: str,
    value: Any,
    should_replace: Callable[[str | None], bool],
    expire_seconds: int | None = 3600,
) -> bool:
    """Atomically replace a value when ``should_replace(current)`` agrees.

    Uses WATCH/MULTI against Redis and retries when another writer changed
    the key in between. Returns True if the value was written.
    """
    client = await get_redis()
    if client:
        async with client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(key)
                    current = await pipe.get(key)
                    if not should_replace(current):
                        await pipe.unwatch()
                        return False
                    pipe.multi()
                    if expire_seconds:
                        pipe.setex(key, expire_seconds, value)
                    else:
                        pipe.set(key, value)
                    await pipe.execute()
                    return True
                except WatchError:
                    logger.debug("Key %s changed during compare-and-set, retrying", key)
                    continue

    # No await between the read and the write, so this cannot interleave
    current = None
    if key in _memory_store:
        stored, expiry = _memory_store[key]
        if expiry is None or time.time() < expiry:
            current = stored
    if not should_replace(current):
        return False
    expiry = time.time() + expire_seconds if expire_seconds else None
    _memory_store[key] = (value, expiry)
    return True


async def cache_delete(key: str) -> None:
    """Delete a value from cache."""
    client = await get_redis()
    if client:
        await client.delete(key)
    else:
        _memory_store.pop(key, None)


class ChannelListener:
    """A subscription to one pub/sub channel.

    Backed by a Redis ``PubSub`` when Redis is reachable, otherwise by an
    in-process queue registered in ``_memory_channels``. The subscription is
    active as soon as the listener is returned by ``open_channel``.
    """

    def __init__(self, channel: str, pubsub=None, queue: asyncio.Queue | None = None):
        self.channel = channel
        self._pubsub = pubsub
        self._queue = queue
        self._closed = False

    async def get(self, timeout: float = 1.0) -> str | None:
        """Wait up to ``timeout`` seconds for the next message payload."""
        if self._closed:
            return None

        if self._pubsub is not None:
            message = await self._pubsub.get_message(
                ignore_subscribe_messages=True,
                timeout=timeout,
            )
            if message is None or message.get("type") != "message":
                return None
            return message["data"]

        try:
            return await asyncio.wait_for(self._queue.get(), timeout=timeout)
        except asyncio.TimeoutError:
            return None

    async def close(self) -> None:
        """Unsubscribe. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True

        if self._pubsub is not None:
            try:
                await self._pubsub.unsubscribe(self.channel)
                await self._pubsub.aclose()
            except Exception as e:
                logger.warning("Failed to close pubsub for %s: %s", self.channel, e)
            return

        queues = _memory_channels.get(self.channel)
        if queues is not None:
            try:
                queues.remove(self._queue)
            except ValueError:
                pass
            if not queues:
                del _memory_channels[self.channel]


async def open_channel(channel: str) -> ChannelListener:
    """Subscribe to a pub/sub channel."""
    client = await get_redis()
    if client:
        pubsub = client.pubsub()
        await pubsub.subscribe(channel)
        return ChannelListener(channel, pubsub=pubsub)

    queue: asyncio.Queue = asyncio.Queue()
    _memory_channels.setdefault(channel, []).append(queue)
    return ChannelListener(channel, queue=queue)


async def publish_message(channel: str, payload: str) -> int:
    """Publish a payload to every subscriber of a channel.

    Returns:
        Number of subscribers the message was delivered to
    """
    client = await get_redis()
    if client:
        return await client.publish(channel, payload)

    delivered = 0
    for queue in list(_memory_channels.get(channel, [])):
        try:
            queue.put_nowait(payload)
            delivered += 1
        except asyncio.QueueFull:
            pass  # Best-effort broadcast to subscribers
    return delivered
