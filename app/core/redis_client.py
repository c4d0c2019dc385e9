"""
Redis client for job tracking and notification fan-out.
"""

import json
from typing import Any, Optional

import redis.asyncio as redis

from app.config import get_settings

settings = get_settings()


class RedisClient:
    """Async Redis client wrapper."""

    def __init__(self, url: str):
        self.url = url
        self._client: Optional[redis.Redis] = None

    async def connect(self) -> None:
        """Connect to Redis."""
        if self._client is None:
            self._client = redis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
            )

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def client(self) -> redis.Redis:
        """Get Redis client instance."""
        if self._client is None:
            raise RuntimeError("Redis client not connected. Call connect() first.")
        return self._client

    async def ping(self) -> bool:
        return await self.client.ping()

    async def get(self, key: str) -> Optional[str]:
        """Get a value from Redis."""
        return await self.client.get(key)

    async def set(
        self,
        key: str,
        value: str,
        ttl: Optional[int] = None,
        nx: bool = False,
    ) -> bool:
        """
        Set a value in Redis with optional TTL.

        With ``nx=True`` the key is only written if it does not exist yet;
        the return value tells whether the write happened.
        """
        result = await self.client.set(key, value, ex=ttl, nx=nx)
        return bool(result)

    async def get_json(self, key: str) -> Optional[dict]:
        """Get a JSON value from Redis."""
        value = await self.get(key)
        if value:
            return json.loads(value)
        return None

    async def set_json(
        self,
        key: str,
        value: Any,
        ttl: Optional[int] = None,
    ) -> None:
        """Set a JSON value in Redis."""
        await self.set(key, json.dumps(value, default=str), ttl)

    async def delete(self, key: str) -> None:
        """Delete a key from Redis."""
        await self.client.delete(key)

    async def delete_if_equals(self, key: str, value: str) -> bool:
        """Delete ``key`` only while it still holds ``value``."""
        async with self.client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                current = await pipe.get(key)
                if current != value:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.delete(key)
                await pipe.execute()
                return True
            except redis.WatchError:
                return False

    async def replace_if_equals(
        self,
        key: str,
        expected: str,
        value: str,
        ttl: Optional[int] = None,
    ) -> bool:
        """Overwrite ``key`` only while it still holds ``expected``."""
        async with self.client.pipeline(transaction=True) as pipe:
            try:
                await pipe.watch(key)
                current = await pipe.get(key)
                if current != expected:
                    await pipe.unwatch()
                    return False
                pipe.multi()
                pipe.set(key, value, ex=ttl)
                await pipe.execute()
                return True
            except redis.WatchError:
                return False

    async def publish(self, channel: str, message: Any) -> int:
        """Publish a JSON message on a pub/sub channel."""
        return await self.client.publish(channel, json.dumps(message, default=str))

    def pubsub(self):
        """Create a pub/sub handle bound to this client."""
        return self.client.pubsub()


# Global Redis client instance
_redis_client: Optional[RedisClient] = None


async def get_redis() -> RedisClient:
    """Get the global Redis client instance."""
    global _redis_client
    if _redis_client is None:
        _redis_client = RedisClient(settings.redis_url)
        await _redis_client.connect()
    return _redis_client


async def close_redis() -> None:
    """Close the global Redis client."""
    global _redis_client
    if _redis_client:
        await _redis_client.disconnect()
        _redis_client = None
