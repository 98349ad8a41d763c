"""Redis client wrapper backing the query cache."""

import json
import logging
from typing import Any

import redis.asyncio as aioredis

from convocrm.settings import settings

logger = logging.getLogger(__name__)


class RedisClient:
    """Redis client wrapper for async operations.

    When Redis is disabled (or the connection fails) every read misses and
    every write is a no-op, so callers never need to branch on availability.
    """

    def __init__(self) -> None:
        """Initialize Redis client."""
        self._client: aioredis.Redis | None = None
        self._enabled: bool = settings.redis_enabled

    @property
    def enabled(self) -> bool:
        return self._enabled and self._client is not None

    async def connect(self) -> None:
        """Connect to Redis."""
        if not self._enabled:
            logger.info("Redis disabled - skipping connection")
            return
        if self._client is None:
            try:
                self._client = aioredis.from_url(
                    settings.redis_url,
                    encoding="utf-8",
                    decode_responses=True,
                )
                await self._client.ping()
                logger.info("Redis connected successfully")
            except (aioredis.RedisError, OSError) as e:
                logger.warning(f"Redis connection failed: {e}. Continuing without Redis.")
                self._client = None
                self._enabled = False

    async def disconnect(self) -> None:
        """Disconnect from Redis."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def get(self, key: str) -> str | None:
        """Get value from Redis, or None when missing or disabled."""
        if not self.enabled:
            return None
        return await self._client.get(key)

    async def set(self, key: str, value: str, ttl: int | None = None) -> bool:
        """Set value in Redis.

        Args:
            key: Redis key
            value: Value to set
            ttl: Optional time-to-live in seconds

        Returns:
            True if successful
        """
        if not self.enabled:
            return True  # Pretend success when disabled
        if ttl:
            return await self._client.setex(key, ttl, value)
        return await self._client.set(key, value)

    async def delete_prefix(self, prefix: str) -> int:
        """Delete every key starting with prefix.

        Returns:
            Number of keys deleted
        """
        if not self.enabled:
            return 0
        deleted = 0
        async for key in self._client.scan_iter(match=f"{prefix}*"):
            deleted += await self._client.delete(key)
        return deleted

    async def get_json(self, key: str) -> Any | None:
        """Get JSON value from Redis."""
        value = await self.get(key)
        if value is None:
            return None
        return json.loads(value)

    async def set_json(self, key: str, value: Any, ttl: int | None = None) -> bool:
        """Set JSON value in Redis."""
        return await self.set(key, json.dumps(value, default=str), ttl)


# Global Redis client instance
redis_client = RedisClient()
