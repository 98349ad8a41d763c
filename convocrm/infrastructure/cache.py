"""Query cache port.

List queries are cached under a canonical signature of their parameters and
every mutating operation invalidates the affected prefix. The cache is
injected into services; nothing holds a module-level dict of results.
"""

import logging
import time
from typing import Any, Mapping, Protocol

from convocrm.infrastructure.redis import RedisClient

logger = logging.getLogger(__name__)

ORDERS_PREFIX = "orders"
MESSAGES_PREFIX = "messages"


def cache_key(prefix: str, params: Mapping[str, Any] | None = None) -> str:
    """Build a canonical cache key.

    Parameters are sorted by name and rendered as ``name:value`` joined with
    ``|``; None values are dropped. An empty parameter set renders ``all``.

    >>> cache_key("orders", {"status": "new", "limit": 20})
    'orders:limit:20|status:new'
    """
    parts = [
        f"{name}:{value}"
        for name, value in sorted((params or {}).items())
        if value is not None
    ]
    return f"{prefix}:{'|'.join(parts) if parts else 'all'}"


class QueryCache(Protocol):
    """TTL cache for read-model query results."""

    async def get(self, key: str) -> Any | None:
        ...

    async def set(self, key: str, value: Any, ttl: int) -> None:
        ...

    async def invalidate(self, prefix: str) -> None:
        ...


class InMemoryTTLCache:
    """Process-local cache with per-entry expiry."""

    def __init__(self, clock=time.monotonic) -> None:
        self._entries: dict[str, tuple[float, Any]] = {}
        self._clock = clock

    async def get(self, key: str) -> Any | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        expires_at, value = entry
        if self._clock() >= expires_at:
            del self._entries[key]
            return None
        return value

    async def set(self, key: str, value: Any, ttl: int) -> None:
        self._entries[key] = (self._clock() + ttl, value)

    async def invalidate(self, prefix: str) -> None:
        for key in [k for k in self._entries if k.startswith(prefix)]:
            del self._entries[key]


class RedisQueryCache:
    """Cache stored in Redis as JSON under a namespace."""

    def __init__(self, client: RedisClient, namespace: str = "convocrm:cache:") -> None:
        self._client = client
        self._namespace = namespace

    async def get(self, key: str) -> Any | None:
        return await self._client.get_json(self._namespace + key)

    async def set(self, key: str, value: Any, ttl: int) -> None:
        await self._client.set_json(self._namespace + key, value, ttl)

    async def invalidate(self, prefix: str) -> None:
        deleted = await self._client.delete_prefix(self._namespace + prefix)
        logger.debug(f"Invalidated {deleted} cache keys for prefix {prefix}")


async def invalidate_conversation_caches(cache: QueryCache | None) -> None:
    """Drop cached order and message listings after a mutation."""
    if cache is None:
        return
    await cache.invalidate(ORDERS_PREFIX)
    await cache.invalidate(MESSAGES_PREFIX)
