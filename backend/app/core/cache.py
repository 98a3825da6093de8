"""
Redis cache layer — async Redis client with fail-soft helpers.

Provides:
    • Async connection pool (created lazily on first command)
    • Fixed-window counters for rate limiting
    • Connectivity probe for health checks

Every helper logs and returns None/False when Redis is unreachable, so
callers can degrade instead of failing the request.

Usage:
    cache = RedisCache(settings.REDIS_URL)
    count = await cache.incr_window("ratelimit:alert:42", window_seconds=60)
"""

from __future__ import annotations

import logging
from typing import Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

logger = logging.getLogger(__name__)


class RedisCache:
    """Thin wrapper over redis.asyncio with namespaced keys."""

    def __init__(self, url: str, *, prefix: str = "safeher"):
        self.url = url
        self.prefix = prefix
        self._client: Optional[aioredis.Redis] = None

    def _key(self, key: str) -> str:
        return f"{self.prefix}:{key}"

    @property
    def client(self) -> aioredis.Redis:
        if self._client is None:
            self._client = aioredis.from_url(
                self.url,
                encoding="utf-8",
                decode_responses=True,
            )
        return self._client

    async def incr_window(self, key: str, window_seconds: int) -> Optional[int]:
        """
        Increment a fixed-window counter and return its new value.

        The first increment in a window sets the expiry. Returns None when
        Redis is unavailable.
        """
        full_key = self._key(key)
        try:
            async with self.client.pipeline(transaction=True) as pipe:
                pipe.incr(full_key)
                pipe.expire(full_key, window_seconds, nx=True)
                count, _ = await pipe.execute()
            return int(count)
        except (RedisError, OSError) as e:
            logger.warning("Cache INCR error for %s: %s", full_key, e)
            return None

    async def ping(self) -> bool:
        try:
            return bool(await self.client.ping())
        except (RedisError, OSError) as e:
            logger.warning("Redis ping failed: %s", e)
            return False

    async def close(self) -> None:
        """Close Redis connection."""
        if self._client is not None:
            await self._client.aclose()
            self._client = None
            logger.info("Redis connection closed")
