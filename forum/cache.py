"""Redis cache for public user profiles, degrading to no-cache when Redis is down.

Profiles are immutable once registered, so entries never need invalidation.
Sessions and reaction totals are deliberately not cached.
"""

import json
from typing import Any, Optional
from redis import asyncio as aioredis
from .config import settings
from .logger import logger

USER_PROFILE_PREFIX = "forum:user"


def make_cache_key(prefix: str, identifier: Any) -> str:
    """Namespaced cache key, e.g. ``forum:user:42``."""
    return f"{prefix}:{identifier}"


class CacheManager:
    """Owns the Redis connection. Every operation fails soft."""

    def __init__(self, url: str | None = None):
        self._url = url or settings.REDIS_URL
        self._redis: Optional[aioredis.Redis] = None

    async def connect(self):
        """Connect and ping; leaves the manager disconnected on failure."""
        if self._redis is not None:
            return
        try:
            self._redis = aioredis.from_url(
                self._url,
                encoding="utf-8",
                decode_responses=True,
                socket_connect_timeout=5,
            )
            await self._redis.ping()
            logger.info("[cache] Connected to Redis")
        except Exception as e:
            logger.error(f"[cache] Failed to connect to Redis: {e}")
            self._redis = None

    async def disconnect(self):
        if self._redis:
            await self._redis.aclose()
            self._redis = None
            logger.info("[cache] Disconnected from Redis")

    async def get(self, key: str) -> Optional[dict]:
        """Cached value as a dict, or None on miss or Redis error."""
        if not self._redis:
            return None
        try:
            value = await self._redis.get(key)
            if value:
                logger.debug(f"[cache] HIT: {key}")
                return json.loads(value)
            logger.debug(f"[cache] MISS: {key}")
            return None
        except Exception as e:
            logger.error(f"[cache] Error getting key {key}: {e}")
            return None

    async def set(self, key: str, value: dict, ttl: Optional[int] = None) -> bool:
        if not self._redis:
            return False
        try:
            ttl = ttl or settings.CACHE_TTL
            await self._redis.setex(key, ttl, json.dumps(value, default=str))
            logger.debug(f"[cache] SET: {key} (TTL={ttl}s)")
            return True
        except Exception as e:
            logger.error(f"[cache] Error setting key {key}: {e}")
            return False

    async def health_check(self) -> bool:
        if not self._redis:
            return False
        try:
            await self._redis.ping()
            return True
        except Exception:
            return False


cache_manager = CacheManager()
