import json
import logging

import redis.asyncio as redis

from blog_api.config import settings

logger = logging.getLogger(__name__)

# Key families.  Invalidation works on the family prefix, so every key the
# app writes must be built here.
PUBLISHED_PAGE_PREFIX = "posts:published"
POPULAR_TAGS_PREFIX = "tags:popular"
VIEW_MARKER_PREFIX = "views"


def published_page_key(page: int, page_size: int) -> str:
    return f"{PUBLISHED_PAGE_PREFIX}:{page}:{page_size}"


def popular_tags_key(count: int) -> str:
    return f"{POPULAR_TAGS_PREFIX}:{count}"


def view_marker_key(session_id: str, post_id: int) -> str:
    return f"{VIEW_MARKER_PREFIX}:{session_id}:{post_id}"


class CacheManager:
    """
    JSON values in Redis: cache-aside pages for the published feed and tag
    rankings, plus per-session view markers.

    Without a live connection (never connected, ping failed, or tests
    setting ``_redis = None``) every read is a miss and every write is
    dropped.  Redis errors are logged at DEBUG and never reach callers.
    """

    def __init__(self) -> None:
        self._redis: redis.Redis | None = None
        self._hits = 0
        self._misses = 0

    async def connect(self) -> None:
        client = redis.from_url(
            settings.REDIS_URL,
            decode_responses=True,
            socket_connect_timeout=2,
            socket_timeout=2,
        )
        try:
            await client.ping()
        except Exception as exc:  # pragma: no cover
            logger.warning("Redis at %s unreachable, running without cache: %s",
                           settings.REDIS_URL, exc)
            await client.aclose()
            return
        self._redis = client
        logger.info("Redis connected: %s", settings.REDIS_URL)

    async def disconnect(self) -> None:
        if self._redis is not None:
            await self._redis.aclose()
            self._redis = None

    @property
    def connected(self) -> bool:
        return self._redis is not None

    async def get(self, key: str) -> dict | list | None:
        """Decoded value at *key*; None on a miss, without Redis, or on error."""
        value = None
        if self._redis is not None:
            try:
                raw = await self._redis.get(key)
                value = json.loads(raw) if raw is not None else None
            except Exception as exc:
                logger.debug("Cache GET %r failed: %s", key, exc)
        if value is None:
            self._misses += 1
        else:
            self._hits += 1
        return value

    async def set(self, key: str, value: dict | list, ttl: int | None = None) -> None:
        if self._redis is None:
            return
        try:
            await self._redis.set(key, json.dumps(value, default=str), ex=ttl)
        except Exception as exc:
            logger.debug("Cache SET %r failed: %s", key, exc)

    async def delete_pattern(self, pattern: str) -> int:
        """Delete keys matching *pattern* (SCAN, not KEYS); returns how many went."""
        if self._redis is None:
            return 0
        try:
            keys = [key async for key in self._redis.scan_iter(match=pattern)]
            if keys:
                await self._redis.delete(*keys)
                logger.debug("Invalidated %d cache key(s) matching %r", len(keys), pattern)
            return len(keys)
        except Exception as exc:
            logger.debug("Cache invalidation of %r failed: %s", pattern, exc)
            return 0

    async def invalidate_posts(self) -> None:
        # Any post write can move a post in or out of the published feed.
        await self.delete_pattern(f"{PUBLISHED_PAGE_PREFIX}:*")

    async def invalidate_taxonomy(self) -> None:
        await self.delete_pattern(f"{POPULAR_TAGS_PREFIX}:*")

    @property
    def stats(self) -> dict:
        lookups = self._hits + self._misses
        return {
            "connected": self.connected,
            "hits": self._hits,
            "misses": self._misses,
            "hit_rate": round(self._hits / lookups * 100, 1) if lookups else 0.0,
        }


cache = CacheManager()
