"""
Per-session "last viewed" markers used to throttle view counting.

The post service only sees the narrow ``ViewTracker`` protocol: one tracker
instance is bound to one viewing session, so the service never handles
session identity itself.
"""
from datetime import datetime, timedelta
from typing import Protocol

from blog_api.cache import CacheManager, view_marker_key


class ViewTracker(Protocol):
    async def get_last_viewed(self, post_id: int) -> datetime | None: ...

    async def mark_viewed(self, post_id: int, when: datetime) -> None: ...


class InMemoryViewTracker:
    """Dict-backed tracker for a single session; used in tests and scripts."""

    def __init__(self) -> None:
        self._seen: dict[int, datetime] = {}

    async def get_last_viewed(self, post_id: int) -> datetime | None:
        return self._seen.get(post_id)

    async def mark_viewed(self, post_id: int, when: datetime) -> None:
        self._seen[post_id] = when


class RedisViewTracker:
    """
    Tracker backed by the shared Redis cache, keyed by session and post.

    Markers expire after *ttl*, which matches the throttle window: an
    expired marker and an old marker have the same effect.  When Redis is
    unreachable ``get_last_viewed`` returns None, so every read counts.
    """

    def __init__(self, cache: CacheManager, session_id: str, ttl: timedelta) -> None:
        self._cache = cache
        self._session_id = session_id
        self._ttl = ttl

    def _key(self, post_id: int) -> str:
        return view_marker_key(self._session_id, post_id)

    async def get_last_viewed(self, post_id: int) -> datetime | None:
        data = await self._cache.get(self._key(post_id))
        if not isinstance(data, dict) or "at" not in data:
            return None
        try:
            return datetime.fromisoformat(data["at"])
        except (TypeError, ValueError):
            return None

    async def mark_viewed(self, post_id: int, when: datetime) -> None:
        await self._cache.set(
            self._key(post_id),
            {"at": when.isoformat()},
            ttl=int(self._ttl.total_seconds()),
        )
