"""
Redis cache wrapper.

Responsibilities:
  • Tweet detail    — STRING (JSON) keyed by tweet:{tweet_id}
  • Tweet lists     — STRING (JSON) keyed by tweets:all:{page}:{limit}
  • Timeline pages  — STRING (JSON) keyed by timeline:{user_id}:{page}:{limit}
  • User rows       — STRING (JSON) keyed by user:{username}
  • Search results  — STRING (JSON) keyed by search:tweets:{q}:{limit}

Reads are cache-aside: a miss returns None and the caller repopulates.
Writes never update entries in place; they invalidate by key or pattern.
Every Redis failure degrades to a miss / no-op so the store stays the
single source of truth.
"""
import json
import logging
from typing import Any, Optional

import redis.asyncio as aioredis
from redis.exceptions import RedisError

from chirp.config import settings
from chirp.telemetry import CACHE_INVALIDATIONS_TOTAL, CACHE_LOOKUPS_TOTAL

logger = logging.getLogger(__name__)


class CachePrefix:
    TWEET = "tweet:"
    TWEETS = "tweets:"
    USER = "user:"
    TIMELINE = "timeline:"
    HASHTAG = "hashtag:"
    TRENDING = "trending:"
    SEARCH = "search:"


def _metric_prefix(key: str) -> str:
    return key.split(":", 1)[0]


class CacheClient:
    """Async JSON cache over Redis with hit/miss accounting."""

    def __init__(self, redis: aioredis.Redis, key_prefix: str = "") -> None:
        self._redis = redis
        self._key_prefix = key_prefix
        self.hits = 0
        self.misses = 0

    def _k(self, key: str) -> str:
        return f"{self._key_prefix}{key}"

    @property
    def redis(self) -> aioredis.Redis:
        return self._redis

    # ─────────────────────── Basic operations ────────────────────────────

    async def get(self, key: str) -> Optional[Any]:
        try:
            raw = await self._redis.get(self._k(key))
        except RedisError as exc:
            logger.error("Error getting cache for key %s: %s", key, exc)
            self.misses += 1
            CACHE_LOOKUPS_TOTAL.labels(prefix=_metric_prefix(key), result="error").inc()
            return None

        if raw is None:
            self.misses += 1
            CACHE_LOOKUPS_TOTAL.labels(prefix=_metric_prefix(key), result="miss").inc()
            return None

        self.hits += 1
        CACHE_LOOKUPS_TOTAL.labels(prefix=_metric_prefix(key), result="hit").inc()
        return json.loads(raw)

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        try:
            await self._redis.set(
                self._k(key),
                json.dumps(value, default=str),
                ex=ttl or settings.cache_ttl_default,
            )
            return True
        except RedisError as exc:
            logger.error("Error setting cache for key %s: %s", key, exc)
            return False

    async def delete(self, *keys: str) -> bool:
        if not keys:
            return True
        try:
            await self._redis.delete(*(self._k(k) for k in keys))
            return True
        except RedisError as exc:
            logger.error("Error deleting cache keys %s: %s", keys, exc)
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """
        Delete every key matching a glob pattern.
        Uses SCAN rather than KEYS so large keyspaces don't block Redis.
        Returns the number of keys removed (0 on error).
        """
        try:
            keys = [k async for k in self._redis.scan_iter(match=self._k(pattern), count=500)]
            if keys:
                await self._redis.delete(*keys)
                CACHE_INVALIDATIONS_TOTAL.inc(len(keys))
                logger.debug("Deleted %d cache keys for pattern %s", len(keys), pattern)
            return len(keys)
        except RedisError as exc:
            logger.error("Error deleting cache by pattern %s: %s", pattern, exc)
            return 0

    async def delete_patterns(self, patterns: list[str]) -> int:
        removed = 0
        for pattern in patterns:
            removed += await self.delete_pattern(pattern)
        return removed

    # ─────────────────────── Domain helpers ──────────────────────────────

    async def get_tweet(self, tweet_id: str) -> Optional[dict]:
        return await self.get(f"{CachePrefix.TWEET}{tweet_id}")

    async def set_tweet(self, tweet_id: str, data: dict, ttl: Optional[int] = None) -> bool:
        return await self.set(
            f"{CachePrefix.TWEET}{tweet_id}", data, ttl or settings.cache_ttl_tweet
        )

    async def invalidate_tweet(self, tweet_id: str) -> bool:
        return await self.delete(f"{CachePrefix.TWEET}{tweet_id}")

    async def get_timeline(self, user_id: str, page: int, limit: int) -> Optional[dict]:
        return await self.get(f"{CachePrefix.TIMELINE}{user_id}:{page}:{limit}")

    async def set_timeline(self, user_id: str, page: int, limit: int, data: dict) -> bool:
        return await self.set(
            f"{CachePrefix.TIMELINE}{user_id}:{page}:{limit}", data, settings.cache_ttl_timeline
        )

    async def invalidate_user_timelines(self, user_id: str) -> int:
        return await self.delete_pattern(f"{CachePrefix.TIMELINE}{user_id}:*")

    async def invalidate_followers_timelines(self, follower_ids: list[str]) -> int:
        return await self.delete_patterns(
            [f"{CachePrefix.TIMELINE}{fid}:*" for fid in follower_ids]
        )

    async def get_user(self, username: str) -> Optional[dict]:
        return await self.get(f"{CachePrefix.USER}{username}")

    async def set_user(self, username: str, data: dict) -> bool:
        return await self.set(f"{CachePrefix.USER}{username}", data, settings.cache_ttl_user)

    async def invalidate_user(self, username: str) -> bool:
        return await self.delete(f"{CachePrefix.USER}{username}")

    # ─────────────────────── Statistics ──────────────────────────────────

    def hit_rate(self) -> dict:
        total = self.hits + self.misses
        rate = (self.hits / total) * 100 if total > 0 else 0.0
        return {
            "hitRate": round(rate, 2),
            "hits": self.hits,
            "misses": self.misses,
            "total": total,
        }


_cache: Optional[CacheClient] = None


async def init_redis() -> None:
    global _cache
    redis = aioredis.Redis(
        host=settings.redis_host,
        port=settings.redis_port,
        db=settings.redis_db,
        password=settings.redis_password or None,
        decode_responses=True,
    )
    await redis.ping()
    _cache = CacheClient(redis, key_prefix=settings.redis_key_prefix)
    logger.info("Redis connected at %s:%s", settings.redis_host, settings.redis_port)


async def close_redis() -> None:
    if _cache is not None:
        await _cache.redis.aclose()


def set_cache(cache: Optional[CacheClient]) -> None:
    """Install a cache client (used by the worker and by tests)."""
    global _cache
    _cache = cache


def get_cache() -> CacheClient:
    if _cache is None:
        raise RuntimeError("Redis not initialised — call init_redis() at startup")
    return _cache
