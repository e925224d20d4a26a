"""
Timeline assembly.

A user's timeline is every top-level tweet (no reply parent) authored by the
user or by anyone they follow, newest first. Pages are cached per
(user, page, limit) for `cache_ttl_timeline` seconds; writes never patch a
cached page, they drop the affected owners' pages by pattern.
"""
import logging
import time

from opentelemetry import trace
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from chirp.clients.redis_client import CacheClient
from chirp.models import Follow, Tweet
from chirp.schemas import PageMeta, TweetPage
from chirp.services.base import clamp_page
from chirp.services.hydration import hydrate_tweets
from chirp.telemetry import TIMELINE_LATENCY

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


def timeline_filter(user_id: str):
    followed = select(Follow.following_id).where(Follow.follower_id == user_id)
    return (
        Tweet.parent_id.is_(None),
        or_(Tweet.user_id == user_id, Tweet.user_id.in_(followed)),
    )


class TimelineService:
    def __init__(self, db: AsyncSession, cache: CacheClient) -> None:
        self.db = db
        self.cache = cache

    async def get_timeline(self, user_id: str, page: int = 1, limit: int = 10) -> TweetPage:
        """
        Cache-aside read:
          1. Try timeline:{user_id}:{page}:{limit}.
          2. On miss, query own + followed authors' tweets and count with
             the same filter.
          3. Repopulate the cache with the hydrated page.
        """
        page, limit = clamp_page(page, limit)
        with tracer.start_as_current_span("get_timeline") as span:
            span.set_attribute("timeline.user_id", user_id)
            span.set_attribute("timeline.page", page)
            t0 = time.perf_counter()

            cached = await self.cache.get_timeline(user_id, page, limit)
            if cached is not None:
                span.set_attribute("timeline.source", "cache")
                TIMELINE_LATENCY.labels(source="cache").observe(time.perf_counter() - t0)
                logger.debug("Timeline cache hit for user %s page %d", user_id, page)
                return TweetPage.model_validate(cached)

            conditions = timeline_filter(user_id)
            total = (
                await self.db.execute(select(func.count()).select_from(Tweet).where(*conditions))
            ).scalar_one()

            result = await self.db.execute(
                select(Tweet)
                .where(*conditions)
                .order_by(Tweet.created_at.desc())
                .execution_options(populate_existing=True)
                .offset((page - 1) * limit)
                .limit(limit)
            )
            tweets = result.scalars().unique().all()
            timeline = TweetPage(
                tweets=await hydrate_tweets(self.db, tweets, viewer_id=user_id),
                meta=PageMeta.build(total, page, limit),
            )

            await self.cache.set_timeline(user_id, page, limit, timeline.to_json())

            span.set_attribute("timeline.source", "store")
            span.set_attribute("timeline.count", len(tweets))
            TIMELINE_LATENCY.labels(source="store").observe(time.perf_counter() - t0)
            logger.info(
                "Timeline for user %s page %d: %d/%d tweets", user_id, page, len(tweets), total
            )
            return timeline

    async def invalidate_user(self, user_id: str) -> int:
        return await self.cache.invalidate_user_timelines(user_id)

    async def invalidate_followers(self, author_id: str) -> int:
        """Drop the cached pages of every follower of `author_id` (best effort)."""
        result = await self.db.execute(
            select(Follow.follower_id).where(Follow.following_id == author_id)
        )
        follower_ids = list(result.scalars().all())
        if not follower_ids:
            return 0
        removed = await self.cache.invalidate_followers_timelines(follower_ids)
        logger.info(
            "Invalidated %d timeline pages across %d followers of %s",
            removed, len(follower_ids), author_id,
        )
        return removed
