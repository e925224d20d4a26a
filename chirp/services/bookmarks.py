"""Bookmarks — private (user, tweet) saves, newest first."""
import logging

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from chirp.clients.redis_client import CacheClient
from chirp.errors import NotFoundError
from chirp.models import Bookmark, Tweet
from chirp.schemas import ActionResponse, TweetPage, PageMeta
from chirp.services.base import insert_unique
from chirp.services.hydration import hydrate_tweets

logger = logging.getLogger(__name__)


class BookmarkService:
    def __init__(self, db: AsyncSession, cache: CacheClient) -> None:
        self.db = db
        self.cache = cache

    async def list_bookmarks(self, user_id: str) -> TweetPage:
        result = await self.db.execute(
            select(Bookmark)
            .where(Bookmark.user_id == user_id)
            .order_by(Bookmark.created_at.desc())
            .execution_options(populate_existing=True)
        )
        tweets = [b.tweet for b in result.scalars().unique().all() if b.tweet is not None]
        hydrated = await hydrate_tweets(self.db, tweets, user_id)
        return TweetPage(
            tweets=hydrated,
            meta=PageMeta.build(len(hydrated), 1, max(len(hydrated), 1)),
        )

    async def add(self, user_id: str, tweet_id: str) -> ActionResponse:
        if await self.db.get(Tweet, tweet_id) is None:
            raise NotFoundError("Tweet not found")

        existing = await self.db.get(Bookmark, (user_id, tweet_id))
        if existing is None and await insert_unique(
            self.db, Bookmark(user_id=user_id, tweet_id=tweet_id)
        ):
            logger.info("User %s bookmarked tweet %s", user_id, tweet_id)
        await self.cache.invalidate_user_timelines(user_id)
        return ActionResponse(success=True, message="Tweet bookmarked")

    async def remove(self, user_id: str, tweet_id: str) -> ActionResponse:
        result = await self.db.execute(
            delete(Bookmark).where(Bookmark.user_id == user_id, Bookmark.tweet_id == tweet_id)
        )
        if result.rowcount == 0:
            raise NotFoundError("Bookmark not found")

        logger.info("User %s removed bookmark on tweet %s", user_id, tweet_id)
        await self.cache.invalidate_user_timelines(user_id)
        return ActionResponse(success=True, message="Bookmark removed")
