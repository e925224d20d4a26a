"""
Combined search over tweets (content or hashtag) and users (username,
display name, bio). A blank query returns recommendations instead: the most
liked tweets and the most followed users.
"""
import logging
from typing import Optional

from opentelemetry import trace
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from chirp.config import settings
from chirp.models import Follow, Hashtag, Like, Retweet, Tweet, TweetHashtag, User
from chirp.schemas import SearchResponse, UserSummary
from chirp.services.hydration import hydrate_tweets

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

RECOMMENDATION_LIMIT = 10


def _count_for(model, column, target, outer):
    return (
        select(func.count())
        .select_from(model)
        .where(column == target)
        .correlate(outer)
        .scalar_subquery()
    )


class SearchService:
    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    async def search(self, q: str, viewer_id: Optional[str] = None) -> SearchResponse:
        q = (q or "").strip()
        with tracer.start_as_current_span("search") as span:
            span.set_attribute("search.query", q)
            if not q:
                return await self.recommendations(viewer_id)

            limit = settings.search_result_limit
            pattern = f"%{q}%"
            tagged = (
                select(TweetHashtag.tweet_id)
                .join(Hashtag, Hashtag.hashtag_id == TweetHashtag.hashtag_id)
                .where(Hashtag.name.ilike(pattern))
            )
            tweets = await self.db.execute(
                select(Tweet)
                .where(or_(Tweet.content.ilike(pattern), Tweet.tweet_id.in_(tagged)))
                .order_by(Tweet.created_at.desc())
                .execution_options(populate_existing=True)
                .limit(limit)
            )
            users = await self.db.execute(
                select(User)
                .where(
                    or_(
                        User.username.ilike(pattern),
                        User.display_name.ilike(pattern),
                        User.bio.ilike(pattern),
                    )
                )
                .order_by(User.username)
                .limit(limit)
            )

            response = SearchResponse(
                tweets=await hydrate_tweets(self.db, tweets.scalars().unique().all(), viewer_id),
                users=[UserSummary.from_model(u) for u in users.scalars().all()],
            )
            logger.info(
                "Search '%s': %d tweets, %d users", q, len(response.tweets), len(response.users)
            )
            return response

    async def recommendations(self, viewer_id: Optional[str] = None) -> SearchResponse:
        like_count = _count_for(Like, Like.tweet_id, Tweet.tweet_id, Tweet)
        retweet_count = _count_for(Retweet, Retweet.tweet_id, Tweet.tweet_id, Tweet)
        tweets = await self.db.execute(
            select(Tweet)
            .order_by(like_count.desc(), retweet_count.desc(), Tweet.created_at.desc())
            .execution_options(populate_existing=True)
            .limit(RECOMMENDATION_LIMIT)
        )

        follower_count = _count_for(Follow, Follow.following_id, User.user_id, User)
        users_stmt = select(User).order_by(follower_count.desc(), User.created_at.desc())
        if viewer_id:
            users_stmt = users_stmt.where(User.user_id != viewer_id)
        users = await self.db.execute(users_stmt.limit(RECOMMENDATION_LIMIT))

        return SearchResponse(
            tweets=await hydrate_tweets(self.db, tweets.scalars().unique().all(), viewer_id),
            users=[UserSummary.from_model(u) for u in users.scalars().all()],
        )
