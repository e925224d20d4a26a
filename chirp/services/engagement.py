"""
Engagement — likes, retweets and comments.

Like and retweet are two-state toggles over a (user, tweet) row. Creating
the row notifies the tweet author (never the actor themself); removing it
retracts nothing, the notification stays.

Concurrency: two racing "like" calls may both see the row as absent. The
insert runs under a SAVEPOINT and a primary-key violation is treated as the
row already being present; a delete matching 0 rows is treated as already
absent. Either way the caller gets the state it asked for.
"""
import logging

from opentelemetry import trace
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from chirp.clients.kafka_producer import TWEET_RETWEETED, publish_tweet_event
from chirp.clients.redis_client import CacheClient
from chirp.errors import NotFoundError
from chirp.models import Comment, Like, NotificationType, Retweet, Tweet
from chirp.schemas import CommentResponse, ToggleResponse
from chirp.services.base import insert_unique
from chirp.services.notifications import NotificationService
from chirp.services.timeline import TimelineService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class EngagementService:
    def __init__(
        self,
        db: AsyncSession,
        cache: CacheClient,
        notifications: NotificationService,
    ) -> None:
        self.db = db
        self.cache = cache
        self.notifications = notifications
        self.timeline = TimelineService(db, cache)

    async def _get_tweet(self, tweet_id: str) -> Tweet:
        tweet = await self.db.get(Tweet, tweet_id)
        if tweet is None:
            raise NotFoundError("Tweet not found")
        return tweet

    async def _invalidate(self, user_id: str, tweet_id: str) -> None:
        # Counts live in the tweet detail; viewer state lives in the
        # actor's own timeline pages
        await self.cache.invalidate_tweet(tweet_id)
        await self.cache.invalidate_user_timelines(user_id)

    async def _toggle(self, model, user_id: str, tweet_id: str) -> tuple[bool, bool]:
        """Flip the (user, tweet) row. Returns (present_now, inserted_by_us)."""
        existing = await self.db.execute(
            select(model).where(model.user_id == user_id, model.tweet_id == tweet_id)
        )
        if existing.scalar_one_or_none() is not None:
            await self.db.execute(
                delete(model).where(model.user_id == user_id, model.tweet_id == tweet_id)
            )
            return False, False

        inserted = await insert_unique(self.db, model(user_id=user_id, tweet_id=tweet_id))
        if not inserted:
            logger.debug(
                "Concurrent %s for user %s on tweet %s", model.__name__, user_id, tweet_id
            )
        return True, inserted

    async def like(self, user_id: str, tweet_id: str) -> ToggleResponse:
        with tracer.start_as_current_span("like") as span:
            span.set_attribute("tweet.id", tweet_id)
            tweet = await self._get_tweet(tweet_id)

            present, created = await self._toggle(Like, user_id, tweet_id)
            if created:
                await self.notifications.create_notification(
                    NotificationType.LIKE,
                    receiver_id=tweet.user_id,
                    sender_id=user_id,
                    tweet_id=tweet_id,
                )
            await self._invalidate(user_id, tweet_id)

            if not present:
                logger.info("User %s unliked tweet %s", user_id, tweet_id)
                return ToggleResponse(status="unliked", message="Tweet unliked")
            logger.info("User %s liked tweet %s", user_id, tweet_id)
            return ToggleResponse(status="liked", message="Tweet liked")

    async def retweet(self, user_id: str, tweet_id: str) -> ToggleResponse:
        with tracer.start_as_current_span("retweet") as span:
            span.set_attribute("tweet.id", tweet_id)
            tweet = await self._get_tweet(tweet_id)

            present, created = await self._toggle(Retweet, user_id, tweet_id)
            if created:
                await self.notifications.create_notification(
                    NotificationType.RETWEET,
                    receiver_id=tweet.user_id,
                    sender_id=user_id,
                    tweet_id=tweet_id,
                )
            await self._invalidate(user_id, tweet_id)
            if not await publish_tweet_event(TWEET_RETWEETED, tweet_id, tweet.user_id):
                # Retweet counts show in the author's followers' pages
                await self.timeline.invalidate_followers(tweet.user_id)

            if not present:
                logger.info("User %s removed retweet of %s", user_id, tweet_id)
                return ToggleResponse(status="unretweeted", message="Retweet removed")
            logger.info("User %s retweeted %s", user_id, tweet_id)
            return ToggleResponse(status="retweeted", message="Tweet retweeted")

    async def add_comment(self, user_id: str, tweet_id: str, content: str) -> CommentResponse:
        with tracer.start_as_current_span("add_comment") as span:
            span.set_attribute("tweet.id", tweet_id)
            tweet = await self._get_tweet(tweet_id)

            comment = Comment(user_id=user_id, tweet_id=tweet_id, content=content)
            self.db.add(comment)
            await self.db.flush()

            result = await self.db.execute(
                select(Comment)
                .where(Comment.comment_id == comment.comment_id)
                .execution_options(populate_existing=True)
            )
            comment = result.scalar_one()
            logger.info("User %s commented on tweet %s", user_id, tweet_id)

            await self.notifications.create_notification(
                NotificationType.COMMENT,
                receiver_id=tweet.user_id,
                sender_id=user_id,
                tweet_id=tweet_id,
                comment_id=comment.comment_id,
            )
            await self.cache.invalidate_tweet(tweet_id)
            return CommentResponse.from_model(comment)
