"""
Tweet lifecycle: create / read / update / delete, hashtags, mentions, search.

Write path (create, update, delete):
  1. Persist the tweet and its hashtag links.
  2. Notify @mentioned users (MENTION).
  3. Invalidate the author's timeline pages, global list pages, trending
     hashtags and the tweet detail entry.
  4. Publish a tweet.* event; the fan-out worker drops every follower's
     timeline pages. If the event cannot be published the followers are
     invalidated inline instead.
"""
import logging
import re
from typing import Optional

from opentelemetry import trace
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from chirp.clients.kafka_producer import (
    TWEET_CREATED,
    TWEET_DELETED,
    TWEET_UPDATED,
    publish_tweet_event,
)
from chirp.clients.redis_client import CacheClient, CachePrefix
from chirp.config import settings
from chirp.errors import BadRequestError, ForbiddenError, NotFoundError
from chirp.models import Comment, Hashtag, NotificationType, Tweet, TweetHashtag, User, utcnow
from chirp.schemas import (
    CacheStats,
    CommentResponse,
    HashtagCount,
    HashtagList,
    PageMeta,
    PollCreate,
    PollResults,
    TweetDetail,
    TweetPage,
    TweetResponse,
)
from chirp.services.base import clamp_page, insert_unique
from chirp.services.hydration import hydrate_tweet, hydrate_tweets
from chirp.services.notifications import NotificationService
from chirp.services.polls import PollService
from chirp.services.timeline import TimelineService
from chirp.telemetry import TWEETS_CREATED_TOTAL

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

HASHTAG_RE = re.compile(r"#(\w+)")
MENTION_RE = re.compile(r"@(\w+)")


def extract_hashtags(content: Optional[str]) -> list[str]:
    return _dedupe(HASHTAG_RE.findall(content or ""))


def extract_mentions(content: Optional[str]) -> list[str]:
    return _dedupe(MENTION_RE.findall(content or ""))


def _dedupe(names: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for name in names:
        name = name.strip().lstrip("#")
        if name:
            seen.setdefault(name, None)
    return list(seen)


def _detail_ttl(detail: TweetDetail) -> int:
    """Cache lifetime for a tweet detail, ending no later than its poll closes."""
    ttl = settings.cache_ttl_tweet
    poll = detail.poll
    if poll is not None and poll.expires_at is not None and not poll.is_expired:
        remaining = int((poll.expires_at - utcnow()).total_seconds())
        ttl = max(1, min(ttl, remaining))
    return ttl


class TweetService:
    def __init__(
        self,
        db: AsyncSession,
        cache: CacheClient,
        notifications: NotificationService,
    ) -> None:
        self.db = db
        self.cache = cache
        self.notifications = notifications
        self.polls = PollService(db, cache, notifications)
        self.timeline = TimelineService(db, cache)

    # ─────────────────────── Loading ─────────────────────────────────────

    async def _load(self, tweet_id: str) -> Tweet:
        # populate_existing so author / hashtags / poll reflect the flush
        result = await self.db.execute(
            select(Tweet)
            .where(Tweet.tweet_id == tweet_id)
            .execution_options(populate_existing=True)
        )
        tweet = result.scalar_one_or_none()
        if tweet is None:
            raise NotFoundError("Tweet not found")
        return tweet

    async def _load_owned(self, user_id: str, tweet_id: str) -> Tweet:
        tweet = await self._load(tweet_id)
        if tweet.user_id != user_id:
            raise ForbiddenError("You can only modify your own tweets")
        return tweet

    async def _resolve_hashtags(self, names: list[str]) -> list[Hashtag]:
        if not names:
            return []
        result = await self.db.execute(select(Hashtag).where(Hashtag.name.in_(names)))
        by_name = {h.name: h for h in result.scalars().all()}
        for name in names:
            if name in by_name:
                continue
            hashtag = Hashtag(name=name)
            if not await insert_unique(self.db, hashtag):
                # Created concurrently by another tweet
                hashtag = (
                    await self.db.execute(select(Hashtag).where(Hashtag.name == name))
                ).scalar_one()
            by_name[name] = hashtag
        return [by_name[n] for n in names]

    # ─────────────────────── Write path ──────────────────────────────────

    async def _notify_mentions(self, author_id: str, tweet_id: str, content: Optional[str]) -> None:
        usernames = extract_mentions(content)
        if not usernames:
            return
        result = await self.db.execute(select(User.user_id).where(User.username.in_(usernames)))
        for receiver_id in result.scalars().all():
            await self.notifications.create_notification(
                NotificationType.MENTION,
                receiver_id=receiver_id,
                sender_id=author_id,
                tweet_id=tweet_id,
            )

    async def _after_write(self, event: str, author_id: str, tweet_id: str) -> None:
        await self.cache.invalidate_tweet(tweet_id)
        await self.timeline.invalidate_user(author_id)
        await self.cache.delete_patterns(
            [f"{CachePrefix.TWEETS}all:*", f"{CachePrefix.TRENDING}*"]
        )
        if not await publish_tweet_event(event, tweet_id, author_id):
            await self.timeline.invalidate_followers(author_id)

    async def _insert_tweet(
        self,
        user_id: str,
        content: Optional[str],
        media_urls: list[str],
        hashtags: list[str],
        parent_id: Optional[str],
    ) -> Tweet:
        content = (content or "").strip() or None
        if content is None and not media_urls:
            raise BadRequestError("Tweet must have content or media")
        if parent_id is not None and await self.db.get(Tweet, parent_id) is None:
            raise NotFoundError("Parent tweet not found")

        names = _dedupe(hashtags) if hashtags else extract_hashtags(content)
        tweet = Tweet(
            user_id=user_id,
            content=content,
            media_urls=list(media_urls),
            has_media=bool(media_urls),
            parent_id=parent_id,
            hashtags=await self._resolve_hashtags(names),
        )
        self.db.add(tweet)
        await self.db.flush()
        return tweet

    async def create(
        self,
        user_id: str,
        content: Optional[str],
        media_urls: Optional[list[str]] = None,
        hashtags: Optional[list[str]] = None,
        parent_id: Optional[str] = None,
    ) -> TweetResponse:
        with tracer.start_as_current_span("create_tweet") as span:
            tweet = await self._insert_tweet(
                user_id, content, media_urls or [], hashtags or [], parent_id
            )
            span.set_attribute("tweet.id", tweet.tweet_id)
            span.set_attribute("tweet.user_id", user_id)

            await self._notify_mentions(user_id, tweet.tweet_id, tweet.content)
            await self._after_write(TWEET_CREATED, user_id, tweet.tweet_id)

            TWEETS_CREATED_TOTAL.inc()
            logger.info("Tweet created: %s by user %s", tweet.tweet_id, user_id)
            return await hydrate_tweet(self.db, await self._load(tweet.tweet_id), user_id)

    async def create_with_poll(
        self,
        user_id: str,
        content: Optional[str],
        poll: PollCreate,
        media_urls: Optional[list[str]] = None,
        hashtags: Optional[list[str]] = None,
    ) -> TweetResponse:
        """Tweet and poll are flushed in the same transaction."""
        with tracer.start_as_current_span("create_tweet_with_poll") as span:
            tweet = await self._insert_tweet(
                user_id, content or poll.question, media_urls or [], hashtags or [], None
            )
            span.set_attribute("tweet.id", tweet.tweet_id)

            await self.polls.create_poll(
                user_id, tweet.tweet_id, poll.question, poll.options, poll.expires_at
            )
            await self._notify_mentions(user_id, tweet.tweet_id, tweet.content)
            await self._after_write(TWEET_CREATED, user_id, tweet.tweet_id)

            TWEETS_CREATED_TOTAL.inc()
            logger.info("Tweet with poll created: %s by user %s", tweet.tweet_id, user_id)
            return await hydrate_tweet(self.db, await self._load(tweet.tweet_id), user_id)

    async def update(
        self,
        user_id: str,
        tweet_id: str,
        content: Optional[str] = None,
        hashtags: Optional[list[str]] = None,
    ) -> TweetResponse:
        with tracer.start_as_current_span("update_tweet"):
            tweet = await self._load_owned(user_id, tweet_id)

            if content is not None:
                content = content.strip()
                if not content and not tweet.media_urls:
                    raise BadRequestError("Tweet must have content or media")
                tweet.content = content or None
                if hashtags is None:
                    hashtags = extract_hashtags(content)
            if hashtags is not None:
                tweet.hashtags = await self._resolve_hashtags(_dedupe(hashtags))
            await self.db.flush()

            await self._after_write(TWEET_UPDATED, user_id, tweet_id)
            logger.info("Tweet updated: %s", tweet_id)
            return await hydrate_tweet(self.db, await self._load(tweet_id), user_id)

    async def delete(self, user_id: str, tweet_id: str) -> None:
        with tracer.start_as_current_span("delete_tweet"):
            tweet = await self._load_owned(user_id, tweet_id)
            await self.db.delete(tweet)
            await self.db.flush()

            await self._after_write(TWEET_DELETED, user_id, tweet_id)
            logger.info("Tweet deleted: %s", tweet_id)

    # ─────────────────────── Read path ───────────────────────────────────

    async def list_tweets(
        self, page: int = 1, limit: int = 10, viewer_id: Optional[str] = None
    ) -> TweetPage:
        page, limit = clamp_page(page, limit)
        key = f"{CachePrefix.TWEETS}all:{page}:{limit}:{viewer_id or 'anon'}"
        cached = await self.cache.get(key)
        if cached is not None:
            return TweetPage.model_validate(cached)

        total = (await self.db.execute(select(func.count()).select_from(Tweet))).scalar_one()
        result = await self.db.execute(
            select(Tweet)
            .order_by(Tweet.created_at.desc())
            .execution_options(populate_existing=True)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        tweets = result.scalars().unique().all()
        data = TweetPage(
            tweets=await hydrate_tweets(self.db, tweets, viewer_id),
            meta=PageMeta.build(total, page, limit),
        )
        await self.cache.set(key, data.to_json(), settings.cache_ttl_tweets)
        return data

    async def _detail(self, tweet_id: str, viewer_id: Optional[str]) -> TweetDetail:
        tweet = await self._load(tweet_id)
        result = await self.db.execute(
            select(Comment)
            .where(Comment.tweet_id == tweet_id)
            .order_by(Comment.created_at.desc())
        )
        base = await hydrate_tweet(self.db, tweet, viewer_id)
        return TweetDetail(
            **base.model_dump(),
            comments=[CommentResponse.from_model(c) for c in result.scalars().unique().all()],
        )

    async def get_cached(self, tweet_id: str) -> TweetDetail:
        """Viewer-independent detail, cached at tweet:{id}."""
        cached = await self.cache.get_tweet(tweet_id)
        if cached is not None:
            logger.debug("Tweet %s served from cache", tweet_id)
            return TweetDetail.model_validate(cached)

        detail = await self._detail(tweet_id, None)
        await self.cache.set_tweet(tweet_id, detail.to_json(), _detail_ttl(detail))
        return detail

    async def get(self, tweet_id: str, viewer_id: Optional[str] = None) -> TweetDetail:
        if viewer_id is None:
            return await self.get_cached(tweet_id)
        return await self._detail(tweet_id, viewer_id)

    async def search(self, q: str, limit: int = 10) -> list[TweetResponse]:
        q = q.strip()
        if not q:
            return []
        key = f"{CachePrefix.SEARCH}tweets:{q}:{limit}"
        cached = await self.cache.get(key)
        if cached is not None:
            return [TweetResponse.model_validate(t) for t in cached]

        result = await self.db.execute(
            select(Tweet)
            .where(Tweet.content.ilike(f"%{q}%"))
            .order_by(Tweet.created_at.desc())
            .execution_options(populate_existing=True)
            .limit(limit)
        )
        tweets = await hydrate_tweets(self.db, result.scalars().unique().all())
        await self.cache.set(key, [t.to_json() for t in tweets], settings.cache_ttl_search)
        return tweets

    async def search_hashtags(self, q: str = "", limit: int = 10) -> HashtagList:
        """Hashtags containing `q` by tweet count; blank `q` gives trending."""
        q = q.strip().lstrip("#")
        key = f"{CachePrefix.TRENDING}hashtags:{limit}"
        if not q:
            cached = await self.cache.get(key)
            if cached is not None:
                return HashtagList.model_validate(cached)

        tweet_count = func.count(TweetHashtag.tweet_id)
        stmt = (
            select(Hashtag, tweet_count)
            .outerjoin(TweetHashtag, TweetHashtag.hashtag_id == Hashtag.hashtag_id)
            .group_by(Hashtag.hashtag_id, Hashtag.name)
            .order_by(tweet_count.desc(), Hashtag.name)
            .limit(limit)
        )
        if q:
            stmt = stmt.where(Hashtag.name.ilike(f"%{q}%"))

        result = await self.db.execute(stmt)
        data = HashtagList(
            hashtags=[
                HashtagCount(id=h.hashtag_id, name=h.name, count=n) for h, n in result.all()
            ]
        )
        if not q:
            await self.cache.set(key, data.to_json(), settings.cache_ttl_tweets)
        return data

    async def by_hashtag(
        self, hashtag: str, page: int = 1, limit: int = 10, viewer_id: Optional[str] = None
    ) -> TweetPage:
        page, limit = clamp_page(page, limit)
        name = hashtag.lstrip("#")
        tagged = (
            select(TweetHashtag.tweet_id)
            .join(Hashtag, Hashtag.hashtag_id == TweetHashtag.hashtag_id)
            .where(Hashtag.name == name)
        )
        total = (
            await self.db.execute(
                select(func.count()).select_from(Tweet).where(Tweet.tweet_id.in_(tagged))
            )
        ).scalar_one()
        result = await self.db.execute(
            select(Tweet)
            .where(Tweet.tweet_id.in_(tagged))
            .order_by(Tweet.created_at.desc())
            .execution_options(populate_existing=True)
            .offset((page - 1) * limit)
            .limit(limit)
        )
        tweets = result.scalars().unique().all()
        return TweetPage(
            tweets=await hydrate_tweets(self.db, tweets, viewer_id),
            meta=PageMeta.build(total, page, limit),
        )

    async def vote_poll(self, user_id: str, poll_id: str, option_index: int) -> PollResults:
        return await self.polls.vote_by_index(user_id, poll_id, option_index)

    def cache_stats(self) -> CacheStats:
        return CacheStats.model_validate(self.cache.hit_rate())
