"""
Polls — one per tweet, one vote per user.

A poll is open until `expires_at` (never, when NULL). Closing is not a
stored transition: every vote / results call compares against the clock.
The first results read after expiry announces the end to every voter with
a POLL_ENDED notification; `ended_announced` makes that happen once.
"""
import logging
from datetime import datetime, timezone
from typing import Optional

from opentelemetry import trace
from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chirp.clients.redis_client import CacheClient
from chirp.errors import BadRequestError, ConflictError, ForbiddenError, NotFoundError
from chirp.models import NotificationType, Poll, PollOption, PollVote, Tweet, utcnow
from chirp.schemas import PollOptionResult, PollResults, VoteRecord
from chirp.services.base import insert_unique
from chirp.services.notifications import NotificationService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MIN_OPTIONS = 2


def compute_results(poll: Poll, counts: dict[str, int], now: Optional[datetime] = None) -> PollResults:
    """Per-option votes and share of the total, rounded to 2 decimals."""
    votes = [counts.get(o.option_id, 0) for o in poll.options]
    total = sum(votes)
    return PollResults(
        id=poll.poll_id,
        question=poll.question,
        total_votes=total,
        results=[
            PollOptionResult(
                id=option.option_id,
                text=option.text,
                votes=n,
                percentage=round(n / total * 100, 2) if total else 0.0,
            )
            for option, n in zip(poll.options, votes)
        ],
        expires_at=poll.expires_at,
        is_expired=poll.is_expired(now),
    )


async def vote_counts(db: AsyncSession, poll_ids: list[str]) -> dict[str, int]:
    """option_id → votes for every option of the given polls."""
    if not poll_ids:
        return {}
    result = await db.execute(
        select(PollVote.option_id, func.count())
        .where(PollVote.poll_id.in_(poll_ids))
        .group_by(PollVote.option_id)
    )
    return {option_id: n for option_id, n in result.all()}


def _as_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class PollService:
    def __init__(
        self,
        db: AsyncSession,
        cache: CacheClient,
        notifications: NotificationService,
    ) -> None:
        self.db = db
        self.cache = cache
        self.notifications = notifications

    async def _load_poll(self, poll_id: str) -> Poll:
        result = await self.db.execute(
            select(Poll)
            .where(Poll.poll_id == poll_id)
            .execution_options(populate_existing=True)
        )
        poll = result.scalar_one_or_none()
        if poll is None:
            raise NotFoundError("Poll not found")
        return poll

    async def _vote_counts(self, poll_id: str) -> dict[str, int]:
        return await vote_counts(self.db, [poll_id])

    async def create_poll(
        self,
        user_id: str,
        tweet_id: str,
        question: str,
        options: list[str],
        expires_at: Optional[datetime] = None,
    ) -> PollResults:
        with tracer.start_as_current_span("create_poll") as span:
            span.set_attribute("poll.tweet_id", tweet_id)

            tweet = await self.db.get(Tweet, tweet_id)
            if tweet is None:
                raise NotFoundError("Tweet not found")
            if tweet.user_id != user_id:
                raise ForbiddenError("You can only add a poll to your own tweet")

            texts = [o.strip() for o in options if o and o.strip()]
            if len(texts) < MIN_OPTIONS:
                raise BadRequestError(f"A poll needs at least {MIN_OPTIONS} options")

            expires_at = _as_naive_utc(expires_at)
            if expires_at is not None and expires_at <= utcnow():
                raise BadRequestError("Poll expiry must be in the future")

            existing = await self.db.execute(select(Poll.poll_id).where(Poll.tweet_id == tweet_id))
            if existing.scalar_one_or_none() is not None:
                raise ConflictError("Tweet already has a poll")

            poll = Poll(
                tweet_id=tweet_id,
                user_id=user_id,
                question=question.strip(),
                expires_at=expires_at,
                options=[PollOption(text=t, position=i) for i, t in enumerate(texts)],
            )
            if not await insert_unique(self.db, poll):
                raise ConflictError("Tweet already has a poll")

            logger.info("Poll %s created on tweet %s (%d options)", poll.poll_id, tweet_id, len(texts))
            return compute_results(await self._load_poll(poll.poll_id), {})

    async def vote(self, user_id: str, poll_id: str, option_id: str) -> VoteRecord:
        with tracer.start_as_current_span("vote") as span:
            span.set_attribute("poll.id", poll_id)

            poll = await self._load_poll(poll_id)
            if poll.is_expired():
                raise BadRequestError("Poll has expired")
            if option_id not in {o.option_id for o in poll.options}:
                raise NotFoundError("Option not found")
            return await self._record_vote(user_id, poll, option_id)

    async def vote_by_index(self, user_id: str, poll_id: str, option_index: int) -> PollResults:
        """Vote by option position; returns the updated results."""
        poll = await self._load_poll(poll_id)
        if poll.is_expired():
            raise BadRequestError("Poll has expired")
        if option_index < 0 or option_index >= len(poll.options):
            raise NotFoundError("Option not found")

        await self._record_vote(user_id, poll, poll.options[option_index].option_id)
        return compute_results(poll, await self._vote_counts(poll_id))

    async def _record_vote(self, user_id: str, poll: Poll, option_id: str) -> VoteRecord:
        existing = await self.db.get(PollVote, (user_id, poll.poll_id))
        if existing is not None:
            raise ConflictError("You have already voted in this poll")

        vote = PollVote(user_id=user_id, poll_id=poll.poll_id, option_id=option_id)
        if not await insert_unique(self.db, vote):
            raise ConflictError("You have already voted in this poll")

        # Cached tweet detail embeds the poll totals
        await self.cache.invalidate_tweet(poll.tweet_id)
        logger.info("User %s voted on poll %s", user_id, poll.poll_id)
        return VoteRecord(
            poll_id=vote.poll_id,
            option_id=vote.option_id,
            user_id=vote.user_id,
            created_at=vote.created_at,
        )

    async def get_results(self, poll_id: str) -> PollResults:
        with tracer.start_as_current_span("poll_results"):
            poll = await self._load_poll(poll_id)
            now = utcnow()
            if poll.is_expired(now) and not poll.ended_announced:
                await self._announce_end(poll)
                await self.cache.invalidate_tweet(poll.tweet_id)
            return compute_results(poll, await self._vote_counts(poll_id), now)

    async def _announce_end(self, poll: Poll) -> None:
        # Conditional update: only the request that flips the flag notifies
        result = await self.db.execute(
            update(Poll)
            .where(Poll.poll_id == poll.poll_id, Poll.ended_announced.is_(False))
            .values(ended_announced=True)
            .execution_options(synchronize_session="fetch")
        )
        if result.rowcount == 0:
            return

        voters = await self.db.execute(
            select(PollVote.user_id).where(PollVote.poll_id == poll.poll_id)
        )
        voter_ids = list(voters.scalars().all())
        for voter_id in voter_ids:
            await self.notifications.create_notification(
                NotificationType.POLL_ENDED,
                receiver_id=voter_id,
                sender_id=poll.user_id,
                tweet_id=poll.tweet_id,
            )
        logger.info("Poll %s ended; notified %d voters", poll.poll_id, len(voter_ids))
