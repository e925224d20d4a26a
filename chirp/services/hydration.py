"""
Tweet → TweetResponse decoration.

Engagement counts, viewer state (liked / retweeted / bookmarked) and poll
results are fetched in one grouped query each for the whole page, so a page
of N tweets costs a constant number of round trips.
"""
from typing import Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from chirp.models import Bookmark, Comment, Like, Retweet, Tweet
from chirp.schemas import TweetResponse, UserSummary
from chirp.services.polls import compute_results, vote_counts


async def _counts_by_tweet(db: AsyncSession, model, tweet_ids: list[str]) -> dict[str, int]:
    result = await db.execute(
        select(model.tweet_id, func.count())
        .where(model.tweet_id.in_(tweet_ids))
        .group_by(model.tweet_id)
    )
    return {tweet_id: n for tweet_id, n in result.all()}


async def _viewer_marks(
    db: AsyncSession, model, viewer_id: Optional[str], tweet_ids: list[str]
) -> set[str]:
    if not viewer_id:
        return set()
    result = await db.execute(
        select(model.tweet_id).where(model.user_id == viewer_id, model.tweet_id.in_(tweet_ids))
    )
    return set(result.scalars().all())


async def hydrate_tweets(
    db: AsyncSession, tweets: Sequence[Tweet], viewer_id: Optional[str] = None
) -> list[TweetResponse]:
    if not tweets:
        return []

    tweet_ids = [t.tweet_id for t in tweets]
    likes = await _counts_by_tweet(db, Like, tweet_ids)
    retweets = await _counts_by_tweet(db, Retweet, tweet_ids)
    comments = await _counts_by_tweet(db, Comment, tweet_ids)
    liked = await _viewer_marks(db, Like, viewer_id, tweet_ids)
    retweeted = await _viewer_marks(db, Retweet, viewer_id, tweet_ids)
    bookmarked = await _viewer_marks(db, Bookmark, viewer_id, tweet_ids)
    votes = await vote_counts(db, [t.poll.poll_id for t in tweets if t.poll is not None])

    return [
        TweetResponse(
            id=t.tweet_id,
            content=t.content,
            media_urls=t.media_urls or [],
            has_media=t.has_media,
            parent_id=t.parent_id,
            author=UserSummary.from_model(t.author),
            hashtags=[h.name for h in t.hashtags],
            like_count=likes.get(t.tweet_id, 0),
            retweet_count=retweets.get(t.tweet_id, 0),
            comment_count=comments.get(t.tweet_id, 0),
            is_liked=t.tweet_id in liked,
            is_retweeted=t.tweet_id in retweeted,
            is_bookmarked=t.tweet_id in bookmarked,
            poll=compute_results(t.poll, votes) if t.poll is not None else None,
            created_at=t.created_at,
            updated_at=t.updated_at,
        )
        for t in tweets
    ]


async def hydrate_tweet(
    db: AsyncSession, tweet: Tweet, viewer_id: Optional[str] = None
) -> TweetResponse:
    return (await hydrate_tweets(db, [tweet], viewer_id))[0]
