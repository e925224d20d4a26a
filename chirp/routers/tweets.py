"""
Tweet endpoints:
  POST   /tweets                     — create (hashtags / mentions extracted)
  GET    /tweets                     — global list, newest first
  GET    /tweets/timeline            — caller's timeline (cached pages)
  GET    /tweets/search              — content search
  GET    /tweets/hashtags/search     — hashtag lookup / trending
  GET    /tweets/hashtags/{hashtag}  — tweets carrying a hashtag
  GET    /tweets/cache-stats         — cache hit rate
  POST   /tweets/with-poll           — tweet + poll in one call
  POST   /tweets/poll/{id}/vote      — vote by option index
  GET|PUT|DELETE /tweets/{id}
  POST   /tweets/{id}/like|retweet|comment
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from chirp.config import settings
from chirp.dependencies import get_engagement_service, get_timeline_service, get_tweet_service
from chirp.schemas import (
    ActionResponse,
    CacheStats,
    CommentCreate,
    CommentResponse,
    HashtagList,
    PollResults,
    ToggleResponse,
    TweetCreate,
    TweetDetail,
    TweetPage,
    TweetResponse,
    TweetUpdate,
    TweetWithPollCreate,
    VoteByIndexRequest,
)
from chirp.security import get_current_user_id, get_optional_user_id
from chirp.services.engagement import EngagementService
from chirp.services.timeline import TimelineService
from chirp.services.tweets import TweetService

router = APIRouter()


@router.post("", response_model=TweetResponse, status_code=status.HTTP_201_CREATED)
async def create_tweet(
    body: TweetCreate,
    user_id: str = Depends(get_current_user_id),
    tweets: TweetService = Depends(get_tweet_service),
):
    return await tweets.create(
        user_id,
        body.content,
        media_urls=body.media_urls,
        hashtags=body.hashtags,
        parent_id=body.parent_id,
    )


@router.get("", response_model=TweetPage)
async def list_tweets(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    tweets: TweetService = Depends(get_tweet_service),
):
    return await tweets.list_tweets(page, limit, viewer_id)


@router.get("/timeline", response_model=TweetPage)
async def get_timeline(
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    user_id: str = Depends(get_current_user_id),
    timeline: TimelineService = Depends(get_timeline_service),
):
    return await timeline.get_timeline(user_id, page, limit)


@router.get("/search", response_model=list[TweetResponse])
async def search_tweets(
    q: str = Query("", max_length=100),
    limit: int = Query(10, ge=1, le=50),
    tweets: TweetService = Depends(get_tweet_service),
):
    return await tweets.search(q, limit)


@router.get("/hashtags/search", response_model=HashtagList)
async def search_hashtags(
    q: str = Query("", max_length=100),
    limit: int = Query(10, ge=1, le=50),
    tweets: TweetService = Depends(get_tweet_service),
):
    return await tweets.search_hashtags(q, limit)


@router.get("/hashtags/{hashtag}", response_model=TweetPage)
async def tweets_by_hashtag(
    hashtag: str,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    tweets: TweetService = Depends(get_tweet_service),
):
    return await tweets.by_hashtag(hashtag, page, limit, viewer_id)


@router.get("/cache-stats", response_model=CacheStats)
async def cache_stats(tweets: TweetService = Depends(get_tweet_service)):
    return tweets.cache_stats()


@router.post("/with-poll", response_model=TweetResponse, status_code=status.HTTP_201_CREATED)
async def create_tweet_with_poll(
    body: TweetWithPollCreate,
    user_id: str = Depends(get_current_user_id),
    tweets: TweetService = Depends(get_tweet_service),
):
    return await tweets.create_with_poll(
        user_id,
        body.content,
        body.poll,
        media_urls=body.media_urls,
        hashtags=body.hashtags,
    )


@router.post("/poll/{poll_id}/vote", response_model=PollResults)
async def vote_poll(
    poll_id: str,
    body: VoteByIndexRequest,
    user_id: str = Depends(get_current_user_id),
    tweets: TweetService = Depends(get_tweet_service),
):
    return await tweets.vote_poll(user_id, poll_id, body.option_index)


@router.get("/{tweet_id}", response_model=TweetDetail)
async def get_tweet(
    tweet_id: str,
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    tweets: TweetService = Depends(get_tweet_service),
):
    return await tweets.get(tweet_id, viewer_id)


@router.put("/{tweet_id}", response_model=TweetResponse)
async def update_tweet(
    tweet_id: str,
    body: TweetUpdate,
    user_id: str = Depends(get_current_user_id),
    tweets: TweetService = Depends(get_tweet_service),
):
    return await tweets.update(user_id, tweet_id, content=body.content, hashtags=body.hashtags)


@router.delete("/{tweet_id}", response_model=ActionResponse)
async def delete_tweet(
    tweet_id: str,
    user_id: str = Depends(get_current_user_id),
    tweets: TweetService = Depends(get_tweet_service),
):
    await tweets.delete(user_id, tweet_id)
    return ActionResponse(success=True, message="Tweet deleted")


@router.post("/{tweet_id}/like", response_model=ToggleResponse)
async def like_tweet(
    tweet_id: str,
    user_id: str = Depends(get_current_user_id),
    engagement: EngagementService = Depends(get_engagement_service),
):
    return await engagement.like(user_id, tweet_id)


@router.post("/{tweet_id}/retweet", response_model=ToggleResponse)
async def retweet(
    tweet_id: str,
    user_id: str = Depends(get_current_user_id),
    engagement: EngagementService = Depends(get_engagement_service),
):
    return await engagement.retweet(user_id, tweet_id)


@router.post(
    "/{tweet_id}/comment", response_model=CommentResponse, status_code=status.HTTP_201_CREATED
)
async def comment_on_tweet(
    tweet_id: str,
    body: CommentCreate,
    user_id: str = Depends(get_current_user_id),
    engagement: EngagementService = Depends(get_engagement_service),
):
    return await engagement.add_comment(user_id, tweet_id, body.content)
