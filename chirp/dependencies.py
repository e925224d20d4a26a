"""
FastAPI dependency providers.

Every service is built per request on top of the request-scoped session, so
one HTTP call runs in exactly one transaction.
"""
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from chirp.clients.redis_client import CacheClient, get_cache
from chirp.database import get_db
from chirp.realtime.gateway import RealtimeGateway, messages_gateway, notifications_gateway
from chirp.services.bookmarks import BookmarkService
from chirp.services.engagement import EngagementService
from chirp.services.messages import MessageService
from chirp.services.notifications import NotificationService
from chirp.services.polls import PollService
from chirp.services.search import SearchService
from chirp.services.social_graph import SocialGraphService
from chirp.services.timeline import TimelineService
from chirp.services.tweets import TweetService
from chirp.services.users import UserService


def get_cache_client() -> CacheClient:
    return get_cache()


def get_notifications_gateway() -> RealtimeGateway:
    return notifications_gateway


def get_messages_gateway() -> RealtimeGateway:
    return messages_gateway


def get_notification_service(
    db: AsyncSession = Depends(get_db),
    gateway: RealtimeGateway = Depends(get_notifications_gateway),
) -> NotificationService:
    return NotificationService(db, gateway)


def get_social_graph_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache_client),
    notifications: NotificationService = Depends(get_notification_service),
) -> SocialGraphService:
    return SocialGraphService(db, cache, notifications)


def get_timeline_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache_client),
) -> TimelineService:
    return TimelineService(db, cache)


def get_engagement_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache_client),
    notifications: NotificationService = Depends(get_notification_service),
) -> EngagementService:
    return EngagementService(db, cache, notifications)


def get_poll_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache_client),
    notifications: NotificationService = Depends(get_notification_service),
) -> PollService:
    return PollService(db, cache, notifications)


def get_tweet_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache_client),
    notifications: NotificationService = Depends(get_notification_service),
) -> TweetService:
    return TweetService(db, cache, notifications)


def get_user_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache_client),
) -> UserService:
    return UserService(db, cache)


def get_bookmark_service(
    db: AsyncSession = Depends(get_db),
    cache: CacheClient = Depends(get_cache_client),
) -> BookmarkService:
    return BookmarkService(db, cache)


def get_message_service(
    db: AsyncSession = Depends(get_db),
    gateway: RealtimeGateway = Depends(get_messages_gateway),
) -> MessageService:
    return MessageService(db, gateway)


def get_search_service(db: AsyncSession = Depends(get_db)) -> SearchService:
    return SearchService(db)
