"""
Social graph — follower → following edges.

follow() is idempotent: an existing edge is returned unchanged and no
notification is sent. A concurrent duplicate insert (primary-key race) is
resolved the same way. Both follow and unfollow drop the follower's cached
timeline pages since the set of authors in their feed changed.
"""
import logging

from opentelemetry import trace
from sqlalchemy import delete, exists, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from chirp.clients.redis_client import CacheClient
from chirp.config import settings
from chirp.errors import BadRequestError, NotFoundError
from chirp.models import Follow, NotificationType, User
from chirp.schemas import FollowListItem, FollowPage, PageMeta, UserSummary
from chirp.services.base import clamp_page, insert_unique
from chirp.services.notifications import NotificationService

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class SocialGraphService:
    def __init__(
        self,
        db: AsyncSession,
        cache: CacheClient,
        notifications: NotificationService,
    ) -> None:
        self.db = db
        self.cache = cache
        self.notifications = notifications

    async def _get_edge(self, follower_id: str, following_id: str):
        result = await self.db.execute(
            select(Follow).where(
                Follow.follower_id == follower_id,
                Follow.following_id == following_id,
            )
        )
        return result.scalar_one_or_none()

    async def follow(self, follower_id: str, following_id: str) -> tuple[Follow, bool]:
        """Returns (edge, created)."""
        with tracer.start_as_current_span("follow") as span:
            span.set_attribute("follow.follower_id", follower_id)
            span.set_attribute("follow.following_id", following_id)

            if follower_id == following_id and not settings.allow_self_follow:
                raise BadRequestError("You cannot follow yourself")

            if await self.db.get(User, following_id) is None:
                raise NotFoundError("User not found")

            existing = await self._get_edge(follower_id, following_id)
            if existing is not None:
                return existing, False

            if not await insert_unique(
                self.db, Follow(follower_id=follower_id, following_id=following_id)
            ):
                # Lost the race to a concurrent follow
                return await self._get_edge(follower_id, following_id), False

            edge = await self._get_edge(follower_id, following_id)
            logger.info("User %s followed %s", follower_id, following_id)

            await self.notifications.create_notification(
                NotificationType.FOLLOW, receiver_id=following_id, sender_id=follower_id
            )
            await self.cache.invalidate_user_timelines(follower_id)
            return edge, True

    async def unfollow(self, follower_id: str, following_id: str) -> None:
        with tracer.start_as_current_span("unfollow"):
            result = await self.db.execute(
                delete(Follow).where(
                    Follow.follower_id == follower_id,
                    Follow.following_id == following_id,
                )
            )
            if result.rowcount == 0:
                raise NotFoundError("You are not following this user")

            logger.info("User %s unfollowed %s", follower_id, following_id)
            await self.cache.invalidate_user_timelines(follower_id)

    async def is_following(self, follower_id: str, following_id: str) -> bool:
        result = await self.db.execute(
            select(
                exists().where(
                    Follow.follower_id == follower_id,
                    Follow.following_id == following_id,
                )
            )
        )
        return bool(result.scalar())

    async def follower_ids(self, user_id: str) -> list[str]:
        result = await self.db.execute(
            select(Follow.follower_id).where(Follow.following_id == user_id)
        )
        return list(result.scalars().all())

    async def following_ids(self, user_id: str) -> list[str]:
        result = await self.db.execute(
            select(Follow.following_id).where(Follow.follower_id == user_id)
        )
        return list(result.scalars().all())

    async def list_followers(self, user_id: str, page: int = 1, limit: int = 10) -> FollowPage:
        return await self._list(user_id, page, limit, followers=True)

    async def list_following(self, user_id: str, page: int = 1, limit: int = 10) -> FollowPage:
        return await self._list(user_id, page, limit, followers=False)

    async def _list(self, user_id: str, page: int, limit: int, followers: bool) -> FollowPage:
        page, limit = clamp_page(page, limit)
        column = Follow.following_id if followers else Follow.follower_id

        total = (
            await self.db.execute(select(func.count()).select_from(Follow).where(column == user_id))
        ).scalar_one()

        result = await self.db.execute(
            select(Follow)
            .where(column == user_id)
            .order_by(Follow.created_at.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .execution_options(populate_existing=True)
        )
        edges = result.scalars().unique().all()
        items = [
            FollowListItem(
                user=UserSummary.from_model(e.follower if followers else e.following),
                followed_at=e.created_at,
            )
            for e in edges
        ]
        return FollowPage(users=items, meta=PageMeta.build(total, page, limit))
