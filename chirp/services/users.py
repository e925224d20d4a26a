"""
User profiles.

Profile rows are cached at user:{username}; counts and the viewer's follow
state are computed per request on top of the cached row.
"""
import logging
from typing import Optional

from opentelemetry import trace
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from chirp.clients.redis_client import CacheClient
from chirp.errors import ConflictError, NotFoundError
from chirp.models import Follow, Tweet, User
from chirp.schemas import PageMeta, TweetPage, UserList, UserProfile, UserRecord, UserSummary
from chirp.services.base import clamp_page, insert_unique
from chirp.services.hydration import hydrate_tweets

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class UserService:
    def __init__(self, db: AsyncSession, cache: CacheClient) -> None:
        self.db = db
        self.cache = cache

    async def create_user(
        self, username: str, email: Optional[str] = None, display_name: Optional[str] = None
    ) -> UserRecord:
        with tracer.start_as_current_span("create_user"):
            clauses = [User.username == username]
            if email:
                clauses.append(User.email == email)
            existing = await self.db.execute(select(User.user_id).where(or_(*clauses)))
            if existing.first() is not None:
                raise ConflictError("Username or email already taken")

            user = User(username=username, email=email, display_name=display_name or username)
            if not await insert_unique(self.db, user):
                raise ConflictError("Username or email already taken")

            logger.info("Created user %s (id=%s)", user.username, user.user_id)
            return UserRecord.from_model(user)

    async def _get_by_username(self, username: str) -> UserRecord:
        cached = await self.cache.get_user(username)
        if cached is not None:
            return UserRecord.model_validate(cached)

        result = await self.db.execute(select(User).where(User.username == username))
        user = result.scalar_one_or_none()
        if user is None:
            raise NotFoundError("User not found")

        record = UserRecord.from_model(user)
        await self.cache.set_user(username, record.to_json())
        return record

    async def _profile(self, record: UserRecord, viewer_id: Optional[str]) -> UserProfile:
        user_id = record.id
        followers = (
            await self.db.execute(
                select(func.count()).select_from(Follow).where(Follow.following_id == user_id)
            )
        ).scalar_one()
        following = (
            await self.db.execute(
                select(func.count()).select_from(Follow).where(Follow.follower_id == user_id)
            )
        ).scalar_one()
        tweets = (
            await self.db.execute(
                select(func.count()).select_from(Tweet).where(Tweet.user_id == user_id)
            )
        ).scalar_one()

        followed_by_me = False
        if viewer_id and viewer_id != user_id:
            followed_by_me = (
                await self.db.get(Follow, (viewer_id, user_id))
            ) is not None

        return UserProfile(
            **record.model_dump(),
            followers_count=followers,
            following_count=following,
            tweets_count=tweets,
            is_followed_by_me=followed_by_me,
        )

    async def get_profile(self, username: str, viewer_id: Optional[str] = None) -> UserProfile:
        with tracer.start_as_current_span("get_profile"):
            return await self._profile(await self._get_by_username(username), viewer_id)

    async def get_me(self, user_id: str) -> UserProfile:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")
        return await self._profile(UserRecord.from_model(user), None)

    async def update_profile(
        self,
        user_id: str,
        display_name: Optional[str] = None,
        bio: Optional[str] = None,
        profile_photo: Optional[str] = None,
    ) -> UserProfile:
        user = await self.db.get(User, user_id)
        if user is None:
            raise NotFoundError("User not found")

        if display_name is not None:
            user.display_name = display_name
        if bio is not None:
            user.bio = bio
        if profile_photo is not None:
            user.profile_photo = profile_photo
        await self.db.flush()

        await self.cache.invalidate_user(user.username)
        logger.info("Profile updated for user %s", user.username)
        return await self._profile(UserRecord.from_model(user), None)

    async def user_tweets(
        self,
        username: str,
        page: int = 1,
        limit: int = 10,
        viewer_id: Optional[str] = None,
    ) -> TweetPage:
        page, limit = clamp_page(page, limit)
        record = await self._get_by_username(username)

        total = (
            await self.db.execute(
                select(func.count()).select_from(Tweet).where(Tweet.user_id == record.id)
            )
        ).scalar_one()
        result = await self.db.execute(
            select(Tweet)
            .where(Tweet.user_id == record.id)
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

    async def search(self, q: str, limit: int = 10) -> UserList:
        q = q.strip()
        if not q:
            return UserList(users=[])
        pattern = f"%{q}%"
        result = await self.db.execute(
            select(User)
            .where(or_(User.username.ilike(pattern), User.display_name.ilike(pattern)))
            .order_by(User.username)
            .limit(limit)
        )
        return UserList(users=[UserSummary.from_model(u) for u in result.scalars().all()])

    async def suggested(self, user_id: str, limit: int = 5) -> UserList:
        """Users the caller does not follow yet, most followed first."""
        followed = select(Follow.following_id).where(Follow.follower_id == user_id)
        follower_count = (
            select(func.count())
            .select_from(Follow)
            .where(Follow.following_id == User.user_id)
            .correlate(User)
            .scalar_subquery()
        )
        result = await self.db.execute(
            select(User)
            .where(User.user_id != user_id, User.user_id.not_in(followed))
            .order_by(follower_count.desc(), User.created_at.desc())
            .limit(limit)
        )
        return UserList(users=[UserSummary.from_model(u) for u in result.scalars().all()])
