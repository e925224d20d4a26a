"""
User & social graph endpoints:
  POST /users                          — create a user profile
  GET  /users/me                       — caller's profile
  POST /users/update-profile           — edit display name / bio / photo
  GET  /users/getByUsername/{username} — public profile with counts
  GET  /users/{username}/tweets        — a user's tweets
  POST /users/{id}/follow|unfollow     — social graph edges
  GET  /users/{id}/followers|following — paginated edge lists
  GET  /users/search, /users/suggested
"""
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from chirp.config import settings
from chirp.dependencies import get_social_graph_service, get_user_service
from chirp.schemas import (
    ActionResponse,
    FollowPage,
    FollowRecord,
    FollowResponse,
    TweetPage,
    UpdateProfileRequest,
    UserCreate,
    UserList,
    UserProfile,
    UserRecord,
)
from chirp.security import get_current_user_id, get_optional_user_id
from chirp.services.social_graph import SocialGraphService
from chirp.services.users import UserService

router = APIRouter()


@router.post("", response_model=UserRecord, status_code=status.HTTP_201_CREATED)
async def create_user(body: UserCreate, users: UserService = Depends(get_user_service)):
    return await users.create_user(body.username, body.email, body.display_name)


@router.get("/me", response_model=UserProfile)
async def get_me(
    user_id: str = Depends(get_current_user_id),
    users: UserService = Depends(get_user_service),
):
    return await users.get_me(user_id)


@router.post("/update-profile", response_model=UserProfile)
async def update_profile(
    body: UpdateProfileRequest,
    user_id: str = Depends(get_current_user_id),
    users: UserService = Depends(get_user_service),
):
    return await users.update_profile(
        user_id,
        display_name=body.display_name,
        bio=body.bio,
        profile_photo=body.profile_photo,
    )


@router.get("/search", response_model=UserList)
async def search_users(
    q: str = Query("", max_length=100),
    limit: int = Query(10, ge=1, le=50),
    users: UserService = Depends(get_user_service),
):
    return await users.search(q, limit)


@router.get("/suggested", response_model=UserList)
async def suggested_users(
    limit: int = Query(5, ge=1, le=50),
    user_id: str = Depends(get_current_user_id),
    users: UserService = Depends(get_user_service),
):
    return await users.suggested(user_id, limit)


@router.get("/getByUsername/{username}", response_model=UserProfile)
async def get_by_username(
    username: str,
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    users: UserService = Depends(get_user_service),
):
    return await users.get_profile(username, viewer_id)


@router.get("/{username}/tweets", response_model=TweetPage)
async def user_tweets(
    username: str,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    users: UserService = Depends(get_user_service),
):
    return await users.user_tweets(username, page, limit, viewer_id)


@router.post("/{target_id}/follow", response_model=FollowResponse)
async def follow_user(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    graph: SocialGraphService = Depends(get_social_graph_service),
):
    """
    Create a follower → following edge. Idempotent: following someone
    already followed returns the existing edge with created=false.
    """
    edge, created = await graph.follow(user_id, target_id)
    return FollowResponse(
        message="Followed" if created else "Already following",
        created=created,
        follow=FollowRecord(
            follower_id=edge.follower_id,
            following_id=edge.following_id,
            created_at=edge.created_at,
        ),
    )


@router.post("/{target_id}/unfollow", response_model=ActionResponse)
async def unfollow_user(
    target_id: str,
    user_id: str = Depends(get_current_user_id),
    graph: SocialGraphService = Depends(get_social_graph_service),
):
    await graph.unfollow(user_id, target_id)
    return ActionResponse(success=True, message="Unfollowed")


@router.get("/{user_id}/followers", response_model=FollowPage)
async def list_followers(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    graph: SocialGraphService = Depends(get_social_graph_service),
):
    return await graph.list_followers(user_id, page, limit)


@router.get("/{user_id}/following", response_model=FollowPage)
async def list_following(
    user_id: str,
    page: int = Query(1, ge=1),
    limit: int = Query(settings.default_page_size, ge=1, le=settings.max_page_size),
    graph: SocialGraphService = Depends(get_social_graph_service),
):
    return await graph.list_following(user_id, page, limit)
