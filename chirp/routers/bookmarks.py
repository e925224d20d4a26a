"""
Bookmark endpoints:
  GET    /bookmarks            — caller's bookmarked tweets, newest first
  POST   /bookmarks/{tweet_id} — bookmark (idempotent)
  DELETE /bookmarks/{tweet_id} — remove
"""
from fastapi import APIRouter, Depends

from chirp.dependencies import get_bookmark_service
from chirp.schemas import ActionResponse, TweetPage
from chirp.security import get_current_user_id
from chirp.services.bookmarks import BookmarkService

router = APIRouter()


@router.get("", response_model=TweetPage)
async def list_bookmarks(
    user_id: str = Depends(get_current_user_id),
    bookmarks: BookmarkService = Depends(get_bookmark_service),
):
    return await bookmarks.list_bookmarks(user_id)


@router.post("/{tweet_id}", response_model=ActionResponse)
async def add_bookmark(
    tweet_id: str,
    user_id: str = Depends(get_current_user_id),
    bookmarks: BookmarkService = Depends(get_bookmark_service),
):
    return await bookmarks.add(user_id, tweet_id)


@router.delete("/{tweet_id}", response_model=ActionResponse)
async def remove_bookmark(
    tweet_id: str,
    user_id: str = Depends(get_current_user_id),
    bookmarks: BookmarkService = Depends(get_bookmark_service),
):
    return await bookmarks.remove(user_id, tweet_id)
