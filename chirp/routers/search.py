"""GET /search?q= — tweets and users in one call; blank query → recommendations."""
from typing import Optional

from fastapi import APIRouter, Depends, Query

from chirp.dependencies import get_search_service
from chirp.schemas import SearchResponse
from chirp.security import get_optional_user_id
from chirp.services.search import SearchService

router = APIRouter()


@router.get("", response_model=SearchResponse)
async def search(
    q: str = Query("", max_length=100),
    viewer_id: Optional[str] = Depends(get_optional_user_id),
    search_service: SearchService = Depends(get_search_service),
):
    return await search_service.search(q, viewer_id)
