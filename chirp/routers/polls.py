"""
Poll endpoints:
  POST /polls/{tweet_id}                    — attach a poll to an owned tweet
  POST /polls/{poll_id}/vote/{option_id}    — single vote per user
  GET  /polls/{poll_id}/results             — counts, percentages, expiry
"""
from fastapi import APIRouter, Depends, status

from chirp.dependencies import get_poll_service
from chirp.schemas import PollCreate, PollResults, VoteRecord
from chirp.security import get_current_user_id
from chirp.services.polls import PollService

router = APIRouter()


@router.post("/{tweet_id}", response_model=PollResults, status_code=status.HTTP_201_CREATED)
async def create_poll(
    tweet_id: str,
    body: PollCreate,
    user_id: str = Depends(get_current_user_id),
    polls: PollService = Depends(get_poll_service),
):
    return await polls.create_poll(user_id, tweet_id, body.question, body.options, body.expires_at)


@router.post(
    "/{poll_id}/vote/{option_id}", response_model=VoteRecord, status_code=status.HTTP_201_CREATED
)
async def vote(
    poll_id: str,
    option_id: str,
    user_id: str = Depends(get_current_user_id),
    polls: PollService = Depends(get_poll_service),
):
    return await polls.vote(user_id, poll_id, option_id)


@router.get("/{poll_id}/results", response_model=PollResults)
async def poll_results(poll_id: str, polls: PollService = Depends(get_poll_service)):
    return await polls.get_results(poll_id)
