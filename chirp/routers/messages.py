"""
Direct message endpoints:
  GET    /messages/conversations            — threads with last message & unread count
  GET    /messages/following                — people the caller can message
  GET    /messages/unread-count             — unread totals per conversation
  GET    /messages/{user_id}                — thread with a user (marks incoming read)
  POST   /messages/{user_id}                — send (pushed to the receiver)
  POST   /messages/read/{conversation_id}   — mark a thread read
  DELETE /messages/{message_id}             — delete an own message
"""
from fastapi import APIRouter, Depends, status

from chirp.dependencies import get_message_service
from chirp.schemas import (
    ActionResponse,
    ConversationSummary,
    CountResponse,
    MessageCreate,
    MessageResponse,
    UnreadMessages,
    UserSummary,
)
from chirp.security import get_current_user_id
from chirp.services.messages import MessageService

router = APIRouter()


@router.get("/conversations", response_model=list[ConversationSummary])
async def list_conversations(
    user_id: str = Depends(get_current_user_id),
    messages: MessageService = Depends(get_message_service),
):
    return await messages.conversations(user_id)


@router.get("/following", response_model=list[UserSummary])
async def following_users(
    user_id: str = Depends(get_current_user_id),
    messages: MessageService = Depends(get_message_service),
):
    return await messages.following_users(user_id)


@router.get("/unread-count", response_model=UnreadMessages)
async def unread_count(
    user_id: str = Depends(get_current_user_id),
    messages: MessageService = Depends(get_message_service),
):
    return await messages.unread_counts(user_id)


@router.post("/read/{conversation_id}", response_model=CountResponse)
async def mark_conversation_read(
    conversation_id: str,
    user_id: str = Depends(get_current_user_id),
    messages: MessageService = Depends(get_message_service),
):
    return await messages.mark_conversation_read(user_id, conversation_id)


@router.get("/{other_id}", response_model=list[MessageResponse])
async def get_thread(
    other_id: str,
    user_id: str = Depends(get_current_user_id),
    messages: MessageService = Depends(get_message_service),
):
    return await messages.messages_with(user_id, other_id)


@router.post("/{receiver_id}", response_model=MessageResponse, status_code=status.HTTP_201_CREATED)
async def send_message(
    receiver_id: str,
    body: MessageCreate,
    user_id: str = Depends(get_current_user_id),
    messages: MessageService = Depends(get_message_service),
):
    return await messages.send(user_id, receiver_id, body.content)


@router.delete("/{message_id}", response_model=ActionResponse)
async def delete_message(
    message_id: str,
    user_id: str = Depends(get_current_user_id),
    messages: MessageService = Depends(get_message_service),
):
    return await messages.delete_message(user_id, message_id)
