"""
Direct messages.

A conversation is created lazily by the first message between two users and
stored with the pair sorted, so (a, b) and (b, a) resolve to the same row.
New messages are pushed to the receiver over the messages channel once the
transaction commits; the stored row is the durable copy.
"""
import logging

from opentelemetry import trace
from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from chirp.errors import BadRequestError, ForbiddenError, NotFoundError
from chirp.models import Conversation, Follow, Message, User
from chirp.realtime.gateway import RealtimeGateway
from chirp.schemas import (
    ActionResponse,
    ConversationSummary,
    ConversationUnread,
    CountResponse,
    MessageResponse,
    UnreadMessages,
    UserSummary,
)
from chirp.services.base import insert_unique

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)

MESSAGE_EVENT = "message"


def conversation_pair(a: str, b: str) -> tuple[str, str]:
    return (a, b) if a < b else (b, a)


class MessageService:
    def __init__(self, db: AsyncSession, gateway: RealtimeGateway) -> None:
        self.db = db
        self.gateway = gateway

    async def _find_conversation(self, a: str, b: str):
        user1_id, user2_id = conversation_pair(a, b)
        result = await self.db.execute(
            select(Conversation).where(
                Conversation.user1_id == user1_id, Conversation.user2_id == user2_id
            )
        )
        return result.scalar_one_or_none()

    async def _get_or_create_conversation(self, a: str, b: str) -> Conversation:
        conversation = await self._find_conversation(a, b)
        if conversation is not None:
            return conversation

        user1_id, user2_id = conversation_pair(a, b)
        conversation = Conversation(user1_id=user1_id, user2_id=user2_id)
        if not await insert_unique(self.db, conversation):
            # Both users messaged each other at the same moment
            return await self._find_conversation(a, b)
        logger.info("Conversation %s created between %s and %s", conversation.conversation_id, a, b)
        return conversation

    async def send(self, sender_id: str, receiver_id: str, content: str) -> MessageResponse:
        with tracer.start_as_current_span("send_message") as span:
            span.set_attribute("message.receiver_id", receiver_id)

            content = (content or "").strip()
            if not content:
                raise BadRequestError("Message content cannot be empty")
            if sender_id == receiver_id:
                raise BadRequestError("You cannot message yourself")
            if await self.db.get(User, receiver_id) is None:
                raise NotFoundError("User not found")

            conversation = await self._get_or_create_conversation(sender_id, receiver_id)
            message = Message(
                conversation_id=conversation.conversation_id,
                sender_id=sender_id,
                receiver_id=receiver_id,
                content=content,
            )
            self.db.add(message)
            await self.db.flush()

            result = await self.db.execute(
                select(Message)
                .where(Message.message_id == message.message_id)
                .execution_options(populate_existing=True)
            )
            response = MessageResponse.from_model(result.scalar_one())
            logger.info("Message %s sent %s → %s", response.id, sender_id, receiver_id)

            self.gateway.push_after_commit(
                self.db, receiver_id, MESSAGE_EVENT, response.to_json()
            )
            return response

    async def conversations(self, user_id: str) -> list[ConversationSummary]:
        result = await self.db.execute(
            select(Conversation)
            .where(or_(Conversation.user1_id == user_id, Conversation.user2_id == user_id))
            .execution_options(populate_existing=True)
        )
        conversations = result.scalars().unique().all()
        unread = await self._unread_by_conversation(user_id)

        summaries = []
        for conversation in conversations:
            other = conversation.user2 if conversation.user1_id == user_id else conversation.user1
            last = (
                await self.db.execute(
                    select(Message)
                    .where(Message.conversation_id == conversation.conversation_id)
                    .order_by(Message.created_at.desc())
                    .limit(1)
                    .execution_options(populate_existing=True)
                )
            ).scalar_one_or_none()
            activity = last.created_at if last else conversation.created_at
            summaries.append(
                (
                    activity,
                    ConversationSummary(
                        id=conversation.conversation_id,
                        other_user=UserSummary.from_model(other),
                        last_message=MessageResponse.from_model(last) if last else None,
                        unread_count=unread.get(conversation.conversation_id, 0),
                        is_online=self.gateway.is_online(other.user_id),
                    ),
                )
            )

        # Most recent activity first
        summaries.sort(key=lambda item: item[0], reverse=True)
        return [summary for _, summary in summaries]

    async def following_users(self, user_id: str) -> list[UserSummary]:
        result = await self.db.execute(
            select(User)
            .join(Follow, Follow.following_id == User.user_id)
            .where(Follow.follower_id == user_id)
            .order_by(User.username)
        )
        return [UserSummary.from_model(u) for u in result.scalars().all()]

    async def messages_with(self, user_id: str, other_id: str) -> list[MessageResponse]:
        """Full thread in send order; incoming messages are marked read."""
        result = await self.db.execute(
            select(Message)
            .where(
                or_(
                    and_(Message.sender_id == user_id, Message.receiver_id == other_id),
                    and_(Message.sender_id == other_id, Message.receiver_id == user_id),
                )
            )
            .order_by(Message.created_at.asc())
            .execution_options(populate_existing=True)
        )
        messages = [MessageResponse.from_model(m) for m in result.scalars().unique().all()]

        await self.db.execute(
            update(Message)
            .where(
                Message.sender_id == other_id,
                Message.receiver_id == user_id,
                Message.read.is_(False),
            )
            .values(read=True)
            .execution_options(synchronize_session="fetch")
        )
        return messages

    async def mark_conversation_read(self, user_id: str, conversation_id: str) -> CountResponse:
        result = await self.db.execute(
            update(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.receiver_id == user_id,
                Message.read.is_(False),
            )
            .values(read=True)
            .execution_options(synchronize_session="fetch")
        )
        return CountResponse(count=result.rowcount)

    async def delete_message(self, user_id: str, message_id: str) -> ActionResponse:
        message = await self.db.get(Message, message_id)
        if message is None:
            raise NotFoundError("Message not found")
        if message.sender_id != user_id:
            raise ForbiddenError("Cannot delete other users' messages")

        await self.db.delete(message)
        await self.db.flush()
        logger.info("Message %s deleted by %s", message_id, user_id)
        return ActionResponse(success=True, message="Message deleted")

    async def _unread_by_conversation(self, user_id: str) -> dict[str, int]:
        result = await self.db.execute(
            select(Message.conversation_id, func.count())
            .where(Message.receiver_id == user_id, Message.read.is_(False))
            .group_by(Message.conversation_id)
        )
        return {conversation_id: n for conversation_id, n in result.all()}

    async def unread_counts(self, user_id: str) -> UnreadMessages:
        unread = await self._unread_by_conversation(user_id)
        if not unread:
            return UnreadMessages(total=0, conversations=[])

        result = await self.db.execute(
            select(Conversation).where(Conversation.conversation_id.in_(list(unread)))
        )
        items = []
        for conversation in result.scalars().unique().all():
            other_id = (
                conversation.user2_id if conversation.user1_id == user_id else conversation.user1_id
            )
            items.append(
                ConversationUnread(
                    conversation_id=conversation.conversation_id,
                    other_user_id=other_id,
                    count=unread[conversation.conversation_id],
                )
            )
        return UnreadMessages(total=sum(unread.values()), conversations=items)
