"""Tests for direct messages and conversations."""

from datetime import timedelta

import pytest
from sqlalchemy import select

from chirp.database import commit_session, session_scope
from chirp.errors import BadRequestError, ForbiddenError, NotFoundError
from chirp.models import Conversation, Follow, Message, utcnow
from chirp.services.messages import MessageService, conversation_pair

from conftest import connect


@pytest.fixture
def messages(db_session, messages_gateway):
    return MessageService(db_session, messages_gateway)


class TestSend:

    @pytest.mark.asyncio
    async def test_first_message_creates_one_conversation(self, messages, make_user, db_session):
        alice = await make_user("alice")
        bob = await make_user("bob")

        first = await messages.send(alice.user_id, bob.user_id, "hi bob")
        reply = await messages.send(bob.user_id, alice.user_id, "hi alice")

        assert first.conversation_id == reply.conversation_id
        conversation = (await db_session.execute(select(Conversation))).scalar_one()
        assert (conversation.user1_id, conversation.user2_id) == conversation_pair(
            alice.user_id, bob.user_id
        )

    @pytest.mark.asyncio
    async def test_receiver_gets_push(self, messages, messages_gateway, make_user, db_session):
        alice = await make_user("alice")
        bob = await make_user("bob")
        websocket, _ = await connect(messages_gateway, bob.user_id)

        sent = await messages.send(alice.user_id, bob.user_id, "  hello  ")
        await commit_session(db_session)

        assert sent.content == "hello"
        [pushed] = websocket.events("message")
        assert pushed["id"] == sent.id
        assert pushed["sender"]["username"] == "alice"

    @pytest.mark.asyncio
    async def test_rejects_empty_self_and_unknown(self, messages, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")

        with pytest.raises(BadRequestError):
            await messages.send(alice.user_id, bob.user_id, "   ")
        with pytest.raises(BadRequestError):
            await messages.send(alice.user_id, alice.user_id, "talking to myself")
        with pytest.raises(NotFoundError):
            await messages.send(alice.user_id, "missing", "hello?")

    @pytest.mark.asyncio
    async def test_failed_scope_sends_nothing(
        self, session_factory, create_users, messages_gateway, monkeypatch
    ):
        monkeypatch.setattr("chirp.database.AsyncSessionLocal", session_factory)
        alice_id, bob_id = await create_users("alice", "bob")
        websocket, _ = await connect(messages_gateway, bob_id)

        with pytest.raises(RuntimeError):
            async with session_scope() as session:
                await MessageService(session, messages_gateway).send(alice_id, bob_id, "hi")
                raise RuntimeError("later step failed")

        assert websocket.sent == []
        async with session_factory() as session:
            assert (await session.execute(select(Message))).scalars().all() == []


class TestThreads:

    @pytest.mark.asyncio
    async def test_thread_in_order_and_marked_read(self, messages, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        await messages.send(alice.user_id, bob.user_id, "one")
        await messages.send(bob.user_id, alice.user_id, "two")
        await messages.send(alice.user_id, bob.user_id, "three")
        assert (await messages.unread_counts(bob.user_id)).total == 2

        thread = await messages.messages_with(bob.user_id, alice.user_id)

        assert [m.content for m in thread] == ["one", "two", "three"]
        unread = await messages.unread_counts(bob.user_id)
        assert unread.total == 0
        assert unread.conversations == []
        # Alice's own unread message from bob is untouched
        assert (await messages.unread_counts(alice.user_id)).total == 1

    @pytest.mark.asyncio
    async def test_conversations_most_recent_first(
        self, messages, messages_gateway, make_user, db_session
    ):
        alice = await make_user("alice")
        bob = await make_user("bob")
        carol = await make_user("carol")
        old = await messages.send(bob.user_id, alice.user_id, "old news")
        await messages.send(carol.user_id, alice.user_id, "fresh")
        stored = await db_session.get(Message, old.id)
        stored.created_at = utcnow() - timedelta(hours=1)
        await db_session.flush()
        await connect(messages_gateway, carol.user_id)

        summaries = await messages.conversations(alice.user_id)

        assert [s.other_user.username for s in summaries] == ["carol", "bob"]
        assert summaries[0].last_message.content == "fresh"
        assert summaries[0].unread_count == 1
        assert summaries[0].is_online is True
        assert summaries[1].is_online is False

    @pytest.mark.asyncio
    async def test_mark_conversation_read(self, messages, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        sent = await messages.send(alice.user_id, bob.user_id, "one")
        await messages.send(alice.user_id, bob.user_id, "two")

        result = await messages.mark_conversation_read(bob.user_id, sent.conversation_id)

        assert result.count == 2
        assert (await messages.unread_counts(bob.user_id)).total == 0

    @pytest.mark.asyncio
    async def test_following_users(self, messages, make_user, db_session):
        alice = await make_user("alice")
        bob = await make_user("bob")
        await make_user("carol")
        db_session.add(Follow(follower_id=alice.user_id, following_id=bob.user_id))
        await db_session.flush()

        assert [u.username for u in await messages.following_users(alice.user_id)] == ["bob"]


class TestDelete:

    @pytest.mark.asyncio
    async def test_only_sender_can_delete(self, messages, make_user):
        alice = await make_user("alice")
        bob = await make_user("bob")
        sent = await messages.send(alice.user_id, bob.user_id, "oops")

        with pytest.raises(ForbiddenError):
            await messages.delete_message(bob.user_id, sent.id)

        result = await messages.delete_message(alice.user_id, sent.id)
        assert result.success is True
        assert await messages.messages_with(alice.user_id, bob.user_id) == []
        with pytest.raises(NotFoundError):
            await messages.delete_message(alice.user_id, sent.id)
