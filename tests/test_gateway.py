"""Tests for websocket registration and per-user push."""

import json

import pytest
from fastapi import status

from chirp.config import settings
from chirp.realtime.gateway import RealtimeGateway
from chirp.routers import realtime

from conftest import FakeWebSocket, connect, make_token


class TestConnect:

    @pytest.mark.asyncio
    async def test_token_from_query(self, gateway):
        websocket, connection = await connect(gateway, "user-1")

        assert websocket.accepted
        assert connection.user_id == "user-1"
        assert gateway.is_online("user-1")

    @pytest.mark.asyncio
    async def test_token_from_header(self, gateway):
        websocket = FakeWebSocket(headers={"authorization": f"Bearer {make_token('user-1')}"})

        connection = await gateway.connect(websocket)

        assert connection is not None
        assert websocket.accepted

    @pytest.mark.asyncio
    async def test_missing_token_closed_with_policy_violation(self, gateway):
        websocket = FakeWebSocket()

        assert await gateway.connect(websocket) is None
        assert websocket.close_code == status.WS_1008_POLICY_VIOLATION
        assert not websocket.accepted

    @pytest.mark.asyncio
    async def test_invalid_token_closed(self, gateway):
        websocket = FakeWebSocket(token="not-a-jwt")

        assert await gateway.connect(websocket) is None
        assert websocket.close_code == status.WS_1008_POLICY_VIOLATION

    @pytest.mark.asyncio
    async def test_expired_token_closed(self, gateway):
        websocket = FakeWebSocket(token=make_token("user-1", expires_in=-60))

        assert await gateway.connect(websocket) is None
        assert gateway.registry.connection_count() == 0


class TestPush:

    @pytest.mark.asyncio
    async def test_every_connection_receives(self, gateway):
        tab1, _ = await connect(gateway, "user-1")
        tab2, _ = await connect(gateway, "user-1")

        delivered = await gateway.push_to_user("user-1", "notification", {"id": "n1"})

        assert delivered == 2
        assert tab1.sent == [{"event": "notification", "data": {"id": "n1"}}]
        assert tab2.sent == tab1.sent

    @pytest.mark.asyncio
    async def test_disconnect_keeps_other_connections(self, gateway):
        tab1, first = await connect(gateway, "user-1")
        tab2, _ = await connect(gateway, "user-1")

        gateway.disconnect(first)
        delivered = await gateway.push_to_user("user-1", "notification", {"id": "n1"})

        assert delivered == 1
        assert tab1.sent == []
        assert len(tab2.sent) == 1
        assert gateway.is_online("user-1")

    @pytest.mark.asyncio
    async def test_offline_user(self, gateway):
        assert await gateway.push_to_user("nobody", "notification", {}) == 0

    @pytest.mark.asyncio
    async def test_failed_send_is_pruned(self, gateway):
        broken, _ = await connect(gateway, "user-1", fail=True)
        healthy, _ = await connect(gateway, "user-1")

        delivered = await gateway.push_to_user("user-1", "notification", {"id": "n1"})

        assert delivered == 1
        assert len(healthy.sent) == 1
        assert gateway.registry.connection_count() == 1

    @pytest.mark.asyncio
    async def test_stalled_send_times_out_and_is_pruned(self, gateway, monkeypatch):
        monkeypatch.setattr(settings, "realtime_send_timeout", 0.05)
        stalled, _ = await connect(gateway, "user-1", stall=True)
        healthy, _ = await connect(gateway, "user-1")

        delivered = await gateway.push_to_user("user-1", "notification", {"id": "n1"})

        assert delivered == 1
        assert stalled.sent == []
        assert len(healthy.sent) == 1
        assert gateway.registry.connection_count() == 1

    @pytest.mark.asyncio
    async def test_channels_are_isolated(self):
        notifications = RealtimeGateway("notifications")
        messages = RealtimeGateway("messages")
        websocket, _ = await connect(notifications, "user-1")

        assert await messages.push_to_user("user-1", "message", {}) == 0
        assert websocket.sent == []


class TestSocketLoop:

    @pytest.mark.asyncio
    async def test_ping_and_bad_frames(self, gateway):
        websocket = FakeWebSocket(
            token=make_token("user-1"),
            incoming=[json.dumps({"event": "ping"}), "{not json", json.dumps({"event": "dance"})],
        )

        await realtime._serve(websocket, gateway, accepts_messages=False)

        assert [m["event"] for m in websocket.sent] == ["pong", "error", "error"]
        assert "timestamp" in websocket.sent[0]["data"]
        # Socket closed by the client: the connection is gone
        assert not gateway.is_online("user-1")

    @pytest.mark.asyncio
    async def test_message_frame_sends_and_acks(
        self, session_factory, create_users, monkeypatch
    ):
        monkeypatch.setattr("chirp.database.AsyncSessionLocal", session_factory)
        alice_id, bob_id = await create_users("alice", "bob")
        bob_socket, _ = await connect(realtime.messages_gateway, bob_id)
        websocket = FakeWebSocket(
            token=make_token(alice_id),
            incoming=[
                json.dumps({"event": "message", "data": {"receiverId": bob_id, "content": "hi"}}),
                json.dumps({"event": "message", "data": {"receiverId": alice_id, "content": "me"}}),
            ],
        )

        try:
            await realtime._serve(websocket, realtime.messages_gateway, accepts_messages=True)
        finally:
            for connection in realtime.messages_gateway.registry.connections(bob_id):
                realtime.messages_gateway.disconnect(connection)

        sent, error = websocket.sent
        assert sent["event"] == "message_sent"
        assert sent["data"]["content"] == "hi"
        assert error == {"event": "error", "data": {"message": "You cannot message yourself"}}
        [pushed] = bob_socket.events("message")
        assert pushed["senderId"] == alice_id
