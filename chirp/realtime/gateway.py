"""
Realtime gateway — websocket push per authenticated user.

One RealtimeGateway per feature channel ('notifications', 'messages').
Each gateway owns a ConnectionRegistry mapping user_id → live connections,
so a user with several tabs open receives every push on every tab.

Delivery is at-most-once: an offline user simply misses the event; the
persisted Notification / Message row is what clients re-fetch.
"""
import asyncio
import logging
import uuid
from functools import partial
from typing import Optional

from fastapi import WebSocket, status
from sqlalchemy.ext.asyncio import AsyncSession

from chirp.config import settings
from chirp.database import after_commit
from chirp.errors import UnauthorizedError
from chirp.security import decode_access_token, token_from_header
from chirp.telemetry import REALTIME_CONNECTIONS, REALTIME_PUSH_TOTAL

logger = logging.getLogger(__name__)


class Connection:
    """A single accepted websocket bound to a user."""

    def __init__(self, websocket: WebSocket, user_id: str) -> None:
        self.connection_id = uuid.uuid4().hex
        self.user_id = user_id
        self.websocket = websocket
        # Serialises sends so events arrive in push order on this socket
        self._send_lock = asyncio.Lock()

    async def send(self, message: dict, timeout: Optional[float] = None) -> None:
        async with self._send_lock:
            await asyncio.wait_for(self.websocket.send_json(message), timeout)


class ConnectionRegistry:
    """user_id → {connection_id: Connection}."""

    def __init__(self) -> None:
        self._connections: dict[str, dict[str, Connection]] = {}

    def add(self, user_id: str, connection: Connection) -> None:
        self._connections.setdefault(user_id, {})[connection.connection_id] = connection

    def remove(self, user_id: str, connection_id: str) -> bool:
        """Drop one connection; other connections of the same user stay."""
        user_connections = self._connections.get(user_id)
        if not user_connections or connection_id not in user_connections:
            return False
        del user_connections[connection_id]
        if not user_connections:
            del self._connections[user_id]
        return True

    def connections(self, user_id: str) -> list[Connection]:
        return list(self._connections.get(user_id, {}).values())

    def is_online(self, user_id: str) -> bool:
        return bool(self._connections.get(user_id))

    def connection_count(self) -> int:
        return sum(len(c) for c in self._connections.values())

    def online_users(self) -> list[str]:
        return list(self._connections)


class RealtimeGateway:
    def __init__(self, channel: str) -> None:
        self.channel = channel
        self.registry = ConnectionRegistry()

    def is_online(self, user_id: str) -> bool:
        return self.registry.is_online(user_id)

    async def connect(self, websocket: WebSocket) -> Optional[Connection]:
        """
        Authenticate and accept a websocket.

        The bearer token comes from the `token` query parameter or the
        Authorization header. A missing or invalid token closes the socket
        with 1008 (policy violation) and returns None.
        """
        token = websocket.query_params.get("token") or token_from_header(
            websocket.headers.get("authorization")
        )
        if not token:
            logger.info("[%s] Rejecting websocket without token", self.channel)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return None

        try:
            user_id = decode_access_token(token)
        except UnauthorizedError as exc:
            logger.info("[%s] Rejecting websocket: %s", self.channel, exc.message)
            await websocket.close(code=status.WS_1008_POLICY_VIOLATION)
            return None

        await websocket.accept()
        connection = Connection(websocket, user_id)
        self.registry.add(user_id, connection)
        REALTIME_CONNECTIONS.labels(channel=self.channel).inc()
        logger.info(
            "[%s] User %s connected (connection=%s)",
            self.channel, user_id, connection.connection_id,
        )
        return connection

    def disconnect(self, connection: Connection) -> None:
        if self.registry.remove(connection.user_id, connection.connection_id):
            REALTIME_CONNECTIONS.labels(channel=self.channel).dec()
            logger.info(
                "[%s] User %s disconnected (connection=%s)",
                self.channel, connection.user_id, connection.connection_id,
            )

    async def push_to_user(self, user_id: str, event: str, payload: dict) -> int:
        """
        Send `{event, data}` to every live connection of `user_id`.
        Returns the number of connections that received it; 0 when offline.
        Send failures are logged and the broken connection is pruned.
        """
        connections = self.registry.connections(user_id)
        if not connections:
            REALTIME_PUSH_TOTAL.labels(channel=self.channel, outcome="offline").inc()
            logger.debug("[%s] User %s offline, dropping %s", self.channel, user_id, event)
            return 0

        message = {"event": event, "data": payload}
        delivered = 0
        for connection in connections:
            try:
                await connection.send(message, settings.realtime_send_timeout)
                delivered += 1
                REALTIME_PUSH_TOTAL.labels(channel=self.channel, outcome="delivered").inc()
            except asyncio.TimeoutError:
                REALTIME_PUSH_TOTAL.labels(channel=self.channel, outcome="timeout").inc()
                logger.warning(
                    "[%s] Push of %s to user %s timed out (connection=%s)",
                    self.channel, event, user_id, connection.connection_id,
                )
                self.disconnect(connection)
            except Exception as exc:
                REALTIME_PUSH_TOTAL.labels(channel=self.channel, outcome="failed").inc()
                logger.warning(
                    "[%s] Push of %s to user %s failed (connection=%s): %s",
                    self.channel, event, user_id, connection.connection_id, exc,
                )
                self.disconnect(connection)

        return delivered

    def push_after_commit(
        self, db: AsyncSession, user_id: str, event: str, payload: dict
    ) -> None:
        """Push once `db` commits; nothing is sent if it rolls back."""
        after_commit(db, partial(self.push_to_user, user_id, event, payload))


notifications_gateway = RealtimeGateway("notifications")
messages_gateway = RealtimeGateway("messages")
