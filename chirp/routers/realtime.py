"""
Websocket endpoints:
  /ws/notifications — server → client notification pushes
  /ws/messages      — message pushes; clients may also send messages here

Authenticate with `?token=<jwt>` or an `Authorization: Bearer` header.

Client frames are JSON `{event, data}`:
  ping                                → pong
  message {receiverId, content}       → message_sent (messages channel only)
"""
import json
import logging
import time

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from chirp.database import session_scope
from chirp.errors import ChirpError
from chirp.realtime.gateway import (
    Connection,
    RealtimeGateway,
    messages_gateway,
    notifications_gateway,
)
from chirp.services.messages import MessageService

logger = logging.getLogger(__name__)

router = APIRouter()


async def _reply(connection: Connection, event: str, data: dict) -> None:
    await connection.send({"event": event, "data": data})


async def _handle_message(connection: Connection, data: dict) -> None:
    receiver_id = data.get("receiverId")
    if not receiver_id:
        await _reply(connection, "error", {"message": "receiverId is required"})
        return
    try:
        async with session_scope() as session:
            sent = await MessageService(session, messages_gateway).send(
                connection.user_id, receiver_id, data.get("content", "")
            )
    except ChirpError as exc:
        await _reply(connection, "error", {"message": exc.message})
        return
    await _reply(connection, "message_sent", sent.to_json())


async def _serve(websocket: WebSocket, gateway: RealtimeGateway, accepts_messages: bool) -> None:
    connection = await gateway.connect(websocket)
    if connection is None:
        return

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await _reply(connection, "error", {"message": "Invalid JSON"})
                continue
            if not isinstance(frame, dict):
                await _reply(connection, "error", {"message": "Invalid frame"})
                continue

            event = frame.get("event")
            data = frame.get("data") or {}
            if event == "ping":
                await _reply(connection, "pong", {"timestamp": int(time.time() * 1000)})
            elif event == "message" and accepts_messages:
                await _handle_message(connection, data)
            else:
                logger.debug("[%s] Ignoring unknown event %r", gateway.channel, event)
                await _reply(connection, "error", {"message": f"Unknown event: {event}"})
    except WebSocketDisconnect:
        pass
    finally:
        gateway.disconnect(connection)


@router.websocket("/ws/notifications")
async def notifications_socket(websocket: WebSocket):
    await _serve(websocket, notifications_gateway, accepts_messages=False)


@router.websocket("/ws/messages")
async def messages_socket(websocket: WebSocket):
    await _serve(websocket, messages_gateway, accepts_messages=True)
