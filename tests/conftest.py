"""Shared fixtures: in-memory store, fake Redis, recording websockets, HTTP client."""

import asyncio
import os

os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("KAFKA_ENABLED", "false")
os.environ.setdefault("DATABASE_URL_OVERRIDE", "sqlite+aiosqlite://")

from datetime import datetime, timedelta, timezone
from typing import Optional

import fakeredis
import httpx
import jwt
import pytest
import pytest_asyncio
from sqlalchemy import event, insert
from sqlalchemy import inspect as sa_inspect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from starlette.websockets import WebSocketDisconnect

import chirp.models  # noqa: F401
from chirp.clients.redis_client import CacheClient
from chirp.config import settings
from chirp.database import Base, commit_session, get_db, rollback_session
from chirp.models import Tweet, User, utcnow
from chirp.realtime.gateway import RealtimeGateway
from chirp.services.base import insert_unique
from chirp.services.notifications import NotificationService


# =============================================================================
# Helpers
# =============================================================================


def make_token(user_id: str, expires_in: int = 3600) -> str:
    now = datetime.now(timezone.utc)
    return jwt.encode(
        {"sub": user_id, "iat": now, "exp": now + timedelta(seconds=expires_in)},
        settings.jwt_access_secret,
        algorithm=settings.jwt_algorithm,
    )


def auth(user_id: str) -> dict:
    return {"Authorization": f"Bearer {make_token(user_id)}"}


class FakeWebSocket:
    """Records what the server sends; replays queued client frames."""

    def __init__(
        self,
        token: Optional[str] = None,
        headers: Optional[dict] = None,
        incoming: Optional[list[str]] = None,
        fail: bool = False,
        stall: bool = False,
    ):
        self.query_params = {"token": token} if token else {}
        self.headers = headers or {}
        self.sent: list[dict] = []
        self.accepted = False
        self.close_code: Optional[int] = None
        self.fail = fail
        self.stall = stall
        self._incoming = list(incoming or [])

    async def accept(self):
        self.accepted = True

    async def close(self, code: int = 1000):
        self.close_code = code

    async def send_json(self, data):
        if self.fail:
            raise RuntimeError("socket is closed")
        if self.stall:
            # Peer stopped reading; the send never completes
            await asyncio.Event().wait()
        self.sent.append(data)

    async def receive_text(self) -> str:
        if not self._incoming:
            raise WebSocketDisconnect(code=1000)
        return self._incoming.pop(0)

    def events(self, name: str) -> list[dict]:
        return [m["data"] for m in self.sent if m["event"] == name]


# =============================================================================
# Store
# =============================================================================


@pytest_asyncio.fixture
async def engine():
    """In-memory SQLite sharing one connection, with working SAVEPOINTs."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_factory):
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def make_user(db_session):
    async def _make_user(username: str, **fields) -> User:
        user = User(username=username, email=f"{username}@example.com", **fields)
        db_session.add(user)
        await db_session.flush()
        return user

    return _make_user


@pytest.fixture
def make_tweet(db_session):
    """Insert a tweet row directly; `age` seconds in the past."""

    async def _make_tweet(author: User, content: str, age: int = 0, **fields) -> Tweet:
        created = utcnow() - timedelta(seconds=age)
        tweet = Tweet(
            user_id=author.user_id,
            content=content,
            media_urls=[],
            created_at=created,
            updated_at=created,
            **fields,
        )
        db_session.add(tweet)
        await db_session.flush()
        return tweet

    return _make_tweet


@pytest.fixture
def lose_insert_race(monkeypatch):
    """
    Patch `module.insert_unique` so a concurrent request stores the same row
    between the service's existence check and its own insert.
    """

    def _patch(module) -> None:
        async def racing_insert(db, row):
            mapper = sa_inspect(type(row))
            values = {
                attr.key: getattr(row, attr.key)
                for attr in mapper.column_attrs
                if getattr(row, attr.key) is not None
            }
            await db.execute(insert(type(row)).values(**values))
            return await insert_unique(db, row)

        monkeypatch.setattr(module, "insert_unique", racing_insert)

    return _patch


# =============================================================================
# Cache & realtime
# =============================================================================


@pytest_asyncio.fixture
async def cache():
    redis = fakeredis.FakeAsyncRedis(server=fakeredis.FakeServer(), decode_responses=True)
    yield CacheClient(redis, key_prefix="test:")
    await redis.aclose()


@pytest.fixture
def gateway():
    return RealtimeGateway("notifications")


@pytest.fixture
def messages_gateway():
    return RealtimeGateway("messages")


@pytest.fixture
def notifications(db_session, gateway):
    return NotificationService(db_session, gateway)


async def connect(gateway: RealtimeGateway, user_id: str, **kwargs):
    websocket = FakeWebSocket(token=make_token(user_id), **kwargs)
    connection = await gateway.connect(websocket)
    return websocket, connection


# =============================================================================
# HTTP
# =============================================================================


@pytest_asyncio.fixture
async def client(session_factory, cache, gateway, messages_gateway):
    from chirp.dependencies import (
        get_cache_client,
        get_messages_gateway,
        get_notifications_gateway,
    )
    from chirp.main import app

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await commit_session(session)
            except Exception:
                await rollback_session(session)
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_cache_client] = lambda: cache
    app.dependency_overrides[get_notifications_gateway] = lambda: gateway
    app.dependency_overrides[get_messages_gateway] = lambda: messages_gateway

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://test") as http:
        yield http
    app.dependency_overrides.clear()


@pytest.fixture
def create_users(session_factory):
    """Commit users so request sessions see them."""

    async def _create_users(*usernames: str) -> list[str]:
        async with session_factory() as session:
            users = [User(username=name, email=f"{name}@example.com") for name in usernames]
            session.add_all(users)
            await session.commit()
            return [u.user_id for u in users]

    return _create_users
