"""
Async SQLAlchemy engine + session factory.

The default backend is MySQL-protocol storage through the aiomysql driver.
The engine is created once at import and reused across all requests.
"""
import logging
from contextlib import asynccontextmanager
from typing import Awaitable, Callable

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from chirp.config import settings

logger = logging.getLogger(__name__)


def _engine_options(url: str) -> dict:
    # SQLite (local dev) uses a single-connection pool without sizing knobs
    if url.startswith("sqlite"):
        return {"echo": False}
    return {
        "pool_pre_ping": True,
        "pool_size": 20,
        "max_overflow": 10,
        "echo": False,
    }


engine = create_async_engine(settings.database_url, **_engine_options(settings.database_url))

AsyncSessionLocal = async_sessionmaker(
    bind=engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    pass


async def init_db() -> None:
    """Create all tables if they don't exist (idempotent)."""
    # Import models so every table is registered on Base.metadata
    import chirp.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database tables initialised")


# ─── Post-commit side effects ─────────────────────────────────────────────────
# Realtime pushes are queued on the session and sent once the rows they
# describe are committed. A rollback discards them.

PENDING_PUSHES = "pending_pushes"


def after_commit(session: AsyncSession, callback: Callable[[], Awaitable]) -> None:
    """Queue `callback` to run after the session's next successful commit."""
    session.info.setdefault(PENDING_PUSHES, []).append(callback)


async def commit_session(session: AsyncSession) -> None:
    await session.commit()
    for callback in session.info.pop(PENDING_PUSHES, []):
        try:
            await callback()
        except Exception as exc:
            logger.warning("Post-commit push failed: %s", exc)


async def rollback_session(session: AsyncSession) -> None:
    dropped = session.info.pop(PENDING_PUSHES, [])
    if dropped:
        logger.debug("Rollback discarded %d pending pushes", len(dropped))
    await session.rollback()


async def get_db():
    """FastAPI dependency that yields an async DB session."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await commit_session(session)
        except Exception:
            await rollback_session(session)
            raise


@asynccontextmanager
async def session_scope():
    """Transactional session outside a request (websocket events, worker)."""
    async with AsyncSessionLocal() as session:
        try:
            yield session
            await commit_session(session)
        except Exception:
            await rollback_session(session)
            raise
