"""Shared helpers for the service layer."""
import logging
from typing import Optional

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from chirp.config import settings

logger = logging.getLogger(__name__)


async def insert_unique(db: AsyncSession, row) -> bool:
    """
    Insert a row guarded by a SAVEPOINT.

    Returns False when a unique / primary-key constraint rejected it, i.e. a
    concurrent request already inserted the same row. The outer transaction
    stays usable either way.
    """
    try:
        async with db.begin_nested():
            db.add(row)
    except IntegrityError:
        logger.debug("Duplicate %s ignored", type(row).__name__)
        return False
    return True


async def count(db: AsyncSession, stmt) -> int:
    """Row count of an arbitrary select."""
    result = await db.execute(select(func.count()).select_from(stmt.subquery()))
    return result.scalar_one()


def clamp_page(page: Optional[int], limit: Optional[int]) -> tuple[int, int]:
    page = max(page or 1, 1)
    limit = limit or settings.default_page_size
    limit = max(1, min(limit, settings.max_page_size))
    return page, limit
