"""
Unit of Work - one atomic, all-or-nothing ledger operation.

Every workflow operation runs inside exactly one unit of work on the caller's
session: commit when the block finishes, explicit rollback before any error
leaves it. Readers on other sessions see the state before or after, never
in between.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.observability.logging import get_logger

logger = get_logger(__name__)


@asynccontextmanager
async def unit_of_work(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a block as one transaction on ``session``.

    Usage:
        async with unit_of_work(session):
            account = await ledger.debit(account_id, 100)
            await log.record(intent)
    """
    try:
        yield session
        await session.commit()
    except Exception as exc:
        await session.rollback()
        logger.info("unit_of_work_rolled_back", error_type=type(exc).__name__)
        raise
