"""
Activity Recorder - best-effort audit trail of staff and customer actions.

Recording happens after the ledger commit and in its own session. A failure
here is logged and swallowed; it never changes what the caller sees.
list_recent_activity reads entries back, newest first.
"""

from typing import Protocol

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from loyalty.db.models import ActivityLog
from loyalty.models.domain import ActivityEntry, Actor
from loyalty.observability.logging import get_logger
from loyalty.services.clock import Clock, SystemClock

logger = get_logger(__name__)


class ActivityRecorder(Protocol):
    """Outbound capability: write one activity entry."""

    async def record(
        self,
        actor_id: str,
        actor_role: str,
        target_id: str,
        target_role: str,
        description: str,
        points_delta: int,
    ) -> None: ...


class DatabaseActivityRecorder:
    """Persists activity entries to the activity_logs table."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        clock: Clock | None = None,
    ) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    async def record(
        self,
        actor_id: str,
        actor_role: str,
        target_id: str,
        target_role: str,
        description: str,
        points_delta: int,
    ) -> None:
        async with self._session_factory() as session:
            session.add(
                ActivityLog(
                    actor_id=actor_id,
                    actor_role=actor_role,
                    target_id=target_id,
                    target_role=target_role,
                    description=description,
                    points_delta=points_delta,
                    created_at=self._clock.now(),
                )
            )
            await session.commit()


async def record_activity_safely(
    recorder: ActivityRecorder | None,
    actor: Actor,
    target_id: str,
    description: str,
    points_delta: int = 0,
    target_role: str = "customer",
) -> bool:
    """
    Record an activity entry, logging instead of raising on failure.

    Returns True when the entry was written.
    """
    if recorder is None:
        return False

    try:
        await recorder.record(
            actor_id=actor.actor_id,
            actor_role=actor.role,
            target_id=target_id,
            target_role=target_role,
            description=description,
            points_delta=points_delta,
        )
    except Exception as exc:
        logger.error(
            "activity_record_failed",
            actor_id=actor.actor_id,
            target_id=target_id,
            description=description,
            error=str(exc),
            exc_info=True,
        )
        return False

    return True


async def list_recent_activity(
    session: AsyncSession,
    limit: int = 50,
    target_id: str | None = None,
) -> list[ActivityEntry]:
    """Most recent activity entries, newest first, optionally for one target."""
    stmt = select(ActivityLog)
    if target_id is not None:
        stmt = stmt.where(ActivityLog.target_id == target_id)
    stmt = stmt.order_by(ActivityLog.created_at.desc()).limit(limit)
    result = await session.execute(stmt)
    return [activity_to_domain(row) for row in result.scalars().all()]


def activity_to_domain(row: ActivityLog) -> ActivityEntry:
    """Convert ORM activity log row to domain model."""
    return ActivityEntry(
        entry_id=row.id,
        actor_id=row.actor_id,
        actor_role=row.actor_role,
        target_id=row.target_id,
        target_role=row.target_role,
        description=row.description,
        points_delta=row.points_delta,
        created_at=row.created_at,
    )
