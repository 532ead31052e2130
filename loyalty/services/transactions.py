"""
Transaction Log - append-only record of every balance-affecting event.

Entries are appended inside the caller's unit of work and read back for
history and statistics. Nothing here updates or deletes an entry.
"""

from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models import TransactionEntry
from loyalty.exceptions import InvariantViolationError
from loyalty.models.api import TransactionType
from loyalty.models.domain import TransactionData, TransactionIntent, TransactionStats
from loyalty.services.clock import Clock, SystemClock


class TransactionLog:
    """Append and query transaction log entries on the caller's session."""

    def __init__(self, session: AsyncSession, clock: Clock | None = None) -> None:
        self.session = session
        self.clock = clock or SystemClock()

    async def record(self, intent: TransactionIntent) -> TransactionData:
        """
        Append one entry. Does not commit; the caller's unit of work does.

        Raises:
            InvariantViolationError: Entry not readable after flush
        """
        entry = TransactionEntry(
            account_id=intent.account_id,
            transaction_type=intent.transaction_type.value,
            amount=intent.amount,
            reward_id=intent.reward_id,
            description=intent.description,
            purchase_amount=intent.purchase_amount,
            created_at=self.clock.now(),
        )
        self.session.add(entry)
        await self.session.flush()

        verified = await self.session.get(TransactionEntry, entry.id)
        if verified is None:
            raise InvariantViolationError(f"Transaction {entry.id} not found after insert")

        return entry_to_domain(verified)

    async def sum_by_type(self, account_id: UUID, transaction_type: TransactionType) -> int:
        """Signed sum of amounts of one type for an account (0 when none)."""
        stmt = select(func.coalesce(func.sum(TransactionEntry.amount), 0)).where(
            TransactionEntry.account_id == account_id,
            TransactionEntry.transaction_type == transaction_type.value,
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def count(
        self, account_id: UUID, transaction_type: TransactionType | None = None
    ) -> int:
        """Number of entries for an account, optionally of one type."""
        stmt = select(func.count(TransactionEntry.id)).where(
            TransactionEntry.account_id == account_id
        )
        if transaction_type is not None:
            stmt = stmt.where(TransactionEntry.transaction_type == transaction_type.value)
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def stats(self, account_id: UUID) -> TransactionStats:
        """
        Point-flow statistics for an account.

        points_spent is net of refunds: a rejected request contributes nothing.
        rewards_redeemed counts reward_redeemed entries, one per issued voucher.
        """
        stmt = (
            select(
                TransactionEntry.transaction_type,
                func.count(TransactionEntry.id),
                func.coalesce(func.sum(TransactionEntry.amount), 0),
            )
            .where(TransactionEntry.account_id == account_id)
            .group_by(TransactionEntry.transaction_type)
        )
        result = await self.session.execute(stmt)

        counts: dict[TransactionType, int] = {t: 0 for t in TransactionType}
        sums: dict[TransactionType, int] = {t: 0 for t in TransactionType}
        for type_value, type_count, type_sum in result.all():
            counts[TransactionType(type_value)] = int(type_count)
            sums[TransactionType(type_value)] = int(type_sum)

        debited = -(sums[TransactionType.REWARD_REDEEMED] + sums[TransactionType.POINTS_REDEEMED])
        refunded = sums[TransactionType.POINTS_REFUNDED]

        return TransactionStats(
            total_transactions=sum(counts.values()),
            points_earned=sums[TransactionType.POINTS_ADDED],
            points_spent=debited - refunded,
            points_refunded=refunded,
            rewards_redeemed=counts[TransactionType.REWARD_REDEEMED],
        )

    async def list_for_account(self, account_id: UUID, limit: int = 50) -> list[TransactionData]:
        """Most recent entries for an account, newest first."""
        stmt = (
            select(TransactionEntry)
            .where(TransactionEntry.account_id == account_id)
            .order_by(TransactionEntry.created_at.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return [entry_to_domain(entry) for entry in result.scalars().all()]

    async def list_all(
        self,
        account_id: UUID | None = None,
        transaction_type: TransactionType | None = None,
        limit: int = 50,
    ) -> list[TransactionData]:
        """Entries across all accounts, newest first, optionally filtered."""
        stmt = select(TransactionEntry)
        if account_id is not None:
            stmt = stmt.where(TransactionEntry.account_id == account_id)
        if transaction_type is not None:
            stmt = stmt.where(TransactionEntry.transaction_type == transaction_type.value)
        stmt = stmt.order_by(TransactionEntry.created_at.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return [entry_to_domain(entry) for entry in result.scalars().all()]


def entry_to_domain(entry: TransactionEntry) -> TransactionData:
    """Convert ORM transaction entry to domain model."""
    return TransactionData(
        transaction_id=entry.id,
        account_id=entry.account_id,
        transaction_type=TransactionType(entry.transaction_type),
        amount=entry.amount,
        reward_id=entry.reward_id,
        description=entry.description,
        purchase_amount=entry.purchase_amount,
        created_at=entry.created_at,
    )
