"""
Voucher Store - single-use voucher lifecycle (active -> used).
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models import Voucher
from loyalty.exceptions import AlreadyUsedError, InvariantViolationError, NotFoundError
from loyalty.models.api import VoucherStatus
from loyalty.models.domain import VoucherData
from loyalty.services.clock import Clock, SystemClock


class VoucherStore:
    """
    Issue vouchers and move them from active to used exactly once.

    Operates inside the caller's unit of work; never commits.
    """

    def __init__(self, session: AsyncSession, clock: Clock | None = None) -> None:
        self.session = session
        self.clock = clock or SystemClock()

    async def issue(self, account_id: UUID, reward_id: UUID) -> VoucherData:
        """Create an active voucher for ``account_id``."""
        voucher = Voucher(
            account_id=account_id,
            reward_id=reward_id,
            status=VoucherStatus.ACTIVE.value,
            redeemed_at=self.clock.now(),
            used_at=None,
        )
        self.session.add(voucher)
        await self.session.flush()

        verified = await self.session.get(Voucher, voucher.id)
        if verified is None:
            raise InvariantViolationError(f"Voucher {voucher.id} not found after insert")

        return voucher_to_domain(verified)

    async def mark_used(self, voucher_id: UUID) -> VoucherData:
        """
        Transition an active voucher to used.

        Raises:
            NotFoundError: Voucher doesn't exist
            AlreadyUsedError: Voucher is not active
        """
        voucher = await self.find(voucher_id, for_update=True)
        if voucher is None:
            raise NotFoundError("voucher", voucher_id)

        if voucher.status != VoucherStatus.ACTIVE.value:
            raise AlreadyUsedError(voucher.id)

        voucher.status = VoucherStatus.USED.value
        voucher.used_at = self.clock.now()
        await self.session.flush()

        return voucher_to_domain(voucher)

    async def get(self, voucher_id: UUID) -> VoucherData:
        """
        Get voucher by id.

        Raises:
            NotFoundError: Voucher doesn't exist
        """
        voucher = await self.find(voucher_id)
        if voucher is None:
            raise NotFoundError("voucher", voucher_id)
        return voucher_to_domain(voucher)

    async def list_for_account(
        self, account_id: UUID, status: VoucherStatus | None = None
    ) -> list[VoucherData]:
        """Vouchers held by an account, most recently issued first."""
        stmt = select(Voucher).where(Voucher.account_id == account_id)
        if status is not None:
            stmt = stmt.where(Voucher.status == status.value)
        stmt = stmt.order_by(Voucher.redeemed_at.desc())
        result = await self.session.execute(stmt)
        return [voucher_to_domain(v) for v in result.scalars().all()]

    async def find(self, voucher_id: UUID, for_update: bool = False) -> Voucher | None:
        """Load the voucher row, optionally locking it (SELECT FOR UPDATE)."""
        stmt = select(Voucher).where(Voucher.id == voucher_id)
        if for_update:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()


def voucher_to_domain(voucher: Voucher) -> VoucherData:
    """Convert ORM voucher to domain model."""
    return VoucherData(
        voucher_id=voucher.id,
        account_id=voucher.account_id,
        reward_id=voucher.reward_id,
        status=VoucherStatus(voucher.status),
        redeemed_at=voucher.redeemed_at,
        used_at=voucher.used_at,
    )
