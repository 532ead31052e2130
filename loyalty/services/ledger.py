"""
Account Ledger - point balances, the highest-points watermark and tier.

credit/debit/refund are the only code that writes account balance columns.
They lock the account row (SELECT FOR UPDATE), run inside the caller's unit
of work, and never commit. add_points, open_account and reconcile_tiers are
complete operations that own their unit of work.
"""

from datetime import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models import Account
from loyalty.db.unit_of_work import unit_of_work
from loyalty.exceptions import (
    InsufficientBalanceError,
    InvalidAmountError,
    InvariantViolationError,
    NotFoundError,
)
from loyalty.models.api import Tier, TransactionType
from loyalty.models.domain import (
    AccountData,
    Actor,
    BalanceSnapshot,
    PointsAdded,
    TierReconciliation,
    TransactionIntent,
)
from loyalty.observability.logging import get_logger
from loyalty.observability.metrics import metrics
from loyalty.observability.tracing import trace_operation
from loyalty.services.activity import ActivityRecorder, record_activity_safely
from loyalty.services.clock import Clock, SystemClock
from loyalty.services.tiers import tier_for
from loyalty.services.transactions import TransactionLog

logger = get_logger(__name__)

SYSTEM_ACTOR = Actor(actor_id="system", role="system")


def validate_amount(amount: object) -> int:
    """
    Return ``amount`` if it is a positive integer.

    Raises:
        InvalidAmountError: bool, float, zero or negative
    """
    if isinstance(amount, bool) or not isinstance(amount, int) or amount <= 0:
        raise InvalidAmountError(amount)
    return amount


def validate_purchase_amount(purchase_amount: object) -> int | None:
    """None, or a non-negative integer in minor units."""
    if purchase_amount is None:
        return None
    if (
        isinstance(purchase_amount, bool)
        or not isinstance(purchase_amount, int)
        or purchase_amount < 0
    ):
        raise InvalidAmountError(purchase_amount, "purchase", "a non-negative integer")
    return purchase_amount


def apply_credit(account: Account, amount: int, now: datetime) -> bool:
    """
    Add ``amount`` to the balance, raising the watermark if it is exceeded.

    Returns True when the tier changed.
    """
    account.points = account.points + amount
    if account.points <= account.highest_points:
        return False

    account.highest_points = account.points
    new_tier = tier_for(account.highest_points)
    if new_tier.value == account.tier:
        return False

    account.tier = new_tier.value
    account.tier_updated_at = now
    return True


def apply_debit(account: Account, amount: int) -> None:
    """
    Subtract ``amount`` from the balance. Watermark and tier are untouched.

    Raises:
        InsufficientBalanceError: Balance below ``amount``
    """
    if account.points < amount:
        raise InsufficientBalanceError(account.points, amount)
    account.points = account.points - amount


def check_invariants(account: Account) -> None:
    """
    Raise if balance, watermark and tier disagree. Never repairs.

    Raises:
        InvariantViolationError: Negative balance, watermark below balance,
            or tier not derived from the watermark
    """
    problem = None
    if account.points < 0:
        problem = f"account {account.id} has negative balance {account.points}"
    elif account.highest_points < account.points:
        problem = (
            f"account {account.id} highest_points {account.highest_points} "
            f"below balance {account.points}"
        )
    elif account.tier != tier_for(account.highest_points).value:
        problem = (
            f"account {account.id} tier {account.tier} does not match "
            f"watermark {account.highest_points}"
        )

    if problem is not None:
        logger.error(
            "invariant_violation",
            account_id=str(account.id),
            points=account.points,
            highest_points=account.highest_points,
            tier=account.tier,
            problem=problem,
        )
        raise InvariantViolationError(problem)


class AccountLedger:
    """
    Owns account balances.

    Row-level locking on the account serializes concurrent credits and
    debits, so a balance check and its decrement can never interleave.
    """

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock | None = None,
        activity_recorder: ActivityRecorder | None = None,
    ) -> None:
        self.session = session
        self.clock = clock or SystemClock()
        self.activity_recorder = activity_recorder
        self.transactions = TransactionLog(session, self.clock)

    # ========================================================================
    # Balance primitives (caller owns the unit of work)
    # ========================================================================

    async def credit(self, account_id: UUID, amount: int) -> BalanceSnapshot:
        """
        Increase the balance; raise the watermark and tier when exceeded.

        The caller appends the matching transaction log entry.

        Raises:
            InvalidAmountError: amount is not a positive integer
            NotFoundError: Account doesn't exist
            InvariantViolationError: Post-write consistency check failed
        """
        amount = validate_amount(amount)
        account = await self.lock_account(account_id)

        expected_points = account.points + amount
        tier_before = account.tier
        tier_changed = apply_credit(account, amount, self.clock.now())

        if tier_changed:
            logger.info(
                "tier_upgraded",
                account_id=str(account_id),
                from_tier=tier_before,
                to_tier=account.tier,
                highest_points=account.highest_points,
            )

        return await self._verify_balance(account, expected_points)

    async def debit(self, account_id: UUID, amount: int) -> BalanceSnapshot:
        """
        Decrease the balance. Never lowers the watermark or the tier.

        Raises:
            InvalidAmountError: amount is not a positive integer
            NotFoundError: Account doesn't exist
            InsufficientBalanceError: Balance below amount
            InvariantViolationError: Post-write consistency check failed
        """
        amount = validate_amount(amount)
        account = await self.lock_account(account_id)

        expected_points = account.points - amount
        apply_debit(account, amount)

        return await self._verify_balance(account, expected_points)

    async def refund(self, account_id: UUID, amount: int) -> BalanceSnapshot:
        """Return reserved points. A refund is a credit; the watermark rule applies unchanged."""
        return await self.credit(account_id, amount)

    # ========================================================================
    # Complete operations
    # ========================================================================

    async def add_points(
        self,
        account_id: UUID,
        amount: int,
        description: str | None = None,
        purchase_amount: int | None = None,
        actor: Actor | None = None,
    ) -> PointsAdded:
        """
        Award points for a purchase or a manual grant.

        Credits the account and appends a points_added entry in one unit of
        work, then records activity best-effort.

        Raises:
            InvalidAmountError: amount is not a positive integer, or
                purchase_amount is negative
            NotFoundError: Account doesn't exist
        """
        amount = validate_amount(amount)
        purchase_amount = validate_purchase_amount(purchase_amount)
        actor = actor or SYSTEM_ACTOR

        with trace_operation("ledger.add_points", account_id=str(account_id), amount=amount):
            try:
                async with unit_of_work(self.session):
                    balance = await self.credit(account_id, amount)
                    transaction = await self.transactions.record(
                        TransactionIntent(
                            account_id=account_id,
                            transaction_type=TransactionType.POINTS_ADDED,
                            amount=amount,
                            description=description or f"Added {amount} points",
                            purchase_amount=purchase_amount,
                        )
                    )
            except Exception as exc:
                metrics.record_error(type(exc).__name__, "add_points")
                raise

        metrics.record_points(TransactionType.POINTS_ADDED.value, amount)
        logger.info(
            "points_added",
            account_id=str(account_id),
            amount=amount,
            balance=balance.balance,
            highest_points=balance.highest_points,
            tier=balance.tier.value,
            actor_id=actor.actor_id,
        )

        await record_activity_safely(
            self.activity_recorder,
            actor,
            target_id=str(account_id),
            description=f"Added {amount} points",
            points_delta=amount,
        )

        return PointsAdded(balance=balance, transaction=transaction)

    async def open_account(self, display_name: str | None = None) -> AccountData:
        """Create an account with zero balance at Bronze."""
        account = Account(
            display_name=display_name,
            points=0,
            highest_points=0,
            tier=Tier.BRONZE.value,
            tier_updated_at=None,
        )
        async with unit_of_work(self.session):
            self.session.add(account)
            await self.session.flush()

            verified = await self.session.get(Account, account.id)
            if verified is None:
                raise InvariantViolationError(f"account {account.id} not found after insert")

        logger.info("account_opened", account_id=str(account.id))
        return account_to_domain(verified)

    async def get_account(self, account_id: UUID) -> AccountData:
        """
        Get account by id.

        Raises:
            NotFoundError: Account doesn't exist
        """
        account = await self.session.get(Account, account_id)
        if account is None:
            raise NotFoundError("account", account_id)
        return account_to_domain(account)

    async def reconcile_tiers(self) -> TierReconciliation:
        """
        Recompute every account's tier from its watermark.

        Tier drift is repaired. An account whose watermark sits below its
        balance is reported as a violation and left untouched; clamping it
        would hide the defect that caused it.
        """
        checked = 0
        repaired = 0
        violations: list[UUID] = []

        with trace_operation("ledger.reconcile_tiers"):
            async with unit_of_work(self.session):
                stmt = (
                    select(Account)
                    .order_by(Account.created_at)
                    .with_for_update()
                    .execution_options(populate_existing=True)
                )
                result = await self.session.execute(stmt)

                for account in result.scalars().all():
                    checked += 1

                    if account.highest_points < account.points or account.points < 0:
                        violations.append(account.id)
                        logger.error(
                            "invariant_violation",
                            account_id=str(account.id),
                            points=account.points,
                            highest_points=account.highest_points,
                            problem="negative balance or watermark below balance",
                        )
                        continue

                    expected = tier_for(account.highest_points)
                    if account.tier != expected.value:
                        logger.warning(
                            "tier_repaired",
                            account_id=str(account.id),
                            from_tier=account.tier,
                            to_tier=expected.value,
                            highest_points=account.highest_points,
                        )
                        account.tier = expected.value
                        account.tier_updated_at = self.clock.now()
                        repaired += 1

                await self.session.flush()

        logger.info(
            "tiers_reconciled",
            checked=checked,
            repaired=repaired,
            violations=len(violations),
        )
        return TierReconciliation(
            checked=checked, repaired=repaired, violations=tuple(violations)
        )

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def lock_account(self, account_id: UUID) -> Account:
        """Lock account row for update (SELECT FOR UPDATE)."""
        stmt = (
            select(Account)
            .where(Account.id == account_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        account = result.scalar_one_or_none()
        if account is None:
            raise NotFoundError("account", account_id)
        return account

    async def _verify_balance(self, account: Account, expected_points: int) -> BalanceSnapshot:
        """Flush, re-read and check the account after a balance change."""
        await self.session.flush()

        verified = await self.session.get(Account, account.id)
        if verified is None:
            raise InvariantViolationError(f"account {account.id} disappeared after update")

        if verified.points != expected_points:
            logger.error(
                "invariant_violation",
                account_id=str(account.id),
                expected_points=expected_points,
                points=verified.points,
            )
            raise InvariantViolationError(
                f"balance mismatch: expected {expected_points}, got {verified.points}"
            )

        check_invariants(verified)

        return BalanceSnapshot(
            account_id=verified.id,
            balance=verified.points,
            highest_points=verified.highest_points,
            tier=Tier(verified.tier),
        )


def account_to_domain(account: Account) -> AccountData:
    """Convert ORM account to domain model."""
    return AccountData(
        account_id=account.id,
        display_name=account.display_name,
        points=account.points,
        highest_points=account.highest_points,
        tier=Tier(account.tier),
        tier_updated_at=account.tier_updated_at,
        created_at=account.created_at,
        updated_at=account.updated_at,
    )
