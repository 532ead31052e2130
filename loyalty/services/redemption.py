"""
Redemption Workflow - spend points on rewards, instantly or via staff review.

Every public operation is one unit of work over the ledger, the voucher
store and the transaction log: it commits completely or rolls back
completely. Activity is recorded after the commit, outside any row lock.

Request state machine:
    pending --approve--> approved (voucher issued)
    pending --reject-->  rejected (reserved points refunded)
Nothing leaves approved or rejected.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models import RedeemRequest
from loyalty.db.unit_of_work import unit_of_work
from loyalty.exceptions import (
    AlreadyProcessedError,
    ForbiddenError,
    InvalidTransitionError,
    InvariantViolationError,
    LoyaltyError,
    NotApprovedError,
    NotFoundError,
    RewardInactiveError,
    TierTooLowError,
)
from loyalty.models.api import RedeemAction, RedeemRequestStatus, TransactionType
from loyalty.models.domain import (
    Actor,
    ProcessResult,
    RedeemRequestData,
    RedeemRequestResult,
    RedemptionResult,
    RewardData,
    TransactionIntent,
    VoucherData,
)
from loyalty.observability.logging import get_logger
from loyalty.observability.metrics import metrics
from loyalty.observability.tracing import trace_operation
from loyalty.services.activity import ActivityRecorder, record_activity_safely
from loyalty.services.catalog import RewardCatalog
from loyalty.services.clock import Clock, SystemClock
from loyalty.services.ledger import AccountLedger
from loyalty.services.tiers import meets_minimum_tier, tier_for
from loyalty.services.transactions import TransactionLog
from loyalty.services.vouchers import VoucherStore

logger = get_logger(__name__)


class RedemptionWorkflow:
    """Coordinates AccountLedger, RewardCatalog, VoucherStore and TransactionLog."""

    def __init__(
        self,
        session: AsyncSession,
        clock: Clock | None = None,
        activity_recorder: ActivityRecorder | None = None,
    ) -> None:
        self.session = session
        self.clock = clock or SystemClock()
        self.activity_recorder = activity_recorder
        self.ledger = AccountLedger(session, self.clock)
        self.catalog = RewardCatalog(session)
        self.vouchers = VoucherStore(session, self.clock)
        self.transactions = TransactionLog(session, self.clock)

    # ========================================================================
    # Instant redemption
    # ========================================================================

    async def redeem_now(self, account_id: UUID, reward_id: UUID) -> RedemptionResult:
        """
        Spend points on a reward and issue an active voucher immediately.

        Raises:
            NotFoundError: Account or reward doesn't exist
            RewardInactiveError: Reward is deactivated
            TierTooLowError: Account tier below the reward's minimum
            InsufficientBalanceError: Balance below the reward cost
        """
        with trace_operation(
            "redemption.redeem_now", account_id=str(account_id), reward_id=str(reward_id)
        ):
            try:
                async with unit_of_work(self.session):
                    reward = await self._eligible_reward(account_id, reward_id)
                    balance = await self.ledger.debit(account_id, reward.points_cost)
                    transaction = await self.transactions.record(
                        TransactionIntent(
                            account_id=account_id,
                            transaction_type=TransactionType.REWARD_REDEEMED,
                            amount=-reward.points_cost,
                            description=f"Redeemed reward: {reward.title}",
                            reward_id=reward_id,
                        )
                    )
                    voucher = await self.vouchers.issue(account_id, reward_id)
            except LoyaltyError as exc:
                self._record_failure("instant", "redeem_now", exc, account_id=str(account_id))
                raise

        metrics.record_redemption("instant", "completed")
        metrics.record_points(TransactionType.REWARD_REDEEMED.value, transaction.amount)
        metrics.record_voucher_transition(voucher.status.value)
        logger.info(
            "reward_redeemed",
            account_id=str(account_id),
            reward_id=str(reward_id),
            voucher_id=str(voucher.voucher_id),
            points_cost=reward.points_cost,
            balance=balance.balance,
        )

        await record_activity_safely(
            self.activity_recorder,
            Actor(actor_id=str(account_id), role="customer"),
            target_id=str(account_id),
            description=f"Redeemed reward: {reward.title}",
            points_delta=-reward.points_cost,
        )

        return RedemptionResult(balance=balance, voucher=voucher, transaction=transaction)

    # ========================================================================
    # Request-then-approve redemption
    # ========================================================================

    async def create_request(self, account_id: UUID, reward_id: UUID) -> RedeemRequestResult:
        """
        Reserve points for a reward pending staff review.

        The cost is debited now and stored as points_reserved; later changes
        to the reward's cost do not affect this request.

        Raises:
            NotFoundError: Account or reward doesn't exist
            RewardInactiveError: Reward is deactivated
            TierTooLowError: Account tier below the reward's minimum
            InsufficientBalanceError: Balance below the reward cost
        """
        with trace_operation(
            "redemption.create_request", account_id=str(account_id), reward_id=str(reward_id)
        ):
            try:
                async with unit_of_work(self.session):
                    reward = await self._eligible_reward(account_id, reward_id)
                    balance = await self.ledger.debit(account_id, reward.points_cost)
                    transaction = await self.transactions.record(
                        TransactionIntent(
                            account_id=account_id,
                            transaction_type=TransactionType.POINTS_REDEEMED,
                            amount=-reward.points_cost,
                            description=f"Requested reward: {reward.title}",
                            reward_id=reward_id,
                        )
                    )

                    request = RedeemRequest(
                        account_id=account_id,
                        reward_id=reward_id,
                        points_reserved=reward.points_cost,
                        status=RedeemRequestStatus.PENDING.value,
                        voucher_id=None,
                        requested_at=self.clock.now(),
                    )
                    self.session.add(request)
                    await self.session.flush()

                    verified = await self.session.get(RedeemRequest, request.id)
                    if verified is None:
                        raise InvariantViolationError(
                            f"redeem request {request.id} not found after insert"
                        )
                    request_data = request_to_domain(verified)
            except LoyaltyError as exc:
                self._record_failure("request", "create_request", exc, account_id=str(account_id))
                raise

        metrics.record_redemption("request", "pending")
        metrics.record_points(TransactionType.POINTS_REDEEMED.value, transaction.amount)
        logger.info(
            "redeem_request_created",
            account_id=str(account_id),
            reward_id=str(reward_id),
            request_id=str(request_data.request_id),
            points_reserved=request_data.points_reserved,
            balance=balance.balance,
        )

        await record_activity_safely(
            self.activity_recorder,
            Actor(actor_id=str(account_id), role="customer"),
            target_id=str(account_id),
            description=f"Requested reward: {reward.title}",
            points_delta=-reward.points_cost,
        )

        return RedeemRequestResult(request=request_data, balance=balance, transaction=transaction)

    async def process(
        self,
        request_id: UUID,
        action: RedeemAction | str,
        staff_id: str,
        notes: str | None = None,
    ) -> ProcessResult:
        """
        Approve or reject a pending request, exactly once.

        approve issues a voucher and logs a zero-amount reward_redeemed
        entry (the points were taken at request time). reject refunds
        points_reserved and logs a points_refunded entry.

        Raises:
            NotFoundError: Request doesn't exist
            AlreadyProcessedError: Request is no longer pending
            InvalidTransitionError: action is neither approve nor reject
        """
        staff = Actor(actor_id=staff_id, role="staff")

        with trace_operation(
            "redemption.process",
            request_id=str(request_id),
            action=getattr(action, "value", str(action)),
        ):
            try:
                async with unit_of_work(self.session):
                    request = await self._lock_request(request_id)

                    if request.status != RedeemRequestStatus.PENDING.value:
                        raise AlreadyProcessedError(request.id, request.status)

                    try:
                        action = RedeemAction(action)
                    except ValueError:
                        raise InvalidTransitionError(
                            "redeem request", request.status, f"{action}"
                        ) from None

                    voucher: VoucherData | None = None
                    balance = None
                    target_status = (
                        RedeemRequestStatus.APPROVED
                        if action == RedeemAction.APPROVE
                        else RedeemRequestStatus.REJECTED
                    )

                    if action == RedeemAction.APPROVE:
                        voucher = await self.vouchers.issue(request.account_id, request.reward_id)
                        transaction = await self.transactions.record(
                            TransactionIntent(
                                account_id=request.account_id,
                                transaction_type=TransactionType.REWARD_REDEEMED,
                                amount=0,
                                description=f"Redeem request {request.id} approved",
                                reward_id=request.reward_id,
                            )
                        )
                        request.status = target_status.value
                        request.voucher_id = voucher.voucher_id
                    else:
                        balance = await self.ledger.refund(
                            request.account_id, request.points_reserved
                        )
                        transaction = await self.transactions.record(
                            TransactionIntent(
                                account_id=request.account_id,
                                transaction_type=TransactionType.POINTS_REFUNDED,
                                amount=request.points_reserved,
                                description=f"Redeem request {request.id} rejected",
                                reward_id=request.reward_id,
                            )
                        )
                        request.status = target_status.value

                    request.processed_by = staff.actor_id
                    request.notes = notes
                    request.processed_at = self.clock.now()
                    await self.session.flush()

                    verified = await self.session.get(
                        RedeemRequest, request.id, populate_existing=True
                    )
                    if verified is None or verified.status != target_status.value:
                        raise InvariantViolationError(
                            f"redeem request {request_id} not {target_status.value} after update"
                        )
                    request_data = request_to_domain(verified)
            except LoyaltyError as exc:
                self._record_failure("process", "process", exc, request_id=str(request_id))
                raise

        metrics.record_redemption("process", request_data.status.value)
        metrics.record_points(transaction.transaction_type.value, transaction.amount)
        if voucher is not None:
            metrics.record_voucher_transition(voucher.status.value)
        logger.info(
            "redeem_request_processed",
            request_id=str(request_id),
            account_id=str(request_data.account_id),
            status=request_data.status.value,
            staff_id=staff.actor_id,
            voucher_id=str(voucher.voucher_id) if voucher else None,
        )

        if action == RedeemAction.APPROVE:
            description = f"Approved redeem request {request_id}"
            points_delta = 0
        else:
            description = f"Rejected redeem request {request_id}"
            points_delta = request_data.points_reserved
        await record_activity_safely(
            self.activity_recorder,
            staff,
            target_id=str(request_data.account_id),
            description=description,
            points_delta=points_delta,
        )

        return ProcessResult(
            request=request_data, transaction=transaction, voucher=voucher, balance=balance
        )

    async def use_voucher(self, voucher_id: UUID, account_id: UUID) -> VoucherData:
        """
        Mark a voucher used by its owner. Terminal.

        Raises:
            NotFoundError: Voucher doesn't exist
            ForbiddenError: Voucher belongs to another account
            NotApprovedError: Voucher came from a request that isn't approved
            AlreadyUsedError: Voucher already used
        """
        with trace_operation(
            "redemption.use_voucher", voucher_id=str(voucher_id), account_id=str(account_id)
        ):
            try:
                async with unit_of_work(self.session):
                    voucher = await self.vouchers.find(voucher_id, for_update=True)
                    if voucher is None:
                        raise NotFoundError("voucher", voucher_id)
                    if voucher.account_id != account_id:
                        raise ForbiddenError("voucher", voucher_id)

                    stmt = select(RedeemRequest).where(RedeemRequest.voucher_id == voucher_id)
                    result = await self.session.execute(stmt)
                    request = result.scalar_one_or_none()
                    if (
                        request is not None
                        and request.status != RedeemRequestStatus.APPROVED.value
                    ):
                        raise NotApprovedError(request.id, request.status)

                    used = await self.vouchers.mark_used(voucher_id)
            except LoyaltyError as exc:
                self._record_failure("voucher", "use_voucher", exc, voucher_id=str(voucher_id))
                raise

        metrics.record_voucher_transition(used.status.value)
        logger.info("voucher_used", voucher_id=str(voucher_id), account_id=str(account_id))

        await record_activity_safely(
            self.activity_recorder,
            Actor(actor_id=str(account_id), role="customer"),
            target_id=str(account_id),
            description=f"Used voucher {voucher_id}",
        )

        return used

    # ========================================================================
    # Queries
    # ========================================================================

    async def get_request(self, request_id: UUID) -> RedeemRequestData:
        """
        Get redeem request by id.

        Raises:
            NotFoundError: Request doesn't exist
        """
        request = await self.session.get(RedeemRequest, request_id)
        if request is None:
            raise NotFoundError("redeem request", request_id)
        return request_to_domain(request)

    async def list_requests(
        self,
        status: RedeemRequestStatus | None = None,
        account_id: UUID | None = None,
        limit: int = 50,
    ) -> list[RedeemRequestData]:
        """Redeem requests, newest first, optionally filtered by status and account."""
        stmt = select(RedeemRequest)
        if status is not None:
            stmt = stmt.where(RedeemRequest.status == status.value)
        if account_id is not None:
            stmt = stmt.where(RedeemRequest.account_id == account_id)
        stmt = stmt.order_by(RedeemRequest.requested_at.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return [request_to_domain(r) for r in result.scalars().all()]

    # ========================================================================
    # Private Helper Methods
    # ========================================================================

    async def _eligible_reward(self, account_id: UUID, reward_id: UUID) -> RewardData:
        """
        Lock the account and check the reward can be redeemed by it.

        The balance check happens in the subsequent debit, under the same lock.
        """
        account = await self.ledger.lock_account(account_id)
        reward = await self.catalog.get(reward_id)

        if not reward.is_active:
            raise RewardInactiveError(reward_id)

        if reward.minimum_tier is not None and not meets_minimum_tier(
            account.highest_points, reward.minimum_tier
        ):
            raise TierTooLowError(
                tier_for(account.highest_points).value, reward.minimum_tier.value
            )

        return reward

    async def _lock_request(self, request_id: UUID) -> RedeemRequest:
        """Lock redeem request row for update (SELECT FOR UPDATE)."""
        stmt = (
            select(RedeemRequest)
            .where(RedeemRequest.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(stmt)
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundError("redeem request", request_id)
        return request

    def _record_failure(
        self, flow: str, operation: str, exc: LoyaltyError, **context: str
    ) -> None:
        """Count and log a failed operation. Invariant violations were already logged."""
        metrics.record_redemption(flow, "failed")
        metrics.record_error(type(exc).__name__, operation)
        if not isinstance(exc, InvariantViolationError):
            logger.warning(
                f"{operation}_rejected",
                error_type=type(exc).__name__,
                error=str(exc),
                **context,
            )


def request_to_domain(request: RedeemRequest) -> RedeemRequestData:
    """Convert ORM redeem request to domain model."""
    return RedeemRequestData(
        request_id=request.id,
        account_id=request.account_id,
        reward_id=request.reward_id,
        points_reserved=request.points_reserved,
        status=RedeemRequestStatus(request.status),
        voucher_id=request.voucher_id,
        processed_by=request.processed_by,
        notes=request.notes,
        requested_at=request.requested_at,
        processed_at=request.processed_at,
    )
