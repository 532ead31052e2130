"""
Tests for RedemptionWorkflow.

Covers instant redemption, the request/approve/reject state machine,
voucher use, and all-or-nothing rollback. State is checked through fresh
sessions, the way another caller would see it.
"""

from datetime import UTC, datetime
from unittest.mock import AsyncMock, patch
from uuid import UUID, uuid4

import pytest

from loyalty.db.models import RedeemRequest, Reward, Voucher
from loyalty.exceptions import (
    AlreadyProcessedError,
    AlreadyUsedError,
    ForbiddenError,
    InsufficientBalanceError,
    InvalidTransitionError,
    InvariantViolationError,
    NotApprovedError,
    NotFoundError,
    RewardInactiveError,
    TierTooLowError,
)
from loyalty.models.api import (
    RedeemAction,
    RedeemRequestStatus,
    Tier,
    TransactionType,
    VoucherStatus,
)
from loyalty.services.ledger import AccountLedger
from loyalty.services.redemption import RedemptionWorkflow
from loyalty.services.transactions import TransactionLog
from loyalty.services.vouchers import VoucherStore


@pytest.fixture
def count_entries(session_factory):
    async def _count(account_id: UUID, transaction_type: TransactionType | None = None) -> int:
        async with session_factory() as s:
            return await TransactionLog(s).count(account_id, transaction_type)

    return _count


@pytest.fixture
def list_vouchers(session_factory):
    async def _list(account_id: UUID):
        async with session_factory() as s:
            return await VoucherStore(s).list_for_account(account_id)

    return _list


class TestRedeemNow:
    async def test_silver_account_spends_everything_and_keeps_tier(
        self,
        ledger: AccountLedger,
        workflow: RedemptionWorkflow,
        seed_account,
        seed_reward,
        load_account,
    ) -> None:
        account_id = await seed_account(points=0)
        reward_id = await seed_reward(points_cost=600, title="Dinner for two")

        added = await ledger.add_points(account_id, 600)
        assert added.balance.tier == Tier.SILVER

        result = await workflow.redeem_now(account_id, reward_id)

        assert result.balance.balance == 0
        assert result.balance.highest_points == 600
        assert result.balance.tier == Tier.SILVER
        assert result.voucher.status == VoucherStatus.ACTIVE
        assert result.voucher.used_at is None
        assert result.transaction.transaction_type == TransactionType.REWARD_REDEEMED
        assert result.transaction.amount == -600
        assert result.transaction.reward_id == reward_id
        assert result.transaction.description == "Redeemed reward: Dinner for two"

        stored = await load_account(account_id)
        assert stored.points == 0
        assert stored.highest_points == 600
        assert stored.tier == "Silver"

    async def test_insufficient_balance_changes_nothing(
        self, workflow, seed_account, seed_reward, load_account, count_entries, list_vouchers
    ) -> None:
        account_id = await seed_account(points=99)
        reward_id = await seed_reward(points_cost=100)

        with pytest.raises(InsufficientBalanceError):
            await workflow.redeem_now(account_id, reward_id)

        assert (await load_account(account_id)).points == 99
        assert await count_entries(account_id) == 0
        assert await list_vouchers(account_id) == []

    async def test_inactive_reward(self, workflow, seed_account, seed_reward) -> None:
        account_id = await seed_account(points=500)
        reward_id = await seed_reward(points_cost=100, is_active=False)

        with pytest.raises(RewardInactiveError):
            await workflow.redeem_now(account_id, reward_id)

    async def test_tier_gate_uses_watermark(
        self, workflow, seed_account, seed_reward, load_account
    ) -> None:
        silver_id = await seed_account(points=900)
        gold_reward = await seed_reward(points_cost=100, minimum_tier=Tier.GOLD)

        with pytest.raises(TierTooLowError) as exc_info:
            await workflow.redeem_now(silver_id, gold_reward)
        assert exc_info.value.current_tier == "Silver"
        assert exc_info.value.required_tier == "Gold"
        assert (await load_account(silver_id)).points == 900

        spent_gold_id = await seed_account(points=100, highest_points=1500)
        result = await workflow.redeem_now(spent_gold_id, gold_reward)
        assert result.balance.balance == 0
        assert result.balance.tier == Tier.GOLD

    async def test_missing_reward(self, workflow, seed_account) -> None:
        account_id = await seed_account(points=500)
        with pytest.raises(NotFoundError, match="Reward"):
            await workflow.redeem_now(account_id, uuid4())

    async def test_missing_account(self, workflow, seed_reward) -> None:
        reward_id = await seed_reward()
        with pytest.raises(NotFoundError, match="Account"):
            await workflow.redeem_now(uuid4(), reward_id)

    async def test_voucher_failure_rolls_back_debit_and_log(
        self, workflow, seed_account, seed_reward, load_account, count_entries, activity
    ) -> None:
        account_id = await seed_account(points=300)
        reward_id = await seed_reward(points_cost=100)

        with patch.object(workflow.vouchers, "issue", new_callable=AsyncMock) as mock_issue:
            mock_issue.side_effect = RuntimeError("connection reset")
            with pytest.raises(RuntimeError):
                await workflow.redeem_now(account_id, reward_id)

        assert (await load_account(account_id)).points == 300
        assert await count_entries(account_id) == 0
        assert activity.entries == []

    async def test_records_customer_activity(
        self, workflow, seed_account, seed_reward, activity
    ) -> None:
        account_id = await seed_account(points=300)
        reward_id = await seed_reward(points_cost=120, title="Muffin")

        await workflow.redeem_now(account_id, reward_id)

        assert len(activity.entries) == 1
        entry = activity.entries[0]
        assert entry.actor_id == str(account_id)
        assert entry.actor_role == "customer"
        assert entry.description == "Redeemed reward: Muffin"
        assert entry.points_delta == -120

    async def test_activity_failure_is_invisible(
        self, session, clock, seed_account, seed_reward, load_account, failing_activity
    ) -> None:
        account_id = await seed_account(points=300)
        reward_id = await seed_reward(points_cost=100)
        recorder = failing_activity
        workflow = RedemptionWorkflow(session, clock, recorder)

        result = await workflow.redeem_now(account_id, reward_id)

        assert result.balance.balance == 200
        assert recorder.calls == 1
        assert (await load_account(account_id)).points == 200


class TestRedeemRequests:
    async def test_create_request_reserves_points(
        self, workflow, seed_account, seed_reward, load_account
    ) -> None:
        account_id = await seed_account(points=200)
        reward_id = await seed_reward(points_cost=200, title="Tote bag")

        result = await workflow.create_request(account_id, reward_id)

        assert result.request.status == RedeemRequestStatus.PENDING
        assert result.request.points_reserved == 200
        assert result.request.voucher_id is None
        assert result.balance.balance == 0
        assert result.transaction.transaction_type == TransactionType.POINTS_REDEEMED
        assert result.transaction.amount == -200
        assert result.transaction.description == "Requested reward: Tote bag"
        assert (await load_account(account_id)).points == 0

    async def test_reject_refunds_reserved_points(
        self, workflow, session_factory, seed_account, seed_reward, load_account, list_vouchers
    ) -> None:
        account_id = await seed_account(points=200)
        reward_id = await seed_reward(points_cost=200)
        created = await workflow.create_request(account_id, reward_id)
        request_id = created.request.request_id

        result = await workflow.process(
            request_id, RedeemAction.REJECT, staff_id="staff-1", notes="Out of stock"
        )

        assert result.request.status == RedeemRequestStatus.REJECTED
        assert result.request.processed_by == "staff-1"
        assert result.request.notes == "Out of stock"
        assert result.request.processed_at is not None
        assert result.voucher is None
        assert result.balance is not None
        assert result.balance.balance == 200
        assert result.transaction.transaction_type == TransactionType.POINTS_REFUNDED
        assert result.transaction.amount == 200

        assert (await load_account(account_id)).points == 200
        assert await list_vouchers(account_id) == []

        async with session_factory() as s:
            stats = await TransactionLog(s).stats(account_id)
        assert stats.points_spent == 0
        assert stats.points_refunded == 200
        assert stats.rewards_redeemed == 0

    async def test_approve_issues_voucher(
        self, workflow, seed_account, seed_reward, load_account
    ) -> None:
        account_id = await seed_account(points=200)
        reward_id = await seed_reward(points_cost=200)
        created = await workflow.create_request(account_id, reward_id)

        result = await workflow.process(created.request.request_id, "approve", staff_id="staff-2")

        assert result.request.status == RedeemRequestStatus.APPROVED
        assert result.voucher is not None
        assert result.voucher.status == VoucherStatus.ACTIVE
        assert result.voucher.account_id == account_id
        assert result.request.voucher_id == result.voucher.voucher_id
        assert result.transaction.transaction_type == TransactionType.REWARD_REDEEMED
        assert result.transaction.amount == 0
        assert result.balance is None
        assert (await load_account(account_id)).points == 0

    async def test_refund_uses_reserved_points_not_current_cost(
        self, workflow, session_factory, seed_account, seed_reward, load_account
    ) -> None:
        account_id = await seed_account(points=200)
        reward_id = await seed_reward(points_cost=200)
        created = await workflow.create_request(account_id, reward_id)

        async with session_factory() as s:
            reward = await s.get(Reward, reward_id)
            reward.points_cost = 500
            await s.commit()

        await workflow.process(created.request.request_id, RedeemAction.REJECT, staff_id="staff-1")

        assert (await load_account(account_id)).points == 200

    async def test_second_decision_rejected_and_changes_nothing(
        self, workflow, seed_account, seed_reward, load_account, list_vouchers, count_entries
    ) -> None:
        account_id = await seed_account(points=200)
        reward_id = await seed_reward(points_cost=200)
        created = await workflow.create_request(account_id, reward_id)
        request_id = created.request.request_id
        await workflow.process(request_id, RedeemAction.REJECT, staff_id="staff-1")

        with pytest.raises(AlreadyProcessedError) as exc_info:
            await workflow.process(request_id, RedeemAction.APPROVE, staff_id="staff-2")
        assert exc_info.value.current_status == "rejected"

        with pytest.raises(AlreadyProcessedError):
            await workflow.process(request_id, RedeemAction.REJECT, staff_id="staff-2")

        assert (await load_account(account_id)).points == 200
        assert await list_vouchers(account_id) == []
        assert await count_entries(account_id, TransactionType.POINTS_REFUNDED) == 1

        request = await workflow.get_request(request_id)
        assert request.status == RedeemRequestStatus.REJECTED
        assert request.processed_by == "staff-1"

    async def test_unknown_action(self, workflow, seed_account, seed_reward) -> None:
        account_id = await seed_account(points=200)
        reward_id = await seed_reward(points_cost=100)
        created = await workflow.create_request(account_id, reward_id)

        with pytest.raises(InvalidTransitionError) as exc_info:
            await workflow.process(created.request.request_id, "cancel", staff_id="staff-1")
        assert not isinstance(exc_info.value, AlreadyProcessedError)

        request = await workflow.get_request(created.request.request_id)
        assert request.status == RedeemRequestStatus.PENDING

    async def test_missing_request(self, workflow) -> None:
        with pytest.raises(NotFoundError):
            await workflow.process(uuid4(), RedeemAction.APPROVE, staff_id="staff-1")

    async def test_staff_activity_recorded(
        self, workflow, seed_account, seed_reward, activity
    ) -> None:
        account_id = await seed_account(points=300)
        reward_id = await seed_reward(points_cost=150)
        created = await workflow.create_request(account_id, reward_id)
        request_id = created.request.request_id

        await workflow.process(request_id, RedeemAction.REJECT, staff_id="staff-9")

        request_entry, process_entry = activity.entries
        assert request_entry.points_delta == -150
        assert process_entry.actor_id == "staff-9"
        assert process_entry.actor_role == "staff"
        assert process_entry.target_id == str(account_id)
        assert process_entry.description == f"Rejected redeem request {request_id}"
        assert process_entry.points_delta == 150

    async def test_list_requests_newest_first_with_filters(
        self, workflow, clock, seed_account, seed_reward
    ) -> None:
        first_account = await seed_account(points=1000)
        second_account = await seed_account(points=1000)
        reward_id = await seed_reward(points_cost=100)

        first = await workflow.create_request(first_account, reward_id)
        clock.advance(datetime(2026, 10, 17, 13, 0, tzinfo=UTC))
        second = await workflow.create_request(second_account, reward_id)
        clock.advance(datetime(2026, 10, 17, 14, 0, tzinfo=UTC))
        third = await workflow.create_request(first_account, reward_id)
        await workflow.process(third.request.request_id, RedeemAction.APPROVE, staff_id="staff-1")

        everything = await workflow.list_requests()
        assert [r.request_id for r in everything] == [
            third.request.request_id,
            second.request.request_id,
            first.request.request_id,
        ]

        pending = await workflow.list_requests(status=RedeemRequestStatus.PENDING)
        assert {r.request_id for r in pending} == {
            first.request.request_id,
            second.request.request_id,
        }

        mine = await workflow.list_requests(account_id=first_account, limit=1)
        assert [r.request_id for r in mine] == [third.request.request_id]


class TestUseVoucher:
    async def test_use_once(self, workflow, seed_account, seed_reward) -> None:
        account_id = await seed_account(points=300)
        reward_id = await seed_reward(points_cost=100)
        redeemed = await workflow.redeem_now(account_id, reward_id)
        voucher_id = redeemed.voucher.voucher_id

        used = await workflow.use_voucher(voucher_id, account_id)
        assert used.status == VoucherStatus.USED
        assert used.used_at is not None

        with pytest.raises(AlreadyUsedError):
            await workflow.use_voucher(voucher_id, account_id)

    async def test_approved_request_voucher_usable(
        self, workflow, seed_account, seed_reward
    ) -> None:
        account_id = await seed_account(points=300)
        reward_id = await seed_reward(points_cost=100)
        created = await workflow.create_request(account_id, reward_id)
        processed = await workflow.process(
            created.request.request_id, RedeemAction.APPROVE, staff_id="staff-1"
        )

        used = await workflow.use_voucher(processed.voucher.voucher_id, account_id)
        assert used.status == VoucherStatus.USED

    async def test_other_account_forbidden(
        self, workflow, session_factory, seed_account, seed_reward
    ) -> None:
        owner = await seed_account(points=300)
        stranger = await seed_account(points=300)
        reward_id = await seed_reward(points_cost=100)
        redeemed = await workflow.redeem_now(owner, reward_id)
        voucher_id = redeemed.voucher.voucher_id

        with pytest.raises(ForbiddenError):
            await workflow.use_voucher(voucher_id, stranger)

        async with session_factory() as s:
            voucher = await s.get(Voucher, voucher_id)
        assert voucher.status == "active"

    async def test_missing_voucher(self, workflow, seed_account) -> None:
        account_id = await seed_account()
        with pytest.raises(NotFoundError):
            await workflow.use_voucher(uuid4(), account_id)

    async def test_request_not_approved(self, db_session, clock) -> None:
        account_id = uuid4()
        voucher = Voucher(
            id=uuid4(),
            account_id=account_id,
            reward_id=uuid4(),
            status=VoucherStatus.ACTIVE.value,
            redeemed_at=clock.now(),
        )
        pending = RedeemRequest(
            id=uuid4(),
            account_id=account_id,
            reward_id=voucher.reward_id,
            points_reserved=100,
            status=RedeemRequestStatus.PENDING.value,
            voucher_id=voucher.id,
            requested_at=clock.now(),
        )
        db_session.execute.return_value.scalar_one_or_none.return_value = pending
        workflow = RedemptionWorkflow(db_session, clock)

        with (
            patch.object(workflow.vouchers, "find", new_callable=AsyncMock) as mock_find,
            patch.object(workflow.vouchers, "mark_used", new_callable=AsyncMock) as mock_mark,
        ):
            mock_find.return_value = voucher
            with pytest.raises(NotApprovedError) as exc_info:
                await workflow.use_voucher(voucher.id, account_id)

        assert exc_info.value.request_id == pending.id
        assert exc_info.value.status == "pending"
        mock_mark.assert_not_awaited()
        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_awaited()


class TestCreateRequestRejections:
    """Every gate raises before anything is written."""

    @pytest.fixture
    def assert_untouched(self, load_account, count_entries, workflow):
        async def _check(account_id: UUID, points: int) -> None:
            assert (await load_account(account_id)).points == points
            assert await count_entries(account_id) == 0
            assert await workflow.list_requests(account_id=account_id) == []

        return _check

    async def test_tier_too_low(self, workflow, seed_account, seed_reward, assert_untouched) -> None:
        account_id = await seed_account(points=400)
        reward_id = await seed_reward(points_cost=100, minimum_tier=Tier.SILVER)

        with pytest.raises(TierTooLowError):
            await workflow.create_request(account_id, reward_id)

        await assert_untouched(account_id, 400)

    async def test_inactive_reward(
        self, workflow, seed_account, seed_reward, assert_untouched
    ) -> None:
        account_id = await seed_account(points=400)
        reward_id = await seed_reward(points_cost=100, is_active=False)

        with pytest.raises(RewardInactiveError):
            await workflow.create_request(account_id, reward_id)

        await assert_untouched(account_id, 400)

    async def test_insufficient_balance(
        self, workflow, seed_account, seed_reward, assert_untouched
    ) -> None:
        account_id = await seed_account(points=99)
        reward_id = await seed_reward(points_cost=100)

        with pytest.raises(InsufficientBalanceError):
            await workflow.create_request(account_id, reward_id)

        await assert_untouched(account_id, 99)

    async def test_missing_reward(self, workflow, seed_account, assert_untouched) -> None:
        account_id = await seed_account(points=400)

        with pytest.raises(NotFoundError, match="Reward"):
            await workflow.create_request(account_id, uuid4())

        await assert_untouched(account_id, 400)

    async def test_missing_account(self, workflow, seed_reward) -> None:
        reward_id = await seed_reward()

        with pytest.raises(NotFoundError, match="Account"):
            await workflow.create_request(uuid4(), reward_id)

        assert await workflow.list_requests() == []


class TestProcessRollback:
    async def test_log_failure_after_voucher_rolls_back_approval(
        self, workflow, seed_account, seed_reward, load_account, list_vouchers, count_entries
    ) -> None:
        account_id = await seed_account(points=200)
        reward_id = await seed_reward(points_cost=200)
        created = await workflow.create_request(account_id, reward_id)
        request_id = created.request.request_id

        with patch.object(
            workflow.transactions, "record", new_callable=AsyncMock
        ) as mock_record:
            mock_record.side_effect = RuntimeError("connection reset")
            with pytest.raises(RuntimeError):
                await workflow.process(request_id, RedeemAction.APPROVE, staff_id="staff-1")

        assert await list_vouchers(account_id) == []
        assert await count_entries(account_id, TransactionType.REWARD_REDEEMED) == 0
        assert (await load_account(account_id)).points == 0

        request = await workflow.get_request(request_id)
        assert request.status == RedeemRequestStatus.PENDING
        assert request.voucher_id is None
        assert request.processed_by is None

        retried = await workflow.process(request_id, RedeemAction.APPROVE, staff_id="staff-1")
        assert retried.request.status == RedeemRequestStatus.APPROVED

    async def test_refund_failure_leaves_request_pending(
        self, workflow, seed_account, seed_reward, load_account, count_entries
    ) -> None:
        account_id = await seed_account(points=200)
        reward_id = await seed_reward(points_cost=150)
        created = await workflow.create_request(account_id, reward_id)
        request_id = created.request.request_id

        with patch.object(
            workflow.transactions, "record", new_callable=AsyncMock
        ) as mock_record:
            mock_record.side_effect = RuntimeError("disk full")
            with pytest.raises(RuntimeError):
                await workflow.process(request_id, RedeemAction.REJECT, staff_id="staff-1")

        assert (await load_account(account_id)).points == 50
        assert await count_entries(account_id, TransactionType.POINTS_REFUNDED) == 0
        assert (await workflow.get_request(request_id)).status == RedeemRequestStatus.PENDING

    async def test_status_not_persisted_is_an_invariant_violation(
        self, db_session, clock
    ) -> None:
        account_id = uuid4()
        row = RedeemRequest(
            id=uuid4(),
            account_id=account_id,
            reward_id=uuid4(),
            points_reserved=100,
            status=RedeemRequestStatus.PENDING.value,
            voucher_id=None,
            requested_at=clock.now(),
        )
        stale = RedeemRequest(
            id=row.id,
            account_id=account_id,
            reward_id=row.reward_id,
            points_reserved=100,
            status=RedeemRequestStatus.PENDING.value,
            voucher_id=None,
            requested_at=clock.now(),
        )
        db_session.execute.return_value.scalar_one_or_none.return_value = row
        db_session.get = AsyncMock(return_value=stale)
        workflow = RedemptionWorkflow(db_session, clock)

        with (
            patch.object(workflow.ledger, "refund", new_callable=AsyncMock),
            patch.object(workflow.transactions, "record", new_callable=AsyncMock),
        ):
            with pytest.raises(InvariantViolationError, match="not rejected"):
                await workflow.process(row.id, RedeemAction.REJECT, staff_id="staff-1")

        db_session.get.assert_awaited_once_with(RedeemRequest, row.id, populate_existing=True)
        db_session.rollback.assert_awaited_once()
        db_session.commit.assert_not_awaited()
