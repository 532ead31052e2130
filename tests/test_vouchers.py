"""
Tests for VoucherStore.
"""

from datetime import UTC, datetime
from uuid import uuid4

import pytest

from loyalty.db.unit_of_work import unit_of_work
from loyalty.exceptions import AlreadyUsedError, NotFoundError
from loyalty.models.api import VoucherStatus
from loyalty.services.vouchers import VoucherStore


@pytest.fixture
def store(session, clock) -> VoucherStore:
    return VoucherStore(session, clock)


class TestVoucherStore:
    async def test_issue_active(self, store, session, seed_account, seed_reward) -> None:
        account_id = await seed_account()
        reward_id = await seed_reward()

        async with unit_of_work(session):
            voucher = await store.issue(account_id, reward_id)

        assert voucher.status == VoucherStatus.ACTIVE
        assert voucher.used_at is None
        assert voucher.redeemed_at == datetime(2026, 10, 17, 12, 0, tzinfo=UTC)

    async def test_mark_used_once(self, store, session, clock, seed_account, seed_reward) -> None:
        account_id = await seed_account()
        reward_id = await seed_reward()
        async with unit_of_work(session):
            voucher = await store.issue(account_id, reward_id)

        clock.advance(datetime(2026, 10, 17, 15, 30, tzinfo=UTC))
        async with unit_of_work(session):
            used = await store.mark_used(voucher.voucher_id)

        assert used.status == VoucherStatus.USED
        assert used.used_at == datetime(2026, 10, 17, 15, 30, tzinfo=UTC)

        with pytest.raises(AlreadyUsedError):
            async with unit_of_work(session):
                await store.mark_used(voucher.voucher_id)

    async def test_mark_used_missing(self, store, session) -> None:
        with pytest.raises(NotFoundError):
            async with unit_of_work(session):
                await store.mark_used(uuid4())

    async def test_get_missing(self, store) -> None:
        with pytest.raises(NotFoundError):
            await store.get(uuid4())

    async def test_list_for_account_with_status_filter(
        self, store, session, clock, seed_account, seed_reward
    ) -> None:
        account_id = await seed_account()
        other_id = await seed_account()
        reward_id = await seed_reward()

        async with unit_of_work(session):
            older = await store.issue(account_id, reward_id)
            await store.issue(other_id, reward_id)
        clock.advance(datetime(2026, 10, 18, tzinfo=UTC))
        async with unit_of_work(session):
            newer = await store.issue(account_id, reward_id)
            await store.mark_used(older.voucher_id)

        held = await store.list_for_account(account_id)
        assert [v.voucher_id for v in held] == [newer.voucher_id, older.voucher_id]

        active = await store.list_for_account(account_id, status=VoucherStatus.ACTIVE)
        assert [v.voucher_id for v in active] == [newer.voucher_id]
