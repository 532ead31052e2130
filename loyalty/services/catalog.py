"""
Reward Catalog - read-mostly store of redeemable rewards.

Redemption only reads rewards. The two admin operations here never delete:
a reward referenced by vouchers, requests or transactions is deactivated.
"""

from uuid import UUID

from sqlalchemy import and_, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from loyalty.db.models import Reward, TransactionEntry
from loyalty.db.unit_of_work import unit_of_work
from loyalty.exceptions import InvalidRewardError, NotFoundError
from loyalty.models.api import Tier, TransactionType
from loyalty.models.domain import RewardData, RewardSummary
from loyalty.observability.logging import get_logger
from loyalty.services.ledger import validate_amount
from loyalty.services.tiers import meets_minimum_tier

logger = get_logger(__name__)


class RewardCatalog:
    """Query rewards and manage their active flag."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, reward_id: UUID) -> RewardData:
        """
        Get reward snapshot.

        Raises:
            NotFoundError: Reward doesn't exist
        """
        reward = await self.session.get(Reward, reward_id)
        if reward is None:
            raise NotFoundError("reward", reward_id)
        return reward_to_domain(reward)

    async def list_available(self, highest_points: int, points: int) -> list[RewardData]:
        """
        Rewards an account could redeem right now.

        Active, affordable with ``points``, and gated by the tier that
        ``highest_points`` earns. Cheapest first.
        """
        stmt = (
            select(Reward)
            .where(Reward.is_active.is_(True), Reward.points_cost <= points)
            .order_by(Reward.points_cost.asc())
        )
        result = await self.session.execute(stmt)
        return [
            reward_to_domain(reward)
            for reward in result.scalars().all()
            if meets_minimum_tier(highest_points, reward.minimum_tier)
        ]

    async def list_all(self, include_inactive: bool = True) -> list[RewardSummary]:
        """
        Full catalog for staff, cheapest first.

        redemption_count counts reward_redeemed entries per reward: one per
        instant redemption and one per approved request.
        """
        redeemed = and_(
            TransactionEntry.reward_id == Reward.id,
            TransactionEntry.transaction_type == TransactionType.REWARD_REDEEMED.value,
        )
        stmt = (
            select(Reward, func.count(TransactionEntry.id))
            .outerjoin(TransactionEntry, redeemed)
            .group_by(Reward.id)
            .order_by(Reward.points_cost.asc(), Reward.title.asc())
        )
        if not include_inactive:
            stmt = stmt.where(Reward.is_active.is_(True))

        result = await self.session.execute(stmt)
        return [
            RewardSummary(reward=reward_to_domain(reward), redemption_count=int(count))
            for reward, count in result.all()
        ]

    async def add_reward(
        self,
        title: str,
        points_cost: int,
        description: str | None = None,
        minimum_tier: Tier | None = None,
        is_active: bool = True,
    ) -> RewardData:
        """
        Add a reward to the catalog.

        Raises:
            InvalidAmountError: points_cost is not a positive integer
            InvalidRewardError: title is empty
        """
        validate_amount(points_cost)
        if not title or not title.strip():
            raise InvalidRewardError("title", "cannot be empty")

        reward = Reward(
            title=title,
            description=description,
            points_cost=points_cost,
            minimum_tier=minimum_tier.value if minimum_tier else None,
            is_active=is_active,
        )
        async with unit_of_work(self.session):
            self.session.add(reward)
            await self.session.flush()

        logger.info(
            "reward_added",
            reward_id=str(reward.id),
            points_cost=points_cost,
            minimum_tier=reward.minimum_tier,
        )
        return reward_to_domain(reward)

    async def deactivate(self, reward_id: UUID) -> RewardData:
        """
        Soft-delete a reward: it stays referenced but can no longer be redeemed.

        Raises:
            NotFoundError: Reward doesn't exist
        """
        async with unit_of_work(self.session):
            reward = await self.session.get(Reward, reward_id)
            if reward is None:
                raise NotFoundError("reward", reward_id)
            reward.is_active = False
            await self.session.flush()

        logger.info("reward_deactivated", reward_id=str(reward_id))
        return reward_to_domain(reward)


def reward_to_domain(reward: Reward) -> RewardData:
    """Convert ORM reward to domain model."""
    return RewardData(
        reward_id=reward.id,
        title=reward.title,
        description=reward.description,
        points_cost=reward.points_cost,
        is_active=reward.is_active,
        minimum_tier=Tier(reward.minimum_tier) if reward.minimum_tier else None,
    )
