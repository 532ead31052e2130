"""
Domain Models - Internal business logic models using dataclasses.

NO DICTIONARIES - All data structures are strongly typed immutable dataclasses.
"""

from dataclasses import dataclass
from datetime import datetime
from uuid import UUID

from loyalty.models.api import RedeemRequestStatus, Tier, TransactionType, VoucherStatus

# Entry types that add points back to the balance; everything else debits or is neutral.
CREDIT_TRANSACTION_TYPES = frozenset({TransactionType.POINTS_ADDED, TransactionType.POINTS_REFUNDED})


@dataclass(frozen=True)
class Actor:
    """Who performed an operation, for the activity log."""

    actor_id: str
    role: str

    def __post_init__(self) -> None:
        """Validate actor fields."""
        if not self.actor_id:
            raise ValueError("actor_id cannot be empty")
        if not self.role:
            raise ValueError("role cannot be empty")


@dataclass(frozen=True)
class BalanceSnapshot:
    """Immutable balance state of an account after a ledger mutation."""

    account_id: UUID
    balance: int
    highest_points: int
    tier: Tier

    def __post_init__(self) -> None:
        """Validate balance constraints."""
        if self.balance < 0:
            raise ValueError(f"Balance cannot be negative: {self.balance}")
        if self.highest_points < self.balance:
            raise ValueError(
                f"highest_points {self.highest_points} below balance {self.balance}"
            )


@dataclass(frozen=True)
class AccountData:
    """Immutable account data snapshot."""

    account_id: UUID
    display_name: str | None
    points: int
    highest_points: int
    tier: Tier
    tier_updated_at: datetime | None
    created_at: datetime
    updated_at: datetime


@dataclass(frozen=True)
class RewardData:
    """Immutable reward snapshot, read inside a redemption unit of work."""

    reward_id: UUID
    title: str
    description: str | None
    points_cost: int
    is_active: bool
    minimum_tier: Tier | None


@dataclass(frozen=True)
class TransactionIntent:
    """Domain model for a transaction log entry before persistence."""

    account_id: UUID
    transaction_type: TransactionType
    amount: int
    description: str
    reward_id: UUID | None = None
    purchase_amount: int | None = None

    def __post_init__(self) -> None:
        """Validate the sign convention: positive credits, negative debits."""
        if not self.description:
            raise ValueError("Description cannot be empty")
        if self.transaction_type in CREDIT_TRANSACTION_TYPES:
            if self.amount <= 0:
                raise ValueError(
                    f"{self.transaction_type.value} amount must be positive: {self.amount}"
                )
        elif self.transaction_type == TransactionType.POINTS_REDEEMED:
            if self.amount >= 0:
                raise ValueError(f"points_redeemed amount must be negative: {self.amount}")
        elif self.amount > 0:
            raise ValueError(f"reward_redeemed amount cannot be positive: {self.amount}")
        if self.purchase_amount is not None and self.purchase_amount < 0:
            raise ValueError(f"Purchase amount cannot be negative: {self.purchase_amount}")


@dataclass(frozen=True)
class TransactionData:
    """Immutable transaction log entry after persistence."""

    transaction_id: UUID
    account_id: UUID
    transaction_type: TransactionType
    amount: int
    reward_id: UUID | None
    description: str
    purchase_amount: int | None
    created_at: datetime


@dataclass(frozen=True)
class TransactionStats:
    """Point-flow statistics derived from the transaction log."""

    total_transactions: int
    points_earned: int
    points_spent: int
    points_refunded: int
    rewards_redeemed: int


@dataclass(frozen=True)
class VoucherData:
    """Immutable voucher snapshot."""

    voucher_id: UUID
    account_id: UUID
    reward_id: UUID
    status: VoucherStatus
    redeemed_at: datetime
    used_at: datetime | None


@dataclass(frozen=True)
class RedeemRequestData:
    """Immutable redeem request snapshot."""

    request_id: UUID
    account_id: UUID
    reward_id: UUID
    points_reserved: int
    status: RedeemRequestStatus
    voucher_id: UUID | None
    processed_by: str | None
    notes: str | None
    requested_at: datetime
    processed_at: datetime | None


@dataclass(frozen=True)
class RewardSummary:
    """Catalog entry with the number of reward_redeemed entries that reference it."""

    reward: RewardData
    redemption_count: int


@dataclass(frozen=True)
class ActivityEntry:
    """Immutable activity log row."""

    entry_id: UUID
    actor_id: str
    actor_role: str
    target_id: str
    target_role: str
    description: str
    points_delta: int
    created_at: datetime


@dataclass(frozen=True)
class PointsAdded:
    """Result of adding points to an account."""

    balance: BalanceSnapshot
    transaction: TransactionData


@dataclass(frozen=True)
class RedemptionResult:
    """Result of an instant redemption."""

    balance: BalanceSnapshot
    voucher: VoucherData
    transaction: TransactionData


@dataclass(frozen=True)
class RedeemRequestResult:
    """Result of creating a redeem request (points already reserved)."""

    request: RedeemRequestData
    balance: BalanceSnapshot
    transaction: TransactionData


@dataclass(frozen=True)
class ProcessResult:
    """Result of approving or rejecting a redeem request."""

    request: RedeemRequestData
    transaction: TransactionData
    voucher: VoucherData | None = None
    balance: BalanceSnapshot | None = None


@dataclass(frozen=True)
class TierReconciliation:
    """Outcome of recomputing every account's tier from its watermark."""

    checked: int
    repaired: int
    violations: tuple[UUID, ...]
