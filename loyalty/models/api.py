"""
API Models - Pydantic models for request/response validation.

NO DICTIONARIES - All data structures are strongly typed.
"""

from enum import Enum
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class Tier(str, Enum):
    """Loyalty tier enumeration, ordered Bronze < Silver < Gold."""

    BRONZE = "Bronze"
    SILVER = "Silver"
    GOLD = "Gold"


class TransactionType(str, Enum):
    """Balance-affecting event type recorded in the transaction log."""

    POINTS_ADDED = "points_added"
    REWARD_REDEEMED = "reward_redeemed"
    POINTS_REDEEMED = "points_redeemed"
    POINTS_REFUNDED = "points_refunded"


class RedeemRequestStatus(str, Enum):
    """Redeem request status enumeration."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"


class RedeemAction(str, Enum):
    """Staff decision on a pending redeem request."""

    APPROVE = "approve"
    REJECT = "reject"


class VoucherStatus(str, Enum):
    """Voucher status enumeration."""

    ACTIVE = "active"
    USED = "used"


# ============================================================================
# Account Models
# ============================================================================


class OpenAccountRequest(BaseModel):
    """POST /v1/accounts request body."""

    display_name: str | None = Field(None, min_length=1, max_length=255)


class AccountResponse(BaseModel):
    """Account snapshot response."""

    account_id: UUID
    display_name: str | None = None
    points: int
    highest_points: int
    tier: Tier
    tier_updated_at: str | None = None
    created_at: str


class AddPointsRequest(BaseModel):
    """POST /v1/accounts/{account_id}/points request body."""

    amount: int = Field(..., gt=0, description="Whole points to credit")
    description: str | None = Field(None, min_length=1, max_length=500)
    purchase_amount: int | None = Field(
        None, ge=0, description="Purchase value (minor units) that earned the points"
    )
    actor_id: str = Field(..., min_length=1, max_length=255)
    actor_role: str = Field("staff", min_length=1, max_length=50)

    @field_validator("amount", mode="before")
    @classmethod
    def reject_fractional_amount(cls, v: object) -> object:
        """Points are whole numbers; 12.5 is an invalid amount, not 12."""
        if isinstance(v, float) and not v.is_integer():
            raise ValueError("amount must be a whole number of points")
        return v


class BalanceResponse(BaseModel):
    """Balance after a ledger mutation."""

    account_id: UUID
    balance: int
    highest_points: int
    tier: Tier


class AddPointsResponse(BaseModel):
    """POST /v1/accounts/{account_id}/points response."""

    transaction_id: UUID
    balance: BalanceResponse
    purchase_amount: int | None = None


# ============================================================================
# Reward Models
# ============================================================================


class CreateRewardRequest(BaseModel):
    """POST /v1/rewards request body."""

    title: str = Field(..., min_length=1, max_length=255)
    description: str | None = Field(None, max_length=2000)
    points_cost: int = Field(..., gt=0)
    minimum_tier: Tier | None = None
    is_active: bool = True


class RewardResponse(BaseModel):
    """Reward catalog entry."""

    reward_id: UUID
    title: str
    description: str | None = None
    points_cost: int
    is_active: bool
    minimum_tier: Tier | None = None


class RewardListResponse(BaseModel):
    """List of rewards."""

    rewards: list[RewardResponse]


class RewardCatalogItem(RewardResponse):
    """Catalog entry with how often it has been redeemed."""

    redemption_count: int


class RewardCatalogResponse(BaseModel):
    """Full reward catalog, cheapest first."""

    rewards: list[RewardCatalogItem]


# ============================================================================
# Voucher Models
# ============================================================================


class VoucherResponse(BaseModel):
    """Voucher state."""

    voucher_id: UUID
    account_id: UUID
    reward_id: UUID
    status: VoucherStatus
    redeemed_at: str
    used_at: str | None = None


class VoucherListResponse(BaseModel):
    """List of vouchers for an account."""

    vouchers: list[VoucherResponse]


class UseVoucherRequest(BaseModel):
    """POST /v1/vouchers/{voucher_id}/use request body."""

    account_id: UUID


# ============================================================================
# Redemption Models
# ============================================================================


class RedeemRewardRequest(BaseModel):
    """POST /v1/accounts/{account_id}/redemptions request body."""

    reward_id: UUID


class RedemptionResponse(BaseModel):
    """Result of an instant redemption."""

    transaction_id: UUID
    balance: BalanceResponse
    voucher: VoucherResponse


class CreateRedeemRequestRequest(BaseModel):
    """POST /v1/redeem-requests request body."""

    account_id: UUID
    reward_id: UUID


class RedeemRequestResponse(BaseModel):
    """Redeem request state."""

    request_id: UUID
    account_id: UUID
    reward_id: UUID
    points_reserved: int
    status: RedeemRequestStatus
    voucher_id: UUID | None = None
    processed_by: str | None = None
    notes: str | None = None
    requested_at: str
    processed_at: str | None = None


class RedeemRequestListResponse(BaseModel):
    """List of redeem requests."""

    requests: list[RedeemRequestResponse]


class ProcessRedeemRequestRequest(BaseModel):
    """POST /v1/redeem-requests/{request_id}/process request body."""

    action: RedeemAction
    staff_id: str = Field(..., min_length=1, max_length=255)
    notes: str | None = Field(None, max_length=2000)


class ProcessRedeemRequestResponse(BaseModel):
    """Result of approving or rejecting a redeem request."""

    request: RedeemRequestResponse
    voucher: VoucherResponse | None = None
    balance: BalanceResponse | None = None


# ============================================================================
# Transaction Models
# ============================================================================


class TransactionItem(BaseModel):
    """Single transaction log entry."""

    transaction_id: UUID
    account_id: UUID
    type: TransactionType
    amount: int
    reward_id: UUID | None = None
    description: str
    purchase_amount: int | None = None
    created_at: str


class TransactionListResponse(BaseModel):
    """Transaction history for an account, newest first."""

    transactions: list[TransactionItem]
    total_count: int


class LedgerTransactionListResponse(BaseModel):
    """Transactions across accounts, newest first."""

    transactions: list[TransactionItem]


class TransactionStatsResponse(BaseModel):
    """Point-flow statistics for an account."""

    total_transactions: int
    points_earned: int
    points_spent: int
    points_refunded: int
    rewards_redeemed: int


# ============================================================================
# Activity Models
# ============================================================================


class ActivityItem(BaseModel):
    """Single activity log entry."""

    entry_id: UUID
    actor_id: str
    actor_role: str
    target_id: str
    target_role: str
    description: str
    points_delta: int
    created_at: str


class ActivityListResponse(BaseModel):
    """Recent activity, newest first."""

    entries: list[ActivityItem]


# ============================================================================
# Health Check
# ============================================================================


class HealthResponse(BaseModel):
    """GET /health response."""

    status: str
    database: str
    timestamp: str
