"""
Database Models - SQLAlchemy ORM models with strict typing.

NO DICTIONARIES - All columns use Mapped[] type annotations.
"""

from datetime import UTC, datetime
from uuid import UUID, uuid4

from sqlalchemy import (
    BigInteger,
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    Text,
    Uuid,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utc_now() -> datetime:
    """Get current UTC timestamp."""
    return datetime.now(UTC)


class Account(Base):
    """
    ORM model for accounts table.

    Holds the spendable balance, the highest-points watermark and the tier
    derived from it. Only AccountLedger writes these columns.
    """

    __tablename__ = "accounts"

    # Primary Key
    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)

    display_name: Mapped[str | None] = mapped_column(String(255), nullable=True)

    # Balance and watermark
    points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    highest_points: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)

    # Tier (always tier_for(highest_points))
    tier: Mapped[str] = mapped_column(String(10), nullable=False, default="Bronze")
    tier_updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    # Audit timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("points >= 0", name="ck_points_non_negative"),
        CheckConstraint("highest_points >= points", name="ck_highest_points_watermark"),
        CheckConstraint("tier IN ('Bronze', 'Silver', 'Gold')", name="ck_account_tier"),
        Index("idx_accounts_tier", "tier"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<Account(id={self.id}, points={self.points}, "
            f"highest_points={self.highest_points}, tier={self.tier})>"
        )


class Reward(Base):
    """
    ORM model for rewards table.

    Rewards are soft-deactivated, never deleted, once anything references them.
    """

    __tablename__ = "rewards"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    points_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    minimum_tier: Mapped[str | None] = mapped_column(String(10), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint("points_cost > 0", name="ck_reward_cost_positive"),
        CheckConstraint(
            "minimum_tier IS NULL OR minimum_tier IN ('Bronze', 'Silver', 'Gold')",
            name="ck_reward_minimum_tier",
        ),
        Index("idx_rewards_active_cost", "is_active", "points_cost"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Reward(id={self.id}, title={self.title}, cost={self.points_cost})>"


class Voucher(Base):
    """
    ORM model for vouchers table.

    Single-use credential issued for an instant redemption or an approved request.
    """

    __tablename__ = "vouchers"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    reward_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("rewards.id", ondelete="RESTRICT"), nullable=False
    )
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="active")
    redeemed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        CheckConstraint("status IN ('active', 'used')", name="ck_voucher_status"),
        CheckConstraint(
            "(status = 'active' AND used_at IS NULL) OR (status = 'used' AND used_at IS NOT NULL)",
            name="ck_voucher_used_at",
        ),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return f"<Voucher(id={self.id}, account_id={self.account_id}, status={self.status})>"


class RedeemRequest(Base):
    """
    ORM model for redeem_requests table.

    points_reserved is the reward cost at request time and is never recomputed.
    """

    __tablename__ = "redeem_requests"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False, index=True
    )
    reward_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("rewards.id", ondelete="RESTRICT"), nullable=False
    )
    points_reserved: Mapped[int] = mapped_column(BigInteger, nullable=False)
    status: Mapped[str] = mapped_column(String(10), nullable=False, default="pending")
    voucher_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("vouchers.id", ondelete="RESTRICT"), nullable=True, unique=True
    )

    # Staff review
    processed_by: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    requested_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )
    processed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    __table_args__ = (
        CheckConstraint("points_reserved > 0", name="ck_request_points_positive"),
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected')", name="ck_request_status"
        ),
        CheckConstraint(
            "(status = 'approved') = (voucher_id IS NOT NULL)",
            name="ck_request_voucher_only_when_approved",
        ),
        Index("idx_redeem_requests_status_requested", "status", "requested_at"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<RedeemRequest(id={self.id}, account_id={self.account_id}, "
            f"status={self.status}, points_reserved={self.points_reserved})>"
        )


class TransactionEntry(Base):
    """
    ORM model for transactions table.

    Immutable, append-only ledger of every balance-affecting event.
    Positive amounts credit the balance, negative amounts debit it.
    """

    __tablename__ = "transactions"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    account_id: Mapped[UUID] = mapped_column(
        Uuid, ForeignKey("accounts.id", ondelete="RESTRICT"), nullable=False
    )
    transaction_type: Mapped[str] = mapped_column("type", String(32), nullable=False)
    amount: Mapped[int] = mapped_column(BigInteger, nullable=False)
    reward_id: Mapped[UUID | None] = mapped_column(
        Uuid, ForeignKey("rewards.id", ondelete="RESTRICT"), nullable=True
    )
    description: Mapped[str] = mapped_column(String, nullable=False)
    purchase_amount: Mapped[int | None] = mapped_column(BigInteger, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "type IN ('points_added', 'reward_redeemed', 'points_redeemed', 'points_refunded')",
            name="ck_transaction_type",
        ),
        CheckConstraint(
            "(type IN ('points_added', 'points_refunded') AND amount > 0)"
            " OR (type = 'points_redeemed' AND amount < 0)"
            " OR (type = 'reward_redeemed' AND amount <= 0)",
            name="ck_transaction_amount_sign",
        ),
        Index("idx_transactions_account_created", "account_id", "created_at"),
        Index("idx_transactions_account_type", "account_id", "type"),
    )

    def __repr__(self) -> str:
        """String representation for debugging."""
        return (
            f"<TransactionEntry(id={self.id}, account_id={self.account_id}, "
            f"type={self.transaction_type}, amount={self.amount})>"
        )


class ActivityLog(Base):
    """
    ORM model for activity_logs table.

    Best-effort audit trail of who did what to whom; never part of a ledger commit.
    """

    __tablename__ = "activity_logs"

    id: Mapped[UUID] = mapped_column(Uuid, primary_key=True, default=uuid4)
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    actor_role: Mapped[str] = mapped_column(String(50), nullable=False)
    target_id: Mapped[str] = mapped_column(String(255), nullable=False)
    target_role: Mapped[str] = mapped_column(String(50), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    points_delta: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utc_now
    )

    __table_args__ = (Index("idx_activity_logs_created_at", "created_at"),)
