"""initial schema

Revision ID: 2026_10_17_0000
Revises:
Create Date: 2026-10-17 00:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID


# revision identifiers, used by Alembic.
revision: str = '2026_10_17_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create the loyalty ledger schema."""

    # ========================================================================
    # Create accounts table
    # ========================================================================
    op.create_table(
        'accounts',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('display_name', sa.String(255), nullable=True),
        sa.Column('points', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('highest_points', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('tier', sa.String(10), nullable=False, server_default='Bronze'),
        sa.Column('tier_updated_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('points >= 0', name='ck_points_non_negative'),
        sa.CheckConstraint('highest_points >= points', name='ck_highest_points_watermark'),
        sa.CheckConstraint("tier IN ('Bronze', 'Silver', 'Gold')", name='ck_account_tier'),
    )

    op.create_index('idx_accounts_tier', 'accounts', ['tier'])

    # ========================================================================
    # Create rewards table
    # ========================================================================
    op.create_table(
        'rewards',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('title', sa.String(255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('points_cost', sa.Integer(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.text('true')),
        sa.Column('minimum_tier', sa.String(10), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Constraints
        sa.CheckConstraint('points_cost > 0', name='ck_reward_cost_positive'),
        sa.CheckConstraint(
            "minimum_tier IS NULL OR minimum_tier IN ('Bronze', 'Silver', 'Gold')",
            name='ck_reward_minimum_tier',
        ),
    )

    op.create_index('idx_rewards_active_cost', 'rewards', ['is_active', 'points_cost'])

    # ========================================================================
    # Create vouchers table
    # ========================================================================
    op.create_table(
        'vouchers',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('account_id', UUID(as_uuid=True), nullable=False),
        sa.Column('reward_id', UUID(as_uuid=True), nullable=False),
        sa.Column('status', sa.String(10), nullable=False, server_default='active'),
        sa.Column('redeemed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('used_at', sa.DateTime(timezone=True), nullable=True),

        # Foreign keys
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], name='fk_vouchers_account', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['reward_id'], ['rewards.id'], name='fk_vouchers_reward', ondelete='RESTRICT'),

        # Constraints
        sa.CheckConstraint("status IN ('active', 'used')", name='ck_voucher_status'),
        sa.CheckConstraint(
            "(status = 'active' AND used_at IS NULL) OR (status = 'used' AND used_at IS NOT NULL)",
            name='ck_voucher_used_at',
        ),
    )

    op.create_index('ix_vouchers_account_id', 'vouchers', ['account_id'])

    # ========================================================================
    # Create redeem_requests table
    # ========================================================================
    op.create_table(
        'redeem_requests',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('account_id', UUID(as_uuid=True), nullable=False),
        sa.Column('reward_id', UUID(as_uuid=True), nullable=False),
        sa.Column('points_reserved', sa.BigInteger(), nullable=False),
        sa.Column('status', sa.String(10), nullable=False, server_default='pending'),
        sa.Column('voucher_id', UUID(as_uuid=True), nullable=True),
        sa.Column('processed_by', sa.String(255), nullable=True),
        sa.Column('notes', sa.Text(), nullable=True),
        sa.Column('requested_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),

        # Foreign keys
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], name='fk_redeem_requests_account', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['reward_id'], ['rewards.id'], name='fk_redeem_requests_reward', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['voucher_id'], ['vouchers.id'], name='fk_redeem_requests_voucher', ondelete='RESTRICT'),

        # Constraints
        sa.UniqueConstraint('voucher_id', name='uq_redeem_requests_voucher'),
        sa.CheckConstraint('points_reserved > 0', name='ck_request_points_positive'),
        sa.CheckConstraint("status IN ('pending', 'approved', 'rejected')", name='ck_request_status'),
        sa.CheckConstraint(
            "(status = 'approved') = (voucher_id IS NOT NULL)",
            name='ck_request_voucher_only_when_approved',
        ),
    )

    op.create_index('ix_redeem_requests_account_id', 'redeem_requests', ['account_id'])
    op.create_index('idx_redeem_requests_status_requested', 'redeem_requests', ['status', 'requested_at'])

    # ========================================================================
    # Create transactions table (append-only)
    # ========================================================================
    op.create_table(
        'transactions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('account_id', UUID(as_uuid=True), nullable=False),
        sa.Column('type', sa.String(32), nullable=False),
        sa.Column('amount', sa.BigInteger(), nullable=False),
        sa.Column('reward_id', UUID(as_uuid=True), nullable=True),
        sa.Column('description', sa.String(), nullable=False),
        sa.Column('purchase_amount', sa.BigInteger(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),

        # Foreign keys
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], name='fk_transactions_account', ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['reward_id'], ['rewards.id'], name='fk_transactions_reward', ondelete='RESTRICT'),

        # Constraints
        sa.CheckConstraint(
            "type IN ('points_added', 'reward_redeemed', 'points_redeemed', 'points_refunded')",
            name='ck_transaction_type',
        ),
        sa.CheckConstraint(
            "(type IN ('points_added', 'points_refunded') AND amount > 0)"
            " OR (type = 'points_redeemed' AND amount < 0)"
            " OR (type = 'reward_redeemed' AND amount <= 0)",
            name='ck_transaction_amount_sign',
        ),
    )

    op.create_index('idx_transactions_account_created', 'transactions', ['account_id', 'created_at'])
    op.create_index('idx_transactions_account_type', 'transactions', ['account_id', 'type'])

    # ========================================================================
    # Create activity_logs table
    # ========================================================================
    op.create_table(
        'activity_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True, server_default=sa.text('gen_random_uuid()')),
        sa.Column('actor_id', sa.String(255), nullable=False),
        sa.Column('actor_role', sa.String(50), nullable=False),
        sa.Column('target_id', sa.String(255), nullable=False),
        sa.Column('target_role', sa.String(50), nullable=False),
        sa.Column('description', sa.Text(), nullable=False),
        sa.Column('points_delta', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.text('NOW()')),
    )

    op.create_index('idx_activity_logs_created_at', 'activity_logs', ['created_at'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_table('activity_logs')
    op.drop_table('transactions')
    op.drop_table('redeem_requests')
    op.drop_table('vouchers')
    op.drop_table('rewards')
    op.drop_table('accounts')
