"""create_billing_tables

Revision ID: 7c1e4a9d2b10
Revises:
Create Date: 2026-09-21 10:14:52.318204

Tables:
- tiers: seeded, immutable pricing catalog (display_order = upgrade rank)
- subscriptions: one row per grant; partial unique index keeps one active row per user
- payment_events: ledger of every ingested payment, keyed by the gateway event id
- coupon_codes / coupon_usages: discount codes and their per-payment applications
- referral_codes / referrals: referral program codes, points balances and links
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7c1e4a9d2b10'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create billing tables and seed the tier catalog."""

    op.create_table(
        'tiers',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('name', sa.String(50), nullable=False),
        sa.Column('display_name', sa.String(100), nullable=False),
        sa.Column('display_order', sa.Integer(), nullable=False),

        sa.Column('monthly_price', sa.Numeric(10, 2), nullable=False, server_default='0'),
        sa.Column('yearly_price', sa.Numeric(10, 2), nullable=False, server_default='0'),

        # NULL = unlimited
        sa.Column('token_limit', sa.BigInteger(), nullable=True),
        sa.Column('resource_access_limit', sa.Integer(), nullable=True),

        sa.Column('requires_scope_selection', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('max_scope_selections', sa.Integer(), nullable=True),

        sa.Column('referral_points_awarded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('referral_points_cost', sa.Integer(), nullable=True),

        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('name'),
        sa.UniqueConstraint('display_order'),
    )
    op.create_index('ix_tiers_id', 'tiers', ['id'])

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        # Weak reference, users live in the identity service
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('tier_id', sa.BigInteger(), nullable=False),

        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('billing_cycle', sa.String(20), nullable=False),
        sa.Column('payment_provider', sa.String(50), nullable=False),
        sa.Column('external_subscription_id', sa.String(255), nullable=True),
        sa.Column('payment_type', sa.String(20), nullable=False, server_default='recurring'),

        sa.Column('is_recurring', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('cancellation_reason', sa.Text(), nullable=True),
        sa.Column('cancellation_requested_at', sa.DateTime(timezone=True), nullable=True),

        # Quota period and contractual term
        sa.Column('period_start_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('period_end_date', sa.DateTime(timezone=True), nullable=False),
        sa.Column('subscription_end_date', sa.DateTime(timezone=True), nullable=True),

        # Metered usage
        sa.Column('tokens_used_current_period', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('token_limit_override', sa.BigInteger(), nullable=True),
        sa.Column('carryover_unlimited', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('resource_access_count_current_period', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('accessed_resource_ids', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('selected_scope_ids', sa.JSON(), nullable=True),

        sa.Column('version', sa.Integer(), nullable=False, server_default='1'),

        sa.Column('ended_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['tier_id'], ['tiers.id']),
    )
    op.create_index('ix_subscriptions_id', 'subscriptions', ['id'])
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])
    op.create_index('ix_subscriptions_external_subscription_id', 'subscriptions', ['external_subscription_id'])
    # At most one active row per user
    op.create_index(
        'uq_subscriptions_active_user',
        'subscriptions',
        ['user_id'],
        unique=True,
        postgresql_where=sa.text("status = 'active'"),
    )
    op.create_index('idx_subscription_status_period_end', 'subscriptions', ['status', 'period_end_date'])
    op.create_index('idx_subscription_status_term_end', 'subscriptions', ['status', 'subscription_end_date'])

    op.create_table(
        'payment_events',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('external_event_id', sa.String(255), nullable=False),
        sa.Column('provider', sa.String(50), nullable=False),

        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('tier_id', sa.BigInteger(), nullable=False),
        sa.Column('billing_cycle', sa.String(20), nullable=False),
        sa.Column('payment_type', sa.String(20), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False),
        sa.Column('coupon_code', sa.String(50), nullable=True),
        sa.Column('external_subscription_id', sa.String(255), nullable=True),

        # Processing outcome
        sa.Column('status', sa.String(20), nullable=False),
        sa.Column('rejection_reason', sa.Text(), nullable=True),
        sa.Column('subscription_id', sa.BigInteger(), nullable=True),
        sa.Column('final_amount', sa.Numeric(12, 2), nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_event_id'),
        sa.ForeignKeyConstraint(['subscription_id'], ['subscriptions.id']),
    )
    op.create_index('ix_payment_events_id', 'payment_events', ['id'])
    op.create_index('ix_payment_events_user_id', 'payment_events', ['user_id'])

    op.create_table(
        'coupon_codes',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('code', sa.String(50), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('discount_percentage', sa.Integer(), nullable=False),

        sa.Column('valid_from', sa.DateTime(timezone=True), nullable=False),
        sa.Column('valid_until', sa.DateTime(timezone=True), nullable=True),

        sa.Column('max_uses', sa.Integer(), nullable=True),
        sa.Column('current_uses', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default='true'),

        sa.Column('applicable_tier_ids', sa.JSON(), nullable=False, server_default='[]'),
        sa.Column('applicable_billing_cycles', sa.JSON(), nullable=False, server_default='[]'),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('code'),
        sa.CheckConstraint(
            'discount_percentage >= 1 AND discount_percentage <= 100',
            name='ck_coupon_discount_percentage',
        ),
    )
    op.create_index('ix_coupon_codes_id', 'coupon_codes', ['id'])

    op.create_table(
        'coupon_usages',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('coupon_id', sa.BigInteger(), nullable=False),
        sa.Column('payment_event_id', sa.BigInteger(), nullable=False),
        sa.Column('user_id', sa.BigInteger(), nullable=True),

        sa.Column('original_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('discount_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('final_amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['coupon_id'], ['coupon_codes.id']),
        sa.ForeignKeyConstraint(['payment_event_id'], ['payment_events.id']),
        sa.UniqueConstraint('coupon_id', 'payment_event_id', name='uq_coupon_usage_payment_event'),
    )
    op.create_index('ix_coupon_usages_id', 'coupon_usages', ['id'])
    op.create_index('ix_coupon_usages_coupon_id', 'coupon_usages', ['coupon_id'])

    op.create_table(
        'referral_codes',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('user_id', sa.BigInteger(), nullable=False),
        sa.Column('code', sa.String(20), nullable=False),

        sa.Column('points_balance', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_points_earned', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_points_redeemed', sa.Integer(), nullable=False, server_default='0'),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('user_id'),
        sa.UniqueConstraint('code'),
    )
    op.create_index('ix_referral_codes_id', 'referral_codes', ['id'])

    op.create_table(
        'referrals',
        sa.Column('id', sa.BigInteger(), nullable=False, autoincrement=True),
        sa.Column('referrer_user_id', sa.BigInteger(), nullable=False),
        sa.Column('referred_user_id', sa.BigInteger(), nullable=False),
        sa.Column('referral_code', sa.String(20), nullable=False),

        sa.Column('times_awarded', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('total_points_awarded', sa.Integer(), nullable=False, server_default='0'),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('last_awarded_at', sa.DateTime(timezone=True), nullable=True),

        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('referred_user_id'),
    )
    op.create_index('ix_referrals_id', 'referrals', ['id'])
    op.create_index('ix_referrals_referrer_user_id', 'referrals', ['referrer_user_id'])

    # Seed tier catalog
    tiers_table = sa.table('tiers',
        sa.column('name', sa.String),
        sa.column('display_name', sa.String),
        sa.column('display_order', sa.Integer),
        sa.column('monthly_price', sa.Numeric),
        sa.column('yearly_price', sa.Numeric),
        sa.column('token_limit', sa.BigInteger),
        sa.column('resource_access_limit', sa.Integer),
        sa.column('requires_scope_selection', sa.Boolean),
        sa.column('max_scope_selections', sa.Integer),
        sa.column('referral_points_awarded', sa.Integer),
        sa.column('referral_points_cost', sa.Integer),
        sa.column('is_active', sa.Boolean),
    )

    op.bulk_insert(tiers_table, [
        {'name': 'free', 'display_name': 'Free', 'display_order': 1, 'monthly_price': 0, 'yearly_price': 0, 'token_limit': 50000, 'resource_access_limit': 2, 'requires_scope_selection': False, 'max_scope_selections': None, 'referral_points_awarded': 0, 'referral_points_cost': 0, 'is_active': True},
        {'name': 'student_lite', 'display_name': 'Student Lite', 'display_order': 2, 'monthly_price': 8, 'yearly_price': 80, 'token_limit': 250000, 'resource_access_limit': None, 'requires_scope_selection': True, 'max_scope_selections': 1, 'referral_points_awarded': 100, 'referral_points_cost': 1000, 'is_active': True},
        {'name': 'student', 'display_name': 'Student', 'display_order': 3, 'monthly_price': 15, 'yearly_price': 150, 'token_limit': 500000, 'resource_access_limit': None, 'requires_scope_selection': True, 'max_scope_selections': 3, 'referral_points_awarded': 150, 'referral_points_cost': 1500, 'is_active': True},
        {'name': 'pro', 'display_name': 'Pro', 'display_order': 4, 'monthly_price': 25, 'yearly_price': 250, 'token_limit': None, 'resource_access_limit': None, 'requires_scope_selection': False, 'max_scope_selections': None, 'referral_points_awarded': 250, 'referral_points_cost': 2500, 'is_active': True},
    ])


def downgrade() -> None:
    """Drop billing tables."""
    op.drop_table('referrals')
    op.drop_table('referral_codes')
    op.drop_table('coupon_usages')
    op.drop_table('coupon_codes')
    op.drop_table('payment_events')
    op.drop_table('subscriptions')
    op.drop_table('tiers')
