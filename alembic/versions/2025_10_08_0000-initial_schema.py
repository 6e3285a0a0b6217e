"""initial schema

Revision ID: 2025_10_08_0000
Revises:
Create Date: 2025-10-08 08:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB


# revision identifiers, used by Alembic.
revision: str = '2025_10_08_0000'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

JSONType = sa.JSON().with_variant(JSONB(), 'postgresql')


def upgrade() -> None:
    """Create accounts, credit ledger, channel catalog and listing tables."""

    # ========================================================================
    # Create accounts table
    # ========================================================================
    op.create_table(
        'accounts',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('plan_id', sa.String(50), nullable=False, server_default='free'),
        sa.Column('credits_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('credits_limit', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('subscription_status', sa.String(20), nullable=False, server_default='trialing'),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('account_created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        # Constraints
        sa.CheckConstraint('credits_used >= 0', name='ck_credits_used_non_negative'),
        sa.CheckConstraint('credits_limit >= 0', name='ck_credits_limit_non_negative'),
        sa.CheckConstraint(
            "subscription_status IN ('active', 'trialing', 'past_due', 'canceled')",
            name='ck_account_subscription_status',
        ),
    )

    op.create_index('idx_accounts_plan_id', 'accounts', ['plan_id'])
    op.create_index(
        'idx_accounts_stripe_subscription',
        'accounts',
        ['stripe_subscription_id'],
        postgresql_where=sa.text('stripe_subscription_id IS NOT NULL'),
    )

    # ========================================================================
    # Create credit_usage_log table
    # ========================================================================
    op.create_table(
        'credit_usage_log',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('action_type', sa.String(40), nullable=False),
        sa.Column('quantity', sa.Integer(), nullable=False, server_default='1'),
        sa.Column('credits_used', sa.Integer(), nullable=False),
        sa.Column('credits_remaining', sa.Integer(), nullable=False),
        sa.Column('listing_id', sa.Uuid(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        # Constraints
        sa.CheckConstraint('credits_used >= 0', name='ck_usage_credits_non_negative'),
        sa.CheckConstraint('quantity > 0', name='ck_usage_quantity_positive'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], name='fk_credit_usage_account', ondelete='CASCADE'),
    )

    op.create_index('idx_credit_usage_account_created', 'credit_usage_log', ['account_id', 'created_at'])

    # ========================================================================
    # Create processed_webhook_events table
    # ========================================================================
    op.create_table(
        'processed_webhook_events',
        sa.Column('event_id', sa.String(255), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    # ========================================================================
    # Create channels table
    # ========================================================================
    op.create_table(
        'channels',
        sa.Column('id', sa.String(64), primary_key=True),
        sa.Column('slug', sa.String(64), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('export_format', sa.String(20), nullable=False, server_default='csv'),
        sa.Column('config', JSONType, nullable=False),
        sa.Column('validation_rules', JSONType, nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        sa.UniqueConstraint('slug', name='uq_channels_slug'),
    )

    # ========================================================================
    # Create listings table
    # ========================================================================
    op.create_table(
        'listings',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('user_id', sa.Uuid(), nullable=False),
        sa.Column('status', sa.String(20), nullable=False, server_default='draft'),
        sa.Column('base_data', JSONType, nullable=False),
        sa.Column('seo_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('last_step', sa.String(50), nullable=True),
        sa.Column('last_channel_tab', sa.String(64), nullable=True),
        sa.Column('scroll_position', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        # Constraints
        sa.CheckConstraint('seo_score >= 0 AND seo_score <= 100', name='ck_listing_seo_score_range'),
        sa.CheckConstraint(
            "status IN ('draft', 'optimized', 'completed', 'published')",
            name='ck_listing_status',
        ),
        sa.ForeignKeyConstraint(['user_id'], ['accounts.id'], name='fk_listings_account', ondelete='CASCADE'),
    )

    op.create_index('idx_listings_user_created', 'listings', ['user_id', 'created_at'])
    op.create_index('idx_listings_user_status', 'listings', ['user_id', 'status'])

    # ========================================================================
    # Create listing_images table
    # ========================================================================
    op.create_table(
        'listing_images',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('listing_id', sa.Uuid(), nullable=False),
        sa.Column('url', sa.Text(), nullable=False),
        sa.Column('position', sa.Integer(), nullable=False),
        sa.Column('is_main', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('alt_text', sa.Text(), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        # Constraints
        sa.CheckConstraint('position >= 0', name='ck_listing_image_position_non_negative'),
        sa.CheckConstraint('is_main = (position = 0)', name='ck_listing_image_main_first'),
        sa.UniqueConstraint('listing_id', 'position', name='uq_listing_image_position'),
        sa.ForeignKeyConstraint(['listing_id'], ['listings.id'], name='fk_listing_images_listing', ondelete='CASCADE'),
    )

    # ========================================================================
    # Create listing_channels table
    # ========================================================================
    op.create_table(
        'listing_channels',
        sa.Column('id', sa.Uuid(), primary_key=True),
        sa.Column('listing_id', sa.Uuid(), nullable=False),
        sa.Column('channel_id', sa.String(64), nullable=False),
        sa.Column('override_data', JSONType, nullable=False),
        sa.Column('validation_state', JSONType, nullable=False),
        sa.Column('readiness_score', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('is_ready', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('exported_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),

        # Constraints
        sa.CheckConstraint(
            'readiness_score >= 0 AND readiness_score <= 100',
            name='ck_listing_channel_readiness_range',
        ),
        sa.UniqueConstraint('listing_id', 'channel_id', name='uq_listing_channel'),
        sa.ForeignKeyConstraint(['listing_id'], ['listings.id'], name='fk_listing_channels_listing', ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['channel_id'], ['channels.id'], name='fk_listing_channels_channel', ondelete='RESTRICT'),
    )

    op.create_index('idx_listing_channels_channel', 'listing_channels', ['channel_id'])


def downgrade() -> None:
    """Drop all tables."""
    op.drop_index('idx_listing_channels_channel', table_name='listing_channels')
    op.drop_table('listing_channels')
    op.drop_table('listing_images')
    op.drop_index('idx_listings_user_status', table_name='listings')
    op.drop_index('idx_listings_user_created', table_name='listings')
    op.drop_table('listings')
    op.drop_table('channels')
    op.drop_table('processed_webhook_events')
    op.drop_index('idx_credit_usage_account_created', table_name='credit_usage_log')
    op.drop_table('credit_usage_log')
    op.drop_index('idx_accounts_stripe_subscription', table_name='accounts')
    op.drop_index('idx_accounts_plan_id', table_name='accounts')
    op.drop_table('accounts')
