"""create_entitlement_tables

Revision ID: 7c41e2a9d0b3
Revises: 
Create Date: 2026-02-03 10:24:11.418205

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision: str = '7c41e2a9d0b3'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create plan catalog, per-user subscription and subscription request tables."""
    from sqlalchemy import inspect

    # Skip tables that already exist (idempotent migration)
    bind = op.get_bind()
    inspector = inspect(bind)
    tables = inspector.get_table_names()

    if 'subscription_plans' not in tables:
        op.create_table(
            'subscription_plans',
            sa.Column('id', sa.String(), nullable=False),
            sa.Column('name', sa.String(), nullable=False),
            sa.Column('display_name', sa.String(), nullable=False),
            sa.Column('description', sa.Text(), nullable=False),
            sa.Column('max_browse_count', sa.Integer(), nullable=True),
            sa.Column('max_listing_count', sa.Integer(), nullable=True),
            sa.Column('max_job_posts', sa.Integer(), nullable=True),
            sa.Column('listing_visibility_delay_hours', sa.Integer(), nullable=False),
            sa.Column('notifications_enabled', sa.Boolean(), nullable=False),
            sa.Column('price', sa.Numeric(10, 2), nullable=False),
            sa.Column('billing_period', sa.String(), nullable=False),
            sa.Column('is_active', sa.Boolean(), nullable=False),
            sa.Column('features', sa.JSON(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.text('(CURRENT_TIMESTAMP)'), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index(op.f('ix_subscription_plans_name'), 'subscription_plans', ['name'], unique=True)
        op.create_index(op.f('ix_subscription_plans_is_active'), 'subscription_plans', ['is_active'], unique=False)

    if 'user_subscriptions' not in tables:
        op.create_table(
            'user_subscriptions',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.String(), nullable=False),
            sa.Column('subscription_plan_id', sa.String(), nullable=False),
            sa.Column('start_date', sa.DateTime(timezone=True), nullable=False),
            sa.Column('end_date', sa.DateTime(timezone=True), nullable=False),
            sa.Column('status', sa.String(), nullable=False),
            sa.Column('browse_count_used', sa.Integer(), nullable=False),
            sa.Column('last_browse_reset_at', sa.DateTime(timezone=True), nullable=False),
            sa.Column('listing_count_used', sa.Integer(), nullable=False),
            sa.Column('job_posts_used', sa.Integer(), nullable=False),
            sa.Column('assigned_by', sa.String(), nullable=False),
            sa.Column('notes', sa.Text(), nullable=True),
            sa.Column('version', sa.Integer(), nullable=False),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('updated_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('expiry_warning_sent_at', sa.DateTime(timezone=True), nullable=True),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index(op.f('ix_user_subscriptions_id'), 'user_subscriptions', ['id'], unique=False)
        op.create_index(op.f('ix_user_subscriptions_user_id'), 'user_subscriptions', ['user_id'], unique=True)
        op.create_index(op.f('ix_user_subscriptions_subscription_plan_id'), 'user_subscriptions', ['subscription_plan_id'], unique=False)
        op.create_index(op.f('ix_user_subscriptions_end_date'), 'user_subscriptions', ['end_date'], unique=False)
        op.create_index(op.f('ix_user_subscriptions_status'), 'user_subscriptions', ['status'], unique=False)
        op.create_index('idx_user_subscriptions_status_end', 'user_subscriptions', ['status', 'end_date'], unique=False)

    if 'subscription_requests' not in tables:
        op.create_table(
            'subscription_requests',
            sa.Column('id', sa.Integer(), nullable=False),
            sa.Column('user_id', sa.String(), nullable=False),
            sa.Column('plan_id', sa.String(), nullable=False),
            sa.Column('status', sa.String(), nullable=False),
            sa.Column('message', sa.Text(), nullable=True),
            sa.Column('admin_notes', sa.Text(), nullable=True),
            sa.Column('created_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('resolved_at', sa.DateTime(timezone=True), nullable=True),
            sa.Column('resolved_by', sa.String(), nullable=True),
            sa.Column('version', sa.Integer(), nullable=False),
            sa.PrimaryKeyConstraint('id'),
        )
        op.create_index(op.f('ix_subscription_requests_id'), 'subscription_requests', ['id'], unique=False)
        op.create_index(op.f('ix_subscription_requests_user_id'), 'subscription_requests', ['user_id'], unique=False)
        op.create_index(op.f('ix_subscription_requests_status'), 'subscription_requests', ['status'], unique=False)


def downgrade() -> None:
    """Drop the entitlement tables."""
    op.drop_index(op.f('ix_subscription_requests_status'), table_name='subscription_requests')
    op.drop_index(op.f('ix_subscription_requests_user_id'), table_name='subscription_requests')
    op.drop_index(op.f('ix_subscription_requests_id'), table_name='subscription_requests')
    op.drop_table('subscription_requests')

    op.drop_index('idx_user_subscriptions_status_end', table_name='user_subscriptions')
    op.drop_index(op.f('ix_user_subscriptions_status'), table_name='user_subscriptions')
    op.drop_index(op.f('ix_user_subscriptions_end_date'), table_name='user_subscriptions')
    op.drop_index(op.f('ix_user_subscriptions_subscription_plan_id'), table_name='user_subscriptions')
    op.drop_index(op.f('ix_user_subscriptions_user_id'), table_name='user_subscriptions')
    op.drop_index(op.f('ix_user_subscriptions_id'), table_name='user_subscriptions')
    op.drop_table('user_subscriptions')

    op.drop_index(op.f('ix_subscription_plans_is_active'), table_name='subscription_plans')
    op.drop_index(op.f('ix_subscription_plans_name'), table_name='subscription_plans')
    op.drop_table('subscription_plans')
