"""Accounts, stored objects, subscriptions and payment orders.

Revision ID: 001
Revises:
Create Date: 2026-10-19 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    """Create accounts, stored_objects, subscriptions and orders tables."""

    op.create_table(
        'accounts',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('subject_id', sa.String(128), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('display_name', sa.String(255), nullable=True),

        # Quota counter
        sa.Column('storage_used_bytes', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('storage_limit_bytes', sa.BigInteger(), nullable=False),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),

        sa.PrimaryKeyConstraint('id'),
        sa.CheckConstraint('storage_used_bytes >= 0', name='ck_accounts_used_non_negative'),
    )
    op.create_index('ix_accounts_subject_id', 'accounts', ['subject_id'], unique=True)

    op.create_table(
        'stored_objects',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('cid', sa.String(128), nullable=False),
        sa.Column('filename', sa.String(512), nullable=False),
        sa.Column('mime_type', sa.String(255), nullable=True),
        sa.Column('size', sa.BigInteger(), nullable=False),

        # Pin state
        sa.Column('is_pinned', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('pin_status', sa.String(20), nullable=False, server_default='unpinned'),

        # Soft delete
        sa.Column('is_deleted', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('deleted_at', sa.DateTime(timezone=True), nullable=True),

        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_stored_objects_account_id', 'stored_objects', ['account_id'])
    op.create_index(
        'ix_stored_objects_account_live', 'stored_objects', ['account_id', 'is_deleted', 'is_pinned']
    )
    op.create_index(
        'ix_stored_objects_cid_live', 'stored_objects', ['cid', 'is_deleted', 'is_pinned']
    )

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('billing_day', sa.Integer(), nullable=False),
        sa.Column('next_billing_at', sa.Date(), nullable=True),
        sa.Column('last_billed_at', sa.Date(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False, server_default=sa.true()),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_subscriptions_account_id', 'subscriptions', ['account_id'], unique=True)

    op.create_table(
        'orders',
        sa.Column('id', sa.Uuid(), nullable=False),
        sa.Column('account_id', sa.Uuid(), nullable=False),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column('currency', sa.String(3), nullable=False, server_default='INR'),
        sa.Column('status', sa.String(20), nullable=False, server_default='PENDING'),

        # Provider checkout
        sa.Column('provider_order_id', sa.String(128), nullable=False),
        sa.Column('payment_session_id', sa.String(512), nullable=True),
        sa.Column('payment_link', sa.String(1024), nullable=True),
        sa.Column('provider_response', sa.JSON(), nullable=True),

        # Period charged and usage snapshot
        sa.Column('billing_period_start', sa.Date(), nullable=False),
        sa.Column('billing_period_end', sa.Date(), nullable=False),
        sa.Column('pinned_bytes', sa.BigInteger(), nullable=False, server_default='0'),
        sa.Column('monthly_cost_usd', sa.Numeric(12, 4), nullable=False, server_default='0'),

        sa.Column('status_source', sa.String(20), nullable=True),
        sa.Column('completed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=True),

        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_orders_account_id', 'orders', ['account_id'])
    op.create_index('ix_orders_provider_order_id', 'orders', ['provider_order_id'], unique=True)
    op.create_index('ix_orders_account_period', 'orders', ['account_id', 'billing_period_start'])
    op.create_index('ix_orders_status_created', 'orders', ['status', 'created_at'])

    # One PENDING order per account and period
    op.create_index(
        'uq_orders_pending_per_period',
        'orders',
        ['account_id', 'billing_period_start'],
        unique=True,
        sqlite_where=sa.text("status = 'PENDING'"),
        postgresql_where=sa.text("status = 'PENDING'"),
    )


def downgrade() -> None:
    """Drop storage and billing tables."""
    op.drop_index('uq_orders_pending_per_period', table_name='orders')
    op.drop_index('ix_orders_status_created', table_name='orders')
    op.drop_index('ix_orders_account_period', table_name='orders')
    op.drop_index('ix_orders_provider_order_id', table_name='orders')
    op.drop_index('ix_orders_account_id', table_name='orders')
    op.drop_table('orders')

    op.drop_index('ix_subscriptions_account_id', table_name='subscriptions')
    op.drop_table('subscriptions')

    op.drop_index('ix_stored_objects_cid_live', table_name='stored_objects')
    op.drop_index('ix_stored_objects_account_live', table_name='stored_objects')
    op.drop_index('ix_stored_objects_account_id', table_name='stored_objects')
    op.drop_table('stored_objects')

    op.drop_index('ix_accounts_subject_id', table_name='accounts')
    op.drop_table('accounts')
