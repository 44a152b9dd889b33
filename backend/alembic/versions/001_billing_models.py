"""Billing models migration.

Revision ID: 001
Revises:
Create Date: 2026-10-17 00:00:00.000000
"""
from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision = '001'
down_revision = None
branch_labels = None
depends_on = None


def _money(name: str) -> sa.Column:
    return sa.Column(name, sa.Numeric(12, 4), nullable=False)


def upgrade() -> None:
    # Create accounts table
    op.create_table(
        'accounts',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('name', sa.String(255), nullable=False),
        sa.Column('email', sa.String(255), nullable=True),
        sa.Column('plan_tier', sa.String(50), nullable=False, server_default='starter'),
        sa.Column('status', sa.String(50), nullable=False, server_default='trial'),
        sa.Column('minutes_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('sms_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('emails_used', sa.Integer(), nullable=False, server_default='0'),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('auto_pay_overages', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('stripe_customer_id', sa.String(255), nullable=True),
        sa.Column('stripe_subscription_id', sa.String(255), nullable=True),
        sa.Column('trial_ends_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('stripe_subscription_id'),
        sa.CheckConstraint('minutes_used >= 0', name='ck_accounts_minutes_used_non_negative'),
        sa.CheckConstraint('sms_used >= 0', name='ck_accounts_sms_used_non_negative'),
        sa.CheckConstraint('emails_used >= 0', name='ck_accounts_emails_used_non_negative'),
    )
    op.create_index('ix_accounts_plan_tier', 'accounts', ['plan_tier'])
    op.create_index('ix_accounts_status', 'accounts', ['status'])
    op.create_index(
        'ix_accounts_stripe_customer_id', 'accounts', ['stripe_customer_id'], unique=True
    )

    # Create usage_records table
    op.create_table(
        'usage_records',
        sa.Column('id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('account_id', postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column('billing_period_start', sa.DateTime(timezone=True), nullable=False),
        sa.Column('billing_period_end', sa.DateTime(timezone=True), nullable=False),
        sa.Column('year', sa.Integer(), nullable=False),
        sa.Column('month', sa.Integer(), nullable=False),
        sa.Column('plan_tier', sa.String(50), nullable=False),
        _money('plan_price'),
        sa.Column('minutes_included', sa.Integer(), nullable=False),
        sa.Column('minutes_used', sa.Integer(), nullable=False),
        sa.Column('minutes_overage', sa.Integer(), nullable=False),
        _money('minutes_cost'),
        sa.Column('sms_included', sa.Integer(), nullable=False),
        sa.Column('sms_used', sa.Integer(), nullable=False),
        sa.Column('sms_overage', sa.Integer(), nullable=False),
        _money('sms_cost'),
        sa.Column('emails_included', sa.Integer(), nullable=False),
        sa.Column('emails_used', sa.Integer(), nullable=False),
        sa.Column('emails_overage', sa.Integer(), nullable=False),
        _money('emails_cost'),
        _money('base_cost'),
        _money('overage_cost'),
        _money('total_cost'),
        sa.Column('stripe_invoice_id', sa.String(255), nullable=True),
        sa.Column('paid', sa.Boolean(), nullable=False, server_default='false'),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now()),
        sa.PrimaryKeyConstraint('id'),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.UniqueConstraint(
            'account_id', 'billing_period_start', name='uq_usage_record_account_period'
        ),
        sa.UniqueConstraint('stripe_invoice_id'),
    )
    op.create_index('ix_usage_records_account_id', 'usage_records', ['account_id'])
    op.create_index(
        'ix_usage_record_account_created', 'usage_records', ['account_id', 'created_at']
    )


def downgrade() -> None:
    op.drop_index('ix_usage_record_account_created', table_name='usage_records')
    op.drop_index('ix_usage_records_account_id', table_name='usage_records')
    op.drop_table('usage_records')

    op.drop_index('ix_accounts_stripe_customer_id', table_name='accounts')
    op.drop_index('ix_accounts_status', table_name='accounts')
    op.drop_index('ix_accounts_plan_tier', table_name='accounts')
    op.drop_table('accounts')
