"""payment reconciliation tables

Revision ID: 5b1e0c7d9a21
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""
from alembic import op
import sqlalchemy as sa

# revision identifiers, used by Alembic.
revision = '5b1e0c7d9a21'
down_revision = None
branch_labels = None
depends_on = None


def upgrade():
    op.create_table(
        'accounts',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('email', sa.String(length=255), nullable=False, unique=True),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('role', sa.String(length=20), nullable=False, server_default='customer'),
        sa.Column('is_suspended', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('suspension_reason', sa.String(length=255), nullable=True),
        sa.Column('suspended_until', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.CheckConstraint("role IN ('customer','business','admin')", name='ck_accounts_role_valid'),
    )

    op.create_table(
        'payment_identities',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('provider_customer_id', sa.String(length=64), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='RESTRICT'),
    )
    op.create_index('ix_payment_identities_account_id', 'payment_identities', ['account_id'], unique=True)
    op.create_index('ix_payment_identities_provider_customer_id', 'payment_identities', ['provider_customer_id'], unique=True)

    op.create_table(
        'payment_instruments',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('provider_instrument_id', sa.String(length=64), nullable=False),
        sa.Column('brand', sa.String(length=32), nullable=True),
        sa.Column('last4', sa.String(length=4), nullable=True),
        sa.Column('exp_month', sa.Integer(), nullable=True),
        sa.Column('exp_year', sa.Integer(), nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
    )
    op.create_index('ix_payment_instruments_account_id', 'payment_instruments', ['account_id'])
    op.create_index('ix_payment_instruments_provider_instrument_id', 'payment_instruments', ['provider_instrument_id'], unique=True)
    # At most one default card per account
    op.create_index(
        'uq_payment_instruments_one_default',
        'payment_instruments',
        ['account_id'],
        unique=True,
        postgresql_where=sa.text('is_default'),
        sqlite_where=sa.text('is_default = 1'),
    )

    op.create_table(
        'subscriptions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('provider_subscription_id', sa.String(length=64), nullable=False),
        sa.Column('provider_customer_id', sa.String(length=64), nullable=False),
        sa.Column('provider_instrument_id', sa.String(length=64), nullable=True),
        sa.Column('plan_key', sa.String(length=32), nullable=False),
        sa.Column('status', sa.String(length=32), nullable=False, server_default=sa.text("'incomplete'")),
        sa.Column('trial_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('trial_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancel_at_period_end', sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column('canceled_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('provider_event_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='RESTRICT'),
        sa.UniqueConstraint('account_id', name='uq_subscriptions_account_id'),
    )
    op.create_index('ix_subscriptions_account_id', 'subscriptions', ['account_id'])
    op.create_index('ix_subscriptions_provider_subscription_id', 'subscriptions', ['provider_subscription_id'], unique=True)
    op.create_index('ix_subscriptions_provider_customer_id', 'subscriptions', ['provider_customer_id'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_current_period_end', 'subscriptions', ['current_period_end'])

    op.create_table(
        'payment_audit_log',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=True),
        sa.Column('provider_event_id', sa.String(length=255), nullable=False),
        sa.Column('event_type', sa.String(length=80), nullable=False),
        sa.Column('provider_customer_id', sa.String(length=64), nullable=True),
        sa.Column('provider_subscription_id', sa.String(length=64), nullable=True),
        sa.Column('provider_invoice_id', sa.String(length=64), nullable=True),
        sa.Column('provider_payment_intent_id', sa.String(length=64), nullable=True),
        sa.Column('amount_cents', sa.Integer(), nullable=True),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('description', sa.String(length=255), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_payment_audit_log_account_id', 'payment_audit_log', ['account_id'])
    op.create_index('ix_payment_audit_log_provider_event_id', 'payment_audit_log', ['provider_event_id'], unique=True)
    op.create_index('ix_payment_audit_log_event_type', 'payment_audit_log', ['event_type'])
    op.create_index('ix_payment_audit_log_provider_subscription_id', 'payment_audit_log', ['provider_subscription_id'])

    op.create_table(
        'account_actions',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('action_type', sa.String(length=40), nullable=False),
        sa.Column('reason', sa.String(length=255), nullable=True),
        sa.Column('performed_by', sa.Integer(), nullable=True),
        sa.Column('expires_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['performed_by'], ['accounts.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_account_actions_account_id', 'account_actions', ['account_id'])
    op.create_index('ix_account_actions_action_type', 'account_actions', ['action_type'])
    op.create_index('ix_account_actions_created_at', 'account_actions', ['created_at'])

    op.create_table(
        'refunds',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('account_id', sa.Integer(), nullable=False),
        sa.Column('order_id', sa.String(length=64), nullable=True),
        sa.Column('subscription_ref', sa.String(length=64), nullable=True),
        sa.Column('provider_refund_id', sa.String(length=64), nullable=False),
        sa.Column('provider_payment_intent_id', sa.String(length=64), nullable=False),
        sa.Column('amount_cents', sa.Integer(), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('reason', sa.String(length=64), nullable=True),
        sa.Column('status', sa.String(length=32), nullable=False),
        sa.Column('notes', sa.String(length=500), nullable=True),
        sa.Column('requested_by', sa.Integer(), nullable=True),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column('updated_at', sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(['account_id'], ['accounts.id'], ondelete='RESTRICT'),
        sa.ForeignKeyConstraint(['requested_by'], ['accounts.id'], ondelete='SET NULL'),
    )
    op.create_index('ix_refunds_account_id', 'refunds', ['account_id'])
    op.create_index('ix_refunds_provider_refund_id', 'refunds', ['provider_refund_id'], unique=True)
    op.create_index('ix_refunds_provider_payment_intent_id', 'refunds', ['provider_payment_intent_id'])

    op.create_table(
        'webhook_deliveries',
        sa.Column('id', sa.Integer(), primary_key=True),
        sa.Column('provider_event_id', sa.String(length=255), nullable=False),
        sa.Column('type', sa.String(length=80), nullable=False),
        sa.Column('signature_valid', sa.Boolean(), nullable=False),
        sa.Column('outcome', sa.String(length=16), nullable=False),
        sa.Column('notes', sa.String(length=255), nullable=True),
        sa.Column('payload', sa.JSON(), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index('ix_webhook_deliveries_provider_event_id', 'webhook_deliveries', ['provider_event_id'])
    op.create_index('ix_webhook_deliveries_type', 'webhook_deliveries', ['type'])
    op.create_index('ix_webhook_deliveries_outcome', 'webhook_deliveries', ['outcome'])
    op.create_index('ix_webhook_deliveries_created_at', 'webhook_deliveries', ['created_at'])


def downgrade():
    op.drop_table('webhook_deliveries')
    op.drop_table('refunds')
    op.drop_table('account_actions')
    op.drop_table('payment_audit_log')
    op.drop_table('subscriptions')
    op.drop_index('uq_payment_instruments_one_default', table_name='payment_instruments')
    op.drop_table('payment_instruments')
    op.drop_table('payment_identities')
    op.drop_table('accounts')
