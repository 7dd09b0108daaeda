"""add_billing_core_tables

Revision ID: 3f9b2c71d0a4
Revises:
Create Date: 2026-10-17 09:12:03.118204

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '3f9b2c71d0a4'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Upgrade schema."""
    op.create_table('plans',
        sa.Column('id', sa.BIGINT(), autoincrement=True, nullable=False),
        sa.Column('name', sa.VARCHAR(length=255), nullable=False),
        sa.Column('price', sa.INTEGER(), nullable=False),
        sa.Column('billing_cycle', sa.VARCHAR(length=20), nullable=False),
        sa.Column('usage_limits', sa.JSON(), nullable=False),
        sa.Column('metric_ids', sa.JSON(), nullable=False),
        sa.Column('active', sa.BOOLEAN(), server_default=sa.text('true'), nullable=False),
        sa.Column('created_at', postgresql.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('plans_pkey'))
    )
    op.create_index(op.f('ix_plans_id'), 'plans', ['id'], unique=False)

    op.create_table('usage_metrics',
        sa.Column('id', sa.BIGINT(), autoincrement=True, nullable=False),
        sa.Column('name', sa.VARCHAR(length=100), nullable=False),
        sa.Column('aggregation_type', sa.VARCHAR(length=20), nullable=False),
        sa.Column('created_at', postgresql.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('usage_metrics_pkey')),
        sa.UniqueConstraint('name', name=op.f('usage_metrics_name_key'))
    )
    op.create_index(op.f('ix_usage_metrics_id'), 'usage_metrics', ['id'], unique=False)

    op.create_table('usage_tiers',
        sa.Column('id', sa.BIGINT(), autoincrement=True, nullable=False),
        sa.Column('metric_id', sa.BIGINT(), nullable=False),
        sa.Column('min_value', sa.INTEGER(), nullable=False),
        sa.Column('max_value', sa.INTEGER(), nullable=True),
        sa.Column('kind', sa.VARCHAR(length=20), nullable=False),
        sa.Column('unit_price', sa.INTEGER(), nullable=True),
        sa.Column('flat_price', sa.INTEGER(), nullable=True),
        sa.Column('package_size', sa.INTEGER(), nullable=True),
        sa.Column('package_price', sa.INTEGER(), nullable=True),
        sa.ForeignKeyConstraint(['metric_id'], ['usage_metrics.id'], name=op.f('usage_tiers_metric_id_fkey'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('usage_tiers_pkey'))
    )
    op.create_index(op.f('ix_usage_tiers_id'), 'usage_tiers', ['id'], unique=False)
    op.create_index(op.f('ix_usage_tiers_metric_id'), 'usage_tiers', ['metric_id'], unique=False)
    op.create_index('idx_usage_tier_metric_min', 'usage_tiers', ['metric_id', 'min_value'], unique=False)

    op.create_table('billing_subscriptions',
        sa.Column('id', sa.BIGINT(), autoincrement=True, nullable=False),
        sa.Column('owner_id', sa.BIGINT(), nullable=False),
        sa.Column('plan_id', sa.BIGINT(), nullable=False),
        sa.Column('status', sa.VARCHAR(length=50), nullable=False),
        sa.Column('current_period_start', postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('current_period_end', postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('payment_method_id', sa.VARCHAR(length=255), nullable=True),
        sa.Column('fallback_payment_method_id', sa.VARCHAR(length=255), nullable=True),
        sa.Column('external_customer_id', sa.VARCHAR(length=255), nullable=True),
        sa.Column('tax_jurisdiction', sa.VARCHAR(length=50), nullable=True),
        sa.Column('failed_payment_count', sa.INTEGER(), server_default='0', nullable=False),
        sa.Column('last_failure_reason', sa.VARCHAR(length=50), nullable=True),
        sa.Column('failed_payment_method_id', sa.VARCHAR(length=255), nullable=True),
        sa.Column('cancel_at_period_end', sa.BOOLEAN(), server_default=sa.text('false'), nullable=False),
        sa.Column('cancelled_at', postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.Column('version', sa.INTEGER(), server_default='1', nullable=False),
        sa.Column('created_at', postgresql.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', postgresql.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['plan_id'], ['plans.id'], name=op.f('billing_subscriptions_plan_id_fkey')),
        sa.PrimaryKeyConstraint('id', name=op.f('billing_subscriptions_pkey'))
    )
    op.create_index(op.f('ix_billing_subscriptions_id'), 'billing_subscriptions', ['id'], unique=False)
    op.create_index(op.f('ix_billing_subscriptions_owner_id'), 'billing_subscriptions', ['owner_id'], unique=False)
    op.create_index(op.f('ix_billing_subscriptions_plan_id'), 'billing_subscriptions', ['plan_id'], unique=False)
    op.create_index(op.f('ix_billing_subscriptions_status'), 'billing_subscriptions', ['status'], unique=False)
    op.create_index(op.f('ix_billing_subscriptions_external_customer_id'), 'billing_subscriptions', ['external_customer_id'], unique=False)
    op.create_index('idx_billing_subscription_status_period_end', 'billing_subscriptions', ['status', 'current_period_end'], unique=False)

    op.create_table('usage_records',
        sa.Column('id', sa.BIGINT(), autoincrement=True, nullable=False),
        sa.Column('subscription_id', sa.BIGINT(), nullable=False),
        sa.Column('metric_id', sa.BIGINT(), nullable=False),
        sa.Column('value', sa.NUMERIC(precision=20, scale=6), nullable=False),
        sa.Column('recorded_at', postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('metadata', sa.JSON(), nullable=False),
        sa.Column('created_at', postgresql.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['subscription_id'], ['billing_subscriptions.id'], name=op.f('usage_records_subscription_id_fkey'), ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['metric_id'], ['usage_metrics.id'], name=op.f('usage_records_metric_id_fkey'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('usage_records_pkey'))
    )
    op.create_index(op.f('ix_usage_records_id'), 'usage_records', ['id'], unique=False)
    op.create_index(op.f('ix_usage_records_subscription_id'), 'usage_records', ['subscription_id'], unique=False)
    op.create_index(op.f('ix_usage_records_metric_id'), 'usage_records', ['metric_id'], unique=False)
    op.create_index('idx_usage_record_sub_metric_time', 'usage_records', ['subscription_id', 'metric_id', 'recorded_at'], unique=False)

    op.create_table('invoices',
        sa.Column('id', sa.BIGINT(), autoincrement=True, nullable=False),
        sa.Column('subscription_id', sa.BIGINT(), nullable=False),
        sa.Column('period_key', sa.VARCHAR(length=255), nullable=False),
        sa.Column('period_start', postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('period_end', postgresql.TIMESTAMP(timezone=True), nullable=False),
        sa.Column('items', sa.JSON(), nullable=False),
        sa.Column('subtotal', sa.INTEGER(), nullable=False),
        sa.Column('tax', sa.INTEGER(), nullable=False),
        sa.Column('total', sa.INTEGER(), nullable=False),
        sa.Column('amount_due', sa.INTEGER(), nullable=False),
        sa.Column('status', sa.VARCHAR(length=20), nullable=False),
        sa.Column('external_invoice_id', sa.VARCHAR(length=255), nullable=True),
        sa.Column('created_at', postgresql.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('paid_at', postgresql.TIMESTAMP(timezone=True), nullable=True),
        sa.ForeignKeyConstraint(['subscription_id'], ['billing_subscriptions.id'], name=op.f('invoices_subscription_id_fkey'), ondelete='CASCADE'),
        sa.PrimaryKeyConstraint('id', name=op.f('invoices_pkey'))
    )
    op.create_index(op.f('ix_invoices_id'), 'invoices', ['id'], unique=False)
    op.create_index(op.f('ix_invoices_subscription_id'), 'invoices', ['subscription_id'], unique=False)
    op.create_index(op.f('ix_invoices_status'), 'invoices', ['status'], unique=False)
    op.create_index(op.f('ix_invoices_external_invoice_id'), 'invoices', ['external_invoice_id'], unique=False)
    # One live invoice per period; voided ones may be re-issued
    op.create_index('uq_invoice_period_key_active', 'invoices', ['period_key'], unique=True, postgresql_where=sa.text("status != 'void'"))

    op.create_table('one_time_charges',
        sa.Column('id', sa.BIGINT(), autoincrement=True, nullable=False),
        sa.Column('subscription_id', sa.BIGINT(), nullable=False),
        sa.Column('description', sa.VARCHAR(length=255), nullable=False),
        sa.Column('amount', sa.INTEGER(), nullable=False),
        sa.Column('invoice_id', sa.BIGINT(), nullable=True),
        sa.Column('created_at', postgresql.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['subscription_id'], ['billing_subscriptions.id'], name=op.f('one_time_charges_subscription_id_fkey'), ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], name=op.f('one_time_charges_invoice_id_fkey'), ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name=op.f('one_time_charges_pkey'))
    )
    op.create_index(op.f('ix_one_time_charges_id'), 'one_time_charges', ['id'], unique=False)
    op.create_index(op.f('ix_one_time_charges_subscription_id'), 'one_time_charges', ['subscription_id'], unique=False)
    op.create_index('idx_one_time_charge_pending', 'one_time_charges', ['subscription_id', 'invoice_id'], unique=False)

    op.create_table('billing_transactions',
        sa.Column('id', sa.BIGINT(), autoincrement=True, nullable=False),
        sa.Column('subscription_id', sa.BIGINT(), nullable=False),
        sa.Column('amount', sa.INTEGER(), nullable=False),
        sa.Column('status', sa.VARCHAR(length=20), nullable=False),
        sa.Column('kind', sa.VARCHAR(length=30), nullable=False),
        sa.Column('idempotency_key', sa.VARCHAR(length=255), nullable=False),
        sa.Column('period_key', sa.VARCHAR(length=255), nullable=True),
        sa.Column('related_transaction_id', sa.BIGINT(), nullable=True),
        sa.Column('invoice_id', sa.BIGINT(), nullable=True),
        sa.Column('external_id', sa.VARCHAR(length=255), nullable=True),
        sa.Column('payment_method_id', sa.VARCHAR(length=255), nullable=True),
        sa.Column('attempt_number', sa.INTEGER(), nullable=False),
        sa.Column('failure_reason', sa.VARCHAR(length=50), nullable=True),
        sa.Column('created_at', postgresql.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.Column('updated_at', postgresql.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.ForeignKeyConstraint(['subscription_id'], ['billing_subscriptions.id'], name=op.f('billing_transactions_subscription_id_fkey'), ondelete='CASCADE'),
        sa.ForeignKeyConstraint(['related_transaction_id'], ['billing_transactions.id'], name=op.f('billing_transactions_related_transaction_id_fkey'), ondelete='SET NULL'),
        sa.ForeignKeyConstraint(['invoice_id'], ['invoices.id'], name=op.f('billing_transactions_invoice_id_fkey'), ondelete='SET NULL'),
        sa.PrimaryKeyConstraint('id', name=op.f('billing_transactions_pkey')),
        sa.UniqueConstraint('idempotency_key', name=op.f('billing_transactions_idempotency_key_key'))
    )
    op.create_index(op.f('ix_billing_transactions_id'), 'billing_transactions', ['id'], unique=False)
    op.create_index(op.f('ix_billing_transactions_subscription_id'), 'billing_transactions', ['subscription_id'], unique=False)
    op.create_index(op.f('ix_billing_transactions_external_id'), 'billing_transactions', ['external_id'], unique=False)
    op.create_index('idx_transaction_sub_period_status', 'billing_transactions', ['subscription_id', 'period_key', 'status'], unique=False)

    op.create_table('processed_webhook_events',
        sa.Column('id', sa.BIGINT(), autoincrement=True, nullable=False),
        sa.Column('external_id', sa.VARCHAR(length=255), nullable=False),
        sa.Column('event_type', sa.VARCHAR(length=100), nullable=False),
        sa.Column('received_at', postgresql.TIMESTAMP(timezone=True), server_default=sa.text('now()'), nullable=True),
        sa.PrimaryKeyConstraint('id', name=op.f('processed_webhook_events_pkey')),
        sa.UniqueConstraint('external_id', name=op.f('processed_webhook_events_external_id_key'))
    )
    op.create_index(op.f('ix_processed_webhook_events_id'), 'processed_webhook_events', ['id'], unique=False)


def downgrade() -> None:
    """Downgrade schema."""
    op.drop_index(op.f('ix_processed_webhook_events_id'), table_name='processed_webhook_events')
    op.drop_table('processed_webhook_events')

    op.drop_index('idx_transaction_sub_period_status', table_name='billing_transactions')
    op.drop_index(op.f('ix_billing_transactions_external_id'), table_name='billing_transactions')
    op.drop_index(op.f('ix_billing_transactions_subscription_id'), table_name='billing_transactions')
    op.drop_index(op.f('ix_billing_transactions_id'), table_name='billing_transactions')
    op.drop_table('billing_transactions')

    op.drop_index('idx_one_time_charge_pending', table_name='one_time_charges')
    op.drop_index(op.f('ix_one_time_charges_subscription_id'), table_name='one_time_charges')
    op.drop_index(op.f('ix_one_time_charges_id'), table_name='one_time_charges')
    op.drop_table('one_time_charges')

    op.drop_index('uq_invoice_period_key_active', table_name='invoices')
    op.drop_index(op.f('ix_invoices_external_invoice_id'), table_name='invoices')
    op.drop_index(op.f('ix_invoices_status'), table_name='invoices')
    op.drop_index(op.f('ix_invoices_subscription_id'), table_name='invoices')
    op.drop_index(op.f('ix_invoices_id'), table_name='invoices')
    op.drop_table('invoices')

    op.drop_index('idx_usage_record_sub_metric_time', table_name='usage_records')
    op.drop_index(op.f('ix_usage_records_metric_id'), table_name='usage_records')
    op.drop_index(op.f('ix_usage_records_subscription_id'), table_name='usage_records')
    op.drop_index(op.f('ix_usage_records_id'), table_name='usage_records')
    op.drop_table('usage_records')

    op.drop_index('idx_billing_subscription_status_period_end', table_name='billing_subscriptions')
    op.drop_index(op.f('ix_billing_subscriptions_external_customer_id'), table_name='billing_subscriptions')
    op.drop_index(op.f('ix_billing_subscriptions_status'), table_name='billing_subscriptions')
    op.drop_index(op.f('ix_billing_subscriptions_plan_id'), table_name='billing_subscriptions')
    op.drop_index(op.f('ix_billing_subscriptions_owner_id'), table_name='billing_subscriptions')
    op.drop_index(op.f('ix_billing_subscriptions_id'), table_name='billing_subscriptions')
    op.drop_table('billing_subscriptions')

    op.drop_index('idx_usage_tier_metric_min', table_name='usage_tiers')
    op.drop_index(op.f('ix_usage_tiers_metric_id'), table_name='usage_tiers')
    op.drop_index(op.f('ix_usage_tiers_id'), table_name='usage_tiers')
    op.drop_table('usage_tiers')

    op.drop_index(op.f('ix_usage_metrics_id'), table_name='usage_metrics')
    op.drop_table('usage_metrics')

    op.drop_index(op.f('ix_plans_id'), table_name='plans')
    op.drop_table('plans')
