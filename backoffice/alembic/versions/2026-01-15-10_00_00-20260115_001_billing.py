"""Create billing, credit and LLM provider tables

Revision ID: 20260115_001_billing
Revises:
Create Date: 2026-01-15 10:00:00.000000

Initial schema:
- tenants, users, plans, plan_limits
- subscriptions, invoices, billing_events, webhook_events
- tenant_credits, credit_transactions, credit_settings, credit_packages
- llm_providers, ai_usage_records
- payment_gateway_settings, execution_logs
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = '20260115_001_billing'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _id() -> sa.Column:
    return sa.Column('id', sa.String(length=36), nullable=False, comment='Primary key')


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column('created_time', sa.DateTime(timezone=True), nullable=False, comment='Created at'),
        sa.Column('updated_time', sa.DateTime(timezone=True), nullable=True, comment='Updated at'),
    ]


def _tenant_fk(nullable: bool = False) -> sa.Column:
    return sa.Column(
        'tenant_id', sa.String(length=36), sa.ForeignKey('tenants.id', ondelete='CASCADE'), nullable=nullable
    )


def _jsonb(name: str, comment: str | None = None) -> sa.Column:
    return sa.Column(name, postgresql.JSONB(astext_type=sa.Text()), nullable=False, comment=comment)


def _money(name: str, comment: str | None = None) -> sa.Column:
    return sa.Column(name, sa.Numeric(14, 4), nullable=False, comment=comment)


def upgrade() -> None:
    """Create billing tables."""
    # -------------------------------------------------------------------------
    # Tenants, users and plans
    # -------------------------------------------------------------------------
    op.create_table(
        'tenants',
        _id(),
        sa.Column('name', sa.String(length=255), nullable=False, comment='Display name'),
        sa.Column('slug', sa.String(length=255), nullable=False, comment='URL-safe identifier'),
        sa.Column('status', sa.String(length=20), nullable=False, comment='active, suspended, cancelled, trial'),
        _jsonb('settings', 'Free-form tenant settings'),
        sa.Column('is_blocked', sa.Boolean(), nullable=False, comment='Blocked for non-payment'),
        sa.Column('blocked_reason', sa.String(length=500), nullable=True),
        sa.Column('blocked_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('billing_customer_id', sa.String(length=255), nullable=True, comment='Customer id on the payment gateway'),
        sa.Column('billing_provider', sa.String(length=20), nullable=False, comment='asaas or stripe'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='Tenant',
    )
    op.create_index('ix_tenants_id', 'tenants', ['id'])
    op.create_index('ix_tenants_slug', 'tenants', ['slug'], unique=True)
    op.create_index('ix_tenants_status', 'tenants', ['status'])
    op.create_index('ix_tenants_is_blocked', 'tenants', ['is_blocked'])

    op.create_table(
        'users',
        _id(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('email', sa.String(length=255), nullable=False),
        _tenant_fk(nullable=True),
        sa.Column('role', sa.String(length=20), nullable=False, comment='admin, owner, agent'),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='User',
    )
    op.create_index('ix_users_id', 'users', ['id'])
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_tenant_id', 'users', ['tenant_id'])

    op.create_table(
        'plans',
        _id(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('slug', sa.String(length=255), nullable=False),
        sa.Column('description', sa.Text(), nullable=True),
        sa.Column('price_monthly', sa.Numeric(10, 2), nullable=False),
        sa.Column('price_yearly', sa.Numeric(10, 2), nullable=False),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        _jsonb('features', 'Feature flags, plus stripe_price_id for Stripe billing'),
        _money('included_credits_brl', 'Plan credits granted each billing period'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='Subscription plan',
    )
    op.create_index('ix_plans_id', 'plans', ['id'])
    op.create_index('ix_plans_slug', 'plans', ['slug'], unique=True)
    op.create_index('ix_plans_is_active', 'plans', ['is_active'])

    op.create_table(
        'plan_limits',
        _id(),
        sa.Column('plan_id', sa.String(length=36), sa.ForeignKey('plans.id', ondelete='CASCADE'), nullable=False),
        sa.Column('limit_key', sa.String(length=100), nullable=False, comment='e.g. users, whatsapp_connections'),
        sa.Column('limit_value', sa.Integer(), nullable=False, comment='-1 unlimited, 0 no access'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('plan_id', 'limit_key', name='uq_plan_limits_plan_key'),
        comment='Plan limits, -1 means unlimited',
    )
    op.create_index('ix_plan_limits_id', 'plan_limits', ['id'])
    op.create_index('ix_plan_limits_plan_id', 'plan_limits', ['plan_id'])

    # -------------------------------------------------------------------------
    # Subscriptions, invoices and gateway events
    # -------------------------------------------------------------------------
    op.create_table(
        'subscriptions',
        _id(),
        _tenant_fk(),
        sa.Column('plan_id', sa.String(length=36), sa.ForeignKey('plans.id'), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, comment='active, past_due, cancelled, trial, paused'),
        sa.Column('payment_provider', sa.String(length=20), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=True, comment='Subscription id on the payment gateway'),
        sa.Column('current_period_start', sa.DateTime(timezone=True), nullable=True),
        sa.Column('current_period_end', sa.DateTime(timezone=True), nullable=True),
        sa.Column('cancelled_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='Tenant subscription',
    )
    op.create_index('ix_subscriptions_id', 'subscriptions', ['id'])
    op.create_index('ix_subscriptions_tenant_id', 'subscriptions', ['tenant_id'])
    op.create_index('ix_subscriptions_plan_id', 'subscriptions', ['plan_id'])
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])
    op.create_index('ix_subscriptions_external_id', 'subscriptions', ['external_id'])
    op.create_index('ix_subscriptions_current_period_end', 'subscriptions', ['current_period_end'])

    op.create_table(
        'invoices',
        _id(),
        _tenant_fk(),
        sa.Column('amount', sa.Numeric(12, 2), nullable=False),
        sa.Column(
            'subscription_id',
            sa.String(length=36),
            sa.ForeignKey('subscriptions.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('external_id', sa.String(length=255), nullable=True, comment='Payment/invoice id on the gateway'),
        sa.Column('currency', sa.String(length=3), nullable=False),
        sa.Column('status', sa.String(length=20), nullable=False, comment='pending, paid, failed, refunded, cancelled'),
        sa.Column('due_date', sa.DateTime(timezone=True), nullable=True),
        sa.Column('paid_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('invoice_url', sa.String(length=1024), nullable=True),
        _jsonb('reminder_sent_at', 'Reminder key -> ISO timestamp'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('external_id'),
        comment='Invoice',
    )
    op.create_index('ix_invoices_id', 'invoices', ['id'])
    op.create_index('ix_invoices_tenant_id', 'invoices', ['tenant_id'])
    op.create_index('ix_invoices_subscription_id', 'invoices', ['subscription_id'])
    op.create_index('ix_invoices_status', 'invoices', ['status'])

    op.create_table(
        'billing_events',
        _id(),
        _tenant_fk(),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('provider', sa.String(length=20), nullable=False),
        sa.Column('external_id', sa.String(length=255), nullable=True),
        _jsonb('payload'),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('idempotency_key', sa.String(length=255), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='Billing event applied to a tenant',
    )
    op.create_index('ix_billing_events_id', 'billing_events', ['id'])
    op.create_index('ix_billing_events_tenant_id', 'billing_events', ['tenant_id'])
    op.create_index('ix_billing_events_idempotency_key', 'billing_events', ['idempotency_key'])

    op.create_table(
        'webhook_events',
        _id(),
        sa.Column('provider', sa.String(length=20), nullable=False),
        sa.Column('event_type', sa.String(length=100), nullable=False),
        sa.Column('idempotency_key', sa.String(length=255), nullable=False, comment='provider_event_reference'),
        sa.Column('external_id', sa.String(length=255), nullable=True),
        _jsonb('payload'),
        sa.Column('signature', sa.String(length=1024), nullable=True),
        sa.Column('signature_valid', sa.Boolean(), nullable=False),
        sa.Column('processed', sa.Boolean(), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True), nullable=True),
        sa.Column('attempts', sa.Integer(), nullable=False),
        sa.Column('error', sa.Text(), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('idempotency_key'),
        comment='Raw payment gateway webhook event',
    )
    op.create_index('ix_webhook_events_id', 'webhook_events', ['id'])
    op.create_index('ix_webhook_events_provider', 'webhook_events', ['provider'])
    op.create_index('ix_webhook_events_event_type', 'webhook_events', ['event_type'])
    op.create_index('ix_webhook_events_processed', 'webhook_events', ['processed'])

    # -------------------------------------------------------------------------
    # Credit ledger
    # -------------------------------------------------------------------------
    op.create_table(
        'tenant_credits',
        _id(),
        _tenant_fk(),
        _money('balance_brl', 'plan_balance_brl + addon_balance_brl'),
        _money('total_purchased_brl'),
        _money('total_consumed_brl'),
        _money('plan_balance_brl', 'Resets every billing period'),
        _money('addon_balance_brl', 'Purchased, may go negative'),
        _money('plan_credits_granted_brl'),
        sa.Column('plan_credits_reset_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='Tenant credit account',
    )
    op.create_index('ix_tenant_credits_id', 'tenant_credits', ['id'])
    op.create_index('ix_tenant_credits_tenant_id', 'tenant_credits', ['tenant_id'], unique=True)

    op.create_table(
        'credit_transactions',
        _id(),
        _tenant_fk(),
        sa.Column(
            'type', sa.String(length=30), nullable=False,
            comment='purchase, deduction, manual_credit, refund, plan_replenishment',
        ),
        _money('amount_brl', 'Negative for deductions and refunds'),
        _money('balance_after_brl'),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('reference_type', sa.String(length=100), nullable=True),
        sa.Column('reference_id', sa.String(length=255), nullable=True),
        _jsonb('metadata'),
        sa.Column('credit_source', sa.String(length=20), nullable=True, comment='plan, addon, plan+addon'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='Credit ledger entry',
    )
    op.create_index('ix_credit_transactions_id', 'credit_transactions', ['id'])
    op.create_index('ix_credit_transactions_tenant_id', 'credit_transactions', ['tenant_id'])
    op.create_index('ix_credit_transactions_type', 'credit_transactions', ['type'])
    op.create_index('ix_credit_transactions_reference_id', 'credit_transactions', ['reference_id'])

    op.create_table(
        'credit_settings',
        _id(),
        sa.Column('markup_type', sa.String(length=20), nullable=False),
        sa.Column('markup_value', sa.Numeric(10, 4), nullable=False),
        sa.Column('usd_to_brl_rate', sa.Numeric(10, 4), nullable=False),
        _money('min_balance_warning_brl'),
        sa.Column('block_on_zero_balance', sa.Boolean(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='Credit pricing settings (single row)',
    )
    op.create_index('ix_credit_settings_id', 'credit_settings', ['id'])

    op.create_table(
        'credit_packages',
        _id(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('price_brl', sa.Numeric(10, 2), nullable=False),
        _money('credit_amount_brl'),
        sa.Column('description', sa.String(length=500), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('sort_order', sa.Integer(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='Credit package',
    )
    op.create_index('ix_credit_packages_id', 'credit_packages', ['id'])
    op.create_index('ix_credit_packages_is_active', 'credit_packages', ['is_active'])

    # -------------------------------------------------------------------------
    # LLM providers and usage
    # -------------------------------------------------------------------------
    op.create_table(
        'llm_providers',
        _id(),
        sa.Column('name', sa.String(length=255), nullable=False),
        sa.Column('provider_type', sa.String(length=50), nullable=False, comment='anthropic, openai, groq, ...'),
        sa.Column('model', sa.String(length=255), nullable=False),
        sa.Column('api_key_encrypted', sa.Text(), nullable=False, comment='Fernet token'),
        _tenant_fk(nullable=True),
        sa.Column('is_default', sa.Boolean(), nullable=False),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('priority', sa.Integer(), nullable=False, comment='Lower is preferred in failover'),
        sa.Column('monthly_budget_usd', sa.Numeric(12, 2), nullable=True),
        sa.Column('alert_threshold_pct', sa.Integer(), nullable=False),
        sa.Column('last_validated_at', sa.DateTime(timezone=True), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('tenant_id', 'name', name='uq_llm_providers_tenant_name'),
        comment='LLM provider credentials and budgets, tenant_id NULL for global providers',
    )
    op.create_index('ix_llm_providers_id', 'llm_providers', ['id'])
    op.create_index('ix_llm_providers_tenant_id', 'llm_providers', ['tenant_id'])

    op.create_table(
        'ai_usage_records',
        _id(),
        _tenant_fk(),
        sa.Column('model', sa.String(length=255), nullable=False),
        sa.Column(
            'llm_provider_id',
            sa.String(length=36),
            sa.ForeignKey('llm_providers.id', ondelete='SET NULL'),
            nullable=True,
        ),
        sa.Column('input_tokens', sa.Integer(), nullable=False),
        sa.Column('output_tokens', sa.Integer(), nullable=False),
        sa.Column('cost_usd', sa.Numeric(14, 6), nullable=False),
        sa.Column('reference_id', sa.String(length=255), nullable=True, comment='AI decision id'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='Per-call LLM usage, feeds provider budgets',
    )
    op.create_index('ix_ai_usage_records_id', 'ai_usage_records', ['id'])
    op.create_index('ix_ai_usage_records_tenant_id', 'ai_usage_records', ['tenant_id'])
    op.create_index('ix_ai_usage_records_provider_created', 'ai_usage_records', ['llm_provider_id', 'created_time'])

    # -------------------------------------------------------------------------
    # Gateway credentials and execution log
    # -------------------------------------------------------------------------
    op.create_table(
        'payment_gateway_settings',
        _id(),
        sa.Column('provider', sa.String(length=20), nullable=False, comment='asaas or stripe'),
        sa.Column('api_key_encrypted', sa.Text(), nullable=True),
        sa.Column('webhook_secret_encrypted', sa.Text(), nullable=True),
        sa.Column('is_active', sa.Boolean(), nullable=False),
        sa.Column('sandbox', sa.Boolean(), nullable=False),
        _jsonb('metadata'),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        sa.UniqueConstraint('provider'),
        comment='Payment gateway credentials',
    )
    op.create_index('ix_payment_gateway_settings_id', 'payment_gateway_settings', ['id'])

    op.create_table(
        'execution_logs',
        _id(),
        sa.Column('log_type', sa.String(length=30), nullable=False),
        sa.Column('source', sa.String(length=100), nullable=False),
        sa.Column('action', sa.String(length=255), nullable=False),
        _jsonb('details'),
        sa.Column('severity', sa.String(length=20), nullable=False),
        sa.Column('tenant_id', sa.String(length=36), nullable=True),
        sa.Column('user_id', sa.String(length=36), nullable=True),
        sa.Column('ip_address', sa.String(length=45), nullable=True),
        sa.Column('user_agent', sa.String(length=500), nullable=True),
        sa.Column('correlation_id', sa.String(length=64), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint('id'),
        comment='Business execution log',
    )
    op.create_index('ix_execution_logs_id', 'execution_logs', ['id'])
    op.create_index('ix_execution_logs_log_type', 'execution_logs', ['log_type'])
    op.create_index('ix_execution_logs_action', 'execution_logs', ['action'])
    op.create_index('ix_execution_logs_severity', 'execution_logs', ['severity'])
    op.create_index('ix_execution_logs_tenant_id', 'execution_logs', ['tenant_id'])
    op.create_index('ix_execution_logs_correlation_id', 'execution_logs', ['correlation_id'])


def downgrade() -> None:
    """Drop billing tables in reverse order."""
    op.drop_table('execution_logs')
    op.drop_table('payment_gateway_settings')
    op.drop_table('ai_usage_records')
    op.drop_table('llm_providers')
    op.drop_table('credit_packages')
    op.drop_table('credit_settings')
    op.drop_table('credit_transactions')
    op.drop_table('tenant_credits')
    op.drop_table('webhook_events')
    op.drop_table('billing_events')
    op.drop_table('invoices')
    op.drop_table('subscriptions')
    op.drop_table('plan_limits')
    op.drop_table('plans')
    op.drop_table('users')
    op.drop_table('tenants')
