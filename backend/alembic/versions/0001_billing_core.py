"""Billing core tables

Revision ID: 0001_billing_core
Revises:
Create Date: 2026-10-19

Customers, subscriptions, orders, the subscription audit log and raw
webhook ingestion records.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '0001_billing_core'
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Create billing tables."""

    op.create_table(
        'users',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('email', sa.String(320), nullable=False),
        sa.Column('first_name', sa.String(255)),
        sa.Column('last_name', sa.String(255)),
        sa.Column('phone', sa.String(50)),
        sa.Column('whatsapp_number', sa.String(50)),
        sa.Column('role', sa.String(20), server_default='user', nullable=False),
        sa.Column('status', sa.String(30), server_default='authenticated', nullable=False),
        sa.Column('billing_status', sa.String(20), server_default='none', nullable=False),
        sa.Column('metadata', JSONB, server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_users_email', 'users', ['email'], unique=True)
    op.create_index('ix_users_billing_status', 'users', ['billing_status'])

    op.create_table(
        'subscriptions',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('user_id', UUID(as_uuid=True), sa.ForeignKey('users.id'), nullable=False),

        # Provider natural key
        sa.Column('provider', sa.String(20), server_default='caktos', nullable=False),
        sa.Column('provider_subscription_id', sa.String(255), nullable=False),

        # Plan details
        sa.Column('plan_name', sa.String(255), server_default='Premium', nullable=False),
        sa.Column('price_cents', sa.Integer, server_default='0', nullable=False),
        sa.Column('currency', sa.String(3), server_default='BRL', nullable=False),
        sa.Column('billing_interval', sa.String(10), server_default='month', nullable=False),
        sa.Column('interval', sa.String(10), server_default='monthly', nullable=False),
        sa.Column('status', sa.String(20), server_default='active', nullable=False),

        # Billing period dates
        sa.Column('trial_ends_at', sa.DateTime(timezone=True)),
        sa.Column('current_period_end', sa.DateTime(timezone=True)),

        sa.Column('meta', JSONB, server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.UniqueConstraint(
            'provider',
            'provider_subscription_id',
            name='uq_subscriptions_provider_subscription_id',
        ),
    )
    op.create_index('ix_subscriptions_user_id', 'subscriptions', ['user_id'])
    op.create_index(
        'ix_subscriptions_provider_subscription_id',
        'subscriptions',
        ['provider_subscription_id'],
    )
    op.create_index('ix_subscriptions_status', 'subscriptions', ['status'])

    op.create_table(
        'orders',
        sa.Column('id', sa.String(255), primary_key=True),
        sa.Column(
            'subscription_id',
            UUID(as_uuid=True),
            sa.ForeignKey('subscriptions.id'),
            nullable=False,
        ),
        sa.Column('amount', sa.Integer, server_default='0', nullable=False),
        sa.Column('status', sa.String(20), server_default='failed', nullable=False),
        sa.Column('paid_at', sa.DateTime(timezone=True)),
        sa.Column('due_date', sa.DateTime(timezone=True)),

        # Payment method details
        sa.Column('payment_method', sa.String(50)),
        sa.Column('installments', sa.Integer),
        sa.Column('card_brand', sa.String(50)),
        sa.Column('card_last_digits', sa.String(4)),
        sa.Column('boleto_barcode', sa.String),
        sa.Column('pix_qr_code', sa.String),
        sa.Column('picpay_qr_code', sa.String),

        sa.Column('meta', JSONB, server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('updated_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_orders_subscription_id', 'orders', ['subscription_id'])
    op.create_index('ix_orders_status', 'orders', ['status'])

    op.create_table(
        'subscription_events',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('subscription_id', UUID(as_uuid=True), sa.ForeignKey('subscriptions.id')),
        sa.Column('client_id', UUID(as_uuid=True), sa.ForeignKey('users.id')),
        sa.Column('type', sa.String(50), nullable=False),
        sa.Column('provider', sa.String(20), server_default='caktos', nullable=False),
        sa.Column('severity', sa.String(10), server_default='info', nullable=False),
        sa.Column('message', sa.Text, nullable=False),
        sa.Column('payload', JSONB, server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column('origin', sa.String(20), server_default='webhook', nullable=False),
        sa.Column('created_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_subscription_events_subscription_id', 'subscription_events', ['subscription_id'])
    op.create_index('ix_subscription_events_client_id', 'subscription_events', ['client_id'])
    op.create_index('ix_subscription_events_type', 'subscription_events', ['type'])
    op.create_index('ix_subscription_events_created_at', 'subscription_events', ['created_at'])

    op.create_table(
        'webhook_events',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column('event_type', sa.String(100), nullable=False),
        sa.Column('event_key', sa.String(255)),
        sa.Column('payload', JSONB, server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column('status', sa.String(20), server_default='pending', nullable=False),
        sa.Column('received_at', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column('processed_at', sa.DateTime(timezone=True)),
        sa.Column('error_message', sa.Text),
        sa.Column('retry_count', sa.Integer, server_default='0', nullable=False),
        sa.Column('last_retry_at', sa.DateTime(timezone=True)),
    )
    op.create_index('ix_webhook_events_event_type', 'webhook_events', ['event_type'])
    op.create_index('ix_webhook_events_event_key', 'webhook_events', ['event_key'])
    op.create_index('ix_webhook_events_status', 'webhook_events', ['status'])
    op.create_index('ix_webhook_events_received_at', 'webhook_events', ['received_at'])


def downgrade() -> None:
    """Drop billing tables."""
    op.drop_table('webhook_events')
    op.drop_table('subscription_events')
    op.drop_table('orders')
    op.drop_table('subscriptions')
    op.drop_table('users')
