"""Webhook processing logs and request headers

Revision ID: 0002_webhook_logs_and_headers
Revises: 0001_billing_core
Create Date: 2026-10-19

Keeps the request headers of each delivery and a step log per processing run.
"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID


# revision identifiers, used by Alembic.
revision: str = '0002_webhook_logs_and_headers'
down_revision: Union[str, None] = '0001_billing_core'
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    """Add webhook_events.headers and the webhook_logs table."""
    op.add_column(
        'webhook_events',
        sa.Column('headers', JSONB, server_default=sa.text("'{}'::jsonb"), nullable=False),
    )

    op.create_table(
        'webhook_logs',
        sa.Column('id', UUID(as_uuid=True), primary_key=True),
        sa.Column(
            'webhook_event_id',
            UUID(as_uuid=True),
            sa.ForeignKey('webhook_events.id', ondelete='CASCADE'),
            nullable=False,
        ),
        sa.Column('step', sa.Text, nullable=False),
        sa.Column('level', sa.String(10), server_default='info', nullable=False),
        sa.Column('payload', JSONB, server_default=sa.text("'{}'::jsonb"), nullable=False),
        sa.Column('error', sa.Text),
        sa.Column('timestamp', sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    )
    op.create_index('ix_webhook_logs_webhook_event_id', 'webhook_logs', ['webhook_event_id'])
    op.create_index('ix_webhook_logs_timestamp', 'webhook_logs', ['timestamp'])


def downgrade() -> None:
    """Drop the webhook_logs table and webhook_events.headers."""
    op.drop_table('webhook_logs')
    op.drop_column('webhook_events', 'headers')
