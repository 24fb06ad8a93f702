"""
Webhook Log Model

Step-by-step processing log of a single webhook delivery.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Column, DateTime, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field

from app.infrastructure.db.models.base import UUIDMixin, utcnow


class WebhookLogModel(UUIDMixin, table=True):
    """Maps to the 'webhook_logs' table in PostgreSQL."""

    __tablename__ = "webhook_logs"

    webhook_event_id: UUID = Field(
        foreign_key="webhook_events.id",
        index=True,
        nullable=False,
    )
    step: str = Field(..., sa_column=Column(Text, nullable=False))
    level: str = Field(default="info", max_length=10)
    payload: dict = Field(default_factory=dict, sa_column=Column(JSONB, nullable=False, default=dict))
    error: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))

    timestamp: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
