"""
Webhook Event Model

Raw ingestion record of every provider delivery, kept for inspection and replay.
"""

from datetime import datetime
from typing import Optional

from sqlalchemy import Column, DateTime, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field

from app.infrastructure.db.models.base import UUIDMixin, utcnow


class WebhookEventModel(UUIDMixin, table=True):
    """Maps to the 'webhook_events' table in PostgreSQL."""

    __tablename__ = "webhook_events"

    event_type: str = Field(..., max_length=100, index=True)
    event_key: Optional[str] = Field(
        default=None,
        max_length=255,
        index=True,
        description="Natural id of the business event, shared by redeliveries"
    )
    payload: dict = Field(default_factory=dict, sa_column=Column(JSONB, nullable=False, default=dict))
    headers: dict = Field(default_factory=dict, sa_column=Column(JSONB, nullable=False, default=dict))

    status: str = Field(default="pending", max_length=20, index=True)
    received_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
    processed_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    error_message: Optional[str] = Field(default=None, sa_column=Column(Text, nullable=True))
    retry_count: int = Field(default=0, nullable=False)
    last_retry_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
