"""
Subscription Event Model

Append-only audit log of applied billing reconciliations.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Column, DateTime, String, Text
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field

from app.infrastructure.db.models.base import UUIDMixin, utcnow


class SubscriptionEventModel(UUIDMixin, table=True):
    """Maps to the 'subscription_events' table in PostgreSQL."""

    __tablename__ = "subscription_events"

    subscription_id: Optional[UUID] = Field(
        default=None,
        foreign_key="subscriptions.id",
        index=True,
        description="Subscription the entry refers to, if any"
    )
    client_id: Optional[UUID] = Field(
        default=None,
        foreign_key="users.id",
        index=True,
        description="Customer the entry refers to, if any"
    )

    type: str = Field(
        ...,
        max_length=50,
        sa_column=Column(String(50), nullable=False, index=True),
    )
    provider: str = Field(default="caktos", max_length=20)
    severity: str = Field(default="info", max_length=10)
    message: str = Field(..., sa_column=Column(Text, nullable=False))
    payload: dict = Field(default_factory=dict, sa_column=Column(JSONB, nullable=False, default=dict))
    origin: str = Field(default="webhook", max_length=20)

    created_at: datetime = Field(
        default_factory=utcnow,
        sa_column=Column(DateTime(timezone=True), nullable=False, index=True),
    )
