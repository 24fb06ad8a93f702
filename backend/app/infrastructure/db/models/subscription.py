"""
Subscription Database Model

SQLModel table for subscription data persistence.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Column, DateTime, UniqueConstraint
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field

from app.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class SubscriptionModel(UUIDMixin, TimestampMixin, table=True):
    """
    Subscription table.

    Maps to the 'subscriptions' table in PostgreSQL. The natural key is
    (provider, provider_subscription_id).
    """

    __tablename__ = "subscriptions"
    __table_args__ = (
        UniqueConstraint(
            "provider",
            "provider_subscription_id",
            name="uq_subscriptions_provider_subscription_id",
        ),
    )

    user_id: UUID = Field(foreign_key="users.id", index=True, nullable=False)

    # Provider natural key
    provider: str = Field(default="caktos", max_length=20)
    provider_subscription_id: str = Field(index=True, max_length=255)

    # Plan details
    plan_name: str = Field(default="Premium", max_length=255)
    price_cents: int = Field(default=0)
    currency: str = Field(default="BRL", max_length=3)
    billing_interval: str = Field(default="month", max_length=10)
    interval: str = Field(default="monthly", max_length=10)
    status: str = Field(default="active", max_length=20, index=True)

    # Billing period dates
    trial_ends_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    current_period_end: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    meta: dict = Field(default_factory=dict, sa_column=Column(JSONB, nullable=False, default=dict))
