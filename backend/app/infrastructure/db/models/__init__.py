"""
SQLModel ORM Models for FinTrack Billing

Exports all database models for Alembic autogenerate and application use.
Import models here to register them with SQLModel.metadata.
"""

from app.infrastructure.db.models.base import (
    TimestampMixin,
    UUIDMixin,
)
from app.infrastructure.db.models.customer import CustomerModel
from app.infrastructure.db.models.subscription import SubscriptionModel
from app.infrastructure.db.models.order import OrderModel
from app.infrastructure.db.models.subscription_event import SubscriptionEventModel
from app.infrastructure.db.models.webhook_event import WebhookEventModel
from app.infrastructure.db.models.webhook_log import WebhookLogModel


__all__ = [
    # Base
    "TimestampMixin",
    "UUIDMixin",
    # Billing
    "CustomerModel",
    "SubscriptionModel",
    "OrderModel",
    "SubscriptionEventModel",
    "WebhookEventModel",
    "WebhookLogModel",
]
