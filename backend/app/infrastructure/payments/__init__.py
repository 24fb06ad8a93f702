"""
Payments Infrastructure Module

Billing webhook reconciliation: reconcilers, event dispatcher and webhook processor.
"""

from app.infrastructure.payments.audit_log import AuditLog
from app.infrastructure.payments.customer_reconciler import CustomerReconciler
from app.infrastructure.payments.event_dispatcher import (
    WebhookEventDispatcher,
    parse_webhook_payload,
)
from app.infrastructure.payments.locking import KeyedLock
from app.infrastructure.payments.order_ledger import OrderLedger
from app.infrastructure.payments.subscription_reconciler import SubscriptionReconciler
from app.infrastructure.payments.webhook_processor import WebhookProcessor

__all__ = [
    "AuditLog",
    "CustomerReconciler",
    "KeyedLock",
    "OrderLedger",
    "SubscriptionReconciler",
    "WebhookEventDispatcher",
    "WebhookProcessor",
    "parse_webhook_payload",
]
