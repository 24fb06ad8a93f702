"""
Repository Layer for FinTrack Billing

Exports the billing storage implementations.
"""

from app.infrastructure.db.repositories.billing_repository import (
    SqlBillingStorage,
    sql_billing_unit_of_work,
)
from app.infrastructure.db.repositories.webhook_event_repository import (
    WebhookEventRepository,
)
from app.infrastructure.db.repositories.memory_billing_storage import (
    InMemoryBillingStorage,
)


__all__ = [
    "SqlBillingStorage",
    "sql_billing_unit_of_work",
    "WebhookEventRepository",
    "InMemoryBillingStorage",
]
