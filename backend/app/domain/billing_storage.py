"""
Billing Storage Contracts

Abstract persistence interfaces consumed by the reconciliation core.
Follows Dependency Inversion - reconcilers depend on these abstractions,
never on SQLModel sessions or in-memory dicts directly.
"""

from abc import ABC, abstractmethod
from typing import Any, AsyncContextManager, Callable, Dict, Iterable, List, Optional

from app.domain.billing import (
    BillingProvider,
    Customer,
    CustomerCreate,
    CustomerUpdate,
    Order,
    OrderUpsert,
    Subscription,
    SubscriptionCreate,
    SubscriptionEvent,
    SubscriptionEventCreate,
    SubscriptionUpdate,
    WebhookEvent,
    WebhookEventCreate,
    WebhookEventUpdate,
    WebhookLog,
    WebhookLogCreate,
    WebhookStatus,
)


class BillingStorage(ABC):
    """
    Interface for customer, subscription, order and audit persistence.

    Implementations raise ``PersistenceError`` when the backing store fails.
    Update methods raise ``NotFoundError`` when the target row does not exist.
    """

    # Customers

    @abstractmethod
    async def get_user(self, user_id: str) -> Optional[Customer]:
        """Get a customer by internal id."""
        pass

    @abstractmethod
    async def get_user_by_email(self, email: str) -> Optional[Customer]:
        """Get a customer by email (natural key)."""
        pass

    @abstractmethod
    async def create_user(self, data: CustomerCreate) -> Customer:
        """Insert a new customer."""
        pass

    @abstractmethod
    async def update_user(self, user_id: str, data: CustomerUpdate) -> Customer:
        """Write the explicitly set fields of ``data``."""
        pass

    # Subscriptions

    @abstractmethod
    async def find_subscription_by_identifier(
        self,
        identifier: str,
        provider: Optional[BillingProvider] = None,
    ) -> Optional[Subscription]:
        """
        Resolve a subscription by natural key.

        With a provider, matches (provider, provider_subscription_id).
        Without one, matches any provider's provider_subscription_id and
        falls back to the internal id.
        """
        pass

    @abstractmethod
    async def get_subscription_by_id(self, subscription_id: str) -> Optional[Subscription]:
        """Get a subscription by internal id."""
        pass

    @abstractmethod
    async def create_subscription(self, data: SubscriptionCreate) -> Subscription:
        """Insert a new subscription."""
        pass

    @abstractmethod
    async def update_subscription(
        self,
        subscription_id: str,
        data: SubscriptionUpdate,
    ) -> Subscription:
        """Write the explicitly set fields of ``data``."""
        pass

    # Orders

    @abstractmethod
    async def get_order_by_id(self, order_id: str) -> Optional[Order]:
        """Get an order by provider order id."""
        pass

    @abstractmethod
    async def create_order(self, data: OrderUpsert) -> Order:
        """Insert the order or fully overwrite the existing row with the same id."""
        pass

    # Audit log

    @abstractmethod
    async def log_subscription_event(self, data: SubscriptionEventCreate) -> SubscriptionEvent:
        """Append an audit entry. Never updates or deletes."""
        pass


class WebhookEventStore(ABC):
    """Interface for raw webhook ingestion records."""

    @abstractmethod
    async def create_webhook_event(self, data: WebhookEventCreate) -> WebhookEvent:
        pass

    @abstractmethod
    async def get_webhook_event(self, webhook_event_id: str) -> Optional[WebhookEvent]:
        pass

    @abstractmethod
    async def update_webhook_event(
        self,
        webhook_event_id: str,
        data: WebhookEventUpdate,
    ) -> WebhookEvent:
        pass

    @abstractmethod
    async def list_webhook_events(
        self,
        limit: int = 100,
        status: Optional[WebhookStatus] = None,
        event_key: Optional[str] = None,
    ) -> List[WebhookEvent]:
        """Most recently received first."""
        pass

    @abstractmethod
    async def list_failed_webhook_events(
        self,
        max_retries: int,
        limit: int = 100,
    ) -> List[WebhookEvent]:
        """Failed events with ``retry_count < max_retries``, oldest first."""
        pass

    @abstractmethod
    async def group_webhook_events(self, limit: int = 100) -> List[dict]:
        """
        Group deliveries by natural event id.

        Each group: ``event_key``, ``event_type``, ``attempts``, ``last_status``,
        ``last_received_at``, ``webhook_ids`` (newest first). Groups are
        ordered by most recent delivery.
        """
        pass

    @abstractmethod
    async def save_webhook_log(self, data: WebhookLogCreate) -> WebhookLog:
        """Append one processing step to a delivery's log."""
        pass

    @abstractmethod
    async def list_webhook_logs(self, webhook_event_id: str) -> List[WebhookLog]:
        """Processing steps of one delivery, oldest first."""
        pass


def group_webhook_deliveries(events: Iterable[WebhookEvent], limit: int = 100) -> List[Dict[str, Any]]:
    """Fold deliveries (newest first) into per-event_key groups, newest group first."""
    groups: Dict[str, Dict[str, Any]] = {}
    for event in events:
        key = event.event_key or event.id
        group = groups.get(key)
        if group is None:
            if len(groups) >= limit:
                continue
            group = groups[key] = {
                "event_key": key,
                "event_type": event.event_type,
                "attempts": 0,
                "last_status": event.status,
                "last_received_at": event.received_at,
                "webhook_ids": [],
            }
        group["attempts"] += 1
        group["webhook_ids"].append(event.id)
    return list(groups.values())


# Zero-arg factory yielding a storage bound to one unit of work (one event).
BillingUnitOfWork = Callable[[], AsyncContextManager[BillingStorage]]
