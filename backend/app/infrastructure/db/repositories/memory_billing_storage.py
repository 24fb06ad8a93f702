"""
In-Memory Billing Storage

Process-local implementation of both billing storage contracts, selected with
STORAGE_BACKEND=memory and used throughout the test suite.

Writes are applied immediately: a unit of work here has no rollback, so an
event that fails halfway keeps the writes made before the failure.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import AsyncIterator, Dict, List, Optional
from uuid import uuid4

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
from app.domain.billing_storage import (
    BillingStorage,
    WebhookEventStore,
    group_webhook_deliveries,
)
from app.infrastructure.exceptions import NotFoundError


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryBillingStorage(BillingStorage, WebhookEventStore):
    """Dict-backed storage; returned entities are copies of the stored state."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self.users: Dict[str, Customer] = {}
        self.subscriptions: Dict[str, Subscription] = {}
        self.orders: Dict[str, Order] = {}
        self.events: List[SubscriptionEvent] = []
        self.webhook_events: Dict[str, WebhookEvent] = {}
        self.webhook_logs: List[WebhookLog] = []

    @asynccontextmanager
    async def unit_of_work(self) -> AsyncIterator["InMemoryBillingStorage"]:
        yield self

    # =========================================================================
    # Customers
    # =========================================================================

    async def get_user(self, user_id: str) -> Optional[Customer]:
        user = self.users.get(user_id)
        return user.model_copy(deep=True) if user else None

    async def get_user_by_email(self, email: str) -> Optional[Customer]:
        for user in self.users.values():
            if user.email == email:
                return user.model_copy(deep=True)
        return None

    async def create_user(self, data: CustomerCreate) -> Customer:
        async with self._lock:
            now = _utcnow()
            user = Customer(id=str(uuid4()), created_at=now, updated_at=now, **data.model_dump())
            self.users[user.id] = user
            return user.model_copy(deep=True)

    async def update_user(self, user_id: str, data: CustomerUpdate) -> Customer:
        async with self._lock:
            user = self.users.get(user_id)
            if user is None:
                raise NotFoundError(f"users row not found: {user_id}", entity="users", key=user_id)
            changes = data.model_dump(exclude_unset=True)
            if "metadata" in changes and changes["metadata"] is None:
                changes["metadata"] = {}
            updated = user.model_copy(update={**changes, "updated_at": _utcnow()}, deep=True)
            self.users[user_id] = updated
            return updated.model_copy(deep=True)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def find_subscription_by_identifier(
        self,
        identifier: str,
        provider: Optional[BillingProvider] = None,
    ) -> Optional[Subscription]:
        for subscription in sorted(self.subscriptions.values(), key=lambda s: s.created_at):
            if subscription.provider_subscription_id != identifier:
                continue
            if provider is None or subscription.provider == provider:
                return subscription.model_copy(deep=True)
        if provider is None and identifier in self.subscriptions:
            return self.subscriptions[identifier].model_copy(deep=True)
        return None

    async def get_subscription_by_id(self, subscription_id: str) -> Optional[Subscription]:
        subscription = self.subscriptions.get(subscription_id)
        return subscription.model_copy(deep=True) if subscription else None

    async def create_subscription(self, data: SubscriptionCreate) -> Subscription:
        async with self._lock:
            now = _utcnow()
            subscription = Subscription(
                id=str(uuid4()), created_at=now, updated_at=now, **data.model_dump()
            )
            self.subscriptions[subscription.id] = subscription
            return subscription.model_copy(deep=True)

    async def update_subscription(
        self,
        subscription_id: str,
        data: SubscriptionUpdate,
    ) -> Subscription:
        async with self._lock:
            subscription = self.subscriptions.get(subscription_id)
            if subscription is None:
                raise NotFoundError(
                    f"subscriptions row not found: {subscription_id}",
                    entity="subscriptions",
                    key=subscription_id,
                )
            updated = subscription.model_copy(
                update={**data.model_dump(exclude_unset=True), "updated_at": _utcnow()},
                deep=True,
            )
            self.subscriptions[subscription_id] = updated
            return updated.model_copy(deep=True)

    # =========================================================================
    # Orders
    # =========================================================================

    async def get_order_by_id(self, order_id: str) -> Optional[Order]:
        order = self.orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def create_order(self, data: OrderUpsert) -> Order:
        async with self._lock:
            now = _utcnow()
            existing = self.orders.get(data.id)
            order = Order(
                created_at=existing.created_at if existing else now,
                updated_at=now,
                **data.model_dump(),
            )
            self.orders[order.id] = order
            return order.model_copy(deep=True)

    # =========================================================================
    # Audit Log
    # =========================================================================

    async def log_subscription_event(self, data: SubscriptionEventCreate) -> SubscriptionEvent:
        async with self._lock:
            event = SubscriptionEvent(id=str(uuid4()), created_at=_utcnow(), **data.model_dump())
            self.events.append(event)
            return event.model_copy(deep=True)

    # =========================================================================
    # Webhook Events
    # =========================================================================

    async def create_webhook_event(self, data: WebhookEventCreate) -> WebhookEvent:
        async with self._lock:
            webhook = WebhookEvent(id=str(uuid4()), received_at=_utcnow(), **data.model_dump())
            self.webhook_events[webhook.id] = webhook
            return webhook.model_copy(deep=True)

    async def get_webhook_event(self, webhook_event_id: str) -> Optional[WebhookEvent]:
        webhook = self.webhook_events.get(webhook_event_id)
        return webhook.model_copy(deep=True) if webhook else None

    async def update_webhook_event(
        self,
        webhook_event_id: str,
        data: WebhookEventUpdate,
    ) -> WebhookEvent:
        async with self._lock:
            webhook = self.webhook_events.get(webhook_event_id)
            if webhook is None:
                raise NotFoundError(
                    f"Webhook event not found: {webhook_event_id}",
                    entity="webhook_event",
                    key=webhook_event_id,
                )
            updated = webhook.model_copy(update=data.model_dump(exclude_unset=True), deep=True)
            self.webhook_events[webhook_event_id] = updated
            return updated.model_copy(deep=True)

    async def list_webhook_events(
        self,
        limit: int = 100,
        status: Optional[WebhookStatus] = None,
        event_key: Optional[str] = None,
    ) -> List[WebhookEvent]:
        matches = [
            webhook
            for webhook in self._newest_first()
            if (status is None or webhook.status == status)
            and (event_key is None or webhook.event_key == event_key)
        ]
        return [webhook.model_copy(deep=True) for webhook in matches[:limit]]

    async def list_failed_webhook_events(
        self,
        max_retries: int,
        limit: int = 100,
    ) -> List[WebhookEvent]:
        matches = [
            webhook
            for webhook in reversed(self._newest_first())
            if webhook.status == WebhookStatus.FAILED and webhook.retry_count < max_retries
        ]
        return [webhook.model_copy(deep=True) for webhook in matches[:limit]]

    async def group_webhook_events(self, limit: int = 100) -> List[dict]:
        return group_webhook_deliveries(self._newest_first(), limit=limit)

    async def save_webhook_log(self, data: WebhookLogCreate) -> WebhookLog:
        async with self._lock:
            if data.webhook_event_id not in self.webhook_events:
                raise NotFoundError(
                    f"Webhook event not found: {data.webhook_event_id}",
                    entity="webhook_event",
                    key=data.webhook_event_id,
                )
            log = WebhookLog(id=str(uuid4()), timestamp=_utcnow(), **data.model_dump())
            self.webhook_logs.append(log)
            return log.model_copy(deep=True)

    async def list_webhook_logs(self, webhook_event_id: str) -> List[WebhookLog]:
        return [
            log.model_copy(deep=True)
            for log in self.webhook_logs
            if log.webhook_event_id == webhook_event_id
        ]

    def _newest_first(self) -> List[WebhookEvent]:
        # dicts keep insertion order, which breaks ties between equal timestamps
        ordered = list(self.webhook_events.values())
        ordered.reverse()
        return sorted(ordered, key=lambda w: w.received_at, reverse=True)
