"""
Billing Webhook Event Dispatcher

Routes each provider event kind to its reconciliation sequence:
customer -> subscription -> order -> customer billing status -> audit log.

Supported events:
- subscription_created: Create/update customer, subscription and first order
- subscription_updated: Re-sync an existing subscription (and customer)
- payment_succeeded: Record the order, overdue -> active
- payment_failed: Record the order if present, -> overdue
- subscription_canceled / _suspended / _resumed / _trial_ended: status changes
- payment_refunded / payment_chargeback: overwrite the stored order's status

Writes performed before a handler raises are not undone here; atomicity, when
available, belongs to the unit of work the storage is bound to.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from app.domain.billing import (
    BillingProvider,
    BillingStatus,
    Customer,
    CustomerUpdate,
    DispatchResult,
    EventOrigin,
    EventSeverity,
    Order,
    OrderStatus,
    Subscription,
    SubscriptionEventType,
    SubscriptionPayload,
    SubscriptionStatus,
    SubscriptionUpdate,
    WebhookEventKind,
    WebhookPayload,
)
from app.domain.billing_storage import BillingStorage
from app.domain.status_mapping import is_terminal, parse_provider_datetime
from app.infrastructure.exceptions import NotFoundError, ValidationError
from app.infrastructure.payments.audit_log import AuditLog
from app.infrastructure.payments.customer_reconciler import CustomerReconciler
from app.infrastructure.payments.order_ledger import OrderLedger
from app.infrastructure.payments.subscription_reconciler import SubscriptionReconciler


logger = logging.getLogger(__name__)

Handler = Callable[[WebhookPayload, Dict[str, Any]], Awaitable[DispatchResult]]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_webhook_payload(payload: Any) -> WebhookPayload:
    """
    Validate the inbound envelope.

    Raises:
        ValidationError: not an object, no ``event``, or malformed blocks
    """
    if not isinstance(payload, dict) or not payload.get("event"):
        raise ValidationError("Webhook payload must carry an event", field="event")
    try:
        return WebhookPayload.model_validate(payload)
    except PydanticValidationError as e:
        raise ValidationError(
            "Malformed webhook payload",
            original_error=e,
            errors=[
                {"loc": [str(part) for part in err["loc"]], "msg": err["msg"], "type": err["type"]}
                for err in e.errors()
            ],
        )


class WebhookEventDispatcher:
    """
    State-machine core of billing reconciliation.

    One dispatcher is bound to one storage (one unit of work). All collaborators
    are injected; there is no module-level state.
    """

    def __init__(
        self,
        storage: BillingStorage,
        default_provider: str = BillingProvider.CAKTOS.value,
        currency: str = "BRL",
        default_plan_name: str = "Premium",
        origin: EventOrigin = EventOrigin.WEBHOOK,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._storage = storage
        self._clock = clock
        self._customers = CustomerReconciler(storage)
        self._subscriptions = SubscriptionReconciler(
            storage,
            default_provider=default_provider,
            currency=currency,
            default_plan_name=default_plan_name,
            clock=clock,
        )
        self._orders = OrderLedger(storage)
        self._audit = AuditLog(storage, origin=origin)
        self._handlers: Dict[str, Handler] = {
            WebhookEventKind.SUBSCRIPTION_CREATED.value: self._subscription_created,
            WebhookEventKind.SUBSCRIPTION_UPDATED.value: self._subscription_updated,
            WebhookEventKind.PAYMENT_SUCCEEDED.value: self._payment_succeeded,
            WebhookEventKind.PAYMENT_FAILED.value: self._payment_failed,
            WebhookEventKind.SUBSCRIPTION_CANCELED.value: self._subscription_canceled,
            WebhookEventKind.SUBSCRIPTION_SUSPENDED.value: self._subscription_suspended,
            WebhookEventKind.SUBSCRIPTION_RESUMED.value: self._subscription_resumed,
            WebhookEventKind.SUBSCRIPTION_TRIAL_ENDED.value: self._subscription_trial_ended,
            WebhookEventKind.PAYMENT_REFUNDED.value: self._payment_refunded,
            WebhookEventKind.PAYMENT_CHARGEBACK.value: self._payment_chargeback,
        }

    @property
    def supported_events(self) -> List[str]:
        return list(self._handlers)

    async def dispatch(self, payload: Dict[str, Any]) -> Optional[DispatchResult]:
        """
        Apply one provider event.

        Returns:
            DispatchResult, or None when the event kind is not handled

        Raises:
            ValidationError: required natural key missing
            NotFoundError: referenced subscription/order does not exist
            PersistenceError: storage failure
        """
        envelope = parse_webhook_payload(payload)
        handler = self._handlers.get(envelope.event)
        if handler is None:
            logger.warning(f"Unhandled event type ignored: {envelope.event}")
            return None

        logger.info(f"Dispatching billing event: {envelope.event}")
        result = await handler(envelope, payload)
        logger.info(f"Billing event {envelope.event} applied")
        return result

    # =========================================================================
    # Event Handlers
    # =========================================================================

    async def _subscription_created(
        self, envelope: WebhookPayload, raw: Dict[str, Any]
    ) -> DispatchResult:
        data = envelope.data
        if data.customer is None or not data.customer.email:
            raise ValidationError(
                "Customer email is required for subscription_created",
                field="customer.email",
            )
        subscription_block = self._require_subscription_block(envelope)

        # Test payloads carry createdBy/providerId at data.meta
        if data.meta.get("createdBy") or data.meta.get("providerId"):
            subscription_block = subscription_block.model_copy(
                update={"meta": {**subscription_block.meta, **data.meta}}
            )

        customer = await self._customers.upsert_customer(data.customer)
        subscription = await self._subscriptions.upsert_subscription(
            customer.id, subscription_block
        )

        order = None
        if data.order is not None and data.order.id:
            order = await self._orders.upsert_order(subscription.id, data.order)

        customer = await self._sync_billing_status(customer.id, subscription.status) or customer

        await self._audit.append(
            SubscriptionEventType.SUBSCRIPTION_CREATED,
            provider=subscription.provider.value,
            message=f"Subscription created - {subscription.provider_subscription_id}",
            payload=raw,
            subscription_id=subscription.id,
            client_id=customer.id,
        )
        return DispatchResult(
            event=envelope.event,
            customer=customer,
            subscription=subscription,
            order=order,
        )

    async def _subscription_updated(
        self, envelope: WebhookPayload, raw: Dict[str, Any]
    ) -> DispatchResult:
        data = envelope.data
        existing = await self._resolve_subscription(envelope)

        owner_id = existing.user_id
        if data.customer is not None and data.customer.email:
            customer = await self._customers.upsert_customer(data.customer)
            owner_id = customer.id

        subscription = await self._subscriptions.upsert_subscription(owner_id, data.subscription)
        customer = await self._sync_billing_status(owner_id, subscription.status)

        await self._audit.append(
            SubscriptionEventType.SUBSCRIPTION_UPDATED,
            provider=subscription.provider.value,
            message=f"Subscription updated - {subscription.provider_subscription_id}",
            payload=raw,
            subscription_id=subscription.id,
            client_id=subscription.user_id,
        )
        return DispatchResult(event=envelope.event, customer=customer, subscription=subscription)

    async def _payment_succeeded(
        self, envelope: WebhookPayload, raw: Dict[str, Any]
    ) -> DispatchResult:
        data = envelope.data
        self._require_subscription_block(envelope)
        if data.order is None or not data.order.id:
            raise ValidationError(
                "Order id is required for payment_succeeded", field="order.id"
            )

        subscription = await self._resolve_subscription(envelope)
        order = await self._orders.upsert_order(subscription.id, data.order)

        severity = EventSeverity.INFO
        message = f"Payment confirmed - order {order.id}"
        if is_terminal(subscription.status):
            logger.warning(
                f"Payment {order.id} recorded for {subscription.status.value} subscription "
                f"{subscription.provider_subscription_id}"
            )
            severity = EventSeverity.WARNING
            message = f"{message} (status kept: {subscription.status.value})"
        elif subscription.status == SubscriptionStatus.OVERDUE:
            subscription = await self._storage.update_subscription(
                subscription.id, SubscriptionUpdate(status=SubscriptionStatus.ACTIVE)
            )
        customer = await self._sync_billing_status(subscription.user_id, subscription.status)

        await self._audit.append(
            SubscriptionEventType.PAYMENT_SUCCEEDED,
            provider=subscription.provider.value,
            message=message,
            payload=raw,
            subscription_id=subscription.id,
            client_id=subscription.user_id,
            severity=severity,
        )
        return DispatchResult(
            event=envelope.event,
            customer=customer,
            subscription=subscription,
            order=order,
        )

    async def _payment_failed(
        self, envelope: WebhookPayload, raw: Dict[str, Any]
    ) -> DispatchResult:
        data = envelope.data
        subscription = await self._resolve_subscription(envelope)

        order = None
        if data.order is not None and data.order.id:
            order = await self._orders.upsert_order(subscription.id, data.order)

        order_id = order.id if order else "N/A"
        return await self._transition(
            envelope,
            raw,
            subscription,
            target=SubscriptionStatus.OVERDUE,
            event_type=SubscriptionEventType.PAYMENT_FAILED,
            severity=EventSeverity.ERROR,
            message=f"Payment failed - order {order_id}",
            order=order,
        )

    async def _subscription_canceled(
        self, envelope: WebhookPayload, raw: Dict[str, Any]
    ) -> DispatchResult:
        subscription = await self._resolve_subscription(envelope)
        return await self._transition(
            envelope,
            raw,
            subscription,
            target=SubscriptionStatus.CANCELED,
            event_type=SubscriptionEventType.SUBSCRIPTION_CANCELED,
            severity=EventSeverity.WARNING,
            message=f"Subscription canceled - {subscription.provider_subscription_id}",
        )

    async def _subscription_suspended(
        self, envelope: WebhookPayload, raw: Dict[str, Any]
    ) -> DispatchResult:
        subscription = await self._resolve_subscription(envelope)
        return await self._transition(
            envelope,
            raw,
            subscription,
            target=SubscriptionStatus.PAUSED,
            event_type=SubscriptionEventType.SUBSCRIPTION_PAUSED,
            severity=EventSeverity.WARNING,
            message=f"Subscription paused - {subscription.provider_subscription_id}",
        )

    async def _subscription_resumed(
        self, envelope: WebhookPayload, raw: Dict[str, Any]
    ) -> DispatchResult:
        subscription = await self._resolve_subscription(envelope)
        return await self._transition(
            envelope,
            raw,
            subscription,
            target=SubscriptionStatus.ACTIVE,
            event_type=SubscriptionEventType.SUBSCRIPTION_REACTIVATED,
            severity=EventSeverity.INFO,
            message=f"Subscription reactivated - {subscription.provider_subscription_id}",
        )

    async def _subscription_trial_ended(
        self, envelope: WebhookPayload, raw: Dict[str, Any]
    ) -> DispatchResult:
        subscription = await self._resolve_subscription(envelope)
        trial_end = parse_provider_datetime(envelope.data.subscription.trial_end_date) or self._clock()
        return await self._transition(
            envelope,
            raw,
            subscription,
            target=SubscriptionStatus.ACTIVE,
            event_type=SubscriptionEventType.SUBSCRIPTION_TRIAL_ENDED,
            severity=EventSeverity.INFO,
            message="Trial ended - subscription activated",
            extra_changes={"trial_ends_at": trial_end},
        )

    async def _payment_refunded(
        self, envelope: WebhookPayload, raw: Dict[str, Any]
    ) -> DispatchResult:
        return await self._settle_order(
            envelope,
            raw,
            status=OrderStatus.REFUNDED,
            event_type=SubscriptionEventType.PAYMENT_REFUNDED,
            severity=EventSeverity.WARNING,
            label="Payment refunded",
        )

    async def _payment_chargeback(
        self, envelope: WebhookPayload, raw: Dict[str, Any]
    ) -> DispatchResult:
        return await self._settle_order(
            envelope,
            raw,
            status=OrderStatus.CHARGEBACK,
            event_type=SubscriptionEventType.PAYMENT_CHARGEBACK,
            severity=EventSeverity.ERROR,
            label="Payment charged back",
        )

    # =========================================================================
    # Shared Steps
    # =========================================================================

    def _require_subscription_block(self, envelope: WebhookPayload) -> SubscriptionPayload:
        block = envelope.data.subscription
        if block is None or not block.id:
            raise ValidationError(
                f"Subscription id is required for {envelope.event}",
                field="subscription.id",
            )
        return block

    async def _resolve_subscription(self, envelope: WebhookPayload) -> Subscription:
        """Find the subscription an event references by provider-qualified natural key."""
        block = self._require_subscription_block(envelope)
        subscription = await self._subscriptions.find_existing(block)
        if subscription is None:
            provider = self._subscriptions.provider_for(block)
            raise NotFoundError(
                f"Subscription not found: {provider.value}/{block.id}",
                entity="subscription",
                key=block.id,
            )
        return subscription

    async def _transition(
        self,
        envelope: WebhookPayload,
        raw: Dict[str, Any],
        subscription: Subscription,
        target: SubscriptionStatus,
        event_type: SubscriptionEventType,
        severity: EventSeverity,
        message: str,
        extra_changes: Optional[Dict[str, Any]] = None,
        order: Optional[Order] = None,
    ) -> DispatchResult:
        """Move a subscription to ``target``; a terminal subscription stays where it is."""
        if is_terminal(subscription.status) and subscription.status != target:
            logger.warning(
                f"Ignoring {envelope.event} for {subscription.status.value} subscription "
                f"{subscription.provider_subscription_id}"
            )
            severity = EventSeverity.WARNING
            message = f"{message} (status kept: {subscription.status.value})"
        else:
            subscription = await self._storage.update_subscription(
                subscription.id,
                SubscriptionUpdate(status=target, **(extra_changes or {})),
            )

        customer = await self._sync_billing_status(subscription.user_id, subscription.status)

        await self._audit.append(
            event_type,
            provider=subscription.provider.value,
            message=message,
            payload=raw,
            subscription_id=subscription.id,
            client_id=subscription.user_id,
            severity=severity,
        )
        return DispatchResult(
            event=envelope.event,
            customer=customer,
            subscription=subscription,
            order=order,
        )

    async def _settle_order(
        self,
        envelope: WebhookPayload,
        raw: Dict[str, Any],
        status: OrderStatus,
        event_type: SubscriptionEventType,
        severity: EventSeverity,
        label: str,
    ) -> DispatchResult:
        order_block = envelope.data.order
        order = await self._orders.set_order_status(
            order_block.id if order_block is not None else None, status
        )

        subscription = await self._storage.get_subscription_by_id(order.subscription_id)
        provider = subscription.provider.value if subscription else BillingProvider.CAKTOS.value

        await self._audit.append(
            event_type,
            provider=provider,
            message=f"{label} - order {order.id}",
            payload=raw,
            subscription_id=order.subscription_id,
            client_id=subscription.user_id if subscription else None,
            severity=severity,
        )
        return DispatchResult(event=envelope.event, subscription=subscription, order=order)

    async def _sync_billing_status(
        self, user_id: str, status: SubscriptionStatus
    ) -> Optional[Customer]:
        """Copy the subscription status onto the owning customer's billing status."""
        customer = await self._storage.get_user(user_id)
        if customer is None:
            logger.warning(f"Customer {user_id} not found, billing status not updated")
            return None
        if customer.billing_status.value == status.value:
            return customer
        return await self._storage.update_user(
            user_id, CustomerUpdate(billing_status=BillingStatus(status.value))
        )
