"""
Webhook Processor

Ingestion and reprocessing of provider webhook deliveries.

Every delivery is recorded as a WebhookEvent before it is applied. Applying an
event runs the dispatcher inside one unit of work while holding the lock for the
event's natural id, so concurrent deliveries of the same event are applied one
after the other. The recorded event then moves to ``processed`` or ``failed``;
failed events can be replayed individually or in bulk.
"""

import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

from pydantic import ValidationError as PydanticValidationError

from app.domain.billing import (
    BillingProvider,
    DispatchResult,
    EventOrigin,
    EventSeverity,
    Subscription,
    SubscriptionPayload,
    WebhookEvent,
    WebhookEventCreate,
    WebhookEventUpdate,
    WebhookLogCreate,
    WebhookStatus,
)
from app.domain.billing_storage import BillingUnitOfWork, WebhookEventStore
from app.domain.status_mapping import natural_event_id
from app.infrastructure.exceptions import NotFoundError, ValidationError
from app.infrastructure.payments.event_dispatcher import WebhookEventDispatcher
from app.infrastructure.payments.locking import KeyedLock
from app.infrastructure.payments.subscription_reconciler import SubscriptionReconciler


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _payload_block(payload: Any, name: str) -> Dict[str, Any]:
    data = payload.get("data") if isinstance(payload, dict) else None
    block = data.get(name) if isinstance(data, dict) else None
    return block if isinstance(block, dict) else {}


class WebhookProcessor:
    """
    Records, applies and replays webhook deliveries.

    Args:
        unit_of_work: Factory yielding a BillingStorage bound to one transaction
        webhook_store: Storage for the raw ingestion records
        locks: Per-natural-id lock registry shared by every caller
    """

    def __init__(
        self,
        unit_of_work: BillingUnitOfWork,
        webhook_store: WebhookEventStore,
        locks: Optional[KeyedLock] = None,
        default_provider: str = BillingProvider.CAKTOS.value,
        currency: str = "BRL",
        default_plan_name: str = "Premium",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._unit_of_work = unit_of_work
        self._webhook_store = webhook_store
        self._locks = locks or KeyedLock()
        self._default_provider = default_provider
        self._currency = currency
        self._default_plan_name = default_plan_name
        self._clock = clock

    @property
    def webhook_store(self) -> WebhookEventStore:
        return self._webhook_store

    async def lookup_subscription(self, payload: Dict[str, Any]) -> Optional[Subscription]:
        """
        Resolve the subscription a stored payload refers to, without writing.

        Malformed subscription blocks resolve to None.
        """
        block = _payload_block(payload, "subscription")
        if not block.get("id"):
            return None
        try:
            subscription_data = SubscriptionPayload.model_validate(block)
        except PydanticValidationError as e:
            logger.warning(f"Stored subscription block is malformed: {e.error_count()} errors")
            return None
        async with self._unit_of_work() as storage:
            reconciler = SubscriptionReconciler(
                storage, default_provider=self._default_provider
            )
            return await reconciler.find_existing(subscription_data)

    # =========================================================================
    # Ingestion
    # =========================================================================

    async def ingest(
        self,
        payload: Dict[str, Any],
        origin: EventOrigin = EventOrigin.WEBHOOK,
        headers: Optional[Dict[str, str]] = None,
    ) -> WebhookEvent:
        """
        Record a delivery and apply it.

        Args:
            payload: Provider envelope
            origin: Audit origin of the writes
            headers: Request headers kept with the ingestion record

        Returns:
            The recorded WebhookEvent, already marked processed

        Raises:
            ValidationError: payload carries no event kind
            FinTrackError: applying the event failed (the record is marked failed)
        """
        if not isinstance(payload, dict) or not payload.get("event"):
            raise ValidationError("Webhook payload must carry an event", field="event")

        webhook = await self._webhook_store.create_webhook_event(
            WebhookEventCreate(
                event_type=str(payload["event"]),
                event_key=natural_event_id(payload),
                payload=payload,
                headers=headers or {},
            )
        )
        logger.info(f"Webhook recorded: {webhook.id} ({webhook.event_type}, {webhook.event_key})")

        await self.process(webhook, payload, origin=origin)
        return await self._webhook_store.get_webhook_event(webhook.id) or webhook

    async def process(
        self,
        webhook: WebhookEvent,
        payload: Dict[str, Any],
        origin: EventOrigin = EventOrigin.WEBHOOK,
    ) -> Optional[DispatchResult]:
        """
        Apply one recorded delivery and settle its ingestion record.

        Each run appends its steps to the delivery's log. On failure the record
        becomes ``failed`` with the error message and an incremented
        ``retry_count``, then the error is re-raised.
        """
        event_key = webhook.event_key or natural_event_id(payload)
        event_type = payload.get("event")
        subscription_id = _payload_block(payload, "subscription").get("id")
        customer_email = _payload_block(payload, "customer").get("email")

        await self._log_step(webhook.id, "Processing started", payload={"event": event_type})
        if subscription_id:
            await self._log_step(
                webhook.id,
                "Subscription found in payload",
                payload={"subscription_id": subscription_id},
            )

        try:
            lock_key = await self._lock_key(event_key)
            async with self._locks.hold(lock_key):
                async with self._unit_of_work() as storage:
                    dispatcher = WebhookEventDispatcher(
                        storage,
                        default_provider=self._default_provider,
                        currency=self._currency,
                        default_plan_name=self._default_plan_name,
                        origin=origin,
                        clock=self._clock,
                    )
                    result = await dispatcher.dispatch(payload)
        except Exception as e:
            logger.error(f"Webhook {webhook.id} failed: {e}")
            await self._log_step(
                webhook.id,
                "Processing failed",
                level=EventSeverity.ERROR,
                payload={"event": event_type, "error_type": e.__class__.__name__},
                error=str(e) or e.__class__.__name__,
            )
            await self._mark_failed(webhook.id, e)
            raise

        await self._log_step(
            webhook.id,
            "Webhook processed",
            payload={
                "event": event_type,
                "subscription_id": subscription_id,
                "customer_email": customer_email,
            },
        )
        await self._webhook_store.update_webhook_event(
            webhook.id,
            WebhookEventUpdate(
                status=WebhookStatus.PROCESSED,
                processed_at=self._clock(),
                error_message=None,
            ),
        )
        logger.info(f"Webhook {webhook.id} processed")
        return result

    async def _lock_key(self, event_key: str) -> str:
        """
        Serialization key for a delivery.

        Order-only events (refunds, chargebacks) lock on the key of the
        subscription owning the order, the same key its other events use.
        """
        if not event_key.startswith("order_"):
            return event_key

        order_id = event_key[len("order_"):]
        async with self._unit_of_work() as storage:
            order = await storage.get_order_by_id(order_id)
            subscription = (
                await storage.get_subscription_by_id(order.subscription_id) if order else None
            )
        if subscription is None:
            return event_key
        return f"subscription_{subscription.provider_subscription_id}"

    async def _log_step(
        self,
        webhook_id: str,
        step: str,
        level: EventSeverity = EventSeverity.INFO,
        payload: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        try:
            await self._webhook_store.save_webhook_log(
                WebhookLogCreate(
                    webhook_event_id=webhook_id,
                    step=step,
                    level=level,
                    payload=payload or {},
                    error=error,
                )
            )
        except Exception as e:
            logger.warning(f"Could not log step '{step}' for webhook {webhook_id}: {e}")

    async def _mark_failed(self, webhook_id: str, error: Exception) -> None:
        try:
            current = await self._webhook_store.get_webhook_event(webhook_id)
            retry_count = (current.retry_count if current else 0) + 1
            await self._webhook_store.update_webhook_event(
                webhook_id,
                WebhookEventUpdate(
                    status=WebhookStatus.FAILED,
                    error_message=str(error) or error.__class__.__name__,
                    retry_count=retry_count,
                    last_retry_at=self._clock(),
                ),
            )
        except Exception as e:
            logger.error(f"Could not mark webhook {webhook_id} as failed: {e}")

    # =========================================================================
    # Reprocessing
    # =========================================================================

    async def reprocess(self, webhook_event_id: str) -> WebhookEvent:
        """
        Replay a stored delivery through the same dispatch path.

        Returns:
            The ingestion record after the replay

        Raises:
            NotFoundError: unknown webhook event id
            FinTrackError: the replay failed (the record is marked failed)
        """
        webhook = await self._webhook_store.get_webhook_event(webhook_event_id)
        if webhook is None:
            raise NotFoundError(
                f"Webhook event not found: {webhook_event_id}",
                entity="webhook_event",
                key=webhook_event_id,
            )

        logger.info(f"Reprocessing webhook {webhook.id} ({webhook.event_type})")
        await self._webhook_store.update_webhook_event(
            webhook.id,
            WebhookEventUpdate(status=WebhookStatus.PENDING, last_retry_at=self._clock()),
        )

        payload = dict(webhook.payload)
        payload.setdefault("event", webhook.event_type)

        await self.process(webhook, payload)
        return await self._webhook_store.get_webhook_event(webhook.id) or webhook

    async def reprocess_failed(self, max_retries: int = 5) -> Dict[str, Any]:
        """
        Replay every failed delivery that has not exhausted its retries, oldest first.

        Returns:
            Counts of replayed, succeeded and still-failing deliveries
        """
        failed = await self._webhook_store.list_failed_webhook_events(max_retries)
        logger.info(f"Retrying {len(failed)} failed webhooks (max_retries={max_retries})")

        succeeded = []
        still_failing = []
        for webhook in failed:
            try:
                await self.reprocess(webhook.id)
                succeeded.append(webhook.id)
            except Exception as e:
                logger.warning(f"Retry of webhook {webhook.id} failed: {e}")
                still_failing.append(webhook.id)

        return {
            "total": len(failed),
            "processed": len(succeeded),
            "failed": len(still_failing),
            "processed_ids": succeeded,
            "failed_ids": still_failing,
        }
