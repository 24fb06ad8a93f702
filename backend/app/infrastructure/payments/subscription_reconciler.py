"""
Subscription Reconciler

Idempotent upsert of subscriptions keyed by (provider, provider_subscription_id).
Derives price, billing interval, trial end and period end from the provider block.
"""

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional

from app.domain.billing import (
    BillingProvider,
    Subscription,
    SubscriptionCreate,
    SubscriptionPayload,
    SubscriptionUpdate,
)
from app.domain.billing_storage import BillingStorage
from app.domain.status_mapping import (
    derive_billing_interval,
    map_subscription_status,
    parse_provider_datetime,
    resolve_provider,
    to_cents,
)
from app.infrastructure.exceptions import ValidationError


logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SubscriptionReconciler:
    """
    Folds a provider subscription block into the stored subscription.

    An existing natural key is always updated in place, never duplicated.
    """

    def __init__(
        self,
        storage: BillingStorage,
        default_provider: str = BillingProvider.CAKTOS.value,
        currency: str = "BRL",
        default_plan_name: str = "Premium",
        clock: Callable[[], datetime] = _utcnow,
    ):
        self._storage = storage
        self._default_provider = default_provider
        self._currency = currency
        self._default_plan_name = default_plan_name
        self._clock = clock

    def provider_for(self, subscription_data: SubscriptionPayload) -> BillingProvider:
        """Provider namespace the block's natural key lives in."""
        return resolve_provider(
            subscription_data.is_test,
            subscription_data.provider,
            self._default_provider,
        )

    async def find_existing(self, subscription_data: SubscriptionPayload) -> Optional[Subscription]:
        """Look the block's natural key up without writing."""
        if not subscription_data.id:
            return None
        return await self._storage.find_subscription_by_identifier(
            subscription_data.id,
            provider=self.provider_for(subscription_data),
        )

    async def upsert_subscription(
        self,
        user_id: str,
        subscription_data: Optional[SubscriptionPayload],
    ) -> Subscription:
        """
        Create or update a subscription from a provider block.

        Args:
            user_id: Owning customer id
            subscription_data: Provider subscription block

        Returns:
            The stored subscription

        Raises:
            ValidationError: subscription id missing
        """
        if subscription_data is None or not subscription_data.id:
            raise ValidationError("Subscription id is required", field="subscription.id")

        provider = self.provider_for(subscription_data)
        existing = await self._storage.find_subscription_by_identifier(
            subscription_data.id, provider=provider
        )

        interval, billing_interval = derive_billing_interval(
            subscription_data.recurrence_period,
            subscription_data.trial_days,
        )
        status = map_subscription_status(subscription_data.status)

        trial_ends_at = None
        if subscription_data.trial_days and subscription_data.trial_days > 0:
            trial_ends_at = self._clock() + timedelta(days=subscription_data.trial_days)

        current_period_end = parse_provider_datetime(subscription_data.next_payment_date)
        plan_name = subscription_data.product_id or self._default_plan_name
        meta = self._build_meta(subscription_data)

        if existing:
            logger.info(f"Updating subscription {provider.value}/{subscription_data.id}")
            changes: Dict[str, Any] = {
                "user_id": user_id,
                "plan_name": plan_name,
                "currency": self._currency,
                "billing_interval": billing_interval,
                "interval": interval,
                "status": status,
                "meta": {**existing.meta, **meta},
            }
            if subscription_data.amount is not None:
                changes["price_cents"] = to_cents(subscription_data.amount)
            if trial_ends_at is not None:
                changes["trial_ends_at"] = trial_ends_at
            if current_period_end is not None:
                changes["current_period_end"] = current_period_end
            return await self._storage.update_subscription(
                existing.id, SubscriptionUpdate(**changes)
            )

        logger.info(f"Creating subscription {provider.value}/{subscription_data.id}")
        if subscription_data.is_test:
            meta.setdefault("created_by", "admin-test")
        return await self._storage.create_subscription(
            SubscriptionCreate(
                user_id=user_id,
                provider=provider,
                provider_subscription_id=subscription_data.id,
                plan_name=plan_name,
                price_cents=to_cents(subscription_data.amount),
                currency=self._currency,
                billing_interval=billing_interval,
                interval=interval,
                status=status,
                trial_ends_at=trial_ends_at,
                current_period_end=current_period_end,
                meta=meta,
            )
        )

    def _build_meta(self, subscription_data: SubscriptionPayload) -> Dict[str, Any]:
        payload_meta = subscription_data.meta or {}
        meta = {
            "offer_id": subscription_data.offer_id,
            "product_id": subscription_data.product_id,
            "payment_method": subscription_data.payment_method,
            "current_period": subscription_data.current_period,
            "recurrence_period": subscription_data.recurrence_period,
            "provider_created_at": subscription_data.created_at,
            "provider_updated_at": subscription_data.updated_at,
            "is_test": subscription_data.is_test,
            "provider_id": payload_meta.get("providerId"),
        }
        if subscription_data.is_test:
            meta["created_by"] = payload_meta.get("createdBy")
        return {key: value for key, value in meta.items() if value is not None}
