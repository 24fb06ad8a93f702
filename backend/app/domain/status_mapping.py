"""
Provider Vocabulary Mapping

Pure lookup tables translating the billing provider's loosely-typed vocabulary
(status strings, recurrence day counts, decimal amounts, ISO dates) into the
internal billing enums.
"""

import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any, Dict, Optional, Tuple, Union

from app.domain.billing import (
    BillingInterval,
    BillingProvider,
    Interval,
    OrderStatus,
    SubscriptionStatus,
)
from app.infrastructure.exceptions import ValidationError


SUBSCRIPTION_STATUS_MAP: Dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trial": SubscriptionStatus.TRIAL,
    "canceled": SubscriptionStatus.CANCELED,
    "suspended": SubscriptionStatus.PAUSED,
    "overdue": SubscriptionStatus.OVERDUE,
    "paused": SubscriptionStatus.PAUSED,
    "resumed": SubscriptionStatus.ACTIVE,
}

ORDER_STATUS_MAP: Dict[str, OrderStatus] = {
    "paid": OrderStatus.PAID,
    "failed": OrderStatus.FAILED,
    "refunded": OrderStatus.REFUNDED,
    "chargeback": OrderStatus.CHARGEBACK,
}

# Recurrence day counts billed yearly; every other count is billed monthly,
# including quarterly (90) and semiannual (180) plans.
YEARLY_RECURRENCE_DAYS = frozenset({365, 366})

TERMINAL_STATUSES = frozenset({SubscriptionStatus.CANCELED})


def map_subscription_status(provider_status: Optional[str]) -> SubscriptionStatus:
    """Map a provider subscription status. Unmapped values fall back to ``active``."""
    if not provider_status:
        return SubscriptionStatus.ACTIVE
    return SUBSCRIPTION_STATUS_MAP.get(
        provider_status.strip().lower(), SubscriptionStatus.ACTIVE
    )


def map_order_status(provider_status: Optional[str]) -> OrderStatus:
    """Map a provider order status. Unmapped values fall back to ``failed``."""
    if not provider_status:
        return OrderStatus.FAILED
    return ORDER_STATUS_MAP.get(provider_status.strip().lower(), OrderStatus.FAILED)


def derive_billing_interval(
    recurrence_period: Optional[Union[int, str]],
    trial_days: Optional[int] = None,
) -> Tuple[Interval, BillingInterval]:
    """
    Derive (interval, billing_interval) from the provider's recurrence period.

    Args:
        recurrence_period: Day count (1, 30, 31, 90, 180, 365, 366) or a legacy
            string such as "yearly" / "anual"
        trial_days: Trial length; a one-day recurrence stays monthly with or
            without a trial

    Returns:
        Tuple of (Interval, BillingInterval)
    """
    if recurrence_period is None or isinstance(recurrence_period, bool):
        return Interval.MONTHLY, BillingInterval.MONTH

    if isinstance(recurrence_period, int):
        if recurrence_period in YEARLY_RECURRENCE_DAYS:
            return Interval.YEARLY, BillingInterval.YEAR
        return Interval.MONTHLY, BillingInterval.MONTH

    period = str(recurrence_period).lower()
    if "year" in period or "anual" in period:
        return Interval.YEARLY, BillingInterval.YEAR
    return Interval.MONTHLY, BillingInterval.MONTH


def to_cents(amount: Optional[Union[float, int, str, Decimal]]) -> int:
    """Convert a decimal major-unit amount to integer minor units, rounding half up."""
    if amount is None:
        return 0
    try:
        value = Decimal(str(amount))
    except InvalidOperation as e:
        raise ValidationError(f"Invalid amount: {amount!r}", field="amount", original_error=e)
    if not value.is_finite():
        raise ValidationError(f"Amount must be finite: {amount!r}", field="amount")
    return int((value * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def parse_provider_datetime(value: Optional[str]) -> Optional[datetime]:
    """
    Parse an ISO-8601 date or datetime string from the provider.

    Naive values are taken as UTC. Empty values return None.

    Raises:
        ValidationError: value is not ISO-8601
    """
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise ValidationError(f"Invalid date: {value}", original_error=e)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def is_terminal(status: SubscriptionStatus) -> bool:
    """Terminal statuses have no outgoing transitions."""
    return status in TERMINAL_STATUSES


def resolve_provider(
    is_test: bool,
    requested: Optional[str],
    default: Union[BillingProvider, str] = BillingProvider.CAKTOS,
) -> BillingProvider:
    """
    Pick the provider namespace for a subscription natural key.

    Test traffic always lands in ``manual`` so its ids never collide with
    production ids.
    """
    if is_test:
        return BillingProvider.MANUAL
    for candidate in (requested, default):
        if candidate:
            try:
                return BillingProvider(str(candidate).lower())
            except ValueError:
                continue
    return BillingProvider.CAKTOS


def natural_event_id(payload: Dict[str, Any]) -> str:
    """
    Natural id of the business event a payload describes.

    Used to group deliveries of the same event and as the serialization key
    for concurrent deliveries.
    """
    data = payload.get("data")
    if not isinstance(data, dict):
        data = {}
    for block in ("subscription", "order", "customer"):
        entity = data.get(block) or {}
        if isinstance(entity, dict) and entity.get("id"):
            return f"{block}_{entity['id']}"
    return f"{payload.get('event', 'unknown')}_{int(time.time() * 1000)}"
