"""
Subscription Audit Log

Append-only record of every applied reconciliation. A failed insert is
reported and swallowed so it never aborts the reconciliation it describes.
"""

import logging
from typing import Any, Dict, Optional

from app.domain.billing import (
    EventOrigin,
    EventSeverity,
    SubscriptionEvent,
    SubscriptionEventCreate,
    SubscriptionEventType,
)
from app.domain.billing_storage import BillingStorage


logger = logging.getLogger(__name__)


class AuditLog:
    """Appends SubscriptionEvent records through the billing storage contract."""

    def __init__(self, storage: BillingStorage, origin: EventOrigin = EventOrigin.WEBHOOK):
        self._storage = storage
        self._origin = origin

    async def append(
        self,
        event_type: SubscriptionEventType,
        provider: str,
        message: str,
        payload: Dict[str, Any],
        subscription_id: Optional[str] = None,
        client_id: Optional[str] = None,
        severity: EventSeverity = EventSeverity.INFO,
    ) -> Optional[SubscriptionEvent]:
        """
        Append one audit entry carrying the full raw payload.

        Returns:
            The stored entry, or None when the insert failed
        """
        record = SubscriptionEventCreate(
            subscription_id=subscription_id,
            client_id=client_id,
            type=event_type,
            provider=provider,
            severity=severity,
            message=message,
            payload=payload,
            origin=self._origin,
        )
        try:
            return await self._storage.log_subscription_event(record)
        except Exception as e:
            logger.error(f"Failed to record {event_type.value} audit entry: {e}")
            return None
