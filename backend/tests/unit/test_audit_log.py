"""
Unit tests for the subscription Audit Log.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest

from app.domain.billing import EventOrigin, EventSeverity, SubscriptionEventType
from app.infrastructure.exceptions import PersistenceError
from app.infrastructure.payments.audit_log import AuditLog


class TestAuditLog:

    @pytest.mark.asyncio
    async def test_appends_entry_with_payload(self, storage):
        audit = AuditLog(storage)
        payload = {"event": "subscription_created", "data": {}}

        entry = await audit.append(
            SubscriptionEventType.SUBSCRIPTION_CREATED,
            provider="caktos",
            message="Subscription created - sub_1",
            payload=payload,
            subscription_id="s1",
            client_id="c1",
        )

        assert entry is not None
        assert entry.payload == payload
        assert entry.severity == EventSeverity.INFO
        assert entry.origin == EventOrigin.WEBHOOK
        assert len(storage.events) == 1

    @pytest.mark.asyncio
    async def test_origin_is_configurable(self, storage):
        audit = AuditLog(storage, origin=EventOrigin.SYSTEM)

        entry = await audit.append(
            SubscriptionEventType.PAYMENT_FAILED,
            provider="manual",
            message="Payment failed",
            payload={},
            severity=EventSeverity.ERROR,
        )

        assert entry.origin == EventOrigin.SYSTEM
        assert entry.severity == EventSeverity.ERROR

    @pytest.mark.asyncio
    async def test_storage_failure_is_reported_not_raised(self):
        storage = MagicMock()
        storage.log_subscription_event = AsyncMock(
            side_effect=PersistenceError("insert failed", operation="insert")
        )
        audit = AuditLog(storage)

        entry = await audit.append(
            SubscriptionEventType.SUBSCRIPTION_UPDATED,
            provider="caktos",
            message="Subscription updated",
            payload={},
        )

        assert entry is None
        storage.log_subscription_event.assert_awaited_once()
