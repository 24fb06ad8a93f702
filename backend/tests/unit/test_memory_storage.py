"""
Unit tests for the in-memory billing storage.

Covers the storage contract details the reconcilers rely on.
"""

import pytest

from app.domain.billing import (
    BillingProvider,
    CustomerCreate,
    CustomerUpdate,
    EventSeverity,
    SubscriptionCreate,
    SubscriptionStatus,
    WebhookEventCreate,
    WebhookEventUpdate,
    WebhookLogCreate,
    WebhookStatus,
)
from app.infrastructure.exceptions import NotFoundError


@pytest.fixture
def subscription_create():
    def _create(user_id, provider=BillingProvider.CAKTOS, identifier="sub_1"):
        return SubscriptionCreate(
            user_id=user_id,
            provider=provider,
            provider_subscription_id=identifier,
            plan_name="Premium",
            status=SubscriptionStatus.ACTIVE,
        )
    return _create


class TestCustomers:

    @pytest.mark.asyncio
    async def test_partial_update_only_touches_set_fields(self, storage):
        customer = await storage.create_user(CustomerCreate(email="a@example.com", first_name="Ana"))

        updated = await storage.update_user(customer.id, CustomerUpdate(last_name="Lima"))

        assert updated.first_name == "Ana"
        assert updated.last_name == "Lima"

    @pytest.mark.asyncio
    async def test_returned_entities_are_copies(self, storage):
        customer = await storage.create_user(CustomerCreate(email="a@example.com"))
        customer.metadata["mutated"] = True

        stored = await storage.get_user(customer.id)
        assert "mutated" not in stored.metadata

    @pytest.mark.asyncio
    async def test_update_missing_raises(self, storage):
        with pytest.raises(NotFoundError):
            await storage.update_user("nope", CustomerUpdate(first_name="x"))


class TestSubscriptionLookup:

    @pytest.mark.asyncio
    async def test_provider_scoped_lookup(self, storage, subscription_create):
        await storage.create_subscription(subscription_create("u1", BillingProvider.CAKTOS))
        manual = await storage.create_subscription(subscription_create("u1", BillingProvider.MANUAL))

        found = await storage.find_subscription_by_identifier("sub_1", provider=BillingProvider.MANUAL)

        assert found.id == manual.id

    @pytest.mark.asyncio
    async def test_unscoped_lookup_falls_back_to_internal_id(self, storage, subscription_create):
        created = await storage.create_subscription(subscription_create("u1"))

        assert (await storage.find_subscription_by_identifier("sub_1")).id == created.id
        assert (await storage.find_subscription_by_identifier(created.id)).id == created.id
        assert await storage.find_subscription_by_identifier("sub_2") is None


class TestWebhookEvents:

    @pytest.mark.asyncio
    async def test_failed_listing_is_oldest_first_under_limit(self, storage):
        first = await storage.create_webhook_event(WebhookEventCreate(event_type="a", event_key="k1"))
        second = await storage.create_webhook_event(WebhookEventCreate(event_type="b", event_key="k2"))
        exhausted = await storage.create_webhook_event(WebhookEventCreate(event_type="c", event_key="k3"))
        for webhook, retries in ((first, 1), (second, 2), (exhausted, 5)):
            await storage.update_webhook_event(
                webhook.id, WebhookEventUpdate(status=WebhookStatus.FAILED, retry_count=retries)
            )

        failed = await storage.list_failed_webhook_events(max_retries=5)

        assert [w.id for w in failed] == [first.id, second.id]

    @pytest.mark.asyncio
    async def test_grouping(self, storage):
        for event_key in ("k1", "k2", "k1"):
            await storage.create_webhook_event(
                WebhookEventCreate(event_type="subscription_created", event_key=event_key)
            )

        groups = {group["event_key"]: group for group in await storage.group_webhook_events()}

        assert groups["k1"]["attempts"] == 2
        assert groups["k2"]["attempts"] == 1
        assert len(groups["k1"]["webhook_ids"]) == 2


class TestWebhookLogs:

    @pytest.mark.asyncio
    async def test_logs_are_kept_per_delivery_in_order(self, storage):
        first = await storage.create_webhook_event(WebhookEventCreate(event_type="a", event_key="k1"))
        other = await storage.create_webhook_event(WebhookEventCreate(event_type="b", event_key="k2"))
        await storage.save_webhook_log(WebhookLogCreate(webhook_event_id=first.id, step="started"))
        await storage.save_webhook_log(WebhookLogCreate(webhook_event_id=other.id, step="started"))
        await storage.save_webhook_log(
            WebhookLogCreate(
                webhook_event_id=first.id,
                step="failed",
                level=EventSeverity.ERROR,
                error="boom",
            )
        )

        logs = await storage.list_webhook_logs(first.id)

        assert [log.step for log in logs] == ["started", "failed"]
        assert logs[-1].error == "boom"
        assert logs[0].timestamp is not None

    @pytest.mark.asyncio
    async def test_log_for_unknown_delivery_raises(self, storage):
        with pytest.raises(NotFoundError):
            await storage.save_webhook_log(WebhookLogCreate(webhook_event_id="missing", step="started"))
