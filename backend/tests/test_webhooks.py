"""
Integration Tests for Billing Webhooks

Verifies:
- Provider endpoint always answers 200
- Failed deliveries are recorded and replayable through the admin routes
- Admin routes require the X-Admin-Key header
"""

import pytest

from app.domain.billing import BillingProvider, EventOrigin, WebhookStatus


class TestProviderWebhook:

    def test_success(self, client, storage, build_payload):
        response = client.post("/api/webhooks/caktos", json=build_payload("subscription_created"))

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "success"
        assert storage.webhook_events[body["webhook_id"]].status == WebhookStatus.PROCESSED
        assert len(storage.subscriptions) == 1

    def test_failure_still_returns_200(self, client, storage, build_payload):
        response = client.post("/api/webhooks/caktos", json=build_payload("payment_failed"))

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "error"
        assert "Subscription not found" in body["message"]
        [webhook] = storage.webhook_events.values()
        assert webhook.status == WebhookStatus.FAILED

    def test_missing_event_returns_200_error(self, client, storage):
        response = client.post("/api/webhooks/caktos", json={"data": {}})

        assert response.status_code == 200
        assert response.json()["status"] == "error"
        assert storage.webhook_events == {}

    def test_invalid_json_returns_200_error(self, client):
        response = client.post(
            "/api/webhooks/caktos",
            content=b"not json",
            headers={"content-type": "application/json"},
        )

        assert response.status_code == 200
        assert response.json()["status"] == "error"


class TestAdminAuth:

    def test_missing_key_rejected(self, client):
        response = client.get("/api/admin/webhooks")
        assert response.status_code == 422

    def test_wrong_key_rejected(self, client):
        response = client.get("/api/admin/webhooks", headers={"X-Admin-Key": "nope"})
        assert response.status_code == 403


class TestAdminWebhooks:

    def _ingest(self, client, payload):
        return client.post("/api/webhooks/caktos", json=payload).json()

    def test_list_and_filter(self, client, admin_headers, build_payload):
        self._ingest(client, build_payload("payment_failed"))
        self._ingest(client, build_payload("subscription_created"))

        response = client.get("/api/admin/webhooks", headers=admin_headers)
        assert response.status_code == 200
        assert len(response.json()) == 2

        failed = client.get("/api/admin/webhooks?status=failed", headers=admin_headers).json()
        assert [w["event_type"] for w in failed] == ["payment_failed"]

    def test_grouped_by_natural_event_id(self, client, admin_headers, build_payload):
        payload = build_payload("subscription_created")
        self._ingest(client, payload)
        self._ingest(client, payload)

        groups = client.get("/api/admin/webhooks/grouped", headers=admin_headers).json()

        assert len(groups) == 1
        assert groups[0]["event_key"] == "subscription_sub_1"
        assert groups[0]["attempts"] == 2

    def test_detail_resolves_subscription_and_attempts(
        self, client, admin_headers, storage, build_payload
    ):
        body = self._ingest(client, build_payload("subscription_created"))

        detail = client.get(f"/api/admin/webhooks/{body['webhook_id']}", headers=admin_headers).json()

        subscription = next(iter(storage.subscriptions.values()))
        assert detail["subscription_id"] == subscription.id
        assert len(detail["attempts"]) == 1

    def test_detail_returns_step_log_and_headers(self, client, admin_headers, build_payload):
        body = client.post(
            "/api/webhooks/caktos",
            json=build_payload("subscription_created"),
            headers={"User-Agent": "caktos-webhooks/1.0", "Authorization": "Bearer secret"},
        ).json()

        detail = client.get(f"/api/admin/webhooks/{body['webhook_id']}", headers=admin_headers).json()

        assert [log["step"] for log in detail["logs"]] == [
            "Processing started",
            "Subscription found in payload",
            "Webhook processed",
        ]
        assert detail["headers"]["user-agent"] == "caktos-webhooks/1.0"
        assert "authorization" not in detail["headers"]

    def test_detail_of_malformed_delivery(self, client, admin_headers, build_payload, subscription_block):
        subscription = dict(subscription_block, amount="abc")
        body = self._ingest(client, build_payload("subscription_created", subscription=subscription))
        assert body["status"] == "error"
        [webhook_id] = [w["id"] for w in client.get("/api/admin/webhooks", headers=admin_headers).json()]

        response = client.get(f"/api/admin/webhooks/{webhook_id}", headers=admin_headers)

        assert response.status_code == 200
        detail = response.json()
        assert detail["subscription_id"] is None
        assert detail["webhook"]["status"] == "failed"
        assert detail["logs"][-1]["level"] == "error"

    def test_unknown_webhook_is_404(self, client, admin_headers):
        response = client.get("/api/admin/webhooks/missing", headers=admin_headers)
        assert response.status_code == 404
        assert response.json()["error"] == "NotFoundError"

    def test_reprocess_after_fix(self, client, admin_headers, storage, build_payload):
        self._ingest(client, build_payload("payment_failed", customer=None))
        [failed] = storage.webhook_events.values()
        self._ingest(client, build_payload("subscription_created", order=None))

        response = client.post(f"/api/admin/webhooks/{failed.id}/reprocess", headers=admin_headers)

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["webhook"]["status"] == "processed"

    def test_reprocess_still_failing(self, client, admin_headers, storage, build_payload):
        self._ingest(client, build_payload("payment_failed"))
        [failed] = storage.webhook_events.values()

        body = client.post(f"/api/admin/webhooks/{failed.id}/reprocess", headers=admin_headers).json()

        assert body["success"] is False
        assert body["webhook"]["retry_count"] == 2
        assert "Subscription not found" in body["error"]

    def test_retry_failed(self, client, admin_headers, build_payload):
        self._ingest(client, build_payload("payment_failed", customer=None, order=None))
        self._ingest(client, build_payload("subscription_created", order=None))

        body = client.post("/api/admin/webhooks/retry-failed", headers=admin_headers).json()

        assert body["total"] == 1
        assert body["processed"] == 1


class TestAdminTestWebhook:

    def test_generates_ids_and_marks_test_traffic(self, client, admin_headers, storage, customer_block):
        response = client.post(
            "/api/admin/test/webhook",
            headers=admin_headers,
            json={
                "event": "subscription_created",
                "data": {"customer": customer_block, "subscription": {"amount": 9.9}},
            },
        )

        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["payload"]["data"]["subscription"]["id"].startswith("test_sub_")

        subscription = next(iter(storage.subscriptions.values()))
        assert subscription.provider == BillingProvider.MANUAL
        assert subscription.meta["created_by"] == "admin-test"
        assert storage.events[-1].origin == EventOrigin.SYSTEM

    def test_failure_reported_in_body(self, client, admin_headers):
        response = client.post(
            "/api/admin/test/webhook",
            headers=admin_headers,
            json={"event": "payment_failed", "data": {}},
        )

        assert response.status_code == 200
        assert response.json()["success"] is False

    def test_unknown_event_kind_rejected(self, client, admin_headers):
        response = client.post(
            "/api/admin/test/webhook",
            headers=admin_headers,
            json={"event": "not_an_event"},
        )
        assert response.status_code == 422


def test_health(client):
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "healthy"
