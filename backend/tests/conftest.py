"""
Test configuration and fixtures for FinTrack Billing.

Provides shared fixtures for unit and integration tests. Everything runs
against the in-memory billing storage; no database is needed.
"""

import copy
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Optional

import pytest
from fastapi.testclient import TestClient

from app.infrastructure.db.repositories.memory_billing_storage import InMemoryBillingStorage
from app.infrastructure.payments import KeyedLock, WebhookEventDispatcher, WebhookProcessor


FIXED_NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
ADMIN_KEY = "test-admin-key"


# =============================================================================
# Storage & Core Fixtures
# =============================================================================

@pytest.fixture
def fixed_clock() -> Callable[[], datetime]:
    """Clock frozen at 2025-01-15 12:00 UTC."""
    return lambda: FIXED_NOW


@pytest.fixture
def storage() -> InMemoryBillingStorage:
    """Fresh in-memory billing storage."""
    return InMemoryBillingStorage()


@pytest.fixture
def dispatcher(storage, fixed_clock) -> WebhookEventDispatcher:
    """Dispatcher bound to the in-memory storage."""
    return WebhookEventDispatcher(storage, clock=fixed_clock)


@pytest.fixture
def processor(storage, fixed_clock) -> WebhookProcessor:
    """Webhook processor whose billing state and ingestion records share one store."""
    return WebhookProcessor(
        unit_of_work=storage.unit_of_work,
        webhook_store=storage,
        locks=KeyedLock(),
        clock=fixed_clock,
    )


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app(processor, monkeypatch):
    """FastAPI application wired to the in-memory processor."""
    from app.api.dependencies import get_webhook_processor
    from app.config.settings import get_settings
    from app.main import app

    monkeypatch.setattr(get_settings(), "admin_api_key", ADMIN_KEY)
    app.dependency_overrides[get_webhook_processor] = lambda: processor
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Get synchronous test client."""
    return TestClient(app)


@pytest.fixture
def admin_headers() -> Dict[str, str]:
    return {"X-Admin-Key": ADMIN_KEY}


# =============================================================================
# Sample Data Fixtures
# =============================================================================

@pytest.fixture
def subscription_block() -> Dict[str, Any]:
    """Monthly subscription as sent by the provider."""
    return {
        "id": "sub_1",
        "status": "active",
        "offer_id": "offer_monthly",
        "product_id": "prod_premium",
        "amount": 29.9,
        "recurrence_period": 30,
        "payment_method": "credit_card",
        "next_payment_date": "2025-02-15T12:00:00Z",
    }


@pytest.fixture
def customer_block() -> Dict[str, Any]:
    return {
        "id": "cus_1",
        "name": "Maria da Silva",
        "email": "maria@example.com",
        "phone": "+5511999990000",
        "doc_number": "12345678900",
    }


@pytest.fixture
def order_block() -> Dict[str, Any]:
    return {
        "id": "ord_1",
        "amount": 29.9,
        "status": "paid",
        "paid_at": "2025-01-15T12:00:00Z",
        "payment_method": "credit_card",
        "installments": 1,
        "card_brand": "visa",
        "card_last_digits": "4242",
    }


@pytest.fixture
def build_payload(subscription_block, customer_block, order_block):
    """
    Factory for webhook envelopes.

    Blocks default to the sample fixtures; pass ``None`` to omit a block or a
    dict to replace it.
    """
    default = object()

    def _build(
        event: str,
        subscription: Any = default,
        customer: Any = default,
        order: Any = default,
        meta: Optional[Dict[str, Any]] = None,
    ) -> Dict[str, Any]:
        data: Dict[str, Any] = {}
        blocks = {
            "subscription": subscription_block if subscription is default else subscription,
            "customer": customer_block if customer is default else customer,
            "order": order_block if order is default else order,
        }
        for name, block in blocks.items():
            if block is not None:
                data[name] = copy.deepcopy(block)
        if meta is not None:
            data["meta"] = meta
        return {"event": event, "data": data}

    return _build
