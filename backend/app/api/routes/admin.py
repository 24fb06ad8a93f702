"""
Admin Routes for Webhook Operations

Inspection and replay of recorded billing webhooks, plus a test-event endpoint.
Protected by API key authentication.
"""

import logging
import secrets
from typing import Any, Dict, List, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends, Header, HTTPException, Query, status
from pydantic import BaseModel, Field

from app.api.dependencies import WebhookProcessorDep
from app.config.settings import get_settings
from app.domain.billing import (
    EventOrigin,
    WebhookEvent,
    WebhookEventKind,
    WebhookLog,
    WebhookStatus,
)
from app.infrastructure.exceptions import FinTrackError, NotFoundError

logger = logging.getLogger(__name__)


# =============================================================================
# Admin API Key Authentication
# =============================================================================

async def verify_admin_api_key(
    x_admin_key: str = Header(..., description="Admin API key for protected operations")
) -> bool:
    """
    Verify admin API key from header.

    The admin key should be set in environment variable ADMIN_API_KEY.
    """
    expected_key = get_settings().admin_api_key

    if not expected_key:
        logger.error("ADMIN_API_KEY environment variable not set")
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Admin authentication not configured"
        )

    # Use secrets.compare_digest for timing-attack resistance
    if not secrets.compare_digest(x_admin_key, expected_key):
        logger.warning("Invalid admin API key attempt")
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid admin API key"
        )

    return True


router = APIRouter(
    prefix="/api/admin",
    tags=["admin"],
    dependencies=[Depends(verify_admin_api_key)]  # Protect ALL admin routes
)


# =============================================================================
# Schemas
# =============================================================================

class WebhookDetail(BaseModel):
    """A recorded delivery with its resolved subscription, sibling attempts and step log."""
    webhook: WebhookEvent
    subscription_id: Optional[str] = None
    attempts: List[WebhookEvent] = Field(default_factory=list)
    logs: List[WebhookLog] = Field(default_factory=list)
    headers: Dict[str, str] = Field(default_factory=dict)


class ReprocessResult(BaseModel):
    success: bool
    webhook: WebhookEvent
    error: Optional[str] = None


class RetryFailedResult(BaseModel):
    total: int
    processed: int
    failed: int
    processed_ids: List[str] = Field(default_factory=list)
    failed_ids: List[str] = Field(default_factory=list)


class TestWebhookRequest(BaseModel):
    """Synthetic provider event; missing ids are generated."""
    event: WebhookEventKind
    data: Dict[str, Any] = Field(default_factory=dict)


class TestWebhookResult(BaseModel):
    success: bool
    webhook: Optional[WebhookEvent] = None
    payload: Dict[str, Any]
    error: Optional[str] = None


# =============================================================================
# Webhook Inspection
# =============================================================================

@router.get("/webhooks", response_model=List[WebhookEvent])
async def list_webhooks(
    processor: WebhookProcessorDep,
    limit: int = Query(100, ge=1, le=1000),
    status_filter: Optional[WebhookStatus] = Query(None, alias="status"),
):
    """List recorded deliveries, newest first."""
    return await processor.webhook_store.list_webhook_events(limit=limit, status=status_filter)


@router.get("/webhooks/grouped")
async def list_grouped_webhooks(
    processor: WebhookProcessorDep,
    limit: int = Query(100, ge=1, le=1000),
):
    """Deliveries grouped by natural event id, with attempt counts."""
    return await processor.webhook_store.group_webhook_events(limit=limit)


@router.get("/webhooks/{webhook_id}", response_model=WebhookDetail)
async def get_webhook(webhook_id: str, processor: WebhookProcessorDep):
    """Get one delivery with its subscription, every attempt of the same event, and its step log."""
    webhook = await _get_webhook_or_404(processor, webhook_id)

    subscription = await processor.lookup_subscription(webhook.payload)
    attempts = []
    if webhook.event_key:
        attempts = await processor.webhook_store.list_webhook_events(event_key=webhook.event_key)
    logs = await processor.webhook_store.list_webhook_logs(webhook.id)

    return WebhookDetail(
        webhook=webhook,
        subscription_id=subscription.id if subscription else None,
        attempts=attempts,
        logs=logs,
        headers=webhook.headers,
    )


# =============================================================================
# Reprocessing
# =============================================================================

@router.post("/webhooks/retry-failed", response_model=RetryFailedResult)
async def retry_failed_webhooks(
    processor: WebhookProcessorDep,
    max_retries: Optional[int] = Query(None, ge=1),
):
    """Replay every failed delivery under the retry limit, oldest first."""
    limit = max_retries or get_settings().webhook_max_retries
    result = await processor.reprocess_failed(max_retries=limit)
    logger.info(
        f"Retry-failed run: {result['processed']} processed, {result['failed']} still failing"
    )
    return RetryFailedResult(**result)


@router.post("/webhooks/{webhook_id}/reprocess", response_model=ReprocessResult)
async def reprocess_webhook(webhook_id: str, processor: WebhookProcessorDep):
    """Replay one stored delivery through the normal dispatch path."""
    await _get_webhook_or_404(processor, webhook_id)

    try:
        webhook = await processor.reprocess(webhook_id)
        return ReprocessResult(success=True, webhook=webhook)
    except FinTrackError as e:
        webhook = await _get_webhook_or_404(processor, webhook_id)
        return ReprocessResult(success=False, webhook=webhook, error=e.message)


# =============================================================================
# Test Events
# =============================================================================

@router.post("/test/webhook", response_model=TestWebhookResult)
async def send_test_webhook(request: TestWebhookRequest, processor: WebhookProcessorDep):
    """
    Ingest a synthetic event as system-originated test traffic.

    Test subscriptions always land in the ``manual`` provider namespace.
    """
    payload = build_test_payload(request.event.value, request.data)
    try:
        webhook = await processor.ingest(payload, origin=EventOrigin.SYSTEM)
        return TestWebhookResult(success=True, webhook=webhook, payload=payload)
    except FinTrackError as e:
        logger.error(f"Test webhook {request.event.value} failed: {e.message}")
        return TestWebhookResult(success=False, payload=payload, error=e.message)


def build_test_payload(event: str, data: Dict[str, Any]) -> Dict[str, Any]:
    """Fill in test markers and any missing subscription/order ids."""
    data = {key: dict(value) if isinstance(value, dict) else value for key, value in data.items()}

    subscription = data.setdefault("subscription", {})
    subscription.setdefault("id", f"test_sub_{uuid4().hex[:12]}")
    subscription["isTest"] = True

    order = data.get("order")
    if isinstance(order, dict):
        order.setdefault("id", f"test_order_{uuid4().hex[:12]}")

    meta = data.setdefault("meta", {})
    meta.setdefault("createdBy", "admin-test")

    return {"event": event, "data": data}


async def _get_webhook_or_404(processor, webhook_id: str) -> WebhookEvent:
    webhook = await processor.webhook_store.get_webhook_event(webhook_id)
    if webhook is None:
        raise NotFoundError(
            f"Webhook event not found: {webhook_id}",
            entity="webhook_event",
            key=webhook_id,
        )
    return webhook
