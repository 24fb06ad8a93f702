"""
Billing Provider Webhook Handler

Receives provider events and hands them to the WebhookProcessor, which records
the delivery, applies it and settles the ingestion record.

Always answers 200: a failed delivery is kept as a ``failed`` webhook event and
replayed through the admin routes, so provider redeliveries are not needed.
"""

import logging
from typing import Dict

from fastapi import APIRouter, Request

from app.api.dependencies import WebhookProcessorDep
from app.infrastructure.exceptions import FinTrackError


logger = logging.getLogger(__name__)

router = APIRouter()

# Credentials are never stored with a delivery
_REDACTED_HEADERS = {"authorization", "cookie", "x-admin-key"}


def capture_headers(request: Request) -> Dict[str, str]:
    """Request headers kept with the delivery record, credentials dropped."""
    return {
        name: value
        for name, value in request.headers.items()
        if name.lower() not in _REDACTED_HEADERS
    }


@router.post("/webhooks/caktos")
async def billing_webhook(request: Request, processor: WebhookProcessorDep):
    """
    Handle a billing provider webhook.

    Body: ``{"event": "<kind>", "data": {"subscription": ..., "customer": ..., "order": ...}}``
    """
    try:
        payload = await request.json()
    except ValueError as e:
        logger.error(f"Webhook body is not valid JSON: {e}")
        return {"status": "error", "message": "Invalid JSON body"}

    try:
        webhook = await processor.ingest(payload, headers=capture_headers(request))
        return {"status": "success", "webhook_id": webhook.id}

    except FinTrackError as e:
        logger.error(f"Error processing webhook: {e.message}")
        return {"status": "error", "message": e.message, "details": e.details}

    except Exception as e:
        logger.error(f"Unexpected error processing webhook: {e}")
        return {"status": "error", "message": str(e)}
