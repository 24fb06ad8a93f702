"""
API Dependencies

FastAPI dependency providers for the billing webhook processor.

STORAGE_BACKEND selects the storage both the processor and the admin routes use:
- postgres: one SQL transaction per event plus a separate webhook_events repository
- memory: a single process-local store
"""

import logging
from typing import Annotated, Optional

from fastapi import Depends

from app.config.settings import Settings, get_settings
from app.infrastructure.exceptions import ConfigurationError
from app.infrastructure.payments import KeyedLock, WebhookProcessor


logger = logging.getLogger(__name__)

_webhook_processor: Optional[WebhookProcessor] = None


def build_webhook_processor(settings: Settings) -> WebhookProcessor:
    """
    Wire a WebhookProcessor for the configured storage backend.

    Raises:
        ConfigurationError: unknown STORAGE_BACKEND
    """
    if settings.storage_backend == "memory":
        from app.infrastructure.db.repositories.memory_billing_storage import (
            InMemoryBillingStorage,
        )

        store = InMemoryBillingStorage()
        unit_of_work = store.unit_of_work
        webhook_store = store
    elif settings.storage_backend == "postgres":
        from app.infrastructure.db.repositories.billing_repository import (
            sql_billing_unit_of_work,
        )
        from app.infrastructure.db.repositories.webhook_event_repository import (
            WebhookEventRepository,
        )

        unit_of_work = sql_billing_unit_of_work
        webhook_store = WebhookEventRepository()
    else:
        raise ConfigurationError(
            f"Unknown storage backend: {settings.storage_backend}",
            missing_keys=["STORAGE_BACKEND"],
        )

    logger.info(f"Webhook processor using {settings.storage_backend} storage")
    return WebhookProcessor(
        unit_of_work=unit_of_work,
        webhook_store=webhook_store,
        locks=KeyedLock(),
        default_provider=settings.billing_provider,
        currency=settings.billing_currency,
        default_plan_name=settings.default_plan_name,
    )


def get_webhook_processor() -> WebhookProcessor:
    """Get or create the process-wide webhook processor."""
    global _webhook_processor
    if _webhook_processor is None:
        _webhook_processor = build_webhook_processor(get_settings())
    return _webhook_processor


WebhookProcessorDep = Annotated[WebhookProcessor, Depends(get_webhook_processor)]
