"""
Webhook Event Repository

Data access layer for raw webhook ingestion records.

Each method runs in its own short session so ingestion records are durable
independently of the billing transaction that applies them.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, List, Optional

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.domain.billing import (
    WebhookEvent,
    WebhookEventCreate,
    WebhookEventUpdate,
    WebhookLog,
    WebhookLogCreate,
    WebhookStatus,
)
from app.domain.billing_storage import WebhookEventStore, group_webhook_deliveries
from app.infrastructure.db.database import get_session_context
from app.infrastructure.db.models import WebhookEventModel, WebhookLogModel
from app.infrastructure.db.repositories.billing_repository import (
    as_uuid,
    column_values,
    translate_errors,
)
from app.infrastructure.exceptions import NotFoundError


@asynccontextmanager
async def _webhook_session(operation: str) -> AsyncIterator[AsyncSession]:
    """get_session_context() with SQLAlchemy failures raised as PersistenceError."""
    with translate_errors(operation, "webhook_events"):
        async with get_session_context() as session:
            yield session


class WebhookEventRepository(WebhookEventStore):
    """
    Repository for webhook ingestion records.

    Uses async SQLModel for database operations.
    """

    # =========================================================================
    # Query Methods
    # =========================================================================

    async def get_webhook_event(self, webhook_event_id: str) -> Optional[WebhookEvent]:
        webhook_uuid = as_uuid(webhook_event_id)
        if webhook_uuid is None:
            return None
        async with _webhook_session("select") as session:
            model = await session.get(WebhookEventModel, webhook_uuid)
            return self._to_domain(model) if model else None

    async def list_webhook_events(
        self,
        limit: int = 100,
        status: Optional[WebhookStatus] = None,
        event_key: Optional[str] = None,
    ) -> List[WebhookEvent]:
        async with _webhook_session("select") as session:
            statement = select(WebhookEventModel)
            if status is not None:
                statement = statement.where(WebhookEventModel.status == status.value)
            if event_key is not None:
                statement = statement.where(WebhookEventModel.event_key == event_key)
            statement = statement.order_by(WebhookEventModel.received_at.desc()).limit(limit)
            result = await session.execute(statement)
            return [self._to_domain(model) for model in result.scalars().all()]

    async def list_failed_webhook_events(
        self,
        max_retries: int,
        limit: int = 100,
    ) -> List[WebhookEvent]:
        async with _webhook_session("select") as session:
            statement = (
                select(WebhookEventModel)
                .where(WebhookEventModel.status == WebhookStatus.FAILED.value)
                .where(WebhookEventModel.retry_count < max_retries)
                .order_by(WebhookEventModel.received_at.asc())
                .limit(limit)
            )
            result = await session.execute(statement)
            return [self._to_domain(model) for model in result.scalars().all()]

    async def group_webhook_events(self, limit: int = 100) -> List[dict]:
        async with _webhook_session("select") as session:
            recent_keys = (
                select(WebhookEventModel.event_key)
                .where(WebhookEventModel.event_key.is_not(None))
                .group_by(WebhookEventModel.event_key)
                .order_by(func.max(WebhookEventModel.received_at).desc())
                .limit(limit)
            )
            statement = (
                select(WebhookEventModel)
                .where(WebhookEventModel.event_key.in_(recent_keys.scalar_subquery()))
                .order_by(WebhookEventModel.received_at.desc())
            )
            result = await session.execute(statement)
            events = [self._to_domain(model) for model in result.scalars().all()]
        return group_webhook_deliveries(events, limit=limit)

    # =========================================================================
    # Command Methods
    # =========================================================================

    async def create_webhook_event(self, data: WebhookEventCreate) -> WebhookEvent:
        async with _webhook_session("insert") as session:
            model = WebhookEventModel(**column_values(data))
            session.add(model)
            await session.flush()
            return self._to_domain(model)

    async def update_webhook_event(
        self,
        webhook_event_id: str,
        data: WebhookEventUpdate,
    ) -> WebhookEvent:
        async with _webhook_session("update") as session:
            webhook_uuid = as_uuid(webhook_event_id)
            model = await session.get(WebhookEventModel, webhook_uuid) if webhook_uuid else None
            if model is None:
                raise NotFoundError(
                    f"Webhook event not found: {webhook_event_id}",
                    entity="webhook_event",
                    key=webhook_event_id,
                )
            for key, value in column_values(data, exclude_unset=True).items():
                setattr(model, key, value)
            await session.flush()
            return self._to_domain(model)

    async def save_webhook_log(self, data: WebhookLogCreate) -> WebhookLog:
        webhook_uuid = as_uuid(data.webhook_event_id)
        if webhook_uuid is None:
            raise NotFoundError(
                f"Webhook event not found: {data.webhook_event_id}",
                entity="webhook_event",
                key=data.webhook_event_id,
            )
        values = column_values(data)
        values["webhook_event_id"] = webhook_uuid
        async with _webhook_session("insert") as session:
            model = WebhookLogModel(**values)
            session.add(model)
            await session.flush()
            return self._log_to_domain(model)

    async def list_webhook_logs(self, webhook_event_id: str) -> List[WebhookLog]:
        webhook_uuid = as_uuid(webhook_event_id)
        if webhook_uuid is None:
            return []
        async with _webhook_session("select") as session:
            statement = (
                select(WebhookLogModel)
                .where(WebhookLogModel.webhook_event_id == webhook_uuid)
                .order_by(WebhookLogModel.timestamp.asc())
            )
            result = await session.execute(statement)
            return [self._log_to_domain(model) for model in result.scalars().all()]

    # =========================================================================
    # Mapping Helpers
    # =========================================================================

    @staticmethod
    def _to_domain(model: WebhookEventModel) -> WebhookEvent:
        return WebhookEvent(
            id=str(model.id),
            event_type=model.event_type,
            event_key=model.event_key,
            payload=dict(model.payload or {}),
            headers=dict(model.headers or {}),
            status=model.status,
            received_at=model.received_at,
            processed_at=model.processed_at,
            error_message=model.error_message,
            retry_count=model.retry_count,
            last_retry_at=model.last_retry_at,
        )

    @staticmethod
    def _log_to_domain(model: WebhookLogModel) -> WebhookLog:
        return WebhookLog(
            id=str(model.id),
            webhook_event_id=str(model.webhook_event_id),
            step=model.step,
            level=model.level,
            payload=dict(model.payload or {}),
            error=model.error,
            timestamp=model.timestamp,
        )
