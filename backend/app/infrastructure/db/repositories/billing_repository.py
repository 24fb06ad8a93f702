"""
Billing Repository

PostgreSQL implementation of the billing storage contract.

One SqlBillingStorage is bound to one session, so everything a single webhook
event writes commits or rolls back together. Subscription lookups take a row
lock, and audit inserts run inside a SAVEPOINT so a failed audit write leaves
the surrounding reconciliation intact.
"""

import logging
from contextlib import asynccontextmanager, contextmanager
from datetime import datetime, timezone
from enum import Enum
from typing import Any, AsyncIterator, Dict, Iterator, Optional
from uuid import UUID

from pydantic import BaseModel
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.domain.billing import (
    BillingProvider,
    Customer,
    CustomerCreate,
    CustomerUpdate,
    Order,
    OrderUpsert,
    Subscription,
    SubscriptionCreate,
    SubscriptionEvent,
    SubscriptionEventCreate,
    SubscriptionUpdate,
)
from app.domain.billing_storage import BillingStorage
from app.infrastructure.db.database import get_session_context
from app.infrastructure.db.models import (
    CustomerModel,
    OrderModel,
    SubscriptionEventModel,
    SubscriptionModel,
)
from app.infrastructure.exceptions import NotFoundError, PersistenceError


logger = logging.getLogger(__name__)


def as_uuid(value: Any) -> Optional[UUID]:
    """Parse an internal id; anything that is not a UUID matches no row."""
    if value is None or isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError:
        return None


def column_values(data: BaseModel, exclude_unset: bool = False) -> Dict[str, Any]:
    """Dump a write schema with enums flattened to their stored values."""
    values = data.model_dump(exclude_unset=exclude_unset)
    return {
        key: value.value if isinstance(value, Enum) else value
        for key, value in values.items()
    }


@contextmanager
def translate_errors(operation: str, table: str) -> Iterator[None]:
    """Re-raise driver/ORM failures as PersistenceError."""
    try:
        yield
    except SQLAlchemyError as e:
        logger.error(f"Database error during {operation} on {table}: {e}")
        raise PersistenceError(
            f"Failed to {operation} {table}",
            operation=operation,
            table=table,
            original_error=e,
        )


class SqlBillingStorage(BillingStorage):
    """
    Billing storage over one AsyncSession.

    The session is owned by the caller; this class never commits.
    """

    def __init__(self, session: AsyncSession):
        self._session = session

    # =========================================================================
    # Customers
    # =========================================================================

    async def get_user(self, user_id: str) -> Optional[Customer]:
        user_uuid = as_uuid(user_id)
        if user_uuid is None:
            return None
        with translate_errors("select", "users"):
            model = await self._session.get(CustomerModel, user_uuid)
        return self._customer_to_domain(model) if model else None

    async def get_user_by_email(self, email: str) -> Optional[Customer]:
        with translate_errors("select", "users"):
            statement = select(CustomerModel).where(CustomerModel.email == email)
            result = await self._session.execute(statement)
            model = result.scalar_one_or_none()
        return self._customer_to_domain(model) if model else None

    async def create_user(self, data: CustomerCreate) -> Customer:
        values = column_values(data)
        values["customer_metadata"] = values.pop("metadata")
        with translate_errors("insert", "users"):
            model = CustomerModel(**values)
            self._session.add(model)
            await self._session.flush()
        return self._customer_to_domain(model)

    async def update_user(self, user_id: str, data: CustomerUpdate) -> Customer:
        with translate_errors("update", "users"):
            model = await self._load_for_update(CustomerModel, user_id, "users")
            values = column_values(data, exclude_unset=True)
            if "metadata" in values:
                values["customer_metadata"] = values.pop("metadata") or {}
            for key, value in values.items():
                setattr(model, key, value)
            model.updated_at = datetime.now(timezone.utc)
            await self._session.flush()
        return self._customer_to_domain(model)

    # =========================================================================
    # Subscriptions
    # =========================================================================

    async def find_subscription_by_identifier(
        self,
        identifier: str,
        provider: Optional[BillingProvider] = None,
    ) -> Optional[Subscription]:
        with translate_errors("select", "subscriptions"):
            statement = select(SubscriptionModel).where(
                SubscriptionModel.provider_subscription_id == identifier
            )
            if provider is not None:
                statement = statement.where(SubscriptionModel.provider == provider.value)
            statement = statement.order_by(SubscriptionModel.created_at).limit(1).with_for_update()
            result = await self._session.execute(statement)
            model = result.scalars().first()

            if model is None and provider is None:
                internal_id = as_uuid(identifier)
                if internal_id is not None:
                    model = await self._session.get(
                        SubscriptionModel, internal_id, with_for_update=True
                    )
        return self._subscription_to_domain(model) if model else None

    async def get_subscription_by_id(self, subscription_id: str) -> Optional[Subscription]:
        subscription_uuid = as_uuid(subscription_id)
        if subscription_uuid is None:
            return None
        with translate_errors("select", "subscriptions"):
            model = await self._session.get(SubscriptionModel, subscription_uuid)
        return self._subscription_to_domain(model) if model else None

    async def create_subscription(self, data: SubscriptionCreate) -> Subscription:
        values = column_values(data)
        values["user_id"] = as_uuid(values["user_id"])
        with translate_errors("insert", "subscriptions"):
            model = SubscriptionModel(**values)
            self._session.add(model)
            await self._session.flush()
        return self._subscription_to_domain(model)

    async def update_subscription(
        self,
        subscription_id: str,
        data: SubscriptionUpdate,
    ) -> Subscription:
        with translate_errors("update", "subscriptions"):
            model = await self._load_for_update(SubscriptionModel, subscription_id, "subscriptions")
            values = column_values(data, exclude_unset=True)
            if "user_id" in values:
                values["user_id"] = as_uuid(values["user_id"])
            for key, value in values.items():
                setattr(model, key, value)
            model.updated_at = datetime.now(timezone.utc)
            await self._session.flush()
        return self._subscription_to_domain(model)

    # =========================================================================
    # Orders
    # =========================================================================

    async def get_order_by_id(self, order_id: str) -> Optional[Order]:
        with translate_errors("select", "orders"):
            model = await self._session.get(OrderModel, order_id, populate_existing=True)
        return self._order_to_domain(model) if model else None

    async def create_order(self, data: OrderUpsert) -> Order:
        """Insert or fully overwrite by provider order id (ON CONFLICT DO UPDATE)."""
        now = datetime.now(timezone.utc)
        values = column_values(data)
        values["subscription_id"] = as_uuid(values["subscription_id"])

        statement = pg_insert(OrderModel).values(created_at=now, updated_at=now, **values)
        overwrite = {
            key: statement.excluded[key]
            for key in values
            if key != "id"
        }
        overwrite["updated_at"] = now
        statement = statement.on_conflict_do_update(
            index_elements=[OrderModel.id],
            set_=overwrite,
        )

        with translate_errors("upsert", "orders"):
            await self._session.execute(statement)
            result = await self._session.execute(
                select(OrderModel)
                .where(OrderModel.id == data.id)
                .execution_options(populate_existing=True)
            )
            model = result.scalar_one()
        return self._order_to_domain(model)

    # =========================================================================
    # Audit Log
    # =========================================================================

    async def log_subscription_event(self, data: SubscriptionEventCreate) -> SubscriptionEvent:
        values = column_values(data)
        values["subscription_id"] = as_uuid(values["subscription_id"])
        values["client_id"] = as_uuid(values["client_id"])
        with translate_errors("insert", "subscription_events"):
            async with self._session.begin_nested():
                model = SubscriptionEventModel(**values)
                self._session.add(model)
                await self._session.flush()
        return self._event_to_domain(model)

    # =========================================================================
    # Mapping Helpers
    # =========================================================================

    async def _load_for_update(self, model_class, row_id: str, table: str):
        row_uuid = as_uuid(row_id)
        model = None
        if row_uuid is not None:
            model = await self._session.get(model_class, row_uuid, with_for_update=True)
        if model is None:
            raise NotFoundError(f"{table} row not found: {row_id}", entity=table, key=str(row_id))
        return model

    @staticmethod
    def _customer_to_domain(model: CustomerModel) -> Customer:
        return Customer(
            id=str(model.id),
            email=model.email,
            first_name=model.first_name,
            last_name=model.last_name,
            phone=model.phone,
            whatsapp_number=model.whatsapp_number,
            role=model.role,
            status=model.status,
            billing_status=model.billing_status,
            metadata=dict(model.customer_metadata or {}),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _subscription_to_domain(model: SubscriptionModel) -> Subscription:
        return Subscription(
            id=str(model.id),
            user_id=str(model.user_id),
            provider=model.provider,
            provider_subscription_id=model.provider_subscription_id,
            plan_name=model.plan_name,
            price_cents=model.price_cents,
            currency=model.currency,
            billing_interval=model.billing_interval,
            interval=model.interval,
            status=model.status,
            trial_ends_at=model.trial_ends_at,
            current_period_end=model.current_period_end,
            meta=dict(model.meta or {}),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _order_to_domain(model: OrderModel) -> Order:
        return Order(
            id=model.id,
            subscription_id=str(model.subscription_id),
            amount=model.amount,
            status=model.status,
            paid_at=model.paid_at,
            due_date=model.due_date,
            payment_method=model.payment_method,
            installments=model.installments,
            card_brand=model.card_brand,
            card_last_digits=model.card_last_digits,
            boleto_barcode=model.boleto_barcode,
            pix_qr_code=model.pix_qr_code,
            picpay_qr_code=model.picpay_qr_code,
            meta=dict(model.meta or {}),
            created_at=model.created_at,
            updated_at=model.updated_at,
        )

    @staticmethod
    def _event_to_domain(model: SubscriptionEventModel) -> SubscriptionEvent:
        return SubscriptionEvent(
            id=str(model.id),
            subscription_id=str(model.subscription_id) if model.subscription_id else None,
            client_id=str(model.client_id) if model.client_id else None,
            type=model.type,
            provider=model.provider,
            severity=model.severity,
            message=model.message,
            payload=dict(model.payload or {}),
            origin=model.origin,
            created_at=model.created_at,
        )


@asynccontextmanager
async def sql_billing_unit_of_work() -> AsyncIterator[SqlBillingStorage]:
    """
    One transaction per event: commit on success, roll back on any error.

    Usage:
        async with sql_billing_unit_of_work() as storage:
            await WebhookEventDispatcher(storage).dispatch(payload)
    """
    try:
        async with get_session_context() as session:
            yield SqlBillingStorage(session)
    except SQLAlchemyError as e:
        logger.error(f"Billing transaction failed: {e}")
        raise PersistenceError(
            "Failed to commit billing transaction",
            operation="commit",
            original_error=e,
        )
