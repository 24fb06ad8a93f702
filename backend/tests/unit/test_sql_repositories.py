"""
Unit tests for the PostgreSQL storage.

Runs the SQL repositories against a mocked AsyncSession and checks the
statements they issue, their transaction boundaries and error translation.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch
from uuid import uuid4

import pytest
from sqlalchemy.dialects import postgresql
from sqlalchemy.exc import OperationalError, SQLAlchemyError

from app.domain.billing import (
    BillingProvider,
    EventSeverity,
    OrderStatus,
    OrderUpsert,
    SubscriptionEventCreate,
    SubscriptionEventType,
    WebhookEventCreate,
    WebhookLogCreate,
)
from app.infrastructure.db.models import OrderModel, SubscriptionEventModel, SubscriptionModel, WebhookLogModel
from app.infrastructure.db.repositories.billing_repository import (
    SqlBillingStorage,
    sql_billing_unit_of_work,
    translate_errors,
)
from app.infrastructure.db.repositories.webhook_event_repository import WebhookEventRepository
from app.infrastructure.exceptions import NotFoundError, PersistenceError
from app.infrastructure.payments.audit_log import AuditLog


NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)
SUBSCRIPTION_UUID = uuid4()


def compile_sql(statement) -> str:
    return str(statement.compile(dialect=postgresql.dialect()))


@pytest.fixture
def savepoint():
    """Async context manager returned by session.begin_nested()."""
    nested = MagicMock()
    nested.__aenter__.return_value = nested
    nested.__aexit__.return_value = False
    return nested


@pytest.fixture
def mock_session(savepoint):
    """Mock async database session."""
    session = AsyncMock()
    session.add = MagicMock()
    session.flush = AsyncMock()
    session.execute = AsyncMock()
    session.get = AsyncMock(return_value=None)
    session.begin_nested = MagicMock(return_value=savepoint)
    return session


@pytest.fixture
def sql_storage(mock_session) -> SqlBillingStorage:
    return SqlBillingStorage(mock_session)


@pytest.fixture
def patched_webhook_session(mock_session):
    """Route the webhook repository's short sessions to the mock session."""
    @asynccontextmanager
    async def session_context():
        yield mock_session

    with patch(
        "app.infrastructure.db.repositories.webhook_event_repository.get_session_context",
        session_context,
    ) as patched:
        yield patched


# =============================================================================
# Orders
# =============================================================================

class TestOrderUpsert:

    @pytest.mark.asyncio
    async def test_on_conflict_overwrites_every_column_but_the_key(self, sql_storage, mock_session):
        stored = OrderModel(
            id="ord_1",
            subscription_id=SUBSCRIPTION_UUID,
            amount=2990,
            status="refunded",
            meta={},
            created_at=NOW,
            updated_at=NOW,
        )
        reselect = MagicMock()
        reselect.scalar_one.return_value = stored
        mock_session.execute.side_effect = [MagicMock(), reselect]

        order = await sql_storage.create_order(
            OrderUpsert(
                id="ord_1",
                subscription_id=str(SUBSCRIPTION_UUID),
                amount=2990,
                status=OrderStatus.REFUNDED,
            )
        )

        upsert = mock_session.execute.await_args_list[0].args[0]
        sql = compile_sql(upsert)
        assert "ON CONFLICT (id) DO UPDATE SET" in sql

        assignments = [
            item.split(" = ")[0].strip()
            for item in sql.split("DO UPDATE SET", 1)[1].split(", ")
        ]
        assert {"subscription_id", "amount", "status", "paid_at", "meta", "updated_at"} <= set(assignments)
        assert "id" not in assignments
        assert "created_at" not in assignments

        assert order.id == "ord_1"
        assert order.status == OrderStatus.REFUNDED
        assert order.subscription_id == str(SUBSCRIPTION_UUID)

    @pytest.mark.asyncio
    async def test_driver_error_becomes_persistence_error(self, sql_storage, mock_session):
        mock_session.execute.side_effect = OperationalError("INSERT", {}, Exception("connection reset"))

        with pytest.raises(PersistenceError) as exc_info:
            await sql_storage.create_order(
                OrderUpsert(
                    id="ord_1",
                    subscription_id=str(SUBSCRIPTION_UUID),
                    amount=100,
                    status=OrderStatus.PAID,
                )
            )

        assert exc_info.value.details == {"operation": "upsert", "table": "orders"}
        assert isinstance(exc_info.value.original_error, OperationalError)


# =============================================================================
# Subscriptions
# =============================================================================

class TestSubscriptionLookup:

    @pytest.mark.asyncio
    async def test_lookup_by_provider_key_locks_the_row(self, sql_storage, mock_session):
        result = MagicMock()
        result.scalars.return_value.first.return_value = None
        mock_session.execute.return_value = result

        found = await sql_storage.find_subscription_by_identifier("sub_1", BillingProvider.CAKTOS)

        assert found is None
        sql = compile_sql(mock_session.execute.await_args.args[0])
        assert sql.rstrip().endswith("FOR UPDATE")
        assert "subscriptions.provider =" in sql
        mock_session.get.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_internal_id_fallback_also_locks(self, sql_storage, mock_session):
        result = MagicMock()
        result.scalars.return_value.first.return_value = None
        mock_session.execute.return_value = result

        await sql_storage.find_subscription_by_identifier(str(SUBSCRIPTION_UUID))

        mock_session.get.assert_awaited_once_with(
            SubscriptionModel, SUBSCRIPTION_UUID, with_for_update=True
        )

    @pytest.mark.asyncio
    async def test_non_uuid_id_matches_nothing_without_querying(self, sql_storage, mock_session):
        assert await sql_storage.get_subscription_by_id("sub_1") is None
        mock_session.get.assert_not_awaited()


# =============================================================================
# Audit Log
# =============================================================================

class TestAuditInsert:

    def _event(self) -> SubscriptionEventCreate:
        return SubscriptionEventCreate(
            subscription_id=str(SUBSCRIPTION_UUID),
            type=SubscriptionEventType.PAYMENT_REFUNDED,
            provider="caktos",
            severity=EventSeverity.WARNING,
            message="Payment refunded - order ord_1",
            payload={"event": "payment_refunded"},
        )

    @pytest.mark.asyncio
    async def test_insert_runs_inside_savepoint(self, sql_storage, mock_session, savepoint):
        event = await sql_storage.log_subscription_event(self._event())

        mock_session.begin_nested.assert_called_once_with()
        savepoint.__aenter__.assert_awaited_once()
        savepoint.__aexit__.assert_awaited_once()
        added = mock_session.add.call_args.args[0]
        assert isinstance(added, SubscriptionEventModel)
        assert added.subscription_id == SUBSCRIPTION_UUID
        assert added.type == "payment_refunded"
        assert event.type == SubscriptionEventType.PAYMENT_REFUNDED
        assert event.subscription_id == str(SUBSCRIPTION_UUID)

    @pytest.mark.asyncio
    async def test_failed_insert_rolls_back_savepoint_only(self, sql_storage, mock_session, savepoint):
        mock_session.flush.side_effect = SQLAlchemyError("check constraint violated")

        with pytest.raises(PersistenceError):
            await sql_storage.log_subscription_event(self._event())

        exc_type = savepoint.__aexit__.await_args.args[0]
        assert exc_type is SQLAlchemyError
        mock_session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_audit_log_swallows_failed_insert(self, sql_storage, mock_session):
        mock_session.flush.side_effect = SQLAlchemyError("check constraint violated")

        entry = await AuditLog(sql_storage).append(
            SubscriptionEventType.PAYMENT_REFUNDED,
            provider="caktos",
            message="Payment refunded - order ord_1",
            payload={},
        )

        assert entry is None


# =============================================================================
# Transactions & Errors
# =============================================================================

class TestTranslateErrors:

    def test_sqlalchemy_error_is_wrapped(self):
        cause = SQLAlchemyError("deadlock detected")

        with pytest.raises(PersistenceError) as exc_info:
            with translate_errors("update", "users"):
                raise cause

        assert exc_info.value.message == "Failed to update users"
        assert exc_info.value.details == {"operation": "update", "table": "users"}
        assert exc_info.value.original_error is cause

    def test_domain_errors_pass_through(self):
        with pytest.raises(NotFoundError):
            with translate_errors("update", "users"):
                raise NotFoundError("users row not found: x", entity="users", key="x")


class TestUnitOfWork:

    @pytest.fixture
    def db_manager(self, mock_session):
        factory_context = MagicMock()
        factory_context.__aenter__.return_value = mock_session
        factory_context.__aexit__.return_value = False
        manager = MagicMock()
        manager.session_factory.return_value = factory_context
        with patch("app.infrastructure.db.database.get_db_manager", return_value=manager):
            yield manager

    @pytest.mark.asyncio
    async def test_commits_on_success(self, db_manager, mock_session):
        async with sql_billing_unit_of_work() as storage:
            assert isinstance(storage, SqlBillingStorage)

        mock_session.commit.assert_awaited_once()
        mock_session.rollback.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_rolls_back_and_reraises_domain_error(self, db_manager, mock_session):
        with pytest.raises(NotFoundError):
            async with sql_billing_unit_of_work():
                raise NotFoundError("Subscription not found: caktos/sub_1")

        mock_session.rollback.assert_awaited_once()
        mock_session.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_commit_failure_becomes_persistence_error(self, db_manager, mock_session):
        mock_session.commit.side_effect = OperationalError("COMMIT", {}, Exception("serialization failure"))

        with pytest.raises(PersistenceError) as exc_info:
            async with sql_billing_unit_of_work():
                pass

        assert exc_info.value.details == {"operation": "commit"}
        mock_session.rollback.assert_awaited_once()


# =============================================================================
# Webhook Events
# =============================================================================

class TestWebhookEventRepository:

    @pytest.mark.asyncio
    async def test_create_failure_becomes_persistence_error(self, patched_webhook_session, mock_session):
        mock_session.flush.side_effect = SQLAlchemyError("disk full")

        with pytest.raises(PersistenceError) as exc_info:
            await WebhookEventRepository().create_webhook_event(
                WebhookEventCreate(event_type="subscription_created", event_key="subscription_sub_1")
            )

        assert exc_info.value.details == {"operation": "insert", "table": "webhook_events"}

    @pytest.mark.asyncio
    async def test_save_log_step(self, patched_webhook_session, mock_session):
        webhook_id = uuid4()

        log = await WebhookEventRepository().save_webhook_log(
            WebhookLogCreate(
                webhook_event_id=str(webhook_id),
                step="Processing failed",
                level=EventSeverity.ERROR,
                error="Subscription not found",
            )
        )

        added = mock_session.add.call_args.args[0]
        assert isinstance(added, WebhookLogModel)
        assert added.webhook_event_id == webhook_id
        assert added.level == "error"
        assert log.webhook_event_id == str(webhook_id)
        assert log.level == EventSeverity.ERROR

    @pytest.mark.asyncio
    async def test_log_for_non_uuid_id_is_rejected(self, patched_webhook_session, mock_session):
        repository = WebhookEventRepository()

        with pytest.raises(NotFoundError):
            await repository.save_webhook_log(WebhookLogCreate(webhook_event_id="missing", step="x"))
        assert await repository.list_webhook_logs("missing") == []

        mock_session.add.assert_not_called()
        mock_session.execute.assert_not_awaited()
