"""
Order Ledger

Idempotent upsert of order/payment records keyed by the provider's order id.
Later deliveries for the same order id fully supersede earlier ones.
"""

import logging
from typing import Optional

from app.domain.billing import Order, OrderPayload, OrderStatus, OrderUpsert
from app.domain.billing_storage import BillingStorage
from app.domain.status_mapping import map_order_status, parse_provider_datetime, to_cents
from app.infrastructure.exceptions import NotFoundError, ValidationError


logger = logging.getLogger(__name__)


class OrderLedger:
    """Writes provider orders through the billing storage contract."""

    def __init__(self, storage: BillingStorage):
        self._storage = storage

    async def upsert_order(
        self,
        subscription_id: str,
        order_data: Optional[OrderPayload],
    ) -> Order:
        """
        Create or overwrite an order.

        Args:
            subscription_id: Internal id of the owning subscription
            order_data: Provider order block

        Returns:
            The stored order

        Raises:
            ValidationError: order id missing
        """
        if order_data is None or not order_data.id:
            raise ValidationError("Order id is required", field="order.id")

        existing = await self._storage.get_order_by_id(order_data.id)
        if existing:
            logger.info(f"Order {order_data.id} already exists, overwriting")

        record = OrderUpsert(
            id=order_data.id,
            subscription_id=subscription_id,
            amount=to_cents(order_data.amount),
            status=map_order_status(order_data.status),
            paid_at=parse_provider_datetime(order_data.paid_at),
            due_date=parse_provider_datetime(order_data.due_date),
            payment_method=order_data.payment_method or None,
            installments=order_data.installments or None,
            card_brand=order_data.card_brand or None,
            card_last_digits=order_data.card_last_digits or None,
            boleto_barcode=order_data.boleto_barcode or None,
            pix_qr_code=order_data.pix_qr_code or None,
            picpay_qr_code=order_data.picpay_qr_code or None,
            meta={"raw_order_data": order_data.model_dump(mode="json", by_alias=True)},
        )

        order = await self._storage.create_order(record)
        logger.info(f"Order {'updated' if existing else 'created'}: {order.id} ({order.status.value})")
        return order

    async def set_order_status(self, order_id: Optional[str], status: OrderStatus) -> Order:
        """
        Overwrite the status of an existing order, keeping every other field.

        Raises:
            ValidationError: order id missing
            NotFoundError: no order with that id
        """
        if not order_id:
            raise ValidationError("Order id is required", field="order.id")

        existing = await self._storage.get_order_by_id(order_id)
        if existing is None:
            raise NotFoundError(f"Order not found: {order_id}", entity="order", key=order_id)

        record = OrderUpsert(
            **existing.model_dump(exclude={"status", "created_at", "updated_at"}),
            status=status,
        )
        order = await self._storage.create_order(record)
        logger.info(f"Order {order_id} set to {status.value}")
        return order
