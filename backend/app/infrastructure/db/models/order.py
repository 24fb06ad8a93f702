"""
Order Database Model

SQLModel table for order/payment records. The primary key is the provider's order id.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from sqlalchemy import Column, DateTime
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field

from app.infrastructure.db.models.base import TimestampMixin


class OrderModel(TimestampMixin, table=True):
    """Maps to the 'orders' table in PostgreSQL."""

    __tablename__ = "orders"

    id: str = Field(primary_key=True, max_length=255)
    subscription_id: UUID = Field(foreign_key="subscriptions.id", index=True, nullable=False)

    amount: int = Field(default=0, description="Amount in minor units")
    status: str = Field(default="failed", max_length=20, index=True)
    paid_at: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    due_date: Optional[datetime] = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    # Payment method details
    payment_method: Optional[str] = Field(default=None, max_length=50)
    installments: Optional[int] = Field(default=None)
    card_brand: Optional[str] = Field(default=None, max_length=50)
    card_last_digits: Optional[str] = Field(default=None, max_length=4)
    boleto_barcode: Optional[str] = Field(default=None)
    pix_qr_code: Optional[str] = Field(default=None)
    picpay_qr_code: Optional[str] = Field(default=None)

    meta: dict = Field(default_factory=dict, sa_column=Column(JSONB, nullable=False, default=dict))
