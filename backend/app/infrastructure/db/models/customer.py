"""
Customer Database Model

SQLModel table for billing customers, keyed by email.
"""

from typing import Optional

from sqlalchemy import Column
from sqlalchemy.dialects.postgresql import JSONB
from sqlmodel import Field

from app.infrastructure.db.models.base import TimestampMixin, UUIDMixin


class CustomerModel(UUIDMixin, TimestampMixin, table=True):
    """
    Customer table.

    Maps to the 'users' table in PostgreSQL. ``customer_metadata`` is stored in
    the ``metadata`` column (the attribute name is reserved by SQLAlchemy).
    """

    __tablename__ = "users"

    email: str = Field(unique=True, index=True, nullable=False, max_length=320)
    first_name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    phone: Optional[str] = Field(default=None, max_length=50)
    whatsapp_number: Optional[str] = Field(default=None, max_length=50)

    role: str = Field(default="user", max_length=20)
    status: str = Field(default="authenticated", max_length=30)
    billing_status: str = Field(default="none", max_length=20, index=True)

    customer_metadata: dict = Field(
        default_factory=dict,
        sa_column=Column("metadata", JSONB, nullable=False, default=dict),
    )
