"""
Customer Reconciler

Idempotent upsert of customers keyed by email, with a metadata-preserving merge.
"""

import logging
from typing import Any, Dict, Optional, Tuple

from app.domain.billing import (
    ConnectionStatus,
    Customer,
    CustomerCreate,
    CustomerPayload,
    CustomerUpdate,
    UserRole,
)
from app.domain.billing_storage import BillingStorage
from app.infrastructure.exceptions import ValidationError


logger = logging.getLogger(__name__)


def split_name(name: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """Split a full name on the first whitespace run into (first, last)."""
    parts = (name or "").split(None, 1)
    first_name = parts[0] if parts else None
    last_name = parts[1].strip() if len(parts) > 1 else None
    return first_name or None, last_name or None


class CustomerReconciler:
    """Folds a provider customer block into the stored customer."""

    def __init__(self, storage: BillingStorage):
        self._storage = storage

    async def upsert_customer(self, customer_data: Optional[CustomerPayload]) -> Customer:
        """
        Create or update a customer from a provider block.

        Metadata is shallow-merged: new keys win, keys absent from the block
        (``isTest``, ``createdBy`` from earlier test traffic) survive.

        Raises:
            ValidationError: email missing
        """
        if customer_data is None or not customer_data.email:
            raise ValidationError("Customer email is required", field="customer.email")

        email = customer_data.email.strip()
        first_name, last_name = split_name(customer_data.name)
        phone = customer_data.phone or None
        incoming_metadata = self._build_metadata(customer_data)

        existing = await self._storage.get_user_by_email(email)

        if existing:
            logger.info(f"Updating existing customer: {email}")
            changes: Dict[str, Any] = {
                "status": ConnectionStatus.AUTHENTICATED,
                "metadata": {**existing.metadata, **incoming_metadata},
            }
            if first_name:
                changes["first_name"] = first_name
            if last_name:
                changes["last_name"] = last_name
            if phone:
                changes["phone"] = phone
                changes["whatsapp_number"] = phone
            return await self._storage.update_user(existing.id, CustomerUpdate(**changes))

        logger.info(f"Creating new customer: {email}")
        return await self._storage.create_user(
            CustomerCreate(
                email=email,
                first_name=first_name,
                last_name=last_name,
                phone=phone,
                whatsapp_number=phone,
                role=UserRole.USER,
                status=ConnectionStatus.AUTHENTICATED,
                metadata=incoming_metadata,
            )
        )

    @staticmethod
    def _build_metadata(customer_data: CustomerPayload) -> Dict[str, Any]:
        metadata = {
            "doc_number": customer_data.doc_number,
            "provider_status": customer_data.status,
            **(customer_data.metadata or {}),
        }
        return {key: value for key, value in metadata.items() if value is not None}
