"""
Billing Domain Models

Domain models for the subscription billing bounded context.
Enums, entities, write schemas and the loosely-typed provider payload DTOs.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Union
from pydantic import BaseModel, ConfigDict, Field


class SubscriptionStatus(str, Enum):
    """Internal subscription lifecycle status."""
    TRIAL = "trial"
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELED = "canceled"
    OVERDUE = "overdue"


class BillingStatus(str, Enum):
    """Denormalized copy of the latest subscription status kept on the customer."""
    NONE = "none"
    TRIAL = "trial"
    ACTIVE = "active"
    PAUSED = "paused"
    CANCELED = "canceled"
    OVERDUE = "overdue"


class OrderStatus(str, Enum):
    """Settlement status of a single order/payment."""
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"
    CHARGEBACK = "chargeback"


class BillingInterval(str, Enum):
    MONTH = "month"
    YEAR = "year"


class Interval(str, Enum):
    MONTHLY = "monthly"
    YEARLY = "yearly"


class BillingProvider(str, Enum):
    """Provider namespace of a subscription's natural key."""
    CAKTOS = "caktos"
    MANUAL = "manual"


class UserRole(str, Enum):
    USER = "user"
    ADMIN = "admin"


class ConnectionStatus(str, Enum):
    AWAITING_EMAIL = "awaiting_email"
    AUTHENTICATED = "authenticated"


class WebhookStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    FAILED = "failed"


class WebhookEventKind(str, Enum):
    """Event kinds delivered by the billing provider."""
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    SUBSCRIPTION_SUSPENDED = "subscription_suspended"
    SUBSCRIPTION_RESUMED = "subscription_resumed"
    SUBSCRIPTION_TRIAL_ENDED = "subscription_trial_ended"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REFUNDED = "payment_refunded"
    PAYMENT_CHARGEBACK = "payment_chargeback"


class SubscriptionEventType(str, Enum):
    """Closed taxonomy of audit log entries."""
    SUBSCRIPTION_CREATED = "subscription_created"
    SUBSCRIPTION_UPDATED = "subscription_updated"
    SUBSCRIPTION_CANCELED = "subscription_canceled"
    SUBSCRIPTION_PAUSED = "subscription_paused"
    SUBSCRIPTION_REACTIVATED = "subscription_reactivated"
    SUBSCRIPTION_TRIAL_ENDED = "subscription_trial_ended"
    PAYMENT_SUCCEEDED = "payment_succeeded"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REFUNDED = "payment_refunded"
    PAYMENT_CHARGEBACK = "payment_chargeback"


class EventSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class EventOrigin(str, Enum):
    WEBHOOK = "webhook"
    SYSTEM = "system"


# =============================================================================
# Domain Entities
# =============================================================================

class Customer(BaseModel):
    """Customer (user) record, keyed by email."""
    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    whatsapp_number: Optional[str] = None
    role: UserRole = UserRole.USER
    status: ConnectionStatus = ConnectionStatus.AWAITING_EMAIL
    billing_status: BillingStatus = BillingStatus.NONE
    metadata: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Subscription(BaseModel):
    """Subscription record, keyed by (provider, provider_subscription_id)."""
    id: str
    user_id: str
    provider: BillingProvider
    provider_subscription_id: str
    plan_name: str
    price_cents: int = 0
    currency: str = "BRL"
    billing_interval: BillingInterval = BillingInterval.MONTH
    interval: Interval = Interval.MONTHLY
    status: SubscriptionStatus
    trial_ends_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Order(BaseModel):
    """Order/payment record; id is the provider's order id."""
    id: str
    subscription_id: str
    amount: int
    status: OrderStatus
    paid_at: Optional[datetime] = None
    due_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    installments: Optional[int] = None
    card_brand: Optional[str] = None
    card_last_digits: Optional[str] = None
    boleto_barcode: Optional[str] = None
    pix_qr_code: Optional[str] = None
    picpay_qr_code: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class SubscriptionEvent(BaseModel):
    """Append-only audit entry."""
    id: str
    subscription_id: Optional[str] = None
    client_id: Optional[str] = None
    type: SubscriptionEventType
    provider: str
    severity: EventSeverity = EventSeverity.INFO
    message: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    origin: EventOrigin = EventOrigin.WEBHOOK
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WebhookEvent(BaseModel):
    """Raw ingestion record of one provider delivery."""
    id: str
    event_type: str
    event_key: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)
    status: WebhookStatus = WebhookStatus.PENDING
    received_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_count: int = 0
    last_retry_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WebhookLog(BaseModel):
    """One processing step recorded against a webhook delivery."""
    id: str
    webhook_event_id: str
    step: str
    level: EventSeverity = EventSeverity.INFO
    payload: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None
    timestamp: Optional[datetime] = None

    class Config:
        from_attributes = True


# =============================================================================
# Write Schemas
# =============================================================================

class CustomerCreate(BaseModel):
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    whatsapp_number: Optional[str] = None
    role: UserRole = UserRole.USER
    status: ConnectionStatus = ConnectionStatus.AUTHENTICATED
    billing_status: BillingStatus = BillingStatus.NONE
    metadata: Dict[str, Any] = Field(default_factory=dict)


class CustomerUpdate(BaseModel):
    """Partial update; only explicitly set fields are written."""
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    phone: Optional[str] = None
    whatsapp_number: Optional[str] = None
    status: Optional[ConnectionStatus] = None
    billing_status: Optional[BillingStatus] = None
    metadata: Optional[Dict[str, Any]] = None


class SubscriptionCreate(BaseModel):
    user_id: str
    provider: BillingProvider
    provider_subscription_id: str
    plan_name: str
    price_cents: int = 0
    currency: str = "BRL"
    billing_interval: BillingInterval = BillingInterval.MONTH
    interval: Interval = Interval.MONTHLY
    status: SubscriptionStatus
    trial_ends_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class SubscriptionUpdate(BaseModel):
    """Partial update; only explicitly set fields are written."""
    user_id: Optional[str] = None
    plan_name: Optional[str] = None
    price_cents: Optional[int] = None
    currency: Optional[str] = None
    billing_interval: Optional[BillingInterval] = None
    interval: Optional[Interval] = None
    status: Optional[SubscriptionStatus] = None
    trial_ends_at: Optional[datetime] = None
    current_period_end: Optional[datetime] = None
    meta: Optional[Dict[str, Any]] = None


class OrderUpsert(BaseModel):
    """Full order record; an existing row with the same id is overwritten."""
    id: str
    subscription_id: str
    amount: int
    status: OrderStatus
    paid_at: Optional[datetime] = None
    due_date: Optional[datetime] = None
    payment_method: Optional[str] = None
    installments: Optional[int] = None
    card_brand: Optional[str] = None
    card_last_digits: Optional[str] = None
    boleto_barcode: Optional[str] = None
    pix_qr_code: Optional[str] = None
    picpay_qr_code: Optional[str] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class SubscriptionEventCreate(BaseModel):
    subscription_id: Optional[str] = None
    client_id: Optional[str] = None
    type: SubscriptionEventType
    provider: str
    severity: EventSeverity = EventSeverity.INFO
    message: str
    payload: Dict[str, Any] = Field(default_factory=dict)
    origin: EventOrigin = EventOrigin.WEBHOOK


class WebhookEventCreate(BaseModel):
    event_type: str
    event_key: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)
    headers: Dict[str, str] = Field(default_factory=dict)
    status: WebhookStatus = WebhookStatus.PENDING


class WebhookEventUpdate(BaseModel):
    """Partial update; only explicitly set fields are written."""
    status: Optional[WebhookStatus] = None
    processed_at: Optional[datetime] = None
    error_message: Optional[str] = None
    retry_count: Optional[int] = None
    last_retry_at: Optional[datetime] = None


class WebhookLogCreate(BaseModel):
    webhook_event_id: str
    step: str
    level: EventSeverity = EventSeverity.INFO
    payload: Dict[str, Any] = Field(default_factory=dict)
    error: Optional[str] = None


# =============================================================================
# Provider Payload DTOs
# =============================================================================

class _ProviderBlock(BaseModel):
    """Provider blocks are loosely typed: unknown keys are kept, ids may be numbers."""
    model_config = ConfigDict(
        extra="allow",
        populate_by_name=True,
        coerce_numbers_to_str=True,
    )


class SubscriptionPayload(_ProviderBlock):
    id: Optional[str] = None
    status: Optional[str] = None
    offer_id: Optional[str] = None
    product_id: Optional[str] = None
    amount: Optional[float] = None
    trial_days: Optional[int] = None
    trial_end_date: Optional[str] = None
    next_payment_date: Optional[str] = None
    current_period: Optional[str] = None
    recurrence_period: Optional[Union[int, str]] = None
    payment_method: Optional[str] = None
    created_at: Optional[str] = None
    updated_at: Optional[str] = None
    provider: Optional[str] = None
    is_test: bool = Field(default=False, alias="isTest")
    meta: Dict[str, Any] = Field(default_factory=dict)


class CustomerPayload(_ProviderBlock):
    id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    doc_number: Optional[str] = None
    status: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)


class OrderPayload(_ProviderBlock):
    id: Optional[str] = None
    amount: Optional[float] = None
    status: Optional[str] = None
    paid_at: Optional[str] = None
    due_date: Optional[str] = None
    payment_method: Optional[str] = None
    installments: Optional[int] = None
    card_brand: Optional[str] = None
    card_last_digits: Optional[str] = None
    boleto_barcode: Optional[str] = None
    pix_qr_code: Optional[str] = None
    picpay_qr_code: Optional[str] = None


class WebhookData(_ProviderBlock):
    subscription: Optional[SubscriptionPayload] = None
    customer: Optional[CustomerPayload] = None
    order: Optional[OrderPayload] = None
    meta: Dict[str, Any] = Field(default_factory=dict)


class WebhookPayload(_ProviderBlock):
    """Inbound envelope: ``{"event": ..., "data": {...}}``."""
    event: str
    data: WebhookData = Field(default_factory=WebhookData)


class DispatchResult(BaseModel):
    """Entities touched by one successfully applied event."""
    event: str
    customer: Optional[Customer] = None
    subscription: Optional[Subscription] = None
    order: Optional[Order] = None
