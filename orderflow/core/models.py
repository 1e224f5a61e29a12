from datetime import datetime, timezone
from decimal import Decimal
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, field_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _ensure_utc(value: datetime | None) -> datetime | None:
    # SQLite hands back naive values; everything is stored in UTC
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class OrderStatusEnum(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    FAILED = "failed"
    CANCELLED = "cancelled"


class PaymentStatusEnum(StrEnum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class ShippingAddress(BaseModel):
    name: str
    line1: str
    line2: str | None = None
    city: str
    state: str
    postal_code: str
    country: str = "India"
    phone: str | None = None


class OrderItem(BaseModel):
    id: str
    variant_id: str
    name: str
    quantity: int
    unit_price: Decimal
    total_price: Decimal


class Order(BaseModel):
    id: str
    user_id: str
    customer_email: str
    cart_id: str | None = None
    status: OrderStatusEnum
    payment_status: PaymentStatusEnum
    payment_id: str | None = None
    payment_method: str | None = None
    subtotal: Decimal
    tax: Decimal
    shipping: Decimal
    discount: Decimal
    total: Decimal
    shipping_address: ShippingAddress | None = None
    needs_review: bool = False
    review_reason: str | None = None
    items: list[OrderItem]
    created_at: datetime
    updated_at: datetime

    normalize_timestamps = field_validator("created_at", "updated_at")(_ensure_utc)


class ProductVariant(BaseModel):
    id: str
    sku: str
    name: str
    stock_quantity: int


class CartItem(BaseModel):
    id: str
    variant_id: str
    quantity: int


class Cart(BaseModel):
    id: str
    user_id: str
    is_active: bool
    items: list[CartItem]


class FulfillmentResult(BaseModel):
    order: Order
    # False when the order had already left "pending" (duplicate delivery)
    applied: bool


class SyncEntityType(StrEnum):
    USER = "user"
    CONTACT_SUBMISSION = "contact_submission"
    B2B_QUOTE = "b2b_quote"
    ORDER = "order"


class SyncOperation(StrEnum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class ZohoService(StrEnum):
    CRM = "crm"
    BOOKS = "books"


class ZohoEntityType(StrEnum):
    CONTACT = "Contact"
    LEAD = "Lead"
    INVOICE = "Invoice"


class SyncStatus(StrEnum):
    PENDING = "pending"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    RETRYING = "retrying"


class SyncTask(BaseModel):
    entity_type: SyncEntityType
    entity_id: str
    operation: SyncOperation
    zoho_service: ZohoService
    zoho_entity_type: ZohoEntityType
    request_payload: dict[str, Any] = {}


class SyncQueueItem(BaseModel):
    id: str
    entity_type: SyncEntityType
    entity_id: str
    operation: SyncOperation
    zoho_service: ZohoService
    zoho_entity_type: ZohoEntityType
    request_payload: dict[str, Any] | None = None
    status: SyncStatus
    attempt_count: int
    max_attempts: int
    next_retry_at: datetime
    error_message: str | None = None
    error_details: dict[str, Any] | None = None
    response_payload: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime

    normalize_timestamps = field_validator(
        "next_retry_at", "created_at", "updated_at"
    )(_ensure_utc)

    @property
    def is_terminal(self) -> bool:
        return self.status in (SyncStatus.SUCCEEDED, SyncStatus.FAILED)


class SyncLogPage(BaseModel):
    data: list[SyncQueueItem]
    count: int
    page: int
    page_size: int


class SyncBatchResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0


class RegisteredUser(BaseModel):
    id: str
    email: str
    first_name: str
    last_name: str
    phone: str | None = None
    company_name: str | None = None
    gst_number: str | None = None
    role: str = "customer"


class ContactSubmission(BaseModel):
    id: str
    name: str
    email: str
    phone: str | None = None
    company: str | None = None
    subject: str
    message: str


class QuoteRequest(BaseModel):
    id: str
    user: RegisteredUser
    total_amount: Decimal
    notes: str | None = None
