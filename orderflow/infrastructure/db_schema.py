import uuid

from sqlalchemy import (
    DECIMAL,
    JSON,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    Table,
    Text,
    Uuid,
    func,
)


def _text_id() -> str:
    return str(uuid.uuid4())


metadata = MetaData()

orders_tbl = Table(
    "orders",
    metadata,
    Column("id", Text, primary_key=True, default=_text_id),
    Column("user_id", Text, nullable=False, index=True),
    Column("customer_email", Text, nullable=False),
    Column("cart_id", Text, ForeignKey("carts.id"), nullable=True),
    Column("status", Text, nullable=False),
    Column("payment_status", Text, nullable=False),
    Column("payment_id", Text, nullable=True),
    Column("payment_method", Text, nullable=True),
    Column("subtotal", DECIMAL(10, 2), nullable=False),
    Column("tax", DECIMAL(10, 2), nullable=False),
    Column("shipping", DECIMAL(10, 2), nullable=False),
    Column("discount", DECIMAL(10, 2), nullable=False),
    Column("total", DECIMAL(10, 2), nullable=False),
    Column("shipping_address", JSON, nullable=True),
    Column("needs_review", Boolean, nullable=False, default=False),
    Column("review_reason", Text, nullable=True),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

order_items_tbl = Table(
    "order_items",
    metadata,
    Column("id", Text, primary_key=True, default=_text_id),
    Column("order_id", Text, ForeignKey("orders.id"), nullable=False, index=True),
    Column("variant_id", Text, ForeignKey("product_variants.id"), nullable=False),
    Column("name", Text, nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", DECIMAL(10, 2), nullable=False),
    Column("total_price", DECIMAL(10, 2), nullable=False),
)

product_variants_tbl = Table(
    "product_variants",
    metadata,
    Column("id", Text, primary_key=True, default=_text_id),
    Column("sku", Text, nullable=False, unique=True),
    Column("name", Text, nullable=False),
    Column("stock_quantity", Integer, nullable=False),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
    CheckConstraint("stock_quantity >= 0", name="ck_variant_stock_non_negative"),
)

carts_tbl = Table(
    "carts",
    metadata,
    Column("id", Text, primary_key=True, default=_text_id),
    Column("user_id", Text, nullable=False, index=True),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("updated_at", DateTime(timezone=True), server_default=func.now()),
)

cart_items_tbl = Table(
    "cart_items",
    metadata,
    Column("id", Text, primary_key=True, default=_text_id),
    Column("cart_id", Text, ForeignKey("carts.id"), nullable=False, index=True),
    Column("variant_id", Text, ForeignKey("product_variants.id"), nullable=False),
    Column("quantity", Integer, nullable=False),
)

zoho_sync_logs_tbl = Table(
    "zoho_sync_logs",
    metadata,
    Column("id", Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4),
    Column("entity_type", Text, nullable=False),
    Column("entity_id", Text, nullable=False),
    Column("operation", Text, nullable=False),
    Column("zoho_service", Text, nullable=False),
    Column("zoho_entity_type", Text, nullable=False),
    Column("request_payload", JSON, nullable=True),
    Column("status", Text, nullable=False),
    Column("attempt_count", Integer, nullable=False, default=0),
    Column("max_attempts", Integer, nullable=False),
    Column("next_retry_at", DateTime(timezone=True), nullable=False),
    Column("error_message", Text, nullable=True),
    Column("error_details", JSON, nullable=True),
    Column("response_payload", JSON, nullable=True),
    Column("created_at", DateTime(timezone=True), nullable=False),
    Column("updated_at", DateTime(timezone=True), nullable=False),
    Index("ix_zoho_sync_logs_due", "status", "next_retry_at"),
)
