import uuid
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel
from sqlalchemy import Row, delete, func, insert, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.models import (
    Cart,
    CartItem,
    Order,
    OrderItem,
    OrderStatusEnum,
    PaymentStatusEnum,
    ProductVariant,
    ShippingAddress,
    SyncEntityType,
    SyncOperation,
    SyncQueueItem,
    SyncStatus,
    ZohoEntityType,
    ZohoService,
    utcnow,
)
from orderflow.infrastructure.db_schema import (
    cart_items_tbl,
    carts_tbl,
    order_items_tbl,
    orders_tbl,
    product_variants_tbl,
    zoho_sync_logs_tbl,
)


class DoesNotExist(Exception):
    pass


class OrderLineDTO(BaseModel):
    variant_id: str
    name: str
    quantity: int
    unit_price: Decimal


class CartLineDTO(BaseModel):
    variant_id: str
    quantity: int


class OrderRepository:
    ItemDTO = OrderLineDTO

    class CreateDTO(BaseModel):
        id: str | None = None
        user_id: str
        customer_email: str
        cart_id: str | None = None
        items: list[OrderLineDTO]
        tax: Decimal = Decimal("0")
        shipping: Decimal = Decimal("0")
        discount: Decimal = Decimal("0")
        shipping_address: ShippingAddress | None = None

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _construct(row: Row | None, item_rows: list[Row]) -> Order:
        if row is None:
            raise DoesNotExist

        return Order(
            id=row._mapping["id"],
            user_id=row._mapping["user_id"],
            customer_email=row._mapping["customer_email"],
            cart_id=row._mapping["cart_id"],
            status=row._mapping["status"],
            payment_status=row._mapping["payment_status"],
            payment_id=row._mapping["payment_id"],
            payment_method=row._mapping["payment_method"],
            subtotal=row._mapping["subtotal"],
            tax=row._mapping["tax"],
            shipping=row._mapping["shipping"],
            discount=row._mapping["discount"],
            total=row._mapping["total"],
            shipping_address=row._mapping["shipping_address"],
            needs_review=row._mapping["needs_review"],
            review_reason=row._mapping["review_reason"],
            items=[
                OrderItem(
                    id=item._mapping["id"],
                    variant_id=item._mapping["variant_id"],
                    name=item._mapping["name"],
                    quantity=item._mapping["quantity"],
                    unit_price=item._mapping["unit_price"],
                    total_price=item._mapping["total_price"],
                )
                for item in item_rows
            ],
            created_at=row._mapping["created_at"],
            updated_at=row._mapping["updated_at"],
        )

    async def create(self, order: CreateDTO) -> Order:
        now = utcnow()
        subtotal = sum(
            (item.unit_price * item.quantity for item in order.items),
            start=Decimal("0"),
        )
        values: dict[str, Any] = {
            "user_id": order.user_id,
            "customer_email": order.customer_email,
            "cart_id": order.cart_id,
            "status": OrderStatusEnum.PENDING,
            "payment_status": PaymentStatusEnum.PENDING,
            "subtotal": subtotal,
            "tax": order.tax,
            "shipping": order.shipping,
            "discount": order.discount,
            "total": subtotal + order.tax + order.shipping - order.discount,
            "shipping_address": (
                order.shipping_address.model_dump(mode="json")
                if order.shipping_address
                else None
            ),
            "needs_review": False,
            "created_at": now,
            "updated_at": now,
        }
        if order.id is not None:
            values["id"] = order.id

        result = await self._session.execute(
            insert(orders_tbl).values(values).returning(orders_tbl.c.id)
        )
        order_id = result.scalar_one()

        if order.items:
            await self._session.execute(
                insert(order_items_tbl),
                [
                    {
                        "id": str(uuid.uuid4()),
                        "order_id": order_id,
                        "variant_id": item.variant_id,
                        "name": item.name,
                        "quantity": item.quantity,
                        "unit_price": item.unit_price,
                        "total_price": item.unit_price * item.quantity,
                    }
                    for item in order.items
                ],
            )

        return await self.get_by_id(order_id)

    async def get_by_id(self, order_id: str, for_update: bool = False) -> Order:
        stmt = select(orders_tbl).where(orders_tbl.c.id == order_id)
        if for_update:
            stmt = stmt.with_for_update()
        row = (await self._session.execute(stmt)).fetchone()
        if row is None:
            raise DoesNotExist

        items_stmt = (
            select(order_items_tbl)
            .where(order_items_tbl.c.order_id == order_id)
            .order_by(order_items_tbl.c.variant_id, order_items_tbl.c.id)
        )
        item_rows = (await self._session.execute(items_stmt)).fetchall()

        return self._construct(row, list(item_rows))

    async def confirm_payment(
        self, order_id: str, payment_id: str, payment_method: str
    ) -> bool:
        """Move a pending order to confirmed/paid. False if it was not pending."""
        stmt = (
            update(orders_tbl)
            .where(
                orders_tbl.c.id == order_id,
                orders_tbl.c.status == OrderStatusEnum.PENDING,
            )
            .values(
                status=OrderStatusEnum.CONFIRMED,
                payment_status=PaymentStatusEnum.PAID,
                payment_id=payment_id,
                payment_method=payment_method,
                updated_at=utcnow(),
            )
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def mark_payment_failed(
        self, order_id: str, payment_id: str | None, fail_order: bool
    ) -> bool:
        values: dict[str, Any] = {
            "payment_status": PaymentStatusEnum.FAILED,
            "updated_at": utcnow(),
        }
        if payment_id:
            values["payment_id"] = payment_id
        if fail_order:
            values["status"] = OrderStatusEnum.FAILED

        stmt = (
            update(orders_tbl)
            .where(
                orders_tbl.c.id == order_id,
                orders_tbl.c.status == OrderStatusEnum.PENDING,
            )
            .values(values)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def flag_for_review(self, order_id: str, reason: str) -> None:
        stmt = (
            update(orders_tbl)
            .where(orders_tbl.c.id == order_id)
            .values(needs_review=True, review_reason=reason, updated_at=utcnow())
        )
        await self._session.execute(stmt)


class InventoryRepository:
    class CreateDTO(BaseModel):
        id: str | None = None
        sku: str
        name: str
        stock_quantity: int

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _construct(row: Row | None) -> ProductVariant:
        if row is None:
            raise DoesNotExist

        return ProductVariant(
            id=row._mapping["id"],
            sku=row._mapping["sku"],
            name=row._mapping["name"],
            stock_quantity=row._mapping["stock_quantity"],
        )

    async def create(self, variant: CreateDTO) -> ProductVariant:
        values = variant.model_dump(exclude_none=True)
        values["updated_at"] = utcnow()
        stmt = (
            insert(product_variants_tbl)
            .values(values)
            .returning(*product_variants_tbl.c)
        )
        result = await self._session.execute(stmt)
        return self._construct(result.fetchone())

    async def get_by_id(self, variant_id: str) -> ProductVariant:
        stmt = select(product_variants_tbl).where(
            product_variants_tbl.c.id == variant_id
        )
        result = await self._session.execute(stmt)
        return self._construct(result.fetchone())

    async def deduct(self, variant_id: str, quantity: int) -> bool:
        """Decrement stock only if enough is left.

        Returns False when the variant is missing or would go negative; the
        row lock taken by the UPDATE serializes concurrent decrements.
        """
        stock = product_variants_tbl.c.stock_quantity
        stmt = (
            update(product_variants_tbl)
            .where(product_variants_tbl.c.id == variant_id, stock >= quantity)
            .values(stock_quantity=stock - quantity, updated_at=utcnow())
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1


class CartRepository:
    ItemDTO = CartLineDTO

    class CreateDTO(BaseModel):
        id: str | None = None
        user_id: str
        items: list[CartLineDTO] = []

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _construct(row: Row | None, item_rows: list[Row]) -> Cart:
        if row is None:
            raise DoesNotExist

        return Cart(
            id=row._mapping["id"],
            user_id=row._mapping["user_id"],
            is_active=row._mapping["is_active"],
            items=[
                CartItem(
                    id=item._mapping["id"],
                    variant_id=item._mapping["variant_id"],
                    quantity=item._mapping["quantity"],
                )
                for item in item_rows
            ],
        )

    async def create(self, cart: CreateDTO) -> Cart:
        values: dict[str, Any] = {
            "user_id": cart.user_id,
            "is_active": True,
            "updated_at": utcnow(),
        }
        if cart.id is not None:
            values["id"] = cart.id
        result = await self._session.execute(
            insert(carts_tbl).values(values).returning(carts_tbl.c.id)
        )
        cart_id = result.scalar_one()

        if cart.items:
            await self._session.execute(
                insert(cart_items_tbl),
                [
                    {
                        "id": str(uuid.uuid4()),
                        "cart_id": cart_id,
                        "variant_id": item.variant_id,
                        "quantity": item.quantity,
                    }
                    for item in cart.items
                ],
            )

        return await self.get_by_id(cart_id)

    async def get_by_id(self, cart_id: str) -> Cart:
        row = (
            await self._session.execute(
                select(carts_tbl).where(carts_tbl.c.id == cart_id)
            )
        ).fetchone()
        if row is None:
            raise DoesNotExist

        item_rows = (
            await self._session.execute(
                select(cart_items_tbl).where(cart_items_tbl.c.cart_id == cart_id)
            )
        ).fetchall()
        return self._construct(row, list(item_rows))

    async def clear(self, cart_id: str) -> None:
        await self._session.execute(
            delete(cart_items_tbl).where(cart_items_tbl.c.cart_id == cart_id)
        )
        await self._session.execute(
            update(carts_tbl)
            .where(carts_tbl.c.id == cart_id)
            .values(is_active=False, updated_at=utcnow())
        )


class SyncQueueRepository:
    class CreateDTO(BaseModel):
        entity_type: SyncEntityType
        entity_id: str
        operation: SyncOperation
        zoho_service: ZohoService
        zoho_entity_type: ZohoEntityType
        request_payload: dict[str, Any] | None = None
        max_attempts: int

    class Filters(BaseModel):
        status: str | None = None
        entity_type: str | None = None
        operation: str | None = None
        search: str | None = None

    def __init__(self, session: AsyncSession):
        self._session = session

    @staticmethod
    def _construct(row: Row | None) -> SyncQueueItem:
        if row is None:
            raise DoesNotExist

        return SyncQueueItem(
            id=str(row._mapping["id"]),
            entity_type=row._mapping["entity_type"],
            entity_id=row._mapping["entity_id"],
            operation=row._mapping["operation"],
            zoho_service=row._mapping["zoho_service"],
            zoho_entity_type=row._mapping["zoho_entity_type"],
            request_payload=row._mapping["request_payload"],
            status=row._mapping["status"],
            attempt_count=row._mapping["attempt_count"],
            max_attempts=row._mapping["max_attempts"],
            next_retry_at=row._mapping["next_retry_at"],
            error_message=row._mapping["error_message"],
            error_details=row._mapping["error_details"],
            response_payload=row._mapping["response_payload"],
            created_at=row._mapping["created_at"],
            updated_at=row._mapping["updated_at"],
        )

    @staticmethod
    def _parse_id(log_id: str) -> uuid.UUID:
        try:
            return uuid.UUID(str(log_id))
        except ValueError:
            raise DoesNotExist

    async def _update(self, log_id: str, **values: Any) -> SyncQueueItem:
        stmt = (
            update(zoho_sync_logs_tbl)
            .where(zoho_sync_logs_tbl.c.id == self._parse_id(log_id))
            .values(**values)
            .returning(*zoho_sync_logs_tbl.c)
        )
        result = await self._session.execute(stmt)
        return self._construct(result.fetchone())

    async def create(
        self, task: CreateDTO, now: datetime | None = None
    ) -> SyncQueueItem:
        now = now or utcnow()
        stmt = (
            insert(zoho_sync_logs_tbl)
            .values(
                {
                    **task.model_dump(mode="json"),
                    "status": SyncStatus.PENDING,
                    "attempt_count": 0,
                    "next_retry_at": now,
                    "created_at": now,
                    "updated_at": now,
                }
            )
            .returning(*zoho_sync_logs_tbl.c)
        )
        result = await self._session.execute(stmt)
        return self._construct(result.fetchone())

    async def get_by_id(self, log_id: str, for_update: bool = False) -> SyncQueueItem:
        stmt = select(zoho_sync_logs_tbl).where(
            zoho_sync_logs_tbl.c.id == self._parse_id(log_id)
        )
        if for_update:
            stmt = stmt.with_for_update()
        result = await self._session.execute(stmt)
        return self._construct(result.fetchone())

    async def claim_due(self, limit: int, now: datetime) -> list[SyncQueueItem]:
        """Atomically move up to ``limit`` due entries to processing.

        Rows locked by another claimer are skipped, and the status guard on
        the UPDATE keeps the claim a compare-and-swap on backends without
        row locks.
        """
        claimable = (SyncStatus.PENDING, SyncStatus.RETRYING)
        due_ids = (
            select(zoho_sync_logs_tbl.c.id)
            .where(
                zoho_sync_logs_tbl.c.status.in_(claimable),
                zoho_sync_logs_tbl.c.next_retry_at <= now,
            )
            .order_by(zoho_sync_logs_tbl.c.next_retry_at)
            .limit(limit)
            .with_for_update(skip_locked=True)
        )
        ids = (await self._session.execute(due_ids)).scalars().all()
        if not ids:
            return []

        stmt = (
            update(zoho_sync_logs_tbl)
            .where(
                zoho_sync_logs_tbl.c.id.in_(ids),
                zoho_sync_logs_tbl.c.status.in_(claimable),
            )
            .values(status=SyncStatus.PROCESSING, updated_at=now)
            .returning(*zoho_sync_logs_tbl.c)
        )
        rows = (await self._session.execute(stmt)).fetchall()
        items = [self._construct(row) for row in rows]
        return sorted(items, key=lambda item: item.next_retry_at)

    async def mark_succeeded(
        self, log_id: str, response_payload: dict | None, now: datetime
    ) -> SyncQueueItem:
        return await self._update(
            log_id,
            status=SyncStatus.SUCCEEDED,
            response_payload=response_payload,
            error_message=None,
            error_details=None,
            updated_at=now,
        )

    async def record_failure(
        self,
        log_id: str,
        status: SyncStatus,
        attempt_count: int,
        next_retry_at: datetime,
        error_message: str,
        error_details: dict | None,
        now: datetime,
    ) -> SyncQueueItem:
        return await self._update(
            log_id,
            status=status,
            attempt_count=attempt_count,
            next_retry_at=next_retry_at,
            error_message=error_message,
            error_details=error_details,
            updated_at=now,
        )

    async def reset_for_retry(self, log_id: str, now: datetime) -> SyncQueueItem:
        return await self._update(
            log_id,
            status=SyncStatus.RETRYING,
            attempt_count=0,
            next_retry_at=now,
            error_message=None,
            error_details=None,
            response_payload=None,
            updated_at=now,
        )

    async def release_stale(self, claimed_before: datetime, now: datetime) -> int:
        """Hand entries stuck in processing (crashed worker) back to the queue."""
        stmt = (
            update(zoho_sync_logs_tbl)
            .where(
                zoho_sync_logs_tbl.c.status == SyncStatus.PROCESSING,
                zoho_sync_logs_tbl.c.updated_at < claimed_before,
            )
            .values(status=SyncStatus.RETRYING, next_retry_at=now, updated_at=now)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    def _filter_clauses(self, filters: Filters) -> list:
        clauses = []
        if filters.status:
            clauses.append(zoho_sync_logs_tbl.c.status == filters.status)
        if filters.entity_type:
            clauses.append(zoho_sync_logs_tbl.c.entity_type == filters.entity_type)
        if filters.operation:
            clauses.append(zoho_sync_logs_tbl.c.operation == filters.operation)
        if filters.search:
            clauses.append(
                or_(
                    zoho_sync_logs_tbl.c.error_message.icontains(
                        filters.search, autoescape=True
                    ),
                    zoho_sync_logs_tbl.c.entity_id.icontains(
                        filters.search, autoescape=True
                    ),
                )
            )
        return clauses

    async def list_logs(
        self, filters: Filters, offset: int, limit: int
    ) -> tuple[list[SyncQueueItem], int]:
        clauses = self._filter_clauses(filters)

        count_stmt = (
            select(func.count()).select_from(zoho_sync_logs_tbl).where(*clauses)
        )
        count = (await self._session.execute(count_stmt)).scalar_one()

        stmt = (
            select(zoho_sync_logs_tbl)
            .where(*clauses)
            .order_by(
                zoho_sync_logs_tbl.c.created_at.desc(),
                zoho_sync_logs_tbl.c.id.desc(),
            )
            .offset(offset)
            .limit(limit)
        )
        rows = (await self._session.execute(stmt)).fetchall()
        return [self._construct(row) for row in rows], count

    async def count_by_status(self, since: datetime) -> dict[str, int]:
        stmt = (
            select(zoho_sync_logs_tbl.c.status, func.count())
            .where(zoho_sync_logs_tbl.c.created_at >= since)
            .group_by(zoho_sync_logs_tbl.c.status)
        )
        rows = (await self._session.execute(stmt)).fetchall()
        return {status: count for status, count in rows}
