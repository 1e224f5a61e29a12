from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from orderflow.core.models import (
    Order,
    OrderStatusEnum,
    PaymentStatusEnum,
    SyncEntityType,
    SyncOperation,
    SyncStatus,
    ZohoEntityType,
    ZohoService,
    utcnow,
)
from orderflow.infrastructure.repositories import (
    CartRepository,
    DoesNotExist,
    InventoryRepository,
    OrderRepository,
    SyncQueueRepository,
)


def _sync_dto(entity_id: str = "user-1", **kwargs) -> SyncQueueRepository.CreateDTO:
    defaults = {
        "entity_type": SyncEntityType.USER,
        "entity_id": entity_id,
        "operation": SyncOperation.CREATE,
        "zoho_service": ZohoService.CRM,
        "zoho_entity_type": ZohoEntityType.CONTACT,
        "request_payload": {"email": "asha@example.com"},
        "max_attempts": 5,
    }
    defaults.update(kwargs)
    return SyncQueueRepository.CreateDTO(**defaults)


class TestOrderRepository:
    @pytest.mark.asyncio
    async def test_create_order(
        self, order_repo: OrderRepository, variant_factory, session: AsyncSession
    ):
        # Given
        variant = await variant_factory()

        # When
        order = await order_repo.create(
            OrderRepository.CreateDTO(
                user_id="user-1",
                customer_email="asha@example.com",
                items=[
                    OrderRepository.ItemDTO(
                        variant_id=variant.id,
                        name="Kurta",
                        quantity=3,
                        unit_price=Decimal("10.50"),
                    )
                ],
                tax=Decimal("1.50"),
                shipping=Decimal("5.00"),
                discount=Decimal("2.00"),
            )
        )
        await session.commit()

        # Then
        assert isinstance(order, Order)
        assert order.status == OrderStatusEnum.PENDING
        assert order.payment_status == PaymentStatusEnum.PENDING
        assert order.subtotal == Decimal("31.50")
        assert order.total == Decimal("36.00")
        assert len(order.items) == 1
        assert order.items[0].total_price == Decimal("31.50")
        assert order.needs_review is False
        assert order.created_at.tzinfo is not None

    @pytest.mark.asyncio
    async def test_get_missing_order_raises(self, order_repo: OrderRepository):
        with pytest.raises(DoesNotExist):
            await order_repo.get_by_id("missing")

    @pytest.mark.asyncio
    async def test_confirm_payment_only_moves_pending_orders(
        self,
        order_repo: OrderRepository,
        variant_factory,
        order_factory,
        session: AsyncSession,
    ):
        # Given
        variant = await variant_factory()
        order = await order_factory(items=[(variant.id, 1)])

        # When
        first = await order_repo.confirm_payment(order.id, "EP1", "UPI")
        second = await order_repo.confirm_payment(order.id, "EP2", "card")
        await session.commit()

        # Then
        assert first is True
        assert second is False
        confirmed = await order_repo.get_by_id(order.id)
        assert confirmed.status == OrderStatusEnum.CONFIRMED
        assert confirmed.payment_status == PaymentStatusEnum.PAID
        assert confirmed.payment_id == "EP1"
        assert confirmed.payment_method == "UPI"

    @pytest.mark.asyncio
    async def test_mark_payment_failed_keeps_order_pending_by_default(
        self,
        order_repo: OrderRepository,
        variant_factory,
        order_factory,
        session: AsyncSession,
    ):
        # Given
        variant = await variant_factory()
        order = await order_factory(items=[(variant.id, 1)])

        # When
        updated = await order_repo.mark_payment_failed(
            order.id, payment_id="EP9", fail_order=False
        )
        await session.commit()

        # Then
        assert updated is True
        order = await order_repo.get_by_id(order.id)
        assert order.status == OrderStatusEnum.PENDING
        assert order.payment_status == PaymentStatusEnum.FAILED
        assert order.payment_id == "EP9"

    @pytest.mark.asyncio
    async def test_flag_for_review(
        self,
        order_repo: OrderRepository,
        variant_factory,
        order_factory,
        session: AsyncSession,
    ):
        # Given
        variant = await variant_factory()
        order = await order_factory(items=[(variant.id, 1)])

        # When
        await order_repo.flag_for_review(order.id, "oversold")
        await session.commit()

        # Then
        order = await order_repo.get_by_id(order.id)
        assert order.needs_review is True
        assert order.review_reason == "oversold"
        assert order.status == OrderStatusEnum.PENDING


class TestInventoryRepository:
    @pytest.mark.asyncio
    async def test_deduct_decrements_stock(
        self, inventory_repo: InventoryRepository, variant_factory, session: AsyncSession
    ):
        # Given
        variant = await variant_factory(stock_quantity=10)

        # When
        deducted = await inventory_repo.deduct(variant.id, 3)
        await session.commit()

        # Then
        assert deducted is True
        assert (await inventory_repo.get_by_id(variant.id)).stock_quantity == 7

    @pytest.mark.asyncio
    async def test_deduct_refuses_to_go_negative(
        self, inventory_repo: InventoryRepository, variant_factory, session: AsyncSession
    ):
        # Given
        variant = await variant_factory(stock_quantity=2)

        # When
        deducted = await inventory_repo.deduct(variant.id, 3)
        await session.commit()

        # Then
        assert deducted is False
        assert (await inventory_repo.get_by_id(variant.id)).stock_quantity == 2

    @pytest.mark.asyncio
    async def test_deduct_exact_stock_reaches_zero(
        self, inventory_repo: InventoryRepository, variant_factory, session: AsyncSession
    ):
        # Given
        variant = await variant_factory(stock_quantity=3)

        # When
        deducted = await inventory_repo.deduct(variant.id, 3)
        await session.commit()

        # Then
        assert deducted is True
        assert (await inventory_repo.get_by_id(variant.id)).stock_quantity == 0

    @pytest.mark.asyncio
    async def test_deduct_unknown_variant(self, inventory_repo: InventoryRepository):
        assert await inventory_repo.deduct("missing", 1) is False


class TestCartRepository:
    @pytest.mark.asyncio
    async def test_clear_removes_items_and_deactivates(
        self,
        cart_repo: CartRepository,
        variant_factory,
        cart_factory,
        session: AsyncSession,
    ):
        # Given
        variant = await variant_factory()
        cart = await cart_factory(items=[(variant.id, 2)])
        assert cart.is_active is True
        assert len(cart.items) == 1

        # When
        await cart_repo.clear(cart.id)
        await session.commit()

        # Then
        cart = await cart_repo.get_by_id(cart.id)
        assert cart.is_active is False
        assert cart.items == []


class TestSyncQueueRepository:
    @pytest.mark.asyncio
    async def test_create_entry(
        self, sync_queue_repo: SyncQueueRepository, session: AsyncSession
    ):
        # When
        item = await sync_queue_repo.create(_sync_dto())
        await session.commit()

        # Then
        assert item.id is not None
        assert item.status == SyncStatus.PENDING
        assert item.attempt_count == 0
        assert item.max_attempts == 5
        assert item.request_payload == {"email": "asha@example.com"}
        assert item.next_retry_at <= utcnow()
        assert item.error_message is None

    @pytest.mark.asyncio
    async def test_get_by_malformed_id_raises(
        self, sync_queue_repo: SyncQueueRepository
    ):
        with pytest.raises(DoesNotExist):
            await sync_queue_repo.get_by_id("not-a-uuid")

    @pytest.mark.asyncio
    async def test_claim_due_marks_processing_and_skips_future_entries(
        self, sync_queue_repo: SyncQueueRepository, session: AsyncSession
    ):
        # Given
        now = utcnow()
        due = await sync_queue_repo.create(_sync_dto("due"), now=now - timedelta(minutes=1))
        await sync_queue_repo.create(_sync_dto("later"), now=now + timedelta(hours=1))
        await session.commit()

        # When
        claimed = await sync_queue_repo.claim_due(limit=10, now=now)
        await session.commit()

        # Then
        assert [item.id for item in claimed] == [due.id]
        assert claimed[0].status == SyncStatus.PROCESSING

    @pytest.mark.asyncio
    async def test_claimed_entries_are_not_claimed_again(
        self, sync_queue_repo: SyncQueueRepository, session: AsyncSession
    ):
        # Given
        await sync_queue_repo.create(_sync_dto())
        await session.commit()

        # When
        first = await sync_queue_repo.claim_due(limit=10, now=utcnow())
        second = await sync_queue_repo.claim_due(limit=10, now=utcnow())
        await session.commit()

        # Then
        assert len(first) == 1
        assert second == []

    @pytest.mark.asyncio
    async def test_claim_due_respects_limit(
        self, sync_queue_repo: SyncQueueRepository, session: AsyncSession
    ):
        # Given
        for i in range(5):
            await sync_queue_repo.create(_sync_dto(f"user-{i}"))
        await session.commit()

        # When
        claimed = await sync_queue_repo.claim_due(limit=3, now=utcnow())
        await session.commit()

        # Then
        assert len(claimed) == 3

    @pytest.mark.asyncio
    async def test_release_stale_returns_old_processing_entries(
        self, sync_queue_repo: SyncQueueRepository, session: AsyncSession
    ):
        # Given
        now = utcnow()
        item = await sync_queue_repo.create(_sync_dto(), now=now - timedelta(hours=1))
        await sync_queue_repo.claim_due(limit=1, now=now - timedelta(hours=1))
        await session.commit()

        # When
        released = await sync_queue_repo.release_stale(
            claimed_before=now - timedelta(minutes=15), now=now
        )
        await session.commit()

        # Then
        assert released == 1
        item = await sync_queue_repo.get_by_id(item.id)
        assert item.status == SyncStatus.RETRYING

    @pytest.mark.asyncio
    async def test_list_logs_filters_and_searches(
        self, sync_queue_repo: SyncQueueRepository, session: AsyncSession
    ):
        # Given
        now = utcnow()
        failing = await sync_queue_repo.create(_sync_dto("user-1"), now=now)
        await sync_queue_repo.record_failure(
            failing.id,
            status=SyncStatus.RETRYING,
            attempt_count=1,
            next_retry_at=now,
            error_message="INVALID_DATA: Email 100%_wrong",
            error_details=None,
            now=now,
        )
        await sync_queue_repo.create(
            _sync_dto(
                "ORD-7",
                entity_type=SyncEntityType.ORDER,
                zoho_service=ZohoService.BOOKS,
                zoho_entity_type=ZohoEntityType.INVOICE,
            ),
            now=now + timedelta(seconds=1),
        )
        await session.commit()

        # When
        retrying, retrying_count = await sync_queue_repo.list_logs(
            SyncQueueRepository.Filters(status=SyncStatus.RETRYING), offset=0, limit=10
        )
        orders, _ = await sync_queue_repo.list_logs(
            SyncQueueRepository.Filters(entity_type=SyncEntityType.ORDER),
            offset=0,
            limit=10,
        )
        by_message, _ = await sync_queue_repo.list_logs(
            SyncQueueRepository.Filters(search="100%_w"), offset=0, limit=10
        )
        by_entity, _ = await sync_queue_repo.list_logs(
            SyncQueueRepository.Filters(search="ord-7"), offset=0, limit=10
        )
        everything, total = await sync_queue_repo.list_logs(
            SyncQueueRepository.Filters(), offset=0, limit=10
        )

        # Then
        assert retrying_count == 1
        assert [item.id for item in retrying] == [failing.id]
        assert [item.entity_id for item in orders] == ["ORD-7"]
        assert [item.id for item in by_message] == [failing.id]
        assert [item.entity_id for item in by_entity] == ["ORD-7"]
        assert total == 2
        # newest first
        assert [item.entity_id for item in everything] == ["ORD-7", "user-1"]

    @pytest.mark.asyncio
    async def test_list_logs_paginates(
        self, sync_queue_repo: SyncQueueRepository, session: AsyncSession
    ):
        # Given
        now = utcnow()
        for i in range(5):
            await sync_queue_repo.create(
                _sync_dto(f"user-{i}"), now=now + timedelta(seconds=i)
            )
        await session.commit()

        # When
        page, count = await sync_queue_repo.list_logs(
            SyncQueueRepository.Filters(), offset=2, limit=2
        )

        # Then
        assert count == 5
        assert [item.entity_id for item in page] == ["user-2", "user-1"]

    @pytest.mark.asyncio
    async def test_count_by_status(
        self, sync_queue_repo: SyncQueueRepository, session: AsyncSession
    ):
        # Given
        now = utcnow()
        await sync_queue_repo.create(_sync_dto("a"), now=now)
        await sync_queue_repo.create(_sync_dto("b"), now=now)
        old = await sync_queue_repo.create(_sync_dto("c"), now=now - timedelta(days=2))
        await sync_queue_repo.mark_succeeded(old.id, response_payload={}, now=now)
        await session.commit()

        # When
        counts = await sync_queue_repo.count_by_status(since=now - timedelta(hours=24))

        # Then
        assert counts == {SyncStatus.PENDING: 2}
