import logging

from orderflow.application.sync_queue import build_create_dto
from orderflow.core.exceptions import InsufficientInventory, OrderNotFound
from orderflow.core.models import (
    FulfillmentResult,
    Order,
    OrderStatusEnum,
    SyncEntityType,
    SyncOperation,
    SyncTask,
    ZohoEntityType,
    ZohoService,
)
from orderflow.core.retry_policy import RetryPolicy
from orderflow.infrastructure.repositories import DoesNotExist
from orderflow.infrastructure.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)


def invoice_sync_task(order: Order) -> SyncTask:
    address = order.shipping_address
    return SyncTask(
        entity_type=SyncEntityType.ORDER,
        entity_id=order.id,
        operation=SyncOperation.CREATE,
        zoho_service=ZohoService.BOOKS,
        zoho_entity_type=ZohoEntityType.INVOICE,
        request_payload={
            "order_id": order.id,
            "customer_name": address.name if address else order.customer_email,
            "customer_email": order.customer_email,
            "customer_phone": address.phone if address else None,
            "invoice_date": order.updated_at.date().isoformat(),
            "line_items": [
                {
                    "name": item.name,
                    "rate": str(item.unit_price),
                    "quantity": item.quantity,
                }
                for item in order.items
            ],
            "shipping": str(order.shipping),
            "discount": str(order.discount),
        },
    )


class ConfirmOrderPaymentUseCase:
    """Confirms a paid order, deducts its stock and clears its cart atomically.

    Everything happens inside one database transaction: the order row is
    locked, each variant is decremented with a guarded UPDATE and any
    failure rolls the whole unit back. Calling it again for an order that
    already left ``pending`` is a no-op, so duplicate webhook deliveries
    cannot deduct stock twice.
    """

    def __init__(self, unit_of_work: UnitOfWork, retry_policy: RetryPolicy):
        self._unit_of_work = unit_of_work
        self._retry_policy = retry_policy

    async def __call__(
        self, order_id: str, payment_id: str, payment_method: str
    ) -> FulfillmentResult:
        async with self._unit_of_work() as uow:
            try:
                order = await uow.orders.get_by_id(order_id, for_update=True)
            except DoesNotExist:
                raise OrderNotFound(order_id)

            if order.status != OrderStatusEnum.PENDING:
                logger.info(f"Order {order_id} already {order.status}, nothing to do")
                return FulfillmentResult(order=order, applied=False)

            if not await uow.orders.confirm_payment(
                order_id, payment_id=payment_id, payment_method=payment_method
            ):
                # lost a race with a concurrent confirmation
                order = await uow.orders.get_by_id(order_id)
                return FulfillmentResult(order=order, applied=False)

            for item in order.items:
                if not await uow.inventory.deduct(item.variant_id, item.quantity):
                    raise InsufficientInventory(item.variant_id, item.quantity)

            if order.cart_id:
                await uow.carts.clear(order.cart_id)

            confirmed = await uow.orders.get_by_id(order_id)
            await uow.sync_queue.create(
                build_create_dto(invoice_sync_task(confirmed), self._retry_policy)
            )
            await uow.commit()

        logger.info(f"Order {order_id} confirmed with payment {payment_id}")
        return FulfillmentResult(order=confirmed, applied=True)


class RecordPaymentFailureUseCase:
    def __init__(self, unit_of_work: UnitOfWork, fail_order: bool = False):
        self._unit_of_work = unit_of_work
        self._fail_order = fail_order

    async def __call__(self, order_id: str, payment_id: str | None = None) -> bool:
        """Mark a pending order's payment as failed. Never touches stock or cart.

        Returns False when the order is no longer pending.
        """
        async with self._unit_of_work() as uow:
            updated = await uow.orders.mark_payment_failed(
                order_id, payment_id=payment_id, fail_order=self._fail_order
            )
            if not updated:
                try:
                    await uow.orders.get_by_id(order_id)
                except DoesNotExist:
                    raise OrderNotFound(order_id)
            await uow.commit()
            return updated


class FlagOrderForReviewUseCase:
    def __init__(self, unit_of_work: UnitOfWork):
        self._unit_of_work = unit_of_work

    async def __call__(self, order_id: str, reason: str) -> None:
        async with self._unit_of_work() as uow:
            await uow.orders.flag_for_review(order_id, reason)
            await uow.commit()
