import logging
from typing import Protocol

from orderflow.core.models import Order

logger = logging.getLogger(__name__)


class OrderNotifier(Protocol):
    async def send_order_confirmation(self, order: Order) -> None: ...


class LoggingOrderNotifier:
    """Stand-in for the email/WhatsApp notifier; only records the intent."""

    async def send_order_confirmation(self, order: Order) -> None:
        logger.info(
            f"Order confirmation queued for order {order.id} "
            f"(user {order.user_id}, total {order.total})"
        )
