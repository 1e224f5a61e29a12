import asyncio
import logging
from enum import StrEnum

from pydantic import BaseModel

from orderflow.application.confirm_order_payment import (
    ConfirmOrderPaymentUseCase,
    FlagOrderForReviewUseCase,
    RecordPaymentFailureUseCase,
)
from orderflow.core.exceptions import InsufficientInventory, OrderNotFound
from orderflow.core.models import Order
from orderflow.infrastructure.easebuzz import (
    EasebuzzSignatureVerifier,
    EasebuzzWebhookPayload,
)
from orderflow.infrastructure.notifier import OrderNotifier

logger = logging.getLogger(__name__)

SUCCESS_STATUS = "success"


class WebhookOutcome(StrEnum):
    REJECTED = "rejected"
    CONFIRMED = "confirmed"
    ALREADY_PROCESSED = "already_processed"
    ORDER_NOT_FOUND = "order_not_found"
    MANUAL_REVIEW = "manual_review"
    PAYMENT_FAILED = "payment_failed"


class WebhookResult(BaseModel):
    outcome: WebhookOutcome
    order_id: str
    message: str


class HandlePaymentWebhookUseCase:
    """Applies one Easebuzz delivery to the order it refers to.

    Every outcome the gateway cannot fix by retrying is returned as a result,
    so the endpoint acknowledges it. Only unexpected infrastructure errors
    escape; the endpoint turns those into a 500 and Easebuzz redelivers,
    which is safe because confirmation is idempotent.
    """

    def __init__(
        self,
        verifier: EasebuzzSignatureVerifier,
        confirm_order_payment: ConfirmOrderPaymentUseCase,
        record_payment_failure: RecordPaymentFailureUseCase,
        flag_order_for_review: FlagOrderForReviewUseCase,
        notifier: OrderNotifier,
        timeout_seconds: float = 10.0,
    ):
        self._verifier = verifier
        self._confirm_order_payment = confirm_order_payment
        self._record_payment_failure = record_payment_failure
        self._flag_order_for_review = flag_order_for_review
        self._notifier = notifier
        self._timeout_seconds = timeout_seconds

    async def __call__(self, payload: EasebuzzWebhookPayload) -> WebhookResult:
        order_id = payload.order_id

        if not self._verifier.verify(payload):
            logger.warning(
                f"Rejected Easebuzz webhook with invalid signature "
                f"(txnid={payload.txnid}, easepayid={payload.easepayid}, order={order_id})"
            )
            return WebhookResult(
                outcome=WebhookOutcome.REJECTED,
                order_id=order_id,
                message="Invalid signature",
            )

        if payload.status == SUCCESS_STATUS:
            return await self._confirm(payload)
        return await self._record_failure(payload)

    async def _confirm(self, payload: EasebuzzWebhookPayload) -> WebhookResult:
        order_id = payload.order_id
        try:
            async with asyncio.timeout(self._timeout_seconds):
                result = await self._confirm_order_payment(
                    order_id,
                    payment_id=payload.easepayid,
                    payment_method=payload.mode or "easebuzz",
                )
        except OrderNotFound:
            logger.error(f"Payment {payload.easepayid} received for unknown order {order_id}")
            return WebhookResult(
                outcome=WebhookOutcome.ORDER_NOT_FOUND,
                order_id=order_id,
                message="Order not found",
            )
        except InsufficientInventory as e:
            return await self._manual_review(
                order_id,
                f"Insufficient inventory for variant {e.variant_id} "
                f"(requested {e.requested}) after payment {payload.easepayid}",
            )
        except TimeoutError:
            return await self._manual_review(
                order_id,
                f"Fulfillment timed out after {self._timeout_seconds}s "
                f"for payment {payload.easepayid}",
            )

        if not result.applied:
            logger.info(f"Duplicate Easebuzz delivery for order {order_id} ignored")
            return WebhookResult(
                outcome=WebhookOutcome.ALREADY_PROCESSED,
                order_id=order_id,
                message="Order already processed",
            )

        await self._notify(result.order)
        return WebhookResult(
            outcome=WebhookOutcome.CONFIRMED,
            order_id=order_id,
            message="Order confirmed",
        )

    async def _manual_review(self, order_id: str, reason: str) -> WebhookResult:
        logger.error(f"Order {order_id} needs manual review: {reason}")
        await self._flag_order_for_review(order_id, reason)
        return WebhookResult(
            outcome=WebhookOutcome.MANUAL_REVIEW,
            order_id=order_id,
            message="Payment received, order flagged for review",
        )

    async def _notify(self, order: Order) -> None:
        try:
            await self._notifier.send_order_confirmation(order)
        except Exception:
            logger.exception(f"Failed to send confirmation for order {order.id}")

    async def _record_failure(self, payload: EasebuzzWebhookPayload) -> WebhookResult:
        order_id = payload.order_id
        try:
            updated = await self._record_payment_failure(
                order_id, payment_id=payload.easepayid
            )
        except OrderNotFound:
            logger.error(f"Payment failure received for unknown order {order_id}")
            return WebhookResult(
                outcome=WebhookOutcome.ORDER_NOT_FOUND,
                order_id=order_id,
                message="Order not found",
            )

        if not updated:
            return WebhookResult(
                outcome=WebhookOutcome.ALREADY_PROCESSED,
                order_id=order_id,
                message="Order already processed",
            )

        logger.info(
            f"Payment {payload.easepayid} for order {order_id} ended with "
            f"status {payload.status!r}: {payload.error_Message}"
        )
        return WebhookResult(
            outcome=WebhookOutcome.PAYMENT_FAILED,
            order_id=order_id,
            message="Payment failure recorded",
        )
