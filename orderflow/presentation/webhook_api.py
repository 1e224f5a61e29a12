import logging
from http import HTTPStatus

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from orderflow.application.container import ApplicationContainer
from orderflow.application.handle_payment_webhook import (
    HandlePaymentWebhookUseCase,
    WebhookOutcome,
)
from orderflow.infrastructure.easebuzz import EasebuzzWebhookPayload

logger = logging.getLogger(__name__)

router = APIRouter()


class WebhookAckResponseModel(BaseModel):
    status: WebhookOutcome
    message: str


@router.post(
    "/payments/easebuzz/webhook",
    status_code=HTTPStatus.OK,
    response_model=WebhookAckResponseModel,
)
@inject
async def easebuzz_webhook(
    request: Request,
    handle_payment_webhook: HandlePaymentWebhookUseCase = Depends(
        Provide[ApplicationContainer.handle_payment_webhook_use_case]
    ),
):
    form = await request.form()
    try:
        payload = EasebuzzWebhookPayload.model_validate(
            {key: value for key, value in form.items() if isinstance(value, str)}
        )
    except ValidationError as e:
        missing = sorted({str(error["loc"][0]) for error in e.errors()})
        logger.warning(f"Malformed Easebuzz webhook, invalid fields: {missing}")
        return JSONResponse(
            content={"message": "Missing or invalid fields", "fields": missing},
            status_code=HTTPStatus.BAD_REQUEST,
        )

    try:
        result = await handle_payment_webhook(payload)
    except Exception:
        logger.exception(f"Easebuzz webhook for order {payload.order_id} failed")
        return JSONResponse(
            content={"message": "Internal server error while processing webhook"},
            status_code=HTTPStatus.INTERNAL_SERVER_ERROR,
        )

    return WebhookAckResponseModel(status=result.outcome, message=result.message)
