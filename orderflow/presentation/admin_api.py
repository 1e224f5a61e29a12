from http import HTTPStatus
from typing import Literal

from dependency_injector.wiring import Provide, inject
from fastapi import APIRouter, Depends, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, ValidationError
from pydantic.alias_generators import to_camel

from orderflow.application.container import ApplicationContainer
from orderflow.application.sync_queue import SyncQueueService
from orderflow.core.exceptions import SyncLogNotFound, SyncLogNotRetryable
from orderflow.core.models import SyncQueueItem

router = APIRouter()

ALL = "all"


def _filter_value(value: str | None) -> str | None:
    if not value or value == ALL:
        return None
    return value


class SyncLogPageResponseModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    data: list[SyncQueueItem]
    count: int
    page: int
    page_size: int


class SyncLogActionRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    log_id: str | None = None
    action: str | None = None


class SyncLogActionResponseModel(BaseModel):
    success: Literal[True] = True
    message: str


@router.get(
    "/sync-logs",
    status_code=HTTPStatus.OK,
    response_model=SyncLogPageResponseModel,
    response_model_by_alias=True,
)
@inject
async def list_sync_logs(
    page: int = Query(1, ge=1),
    page_size: int = Query(10, alias="pageSize", ge=1, le=100),
    status: str | None = None,
    entity_type: str | None = Query(None, alias="entityType"),
    operation: str | None = None,
    search: str | None = None,
    sync_queue: SyncQueueService = Depends(
        Provide[ApplicationContainer.sync_queue_service]
    ),
):
    result = await sync_queue.list_logs(
        page=page,
        page_size=page_size,
        status=_filter_value(status),
        entity_type=_filter_value(entity_type),
        operation=_filter_value(operation),
        search=search or None,
    )
    return SyncLogPageResponseModel(**result.model_dump())


@router.post(
    "/sync-logs",
    status_code=HTTPStatus.OK,
    response_model=SyncLogActionResponseModel,
)
@inject
async def act_on_sync_log(
    request: Request,
    sync_queue: SyncQueueService = Depends(
        Provide[ApplicationContainer.sync_queue_service]
    ),
):
    try:
        body = await request.json()
    except ValueError:
        return JSONResponse(
            content={"error": "Request body must be JSON"},
            status_code=HTTPStatus.BAD_REQUEST,
        )
    if not isinstance(body, dict):
        return JSONResponse(
            content={"error": "Request body must be a JSON object"},
            status_code=HTTPStatus.BAD_REQUEST,
        )
    try:
        command = SyncLogActionRequest.model_validate(body)
    except ValidationError:
        return JSONResponse(
            content={"error": "logId and action must be strings"},
            status_code=HTTPStatus.BAD_REQUEST,
        )

    if not command.log_id or not command.action:
        return JSONResponse(
            content={"error": "Missing required fields: logId and action"},
            status_code=HTTPStatus.BAD_REQUEST,
        )
    if command.action != "retry":
        return JSONResponse(
            content={"error": f"Invalid action: {command.action}"},
            status_code=HTTPStatus.BAD_REQUEST,
        )

    try:
        await sync_queue.retry(command.log_id)
    except SyncLogNotFound:
        return JSONResponse(
            content={"error": "Sync log not found"},
            status_code=HTTPStatus.NOT_FOUND,
        )
    except SyncLogNotRetryable as e:
        return JSONResponse(
            content={"error": f"Sync log is {e.status} and cannot be retried yet"},
            status_code=HTTPStatus.CONFLICT,
        )

    return SyncLogActionResponseModel(message="Sync scheduled for retry")


@router.get("/sync-logs/stats", status_code=HTTPStatus.OK)
@inject
async def sync_log_stats(
    sync_queue: SyncQueueService = Depends(
        Provide[ApplicationContainer.sync_queue_service]
    ),
) -> dict[str, int]:
    return await sync_queue.stats()
