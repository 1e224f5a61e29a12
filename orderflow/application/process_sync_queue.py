import asyncio
import logging
from datetime import timedelta
from typing import Any, Awaitable, Callable

from orderflow.application.sync_queue import SyncQueueService
from orderflow.core.models import SyncBatchResult, SyncQueueItem
from orderflow.infrastructure.zoho_client import ZohoApiError, ZohoClient

logger = logging.getLogger(__name__)


class ProcessSyncQueueUseCase:
    def __init__(
        self,
        sync_queue: SyncQueueService,
        dispatcher: Callable[[SyncQueueItem], Awaitable[dict[str, Any]]],
        zoho_client: ZohoClient,
        batch_size: int = 10,
        item_timeout_seconds: float = 30.0,
        processing_lease: timedelta = timedelta(minutes=15),
    ):
        self._sync_queue = sync_queue
        self._dispatcher = dispatcher
        self._zoho_client = zoho_client
        self._batch_size = batch_size
        self._item_timeout_seconds = item_timeout_seconds
        self._processing_lease = processing_lease

    async def __call__(self) -> SyncBatchResult:
        """
        Process one batch: claim due entries, push each to Zoho, record the outcome.
        A failing entry never stops the rest of the batch.
        """
        await self._sync_queue.release_stale(self._processing_lease)

        items = await self._sync_queue.claim_due(limit=self._batch_size)
        result = SyncBatchResult()
        if not items:
            return result

        async with self._zoho_client:
            for item in items:
                result.processed += 1
                if await self._process_item(item):
                    result.succeeded += 1
                else:
                    result.failed += 1

        logger.info(
            f"Sync batch done: {result.succeeded} succeeded, "
            f"{result.failed} failed of {result.processed}"
        )
        return result

    async def _process_item(self, item: SyncQueueItem) -> bool:
        try:
            async with asyncio.timeout(self._item_timeout_seconds):
                response = await self._dispatcher(item)
        except Exception as e:
            error_message, error_details = self._describe(e)
            logger.warning(
                f"Sync {item.id} ({item.entity_type}:{item.entity_id} -> "
                f"{item.zoho_service}/{item.zoho_entity_type}) failed: {error_message}"
            )
            try:
                await self._sync_queue.mark_failed(
                    item.id, error_message=error_message, error_details=error_details
                )
            except Exception:
                # stays in processing until the lease expires
                logger.exception(f"Failed to record failure of sync {item.id}")
            return False

        try:
            await self._sync_queue.mark_succeeded(item.id, response_payload=response)
        except Exception:
            logger.exception(f"Failed to record success of sync {item.id}")
            return False
        return True

    def _describe(self, error: Exception) -> tuple[str, dict[str, Any]]:
        if isinstance(error, TimeoutError):
            return (
                f"Timed out after {self._item_timeout_seconds}s",
                {"type": "TimeoutError"},
            )
        details: dict[str, Any] = {"type": type(error).__name__}
        if isinstance(error, ZohoApiError):
            details["status_code"] = error.status_code
            details["response"] = error.details
        return str(error) or type(error).__name__, details
