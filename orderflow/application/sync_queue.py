import logging
from datetime import datetime, timedelta
from typing import Any

from orderflow.core.exceptions import SyncLogNotFound, SyncLogNotRetryable
from orderflow.core.models import (
    SyncLogPage,
    SyncQueueItem,
    SyncStatus,
    SyncTask,
    utcnow,
)
from orderflow.core.retry_policy import RetryPolicy
from orderflow.infrastructure.repositories import DoesNotExist, SyncQueueRepository
from orderflow.infrastructure.unit_of_work import UnitOfWork

logger = logging.getLogger(__name__)

RETRYABLE_STATUSES = (SyncStatus.SUCCEEDED, SyncStatus.FAILED, SyncStatus.RETRYING)


def build_create_dto(task: SyncTask, policy: RetryPolicy) -> SyncQueueRepository.CreateDTO:
    return SyncQueueRepository.CreateDTO(
        **task.model_dump(),
        max_attempts=policy.max_attempts,
    )


class SyncQueueService:
    """Durable outbox of Zoho synchronization work.

    Entries live in ``zoho_sync_logs`` and are never deleted; the table doubles
    as the audit trail shown in the admin console.
    """

    def __init__(self, unit_of_work: UnitOfWork, retry_policy: RetryPolicy):
        self._unit_of_work = unit_of_work
        self._retry_policy = retry_policy

    async def enqueue(self, task: SyncTask) -> str | None:
        """Record a sync task without ever failing the caller.

        Registration, contact and quote flows call this after their own write
        succeeded; losing the sync entry is logged but never propagated.
        """
        try:
            async with self._unit_of_work() as uow:
                item = await uow.sync_queue.create(
                    build_create_dto(task, self._retry_policy)
                )
                await uow.commit()
        except Exception:
            logger.exception(
                f"Failed to enqueue {task.entity_type}:{task.operation} "
                f"sync for {task.entity_id}; the event will not reach Zoho"
            )
            return None

        logger.info(
            f"Queued {task.entity_type}:{task.operation} for {task.entity_id} ({item.id})"
        )
        return item.id

    async def claim_due(
        self, limit: int, now: datetime | None = None
    ) -> list[SyncQueueItem]:
        async with self._unit_of_work() as uow:
            items = await uow.sync_queue.claim_due(limit=limit, now=now or utcnow())
            await uow.commit()
            return items

    async def mark_succeeded(
        self, log_id: str, response_payload: dict[str, Any] | None = None
    ) -> SyncQueueItem:
        async with self._unit_of_work() as uow:
            try:
                item = await uow.sync_queue.mark_succeeded(
                    log_id, response_payload=response_payload, now=utcnow()
                )
            except DoesNotExist:
                raise SyncLogNotFound(log_id)
            await uow.commit()
            return item

    async def mark_failed(
        self,
        log_id: str,
        error_message: str,
        error_details: dict[str, Any] | None = None,
        now: datetime | None = None,
    ) -> SyncQueueItem:
        now = now or utcnow()
        async with self._unit_of_work() as uow:
            try:
                current = await uow.sync_queue.get_by_id(log_id, for_update=True)
            except DoesNotExist:
                raise SyncLogNotFound(log_id)

            attempt = current.attempt_count + 1
            if self._retry_policy.is_exhausted(attempt, current.max_attempts):
                item = await uow.sync_queue.record_failure(
                    log_id,
                    status=SyncStatus.FAILED,
                    attempt_count=attempt,
                    next_retry_at=current.next_retry_at,
                    error_message=f"Max attempts reached: {error_message}",
                    error_details=error_details,
                    now=now,
                )
                logger.error(
                    f"Sync {log_id} ({current.entity_type}:{current.entity_id}) "
                    f"gave up after {attempt} attempts: {error_message}"
                )
            else:
                item = await uow.sync_queue.record_failure(
                    log_id,
                    status=SyncStatus.RETRYING,
                    attempt_count=attempt,
                    next_retry_at=now + self._retry_policy.delay_for(attempt),
                    error_message=error_message,
                    error_details=error_details,
                    now=now,
                )
            await uow.commit()
            return item

    async def retry(self, log_id: str) -> SyncQueueItem:
        """Operator-forced retry: reset attempts and make the entry due now."""
        async with self._unit_of_work() as uow:
            try:
                current = await uow.sync_queue.get_by_id(log_id, for_update=True)
            except DoesNotExist:
                raise SyncLogNotFound(log_id)

            if current.status not in RETRYABLE_STATUSES:
                raise SyncLogNotRetryable(log_id, current.status)

            item = await uow.sync_queue.reset_for_retry(log_id, now=utcnow())
            await uow.commit()

        logger.info(f"Sync {log_id} scheduled for manual retry")
        return item

    async def release_stale(self, lease: timedelta) -> int:
        now = utcnow()
        async with self._unit_of_work() as uow:
            released = await uow.sync_queue.release_stale(
                claimed_before=now - lease, now=now
            )
            await uow.commit()

        if released:
            logger.warning(f"Released {released} sync entries stuck in processing")
        return released

    async def list_logs(
        self,
        page: int = 1,
        page_size: int = 10,
        status: str | None = None,
        entity_type: str | None = None,
        operation: str | None = None,
        search: str | None = None,
    ) -> SyncLogPage:
        filters = SyncQueueRepository.Filters(
            status=status,
            entity_type=entity_type,
            operation=operation,
            search=search,
        )
        async with self._unit_of_work() as uow:
            items, count = await uow.sync_queue.list_logs(
                filters, offset=(page - 1) * page_size, limit=page_size
            )
        return SyncLogPage(data=items, count=count, page=page, page_size=page_size)

    async def stats(self, window: timedelta = timedelta(hours=24)) -> dict[str, int]:
        async with self._unit_of_work() as uow:
            counts = await uow.sync_queue.count_by_status(since=utcnow() - window)
        return {
            "total": sum(counts.values()),
            **{status.value: counts.get(status.value, 0) for status in SyncStatus},
        }
