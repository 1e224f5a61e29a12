import asyncio
import logging

from orderflow.application.process_sync_queue import ProcessSyncQueueUseCase

logger = logging.getLogger(__name__)


class SyncWorker:
    def __init__(self, use_case: ProcessSyncQueueUseCase, poll_interval: float = 60.0):
        self._use_case = use_case
        self._poll_interval = poll_interval

    async def run_once(self):
        try:
            return await self._use_case()
        except Exception:
            logger.exception("Sync batch failed")
            return None

    async def run(self):
        while True:
            await self.run_once()
            await asyncio.sleep(self._poll_interval)
