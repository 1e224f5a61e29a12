import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orderflow.infrastructure.repositories import (
    CartRepository,
    InventoryRepository,
    OrderRepository,
    SyncQueueRepository,
)

logger = logging.getLogger(__name__)


class UnitOfWork:
    """Hands out one session-bound set of repositories per ``async with``.

    Work is kept only if ``commit()`` was called inside the block. Leaving it
    any other way (normal exit, exception, or cancellation by a timeout)
    rolls the transaction back.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def __call__(self) -> AsyncIterator["TransactionScope"]:
        async with self._session_factory() as session:
            scope = TransactionScope(session)
            try:
                yield scope
            finally:
                if not scope.committed:
                    if session.in_transaction():
                        logger.debug("Discarding uncommitted unit of work")
                    await session.rollback()


class TransactionScope:
    def __init__(self, session: AsyncSession):
        self._session = session
        self.orders = OrderRepository(session)
        self.inventory = InventoryRepository(session)
        self.carts = CartRepository(session)
        self.sync_queue = SyncQueueRepository(session)
        self.committed = False

    async def commit(self) -> None:
        await self._session.commit()
        self.committed = True
