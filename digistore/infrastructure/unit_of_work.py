import logging
from contextlib import asynccontextmanager
from typing import Optional
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from digistore.domain.exceptions import TransientConflictError
from digistore.infrastructure.repositories import (
    SQLAlchemyProductRepository,
    SQLAlchemyInventoryRepository,
    SQLAlchemyOrderRepository,
    SQLAlchemyOutboxRepository
)

logger = logging.getLogger(__name__)

# serialization_failure, deadlock_detected, unique_violation
CONFLICT_SQLSTATES = {"40001", "40P01", "23505"}


def _sqlstate(error: DBAPIError) -> Optional[str]:
    orig = error.orig
    for candidate in (orig, getattr(orig, "__cause__", None)):
        code = getattr(candidate, "sqlstate", None) or getattr(candidate, "pgcode", None)
        if code:
            return code
    return None


def is_write_conflict(error: DBAPIError) -> bool:
    """Конфликт параллельных транзакций, который лечится повтором"""
    if _sqlstate(error) in CONFLICT_SQLSTATES:
        return True
    # SQLite: уникальность и блокировка файла
    if isinstance(error, IntegrityError) and "UNIQUE constraint failed" in str(error.orig):
        return True
    if isinstance(error, OperationalError) and "database is locked" in str(error.orig):
        return True
    return False


class UnitOfWork:
    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def __call__(self, isolation_level: Optional[str] = None):
        async with self._session_factory() as session:
            try:
                if isolation_level:
                    await session.connection(execution_options={"isolation_level": isolation_level})
                uow_impl = _UnitOfWorkImpl(session)
                yield uow_impl
                # Если commit не вызван — rollback
                await session.rollback()
            except DBAPIError as e:
                await session.rollback()
                if is_write_conflict(e):
                    logger.warning(f"Конфликт записи в транзакции: {e.orig}")
                    raise TransientConflictError(str(e.orig)) from e
                raise
            except Exception:
                await session.rollback()
                raise


class _UnitOfWorkImpl:
    def __init__(self, session: AsyncSession):
        self._session = session
        self.products = SQLAlchemyProductRepository(session)
        self.inventory = SQLAlchemyInventoryRepository(session)
        self.orders = SQLAlchemyOrderRepository(session)
        self.outbox = SQLAlchemyOutboxRepository(session)

    async def commit(self):
        await self._session.commit()

    async def rollback(self):
        await self._session.rollback()
