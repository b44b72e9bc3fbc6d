import logging
import time
import uuid
from datetime import datetime, timezone
from typing import List

from digistore.domain.models import InventoryItem, InventoryItemStatus, InventoryStats
from digistore.domain.exceptions import ProductNotFoundError, ValidationError
from digistore.application.retry import linear_backoff, retry_on_conflict

logger = logging.getLogger(__name__)


class AddInventoryItemsUseCase:
    """Администратор добавляет ключи/аккаунты на склад, содержимое шифруется сразу"""

    def __init__(self, unit_of_work, secret_store, max_attempts: int = 3, backoff_base: float = 0.1):
        self._uow = unit_of_work
        self._secret_store = secret_store
        self._max_attempts = max_attempts
        self._backoff = linear_backoff(backoff_base)

    async def __call__(self, product_id: str, contents: List[str], added_by: str) -> InventoryStats:
        if not contents:
            raise ValidationError("Не переданы элементы для добавления")
        contents = [content.strip() for content in contents]
        if any(not content for content in contents):
            raise ValidationError("Элемент склада не может быть пустым")

        encrypted = [self._secret_store.encrypt(content) for content in contents]

        async def attempt(number: int) -> InventoryStats:
            async with self._uow(isolation_level="SERIALIZABLE") as uow:
                product = await uow.products.get_by_id(product_id)
                if not product:
                    raise ProductNotFoundError(f"Товар {product_id} не найден")

                now = datetime.now(timezone.utc)
                base_seq = time.time_ns()
                for index, payload in enumerate(encrypted):
                    await uow.inventory.add(
                        InventoryItem(
                            id=str(uuid.uuid4()),
                            product_id=product_id,
                            encrypted_payload=payload,
                            status=InventoryItemStatus.AVAILABLE,
                            added_by=added_by,
                            seq=base_seq + index,
                            created_at=now
                        )
                    )
                await uow.products.refresh_counters(product_id)
                stats = await uow.inventory.stats(product_id)
                await uow.commit()
                return stats

        stats = await retry_on_conflict(attempt, self._max_attempts, self._backoff)
        logger.info(f"Добавлено {len(contents)} элементов на склад товара {product_id}, доступно: {stats.available}")
        return stats


class GetInventoryStatsUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, product_id: str) -> InventoryStats:
        async with self._uow() as uow:
            product = await uow.products.get_by_id(product_id)
            if not product:
                raise ProductNotFoundError(f"Товар {product_id} не найден")
            return await uow.inventory.stats(product_id)
