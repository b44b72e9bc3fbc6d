import logging
from datetime import datetime, timezone
from typing import List, Optional
from pydantic import BaseModel

from digistore.domain.models import InventoryItemStatus, InventoryStats
from digistore.application.retry import linear_backoff, retry_on_conflict

logger = logging.getLogger(__name__)


class ProductReconciliation(BaseModel):
    product_id: str
    name: str
    stock_before: int
    stats: InventoryStats
    released_orphans: int
    completed_reservations: int
    unreferenced_sold: int


class ReconcileReport(BaseModel):
    products: List[ProductReconciliation]

    @property
    def repaired(self) -> bool:
        return any(
            p.released_orphans or p.completed_reservations or p.stock_before != p.stats.available
            for p in self.products
        )


class ReconcileInventoryUseCase:
    """Проверка склада: зависшие резервы, расхождение счетчика stock, проданные элементы без заказа.

    Зависший резерв (reserved без ссылающегося заказа) возвращается в продажу.
    Резерв, на который уже ссылается заказ, переводится в sold.
    Проданные элементы без заказа только попадают в отчет: sold не откатывается.
    """

    def __init__(self, unit_of_work, max_attempts: int = 3, backoff_base: float = 0.1):
        self._uow = unit_of_work
        self._max_attempts = max_attempts
        self._backoff = linear_backoff(backoff_base)

    async def __call__(self, product_id: Optional[str] = None) -> ReconcileReport:
        async with self._uow() as uow:
            if product_id:
                product = await uow.products.get_by_id(product_id)
                products = [product] if product else []
            else:
                products = await uow.products.list_all()

        report = []
        for product in products:
            async def attempt(number: int, product=product) -> ProductReconciliation:
                return await self._reconcile_product(product.id, product.name)

            report.append(await retry_on_conflict(attempt, self._max_attempts, self._backoff))

        result = ReconcileReport(products=report)
        if result.repaired:
            logger.warning(f"Сверка склада: исправлены расхождения в {len(report)} товарах")
        else:
            logger.info(f"Сверка склада: {len(report)} товаров без расхождений")
        return result

    async def _reconcile_product(self, product_id: str, name: str) -> ProductReconciliation:
        async with self._uow(isolation_level="SERIALIZABLE") as uow:
            product = await uow.products.get_by_id(product_id)
            stock_before = product.stock if product else 0

            released = 0
            completed = 0
            now = datetime.now(timezone.utc)
            for item in await uow.inventory.list_by_status(product_id, InventoryItemStatus.RESERVED):
                referencing_order = await uow.orders.find_order_id_by_inventory_item(item.id)
                if referencing_order is None:
                    if await uow.inventory.release(item.id, item.order_id):
                        released += 1
                        logger.warning(f"Товар {product_id}: зависший резерв {item.id} возвращен в продажу")
                elif referencing_order == item.order_id:
                    completed += await uow.inventory.mark_sold([item.id], referencing_order, now)
                    logger.warning(f"Товар {product_id}: резерв {item.id} заказа {referencing_order} переведен в sold")
                else:
                    logger.error(
                        f"Товар {product_id}: элемент {item.id} зарезервирован за {item.order_id}, "
                        f"но выдан в заказе {referencing_order}"
                    )

            unreferenced_sold = 0
            for item in await uow.inventory.list_by_status(product_id, InventoryItemStatus.SOLD):
                if await uow.orders.find_order_id_by_inventory_item(item.id) is None:
                    unreferenced_sold += 1
                    logger.error(f"Товар {product_id}: проданный элемент {item.id} не связан ни с одним заказом")

            await uow.products.refresh_counters(product_id)
            stats = await uow.inventory.stats(product_id)
            await uow.commit()

        if stock_before != stats.available:
            logger.warning(f"Товар {product_id}: stock исправлен {stock_before} -> {stats.available}")

        return ProductReconciliation(
            product_id=product_id,
            name=name,
            stock_before=stock_before,
            stats=stats,
            released_orphans=released,
            completed_reservations=completed,
            unreferenced_sold=unreferenced_sold
        )
