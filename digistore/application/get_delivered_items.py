import logging
from datetime import datetime, timezone
from typing import List

from digistore.domain.models import DeliveredContent, DeliveredLine
from digistore.domain.exceptions import (
    CorruptPayloadError, OrderAccessDeniedError, OrderNotFoundError, OrderNotPaidError
)

logger = logging.getLogger(__name__)

UNREADABLE_ITEM_PLACEHOLDER = "ERROR: Unable to decrypt. Contact support."


class GetDeliveredItemsUseCase:
    """Выдача купленных ключей/аккаунтов владельцу оплаченного заказа"""

    def __init__(self, unit_of_work, secret_store):
        self._uow = unit_of_work
        self._secret_store = secret_store

    async def __call__(self, order_id: str, requester: str) -> List[DeliveredLine]:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order:
                raise OrderNotFoundError(f"Заказ {order_id} не найден")

            # Только владелец, администраторы содержимое не видят
            if not order.is_owned_by(requester):
                logger.warning(f"Пользователь {requester} запросил содержимое чужого заказа {order_id}")
                raise OrderAccessDeniedError("Нет доступа к содержимому этого заказа")

            if not order.is_paid:
                raise OrderNotPaidError(f"Заказ {order_id} не оплачен")

            inventory = await uow.inventory.get_many(order.delivered_item_ids())
            now = datetime.now(timezone.utc)
            result = []

            for line in order.lines:
                items = []
                for delivered in line.delivered_items:
                    inventory_item = inventory.get(delivered.inventory_item_id)
                    try:
                        if inventory_item is None or inventory_item.order_id != order.id:
                            raise CorruptPayloadError(f"Элемент склада {delivered.inventory_item_id} не найден")
                        content = self._secret_store.decrypt_text(inventory_item.encrypted_payload)
                    except CorruptPayloadError as e:
                        logger.error(f"Заказ {order_id}, элемент {delivered.inventory_item_id}: {e}")
                        items.append(
                            DeliveredContent(
                                id=delivered.id,
                                inventory_item_id=delivered.inventory_item_id,
                                content=UNREADABLE_ITEM_PLACEHOLDER,
                                delivered_at=delivered.delivered_at,
                                viewed=delivered.viewed,
                                viewed_at=delivered.viewed_at
                            )
                        )
                        continue

                    items.append(
                        DeliveredContent(
                            id=delivered.id,
                            inventory_item_id=delivered.inventory_item_id,
                            content=content,
                            delivered_at=delivered.delivered_at,
                            viewed=delivered.viewed,
                            viewed_at=delivered.viewed_at
                        )
                    )
                    if not delivered.viewed:
                        await uow.orders.mark_item_viewed(delivered.id, now)

                result.append(
                    DeliveredLine(
                        product_id=line.product_id,
                        quantity=line.quantity,
                        unit_price=line.unit_price,
                        items=items
                    )
                )

            await uow.commit()

        logger.info(f"Пользователь {requester} просмотрел содержимое заказа {order_id}")
        return result
