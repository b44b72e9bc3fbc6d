from typing import List

from digistore.domain.models import Order
from digistore.domain.exceptions import OrderAccessDeniedError, OrderNotFoundError


class GetOrderUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: str, requester: str) -> Order:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            if not order:
                raise OrderNotFoundError(f"Заказ {order_id} не найден")
            if not order.is_owned_by(requester):
                raise OrderAccessDeniedError("Нет доступа к этому заказу")
            return order


class ListOrdersUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, buyer_id: str) -> List[Order]:
        async with self._uow() as uow:
            return await uow.orders.list_by_buyer(buyer_id)
