import asyncio
import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import List, Tuple
from pydantic import BaseModel

from digistore.domain.models import DeliveredItem, Order, OrderLine, OrderStatus
from digistore.domain.pricing import within_tolerance
from digistore.domain.exceptions import (
    AllocationFailedError, DomainException, DuplicatePaymentError,
    StockUnavailableError, TransientConflictError, ValidationError
)
from digistore.application.payment_methods import PaymentMethodRegistry
from digistore.application.quote import Quote, QuoteLineDTO, quote_lines, validate_lines
from digistore.application.retry import linear_backoff, retry_on_conflict


logger = logging.getLogger(__name__)


class OrderLineDTO(QuoteLineDTO):
    client_price: Decimal


class CreateOrderDTO(BaseModel):
    buyer_id: str
    lines: List[OrderLineDTO]
    client_total: Decimal
    payment_reference: str
    payment_method: str = "card"


class AllocationState(str, Enum):
    STARTED = "Started"
    VALIDATED = "Validated"
    PAYMENT_VERIFIED = "PaymentVerified"
    RESERVING = "Reserving"
    COMMITTED = "Committed"
    ABORTED = "Aborted"


class CreateOrderUseCase:
    def __init__(
        self,
        unit_of_work,
        payment_methods: PaymentMethodRegistry,
        tax_rate="0.06",
        price_tolerance="0.01",
        max_attempts: int = 3,
        backoff_base: float = 0.1,
        transaction_timeout: float = 15.0
    ):
        self._uow = unit_of_work
        self._payment_methods = payment_methods
        self._tax_rate = Decimal(str(tax_rate))
        self._price_tolerance = Decimal(str(price_tolerance))
        self._max_attempts = max_attempts
        self._backoff = linear_backoff(backoff_base)
        self._transaction_timeout = transaction_timeout

    async def __call__(self, order_data: CreateOrderDTO) -> Order:
        state = AllocationState.STARTED
        logger.info(
            f"Создание заказа для пользователя {order_data.buyer_id}, платеж {order_data.payment_reference}"
        )
        try:
            self._validate_shape(order_data)

            # 1. Повторная проверка цен и остатков
            quote = await self._quote(order_data)
            state = self._transition(state, AllocationState.VALIDATED, order_data)

            # 2. Проверка идемпотентности (повторяется внутри транзакции)
            async with self._uow() as uow:
                if await uow.orders.get_by_payment_reference(order_data.payment_reference):
                    logger.warning(f"Попытка повторного использования платежа {order_data.payment_reference}")
                    raise DuplicatePaymentError(order_data.payment_reference)

            # 3. Проверка платежа на сумму, посчитанную сервером
            method = self._payment_methods.get(order_data.payment_method)
            await method.confirm(
                order_data.payment_reference,
                quote.totals.total_price,
                order_data.buyer_id
            )
            state = self._transition(state, AllocationState.PAYMENT_VERIFIED, order_data)

            # 4-6. Атомарное резервирование и создание заказа
            state = self._transition(state, AllocationState.RESERVING, order_data)
            order = await self._reserve_and_record(order_data, quote, method.name)
            state = self._transition(state, AllocationState.COMMITTED, order_data)

            logger.info(
                f"Заказ создан: {order.id}, сумма {order.total_price}, выдано элементов {len(order.delivered_item_ids())}"
            )
            return order

        except DomainException as e:
            logger.warning(
                f"Заказ по платежу {order_data.payment_reference} отклонен на шаге {state.value}: "
                f"{type(e).__name__}: {e}"
            )
            raise

    def _transition(self, current: AllocationState, new: AllocationState, order_data: CreateOrderDTO) -> AllocationState:
        logger.info(f"Платеж {order_data.payment_reference}: {current.value} -> {new.value}")
        return new

    def _validate_shape(self, order_data: CreateOrderDTO) -> None:
        if not order_data.buyer_id:
            raise ValidationError("Не указан покупатель")
        if not order_data.payment_reference or not order_data.payment_reference.strip():
            raise ValidationError("Не указан платеж")
        validate_lines(order_data.lines)

    async def _quote(self, order_data: CreateOrderDTO) -> Quote:
        async with self._uow() as uow:
            quote = await quote_lines(uow, order_data.lines, self._tax_rate)

        total_price = quote.totals.total_price
        if not within_tolerance(order_data.client_total, total_price, self._price_tolerance):
            logger.warning(f"Несовпадение цены: рассчитано {total_price}, получено {order_data.client_total}")
            raise ValidationError("Несовпадение цены. Обновите страницу и попробуйте снова")

        return quote

    async def _reserve_and_record(self, order_data: CreateOrderDTO, quote: Quote, payment_method: str) -> Order:
        # (product_id, item_id, order_id) всех резервов из всех попыток
        reserved: List[Tuple[str, str, str]] = []

        async def attempt(number: int) -> Order:
            order_id = str(uuid.uuid4())
            return await asyncio.wait_for(
                self._attempt(number, order_id, order_data, quote, payment_method, reserved),
                timeout=self._transaction_timeout
            )

        try:
            return await retry_on_conflict(attempt, self._max_attempts, self._backoff)
        except TransientConflictError as e:
            await self._compensate(reserved)
            raise AllocationFailedError("Не удалось оформить заказ. Попробуйте еще раз") from e
        except asyncio.TimeoutError as e:
            logger.error(f"Транзакция для платежа {order_data.payment_reference} не завершилась вовремя")
            await self._compensate(reserved)
            raise AllocationFailedError("Не удалось оформить заказ. Попробуйте еще раз") from e
        except DomainException:
            await self._compensate(reserved)
            raise
        except Exception as e:
            logger.error(f"Ошибка транзакции для платежа {order_data.payment_reference}: {e}", exc_info=True)
            await self._compensate(reserved)
            raise AllocationFailedError("Не удалось оформить заказ. Попробуйте еще раз") from e

    async def _attempt(
        self,
        number: int,
        order_id: str,
        order_data: CreateOrderDTO,
        quote: Quote,
        payment_method: str,
        reserved: List[Tuple[str, str, str]]
    ) -> Order:
        logger.info(f"Транзакция попытка {number}/{self._max_attempts} для платежа {order_data.payment_reference}")

        async with self._uow(isolation_level="SERIALIZABLE") as uow:
            # Повторная проверка платежа под транзакцией
            if await uow.orders.get_by_payment_reference(order_data.payment_reference):
                logger.warning(f"Платеж {order_data.payment_reference} уже использован (обнаружено в транзакции)")
                raise DuplicatePaymentError(order_data.payment_reference)

            now = datetime.now(timezone.utc)
            lines = []
            item_ids = []
            for product, quantity in quote.lines:
                current = await uow.products.get_by_id(product.id)
                if not current or not current.is_active:
                    raise ValidationError(f"Товар {product.name} недоступен")

                available = await uow.inventory.count_available(product.id)
                if available < quantity:
                    raise StockUnavailableError(product.id, available, quantity)

                line_item_ids = await uow.inventory.reserve(product.id, quantity, order_data.buyer_id, order_id)
                reserved.extend((product.id, item_id, order_id) for item_id in line_item_ids)
                item_ids.extend(line_item_ids)

                lines.append(
                    OrderLine(
                        id=str(uuid.uuid4()),
                        product_id=product.id,
                        quantity=quantity,
                        unit_price=product.price,
                        delivered_items=[
                            DeliveredItem(id=str(uuid.uuid4()), inventory_item_id=item_id, delivered_at=now)
                            for item_id in line_item_ids
                        ]
                    )
                )

            order = Order(
                id=order_id,
                buyer_id=order_data.buyer_id,
                lines=lines,
                payment_reference=order_data.payment_reference,
                payment_method=payment_method,
                is_paid=True,
                items_price=quote.totals.items_price,
                tax_price=quote.totals.tax_price,
                total_price=quote.totals.total_price,
                status=OrderStatus.COMPLETED,
                created_at=now,
                paid_at=now
            )
            await uow.orders.create(order)

            sold = await uow.inventory.mark_sold(item_ids, order_id, now)
            if sold != len(item_ids):
                raise TransientConflictError(f"Продано {sold} из {len(item_ids)} зарезервированных элементов")

            for product, _ in quote.lines:
                await uow.products.refresh_counters(product.id)

            await uow.outbox.create(
                event_type="order.completed",
                event_data={
                    "order_id": order_id,
                    "buyer_id": order.buyer_id,
                    "total_price": order.total_price,
                    "items_count": len(item_ids)
                },
                order_id=order_id
            )

            await uow.commit()

        return order

    async def _compensate(self, reserved: List[Tuple[str, str, str]]) -> None:
        """Возвращает в available всё, что было зарезервировано неудачными попытками.
        Если транзакция уже откатилась, release ничего не меняет"""
        if not reserved:
            return
        try:
            async with self._uow() as uow:
                released = 0
                for _, item_id, order_id in reserved:
                    if await uow.inventory.release(item_id, order_id):
                        released += 1
                for product_id in {product_id for product_id, _, _ in reserved}:
                    await uow.products.refresh_counters(product_id)
                await uow.commit()
        except Exception as e:
            logger.error(f"Компенсация не выполнена для {len(reserved)} элементов: {e}", exc_info=True)
            raise AllocationFailedError("Не удалось оформить заказ. Попробуйте еще раз") from e

        if released:
            logger.warning(f"Компенсация: возвращено в продажу {released} элементов")
        else:
            logger.info(f"Компенсация: {len(reserved)} резервов уже откатились вместе с транзакцией")
