from decimal import Decimal
from typing import List, Sequence, Tuple
from pydantic import BaseModel

from digistore.domain.models import Product
from digistore.domain.pricing import OrderTotals, calculate_totals
from digistore.domain.exceptions import ProductNotFoundError, StockUnavailableError, ValidationError


class QuoteLineDTO(BaseModel):
    product_id: str
    quantity: int


class Quote(BaseModel):
    """Пересчитанные на сервере позиции и суммы"""
    lines: List[Tuple[Product, int]]
    totals: OrderTotals


def validate_lines(lines: Sequence[QuoteLineDTO]) -> None:
    if not lines:
        raise ValidationError("Заказ не содержит товаров")
    seen = set()
    for line in lines:
        if line.quantity <= 0:
            raise ValidationError(f"Количество для товара {line.product_id} должно быть положительным")
        if line.product_id in seen:
            raise ValidationError(f"Товар {line.product_id} указан в заказе дважды")
        seen.add(line.product_id)


async def quote_lines(uow, lines: Sequence[QuoteLineDTO], tax_rate: Decimal) -> Quote:
    """Цены берутся только из базы, клиентские цены не используются"""
    priced = []
    for line in lines:
        product = await uow.products.get_by_id(line.product_id)
        if not product:
            raise ProductNotFoundError(f"Товар {line.product_id} не найден")
        if not product.is_active:
            raise ValidationError(f"Товар {product.name} недоступен")

        available = await uow.inventory.count_available(product.id)
        if available < line.quantity:
            raise StockUnavailableError(product.id, available, line.quantity)

        priced.append((product, line.quantity))

    totals = calculate_totals(((p.price, qty) for p, qty in priced), tax_rate)
    if totals.total_price <= 0:
        raise ValidationError("Некорректная сумма заказа")

    return Quote(lines=priced, totals=totals)
