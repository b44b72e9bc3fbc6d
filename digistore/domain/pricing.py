from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Tuple
from pydantic import BaseModel


class OrderTotals(BaseModel):
    """Value Object — суммы заказа в минимальных единицах"""
    items_price: int
    tax_price: int
    total_price: int


def to_minor_units(amount) -> int:
    """10.60 -> 1060"""
    return int((Decimal(str(amount)) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def calculate_totals(lines: Iterable[Tuple[int, int]], tax_rate) -> OrderTotals:
    """lines: пары (цена за единицу, количество)"""
    items_price = sum(price * quantity for price, quantity in lines)
    tax = (Decimal(items_price) * Decimal(str(tax_rate))).quantize(Decimal("1"), rounding=ROUND_HALF_UP)
    tax_price = int(tax)
    return OrderTotals(
        items_price=items_price,
        tax_price=tax_price,
        total_price=items_price + tax_price
    )


def within_tolerance(claimed_total, total_price: int, tolerance) -> bool:
    """Допуск только на ошибки округления на клиенте"""
    claimed = to_minor_units(claimed_total)
    allowed = Decimal(total_price) * Decimal(str(tolerance))
    return abs(Decimal(claimed - total_price)) <= allowed
