import logging
from decimal import Decimal
from typing import List
from pydantic import BaseModel

from digistore.domain.models import PaymentIntent
from digistore.domain.pricing import OrderTotals
from digistore.application.interfaces import PaymentIntentIssuer
from digistore.application.quote import QuoteLineDTO, quote_lines, validate_lines

logger = logging.getLogger(__name__)


class CreatePaymentIntentDTO(BaseModel):
    buyer_id: str
    lines: List[QuoteLineDTO]


class PaymentIntentQuote(BaseModel):
    intent: PaymentIntent
    totals: OrderTotals


class CreatePaymentIntentUseCase:
    """Платеж создается на сумму, пересчитанную сервером.
    Заказ по нему оформляется позже, после успешной оплаты"""

    def __init__(self, unit_of_work, payments: PaymentIntentIssuer, tax_rate="0.06"):
        self._uow = unit_of_work
        self._payments = payments
        self._tax_rate = Decimal(str(tax_rate))

    async def __call__(self, data: CreatePaymentIntentDTO) -> PaymentIntentQuote:
        validate_lines(data.lines)

        async with self._uow() as uow:
            quote = await quote_lines(uow, data.lines, self._tax_rate)

        intent = await self._payments.create_intent(
            quote.totals.total_price,
            data.buyer_id,
            items_count=len(quote.lines)
        )
        logger.info(
            f"Создан платеж {intent.reference} для пользователя {data.buyer_id}, сумма {quote.totals.total_price}"
        )
        return PaymentIntentQuote(intent=intent, totals=quote.totals)
