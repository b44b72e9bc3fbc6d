import logging
from typing import Dict, Iterable

from digistore.domain.models import PaymentVerification
from digistore.domain.exceptions import (
    PaymentMismatchError, PaymentRejectedError, PaymentServiceError, ValidationError
)
from digistore.application.interfaces import PaymentMethod, PaymentsVerifier

logger = logging.getLogger(__name__)


class CardPaymentMethod(PaymentMethod):
    name = "card"

    def __init__(self, verifier: PaymentsVerifier):
        self._verifier = verifier

    async def confirm(self, reference: str, expected_amount: int, payer_id: str) -> PaymentVerification:
        try:
            verification = await self._verifier.verify(reference)
        except PaymentServiceError as e:
            logger.warning(f"Платеж {reference} не проверен: {e}")
            raise PaymentRejectedError("Не удалось проверить платеж")

        if not verification.succeeded:
            logger.warning(f"Платеж {reference} не успешен, статус: {verification.status}")
            raise PaymentRejectedError(f"Платеж не прошел. Статус: {verification.status}")

        if verification.amount != expected_amount:
            logger.warning(
                f"Сумма платежа {reference} не совпадает: ожидалось {expected_amount}, получено {verification.amount}"
            )
            raise PaymentMismatchError("Сумма платежа не совпадает с суммой заказа")

        if verification.payer_id != payer_id:
            logger.warning(f"Платеж {reference} принадлежит другому пользователю")
            raise PaymentMismatchError("Платеж принадлежит другому пользователю")

        return verification


class PaymentMethodRegistry:
    def __init__(self, methods: Iterable[PaymentMethod]):
        self._methods: Dict[str, PaymentMethod] = {m.name: m for m in methods}

    def get(self, name: str) -> PaymentMethod:
        method = self._methods.get((name or "").lower())
        if method is None:
            raise ValidationError(f"Способ оплаты {name} не поддерживается")
        return method

    def names(self):
        return sorted(self._methods)
