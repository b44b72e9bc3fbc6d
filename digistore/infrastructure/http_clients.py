import httpx
import logging
from typing import Optional

from digistore.domain.models import PaymentIntent, PaymentVerification
from digistore.domain.exceptions import PaymentServiceError
from digistore.application.interfaces import PaymentIntentIssuer, PaymentsVerifier

logger = logging.getLogger(__name__)


class StripePaymentsClient(PaymentsVerifier, PaymentIntentIssuer):
    """Создание и проверка PaymentIntent через REST API Stripe"""

    def __init__(
        self,
        base_url: str,
        secret_key: str,
        timeout: float = 10.0,
        currency: str = "myr",
        transport: Optional[httpx.AsyncBaseTransport] = None
    ):
        self._base_url = base_url.rstrip("/")
        self._secret_key = secret_key
        self._timeout = timeout
        self._currency = currency
        self._transport = transport

    async def create_intent(self, amount: int, payer_id: str, items_count: int) -> PaymentIntent:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    f"{self._base_url}/v1/payment_intents",
                    headers={"Authorization": f"Bearer {self._secret_key}"},
                    data={
                        "amount": str(amount),
                        "currency": self._currency,
                        "automatic_payment_methods[enabled]": "true",
                        "metadata[userId]": payer_id,
                        "metadata[orderItemsCount]": str(items_count),
                        "metadata[orderType]": "digital"
                    },
                    timeout=self._timeout
                )

                if response.status_code != 200:
                    raise PaymentServiceError(f"Payment service ошибка: {response.status_code}")

                data = response.json()
                return PaymentIntent(
                    reference=data["id"],
                    client_secret=data["client_secret"],
                    amount=int(data.get("amount", amount)),
                    currency=data.get("currency", self._currency),
                    status=data.get("status", "")
                )

        except httpx.TimeoutException as e:
            logger.error(f"Payment service таймаут при создании платежа: {e}")
            raise PaymentServiceError(f"Payment service не ответил за {self._timeout} сек")
        except httpx.RequestError as e:
            logger.error(f"Payment service ошибка подключения: {e}")
            raise PaymentServiceError(f"Payment service не доступен: {str(e)}")

    async def verify(self, reference: str) -> PaymentVerification:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.get(
                    f"{self._base_url}/v1/payment_intents/{reference}",
                    headers={"Authorization": f"Bearer {self._secret_key}"},
                    timeout=self._timeout
                )

                if response.status_code == 200:
                    data = response.json()
                    metadata = data.get("metadata") or {}
                    return PaymentVerification(
                        reference=data.get("id", reference),
                        succeeded=data.get("status") == "succeeded",
                        amount=int(data.get("amount", 0)),
                        payer_id=metadata.get("userId"),
                        status=data.get("status", "")
                    )
                elif response.status_code == 404:
                    return PaymentVerification(
                        reference=reference,
                        succeeded=False,
                        amount=0,
                        status="not_found"
                    )
                else:
                    raise PaymentServiceError(f"Payment service ошибка: {response.status_code}")

        except httpx.TimeoutException as e:
            logger.error(f"Payment service таймаут для {reference}: {e}")
            raise PaymentServiceError(f"Payment service не ответил за {self._timeout} сек")
        except httpx.RequestError as e:
            logger.error(f"Payment service ошибка подключения: {e}")
            raise PaymentServiceError(f"Payment service не доступен: {str(e)}")
