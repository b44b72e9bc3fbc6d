from abc import ABC, abstractmethod
from datetime import datetime
from typing import Dict, List, Optional
from digistore.domain.models import (
    InventoryItem, InventoryItemStatus, InventoryStats, Order, PaymentIntent, PaymentVerification, Product
)


class ProductRepository(ABC):
    @abstractmethod
    async def get_by_id(self, product_id: str) -> Optional[Product]:
        pass

    @abstractmethod
    async def list_all(self) -> List[Product]:
        pass

    @abstractmethod
    async def create(self, product: Product) -> None:
        pass

    @abstractmethod
    async def refresh_counters(self, product_id: str) -> None:
        """Пересчитывает stock и total_sold по складу в текущей транзакции"""
        pass


class InventoryRepository(ABC):
    @abstractmethod
    async def add(self, item: InventoryItem) -> None:
        pass

    @abstractmethod
    async def get_many(self, item_ids: List[str]) -> Dict[str, InventoryItem]:
        pass

    @abstractmethod
    async def count_available(self, product_id: str) -> int:
        pass

    @abstractmethod
    async def reserve(self, product_id: str, quantity: int, buyer_id: str, order_id: str) -> List[str]:
        """available -> reserved для самых старых элементов.
        Если удалось зарезервировать меньше quantity, TransientConflictError"""
        pass

    @abstractmethod
    async def mark_sold(self, item_ids: List[str], order_id: str, sold_at: datetime) -> int:
        """reserved -> sold только для элементов этого заказа, возвращает число строк"""
        pass

    @abstractmethod
    async def release(self, item_id: str, order_id: Optional[str]) -> bool:
        """reserved -> available. Идемпотентно: повторный вызов ничего не меняет"""
        pass

    @abstractmethod
    async def list_by_status(self, product_id: str, status: InventoryItemStatus) -> List[InventoryItem]:
        pass

    @abstractmethod
    async def stats(self, product_id: str) -> InventoryStats:
        pass


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def get_by_payment_reference(self, payment_reference: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def list_by_buyer(self, buyer_id: str) -> List[Order]:
        pass

    @abstractmethod
    async def create(self, order: Order) -> None:
        pass

    @abstractmethod
    async def mark_item_viewed(self, delivered_item_id: str, viewed_at: datetime) -> bool:
        pass

    @abstractmethod
    async def find_order_id_by_inventory_item(self, inventory_item_id: str) -> Optional[str]:
        pass


class OutboxRepository(ABC):
    @abstractmethod
    async def create(self, event_type: str, event_data: dict, order_id: str) -> str:
        pass

    @abstractmethod
    async def get_pending(self, limit: int = 10) -> List[dict]:
        pass

    @abstractmethod
    async def mark_as_published(self, event_id: str) -> None:
        pass


class UnitOfWork(ABC):
    @property
    @abstractmethod
    def products(self) -> ProductRepository:
        pass

    @property
    @abstractmethod
    def inventory(self) -> InventoryRepository:
        pass

    @property
    @abstractmethod
    def orders(self) -> OrderRepository:
        pass

    @property
    @abstractmethod
    def outbox(self) -> OutboxRepository:
        pass

    @abstractmethod
    async def __call__(self, isolation_level: Optional[str] = None):
        pass

    @abstractmethod
    async def commit(self):
        pass

    @abstractmethod
    async def rollback(self):
        pass


class PaymentsVerifier(ABC):
    @abstractmethod
    async def verify(self, reference: str) -> PaymentVerification:
        pass


class PaymentIntentIssuer(ABC):
    @abstractmethod
    async def create_intent(self, amount: int, payer_id: str, items_count: int) -> PaymentIntent:
        """Платеж на сумму, посчитанную сервером; payer_id попадает в metadata.userId"""
        pass


class PaymentMethod(ABC):
    """Способ оплаты. Сейчас реализована только карта"""
    name: str

    @abstractmethod
    async def confirm(self, reference: str, expected_amount: int, payer_id: str) -> PaymentVerification:
        pass


class KafkaProducer(ABC):
    @abstractmethod
    async def publish_order_completed(self, order_id: str, event_data: dict) -> bool:
        pass
