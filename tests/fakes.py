"""In-memory реализация репозиториев и unit of work для тестов use case'ов.

Изменения журналируются и откатываются, если commit не вызван.
Резервирование: условное обновление без await между проверкой и записью,
уникальность payment_reference проверяется при вставке заказа.
Перед каждой операцией корутина уступает управление, чтобы параллельные
запросы перемешивались как при сетевом вводе-выводе.
"""
import asyncio
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Dict, List, Optional

from digistore.application.create_order import CreateOrderDTO, OrderLineDTO
from digistore.application.interfaces import (
    InventoryRepository, KafkaProducer, OrderRepository, OutboxRepository, PaymentIntentIssuer, PaymentsVerifier,
    ProductRepository
)
from digistore.domain.exceptions import PaymentServiceError, TransientConflictError
from digistore.domain.models import (
    InventoryItem, InventoryItemStatus, InventoryStats, Order, OrderStatus, PaymentIntent, PaymentVerification,
    Product
)


class InMemoryStore:
    def __init__(self):
        self.products: Dict[str, Product] = {}
        self.items: Dict[str, InventoryItem] = {}
        self.orders: Dict[str, Order] = {}
        self.outbox: Dict[str, dict] = {}
        # записи склада не откатываются вместе с транзакцией
        self.leaky_inventory = False
        self.fail_on_reserve_call: Optional[int] = None
        self.conflicts_to_inject = 0
        self.commit_delay = 0.0
        self.reserve_calls = 0
        self.commits = 0
        self._seq = 0

    async def io(self):
        await asyncio.sleep(0)

    def next_seq(self) -> int:
        self._seq += 1
        return self._seq

    def add_product(self, secret_store, price: int = 1000, contents=("KEY-1",), name: str = "Steam Key",
                    is_active: bool = True) -> Product:
        product = Product(
            id=str(uuid.uuid4()),
            name=name,
            price=price,
            is_active=is_active,
            stock=len(contents),
            created_at=datetime.now(timezone.utc)
        )
        self.products[product.id] = product
        base = datetime.now(timezone.utc) - timedelta(minutes=len(contents))
        for index, content in enumerate(contents):
            item = InventoryItem(
                id=str(uuid.uuid4()),
                product_id=product.id,
                encrypted_payload=secret_store.encrypt(content),
                added_by="admin",
                seq=self.next_seq(),
                created_at=base + timedelta(seconds=index)
            )
            self.items[item.id] = item
        return product

    def items_of(self, product_id: str) -> List[InventoryItem]:
        return sorted(
            (i for i in self.items.values() if i.product_id == product_id),
            key=lambda i: (i.created_at, i.seq)
        )

    def available(self, product_id: str) -> int:
        return sum(1 for i in self.items_of(product_id) if i.status == InventoryItemStatus.AVAILABLE)


def assert_dual_invariant(store: InMemoryStore) -> None:
    """Каждый выданный элемент продан этому заказу, каждый занятый элемент выдан ровно одним заказом"""
    references: Dict[str, List[str]] = {}
    for order in store.orders.values():
        assert order.is_fully_delivered()
        for item_id in order.delivered_item_ids():
            references.setdefault(item_id, []).append(order.id)
            if order.status == OrderStatus.COMPLETED:
                item = store.items[item_id]
                assert item.status == InventoryItemStatus.SOLD
                assert item.order_id == order.id

    for item in store.items.values():
        assert item.is_consistent()
        if item.status != InventoryItemStatus.AVAILABLE:
            assert references.get(item.id) == [item.order_id]

    for product in store.products.values():
        assert product.stock == store.available(product.id)


class _Transaction:
    def __init__(self, store: InMemoryStore):
        self.store = store
        self.committed = False
        self._journal = []
        self.products = FakeProductRepository(self)
        self.inventory = FakeInventoryRepository(self)
        self.orders = FakeOrderRepository(self)
        self.outbox = FakeOutboxRepository(self)

    def write(self, mapping: dict, key: str, value, kind: str = "other"):
        previous = mapping.get(key)
        self._journal.append((mapping, key, previous, kind))
        mapping[key] = value

    async def commit(self):
        if self.store.commit_delay:
            await asyncio.sleep(self.store.commit_delay)
        self._journal.clear()
        self.committed = True
        self.store.commits += 1

    async def rollback(self):
        self.undo()

    def undo(self):
        while self._journal:
            mapping, key, previous, kind = self._journal.pop()
            if kind == "inventory" and self.store.leaky_inventory:
                continue
            if previous is None:
                mapping.pop(key, None)
            else:
                mapping[key] = previous


class FakeUnitOfWork:
    def __init__(self, store: InMemoryStore):
        self.store = store
        self.isolation_levels: List[Optional[str]] = []

    @asynccontextmanager
    async def __call__(self, isolation_level: Optional[str] = None):
        self.isolation_levels.append(isolation_level)
        txn = _Transaction(self.store)
        try:
            yield txn
        finally:
            # Если commit не вызван — rollback
            if not txn.committed:
                txn.undo()


class FakeProductRepository(ProductRepository):
    def __init__(self, txn: _Transaction):
        self._txn = txn
        self._store = txn.store

    async def get_by_id(self, product_id: str) -> Optional[Product]:
        await self._store.io()
        product = self._store.products.get(product_id)
        return product.model_copy() if product else None

    async def list_all(self) -> List[Product]:
        await self._store.io()
        return [p.model_copy() for p in sorted(self._store.products.values(), key=lambda p: p.created_at)]

    async def create(self, product: Product) -> None:
        await self._store.io()
        self._txn.write(self._store.products, product.id, product.model_copy())

    async def refresh_counters(self, product_id: str) -> None:
        await self._store.io()
        product = self._store.products[product_id]
        items = self._store.items_of(product_id)
        updated = product.model_copy(update={
            "stock": sum(1 for i in items if i.status == InventoryItemStatus.AVAILABLE),
            "total_sold": sum(1 for i in items if i.status == InventoryItemStatus.SOLD)
        })
        self._txn.write(self._store.products, product_id, updated)


class FakeInventoryRepository(InventoryRepository):
    def __init__(self, txn: _Transaction):
        self._txn = txn
        self._store = txn.store

    def _update(self, item: InventoryItem, **changes):
        self._txn.write(self._store.items, item.id, item.model_copy(update=changes), kind="inventory")

    async def add(self, item: InventoryItem) -> None:
        await self._store.io()
        self._txn.write(self._store.items, item.id, item.model_copy(), kind="inventory")

    async def get_many(self, item_ids: List[str]) -> Dict[str, InventoryItem]:
        await self._store.io()
        return {i: self._store.items[i].model_copy() for i in item_ids if i in self._store.items}

    async def count_available(self, product_id: str) -> int:
        await self._store.io()
        return self._store.available(product_id)

    async def reserve(self, product_id: str, quantity: int, buyer_id: str, order_id: str) -> List[str]:
        await self._store.io()
        self._store.reserve_calls += 1
        if self._store.fail_on_reserve_call == self._store.reserve_calls:
            raise RuntimeError("injected storage fault")
        if self._store.conflicts_to_inject > 0:
            self._store.conflicts_to_inject -= 1
            raise TransientConflictError("injected write conflict")

        candidates = [
            i for i in self._store.items_of(product_id) if i.status == InventoryItemStatus.AVAILABLE
        ][:quantity]
        if len(candidates) < quantity:
            raise TransientConflictError(f"only {len(candidates)} of {quantity} items left")
        for item in candidates:
            self._update(item, status=InventoryItemStatus.RESERVED, reserved_by=buyer_id, order_id=order_id)
        return [i.id for i in candidates]

    async def mark_sold(self, item_ids: List[str], order_id: str, sold_at: datetime) -> int:
        await self._store.io()
        sold = 0
        for item_id in item_ids:
            item = self._store.items.get(item_id)
            if item and item.status == InventoryItemStatus.RESERVED and item.order_id == order_id:
                self._update(item, status=InventoryItemStatus.SOLD, sold_at=sold_at)
                sold += 1
        return sold

    async def release(self, item_id: str, order_id: Optional[str]) -> bool:
        await self._store.io()
        item = self._store.items.get(item_id)
        if not item or item.status != InventoryItemStatus.RESERVED or item.order_id != order_id:
            return False
        self._update(item, status=InventoryItemStatus.AVAILABLE, reserved_by=None, order_id=None)
        return True

    async def list_by_status(self, product_id: str, status: InventoryItemStatus) -> List[InventoryItem]:
        await self._store.io()
        return [i.model_copy() for i in self._store.items_of(product_id) if i.status == status]

    async def stats(self, product_id: str) -> InventoryStats:
        await self._store.io()
        items = self._store.items_of(product_id)
        return InventoryStats(
            product_id=product_id,
            total=len(items),
            available=sum(1 for i in items if i.status == InventoryItemStatus.AVAILABLE),
            sold=sum(1 for i in items if i.status == InventoryItemStatus.SOLD),
            reserved=sum(1 for i in items if i.status == InventoryItemStatus.RESERVED)
        )


class FakeOrderRepository(OrderRepository):
    def __init__(self, txn: _Transaction):
        self._txn = txn
        self._store = txn.store

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        await self._store.io()
        order = self._store.orders.get(order_id)
        return order.model_copy(deep=True) if order else None

    async def get_by_payment_reference(self, payment_reference: str) -> Optional[Order]:
        await self._store.io()
        for order in self._store.orders.values():
            if order.payment_reference == payment_reference:
                return order.model_copy(deep=True)
        return None

    async def list_by_buyer(self, buyer_id: str) -> List[Order]:
        await self._store.io()
        orders = [o for o in self._store.orders.values() if o.buyer_id == buyer_id]
        return [o.model_copy(deep=True) for o in sorted(orders, key=lambda o: o.created_at, reverse=True)]

    async def create(self, order: Order) -> None:
        await self._store.io()
        # уникальные индексы: payment_reference и inventory_item_id
        delivered = set(order.delivered_item_ids())
        for existing in self._store.orders.values():
            if existing.payment_reference == order.payment_reference:
                raise TransientConflictError("unique violation: orders.payment_reference")
            if delivered & set(existing.delivered_item_ids()):
                raise TransientConflictError("unique violation: delivered_items.inventory_item_id")
        self._txn.write(self._store.orders, order.id, order.model_copy(deep=True))

    async def mark_item_viewed(self, delivered_item_id: str, viewed_at: datetime) -> bool:
        await self._store.io()
        for order in self._store.orders.values():
            for line_index, line in enumerate(order.lines):
                for item_index, delivered in enumerate(line.delivered_items):
                    if delivered.id != delivered_item_id:
                        continue
                    if delivered.viewed:
                        return False
                    updated = order.model_copy(deep=True)
                    target = updated.lines[line_index].delivered_items[item_index]
                    target.viewed = True
                    target.viewed_at = viewed_at
                    self._txn.write(self._store.orders, order.id, updated)
                    return True
        return False

    async def find_order_id_by_inventory_item(self, inventory_item_id: str) -> Optional[str]:
        await self._store.io()
        for order in self._store.orders.values():
            if inventory_item_id in order.delivered_item_ids():
                return order.id
        return None


class FakeOutboxRepository(OutboxRepository):
    def __init__(self, txn: _Transaction):
        self._txn = txn
        self._store = txn.store

    async def create(self, event_type: str, event_data: dict, order_id: str) -> str:
        await self._store.io()
        event_id = str(uuid.uuid4())
        self._txn.write(self._store.outbox, event_id, {
            "id": event_id,
            "event_type": event_type,
            "event_data": dict(event_data),
            "order_id": order_id,
            "status": "pending"
        })
        return event_id

    async def get_pending(self, limit: int = 10) -> List[dict]:
        await self._store.io()
        return [dict(e) for e in self._store.outbox.values() if e["status"] == "pending"][:limit]

    async def mark_as_published(self, event_id: str) -> None:
        await self._store.io()
        event = dict(self._store.outbox[event_id], status="published")
        self._txn.write(self._store.outbox, event_id, event)


class FakePaymentsVerifier(PaymentsVerifier, PaymentIntentIssuer):
    def __init__(self):
        self.payments: Dict[str, PaymentVerification] = {}
        self.calls: List[str] = []
        self.unavailable = False
        self.intents: List[PaymentIntent] = []

    def succeed(self, reference: str, amount: int, payer_id: str, status: str = "succeeded"):
        self.payments[reference] = PaymentVerification(
            reference=reference,
            succeeded=status == "succeeded",
            amount=amount,
            payer_id=payer_id,
            status=status
        )

    async def verify(self, reference: str) -> PaymentVerification:
        await asyncio.sleep(0)
        self.calls.append(reference)
        if self.unavailable:
            raise PaymentServiceError("Payment service не доступен")
        return self.payments.get(
            reference,
            PaymentVerification(reference=reference, succeeded=False, amount=0, status="not_found")
        )

    async def create_intent(self, amount: int, payer_id: str, items_count: int) -> PaymentIntent:
        await asyncio.sleep(0)
        if self.unavailable:
            raise PaymentServiceError("Payment service не доступен")
        reference = f"pi_{len(self.intents) + 1}"
        intent = PaymentIntent(
            reference=reference,
            client_secret=f"{reference}_secret",
            amount=amount,
            currency="myr",
            status="requires_payment_method"
        )
        self.intents.append(intent)
        self.succeed(reference, amount, payer_id, status=intent.status)
        return intent

    def pay(self, reference: str):
        """Покупатель оплатил созданный платеж"""
        payment = self.payments[reference]
        self.succeed(reference, payment.amount, payment.payer_id)


class FakeKafkaProducer(KafkaProducer):
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published: List[dict] = []

    async def publish_order_completed(self, order_id: str, event_data: dict) -> bool:
        if self.fail:
            return False
        self.published.append({"order_id": order_id, **event_data})
        return True


def make_order(buyer_id: str, reference: str, lines, total) -> CreateOrderDTO:
    """lines: пары (product, quantity)"""
    return CreateOrderDTO(
        buyer_id=buyer_id,
        lines=[
            OrderLineDTO(product_id=p.id, quantity=q, client_price=Decimal(p.price) / 100)
            for p, q in lines
        ],
        client_total=Decimal(str(total)),
        payment_reference=reference
    )
