import uuid
from collections import defaultdict
from datetime import datetime
from typing import Dict, List, Optional
from sqlalchemy import select, insert, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from digistore.domain.models import (
    DeliveredItem, InventoryItem, InventoryItemStatus, InventoryStats, Order, OrderLine, OrderStatus, Product
)
from digistore.domain.exceptions import TransientConflictError
from digistore.infrastructure.db_schema import (
    products_tbl, inventory_items_tbl, orders_tbl, order_lines_tbl, delivered_items_tbl, outbox_events_tbl
)
from digistore.application.interfaces import (
    ProductRepository, InventoryRepository, OrderRepository, OutboxRepository
)


class SQLAlchemyProductRepository(ProductRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, product_id: str) -> Optional[Product]:
        result = await self._session.execute(
            select(products_tbl).where(products_tbl.c.id == product_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def list_all(self) -> List[Product]:
        result = await self._session.execute(
            select(products_tbl).order_by(products_tbl.c.created_at.asc())
        )
        return [self._to_domain(row) for row in result.fetchall()]

    async def create(self, product: Product) -> None:
        stmt = insert(products_tbl).values(
            id=product.id,
            name=product.name,
            price=product.price,
            is_active=product.is_active,
            stock=product.stock,
            total_sold=product.total_sold,
            created_at=product.created_at
        )
        await self._session.execute(stmt)

    async def refresh_counters(self, product_id: str) -> None:
        result = await self._session.execute(
            select(inventory_items_tbl.c.status, func.count())
            .where(inventory_items_tbl.c.product_id == product_id)
            .group_by(inventory_items_tbl.c.status)
        )
        counts = {InventoryItemStatus(status): count for status, count in result.fetchall()}
        stmt = (
            update(products_tbl)
            .where(products_tbl.c.id == product_id)
            .values(
                stock=counts.get(InventoryItemStatus.AVAILABLE, 0),
                total_sold=counts.get(InventoryItemStatus.SOLD, 0)
            )
        )
        await self._session.execute(stmt)

    def _to_domain(self, row) -> Product:
        """Трансформация DB → Domain"""
        return Product(
            id=row.id,
            name=row.name,
            price=row.price,
            is_active=row.is_active,
            stock=row.stock,
            total_sold=row.total_sold,
            created_at=row.created_at
        )


class SQLAlchemyInventoryRepository(InventoryRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def add(self, item: InventoryItem) -> None:
        stmt = insert(inventory_items_tbl).values(
            id=item.id,
            product_id=item.product_id,
            encrypted_payload=item.encrypted_payload,
            status=item.status,
            reserved_by=item.reserved_by,
            order_id=item.order_id,
            added_by=item.added_by,
            seq=item.seq,
            created_at=item.created_at,
            sold_at=item.sold_at
        )
        await self._session.execute(stmt)

    async def get_many(self, item_ids: List[str]) -> Dict[str, InventoryItem]:
        if not item_ids:
            return {}
        result = await self._session.execute(
            select(inventory_items_tbl).where(inventory_items_tbl.c.id.in_(item_ids))
        )
        return {row.id: self._to_domain(row) for row in result.fetchall()}

    async def count_available(self, product_id: str) -> int:
        result = await self._session.execute(
            select(func.count())
            .select_from(inventory_items_tbl)
            .where(
                inventory_items_tbl.c.product_id == product_id,
                inventory_items_tbl.c.status == InventoryItemStatus.AVAILABLE
            )
        )
        return result.scalar_one()

    async def reserve(self, product_id: str, quantity: int, buyer_id: str, order_id: str) -> List[str]:
        # Самые старые свободные элементы; занятые другой транзакцией пропускаем
        result = await self._session.execute(
            select(inventory_items_tbl.c.id)
            .where(
                inventory_items_tbl.c.product_id == product_id,
                inventory_items_tbl.c.status == InventoryItemStatus.AVAILABLE
            )
            .order_by(inventory_items_tbl.c.created_at.asc(), inventory_items_tbl.c.seq.asc())
            .limit(quantity)
            .with_for_update(skip_locked=True)
        )
        item_ids = [row.id for row in result.fetchall()]
        if len(item_ids) < quantity:
            raise TransientConflictError(
                f"Товар {product_id}: удалось выбрать {len(item_ids)} из {quantity} элементов"
            )

        # Условное обновление: проходит только если статус всё ещё available
        stmt = (
            update(inventory_items_tbl)
            .where(
                inventory_items_tbl.c.id.in_(item_ids),
                inventory_items_tbl.c.status == InventoryItemStatus.AVAILABLE
            )
            .values(
                status=InventoryItemStatus.RESERVED,
                reserved_by=buyer_id,
                order_id=order_id
            )
        )
        result = await self._session.execute(stmt)
        if result.rowcount != len(item_ids):
            raise TransientConflictError(
                f"Товар {product_id}: элементы склада изменены параллельной транзакцией"
            )
        return item_ids

    async def mark_sold(self, item_ids: List[str], order_id: str, sold_at: datetime) -> int:
        if not item_ids:
            return 0
        stmt = (
            update(inventory_items_tbl)
            .where(
                inventory_items_tbl.c.id.in_(item_ids),
                inventory_items_tbl.c.status == InventoryItemStatus.RESERVED,
                inventory_items_tbl.c.order_id == order_id
            )
            .values(status=InventoryItemStatus.SOLD, sold_at=sold_at)
        )
        result = await self._session.execute(stmt)
        return result.rowcount

    async def release(self, item_id: str, order_id: Optional[str]) -> bool:
        if order_id is None:
            same_order = inventory_items_tbl.c.order_id.is_(None)
        else:
            same_order = inventory_items_tbl.c.order_id == order_id
        stmt = (
            update(inventory_items_tbl)
            .where(
                inventory_items_tbl.c.id == item_id,
                inventory_items_tbl.c.status == InventoryItemStatus.RESERVED,
                same_order
            )
            .values(
                status=InventoryItemStatus.AVAILABLE,
                reserved_by=None,
                order_id=None
            )
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def list_by_status(self, product_id: str, status: InventoryItemStatus) -> List[InventoryItem]:
        result = await self._session.execute(
            select(inventory_items_tbl)
            .where(
                inventory_items_tbl.c.product_id == product_id,
                inventory_items_tbl.c.status == status
            )
            .order_by(inventory_items_tbl.c.created_at.asc(), inventory_items_tbl.c.seq.asc())
        )
        return [self._to_domain(row) for row in result.fetchall()]

    async def stats(self, product_id: str) -> InventoryStats:
        result = await self._session.execute(
            select(inventory_items_tbl.c.status, func.count())
            .where(inventory_items_tbl.c.product_id == product_id)
            .group_by(inventory_items_tbl.c.status)
        )
        counts = {InventoryItemStatus(status): count for status, count in result.fetchall()}
        return InventoryStats(
            product_id=product_id,
            total=sum(counts.values()),
            available=counts.get(InventoryItemStatus.AVAILABLE, 0),
            sold=counts.get(InventoryItemStatus.SOLD, 0),
            reserved=counts.get(InventoryItemStatus.RESERVED, 0)
        )

    def _to_domain(self, row) -> InventoryItem:
        return InventoryItem(
            id=row.id,
            product_id=row.product_id,
            encrypted_payload=row.encrypted_payload,
            status=InventoryItemStatus(row.status),
            reserved_by=row.reserved_by,
            order_id=row.order_id,
            added_by=row.added_by,
            seq=row.seq,
            created_at=row.created_at,
            sold_at=row.sold_at
        )


class SQLAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self._session.execute(
            select(orders_tbl).where(orders_tbl.c.id == order_id)
        )
        row = result.fetchone()
        return await self._load(row) if row else None

    async def get_by_payment_reference(self, payment_reference: str) -> Optional[Order]:
        result = await self._session.execute(
            select(orders_tbl).where(orders_tbl.c.payment_reference == payment_reference)
        )
        row = result.fetchone()
        return await self._load(row) if row else None

    async def list_by_buyer(self, buyer_id: str) -> List[Order]:
        result = await self._session.execute(
            select(orders_tbl)
            .where(orders_tbl.c.buyer_id == buyer_id)
            .order_by(orders_tbl.c.created_at.desc())
        )
        return [await self._load(row) for row in result.fetchall()]

    async def create(self, order: Order) -> None:
        await self._session.execute(
            insert(orders_tbl).values(
                id=order.id,
                buyer_id=order.buyer_id,
                payment_reference=order.payment_reference,
                payment_method=order.payment_method,
                is_paid=order.is_paid,
                items_price=order.items_price,
                tax_price=order.tax_price,
                total_price=order.total_price,
                status=order.status,
                created_at=order.created_at,
                paid_at=order.paid_at
            )
        )
        for position, line in enumerate(order.lines):
            await self._session.execute(
                insert(order_lines_tbl).values(
                    id=line.id,
                    order_id=order.id,
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    position=position
                )
            )
            for item_position, delivered in enumerate(line.delivered_items):
                await self._session.execute(
                    insert(delivered_items_tbl).values(
                        id=delivered.id,
                        order_id=order.id,
                        order_line_id=line.id,
                        inventory_item_id=delivered.inventory_item_id,
                        position=item_position,
                        delivered_at=delivered.delivered_at,
                        viewed=delivered.viewed,
                        viewed_at=delivered.viewed_at
                    )
                )

    async def mark_item_viewed(self, delivered_item_id: str, viewed_at: datetime) -> bool:
        # Флаг просмотра только выставляется, но никогда не сбрасывается
        stmt = (
            update(delivered_items_tbl)
            .where(
                delivered_items_tbl.c.id == delivered_item_id,
                delivered_items_tbl.c.viewed.is_(False)
            )
            .values(viewed=True, viewed_at=viewed_at)
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    async def find_order_id_by_inventory_item(self, inventory_item_id: str) -> Optional[str]:
        result = await self._session.execute(
            select(delivered_items_tbl.c.order_id)
            .where(delivered_items_tbl.c.inventory_item_id == inventory_item_id)
        )
        return result.scalar_one_or_none()

    async def _load(self, row) -> Order:
        lines_result = await self._session.execute(
            select(order_lines_tbl)
            .where(order_lines_tbl.c.order_id == row.id)
            .order_by(order_lines_tbl.c.position.asc())
        )
        delivered_result = await self._session.execute(
            select(delivered_items_tbl)
            .where(delivered_items_tbl.c.order_id == row.id)
            .order_by(delivered_items_tbl.c.position.asc())
        )
        delivered_by_line = defaultdict(list)
        for d in delivered_result.fetchall():
            delivered_by_line[d.order_line_id].append(
                DeliveredItem(
                    id=d.id,
                    inventory_item_id=d.inventory_item_id,
                    delivered_at=d.delivered_at,
                    viewed=d.viewed,
                    viewed_at=d.viewed_at
                )
            )
        lines = [
            OrderLine(
                id=line.id,
                product_id=line.product_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
                delivered_items=delivered_by_line[line.id]
            )
            for line in lines_result.fetchall()
        ]
        return self._to_domain(row, lines)

    def _to_domain(self, row, lines: List[OrderLine]) -> Order:
        """Трансформация DB → Domain"""
        return Order(
            id=row.id,
            buyer_id=row.buyer_id,
            lines=lines,
            payment_reference=row.payment_reference,
            payment_method=row.payment_method,
            is_paid=row.is_paid,
            items_price=row.items_price,
            tax_price=row.tax_price,
            total_price=row.total_price,
            status=OrderStatus(row.status),
            created_at=row.created_at,
            paid_at=row.paid_at
        )


class SQLAlchemyOutboxRepository(OutboxRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def create(self, event_type: str, event_data: dict, order_id: str) -> str:
        event_id = str(uuid.uuid4())
        stmt = insert(outbox_events_tbl).values(
            id=event_id,
            event_type=event_type,
            event_data=event_data,  # SQLAlchemy JSON column сериализует автоматически
            order_id=order_id,
            status="pending"
        )
        await self._session.execute(stmt)
        return event_id

    async def get_pending(self, limit: int = 10) -> List[dict]:
        result = await self._session.execute(
            select(outbox_events_tbl)
            .where(outbox_events_tbl.c.status == "pending")
            .order_by(outbox_events_tbl.c.created_at.asc())
            .limit(limit)
        )
        rows = result.fetchall()

        return [
            {
                "id": row.id,
                "event_type": row.event_type,
                "event_data": row.event_data,
                "order_id": row.order_id
            }
            for row in rows
        ]

    async def mark_as_published(self, event_id: str) -> None:
        stmt = (
            update(outbox_events_tbl)
            .where(outbox_events_tbl.c.id == event_id)
            .values(status="published")
        )
        await self._session.execute(stmt)
