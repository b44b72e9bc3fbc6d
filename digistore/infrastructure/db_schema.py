from sqlalchemy import (
    Table, Column, String, Integer, BigInteger, Boolean, Enum, DateTime, JSON, LargeBinary,
    MetaData, ForeignKey, Index
)
from sqlalchemy.sql import func

from digistore.domain.models import InventoryItemStatus, OrderStatus

metadata = MetaData()


products_tbl = Table(
    "products",
    metadata,
    Column("id", String, primary_key=True),
    Column("name", String, nullable=False),
    Column("price", Integer, nullable=False),
    Column("is_active", Boolean, nullable=False, default=True),
    Column("stock", Integer, nullable=False, default=0),
    Column("total_sold", Integer, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), server_default=func.now())
)


inventory_items_tbl = Table(
    "inventory_items",
    metadata,
    Column("id", String, primary_key=True),
    Column("product_id", String, ForeignKey("products.id"), nullable=False),
    Column("encrypted_payload", LargeBinary, nullable=False),
    Column(
        "status",
        Enum(InventoryItemStatus, name="inventory_item_status"),
        nullable=False,
        default=InventoryItemStatus.AVAILABLE
    ),
    Column("reserved_by", String, nullable=True),
    Column("order_id", String, nullable=True, index=True),
    Column("added_by", String, nullable=False),
    Column("seq", BigInteger, nullable=False, default=0),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("sold_at", DateTime(timezone=True), nullable=True),
    Index("ix_inventory_items_product_status", "product_id", "status")
)


orders_tbl = Table(
    "orders",
    metadata,
    Column("id", String, primary_key=True),
    Column("buyer_id", String, nullable=False, index=True),
    # повторное использование платежа запрещено на уровне БД
    Column("payment_reference", String, nullable=False, unique=True),
    Column("payment_method", String, nullable=False),
    Column("is_paid", Boolean, nullable=False, default=False),
    Column("items_price", Integer, nullable=False),
    Column("tax_price", Integer, nullable=False),
    Column("total_price", Integer, nullable=False),
    Column("status", Enum(OrderStatus, name="order_status"), default=OrderStatus.PENDING),
    Column("created_at", DateTime(timezone=True), server_default=func.now()),
    Column("paid_at", DateTime(timezone=True), nullable=True)
)


order_lines_tbl = Table(
    "order_lines",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_id", String, ForeignKey("orders.id"), nullable=False, index=True),
    Column("product_id", String, nullable=False),
    Column("quantity", Integer, nullable=False),
    Column("unit_price", Integer, nullable=False),
    Column("position", Integer, nullable=False, default=0)
)


delivered_items_tbl = Table(
    "delivered_items",
    metadata,
    Column("id", String, primary_key=True),
    Column("order_id", String, ForeignKey("orders.id"), nullable=False, index=True),
    Column("order_line_id", String, ForeignKey("order_lines.id"), nullable=False),
    # один элемент склада не может попасть в два заказа
    Column("inventory_item_id", String, nullable=False, unique=True),
    Column("position", Integer, nullable=False, default=0),
    Column("delivered_at", DateTime(timezone=True), nullable=False),
    Column("viewed", Boolean, nullable=False, default=False),
    Column("viewed_at", DateTime(timezone=True), nullable=True)
)


outbox_events_tbl = Table(
    "outbox_events",
    metadata,
    Column("id", String, primary_key=True),
    Column("event_type", String, nullable=False),
    Column("event_data", JSON, nullable=False),
    Column("order_id", String, nullable=False),
    Column("status", String, default="pending"),
    Column("created_at", DateTime(timezone=True), server_default=func.now())
)
