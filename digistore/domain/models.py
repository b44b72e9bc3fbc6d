from datetime import datetime
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, Field


class InventoryItemStatus(str, Enum):
    AVAILABLE = "available"
    RESERVED = "reserved"
    SOLD = "sold"


class OrderStatus(str, Enum):
    PENDING = "Pending"
    COMPLETED = "Completed"
    FAILED = "Failed"


class Product(BaseModel):
    """Domain Entity — цифровой товар. Цена в минимальных единицах (центах)"""
    id: str
    name: str
    price: int
    is_active: bool = True
    stock: int = 0
    total_sold: int = 0
    created_at: datetime


class InventoryItem(BaseModel):
    """Domain Entity — единица склада (ключ, аккаунт, код)"""
    id: str
    product_id: str
    encrypted_payload: bytes
    status: InventoryItemStatus = InventoryItemStatus.AVAILABLE
    reserved_by: Optional[str] = None
    order_id: Optional[str] = None
    added_by: str
    seq: int = 0
    created_at: datetime
    sold_at: Optional[datetime] = None

    def is_available(self) -> bool:
        return self.status == InventoryItemStatus.AVAILABLE

    def is_consistent(self) -> bool:
        """available тогда и только тогда, когда нет владельца и заказа"""
        unassigned = self.reserved_by is None and self.order_id is None
        return self.is_available() == unassigned


class DeliveredItem(BaseModel):
    id: str
    inventory_item_id: str
    delivered_at: datetime
    viewed: bool = False
    viewed_at: Optional[datetime] = None


class OrderLine(BaseModel):
    id: str
    product_id: str
    quantity: int
    unit_price: int
    delivered_items: List[DeliveredItem] = Field(default_factory=list)


class Order(BaseModel):
    """Domain Entity — заказ. После создания меняются только флаги просмотра"""
    id: str
    buyer_id: str
    lines: List[OrderLine]
    payment_reference: str
    payment_method: str
    is_paid: bool
    items_price: int
    tax_price: int
    total_price: int
    status: OrderStatus
    created_at: datetime
    paid_at: Optional[datetime] = None

    def is_owned_by(self, buyer_id: str) -> bool:
        return self.buyer_id == buyer_id

    def total_quantity(self) -> int:
        return sum(line.quantity for line in self.lines)

    def delivered_item_ids(self) -> List[str]:
        return [d.inventory_item_id for line in self.lines for d in line.delivered_items]

    def is_fully_delivered(self) -> bool:
        """Бизнес-правило: каждая единица заказа закрыта ровно одним элементом склада"""
        ids = self.delivered_item_ids()
        return len(ids) == self.total_quantity() and len(set(ids)) == len(ids)


class PaymentVerification(BaseModel):
    """Value Object — ответ платежного шлюза"""
    reference: str
    succeeded: bool
    amount: int
    payer_id: Optional[str] = None
    status: str = ""


class PaymentIntent(BaseModel):
    """Созданный у шлюза платеж; client_secret отдается клиенту для оплаты"""
    reference: str
    client_secret: str
    amount: int
    currency: str
    status: str = ""


class InventoryStats(BaseModel):
    product_id: str
    total: int
    available: int
    sold: int
    reserved: int


class DeliveredContent(BaseModel):
    id: str
    inventory_item_id: str
    content: str
    delivered_at: datetime
    viewed: bool
    viewed_at: Optional[datetime] = None


class DeliveredLine(BaseModel):
    product_id: str
    quantity: int
    unit_price: int
    items: List[DeliveredContent]
