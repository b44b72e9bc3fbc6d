from pydantic import BaseModel, Field
from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from digistore.domain.models import DeliveredLine, OrderStatus


class OrderItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(gt=0)
    price: Decimal


class CreateOrderRequest(BaseModel):
    items: List[OrderItemRequest] = Field(min_length=1)
    total_price: Decimal
    payment_reference: str = Field(min_length=1)
    payment_method: str = "card"


class DeliveredItemResponse(BaseModel):
    id: str
    inventory_item_id: str
    delivered_at: datetime
    viewed: bool


class OrderLineResponse(BaseModel):
    product_id: str
    quantity: int
    unit_price: int
    delivered_items: List[DeliveredItemResponse]


class OrderResponse(BaseModel):
    id: str
    buyer_id: str
    lines: List[OrderLineResponse]
    payment_reference: str
    payment_method: str
    is_paid: bool
    items_price: int
    tax_price: int
    total_price: int
    status: OrderStatus
    created_at: datetime
    paid_at: Optional[datetime] = None

    @classmethod
    def from_domain(cls, order):
        return cls(
            id=order.id,
            buyer_id=order.buyer_id,
            lines=[
                OrderLineResponse(
                    product_id=line.product_id,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    delivered_items=[
                        DeliveredItemResponse(
                            id=d.id,
                            inventory_item_id=d.inventory_item_id,
                            delivered_at=d.delivered_at,
                            viewed=d.viewed
                        )
                        for d in line.delivered_items
                    ]
                )
                for line in order.lines
            ],
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


class DeliveredItemsResponse(BaseModel):
    order_id: str
    lines: List[DeliveredLine]


class AddInventoryRequest(BaseModel):
    items: List[str] = Field(min_length=1)


class ErrorResponse(BaseModel):
    detail: str


class PaymentIntentItemRequest(BaseModel):
    product_id: str
    quantity: int = Field(gt=0)


class PaymentIntentRequest(BaseModel):
    items: List[PaymentIntentItemRequest] = Field(min_length=1)


class PaymentIntentResponse(BaseModel):
    payment_reference: str
    client_secret: str
    currency: str
    items_price: int
    tax_price: int
    total_price: int
