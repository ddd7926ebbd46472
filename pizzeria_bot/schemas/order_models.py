"""Order related pydantic models.

- Enum for order status so stored values stay within the known lifecycle.
- OrderInput is the fully validated payload handed to the order store.
"""
from enum import Enum
from pydantic import BaseModel, Field
from typing import List, Optional


class OrderStatus(str, Enum):
    pending = "pending"
    confirmed = "confirmed"
    preparing = "preparing"
    ready = "ready"
    out_for_delivery = "out_for_delivery"
    delivered = "delivered"
    cancelled = "cancelled"
    expired = "expired"


STATUS_LABELS = {
    OrderStatus.confirmed: "✅ Confirmado (En cola)",
    OrderStatus.preparing: "🔥 En el horno",
    OrderStatus.ready: "🥡 Listo para enviar",
    OrderStatus.out_for_delivery: "🛵 En camino",
    OrderStatus.delivered: "🏠 Entregado",
}


class OrderItemInput(BaseModel):
    product_id: str
    product_name: str
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)


class OrderInput(BaseModel):
    phone_number: str
    source: str = "whatsapp"
    items: List[OrderItemInput]
    total: float = Field(ge=0)
    status: OrderStatus = OrderStatus.confirmed
    notes: Optional[str] = None


class OrderReceipt(BaseModel):
    order_id: str
    order_code: str


class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class LastOrderStatus(BaseModel):
    order_id: str
    order_code: Optional[str] = None
    status: str
