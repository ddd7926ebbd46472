"""Pydantic models for the per-customer conversation session.

The session is stored as JSON (Redis or memory) and round-trips through
``Session.model_validate`` / ``Session.model_dump(mode="json")``.
"""
import time
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, Field


class LatLng(BaseModel):
    lat: float
    lng: float


class CartItem(BaseModel):
    product_id: str
    name: str
    unit_price: float
    quantity: int = Field(1, ge=1)
    size: Optional[str] = None
    menu_item_id: Optional[str] = None

    @property
    def line_total(self) -> float:
        return self.unit_price * self.quantity


class DeliveryQuote(BaseModel):
    location: LatLng
    distance_km: float
    cost: float


class PendingAddressChange(BaseModel):
    location: Optional[LatLng] = None
    distance_km: Optional[float] = None
    cost: Optional[float] = None
    address_text: Optional[str] = None
    suggested_text: Optional[str] = None
    awaiting_choice: bool = False
    requested_at: float = Field(default_factory=time.time)

    @property
    def is_complete(self) -> bool:
        return bool(self.address_text) and self.location is not None and not self.awaiting_choice


class HistoryEntry(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: float = Field(default_factory=time.time)


class DeliveryPhase(str, Enum):
    no_delivery_info = "no_delivery_info"
    pending_address = "pending_address"
    confirmed = "confirmed"


class Session(BaseModel):
    phone: str
    name: Optional[str] = None
    address: Optional[str] = None
    order_address: Optional[str] = None
    delivery: Optional[DeliveryQuote] = None
    pending_address_change: Optional[PendingAddressChange] = None
    cart: List[CartItem] = Field(default_factory=list)
    history: List[HistoryEntry] = Field(default_factory=list)
    waiting_for_name: bool = False
    waiting_for_address: bool = False
    has_welcomed: bool = False
    is_dev_mode: bool = False
    updated_at: float = Field(default_factory=time.time)

    @property
    def delivery_phase(self) -> DeliveryPhase:
        if self.pending_address_change is not None:
            return DeliveryPhase.pending_address
        if self.delivery is not None and self.final_address:
            return DeliveryPhase.confirmed
        return DeliveryPhase.no_delivery_info

    @property
    def final_address(self) -> Optional[str]:
        return self.order_address or self.address

    @property
    def cart_total(self) -> float:
        return sum(item.line_total for item in self.cart)

    @property
    def is_fresh(self) -> bool:
        return not self.history

    def promote_pending_address(self) -> bool:
        """Move a complete pending address into the confirmed fields.

        Returns True when a promotion happened. The pending quote replaces
        ``delivery`` so both are reconciled in one step.
        """
        pending = self.pending_address_change
        if pending is None or not pending.is_complete:
            return False
        self.address = pending.address_text
        self.order_address = pending.address_text
        if pending.cost is not None:
            self.delivery = DeliveryQuote(
                location=pending.location,
                distance_km=pending.distance_km or 0.0,
                cost=pending.cost,
            )
        self.pending_address_change = None
        self.waiting_for_address = False
        return True
