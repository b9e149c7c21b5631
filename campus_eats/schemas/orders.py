from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from campus_eats.models.enums import OrderStatus


class OrderItemIn(BaseModel):
    menu_item_id: int
    # validated again by the service so the same rule holds for replayed payments
    quantity: int


class PlaceOrderIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: List[OrderItemIn]
    notes: Optional[str] = Field(default=None, max_length=1000)
    user_coupon_id: Optional[int] = None


class OrderItemOut(BaseModel):
    id: int
    menu_item_id: int
    menu_item_name: Optional[str] = None
    quantity: int
    unit_price: Decimal


class OrderOut(BaseModel):
    id: int
    user_id: int
    status: OrderStatus
    subtotal: Decimal
    discount_amount: Decimal
    total: Decimal
    notes: Optional[str] = None
    applied_coupon_id: Optional[int] = None
    created_at: datetime
    updated_at: datetime
    cancelled_at: Optional[datetime] = None
    items: List[OrderItemOut]
