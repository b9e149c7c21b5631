from __future__ import annotations

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from campus_eats.schemas.orders import OrderItemIn


class CreateSessionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    items: List[OrderItemIn]
    notes: Optional[str] = Field(default=None, max_length=450)
    user_coupon_id: Optional[int] = None


class CreateSessionOut(BaseModel):
    payment_id: int
    session_id: str
    url: str
    amount: Decimal
    currency: str


class WebhookAck(BaseModel):
    received: bool = True
    order_id: Optional[int] = None
