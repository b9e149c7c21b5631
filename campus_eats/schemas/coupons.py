from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from campus_eats.models.enums import CouponType


class CreateCouponIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=100)
    description: str = Field(default="", max_length=500)
    type: CouponType
    discount_value: Decimal = Field(default=Decimal("0"), ge=0, max_digits=10, decimal_places=2)
    points_cost: int = Field(gt=0)
    specific_menu_item_id: Optional[int] = None
    minimum_order_amount: Optional[Decimal] = Field(default=None, ge=0, max_digits=10, decimal_places=2)
    expires_at: Optional[datetime] = None


class CouponOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    description: str
    type: CouponType
    discount_value: Decimal
    points_cost: int
    specific_menu_item_id: Optional[int] = None
    minimum_order_amount: Optional[Decimal] = None
    is_active: bool
    created_at: datetime
    expires_at: Optional[datetime] = None


class UserCouponOut(BaseModel):
    id: int
    coupon_id: int
    acquired_at: datetime
    is_used: bool
    used_at: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    coupon: CouponOut


class PurchaseCouponIn(BaseModel):
    coupon_id: int


class PurchaseCouponOut(BaseModel):
    success: bool
    message: str
    user_coupon_id: int
    remaining_points: int


class DeleteCouponOut(BaseModel):
    success: bool
    message: str
    refunded_users: int
