from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from campus_eats.models.enums import LoyaltyTransactionType


class LoyaltyAccountOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    points: int
    created_at: datetime
    updated_at: datetime


class LoyaltyTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    points_change: int
    type: LoyaltyTransactionType
    description: str
    related_order_id: Optional[int] = None
    created_at: datetime


class RedeemPointsIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    points: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=200)


class RedeemPointsOut(BaseModel):
    success: bool
    message: str
    remaining_points: int
