from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


class MenuItemIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(min_length=1, max_length=128)
    price: Decimal = Field(gt=0, max_digits=10, decimal_places=2)
    category: str = Field(min_length=1, max_length=64)
    description: Optional[str] = None
    image_url: Optional[str] = Field(default=None, max_length=512)
    allergens: List[str] = Field(default_factory=list)


class MenuItemOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str
    price: Decimal
    category: str
    description: Optional[str] = None
    image_url: Optional[str] = None
    allergens: List[str] = []
    created_at: datetime


class ImageUploadOut(BaseModel):
    url: str
