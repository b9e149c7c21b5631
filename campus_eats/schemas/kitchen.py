from __future__ import annotations

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from campus_eats.models.enums import KitchenTaskStatus


class UpdateKitchenTaskIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    # free text; the service accepts "Ready", "READY", "ready" alike
    status: Optional[str] = None
    assigned_to: Optional[int] = None
    notes: Optional[str] = Field(default=None, max_length=1000)


class KitchenTaskOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_id: int
    status: KitchenTaskStatus
    assigned_to: Optional[int] = None
    notes: Optional[str] = None
    updated_at: datetime
