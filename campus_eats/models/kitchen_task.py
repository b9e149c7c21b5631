from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column

from campus_eats.core.db import Base, BigIntId, utcnow
from campus_eats.models.enums import KitchenTaskStatus


class KitchenTask(Base):
    __tablename__ = "kitchen_tasks"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)

    order_id: Mapped[int] = mapped_column(
        BigIntId,
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    status: Mapped[str] = mapped_column(
        String(16), nullable=False, default=KitchenTaskStatus.NOT_STARTED.value
    )

    assigned_to: Mapped[Optional[int]] = mapped_column(
        BigIntId,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
