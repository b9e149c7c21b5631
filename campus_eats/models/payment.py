from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column

from campus_eats.core.db import Base, BigIntId, utcnow
from campus_eats.models.enums import PaymentStatus


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)

    # set exactly once, when the checkout completes
    order_id: Mapped[Optional[int]] = mapped_column(
        BigIntId,
        ForeignKey("orders.id"),
        nullable=True,
        unique=True,
    )

    user_id: Mapped[int] = mapped_column(
        BigIntId,
        ForeignKey("users.id"),
        nullable=False,
        index=True,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="ron")
    status: Mapped[str] = mapped_column(String(16), nullable=False, default=PaymentStatus.PENDING.value)

    # UserCoupon held by this checkout; no FK so deleting a coupon keeps payments intact
    user_coupon_id: Mapped[Optional[int]] = mapped_column(BigIntId, nullable=True, index=True)

    stripe_session_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, unique=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
