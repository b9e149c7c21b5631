from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from campus_eats.core.db import Base, BigIntId, utcnow


class Coupon(Base):
    __tablename__ = "coupons"
    __table_args__ = (
        CheckConstraint("points_cost > 0", name="coupons_points_cost_positive"),
        CheckConstraint(
            "type IN ('PercentageDiscount','FixedAmountDiscount','FreeItem')",
            name="coupons_type_check",
        ),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False, default="")

    type: Mapped[str] = mapped_column(String(32), nullable=False)
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    points_cost: Mapped[int] = mapped_column(Integer, nullable=False)

    specific_menu_item_id: Mapped[Optional[int]] = mapped_column(
        BigIntId,
        ForeignKey("menu_items.id", ondelete="SET NULL"),
        nullable=True,
    )
    minimum_order_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(10, 2), nullable=True)

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)


class UserCoupon(Base):
    __tablename__ = "user_coupons"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)

    user_id: Mapped[int] = mapped_column(
        BigIntId,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    coupon_id: Mapped[int] = mapped_column(
        BigIntId,
        ForeignKey("coupons.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    acquired_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    used_in_order_id: Mapped[Optional[int]] = mapped_column(
        BigIntId,
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
    )

    # copied from Coupon at purchase time
    expires_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
