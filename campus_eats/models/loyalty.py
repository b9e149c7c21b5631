from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import CheckConstraint, DateTime, ForeignKey, Index, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column

from campus_eats.core.db import Base, BigIntId, utcnow


class LoyaltyAccount(Base):
    __tablename__ = "loyalty_accounts"
    __table_args__ = (
        CheckConstraint("points >= 0", name="loyalty_accounts_points_non_negative"),
    )

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)

    user_id: Mapped[int] = mapped_column(
        BigIntId,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )

    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )


class LoyaltyTransaction(Base):
    """Append-only ledger row; sum(points_change) per account equals account.points."""

    __tablename__ = "loyalty_transactions"

    id: Mapped[int] = mapped_column(BigIntId, primary_key=True)

    loyalty_account_id: Mapped[int] = mapped_column(
        BigIntId,
        ForeignKey("loyalty_accounts.id", ondelete="CASCADE"),
        nullable=False,
    )

    points_change: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[str] = mapped_column(String(16), nullable=False)  # Earned/Redeemed/Adjusted
    description: Mapped[str] = mapped_column(String(200), nullable=False)

    related_order_id: Mapped[Optional[int]] = mapped_column(
        BigIntId,
        ForeignKey("orders.id", ondelete="SET NULL"),
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )


Index(
    "ix_loyalty_transactions_account_created",
    LoyaltyTransaction.loyalty_account_id,
    LoyaltyTransaction.created_at.desc(),
)
