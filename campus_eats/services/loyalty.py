from __future__ import annotations

import logging
import math
from decimal import Decimal

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.db import utcnow
from campus_eats.models.enums import LoyaltyTransactionType
from campus_eats.models.loyalty import LoyaltyAccount, LoyaltyTransaction

logger = logging.getLogger(__name__)

# one point per this many currency units spent
POINTS_DIVISOR = Decimal("10")


class LoyaltyError(Exception):
    pass


class LoyaltyAccountNotFound(LoyaltyError):
    pass


class InsufficientPoints(LoyaltyError):
    pass


def points_for_total(order_total: Decimal) -> int:
    return math.floor(Decimal(order_total) / POINTS_DIVISOR)


async def lock_account(db: AsyncSession, user_id: int) -> LoyaltyAccount | None:
    res = await db.execute(
        select(LoyaltyAccount)
        .where(LoyaltyAccount.user_id == user_id)
        .with_for_update()
    )
    return res.scalar_one_or_none()


async def get_or_create_account(db: AsyncSession, user_id: int) -> LoyaltyAccount:
    """
    Return the user's loyalty account, creating an empty one if missing.
    Flushes but never commits; the caller owns the transaction.
    """
    account = await lock_account(db, user_id)
    if account is not None:
        return account

    now = utcnow()
    account = LoyaltyAccount(user_id=user_id, points=0, created_at=now, updated_at=now)
    db.add(account)
    await db.flush()
    return account


def _append_entry(
    db: AsyncSession,
    account: LoyaltyAccount,
    *,
    points_change: int,
    entry_type: LoyaltyTransactionType,
    description: str,
    related_order_id: int | None = None,
) -> LoyaltyTransaction:
    now = utcnow()
    account.points = int(account.points) + points_change
    account.updated_at = now

    entry = LoyaltyTransaction(
        loyalty_account_id=account.id,
        points_change=points_change,
        type=entry_type.value,
        description=description,
        related_order_id=related_order_id,
        created_at=now,
    )
    db.add(entry)
    return entry


async def award_points_in_tx(
    db: AsyncSession,
    *,
    user_id: int,
    order_id: int,
    order_total: Decimal,
) -> int:
    """
    Credit floor(order_total / 10) points for an order without committing.
    Not idempotent: the caller must make sure it runs once per order.
    """
    account = await get_or_create_account(db, user_id)

    points = points_for_total(order_total)
    if points <= 0:
        return 0

    _append_entry(
        db,
        account,
        points_change=points,
        entry_type=LoyaltyTransactionType.EARNED,
        description=f"Earned from order #{order_id}",
        related_order_id=order_id,
    )
    return points


async def award_points_for_order(
    db: AsyncSession,
    user_id: int,
    order_id: int,
    order_total: Decimal,
) -> int:
    try:
        points = await award_points_in_tx(
            db, user_id=user_id, order_id=order_id, order_total=order_total
        )
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    if points:
        logger.info(f"Awarded {points} loyalty points to user {user_id} for order {order_id}")
    return points


async def deduct_points_in_tx(
    db: AsyncSession,
    account: LoyaltyAccount,
    points: int,
    description: str,
) -> LoyaltyTransaction:
    if account.points < points:
        raise InsufficientPoints(f"Insufficient points. Need {points}, have {account.points}")

    return _append_entry(
        db,
        account,
        points_change=-points,
        entry_type=LoyaltyTransactionType.REDEEMED,
        description=description,
    )


def refund_points_in_tx(
    db: AsyncSession,
    account: LoyaltyAccount,
    points: int,
    description: str,
) -> LoyaltyTransaction:
    return _append_entry(
        db,
        account,
        points_change=points,
        entry_type=LoyaltyTransactionType.ADJUSTED,
        description=description,
    )


async def redeem_points(
    db: AsyncSession,
    user_id: int,
    points: int,
    description: str,
) -> LoyaltyAccount:
    """
    Spend points directly. Atomic: balance update + ledger insert.
    Returns the account with its remaining balance.
    """
    if points <= 0:
        raise LoyaltyError("Points must be greater than 0")

    try:
        account = await lock_account(db, user_id)
        if account is None:
            raise LoyaltyAccountNotFound("Loyalty account not found")

        await deduct_points_in_tx(db, account, points, description)

        await db.commit()
        return account

    except Exception:
        await db.rollback()
        raise


async def get_account(db: AsyncSession, user_id: int) -> LoyaltyAccount | None:
    res = await db.execute(select(LoyaltyAccount).where(LoyaltyAccount.user_id == user_id))
    return res.scalar_one_or_none()


async def list_transactions(db: AsyncSession, user_id: int) -> list[LoyaltyTransaction]:
    res = await db.execute(
        select(LoyaltyTransaction)
        .join(LoyaltyAccount, LoyaltyAccount.id == LoyaltyTransaction.loyalty_account_id)
        .where(LoyaltyAccount.user_id == user_id)
        .order_by(LoyaltyTransaction.created_at.desc(), LoyaltyTransaction.id.desc())
    )
    return list(res.scalars().all())
