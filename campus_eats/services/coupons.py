from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.actor import Actor
from campus_eats.core.config import settings
from campus_eats.core.db import as_utc, utcnow
from campus_eats.models.coupon import Coupon, UserCoupon
from campus_eats.models.enums import CouponType, PaymentStatus
from campus_eats.models.menu_item import MenuItem
from campus_eats.models.order import Order
from campus_eats.models.payment import Payment
from campus_eats.services import loyalty
from campus_eats.services.discounts import PricedLine, compute_discount, effect_for, order_total
from campus_eats.services.menu import MenuItemNotFound

logger = logging.getLogger(__name__)


class CouponError(Exception):
    pass


class CouponNotFound(CouponError):
    pass


class CouponInactive(CouponError):
    pass


class CouponExpired(CouponError):
    pass


class CouponForbidden(CouponError):
    pass


class CouponReserved(CouponError):
    pass


@dataclass(frozen=True)
class CouponQuote:
    user_coupon: UserCoupon
    coupon: Coupon
    discount: Decimal


def _is_expired(expires_at: datetime | None, now: datetime) -> bool:
    expires_at = as_utc(expires_at)
    return expires_at is not None and expires_at <= now


def _validate_coupon_fields(
    *,
    coupon_type: CouponType,
    discount_value: Decimal,
    points_cost: int,
    specific_menu_item_id: Optional[int],
    minimum_order_amount: Optional[Decimal],
) -> None:
    if points_cost <= 0:
        raise CouponError("Points cost must be greater than 0")
    if discount_value < 0:
        raise CouponError("Discount value must be greater than or equal to 0")
    if coupon_type != CouponType.FREE_ITEM and discount_value <= 0:
        raise CouponError("Discount value must be greater than 0 for percentage and fixed discounts")
    if coupon_type == CouponType.PERCENTAGE_DISCOUNT and discount_value > 100:
        raise CouponError("Percentage discount cannot exceed 100")
    if coupon_type == CouponType.FREE_ITEM and specific_menu_item_id is None:
        raise CouponError("Free item coupons require a menu item")
    if minimum_order_amount is not None and minimum_order_amount < 0:
        raise CouponError("Minimum order amount must be greater than or equal to 0")


async def create_coupon(
    db: AsyncSession,
    actor: Actor,
    *,
    name: str,
    description: str,
    coupon_type: CouponType,
    discount_value: Decimal,
    points_cost: int,
    specific_menu_item_id: Optional[int] = None,
    minimum_order_amount: Optional[Decimal] = None,
    expires_at: Optional[datetime] = None,
) -> Coupon:
    if not actor.is_manager:
        raise CouponForbidden("Only managers can create coupons")

    coupon_type = CouponType(coupon_type)
    _validate_coupon_fields(
        coupon_type=coupon_type,
        discount_value=discount_value,
        points_cost=points_cost,
        specific_menu_item_id=specific_menu_item_id,
        minimum_order_amount=minimum_order_amount,
    )

    if specific_menu_item_id is not None:
        res = await db.execute(select(MenuItem.id).where(MenuItem.id == specific_menu_item_id))
        if res.scalar_one_or_none() is None:
            raise MenuItemNotFound([specific_menu_item_id])

    coupon = Coupon(
        name=name.strip(),
        description=description.strip(),
        type=coupon_type.value,
        discount_value=discount_value,
        points_cost=points_cost,
        specific_menu_item_id=specific_menu_item_id,
        minimum_order_amount=minimum_order_amount,
        is_active=True,
        created_at=utcnow(),
        expires_at=expires_at,
    )

    try:
        db.add(coupon)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Coupon {coupon.id} ({coupon.name}) created by user {actor.id}")
    return coupon


async def purchase_coupon(
    db: AsyncSession,
    user_id: int,
    coupon_id: int,
) -> tuple[UserCoupon, int]:
    """
    Exchange loyalty points for a single-use coupon.
    Atomic: points debit + ledger entry + user coupon.
    Returns the new user coupon and the remaining points.
    """
    now = utcnow()

    try:
        coupon = await db.get(Coupon, coupon_id)
        if coupon is None:
            raise CouponNotFound("Coupon not found")
        if not coupon.is_active:
            raise CouponInactive("Coupon is not available")
        if _is_expired(coupon.expires_at, now):
            raise CouponExpired("Coupon has expired")

        account = await loyalty.lock_account(db, user_id)
        if account is None:
            raise loyalty.LoyaltyAccountNotFound("Loyalty account not found")

        await loyalty.deduct_points_in_tx(
            db,
            account,
            int(coupon.points_cost),
            f"Purchased coupon: {coupon.name}",
        )

        user_coupon = UserCoupon(
            user_id=user_id,
            coupon_id=coupon.id,
            acquired_at=now,
            is_used=False,
            # later changes to the coupon's expiry do not reach this entitlement
            expires_at=coupon.expires_at,
        )
        db.add(user_coupon)

        await db.commit()

    except Exception:
        await db.rollback()
        raise

    logger.info(f"User {user_id} purchased coupon {coupon_id} as user coupon {user_coupon.id}")
    return user_coupon, int(account.points)


async def _find_usable_user_coupon(
    db: AsyncSession,
    *,
    user_id: int,
    user_coupon_id: int,
    now: datetime,
    lock: bool = False,
) -> tuple[UserCoupon, Coupon] | None:
    stmt = (
        select(UserCoupon, Coupon)
        .join(Coupon, Coupon.id == UserCoupon.coupon_id)
        .where(
            UserCoupon.id == user_coupon_id,
            UserCoupon.user_id == user_id,
            UserCoupon.is_used.is_(False),
            or_(UserCoupon.expires_at.is_(None), UserCoupon.expires_at > now),
        )
    )
    if lock:
        stmt = stmt.with_for_update(of=UserCoupon)

    res = await db.execute(stmt)
    row = res.first()
    if row is None:
        return None
    return row[0], row[1]


async def quote_coupon(
    db: AsyncSession,
    *,
    user_id: int,
    user_coupon_id: int,
    subtotal: Decimal,
    lines: Sequence[PricedLine],
    lock: bool = False,
) -> CouponQuote | None:
    """
    Price a coupon against a basket without changing anything.
    Returns None when the coupon cannot be used: unknown, someone else's,
    already used, expired, inactive or below its minimum order amount.
    """
    now = utcnow()
    found = await _find_usable_user_coupon(
        db, user_id=user_id, user_coupon_id=user_coupon_id, now=now, lock=lock
    )
    if found is None:
        logger.warning(f"User coupon {user_coupon_id} not usable by user {user_id}; ignoring")
        return None

    user_coupon, coupon = found
    if not coupon.is_active:
        logger.warning(f"Coupon {coupon.id} is inactive; ignoring user coupon {user_coupon_id}")
        return None

    if coupon.minimum_order_amount is not None and subtotal < coupon.minimum_order_amount:
        logger.warning(
            f"Subtotal {subtotal} below minimum {coupon.minimum_order_amount} "
            f"for coupon {coupon.id}; ignoring"
        )
        return None

    discount = compute_discount(effect_for(coupon), subtotal, lines)
    return CouponQuote(user_coupon=user_coupon, coupon=coupon, discount=discount)


async def find_pending_reservation(
    db: AsyncSession,
    user_coupon_id: int,
    *,
    exclude_payment_id: Optional[int] = None,
) -> Payment | None:
    """
    The pending checkout currently holding a user coupon, if any.
    Checkouts older than the session lifetime can no longer complete and
    release their coupon.
    """
    cutoff = utcnow() - timedelta(minutes=settings.CHECKOUT_SESSION_MINUTES)
    stmt = select(Payment).where(
        Payment.user_coupon_id == user_coupon_id,
        Payment.status == PaymentStatus.PENDING.value,
        Payment.created_at > cutoff,
    )
    if exclude_payment_id is not None:
        stmt = stmt.where(Payment.id != exclude_payment_id)

    res = await db.execute(stmt.order_by(Payment.id.asc()).limit(1))
    return res.scalar_one_or_none()


async def ensure_not_reserved(
    db: AsyncSession,
    user_coupon_id: int,
    *,
    payment_id: Optional[int] = None,
) -> None:
    reservation = await find_pending_reservation(db, user_coupon_id, exclude_payment_id=payment_id)
    if reservation is not None:
        raise CouponReserved(
            f"Coupon is reserved by checkout {reservation.id}; finish or wait for that payment first"
        )


async def apply_coupon_to_order(
    db: AsyncSession,
    order: Order,
    *,
    user_id: int,
    user_coupon_id: int,
    lines: Sequence[PricedLine],
    payment_id: Optional[int] = None,
) -> Decimal:
    """
    Apply a purchased coupon to an order being built in the caller's
    transaction. An unusable coupon is skipped and the order keeps its full
    price, but a coupon held by another pending checkout is refused.
    `payment_id` is the checkout being confirmed, whose own hold does not
    count. Never commits.
    """
    subtotal = Decimal(order.subtotal)
    quote = await quote_coupon(
        db,
        user_id=user_id,
        user_coupon_id=user_coupon_id,
        subtotal=subtotal,
        lines=lines,
        lock=True,
    )
    if quote is None:
        return Decimal("0")

    await ensure_not_reserved(db, int(quote.user_coupon.id), payment_id=payment_id)

    now = utcnow()
    order.discount_amount = quote.discount
    order.total = order_total(subtotal, quote.discount)
    order.applied_coupon_id = quote.user_coupon.id

    quote.user_coupon.is_used = True
    quote.user_coupon.used_at = now
    if order.id is not None:
        quote.user_coupon.used_in_order_id = order.id

    return quote.discount


async def delete_coupon(db: AsyncSession, actor: Actor, coupon_id: int) -> int:
    """
    Remove a coupon and every purchased copy of it, refunding the points
    cost to each holder, used copies included.
    Returns the number of refunded user coupons.
    """
    if not actor.is_manager:
        raise CouponForbidden("Only managers can delete coupons")

    try:
        coupon = await db.get(Coupon, coupon_id)
        if coupon is None:
            raise CouponNotFound("Coupon not found")

        res = await db.execute(
            select(UserCoupon).where(UserCoupon.coupon_id == coupon_id).order_by(UserCoupon.id.asc())
        )
        user_coupons = list(res.scalars().all())

        for uc in user_coupons:
            account = await loyalty.get_or_create_account(db, int(uc.user_id))
            loyalty.refund_points_in_tx(
                db,
                account,
                int(coupon.points_cost),
                f"Refund for deleted coupon: {coupon.name}",
            )

        await db.execute(delete(UserCoupon).where(UserCoupon.coupon_id == coupon_id))
        await db.delete(coupon)

        await db.commit()

    except Exception:
        await db.rollback()
        raise

    logger.info(f"Coupon {coupon_id} deleted by user {actor.id}; refunded {len(user_coupons)} holders")
    return len(user_coupons)


async def list_all_coupons(db: AsyncSession, actor: Actor) -> list[Coupon]:
    if not actor.is_manager:
        raise CouponForbidden("Only managers can list all coupons")
    res = await db.execute(select(Coupon).order_by(Coupon.created_at.desc(), Coupon.id.desc()))
    return list(res.scalars().all())


async def list_available_coupons(db: AsyncSession, user_id: Optional[int]) -> list[Coupon]:
    """Active, unexpired coupons the user does not already hold, cheapest first."""
    now = utcnow()
    stmt = (
        select(Coupon)
        .where(
            Coupon.is_active.is_(True),
            or_(Coupon.expires_at.is_(None), Coupon.expires_at > now),
        )
        .order_by(Coupon.points_cost.asc(), Coupon.id.asc())
    )
    if user_id is not None:
        owned = select(UserCoupon.coupon_id).where(UserCoupon.user_id == user_id)
        stmt = stmt.where(Coupon.id.not_in(owned))

    res = await db.execute(stmt)
    return list(res.scalars().all())


async def list_user_coupons(db: AsyncSession, user_id: int) -> list[tuple[UserCoupon, Coupon]]:
    """The user's unused, unexpired coupons, newest first."""
    now = utcnow()
    res = await db.execute(
        select(UserCoupon, Coupon)
        .join(Coupon, Coupon.id == UserCoupon.coupon_id)
        .where(
            UserCoupon.user_id == user_id,
            UserCoupon.is_used.is_(False),
            or_(UserCoupon.expires_at.is_(None), UserCoupon.expires_at > now),
        )
        .order_by(UserCoupon.acquired_at.desc(), UserCoupon.id.desc())
    )
    return [(row[0], row[1]) for row in res.all()]
