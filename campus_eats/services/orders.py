from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.actor import Actor
from campus_eats.core.db import utcnow
from campus_eats.models.enums import KitchenTaskStatus, OrderStatus
from campus_eats.models.kitchen_task import KitchenTask
from campus_eats.models.order import Order
from campus_eats.models.order_item import OrderItem
from campus_eats.services.coupons import apply_coupon_to_order
from campus_eats.services.discounts import PricedLine
from campus_eats.services.menu import MenuItemNotFound, get_menu_items_by_ids, get_menu_name_map

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (OrderStatus.CANCELLED, OrderStatus.COMPLETED)


class OrderError(Exception):
    pass


class EmptyOrder(OrderError):
    pass


class InvalidQuantity(OrderError):
    pass


class OrderNotFound(OrderError):
    pass


class AlreadyTerminal(OrderError):
    pass


class OrderForbidden(OrderError):
    pass


@dataclass(frozen=True)
class RequestedLine:
    menu_item_id: int
    quantity: int


def merge_lines(items: Iterable[RequestedLine]) -> dict[int, int]:
    """Sum quantities per menu item, keeping first-seen order."""
    merged: dict[int, int] = {}
    for it in items:
        merged[int(it.menu_item_id)] = merged.get(int(it.menu_item_id), 0) + int(it.quantity)
    return merged


async def price_basket(
    db: AsyncSession,
    items: Sequence[RequestedLine],
) -> tuple[list[PricedLine], Decimal]:
    """
    Validate a basket against the current menu and snapshot unit prices.
    Returns the priced lines and their subtotal.
    """
    if not items:
        raise EmptyOrder("Order must contain at least one item.")

    merged = merge_lines(items)

    if any(qty <= 0 for qty in merged.values()):
        raise InvalidQuantity("All quantities must be greater than zero.")

    menu_items = await get_menu_items_by_ids(db, merged.keys())
    missing = [mid for mid in merged if mid not in menu_items]
    if missing:
        raise MenuItemNotFound(missing)

    lines = [
        PricedLine(
            menu_item_id=mid,
            quantity=qty,
            unit_price=Decimal(menu_items[mid].price),
        )
        for mid, qty in merged.items()
    ]
    subtotal = sum((line.unit_price * line.quantity for line in lines), Decimal("0"))
    return lines, subtotal


async def build_order_in_tx(
    db: AsyncSession,
    *,
    user_id: int,
    items: Sequence[RequestedLine],
    notes: Optional[str] = None,
    user_coupon_id: Optional[int] = None,
    status: OrderStatus = OrderStatus.PENDING,
    payment_id: Optional[int] = None,
) -> tuple[Order, KitchenTask]:
    """
    Create an order with its items, optional coupon and kitchen task inside
    the caller's transaction. `payment_id` is set when a paid checkout is
    being replayed. Never commits.
    """
    lines, subtotal = await price_basket(db, items)

    now = utcnow()
    clean_notes = notes.strip() if notes and notes.strip() else None

    order = Order(
        user_id=user_id,
        status=status.value,
        subtotal=subtotal,
        discount_amount=Decimal("0"),
        total=subtotal,
        notes=clean_notes,
        created_at=now,
        updated_at=now,
        items=[
            OrderItem(
                menu_item_id=line.menu_item_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
            )
            for line in lines
        ],
    )
    db.add(order)
    await db.flush()  # ensures order.id

    if user_coupon_id is not None:
        await apply_coupon_to_order(
            db,
            order,
            user_id=user_id,
            user_coupon_id=user_coupon_id,
            lines=lines,
            payment_id=payment_id,
        )

    task = KitchenTask(
        order_id=order.id,
        status=KitchenTaskStatus.NOT_STARTED.value,
        assigned_to=user_id,
        notes=clean_notes,
        updated_at=now,
    )
    db.add(task)
    await db.flush()

    return order, task


async def place_order(
    db: AsyncSession,
    actor: Actor,
    items: Sequence[RequestedLine],
    notes: Optional[str] = None,
    user_coupon_id: Optional[int] = None,
) -> Order:
    """
    Direct order path. Atomic: order + items + coupon use + kitchen task.
    """
    try:
        order, _task = await build_order_in_tx(
            db,
            user_id=actor.id,
            items=items,
            notes=notes,
            user_coupon_id=user_coupon_id,
        )
        await db.commit()

    except Exception:
        await db.rollback()
        raise

    logger.info(
        f"Order {order.id} placed by user {actor.id}: "
        f"subtotal={order.subtotal} discount={order.discount_amount} total={order.total}"
    )
    return order


async def cancel_order(db: AsyncSession, actor: Actor, order_id: int) -> Order:
    try:
        res = await db.execute(select(Order).where(Order.id == order_id).with_for_update())
        order = res.scalar_one_or_none()
        if order is None:
            raise OrderNotFound("Order not found")

        if order.status in TERMINAL_STATUSES:
            raise AlreadyTerminal(f"Order is already {order.status}")

        if not actor.is_manager and int(order.user_id) != actor.id:
            raise OrderForbidden("You can only cancel your own orders")

        now = utcnow()
        order.status = OrderStatus.CANCELLED.value
        order.updated_at = now
        order.cancelled_at = now

        await db.commit()

    except Exception:
        await db.rollback()
        raise

    logger.info(f"Order {order_id} cancelled by user {actor.id}")
    return order


def _serialize_order(order: Order, menu_names: dict[int, str]) -> dict:
    return {
        "id": int(order.id),
        "user_id": int(order.user_id),
        "status": order.status,
        "subtotal": order.subtotal,
        "discount_amount": order.discount_amount,
        "total": order.total,
        "notes": order.notes,
        "applied_coupon_id": order.applied_coupon_id,
        "created_at": order.created_at,
        "updated_at": order.updated_at,
        "cancelled_at": order.cancelled_at,
        "items": [
            {
                "id": int(it.id),
                "menu_item_id": int(it.menu_item_id),
                "menu_item_name": menu_names.get(int(it.menu_item_id)),
                "quantity": int(it.quantity),
                "unit_price": it.unit_price,
            }
            for it in sorted(order.items, key=lambda x: x.id)
        ],
    }


async def get_orders(db: AsyncSession, actor: Actor, all_orders: bool = False) -> list[dict]:
    """
    Managers asking for everything see every order; everyone else sees only
    their own. Menu names are resolved with one batch lookup.
    """
    stmt = select(Order).order_by(Order.created_at.desc(), Order.id.desc())
    if not (all_orders and actor.is_manager):
        stmt = stmt.where(Order.user_id == actor.id)

    res = await db.execute(stmt)
    orders = res.scalars().all()

    menu_ids = {int(it.menu_item_id) for o in orders for it in o.items}
    menu_names = await get_menu_name_map(db, menu_ids)

    return [_serialize_order(o, menu_names) for o in orders]


async def get_order(db: AsyncSession, actor: Actor, order_id: int) -> dict:
    order = await db.get(Order, order_id)
    if order is None or (not actor.is_manager and int(order.user_id) != actor.id):
        raise OrderNotFound("Order not found")

    menu_names = await get_menu_name_map(db, [it.menu_item_id for it in order.items])
    return _serialize_order(order, menu_names)
