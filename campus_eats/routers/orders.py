from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.actor import Actor
from campus_eats.core.db import get_db
from campus_eats.core.deps import get_current_actor
from campus_eats.schemas.orders import OrderOut, PlaceOrderIn
from campus_eats.services.coupons import CouponError
from campus_eats.services.menu import MenuItemNotFound
from campus_eats.services.orders import (
    OrderError,
    OrderForbidden,
    OrderNotFound,
    RequestedLine,
    cancel_order,
    get_order,
    get_orders,
    place_order,
)

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("", response_model=OrderOut, status_code=201)
async def create_order(
    payload: PlaceOrderIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    items = [RequestedLine(menu_item_id=i.menu_item_id, quantity=i.quantity) for i in payload.items]
    try:
        order = await place_order(
            db,
            actor,
            items,
            notes=payload.notes,
            user_coupon_id=payload.user_coupon_id,
        )
        return await get_order(db, actor, int(order.id))
    except (OrderError, MenuItemNotFound, CouponError) as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.get("", response_model=list[OrderOut])
async def list_orders(
    all_orders: bool = Query(default=False, alias="all", description="Managers only: every user's orders"),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return await get_orders(db, actor, all_orders=all_orders)


@router.get("/{order_id}", response_model=OrderOut)
async def read_order(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        return await get_order(db, actor, order_id)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))


@router.post("/{order_id}/cancel", response_model=OrderOut)
async def cancel(
    order_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    try:
        await cancel_order(db, actor, order_id)
        return await get_order(db, actor, order_id)
    except OrderNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except OrderForbidden as e:
        raise HTTPException(status_code=403, detail=str(e))
    except OrderError as e:
        raise HTTPException(status_code=400, detail=str(e))
