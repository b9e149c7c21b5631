from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.actor import Actor
from campus_eats.core.db import get_db
from campus_eats.core.deps import get_current_actor, get_optional_user, require_manager
from campus_eats.models.user import User
from campus_eats.schemas.coupons import (
    CouponOut,
    CreateCouponIn,
    DeleteCouponOut,
    PurchaseCouponIn,
    PurchaseCouponOut,
    UserCouponOut,
)
from campus_eats.services.coupons import (
    CouponError,
    CouponForbidden,
    CouponNotFound,
    create_coupon,
    delete_coupon,
    list_all_coupons,
    list_available_coupons,
    list_user_coupons,
    purchase_coupon,
)
from campus_eats.services.loyalty import LoyaltyAccountNotFound, LoyaltyError
from campus_eats.services.menu import MenuItemNotFound

router = APIRouter(prefix="/coupons", tags=["Coupons"])


@router.get("", response_model=list[CouponOut])
async def all_coupons(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_manager),
):
    return await list_all_coupons(db, actor)


@router.post("", response_model=CouponOut, status_code=201)
async def create(
    payload: CreateCouponIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_manager),
):
    try:
        return await create_coupon(
            db,
            actor,
            name=payload.name,
            description=payload.description,
            coupon_type=payload.type,
            discount_value=payload.discount_value,
            points_cost=payload.points_cost,
            specific_menu_item_id=payload.specific_menu_item_id,
            minimum_order_amount=payload.minimum_order_amount,
            expires_at=payload.expires_at,
        )
    except CouponForbidden as e:
        raise HTTPException(status_code=403, detail=str(e))
    except MenuItemNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CouponError as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.delete("/{coupon_id}", response_model=DeleteCouponOut)
async def delete(
    coupon_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_manager),
) -> DeleteCouponOut:
    try:
        refunded = await delete_coupon(db, actor, coupon_id)
    except CouponNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except CouponForbidden as e:
        raise HTTPException(status_code=403, detail=str(e))

    return DeleteCouponOut(
        success=True,
        message=f"Coupon deleted; points refunded to {refunded} user(s)",
        refunded_users=refunded,
    )


@router.get("/available", response_model=list[CouponOut])
async def available(
    db: AsyncSession = Depends(get_db),
    current_user: Optional[User] = Depends(get_optional_user),
):
    user_id = int(current_user.id) if current_user is not None else None
    return await list_available_coupons(db, user_id)


@router.get("/my-coupons", response_model=list[UserCouponOut])
async def my_coupons(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    rows = await list_user_coupons(db, actor.id)
    return [
        UserCouponOut(
            id=int(uc.id),
            coupon_id=int(uc.coupon_id),
            acquired_at=uc.acquired_at,
            is_used=bool(uc.is_used),
            used_at=uc.used_at,
            expires_at=uc.expires_at,
            coupon=CouponOut.model_validate(c),
        )
        for uc, c in rows
    ]


@router.post("/purchase", response_model=PurchaseCouponOut)
async def purchase(
    payload: PurchaseCouponIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> PurchaseCouponOut:
    try:
        user_coupon, remaining = await purchase_coupon(db, actor.id, payload.coupon_id)
    except (CouponNotFound, LoyaltyAccountNotFound) as e:
        raise HTTPException(status_code=404, detail=str(e))
    except (CouponError, LoyaltyError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return PurchaseCouponOut(
        success=True,
        message="Coupon purchased successfully",
        user_coupon_id=int(user_coupon.id),
        remaining_points=remaining,
    )
