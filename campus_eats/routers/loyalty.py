from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.actor import Actor
from campus_eats.core.db import get_db
from campus_eats.core.deps import get_current_actor
from campus_eats.schemas.loyalty import (
    LoyaltyAccountOut,
    LoyaltyTransactionOut,
    RedeemPointsIn,
    RedeemPointsOut,
)
from campus_eats.services.loyalty import (
    InsufficientPoints,
    LoyaltyAccountNotFound,
    LoyaltyError,
    get_account,
    list_transactions,
    redeem_points,
)

router = APIRouter(prefix="/loyalty", tags=["Loyalty"])


@router.get("/account", response_model=LoyaltyAccountOut)
async def my_account(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    account = await get_account(db, actor.id)
    if account is None:
        raise HTTPException(status_code=404, detail="Loyalty account not found")
    return account


@router.get("/transactions", response_model=list[LoyaltyTransactionOut])
async def my_transactions(
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
):
    return await list_transactions(db, actor.id)


@router.post("/redeem", response_model=RedeemPointsOut)
async def redeem(
    payload: RedeemPointsIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
) -> RedeemPointsOut:
    try:
        account = await redeem_points(db, actor.id, payload.points, payload.description)
    except LoyaltyAccountNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except InsufficientPoints as e:
        raise HTTPException(status_code=400, detail=str(e))
    except LoyaltyError as e:
        raise HTTPException(status_code=400, detail=str(e))

    return RedeemPointsOut(
        success=True,
        message=f"Successfully redeemed {payload.points} points",
        remaining_points=int(account.points),
    )
