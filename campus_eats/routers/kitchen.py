from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.actor import Actor
from campus_eats.core.db import get_db
from campus_eats.core.deps import require_staff
from campus_eats.schemas.kitchen import KitchenTaskOut, UpdateKitchenTaskIn
from campus_eats.services.kitchen import (
    InvalidStatus,
    KitchenError,
    KitchenForbidden,
    TaskNotFound,
    list_kitchen_tasks,
    update_kitchen_task,
)

router = APIRouter(prefix="/kitchen", tags=["Kitchen"])


@router.get("/tasks", response_model=list[KitchenTaskOut])
async def list_tasks(
    status: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_staff),
):
    try:
        return await list_kitchen_tasks(db, actor, status)
    except InvalidStatus as e:
        raise HTTPException(status_code=400, detail=str(e))


@router.patch("/tasks/{task_id}", response_model=KitchenTaskOut)
async def update_task(
    task_id: int,
    payload: UpdateKitchenTaskIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_staff),
):
    try:
        return await update_kitchen_task(
            db,
            actor,
            task_id,
            status=payload.status,
            assigned_to=payload.assigned_to,
            notes=payload.notes,
        )
    except TaskNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except KitchenForbidden as e:
        raise HTTPException(status_code=403, detail=str(e))
    except KitchenError as e:
        raise HTTPException(status_code=400, detail=str(e))
