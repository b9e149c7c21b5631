from __future__ import annotations

from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.actor import Actor
from campus_eats.core.db import get_db
from campus_eats.core.deps import require_manager
from campus_eats.integrations.image_store import LocalImageStore, get_image_store
from campus_eats.schemas.menu import ImageUploadOut, MenuItemIn, MenuItemOut
from campus_eats.services.menu import (
    MenuError,
    MenuForbidden,
    MenuItemNotFound,
    create_menu_item,
    delete_menu_item,
    get_menu_item,
    list_menu_items,
    update_menu_item,
    upload_menu_image,
)

router = APIRouter(prefix="/menu", tags=["Menu"])


def _raise_http(e: MenuError):
    if isinstance(e, MenuForbidden):
        raise HTTPException(status_code=403, detail=str(e))
    if isinstance(e, MenuItemNotFound):
        raise HTTPException(status_code=404, detail=str(e))
    raise HTTPException(status_code=400, detail=str(e))


@router.get("", response_model=list[MenuItemOut])
async def list_menu(
    category: Optional[str] = Query(default=None),
    db: AsyncSession = Depends(get_db),
):
    return await list_menu_items(db, category)


@router.get("/{menu_item_id}", response_model=MenuItemOut)
async def get_menu(
    menu_item_id: int,
    db: AsyncSession = Depends(get_db),
):
    try:
        return await get_menu_item(db, menu_item_id)
    except MenuError as e:
        _raise_http(e)


@router.post("", response_model=MenuItemOut, status_code=201)
async def create_menu(
    payload: MenuItemIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_manager),
):
    try:
        return await create_menu_item(db, actor, **payload.model_dump())
    except MenuError as e:
        _raise_http(e)


@router.put("/{menu_item_id}", response_model=MenuItemOut)
async def update_menu(
    menu_item_id: int,
    payload: MenuItemIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_manager),
):
    try:
        return await update_menu_item(db, actor, menu_item_id, **payload.model_dump())
    except MenuError as e:
        _raise_http(e)


@router.delete("/{menu_item_id}", status_code=204)
async def delete_menu(
    menu_item_id: int,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_manager),
):
    try:
        await delete_menu_item(db, actor, menu_item_id)
    except MenuError as e:
        _raise_http(e)


@router.post("/upload-image", response_model=ImageUploadOut)
async def upload_image(
    file: UploadFile = File(...),
    actor: Actor = Depends(require_manager),
    store: LocalImageStore = Depends(get_image_store),
):
    data = await file.read()
    try:
        url = await upload_menu_image(actor, store, content_type=file.content_type, data=data)
    except MenuError as e:
        _raise_http(e)

    return ImageUploadOut(url=url)
