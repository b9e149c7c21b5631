from __future__ import annotations

import logging
from decimal import Decimal
from typing import Iterable, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.actor import Actor
from campus_eats.integrations.image_store import ImageStoreError, LocalImageStore
from campus_eats.models.coupon import Coupon
from campus_eats.models.menu_item import MenuItem
from campus_eats.models.order_item import OrderItem

logger = logging.getLogger(__name__)


class MenuError(Exception):
    pass


class MenuItemNotFound(MenuError):
    def __init__(self, missing_ids: Iterable[int]):
        self.missing_ids = sorted({int(x) for x in missing_ids})
        super().__init__(f"Menu items not found: {','.join(str(x) for x in self.missing_ids)}")


class MenuItemInUse(MenuError):
    pass


class MenuForbidden(MenuError):
    pass


def _require_manager(actor: Actor) -> None:
    if not actor.is_manager:
        raise MenuForbidden("Only managers can change the menu.")


def _clean_allergens(allergens: Optional[Iterable[str]]) -> list[str]:
    return [a.strip() for a in (allergens or []) if a and a.strip()]


async def get_menu_items_by_ids(db: AsyncSession, ids: Iterable[int]) -> dict[int, MenuItem]:
    ids = list({int(x) for x in ids})
    if not ids:
        return {}
    res = await db.execute(select(MenuItem).where(MenuItem.id.in_(ids)))
    return {int(m.id): m for m in res.scalars().all()}


async def get_menu_name_map(db: AsyncSession, ids: Iterable[int]) -> dict[int, str]:
    ids = list({int(x) for x in ids if x is not None})
    if not ids:
        return {}
    res = await db.execute(select(MenuItem.id, MenuItem.name).where(MenuItem.id.in_(ids)))
    return {int(r[0]): r[1] for r in res.all()}


async def list_menu_items(db: AsyncSession, category: Optional[str] = None) -> list[MenuItem]:
    stmt = select(MenuItem).order_by(MenuItem.category.asc(), MenuItem.name.asc())
    if category:
        stmt = stmt.where(MenuItem.category == category)
    res = await db.execute(stmt)
    return list(res.scalars().all())


async def get_menu_item(db: AsyncSession, menu_item_id: int) -> MenuItem:
    item = await db.get(MenuItem, menu_item_id)
    if item is None:
        raise MenuItemNotFound([menu_item_id])
    return item


async def create_menu_item(
    db: AsyncSession,
    actor: Actor,
    *,
    name: str,
    price: Decimal,
    category: str,
    description: Optional[str] = None,
    image_url: Optional[str] = None,
    allergens: Optional[list[str]] = None,
) -> MenuItem:
    _require_manager(actor)

    if not name or not name.strip():
        raise MenuError("Name is required.")
    if price <= 0:
        raise MenuError("Price must be greater than 0.")

    item = MenuItem(
        name=name.strip(),
        price=price,
        category=category.strip(),
        description=description.strip() if description else None,
        image_url=image_url.strip() if image_url else None,
        allergens=_clean_allergens(allergens),
    )

    try:
        db.add(item)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Menu item {item.id} created by user {actor.id}")
    return item


async def update_menu_item(
    db: AsyncSession,
    actor: Actor,
    menu_item_id: int,
    *,
    name: str,
    price: Decimal,
    category: str,
    description: Optional[str] = None,
    image_url: Optional[str] = None,
    allergens: Optional[list[str]] = None,
) -> MenuItem:
    """Replace a menu item's fields. Existing orders keep their snapshotted prices."""
    _require_manager(actor)

    if not name or not name.strip():
        raise MenuError("Name is required.")
    if price <= 0:
        raise MenuError("Price must be greater than 0.")

    item = await get_menu_item(db, menu_item_id)

    try:
        item.name = name.strip()
        item.price = price
        item.category = category.strip()
        item.description = description.strip() if description else None
        item.image_url = image_url.strip() if image_url else None
        item.allergens = _clean_allergens(allergens)

        await db.commit()
        return item

    except Exception:
        await db.rollback()
        raise


async def delete_menu_item(db: AsyncSession, actor: Actor, menu_item_id: int) -> None:
    _require_manager(actor)

    item = await get_menu_item(db, menu_item_id)

    res = await db.execute(
        select(func.count()).select_from(OrderItem).where(OrderItem.menu_item_id == menu_item_id)
    )
    if int(res.scalar_one()) > 0:
        raise MenuItemInUse("Menu item is referenced by existing orders.")

    res = await db.execute(
        select(func.count()).select_from(Coupon).where(Coupon.specific_menu_item_id == menu_item_id)
    )
    if int(res.scalar_one()) > 0:
        raise MenuItemInUse("Menu item is referenced by a coupon.")

    try:
        await db.delete(item)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    logger.info(f"Menu item {menu_item_id} deleted by user {actor.id}")


class InvalidImage(MenuError):
    pass


async def upload_menu_image(
    actor: Actor,
    store: LocalImageStore,
    *,
    content_type: Optional[str],
    data: bytes,
) -> str:
    """Store a menu picture and return the URL it is served from."""
    _require_manager(actor)

    try:
        url = await store.save(folder="menu", content_type=content_type, data=data)
    except ImageStoreError as e:
        raise InvalidImage(str(e)) from e

    logger.info(f"Menu image uploaded by user {actor.id}: {url}")
    return url
