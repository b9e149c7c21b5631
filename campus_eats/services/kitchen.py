from __future__ import annotations

import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.actor import Actor
from campus_eats.core.db import utcnow
from campus_eats.models.enums import KitchenTaskStatus, OrderStatus
from campus_eats.models.kitchen_task import KitchenTask
from campus_eats.models.order import Order
from campus_eats.models.user import User

logger = logging.getLogger(__name__)

# kitchen task status -> customer-visible order status
ORDER_STATUS_FOR_TASK = {
    KitchenTaskStatus.PREPARING: OrderStatus.PREPARING,
    KitchenTaskStatus.READY: OrderStatus.COMPLETED,
    KitchenTaskStatus.COMPLETED: OrderStatus.COMPLETED,
}

# forward-only progression; Cancelled is terminal and never overwritten
_ORDER_RANK = {
    OrderStatus.PENDING: 0,
    OrderStatus.CONFIRMED: 1,
    OrderStatus.PREPARING: 2,
    OrderStatus.COMPLETED: 3,
}


class KitchenError(Exception):
    pass


class TaskNotFound(KitchenError):
    pass


class InvalidStatus(KitchenError):
    pass


class KitchenForbidden(KitchenError):
    pass


class AssigneeNotFound(KitchenError):
    pass


def parse_task_status(value: str) -> KitchenTaskStatus:
    wanted = (value or "").strip().lower()
    for status in KitchenTaskStatus:
        if status.value.lower() == wanted or status.name.lower() == wanted:
            return status
    raise InvalidStatus(f"Invalid status value: {value!r}")


def sync_order_status(order: Order, task_status: KitchenTaskStatus) -> bool:
    """
    Move the order to the status implied by its kitchen task.
    Returns True when the order status changed.
    """
    target = ORDER_STATUS_FOR_TASK.get(task_status)
    if target is None:
        return False

    current = OrderStatus(order.status)
    if current == OrderStatus.CANCELLED:
        return False
    if _ORDER_RANK[target] <= _ORDER_RANK[current]:
        return False

    order.status = target.value
    order.updated_at = utcnow()
    return True


async def update_kitchen_task(
    db: AsyncSession,
    actor: Actor,
    task_id: int,
    *,
    status: Optional[str] = None,
    assigned_to: Optional[int] = None,
    notes: Optional[str] = None,
) -> KitchenTask:
    """
    Update a kitchen task and carry its status over to the order.
    Atomic: task + order in one commit.
    """
    if not actor.is_staff:
        raise KitchenForbidden("Only kitchen staff can update tasks")

    try:
        res = await db.execute(select(KitchenTask).where(KitchenTask.id == task_id).with_for_update())
        task = res.scalar_one_or_none()
        if task is None:
            raise TaskNotFound(f"Kitchen task {task_id} not found.")

        if assigned_to is not None:
            if await db.get(User, assigned_to) is None:
                raise AssigneeNotFound(f"User {assigned_to} not found.")
            task.assigned_to = assigned_to

        if notes is not None and notes.strip():
            task.notes = notes.strip()

        if status is not None and status.strip():
            new_status = parse_task_status(status)
            task.status = new_status.value

            order = await db.get(Order, task.order_id, with_for_update=True)
            if order is not None and sync_order_status(order, new_status):
                logger.info(f"Order {order.id} moved to {order.status} by kitchen task {task_id}")

        task.updated_at = utcnow()

        await db.commit()
        return task

    except Exception:
        await db.rollback()
        raise


async def list_kitchen_tasks(
    db: AsyncSession,
    actor: Actor,
    status: Optional[str] = None,
) -> list[KitchenTask]:
    if not actor.is_staff:
        raise KitchenForbidden("Only kitchen staff can view tasks")

    stmt = select(KitchenTask).order_by(KitchenTask.updated_at.asc(), KitchenTask.id.asc())
    if status:
        stmt = stmt.where(KitchenTask.status == parse_task_status(status).value)

    res = await db.execute(stmt)
    return list(res.scalars().all())
