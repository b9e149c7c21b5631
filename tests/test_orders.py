from decimal import Decimal

import pytest
from sqlalchemy import select

from campus_eats.core.actor import Actor
from campus_eats.models.enums import KitchenTaskStatus, OrderStatus
from campus_eats.models.kitchen_task import KitchenTask
from campus_eats.models.order import Order
from campus_eats.services.menu import MenuItemNotFound, update_menu_item
from campus_eats.services.orders import (
    AlreadyTerminal,
    EmptyOrder,
    InvalidQuantity,
    OrderForbidden,
    OrderNotFound,
    RequestedLine,
    cancel_order,
    get_order,
    get_orders,
    merge_lines,
    place_order,
)


def _basket(menu):
    return [
        RequestedLine(menu_item_id=menu["pizza"].id, quantity=2),
        RequestedLine(menu_item_id=menu["cola"].id, quantity=1),
    ]


async def _task_for(db, order_id):
    res = await db.execute(select(KitchenTask).where(KitchenTask.order_id == order_id))
    return res.scalars().all()


def test_merge_lines_sums_duplicates_in_first_seen_order():
    merged = merge_lines(
        [
            RequestedLine(menu_item_id=3, quantity=1),
            RequestedLine(menu_item_id=1, quantity=2),
            RequestedLine(menu_item_id=3, quantity=4),
        ]
    )
    assert merged == {3: 5, 1: 2}
    assert list(merged) == [3, 1]


async def test_place_order_prices_basket_and_opens_kitchen_task(db, student_actor, menu):
    order = await place_order(db, student_actor, _basket(menu), notes="  no onions ")

    assert order.status == OrderStatus.PENDING
    assert order.subtotal == Decimal("45.00")
    assert order.discount_amount == Decimal("0")
    assert order.total == Decimal("45.00")
    assert order.notes == "no onions"
    assert len(order.items) == 2
    assert order.loyalty_points_awarded is False

    tasks = await _task_for(db, order.id)
    assert len(tasks) == 1
    assert tasks[0].status == KitchenTaskStatus.NOT_STARTED
    assert tasks[0].assigned_to == student_actor.id
    assert tasks[0].notes == "no onions"


async def test_place_order_merges_duplicate_items(db, student_actor, menu):
    order = await place_order(
        db,
        student_actor,
        [
            RequestedLine(menu_item_id=menu["cola"].id, quantity=1),
            RequestedLine(menu_item_id=menu["cola"].id, quantity=2),
        ],
    )

    assert len(order.items) == 1
    assert order.items[0].quantity == 3
    assert order.subtotal == Decimal("15.00")


async def test_place_order_rejects_empty_basket(db, student_actor):
    with pytest.raises(EmptyOrder):
        await place_order(db, student_actor, [])


@pytest.mark.parametrize("qty", [0, -1])
async def test_place_order_rejects_non_positive_quantity(db, student_actor, menu, qty):
    with pytest.raises(InvalidQuantity):
        await place_order(db, student_actor, [RequestedLine(menu_item_id=menu["pizza"].id, quantity=qty)])


async def test_place_order_lists_every_missing_item(db, student_actor, menu):
    with pytest.raises(MenuItemNotFound) as exc:
        await place_order(
            db,
            student_actor,
            [
                RequestedLine(menu_item_id=999, quantity=1),
                RequestedLine(menu_item_id=menu["pizza"].id, quantity=1),
                RequestedLine(menu_item_id=998, quantity=1),
            ],
        )

    assert exc.value.missing_ids == [998, 999]
    res = await db.execute(select(Order))
    assert res.scalars().all() == []


async def test_order_keeps_price_snapshot(db, student_actor, manager_actor, menu):
    order = await place_order(db, student_actor, _basket(menu))
    order_id = order.id

    await update_menu_item(
        db,
        manager_actor,
        menu["pizza"].id,
        name="Pizza Margherita",
        price=Decimal("25.00"),
        category="Main",
    )

    data = await get_order(db, student_actor, order_id)
    prices = {it["menu_item_id"]: it["unit_price"] for it in data["items"]}
    assert prices[menu["pizza"].id] == Decimal("20.00")
    assert data["total"] == Decimal("45.00")


async def test_cancel_own_order(db, student_actor, menu):
    order = await place_order(db, student_actor, _basket(menu))

    cancelled = await cancel_order(db, student_actor, order.id)

    assert cancelled.status == OrderStatus.CANCELLED
    assert cancelled.cancelled_at is not None


async def test_cancel_someone_elses_order_is_forbidden(db, student_actor, other_student, menu):
    order = await place_order(db, student_actor, _basket(menu))
    order_id = order.id

    with pytest.raises(OrderForbidden):
        await cancel_order(db, Actor.from_user(other_student), order_id)

    res = await db.execute(select(Order.status).where(Order.id == order_id))
    assert res.scalar_one() == OrderStatus.PENDING


async def test_manager_can_cancel_any_order(db, student_actor, manager_actor, menu):
    order = await place_order(db, student_actor, _basket(menu))

    cancelled = await cancel_order(db, manager_actor, order.id)

    assert cancelled.status == OrderStatus.CANCELLED


@pytest.mark.parametrize("status", [OrderStatus.CANCELLED, OrderStatus.COMPLETED])
async def test_cancel_terminal_order_fails(db, student_actor, menu, status):
    order = await place_order(db, student_actor, _basket(menu))
    order_id = order.id
    order.status = status.value
    await db.commit()

    with pytest.raises(AlreadyTerminal):
        await cancel_order(db, student_actor, order_id)


async def test_cancel_unknown_order(db, student_actor):
    with pytest.raises(OrderNotFound):
        await cancel_order(db, student_actor, 12345)


async def test_get_orders_visibility(db, student_actor, other_student, manager_actor, menu):
    other_actor = Actor.from_user(other_student)
    mine = await place_order(db, student_actor, _basket(menu))
    theirs = await place_order(db, other_actor, [RequestedLine(menu_item_id=menu["salad"].id, quantity=1)])

    own = await get_orders(db, student_actor)
    assert [o["id"] for o in own] == [mine.id]
    assert own[0]["items"][0]["menu_item_name"] in {"Pizza Margherita", "Cola"}

    # "all" is a manager privilege; students still see their own
    assert [o["id"] for o in await get_orders(db, student_actor, all_orders=True)] == [mine.id]

    everything = await get_orders(db, manager_actor, all_orders=True)
    assert {o["id"] for o in everything} == {mine.id, theirs.id}
    assert await get_orders(db, manager_actor) == []


async def test_get_order_hides_other_users_orders(db, student_actor, other_student, menu):
    order = await place_order(db, student_actor, _basket(menu))

    with pytest.raises(OrderNotFound):
        await get_order(db, Actor.from_user(other_student), order.id)
