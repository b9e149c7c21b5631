import json
from datetime import timedelta
from decimal import Decimal
from unittest.mock import patch

import pytest
import stripe
from sqlalchemy import func, select, update

from campus_eats.core.actor import Actor
from campus_eats.core.config import settings
from campus_eats.core.db import utcnow
from campus_eats.integrations.stripe_checkout import CheckoutError, CheckoutSession, StripeCheckoutClient
from campus_eats.models.coupon import UserCoupon
from campus_eats.models.enums import CouponType, KitchenTaskStatus, OrderStatus, PaymentStatus
from campus_eats.models.kitchen_task import KitchenTask
from campus_eats.models.loyalty import LoyaltyAccount
from campus_eats.models.menu_item import MenuItem
from campus_eats.models.order import Order
from campus_eats.models.payment import Payment
from campus_eats.services import coupons as coupon_service
from campus_eats.services.coupons import CouponReserved
from campus_eats.services.orders import RequestedLine, place_order
from campus_eats.services.payments import (
    CouponNoLongerApplies,
    PaymentError,
    PaymentPayloadError,
    confirm_payment,
    create_payment_session,
)

from conftest import credit_points


class FakeCheckout:
    def __init__(self, fail=False):
        self.fail = fail
        self.calls = []

    async def create_session(self, *, title, amount, currency, metadata):
        if self.fail:
            raise CheckoutError("Stripe error: card processor unavailable")
        self.calls.append(dict(title=title, amount=amount, currency=currency, metadata=metadata))
        session_id = f"cs_test_{len(self.calls)}"
        return CheckoutSession(id=session_id, url=f"https://checkout.stripe.test/{session_id}")


def _basket(menu):
    return [
        RequestedLine(menu_item_id=menu["pizza"].id, quantity=2),
        RequestedLine(menu_item_id=menu["cola"].id, quantity=1),
    ]


def _completed_session(checkout, index=0):
    return {"id": f"cs_test_{index + 1}", "metadata": dict(checkout.calls[index]["metadata"])}


async def _count(db, model):
    res = await db.execute(select(func.count()).select_from(model))
    return res.scalar_one()


async def _points(db, user_id):
    res = await db.execute(select(LoyaltyAccount.points).where(LoyaltyAccount.user_id == user_id))
    return res.scalar_one()


async def test_create_session_records_pending_payment(db, student_actor, menu):
    checkout = FakeCheckout()

    payment, session = await create_payment_session(db, student_actor, checkout, _basket(menu), notes="ring twice")

    assert session.id == "cs_test_1"
    assert payment.status == PaymentStatus.PENDING
    assert payment.amount == Decimal("45.00")
    assert payment.stripe_session_id == "cs_test_1"
    assert payment.order_id is None

    call = checkout.calls[0]
    assert call["amount"] == Decimal("45.00")
    assert call["title"] == "CampusEats order"
    meta = call["metadata"]
    assert meta["payment_id"] == str(payment.id)
    assert meta["user_id"] == str(student_actor.id)
    assert meta["order_notes"] == "ring twice"
    assert "user_coupon_id" not in meta
    assert json.loads(meta["order_items"]) == [
        {"menu_item_id": menu["pizza"].id, "quantity": 2},
        {"menu_item_id": menu["cola"].id, "quantity": 1},
    ]

    # nothing is ordered until the checkout completes
    assert await _count(db, Order) == 0


async def test_create_session_quotes_coupon_without_consuming_it(db, student, manager_actor, menu):
    coupon = await coupon_service.create_coupon(
        db,
        manager_actor,
        name="Ten off",
        description="",
        coupon_type=CouponType.PERCENTAGE_DISCOUNT,
        discount_value=Decimal("10"),
        points_cost=30,
    )
    await credit_points(db, student.id, 50)
    user_coupon, _ = await coupon_service.purchase_coupon(db, student.id, coupon.id)
    checkout = FakeCheckout()

    payment, _session = await create_payment_session(
        db, Actor.from_user(student), checkout, _basket(menu), user_coupon_id=user_coupon.id
    )

    assert payment.amount == Decimal("40.50")
    assert payment.user_coupon_id == user_coupon.id
    assert checkout.calls[0]["metadata"]["user_coupon_id"] == str(user_coupon.id)
    assert "coupon" in checkout.calls[0]["title"]
    assert (await db.get(UserCoupon, user_coupon.id)).is_used is False


async def test_create_session_failure_leaves_no_payment(db, student_actor, menu):
    with pytest.raises(CheckoutError):
        await create_payment_session(db, student_actor, FakeCheckout(fail=True), _basket(menu))

    assert await _count(db, Payment) == 0


async def test_create_session_rejects_free_orders(db, student, manager_actor, menu):
    coupon = await coupon_service.create_coupon(
        db,
        manager_actor,
        name="Everything",
        description="",
        coupon_type=CouponType.PERCENTAGE_DISCOUNT,
        discount_value=Decimal("100"),
        points_cost=10,
    )
    await credit_points(db, student.id, 10)
    user_coupon, _ = await coupon_service.purchase_coupon(db, student.id, coupon.id)

    with pytest.raises(PaymentError):
        await create_payment_session(
            db, Actor.from_user(student), FakeCheckout(), _basket(menu), user_coupon_id=user_coupon.id
        )


async def test_confirm_creates_confirmed_order_and_awards_points(db, student_actor, menu):
    checkout = FakeCheckout()
    payment, _ = await create_payment_session(db, student_actor, checkout, _basket(menu), notes="ring twice")
    payment_id = payment.id

    order = await confirm_payment(db, "checkout.session.completed", _completed_session(checkout))

    assert order.status == OrderStatus.CONFIRMED
    assert order.total == Decimal("45.00")
    assert order.notes == "ring twice"
    assert order.loyalty_points_awarded is True
    assert len(order.items) == 2

    payment = await db.get(Payment, payment_id)
    assert payment.status == PaymentStatus.SUCCEDED
    assert payment.order_id == order.id
    assert payment.completed_at is not None

    res = await db.execute(select(KitchenTask).where(KitchenTask.order_id == order.id))
    assert res.scalar_one().status == KitchenTaskStatus.NOT_STARTED

    assert await _points(db, student_actor.id) == 4


async def test_duplicate_notification_is_a_no_op(db, student_actor, menu):
    checkout = FakeCheckout()
    await create_payment_session(db, student_actor, checkout, _basket(menu))
    event = _completed_session(checkout)

    first = await confirm_payment(db, "checkout.session.completed", event)
    second = await confirm_payment(db, "checkout.session.completed", event)

    assert first is not None
    assert second is None
    assert await _count(db, Order) == 1
    assert await _points(db, student_actor.id) == 4


async def test_confirm_applies_coupon_and_awards_on_final_total(db, student, manager_actor, menu):
    coupon = await coupon_service.create_coupon(
        db,
        manager_actor,
        name="Fiver",
        description="",
        coupon_type=CouponType.FIXED_AMOUNT_DISCOUNT,
        discount_value=Decimal("6"),
        points_cost=10,
    )
    await credit_points(db, student.id, 10)
    user_coupon, _ = await coupon_service.purchase_coupon(db, student.id, coupon.id)
    user_coupon_id = user_coupon.id
    checkout = FakeCheckout()
    await create_payment_session(db, Actor.from_user(student), checkout, _basket(menu), user_coupon_id=user_coupon_id)

    order = await confirm_payment(db, "checkout.session.completed", _completed_session(checkout))

    assert order.discount_amount == Decimal("6.00")
    assert order.total == Decimal("39.00")
    assert order.applied_coupon_id == user_coupon_id
    assert (await db.get(UserCoupon, user_coupon_id)).is_used is True
    assert await _points(db, student.id) == 3


async def _twenty_off(db, student, manager_actor):
    coupon = await coupon_service.create_coupon(
        db,
        manager_actor,
        name="Twenty off",
        description="",
        coupon_type=CouponType.FIXED_AMOUNT_DISCOUNT,
        discount_value=Decimal("20"),
        points_cost=10,
    )
    await credit_points(db, student.id, 10)
    user_coupon, _ = await coupon_service.purchase_coupon(db, student.id, coupon.id)
    return int(user_coupon.id)


async def test_coupon_is_held_by_one_checkout_at_a_time(db, student, manager_actor, menu):
    user_coupon_id = await _twenty_off(db, student, manager_actor)
    actor = Actor.from_user(student)
    checkout = FakeCheckout()

    first, _ = await create_payment_session(db, actor, checkout, _basket(menu), user_coupon_id=user_coupon_id)
    first_id = first.id
    assert first.amount == Decimal("25.00")

    with pytest.raises(CouponReserved):
        await create_payment_session(db, actor, checkout, _basket(menu), user_coupon_id=user_coupon_id)

    assert len(checkout.calls) == 1
    assert await _count(db, Payment) == 1

    order = await confirm_payment(db, "checkout.session.completed", _completed_session(checkout))

    assert order.total == Decimal("25.00")
    assert order.discount_amount == Decimal("20.00")
    assert (await db.get(Payment, first_id)).amount == order.total


async def test_direct_order_cannot_use_coupon_held_by_checkout(db, student, manager_actor, menu):
    user_coupon_id = await _twenty_off(db, student, manager_actor)
    actor = Actor.from_user(student)
    await create_payment_session(db, actor, FakeCheckout(), _basket(menu), user_coupon_id=user_coupon_id)

    with pytest.raises(CouponReserved):
        await place_order(db, actor, _basket(menu), user_coupon_id=user_coupon_id)

    assert await _count(db, Order) == 0
    assert (await db.get(UserCoupon, user_coupon_id)).is_used is False


async def test_lapsed_checkout_releases_its_coupon(db, student, manager_actor, menu):
    user_coupon_id = await _twenty_off(db, student, manager_actor)
    actor = Actor.from_user(student)
    checkout = FakeCheckout()
    first, _ = await create_payment_session(db, actor, checkout, _basket(menu), user_coupon_id=user_coupon_id)

    await db.execute(
        update(Payment)
        .where(Payment.id == first.id)
        .values(created_at=utcnow() - timedelta(minutes=settings.CHECKOUT_SESSION_MINUTES + 1))
    )
    await db.commit()

    second, _ = await create_payment_session(db, actor, checkout, _basket(menu), user_coupon_id=user_coupon_id)

    assert second.amount == Decimal("25.00")
    assert second.user_coupon_id == user_coupon_id


async def test_confirm_refuses_to_reprice_when_coupon_is_gone(db, student, manager_actor, menu):
    user_coupon_id = await _twenty_off(db, student, manager_actor)
    checkout = FakeCheckout()
    payment, _ = await create_payment_session(
        db, Actor.from_user(student), checkout, _basket(menu), user_coupon_id=user_coupon_id
    )
    payment_id = payment.id

    await db.execute(update(UserCoupon).where(UserCoupon.id == user_coupon_id).values(is_used=True))
    await db.commit()

    with pytest.raises(CouponNoLongerApplies):
        await confirm_payment(db, "checkout.session.completed", _completed_session(checkout))

    assert await _count(db, Order) == 0
    assert (await db.get(Payment, payment_id)).status == PaymentStatus.PENDING
    assert await _points(db, student.id) == 0


async def test_confirm_rejects_coupon_not_held_by_payment(db, student, manager_actor, menu):
    user_coupon_id = await _twenty_off(db, student, manager_actor)
    checkout = FakeCheckout()
    await create_payment_session(db, Actor.from_user(student), checkout, _basket(menu), user_coupon_id=user_coupon_id)
    event = _completed_session(checkout)
    del event["metadata"]["user_coupon_id"]

    with pytest.raises(PaymentPayloadError):
        await confirm_payment(db, "checkout.session.completed", event)
    assert await _count(db, Order) == 0


async def test_create_session_merges_repeated_lines(db, student_actor, menu):
    checkout = FakeCheckout()
    basket = [RequestedLine(menu_item_id=menu["pizza"].id, quantity=1) for _ in range(60)]

    payment, _ = await create_payment_session(db, student_actor, checkout, basket)

    assert payment.amount == Decimal("1200.00")
    assert json.loads(checkout.calls[0]["metadata"]["order_items"]) == [
        {"menu_item_id": menu["pizza"].id, "quantity": 60},
    ]


async def test_create_session_rejects_oversized_baskets(db, student_actor):
    db.add_all(
        [MenuItem(name=f"Snack {n}", price=Decimal("1.00"), category="Snacks") for n in range(40)]
    )
    await db.commit()
    res = await db.execute(select(MenuItem.id))
    basket = [RequestedLine(menu_item_id=mid, quantity=1) for mid in res.scalars().all()]
    checkout = FakeCheckout()

    with pytest.raises(PaymentError, match="Too many different items"):
        await create_payment_session(db, student_actor, checkout, basket)

    assert checkout.calls == []
    assert await _count(db, Payment) == 0


async def test_other_event_types_are_ignored(db, student_actor, menu):
    checkout = FakeCheckout()
    await create_payment_session(db, student_actor, checkout, _basket(menu))

    assert await confirm_payment(db, "payment_intent.created", _completed_session(checkout)) is None
    assert await _count(db, Order) == 0


async def test_unknown_payment_is_ignored(db, student_actor, menu):
    payload = {
        "id": "cs_test_missing",
        "metadata": {
            "payment_id": "999",
            "user_id": str(student_actor.id),
            "order_items": json.dumps([{"menu_item_id": menu["cola"].id, "quantity": 1}]),
        },
    }

    assert await confirm_payment(db, "checkout.session.completed", payload) is None
    assert await _count(db, Order) == 0


@pytest.mark.parametrize(
    "metadata",
    [
        {},
        {"payment_id": "1", "user_id": "1"},
        {"payment_id": "1", "user_id": "1", "order_items": "not json"},
        {"payment_id": "1", "user_id": "1", "order_items": '[{"menu_item_id": 1}]'},
        {"payment_id": "abc", "user_id": "1", "order_items": "[]"},
    ],
)
async def test_malformed_metadata_is_rejected(db, metadata):
    with pytest.raises(PaymentPayloadError):
        await confirm_payment(db, "checkout.session.completed", {"id": "cs_x", "metadata": metadata})


async def test_metadata_user_must_own_the_payment(db, student_actor, other_student, menu):
    checkout = FakeCheckout()
    await create_payment_session(db, student_actor, checkout, _basket(menu))
    event = _completed_session(checkout)
    event["metadata"]["user_id"] = str(other_student.id)

    with pytest.raises(PaymentPayloadError):
        await confirm_payment(db, "checkout.session.completed", event)
    assert await _count(db, Order) == 0


async def test_stripe_client_sends_single_line_in_minor_units():
    client = StripeCheckoutClient()
    with patch("stripe.checkout.Session.create") as mock_create:
        mock_create.return_value = {"id": "cs_test_abc", "url": "https://checkout.stripe.test/abc"}

        session = await client.create_session(
            title="CampusEats order",
            amount=Decimal("40.50"),
            currency="ron",
            metadata={"payment_id": "1"},
        )

    assert session == CheckoutSession(id="cs_test_abc", url="https://checkout.stripe.test/abc")
    kwargs = mock_create.call_args.kwargs
    assert kwargs["mode"] == "payment"
    assert kwargs["metadata"] == {"payment_id": "1"}
    assert kwargs["expires_at"] > int(utcnow().timestamp())
    assert kwargs["line_items"] == [
        {
            "price_data": {
                "currency": "ron",
                "product_data": {"name": "CampusEats order"},
                "unit_amount": 4050,
            },
            "quantity": 1,
        }
    ]


async def test_stripe_client_wraps_stripe_errors():
    client = StripeCheckoutClient()
    with patch("stripe.checkout.Session.create", side_effect=stripe.StripeError("boom")):
        with pytest.raises(CheckoutError):
            await client.create_session(title="x", amount=Decimal("1"), currency="ron", metadata={})
