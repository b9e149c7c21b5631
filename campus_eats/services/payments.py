from __future__ import annotations

import json
import logging
from decimal import Decimal
from typing import Any, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.actor import Actor
from campus_eats.core.config import settings
from campus_eats.core.db import utcnow
from campus_eats.integrations.stripe_checkout import CheckoutSession, StripeCheckoutClient
from campus_eats.models.enums import CouponType, OrderStatus, PaymentStatus
from campus_eats.models.order import Order
from campus_eats.models.payment import Payment
from campus_eats.services import loyalty
from campus_eats.services.coupons import ensure_not_reserved, quote_coupon
from campus_eats.services.discounts import order_total
from campus_eats.services.orders import RequestedLine, build_order_in_tx, merge_lines, price_basket

logger = logging.getLogger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
REQUIRED_METADATA = ("payment_id", "user_id", "order_items")

# Stripe rejects metadata values longer than this
METADATA_VALUE_LIMIT = 500


class PaymentError(Exception):
    pass


class PaymentPayloadError(PaymentError):
    """The provider notification is malformed; an integration bug, not a user error."""


class CouponNoLongerApplies(PaymentError):
    """The coupon a checkout was priced with cannot be redeemed at confirmation."""


def _serialize_items(items: Sequence[RequestedLine]) -> str:
    return json.dumps(
        [{"menu_item_id": mid, "quantity": qty} for mid, qty in merge_lines(items).items()],
        separators=(",", ":"),
    )


def _parse_items(raw: str) -> list[RequestedLine]:
    try:
        data = json.loads(raw)
        return [RequestedLine(menu_item_id=int(d["menu_item_id"]), quantity=int(d["quantity"])) for d in data]
    except (TypeError, ValueError, KeyError) as e:
        raise PaymentPayloadError(f"Invalid order_items metadata: {e}") from e


def _int_or_payload_error(metadata: dict, key: str) -> int:
    try:
        return int(metadata[key])
    except (TypeError, ValueError) as e:
        raise PaymentPayloadError(f"Invalid {key} metadata: {metadata.get(key)!r}") from e


async def create_payment_session(
    db: AsyncSession,
    actor: Actor,
    checkout: StripeCheckoutClient,
    items: Sequence[RequestedLine],
    notes: Optional[str] = None,
    user_coupon_id: Optional[int] = None,
) -> tuple[Payment, CheckoutSession]:
    """
    Price the basket like a direct order would, open a hosted checkout for
    the final total and record a pending payment.

    A coupon is not consumed yet, but the pending payment holds it: no other
    checkout or direct order can use it until this one completes or its
    session lapses.
    """
    order_items = _serialize_items(items)
    if len(order_items) > METADATA_VALUE_LIMIT:
        raise PaymentError("Too many different items for one checkout; split the order.")

    currency = settings.PAYMENT_CURRENCY

    try:
        lines, subtotal = await price_basket(db, items)

        discount = Decimal("0")
        title = "CampusEats order"
        applied_user_coupon_id: Optional[int] = None

        if user_coupon_id is not None:
            quote = await quote_coupon(
                db,
                user_id=actor.id,
                user_coupon_id=user_coupon_id,
                subtotal=subtotal,
                lines=lines,
                lock=True,
            )
            if quote is not None:
                await ensure_not_reserved(db, int(quote.user_coupon.id))
                discount = quote.discount
                applied_user_coupon_id = int(quote.user_coupon.id)
                if quote.coupon.type == CouponType.PERCENTAGE_DISCOUNT:
                    title += f" (coupon: -{quote.coupon.discount_value}%)"
                else:
                    title += f" (coupon: {quote.coupon.name})"

        total = order_total(subtotal, discount)
        if total <= 0:
            raise PaymentError("Nothing to pay for this order; place it directly.")

        payment = Payment(
            user_id=actor.id,
            amount=total,
            currency=currency,
            status=PaymentStatus.PENDING.value,
            user_coupon_id=applied_user_coupon_id,
            created_at=utcnow(),
        )
        db.add(payment)
        await db.flush()  # ensures payment.id for the metadata

        metadata = {
            "payment_id": str(payment.id),
            "user_id": str(actor.id),
            "order_items": order_items,
            "order_notes": notes or "",
        }
        if applied_user_coupon_id is not None:
            metadata["user_coupon_id"] = str(applied_user_coupon_id)

        session = await checkout.create_session(
            title=title,
            amount=total,
            currency=currency,
            metadata=metadata,
        )

        payment.stripe_session_id = session.id
        await db.commit()

    except Exception:
        await db.rollback()
        raise

    logger.info(f"Checkout session {session.id} opened for payment {payment.id} ({total} {currency})")
    return payment, session


async def confirm_payment(
    db: AsyncSession,
    event_type: str,
    payload: dict[str, Any],
) -> Order | None:
    """
    Handle a provider notification. For a completed checkout, replay the
    order placement, mark the payment as succeeded and award loyalty points,
    all in one transaction.

    Unknown payments and payments already confirmed are a no-op, so a
    redelivered notification never creates a second order.
    A checkout priced with a coupon that can no longer be redeemed fails
    with CouponNoLongerApplies and leaves the payment pending.
    """
    if event_type != CHECKOUT_COMPLETED:
        logger.warning(f"Ignoring payment event {event_type}")
        return None

    metadata = payload.get("metadata") or {}
    missing = [k for k in REQUIRED_METADATA if not metadata.get(k)]
    if missing:
        raise PaymentPayloadError(f"Checkout session missing metadata: {', '.join(missing)}")

    payment_id = _int_or_payload_error(metadata, "payment_id")
    user_id = _int_or_payload_error(metadata, "user_id")
    items = _parse_items(metadata["order_items"])
    notes = metadata.get("order_notes") or None
    user_coupon_id = (
        _int_or_payload_error(metadata, "user_coupon_id") if metadata.get("user_coupon_id") else None
    )

    try:
        res = await db.execute(select(Payment).where(Payment.id == payment_id).with_for_update())
        payment = res.scalar_one_or_none()
        if payment is None:
            logger.warning(f"Payment {payment_id} not found; ignoring checkout completion")
            await db.rollback()
            return None

        if payment.status == PaymentStatus.SUCCEDED:
            logger.info(f"Payment {payment_id} already confirmed; ignoring duplicate notification")
            await db.rollback()
            return None

        if int(payment.user_id) != user_id:
            raise PaymentPayloadError(
                f"Payment {payment_id} belongs to user {payment.user_id}, metadata says {user_id}"
            )

        session_id = payload.get("id")
        if session_id and payment.stripe_session_id and session_id != payment.stripe_session_id:
            raise PaymentPayloadError(
                f"Session {session_id} does not match payment {payment_id}"
            )

        if user_coupon_id != payment.user_coupon_id:
            raise PaymentPayloadError(
                f"Coupon {user_coupon_id} does not match the one held by payment {payment_id}"
            )

        order, _task = await build_order_in_tx(
            db,
            user_id=user_id,
            items=items,
            notes=notes,
            user_coupon_id=payment.user_coupon_id,
            status=OrderStatus.CONFIRMED,
            payment_id=int(payment.id),
        )

        if payment.user_coupon_id is not None and order.applied_coupon_id != payment.user_coupon_id:
            # the customer paid the discounted price; never record it at full price
            raise CouponNoLongerApplies(
                f"Coupon {payment.user_coupon_id} paid with payment {payment_id} can no longer be applied"
            )

        if Decimal(order.total) != Decimal(payment.amount):
            logger.warning(
                f"Payment {payment_id} amount {payment.amount} differs from order total {order.total}"
            )

        payment.order_id = order.id
        payment.status = PaymentStatus.SUCCEDED.value
        payment.completed_at = utcnow()

        await loyalty.award_points_in_tx(
            db,
            user_id=user_id,
            order_id=int(order.id),
            order_total=Decimal(order.total),
        )
        order.loyalty_points_awarded = True

        await db.commit()

    except Exception:
        await db.rollback()
        raise

    logger.info(f"Payment {payment_id} confirmed as order {order.id}")
    return order
