from __future__ import annotations

import logging

import stripe
from fastapi import APIRouter, Depends, Header, HTTPException, Request
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.actor import Actor
from campus_eats.core.db import get_db
from campus_eats.core.deps import get_current_actor
from campus_eats.integrations.stripe_checkout import (
    CheckoutError,
    StripeCheckoutClient,
    get_checkout_client,
)
from campus_eats.schemas.payments import CreateSessionIn, CreateSessionOut, WebhookAck
from campus_eats.services.coupons import CouponError
from campus_eats.services.menu import MenuItemNotFound
from campus_eats.services.orders import OrderError, RequestedLine
from campus_eats.services.payments import (
    PaymentError,
    PaymentPayloadError,
    confirm_payment,
    create_payment_session,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments", tags=["Payments"])


@router.post("/create-session", response_model=CreateSessionOut)
async def create_session(
    payload: CreateSessionIn,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(get_current_actor),
    checkout: StripeCheckoutClient = Depends(get_checkout_client),
) -> CreateSessionOut:
    items = [RequestedLine(menu_item_id=i.menu_item_id, quantity=i.quantity) for i in payload.items]
    try:
        payment, session = await create_payment_session(
            db,
            actor,
            checkout,
            items,
            notes=payload.notes,
            user_coupon_id=payload.user_coupon_id,
        )
    except CheckoutError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except (OrderError, MenuItemNotFound, CouponError, PaymentError) as e:
        raise HTTPException(status_code=400, detail=str(e))

    return CreateSessionOut(
        payment_id=int(payment.id),
        session_id=session.id,
        url=session.url,
        amount=payment.amount,
        currency=payment.currency,
    )


@router.post("/webhook", response_model=WebhookAck)
async def webhook(
    request: Request,
    stripe_signature: str | None = Header(default=None, alias="Stripe-Signature"),
    db: AsyncSession = Depends(get_db),
    checkout: StripeCheckoutClient = Depends(get_checkout_client),
) -> WebhookAck:
    payload = await request.body()

    try:
        event = checkout.construct_event(payload, stripe_signature)
    except ValueError:
        logger.error("Invalid payload in Stripe webhook")
        raise HTTPException(status_code=400, detail="Invalid payload")
    except stripe.SignatureVerificationError:
        logger.error("Invalid signature in Stripe webhook")
        raise HTTPException(status_code=400, detail="Invalid signature")

    session = event["data"]["object"]
    if hasattr(session, "to_dict"):
        session = session.to_dict()

    try:
        order = await confirm_payment(db, event["type"], session)
    except PaymentPayloadError as e:
        logger.error(f"Stripe webhook payload rejected: {e}")
        raise HTTPException(status_code=500, detail=str(e))
    except (OrderError, MenuItemNotFound, CouponError, PaymentError) as e:
        # the basket or its coupon became invalid between checkout and confirmation
        logger.error(f"Could not replay order for paid session {session.get('id')}: {e}")
        raise HTTPException(status_code=500, detail=str(e))

    return WebhookAck(received=True, order_id=int(order.id) if order is not None else None)
