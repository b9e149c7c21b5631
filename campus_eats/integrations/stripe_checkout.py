from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from decimal import ROUND_HALF_UP, Decimal

import stripe
from starlette.concurrency import run_in_threadpool

from campus_eats.core.config import settings
from campus_eats.core.db import utcnow


class CheckoutError(Exception):
    pass


@dataclass(frozen=True)
class CheckoutSession:
    id: str
    url: str


def to_minor_units(amount: Decimal) -> int:
    return int((Decimal(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


class StripeCheckoutClient:
    """Thin wrapper over Stripe Checkout; signature checks live here too."""

    def __init__(self):
        self.api_key = settings.STRIPE_SECRET_KEY
        self.webhook_secret = settings.STRIPE_WEBHOOK_SECRET
        self.success_url = settings.STRIPE_SUCCESS_URL
        self.cancel_url = settings.STRIPE_CANCEL_URL
        self.session_minutes = settings.CHECKOUT_SESSION_MINUTES

    async def create_session(
        self,
        *,
        title: str,
        amount: Decimal,
        currency: str,
        metadata: dict[str, str],
    ) -> CheckoutSession:
        expires_at = utcnow() + timedelta(minutes=self.session_minutes)
        params = {
            "api_key": self.api_key,
            "payment_method_types": ["card"],
            "mode": "payment",
            "line_items": [
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": title},
                        "unit_amount": to_minor_units(amount),
                    },
                    "quantity": 1,
                }
            ],
            "success_url": self.success_url,
            "cancel_url": self.cancel_url,
            "metadata": metadata,
            "expires_at": int(expires_at.timestamp()),
        }

        try:
            session = await run_in_threadpool(stripe.checkout.Session.create, **params)
        except stripe.StripeError as e:
            raise CheckoutError(f"Stripe error: {e.user_message or e}") from e

        return CheckoutSession(id=session["id"], url=session["url"])

    def construct_event(self, payload: bytes, sig_header: str | None):
        """Verify the Stripe signature and decode the event."""
        return stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)


def get_checkout_client() -> StripeCheckoutClient:
    return StripeCheckoutClient()
