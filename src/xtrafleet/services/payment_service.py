"""Stripe Checkout for the TLA match fee.

The lessee pays a fixed match fee before the trip can start. A Checkout
Session is created here; the webhook later confirms the charge and the
TLA service flips ``match_fee_paid``.
"""

import asyncio
import json
import logging
from typing import Any, Optional, Protocol

import stripe

from xtrafleet.app.config import get_settings
from xtrafleet.domain.errors import ExternalServiceError

logger = logging.getLogger(__name__)

MATCH_FEE_METADATA_TYPE = "match_fee"


class PaymentProcessor(Protocol):
    async def create_payment_session(
        self,
        customer_ref: str,
        amount_cents: int,
        metadata: dict[str, str],
    ) -> str: ...


class StripePaymentProcessor:
    """PaymentProcessor backed by Stripe Checkout Sessions."""

    def __init__(self, api_key: Optional[str] = None, frontend_url: Optional[str] = None):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.frontend_url = (frontend_url or settings.frontend_url).rstrip("/")

    def _create_session(self, customer_ref: str, amount_cents: int, metadata: dict[str, str]) -> str:
        tla_id = metadata.get("tla_id", "")
        session = stripe.checkout.Session.create(
            api_key=self.api_key,
            mode="payment",
            client_reference_id=customer_ref,
            metadata=metadata,
            line_items=[
                {
                    "price_data": {
                        "currency": "usd",
                        "product_data": {
                            "name": "TLA Match Fee",
                            "description": f"One-time fee for Trip Lease Agreement {tla_id}",
                        },
                        "unit_amount": amount_cents,
                    },
                    "quantity": 1,
                }
            ],
            success_url=f"{self.frontend_url}/dashboard/tla/{tla_id}?payment=success",
            cancel_url=f"{self.frontend_url}/dashboard/tla/{tla_id}?payment=canceled",
        )
        return session.url

    async def create_payment_session(
        self,
        customer_ref: str,
        amount_cents: int,
        metadata: dict[str, str],
    ) -> str:
        if not self.api_key:
            raise ExternalServiceError("Stripe is not configured (STRIPE_SECRET_KEY missing)")
        try:
            url = await asyncio.to_thread(self._create_session, customer_ref, amount_cents, metadata)
        except stripe.StripeError as e:
            logger.exception("Stripe checkout session failed for %s", customer_ref)
            raise ExternalServiceError(f"Stripe checkout session failed: {e}") from e
        if not url:
            raise ExternalServiceError("Stripe returned a session without a URL")
        return url


def construct_webhook_event(payload: bytes, signature: str, secret: Optional[str] = None) -> dict[str, Any]:
    """Verify a Stripe webhook signature and return the event as plain JSON.

    Raises ValueError / stripe.SignatureVerificationError on bad input.
    """
    secret = secret if secret is not None else get_settings().stripe_webhook_secret
    if not secret:
        raise ValueError("Stripe webhook secret is not configured")
    stripe.Webhook.construct_event(payload, signature, secret)
    return json.loads(payload)
