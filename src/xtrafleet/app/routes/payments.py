"""Match-fee payment routes: Stripe Checkout session and webhook."""

import logging

import stripe
from fastapi import APIRouter, Depends, Request

from xtrafleet.app.config import get_settings
from xtrafleet.app.dependencies import get_payment_processor, get_tla_service
from xtrafleet.app.routes.auth import get_current_user_dep
from xtrafleet.domain.enums import TransitionRejection
from xtrafleet.domain.errors import InvalidTransitionError, NotFound, ValidationError
from xtrafleet.domain.models import User
from xtrafleet.domain.schemas import CheckoutSessionResponse, WebhookResponse
from xtrafleet.services.payment_service import (
    MATCH_FEE_METADATA_TYPE,
    PaymentProcessor,
    construct_webhook_event,
)
from xtrafleet.services.tla_service import TLAService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.post("/match-fee/{tla_id}", response_model=CheckoutSessionResponse)
async def create_match_fee_session(
    tla_id: str,
    user: User = Depends(get_current_user_dep),
    service: TLAService = Depends(get_tla_service),
    processor: PaymentProcessor = Depends(get_payment_processor),
):
    """Lessee opens a checkout for the match fee. The TLA is not modified."""
    url = await service.create_match_fee_session(tla_id, user, processor)
    return CheckoutSessionResponse(
        checkout_url=url,
        tla_id=tla_id,
        amount_cents=get_settings().match_fee_cents,
    )


@router.post("/webhook", response_model=WebhookResponse)
async def stripe_webhook(
    request: Request,
    service: TLAService = Depends(get_tla_service),
):
    """Apply confirmed match-fee payments. Redelivery of a paid event is a no-op."""
    payload = await request.body()
    signature = request.headers.get("stripe-signature", "")
    try:
        event = construct_webhook_event(payload, signature)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("Rejected Stripe webhook: %s", e)
        raise ValidationError("Invalid webhook signature or payload") from e

    if event["type"] != "checkout.session.completed":
        return WebhookResponse(applied=False)

    session = event["data"]["object"]
    metadata = session.get("metadata") or {}
    if metadata.get("type") != MATCH_FEE_METADATA_TYPE or not metadata.get("tla_id"):
        return WebhookResponse(applied=False)

    tla_id = metadata["tla_id"]
    payment_ref = session.get("payment_intent") or session.get("id")
    try:
        await service.mark_match_fee_paid(tla_id, payment_ref=payment_ref)
    except InvalidTransitionError as e:
        if e.reason == TransitionRejection.ALREADY_PAID:
            logger.info("Match fee for TLA %s already recorded, ignoring redelivery", tla_id)
        else:
            logger.error("Paid match fee could not be applied to TLA %s: %s", tla_id, e.message)
        return WebhookResponse(applied=False)
    except NotFound:
        logger.error("Match fee webhook for unknown TLA %s", tla_id)
        return WebhookResponse(applied=False)

    return WebhookResponse(applied=True)
