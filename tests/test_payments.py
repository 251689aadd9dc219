"""Tests for the match-fee checkout and the Stripe webhook."""

import hashlib
import hmac
import json
import time

import pytest

from xtrafleet.app.config import get_settings
from xtrafleet.app.dependencies import get_payment_processor, get_tla_service
from xtrafleet.app.routes.payments import router
from xtrafleet.domain.enums import NotificationTemplate
from xtrafleet.domain.errors import ExternalServiceError
from xtrafleet.services.payment_service import StripePaymentProcessor, construct_webhook_event
from xtrafleet.services.tla_service import TLAService

WEBHOOK_SECRET = "whsec_test_secret"


class FakeProcessor:
    def __init__(self):
        self.calls = []

    async def create_payment_session(self, customer_ref, amount_cents, metadata):
        self.calls.append((customer_ref, amount_cents, metadata))
        return f"https://checkout.stripe.test/{metadata['tla_id']}"


@pytest.fixture
def service(db_session, dispatcher, clock):
    return TLAService(db_session, dispatcher, clock=clock)


@pytest.fixture
def processor():
    return FakeProcessor()


@pytest.fixture
def client(build_client, service, processor, monkeypatch):
    monkeypatch.setattr(get_settings(), "stripe_webhook_secret", WEBHOOK_SECRET)
    return build_client(
        router,
        overrides={
            get_tla_service: lambda: service,
            get_payment_processor: lambda: processor,
        },
    )


def _signed(event: dict, secret: str = WEBHOOK_SECRET) -> tuple[bytes, dict[str, str]]:
    """Serialize an event and sign it the way Stripe does."""
    payload = json.dumps(event).encode()
    timestamp = int(time.time())
    digest = hmac.new(
        secret.encode(), f"{timestamp}.{payload.decode()}".encode(), hashlib.sha256
    ).hexdigest()
    return payload, {"stripe-signature": f"t={timestamp},v1={digest}", "content-type": "application/json"}


def _checkout_completed(tla_id: str, fee_type: str = "match_fee") -> dict:
    return {
        "id": "evt_1",
        "object": "event",
        "type": "checkout.session.completed",
        "data": {
            "object": {
                "id": "cs_test_1",
                "object": "checkout.session",
                "payment_intent": "pi_test_1",
                "metadata": {"type": fee_type, "tla_id": tla_id},
            }
        },
    }


class TestCheckoutSession:

    async def test_lessee_gets_checkout_url(self, client, processor, parties, make_tla, auth_headers):
        record = await make_tla("signed")

        resp = await client.post(
            f"/api/payments/match-fee/{record.id}", headers=auth_headers(parties.lessee)
        )

        assert resp.status_code == 200
        assert resp.json() == {
            "checkout_url": f"https://checkout.stripe.test/{record.id}",
            "tla_id": record.id,
            "amount_cents": 2500,
        }
        assert processor.calls[0][2]["type"] == "match_fee"

    async def test_unsigned_tla_cannot_be_paid(self, client, processor, parties, make_tla, auth_headers):
        record = await make_tla("pending_lessee")
        resp = await client.post(
            f"/api/payments/match-fee/{record.id}", headers=auth_headers(parties.lessee)
        )
        assert resp.status_code == 409
        assert resp.json()["code"] == "out_of_order"
        assert processor.calls == []

    async def test_stripe_not_configured(self):
        with pytest.raises(ExternalServiceError):
            await StripePaymentProcessor(api_key="").create_payment_session("fleet-1", 2500, {})


class TestWebhook:

    async def test_completed_checkout_marks_fee_paid(
        self, client, service, parties, make_tla, sender
    ):
        record = await make_tla("signed")
        payload, headers = _signed(_checkout_completed(record.id))

        resp = await client.post("/api/payments/webhook", content=payload, headers=headers)

        assert resp.status_code == 200
        assert resp.json() == {"received": True, "applied": True}
        updated, _ = await service.get_for_user(record.id, parties.lessee)
        assert updated.payment.match_fee_paid
        assert updated.payment.match_fee_payment_ref == "pi_test_1"
        assert updated.version == record.version + 1
        assert NotificationTemplate.MATCH_FEE_PAID in sender.templates()

    async def test_redelivery_is_a_no_op(self, client, service, parties, make_tla):
        record = await make_tla("signed")
        payload, headers = _signed(_checkout_completed(record.id))

        first = await client.post("/api/payments/webhook", content=payload, headers=headers)
        second = await client.post("/api/payments/webhook", content=payload, headers=headers)

        assert first.json()["applied"] is True
        assert second.status_code == 200
        assert second.json()["applied"] is False
        current, _ = await service.get_for_user(record.id, parties.lessee)
        assert current.version == record.version + 1

    async def test_bad_signature_is_rejected(self, client, service, parties, make_tla):
        record = await make_tla("signed")
        payload, headers = _signed(_checkout_completed(record.id), secret="whsec_wrong")

        resp = await client.post("/api/payments/webhook", content=payload, headers=headers)

        assert resp.status_code == 422
        current, _ = await service.get_for_user(record.id, parties.lessee)
        assert not current.payment.match_fee_paid

    async def test_other_events_are_ignored(self, client, make_tla):
        record = await make_tla("signed")
        event = _checkout_completed(record.id)
        event["type"] = "payment_intent.created"
        payload, headers = _signed(event)

        resp = await client.post("/api/payments/webhook", content=payload, headers=headers)
        assert resp.json() == {"received": True, "applied": False}

    async def test_other_checkout_types_are_ignored(self, client, make_tla):
        record = await make_tla("signed")
        payload, headers = _signed(_checkout_completed(record.id, fee_type="subscription"))

        resp = await client.post("/api/payments/webhook", content=payload, headers=headers)
        assert resp.json()["applied"] is False

    async def test_unknown_tla_is_acknowledged(self, client, parties):
        payload, headers = _signed(_checkout_completed("missing-tla"))
        resp = await client.post("/api/payments/webhook", content=payload, headers=headers)
        assert resp.status_code == 200
        assert resp.json()["applied"] is False


def test_unconfigured_secret_rejects_everything():
    payload, headers = _signed({"type": "checkout.session.completed"}, secret="")
    with pytest.raises(ValueError):
        construct_webhook_event(payload, headers["stripe-signature"], secret="")
