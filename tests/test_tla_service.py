"""Integration tests for TLAService: transitions against the store plus dispatch."""

from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select

from xtrafleet.domain.enums import (
    Availability,
    InsuranceOption,
    NotificationTemplate,
    TLAStatus,
    TransitionRejection,
)
from xtrafleet.domain.errors import (
    Conflict,
    ExternalServiceError,
    Forbidden,
    NotFound,
    OutOfOrder,
    ValidationError,
    VersionConflict,
)
from xtrafleet.domain.models import Driver, Notification
from xtrafleet.domain.records import TripDetails
from xtrafleet.services.tla_service import TLAService
from xtrafleet.services.tla_state_machine import LESSOR_MUST_SIGN_FIRST

from conftest import NOW

T = NotificationTemplate


class FakeProcessor:
    def __init__(self, url="https://checkout.stripe.test/c/pay_1", error=None):
        self.url = url
        self.error = error
        self.calls = []

    async def create_payment_session(self, customer_ref, amount_cents, metadata):
        self.calls.append((customer_ref, amount_cents, metadata))
        if self.error:
            raise self.error
        return self.url


@pytest.fixture
def service(db_session, dispatcher, clock):
    return TLAService(db_session, dispatcher, clock=clock)


def _trip():
    return TripDetails(
        origin="Dallas, TX",
        destination="Memphis, TN",
        cargo="Paper rolls",
        weight=38000,
        start_date=NOW + timedelta(days=2),
        end_date=NOW + timedelta(days=3),
    )


# ---------------------------------------------------------------------------
# Creation
# ---------------------------------------------------------------------------


class TestCreateTLA:

    async def test_lessor_creates_draft_with_snapshots(self, service, parties):
        record = await service.create_tla(
            parties.lessor,
            lessee_fleet_id=parties.lessee_fleet.id,
            driver_id=parties.driver.id,
            trip=_trip(),
            amount=Decimal("2100.00"),
            match_id="match-77",
        )

        assert record.status == TLAStatus.DRAFT
        assert record.version == 1
        assert record.match_id == "match-77"
        assert record.lessor.legal_name == "Alpha Transport LLC"
        assert record.lessor.address == "1 Depot Rd, Dallas, TX, 75201"
        assert record.lessor.owner_user_id == parties.lessor.id
        assert record.lessee.owner_user_id == parties.lessee.id
        assert record.driver.cdl_number == "D1234567"
        assert record.payment.due_date == record.trip.end_date
        assert not record.payment.match_fee_paid
        assert record.insurance.option is None

    async def test_snapshot_survives_profile_change(self, db_session, service, parties):
        record = await service.create_tla(
            parties.lessor,
            lessee_fleet_id=parties.lessee_fleet.id,
            driver_id=parties.driver.id,
            trip=_trip(),
            amount=Decimal("500"),
        )
        parties.lessor_fleet.legal_name = "Renamed Carrier Co"
        await db_session.commit()

        reloaded, _ = await service.get_for_user(record.id, parties.lessor)
        assert reloaded.lessor.legal_name == "Alpha Transport LLC"

    async def test_cannot_lease_to_own_fleet(self, service, parties):
        with pytest.raises(ValidationError):
            await service.create_tla(
                parties.lessor,
                lessee_fleet_id=parties.lessor_fleet.id,
                driver_id=parties.driver.id,
                trip=_trip(),
                amount=Decimal("500"),
            )

    async def test_driver_must_belong_to_lessor(self, service, parties):
        with pytest.raises(NotFound):
            await service.create_tla(
                parties.lessee,
                lessee_fleet_id=parties.lessor_fleet.id,
                driver_id=parties.driver.id,
                trip=_trip(),
                amount=Decimal("500"),
            )

    async def test_driver_users_cannot_create(self, service, parties):
        with pytest.raises(Forbidden):
            await service.create_tla(
                parties.driver_user,
                lessee_fleet_id=parties.lessee_fleet.id,
                driver_id=parties.driver.id,
                trip=_trip(),
                amount=Decimal("500"),
            )

    async def test_unconfirmed_driver_rejected(self, service, parties, make_driver):
        driver, _ = await make_driver(parties.lessor_fleet, profile_status="pending_confirmation")
        with pytest.raises(ValidationError) as excinfo:
            await service.create_tla(
                parties.lessor,
                lessee_fleet_id=parties.lessee_fleet.id,
                driver_id=driver.id,
                trip=_trip(),
                amount=Decimal("500"),
            )
        assert "confirmed" in excinfo.value.message

    async def test_red_driver_rejected(self, service, parties, make_driver):
        driver, _ = await make_driver(
            parties.lessor_fleet, medical_card_expiry=NOW.date() - timedelta(days=1)
        )
        with pytest.raises(ValidationError) as excinfo:
            await service.create_tla(
                parties.lessor,
                lessee_fleet_id=parties.lessee_fleet.id,
                driver_id=driver.id,
                trip=_trip(),
                amount=Decimal("500"),
            )
        assert "Medical Card" in excinfo.value.message

    async def test_yellow_driver_is_eligible(self, service, parties, make_driver):
        driver, _ = await make_driver(
            parties.lessor_fleet, insurance_expiry=NOW.date() + timedelta(days=10)
        )
        record = await service.create_tla(
            parties.lessor,
            lessee_fleet_id=parties.lessee_fleet.id,
            driver_id=driver.id,
            trip=_trip(),
            amount=Decimal("500"),
        )
        assert record.status == TLAStatus.DRAFT


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


class TestLifecycle:

    async def test_full_lifecycle(self, db_session, service, parties, make_tla, sender, clock):
        record = await make_tla("draft")

        record = await service.sign(
            record.id, parties.lessor,
            expected_version=1, signature_name="Alice Alpha", consent_to_esign=True,
            ip_address="198.51.100.4", user_agent="pytest",
        )
        assert record.status == TLAStatus.PENDING_LESSEE
        assert sender.recipients(T.TLA_READY) == ["owner@bravofreight.test"]

        record = await service.sign(
            record.id, parties.lessee,
            expected_version=record.version, signature_name="Bob Bravo", consent_to_esign=True,
            insurance_option=InsuranceOption.TRIP_COVERAGE,
        )
        assert record.status == TLAStatus.SIGNED
        assert sorted(sender.recipients(T.TLA_SIGNED)) == [
            "owner@alphatransport.test",
            "owner@bravofreight.test",
        ]

        with pytest.raises(OutOfOrder) as excinfo:
            await service.start_trip(record.id, parties.driver_user, expected_version=record.version)
        assert excinfo.value.reason == TransitionRejection.PAYMENT_REQUIRED

        record = await service.mark_match_fee_paid(record.id, payment_ref="pi_3Abc")
        assert record.payment.match_fee_paid
        assert T.MATCH_FEE_PAID in sender.templates()

        record = await service.start_trip(record.id, parties.driver_user, expected_version=record.version)
        assert record.status == TLAStatus.IN_PROGRESS
        assert record.trip_tracking.started_by == parties.driver_user.id
        driver = await db_session.get(Driver, record.driver.id, populate_existing=True)
        assert driver.availability == Availability.ON_TRIP.value
        assert driver.version == 2

        clock.advance(minutes=75)
        record = await service.end_trip(record.id, parties.lessor, expected_version=record.version)
        assert record.status == TLAStatus.COMPLETED
        assert record.trip_tracking.duration_minutes == 75
        await db_session.refresh(driver)
        assert driver.availability == Availability.AVAILABLE.value
        assert driver.version == 3

        completed = [ctx for t, _, ctx in sender.sent if t == T.TRIP_COMPLETED]
        assert completed and completed[0]["trip_duration"] == "1 hour 15 min"
        assert record.version == 6

    async def test_lessee_signing_first_is_rejected_without_side_effects(
        self, service, parties, make_tla, sender
    ):
        record = await make_tla("draft")
        with pytest.raises(OutOfOrder) as excinfo:
            await service.sign(
                record.id, parties.lessee,
                expected_version=1, signature_name="Bob", consent_to_esign=True,
                insurance_option=InsuranceOption.EXISTING_POLICY,
            )
        assert excinfo.value.message == LESSOR_MUST_SIGN_FIRST
        assert sender.sent == []
        unchanged, _ = await service.get_for_user(record.id, parties.lessee)
        assert unchanged.version == 1
        assert unchanged.lessee_signature is None

    async def test_stale_version_is_conflict(self, service, parties, make_tla, sender):
        record = await make_tla("draft")
        await service.sign(
            record.id, parties.lessor,
            expected_version=1, signature_name="Alice", consent_to_esign=True,
        )
        sender.sent.clear()

        with pytest.raises(VersionConflict):
            await service.void(record.id, parties.lessee, expected_version=1, reason="changed plans")
        assert sender.sent == []

        current, _ = await service.get_for_user(record.id, parties.lessee)
        assert current.status == TLAStatus.PENDING_LESSEE

    async def test_notification_failure_keeps_transition(
        self, db_session, service, parties, make_tla, sender
    ):
        sender.raise_error = RuntimeError("SMTP down")
        record = await make_tla("draft")

        signed = await service.sign(
            record.id, parties.lessor,
            expected_version=1, signature_name="Alice", consent_to_esign=True,
        )

        assert signed.status == TLAStatus.PENDING_LESSEE
        stored, _ = await service.get_for_user(record.id, parties.lessor)
        assert stored.version == 2
        rows = (await db_session.execute(select(Notification))).scalars().all()
        assert len(rows) == 1
        assert rows[0].email_sent is False
        assert "SMTP down" in rows[0].email_error

    async def test_admin_can_void(self, service, make_tla, make_admin, sender):
        record = await make_tla("signed")
        admin = await make_admin()
        voided = await service.void(record.id, admin, expected_version=record.version, reason="Duplicate")
        assert voided.status == TLAStatus.VOIDED
        assert voided.voided_by == admin.id
        assert len(sender.recipients(T.TLA_VOIDED)) == 2


class TestAccess:

    async def test_unrelated_fleet_cannot_read(self, service, make_tla, make_fleet):
        record = await make_tla()
        _, outsider = await make_fleet("Charlie Cartage")
        with pytest.raises(Forbidden):
            await service.get_for_user(record.id, outsider)

    async def test_driver_sees_own_tla(self, service, parties, make_tla):
        record = await make_tla()
        loaded, actor = await service.get_for_user(record.id, parties.driver_user)
        assert loaded.id == record.id
        assert actor.is_driver and actor.can_control_trip

    async def test_list_for_each_role(self, service, parties, make_tla):
        record = await make_tla()
        for user in (parties.lessor, parties.lessee, parties.driver_user):
            assert [r.id for r in await service.list_for_user(user)] == [record.id]


# ---------------------------------------------------------------------------
# Match fee
# ---------------------------------------------------------------------------


class TestMatchFee:

    async def test_session_created_for_lessee(self, service, parties, make_tla):
        record = await make_tla("signed")
        processor = FakeProcessor()

        url = await service.create_match_fee_session(record.id, parties.lessee, processor)

        assert url == processor.url
        customer_ref, amount_cents, metadata = processor.calls[0]
        assert customer_ref == parties.lessee_fleet.id
        assert amount_cents == 2500
        assert metadata["type"] == "match_fee"
        assert metadata["tla_id"] == record.id

    async def test_lessor_cannot_pay(self, service, parties, make_tla):
        record = await make_tla("signed")
        processor = FakeProcessor()
        with pytest.raises(Forbidden):
            await service.create_match_fee_session(record.id, parties.lessor, processor)
        assert processor.calls == []

    async def test_processor_failure_changes_nothing(self, service, parties, make_tla):
        record = await make_tla("signed")
        processor = FakeProcessor(error=ExternalServiceError("stripe down"))
        with pytest.raises(ExternalServiceError):
            await service.create_match_fee_session(record.id, parties.lessee, processor)
        current, _ = await service.get_for_user(record.id, parties.lessee)
        assert current.version == record.version
        assert not current.payment.match_fee_paid

    async def test_second_confirmation_is_conflict(self, service, make_tla):
        record = await make_tla("signed")
        await service.mark_match_fee_paid(record.id, payment_ref="pi_1")
        with pytest.raises(Conflict) as excinfo:
            await service.mark_match_fee_paid(record.id, payment_ref="pi_1")
        assert excinfo.value.reason == TransitionRejection.ALREADY_PAID
