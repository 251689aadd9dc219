"""TLA service: runs state-machine transitions against the store.

For every action: load the record, resolve the caller's role on it, let
the pure state machine compute the new record and its events, persist it
under the caller's expected version, then dispatch notifications. A
dispatch failure never undoes the committed transition.
"""

import logging
import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Callable, Optional

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from xtrafleet.app.config import get_settings
from xtrafleet.domain.enums import Availability, InsuranceOption, ProfileStatus, UserRole
from xtrafleet.domain.errors import Forbidden, NotFound, ValidationError
from xtrafleet.domain.models import Driver, Fleet, User
from xtrafleet.domain.records import (
    DriverSnapshot,
    PartySnapshot,
    PaymentTerms,
    TLARecord,
    TripDetails,
)
from xtrafleet.infra.tla_repository import TLARepository
from xtrafleet.services.compliance import evaluate_driver_compliance
from xtrafleet.services.notification_dispatcher import NotificationDispatcher
from xtrafleet.services.payment_service import MATCH_FEE_METADATA_TYPE, PaymentProcessor
from xtrafleet.services.tla_state_machine import ActorContext, TLAStateMachine, Transition

logger = logging.getLogger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def party_snapshot(fleet: Fleet, owner_user_id: str) -> PartySnapshot:
    """Freeze a fleet's legal identity for the agreement."""
    address = ", ".join(
        part for part in (fleet.address, fleet.city, fleet.state, fleet.zip) if part
    )
    return PartySnapshot(
        fleet_id=fleet.id,
        owner_user_id=owner_user_id,
        legal_name=fleet.legal_name or fleet.company_name or "Unknown",
        address=address,
        dot_number=fleet.dot_number,
        mc_number=fleet.mc_number,
        contact_email=fleet.contact_email or "",
        phone=fleet.phone,
    )


def driver_snapshot(driver: Driver) -> DriverSnapshot:
    return DriverSnapshot(
        id=driver.id,
        user_id=driver.user_id,
        name=driver.name,
        cdl_number=driver.cdl_license,
        cdl_state=driver.cdl_state,
        medical_card_expiry=driver.medical_card_expiry,
    )


class TLAService:
    """Application service for Trip Lease Agreements."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher,
        *,
        machine: Optional[TLAStateMachine] = None,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.machine = machine or TLAStateMachine()
        self.repository = TLARepository(db)
        self.clock = clock

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    async def _driver_id_for_user(self, user: User) -> Optional[str]:
        if user.role != UserRole.DRIVER.value:
            return None
        result = await self.db.execute(select(Driver.id).where(Driver.user_id == user.id))
        return result.scalar_one_or_none()

    async def actor_for(self, record: TLARecord, user: User) -> ActorContext:
        return ActorContext.resolve(
            record,
            user_id=user.id,
            role=user.role,
            fleet_id=user.fleet_id,
            driver_id=await self._driver_id_for_user(user),
            name=user.name,
            email=user.email,
        )

    async def get_for_user(self, tla_id: str, user: User) -> tuple[TLARecord, ActorContext]:
        """Load a TLA the user is allowed to see."""
        record = await self.repository.get(tla_id)
        actor = await self.actor_for(record, user)
        if not (actor.is_involved or actor.is_driver or actor.is_admin):
            raise Forbidden("You are not a party to this agreement.")
        return record, actor

    async def list_for_user(self, user: User, status: Optional[str] = None) -> list[TLARecord]:
        if user.role == UserRole.DRIVER.value:
            driver_id = await self._driver_id_for_user(user)
            return await self.repository.list_for_driver(driver_id) if driver_id else []
        if not user.fleet_id:
            return []
        return await self.repository.list_for_fleet(user.fleet_id, status)

    async def _fleet_owner_id(self, fleet_id: str) -> str:
        result = await self.db.execute(
            select(User.id)
            .where(User.fleet_id == fleet_id, User.role == UserRole.FLEET.value)
            .order_by(User.created_at)
            .limit(1)
        )
        owner_id = result.scalar_one_or_none()
        if owner_id is None:
            raise NotFound(f"Fleet {fleet_id} has no account holder")
        return owner_id

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    async def create_tla(
        self,
        user: User,
        *,
        lessee_fleet_id: str,
        driver_id: str,
        trip: TripDetails,
        amount: Decimal,
        due_date: Optional[datetime] = None,
        match_id: Optional[str] = None,
    ) -> TLARecord:
        """Create a draft TLA when the driver-owning fleet accepts a match."""
        if user.role != UserRole.FLEET.value or not user.fleet_id:
            raise Forbidden("Only a fleet can create a trip lease agreement.")
        if lessee_fleet_id == user.fleet_id:
            raise ValidationError(
                "A fleet cannot lease a driver to itself.",
                field_errors={"lessee_fleet_id": "must be a different fleet"},
            )
        if amount <= 0:
            raise ValidationError("Payment amount must be positive.", field_errors={"amount": "must be > 0"})

        lessor_fleet = await self.db.get(Fleet, user.fleet_id)
        lessee_fleet = await self.db.get(Fleet, lessee_fleet_id)
        if lessor_fleet is None:
            raise NotFound(f"Fleet {user.fleet_id} not found")
        if lessee_fleet is None:
            raise NotFound(f"Fleet {lessee_fleet_id} not found")

        driver = await self.db.get(Driver, driver_id)
        if driver is None or driver.fleet_id != lessor_fleet.id:
            raise NotFound(f"Driver {driver_id} not found in your fleet")

        now = self.clock()
        if driver.profile_status != ProfileStatus.CONFIRMED.value:
            raise ValidationError(
                "Driver profile must be confirmed before leasing.",
                field_errors={"driver_id": f"profile is {driver.profile_status}"},
            )
        compliance = evaluate_driver_compliance(
            driver, now, get_settings().compliance_warning_days
        )
        if not compliance.is_eligible:
            problems = ", ".join(f"{f.label} ({f.issue.value})" for f in compliance.findings)
            raise ValidationError(
                f"Driver is not compliant: {problems}",
                field_errors={"driver_id": "compliance status is Red"},
            )

        record = TLARecord(
            id=str(uuid.uuid4()),
            match_id=match_id,
            lessor=party_snapshot(lessor_fleet, user.id),
            lessee=party_snapshot(lessee_fleet, await self._fleet_owner_id(lessee_fleet.id)),
            driver=driver_snapshot(driver),
            trip=trip,
            payment=PaymentTerms(amount=amount, due_date=due_date or trip.end_date),
            created_at=now,
            updated_at=now,
        )
        return await self.repository.add(record)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    async def _apply(
        self,
        tla_id: str,
        user: User,
        expected_version: int,
        step: Callable[[TLARecord, ActorContext], Transition],
    ) -> Transition:
        record = await self.repository.get(tla_id)
        actor = await self.actor_for(record, user)
        transitions: list[Transition] = []

        def mutator(current: TLARecord) -> TLARecord:
            transition = step(current, actor)
            transitions.append(transition)
            return transition.record

        await self.repository.update_if(tla_id, expected_version, mutator)
        transition = transitions[0]
        logger.info(
            "TLA %s: %s by %s, %s -> %s (v%d)",
            tla_id, transition.action.value, user.id,
            transition.from_status.value, transition.to_status.value, transition.record.version,
        )
        await self.dispatcher.dispatch_tla_events(transition.record, transition.events)
        return transition

    async def sign(
        self,
        tla_id: str,
        user: User,
        *,
        expected_version: int,
        signature_name: str,
        consent_to_esign: bool,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        insurance_option: Optional[InsuranceOption] = None,
    ) -> TLARecord:
        now = self.clock()
        transition = await self._apply(
            tla_id,
            user,
            expected_version,
            lambda record, actor: self.machine.sign(
                record,
                actor,
                signature_name=signature_name,
                now=now,
                consent_to_esign=consent_to_esign,
                ip_address=ip_address,
                user_agent=user_agent,
                insurance_option=insurance_option,
            ),
        )
        return transition.record

    async def start_trip(self, tla_id: str, user: User, *, expected_version: int) -> TLARecord:
        now = self.clock()
        transition = await self._apply(
            tla_id,
            user,
            expected_version,
            lambda record, actor: self.machine.start_trip(record, actor, now=now),
        )
        await self._set_driver_availability(transition.record.driver.id, Availability.ON_TRIP)
        return transition.record

    async def end_trip(self, tla_id: str, user: User, *, expected_version: int) -> TLARecord:
        now = self.clock()
        transition = await self._apply(
            tla_id,
            user,
            expected_version,
            lambda record, actor: self.machine.end_trip(record, actor, now=now),
        )
        await self._set_driver_availability(transition.record.driver.id, Availability.AVAILABLE)
        return transition.record

    async def void(self, tla_id: str, user: User, *, expected_version: int, reason: str) -> TLARecord:
        now = self.clock()
        transition = await self._apply(
            tla_id,
            user,
            expected_version,
            lambda record, actor: self.machine.void(record, actor, reason=reason, now=now),
        )
        return transition.record

    async def _set_driver_availability(self, driver_id: str, availability: Availability) -> None:
        """Best-effort; the TLA transition is already committed.

        Availability follows the trip rather than a caller's read, so the
        write is unconditional, but it still bumps the driver's version so a
        profile edit based on the earlier row gets a conflict.
        """
        try:
            await self.db.execute(
                update(Driver)
                .where(Driver.id == driver_id)
                .values(availability=availability.value, version=Driver.version + 1)
                .execution_options(synchronize_session=False)
            )
            await self.db.commit()
        except Exception:
            logger.exception("Could not update availability of driver %s", driver_id)
            await self.db.rollback()

    # ------------------------------------------------------------------
    # Match fee
    # ------------------------------------------------------------------

    async def create_match_fee_session(
        self,
        tla_id: str,
        user: User,
        processor: PaymentProcessor,
    ) -> str:
        """Open a checkout session for the lessee. No state changes here."""
        record = await self.repository.get(tla_id)
        actor = await self.actor_for(record, user)
        self.machine.ensure_match_fee_payable(record, actor)
        return await processor.create_payment_session(
            user.fleet_id,
            get_settings().match_fee_cents,
            {
                "type": MATCH_FEE_METADATA_TYPE,
                "tla_id": record.id,
                "match_id": record.match_id or "",
                "load_owner_id": user.id,
            },
        )

    async def mark_match_fee_paid(self, tla_id: str, *, payment_ref: Optional[str]) -> TLARecord:
        """Apply the processor's payment confirmation."""
        record = await self.repository.get(tla_id)
        now = self.clock()
        transitions: list[Transition] = []

        def mutator(current: TLARecord) -> TLARecord:
            transition = self.machine.mark_match_fee_paid(current, payment_ref=payment_ref, now=now)
            transitions.append(transition)
            return transition.record

        updated = await self.repository.update_if(tla_id, record.version, mutator)
        await self.dispatcher.dispatch_tla_events(updated, transitions[0].events)
        return updated
