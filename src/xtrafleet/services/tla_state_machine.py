"""TLA state machine: validates actions and computes the resulting record.

Lifecycle:
    draft / pending_lessor --lessor signs--> pending_lessee
    pending_lessee --lessee signs--> signed
    signed --lessor or driver starts trip (match fee paid)--> in_progress
    in_progress --lessor or driver ends trip--> completed
    any non-terminal --admin or party voids--> voided

The lessor must sign before the lessee. Only the lessor fleet or the
driver control the trip; the lessee signs and pays.

Everything here is pure. Each accepted action returns a ``Transition``
holding the new record (version + 1) and the events to dispatch; each
refused action raises ``InvalidTransitionError`` with a typed reason.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Optional

from xtrafleet.domain.enums import (
    InsuranceOption,
    PartyRole,
    TLAAction,
    TLAEventType,
    TLAStatus,
    TransitionRejection,
    UserRole,
)
from xtrafleet.domain.errors import InvalidTransitionError
from xtrafleet.domain.records import InsuranceAttestation, Signature, TLARecord, TripTracking

logger = logging.getLogger(__name__)

S = TLAStatus
R = TransitionRejection

TERMINAL_STATES: set[TLAStatus] = {S.COMPLETED, S.VOIDED}

# States in which the lessor's signature is the one outstanding
LESSOR_SIGNING_STATES: set[TLAStatus] = {S.DRAFT, S.PENDING_LESSOR}

LESSOR_MUST_SIGN_FIRST = "The driver owner (lessor) must sign this agreement first."
WAITING_FOR_LESSEE = "You have signed. Waiting for the load owner (lessee) to sign."
WAITING_FOR_LESSOR = "You have signed. Waiting for the driver owner (lessor) to sign."
WAITING_FOR_MATCH_FEE = (
    "Both parties have signed. Waiting for the load owner (lessee) to pay the match fee."
)

BOTH_PARTIES = (PartyRole.LESSOR, PartyRole.LESSEE)

Rejection = tuple[TransitionRejection, str]


@dataclass(frozen=True)
class ActorContext:
    """Who is acting on a TLA, resolved against the record's party snapshots."""

    user_id: str
    name: str = ""
    email: str = ""
    is_lessor: bool = False
    is_lessee: bool = False
    is_driver: bool = False
    is_admin: bool = False

    @property
    def is_involved(self) -> bool:
        return self.is_lessor or self.is_lessee

    @property
    def can_control_trip(self) -> bool:
        # The load owner has payment and signing rights only
        return self.is_lessor or self.is_driver

    @classmethod
    def resolve(
        cls,
        record: TLARecord,
        *,
        user_id: str,
        role: str,
        fleet_id: Optional[str] = None,
        driver_id: Optional[str] = None,
        name: str = "",
        email: str = "",
    ) -> "ActorContext":
        is_fleet = role == UserRole.FLEET.value
        is_driver = role == UserRole.DRIVER.value and (
            (driver_id is not None and driver_id == record.driver.id)
            or (record.driver.user_id is not None and record.driver.user_id == user_id)
        )
        return cls(
            user_id=user_id,
            name=name,
            email=email,
            is_lessor=is_fleet and fleet_id is not None and fleet_id == record.lessor.fleet_id,
            is_lessee=is_fleet and fleet_id is not None and fleet_id == record.lessee.fleet_id,
            is_driver=is_driver,
            is_admin=role == UserRole.ADMIN.value,
        )

    def display_name(self, record: TLARecord) -> str:
        if self.is_lessor:
            return record.lessor.legal_name
        if self.is_driver:
            return record.driver.name
        return self.name or self.email or "Unknown"


@dataclass(frozen=True)
class TLAEvent:
    """Something that happened to a TLA, addressed to one or both parties."""

    type: TLAEventType
    tla_id: str
    recipients: tuple[PartyRole, ...]
    data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Transition:
    action: TLAAction
    from_status: TLAStatus
    record: TLARecord
    events: tuple[TLAEvent, ...] = ()

    @property
    def to_status(self) -> TLAStatus:
        return self.record.status


def calculate_trip_duration(started_at: datetime, ended_at: datetime) -> int:
    """Whole minutes between start and end, never negative."""
    minutes = int((ended_at - started_at).total_seconds() // 60)
    return max(minutes, 0)


class TLAStateMachine:
    """Validates TLA actions and enforces signing order and trip gating."""

    # ------------------------------------------------------------------
    # Read-only queries
    # ------------------------------------------------------------------

    def signing_role(self, record: TLARecord, actor: ActorContext) -> Optional[PartyRole]:
        """Return the role the actor may sign as right now, or None."""
        if record.status in LESSOR_SIGNING_STATES:
            if actor.is_lessor and record.lessor_signature is None:
                return PartyRole.LESSOR
            return None

        if record.status == S.PENDING_LESSEE:
            if (
                actor.is_lessee
                and record.lessee_signature is None
                and record.lessor_signature is not None
            ):
                return PartyRole.LESSEE
            return None

        return None

    def cannot_sign_reason(self, record: TLARecord, actor: ActorContext) -> Optional[str]:
        rejection = self._check_sign(record, actor)
        return rejection[1] if rejection else None

    def waiting_message(self, record: TLARecord, actor: ActorContext) -> Optional[str]:
        if record.status == S.PENDING_LESSOR and actor.is_lessee and record.lessee_signature:
            return WAITING_FOR_LESSOR
        if record.status == S.PENDING_LESSEE and actor.is_lessor and record.lessor_signature:
            return WAITING_FOR_LESSEE
        if (
            record.status == S.SIGNED
            and not record.payment.match_fee_paid
            and actor.can_control_trip
        ):
            return WAITING_FOR_MATCH_FEE
        return None

    def allowed_actions(self, record: TLARecord, actor: ActorContext) -> list[TLAAction]:
        """Return the actions the actor can take on the record right now."""
        checks = {
            TLAAction.SIGN: self._check_sign,
            TLAAction.START_TRIP: self._check_start_trip,
            TLAAction.END_TRIP: self._check_end_trip,
            TLAAction.VOID: self._check_void,
            TLAAction.PAY_MATCH_FEE: self._check_pay_match_fee,
        }
        return [action for action, check in checks.items() if check(record, actor) is None]

    # ------------------------------------------------------------------
    # Guards: return (reason, message) when the action is refused
    # ------------------------------------------------------------------

    def _check_terminal(self, record: TLARecord) -> Optional[Rejection]:
        if record.status in TERMINAL_STATES:
            return (
                R.ALREADY_TERMINAL,
                f"This agreement is {record.status.value} and can no longer be changed.",
            )
        return None

    def _check_sign(self, record: TLARecord, actor: ActorContext) -> Optional[Rejection]:
        terminal = self._check_terminal(record)
        if terminal:
            return terminal

        if not actor.is_involved:
            return (
                R.WRONG_PARTY,
                "Only the driver owner (lessor) or the load owner (lessee) can sign this agreement.",
            )

        if self.signing_role(record, actor) is not None:
            return None

        if actor.is_lessee and record.lessor_signature is None:
            return (R.OUT_OF_ORDER, LESSOR_MUST_SIGN_FIRST)

        if record.fully_signed:
            return (R.ALREADY_SIGNED, "This agreement has already been signed by both parties.")

        if actor.is_lessor and record.lessor_signature is not None:
            return (R.ALREADY_SIGNED, "You have already signed. Waiting for the load owner (lessee) to sign.")

        if actor.is_lessee and record.lessee_signature is not None:
            return (R.ALREADY_SIGNED, "You have already signed this agreement.")

        return (R.OUT_OF_ORDER, "This agreement is not awaiting your signature.")

    def _check_start_trip(self, record: TLARecord, actor: ActorContext) -> Optional[Rejection]:
        terminal = self._check_terminal(record)
        if terminal:
            return terminal
        if not actor.can_control_trip:
            return (R.WRONG_PARTY, "Only the driver owner (lessor) or the driver can start the trip.")
        if record.status == S.IN_PROGRESS:
            return (R.OUT_OF_ORDER, "The trip has already started.")
        if record.status != S.SIGNED or not record.fully_signed:
            return (R.OUT_OF_ORDER, "Both parties must sign the agreement before the trip can start.")
        if not record.payment.match_fee_paid:
            return (R.PAYMENT_REQUIRED, "The match fee must be paid before the trip can start.")
        return None

    def _check_end_trip(self, record: TLARecord, actor: ActorContext) -> Optional[Rejection]:
        terminal = self._check_terminal(record)
        if terminal:
            return terminal
        if not actor.can_control_trip:
            return (R.WRONG_PARTY, "Only the driver owner (lessor) or the driver can end the trip.")
        tracking = record.trip_tracking
        if record.status != S.IN_PROGRESS or tracking is None or tracking.started_at is None:
            return (R.OUT_OF_ORDER, "Trip has not been started yet.")
        return None

    def _check_void(self, record: TLARecord, actor: ActorContext) -> Optional[Rejection]:
        terminal = self._check_terminal(record)
        if terminal:
            return terminal
        if not (actor.is_admin or actor.is_involved):
            return (R.WRONG_PARTY, "Only an administrator or a party to this agreement can void it.")
        return None

    def _check_match_fee(self, record: TLARecord) -> Optional[Rejection]:
        terminal = self._check_terminal(record)
        if terminal:
            return terminal
        if record.payment.match_fee_paid:
            return (R.ALREADY_PAID, "The match fee has already been paid.")
        if record.status != S.SIGNED:
            return (R.OUT_OF_ORDER, "The match fee can only be paid once both parties have signed.")
        return None

    def _check_pay_match_fee(self, record: TLARecord, actor: ActorContext) -> Optional[Rejection]:
        terminal = self._check_terminal(record)
        if terminal:
            return terminal
        if not actor.is_lessee:
            return (R.WRONG_PARTY, "Only the load owner (lessee) pays the match fee.")
        return self._check_match_fee(record)

    # ------------------------------------------------------------------
    # Transitions
    # ------------------------------------------------------------------

    def _reject(self, record: TLARecord, action: TLAAction, rejection: Rejection) -> InvalidTransitionError:
        reason, message = rejection
        logger.info("TLA %s: %s rejected (%s) in %s", record.id, action.value, reason.value, record.status.value)
        return InvalidTransitionError.for_reason(
            reason, message, action=action, current_status=record.status
        )

    def _advance(self, record: TLARecord, now: datetime, **changes: Any) -> TLARecord:
        return record.model_copy(
            update={"version": record.version + 1, "updated_at": now, **changes}
        )

    def sign(
        self,
        record: TLARecord,
        actor: ActorContext,
        *,
        signature_name: str,
        now: datetime,
        consent_to_esign: bool = True,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
        insurance_option: Optional[InsuranceOption] = None,
    ) -> Transition:
        """Sign as whichever party is currently due.

        The lessee's signature also records the insurance attestation;
        one must be supplied unless it was recorded earlier.
        """
        action = TLAAction.SIGN
        rejection = self._check_sign(record, actor)
        if rejection:
            raise self._reject(record, action, rejection)

        if not consent_to_esign:
            raise self._reject(record, action, (R.INVALID_INPUT, "Consent to electronic signature is required."))
        if not signature_name or not signature_name.strip():
            raise self._reject(record, action, (R.INVALID_INPUT, "A signature name is required."))

        role = self.signing_role(record, actor)
        signature = Signature(
            signed_by=actor.user_id,
            signed_by_name=signature_name.strip(),
            signed_by_role=role,
            signed_at=now,
            ip_address=ip_address,
            user_agent=user_agent,
            consent_to_esign=True,
        )

        if role == PartyRole.LESSOR:
            new_record = self._advance(
                record, now, lessor_signature=signature, status=S.PENDING_LESSEE
            )
            events = (
                TLAEvent(
                    TLAEventType.TLA_READY,
                    record.id,
                    (PartyRole.LESSEE,),
                    {"role": PartyRole.LESSEE.value},
                ),
            )
        else:
            insurance = record.insurance
            if insurance_option is not None:
                insurance = InsuranceAttestation(
                    option=insurance_option, confirmed_at=now, confirmed_by=actor.user_id
                )
            elif insurance.option is None:
                raise self._reject(
                    record, action, (R.INVALID_INPUT, "Select an insurance option before signing.")
                )
            new_record = self._advance(
                record,
                now,
                lessee_signature=signature,
                insurance=insurance,
                status=S.SIGNED,
                signed_at=now,
            )
            events = (TLAEvent(TLAEventType.TLA_SIGNED, record.id, BOTH_PARTIES),)

        logger.info(
            "TLA %s signed by %s (%s): %s -> %s",
            record.id, actor.user_id, role.value, record.status.value, new_record.status.value,
        )
        return Transition(action, record.status, new_record, events)

    def start_trip(self, record: TLARecord, actor: ActorContext, *, now: datetime) -> Transition:
        action = TLAAction.START_TRIP
        rejection = self._check_start_trip(record, actor)
        if rejection:
            raise self._reject(record, action, rejection)

        name = actor.display_name(record)
        tracking = TripTracking(started_at=now, started_by=actor.user_id, started_by_name=name)
        new_record = self._advance(record, now, status=S.IN_PROGRESS, trip_tracking=tracking)
        events = (
            TLAEvent(TLAEventType.TRIP_STARTED, record.id, BOTH_PARTIES, {"started_by_name": name}),
        )
        logger.info("TLA %s trip started by %s", record.id, actor.user_id)
        return Transition(action, record.status, new_record, events)

    def end_trip(self, record: TLARecord, actor: ActorContext, *, now: datetime) -> Transition:
        action = TLAAction.END_TRIP
        rejection = self._check_end_trip(record, actor)
        if rejection:
            raise self._reject(record, action, rejection)

        name = actor.display_name(record)
        duration = calculate_trip_duration(record.trip_tracking.started_at, now)
        tracking = record.trip_tracking.model_copy(
            update={
                "ended_at": now,
                "ended_by": actor.user_id,
                "ended_by_name": name,
                "duration_minutes": duration,
            }
        )
        new_record = self._advance(record, now, status=S.COMPLETED, trip_tracking=tracking)
        events = (
            TLAEvent(
                TLAEventType.TRIP_COMPLETED,
                record.id,
                BOTH_PARTIES,
                {"ended_by_name": name, "duration_minutes": duration},
            ),
        )
        logger.info("TLA %s trip completed by %s after %d min", record.id, actor.user_id, duration)
        return Transition(action, record.status, new_record, events)

    def void(
        self,
        record: TLARecord,
        actor: ActorContext,
        *,
        reason: str,
        now: datetime,
    ) -> Transition:
        action = TLAAction.VOID
        rejection = self._check_void(record, actor)
        if rejection:
            raise self._reject(record, action, rejection)
        if not reason or not reason.strip():
            raise self._reject(record, action, (R.INVALID_INPUT, "A reason is required to void an agreement."))

        new_record = self._advance(
            record,
            now,
            status=S.VOIDED,
            voided_at=now,
            voided_by=actor.user_id,
            voided_reason=reason.strip(),
        )
        events = (
            TLAEvent(TLAEventType.TLA_VOIDED, record.id, BOTH_PARTIES, {"reason": reason.strip()}),
        )
        logger.info("TLA %s voided by %s from %s", record.id, actor.user_id, record.status.value)
        return Transition(action, record.status, new_record, events)

    def ensure_match_fee_payable(self, record: TLARecord, actor: ActorContext) -> None:
        """Raise unless the actor may open a match-fee payment for this TLA."""
        rejection = self._check_pay_match_fee(record, actor)
        if rejection:
            raise self._reject(record, TLAAction.PAY_MATCH_FEE, rejection)

    def mark_match_fee_paid(
        self,
        record: TLARecord,
        *,
        payment_ref: Optional[str],
        now: datetime,
    ) -> Transition:
        """Flip ``match_fee_paid`` after the payment processor confirms the charge."""
        action = TLAAction.PAY_MATCH_FEE
        rejection = self._check_match_fee(record)
        if rejection:
            raise self._reject(record, action, rejection)

        payment = record.payment.model_copy(
            update={
                "match_fee_paid": True,
                "match_fee_paid_at": now,
                "match_fee_payment_ref": payment_ref,
            }
        )
        new_record = self._advance(record, now, payment=payment)
        events = (TLAEvent(TLAEventType.MATCH_FEE_PAID, record.id, BOTH_PARTIES),)
        logger.info("TLA %s match fee paid (%s)", record.id, payment_ref)
        return Transition(action, record.status, new_record, events)
