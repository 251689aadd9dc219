"""Typed TLA record shapes.

A TLA carries snapshots of both parties and the driver captured when the
agreement is created, so the document stays historically accurate even
if a fleet or driver profile changes later. Records are immutable; the
state machine produces a new record per accepted transition.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict

from xtrafleet.domain.enums import InsuranceOption, PartyRole, TLAStatus


class _Record(BaseModel):
    model_config = ConfigDict(frozen=True)


class PartySnapshot(_Record):
    """Legal identity of a fleet at agreement time."""

    fleet_id: str
    owner_user_id: str
    legal_name: str
    address: str = ""
    dot_number: Optional[str] = None
    mc_number: Optional[str] = None
    contact_email: str = ""
    phone: Optional[str] = None


class DriverSnapshot(_Record):
    id: str
    user_id: Optional[str] = None
    name: str
    cdl_number: Optional[str] = None
    cdl_state: Optional[str] = None
    medical_card_expiry: Optional[date] = None


class TripDetails(_Record):
    origin: str
    destination: str
    cargo: str
    weight: float
    start_date: datetime
    end_date: Optional[datetime] = None


class PaymentTerms(_Record):
    """Agreed trip rate plus the platform match fee that gates trip start."""

    amount: Decimal
    due_date: Optional[datetime] = None
    match_fee_paid: bool = False
    match_fee_paid_at: Optional[datetime] = None
    match_fee_payment_ref: Optional[str] = None


class InsuranceAttestation(_Record):
    """Lessee's coverage attestation. Recorded as given, never verified."""

    option: Optional[InsuranceOption] = None
    confirmed_at: Optional[datetime] = None
    confirmed_by: Optional[str] = None


class Signature(_Record):
    """E-signature with its audit trail."""

    signed_by: str
    signed_by_name: str
    signed_by_role: PartyRole
    signed_at: datetime
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    consent_to_esign: bool = True


class TripTracking(_Record):
    started_at: Optional[datetime] = None
    started_by: Optional[str] = None
    started_by_name: Optional[str] = None
    ended_at: Optional[datetime] = None
    ended_by: Optional[str] = None
    ended_by_name: Optional[str] = None
    duration_minutes: Optional[int] = None


class TLARecord(_Record):
    """Temporary Lease Agreement."""

    id: str
    match_id: Optional[str] = None
    version: int = 1
    status: TLAStatus = TLAStatus.DRAFT

    lessor: PartySnapshot
    lessee: PartySnapshot
    driver: DriverSnapshot
    trip: TripDetails
    payment: PaymentTerms
    insurance: InsuranceAttestation = InsuranceAttestation()

    lessor_signature: Optional[Signature] = None
    lessee_signature: Optional[Signature] = None
    trip_tracking: Optional[TripTracking] = None

    created_at: datetime
    updated_at: Optional[datetime] = None
    signed_at: Optional[datetime] = None
    voided_at: Optional[datetime] = None
    voided_by: Optional[str] = None
    voided_reason: Optional[str] = None

    @property
    def fully_signed(self) -> bool:
        return self.lessor_signature is not None and self.lessee_signature is not None

    def party(self, role: PartyRole) -> PartySnapshot:
        return self.lessor if role == PartyRole.LESSOR else self.lessee
