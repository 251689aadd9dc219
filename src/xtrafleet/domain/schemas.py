"""Pydantic v2 schemas for API request/response validation."""

from datetime import date, datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from xtrafleet.domain.enums import (
    ComplianceStatus,
    InsuranceOption,
    PartyRole,
    TLAAction,
    VehicleType,
)
from xtrafleet.domain.records import TLARecord, TripDetails


# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class FleetSignup(BaseModel):
    """Schema for registering a fleet owner."""

    email: str
    password: str = Field(min_length=8)
    name: str
    company_name: str
    phone: str | None = None
    dot_number: str | None = None
    mc_number: str | None = None


class UserLogin(BaseModel):
    """Schema for user login."""

    email: str
    password: str


class UserResponse(BaseModel):
    """Schema for user API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    name: str
    role: str
    phone: str | None = None
    fleet_id: str | None = None
    is_active: bool


class TokenResponse(BaseModel):
    """Schema for JWT token responses."""

    access_token: str
    token_type: str = "bearer"
    user: UserResponse


# ---------------------------------------------------------------------------
# Health
# ---------------------------------------------------------------------------


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    service: str


# ---------------------------------------------------------------------------
# Trip Lease Agreements
# ---------------------------------------------------------------------------


class TLACreate(BaseModel):
    """Lessor accepts a match and drafts the agreement."""

    lessee_fleet_id: str
    driver_id: str
    match_id: str | None = None
    trip: TripDetails
    amount: Decimal = Field(gt=0)
    due_date: datetime | None = None


class VersionedAction(BaseModel):
    expected_version: int = Field(ge=1)


class TLASign(VersionedAction):
    signature_name: str = Field(min_length=1)
    consent_to_esign: bool
    insurance_option: InsuranceOption | None = None


class TLAVoid(VersionedAction):
    reason: str = Field(min_length=1)


class TLAResponse(BaseModel):
    """TLA record plus what the requesting user can do with it."""

    tla: TLARecord
    user_name: str
    is_lessor: bool
    is_lessee: bool
    is_driver: bool
    is_admin: bool
    can_control_trip: bool
    signing_role: PartyRole | None = None
    cannot_sign_reason: str | None = None
    waiting_message: str | None = None
    allowed_actions: list[TLAAction] = []


class TLAListResponse(BaseModel):
    tlas: list[TLARecord]


class TLADocumentResponse(BaseModel):
    tla_id: str
    version: int
    text: str


# ---------------------------------------------------------------------------
# Driver onboarding
# ---------------------------------------------------------------------------


class InvitationCreate(BaseModel):
    email: str
    dqf_certified: bool = False


class InvitationResponse(BaseModel):
    """Invitation metadata. The token is only returned to the inviting fleet."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    email: str
    fleet_id: str
    status: str
    expires_at: datetime
    token: str | None = None


class InvitationValidation(BaseModel):
    valid: bool = True
    email: str
    fleet_name: str
    expires_at: datetime


class InvitationRedeem(BaseModel):
    """Driver account registration from an invitation link."""

    email: str
    password: str
    name: str = Field(min_length=1)


class DriverResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    fleet_id: str
    user_id: str | None = None
    name: str
    email: str | None = None
    phone: str | None = None
    location: str | None = None
    vehicle_type: str | None = None
    availability: str
    profile_status: str
    version: int
    cdl_license: str | None = None
    cdl_state: str | None = None
    cdl_expiry: date | None = None
    medical_card_expiry: date | None = None
    insurance_expiry: date | None = None
    motor_vehicle_record_number: str | None = None
    background_check_date: date | None = None
    pre_employment_screening_date: date | None = None
    drug_and_alcohol_screening_date: date | None = None
    cdl_document_url: str | None = None
    medical_card_url: str | None = None
    insurance_url: str | None = None
    mvr_url: str | None = None
    background_check_url: str | None = None
    pre_employment_screening_url: str | None = None
    drug_and_alcohol_screening_url: str | None = None


class RegistrationResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user: UserResponse
    driver: DriverResponse


class ConsentItem(BaseModel):
    consent_type: str
    accepted: bool


class DriverProfileSubmit(BaseModel):
    """Driver self-submitted CDL and compliance data."""

    name: str | None = None
    phone: str | None = None
    location: str | None = None
    vehicle_type: VehicleType | None = None
    cdl_license: str = Field(min_length=1)
    cdl_state: str | None = None
    cdl_expiry: date | None = None
    medical_card_expiry: date | None = None
    insurance_expiry: date | None = None
    motor_vehicle_record_number: str | None = None
    background_check_date: date | None = None
    pre_employment_screening_date: date | None = None
    drug_and_alcohol_screening_date: date | None = None
    consents: list[ConsentItem] = Field(min_length=1)


class DriverConfirmation(BaseModel):
    confirmed: bool


class ComplianceFindingResponse(BaseModel):
    label: str
    issue: str
    expires_on: date | None = None
    days_remaining: int | None = None


class ComplianceResponse(BaseModel):
    driver_id: str
    status: ComplianceStatus
    lease_eligible: bool
    findings: list[ComplianceFindingResponse]


class DocumentUploadResponse(BaseModel):
    driver_id: str
    kind: str
    url: str


# ---------------------------------------------------------------------------
# Payments
# ---------------------------------------------------------------------------


class CheckoutSessionResponse(BaseModel):
    checkout_url: str
    tla_id: str
    amount_cents: int


class WebhookResponse(BaseModel):
    received: bool = True
    applied: bool = False
