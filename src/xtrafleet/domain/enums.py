"""Domain enumerations for the XtraFleet leasing marketplace.

All enums use the (str, Enum) pattern to ensure JSON serialization compatibility.
"""

from enum import Enum


class UserRole(str, Enum):
    """Platform account type."""

    FLEET = "fleet"
    DRIVER = "driver"
    ADMIN = "admin"


# ---------------------------------------------------------------------------
# Trip Lease Agreement
# ---------------------------------------------------------------------------


class TLAStatus(str, Enum):
    """Lifecycle status of a Temporary Lease Agreement."""

    DRAFT = "draft"
    PENDING_LESSOR = "pending_lessor"
    PENDING_LESSEE = "pending_lessee"
    SIGNED = "signed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    VOIDED = "voided"


class PartyRole(str, Enum):
    """Signing party on a TLA."""

    LESSOR = "lessor"  # fleet supplying the driver
    LESSEE = "lessee"  # fleet supplying the load


class TLAAction(str, Enum):
    """Actions an actor can take on a TLA."""

    SIGN = "sign"
    START_TRIP = "start_trip"
    END_TRIP = "end_trip"
    VOID = "void"
    PAY_MATCH_FEE = "pay_match_fee"


class TransitionRejection(str, Enum):
    """Typed reason a TLA transition was refused."""

    WRONG_PARTY = "wrong_party"
    OUT_OF_ORDER = "out_of_order"
    ALREADY_SIGNED = "already_signed"
    PAYMENT_REQUIRED = "payment_required"
    ALREADY_TERMINAL = "already_terminal"
    ALREADY_PAID = "already_paid"
    INVALID_INPUT = "invalid_input"


class InsuranceOption(str, Enum):
    """Lessee's insurance attestation for the trip (recorded, never verified)."""

    EXISTING_POLICY = "existing_policy"
    TRIP_COVERAGE = "trip_coverage"


class TLAEventType(str, Enum):
    """Events emitted by accepted TLA transitions; each maps to a notification template."""

    TLA_READY = "tla_ready"
    TLA_SIGNED = "tla_signed"
    TRIP_STARTED = "trip_started"
    TRIP_COMPLETED = "trip_completed"
    TLA_VOIDED = "tla_voided"
    MATCH_FEE_PAID = "match_fee_paid"


# ---------------------------------------------------------------------------
# Drivers and onboarding
# ---------------------------------------------------------------------------


class ComplianceStatus(str, Enum):
    """Driver eligibility signal derived from document validity windows."""

    GREEN = "Green"
    YELLOW = "Yellow"
    RED = "Red"


class ComplianceItemKind(str, Enum):
    """How a compliance item is evaluated."""

    EXPIRY = "expiry"  # the value is an expiry date
    SCREENING = "screening"  # the value is a screening date, valid for one year
    FIELD = "field"  # presence alone satisfies the requirement


class ComplianceIssue(str, Enum):
    """Why a compliance item is not Green."""

    MISSING = "missing"
    INVALID_DATE = "invalid_date"
    EXPIRED = "expired"
    EXPIRING_SOON = "expiring_soon"


class ProfileStatus(str, Enum):
    """Driver profile review status, separate from compliance color."""

    INCOMPLETE = "incomplete"
    PENDING_CONFIRMATION = "pending_confirmation"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"


class InvitationStatus(str, Enum):
    """Driver invitation token status."""

    PENDING = "pending"
    USED = "used"


class Availability(str, Enum):
    """Driver availability."""

    AVAILABLE = "Available"
    ON_TRIP = "On-trip"
    OFF_DUTY = "Off-duty"


class VehicleType(str, Enum):
    """Equipment the driver is qualified on."""

    DRY_VAN = "Dry Van"
    REEFER = "Reefer"
    FLATBED = "Flatbed"


class DocumentKind(str, Enum):
    """Compliance documents a driver can upload."""

    CDL = "cdl"
    MEDICAL_CARD = "medical_card"
    INSURANCE = "insurance"
    MVR = "mvr"
    BACKGROUND_CHECK = "background_check"
    PRE_EMPLOYMENT_SCREENING = "pre_employment_screening"
    DRUG_AND_ALCOHOL_SCREENING = "drug_and_alcohol_screening"


class NotificationTemplate(str, Enum):
    """Email / in-app notification templates."""

    TLA_READY = "tla_ready"
    TLA_SIGNED = "tla_signed"
    TRIP_STARTED = "trip_started"
    TRIP_COMPLETED = "trip_completed"
    TLA_VOIDED = "tla_voided"
    MATCH_FEE_PAID = "match_fee_paid"
    DRIVER_INVITATION = "driver_invitation"
    DRIVER_REGISTERED = "driver_registered"
    DRIVER_PROFILE_SUBMITTED = "driver_profile_submitted"
    DRIVER_CONFIRMED = "driver_confirmed"
    DRIVER_REJECTED = "driver_rejected"
