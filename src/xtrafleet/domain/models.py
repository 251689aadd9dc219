"""SQLAlchemy ORM models for the XtraFleet platform.

All models use SQLite-compatible types:
- String(36) for UUID primary keys
- JSON for snapshot data (no JSONB)
- DateTime for timestamps, stored as naive UTC
"""

import uuid

from sqlalchemy import (
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    JSON,
    String,
    Text,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from xtrafleet.infra.database import Base


def _uuid() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Auth / User
# ---------------------------------------------------------------------------


class User(Base):
    """Platform user for authentication."""

    __tablename__ = "users"

    id = Column(String(36), primary_key=True, default=_uuid)
    email = Column(String(255), unique=True, nullable=False, index=True)
    password_hash = Column(String(255), nullable=False)
    name = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    role = Column(String(20), nullable=False, default="fleet")  # fleet, driver, admin
    is_active = Column(Boolean, default=True)
    created_at = Column(DateTime, default=func.now())
    last_login_at = Column(DateTime, nullable=True)
    fleet_id = Column(String(36), ForeignKey("fleets.id"), nullable=True)

    fleet = relationship("Fleet", back_populates="users", foreign_keys=[fleet_id])


class Fleet(Base):
    """Owner-operator company. Every fleet user belongs to exactly one fleet."""

    __tablename__ = "fleets"

    id = Column(String(36), primary_key=True, default=_uuid)
    company_name = Column(String(255), nullable=False)
    legal_name = Column(String(255), nullable=True)
    contact_email = Column(String(255), nullable=False)
    phone = Column(String(50), nullable=True)
    address = Column(String(500), nullable=True)
    city = Column(String(100), nullable=True)
    state = Column(String(50), nullable=True)
    zip = Column(String(20), nullable=True)
    dot_number = Column(String(50), nullable=True)
    mc_number = Column(String(50), nullable=True)
    created_at = Column(DateTime, default=func.now())

    users = relationship("User", back_populates="fleet", foreign_keys="User.fleet_id")
    drivers = relationship("Driver", back_populates="fleet")


# ---------------------------------------------------------------------------
# Drivers
# ---------------------------------------------------------------------------


class Driver(Base):
    """Driver profile owned by a fleet."""

    __tablename__ = "drivers"

    id = Column(String(36), primary_key=True, default=_uuid)
    fleet_id = Column(String(36), ForeignKey("fleets.id"), nullable=False, index=True)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, unique=True)
    invitation_id = Column(String(36), ForeignKey("driver_invitations.id"), nullable=True)

    name = Column(String(255), nullable=False)
    email = Column(String(255), nullable=True, index=True)
    phone = Column(String(50), nullable=True)
    location = Column(String(255), nullable=True)
    vehicle_type = Column(String(20), nullable=True)  # VehicleType
    availability = Column(String(20), nullable=False, default="Available")  # Availability

    # Review workflow (optimistically versioned)
    profile_status = Column(String(30), nullable=False, default="incomplete", index=True)
    version = Column(Integer, nullable=False, default=1)
    profile_submitted_at = Column(DateTime, nullable=True)
    confirmed_at = Column(DateTime, nullable=True)
    confirmed_by = Column(String(36), nullable=True)
    rejected_at = Column(DateTime, nullable=True)
    rejected_by = Column(String(36), nullable=True)

    # Compliance fields
    cdl_license = Column(String(50), nullable=True)
    cdl_state = Column(String(10), nullable=True)
    cdl_expiry = Column(Date, nullable=True)
    medical_card_expiry = Column(Date, nullable=True)
    insurance_expiry = Column(Date, nullable=True)
    motor_vehicle_record_number = Column(String(50), nullable=True)
    background_check_date = Column(Date, nullable=True)
    pre_employment_screening_date = Column(Date, nullable=True)
    drug_and_alcohol_screening_date = Column(Date, nullable=True)

    # Uploaded document URLs (bytes live in the object store)
    cdl_document_url = Column(String(500), nullable=True)
    medical_card_url = Column(String(500), nullable=True)
    insurance_url = Column(String(500), nullable=True)
    mvr_url = Column(String(500), nullable=True)
    background_check_url = Column(String(500), nullable=True)
    pre_employment_screening_url = Column(String(500), nullable=True)
    drug_and_alcohol_screening_url = Column(String(500), nullable=True)

    created_at = Column(DateTime, default=func.now())
    updated_at = Column(DateTime, default=func.now(), onupdate=func.now())

    fleet = relationship("Fleet", back_populates="drivers")
    consents = relationship("DriverConsent", back_populates="driver")


class DriverInvitation(Base):
    """One-time registration token sent by a fleet to a prospective driver."""

    __tablename__ = "driver_invitations"

    id = Column(String(36), primary_key=True, default=_uuid)
    token = Column(String(64), unique=True, nullable=False, index=True)
    email = Column(String(255), nullable=False, index=True)
    fleet_id = Column(String(36), ForeignKey("fleets.id"), nullable=False)
    invited_by = Column(String(36), ForeignKey("users.id"), nullable=False)

    # Fleet attests it maintains the driver's qualification file
    dqf_certified = Column(Boolean, nullable=False, default=False)
    dqf_certified_at = Column(DateTime, nullable=True)

    status = Column(String(20), nullable=False, default="pending")  # InvitationStatus
    version = Column(Integer, nullable=False, default=1)
    expires_at = Column(DateTime, nullable=False)
    used_at = Column(DateTime, nullable=True)
    driver_id = Column(String(36), nullable=True)
    created_at = Column(DateTime, default=func.now())


class DriverConsent(Base):
    """Audit record for one consent item accepted during profile submission."""

    __tablename__ = "driver_consents"

    id = Column(String(36), primary_key=True, default=_uuid)
    driver_id = Column(String(36), ForeignKey("drivers.id"), nullable=False, index=True)
    consent_type = Column(String(100), nullable=False)
    accepted = Column(Boolean, nullable=False, default=True)
    ip_address = Column(String(45), nullable=True)
    user_agent = Column(String(500), nullable=True)
    accepted_at = Column(DateTime, nullable=False)

    driver = relationship("Driver", back_populates="consents")


# ---------------------------------------------------------------------------
# Trip Lease Agreements
# ---------------------------------------------------------------------------


class TripLeaseAgreement(Base):
    """Persisted TLA document. Nested snapshots are JSON; see domain.records."""

    __tablename__ = "trip_lease_agreements"

    id = Column(String(36), primary_key=True, default=_uuid)
    match_id = Column(String(36), nullable=True, index=True)
    version = Column(Integer, nullable=False, default=1)
    status = Column(String(30), nullable=False, default="draft", index=True)

    # Denormalized for equality queries
    lessor_fleet_id = Column(String(36), ForeignKey("fleets.id"), nullable=False, index=True)
    lessee_fleet_id = Column(String(36), ForeignKey("fleets.id"), nullable=False, index=True)
    driver_id = Column(String(36), ForeignKey("drivers.id"), nullable=False, index=True)

    lessor = Column(JSON, nullable=False)
    lessee = Column(JSON, nullable=False)
    driver_snapshot = Column(JSON, nullable=False)
    trip = Column(JSON, nullable=False)
    payment = Column(JSON, nullable=False)
    insurance = Column(JSON, nullable=False, default=dict)
    lessor_signature = Column(JSON, nullable=True)
    lessee_signature = Column(JSON, nullable=True)
    trip_tracking = Column(JSON, nullable=True)

    created_at = Column(DateTime, nullable=False)
    updated_at = Column(DateTime, nullable=True)
    signed_at = Column(DateTime, nullable=True)
    voided_at = Column(DateTime, nullable=True)
    voided_by = Column(String(36), nullable=True)
    voided_reason = Column(Text, nullable=True)


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------


class Notification(Base):
    """In-app notification, also the delivery log for its email."""

    __tablename__ = "notifications"

    id = Column(String(36), primary_key=True, default=_uuid)
    user_id = Column(String(36), ForeignKey("users.id"), nullable=True, index=True)
    recipient_email = Column(String(255), nullable=False)
    template = Column(String(50), nullable=False)  # NotificationTemplate
    tla_id = Column(String(36), nullable=True, index=True)
    context = Column(JSON, nullable=True)
    email_sent = Column(Boolean, default=False)
    email_error = Column(Text, nullable=True)
    read_at = Column(DateTime, nullable=True)
    created_at = Column(DateTime, default=func.now())
