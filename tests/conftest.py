"""Shared test infrastructure for the XtraFleet test suite.

Provides:
- db_session: async SQLite in-memory session with all tables created
- sender / dispatcher: recording NotificationSender and a dispatcher over it
- clock: controllable UTC clock injected into the services
- make_record: builds TLARecords at any lifecycle stage (no database)
- parties: two fleets, their owners, and a confirmed, compliant driver
- make_tla: persists a TLA between the ``parties``
- make_invitation: factory for DriverInvitation rows
- build_client / auth_headers: HTTPX AsyncClient over a FastAPI app with the given routers
"""

import uuid
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace
from typing import Any, Optional

import pytest
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Import Base first, then models to register all tables
from xtrafleet.infra.database import Base, get_db

import xtrafleet.domain.models  # noqa: F401

from xtrafleet.app.dependencies import get_notification_sender
from xtrafleet.app.errors import register_error_handlers
from xtrafleet.domain.enums import (
    InsuranceOption,
    NotificationTemplate,
    PartyRole,
    TLAStatus,
    UserRole,
)
from xtrafleet.domain.models import Driver, DriverInvitation, Fleet, User
from xtrafleet.domain.records import (
    DriverSnapshot,
    InsuranceAttestation,
    PartySnapshot,
    PaymentTerms,
    Signature,
    TLARecord,
    TripDetails,
    TripTracking,
)
from xtrafleet.infra.tla_repository import TLARepository
from xtrafleet.services.auth_service import create_access_token
from xtrafleet.services.email_service import SendResult
from xtrafleet.services.notification_dispatcher import NotificationDispatcher
from xtrafleet.services.tla_service import driver_snapshot, party_snapshot

NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)
TODAY = NOW.date()


# ---------------------------------------------------------------------------
# Database session fixture
# ---------------------------------------------------------------------------

@pytest.fixture
async def db_session():
    """Async SQLite in-memory session with all tables created.

    Creates a fresh engine + tables for each test, yields a session,
    then rolls back and tears down.
    """
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    session_factory = async_sessionmaker(
        engine, class_=AsyncSession, expire_on_commit=False,
    )

    async with session_factory() as session:
        yield session
        await session.rollback()

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------

@dataclass
class RecordingSender:
    """NotificationSender fake that captures every send."""

    sent: list[tuple[NotificationTemplate, str, dict[str, Any]]] = field(default_factory=list)
    fail_with: Optional[str] = None
    raise_error: Optional[Exception] = None

    async def send(self, template, recipient, context) -> SendResult:
        self.sent.append((template, recipient, context))
        if self.raise_error is not None:
            raise self.raise_error
        if self.fail_with is not None:
            return SendResult(success=False, error=self.fail_with)
        return SendResult(success=True)

    def templates(self) -> list[NotificationTemplate]:
        return [template for template, _, _ in self.sent]

    def recipients(self, template: NotificationTemplate) -> list[str]:
        return [recipient for t, recipient, _ in self.sent if t == template]


@pytest.fixture
def sender():
    return RecordingSender()


@pytest.fixture
def dispatcher(db_session, sender):
    return NotificationDispatcher(db_session, sender)


class FakeClock:
    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()


# ---------------------------------------------------------------------------
# Pure TLA records
# ---------------------------------------------------------------------------

LESSOR_USER = "user-lessor"
LESSEE_USER = "user-lessee"
DRIVER_USER = "user-driver"

STAGES = ("draft", "pending_lessee", "signed", "paid", "in_progress", "completed", "voided")


@pytest.fixture
def make_record():
    """Factory that builds a TLARecord at a given lifecycle stage.

    Usage:
        record = make_record("signed", version=4)
    """
    def _factory(stage: str = "draft", **overrides) -> TLARecord:
        assert stage in STAGES, stage
        reached = STAGES.index(stage) if stage != "voided" else 0

        def _sig(user_id: str, name: str, role: PartyRole) -> Signature:
            return Signature(
                signed_by=user_id,
                signed_by_name=name,
                signed_by_role=role,
                signed_at=NOW - timedelta(hours=2),
                ip_address="203.0.113.7",
                user_agent="pytest",
            )

        data: dict[str, Any] = {
            "id": "tla-1",
            "match_id": "match-1",
            "version": 1,
            "status": TLAStatus.DRAFT,
            "lessor": PartySnapshot(
                fleet_id="fleet-a",
                owner_user_id=LESSOR_USER,
                legal_name="Alpha Transport LLC",
                address="1 Depot Rd, Dallas, TX",
                dot_number="1234567",
                mc_number="MC-111",
                contact_email="ops@alpha.test",
            ),
            "lessee": PartySnapshot(
                fleet_id="fleet-b",
                owner_user_id=LESSEE_USER,
                legal_name="Bravo Freight Inc",
                address="9 Dock St, Tulsa, OK",
                contact_email="dispatch@bravo.test",
            ),
            "driver": DriverSnapshot(
                id="driver-1",
                user_id=DRIVER_USER,
                name="Dana Driver",
                cdl_number="D1234567",
                cdl_state="TX",
                medical_card_expiry=date(2026, 12, 31),
            ),
            "trip": TripDetails(
                origin="Dallas, TX",
                destination="Tulsa, OK",
                cargo="Dry goods",
                weight=42000,
                start_date=NOW + timedelta(days=1),
                end_date=NOW + timedelta(days=2),
            ),
            "payment": PaymentTerms(amount=Decimal("1850.00"), due_date=NOW + timedelta(days=2)),
            "created_at": NOW - timedelta(days=1),
            "updated_at": NOW - timedelta(days=1),
        }

        if reached >= STAGES.index("pending_lessee"):
            data["lessor_signature"] = _sig(LESSOR_USER, "Alice Alpha", PartyRole.LESSOR)
            data["status"] = TLAStatus.PENDING_LESSEE
            data["version"] = 2
        if reached >= STAGES.index("signed"):
            data["lessee_signature"] = _sig(LESSEE_USER, "Bob Bravo", PartyRole.LESSEE)
            data["insurance"] = InsuranceAttestation(
                option=InsuranceOption.EXISTING_POLICY,
                confirmed_at=NOW - timedelta(hours=2),
                confirmed_by=LESSEE_USER,
            )
            data["status"] = TLAStatus.SIGNED
            data["signed_at"] = NOW - timedelta(hours=2)
            data["version"] = 3
        if reached >= STAGES.index("paid"):
            data["payment"] = data["payment"].model_copy(
                update={"match_fee_paid": True, "match_fee_paid_at": NOW - timedelta(hours=1)}
            )
            data["version"] = 4
        if reached >= STAGES.index("in_progress"):
            data["trip_tracking"] = TripTracking(
                started_at=NOW - timedelta(minutes=90),
                started_by=LESSOR_USER,
                started_by_name="Alpha Transport LLC",
            )
            data["status"] = TLAStatus.IN_PROGRESS
            data["version"] = 5
        if reached >= STAGES.index("completed"):
            data["trip_tracking"] = data["trip_tracking"].model_copy(
                update={"ended_at": NOW, "ended_by": LESSOR_USER, "duration_minutes": 90}
            )
            data["status"] = TLAStatus.COMPLETED
            data["version"] = 6
        if stage == "voided":
            data["status"] = TLAStatus.VOIDED
            data["voided_at"] = NOW
            data["voided_by"] = LESSOR_USER
            data["voided_reason"] = "Load cancelled"
            data["version"] = 2

        data.update(overrides)
        return TLARecord(**data)

    return _factory


# ---------------------------------------------------------------------------
# Database factories
# ---------------------------------------------------------------------------

def compliant_fields(today: date = TODAY) -> dict[str, Any]:
    """Driver compliance fields that evaluate Green on ``today``."""
    return {
        "cdl_license": "D1234567",
        "cdl_state": "TX",
        "cdl_expiry": today + timedelta(days=400),
        "medical_card_expiry": today + timedelta(days=200),
        "insurance_expiry": today + timedelta(days=180),
        "motor_vehicle_record_number": "MVR-889",
        "background_check_date": today - timedelta(days=60),
        "pre_employment_screening_date": today - timedelta(days=90),
        "drug_and_alcohol_screening_date": today - timedelta(days=30),
    }


@pytest.fixture
def make_fleet(db_session):
    """Factory that creates a Fleet with its owner account.

    Usage:
        fleet, owner = await make_fleet("Alpha Transport")
    """
    async def _factory(company_name: str = "Alpha Transport", email: Optional[str] = None):
        slug = company_name.lower().replace(" ", "")
        email = email or f"owner@{slug}.test"
        fleet = Fleet(
            id=str(uuid.uuid4()),
            company_name=company_name,
            legal_name=f"{company_name} LLC",
            contact_email=email,
            address="1 Depot Rd",
            city="Dallas",
            state="TX",
            zip="75201",
            dot_number="1234567",
        )
        db_session.add(fleet)
        owner = User(
            id=str(uuid.uuid4()),
            email=email,
            password_hash="not-a-real-hash",
            name=f"{company_name} Owner",
            role=UserRole.FLEET.value,
            fleet_id=fleet.id,
        )
        db_session.add(owner)
        await db_session.commit()
        return fleet, owner

    return _factory


@pytest.fixture
def make_driver(db_session):
    """Factory that creates a Driver (and its login) in a fleet.

    Usage:
        driver, user = await make_driver(fleet, profile_status="pending_confirmation")
    """
    async def _factory(
        fleet: Fleet,
        name: str = "Dana Driver",
        email: Optional[str] = None,
        profile_status: str = "confirmed",
        with_user: bool = True,
        **fields,
    ):
        email = email or f"{uuid.uuid4().hex[:8]}@drivers.test"
        user = None
        if with_user:
            user = User(
                id=str(uuid.uuid4()),
                email=email,
                password_hash="not-a-real-hash",
                name=name,
                role=UserRole.DRIVER.value,
            )
            db_session.add(user)
        values = compliant_fields()
        values.update(fields)
        driver = Driver(
            id=str(uuid.uuid4()),
            fleet_id=fleet.id,
            user_id=user.id if user else None,
            name=name,
            email=email,
            profile_status=profile_status,
            version=1,
            **values,
        )
        db_session.add(driver)
        await db_session.commit()
        return driver, user

    return _factory


@pytest.fixture
def make_admin(db_session):
    async def _factory():
        admin = User(
            id=str(uuid.uuid4()),
            email=f"admin-{uuid.uuid4().hex[:6]}@xtrafleet.test",
            password_hash="not-a-real-hash",
            name="Platform Admin",
            role=UserRole.ADMIN.value,
        )
        db_session.add(admin)
        await db_session.commit()
        return admin

    return _factory


@pytest.fixture
async def parties(make_fleet, make_driver):
    """Lessor fleet with a confirmed, compliant driver, and a lessee fleet."""
    lessor_fleet, lessor = await make_fleet("Alpha Transport")
    lessee_fleet, lessee = await make_fleet("Bravo Freight")
    driver, driver_user = await make_driver(lessor_fleet)
    return SimpleNamespace(
        lessor_fleet=lessor_fleet,
        lessor=lessor,
        lessee_fleet=lessee_fleet,
        lessee=lessee,
        driver=driver,
        driver_user=driver_user,
    )


@pytest.fixture
def make_tla(db_session, make_record, parties):
    """Factory that persists a TLA between ``parties`` at a given stage.

    Usage:
        record = await make_tla("signed")
    """
    async def _factory(stage: str = "draft", **overrides) -> TLARecord:
        base = make_record(stage)
        snapshots = {
            "id": str(uuid.uuid4()),
            "lessor": party_snapshot(parties.lessor_fleet, parties.lessor.id),
            "lessee": party_snapshot(parties.lessee_fleet, parties.lessee.id),
            "driver": driver_snapshot(parties.driver),
        }
        # Signatures and tracking carry the real user ids
        if base.lessor_signature:
            snapshots["lessor_signature"] = base.lessor_signature.model_copy(
                update={"signed_by": parties.lessor.id}
            )
        if base.lessee_signature:
            snapshots["lessee_signature"] = base.lessee_signature.model_copy(
                update={"signed_by": parties.lessee.id}
            )
        snapshots.update(overrides)
        record = base.model_copy(update=snapshots)
        return await TLARepository(db_session).add(record)

    return _factory


@pytest.fixture
def make_invitation(db_session):
    """Factory that creates a DriverInvitation row.

    Usage:
        invitation = await make_invitation(fleet, owner, email="new@driver.test")
    """
    async def _factory(
        fleet: Fleet,
        invited_by: User,
        email: str = "new.driver@drivers.test",
        status: str = "pending",
        expires_at: Optional[datetime] = None,
    ) -> DriverInvitation:
        invitation = DriverInvitation(
            id=str(uuid.uuid4()),
            token=uuid.uuid4().hex + uuid.uuid4().hex[:11],
            email=email,
            fleet_id=fleet.id,
            invited_by=invited_by.id,
            dqf_certified=True,
            dqf_certified_at=NOW.replace(tzinfo=None),
            status=status,
            version=1,
            expires_at=(expires_at or NOW + timedelta(days=7)).replace(tzinfo=None),
            created_at=NOW.replace(tzinfo=None),
        )
        db_session.add(invitation)
        await db_session.commit()
        return invitation

    return _factory


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------

@pytest.fixture
def auth_headers():
    """Bearer headers for a user."""
    def _headers(user: User) -> dict[str, str]:
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role, user.email)}"}

    return _headers


@pytest.fixture
def build_client(db_session, sender):
    """Build an HTTPX AsyncClient wired to a test FastAPI app.

    Uses a fresh FastAPI app with only the given routers; the DB session and
    notification sender are the test fixtures. Extra dependency overrides
    can be passed as a dict.
    """
    def _factory(*routers, overrides: Optional[dict] = None) -> AsyncClient:
        test_app = FastAPI()
        register_error_handlers(test_app)
        for router in routers:
            test_app.include_router(router)

        async def _override_get_db():
            yield db_session

        test_app.dependency_overrides[get_db] = _override_get_db
        test_app.dependency_overrides[get_notification_sender] = lambda: sender
        for dependency, provider in (overrides or {}).items():
            test_app.dependency_overrides[dependency] = provider

        return AsyncClient(
            transport=ASGITransport(app=test_app),
            base_url="http://testserver",
        )

    return _factory
