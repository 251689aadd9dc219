"""Driver onboarding: invitation -> registration -> profile -> fleet confirmation.

    invitation: pending --redeem--> used            (exactly once)
    driver profile: incomplete --submit--> pending_confirmation
                    pending_confirmation --confirm--> confirmed
                    pending_confirmation --reject--> rejected
                    rejected --submit--> pending_confirmation

Redemption marks the invitation used with an UPDATE conditioned on
``status = 'pending'``, so of two simultaneous redemptions only one can
win. Profile mutations are guarded by the driver's version column.
"""

import logging
import secrets
import uuid
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Optional

from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from xtrafleet.app.config import get_settings
from xtrafleet.domain.enums import (
    DocumentKind,
    InvitationStatus,
    NotificationTemplate,
    ProfileStatus,
    UserRole,
)
from xtrafleet.domain.errors import (
    Conflict,
    Forbidden,
    NotFound,
    OutOfOrder,
    ValidationError,
    VersionConflict,
)
from xtrafleet.domain.models import Driver, DriverConsent, DriverInvitation, Fleet, User
from xtrafleet.services.auth_service import hash_password
from xtrafleet.services.compliance import (
    EXPIRY_WARNING_DAYS,
    ComplianceResult,
    evaluate_driver_compliance,
)
from xtrafleet.services.document_storage import (
    ALLOWED_CONTENT_TYPES,
    DOCUMENT_URL_FIELDS,
    MAX_DOCUMENT_BYTES,
    ObjectStore,
    document_key,
)
from xtrafleet.services.notification_dispatcher import NotificationDispatcher

logger = logging.getLogger(__name__)

# Profile fields a driver may self-submit
PROFILE_FIELDS = (
    "name",
    "phone",
    "location",
    "vehicle_type",
    "cdl_license",
    "cdl_state",
    "cdl_expiry",
    "medical_card_expiry",
    "insurance_expiry",
    "motor_vehicle_record_number",
    "background_check_date",
    "pre_employment_screening_date",
    "drug_and_alcohol_screening_date",
)

SUBMITTABLE_STATES = {ProfileStatus.INCOMPLETE.value, ProfileStatus.REJECTED.value}


class InvitationAlreadyUsed(Conflict):
    def __init__(self):
        super().__init__("This invitation has already been used.", code="invitation_used")


@dataclass(frozen=True)
class ConsentInput:
    consent_type: str
    accepted: bool = True


def _naive_utc(value: datetime) -> datetime:
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DriverOnboardingService:
    """Invitation, registration and profile review for drivers."""

    def __init__(
        self,
        db: AsyncSession,
        dispatcher: NotificationDispatcher,
        *,
        clock: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.dispatcher = dispatcher
        self.clock = clock

    # ------------------------------------------------------------------
    # Invitations
    # ------------------------------------------------------------------

    async def create_invitation(
        self,
        user: User,
        email: str,
        *,
        dqf_certified: bool,
    ) -> DriverInvitation:
        """Invite a driver by email on behalf of the user's fleet."""
        if user.role != UserRole.FLEET.value or not user.fleet_id:
            raise Forbidden("Only a fleet can invite drivers.")
        if not dqf_certified:
            raise ValidationError(
                "You must certify that you maintain this driver's qualification file.",
                field_errors={"dqf_certified": "must be true"},
            )

        email = email.strip().lower()
        existing = await self.db.execute(
            select(Driver.id).where(func.lower(Driver.email) == email).limit(1)
        )
        if existing.scalar_one_or_none():
            raise Conflict(f"A driver with the email {email} is already associated with a fleet.")

        now = self.clock()
        invitation = DriverInvitation(
            id=str(uuid.uuid4()),
            token=secrets.token_urlsafe(32),
            email=email,
            fleet_id=user.fleet_id,
            invited_by=user.id,
            dqf_certified=True,
            dqf_certified_at=_naive_utc(now),
            status=InvitationStatus.PENDING.value,
            version=1,
            expires_at=_naive_utc(now + timedelta(days=get_settings().invitation_expiry_days)),
            created_at=_naive_utc(now),
        )
        self.db.add(invitation)
        await self.db.commit()
        logger.info("Fleet %s invited %s (invitation %s)", user.fleet_id, email, invitation.id)

        fleet = await self.db.get(Fleet, user.fleet_id)
        fleet_name = fleet.company_name if fleet else "your fleet"
        frontend_url = get_settings().frontend_url.rstrip("/")
        await self.dispatcher.notify(
            NotificationTemplate.DRIVER_INVITATION,
            email,
            {
                "fleet_name": fleet_name,
                "expires_at": f"{invitation.expires_at:%B} {invitation.expires_at.day}, {invitation.expires_at.year}",
                "action_url": f"{frontend_url}/driver-register?token={invitation.token}",
                "action_label": "Create your driver account",
            },
        )
        return invitation

    async def validate_invitation(self, token: str) -> DriverInvitation:
        """Return a redeemable invitation or raise NotFound / InvitationAlreadyUsed."""
        result = await self.db.execute(
            select(DriverInvitation)
            .where(DriverInvitation.token == token)
            .execution_options(populate_existing=True)
        )
        invitation = result.scalar_one_or_none()
        if invitation is None:
            raise NotFound("Invalid invitation token")

        if invitation.expires_at < _naive_utc(self.clock()):
            logger.warning("Invitation %s... expired", token[:8])
            raise NotFound("This invitation has expired")

        if invitation.status != InvitationStatus.PENDING.value:
            logger.warning("Invitation %s... already used", token[:8])
            raise InvitationAlreadyUsed()

        return invitation

    async def redeem_invitation(
        self,
        token: str,
        *,
        email: str,
        password: str,
        name: str,
    ) -> tuple[User, Driver]:
        """Create the driver's account and profile and consume the invitation, atomically."""
        invitation = await self.validate_invitation(token)
        if email.strip().lower() != invitation.email.lower():
            raise ValidationError(
                "Email does not match the invitation.",
                field_errors={"email": "must match the invited address"},
            )
        if len(password) < 8:
            raise ValidationError(
                "Password must be at least 8 characters.",
                field_errors={"password": "too short"},
            )

        now = _naive_utc(self.clock())
        user_id = str(uuid.uuid4())
        driver_id = str(uuid.uuid4())
        # rollback() expires the row, so read what we need up front
        invitation_id = invitation.id
        invitation_email = invitation.email
        fleet_id = invitation.fleet_id

        # Claim the token first; the status guard serializes concurrent redemptions
        claimed = await self.db.execute(
            update(DriverInvitation)
            .where(
                DriverInvitation.id == invitation_id,
                DriverInvitation.status == InvitationStatus.PENDING.value,
                DriverInvitation.version == invitation.version,
            )
            .values(
                status=InvitationStatus.USED.value,
                used_at=now,
                driver_id=driver_id,
                version=DriverInvitation.version + 1,
            )
            .execution_options(synchronize_session=False)
        )
        if claimed.rowcount != 1:
            await self.db.rollback()
            logger.warning("Invitation %s lost a concurrent redemption", invitation_id)
            raise InvitationAlreadyUsed()

        user = User(
            id=user_id,
            email=invitation_email,
            password_hash=hash_password(password),
            name=name.strip(),
            role=UserRole.DRIVER.value,
        )
        driver = Driver(
            id=driver_id,
            fleet_id=fleet_id,
            user_id=user_id,
            invitation_id=invitation_id,
            name=name.strip(),
            email=invitation_email,
            profile_status=ProfileStatus.INCOMPLETE.value,
            version=1,
        )
        self.db.add(user)
        self.db.add(driver)
        try:
            await self.db.commit()
        except IntegrityError as e:
            await self.db.rollback()
            raise Conflict("An account with this email already exists.") from e

        logger.info("Invitation %s redeemed by driver %s", invitation_id, driver_id)

        owner = await self._fleet_contact(fleet_id)
        if owner:
            await self.dispatcher.notify(
                NotificationTemplate.DRIVER_REGISTERED,
                owner.contact_email,
                {"driver_name": driver.name, "driver_email": driver.email, "recipient_name": owner.company_name},
            )
        return user, driver

    # ------------------------------------------------------------------
    # Profile review
    # ------------------------------------------------------------------

    async def _fleet_contact(self, fleet_id: str) -> Optional[Fleet]:
        return await self.db.get(Fleet, fleet_id)

    async def _driver_for_user(self, user: User) -> Driver:
        if user.role != UserRole.DRIVER.value:
            raise Forbidden("Only drivers can submit a driver profile.")
        result = await self.db.execute(
            select(Driver)
            .where(Driver.user_id == user.id)
            .execution_options(populate_existing=True)
        )
        driver = result.scalar_one_or_none()
        if driver is None:
            raise NotFound("Driver profile not found")
        return driver

    async def _update_driver_if(
        self,
        driver: Driver,
        expected_status: set[str],
        values: dict[str, Any],
    ) -> None:
        """Version-guarded driver update. Callers commit, then refresh the in-memory row."""
        driver_id, expected_version = driver.id, driver.version
        result = await self.db.execute(
            update(Driver)
            .where(
                Driver.id == driver_id,
                Driver.version == expected_version,
                Driver.profile_status.in_(expected_status),
            )
            .values(version=Driver.version + 1, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.rollback()
            raise VersionConflict("Driver", driver_id, expected_version)

    async def submit_profile(
        self,
        user: User,
        *,
        profile: dict[str, Any],
        consents: list[ConsentInput],
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> Driver:
        """Driver self-submits CDL and compliance data for fleet confirmation."""
        driver = await self._driver_for_user(user)
        if driver.profile_status not in SUBMITTABLE_STATES:
            raise OutOfOrder(
                f"Profile is {driver.profile_status} and cannot be submitted again.",
                code="profile_not_submittable",
            )
        if not consents or not all(c.accepted for c in consents):
            raise ValidationError(
                "All consent items must be accepted.",
                field_errors={"consents": "every item must be accepted"},
            )
        if not profile.get("cdl_license"):
            raise ValidationError("CDL number is required.", field_errors={"cdl_license": "required"})

        unknown = set(profile) - set(PROFILE_FIELDS)
        if unknown:
            raise ValidationError(
                "Unknown profile fields.",
                field_errors={name: "not allowed" for name in sorted(unknown)},
            )

        now = _naive_utc(self.clock())
        values = {
            key: value for key, value in profile.items() if value is not None
        }
        values.update(
            profile_status=ProfileStatus.PENDING_CONFIRMATION.value,
            profile_submitted_at=now,
        )
        await self._update_driver_if(driver, SUBMITTABLE_STATES, values)

        for consent in consents:
            self.db.add(
                DriverConsent(
                    id=str(uuid.uuid4()),
                    driver_id=driver.id,
                    consent_type=consent.consent_type,
                    accepted=consent.accepted,
                    ip_address=ip_address,
                    user_agent=user_agent,
                    accepted_at=now,
                )
            )
        await self.db.commit()
        await self.db.refresh(driver)
        logger.info("Driver %s submitted profile (%d consents)", driver.id, len(consents))

        fleet = await self._fleet_contact(driver.fleet_id)
        if fleet:
            await self.dispatcher.notify(
                NotificationTemplate.DRIVER_PROFILE_SUBMITTED,
                fleet.contact_email,
                {"driver_name": driver.name, "recipient_name": fleet.company_name},
            )
        return driver

    async def review_profile(self, user: User, driver_id: str, *, confirmed: bool) -> Driver:
        """Owning fleet confirms or rejects a submitted profile. Rejection keeps the record."""
        if user.role != UserRole.FLEET.value or not user.fleet_id:
            raise Forbidden("Only the driver's fleet can review this profile.")
        result = await self.db.execute(
            select(Driver)
            .where(Driver.id == driver_id, Driver.fleet_id == user.fleet_id)
            .execution_options(populate_existing=True)
        )
        driver = result.scalar_one_or_none()
        if driver is None:
            raise NotFound(f"Driver {driver_id} not found in your fleet")
        if driver.profile_status != ProfileStatus.PENDING_CONFIRMATION.value:
            raise OutOfOrder(
                f"Profile is {driver.profile_status}, not awaiting confirmation.",
                code="profile_not_pending",
            )

        now = _naive_utc(self.clock())
        if confirmed:
            values = {
                "profile_status": ProfileStatus.CONFIRMED.value,
                "confirmed_at": now,
                "confirmed_by": user.id,
            }
            template = NotificationTemplate.DRIVER_CONFIRMED
        else:
            values = {
                "profile_status": ProfileStatus.REJECTED.value,
                "rejected_at": now,
                "rejected_by": user.id,
            }
            template = NotificationTemplate.DRIVER_REJECTED

        await self._update_driver_if(driver, {ProfileStatus.PENDING_CONFIRMATION.value}, values)
        await self.db.commit()
        await self.db.refresh(driver)
        logger.info("Fleet %s %s driver %s", user.fleet_id, driver.profile_status, driver.id)

        fleet = await self._fleet_contact(driver.fleet_id)
        if driver.email:
            await self.dispatcher.notify(
                template,
                driver.email,
                {"fleet_name": fleet.company_name if fleet else "Your fleet", "recipient_name": driver.name},
                user_id=driver.user_id,
            )
        return driver

    # ------------------------------------------------------------------
    # Compliance and documents
    # ------------------------------------------------------------------

    async def get_driver_for_user(self, user: User, driver_id: str) -> Driver:
        """The driver themself, their fleet, or an admin."""
        driver = await self.db.get(Driver, driver_id, populate_existing=True)
        if driver is None:
            raise NotFound(f"Driver {driver_id} not found")
        if user.role == UserRole.ADMIN.value:
            return driver
        if user.role == UserRole.DRIVER.value and driver.user_id == user.id:
            return driver
        if user.role == UserRole.FLEET.value and driver.fleet_id == user.fleet_id:
            return driver
        raise Forbidden("You do not have access to this driver.")

    async def compliance_for(self, user: User, driver_id: str) -> tuple[Driver, ComplianceResult]:
        driver = await self.get_driver_for_user(user, driver_id)
        result = evaluate_driver_compliance(
            driver, self.clock(), get_settings().compliance_warning_days
        )
        return driver, result

    async def attach_document(
        self,
        user: User,
        driver_id: str,
        kind: DocumentKind,
        *,
        filename: Optional[str],
        data: bytes,
        content_type: str,
        store: ObjectStore,
    ) -> str:
        """Store a compliance document and record its URL on the driver."""
        if user.role == UserRole.ADMIN.value:
            raise Forbidden("Documents are uploaded by the driver or their fleet.")
        driver = await self.get_driver_for_user(user, driver_id)
        if content_type not in ALLOWED_CONTENT_TYPES:
            raise ValidationError(
                f"Unsupported file type {content_type}",
                field_errors={"file": "must be a PDF or image"},
            )
        if not data:
            raise ValidationError("Empty file", field_errors={"file": "required"})
        if len(data) > MAX_DOCUMENT_BYTES:
            raise ValidationError("File too large", field_errors={"file": "max 10 MB"})

        url = await store.put(document_key(driver.id, kind, filename), data, content_type)
        await self._update_driver_if(
            driver,
            {status.value for status in ProfileStatus},
            {DOCUMENT_URL_FIELDS[kind]: url},
        )
        await self.db.commit()
        await self.db.refresh(driver)
        logger.info("Stored %s document for driver %s", kind.value, driver.id)
        return url


def is_lease_eligible(
    driver: Driver,
    now: date | datetime,
    warning_days: int = EXPIRY_WARNING_DAYS,
) -> bool:
    """Confirmed profile and a compliance status other than Red."""
    if driver.profile_status != ProfileStatus.CONFIRMED.value:
        return False
    return evaluate_driver_compliance(driver, now, warning_days).is_eligible
