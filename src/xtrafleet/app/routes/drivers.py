"""Driver onboarding routes: invitations, registration, profile review, compliance, documents."""

import logging
from datetime import timezone

from fastapi import APIRouter, Depends, File, Request, UploadFile

from xtrafleet.app.config import get_settings
from xtrafleet.app.dependencies import get_object_store, get_onboarding_service
from xtrafleet.app.routes.auth import get_current_user_dep, require_role
from xtrafleet.domain.enums import DocumentKind, UserRole
from xtrafleet.domain.models import Fleet, User
from xtrafleet.domain.schemas import (
    ComplianceFindingResponse,
    ComplianceResponse,
    DocumentUploadResponse,
    DriverConfirmation,
    DriverProfileSubmit,
    DriverResponse,
    InvitationCreate,
    InvitationRedeem,
    InvitationResponse,
    InvitationValidation,
    RegistrationResponse,
    UserResponse,
)
from xtrafleet.services.auth_service import create_access_token
from xtrafleet.services.document_storage import ObjectStore
from xtrafleet.services.driver_onboarding import (
    ConsentInput,
    DriverOnboardingService,
    is_lease_eligible,
)

logger = logging.getLogger(__name__)

invitations_router = APIRouter(prefix="/api/invitations", tags=["invitations"])
router = APIRouter(prefix="/api/drivers", tags=["drivers"])


# ---------------------------------------------------------------------------
# Invitations
# ---------------------------------------------------------------------------


@invitations_router.post("", response_model=InvitationResponse, status_code=201)
async def create_invitation(
    data: InvitationCreate,
    user: User = Depends(require_role(UserRole.FLEET.value)),
    service: DriverOnboardingService = Depends(get_onboarding_service),
):
    invitation = await service.create_invitation(user, data.email, dqf_certified=data.dqf_certified)
    return InvitationResponse.model_validate(invitation)


@invitations_router.get("/{token}", response_model=InvitationValidation)
async def validate_invitation(
    token: str,
    service: DriverOnboardingService = Depends(get_onboarding_service),
):
    invitation = await service.validate_invitation(token)
    fleet = await service.db.get(Fleet, invitation.fleet_id)
    return InvitationValidation(
        email=invitation.email,
        fleet_name=fleet.company_name if fleet else "",
        expires_at=invitation.expires_at.replace(tzinfo=timezone.utc),
    )


@invitations_router.post("/{token}/redeem", response_model=RegistrationResponse, status_code=201)
async def redeem_invitation(
    token: str,
    data: InvitationRedeem,
    service: DriverOnboardingService = Depends(get_onboarding_service),
):
    user, driver = await service.redeem_invitation(
        token, email=data.email, password=data.password, name=data.name
    )
    return RegistrationResponse(
        access_token=create_access_token(user.id, user.role, user.email),
        user=UserResponse.model_validate(user),
        driver=DriverResponse.model_validate(driver),
    )


# ---------------------------------------------------------------------------
# Drivers
# ---------------------------------------------------------------------------


@router.post("/me/profile", response_model=DriverResponse)
async def submit_profile(
    data: DriverProfileSubmit,
    request: Request,
    user: User = Depends(require_role(UserRole.DRIVER.value)),
    service: DriverOnboardingService = Depends(get_onboarding_service),
):
    profile = data.model_dump(exclude={"consents"}, exclude_none=True)
    if "vehicle_type" in profile:
        profile["vehicle_type"] = data.vehicle_type.value
    driver = await service.submit_profile(
        user,
        profile=profile,
        consents=[ConsentInput(c.consent_type, c.accepted) for c in data.consents],
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    return DriverResponse.model_validate(driver)


@router.post("/{driver_id}/confirmation", response_model=DriverResponse)
async def review_driver(
    driver_id: str,
    data: DriverConfirmation,
    user: User = Depends(require_role(UserRole.FLEET.value)),
    service: DriverOnboardingService = Depends(get_onboarding_service),
):
    driver = await service.review_profile(user, driver_id, confirmed=data.confirmed)
    return DriverResponse.model_validate(driver)


@router.get("/{driver_id}/compliance", response_model=ComplianceResponse)
async def driver_compliance(
    driver_id: str,
    user: User = Depends(get_current_user_dep),
    service: DriverOnboardingService = Depends(get_onboarding_service),
):
    driver, result = await service.compliance_for(user, driver_id)
    return ComplianceResponse(
        driver_id=driver.id,
        status=result.status,
        lease_eligible=is_lease_eligible(
            driver, service.clock(), get_settings().compliance_warning_days
        ),
        findings=[
            ComplianceFindingResponse(
                label=f.label,
                issue=f.issue.value,
                expires_on=f.expires_on,
                days_remaining=f.days_remaining,
            )
            for f in result.findings
        ],
    )


@router.post("/{driver_id}/documents/{kind}", response_model=DocumentUploadResponse, status_code=201)
async def upload_document(
    driver_id: str,
    kind: DocumentKind,
    file: UploadFile = File(...),
    user: User = Depends(get_current_user_dep),
    service: DriverOnboardingService = Depends(get_onboarding_service),
    store: ObjectStore = Depends(get_object_store),
):
    data = await file.read()
    url = await service.attach_document(
        user,
        driver_id,
        kind,
        filename=file.filename,
        data=data,
        content_type=file.content_type or "application/octet-stream",
        store=store,
    )
    return DocumentUploadResponse(driver_id=driver_id, kind=kind.value, url=url)
