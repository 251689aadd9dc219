"""Trip Lease Agreement routes: create, read, sign, trip control, void."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from xtrafleet.app.dependencies import get_tla_service
from xtrafleet.app.routes.auth import get_current_user_dep
from xtrafleet.domain.models import User
from xtrafleet.domain.records import TLARecord
from xtrafleet.domain.schemas import (
    TLACreate,
    TLADocumentResponse,
    TLAListResponse,
    TLAResponse,
    TLASign,
    TLAVoid,
    VersionedAction,
)
from xtrafleet.services.tla_document import render_tla_text
from xtrafleet.services.tla_service import TLAService
from xtrafleet.services.tla_state_machine import ActorContext

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/tlas", tags=["tla"])


def _client_ip(request: Request) -> Optional[str]:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def _tla_response(service: TLAService, record: TLARecord, actor: ActorContext) -> TLAResponse:
    machine = service.machine
    return TLAResponse(
        tla=record,
        user_name=actor.display_name(record),
        is_lessor=actor.is_lessor,
        is_lessee=actor.is_lessee,
        is_driver=actor.is_driver,
        is_admin=actor.is_admin,
        can_control_trip=actor.can_control_trip,
        signing_role=machine.signing_role(record, actor),
        cannot_sign_reason=machine.cannot_sign_reason(record, actor),
        waiting_message=machine.waiting_message(record, actor),
        allowed_actions=machine.allowed_actions(record, actor),
    )


async def _respond(service: TLAService, record: TLARecord, user: User) -> TLAResponse:
    actor = await service.actor_for(record, user)
    return _tla_response(service, record, actor)


@router.post("", response_model=TLAResponse, status_code=201)
async def create_tla(
    data: TLACreate,
    user: User = Depends(get_current_user_dep),
    service: TLAService = Depends(get_tla_service),
):
    record = await service.create_tla(
        user,
        lessee_fleet_id=data.lessee_fleet_id,
        driver_id=data.driver_id,
        trip=data.trip,
        amount=data.amount,
        due_date=data.due_date,
        match_id=data.match_id,
    )
    return await _respond(service, record, user)


@router.get("", response_model=TLAListResponse)
async def list_tlas(
    status: Optional[str] = None,
    user: User = Depends(get_current_user_dep),
    service: TLAService = Depends(get_tla_service),
):
    return TLAListResponse(tlas=await service.list_for_user(user, status))


@router.get("/{tla_id}", response_model=TLAResponse)
async def get_tla(
    tla_id: str,
    user: User = Depends(get_current_user_dep),
    service: TLAService = Depends(get_tla_service),
):
    record, actor = await service.get_for_user(tla_id, user)
    return _tla_response(service, record, actor)


@router.get("/{tla_id}/document", response_model=TLADocumentResponse)
async def get_tla_document(
    tla_id: str,
    user: User = Depends(get_current_user_dep),
    service: TLAService = Depends(get_tla_service),
):
    record, _ = await service.get_for_user(tla_id, user)
    return TLADocumentResponse(tla_id=record.id, version=record.version, text=render_tla_text(record))


@router.post("/{tla_id}/sign", response_model=TLAResponse)
async def sign_tla(
    tla_id: str,
    data: TLASign,
    request: Request,
    user: User = Depends(get_current_user_dep),
    service: TLAService = Depends(get_tla_service),
):
    record = await service.sign(
        tla_id,
        user,
        expected_version=data.expected_version,
        signature_name=data.signature_name,
        consent_to_esign=data.consent_to_esign,
        ip_address=_client_ip(request),
        user_agent=request.headers.get("user-agent"),
        insurance_option=data.insurance_option,
    )
    return await _respond(service, record, user)


@router.post("/{tla_id}/start-trip", response_model=TLAResponse)
async def start_trip(
    tla_id: str,
    data: VersionedAction,
    user: User = Depends(get_current_user_dep),
    service: TLAService = Depends(get_tla_service),
):
    record = await service.start_trip(tla_id, user, expected_version=data.expected_version)
    return await _respond(service, record, user)


@router.post("/{tla_id}/end-trip", response_model=TLAResponse)
async def end_trip(
    tla_id: str,
    data: VersionedAction,
    user: User = Depends(get_current_user_dep),
    service: TLAService = Depends(get_tla_service),
):
    record = await service.end_trip(tla_id, user, expected_version=data.expected_version)
    return await _respond(service, record, user)


@router.post("/{tla_id}/void", response_model=TLAResponse)
async def void_tla(
    tla_id: str,
    data: TLAVoid,
    user: User = Depends(get_current_user_dep),
    service: TLAService = Depends(get_tla_service),
):
    record = await service.void(
        tla_id, user, expected_version=data.expected_version, reason=data.reason
    )
    return await _respond(service, record, user)
