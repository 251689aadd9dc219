"""Authentication routes: signup, login, me."""

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from xtrafleet.app.dependencies import get_identity_provider
from xtrafleet.domain.errors import Forbidden, Unauthenticated
from xtrafleet.domain.models import User
from xtrafleet.domain.schemas import FleetSignup, TokenResponse, UserLogin, UserResponse
from xtrafleet.infra.database import get_db
from xtrafleet.services.auth_service import (
    IdentityProvider,
    authenticate,
    create_access_token,
    create_fleet_user,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/auth", tags=["auth"])


async def get_current_user_dep(
    request: Request,
    db: AsyncSession = Depends(get_db),
    identity_provider: IdentityProvider = Depends(get_identity_provider),
) -> User:
    """Dependency: extract current user from Bearer token."""
    auth_header = request.headers.get("Authorization", "")
    token = auth_header.removeprefix("Bearer ") if auth_header.startswith("Bearer ") else ""
    identity = identity_provider.verify(token)

    result = await db.execute(select(User).where(User.id == identity.uid))
    user = result.scalar_one_or_none()
    if not user or not user.is_active:
        logger.warning("Token for unknown or inactive user %s", identity.uid)
        raise Unauthenticated("User not found or inactive")
    return user


def require_role(*roles: str):
    """Factory: dependency that checks user has one of the required roles."""

    async def checker(user: User = Depends(get_current_user_dep)):
        if user.role not in roles:
            raise Forbidden("Insufficient permissions")
        return user

    return checker


@router.post("/signup", response_model=TokenResponse, status_code=201)
async def signup(data: FleetSignup, db: AsyncSession = Depends(get_db)):
    user = await create_fleet_user(
        db,
        data.email,
        data.password,
        data.name,
        data.company_name,
        phone=data.phone,
        dot_number=data.dot_number,
        mc_number=data.mc_number,
    )
    token = create_access_token(user.id, user.role, user.email)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.post("/login", response_model=TokenResponse)
async def login(data: UserLogin, db: AsyncSession = Depends(get_db)):
    user = await authenticate(db, data.email, data.password)
    token = create_access_token(user.id, user.role, user.email)
    return TokenResponse(access_token=token, user=UserResponse.model_validate(user))


@router.get("/me", response_model=UserResponse)
async def me(user: User = Depends(get_current_user_dep)):
    return UserResponse.model_validate(user)
