"""Authentication service: password hashing, JWT tokens and the identity provider."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional, Protocol

from jose import JWTError, jwt
from passlib.context import CryptContext
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from xtrafleet.app.config import get_settings
from xtrafleet.domain.enums import UserRole
from xtrafleet.domain.errors import Conflict, Unauthenticated
from xtrafleet.domain.models import Fleet, User

logger = logging.getLogger(__name__)

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")


def hash_password(password: str) -> str:
    return pwd_context.hash(password)


def verify_password(plain: str, hashed: str) -> bool:
    return pwd_context.verify(plain, hashed)


def create_access_token(user_id: str, role: str, email: Optional[str] = None) -> str:
    settings = get_settings()
    expire = datetime.now(timezone.utc) + timedelta(minutes=settings.jwt_expiration_minutes)
    payload = {"sub": user_id, "role": role, "exp": expire}
    if email:
        payload["email"] = email
    return jwt.encode(payload, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)


def decode_token(token: str) -> dict | None:
    settings = get_settings()
    try:
        return jwt.decode(token, settings.jwt_secret_key, algorithms=[settings.jwt_algorithm])
    except JWTError:
        return None


@dataclass(frozen=True)
class Identity:
    uid: str
    email: Optional[str] = None


class IdentityProvider(Protocol):
    def verify(self, credential: str) -> Identity: ...


class JWTIdentityProvider:
    """Verifies the bearer tokens issued by ``create_access_token``."""

    def verify(self, credential: str) -> Identity:
        if not credential:
            logger.warning("Rejected request without a bearer token")
            raise Unauthenticated("Missing bearer token")
        payload = decode_token(credential)
        if not payload or "sub" not in payload:
            logger.warning("Rejected invalid or expired bearer token")
            raise Unauthenticated("Invalid or expired token")
        return Identity(uid=payload["sub"], email=payload.get("email"))


async def get_user_by_email(db: AsyncSession, email: str) -> User | None:
    result = await db.execute(select(User).where(func.lower(User.email) == email.strip().lower()))
    return result.scalar_one_or_none()


async def create_fleet_user(
    db: AsyncSession,
    email: str,
    password: str,
    name: str,
    company_name: str,
    phone: str | None = None,
    dot_number: str | None = None,
    mc_number: str | None = None,
) -> User:
    """Register a fleet owner together with the fleet they operate."""
    if await get_user_by_email(db, email):
        raise Conflict("Email already registered", code="email_taken")

    fleet = Fleet(
        company_name=company_name,
        legal_name=company_name,
        contact_email=email.strip().lower(),
        phone=phone,
        dot_number=dot_number,
        mc_number=mc_number,
    )
    db.add(fleet)
    await db.flush()

    user = User(
        email=email.strip().lower(),
        password_hash=hash_password(password),
        name=name,
        role=UserRole.FLEET.value,
        phone=phone,
        fleet_id=fleet.id,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.info("Registered fleet %s for user %s", fleet.id, user.id)
    return user


async def authenticate(db: AsyncSession, email: str, password: str) -> User:
    user = await get_user_by_email(db, email)
    if not user or not user.is_active or not verify_password(password, user.password_hash):
        logger.warning("Failed login for %s", email)
        raise Unauthenticated("Invalid email or password")
    user.last_login_at = datetime.now(timezone.utc).replace(tzinfo=None)
    await db.commit()
    return user
