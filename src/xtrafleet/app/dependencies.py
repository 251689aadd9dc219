"""FastAPI dependency providers for external collaborators and services.

Tests swap any of these through ``app.dependency_overrides``.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from xtrafleet.infra.database import get_db
from xtrafleet.services.auth_service import IdentityProvider, JWTIdentityProvider
from xtrafleet.services.document_storage import LocalObjectStore, ObjectStore
from xtrafleet.services.driver_onboarding import DriverOnboardingService
from xtrafleet.services.email_service import SendGridNotificationSender
from xtrafleet.services.notification_dispatcher import NotificationDispatcher, NotificationSender
from xtrafleet.services.payment_service import PaymentProcessor, StripePaymentProcessor
from xtrafleet.services.tla_service import TLAService


def get_identity_provider() -> IdentityProvider:
    return JWTIdentityProvider()


def get_notification_sender() -> NotificationSender:
    return SendGridNotificationSender()


def get_payment_processor() -> PaymentProcessor:
    return StripePaymentProcessor()


def get_object_store() -> ObjectStore:
    return LocalObjectStore()


def get_dispatcher(
    db: AsyncSession = Depends(get_db),
    sender: NotificationSender = Depends(get_notification_sender),
) -> NotificationDispatcher:
    return NotificationDispatcher(db, sender)


def get_tla_service(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> TLAService:
    return TLAService(db, dispatcher)


def get_onboarding_service(
    db: AsyncSession = Depends(get_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
) -> DriverOnboardingService:
    return DriverOnboardingService(db, dispatcher)
