"""Notification dispatcher: turns committed state changes into emails and in-app notifications.

Dispatch is best-effort. It runs after the state change is committed and
never raises; a failed send is logged and recorded on the notification row.
"""

import logging
import uuid
from typing import Any, Iterable, Optional, Protocol

from sqlalchemy.ext.asyncio import AsyncSession

from xtrafleet.app.config import get_settings
from xtrafleet.domain.enums import NotificationTemplate, PartyRole
from xtrafleet.domain.models import Notification
from xtrafleet.domain.records import TLARecord
from xtrafleet.services.email_service import SendResult
from xtrafleet.services.tla_document import format_trip_duration
from xtrafleet.services.tla_state_machine import TLAEvent

logger = logging.getLogger(__name__)


class NotificationSender(Protocol):
    async def send(
        self,
        template: NotificationTemplate,
        recipient: str,
        context: dict[str, Any],
    ) -> SendResult: ...


def tla_context(record: TLARecord, role: PartyRole, event: TLAEvent) -> dict[str, Any]:
    """Template fields for one recipient of a TLA event."""
    party = record.party(role)
    frontend_url = get_settings().frontend_url.rstrip("/")
    context = {
        "recipient_name": party.legal_name,
        "role": role.value,
        "driver_name": record.driver.name,
        "load_origin": record.trip.origin,
        "load_destination": record.trip.destination,
        "rate": str(record.payment.amount),
        "tla_id": record.id,
        "action_url": f"{frontend_url}/dashboard/tla/{record.id}",
        "action_label": "View agreement",
    }
    context.update(event.data)
    if "duration_minutes" in event.data:
        context["trip_duration"] = format_trip_duration(event.data["duration_minutes"])
    return context


class NotificationDispatcher:
    """Fans events out to recipients through a NotificationSender."""

    def __init__(self, db: AsyncSession, sender: NotificationSender):
        self.db = db
        self.sender = sender

    async def notify(
        self,
        template: NotificationTemplate,
        recipient_email: str,
        context: dict[str, Any],
        *,
        user_id: Optional[str] = None,
        tla_id: Optional[str] = None,
    ) -> bool:
        """Record an in-app notification and send its email. Returns True if the email went out."""
        try:
            result = await self.sender.send(template, recipient_email, context)
        except Exception as e:
            logger.exception("Notification sender failed for %s to %s", template.value, recipient_email)
            result = SendResult(success=False, error=str(e))

        if not result.success:
            logger.warning(
                "Notification %s to %s not delivered: %s",
                template.value, recipient_email, result.error,
            )

        try:
            self.db.add(
                Notification(
                    id=str(uuid.uuid4()),
                    user_id=user_id,
                    recipient_email=recipient_email,
                    template=template.value,
                    tla_id=tla_id,
                    context=context,
                    email_sent=result.success,
                    email_error=result.error,
                )
            )
            await self.db.commit()
        except Exception:
            logger.exception("Failed to record %s notification for %s", template.value, recipient_email)
            await self.db.rollback()

        return result.success

    async def dispatch_tla_events(self, record: TLARecord, events: Iterable[TLAEvent]) -> int:
        """Deliver each event to its recipients. Returns the number of emails sent."""
        sent = 0
        for event in events:
            template = NotificationTemplate(event.type.value)
            for role in event.recipients:
                party = record.party(role)
                delivered = await self.notify(
                    template,
                    party.contact_email,
                    tla_context(record, role, event),
                    user_id=party.owner_user_id,
                    tla_id=record.id,
                )
                sent += int(delivered)
        return sent
