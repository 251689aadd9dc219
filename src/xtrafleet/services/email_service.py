"""SendGrid email sender for XtraFleet notifications.

Renders one HTML email per notification template and sends it through
SendGrid. Uses asyncio.to_thread to wrap the synchronous SendGrid client.
"""

import asyncio
import html
import logging
from dataclasses import dataclass
from typing import Any, Optional

import sendgrid
from sendgrid.helpers.mail import Email, HtmlContent, Mail, To

from xtrafleet.domain.enums import NotificationTemplate

logger = logging.getLogger(__name__)

T = NotificationTemplate


@dataclass(frozen=True)
class SendResult:
    success: bool
    error: Optional[str] = None


# ---------------------------------------------------------------------------
# Configuration: read from Pydantic settings (which loads .env)
# ---------------------------------------------------------------------------


def _get_config():
    """Get email config from app settings (lazy to avoid import-time issues)."""
    from xtrafleet.app.config import get_settings
    s = get_settings()
    return s.sendgrid_api_key, s.notification_from_email


def _get_client(api_key: str) -> sendgrid.SendGridAPIClient:
    return sendgrid.SendGridAPIClient(api_key=api_key)


def _format_currency(value) -> str:
    """Format a number as $X,XXX.XX."""
    try:
        return f"${float(value):,.2f}"
    except (ValueError, TypeError):
        return "$0.00"


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


def _trip_line(ctx: dict) -> str:
    return f"{ctx.get('load_origin', '')} to {ctx.get('load_destination', '')}"


def _subject_and_lines(template: NotificationTemplate, ctx: dict) -> tuple[str, list[str]]:
    driver = ctx.get("driver_name", "the driver")
    trip = _trip_line(ctx)
    rate = _format_currency(ctx.get("rate"))

    if template == T.TLA_READY:
        return (
            f"Trip Lease Agreement ready for your signature: {driver}",
            [
                f"A Trip Lease Agreement for {driver} ({trip}, {rate}) is ready for you to sign "
                f"as the {ctx.get('role', 'party')}.",
            ],
        )
    if template == T.TLA_SIGNED:
        return (
            f"Trip Lease Agreement signed: {driver}",
            [
                f"Both parties have signed the Trip Lease Agreement for {driver} ({trip}, {rate}).",
                "The trip can start once the match fee has been paid.",
            ],
        )
    if template == T.MATCH_FEE_PAID:
        return (
            f"Match fee received: {driver}",
            [f"The match fee for the trip {trip} has been paid. The trip can now begin."],
        )
    if template == T.TRIP_STARTED:
        return (
            f"Trip started: {trip}",
            [f"{ctx.get('started_by_name', 'The driver owner')} started the trip for {driver} ({trip})."],
        )
    if template == T.TRIP_COMPLETED:
        return (
            f"Trip completed: {trip}",
            [
                f"{ctx.get('ended_by_name', 'The driver owner')} completed the trip for {driver} ({trip}).",
                f"Trip duration: {ctx.get('trip_duration', 'n/a')}.",
            ],
        )
    if template == T.TLA_VOIDED:
        return (
            f"Trip Lease Agreement voided: {driver}",
            [
                f"The Trip Lease Agreement for {driver} ({trip}) has been voided.",
                f"Reason: {ctx.get('reason', 'not given')}",
            ],
        )
    if template == T.DRIVER_INVITATION:
        return (
            f"You're invited to join {ctx.get('fleet_name', 'a fleet')} on XtraFleet",
            [
                f"{ctx.get('fleet_name', 'A fleet')} invited you to join their fleet on XtraFleet.",
                f"The invitation expires on {ctx.get('expires_at', 'in 7 days')}.",
            ],
        )
    if template == T.DRIVER_REGISTERED:
        return (
            f"{ctx.get('driver_name', 'A driver')} accepted your invitation",
            [f"{ctx.get('driver_name', 'A driver')} ({ctx.get('driver_email', '')}) created their account."],
        )
    if template == T.DRIVER_PROFILE_SUBMITTED:
        return (
            f"Driver profile awaiting confirmation: {ctx.get('driver_name', '')}",
            [f"{ctx.get('driver_name', 'A driver')} submitted their profile. Review and confirm it to enable leasing."],
        )
    if template == T.DRIVER_CONFIRMED:
        return (
            "Your driver profile was confirmed",
            [f"{ctx.get('fleet_name', 'Your fleet')} confirmed your profile. You are now eligible for leasing."],
        )
    if template == T.DRIVER_REJECTED:
        return (
            "Your driver profile needs changes",
            [f"{ctx.get('fleet_name', 'Your fleet')} did not confirm your profile. Update it and submit again."],
        )
    return (str(template.value), [])


def build_email(template: NotificationTemplate, context: dict[str, Any]) -> tuple[str, str]:
    """Return (subject, html body) for a template."""
    subject, lines = _subject_and_lines(template, context)
    greeting = html.escape(str(context.get("recipient_name") or "Hello"))
    paragraphs = "".join(
        f'<p style="margin: 0 0 12px 0; color: #374151; font-size: 15px;">{html.escape(line)}</p>'
        for line in lines
    )
    button = ""
    if context.get("action_url"):
        button = f"""
        <p style="margin: 24px 0;">
            <a href="{html.escape(context['action_url'])}"
               style="background-color: #1d4ed8; color: #ffffff; padding: 12px 20px; border-radius: 6px; text-decoration: none; font-weight: 600;">
                {html.escape(context.get('action_label', 'Open XtraFleet'))}
            </a>
        </p>
        """
    body = f"""
<!DOCTYPE html>
<html lang="en">
<body style="margin: 0; padding: 24px; background-color: #f3f4f6; font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, Arial, sans-serif;">
    <div style="max-width: 560px; margin: 0 auto; background: #ffffff; border-radius: 8px; padding: 32px;">
        <h2 style="margin: 0 0 16px 0; color: #111827;">{greeting},</h2>
        {paragraphs}
        {button}
        <p style="margin: 24px 0 0 0; color: #9ca3af; font-size: 12px;">XtraFleet Technologies, Inc.</p>
    </div>
</body>
</html>
"""
    return subject, body


# ---------------------------------------------------------------------------
# Sender
# ---------------------------------------------------------------------------


def _send_mail(api_key: str, mail: Mail) -> SendResult:
    """Send via the synchronous SendGrid client."""
    response = _get_client(api_key).send(mail)
    if response.status_code in (200, 201, 202):
        return SendResult(success=True)
    logger.error("SendGrid returned status %s: %s", response.status_code, response.body)
    return SendResult(success=False, error=f"SendGrid status {response.status_code}")


class SendGridNotificationSender:
    """NotificationSender backed by SendGrid."""

    async def send(
        self,
        template: NotificationTemplate,
        recipient: str,
        context: dict[str, Any],
    ) -> SendResult:
        api_key, from_email = _get_config()
        if not api_key:
            logger.warning("SENDGRID_API_KEY not set, skipping %s email to %s", template.value, recipient)
            return SendResult(success=False, error="email disabled")
        if not recipient:
            return SendResult(success=False, error="no recipient address")

        try:
            subject, body = build_email(template, context)
            mail = Mail(
                from_email=Email(from_email, "XtraFleet"),
                to_emails=To(recipient),
                subject=subject,
                html_content=HtmlContent(body),
            )
            result = await asyncio.to_thread(_send_mail, api_key, mail)
            if result.success:
                logger.info("%s email sent to %s", template.value, recipient)
            return result
        except Exception as e:
            logger.exception("Failed to send %s email to %s", template.value, recipient)
            return SendResult(success=False, error=str(e))
