"""SendGrid notifications for the suggestion handshake.

Runs off the request path (FastAPI ``BackgroundTasks``). The synchronous
SendGrid client is wrapped in ``asyncio.to_thread``. A failed send is logged
and dropped: nothing here raises and nothing is retried.
"""

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

import sendgrid
from sendgrid.helpers.mail import Email, Mail, To
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from hometrace.domain.clock import as_utc
from hometrace.domain.models import House, User, VisitSuggestion

logger = logging.getLogger(__name__)


def _get_config():
    """Get email config from app settings (lazy to avoid import-time issues)."""
    from hometrace.app.config import get_settings
    s = get_settings()
    return s.sendgrid_api_key, s.email_from, s.app_url


def _get_client() -> sendgrid.SendGridAPIClient:
    api_key, _, _ = _get_config()
    return sendgrid.SendGridAPIClient(api_key=api_key)


@dataclass(frozen=True)
class SuggestionEmail:
    """Everything a suggestion email needs, captured before the request ends."""

    suggestion_id: str
    buyer_email: str
    buyer_name: str
    realtor_email: str
    realtor_name: str
    address: str
    suggested_at: datetime
    message: Optional[str] = None


async def suggestion_context(db: AsyncSession, suggestion: VisitSuggestion) -> Optional[SuggestionEmail]:
    """Load the buyer, realtor and house for a suggestion.

    Returns None when either party or the house is gone.
    """
    users = {
        user.id: user
        for user in (
            await db.execute(
                select(User).where(User.id.in_([suggestion.buyer_id, suggestion.suggested_by_realtor_id]))
            )
        ).scalars()
    }
    house = (await db.execute(select(House).where(House.id == suggestion.house_id))).scalar_one_or_none()

    buyer = users.get(suggestion.buyer_id)
    realtor = users.get(suggestion.suggested_by_realtor_id)
    if buyer is None or realtor is None or house is None:
        logger.warning("Suggestion %s: recipient or house missing, no email context", suggestion.id)
        return None

    return SuggestionEmail(
        suggestion_id=suggestion.id,
        buyer_email=buyer.email,
        buyer_name=buyer.name,
        realtor_email=realtor.email,
        realtor_name=realtor.name,
        address=f"{house.address}, {house.city}, {house.state}",
        suggested_at=as_utc(suggestion.suggested_at),
        message=suggestion.message,
    )


def _format_when(value: datetime) -> str:
    return value.strftime("%A, %B %d at %H:%M UTC")


def _send_mail(mail: Mail) -> bool:
    """Synchronous send via SendGrid. Returns True on success."""
    client = _get_client()
    response = client.send(mail)
    if response.status_code in (200, 201, 202):
        return True
    logger.error(
        "SendGrid returned status %s: %s",
        response.status_code,
        response.body,
    )
    return False


async def _deliver(to_email: str, subject: str, body: str) -> bool:
    api_key, email_from, _ = _get_config()
    if not api_key:
        logger.warning("SENDGRID_API_KEY not set, skipping email to %s", to_email)
        return False

    try:
        mail = Mail(
            from_email=Email(email_from, "HomeTrace"),
            to_emails=To(to_email),
            subject=subject,
            plain_text_content=body,
        )
        result = await asyncio.to_thread(_send_mail, mail)
        if result:
            logger.info("Email '%s' sent to %s", subject, to_email)
        return result
    except Exception:
        logger.exception("Failed to send email '%s' to %s", subject, to_email)
        return False


# ---------------------------------------------------------------------------
# Public async API
# ---------------------------------------------------------------------------


async def notify_suggestion_created(ctx: Optional[SuggestionEmail]) -> bool:
    """Tell the buyer a realtor has proposed a visit."""
    if ctx is None:
        return False
    _, _, app_url = _get_config()

    lines = [
        f"Hi {ctx.buyer_name},",
        "",
        f"{ctx.realtor_name} suggested a visit to {ctx.address} on {_format_when(ctx.suggested_at)}.",
    ]
    if ctx.message:
        lines += ["", f'"{ctx.message}"']
    lines += [
        "",
        "Please respond at least 24 hours before the visit time:",
        f"{app_url.rstrip('/')}/suggestions/{ctx.suggestion_id}",
    ]
    return await _deliver(ctx.buyer_email, f"Visit suggestion: {ctx.address}", "\n".join(lines))


async def notify_suggestion_response(
    ctx: Optional[SuggestionEmail],
    accepted: bool,
    reason: Optional[str] = None,
) -> bool:
    """Tell the realtor whether the buyer accepted or rejected."""
    if ctx is None:
        return False

    verb = "accepted" if accepted else "declined"
    lines = [
        f"Hi {ctx.realtor_name},",
        "",
        f"{ctx.buyer_name} {verb} your suggested visit to {ctx.address} "
        f"on {_format_when(ctx.suggested_at)}.",
    ]
    if not accepted and reason:
        lines += ["", f"Reason: {reason}"]
    return await _deliver(ctx.realtor_email, f"Visit suggestion {verb}: {ctx.address}", "\n".join(lines))
