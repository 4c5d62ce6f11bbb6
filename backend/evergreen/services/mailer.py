from __future__ import annotations

import logging
from html import escape
from typing import Any

import httpx

from ..config import settings
from ..errors import ConfigError, UpstreamError

logger = logging.getLogger(__name__)


async def send_email(*, to: str, subject: str, html: str, text: str | None = None) -> str | None:
    """Send one message through the Resend HTTP API. Returns the message id."""
    if not settings.resend_api_key:
        raise ConfigError("Email delivery is not configured")

    payload: dict[str, Any] = {
        "from": settings.email_sender,
        "to": [to],
        "subject": subject,
        "html": html,
    }
    if text:
        payload["text"] = text

    async with httpx.AsyncClient(timeout=10.0) as client:
        try:
            response = await client.post(
                settings.resend_api_url,
                json=payload,
                headers={
                    "Authorization": f"Bearer {settings.resend_api_key}",
                    "Content-Type": "application/json",
                },
            )
        except httpx.HTTPError as exc:
            raise UpstreamError("Failed to call email provider") from exc

    if response.status_code >= 400:
        logger.warning(
            "Resend rejected email",
            extra={"status_code": response.status_code, "body": response.text[:500]},
        )
        raise UpstreamError(f"Failed to send email: {response.status_code}")

    body = response.json() if response.content else {}
    return body.get("id") if isinstance(body, dict) else None


def render_course_invitation(
    *,
    invitee_name: str | None,
    course_title: str,
    team_name: str,
    invite_url: str,
    expires_in_days: int,
) -> tuple[str, str, str]:
    """Return ``(subject, html, text)`` for a course invitation."""
    greeting = f"Hi {invitee_name}," if invitee_name else "Hi,"
    subject = f"You're invited to {course_title}"
    text = (
        f"{greeting}\n\n"
        f"{team_name} has enrolled you in {course_title}.\n"
        f"Create your account to start the course: {invite_url}\n\n"
        f"This invitation expires in {expires_in_days} days."
    )
    html = (
        f"<p>{escape(greeting)}</p>"
        f"<p>{escape(team_name)} has enrolled you in <strong>{escape(course_title)}</strong>.</p>"
        f'<p><a href="{escape(invite_url, quote=True)}">Accept invitation</a></p>'
        f"<p>This invitation expires in {expires_in_days} days.</p>"
    )
    return subject, html, text


__all__ = ["render_course_invitation", "send_email"]
