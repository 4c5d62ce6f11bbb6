"""Team invitations to seat-licensed courses.

An invitation holds a seat from the moment it is created until it is accepted
(when the seat turns into an enrollment) or cancelled. Expired invitations stop
counting against the seat pool.
"""

from __future__ import annotations

import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Any, Mapping
from urllib.parse import urlencode
from uuid import UUID

from ..config import settings
from ..errors import ConflictError, GoneError, LmsError, NotFoundError, PermissionDeniedError
from ..metrics import (
    course_enrollments_created_total,
    course_invitations_accepted_total,
    course_invitations_sent_total,
)
from ..repositories import accounts as accounts_repo
from ..repositories import enrollments as enrollments_repo
from ..repositories import invitations as invitations_repo
from ..utils.slugs import email_prefix
from . import course_service, mailer, seat_service

logger = logging.getLogger(__name__)

STATE_PENDING = "pending"
STATE_ACCEPTED = "accepted"
STATE_EXPIRED = "expired"


def _now() -> datetime:
    return datetime.now(timezone.utc)


def new_token() -> str:
    return secrets.token_urlsafe(32)


def invitation_expiry(now: datetime | None = None) -> datetime:
    return (now or _now()) + timedelta(days=settings.course_invitation_ttl_days)


def invitation_state(invitation: Mapping[str, Any], now: datetime | None = None) -> str:
    if invitation.get("accepted_at"):
        return STATE_ACCEPTED
    expires_at = invitation.get("expires_at")
    if expires_at and expires_at <= (now or _now()):
        return STATE_EXPIRED
    return STATE_PENDING


def invitation_url(token: str) -> str:
    return f"{settings.site_base_url}/auth/sign-up?{urlencode({'course_token': token})}"


async def _send_invitation_email(
    invitation: Mapping[str, Any],
    *,
    course_title: str,
    team_name: str,
) -> bool:
    subject, html, text = mailer.render_course_invitation(
        invitee_name=invitation.get("invitee_name"),
        course_title=course_title,
        team_name=team_name,
        invite_url=invitation_url(invitation["invite_token"]),
        expires_in_days=settings.course_invitation_ttl_days,
    )
    try:
        await mailer.send_email(to=invitation["email"], subject=subject, html=html, text=text)
    except LmsError as exc:
        logger.warning(
            "Invitation email not sent",
            extra={"invitation_id": str(invitation["id"]), "error": exc.detail},
        )
        return False
    course_invitations_sent_total.inc()
    return True


async def invite_to_course(
    user: Mapping[str, Any],
    *,
    account_id: str | UUID,
    course_id: str | UUID,
    email: str,
    invitee_name: str | None = None,
) -> tuple[dict[str, Any], bool]:
    """Create a pending invitation and email it. Returns ``(invitation, email_sent)``."""
    account = await seat_service.require_manager(user, account_id)
    course = await course_service.require_course(course_id)
    email = email.strip().lower()

    existing = await invitations_repo.get_pending_invitation(
        email=email, course_id=course["id"], account_id=account["id"]
    )
    # An expired row is replaced by create_invitation.
    if existing and invitation_state(existing) == STATE_PENDING:
        raise ConflictError("This email already has a pending invitation for the course")

    outcome, invitation = await invitations_repo.create_invitation(
        email=email,
        invitee_name=(invitee_name or "").strip() or None,
        course_id=course["id"],
        account_id=account["id"],
        invited_by=user["id"],
        invite_token=new_token(),
        expires_at=invitation_expiry(),
    )
    if outcome == invitations_repo.NO_SEATS:
        raise LmsError("No seats available for this course")
    if outcome == invitations_repo.DUPLICATE or invitation is None:
        raise ConflictError("This email already has a pending invitation for the course")

    logger.info(
        "Course invitation created",
        extra={
            "invitation_id": str(invitation["id"]),
            "account_id": str(account["id"]),
            "course_id": str(course["id"]),
        },
    )
    email_sent = await _send_invitation_email(
        invitation, course_title=course["title"], team_name=account.get("name") or ""
    )
    return invitation, email_sent


async def list_invitations(
    user: Mapping[str, Any],
    account_id: str | UUID,
    course_id: str | UUID | None = None,
) -> list[dict[str, Any]]:
    await seat_service.require_manager(user, account_id)
    return await invitations_repo.list_account_invitations(account_id, course_id=course_id)


async def get_invitation(token: str) -> dict[str, Any]:
    invitation = await invitations_repo.get_invitation_by_token(token)
    if not invitation:
        raise NotFoundError("Invitation not found")
    return {
        "email": invitation["email"],
        "invitee_name": invitation.get("invitee_name"),
        "course_id": invitation["course_id"],
        "course_title": invitation.get("course_title"),
        "team_name": invitation.get("account_name"),
        "state": invitation_state(invitation),
        "expires_at": invitation.get("expires_at"),
    }


async def _maybe_rename_learner(user: Mapping[str, Any], invitee_name: str | None) -> None:
    name = (invitee_name or "").strip()
    if not name:
        return
    current = (user.get("display_name") or "").strip()
    if current and current != email_prefix(str(user.get("email") or "")):
        return
    await accounts_repo.rename_personal_account(user["id"], name)


async def _accept(user: Mapping[str, Any], invitation: Mapping[str, Any]) -> dict[str, Any]:
    enrollment, created = await enrollments_repo.ensure_enrollment(
        user_id=user["id"],
        course_id=invitation["course_id"],
        account_id=invitation["account_id"],
        invitation_id=invitation["id"],
        invited_by=invitation.get("invited_by"),
    )
    await invitations_repo.mark_accepted(invitation["id"], user["id"])
    await _maybe_rename_learner(user, invitation.get("invitee_name"))

    course_invitations_accepted_total.inc()
    if created:
        course_enrollments_created_total.labels(source="invitation").inc()
    logger.info(
        "Course invitation accepted",
        extra={
            "invitation_id": str(invitation["id"]),
            "user_id": str(user["id"]),
            "enrollment_created": created,
        },
    )
    return {
        "course_id": invitation["course_id"],
        "account_id": invitation["account_id"],
        "enrollment_created": created,
    }


async def accept_invitation(user: Mapping[str, Any], token: str) -> dict[str, Any]:
    invitation = await invitations_repo.get_invitation_by_token(token)
    if not invitation:
        raise NotFoundError("Invitation not found")

    if invitation.get("accepted_at"):
        if str(invitation.get("accepted_by")) != str(user["id"]):
            raise ConflictError("Invitation has already been accepted")
        return {
            "course_id": invitation["course_id"],
            "account_id": invitation["account_id"],
            "enrollment_created": False,
        }

    user_email = str(user.get("email") or "").strip().lower()
    if user_email != str(invitation["email"]).strip().lower():
        raise PermissionDeniedError("This invitation was sent to a different email address")
    if invitation_state(invitation) == STATE_EXPIRED:
        raise GoneError("Invitation has expired")

    return await _accept(user, invitation)


async def process_pending_invitations(user: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Accept every live invitation addressed to the user's email."""
    email = str(user.get("email") or "").strip()
    if not email:
        return []
    accepted: list[dict[str, Any]] = []
    for invitation in await invitations_repo.list_pending_for_email(email):
        try:
            accepted.append(await _accept(user, invitation))
        except LmsError as exc:
            logger.warning(
                "Pending invitation not accepted",
                extra={"invitation_id": str(invitation["id"]), "error": exc.detail},
            )
    return accepted


async def _require_pending(invitation_id: str | UUID) -> dict[str, Any]:
    invitation = await invitations_repo.get_invitation(invitation_id)
    if not invitation:
        raise NotFoundError("Invitation not found")
    if invitation.get("accepted_at"):
        raise LmsError("Only pending invitations can be changed")
    return invitation


async def cancel_invitation(user: Mapping[str, Any], invitation_id: str | UUID) -> None:
    invitation = await _require_pending(invitation_id)
    await seat_service.require_owner(user, invitation["account_id"])
    if not await invitations_repo.delete_invitation(invitation["id"]):
        raise LmsError("Only pending invitations can be changed")
    logger.info("Course invitation cancelled", extra={"invitation_id": str(invitation["id"])})


async def resend_invitation(
    user: Mapping[str, Any],
    invitation_id: str | UUID,
) -> tuple[dict[str, Any], bool]:
    invitation = await _require_pending(invitation_id)
    account = await seat_service.require_manager(user, invitation["account_id"])
    refreshed = await invitations_repo.refresh_token(
        invitation["id"], invite_token=new_token(), expires_at=invitation_expiry()
    )
    if not refreshed:
        raise LmsError("Only pending invitations can be changed")
    course = await course_service.require_course(refreshed["course_id"])
    email_sent = await _send_invitation_email(
        refreshed, course_title=course["title"], team_name=account.get("name") or ""
    )
    return refreshed, email_sent


__all__ = [
    "accept_invitation",
    "cancel_invitation",
    "get_invitation",
    "invitation_state",
    "invitation_url",
    "invite_to_course",
    "list_invitations",
    "process_pending_invitations",
    "resend_invitation",
]
