from __future__ import annotations

import logging
from typing import Any, Mapping
from uuid import UUID

from ..errors import LmsError, NotFoundError, PermissionDeniedError
from ..repositories import accounts as accounts_repo
from ..repositories import enrollments as enrollments_repo
from ..repositories import seats as seats_repo

logger = logging.getLogger(__name__)


def with_availability(row: Mapping[str, Any]) -> dict[str, Any]:
    total = int(row.get("total_seats") or 0)
    enrolled = int(row.get("enrolled") or 0)
    pending = int(row.get("pending") or 0)
    return {
        **row,
        "total_seats": total,
        "enrolled": enrolled,
        "pending": pending,
        "available": max(0, total - enrolled - pending),
    }


async def require_manager(user: Mapping[str, Any], account_id: str | UUID) -> dict[str, Any]:
    account = await accounts_repo.get_account(account_id)
    if not account:
        raise NotFoundError("Account not found")
    if user.get("is_admin"):
        return account
    if not await accounts_repo.is_account_manager(user["id"], account_id):
        raise PermissionDeniedError("Team manager privileges required")
    return account


async def require_owner(user: Mapping[str, Any], account_id: str | UUID) -> dict[str, Any]:
    account = await accounts_repo.get_account(account_id)
    if not account:
        raise NotFoundError("Account not found")
    if not user.get("is_admin") and str(account.get("primary_owner_user_id")) != str(user["id"]):
        raise PermissionDeniedError("Only the account owner can do this")
    return account


async def list_my_teams(user: Mapping[str, Any]) -> list[dict[str, Any]]:
    """Team accounts the user owns or manages."""
    accounts = await accounts_repo.list_managed_accounts(user["id"])
    return [
        {**account, "is_owner": str(account.get("primary_owner_user_id")) == str(user["id"])}
        for account in accounts
    ]


async def get_seat_overview(user: Mapping[str, Any], account_id: str | UUID) -> list[dict[str, Any]]:
    await require_manager(user, account_id)
    rows = await seats_repo.list_seat_usage(account_id)
    return [with_availability(row) for row in rows]


async def update_course_seats(
    user: Mapping[str, Any],
    account_id: str | UUID,
    course_id: str | UUID,
    total_seats: int,
) -> dict[str, Any]:
    await require_manager(user, account_id)
    if total_seats < 1:
        raise LmsError("A course needs at least one seat")

    usage = await seats_repo.get_seat_usage(account_id, course_id)
    if usage:
        used = int(usage.get("enrolled") or 0) + int(usage.get("pending") or 0)
        if total_seats < used:
            raise LmsError(f"Cannot reduce seats below the {used} already in use")

    await seats_repo.set_total_seats(
        account_id=account_id,
        course_id=course_id,
        total_seats=total_seats,
        updated_by=user["id"],
    )
    logger.info(
        "Course seats updated",
        extra={"account_id": str(account_id), "course_id": str(course_id), "total": total_seats},
    )
    refreshed = await seats_repo.get_seat_usage(account_id, course_id)
    return with_availability(refreshed or {"course_id": course_id, "total_seats": total_seats})


async def list_team_enrollments(
    user: Mapping[str, Any],
    account_id: str | UUID,
    course_id: str | UUID,
) -> list[dict[str, Any]]:
    await require_manager(user, account_id)
    rows = await enrollments_repo.list_account_enrollments(account_id, course_id)
    return [{**row, "completed": row.get("completed_at") is not None} for row in rows]


async def remove_member_from_course(
    user: Mapping[str, Any],
    account_id: str | UUID,
    course_id: str | UUID,
    member_id: str | UUID,
) -> None:
    await require_owner(user, account_id)
    if str(member_id) == str(user["id"]):
        raise LmsError("You cannot remove yourself from a team course")
    removed = await enrollments_repo.delete_enrollment(member_id, course_id, account_id=account_id)
    if not removed:
        raise NotFoundError("Member is not enrolled through this account")
    logger.info(
        "Member removed from team course",
        extra={"account_id": str(account_id), "course_id": str(course_id), "member_id": str(member_id)},
    )


__all__ = [
    "get_seat_overview",
    "list_my_teams",
    "list_team_enrollments",
    "remove_member_from_course",
    "require_manager",
    "require_owner",
    "update_course_seats",
    "with_availability",
]
