from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from ..auth import is_admin_claims
from ..config import settings
from ..errors import NotFoundError
from ..repositories import enrollments as enrollments_repo
from ..repositories import users as users_repo


MAX_PAGE_SIZE = 500


def is_finished(enrollment: Mapping[str, Any]) -> bool:
    return (
        enrollment.get("completed_at") is not None
        or int(enrollment.get("progress_percentage") or 0) >= 100
    )


def _final_score(enrollment: Mapping[str, Any]) -> dict[str, Any]:
    score = int(enrollment["final_score"])
    passing = enrollment.get("course_passing_score")
    if passing is None:
        passing = settings.default_passing_score
    return {
        "course_id": enrollment["course_id"],
        "course_title": enrollment.get("course_title"),
        "score": score,
        "passed": score >= int(passing),
        "completed_at": enrollment.get("completed_at") or enrollment.get("enrolled_at"),
    }


async def list_users(
    *,
    search: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[dict[str, Any]]:
    rows = await users_repo.list_users_with_stats(
        search=search,
        limit=max(1, min(limit, MAX_PAGE_SIZE)),
        offset=max(0, offset),
    )
    return [
        {
            **row,
            "enrollments": int(row.get("enrollments") or 0),
            "completions": int(row.get("completions") or 0),
            "average_progress": int(row.get("average_progress") or 0),
        }
        for row in rows
    ]


async def get_user_report(user_id: str | UUID) -> dict[str, Any]:
    """One learner's enrollments split into in-progress courses and final scores."""
    user = await users_repo.get_user(user_id)
    if not user:
        raise NotFoundError("User not found")
    enrollments = await enrollments_repo.list_user_enrollments(user["id"])

    current = [row for row in enrollments if not is_finished(row)]
    finished = [row for row in enrollments if is_finished(row)]
    return {
        "id": user["id"],
        "email": user.get("email"),
        "display_name": user.get("display_name"),
        "is_admin": is_admin_claims(user.get("app_metadata")),
        "enrollments": len(enrollments),
        "completions": len(finished),
        "current_enrollments": current,
        "final_scores": [
            _final_score(row) for row in finished if row.get("final_score") is not None
        ],
    }


__all__ = ["MAX_PAGE_SIZE", "get_user_report", "is_finished", "list_users"]
