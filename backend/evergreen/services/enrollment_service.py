from __future__ import annotations

import logging
from typing import Any, Mapping
from uuid import UUID

from ..errors import ConflictError, LmsError, NotFoundError, PermissionDeniedError
from ..metrics import course_enrollments_created_total
from ..repositories import enrollments as enrollments_repo
from ..repositories import users as users_repo
from . import course_service

logger = logging.getLogger(__name__)


async def enroll_self(user: Mapping[str, Any], course_reference: str) -> dict[str, Any]:
    course = await course_service.get_published_course(course_reference)
    if not course_service.is_free(course):
        raise PermissionDeniedError("Course purchase required")

    existing = await enrollments_repo.get_enrollment(user["id"], course["id"])
    if existing:
        raise ConflictError("Already enrolled in this course")

    enrollment, created = await enrollments_repo.ensure_enrollment(
        user_id=user["id"],
        course_id=course["id"],
        account_id=user["id"],
    )
    if created:
        course_enrollments_created_total.labels(source="self").inc()
    logger.info(
        "Learner enrolled in free course",
        extra={"course_id": str(course["id"]), "user_id": str(user["id"])},
    )
    return enrollment


async def unenroll(user: Mapping[str, Any], course_id: str | UUID) -> None:
    enrollment = await enrollments_repo.get_enrollment(user["id"], course_id)
    if not enrollment:
        raise NotFoundError("Not enrolled in this course")
    if enrollment.get("completed_at"):
        raise LmsError("Completed courses cannot be left")
    await enrollments_repo.delete_enrollment(user["id"], course_id)


async def list_my_enrollments(user: Mapping[str, Any]) -> list[dict[str, Any]]:
    return await enrollments_repo.list_user_enrollments(user["id"])


async def admin_enroll(
    admin: Mapping[str, Any],
    *,
    course_id: str | UUID,
    user_id: str | UUID | None = None,
    email: str | None = None,
    account_id: str | UUID | None = None,
) -> tuple[dict[str, Any], bool]:
    if user_id:
        learner = await users_repo.get_user(user_id)
    else:
        learner = await users_repo.get_user_by_email(email or "")
    if not learner:
        raise NotFoundError("User not found")

    course = await course_service.require_course(course_id)
    enrollment, created = await enrollments_repo.ensure_enrollment(
        user_id=learner["id"],
        course_id=course["id"],
        account_id=account_id or learner["id"],
        invited_by=admin["id"],
    )
    if created:
        course_enrollments_created_total.labels(source="admin").inc()
    logger.info(
        "Admin enrollment",
        extra={
            "course_id": str(course["id"]),
            "learner_id": str(learner["id"]),
            "created": created,
        },
    )
    return enrollment, created


async def can_access_course(user: Mapping[str, Any], course_id: str | UUID) -> bool:
    if user.get("is_admin"):
        return True
    return await enrollments_repo.get_enrollment(user["id"], course_id) is not None


async def require_enrollment(user: Mapping[str, Any], course_id: str | UUID) -> dict[str, Any]:
    enrollment = await enrollments_repo.get_enrollment(user["id"], course_id)
    if not enrollment:
        raise PermissionDeniedError("Not enrolled in this course")
    return enrollment


__all__ = [
    "admin_enroll",
    "can_access_course",
    "enroll_self",
    "list_my_enrollments",
    "require_enrollment",
    "unenroll",
]
