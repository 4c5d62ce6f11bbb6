from __future__ import annotations

import logging
import math
from typing import Any, Mapping
from uuid import UUID

from ..errors import NotFoundError, PermissionDeniedError
from ..repositories import courses as courses_repo
from ..repositories import enrollments as enrollments_repo
from ..repositories import progress as progress_repo
from ..utils import video_utils
from ..utils.percent import whole_percent
from . import course_service, enrollment_service

logger = logging.getLogger(__name__)

AUTO_COMPLETE_THRESHOLD = 95

STATUS_IN_PROGRESS = "in_progress"
STATUS_COMPLETED = "completed"


def lesson_status_for(progress_percentage: int) -> str:
    return STATUS_COMPLETED if progress_percentage >= AUTO_COMPLETE_THRESHOLD else STATUS_IN_PROGRESS


def course_percentage(completed: int, total: int) -> int:
    if total <= 0:
        return 0
    return min(100, whole_percent(completed, total))


async def _course_lesson(course_id: str | UUID, lesson_id: str | UUID) -> dict[str, Any]:
    lesson = await courses_repo.get_lesson(lesson_id)
    if not lesson or str(lesson["course_id"]) != str(course_id):
        raise NotFoundError("Lesson not found in this course")
    return lesson


async def _require_unlocked(
    user: Mapping[str, Any], course_id: str | UUID, lesson_id: str | UUID
) -> None:
    """Refuse progress on a lesson that sits behind an incomplete earlier lesson."""
    if user.get("is_admin"):
        return
    course = await courses_repo.get_course(course_id=course_id)
    if not course or not course.get("sequential_completion"):
        return
    lessons = await courses_repo.list_course_lessons(course_id)
    rows = await progress_repo.list_course_progress(user["id"], course_id)
    locked = course_service.locked_lesson_ids(
        lessons,
        {str(row["lesson_id"]): row for row in rows},
        sequential=True,
    )
    if str(lesson_id) in locked:
        raise PermissionDeniedError("Complete the earlier lessons first")


async def recompute_course_progress(
    user_id: str | UUID,
    course_id: str | UUID,
) -> dict[str, Any] | None:
    """Store the share of completed lessons on the enrollment.

    Courses without lessons are left untouched.
    """
    lessons = await courses_repo.list_course_lessons(course_id)
    if not lessons:
        return await enrollments_repo.get_enrollment(user_id, course_id)
    completed = await progress_repo.count_completed_lessons(user_id, course_id)
    percentage = course_percentage(completed, len(lessons))
    enrollment = await enrollments_repo.set_progress(
        user_id,
        course_id,
        progress_percentage=percentage,
        completed=completed >= len(lessons),
    )
    logger.info(
        "Course progress updated",
        extra={
            "user_id": str(user_id),
            "course_id": str(course_id),
            "progress_percentage": percentage,
        },
    )
    return enrollment


async def update_lesson_progress(
    user: Mapping[str, Any],
    course_id: str | UUID,
    lesson_id: str | UUID,
    *,
    progress_percentage: int,
    time_spent: int = 0,
) -> dict[str, Any]:
    await enrollment_service.require_enrollment(user, course_id)
    lesson = await _course_lesson(course_id, lesson_id)
    await _require_unlocked(user, course_id, lesson["id"])
    status = lesson_status_for(progress_percentage)
    row = await progress_repo.upsert_lesson_progress(
        user_id=user["id"],
        lesson_id=lesson["id"],
        status=status,
        progress_percentage=progress_percentage,
        time_spent=time_spent,
    )
    if row.get("status") == STATUS_COMPLETED:
        await recompute_course_progress(user["id"], course_id)
    return row


async def complete_lesson(
    user: Mapping[str, Any],
    course_id: str | UUID,
    lesson_id: str | UUID,
    *,
    final_progress: int = 100,
    time_spent: int = 0,
    quiz_score: int | None = None,
) -> dict[str, Any]:
    await enrollment_service.require_enrollment(user, course_id)
    lesson = await _course_lesson(course_id, lesson_id)
    await _require_unlocked(user, course_id, lesson["id"])
    row = await progress_repo.upsert_lesson_progress(
        user_id=user["id"],
        lesson_id=lesson["id"],
        status=STATUS_COMPLETED,
        progress_percentage=final_progress,
        time_spent=time_spent,
        quiz_score=quiz_score,
    )
    enrollment = await recompute_course_progress(user["id"], course_id) or {}
    return {
        "lesson": row,
        "course_progress": int(enrollment.get("progress_percentage") or 0),
        "course_completed": enrollment.get("completed_at") is not None,
    }


async def get_course_progress(user: Mapping[str, Any], course_id: str | UUID) -> dict[str, Any]:
    enrollment = await enrollment_service.require_enrollment(user, course_id)
    rows = await progress_repo.list_course_progress(user["id"], course_id)
    last = await progress_repo.last_accessed_lesson(user["id"], course_id)
    return {
        "course_id": course_id,
        "progress_percentage": int(enrollment.get("progress_percentage") or 0),
        "completed_at": enrollment.get("completed_at"),
        "lessons": {str(row["lesson_id"]): row for row in rows},
        "last_accessed_lesson_id": last["lesson_id"] if last else None,
    }


async def last_accessed_lesson(user: Mapping[str, Any], course_id: str | UUID) -> dict[str, Any] | None:
    await enrollment_service.require_enrollment(user, course_id)
    return await progress_repo.last_accessed_lesson(user["id"], course_id)


def _video_progress_view(lesson_id: str | UUID, row: Mapping[str, Any] | None) -> dict[str, Any]:
    current = int((row or {}).get("current_time") or 0)
    duration = (row or {}).get("duration")
    return {
        "lesson_id": lesson_id,
        "current_time": current,
        "duration": duration,
        "watched_percentage": video_utils.watched_percentage(current, duration),
        "completed": video_utils.is_video_completed(current, duration),
        "updated_at": (row or {}).get("updated_at"),
    }


async def save_video_progress(
    user: Mapping[str, Any],
    lesson_id: str | UUID,
    *,
    current_time: float,
    duration: float | None = None,
    device_info: Mapping[str, Any] | None = None,
) -> dict[str, Any]:
    lesson = await courses_repo.get_lesson(lesson_id)
    if not lesson:
        raise NotFoundError("Lesson not found")
    await enrollment_service.require_enrollment(user, lesson["course_id"])
    row = await progress_repo.upsert_video_progress(
        user_id=user["id"],
        lesson_id=lesson["id"],
        current_time=math.floor(current_time),
        duration=math.floor(duration) if duration is not None else None,
        device_info=device_info,
    )
    return _video_progress_view(lesson["id"], row)


async def get_video_progress(user: Mapping[str, Any], lesson_id: str | UUID) -> dict[str, Any]:
    row = await progress_repo.get_video_progress(user["id"], lesson_id)
    return _video_progress_view(lesson_id, row)


__all__ = [
    "AUTO_COMPLETE_THRESHOLD",
    "complete_lesson",
    "course_percentage",
    "get_course_progress",
    "get_video_progress",
    "last_accessed_lesson",
    "lesson_status_for",
    "recompute_course_progress",
    "save_video_progress",
    "update_lesson_progress",
]
