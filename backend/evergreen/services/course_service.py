from __future__ import annotations

import logging
from decimal import Decimal
from typing import Any, Iterable, Mapping, Sequence
from uuid import UUID

import stripe
from starlette.concurrency import run_in_threadpool

from ..config import settings
from ..errors import ConflictError, LmsError, NotFoundError, UpstreamError
from ..repositories import courses as courses_repo
from ..repositories import enrollments as enrollments_repo
from ..repositories import progress as progress_repo
from ..stripe_mode import current_mode, require_stripe
from ..utils.slugs import random_suffix, slugify

logger = logging.getLogger(__name__)

CoursePayload = Mapping[str, Any]

PUBLISHED = "published"
COMPLETED = "completed"


def _as_uuid(value: str) -> UUID | None:
    try:
        return UUID(str(value))
    except (TypeError, ValueError):
        return None


def _value(value: Any) -> Any:
    return getattr(value, "value", value)


def is_free(course: Mapping[str, Any]) -> bool:
    price = course.get("price")
    if price is None:
        return True
    return Decimal(str(price)) <= 0


async def find_course(reference: str | UUID) -> dict[str, Any] | None:
    """Look a course up by id, falling back to slug."""
    course_id = reference if isinstance(reference, UUID) else _as_uuid(reference)
    if course_id:
        course = await courses_repo.get_course(course_id=course_id)
        if course:
            return course
    if isinstance(reference, str):
        return await courses_repo.get_course(slug=reference)
    return None


async def require_course(reference: str | UUID) -> dict[str, Any]:
    course = await find_course(reference)
    if not course:
        raise NotFoundError("Course not found")
    return course


async def list_published_courses(
    *,
    search: str | None = None,
    limit: int | None = None,
) -> list[dict[str, Any]]:
    return await courses_repo.list_courses(status=PUBLISHED, search=search, limit=limit)


async def get_published_course(reference: str, *, is_admin: bool = False) -> dict[str, Any]:
    course = await require_course(reference)
    if course.get("status") != PUBLISHED and not is_admin:
        raise NotFoundError("Course not found")
    return course


async def _unique_slug(title: str, requested: str | None = None) -> str:
    base = slugify(requested or title)
    if requested:
        if await courses_repo.slug_exists(base):
            raise ConflictError(f"Slug already in use: {base}")
        return base
    candidate = base
    while await courses_repo.slug_exists(candidate):
        candidate = f"{base}-{random_suffix(4)}"
    return candidate


async def _ensure_price_unbound(price_id: str, course_id: str | None = None) -> None:
    bound = (await courses_repo.get_courses_by_price_ids([price_id])).get(price_id)
    if bound and str(bound["id"]) != str(course_id):
        raise ConflictError(f"Stripe price is already bound to course {bound['title']}")


async def create_course(admin: Mapping[str, Any], payload: CoursePayload) -> dict[str, Any]:
    slug = await _unique_slug(payload["title"], payload.get("slug"))
    price_id = payload.get("stripe_price_id")
    if price_id:
        await _ensure_price_unbound(price_id)
    course = await courses_repo.create_course(
        account_id=payload.get("account_id") or admin["id"],
        title=payload["title"],
        slug=slug,
        description=payload.get("description"),
        status=_value(payload.get("status") or "draft"),
        sku=payload.get("sku"),
        price=payload.get("price"),
        stripe_price_id=price_id,
        sequential_completion=bool(payload.get("sequential_completion")),
        passing_score=(
            settings.default_passing_score
            if payload.get("passing_score") is None
            else int(payload["passing_score"])
        ),
        created_by=admin["id"],
    )
    logger.info("Course created", extra={"course_id": str(course["id"]), "slug": slug})
    return course


async def update_course(
    admin: Mapping[str, Any],
    course_id: str | UUID,
    fields: CoursePayload,
) -> dict[str, Any]:
    course = await require_course(course_id)
    changes = dict(fields)
    if changes.get("slug") and changes["slug"] != course.get("slug"):
        changes["slug"] = await _unique_slug(course["title"], changes["slug"])
    if changes.get("stripe_price_id"):
        await _ensure_price_unbound(changes["stripe_price_id"], str(course["id"]))
    if "status" in changes and changes["status"] is not None:
        changes["status"] = _value(changes["status"])
    updated = await courses_repo.update_course(course["id"], changes, updated_by=admin["id"])
    if not updated:
        raise NotFoundError("Course not found")
    return updated


async def _verify_stripe_price(price_id: str) -> dict[str, Any] | None:
    if current_mode() is None:
        logger.info("Stripe not configured; binding price without verification")
        return None
    require_stripe()
    try:
        price = await run_in_threadpool(lambda: stripe.Price.retrieve(price_id))
    except stripe.InvalidRequestError as exc:
        raise LmsError(f"Unknown Stripe price: {price_id}") from exc
    except stripe.StripeError as exc:
        raise UpstreamError("Failed to verify Stripe price") from exc
    if not price.get("active"):
        raise LmsError("Stripe price is not active")
    return price


async def bind_stripe_price(
    admin: Mapping[str, Any],
    course_id: str | UUID,
    price_id: str,
) -> dict[str, Any]:
    course = await require_course(course_id)
    await _ensure_price_unbound(price_id, str(course["id"]))
    price = await _verify_stripe_price(price_id)
    changes: dict[str, Any] = {"stripe_price_id": price_id}
    if price and price.get("unit_amount") is not None:
        changes["price"] = Decimal(int(price["unit_amount"])) / 100
    return await update_course(admin, course["id"], changes)


async def delete_course(course_id: str | UUID, *, force: bool = False) -> None:
    course = await require_course(course_id)
    enrolled = await enrollments_repo.count_course_enrollments(course["id"])
    if enrolled and not force:
        raise ConflictError(
            f"Course has {enrolled} enrollments; pass force=true to delete it anyway"
        )
    await courses_repo.delete_course(course["id"])
    logger.info(
        "Course deleted",
        extra={"course_id": str(course["id"]), "enrollments": enrolled, "forced": force},
    )


async def create_module(course_id: str | UUID, payload: Mapping[str, Any]) -> dict[str, Any]:
    course = await require_course(course_id)
    return await courses_repo.create_module(
        course_id=course["id"],
        title=payload["title"],
        description=payload.get("description"),
        order_index=payload.get("order_index"),
    )


async def update_module(module_id: str | UUID, fields: Mapping[str, Any]) -> dict[str, Any]:
    module = await courses_repo.update_module(module_id, fields)
    if not module:
        raise NotFoundError("Module not found")
    return module


async def delete_module(module_id: str | UUID) -> None:
    if not await courses_repo.delete_module(module_id):
        raise NotFoundError("Module not found")


async def create_lesson(module_id: str | UUID, payload: Mapping[str, Any]) -> dict[str, Any]:
    if not await courses_repo.get_module(module_id):
        raise NotFoundError("Module not found")
    return await courses_repo.create_lesson(
        module_id=module_id,
        title=payload["title"],
        description=payload.get("description"),
        content_type=_value(payload.get("content_type") or "text"),
        content=payload.get("content"),
        video_url=payload.get("video_url"),
        order_index=payload.get("order_index"),
        is_final_quiz=bool(payload.get("is_final_quiz")),
        passing_score=payload.get("passing_score"),
    )


async def update_lesson(lesson_id: str | UUID, fields: Mapping[str, Any]) -> dict[str, Any]:
    changes = dict(fields)
    if changes.get("content_type") is not None:
        changes["content_type"] = _value(changes["content_type"])
    lesson = await courses_repo.update_lesson(lesson_id, changes)
    if not lesson:
        raise NotFoundError("Lesson not found")
    return lesson


async def delete_lesson(lesson_id: str | UUID) -> None:
    if not await courses_repo.delete_lesson(lesson_id):
        raise NotFoundError("Lesson not found")


async def reorder_lessons(module_id: str | UUID, lesson_ids: Sequence[str | UUID]) -> list[dict[str, Any]]:
    if not await courses_repo.get_module(module_id):
        raise NotFoundError("Module not found")
    await courses_repo.reorder_lessons(module_id, [str(lesson_id) for lesson_id in lesson_ids])
    module = await courses_repo.get_module(module_id)
    lessons = await courses_repo.list_course_lessons(module["course_id"])
    return [lesson for lesson in lessons if str(lesson["module_id"]) == str(module_id)]


async def require_lesson(lesson_id: str | UUID) -> dict[str, Any]:
    lesson = await courses_repo.get_lesson(lesson_id)
    if not lesson:
        raise NotFoundError("Lesson not found")
    return lesson


def locked_lesson_ids(
    lessons: Iterable[Mapping[str, Any]],
    progress_by_lesson: Mapping[str, Mapping[str, Any]],
    *,
    sequential: bool,
) -> set[str]:
    """Lessons behind an incomplete earlier lesson when completion is sequential.

    ``lessons`` must already be in course order.
    """
    if not sequential:
        return set()
    locked: set[str] = set()
    blocked = False
    for lesson in lessons:
        lesson_id = str(lesson["id"])
        if blocked:
            locked.add(lesson_id)
            continue
        progress = progress_by_lesson.get(lesson_id) or {}
        if progress.get("status") != COMPLETED:
            blocked = True
    return locked


async def get_learner_course(
    user: Mapping[str, Any] | None,
    reference: str,
) -> dict[str, Any]:
    is_admin = bool(user and user.get("is_admin"))
    course = await get_published_course(reference, is_admin=is_admin)
    modules = await courses_repo.list_modules(course["id"])
    lessons = await courses_repo.list_course_lessons(course["id"])

    enrollment = None
    progress_by_lesson: dict[str, dict[str, Any]] = {}
    if user:
        enrollment = await enrollments_repo.get_enrollment(user["id"], course["id"])
        if enrollment:
            rows = await progress_repo.list_course_progress(user["id"], course["id"])
            progress_by_lesson = {str(row["lesson_id"]): row for row in rows}

    locked = locked_lesson_ids(
        lessons,
        progress_by_lesson,
        sequential=bool(course.get("sequential_completion")) and not is_admin,
    )
    by_module: dict[str, list[dict[str, Any]]] = {str(module["id"]): [] for module in modules}
    for lesson in lessons:
        lesson_id = str(lesson["id"])
        by_module.setdefault(str(lesson["module_id"]), []).append(
            {
                **lesson,
                "locked": lesson_id in locked,
                "progress": progress_by_lesson.get(lesson_id),
            }
        )

    return {
        "course": course,
        "modules": [
            {**module, "lessons": by_module.get(str(module["id"]), [])} for module in modules
        ],
        "enrolled": enrollment is not None,
        "progress_percentage": int((enrollment or {}).get("progress_percentage") or 0),
    }


__all__ = [
    "bind_stripe_price",
    "create_course",
    "create_lesson",
    "create_module",
    "delete_course",
    "delete_lesson",
    "delete_module",
    "find_course",
    "get_learner_course",
    "get_published_course",
    "is_free",
    "list_published_courses",
    "locked_lesson_ids",
    "reorder_lessons",
    "require_course",
    "require_lesson",
    "update_course",
    "update_lesson",
    "update_module",
]
