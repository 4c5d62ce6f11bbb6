from __future__ import annotations

import logging
from typing import Any, Iterable, Mapping, Sequence
from uuid import UUID

from ..config import settings
from ..errors import LmsError
from ..repositories import courses as courses_repo
from ..repositories import enrollments as enrollments_repo
from ..repositories import quizzes as quizzes_repo
from ..utils.percent import whole_percent
from . import course_service, enrollment_service, progress_service

logger = logging.getLogger(__name__)

MULTIPLE_CHOICE = "multiple_choice"


def _normalize(value: Any) -> str:
    return str(value or "").strip().lower()


def strip_answers(question: Mapping[str, Any]) -> dict[str, Any]:
    cleaned = {key: value for key, value in question.items() if key != "correct_answer"}
    cleaned["options"] = [
        {key: value for key, value in option.items() if key != "is_correct"}
        for option in (question.get("options") or [])
        if isinstance(option, Mapping)
    ]
    return cleaned


def is_answer_correct(question: Mapping[str, Any], answer: Any) -> bool:
    if answer is None:
        return False
    if question.get("question_type") == MULTIPLE_CHOICE:
        for option in question.get("options") or []:
            if isinstance(option, Mapping) and str(option.get("id")) == str(answer):
                return bool(option.get("is_correct"))
        return False
    return _normalize(answer) == _normalize(question.get("correct_answer"))


def score_answers(
    questions: Sequence[Mapping[str, Any]],
    answers: Mapping[str, Any],
) -> tuple[int, int, int]:
    """Return ``(correct, total_questions, score_percent)``."""
    total = len(questions)
    correct = sum(
        1 for question in questions if is_answer_correct(question, answers.get(str(question["id"])))
    )
    score = whole_percent(correct, total)
    return correct, total, score


def passing_score_for(lesson: Mapping[str, Any], course: Mapping[str, Any] | None) -> int:
    for candidate in (lesson.get("passing_score"), (course or {}).get("passing_score")):
        if candidate is not None:
            return int(candidate)
    return settings.default_passing_score


async def list_questions(
    user: Mapping[str, Any],
    lesson_id: str | UUID,
    *,
    include_answers: bool = False,
) -> list[dict[str, Any]]:
    lesson = await course_service.require_lesson(lesson_id)
    if not user.get("is_admin"):
        await enrollment_service.require_enrollment(user, lesson["course_id"])
        include_answers = False
    questions = await quizzes_repo.list_questions(lesson["id"])
    if include_answers:
        return questions
    return [strip_answers(question) for question in questions]


async def replace_questions(
    lesson_id: str | UUID,
    questions: Iterable[Mapping[str, Any]],
) -> list[dict[str, Any]]:
    lesson = await course_service.require_lesson(lesson_id)
    saved = await quizzes_repo.replace_questions(lesson["id"], list(questions))
    logger.info(
        "Quiz questions replaced",
        extra={"lesson_id": str(lesson["id"]), "count": len(saved)},
    )
    return saved


async def submit_quiz(
    user: Mapping[str, Any],
    lesson_id: str | UUID,
    answers: Mapping[str, Any],
) -> dict[str, Any]:
    lesson = await course_service.require_lesson(lesson_id)
    course_id = lesson["course_id"]
    await enrollment_service.require_enrollment(user, course_id)

    questions = await quizzes_repo.list_questions(lesson["id"])
    if not questions:
        raise LmsError("This lesson has no quiz questions")

    course = await courses_repo.get_course(course_id=course_id)
    correct, total, score = score_answers(questions, answers)
    passing_score = passing_score_for(lesson, course)
    passed = score >= passing_score
    attempt_number = await quizzes_repo.latest_attempt_number(user["id"], lesson["id"]) + 1

    attempt = await quizzes_repo.insert_attempt(
        user_id=user["id"],
        lesson_id=lesson["id"],
        score=score,
        total_points=total,
        passed=passed,
        attempt_number=attempt_number,
        answers=answers,
    )

    course_progress = None
    if passed:
        completion = await progress_service.complete_lesson(
            user,
            course_id,
            lesson["id"],
            final_progress=100,
            quiz_score=score,
        )
        course_progress = completion["course_progress"]
        if lesson.get("is_final_quiz"):
            await enrollments_repo.set_final_score(user["id"], course_id, score)

    logger.info(
        "Quiz submitted",
        extra={
            "lesson_id": str(lesson["id"]),
            "user_id": str(user["id"]),
            "score": score,
            "passed": passed,
            "attempt_number": attempt_number,
        },
    )
    return {
        "attempt": attempt,
        "correct": correct,
        "total_questions": total,
        "passing_score": passing_score,
        "course_progress": course_progress,
    }


async def list_attempts(user: Mapping[str, Any], lesson_id: str | UUID) -> list[dict[str, Any]]:
    return await quizzes_repo.list_attempts(user["id"], lesson_id)


__all__ = [
    "is_answer_correct",
    "list_attempts",
    "list_questions",
    "passing_score_for",
    "replace_questions",
    "score_answers",
    "strip_answers",
    "submit_quiz",
]
