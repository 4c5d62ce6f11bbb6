from __future__ import annotations

from typing import Any, Mapping, Sequence
from uuid import UUID

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..db import get_conn, pool

QuestionRow = dict[str, Any]
AttemptRow = dict[str, Any]

_QUESTION_COLUMNS = """
        id,
        lesson_id,
        question,
        question_type,
        options,
        correct_answer,
        explanation,
        points,
        order_index
    """

_ATTEMPT_COLUMNS = """
        id,
        lesson_id,
        user_id,
        score,
        total_points,
        passed,
        attempt_number,
        answers,
        created_at
    """


async def list_questions(lesson_id: str | UUID) -> list[QuestionRow]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_QUESTION_COLUMNS}
              FROM public.quiz_questions
             WHERE lesson_id = %s
             ORDER BY order_index, id
            """,
            (lesson_id,),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def replace_questions(
    lesson_id: str | UUID,
    questions: Sequence[Mapping[str, Any]],
) -> list[QuestionRow]:
    """Swap the full question set of a lesson in one transaction."""
    saved: list[QuestionRow] = []
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute("DELETE FROM public.quiz_questions WHERE lesson_id = %s", (lesson_id,))
            for index, question in enumerate(questions):
                await cur.execute(
                    f"""
                    INSERT INTO public.quiz_questions (
                        lesson_id,
                        question,
                        question_type,
                        options,
                        correct_answer,
                        explanation,
                        points,
                        order_index
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_QUESTION_COLUMNS}
                    """,
                    (
                        lesson_id,
                        question["question"],
                        question.get("question_type") or "multiple_choice",
                        Jsonb(list(question.get("options") or [])),
                        question.get("correct_answer"),
                        question.get("explanation"),
                        int(question.get("points") or 1),
                        question.get("order_index", index),
                    ),
                )
                row = await cur.fetchone()
                saved.append(dict(row))
            await conn.commit()
    return saved


async def latest_attempt_number(user_id: str | UUID, lesson_id: str | UUID) -> int:
    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT COALESCE(MAX(attempt_number), 0) AS attempt_number
              FROM public.quiz_attempts
             WHERE user_id = %s
               AND lesson_id = %s
            """,
            (user_id, lesson_id),
        )
        row = await cur.fetchone()
    return int(row["attempt_number"]) if row else 0


async def insert_attempt(
    *,
    user_id: str | UUID,
    lesson_id: str | UUID,
    score: int,
    total_points: int,
    passed: bool,
    attempt_number: int,
    answers: Mapping[str, Any],
) -> AttemptRow:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                INSERT INTO public.quiz_attempts (
                    lesson_id,
                    user_id,
                    score,
                    total_points,
                    passed,
                    attempt_number,
                    answers
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s)
                RETURNING {_ATTEMPT_COLUMNS}
                """,
                (
                    lesson_id,
                    user_id,
                    score,
                    total_points,
                    passed,
                    attempt_number,
                    Jsonb(dict(answers)),
                ),
            )
            row = await cur.fetchone()
            await conn.commit()
    return dict(row)


async def list_attempts(user_id: str | UUID, lesson_id: str | UUID) -> list[AttemptRow]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_ATTEMPT_COLUMNS}
              FROM public.quiz_attempts
             WHERE user_id = %s
               AND lesson_id = %s
             ORDER BY attempt_number DESC
            """,
            (user_id, lesson_id),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


__all__ = [
    "AttemptRow",
    "QuestionRow",
    "insert_attempt",
    "latest_attempt_number",
    "list_attempts",
    "list_questions",
    "replace_questions",
]
