from __future__ import annotations

from typing import Any, Mapping
from uuid import UUID

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..db import get_conn, pool

ProgressRow = dict[str, Any]

_LESSON_PROGRESS_COLUMNS = """
        id,
        user_id,
        lesson_id,
        status,
        progress_percentage,
        time_spent,
        quiz_score,
        completed_at,
        last_accessed
    """

_LESSON_PROGRESS_COLUMNS_WITH_ALIAS = _LESSON_PROGRESS_COLUMNS.replace(
    "\n        ", "\n        lp."
)

_VIDEO_PROGRESS_COLUMNS = """
        user_id,
        lesson_id,
        "current_time",
        duration,
        device_info,
        updated_at
    """


async def upsert_lesson_progress(
    *,
    user_id: str | UUID,
    lesson_id: str | UUID,
    status: str,
    progress_percentage: int,
    time_spent: int = 0,
    quiz_score: int | None = None,
) -> ProgressRow:
    """Write the learner's progress on a lesson.

    Time spent accumulates across calls. A lesson already marked completed keeps
    that status and its original ``completed_at``.
    """
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                INSERT INTO public.lesson_progress AS lp (
                    user_id,
                    lesson_id,
                    status,
                    progress_percentage,
                    time_spent,
                    quiz_score,
                    completed_at,
                    last_accessed
                )
                VALUES (
                    %s, %s, %s, %s, %s, %s,
                    CASE WHEN %s THEN now() END,
                    now()
                )
                ON CONFLICT (user_id, lesson_id) DO UPDATE
                   SET status = CASE
                         WHEN lp.status = 'completed' THEN lp.status
                         ELSE EXCLUDED.status
                       END,
                       progress_percentage = GREATEST(lp.progress_percentage, EXCLUDED.progress_percentage),
                       time_spent = COALESCE(lp.time_spent, 0) + EXCLUDED.time_spent,
                       quiz_score = COALESCE(EXCLUDED.quiz_score, lp.quiz_score),
                       completed_at = COALESCE(lp.completed_at, EXCLUDED.completed_at),
                       last_accessed = now()
                RETURNING {_LESSON_PROGRESS_COLUMNS}
                """,
                (
                    user_id,
                    lesson_id,
                    status,
                    progress_percentage,
                    time_spent,
                    quiz_score,
                    status == "completed",
                ),
            )
            row = await cur.fetchone()
            await conn.commit()
    return dict(row)


async def list_course_progress(user_id: str | UUID, course_id: str | UUID) -> list[ProgressRow]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_LESSON_PROGRESS_COLUMNS_WITH_ALIAS}
              FROM public.lesson_progress AS lp
              JOIN public.lessons AS l
                ON l.id = lp.lesson_id
              JOIN public.course_modules AS m
                ON m.id = l.module_id
             WHERE lp.user_id = %s
               AND m.course_id = %s
            """,
            (user_id, course_id),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def last_accessed_lesson(user_id: str | UUID, course_id: str | UUID) -> ProgressRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_LESSON_PROGRESS_COLUMNS_WITH_ALIAS},
                   l.title AS lesson_title,
                   l.module_id
              FROM public.lesson_progress AS lp
              JOIN public.lessons AS l
                ON l.id = lp.lesson_id
              JOIN public.course_modules AS m
                ON m.id = l.module_id
             WHERE lp.user_id = %s
               AND m.course_id = %s
             ORDER BY lp.last_accessed DESC NULLS LAST
             LIMIT 1
            """,
            (user_id, course_id),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def count_completed_lessons(user_id: str | UUID, course_id: str | UUID) -> int:
    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT count(*)::int AS completed
              FROM public.lesson_progress AS lp
              JOIN public.lessons AS l
                ON l.id = lp.lesson_id
              JOIN public.course_modules AS m
                ON m.id = l.module_id
             WHERE lp.user_id = %s
               AND m.course_id = %s
               AND lp.status = 'completed'
            """,
            (user_id, course_id),
        )
        row = await cur.fetchone()
    return int(row["completed"]) if row else 0


async def upsert_video_progress(
    *,
    user_id: str | UUID,
    lesson_id: str | UUID,
    current_time: int,
    duration: int | None,
    device_info: Mapping[str, Any] | None = None,
) -> ProgressRow:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                INSERT INTO public.video_progress (
                    user_id,
                    lesson_id,
                    "current_time",
                    duration,
                    device_info,
                    updated_at
                )
                VALUES (%s, %s, %s, %s, %s, now())
                ON CONFLICT (user_id, lesson_id) DO UPDATE
                   SET "current_time" = EXCLUDED."current_time",
                       duration = COALESCE(EXCLUDED.duration, public.video_progress.duration),
                       device_info = COALESCE(EXCLUDED.device_info, public.video_progress.device_info),
                       updated_at = now()
                RETURNING {_VIDEO_PROGRESS_COLUMNS}
                """,
                (
                    user_id,
                    lesson_id,
                    current_time,
                    duration,
                    Jsonb(dict(device_info)) if device_info else None,
                ),
            )
            row = await cur.fetchone()
            await conn.commit()
    return dict(row)


async def get_video_progress(user_id: str | UUID, lesson_id: str | UUID) -> ProgressRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_VIDEO_PROGRESS_COLUMNS}
              FROM public.video_progress
             WHERE user_id = %s
               AND lesson_id = %s
            """,
            (user_id, lesson_id),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


__all__ = [
    "ProgressRow",
    "count_completed_lessons",
    "get_video_progress",
    "last_accessed_lesson",
    "list_course_progress",
    "upsert_lesson_progress",
    "upsert_video_progress",
]
