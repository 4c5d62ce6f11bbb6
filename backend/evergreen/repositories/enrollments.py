from __future__ import annotations

from typing import Any
from uuid import UUID

from psycopg.rows import dict_row

from ..db import get_conn, pool

EnrollmentRow = dict[str, Any]

_ENROLLMENT_COLUMNS = """
        id,
        user_id,
        course_id,
        account_id,
        invitation_id,
        invited_by,
        progress_percentage,
        final_score,
        enrolled_at,
        completed_at
    """

_ENROLLMENT_COLUMNS_WITH_ALIAS = _ENROLLMENT_COLUMNS.replace("\n        ", "\n        e.")

UPSERT_ENROLLMENT_SQL = f"""
    INSERT INTO public.course_enrollments (
        user_id,
        course_id,
        account_id,
        invitation_id,
        invited_by,
        progress_percentage,
        enrolled_at
    )
    VALUES (%s, %s, %s, %s, %s, 0, now())
    ON CONFLICT (user_id, course_id) DO NOTHING
    RETURNING {_ENROLLMENT_COLUMNS}
"""


async def get_enrollment(user_id: str | UUID, course_id: str | UUID) -> EnrollmentRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_ENROLLMENT_COLUMNS}
              FROM public.course_enrollments
             WHERE user_id = %s
               AND course_id = %s
             LIMIT 1
            """,
            (user_id, course_id),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def ensure_enrollment(
    *,
    user_id: str | UUID,
    course_id: str | UUID,
    account_id: str | UUID | None = None,
    invitation_id: str | UUID | None = None,
    invited_by: str | UUID | None = None,
) -> tuple[EnrollmentRow, bool]:
    """Insert an enrollment unless one exists. Returns ``(row, created)``."""
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                UPSERT_ENROLLMENT_SQL,
                (user_id, course_id, account_id, invitation_id, invited_by),
            )
            row = await cur.fetchone()
            created = row is not None
            if not created:
                await cur.execute(
                    f"""
                    SELECT {_ENROLLMENT_COLUMNS}
                      FROM public.course_enrollments
                     WHERE user_id = %s
                       AND course_id = %s
                    """,
                    (user_id, course_id),
                )
                row = await cur.fetchone()
            await conn.commit()
    return dict(row), created


async def delete_enrollment(
    user_id: str | UUID,
    course_id: str | UUID,
    *,
    account_id: str | UUID | None = None,
) -> bool:
    clauses = ["user_id = %s", "course_id = %s"]
    params: list[Any] = [user_id, course_id]
    if account_id:
        clauses.append("account_id = %s")
        params.append(account_id)
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor() as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"DELETE FROM public.course_enrollments WHERE {' AND '.join(clauses)}",
                params,
            )
            deleted = cur.rowcount > 0
            await conn.commit()
    return deleted


async def list_user_enrollments(user_id: str | UUID) -> list[EnrollmentRow]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_ENROLLMENT_COLUMNS_WITH_ALIAS},
                   c.title AS course_title,
                   c.slug AS course_slug,
                   c.status AS course_status,
                   c.passing_score AS course_passing_score
              FROM public.course_enrollments AS e
              JOIN public.courses AS c
                ON c.id = e.course_id
             WHERE e.user_id = %s
             ORDER BY e.enrolled_at DESC
            """,
            (user_id,),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def list_account_enrollments(
    account_id: str | UUID,
    course_id: str | UUID,
) -> list[EnrollmentRow]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_ENROLLMENT_COLUMNS_WITH_ALIAS},
                   u.email,
                   a.name AS learner_name
              FROM public.course_enrollments AS e
              JOIN auth.users AS u
                ON u.id = e.user_id
              LEFT JOIN public.accounts AS a
                ON a.id = e.user_id
               AND a.is_personal_account = true
             WHERE e.account_id = %s
               AND e.course_id = %s
             ORDER BY e.enrolled_at
            """,
            (account_id, course_id),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def set_progress(
    user_id: str | UUID,
    course_id: str | UUID,
    *,
    progress_percentage: int,
    completed: bool,
) -> EnrollmentRow | None:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                UPDATE public.course_enrollments
                   SET progress_percentage = %s,
                       completed_at = CASE
                         WHEN %s THEN COALESCE(completed_at, now())
                         ELSE completed_at
                       END
                 WHERE user_id = %s
                   AND course_id = %s
                 RETURNING {_ENROLLMENT_COLUMNS}
                """,
                (progress_percentage, completed, user_id, course_id),
            )
            row = await cur.fetchone()
            await conn.commit()
    return dict(row) if row else None


async def count_course_enrollments(course_id: str | UUID) -> int:
    async with get_conn() as cur:
        await cur.execute(
            "SELECT count(*)::int AS total FROM public.course_enrollments WHERE course_id = %s",
            (course_id,),
        )
        row = await cur.fetchone()
    return int(row["total"]) if row else 0


async def set_final_score(user_id: str | UUID, course_id: str | UUID, score: int) -> None:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor() as cur:  # type: ignore[attr-defined]
            await cur.execute(
                """
                UPDATE public.course_enrollments
                   SET final_score = %s
                 WHERE user_id = %s
                   AND course_id = %s
                """,
                (score, user_id, course_id),
            )
            await conn.commit()


__all__ = [
    "EnrollmentRow",
    "UPSERT_ENROLLMENT_SQL",
    "count_course_enrollments",
    "delete_enrollment",
    "ensure_enrollment",
    "get_enrollment",
    "list_account_enrollments",
    "list_user_enrollments",
    "set_final_score",
    "set_progress",
]
