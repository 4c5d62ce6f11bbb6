from __future__ import annotations

from typing import Any
from uuid import UUID

from ..db import get_conn

UserRow = dict[str, Any]


async def get_user(user_id: str | UUID) -> UserRow | None:
    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT u.id,
                   u.email,
                   u.raw_app_meta_data AS app_metadata,
                   a.name AS display_name
              FROM auth.users AS u
              LEFT JOIN public.accounts AS a
                ON a.id = u.id
               AND a.is_personal_account = true
             WHERE u.id = %s
             LIMIT 1
            """,
            (user_id,),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def get_user_by_email(email: str) -> UserRow | None:
    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT u.id,
                   u.email,
                   a.name AS display_name
              FROM auth.users AS u
              LEFT JOIN public.accounts AS a
                ON a.id = u.id
               AND a.is_personal_account = true
             WHERE lower(u.email) = lower(%s)
             ORDER BY u.created_at
             LIMIT 1
            """,
            (email.strip(),),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def list_users_with_stats(
    *,
    search: str | None = None,
    limit: int = 100,
    offset: int = 0,
) -> list[UserRow]:
    """Learners with enrollment and completion counts, newest first."""
    params: list[Any] = []
    where = ""
    if search:
        where = "WHERE (u.email ILIKE %s OR a.name ILIKE %s)"
        pattern = f"%{search.strip()}%"
        params.extend([pattern, pattern])
    params.extend([limit, offset])
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT u.id,
                   u.email,
                   a.name AS display_name,
                   u.created_at,
                   count(e.id) AS enrollments,
                   count(e.id) FILTER (
                       WHERE e.completed_at IS NOT NULL OR e.progress_percentage >= 100
                   ) AS completions,
                   coalesce(round(avg(e.progress_percentage)), 0)::int AS average_progress,
                   greatest(u.created_at, max(e.enrolled_at), max(e.completed_at)) AS last_active
              FROM auth.users AS u
              LEFT JOIN public.accounts AS a
                ON a.id = u.id
               AND a.is_personal_account = true
              LEFT JOIN public.course_enrollments AS e
                ON e.user_id = u.id
              {where}
             GROUP BY u.id, u.email, a.name, u.created_at
             ORDER BY u.created_at DESC
             LIMIT %s OFFSET %s
            """,
            params,
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


__all__ = ["UserRow", "get_user", "get_user_by_email", "list_users_with_stats"]
