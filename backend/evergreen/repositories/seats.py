from __future__ import annotations

from typing import Any
from uuid import UUID

from psycopg.rows import dict_row

from ..db import get_conn, pool

SeatRow = dict[str, Any]

ADD_SEATS_SQL = """
    INSERT INTO public.course_seats (
        account_id,
        course_id,
        total_seats,
        created_by,
        updated_by
    )
    VALUES (%s, %s, %s, %s, %s)
    ON CONFLICT (account_id, course_id)
    DO UPDATE SET total_seats = public.course_seats.total_seats + EXCLUDED.total_seats,
                  updated_by = EXCLUDED.updated_by,
                  updated_at = now()
    RETURNING id, account_id, course_id, total_seats
"""

# Used seats are enrollments attributed to the account plus pending invitations.
_SEAT_USAGE_SELECT = """
    SELECT s.account_id,
           s.course_id,
           c.title AS course_title,
           c.slug AS course_slug,
           s.total_seats,
           (SELECT count(*)
              FROM public.course_enrollments AS e
             WHERE e.account_id = s.account_id
               AND e.course_id = s.course_id)::int AS enrolled,
           (SELECT count(*)
              FROM public.course_invitations AS i
             WHERE i.account_id = s.account_id
               AND i.course_id = s.course_id
               AND i.accepted_at IS NULL
               AND (i.expires_at IS NULL OR i.expires_at > now()))::int AS pending
      FROM public.course_seats AS s
      JOIN public.courses AS c
        ON c.id = s.course_id
"""


async def get_seat_usage(account_id: str | UUID, course_id: str | UUID) -> SeatRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            {_SEAT_USAGE_SELECT}
             WHERE s.account_id = %s
               AND s.course_id = %s
             LIMIT 1
            """,
            (account_id, course_id),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def list_seat_usage(account_id: str | UUID) -> list[SeatRow]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            {_SEAT_USAGE_SELECT}
             WHERE s.account_id = %s
             ORDER BY c.title
            """,
            (account_id,),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def set_total_seats(
    *,
    account_id: str | UUID,
    course_id: str | UUID,
    total_seats: int,
    updated_by: str | UUID,
) -> SeatRow:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                """
                INSERT INTO public.course_seats (
                    account_id,
                    course_id,
                    total_seats,
                    created_by,
                    updated_by
                )
                VALUES (%s, %s, %s, %s, %s)
                ON CONFLICT (account_id, course_id)
                DO UPDATE SET total_seats = EXCLUDED.total_seats,
                              updated_by = EXCLUDED.updated_by,
                              updated_at = now()
                RETURNING id, account_id, course_id, total_seats
                """,
                (account_id, course_id, total_seats, updated_by, updated_by),
            )
            row = await cur.fetchone()
            await conn.commit()
    return dict(row)


__all__ = [
    "ADD_SEATS_SQL",
    "SeatRow",
    "get_seat_usage",
    "list_seat_usage",
    "set_total_seats",
]
