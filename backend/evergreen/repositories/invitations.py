from __future__ import annotations

from datetime import datetime
from typing import Any
from uuid import UUID

from psycopg import errors
from psycopg.rows import dict_row

from ..db import get_conn, pool

InvitationRow = dict[str, Any]

_INVITATION_COLUMNS = """
        id,
        email,
        invitee_name,
        course_id,
        account_id,
        invited_by,
        invite_token,
        expires_at,
        accepted_at,
        accepted_by,
        created_at
    """

_INVITATION_COLUMNS_WITH_ALIAS = _INVITATION_COLUMNS.replace("\n        ", "\n        i.")


async def get_invitation(invitation_id: str | UUID) -> InvitationRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"SELECT {_INVITATION_COLUMNS} FROM public.course_invitations WHERE id = %s LIMIT 1",
            (invitation_id,),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def get_invitation_by_token(token: str) -> InvitationRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_INVITATION_COLUMNS_WITH_ALIAS},
                   c.title AS course_title,
                   a.name AS account_name
              FROM public.course_invitations AS i
              JOIN public.courses AS c
                ON c.id = i.course_id
              JOIN public.accounts AS a
                ON a.id = i.account_id
             WHERE i.invite_token = %s
             LIMIT 1
            """,
            (token,),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def get_pending_invitation(
    *,
    email: str,
    course_id: str | UUID,
    account_id: str | UUID,
) -> InvitationRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_INVITATION_COLUMNS}
              FROM public.course_invitations
             WHERE lower(email) = lower(%s)
               AND course_id = %s
               AND account_id = %s
               AND accepted_at IS NULL
               AND expires_at > now()
             LIMIT 1
            """,
            (email, course_id, account_id),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


CREATED = "created"
DUPLICATE = "duplicate"
NO_SEATS = "no_seats"

# Enrollments attributed to the account plus live pending invitations.
_USED_SEATS_SQL = """
    SELECT ((SELECT count(*)
               FROM public.course_enrollments
              WHERE account_id = %(account_id)s
                AND course_id = %(course_id)s)
          + (SELECT count(*)
               FROM public.course_invitations
              WHERE account_id = %(account_id)s
                AND course_id = %(course_id)s
                AND accepted_at IS NULL
                AND expires_at > now()))::int AS used
"""


async def create_invitation(
    *,
    email: str,
    invitee_name: str | None,
    course_id: str | UUID,
    account_id: str | UUID,
    invited_by: str | UUID,
    invite_token: str,
    expires_at: datetime,
) -> tuple[str, InvitationRow | None]:
    """Reserve a seat and insert a pending invitation in one transaction.

    The seat row is locked ``FOR UPDATE`` so two invitations cannot both take
    the last seat. An expired, unaccepted invitation for the same email is
    replaced. Returns ``(CREATED, row)``, ``(DUPLICATE, None)`` or
    ``(NO_SEATS, None)``.
    """
    scope = {"account_id": account_id, "course_id": course_id}
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                """
                SELECT total_seats
                  FROM public.course_seats
                 WHERE account_id = %(account_id)s
                   AND course_id = %(course_id)s
                   FOR UPDATE
                """,
                scope,
            )
            seats = await cur.fetchone()
            if not seats:
                await conn.rollback()
                return NO_SEATS, None

            await cur.execute(
                """
                DELETE FROM public.course_invitations
                 WHERE lower(email) = lower(%(email)s)
                   AND account_id = %(account_id)s
                   AND course_id = %(course_id)s
                   AND accepted_at IS NULL
                   AND expires_at <= now()
                """,
                {**scope, "email": email},
            )

            await cur.execute(_USED_SEATS_SQL, scope)
            used = (await cur.fetchone())["used"]
            if int(seats["total_seats"]) - int(used) <= 0:
                await conn.rollback()
                return NO_SEATS, None

            try:
                await cur.execute(
                    f"""
                    INSERT INTO public.course_invitations (
                        email,
                        invitee_name,
                        course_id,
                        account_id,
                        invited_by,
                        invite_token,
                        expires_at
                    )
                    VALUES (%s, %s, %s, %s, %s, %s, %s)
                    RETURNING {_INVITATION_COLUMNS}
                    """,
                    (
                        email,
                        invitee_name,
                        course_id,
                        account_id,
                        invited_by,
                        invite_token,
                        expires_at,
                    ),
                )
            except errors.UniqueViolation:
                await conn.rollback()
                return DUPLICATE, None
            row = await cur.fetchone()
            await conn.commit()
    return CREATED, dict(row)


async def list_pending_for_email(email: str) -> list[InvitationRow]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_INVITATION_COLUMNS}
              FROM public.course_invitations
             WHERE lower(email) = lower(%s)
               AND accepted_at IS NULL
               AND (expires_at IS NULL OR expires_at > now())
             ORDER BY created_at
            """,
            (email,),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def list_account_invitations(
    account_id: str | UUID,
    *,
    course_id: str | UUID | None = None,
    pending_only: bool = True,
) -> list[InvitationRow]:
    clauses = ["account_id = %s"]
    params: list[Any] = [account_id]
    if course_id:
        clauses.append("course_id = %s")
        params.append(course_id)
    if pending_only:
        clauses.append("accepted_at IS NULL")
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_INVITATION_COLUMNS}
              FROM public.course_invitations
             WHERE {' AND '.join(clauses)}
             ORDER BY created_at DESC
            """,
            params,
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def mark_accepted(invitation_id: str | UUID, user_id: str | UUID) -> InvitationRow | None:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                UPDATE public.course_invitations
                   SET accepted_at = now(),
                       accepted_by = %s
                 WHERE id = %s
                   AND accepted_at IS NULL
                 RETURNING {_INVITATION_COLUMNS}
                """,
                (user_id, invitation_id),
            )
            row = await cur.fetchone()
            await conn.commit()
    return dict(row) if row else None


async def refresh_token(
    invitation_id: str | UUID,
    *,
    invite_token: str,
    expires_at: datetime,
) -> InvitationRow | None:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                UPDATE public.course_invitations
                   SET invite_token = %s,
                       expires_at = %s
                 WHERE id = %s
                   AND accepted_at IS NULL
                 RETURNING {_INVITATION_COLUMNS}
                """,
                (invite_token, expires_at, invitation_id),
            )
            row = await cur.fetchone()
            await conn.commit()
    return dict(row) if row else None


async def delete_invitation(invitation_id: str | UUID) -> bool:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor() as cur:  # type: ignore[attr-defined]
            await cur.execute(
                "DELETE FROM public.course_invitations WHERE id = %s AND accepted_at IS NULL",
                (invitation_id,),
            )
            deleted = cur.rowcount > 0
            await conn.commit()
    return deleted


__all__ = [
    "CREATED",
    "DUPLICATE",
    "InvitationRow",
    "NO_SEATS",
    "create_invitation",
    "delete_invitation",
    "get_invitation",
    "get_invitation_by_token",
    "get_pending_invitation",
    "list_account_invitations",
    "list_pending_for_email",
    "mark_accepted",
    "refresh_token",
]
