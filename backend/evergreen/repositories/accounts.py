from __future__ import annotations

from typing import Any
from uuid import UUID

from psycopg.rows import dict_row

from ..db import get_conn, pool

AccountRow = dict[str, Any]

TEAM_MANAGER_ROLE = "team_manager"
MANAGER_ROLES = ("owner", TEAM_MANAGER_ROLE)

_ACCOUNT_COLUMNS = """
    id,
    primary_owner_user_id,
    name,
    slug,
    email,
    is_personal_account,
    created_at,
    updated_at
"""

_ACCOUNT_COLUMNS_WITH_ALIAS = _ACCOUNT_COLUMNS.replace("\n    ", "\n    a.")

# Team lookup: a non-personal account where the user is team manager, otherwise one
# they own as primary owner. Manager memberships win over plain ownership.
_FIND_TEAM_SQL = f"""
    SELECT {_ACCOUNT_COLUMNS}
      FROM (
        SELECT a.*, 0 AS rank
          FROM public.accounts AS a
          JOIN public.accounts_memberships AS m
            ON m.account_id = a.id
         WHERE m.user_id = %s
           AND m.account_role = '{TEAM_MANAGER_ROLE}'
           AND a.is_personal_account = false
        UNION ALL
        SELECT a.*, 1 AS rank
          FROM public.accounts AS a
         WHERE a.primary_owner_user_id = %s
           AND a.is_personal_account = false
      ) AS candidates
     ORDER BY rank, created_at
     LIMIT 1
"""


async def get_account(account_id: str | UUID) -> AccountRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"SELECT {_ACCOUNT_COLUMNS} FROM public.accounts WHERE id = %s LIMIT 1",
            (account_id,),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def get_or_create_team_account(
    *,
    owner_user_id: str | UUID,
    name: str,
    slug: str,
    email: str | None = None,
) -> tuple[AccountRow, bool]:
    """Return the owner's team account, creating it if none exists.

    The lookup and insert run under a transaction-scoped advisory lock keyed by the
    owner id so that concurrent webhook deliveries cannot create two teams.
    Returns ``(account, created)``.
    """

    owner = str(owner_user_id)
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                "SELECT pg_advisory_xact_lock(hashtext(%s))",
                (f"team-account:{owner}",),
            )
            await cur.execute(_FIND_TEAM_SQL, (owner, owner))
            existing = await cur.fetchone()
            if existing:
                await conn.commit()
                return dict(existing), False

            await cur.execute(
                f"""
                INSERT INTO public.accounts (
                    primary_owner_user_id,
                    name,
                    slug,
                    email,
                    is_personal_account
                )
                VALUES (%s, %s, %s, %s, false)
                RETURNING {_ACCOUNT_COLUMNS}
                """,
                (owner, name, slug, email),
            )
            account = await cur.fetchone()
            await cur.execute(
                """
                INSERT INTO public.accounts_memberships (user_id, account_id, account_role)
                VALUES (%s, %s, %s)
                ON CONFLICT (user_id, account_id)
                DO UPDATE SET account_role = EXCLUDED.account_role
                """,
                (owner, account["id"], TEAM_MANAGER_ROLE),
            )
            await conn.commit()
            return dict(account), True


async def is_account_manager(user_id: str | UUID, account_id: str | UUID) -> bool:
    async with get_conn() as cur:
        await cur.execute(
            """
            SELECT 1
              FROM public.accounts AS a
             WHERE a.id = %s
               AND (
                 a.primary_owner_user_id = %s
                 OR EXISTS (
                   SELECT 1
                     FROM public.accounts_memberships AS m
                    WHERE m.account_id = a.id
                      AND m.user_id = %s
                      AND m.account_role = ANY(%s)
                 )
               )
             LIMIT 1
            """,
            (account_id, user_id, user_id, list(MANAGER_ROLES)),
        )
        row = await cur.fetchone()
    return row is not None


async def list_managed_accounts(user_id: str | UUID) -> list[AccountRow]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT DISTINCT {_ACCOUNT_COLUMNS_WITH_ALIAS}
              FROM public.accounts AS a
              LEFT JOIN public.accounts_memberships AS m
                ON m.account_id = a.id
               AND m.user_id = %s
             WHERE a.is_personal_account = false
               AND (a.primary_owner_user_id = %s OR m.account_role = ANY(%s))
             ORDER BY a.created_at
            """,
            (user_id, user_id, list(MANAGER_ROLES)),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def rename_personal_account(user_id: str | UUID, name: str) -> None:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor() as cur:  # type: ignore[attr-defined]
            await cur.execute(
                """
                UPDATE public.accounts
                   SET name = %s,
                       updated_at = now()
                 WHERE id = %s
                   AND is_personal_account = true
                """,
                (name, user_id),
            )
            await conn.commit()


__all__ = [
    "AccountRow",
    "MANAGER_ROLES",
    "TEAM_MANAGER_ROLE",
    "get_account",
    "get_or_create_team_account",
    "is_account_manager",
    "list_managed_accounts",
    "rename_personal_account",
]
