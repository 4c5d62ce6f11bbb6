from __future__ import annotations

from typing import Any
from uuid import UUID

from psycopg.rows import dict_row

from ..db import get_conn, pool
from .enrollments import UPSERT_ENROLLMENT_SQL
from .seats import ADD_SEATS_SQL

PurchaseRow = dict[str, Any]

_PURCHASE_COLUMNS = """
        id,
        stripe_session_id,
        course_id,
        account_id,
        purchaser_user_id,
        quantity,
        purchase_type,
        amount_total,
        currency,
        created_at
    """


async def apply_course_purchase(
    *,
    stripe_session_id: str,
    course_id: str | UUID,
    account_id: str | UUID,
    purchaser_user_id: str | UUID,
    quantity: int,
    purchase_type: str,
    amount_total: int | None = None,
    currency: str | None = None,
) -> dict[str, Any]:
    """Record one purchased line item and allocate what it paid for.

    The ledger insert, the seat increment and (for individual purchases) the
    purchaser's enrollment share a transaction. A ledger row that already exists
    means the line item was handled before, so nothing else is written.
    """
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                INSERT INTO public.course_purchases (
                    stripe_session_id,
                    course_id,
                    account_id,
                    purchaser_user_id,
                    quantity,
                    purchase_type,
                    amount_total,
                    currency
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s)
                ON CONFLICT (stripe_session_id, course_id) DO NOTHING
                RETURNING {_PURCHASE_COLUMNS}
                """,
                (
                    stripe_session_id,
                    course_id,
                    account_id,
                    purchaser_user_id,
                    quantity,
                    purchase_type,
                    amount_total,
                    currency,
                ),
            )
            purchase = await cur.fetchone()
            if purchase is None:
                await conn.rollback()
                return {"duplicate": True, "purchase": None, "seats": None, "enrollment": None}

            await cur.execute(
                ADD_SEATS_SQL,
                (account_id, course_id, quantity, purchaser_user_id, purchaser_user_id),
            )
            seats = await cur.fetchone()

            enrollment = None
            if purchase_type == "individual":
                await cur.execute(
                    UPSERT_ENROLLMENT_SQL,
                    (purchaser_user_id, course_id, account_id, None, None),
                )
                enrollment = await cur.fetchone()

            await conn.commit()

    return {
        "duplicate": False,
        "purchase": dict(purchase),
        "seats": dict(seats) if seats else None,
        "enrollment": dict(enrollment) if enrollment else None,
    }


async def list_session_purchases(stripe_session_id: str) -> list[PurchaseRow]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_PURCHASE_COLUMNS}
              FROM public.course_purchases
             WHERE stripe_session_id = %s
             ORDER BY created_at
            """,
            (stripe_session_id,),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


__all__ = ["PurchaseRow", "apply_course_purchase", "list_session_purchases"]
