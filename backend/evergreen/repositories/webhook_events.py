from __future__ import annotations

from typing import Any, Mapping

from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..db import get_conn, pool

WebhookEventRow = dict[str, Any]

STATUS_PROCESSING = "processing"
STATUS_PROCESSED = "processed"
STATUS_FAILED = "failed"
STATUS_IGNORED = "ignored"

_EVENT_COLUMNS = """
        event_id,
        event_type,
        status,
        attempts,
        last_error,
        received_at,
        processed_at
    """


async def begin_event(
    event_id: str,
    event_type: str,
    payload: Mapping[str, Any],
) -> WebhookEventRow:
    """Insert or re-open the ledger row for a delivery.

    Rows already ``processed`` or ``ignored`` are returned untouched so the caller
    can answer the redelivery as a duplicate. Anything else moves back to
    ``processing`` with its attempt counter bumped.
    """
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                INSERT INTO public.stripe_webhook_events (
                    event_id,
                    event_type,
                    status,
                    attempts,
                    payload,
                    received_at
                )
                VALUES (%s, %s, '{STATUS_PROCESSING}', 1, %s, now())
                ON CONFLICT (event_id) DO UPDATE
                   SET status = '{STATUS_PROCESSING}',
                       attempts = public.stripe_webhook_events.attempts + 1,
                       last_error = NULL
                 WHERE public.stripe_webhook_events.status NOT IN
                       ('{STATUS_PROCESSED}', '{STATUS_IGNORED}')
                RETURNING {_EVENT_COLUMNS}, (xmax = 0) AS inserted
                """,
                (event_id, event_type, Jsonb(dict(payload))),
            )
            row = await cur.fetchone()
            if row is None:
                await cur.execute(
                    f"""
                    SELECT {_EVENT_COLUMNS}, false AS inserted
                      FROM public.stripe_webhook_events
                     WHERE event_id = %s
                    """,
                    (event_id,),
                )
                row = await cur.fetchone()
            await conn.commit()
    return dict(row)


async def _finish(event_id: str, status: str, error: str | None = None) -> None:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor() as cur:  # type: ignore[attr-defined]
            await cur.execute(
                """
                UPDATE public.stripe_webhook_events
                   SET status = %s,
                       last_error = %s,
                       processed_at = CASE WHEN %s THEN now() ELSE processed_at END
                 WHERE event_id = %s
                """,
                (status, error, status != STATUS_FAILED, event_id),
            )
            await conn.commit()


async def mark_processed(event_id: str) -> None:
    await _finish(event_id, STATUS_PROCESSED)


async def mark_ignored(event_id: str) -> None:
    await _finish(event_id, STATUS_IGNORED)


async def mark_failed(event_id: str, error: str) -> None:
    await _finish(event_id, STATUS_FAILED, error[:2000])


async def get_event(event_id: str) -> WebhookEventRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"SELECT {_EVENT_COLUMNS} FROM public.stripe_webhook_events WHERE event_id = %s",
            (event_id,),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


__all__ = [
    "STATUS_FAILED",
    "STATUS_IGNORED",
    "STATUS_PROCESSED",
    "STATUS_PROCESSING",
    "WebhookEventRow",
    "begin_event",
    "get_event",
    "mark_failed",
    "mark_ignored",
    "mark_processed",
]
