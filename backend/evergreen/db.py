from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from psycopg import AsyncCursor
from psycopg.rows import DictRow, dict_row
from psycopg_pool import AsyncConnectionPool

from .config import settings

pool = AsyncConnectionPool(
    conninfo=str(settings.database_url),
    min_size=settings.db_pool_min_size,
    max_size=settings.db_pool_max_size,
    kwargs={"autocommit": False},
    open=False,
)


@asynccontextmanager
async def get_conn() -> AsyncIterator[AsyncCursor[DictRow]]:
    """Yield a dict-row cursor on a pooled connection.

    Read helpers use this directly; the transaction is committed when the block
    exits without error and rolled back otherwise (psycopg pool semantics).
    """

    async with pool.connection() as conn:
        async with conn.cursor(row_factory=dict_row) as cur:
            yield cur


__all__ = ["get_conn", "pool"]
