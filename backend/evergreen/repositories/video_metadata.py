from __future__ import annotations

from typing import Any
from uuid import UUID

from psycopg.rows import dict_row

from ..db import get_conn, pool

VideoRow = dict[str, Any]

_VIDEO_COLUMNS = """
        id,
        lesson_id,
        language_code,
        storage_path,
        bucket,
        duration_seconds,
        file_size,
        quality,
        processing_status,
        thumbnail_path,
        created_at,
        updated_at
    """


async def list_lesson_videos(lesson_id: str | UUID) -> list[VideoRow]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_VIDEO_COLUMNS}
              FROM public.video_metadata
             WHERE lesson_id = %s
             ORDER BY language_code, created_at DESC
            """,
            (lesson_id,),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def get_ready_video(lesson_id: str | UUID, language_code: str) -> VideoRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_VIDEO_COLUMNS}
              FROM public.video_metadata
             WHERE lesson_id = %s
               AND language_code = %s
               AND processing_status = 'ready'
             ORDER BY updated_at DESC NULLS LAST
             LIMIT 1
            """,
            (lesson_id, language_code),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def insert_video(
    *,
    lesson_id: str | UUID,
    language_code: str,
    storage_path: str,
    bucket: str,
    duration_seconds: int | None = None,
    file_size: int | None = None,
    quality: str | None = None,
    thumbnail_path: str | None = None,
) -> VideoRow:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                INSERT INTO public.video_metadata (
                    lesson_id,
                    language_code,
                    storage_path,
                    bucket,
                    duration_seconds,
                    file_size,
                    quality,
                    thumbnail_path,
                    processing_status
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, 'pending')
                RETURNING {_VIDEO_COLUMNS}
                """,
                (
                    lesson_id,
                    language_code,
                    storage_path,
                    bucket,
                    duration_seconds,
                    file_size,
                    quality,
                    thumbnail_path,
                ),
            )
            row = await cur.fetchone()
            await conn.commit()
    return dict(row)


async def set_status(video_id: str | UUID, processing_status: str) -> VideoRow | None:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                UPDATE public.video_metadata
                   SET processing_status = %s,
                       updated_at = now()
                 WHERE id = %s
                 RETURNING {_VIDEO_COLUMNS}
                """,
                (processing_status, video_id),
            )
            row = await cur.fetchone()
            await conn.commit()
    return dict(row) if row else None


async def mark_stale_pending_ready(grace_minutes: int) -> list[VideoRow]:
    """Flip pending rows older than the grace period that already have a file."""
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                UPDATE public.video_metadata
                   SET processing_status = 'ready',
                       updated_at = now()
                 WHERE processing_status = 'pending'
                   AND storage_path IS NOT NULL
                   AND storage_path <> ''
                   AND created_at < now() - make_interval(mins => %s)
                 RETURNING {_VIDEO_COLUMNS}
                """,
                (grace_minutes,),
            )
            rows = await cur.fetchall()
            await conn.commit()
    return [dict(row) for row in rows]


__all__ = [
    "VideoRow",
    "get_ready_video",
    "insert_video",
    "list_lesson_videos",
    "mark_stale_pending_ready",
    "set_status",
]
