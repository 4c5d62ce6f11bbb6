from __future__ import annotations

from typing import Any, Mapping, Sequence
from uuid import UUID

from psycopg.rows import dict_row

from ..db import get_conn, pool

CourseRow = dict[str, Any]
ModuleRow = dict[str, Any]
LessonRow = dict[str, Any]

_COURSE_COLUMNS = """
        id,
        account_id,
        title,
        slug,
        description,
        status,
        sku,
        price,
        stripe_price_id,
        sequential_completion,
        passing_score,
        created_by,
        updated_by,
        created_at,
        updated_at
    """

_MODULE_COLUMNS = """
        id,
        course_id,
        title,
        description,
        order_index,
        created_at,
        updated_at
    """

_LESSON_COLUMNS = """
        id,
        module_id,
        title,
        description,
        content_type,
        content,
        video_url,
        order_index,
        is_final_quiz,
        passing_score,
        created_at,
        updated_at
    """

_LESSON_COLUMNS_WITH_ALIAS = _LESSON_COLUMNS.replace("\n        ", "\n        l.")

COURSE_UPDATE_COLUMNS = frozenset(
    {
        "title",
        "slug",
        "description",
        "status",
        "sku",
        "price",
        "stripe_price_id",
        "sequential_completion",
        "passing_score",
    }
)
MODULE_UPDATE_COLUMNS = frozenset({"title", "description", "order_index"})
LESSON_UPDATE_COLUMNS = frozenset(
    {
        "title",
        "description",
        "content_type",
        "content",
        "video_url",
        "order_index",
        "is_final_quiz",
        "passing_score",
    }
)


def _assignments(fields: Mapping[str, Any], allowed: frozenset[str]) -> tuple[list[str], list[Any]]:
    columns: list[str] = []
    params: list[Any] = []
    for key, value in fields.items():
        if key not in allowed:
            continue
        columns.append(f"{key} = %s")
        params.append(value)
    return columns, params


async def get_course(
    *,
    course_id: str | UUID | None = None,
    slug: str | None = None,
) -> CourseRow | None:
    if not course_id and not slug:
        raise ValueError("course_id or slug is required.")

    clauses: list[str] = []
    params: list[Any] = []
    if course_id:
        clauses.append("id = %s")
        params.append(course_id)
    if slug:
        clauses.append("slug = %s")
        params.append(slug)
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_COURSE_COLUMNS}
              FROM public.courses
             WHERE {' AND '.join(clauses)}
             LIMIT 1
            """,
            params,
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def get_courses_by_price_ids(price_ids: Sequence[str]) -> dict[str, CourseRow]:
    """Map Stripe price ids to their course rows; unknown prices are absent."""
    if not price_ids:
        return {}
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_COURSE_COLUMNS}
              FROM public.courses
             WHERE stripe_price_id = ANY(%s)
            """,
            (list(price_ids),),
        )
        rows = await cur.fetchall()
    return {row["stripe_price_id"]: dict(row) for row in rows}


async def list_courses(
    *,
    status: str | None = None,
    account_id: str | UUID | None = None,
    search: str | None = None,
    limit: int | None = None,
) -> list[CourseRow]:
    clauses: list[str] = []
    params: list[Any] = []
    if status:
        clauses.append("status = %s")
        params.append(status)
    if account_id:
        clauses.append("account_id = %s")
        params.append(account_id)
    if search:
        clauses.append("(title ILIKE %s OR description ILIKE %s)")
        pattern = f"%{search.strip()}%"
        params.extend([pattern, pattern])
    where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
    limit_sql = ""
    if limit:
        limit_sql = "LIMIT %s"
        params.append(limit)
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_COURSE_COLUMNS}
              FROM public.courses
              {where}
             ORDER BY created_at DESC
             {limit_sql}
            """,
            params,
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def slug_exists(slug: str) -> bool:
    async with get_conn() as cur:
        await cur.execute("SELECT 1 FROM public.courses WHERE slug = %s LIMIT 1", (slug,))
        row = await cur.fetchone()
    return row is not None


async def create_course(
    *,
    account_id: str | UUID,
    title: str,
    slug: str,
    description: str | None,
    status: str,
    sku: str | None,
    price: Any,
    stripe_price_id: str | None,
    sequential_completion: bool,
    passing_score: int,
    created_by: str | UUID,
) -> CourseRow:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                INSERT INTO public.courses (
                    account_id,
                    title,
                    slug,
                    description,
                    status,
                    sku,
                    price,
                    stripe_price_id,
                    sequential_completion,
                    passing_score,
                    created_by,
                    updated_by
                )
                VALUES (%s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
                RETURNING {_COURSE_COLUMNS}
                """,
                (
                    account_id,
                    title,
                    slug,
                    description,
                    status,
                    sku,
                    price,
                    stripe_price_id,
                    sequential_completion,
                    passing_score,
                    created_by,
                    created_by,
                ),
            )
            row = await cur.fetchone()
            await conn.commit()
    return dict(row)


async def update_course(
    course_id: str | UUID,
    fields: Mapping[str, Any],
    *,
    updated_by: str | UUID,
) -> CourseRow | None:
    columns, params = _assignments(fields, COURSE_UPDATE_COLUMNS)
    if not columns:
        return await get_course(course_id=course_id)
    columns.extend(["updated_by = %s", "updated_at = now()"])
    params.extend([updated_by, course_id])
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                UPDATE public.courses
                   SET {', '.join(columns)}
                 WHERE id = %s
                 RETURNING {_COURSE_COLUMNS}
                """,
                params,
            )
            row = await cur.fetchone()
            await conn.commit()
    return dict(row) if row else None


async def delete_course(course_id: str | UUID) -> bool:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor() as cur:  # type: ignore[attr-defined]
            await cur.execute("DELETE FROM public.courses WHERE id = %s", (course_id,))
            deleted = cur.rowcount > 0
            await conn.commit()
    return deleted


async def list_modules(course_id: str | UUID) -> list[ModuleRow]:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_MODULE_COLUMNS}
              FROM public.course_modules
             WHERE course_id = %s
             ORDER BY order_index, created_at
            """,
            (course_id,),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def get_module(module_id: str | UUID) -> ModuleRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"SELECT {_MODULE_COLUMNS} FROM public.course_modules WHERE id = %s LIMIT 1",
            (module_id,),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def create_module(
    *,
    course_id: str | UUID,
    title: str,
    description: str | None,
    order_index: int | None,
) -> ModuleRow:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                INSERT INTO public.course_modules (course_id, title, description, order_index)
                VALUES (
                    %s,
                    %s,
                    %s,
                    COALESCE(
                        %s,
                        (SELECT COALESCE(MAX(order_index) + 1, 0)
                           FROM public.course_modules
                          WHERE course_id = %s)
                    )
                )
                RETURNING {_MODULE_COLUMNS}
                """,
                (course_id, title, description, order_index, course_id),
            )
            row = await cur.fetchone()
            await conn.commit()
    return dict(row)


async def update_module(module_id: str | UUID, fields: Mapping[str, Any]) -> ModuleRow | None:
    columns, params = _assignments(fields, MODULE_UPDATE_COLUMNS)
    if not columns:
        return await get_module(module_id)
    columns.append("updated_at = now()")
    params.append(module_id)
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                UPDATE public.course_modules
                   SET {', '.join(columns)}
                 WHERE id = %s
                 RETURNING {_MODULE_COLUMNS}
                """,
                params,
            )
            row = await cur.fetchone()
            await conn.commit()
    return dict(row) if row else None


async def delete_module(module_id: str | UUID) -> bool:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor() as cur:  # type: ignore[attr-defined]
            await cur.execute("DELETE FROM public.course_modules WHERE id = %s", (module_id,))
            deleted = cur.rowcount > 0
            await conn.commit()
    return deleted


async def list_course_lessons(course_id: str | UUID) -> list[LessonRow]:
    """Lessons of a course in learning order (module order, then lesson order)."""
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_LESSON_COLUMNS_WITH_ALIAS},
                   m.course_id
              FROM public.lessons AS l
              JOIN public.course_modules AS m
                ON m.id = l.module_id
             WHERE m.course_id = %s
             ORDER BY m.order_index, m.created_at, l.order_index, l.created_at
            """,
            (course_id,),
        )
        rows = await cur.fetchall()
    return [dict(row) for row in rows]


async def get_lesson(lesson_id: str | UUID) -> LessonRow | None:
    async with get_conn() as cur:
        await cur.execute(
            f"""
            SELECT {_LESSON_COLUMNS_WITH_ALIAS},
                   m.course_id
              FROM public.lessons AS l
              JOIN public.course_modules AS m
                ON m.id = l.module_id
             WHERE l.id = %s
             LIMIT 1
            """,
            (lesson_id,),
        )
        row = await cur.fetchone()
    return dict(row) if row else None


async def create_lesson(
    *,
    module_id: str | UUID,
    title: str,
    description: str | None,
    content_type: str,
    content: str | None,
    video_url: str | None,
    order_index: int | None,
    is_final_quiz: bool,
    passing_score: int | None,
) -> LessonRow:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                INSERT INTO public.lessons (
                    module_id,
                    title,
                    description,
                    content_type,
                    content,
                    video_url,
                    order_index,
                    is_final_quiz,
                    passing_score
                )
                VALUES (
                    %s, %s, %s, %s, %s, %s,
                    COALESCE(
                        %s,
                        (SELECT COALESCE(MAX(order_index) + 1, 0)
                           FROM public.lessons
                          WHERE module_id = %s)
                    ),
                    %s, %s
                )
                RETURNING {_LESSON_COLUMNS}
                """,
                (
                    module_id,
                    title,
                    description,
                    content_type,
                    content,
                    video_url,
                    order_index,
                    module_id,
                    is_final_quiz,
                    passing_score,
                ),
            )
            row = await cur.fetchone()
            await conn.commit()
    return dict(row)


async def update_lesson(lesson_id: str | UUID, fields: Mapping[str, Any]) -> LessonRow | None:
    columns, params = _assignments(fields, LESSON_UPDATE_COLUMNS)
    if not columns:
        return await get_lesson(lesson_id)
    columns.append("updated_at = now()")
    params.append(lesson_id)
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor(row_factory=dict_row) as cur:  # type: ignore[attr-defined]
            await cur.execute(
                f"""
                UPDATE public.lessons
                   SET {', '.join(columns)}
                 WHERE id = %s
                 RETURNING {_LESSON_COLUMNS}
                """,
                params,
            )
            row = await cur.fetchone()
            await conn.commit()
    return dict(row) if row else None


async def delete_lesson(lesson_id: str | UUID) -> bool:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor() as cur:  # type: ignore[attr-defined]
            await cur.execute("DELETE FROM public.lessons WHERE id = %s", (lesson_id,))
            deleted = cur.rowcount > 0
            await conn.commit()
    return deleted


async def reorder_lessons(module_id: str | UUID, lesson_ids: Sequence[str]) -> None:
    async with pool.connection() as conn:  # type: ignore[attr-defined]
        async with conn.cursor() as cur:  # type: ignore[attr-defined]
            for index, lesson_id in enumerate(lesson_ids):
                await cur.execute(
                    """
                    UPDATE public.lessons
                       SET order_index = %s,
                           updated_at = now()
                     WHERE id = %s
                       AND module_id = %s
                    """,
                    (index, lesson_id, module_id),
                )
            await conn.commit()


__all__ = [
    "COURSE_UPDATE_COLUMNS",
    "CourseRow",
    "LESSON_UPDATE_COLUMNS",
    "LessonRow",
    "MODULE_UPDATE_COLUMNS",
    "ModuleRow",
    "create_course",
    "create_lesson",
    "create_module",
    "delete_course",
    "delete_lesson",
    "delete_module",
    "get_course",
    "get_courses_by_price_ids",
    "get_lesson",
    "get_module",
    "list_course_lessons",
    "list_courses",
    "list_modules",
    "reorder_lessons",
    "slug_exists",
    "update_course",
    "update_lesson",
    "update_module",
]
