from __future__ import annotations

import logging
from typing import Any, Mapping
from uuid import UUID

from ..config import settings
from ..errors import NotFoundError, PermissionDeniedError
from ..repositories import video_metadata as video_repo
from ..utils import video_utils
from . import course_service, enrollment_service
from .storage_service import StorageObjectNotFoundError, StorageService

logger = logging.getLogger(__name__)


def with_display_fields(video: Mapping[str, Any]) -> dict[str, Any]:
    return {
        **video,
        "duration_display": video_utils.format_duration(video.get("duration_seconds")),
        "file_size_display": video_utils.format_file_size(video.get("file_size")),
    }


async def register_video(lesson_id: str | UUID, payload: Mapping[str, Any]) -> dict[str, Any]:
    lesson = await course_service.require_lesson(lesson_id)
    video = await video_repo.insert_video(
        lesson_id=lesson["id"],
        language_code=video_utils.normalize_language(payload.get("language_code")),
        storage_path=str(payload["storage_path"]).lstrip("/"),
        bucket=settings.video_bucket,
        duration_seconds=payload.get("duration_seconds"),
        file_size=payload.get("file_size"),
        quality=payload.get("quality"),
        thumbnail_path=payload.get("thumbnail_path"),
    )
    logger.info(
        "Video registered",
        extra={"lesson_id": str(lesson["id"]), "video_id": str(video["id"])},
    )
    return with_display_fields(video)


async def list_lesson_videos(lesson_id: str | UUID) -> list[dict[str, Any]]:
    return [with_display_fields(row) for row in await video_repo.list_lesson_videos(lesson_id)]


async def mark_video_ready(video_id: str | UUID) -> dict[str, Any]:
    video = await video_repo.set_status(video_id, "ready")
    if not video:
        raise NotFoundError("Video not found")
    return with_display_fields(video)


async def fix_pending_videos() -> list[dict[str, Any]]:
    fixed = await video_repo.mark_stale_pending_ready(settings.video_pending_grace_minutes)
    if fixed:
        logger.info("Pending videos marked ready", extra={"count": len(fixed)})
    return [with_display_fields(row) for row in fixed]


async def get_secure_video_url(
    user: Mapping[str, Any],
    lesson_id: str | UUID,
    language: str | None = None,
) -> dict[str, Any]:
    lesson = await course_service.require_lesson(lesson_id)
    if not await enrollment_service.can_access_course(user, lesson["course_id"]):
        raise PermissionDeniedError("Not enrolled in this course")

    requested = video_utils.normalize_language(language)
    video = await video_repo.get_ready_video(lesson["id"], requested)
    fallback = False
    if not video and requested != video_utils.DEFAULT_LANGUAGE:
        video = await video_repo.get_ready_video(lesson["id"], video_utils.DEFAULT_LANGUAGE)
        fallback = video is not None
    if not video or not video.get("storage_path"):
        raise NotFoundError("No video available for this lesson")

    storage = StorageService(bucket=video.get("bucket"))
    try:
        signed = await storage.sign(video["storage_path"], settings.video_url_ttl_seconds)
    except StorageObjectNotFoundError as exc:
        logger.warning(
            "Video object missing from storage",
            extra={"video_id": str(video["id"]), "storage_path": video["storage_path"]},
        )
        raise NotFoundError("Video file not found") from exc

    return {
        "url": signed.url,
        "expires_in": signed.expires_in,
        "language_code": video["language_code"],
        "fallback": fallback,
        "duration_seconds": video.get("duration_seconds"),
    }


__all__ = [
    "fix_pending_videos",
    "get_secure_video_url",
    "list_lesson_videos",
    "mark_video_ready",
    "register_video",
    "with_display_fields",
]
