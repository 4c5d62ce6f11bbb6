from fastapi import APIRouter, Query

from .. import schemas
from ..auth import CurrentUser
from ..services import progress_service, quiz_service, video_service

router = APIRouter(prefix="/api/lessons", tags=["lessons"])


@router.get(
    "/{lesson_id}/quiz",
    response_model=schemas.QuizQuestionListResponse,
    response_model_exclude_none=True,
)
async def quiz_questions(lesson_id: str, current: CurrentUser):
    rows = await quiz_service.list_questions(current, lesson_id, include_answers=False)
    return {"items": rows}


@router.post("/{lesson_id}/quiz/submit", response_model=schemas.QuizSubmitResponse)
async def submit_quiz(lesson_id: str, payload: schemas.QuizSubmitRequest, current: CurrentUser):
    return await quiz_service.submit_quiz(current, lesson_id, payload.answers)


@router.get("/{lesson_id}/quiz/attempts", response_model=schemas.QuizAttemptListResponse)
async def quiz_attempts(lesson_id: str, current: CurrentUser):
    rows = await quiz_service.list_attempts(current, lesson_id)
    return {"items": rows}


@router.get("/{lesson_id}/video-url", response_model=schemas.VideoUrlResponse)
async def video_url(
    lesson_id: str,
    current: CurrentUser,
    language: str | None = Query(default=None, max_length=5),
):
    return await video_service.get_secure_video_url(current, lesson_id, language)


@router.get("/{lesson_id}/video-progress", response_model=schemas.VideoProgress)
async def video_progress(lesson_id: str, current: CurrentUser):
    return await progress_service.get_video_progress(current, lesson_id)


@router.post("/{lesson_id}/video-progress", response_model=schemas.VideoProgress)
async def save_video_progress(
    lesson_id: str,
    payload: schemas.VideoProgressUpdate,
    current: CurrentUser,
):
    return await progress_service.save_video_progress(
        current,
        lesson_id,
        current_time=payload.current_time,
        duration=payload.duration,
        device_info=payload.device_info,
    )
