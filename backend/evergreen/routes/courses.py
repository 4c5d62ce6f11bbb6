from fastapi import APIRouter, Query, status

from .. import schemas
from ..auth import CurrentUser, OptionalCurrentUser
from ..services import course_service, enrollment_service, progress_service

router = APIRouter(prefix="/api/courses", tags=["courses"])
me_router = APIRouter(prefix="/api/me", tags=["me"])


@router.get("", response_model=schemas.CourseListResponse)
async def list_courses(
    search: str | None = Query(default=None, min_length=2),
    limit: int | None = Query(default=None, ge=1, le=100),
):
    rows = await course_service.list_published_courses(search=search, limit=limit)
    return schemas.CourseListResponse(items=[schemas.Course(**row) for row in rows])


@router.get("/{reference}", response_model=schemas.CourseDetailResponse)
async def course_detail(reference: str, current: OptionalCurrentUser = None):
    return await course_service.get_learner_course(current, reference)


@router.post(
    "/{reference}/enroll",
    response_model=schemas.Enrollment,
    status_code=status.HTTP_201_CREATED,
)
async def enroll(reference: str, current: CurrentUser):
    return await enrollment_service.enroll_self(current, reference)


@router.delete("/{course_id}/enroll", status_code=status.HTTP_204_NO_CONTENT)
async def unenroll(course_id: str, current: CurrentUser):
    await enrollment_service.unenroll(current, course_id)


@router.get("/{course_id}/progress", response_model=schemas.CourseProgressResponse)
async def course_progress(course_id: str, current: CurrentUser):
    return await progress_service.get_course_progress(current, course_id)


@router.get("/{course_id}/last-lesson")
async def last_lesson(course_id: str, current: CurrentUser):
    row = await progress_service.last_accessed_lesson(current, course_id)
    return {"lesson": row}


@router.post(
    "/{course_id}/lessons/{lesson_id}/progress",
    response_model=schemas.LessonProgress,
)
async def update_lesson_progress(
    course_id: str,
    lesson_id: str,
    payload: schemas.LessonProgressUpdate,
    current: CurrentUser,
):
    return await progress_service.update_lesson_progress(
        current,
        course_id,
        lesson_id,
        progress_percentage=payload.progress_percentage,
        time_spent=payload.time_spent,
    )


@router.post(
    "/{course_id}/lessons/{lesson_id}/complete",
    response_model=schemas.LessonCompleteResponse,
)
async def complete_lesson(
    course_id: str,
    lesson_id: str,
    payload: schemas.LessonCompleteRequest,
    current: CurrentUser,
):
    return await progress_service.complete_lesson(
        current,
        course_id,
        lesson_id,
        final_progress=payload.final_progress,
        time_spent=payload.time_spent,
        quiz_score=payload.quiz_score,
    )


@me_router.get("/enrollments", response_model=schemas.EnrollmentListResponse)
async def my_enrollments(current: CurrentUser):
    rows = await enrollment_service.list_my_enrollments(current)
    return schemas.EnrollmentListResponse(items=[schemas.Enrollment(**row) for row in rows])
