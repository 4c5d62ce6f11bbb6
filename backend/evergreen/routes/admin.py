from uuid import UUID

from fastapi import APIRouter, Query, status

from .. import schemas
from ..permissions import AdminUser
from ..repositories import courses as courses_repo
from ..services import (
    course_service,
    enrollment_service,
    quiz_service,
    user_report_service,
    video_service,
    webhook_service,
)

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/courses", response_model=schemas.CourseListResponse)
async def list_all_courses(
    current: AdminUser,
    status_filter: schemas.CourseStatus | None = Query(default=None, alias="status"),
    search: str | None = Query(default=None, min_length=2),
):
    rows = await courses_repo.list_courses(
        status=status_filter.value if status_filter else None,
        search=search,
    )
    return {"items": rows}


@router.post("/courses", response_model=schemas.Course, status_code=status.HTTP_201_CREATED)
async def create_course(payload: schemas.CourseCreateRequest, current: AdminUser):
    return await course_service.create_course(current, payload.model_dump())


@router.patch("/courses/{course_id}", response_model=schemas.Course)
async def update_course(course_id: str, payload: schemas.CourseUpdateRequest, current: AdminUser):
    fields = payload.model_dump(exclude_unset=True)
    return await course_service.update_course(current, course_id, fields)


@router.post("/courses/{course_id}/stripe-price", response_model=schemas.Course)
async def bind_stripe_price(
    course_id: str,
    payload: schemas.StripePriceBindRequest,
    current: AdminUser,
):
    return await course_service.bind_stripe_price(current, course_id, payload.stripe_price_id)


@router.delete("/courses/{course_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_course(course_id: str, current: AdminUser, force: bool = False):
    await course_service.delete_course(course_id, force=force)


@router.get("/courses/{course_id}/modules")
async def list_modules(course_id: str, current: AdminUser):
    course = await course_service.require_course(course_id)
    modules = await courses_repo.list_modules(course["id"])
    lessons = await courses_repo.list_course_lessons(course["id"])
    for module in modules:
        module["lessons"] = [
            lesson for lesson in lessons if str(lesson["module_id"]) == str(module["id"])
        ]
    return {"items": modules}


@router.post(
    "/courses/{course_id}/modules",
    response_model=schemas.Module,
    status_code=status.HTTP_201_CREATED,
)
async def create_module(course_id: str, payload: schemas.ModuleCreateRequest, current: AdminUser):
    return await course_service.create_module(course_id, payload.model_dump())


@router.patch("/modules/{module_id}", response_model=schemas.Module)
async def update_module(module_id: str, payload: schemas.ModuleUpdateRequest, current: AdminUser):
    return await course_service.update_module(module_id, payload.model_dump(exclude_unset=True))


@router.delete("/modules/{module_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_module(module_id: str, current: AdminUser):
    await course_service.delete_module(module_id)


@router.post(
    "/modules/{module_id}/lessons",
    response_model=schemas.Lesson,
    status_code=status.HTTP_201_CREATED,
)
async def create_lesson(module_id: str, payload: schemas.LessonCreateRequest, current: AdminUser):
    return await course_service.create_lesson(module_id, payload.model_dump(mode="json"))


@router.put("/modules/{module_id}/lesson-order")
async def reorder_lessons(
    module_id: str,
    payload: schemas.LessonReorderRequest,
    current: AdminUser,
):
    lessons = await course_service.reorder_lessons(module_id, payload.lesson_ids)
    return {"items": [schemas.Lesson(**lesson) for lesson in lessons]}


@router.patch("/lessons/{lesson_id}", response_model=schemas.Lesson)
async def update_lesson(lesson_id: str, payload: schemas.LessonUpdateRequest, current: AdminUser):
    fields = payload.model_dump(exclude_unset=True, mode="json")
    return await course_service.update_lesson(lesson_id, fields)


@router.delete("/lessons/{lesson_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_lesson(lesson_id: str, current: AdminUser):
    await course_service.delete_lesson(lesson_id)


@router.get("/lessons/{lesson_id}/quiz-questions", response_model=schemas.QuizQuestionListResponse)
async def list_quiz_questions(lesson_id: str, current: AdminUser):
    rows = await quiz_service.list_questions(current, lesson_id, include_answers=True)
    return {"items": rows}


@router.put("/lessons/{lesson_id}/quiz-questions", response_model=schemas.QuizQuestionListResponse)
async def replace_quiz_questions(
    lesson_id: str,
    payload: schemas.QuizQuestionsReplaceRequest,
    current: AdminUser,
):
    questions = [question.model_dump(mode="json") for question in payload.questions]
    rows = await quiz_service.replace_questions(lesson_id, questions)
    return {"items": rows}


@router.get("/lessons/{lesson_id}/videos", response_model=schemas.VideoMetadataListResponse)
async def list_videos(lesson_id: str, current: AdminUser):
    return {"items": await video_service.list_lesson_videos(lesson_id)}


@router.post(
    "/lessons/{lesson_id}/videos",
    response_model=schemas.VideoMetadata,
    status_code=status.HTTP_201_CREATED,
)
async def register_video(lesson_id: str, payload: schemas.VideoRegisterRequest, current: AdminUser):
    return await video_service.register_video(lesson_id, payload.model_dump(mode="json"))


@router.post("/videos/{video_id}/ready", response_model=schemas.VideoMetadata)
async def mark_video_ready(video_id: str, current: AdminUser):
    return await video_service.mark_video_ready(video_id)


@router.post("/videos/fix-pending", response_model=schemas.FixPendingVideosResponse)
async def fix_pending_videos(current: AdminUser):
    rows = await video_service.fix_pending_videos()
    return {"fixed": len(rows), "items": rows}


@router.post("/enrollments", response_model=schemas.AdminEnrollResponse)
async def admin_enroll(payload: schemas.AdminEnrollRequest, current: AdminUser):
    enrollment, created = await enrollment_service.admin_enroll(
        current,
        course_id=payload.course_id,
        user_id=payload.user_id,
        email=payload.email,
        account_id=payload.account_id,
    )
    return {"enrollment": enrollment, "created": created}


@router.get("/webhook-events/{event_id}", response_model=schemas.WebhookEventRecord)
async def webhook_event(event_id: str, current: AdminUser):
    return await webhook_service.get_event_status(event_id)


@router.get("/users", response_model=schemas.AdminUserListResponse)
async def list_users(
    current: AdminUser,
    search: str | None = Query(default=None, min_length=2),
    limit: int = Query(default=100, ge=1, le=user_report_service.MAX_PAGE_SIZE),
    offset: int = Query(default=0, ge=0),
):
    rows = await user_report_service.list_users(search=search, limit=limit, offset=offset)
    return {"items": rows}


@router.get("/users/{user_id}", response_model=schemas.AdminUserReport)
async def user_report(user_id: UUID, current: AdminUser):
    return await user_report_service.get_user_report(user_id)
