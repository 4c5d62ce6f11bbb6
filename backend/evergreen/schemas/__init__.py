from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator

from .checkout import (
    CartItem,
    CheckoutCreateRequest,
    CheckoutCreateResponse,
    CheckoutStatus,
    CheckoutVerifyResponse,
    EnsurePurchaseRequest,
    EnsurePurchaseResponse,
    PurchaseItemResult,
    PurchaseType,
)
from .team import (
    InvitationAcceptRequest,
    InvitationAcceptResponse,
    InvitationCreateRequest,
    InvitationCreateResponse,
    InvitationListResponse,
    InvitationLookupResponse,
    InvitationRecord,
    InvitationState,
    PendingInvitationsResponse,
    SeatOverviewResponse,
    SeatUpdateRequest,
    SeatUsage,
    TeamAccount,
    TeamAccountListResponse,
    TeamEnrollment,
    TeamEnrollmentListResponse,
)


class CourseStatus(str, Enum):
    draft = "draft"
    published = "published"
    archived = "archived"


class ContentType(str, Enum):
    video = "video"
    text = "text"
    quiz = "quiz"


class QuestionType(str, Enum):
    multiple_choice = "multiple_choice"
    true_false = "true_false"
    short_answer = "short_answer"


class LessonStatus(str, Enum):
    not_started = "not_started"
    in_progress = "in_progress"
    completed = "completed"


class VideoLanguage(str, Enum):
    en = "en"
    es = "es"


class CourseBase(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    status: CourseStatus = CourseStatus.draft
    sku: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    stripe_price_id: Optional[str] = None
    sequential_completion: bool = False
    passing_score: int = Field(default=80, ge=0, le=100)


class CourseCreateRequest(CourseBase):
    slug: Optional[str] = None
    account_id: Optional[UUID] = None


class CourseUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    slug: Optional[str] = None
    description: Optional[str] = None
    status: Optional[CourseStatus] = None
    sku: Optional[str] = None
    price: Optional[Decimal] = Field(default=None, ge=0)
    stripe_price_id: Optional[str] = None
    sequential_completion: Optional[bool] = None
    passing_score: Optional[int] = Field(default=None, ge=0, le=100)


class StripePriceBindRequest(BaseModel):
    stripe_price_id: str = Field(min_length=1)


class Course(CourseBase):
    id: UUID
    slug: str
    account_id: Optional[UUID] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class CourseListResponse(BaseModel):
    items: List[Course]


class ModuleCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    order_index: Optional[int] = Field(default=None, ge=0)


class ModuleUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    order_index: Optional[int] = Field(default=None, ge=0)


class Module(BaseModel):
    id: UUID
    course_id: UUID
    title: str
    description: Optional[str] = None
    order_index: int = 0


class LessonCreateRequest(BaseModel):
    title: str = Field(min_length=1)
    description: Optional[str] = None
    content_type: ContentType = ContentType.text
    content: Optional[str] = None
    video_url: Optional[str] = None
    order_index: Optional[int] = Field(default=None, ge=0)
    is_final_quiz: bool = False
    passing_score: Optional[int] = Field(default=None, ge=0, le=100)


class LessonUpdateRequest(BaseModel):
    title: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    content_type: Optional[ContentType] = None
    content: Optional[str] = None
    video_url: Optional[str] = None
    order_index: Optional[int] = Field(default=None, ge=0)
    is_final_quiz: Optional[bool] = None
    passing_score: Optional[int] = Field(default=None, ge=0, le=100)


class LessonReorderRequest(BaseModel):
    lesson_ids: List[UUID] = Field(min_length=1)


class Lesson(BaseModel):
    id: UUID
    module_id: UUID
    title: str
    description: Optional[str] = None
    content_type: ContentType
    content: Optional[str] = None
    video_url: Optional[str] = None
    order_index: int = 0
    is_final_quiz: bool = False
    passing_score: Optional[int] = None


class LessonProgress(BaseModel):
    lesson_id: UUID
    status: LessonStatus
    progress_percentage: int = 0
    time_spent: int = 0
    quiz_score: Optional[int] = None
    completed_at: Optional[datetime] = None
    last_accessed: Optional[datetime] = None


class LearnerLesson(Lesson):
    locked: bool = False
    progress: Optional[LessonProgress] = None


class LearnerModule(Module):
    lessons: List[LearnerLesson] = []


class CourseDetailResponse(BaseModel):
    course: Course
    modules: List[LearnerModule]
    enrolled: bool
    progress_percentage: int = 0


class QuizOption(BaseModel):
    id: str
    text: str
    is_correct: Optional[bool] = None


class QuizQuestionInput(BaseModel):
    question: str = Field(min_length=1)
    question_type: QuestionType = QuestionType.multiple_choice
    options: List[QuizOption] = []
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None
    points: int = Field(default=1, ge=1)
    order_index: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _validate_answer(self):
        if self.question_type is QuestionType.multiple_choice:
            if not any(option.is_correct for option in self.options):
                raise ValueError("multiple choice questions need a correct option")
        elif not (self.correct_answer or "").strip():
            raise ValueError("correct_answer is required for this question type")
        return self


class QuizQuestionsReplaceRequest(BaseModel):
    questions: List[QuizQuestionInput]


class QuizQuestion(BaseModel):
    id: UUID
    lesson_id: UUID
    question: str
    question_type: QuestionType
    options: List[QuizOption] = []
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None
    points: int = 1
    order_index: int = 0


class QuizQuestionListResponse(BaseModel):
    items: List[QuizQuestion]


class QuizSubmitRequest(BaseModel):
    answers: Dict[str, str]


class QuizAttempt(BaseModel):
    id: UUID
    lesson_id: UUID
    score: int
    total_points: int
    passed: bool
    attempt_number: int
    answers: Dict[str, Any] = {}
    created_at: Optional[datetime] = None


class QuizSubmitResponse(BaseModel):
    attempt: QuizAttempt
    correct: int
    total_questions: int
    passing_score: int
    course_progress: Optional[int] = None


class QuizAttemptListResponse(BaseModel):
    items: List[QuizAttempt]


class Enrollment(BaseModel):
    id: UUID
    user_id: UUID
    course_id: UUID
    account_id: Optional[UUID] = None
    invitation_id: Optional[UUID] = None
    progress_percentage: int = 0
    final_score: Optional[int] = None
    enrolled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    course_title: Optional[str] = None
    course_slug: Optional[str] = None


class EnrollmentListResponse(BaseModel):
    items: List[Enrollment]


class AdminEnrollRequest(BaseModel):
    course_id: UUID
    user_id: Optional[UUID] = None
    email: Optional[str] = None
    account_id: Optional[UUID] = None

    @model_validator(mode="after")
    def _validate_target(self):
        if not self.user_id and not self.email:
            raise ValueError("user_id or email is required")
        return self


class AdminEnrollResponse(BaseModel):
    enrollment: Enrollment
    created: bool


class LessonProgressUpdate(BaseModel):
    progress_percentage: int = Field(ge=0, le=100)
    time_spent: int = Field(default=0, ge=0)


class LessonCompleteRequest(BaseModel):
    final_progress: int = Field(default=100, ge=0, le=100)
    time_spent: int = Field(default=0, ge=0)
    quiz_score: Optional[int] = Field(default=None, ge=0, le=100)


class LessonCompleteResponse(BaseModel):
    lesson: LessonProgress
    course_progress: int
    course_completed: bool


class CourseProgressResponse(BaseModel):
    course_id: UUID
    progress_percentage: int = 0
    completed_at: Optional[datetime] = None
    lessons: Dict[str, LessonProgress] = {}
    last_accessed_lesson_id: Optional[UUID] = None


class VideoRegisterRequest(BaseModel):
    language_code: VideoLanguage = VideoLanguage.en
    storage_path: str = Field(min_length=1)
    duration_seconds: Optional[int] = Field(default=None, ge=0)
    file_size: Optional[int] = Field(default=None, ge=0)
    quality: Optional[str] = None
    thumbnail_path: Optional[str] = None


class VideoMetadata(BaseModel):
    id: UUID
    lesson_id: UUID
    language_code: str
    storage_path: Optional[str] = None
    bucket: Optional[str] = None
    duration_seconds: Optional[int] = None
    file_size: Optional[int] = None
    quality: Optional[str] = None
    processing_status: str
    thumbnail_path: Optional[str] = None
    duration_display: Optional[str] = None
    file_size_display: Optional[str] = None


class VideoMetadataListResponse(BaseModel):
    items: List[VideoMetadata]


class VideoUrlResponse(BaseModel):
    url: str
    expires_in: int
    language_code: str
    fallback: bool = False
    duration_seconds: Optional[int] = None


class VideoProgressUpdate(BaseModel):
    current_time: float = Field(ge=0)
    duration: Optional[float] = Field(default=None, ge=0)
    device_info: Optional[Dict[str, Any]] = None


class VideoProgress(BaseModel):
    lesson_id: UUID
    current_time: int = 0
    duration: Optional[int] = None
    watched_percentage: int = 0
    completed: bool = False
    updated_at: Optional[datetime] = None


class FixPendingVideosResponse(BaseModel):
    fixed: int
    items: List[VideoMetadata]


class WebhookEventRecord(BaseModel):
    event_id: str
    event_type: str
    status: str
    attempts: int
    last_error: Optional[str] = None
    received_at: Optional[datetime] = None
    processed_at: Optional[datetime] = None


class AdminUserSummary(BaseModel):
    id: UUID
    email: Optional[str] = None
    display_name: Optional[str] = None
    created_at: Optional[datetime] = None
    last_active: Optional[datetime] = None
    enrollments: int = 0
    completions: int = 0
    average_progress: int = 0


class AdminUserListResponse(BaseModel):
    items: List[AdminUserSummary]


class FinalScore(BaseModel):
    course_id: UUID
    course_title: Optional[str] = None
    score: int
    passed: bool
    completed_at: Optional[datetime] = None


class AdminUserReport(BaseModel):
    id: UUID
    email: Optional[str] = None
    display_name: Optional[str] = None
    is_admin: bool = False
    enrollments: int
    completions: int
    current_enrollments: List[Enrollment]
    final_scores: List[FinalScore]
