from datetime import datetime
from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, field_validator


class TeamAccount(BaseModel):
    id: UUID
    name: Optional[str] = None
    slug: Optional[str] = None
    primary_owner_user_id: UUID
    is_owner: bool = False


class TeamAccountListResponse(BaseModel):
    items: List[TeamAccount]


class SeatUsage(BaseModel):
    course_id: UUID
    course_title: Optional[str] = None
    course_slug: Optional[str] = None
    total_seats: int
    enrolled: int
    pending: int
    available: int


class SeatOverviewResponse(BaseModel):
    account_id: UUID
    items: List[SeatUsage]


class SeatUpdateRequest(BaseModel):
    total_seats: int = Field(ge=1)


class TeamEnrollment(BaseModel):
    user_id: UUID
    email: Optional[str] = None
    learner_name: Optional[str] = None
    progress_percentage: int = 0
    final_score: Optional[int] = None
    enrolled_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
    completed: bool = False


class TeamEnrollmentListResponse(BaseModel):
    items: List[TeamEnrollment]


class InvitationState(str, Enum):
    pending = "pending"
    accepted = "accepted"
    expired = "expired"


class InvitationCreateRequest(BaseModel):
    course_id: UUID
    email: str
    invitee_name: Optional[str] = None

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        email = value.strip().lower()
        local, _, domain = email.partition("@")
        if not local or "." not in domain:
            raise ValueError("a valid email address is required")
        return email


class InvitationRecord(BaseModel):
    id: UUID
    email: str
    invitee_name: Optional[str] = None
    course_id: UUID
    account_id: UUID
    invited_by: Optional[UUID] = None
    expires_at: Optional[datetime] = None
    accepted_at: Optional[datetime] = None
    created_at: Optional[datetime] = None


class InvitationCreateResponse(BaseModel):
    invitation: InvitationRecord
    email_sent: bool


class InvitationListResponse(BaseModel):
    items: List[InvitationRecord]


class InvitationLookupResponse(BaseModel):
    email: str
    invitee_name: Optional[str] = None
    course_id: UUID
    course_title: Optional[str] = None
    team_name: Optional[str] = None
    state: InvitationState
    expires_at: Optional[datetime] = None


class InvitationAcceptRequest(BaseModel):
    token: str = Field(min_length=1)


class InvitationAcceptResponse(BaseModel):
    course_id: UUID
    account_id: UUID
    enrollment_created: bool


class PendingInvitationsResponse(BaseModel):
    accepted: List[InvitationAcceptResponse]
