from fastapi import APIRouter, Query, status

from .. import schemas
from ..auth import CurrentUser
from ..services import invitation_service, seat_service

router = APIRouter(prefix="/api/team", tags=["team"])
invitations_router = APIRouter(prefix="/api/invitations", tags=["invitations"])


@router.get("", response_model=schemas.TeamAccountListResponse)
async def my_teams(current: CurrentUser):
    return {"items": await seat_service.list_my_teams(current)}


@router.get("/{account_id}/seats", response_model=schemas.SeatOverviewResponse)
async def seat_overview(account_id: str, current: CurrentUser):
    rows = await seat_service.get_seat_overview(current, account_id)
    return {"account_id": account_id, "items": rows}


@router.put("/{account_id}/courses/{course_id}/seats", response_model=schemas.SeatUsage)
async def update_seats(
    account_id: str,
    course_id: str,
    payload: schemas.SeatUpdateRequest,
    current: CurrentUser,
):
    return await seat_service.update_course_seats(
        current, account_id, course_id, payload.total_seats
    )


@router.get(
    "/{account_id}/courses/{course_id}/enrollments",
    response_model=schemas.TeamEnrollmentListResponse,
)
async def team_enrollments(account_id: str, course_id: str, current: CurrentUser):
    rows = await seat_service.list_team_enrollments(current, account_id, course_id)
    return {"items": rows}


@router.delete(
    "/{account_id}/courses/{course_id}/members/{member_id}",
    status_code=status.HTTP_204_NO_CONTENT,
)
async def remove_member(account_id: str, course_id: str, member_id: str, current: CurrentUser):
    await seat_service.remove_member_from_course(current, account_id, course_id, member_id)


@router.post(
    "/{account_id}/invitations",
    response_model=schemas.InvitationCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_invitation(
    account_id: str,
    payload: schemas.InvitationCreateRequest,
    current: CurrentUser,
):
    invitation, email_sent = await invitation_service.invite_to_course(
        current,
        account_id=account_id,
        course_id=payload.course_id,
        email=payload.email,
        invitee_name=payload.invitee_name,
    )
    return {"invitation": invitation, "email_sent": email_sent}


@router.get("/{account_id}/invitations", response_model=schemas.InvitationListResponse)
async def list_invitations(
    account_id: str,
    current: CurrentUser,
    course_id: str | None = Query(default=None),
):
    rows = await invitation_service.list_invitations(current, account_id, course_id)
    return {"items": rows}


@invitations_router.get("/{token}", response_model=schemas.InvitationLookupResponse)
async def lookup_invitation(token: str):
    return await invitation_service.get_invitation(token)


@invitations_router.post("/accept", response_model=schemas.InvitationAcceptResponse)
async def accept_invitation(payload: schemas.InvitationAcceptRequest, current: CurrentUser):
    return await invitation_service.accept_invitation(current, payload.token)


@invitations_router.post("/process-pending", response_model=schemas.PendingInvitationsResponse)
async def process_pending(current: CurrentUser):
    accepted = await invitation_service.process_pending_invitations(current)
    return {"accepted": accepted}


@invitations_router.delete("/{invitation_id}", status_code=status.HTTP_204_NO_CONTENT)
async def cancel_invitation(invitation_id: str, current: CurrentUser):
    await invitation_service.cancel_invitation(current, invitation_id)


@invitations_router.post(
    "/{invitation_id}/resend",
    response_model=schemas.InvitationCreateResponse,
)
async def resend_invitation(invitation_id: str, current: CurrentUser):
    invitation, email_sent = await invitation_service.resend_invitation(current, invitation_id)
    return {"invitation": invitation, "email_sent": email_sent}
