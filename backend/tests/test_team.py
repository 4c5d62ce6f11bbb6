import uuid
from datetime import datetime, timedelta, timezone

import pytest

from evergreen.services import invitation_service, seat_service

pytestmark = pytest.mark.anyio("asyncio")

ACCOUNT_ID = str(uuid.uuid4())
COURSE_ID = str(uuid.uuid4())
OWNER_ID = str(uuid.uuid4())


def _now():
    return datetime.now(timezone.utc)


@pytest.fixture
def team(monkeypatch):
    state = {
        "managers": {OWNER_ID},
        "usage": {"course_id": COURSE_ID, "total_seats": 3, "enrolled": 1, "pending": 0},
        "invitations": {},
        "enrollments": [],
        "accepted": [],
        "emails": [],
        "deleted": [],
    }

    async def fake_get_account(account_id):
        if str(account_id) != ACCOUNT_ID:
            return None
        return {"id": ACCOUNT_ID, "name": "buyer's Team", "primary_owner_user_id": OWNER_ID}

    async def fake_is_manager(user_id, account_id):
        return str(user_id) in state["managers"]

    async def fake_managed_accounts(user_id):
        if str(user_id) not in state["managers"]:
            return []
        return [
            {
                "id": ACCOUNT_ID,
                "name": "buyer's Team",
                "slug": "buyer-team-abc123",
                "primary_owner_user_id": OWNER_ID,
            }
        ]

    async def fake_seat_usage(account_id, course_id):
        return dict(state["usage"])

    async def fake_list_seat_usage(account_id):
        return [dict(state["usage"], course_title="Forklift Safety")]

    async def fake_set_total(*, account_id, course_id, total_seats, updated_by):
        state["usage"]["total_seats"] = total_seats

    async def fake_get_course(*, course_id=None, slug=None):
        return {"id": COURSE_ID, "title": "Forklift Safety", "slug": "forklift-safety"}

    def _live(invitation):
        return not invitation.get("accepted_at") and invitation["expires_at"] > _now()

    async def fake_get_pending(*, email, course_id, account_id):
        for invitation in state["invitations"].values():
            if invitation["email"] == email and _live(invitation):
                return invitation
        return None

    async def fake_create_invitation(**kwargs):
        usage = state["usage"]
        if usage["total_seats"] - usage["enrolled"] - usage["pending"] <= 0:
            return invitations_repo.NO_SEATS, None
        for token, invitation in list(state["invitations"].items()):
            if invitation["email"] != kwargs["email"] or invitation.get("accepted_at"):
                continue
            if _live(invitation):
                return invitations_repo.DUPLICATE, None
            del state["invitations"][token]
        invitation = {"id": str(uuid.uuid4()), "accepted_at": None, "created_at": _now(), **kwargs}
        state["invitations"][invitation["invite_token"]] = invitation
        usage["pending"] += 1
        return invitations_repo.CREATED, invitation

    async def fake_get_by_token(token):
        return state["invitations"].get(token)

    async def fake_ensure_enrollment(**kwargs):
        state["enrollments"].append(kwargs)
        return {"id": str(uuid.uuid4()), **kwargs}, True

    async def fake_mark_accepted(invitation_id, user_id):
        state["accepted"].append((invitation_id, user_id))

    async def fake_rename(user_id, name):
        state["renamed"] = (user_id, name)

    async def fake_send_email(*, to, subject, html, text=None):
        state["emails"].append((to, subject))
        return "email-id"

    async def fake_delete_enrollment(user_id, course_id, *, account_id=None):
        state["deleted"].append(user_id)
        return True

    accounts_repo = seat_service.accounts_repo
    monkeypatch.setattr(accounts_repo, "get_account", fake_get_account)
    monkeypatch.setattr(accounts_repo, "is_account_manager", fake_is_manager)
    monkeypatch.setattr(accounts_repo, "list_managed_accounts", fake_managed_accounts)
    monkeypatch.setattr(accounts_repo, "rename_personal_account", fake_rename)
    monkeypatch.setattr(seat_service.seats_repo, "get_seat_usage", fake_seat_usage)
    monkeypatch.setattr(seat_service.seats_repo, "list_seat_usage", fake_list_seat_usage)
    monkeypatch.setattr(seat_service.seats_repo, "set_total_seats", fake_set_total)
    monkeypatch.setattr(seat_service.enrollments_repo, "delete_enrollment", fake_delete_enrollment)
    monkeypatch.setattr(
        invitation_service.course_service.courses_repo, "get_course", fake_get_course
    )
    invitations_repo = invitation_service.invitations_repo
    monkeypatch.setattr(invitations_repo, "get_pending_invitation", fake_get_pending)
    monkeypatch.setattr(invitations_repo, "create_invitation", fake_create_invitation)
    monkeypatch.setattr(invitations_repo, "get_invitation_by_token", fake_get_by_token)
    monkeypatch.setattr(invitations_repo, "mark_accepted", fake_mark_accepted)
    monkeypatch.setattr(invitation_service.enrollments_repo, "ensure_enrollment", fake_ensure_enrollment)
    monkeypatch.setattr(invitation_service.mailer, "send_email", fake_send_email)
    return state


@pytest.fixture
def owner():
    return {"id": OWNER_ID, "email": "buyer@example.com", "display_name": "Buyer", "is_admin": False}


def test_invitation_state_transitions():
    now = _now()
    assert invitation_service.invitation_state({"expires_at": now + timedelta(days=1)}, now) == "pending"
    assert invitation_service.invitation_state({"expires_at": now - timedelta(seconds=1)}, now) == "expired"
    assert (
        invitation_service.invitation_state(
            {"expires_at": now - timedelta(days=3), "accepted_at": now}, now
        )
        == "accepted"
    )


def test_invitation_url_carries_token():
    url = invitation_service.invitation_url("tok en")
    assert url.endswith("/auth/sign-up?course_token=tok+en")


def test_seat_availability_counts_pending_invitations():
    row = seat_service.with_availability({"total_seats": 5, "enrolled": 2, "pending": 2})
    assert row["available"] == 1
    assert seat_service.with_availability({"total_seats": 1, "enrolled": 2})["available"] == 0


async def test_manager_sees_seat_overview(async_client, team, login_as, owner):
    login_as(owner)
    resp = await async_client.get(f"/api/team/{ACCOUNT_ID}/seats")
    assert resp.status_code == 200, resp.text
    item = resp.json()["items"][0]
    assert item["available"] == 2
    assert item["course_title"] == "Forklift Safety"


async def test_my_teams_lists_managed_accounts(async_client, team, login_as, owner, learner):
    login_as(owner)
    resp = await async_client.get("/api/team")
    assert resp.status_code == 200, resp.text
    assert resp.json()["items"] == [
        {
            "id": ACCOUNT_ID,
            "name": "buyer's Team",
            "slug": "buyer-team-abc123",
            "primary_owner_user_id": OWNER_ID,
            "is_owner": True,
        }
    ]

    login_as(learner)
    assert (await async_client.get("/api/team")).json() == {"items": []}


async def test_non_manager_is_forbidden(async_client, team, login_as, learner):
    login_as(learner)
    resp = await async_client.get(f"/api/team/{ACCOUNT_ID}/seats")
    assert resp.status_code == 403


async def test_seats_cannot_drop_below_usage(async_client, team, login_as, owner):
    team["usage"]["pending"] = 1
    login_as(owner)
    resp = await async_client.put(
        f"/api/team/{ACCOUNT_ID}/courses/{COURSE_ID}/seats", json={"total_seats": 1}
    )
    assert resp.status_code == 400
    assert "2" in resp.json()["detail"]


async def test_invite_and_accept(async_client, team, login_as, owner):
    login_as(owner)
    resp = await async_client.post(
        f"/api/team/{ACCOUNT_ID}/invitations",
        json={"course_id": COURSE_ID, "email": " New.Hire@Example.com ", "invitee_name": "Nia"},
    )
    assert resp.status_code == 201, resp.text
    payload = resp.json()
    assert payload["email_sent"] is True
    assert payload["invitation"]["email"] == "new.hire@example.com"
    assert team["emails"] == [("new.hire@example.com", "You're invited to Forklift Safety")]

    token = next(iter(team["invitations"]))
    lookup = await async_client.get(f"/api/invitations/{token}")
    assert lookup.status_code == 200
    assert lookup.json()["state"] == "pending"

    invitee = {
        "id": str(uuid.uuid4()),
        "email": "new.hire@example.com",
        "display_name": "new.hire",
        "is_admin": False,
    }
    login_as(invitee)
    accepted = await async_client.post("/api/invitations/accept", json={"token": token})
    assert accepted.status_code == 200, accepted.text
    assert accepted.json() == {
        "course_id": COURSE_ID,
        "account_id": ACCOUNT_ID,
        "enrollment_created": True,
    }
    assert team["enrollments"][0]["account_id"] == ACCOUNT_ID
    assert team["enrollments"][0]["invited_by"] == OWNER_ID
    assert team["renamed"] == (invitee["id"], "Nia")


async def test_invite_without_free_seats(async_client, team, login_as, owner):
    team["usage"].update(total_seats=2, enrolled=1, pending=1)
    login_as(owner)
    resp = await async_client.post(
        f"/api/team/{ACCOUNT_ID}/invitations",
        json={"course_id": COURSE_ID, "email": "late@example.com"},
    )
    assert resp.status_code == 400
    assert resp.json()["detail"] == "No seats available for this course"


async def test_duplicate_pending_invitation_conflicts(async_client, team, login_as, owner):
    login_as(owner)
    body = {"course_id": COURSE_ID, "email": "dup@example.com"}
    first = await async_client.post(f"/api/team/{ACCOUNT_ID}/invitations", json=body)
    second = await async_client.post(f"/api/team/{ACCOUNT_ID}/invitations", json=body)
    assert first.status_code == 201
    assert second.status_code == 409


async def test_expired_invitation_can_be_reissued(async_client, team, login_as, owner):
    stale = _stored_invitation(
        team, email="late.hire@example.com", expires_at=_now() - timedelta(days=1)
    )
    login_as(owner)
    resp = await async_client.post(
        f"/api/team/{ACCOUNT_ID}/invitations",
        json={"course_id": COURSE_ID, "email": "late.hire@example.com"},
    )
    assert resp.status_code == 201, resp.text
    assert stale["invite_token"] not in team["invitations"]
    fresh = resp.json()["invitation"]
    assert fresh["id"] != stale["id"]
    assert fresh["email"] == "late.hire@example.com"


@pytest.mark.parametrize(
    ("outcome", "status_code"),
    [("no_seats", 400), ("duplicate", 409)],
)
async def test_invitation_insert_rejections(
    async_client, team, login_as, owner, monkeypatch, outcome, status_code
):
    async def rejected(**kwargs):
        return outcome, None

    monkeypatch.setattr(invitation_service.invitations_repo, "create_invitation", rejected)
    login_as(owner)
    resp = await async_client.post(
        f"/api/team/{ACCOUNT_ID}/invitations",
        json={"course_id": COURSE_ID, "email": "racer@example.com"},
    )
    assert resp.status_code == status_code
    assert team["emails"] == []


async def test_invitation_email_failure_is_reported(
    async_client, team, login_as, owner, monkeypatch
):
    from evergreen.errors import ConfigError

    async def no_mail(**kwargs):
        raise ConfigError("Email delivery is not configured")

    monkeypatch.setattr(invitation_service.mailer, "send_email", no_mail)
    login_as(owner)
    resp = await async_client.post(
        f"/api/team/{ACCOUNT_ID}/invitations",
        json={"course_id": COURSE_ID, "email": "quiet@example.com"},
    )
    assert resp.status_code == 201
    assert resp.json()["email_sent"] is False


def _stored_invitation(team, **overrides):
    invitation = {
        "id": str(uuid.uuid4()),
        "email": "someone@example.com",
        "invitee_name": None,
        "course_id": COURSE_ID,
        "account_id": ACCOUNT_ID,
        "invited_by": OWNER_ID,
        "invite_token": "tok-1",
        "expires_at": _now() + timedelta(days=1),
        "accepted_at": None,
        "accepted_by": None,
    }
    invitation.update(overrides)
    team["invitations"][invitation["invite_token"]] = invitation
    return invitation


async def test_accept_with_other_email_is_forbidden(async_client, team, login_as, learner):
    _stored_invitation(team)
    login_as(learner)
    resp = await async_client.post("/api/invitations/accept", json={"token": "tok-1"})
    assert resp.status_code == 403


async def test_accept_expired_invitation(async_client, team, login_as):
    _stored_invitation(team, expires_at=_now() - timedelta(minutes=1))
    login_as({"id": str(uuid.uuid4()), "email": "someone@example.com", "is_admin": False})
    resp = await async_client.post("/api/invitations/accept", json={"token": "tok-1"})
    assert resp.status_code == 410


async def test_accept_is_idempotent_for_same_user(async_client, team, login_as):
    user = {"id": str(uuid.uuid4()), "email": "someone@example.com", "is_admin": False}
    _stored_invitation(team, accepted_at=_now(), accepted_by=user["id"])
    login_as(user)
    resp = await async_client.post("/api/invitations/accept", json={"token": "tok-1"})
    assert resp.status_code == 200
    assert resp.json()["enrollment_created"] is False
    assert team["enrollments"] == []


async def test_accept_taken_invitation_conflicts(async_client, team, login_as):
    _stored_invitation(team, accepted_at=_now(), accepted_by=str(uuid.uuid4()))
    login_as({"id": str(uuid.uuid4()), "email": "someone@example.com", "is_admin": False})
    resp = await async_client.post("/api/invitations/accept", json={"token": "tok-1"})
    assert resp.status_code == 409


async def test_unknown_invitation_token(async_client, team):
    resp = await async_client.get("/api/invitations/does-not-exist")
    assert resp.status_code == 404


async def test_owner_removes_member(async_client, team, login_as, owner):
    member_id = str(uuid.uuid4())
    login_as(owner)
    resp = await async_client.delete(
        f"/api/team/{ACCOUNT_ID}/courses/{COURSE_ID}/members/{member_id}"
    )
    assert resp.status_code == 204
    assert team["deleted"] == [member_id]


async def test_owner_cannot_remove_self(async_client, team, login_as, owner):
    login_as(owner)
    resp = await async_client.delete(
        f"/api/team/{ACCOUNT_ID}/courses/{COURSE_ID}/members/{OWNER_ID}"
    )
    assert resp.status_code == 400
