import uuid
from decimal import Decimal

import pytest
import stripe

from evergreen.services import course_service, user_report_service

pytestmark = pytest.mark.anyio("asyncio")

COURSE_ID = str(uuid.uuid4())


def _course_row(**overrides):
    row = {
        "id": COURSE_ID,
        "account_id": None,
        "title": "Ladder Safety",
        "slug": "ladder-safety",
        "description": None,
        "status": "draft",
        "sku": None,
        "price": None,
        "stripe_price_id": None,
        "sequential_completion": False,
        "passing_score": 80,
    }
    row.update(overrides)
    return row


@pytest.fixture
def course_store(monkeypatch):
    state = {"slugs": {"ladder-safety"}, "created": [], "updates": [], "enrollments": 0}

    async def fake_slug_exists(slug):
        return slug in state["slugs"]

    async def fake_create_course(**kwargs):
        state["created"].append(kwargs)
        return _course_row(**{k: v for k, v in kwargs.items() if k != "created_by"})

    async def fake_get_course(*, course_id=None, slug=None):
        if (course_id and str(course_id) == COURSE_ID) or slug == "ladder-safety":
            return _course_row()
        return None

    async def fake_by_price(price_ids):
        return {}

    async def fake_update_course(course_id, fields, *, updated_by):
        state["updates"].append(fields)
        return _course_row(**fields)

    async def fake_count(course_id):
        return state["enrollments"]

    async def fake_delete(course_id):
        state["deleted"] = course_id
        return True

    repo = course_service.courses_repo
    monkeypatch.setattr(repo, "slug_exists", fake_slug_exists)
    monkeypatch.setattr(repo, "create_course", fake_create_course)
    monkeypatch.setattr(repo, "get_course", fake_get_course)
    monkeypatch.setattr(repo, "get_courses_by_price_ids", fake_by_price)
    monkeypatch.setattr(repo, "update_course", fake_update_course)
    monkeypatch.setattr(repo, "delete_course", fake_delete)
    monkeypatch.setattr(course_service.enrollments_repo, "count_course_enrollments", fake_count)
    return state


async def test_admin_routes_reject_learners(async_client, login_as, learner):
    login_as(learner)
    resp = await async_client.post("/api/admin/courses", json={"title": "Nope"})
    assert resp.status_code == 403


async def test_create_course_generates_unique_slug(
    async_client, course_store, login_as, admin_user
):
    login_as(admin_user)
    resp = await async_client.post(
        "/api/admin/courses",
        json={"title": "Ladder Safety", "price": "19.99", "status": "published"},
    )
    assert resp.status_code == 201, resp.text
    created = course_store["created"][0]
    assert created["slug"].startswith("ladder-safety-")
    assert created["status"] == "published"
    assert created["price"] == Decimal("19.99")
    assert created["account_id"] == admin_user["id"]


async def test_requested_slug_conflict(async_client, course_store, login_as, admin_user):
    login_as(admin_user)
    resp = await async_client.post(
        "/api/admin/courses", json={"title": "Another", "slug": "ladder-safety"}
    )
    assert resp.status_code == 409


async def test_bind_price_copies_unit_amount(
    async_client, course_store, login_as, admin_user, stripe_configured, monkeypatch
):
    def fake_price(price_id):
        return {"id": price_id, "active": True, "unit_amount": 4900}

    monkeypatch.setattr(stripe.Price, "retrieve", fake_price)
    login_as(admin_user)

    resp = await async_client.post(
        f"/api/admin/courses/{COURSE_ID}/stripe-price", json={"stripe_price_id": "price_abc"}
    )
    assert resp.status_code == 200, resp.text
    assert course_store["updates"][-1]["stripe_price_id"] == "price_abc"
    assert course_store["updates"][-1]["price"] == Decimal("49")


async def test_bind_inactive_price_is_rejected(
    async_client, course_store, login_as, admin_user, stripe_configured, monkeypatch
):
    monkeypatch.setattr(stripe.Price, "retrieve", lambda price_id: {"id": price_id, "active": False})
    login_as(admin_user)

    resp = await async_client.post(
        f"/api/admin/courses/{COURSE_ID}/stripe-price", json={"stripe_price_id": "price_old"}
    )
    assert resp.status_code == 400


async def test_delete_course_with_enrollments_needs_force(
    async_client, course_store, login_as, admin_user
):
    course_store["enrollments"] = 4
    login_as(admin_user)

    blocked = await async_client.delete(f"/api/admin/courses/{COURSE_ID}")
    assert blocked.status_code == 409

    forced = await async_client.delete(f"/api/admin/courses/{COURSE_ID}", params={"force": "true"})
    assert forced.status_code == 204
    assert course_store["deleted"] == COURSE_ID


async def test_quiz_questions_require_a_correct_option(async_client, login_as, admin_user):
    login_as(admin_user)
    resp = await async_client.put(
        f"/api/admin/lessons/{uuid.uuid4()}/quiz-questions",
        json={
            "questions": [
                {
                    "question": "Pick one",
                    "options": [{"id": "a", "text": "A"}, {"id": "b", "text": "B"}],
                }
            ]
        },
    )
    assert resp.status_code == 422


async def test_admin_enroll_requires_target(async_client, login_as, admin_user):
    login_as(admin_user)
    resp = await async_client.post("/api/admin/enrollments", json={"course_id": COURSE_ID})
    assert resp.status_code == 422


LEARNER_ID = str(uuid.uuid4())
OTHER_COURSE_ID = str(uuid.uuid4())


def _enrollment(course_id, **overrides):
    row = {
        "id": str(uuid.uuid4()),
        "user_id": LEARNER_ID,
        "course_id": course_id,
        "progress_percentage": 0,
        "final_score": None,
        "enrolled_at": "2024-03-01T09:00:00Z",
        "completed_at": None,
        "course_title": "Ladder Safety",
        "course_slug": "ladder-safety",
        "course_passing_score": 80,
    }
    row.update(overrides)
    return row


@pytest.fixture
def user_directory(monkeypatch):
    state = {"list_calls": []}

    async def fake_list_users(*, search=None, limit=100, offset=0):
        state["list_calls"].append({"search": search, "limit": limit, "offset": offset})
        return [
            {
                "id": LEARNER_ID,
                "email": "crew@example.com",
                "display_name": "Crew Member",
                "created_at": "2024-02-01T09:00:00Z",
                "last_active": "2024-03-05T09:00:00Z",
                "enrollments": 2,
                "completions": 1,
                "average_progress": 75,
            }
        ]

    async def fake_get_user(user_id):
        if str(user_id) == LEARNER_ID:
            return {
                "id": LEARNER_ID,
                "email": "crew@example.com",
                "display_name": "Crew Member",
                "app_metadata": {"provider": "email"},
            }
        return None

    async def fake_user_enrollments(user_id):
        return [
            _enrollment(COURSE_ID, progress_percentage=50),
            _enrollment(
                OTHER_COURSE_ID,
                progress_percentage=100,
                final_score=72,
                completed_at="2024-03-05T09:00:00Z",
                course_title="Forklift Safety",
                course_passing_score=70,
            ),
        ]

    monkeypatch.setattr(user_report_service.users_repo, "list_users_with_stats", fake_list_users)
    monkeypatch.setattr(user_report_service.users_repo, "get_user", fake_get_user)
    monkeypatch.setattr(
        user_report_service.enrollments_repo, "list_user_enrollments", fake_user_enrollments
    )
    return state


async def test_admin_lists_users_with_stats(async_client, user_directory, login_as, admin_user):
    login_as(admin_user)
    resp = await async_client.get("/api/admin/users", params={"search": "crew", "limit": 25})
    assert resp.status_code == 200, resp.text
    items = resp.json()["items"]
    assert [item["email"] for item in items] == ["crew@example.com"]
    assert items[0]["enrollments"] == 2
    assert items[0]["completions"] == 1
    assert items[0]["average_progress"] == 75
    assert user_directory["list_calls"] == [{"search": "crew", "limit": 25, "offset": 0}]


async def test_user_listing_is_admin_only(async_client, user_directory, login_as, learner):
    login_as(learner)
    resp = await async_client.get("/api/admin/users")
    assert resp.status_code == 403
    assert user_directory["list_calls"] == []


async def test_user_report_splits_current_and_finished(
    async_client, user_directory, login_as, admin_user
):
    login_as(admin_user)
    resp = await async_client.get(f"/api/admin/users/{LEARNER_ID}")
    assert resp.status_code == 200, resp.text
    report = resp.json()
    assert report["enrollments"] == 2
    assert report["completions"] == 1
    assert report["is_admin"] is False
    assert [row["course_id"] for row in report["current_enrollments"]] == [COURSE_ID]
    assert report["current_enrollments"][0]["progress_percentage"] == 50
    assert report["final_scores"] == [
        {
            "course_id": OTHER_COURSE_ID,
            "course_title": "Forklift Safety",
            "score": 72,
            "passed": True,
            "completed_at": "2024-03-05T09:00:00Z",
        }
    ]


async def test_user_report_for_unknown_user(async_client, user_directory, login_as, admin_user):
    login_as(admin_user)
    resp = await async_client.get(f"/api/admin/users/{uuid.uuid4()}")
    assert resp.status_code == 404


def test_finished_enrollment_detection():
    assert user_report_service.is_finished({"completed_at": "2024-01-01T00:00:00Z"})
    assert user_report_service.is_finished({"progress_percentage": 100, "completed_at": None})
    assert not user_report_service.is_finished({"progress_percentage": 99, "completed_at": None})
