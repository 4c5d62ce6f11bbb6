import uuid

import pytest
import stripe

from evergreen.services import checkout_service, purchase_reconciliation

pytestmark = pytest.mark.anyio("asyncio")

COURSE_ID = str(uuid.uuid4())


class _Page:
    def __init__(self, items):
        self._items = items

    def auto_paging_iter(self):
        return iter(self._items)


def _fake_line_items(items):
    def _list(session_id, limit=100):
        return _Page(items)

    return _list


@pytest.fixture
def published_course(monkeypatch):
    course = {
        "id": COURSE_ID,
        "title": "Forklift Safety",
        "slug": "forklift-safety",
        "status": "published",
        "stripe_price_id": "price_123",
    }

    async def fake_get_course(*, course_id=None, slug=None):
        if str(course_id) == COURSE_ID or slug == "forklift-safety":
            return course
        return None

    monkeypatch.setattr(checkout_service.courses_repo, "get_course", fake_get_course)
    return course


async def test_create_checkout_requires_login(async_client):
    resp = await async_client.post("/api/checkout/create", json={"items": []})
    assert resp.status_code == 401


async def test_create_checkout_builds_team_session(
    async_client, login_as, learner, stripe_configured, published_course, monkeypatch
):
    captured = {}

    def fake_create(**kwargs):
        captured.update(kwargs)
        return {"id": "cs_test_new", "url": "https://checkout.stripe.test/cs_test_new"}

    monkeypatch.setattr(stripe.checkout.Session, "create", fake_create)
    login_as(learner)

    resp = await async_client.post(
        "/api/checkout/create",
        json={"items": [{"slug": "forklift-safety", "quantity": 3}]},
    )

    assert resp.status_code == 201, resp.text
    payload = resp.json()
    assert payload["session_id"] == "cs_test_new"
    assert payload["purchase_type"] == "team"
    assert payload["total_quantity"] == 3
    assert captured["line_items"] == [{"price": "price_123", "quantity": 3}]
    assert captured["client_reference_id"] == learner["id"]
    assert captured["customer_email"] == learner["email"]
    assert captured["metadata"]["type"] == "course_purchase"
    assert captured["success_url"].endswith(
        "/home/purchase-success?session_id={CHECKOUT_SESSION_ID}"
    )


async def test_create_checkout_rejects_unpriced_course(
    async_client, login_as, learner, stripe_configured, published_course
):
    published_course["stripe_price_id"] = None
    login_as(learner)

    resp = await async_client.post(
        "/api/checkout/create", json={"items": [{"course_id": COURSE_ID}]}
    )
    assert resp.status_code == 400
    assert "Stripe price" in resp.json()["detail"]


async def test_create_checkout_unknown_course(
    async_client, login_as, learner, stripe_configured, published_course
):
    login_as(learner)
    resp = await async_client.post(
        "/api/checkout/create", json={"items": [{"slug": "does-not-exist"}]}
    )
    assert resp.status_code == 404


async def test_create_checkout_without_stripe_key(async_client, login_as, learner, monkeypatch):
    monkeypatch.setattr(checkout_service.settings, "stripe_secret_key", None, raising=False)
    login_as(learner)
    resp = await async_client.post(
        "/api/checkout/create", json={"items": [{"slug": "forklift-safety"}]}
    )
    assert resp.status_code == 503


async def test_checkout_verify_invalid_id(async_client):
    resp = await async_client.get("/api/checkout/verify", params={"session_id": "bad"})
    assert resp.status_code == 400


async def test_checkout_verify_not_found(async_client, stripe_configured, monkeypatch):
    def fake_retrieve(session_id):
        raise stripe.InvalidRequestError("missing", param="id", code="resource_missing")

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)

    resp = await async_client.get("/api/checkout/verify", params={"session_id": "cs_missing"})
    assert resp.status_code == 404


async def test_checkout_verify_success(async_client, stripe_configured, monkeypatch):
    def fake_retrieve(session_id):
        return {
            "id": session_id,
            "status": "complete",
            "payment_status": "paid",
            "customer_details": {"email": "Buyer@Example.com"},
            "metadata": {"type": "course_purchase"},
        }

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)
    monkeypatch.setattr(
        stripe.checkout.Session,
        "list_line_items",
        _fake_line_items([{"price": {"id": "price_123"}, "quantity": 1}]),
    )

    resp = await async_client.get("/api/checkout/verify", params={"session_id": "cs_test_123"})
    assert resp.status_code == 200, resp.text
    payload = resp.json()
    assert payload["session_id"] == "cs_test_123"
    assert payload["status"] == "success"
    assert payload["purchase_type"] == "individual"
    assert payload["customer_email"] == "buyer@example.com"


async def test_checkout_verify_expired_session(async_client, stripe_configured, monkeypatch):
    def fake_retrieve(session_id):
        return {"id": session_id, "status": "expired", "payment_status": "unpaid"}

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)
    monkeypatch.setattr(stripe.checkout.Session, "list_line_items", _fake_line_items([]))

    resp = await async_client.get("/api/checkout/verify", params={"session_id": "cs_test_987"})
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "canceled"


async def test_ensure_processed_rejects_foreign_session(
    async_client, login_as, learner, stripe_configured, monkeypatch
):
    def fake_retrieve(session_id):
        return {
            "id": session_id,
            "payment_status": "paid",
            "client_reference_id": str(uuid.uuid4()),
            "metadata": {"type": "course_purchase"},
        }

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)
    login_as(learner)

    resp = await async_client.post(
        "/api/checkout/ensure-processed", json={"session_id": "cs_test_other"}
    )
    assert resp.status_code == 403


async def test_ensure_processed_runs_reconciliation(
    async_client, login_as, learner, stripe_configured, monkeypatch
):
    def fake_retrieve(session_id):
        return {
            "id": session_id,
            "payment_status": "paid",
            "client_reference_id": learner["id"],
            "metadata": {"type": "course_purchase"},
        }

    async def fake_reconcile(session, line_items):
        result = purchase_reconciliation.ReconciliationResult(
            session_id=session["id"],
            status=purchase_reconciliation.STATUS_PROCESSED,
            purchase_type="individual",
            account_id=learner["id"],
            total_quantity=1,
        )
        result.items.append(
            purchase_reconciliation.LineItemResult(
                "price_123", 1, purchase_reconciliation.ITEM_ALLOCATED, COURSE_ID, "Forklift Safety"
            )
        )
        return result

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)
    monkeypatch.setattr(
        stripe.checkout.Session,
        "list_line_items",
        _fake_line_items([{"price": {"id": "price_123"}, "quantity": 1}]),
    )
    monkeypatch.setattr(
        checkout_service.purchase_reconciliation, "reconcile_checkout_session", fake_reconcile
    )
    login_as(learner)

    resp = await async_client.post(
        "/api/checkout/ensure-processed", json={"session_id": "cs_test_mine"}
    )
    assert resp.status_code == 200, resp.text
    payload = resp.json()
    assert payload["status"] == "processed"
    assert payload["items"][0]["status"] == "allocated"
    assert payload["items"][0]["course_id"] == COURSE_ID


async def test_ensure_processed_reports_pending_payment(
    async_client, login_as, learner, stripe_configured, monkeypatch
):
    def fake_retrieve(session_id):
        return {
            "id": session_id,
            "payment_status": "unpaid",
            "client_reference_id": learner["id"],
            "metadata": {"type": "course_purchase"},
        }

    monkeypatch.setattr(stripe.checkout.Session, "retrieve", fake_retrieve)
    monkeypatch.setattr(stripe.checkout.Session, "list_line_items", _fake_line_items([]))
    login_as(learner)

    resp = await async_client.post(
        "/api/checkout/ensure-processed", json={"session_id": "cs_test_wait"}
    )
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "pending"
