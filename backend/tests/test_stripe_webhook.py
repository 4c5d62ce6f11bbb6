import pytest
import stripe

from evergreen.config import settings
from evergreen.repositories import webhook_events as events_repo
from evergreen.services import purchase_reconciliation, webhook_service

pytestmark = pytest.mark.anyio("asyncio")


class _FakeLedger:
    def __init__(self):
        self.rows: dict[str, dict] = {}
        self.failures: list[tuple[str, str]] = []

    async def begin_event(self, event_id, event_type, payload):
        row = self.rows.get(event_id)
        if row and row["status"] in (events_repo.STATUS_PROCESSED, events_repo.STATUS_IGNORED):
            return dict(row)
        attempts = (row or {}).get("attempts", 0) + 1
        self.rows[event_id] = {
            "event_id": event_id,
            "event_type": event_type,
            "status": events_repo.STATUS_PROCESSING,
            "attempts": attempts,
        }
        return dict(self.rows[event_id])

    async def mark_processed(self, event_id):
        self.rows[event_id]["status"] = events_repo.STATUS_PROCESSED

    async def mark_ignored(self, event_id):
        self.rows[event_id]["status"] = events_repo.STATUS_IGNORED

    async def mark_failed(self, event_id, error):
        self.rows[event_id]["status"] = events_repo.STATUS_FAILED
        self.failures.append((event_id, error))

    async def get_event(self, event_id):
        row = self.rows.get(event_id)
        return dict(row) if row else None


@pytest.fixture
def ledger(monkeypatch):
    fake = _FakeLedger()
    for name in ("begin_event", "mark_processed", "mark_ignored", "mark_failed", "get_event"):
        monkeypatch.setattr(events_repo, name, getattr(fake, name))
    return fake


def _session_event(event_id="evt_1", event_type="checkout.session.completed", **session):
    data = {
        "id": "cs_test_1",
        "payment_status": "paid",
        "metadata": {"type": "course_purchase"},
        **session,
    }
    return {"id": event_id, "type": event_type, "data": {"object": data}}


def _use_event(monkeypatch, event):
    def fake_construct_event(payload, sig_header, secret):
        assert secret == "whsec_test"
        return event

    monkeypatch.setattr(stripe.Webhook, "construct_event", fake_construct_event)


async def _post(async_client, signature="t=1,v1=abc"):
    headers = {"stripe-signature": signature} if signature else {}
    return await async_client.post("/api/billing/webhook", content=b"{}", headers=headers)


async def test_webhook_requires_secret(async_client, monkeypatch):
    monkeypatch.setattr(settings, "stripe_webhook_secret", None, raising=False)
    resp = await _post(async_client)
    assert resp.status_code == 503


async def test_webhook_rejects_missing_signature(async_client, stripe_configured):
    resp = await _post(async_client, signature=None)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Missing Stripe signature"


async def test_webhook_rejects_invalid_signature(async_client, stripe_configured, monkeypatch):
    def fake_construct_event(payload, sig_header, secret):
        raise stripe.SignatureVerificationError("bad signature", sig_header)

    monkeypatch.setattr(stripe.Webhook, "construct_event", fake_construct_event)
    resp = await _post(async_client)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid signature"


async def test_webhook_rejects_invalid_payload(async_client, stripe_configured, monkeypatch):
    def fake_construct_event(payload, sig_header, secret):
        raise ValueError("not json")

    monkeypatch.setattr(stripe.Webhook, "construct_event", fake_construct_event)
    resp = await _post(async_client)
    assert resp.status_code == 400
    assert resp.json()["detail"] == "Invalid payload"


async def test_completed_session_is_reconciled_once(
    async_client, stripe_configured, ledger, monkeypatch
):
    calls = []

    async def fake_line_items(session_id):
        return [{"price": {"id": "price_123"}, "quantity": 1}]

    async def fake_reconcile(session, line_items):
        calls.append(session["id"])
        return purchase_reconciliation.ReconciliationResult(
            session_id=session["id"], status=purchase_reconciliation.STATUS_PROCESSED
        )

    monkeypatch.setattr(webhook_service.checkout_service, "list_line_items", fake_line_items)
    monkeypatch.setattr(
        webhook_service.purchase_reconciliation, "reconcile_checkout_session", fake_reconcile
    )
    _use_event(monkeypatch, _session_event())

    first = await _post(async_client)
    assert first.status_code == 200, first.text
    assert first.json()["status"] == "processed"

    second = await _post(async_client)
    assert second.status_code == 200
    assert second.json() == {"status": "duplicate", "event_id": "evt_1"}
    assert calls == ["cs_test_1"]
    assert ledger.rows["evt_1"]["status"] == events_repo.STATUS_PROCESSED


async def test_failed_processing_returns_500_and_allows_retry(
    async_client, stripe_configured, ledger, monkeypatch
):
    attempts = {"count": 0}

    async def flaky_line_items(session_id):
        attempts["count"] += 1
        if attempts["count"] == 1:
            raise RuntimeError("database unavailable")
        return []

    monkeypatch.setattr(webhook_service.checkout_service, "list_line_items", flaky_line_items)

    async def fake_reconcile(session, line_items):
        return purchase_reconciliation.ReconciliationResult(
            session_id=session["id"], status=purchase_reconciliation.STATUS_PROCESSED
        )

    monkeypatch.setattr(
        webhook_service.purchase_reconciliation, "reconcile_checkout_session", fake_reconcile
    )
    _use_event(monkeypatch, _session_event(event_id="evt_retry"))

    failed = await _post(async_client)
    assert failed.status_code == 500
    assert ledger.rows["evt_retry"]["status"] == events_repo.STATUS_FAILED
    assert "database unavailable" in ledger.failures[0][1]

    retried = await _post(async_client)
    assert retried.status_code == 200
    assert retried.json()["status"] == "processed"
    assert ledger.rows["evt_retry"]["attempts"] == 2


async def test_unhandled_event_is_ignored(async_client, stripe_configured, ledger, monkeypatch):
    _use_event(monkeypatch, {"id": "evt_other", "type": "customer.created", "data": {"object": {}}})
    resp = await _post(async_client)
    assert resp.status_code == 200
    assert resp.json()["status"] == "ignored"
    assert ledger.rows["evt_other"]["status"] == events_repo.STATUS_IGNORED


async def test_unpaid_completed_session_waits_for_async_payment(
    async_client, stripe_configured, ledger, monkeypatch
):
    async def unexpected(*args, **kwargs):
        raise AssertionError("line items should not be fetched for unpaid sessions")

    monkeypatch.setattr(webhook_service.checkout_service, "list_line_items", unexpected)
    _use_event(monkeypatch, _session_event(event_id="evt_unpaid", payment_status="unpaid"))

    resp = await _post(async_client)
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "processed"
    assert body["result"]["status"] == purchase_reconciliation.STATUS_AWAITING_PAYMENT


async def test_non_course_session_is_ignored(async_client, stripe_configured, ledger, monkeypatch):
    _use_event(monkeypatch, _session_event(event_id="evt_sub", metadata={"type": "subscription"}))
    resp = await _post(async_client)
    assert resp.status_code == 200
    assert resp.json()["status"] == "ignored"


async def test_async_payment_succeeded_reconciles_session(
    async_client, stripe_configured, ledger, monkeypatch
):
    reconciled = []

    async def fake_line_items(session_id):
        return [{"price": {"id": "price_123"}, "quantity": 1}]

    async def fake_reconcile(session, line_items):
        reconciled.append((session["id"], len(line_items)))
        return purchase_reconciliation.ReconciliationResult(
            session_id=session["id"], status=purchase_reconciliation.STATUS_PROCESSED
        )

    monkeypatch.setattr(webhook_service.checkout_service, "list_line_items", fake_line_items)
    monkeypatch.setattr(
        webhook_service.purchase_reconciliation, "reconcile_checkout_session", fake_reconcile
    )
    _use_event(
        monkeypatch,
        _session_event(event_id="evt_async", event_type="checkout.session.async_payment_succeeded"),
    )

    resp = await _post(async_client)
    assert resp.status_code == 200, resp.text
    body = resp.json()
    assert body["status"] == "processed"
    assert body["result"]["status"] == purchase_reconciliation.STATUS_PROCESSED
    assert reconciled == [("cs_test_1", 1)]
    assert ledger.rows["evt_async"]["status"] == events_repo.STATUS_PROCESSED


@pytest.mark.parametrize(
    "event_type",
    ["checkout.session.async_payment_failed", "checkout.session.expired"],
)
async def test_closed_session_events_are_ignored(
    async_client, stripe_configured, ledger, monkeypatch, event_type
):
    async def unexpected(*args, **kwargs):
        raise AssertionError("closed sessions must not be reconciled")

    monkeypatch.setattr(webhook_service.checkout_service, "list_line_items", unexpected)
    monkeypatch.setattr(
        webhook_service.purchase_reconciliation, "reconcile_checkout_session", unexpected
    )
    _use_event(
        monkeypatch,
        _session_event(event_id="evt_closed", event_type=event_type, payment_status="unpaid"),
    )

    resp = await _post(async_client)
    assert resp.status_code == 200, resp.text
    assert resp.json()["status"] == "ignored"
    assert ledger.rows["evt_closed"]["status"] == events_repo.STATUS_IGNORED


async def test_completed_after_async_success_does_not_allocate_twice(
    async_client, stripe_configured, ledger, monkeypatch
):
    buyer_id = "00000000-0000-0000-0000-0000000000b1"
    allocations: set[tuple[str, str]] = set()
    applied = []

    async def fake_line_items(session_id):
        return [{"price": {"id": "price_123"}, "quantity": 1}]

    async def fake_get_user(user_id):
        return {"id": buyer_id, "email": "buyer@example.com"} if user_id == buyer_id else None

    async def fake_courses_by_price(price_ids):
        return {"price_123": {"id": "course-1", "title": "Forklift Safety"}}

    async def fake_apply(**kwargs):
        applied.append(kwargs["stripe_session_id"])
        key = (kwargs["stripe_session_id"], kwargs["course_id"])
        if key in allocations:
            return {"duplicate": True, "purchase": None, "seats": None, "enrollment": None}
        allocations.add(key)
        return {
            "duplicate": False,
            "purchase": {"id": "purchase-1"},
            "seats": {"total_seats": kwargs["quantity"]},
            "enrollment": {"user_id": buyer_id, "course_id": kwargs["course_id"]},
        }

    recon = webhook_service.purchase_reconciliation
    monkeypatch.setattr(webhook_service.checkout_service, "list_line_items", fake_line_items)
    monkeypatch.setattr(recon.users_repo, "get_user", fake_get_user)
    monkeypatch.setattr(recon.courses_repo, "get_courses_by_price_ids", fake_courses_by_price)
    monkeypatch.setattr(recon.purchases_repo, "apply_course_purchase", fake_apply)

    _use_event(
        monkeypatch,
        _session_event(
            event_id="evt_async_first",
            event_type="checkout.session.async_payment_succeeded",
            client_reference_id=buyer_id,
        ),
    )
    first = await _post(async_client)
    assert first.status_code == 200, first.text
    assert first.json()["result"]["status"] == recon.STATUS_PROCESSED
    assert [item["status"] for item in first.json()["result"]["items"]] == [recon.ITEM_ALLOCATED]

    _use_event(
        monkeypatch,
        _session_event(event_id="evt_completed_late", client_reference_id=buyer_id),
    )
    second = await _post(async_client)
    assert second.status_code == 200, second.text
    body = second.json()
    assert body["status"] == "processed"
    assert body["result"]["status"] == recon.STATUS_ALREADY_PROCESSED
    assert [item["status"] for item in body["result"]["items"]] == [recon.ITEM_DUPLICATE]

    assert applied == ["cs_test_1", "cs_test_1"]
    assert allocations == {("cs_test_1", "course-1")}
    assert ledger.rows["evt_async_first"]["status"] == events_repo.STATUS_PROCESSED
    assert ledger.rows["evt_completed_late"]["status"] == events_repo.STATUS_PROCESSED


async def test_webhook_status_reports_configuration(async_client, stripe_configured):
    resp = await async_client.get("/api/billing/webhook")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload["webhook_secret_configured"] is True
    assert payload["stripe_mode"] == "test"


async def test_admin_can_inspect_ledger_row(
    async_client, stripe_configured, ledger, monkeypatch, login_as, admin_user
):
    _use_event(monkeypatch, _session_event(metadata={"type": "subscription"}))
    await _post(async_client)

    login_as(admin_user)
    found = await async_client.get("/api/admin/webhook-events/evt_1")
    assert found.status_code == 200, found.text
    assert found.json()["status"] == events_repo.STATUS_IGNORED
    assert found.json()["attempts"] == 1

    missing = await async_client.get("/api/admin/webhook-events/evt_unknown")
    assert missing.status_code == 404

