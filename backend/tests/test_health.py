import logging
from contextlib import asynccontextmanager

import pytest

from evergreen.logging_context import (
    RequestContextFilter,
    bound_context,
    pop_request_context,
    push_request_context,
)


@pytest.mark.anyio("asyncio")
async def test_healthz(async_client):
    resp = await async_client.get("/healthz")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload.get("ok") is True


@pytest.mark.anyio("asyncio")
async def test_readyz(async_client, monkeypatch):
    class _Cursor:
        async def execute(self, query):
            assert query == "select 1"

        async def fetchone(self):
            return {"?column?": 1}

    @asynccontextmanager
    async def _fake_conn():
        yield _Cursor()

    monkeypatch.setattr("evergreen.main.get_conn", _fake_conn)
    resp = await async_client.get("/readyz")
    assert resp.status_code == 200
    payload = resp.json()
    assert payload.get("database") == "ready"


@pytest.mark.anyio("asyncio")
async def test_readyz_handles_db_failure(async_client, monkeypatch):
    @asynccontextmanager
    async def _broken_conn():
        raise RuntimeError("db down")
        yield

    monkeypatch.setattr("evergreen.main.get_conn", _broken_conn)
    resp = await async_client.get("/readyz")
    assert resp.status_code == 503
    assert resp.json()["detail"] == "database unavailable"


@pytest.mark.anyio("asyncio")
async def test_request_id_is_echoed(async_client):
    resp = await async_client.get("/healthz", headers={"X-Request-ID": "req-123"})
    assert resp.headers["X-Request-ID"] == "req-123"


@pytest.mark.anyio("asyncio")
async def test_metrics_endpoint_exposes_webhook_counters(async_client):
    resp = await async_client.get("/metrics")
    assert resp.status_code == 200
    assert "stripe_webhook_received" in resp.text


def _record():
    return logging.LogRecord("evergreen.test", logging.INFO, __file__, 1, "hello", None, None)


def test_log_records_pick_up_bound_context():
    token = push_request_context("req-9")
    try:
        with bound_context(stripe_event_id="evt_9", checkout_session_id="cs_test_9"):
            inside = _record()
            RequestContextFilter().filter(inside)
        outside = _record()
        RequestContextFilter().filter(outside)
    finally:
        pop_request_context(token)

    assert inside.request_id == "req-9"
    assert inside.stripe_event_id == "evt_9"
    assert inside.checkout_session_id == "cs_test_9"
    assert outside.request_id == "req-9"
    assert outside.stripe_event_id is None
