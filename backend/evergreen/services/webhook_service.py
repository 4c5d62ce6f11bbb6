from __future__ import annotations

import logging
from typing import Any, Mapping

from ..errors import LmsError, NotFoundError
from ..logging_context import bound_context
from ..metrics import (
    stripe_webhook_duplicate_total,
    stripe_webhook_failed_total,
    stripe_webhook_processed_total,
    stripe_webhook_received_total,
)
from ..repositories import webhook_events as events_repo
from . import checkout_service, purchase_reconciliation

logger = logging.getLogger(__name__)

RECONCILE_EVENTS = frozenset(
    {"checkout.session.completed", "checkout.session.async_payment_succeeded"}
)
CLOSED_SESSION_EVENTS = frozenset(
    {"checkout.session.async_payment_failed", "checkout.session.expired"}
)


class WebhookProcessingError(LmsError):
    """Raised after a failure has been recorded so Stripe retries the delivery."""

    status_code = 500


def _event_payload(event: Any) -> dict[str, Any]:
    to_dict = getattr(event, "to_dict", None)
    if callable(to_dict):
        return to_dict()
    return dict(event)


async def _handle_checkout_session(session: Mapping[str, Any]) -> dict[str, Any]:
    session_id = str(session.get("id") or "")
    if not purchase_reconciliation.is_course_purchase(session):
        return {"status": purchase_reconciliation.STATUS_IGNORED, "session_id": session_id}
    if not purchase_reconciliation.is_payment_settled(session):
        # Delayed payment methods: allocation waits for async_payment_succeeded.
        logger.info(
            "Checkout completed without settled payment",
            extra={"session_id": session_id, "payment_status": session.get("payment_status")},
        )
        return {"status": purchase_reconciliation.STATUS_AWAITING_PAYMENT, "session_id": session_id}

    line_items = await checkout_service.list_line_items(session_id)
    result = await purchase_reconciliation.reconcile_checkout_session(session, line_items)
    return result.as_dict()


async def dispatch(event_type: str, data_object: Mapping[str, Any]) -> dict[str, Any]:
    if event_type in RECONCILE_EVENTS:
        return await _handle_checkout_session(data_object)
    if event_type in CLOSED_SESSION_EVENTS:
        logger.info(
            "Checkout session closed without payment",
            extra={"event_type": event_type, "session_id": data_object.get("id")},
        )
        return {"status": purchase_reconciliation.STATUS_IGNORED}
    logger.info("Unhandled Stripe event", extra={"event_type": event_type})
    return {"status": purchase_reconciliation.STATUS_IGNORED}


async def process_event(event: Any) -> dict[str, Any]:
    """Run one verified Stripe event through the ledger and the dispatcher."""
    payload = _event_payload(event)
    event_id = str(payload.get("id") or "")
    event_type = str(payload.get("type") or "")
    data_object = (payload.get("data") or {}).get("object") or {}
    stripe_webhook_received_total.labels(event_type=event_type).inc()

    session_id = data_object.get("id") if event_type.startswith("checkout.session.") else None
    with bound_context(stripe_event_id=event_id, checkout_session_id=session_id):
        return await _run_ledgered(event_id, event_type, payload, data_object)


async def _run_ledgered(
    event_id: str, event_type: str, payload: dict[str, Any], data_object: Mapping[str, Any]
) -> dict[str, Any]:
    ledger = await events_repo.begin_event(event_id, event_type, payload)
    if ledger["status"] in (events_repo.STATUS_PROCESSED, events_repo.STATUS_IGNORED):
        stripe_webhook_duplicate_total.inc()
        logger.info(
            "Duplicate Stripe event skipped",
            extra={"event_type": event_type},
        )
        return {"status": "duplicate", "event_id": event_id}

    try:
        outcome = await dispatch(event_type, data_object)
    except Exception as exc:
        await events_repo.mark_failed(event_id, f"{type(exc).__name__}: {exc}")
        stripe_webhook_failed_total.labels(event_type=event_type).inc()
        logger.exception(
            "Stripe event processing failed",
            extra={"event_type": event_type, "attempts": ledger.get("attempts")},
        )
        raise WebhookProcessingError("Webhook processing failed") from exc

    if outcome.get("status") == purchase_reconciliation.STATUS_IGNORED:
        await events_repo.mark_ignored(event_id)
        status = "ignored"
    else:
        await events_repo.mark_processed(event_id)
        stripe_webhook_processed_total.labels(event_type=event_type).inc()
        status = "processed"

    return {"status": status, "event_id": event_id, "result": outcome}


async def get_event_status(event_id: str) -> dict[str, Any]:
    event = await events_repo.get_event(event_id)
    if not event:
        raise NotFoundError("Webhook event not found")
    return event


__all__ = ["WebhookProcessingError", "dispatch", "get_event_status", "process_event"]
