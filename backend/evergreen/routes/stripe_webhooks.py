from __future__ import annotations

import logging
from typing import Any

import stripe
from fastapi import APIRouter, HTTPException, Request, status

from ..config import settings
from ..services import webhook_service
from ..stripe_mode import current_mode

router = APIRouter(prefix="/api/billing", tags=["stripe-webhooks"])
logger = logging.getLogger(__name__)


def _verified_event(payload: bytes, signature: str | None) -> Any:
    if not signature:
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Missing Stripe signature")
    try:
        return stripe.Webhook.construct_event(
            payload=payload.decode("utf-8"),
            sig_header=signature,
            secret=settings.stripe_webhook_secret,
        )
    except stripe.SignatureVerificationError as exc:
        logger.warning("Rejected Stripe webhook with bad signature")
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Invalid signature") from exc
    except ValueError as exc:
        logger.warning("Rejected unparseable Stripe webhook", extra={"error": str(exc)})
        raise HTTPException(status.HTTP_400_BAD_REQUEST, detail="Invalid payload") from exc


@router.post("/webhook", status_code=status.HTTP_200_OK)
async def stripe_billing_webhook(request: Request):
    if not settings.stripe_webhook_secret:
        raise HTTPException(
            status.HTTP_503_SERVICE_UNAVAILABLE, detail="Stripe webhook secret missing"
        )

    event = _verified_event(await request.body(), request.headers.get("stripe-signature"))

    livemode = event.get("livemode") if hasattr(event, "get") else None
    mode = current_mode()
    if livemode is not None and mode is not None and bool(livemode) != (mode == "live"):
        logger.warning(
            "Stripe event mode does not match the configured key",
            extra={"event_livemode": bool(livemode), "stripe_mode": mode},
        )

    try:
        return await webhook_service.process_event(event)
    except webhook_service.WebhookProcessingError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.get("/webhook")
async def stripe_billing_webhook_status():
    mode = current_mode()
    return {
        "ok": True,
        "webhook_secret_configured": bool(settings.stripe_webhook_secret),
        "stripe_key_configured": mode is not None,
        "stripe_mode": mode,
    }
