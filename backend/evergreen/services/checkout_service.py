from __future__ import annotations

import json
import logging
from typing import Any, Mapping, Sequence

import stripe
from starlette.concurrency import run_in_threadpool

from .. import schemas
from ..config import settings
from ..errors import LmsError, NotFoundError, PermissionDeniedError, UpstreamError
from ..repositories import courses as courses_repo
from ..stripe_mode import require_stripe
from . import purchase_reconciliation

logger = logging.getLogger(__name__)

SUCCESS_PATH = "home/purchase-success?session_id={CHECKOUT_SESSION_ID}"
CANCEL_PATH = "cart"
CHECKOUT_METADATA_TYPE = "course_purchase"


def _default_checkout_urls() -> tuple[str, str]:
    base = settings.site_base_url
    success_url = settings.checkout_success_url or f"{base}/{SUCCESS_PATH}"
    cancel_url = settings.checkout_cancel_url or f"{base}/{CANCEL_PATH}"
    return success_url, cancel_url


def _ensure_session_id(session_id: str) -> str:
    value = (session_id or "").strip()
    if not value.startswith("cs_"):
        raise LmsError("Invalid checkout session id")
    return value


def _translate_stripe_error(exc: Exception, message: str) -> LmsError:
    if isinstance(exc, stripe.InvalidRequestError) and getattr(exc, "code", None) == "resource_missing":
        return NotFoundError("Checkout session not found")
    return UpstreamError(message)


async def retrieve_session(session_id: str) -> Mapping[str, Any]:
    session_id = _ensure_session_id(session_id)
    require_stripe()
    try:
        return await run_in_threadpool(lambda: stripe.checkout.Session.retrieve(session_id))
    except stripe.StripeError as exc:
        logger.warning("Stripe session retrieval failed", extra={"session_id": session_id})
        raise _translate_stripe_error(exc, "Failed to retrieve checkout session") from exc


async def list_line_items(session_id: str) -> list[Mapping[str, Any]]:
    require_stripe()

    def _fetch() -> list[Mapping[str, Any]]:
        page = stripe.checkout.Session.list_line_items(session_id, limit=100)
        return list(page.auto_paging_iter())

    try:
        return await run_in_threadpool(_fetch)
    except stripe.StripeError as exc:
        logger.warning("Stripe line item listing failed", extra={"session_id": session_id})
        raise _translate_stripe_error(exc, "Failed to list checkout line items") from exc


async def _resolve_cart(items: Sequence[schemas.CartItem]) -> list[tuple[dict[str, Any], int]]:
    resolved: list[tuple[dict[str, Any], int]] = []
    for item in items:
        if item.course_id:
            course = await courses_repo.get_course(course_id=item.course_id)
        else:
            course = await courses_repo.get_course(slug=item.slug)
        if not course:
            raise NotFoundError(f"Course not found: {item.course_id or item.slug}")
        if course.get("status") != "published":
            raise LmsError(f"Course is not available for purchase: {course.get('title')}")
        if not course.get("stripe_price_id"):
            raise LmsError(f"Course has no Stripe price configured: {course.get('title')}")
        resolved.append((course, item.quantity))
    return resolved


async def create_course_checkout(
    user: Mapping[str, Any],
    payload: schemas.CheckoutCreateRequest,
) -> schemas.CheckoutCreateResponse:
    require_stripe()
    cart = await _resolve_cart(payload.items)

    user_id = str(user["id"])
    line_items = [
        {"price": course["stripe_price_id"], "quantity": quantity} for course, quantity in cart
    ]
    total = sum(quantity for _, quantity in cart)
    success_url, cancel_url = _default_checkout_urls()
    metadata = {
        "type": CHECKOUT_METADATA_TYPE,
        "user_id": user_id,
        "items": json.dumps(
            [{"course_id": str(course["id"]), "quantity": quantity} for course, quantity in cart]
        ),
    }

    checkout_kwargs: dict[str, Any] = {
        "mode": "payment",
        "line_items": line_items,
        "success_url": payload.success_url or success_url,
        "cancel_url": payload.cancel_url or cancel_url,
        "client_reference_id": user_id,
        "metadata": metadata,
        "allow_promotion_codes": True,
    }
    if user.get("email"):
        checkout_kwargs["customer_email"] = user["email"]

    try:
        session = await run_in_threadpool(lambda: stripe.checkout.Session.create(**checkout_kwargs))
    except stripe.StripeError as exc:
        logger.warning("Stripe checkout creation failed", extra={"user_id": user_id})
        raise UpstreamError("Failed to create Stripe checkout session") from exc

    url = session.get("url")
    if not isinstance(url, str) or not url:
        raise UpstreamError("Stripe session missing checkout url")

    logger.info(
        "Created course checkout session",
        extra={"session_id": session.get("id"), "user_id": user_id, "quantity": total},
    )
    return schemas.CheckoutCreateResponse(
        url=url,
        session_id=session.get("id"),
        purchase_type=purchase_reconciliation.purchase_type_for(total),
        total_quantity=total,
    )


def checkout_status(session: Mapping[str, Any]) -> str:
    if purchase_reconciliation.is_payment_settled(session):
        return "success"
    if session.get("status") == "expired":
        return "canceled"
    return "pending"


async def verify_checkout_session(session_id: str) -> schemas.CheckoutVerifyResponse:
    session = await retrieve_session(session_id)
    line_items = await list_line_items(str(session.get("id") or session_id))
    quantity = purchase_reconciliation.total_quantity(line_items)
    return schemas.CheckoutVerifyResponse(
        session_id=str(session.get("id") or session_id),
        status=checkout_status(session),
        payment_status=session.get("payment_status"),
        purchase_type=purchase_reconciliation.purchase_type_for(quantity),
        total_quantity=quantity,
        customer_email=purchase_reconciliation.purchaser_email(session),
    )


def _owns_session(user: Mapping[str, Any], session: Mapping[str, Any]) -> bool:
    reference = session.get("client_reference_id")
    if reference:
        return str(reference) == str(user.get("id"))
    email = purchase_reconciliation.purchaser_email(session)
    return bool(email) and email == str(user.get("email") or "").strip().lower()


async def ensure_purchase_processed(
    user: Mapping[str, Any],
    session_id: str,
) -> schemas.EnsurePurchaseResponse:
    session = await retrieve_session(session_id)
    if not user.get("is_admin") and not _owns_session(user, session):
        raise PermissionDeniedError("Checkout session belongs to another user")

    line_items = await list_line_items(str(session.get("id") or session_id))
    result = await purchase_reconciliation.reconcile_checkout_session(session, line_items)
    status = result.status
    if status == purchase_reconciliation.STATUS_AWAITING_PAYMENT:
        status = "pending"
    return schemas.EnsurePurchaseResponse(
        status=status,
        session_id=result.session_id,
        purchase_type=result.purchase_type,
        account_id=result.account_id,
        total_quantity=result.total_quantity,
        items=[schemas.PurchaseItemResult(**item.__dict__) for item in result.items],
    )


__all__ = [
    "checkout_status",
    "create_course_checkout",
    "ensure_purchase_processed",
    "list_line_items",
    "retrieve_session",
    "verify_checkout_session",
]
