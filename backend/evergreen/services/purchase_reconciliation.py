"""Turn a paid Stripe Checkout Session into seats and enrollments.

Every delivery path (both webhook events and the success-page failsafe) ends up in
:func:`reconcile_checkout_session`. Allocation is idempotent per
``(session, course)`` through the ``course_purchases`` ledger, so callers never
need to coordinate with each other.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Mapping, Sequence

from ..config import settings
from ..errors import LmsError, UpstreamError
from ..metrics import course_enrollments_created_total, course_seats_allocated_total
from ..repositories import accounts as accounts_repo
from ..repositories import courses as courses_repo
from ..repositories import purchases as purchases_repo
from ..repositories import users as users_repo
from ..utils.slugs import team_account_name, team_account_slug
from . import supabase_admin

logger = logging.getLogger(__name__)

PURCHASE_METADATA_TYPES = frozenset({"course_purchase", "training-purchase"})
SETTLED_PAYMENT_STATUSES = frozenset({"paid", "no_payment_required"})

PURCHASE_INDIVIDUAL = "individual"
PURCHASE_TEAM = "team"

STATUS_IGNORED = "ignored"
STATUS_AWAITING_PAYMENT = "awaiting_payment"
STATUS_PROCESSED = "processed"
STATUS_ALREADY_PROCESSED = "already_processed"

ITEM_ALLOCATED = "allocated"
ITEM_DUPLICATE = "duplicate"
ITEM_UNMAPPED = "unmapped"


class UnresolvedPurchaserError(LmsError):
    """Raised when a paid session cannot be tied to any user."""

    status_code = 422


@dataclass
class LineItemResult:
    price_id: str | None
    quantity: int
    status: str
    course_id: str | None = None
    course_title: str | None = None


@dataclass
class ReconciliationResult:
    session_id: str
    status: str
    purchase_type: str | None = None
    purchaser_user_id: str | None = None
    account_id: str | None = None
    total_quantity: int = 0
    team_created: bool = False
    items: list[LineItemResult] = field(default_factory=list)

    @property
    def allocated(self) -> list[LineItemResult]:
        return [item for item in self.items if item.status == ITEM_ALLOCATED]

    def as_dict(self) -> dict[str, Any]:
        return {
            "session_id": self.session_id,
            "status": self.status,
            "purchase_type": self.purchase_type,
            "purchaser_user_id": self.purchaser_user_id,
            "account_id": self.account_id,
            "total_quantity": self.total_quantity,
            "team_created": self.team_created,
            "items": [item.__dict__.copy() for item in self.items],
        }


def _metadata(session: Mapping[str, Any]) -> Mapping[str, Any]:
    metadata = session.get("metadata")
    return metadata if isinstance(metadata, Mapping) else {}


def is_course_purchase(session: Mapping[str, Any]) -> bool:
    return str(_metadata(session).get("type") or "") in PURCHASE_METADATA_TYPES


def is_payment_settled(session: Mapping[str, Any]) -> bool:
    return str(session.get("payment_status") or "") in SETTLED_PAYMENT_STATUSES


def purchaser_email(session: Mapping[str, Any]) -> str | None:
    email = session.get("customer_email")
    if not email:
        details = session.get("customer_details")
        if isinstance(details, Mapping):
            email = details.get("email")
    if not isinstance(email, str) or not email.strip():
        return None
    return email.strip().lower()


def line_item_quantity(item: Mapping[str, Any]) -> int:
    try:
        quantity = int(item.get("quantity") or 1)
    except (TypeError, ValueError):
        quantity = 1
    return max(quantity, 1)


def line_item_price_id(item: Mapping[str, Any]) -> str | None:
    price = item.get("price")
    if isinstance(price, Mapping):
        price_id = price.get("id")
    else:
        price_id = price
    return str(price_id) if price_id else None


def total_quantity(line_items: Sequence[Mapping[str, Any]]) -> int:
    return sum(line_item_quantity(item) for item in line_items)


def purchase_type_for(quantity: int) -> str:
    return PURCHASE_TEAM if quantity >= settings.team_seat_threshold else PURCHASE_INDIVIDUAL


async def resolve_purchaser(session: Mapping[str, Any]) -> dict[str, Any]:
    """Find (or create) the auth user who paid for the session."""
    reference = session.get("client_reference_id")
    if reference:
        user = await users_repo.get_user(str(reference))
        if user:
            return user
        logger.warning(
            "Checkout client_reference_id does not match a user",
            extra={"session_id": session.get("id"), "client_reference_id": reference},
        )

    email = purchaser_email(session)
    if not email:
        raise UnresolvedPurchaserError("Checkout session has no purchaser reference or email")

    user = await users_repo.get_user_by_email(email)
    if user:
        return user

    try:
        created = await supabase_admin.create_user(
            email,
            user_metadata={"source": "course_purchase", "stripe_session_id": session.get("id")},
        )
    except UpstreamError as exc:
        # Another delivery may have created the user in the meantime.
        user = await users_repo.get_user_by_email(email)
        if user:
            return user
        raise UnresolvedPurchaserError(f"Could not create purchaser {email}") from exc

    logger.info(
        "Created purchaser account from checkout",
        extra={"session_id": session.get("id"), "user_id": created.get("id")},
    )
    return {"id": created["id"], "email": created.get("email") or email}


async def resolve_target_account(
    purchaser: Mapping[str, Any],
    purchase_type: str,
) -> tuple[str, bool]:
    """Return ``(account_id, team_created)`` receiving the seats."""
    user_id = str(purchaser["id"])
    if purchase_type == PURCHASE_INDIVIDUAL:
        return user_id, False

    email = str(purchaser.get("email") or "")
    account, created = await accounts_repo.get_or_create_team_account(
        owner_user_id=user_id,
        name=team_account_name(email),
        slug=team_account_slug(email),
        email=email or None,
    )
    if created:
        logger.info(
            "Created team account for purchaser",
            extra={"user_id": user_id, "account_id": str(account["id"])},
        )
    return str(account["id"]), created


async def reconcile_checkout_session(
    session: Mapping[str, Any],
    line_items: Sequence[Mapping[str, Any]],
) -> ReconciliationResult:
    session_id = str(session.get("id") or "")
    result = ReconciliationResult(session_id=session_id, status=STATUS_IGNORED)

    if not is_course_purchase(session):
        logger.info("Skipping non-course checkout session", extra={"session_id": session_id})
        return result

    if not is_payment_settled(session):
        result.status = STATUS_AWAITING_PAYMENT
        logger.info(
            "Checkout session not paid yet",
            extra={"session_id": session_id, "payment_status": session.get("payment_status")},
        )
        return result

    purchaser = await resolve_purchaser(session)
    result.purchaser_user_id = str(purchaser["id"])
    result.total_quantity = total_quantity(line_items)
    result.purchase_type = purchase_type_for(result.total_quantity)
    result.account_id, result.team_created = await resolve_target_account(
        purchaser, result.purchase_type
    )

    price_ids = [pid for pid in (line_item_price_id(item) for item in line_items) if pid]
    courses_by_price = await courses_repo.get_courses_by_price_ids(price_ids)
    currency = session.get("currency")

    for item in line_items:
        price_id = line_item_price_id(item)
        quantity = line_item_quantity(item)
        course = courses_by_price.get(price_id or "")
        if not course:
            logger.warning(
                "No course is bound to Stripe price",
                extra={"session_id": session_id, "price_id": price_id},
            )
            result.items.append(LineItemResult(price_id, quantity, ITEM_UNMAPPED))
            continue

        course_id = str(course["id"])
        applied = await purchases_repo.apply_course_purchase(
            stripe_session_id=session_id,
            course_id=course_id,
            account_id=result.account_id,
            purchaser_user_id=result.purchaser_user_id,
            quantity=quantity,
            purchase_type=result.purchase_type,
            amount_total=item.get("amount_total"),
            currency=item.get("currency") or currency,
        )
        status = ITEM_DUPLICATE if applied["duplicate"] else ITEM_ALLOCATED
        result.items.append(
            LineItemResult(price_id, quantity, status, course_id, course.get("title"))
        )
        if status == ITEM_ALLOCATED:
            course_seats_allocated_total.labels(purchase_type=result.purchase_type).inc(quantity)
            if applied.get("enrollment"):
                course_enrollments_created_total.labels(source="purchase").inc()

    mapped = [item for item in result.items if item.status != ITEM_UNMAPPED]
    if mapped and all(item.status == ITEM_DUPLICATE for item in mapped):
        result.status = STATUS_ALREADY_PROCESSED
    else:
        result.status = STATUS_PROCESSED

    logger.info(
        "Reconciled checkout session",
        extra={
            "session_id": session_id,
            "purchase_type": result.purchase_type,
            "account_id": result.account_id,
            "allocated": len(result.allocated),
            "unmapped": sum(1 for item in result.items if item.status == ITEM_UNMAPPED),
        },
    )
    return result


__all__ = [
    "LineItemResult",
    "ReconciliationResult",
    "UnresolvedPurchaserError",
    "is_course_purchase",
    "is_payment_settled",
    "purchase_type_for",
    "reconcile_checkout_session",
    "resolve_purchaser",
    "resolve_target_account",
    "total_quantity",
]
