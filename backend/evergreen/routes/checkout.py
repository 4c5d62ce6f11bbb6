from __future__ import annotations

from fastapi import APIRouter, HTTPException, Query, status

from ..auth import CurrentUser
from ..errors import LmsError
from ..schemas import (
    CheckoutCreateRequest,
    CheckoutCreateResponse,
    CheckoutVerifyResponse,
    EnsurePurchaseRequest,
    EnsurePurchaseResponse,
)
from ..services import checkout_service

router = APIRouter(prefix="/api/checkout", tags=["checkout"])


@router.post(
    "/create",
    response_model=CheckoutCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_checkout_handler(
    payload: CheckoutCreateRequest,
    current: CurrentUser,
) -> CheckoutCreateResponse:
    try:
        return await checkout_service.create_course_checkout(current, payload)
    except LmsError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.get("/verify", response_model=CheckoutVerifyResponse)
async def verify_checkout_handler(
    session_id: str = Query(min_length=1),
) -> CheckoutVerifyResponse:
    try:
        return await checkout_service.verify_checkout_session(session_id)
    except LmsError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc


@router.post("/ensure-processed", response_model=EnsurePurchaseResponse)
async def ensure_processed_handler(
    payload: EnsurePurchaseRequest,
    current: CurrentUser,
) -> EnsurePurchaseResponse:
    try:
        return await checkout_service.ensure_purchase_processed(current, payload.session_id)
    except LmsError as exc:
        raise HTTPException(status_code=exc.status_code, detail=exc.detail) from exc
