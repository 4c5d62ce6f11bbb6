from __future__ import annotations

from enum import Enum
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field, model_validator


class PurchaseType(str, Enum):
    individual = "individual"
    team = "team"


class CheckoutStatus(str, Enum):
    success = "success"
    pending = "pending"
    canceled = "canceled"


class CartItem(BaseModel):
    course_id: Optional[UUID] = None
    slug: Optional[str] = None
    quantity: int = Field(default=1, ge=1)

    @model_validator(mode="after")
    def _validate_reference(self):
        if not self.course_id and not self.slug:
            raise ValueError("course_id or slug is required")
        return self


class CheckoutCreateRequest(BaseModel):
    items: List[CartItem] = Field(min_length=1)
    success_url: Optional[str] = None
    cancel_url: Optional[str] = None


class CheckoutCreateResponse(BaseModel):
    url: str
    session_id: Optional[str] = None
    purchase_type: PurchaseType
    total_quantity: int


class CheckoutVerifyResponse(BaseModel):
    session_id: str
    status: CheckoutStatus
    payment_status: Optional[str] = None
    purchase_type: PurchaseType
    total_quantity: int
    customer_email: Optional[str] = None


class EnsurePurchaseRequest(BaseModel):
    session_id: str = Field(min_length=1)


class PurchaseItemResult(BaseModel):
    price_id: Optional[str] = None
    quantity: int
    status: str
    course_id: Optional[str] = None
    course_title: Optional[str] = None


class EnsurePurchaseResponse(BaseModel):
    status: str
    session_id: str
    purchase_type: Optional[PurchaseType] = None
    account_id: Optional[str] = None
    total_quantity: int = 0
    items: List[PurchaseItemResult] = []
