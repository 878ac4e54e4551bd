"""
shared/schemas/schemas.py
All Pydantic v2 request/response schemas for the platform.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from shared.models.models import (
    BookingStatus,
    CatalogCategory,
    NotificationType,
    PaymentMethod,
    PaymentStatus,
)


# ── Base ──────────────────────────────────────────────────────

class BaseSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


def _normalize_email(value: Optional[str]) -> Optional[str]:
    return value.strip().lower() if value is not None else value


# ── Accounts ──────────────────────────────────────────────────

class RegisterRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    name: str = Field(..., min_length=2, max_length=255)

    @field_validator("email", mode="after")
    @classmethod
    def normalize_email(cls, v):
        return _normalize_email(v)

    @field_validator("name")
    @classmethod
    def strip_name(cls, v: str) -> str:
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Name must be at least 2 characters")
        return v


class LoginRequest(BaseSchema):
    email: EmailStr
    password: str = Field(..., min_length=1)

    @field_validator("email", mode="after")
    @classmethod
    def normalize_email(cls, v):
        return _normalize_email(v)


class AccountResponse(BaseSchema):
    id: int
    email: str
    name: str


class ProfileResponse(AccountResponse):
    created_at: datetime


class AuthResponse(BaseSchema):
    message: str
    token: str
    user: AccountResponse


class ProfileUpdateRequest(BaseSchema):
    name: Optional[str] = Field(None, min_length=2, max_length=255)
    email: Optional[EmailStr] = None

    @field_validator("email", mode="after")
    @classmethod
    def normalize_email(cls, v):
        return _normalize_email(v)


# ── Catalog ───────────────────────────────────────────────────

class CatalogItemResponse(BaseSchema):
    id: int
    name: str
    category: CatalogCategory
    description: Optional[str]
    unit_price: Decimal
    remaining_capacity: int
    location: str
    image_url: Optional[str]
    created_at: datetime


# ── Bookings ──────────────────────────────────────────────────

class BookingCreateRequest(BaseSchema):
    item_id: int
    booking_date: date
    party_size: int = Field(default=1, ge=1, le=10)


class BookingCreatedResponse(BaseSchema):
    message: str
    booking_id: int
    total_amount: Decimal


class BookingResponse(BaseSchema):
    id: int
    account_id: int
    item_id: int
    booking_date: date
    party_size: int
    total_amount: Decimal
    status: BookingStatus
    payment_status: PaymentStatus
    created_at: datetime
    updated_at: datetime


class BookingDetailResponse(BookingResponse):
    item_name: str
    category: CatalogCategory
    location: str
    image_url: Optional[str]


class BookingStatusUpdate(BaseSchema):
    status: BookingStatus


class BookingPaymentStatusUpdate(BaseSchema):
    payment_status: PaymentStatus


# ── Payments ──────────────────────────────────────────────────

class PaymentMethodResponse(BaseSchema):
    id: str
    name: str


class PaymentProcessRequest(BaseSchema):
    booking_id: int
    amount: Decimal = Field(..., ge=Decimal("0.01"))
    payment_method: PaymentMethod
    card_details: Optional[Dict[str, Any]] = None


class PaymentProcessResponse(BaseSchema):
    success: bool
    payment_id: str
    transaction_id: Optional[str] = None
    message: str
    amount: Optional[Decimal] = None
    status: PaymentStatus


class PaymentResponse(BaseSchema):
    payment_id: str
    booking_id: int
    account_id: int
    amount: Decimal
    currency: str
    method: PaymentMethod
    status: PaymentStatus
    transaction_id: Optional[str]
    refund_id: Optional[str]
    gateway_response: Optional[Dict[str, Any]]
    created_at: datetime
    updated_at: datetime


class RefundRequest(BaseSchema):
    reason: str = Field(default="Customer request", max_length=500)


class RefundResponse(BaseSchema):
    success: bool
    refund_id: str
    message: str
    amount: Decimal


# ── Notifications ─────────────────────────────────────────────

class NotificationSendRequest(BaseSchema):
    account_id: int
    type: NotificationType
    message: str = Field(..., min_length=1, max_length=2000)
    booking_id: Optional[int] = None
    payment_id: Optional[str] = None
    amount: Optional[Decimal] = None


class NotificationSendResponse(BaseSchema):
    success: bool
    notification_id: int
    message: str
    type: NotificationType
    recipient: str


class NotificationResponse(BaseSchema):
    id: int
    account_id: int
    type: NotificationType
    subject: str
    body: str
    message: str
    booking_id: Optional[int]
    payment_id: Optional[str]
    recipient: str
    status: str
    sent_at: datetime
    read_at: Optional[datetime]


class NotificationTypeCount(BaseSchema):
    type: NotificationType
    count: int


class NotificationStatsResponse(BaseSchema):
    total: int
    sent: int
    failed: int
    by_type: List[NotificationTypeCount]


class UnreadCountResponse(BaseSchema):
    unread_count: int
