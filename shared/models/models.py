"""
shared/models/models.py
All SQLAlchemy ORM models for the booking platform.
Each service's tables hang off that service's declarative base, so
every service creates and owns only its own schema.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional

from sqlalchemy import (
    JSON,
    CheckConstraint,
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from config.database import AccountsBase, BookingsBase, NotificationsBase, PaymentsBase


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _enum(cls) -> Enum:
    """Store enum values (lowercase strings) rather than member names."""
    return Enum(
        cls,
        values_callable=lambda e: [m.value for m in e],
        native_enum=False,
        length=32,
    )


# ── Enumerations ──────────────────────────────────────────────

class CatalogCategory(str, PyEnum):
    HOTEL = "hotel"
    FLIGHT = "flight"
    EVENT = "event"


class BookingStatus(str, PyEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"
    COMPLETED = "completed"


class PaymentStatus(str, PyEnum):
    """Used both for PaymentRecord.status and Booking.payment_status."""
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class PaymentMethod(str, PyEnum):
    STRIPE = "stripe"
    PAYPAL = "paypal"
    SQUARE = "square"


class NotificationType(str, PyEnum):
    BOOKING_CREATED = "booking_created"
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_REFUNDED = "payment_refunded"


class NotificationStatus(str, PyEnum):
    SENT = "sent"
    FAILED = "failed"


class OutboxStatus(str, PyEnum):
    PENDING = "pending"
    DELIVERING = "delivering"
    DELIVERED = "delivered"
    DEAD = "dead"


# ── Users service ─────────────────────────────────────────────

class Account(AccountsBase):
    __tablename__ = "accounts"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False, index=True)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


# ── Bookings service ──────────────────────────────────────────

class CatalogItem(BookingsBase):
    __tablename__ = "catalog_items"
    __table_args__ = (
        CheckConstraint("remaining_capacity >= 0", name="ck_catalog_capacity_non_negative"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    category: Mapped[CatalogCategory] = mapped_column(_enum(CatalogCategory), nullable=False, index=True)
    description: Mapped[Optional[str]] = mapped_column(Text)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    remaining_capacity: Mapped[int] = mapped_column(Integer, nullable=False, default=100)
    location: Mapped[str] = mapped_column(String(255), nullable=False)
    image_url: Mapped[Optional[str]] = mapped_column(String(500))
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class Booking(BookingsBase):
    __tablename__ = "bookings"
    __table_args__ = (
        CheckConstraint("party_size BETWEEN 1 AND 10", name="ck_booking_party_size"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    item_id: Mapped[int] = mapped_column(ForeignKey("catalog_items.id"), nullable=False, index=True)
    booking_date: Mapped[date] = mapped_column(Date, nullable=False)
    party_size: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    total_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    status: Mapped[BookingStatus] = mapped_column(
        _enum(BookingStatus), nullable=False, default=BookingStatus.PENDING
    )
    payment_status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


class SeedMarker(BookingsBase):
    """Sentinel row per applied seed; its presence means the seed already ran."""
    __tablename__ = "seed_markers"

    name: Mapped[str] = mapped_column(String(100), primary_key=True)
    applied_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


# ── Payments service ──────────────────────────────────────────

class Payment(PaymentsBase):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    payment_id: Mapped[str] = mapped_column(
        String(36), unique=True, nullable=False, index=True, default=lambda: str(uuid.uuid4())
    )
    booking_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    method: Mapped[PaymentMethod] = mapped_column(_enum(PaymentMethod), nullable=False)
    status: Mapped[PaymentStatus] = mapped_column(
        _enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING
    )
    transaction_id: Mapped[Optional[str]] = mapped_column(String(100))
    refund_id: Mapped[Optional[str]] = mapped_column(String(100))
    gateway_response: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, onupdate=utcnow
    )


# ── Notifications service ─────────────────────────────────────

class Notification(NotificationsBase):
    __tablename__ = "notifications"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    account_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)
    type: Mapped[NotificationType] = mapped_column(_enum(NotificationType), nullable=False, index=True)
    subject: Mapped[str] = mapped_column(String(255), nullable=False)
    body: Mapped[str] = mapped_column(Text, nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    booking_id: Mapped[Optional[int]] = mapped_column(Integer)
    payment_id: Mapped[Optional[str]] = mapped_column(String(36))
    recipient: Mapped[str] = mapped_column(String(255), nullable=False)
    status: Mapped[NotificationStatus] = mapped_column(_enum(NotificationStatus), nullable=False)
    idempotency_key: Mapped[Optional[str]] = mapped_column(String(100), unique=True)
    sent_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    read_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


# ── Outbox (bookings + payments) ──────────────────────────────

class OutboxMixin:
    """
    A cross-service side effect recorded in the same transaction as the
    primary write. Delivered later by shared.utils.outbox.OutboxDispatcher.
    """

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    target: Mapped[str] = mapped_column(String(50), nullable=False)
    method: Mapped[str] = mapped_column(String(10), nullable=False, default="POST")
    path: Mapped[str] = mapped_column(String(255), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    idempotency_key: Mapped[str] = mapped_column(
        String(100), unique=True, nullable=False, default=lambda: str(uuid.uuid4())
    )
    status: Mapped[OutboxStatus] = mapped_column(
        _enum(OutboxStatus), nullable=False, default=OutboxStatus.PENDING, index=True
    )
    attempts: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    next_attempt_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, index=True
    )
    locked_until: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))
    last_error: Mapped[Optional[str]] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    delivered_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True))


class BookingOutbox(OutboxMixin, BookingsBase):
    __tablename__ = "booking_outbox"


class PaymentOutbox(OutboxMixin, PaymentsBase):
    __tablename__ = "payment_outbox"
