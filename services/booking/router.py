"""
services/booking/router.py
Booking lifecycle: create (reserving catalog capacity), list, read,
status updates, and payment-status callbacks from the payments service.

Capacity is reserved with a single conditional UPDATE
(remaining_capacity >= n), so two concurrent requests can never both
take the last slots. The booking_created notification is written to the
outbox in the same transaction as the booking.
"""

import logging
from decimal import Decimal
from typing import List

from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import bookings_db
from config.settings import settings
from shared.middleware.auth import (
    TokenData,
    ensure_access,
    get_current_account,
    get_token_data,
    require_service,
)
from shared.models.models import Booking, BookingOutbox, CatalogItem, NotificationType, PaymentStatus
from shared.schemas.schemas import (
    BookingCreatedResponse,
    BookingCreateRequest,
    BookingDetailResponse,
    BookingPaymentStatusUpdate,
    BookingResponse,
    BookingStatusUpdate,
)
from shared.utils.errors import NotFound, ValidationError
from shared.utils.outbox import OutboxDispatcher, enqueue

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/bookings", tags=["Bookings"])

booking_outbox = OutboxDispatcher(bookings_db, BookingOutbox, caller="bookings")

# Target payment status → the statuses a booking may move to it from.
# A failed payment can be retried. A refund can overtake the delayed
# "completed" callback of the same payment, so it applies from any
# earlier status, and once refunded nothing moves the booking back.
PAYMENT_STATUS_SOURCES = {
    PaymentStatus.COMPLETED: [PaymentStatus.PENDING, PaymentStatus.FAILED],
    PaymentStatus.FAILED: [PaymentStatus.PENDING],
    PaymentStatus.REFUNDED: [PaymentStatus.PENDING, PaymentStatus.FAILED, PaymentStatus.COMPLETED],
}


# ── Helpers ───────────────────────────────────────────────────

async def _get_booking_or_404(booking_id: int, db: AsyncSession) -> Booking:
    booking = await db.get(Booking, booking_id)
    if not booking:
        raise NotFound("Booking not found")
    return booking


def _booking_detail(booking: Booking, item: CatalogItem) -> BookingDetailResponse:
    return BookingDetailResponse(
        **BookingResponse.model_validate(booking).model_dump(),
        item_name=item.name,
        category=item.category,
        location=item.location,
        image_url=item.image_url,
    )


def _schedule_outbox(background_tasks: BackgroundTasks) -> None:
    if settings.OUTBOX_DISPATCH_INLINE:
        background_tasks.add_task(booking_outbox.dispatch_pending)


async def reserve_capacity(db: AsyncSession, item_id: int, party_size: int) -> bool:
    """
    Atomically take `party_size` slots from the item.
    Returns False when the remaining capacity is no longer enough.
    """
    result = await db.execute(
        update(CatalogItem)
        .where(
            CatalogItem.id == item_id,
            CatalogItem.remaining_capacity >= party_size,
        )
        .values(remaining_capacity=CatalogItem.remaining_capacity - party_size)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


# ── Booking Creation ──────────────────────────────────────────

@router.post("", response_model=BookingCreatedResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    payload: BookingCreateRequest,
    background_tasks: BackgroundTasks,
    token: TokenData = Depends(get_current_account),
    db: AsyncSession = Depends(bookings_db.get_db),
):
    item = await db.get(CatalogItem, payload.item_id)
    if not item:
        raise NotFound("Service not found")
    if item.remaining_capacity < payload.party_size:
        raise ValidationError("Not enough available slots")

    total_amount = (Decimal(item.unit_price) * payload.party_size).quantize(Decimal("0.01"))

    if not await reserve_capacity(db, item.id, payload.party_size):
        # Another booking took the slots between our read and the update
        raise ValidationError("Not enough available slots")

    booking = Booking(
        account_id=token.account_id,
        item_id=item.id,
        booking_date=payload.booking_date,
        party_size=payload.party_size,
        total_amount=total_amount,
    )
    db.add(booking)
    await db.flush()

    enqueue(
        db,
        BookingOutbox,
        target="notifications",
        path="/send",
        payload={
            "account_id": token.account_id,
            "type": NotificationType.BOOKING_CREATED.value,
            "message": f"Your booking for {item.name} has been created successfully.",
            "booking_id": booking.id,
            "amount": str(total_amount),
        },
    )
    await db.commit()

    logger.info(
        f"Booking {booking.id} created: item={item.id} party_size={payload.party_size} "
        f"total={total_amount}"
    )
    _schedule_outbox(background_tasks)

    return BookingCreatedResponse(
        message="Booking created successfully",
        booking_id=booking.id,
        total_amount=total_amount,
    )


# ── Booking Reads ─────────────────────────────────────────────

@router.get("", response_model=List[BookingDetailResponse])
async def list_my_bookings(
    token: TokenData = Depends(get_current_account),
    db: AsyncSession = Depends(bookings_db.get_db),
):
    """The caller's bookings with catalog details, newest first."""
    result = await db.execute(
        select(Booking, CatalogItem)
        .join(CatalogItem, Booking.item_id == CatalogItem.id)
        .where(Booking.account_id == token.account_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    return [_booking_detail(booking, item) for booking, item in result.all()]


@router.get("/{booking_id}", response_model=BookingDetailResponse)
async def get_booking(
    booking_id: int,
    token: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(bookings_db.get_db),
):
    booking = await _get_booking_or_404(booking_id, db)
    ensure_access(token, booking.account_id)
    item = await db.get(CatalogItem, booking.item_id)
    return _booking_detail(booking, item)


# ── Status Updates ────────────────────────────────────────────

@router.put("/{booking_id}/status", response_model=BookingResponse)
async def update_booking_status(
    booking_id: int,
    payload: BookingStatusUpdate,
    token: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(bookings_db.get_db),
):
    """Set the booking status. Capacity is not returned on cancellation."""
    booking = await _get_booking_or_404(booking_id, db)
    ensure_access(token, booking.account_id)

    booking.status = payload.status
    await db.commit()
    await db.refresh(booking)
    logger.info(f"Booking {booking_id} status → {payload.status}")
    return booking


@router.put("/{booking_id}/payment-status", response_model=BookingResponse)
async def update_payment_status(
    booking_id: int,
    payload: BookingPaymentStatusUpdate,
    token: TokenData = Depends(require_service),
    db: AsyncSession = Depends(bookings_db.get_db),
):
    """
    Callback from the payments service. Callbacks can arrive late or out of
    order when the outbox retries, so the status only moves forward
    (see PAYMENT_STATUS_SOURCES). A repeated or stale callback is answered
    with the current booking and changes nothing.
    """
    booking = await _get_booking_or_404(booking_id, db)
    target = PaymentStatus(payload.payment_status)

    result = await db.execute(
        update(Booking)
        .where(
            Booking.id == booking_id,
            Booking.payment_status.in_(PAYMENT_STATUS_SOURCES.get(target, [])),
        )
        .values(payment_status=target)
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(booking)

    if result.rowcount == 1:
        logger.info(f"Booking {booking_id} payment_status → {target.value} (by {token.service})")
    elif booking.payment_status != target:
        logger.warning(
            f"Booking {booking_id}: ignoring stale payment_status {target.value} "
            f"(current {booking.payment_status.value}, by {token.service})"
        )
    return booking
