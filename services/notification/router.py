"""
services/notification/router.py
Templated customer notifications. Email delivery is simulated: the
rendered message is logged and succeeds with a fixed probability.
Every attempt is stored, sent or failed.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional

from fastapi import APIRouter, Depends, Header, Query
from sqlalchemy import func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import notifications_db
from config.settings import settings
from shared.middleware.auth import TokenData, ensure_access, get_current_account, get_token_data
from shared.models.models import Notification, NotificationStatus, NotificationType, utcnow
from shared.schemas.schemas import (
    NotificationResponse,
    NotificationSendRequest,
    NotificationSendResponse,
    NotificationStatsResponse,
    NotificationTypeCount,
    UnreadCountResponse,
)
from shared.utils import simulation
from shared.utils.errors import NotFound

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Notifications"])


# ── Templates ─────────────────────────────────────────────────

@dataclass(frozen=True)
class EmailTemplate:
    subject: str
    body: str

    def render(self, **context) -> str:
        values = {k: ("" if v is None else v) for k, v in context.items()}
        return self.body.format(**values)


TEMPLATES = {
    NotificationType.BOOKING_CREATED: EmailTemplate(
        subject="🎉 Booking Confirmation",
        body=(
            "Booking Confirmed!\n"
            "{message}\n"
            "Booking ID: #{booking_id}\n"
            "Amount: ${amount}\n"
            "We'll send you a reminder closer to your booking date."
        ),
    ),
    NotificationType.PAYMENT_SUCCESS: EmailTemplate(
        subject="✅ Payment Successful",
        body=(
            "Payment Processed Successfully\n"
            "{message}\n"
            "Payment ID: {payment_id}\n"
            "Amount: ${amount}\n"
            "Booking ID: #{booking_id}\n"
            "Your booking is now confirmed. Thank you for choosing us!"
        ),
    ),
    NotificationType.PAYMENT_FAILED: EmailTemplate(
        subject="❌ Payment Failed",
        body=(
            "Payment Failed\n"
            "{message}\n"
            "Booking ID: #{booking_id}\n"
            "Please try again or contact support if the problem persists."
        ),
    ),
    NotificationType.PAYMENT_REFUNDED: EmailTemplate(
        subject="💰 Refund Processed",
        body=(
            "Refund Processed\n"
            "{message}\n"
            "Refund Amount: ${amount}\n"
            "Original Payment ID: {payment_id}\n"
            "Booking ID: #{booking_id}\n"
            "The refund will appear in your original payment method within 3-5 business days."
        ),
    ),
}


# ── Senders ───────────────────────────────────────────────────

async def send_email(recipient: str, subject: str, body: str) -> bool:
    """Simulated email send. Returns False on a (random) delivery failure."""
    await simulation.pause(settings.EMAIL_LATENCY_SECONDS)
    logger.info(f"Email to {recipient} | {subject} | {body.replace(chr(10), ' / ')}")
    return simulation.roll() > settings.EMAIL_FAILURE_RATE


def _recipient_for(account_id: int) -> str:
    return settings.NOTIFICATION_RECIPIENT_TEMPLATE.format(account_id=account_id)


def _send_response(notification: Notification) -> NotificationSendResponse:
    sent = notification.status == NotificationStatus.SENT
    return NotificationSendResponse(
        success=sent,
        notification_id=notification.id,
        message="Notification sent successfully" if sent else "Failed to send notification",
        type=notification.type,
        recipient=notification.recipient,
    )


async def _find_by_key(key: str, db: AsyncSession) -> Optional[Notification]:
    return await db.scalar(select(Notification).where(Notification.idempotency_key == key))


# ── Routes ────────────────────────────────────────────────────

@router.post("/send", response_model=NotificationSendResponse)
async def send_notification(
    payload: NotificationSendRequest,
    token: TokenData = Depends(get_token_data),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key", max_length=100),
    db: AsyncSession = Depends(notifications_db.get_db),
):
    """
    Render, send and record a notification. Internal services may send
    for any account; an account token may only send to itself. A repeated
    Idempotency-Key returns the stored record without sending again.
    """
    ensure_access(token, payload.account_id)

    if idempotency_key:
        existing = await _find_by_key(idempotency_key, db)
        if existing:
            logger.info(f"Duplicate notification request {idempotency_key}, returning #{existing.id}")
            return _send_response(existing)

    notification_type = NotificationType(payload.type)
    template = TEMPLATES[notification_type]
    body = template.render(
        message=payload.message,
        booking_id=payload.booking_id,
        payment_id=payload.payment_id,
        amount=payload.amount,
        account_id=payload.account_id,
    )
    recipient = _recipient_for(payload.account_id)

    sent = await send_email(recipient, template.subject, body)
    if not sent:
        logger.warning(f"Email delivery to {recipient} failed ({notification_type.value})")

    notification = Notification(
        account_id=payload.account_id,
        type=notification_type,
        subject=template.subject,
        body=body,
        message=payload.message,
        booking_id=payload.booking_id,
        payment_id=payload.payment_id,
        recipient=recipient,
        status=NotificationStatus.SENT if sent else NotificationStatus.FAILED,
        idempotency_key=idempotency_key,
    )
    db.add(notification)
    try:
        await db.commit()
    except IntegrityError:
        # A concurrent delivery of the same message stored it first
        await db.rollback()
        existing = await _find_by_key(idempotency_key, db)
        if not existing:
            raise
        return _send_response(existing)

    return _send_response(notification)


@router.get("/notifications", response_model=List[NotificationResponse])
async def list_my_notifications(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    token: TokenData = Depends(get_current_account),
    db: AsyncSession = Depends(notifications_db.get_db),
):
    result = await db.execute(
        select(Notification)
        .where(Notification.account_id == token.account_id)
        .order_by(Notification.sent_at.desc(), Notification.id.desc())
        .limit(limit)
        .offset(offset)
    )
    return result.scalars().all()


@router.get("/notifications/unread-count", response_model=UnreadCountResponse)
async def unread_count(
    token: TokenData = Depends(get_current_account),
    db: AsyncSession = Depends(notifications_db.get_db),
):
    count = await db.scalar(
        select(func.count(Notification.id)).where(
            Notification.account_id == token.account_id,
            Notification.read_at.is_(None),
        )
    )
    return UnreadCountResponse(unread_count=count or 0)


@router.put("/notifications/{notification_id}/read", response_model=NotificationResponse)
async def mark_read(
    notification_id: int,
    token: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(notifications_db.get_db),
):
    """Set read_at once. Marking an already-read notification keeps the first timestamp."""
    notification = await db.get(Notification, notification_id)
    if not notification:
        raise NotFound("Notification not found")
    ensure_access(token, notification.account_id)

    await db.execute(
        update(Notification)
        .where(Notification.id == notification_id, Notification.read_at.is_(None))
        .values(read_at=utcnow())
        .execution_options(synchronize_session=False)
    )
    await db.commit()
    await db.refresh(notification)
    return notification


@router.get("/stats", response_model=NotificationStatsResponse)
async def notification_stats(
    db: AsyncSession = Depends(notifications_db.get_db),
):
    total = await db.scalar(select(func.count(Notification.id))) or 0
    sent = await db.scalar(
        select(func.count(Notification.id)).where(Notification.status == NotificationStatus.SENT)
    ) or 0
    failed = await db.scalar(
        select(func.count(Notification.id)).where(Notification.status == NotificationStatus.FAILED)
    ) or 0

    result = await db.execute(
        select(Notification.type, func.count(Notification.id))
        .group_by(Notification.type)
        .order_by(Notification.type)
    )
    by_type = [NotificationTypeCount(type=t, count=c) for t, c in result.all()]
    return NotificationStatsResponse(total=total, sent=sent, failed=failed, by_type=by_type)
