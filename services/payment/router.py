"""
services/payment/router.py
Payment processing and refunds against the simulated gateways.

The booking payment-status callback and the customer notification are
written to the payment outbox in the same transaction as the payment
outcome, then delivered with retry by the outbox dispatcher.
"""

import logging
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from fastapi import APIRouter, BackgroundTasks, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import payments_db
from config.settings import settings
from services.payment import gateways
from shared.middleware.auth import TokenData, ensure_access, get_current_account, get_token_data
from shared.models.models import (
    NotificationType,
    Payment,
    PaymentOutbox,
    PaymentStatus,
)
from shared.schemas.schemas import (
    PaymentMethodResponse,
    PaymentProcessRequest,
    PaymentProcessResponse,
    PaymentResponse,
    RefundRequest,
    RefundResponse,
)
from shared.utils.errors import NotFound, ServiceError, ValidationError
from shared.utils.outbox import OutboxDispatcher, enqueue

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Payments"])

payment_outbox = OutboxDispatcher(payments_db, PaymentOutbox, caller="payments")

REFUND_NOT_ELIGIBLE = "Payment not found or not eligible for refund"


# ── Helpers ───────────────────────────────────────────────────

async def _get_payment_or_404(payment_id: str, db: AsyncSession) -> Payment:
    payment = await db.scalar(select(Payment).where(Payment.payment_id == payment_id))
    if not payment:
        raise NotFound("Payment not found")
    return payment


def _schedule_outbox(background_tasks: BackgroundTasks) -> None:
    if settings.OUTBOX_DISPATCH_INLINE:
        background_tasks.add_task(payment_outbox.dispatch_pending)


def _enqueue_side_effects(
    db: AsyncSession,
    payment: Payment,
    booking_status: PaymentStatus,
    notification_type: NotificationType,
    message: str,
) -> None:
    enqueue(
        db,
        PaymentOutbox,
        target="bookings",
        method="PUT",
        path=f"/bookings/{payment.booking_id}/payment-status",
        payload={"payment_status": booking_status.value},
    )
    enqueue(
        db,
        PaymentOutbox,
        target="notifications",
        path="/send",
        payload={
            "account_id": payment.account_id,
            "type": notification_type.value,
            "message": message,
            "booking_id": payment.booking_id,
            "payment_id": payment.payment_id,
            "amount": str(payment.amount),
        },
    )


# ── Routes ────────────────────────────────────────────────────

@router.get("/methods", response_model=List[PaymentMethodResponse])
async def list_payment_methods():
    return [
        PaymentMethodResponse(id=gateway.method.value, name=gateway.display_name)
        for gateway in gateways.GATEWAYS.values()
    ]


@router.post("/process", response_model=PaymentProcessResponse)
async def process_payment(
    payload: PaymentProcessRequest,
    background_tasks: BackgroundTasks,
    token: TokenData = Depends(get_current_account),
    db: AsyncSession = Depends(payments_db.get_db),
):
    """
    Charge a booking through the chosen gateway.
    200 on success, 400 when the gateway declines, 500 when the gateway errors.
    """
    gateway = gateways.get_gateway(payload.payment_method)
    amount = payload.amount.quantize(Decimal("0.01"))

    payment = Payment(
        booking_id=payload.booking_id,
        account_id=token.account_id,
        amount=amount,
        currency=settings.PAYMENT_CURRENCY,
        method=gateway.method,
        status=PaymentStatus.PENDING,
    )
    db.add(payment)
    await db.commit()

    try:
        result = await gateway.charge(amount, payload.card_details)
    except Exception as e:
        logger.exception(f"Gateway {gateway.method.value} raised for payment {payment.payment_id}")
        payment.status = PaymentStatus.FAILED
        payment.gateway_response = {"success": False, "error": str(e)}
        await db.commit()
        raise ServiceError("Payment gateway error")

    payment.status = PaymentStatus.COMPLETED if result.success else PaymentStatus.FAILED
    payment.transaction_id = result.transaction_id
    payment.gateway_response = result.as_dict()

    if result.success:
        _enqueue_side_effects(
            db,
            payment,
            PaymentStatus.COMPLETED,
            NotificationType.PAYMENT_SUCCESS,
            f"Payment of ${amount} processed successfully via {gateway.display_name}.",
        )
    else:
        _enqueue_side_effects(
            db,
            payment,
            PaymentStatus.FAILED,
            NotificationType.PAYMENT_FAILED,
            f"Payment failed: {result.message}",
        )
    await db.commit()
    _schedule_outbox(background_tasks)

    logger.info(
        f"Payment {payment.payment_id} for booking {payment.booking_id}: "
        f"{payment.status.value} via {gateway.method.value}"
    )

    response = PaymentProcessResponse(
        success=result.success,
        payment_id=payment.payment_id,
        transaction_id=result.transaction_id,
        message=result.message,
        amount=amount if result.success else None,
        status=payment.status,
    )
    if not result.success:
        return JSONResponse(status_code=400, content=response.model_dump(mode="json"))
    return response


@router.get("/payments", response_model=List[PaymentResponse])
async def list_my_payments(
    token: TokenData = Depends(get_current_account),
    db: AsyncSession = Depends(payments_db.get_db),
):
    result = await db.execute(
        select(Payment)
        .where(Payment.account_id == token.account_id)
        .order_by(Payment.created_at.desc(), Payment.id.desc())
    )
    return result.scalars().all()


@router.get("/payments/{payment_id}", response_model=PaymentResponse)
async def get_payment(
    payment_id: str,
    token: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(payments_db.get_db),
):
    payment = await _get_payment_or_404(payment_id, db)
    ensure_access(token, payment.account_id)
    return payment


@router.post("/refund/{payment_id}", response_model=RefundResponse)
async def refund_payment(
    payment_id: str,
    background_tasks: BackgroundTasks,
    payload: Optional[RefundRequest] = None,
    token: TokenData = Depends(get_token_data),
    db: AsyncSession = Depends(payments_db.get_db),
):
    """
    Refund a completed payment. Anything not exactly "completed"
    (pending, failed, already refunded, unknown id) is a 404.
    A refused refund leaves the payment untouched and returns 400.
    """
    payment = await db.scalar(
        select(Payment).where(
            Payment.payment_id == payment_id,
            Payment.status == PaymentStatus.COMPLETED,
        )
    )
    if not payment:
        raise NotFound(REFUND_NOT_ELIGIBLE)
    ensure_access(token, payment.account_id)
    reason = payload.reason if payload else RefundRequest().reason

    refund_id = await gateways.refund(payment.amount)
    if not refund_id:
        logger.warning(f"Refund refused for payment {payment_id}")
        raise ValidationError("Refund processing failed")

    refund_details = {
        "refund_id": refund_id,
        "reason": reason,
        "refunded_at": datetime.now(timezone.utc).isoformat(),
    }
    # Conditional on status so two concurrent refunds cannot both succeed
    result = await db.execute(
        update(Payment)
        .where(Payment.id == payment.id, Payment.status == PaymentStatus.COMPLETED)
        .values(
            status=PaymentStatus.REFUNDED,
            refund_id=refund_id,
            gateway_response={**(payment.gateway_response or {}), "refund": refund_details},
        )
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise NotFound(REFUND_NOT_ELIGIBLE)

    _enqueue_side_effects(
        db,
        payment,
        PaymentStatus.REFUNDED,
        NotificationType.PAYMENT_REFUNDED,
        f"Refund of ${payment.amount} has been processed. Reason: {reason}",
    )
    await db.commit()
    _schedule_outbox(background_tasks)

    logger.info(f"Payment {payment_id} refunded: {refund_id}")
    return RefundResponse(
        success=True,
        refund_id=refund_id,
        message="Refund processed successfully",
        amount=payment.amount,
    )
