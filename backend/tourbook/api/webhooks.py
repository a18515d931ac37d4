"""
Stripe webhook receiver.

Events keep the local payment intents and bookings in step with the
gateway, which also covers a client that paid but never called
/payments/confirm.
"""

from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Request, status
import stripe
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tourbook.api.responses import ApiResponse, ok
from tourbook.core.settings import get_settings
from tourbook.db import crud
from tourbook.db.models import BookingStatus, PaymentIntentStatus, PaymentStatus
from tourbook.db.session import get_session
from tourbook.services import payments as gateway

logger = structlog.get_logger(__name__)

settings = get_settings()

router = APIRouter(prefix="/webhooks", tags=["webhooks"])

INTENT_EVENTS = {
    "payment_intent.succeeded": PaymentIntentStatus.SUCCEEDED,
    "payment_intent.payment_failed": PaymentIntentStatus.FAILED,
    "payment_intent.canceled": PaymentIntentStatus.CANCELED,
}
REFUND_EVENTS = ("charge.refunded", "refund.created")


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, dict):
        return obj.get(name)
    return getattr(obj, name, None)


async def _linked_booking(session: AsyncSession, payment_intent_id: str):
    intent = await crud.get_payment_intent(session, payment_intent_id)
    if intent and intent.booking_id:
        return intent, await crud.get_booking(session, intent.booking_id)
    return intent, await crud.get_booking_by_payment_intent(session, payment_intent_id)


async def handle_intent_status(session: AsyncSession, obj: Any, new_status: PaymentIntentStatus) -> None:
    intent = await crud.get_payment_intent(session, _field(obj, "id"))
    if not intent:
        logger.warning("webhook_unknown_payment_intent", payment_intent_id=_field(obj, "id"))
        return
    intent.status = new_status
    await session.commit()
    logger.info("webhook_payment_intent_status", payment_intent_id=intent.id, status=new_status.value)


async def handle_dispute(session: AsyncSession, dispute: Any) -> None:
    payment_intent_id: Optional[str] = _field(dispute, "payment_intent")
    if not payment_intent_id:
        return
    _, booking = await _linked_booking(session, payment_intent_id)
    if not booking:
        logger.warning("webhook_dispute_without_booking", payment_intent_id=payment_intent_id)
        return
    booking.status = BookingStatus.DISPUTED
    booking.notes = f"Dispute created: {_field(dispute, 'reason')}"
    await session.commit()
    logger.info("webhook_booking_disputed", booking_id=str(booking.id), dispute_id=_field(dispute, "id"))


async def handle_refund(session: AsyncSession, refund: Any) -> None:
    payment_intent_id: Optional[str] = _field(refund, "payment_intent")
    if not payment_intent_id:
        return
    intent, booking = await _linked_booking(session, payment_intent_id)
    amount = _field(refund, "amount_refunded") or _field(refund, "amount") or 0
    if booking:
        booking.status = BookingStatus.CANCELLED
        booking.payment_status = PaymentStatus.REFUNDED
        booking.notes = f"Refund processed: {gateway.from_minor_units(amount)} {settings.PAYMENT_CURRENCY.upper()}"
    if intent:
        intent.status = PaymentIntentStatus.REFUNDED
    await session.commit()
    logger.info(
        "webhook_refund_processed",
        payment_intent_id=payment_intent_id,
        booking_id=str(booking.id) if booking else None
    )


@router.post("/stripe",
    response_model=ApiResponse[dict],
    responses={
        400: {"description": "Missing or invalid signature"},
        500: {"description": "Event could not be processed; Stripe retries it"},
    },
    summary="Stripe event receiver"
)
async def stripe_webhook(request: Request, session: AsyncSession = Depends(get_session)):
    signature = request.headers.get("stripe-signature")
    if not signature:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing stripe-signature header")

    if not settings.STRIPE_WEBHOOK_SECRET:
        logger.error("webhook_secret_missing")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook secret not configured"
        )

    payload = await request.body()
    try:
        event = gateway.construct_webhook_event(payload, signature, settings.STRIPE_WEBHOOK_SECRET)
    except (ValueError, stripe.SignatureVerificationError) as e:
        logger.warning("webhook_signature_invalid", error=str(e))
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid signature")

    event_type = _field(event, "type")
    obj = _field(_field(event, "data"), "object")

    try:
        if event_type in INTENT_EVENTS:
            await handle_intent_status(session, obj, INTENT_EVENTS[event_type])
        elif event_type == "charge.dispute.created":
            await handle_dispute(session, obj)
        elif event_type in REFUND_EVENTS:
            await handle_refund(session, obj)
        else:
            logger.info("webhook_event_unhandled", event_type=event_type)
    except Exception as e:
        await session.rollback()
        logger.error("webhook_handler_error", event_type=event_type, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook handler failed"
        )

    return ok({"received": True})
