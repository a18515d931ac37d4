from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tourbook.api.responses import ApiResponse, ok
from tourbook.api.schemas import (
    BookingWithTour, PaymentConfirm, PaymentConfirmed, PaymentIntentCreate, PaymentIntentCreated,
    PaymentIntentRead,
)
from tourbook.core.ratelimit import limiter
from tourbook.core.security import get_current_user
from tourbook.core.settings import get_settings
from tourbook.core.validation import ensure_utc, start_of_today
from tourbook.db import crud
from tourbook.db.models import PaymentIntentStatus, User
from tourbook.db.session import get_session
from tourbook.services import payments as gateway
from tourbook.services.bookings import BookingService

logger = structlog.get_logger(__name__)

settings = get_settings()

router = APIRouter(prefix="/payments", tags=["payments"])

AMOUNT_TOLERANCE = 0.01

GATEWAY_STATUSES = {
    "succeeded": PaymentIntentStatus.SUCCEEDED,
    "canceled": PaymentIntentStatus.CANCELED,
}


def local_status(gateway_status: Optional[str]) -> PaymentIntentStatus:
    return GATEWAY_STATUSES.get(gateway_status or "", PaymentIntentStatus.PENDING)


@router.post("/intent",
    response_model=ApiResponse[PaymentIntentCreated],
    responses={
        400: {"description": "Invalid booking or amount"},
        404: {"description": "Tour not found or not available"},
        402: {"description": "Card declined"},
        502: {"description": "Payment gateway error"},
    },
    summary="Start a card payment for a tour"
)
@limiter.limit(settings.RATE_LIMIT_CREATE)
async def create_payment_intent(
    request: Request,
    intent_data: PaymentIntentCreate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    try:
        tour = await crud.get_tour(session, intent_data.tour_id)
        if not tour:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tour not found or not available")

        if intent_data.participants > tour.max_participants:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail=f"Maximum {tour.max_participants} participants allowed for this tour"
            )

        booking_date = ensure_utc(intent_data.booking_date)
        if booking_date < start_of_today():
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Booking date cannot be in the past")

        await BookingService(session).check_capacity(tour, intent_data.participants, booking_date)

        expected = float(tour.price) * intent_data.participants
        if abs(intent_data.amount - expected) > AMOUNT_TOLERANCE:
            logger.warning(
                "payment_amount_mismatch",
                tour_id=str(tour.id),
                expected=expected,
                received=intent_data.amount
            )
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Amount mismatch. Please refresh and try again."
            )

        intent = await gateway.create_payment_intent(
            intent_data.amount,
            metadata={
                "tour_id": str(tour.id),
                "user_id": str(current_user.id),
                "participants": str(intent_data.participants),
                "booking_date": booking_date.isoformat(),
                "tour_title": tour.title,
            },
        )

        await crud.create_payment_intent_record(
            session,
            {
                "id": intent.id,
                "user_id": current_user.id,
                "tour_id": tour.id,
                "amount": crud.to_decimal(intent_data.amount),
                "currency": settings.PAYMENT_CURRENCY,
                "status": local_status(getattr(intent, "status", None)),
                "participants": intent_data.participants,
                "booking_date": booking_date,
                "intent_metadata": {
                    "tour_title": tour.title,
                    "provider_id": str(tour.provider_id) if tour.provider_id else None,
                },
            },
        )
        logger.info("payment_intent_created", payment_intent_id=intent.id, tour_id=str(tour.id))

        return ok(
            PaymentIntentCreated(
                client_secret=intent.client_secret,
                payment_intent_id=intent.id,
                amount=intent_data.amount,
                currency=settings.PAYMENT_CURRENCY.upper(),
            )
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error("payment_intent_error", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create payment intent"
        )


@router.get("/intent",
    response_model=ApiResponse[PaymentIntentRead],
    summary="A stored payment intent with its live status"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def get_payment_intent(
    request: Request,
    payment_intent_id: Optional[str] = Query(None),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    if not payment_intent_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payment intent ID required")

    try:
        stored = await crud.get_payment_intent(session, payment_intent_id, user_id=current_user.id)
        if not stored:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment intent not found")

        result = PaymentIntentRead.model_validate(stored)
        try:
            live = await gateway.retrieve_payment_intent(payment_intent_id)
            result.gateway_status = live.status
        except HTTPException as he:
            logger.warning("payment_intent_status_unavailable", payment_intent_id=payment_intent_id, detail=he.detail)

        return ok(result)

    except HTTPException:
        raise
    except Exception as e:
        logger.error("payment_intent_fetch_error", payment_intent_id=payment_intent_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to retrieve payment intent"
        )


@router.post("/confirm",
    response_model=ApiResponse[PaymentConfirmed],
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Payment not completed"},
        404: {"description": "Payment intent not found"},
        409: {"description": "Booking already exists for this payment"},
    },
    summary="Turn a successful payment into a confirmed booking"
)
@limiter.limit(settings.RATE_LIMIT_BOOKING)
async def confirm_payment(
    request: Request,
    confirm_data: PaymentConfirm,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    intent_id = confirm_data.payment_intent_id
    try:
        live = await gateway.retrieve_payment_intent(intent_id)
        if live.status != "succeeded":
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Payment not completed")

        stored = await crud.get_payment_intent(session, intent_id, user_id=current_user.id)
        if not stored:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment intent not found")

        if await crud.get_booking_by_payment_intent(session, intent_id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="Booking already exists for this payment"
            )

        if confirm_data.booking_data.tour_id != stored.tour_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Booking details do not match the payment"
            )

        # The stored intent is authoritative for what was paid for
        booking = await BookingService(session).create_paid_booking(
            user_id=current_user.id,
            tour_id=stored.tour_id,
            participants=stored.participants,
            booking_date=stored.booking_date,
            total_amount=stored.amount,
            payment_intent_id=intent_id,
            special_requests=confirm_data.booking_data.special_requests,
        )
        stored.status = PaymentIntentStatus.SUCCEEDED
        stored.booking_id = booking.id
        await session.commit()

        booking = await crud.get_booking(session, booking.id)
        logger.info(
            "payment_confirmed",
            payment_intent_id=intent_id,
            booking_id=str(booking.id),
            confirmation_number=booking.confirmation_number
        )
        return ok(
            PaymentConfirmed(
                booking=BookingWithTour.model_validate(booking),
                confirmation_number=booking.confirmation_number,
            ),
            "Booking confirmed successfully",
        )

    except HTTPException:
        raise
    except Exception as e:
        await session.rollback()
        logger.error("payment_confirm_error", payment_intent_id=intent_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to confirm payment"
        )
