from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tourbook.api.responses import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT, ApiResponse, offset_for, ok, paginate
from tourbook.api.schemas import BookingCreate, BookingDetail, BookingUpdate, BookingWithTour
from tourbook.core.ratelimit import limiter
from tourbook.core.security import get_current_user
from tourbook.core.settings import get_settings
from tourbook.db import crud
from tourbook.db.models import Booking, BookingStatus, User
from tourbook.db.session import get_session
from tourbook.services.bookings import BookingService

logger = structlog.get_logger(__name__)

settings = get_settings()

router = APIRouter(prefix="/bookings", tags=["bookings"])


async def _users_booking(session: AsyncSession, booking_id: UUID, user: User, with_review: bool = False) -> Booking:
    booking = await crud.get_booking(session, booking_id, user_id=user.id, with_review=with_review)
    if not booking:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


@router.get("",
    response_model=ApiResponse[List[BookingWithTour]],
    summary="The caller's bookings, newest first"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def list_bookings(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    booking_status: Optional[BookingStatus] = Query(None, alias="status"),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    try:
        bookings, total = await crud.list_bookings_for_user(
            session,
            current_user.id,
            status=booking_status.value if booking_status else None,
            offset=offset_for(page, limit),
            limit=limit,
        )
        return ok(
            [BookingWithTour.model_validate(b) for b in bookings],
            pagination=paginate(page, limit, total),
        )
    except Exception as e:
        logger.error("booking_list_error", user_id=str(current_user.id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch bookings"
        )


@router.post("",
    response_model=ApiResponse[BookingWithTour],
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Not enough capacity"},
        404: {"description": "Tour not found or not available"},
    },
    summary="Book a tour"
)
@limiter.limit(settings.RATE_LIMIT_BOOKING)
async def create_booking(
    request: Request,
    booking_data: BookingCreate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    try:
        booking = await BookingService(session).create_booking(
            user_id=current_user.id,
            tour_id=booking_data.tour_id,
            participants=booking_data.participants,
            booking_date=booking_data.booking_date,
            special_requests=booking_data.special_requests,
            contact_info=booking_data.contact_info(),
        )
        logger.info(
            "booking_created",
            booking_id=str(booking.id),
            tour_id=str(booking.tour_id),
            participants=booking.participants
        )
        return ok(BookingWithTour.model_validate(booking), "Booking created successfully")

    except HTTPException:
        raise
    except Exception as e:
        logger.error("booking_create_error", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create booking"
        )


@router.get("/{booking_id}",
    response_model=ApiResponse[BookingDetail],
    responses={404: {"description": "Booking not found"}},
    summary="One of the caller's bookings"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def get_booking(
    request: Request,
    booking_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    try:
        booking = await _users_booking(session, booking_id, current_user, with_review=True)
        return ok(BookingDetail.model_validate(booking))
    except HTTPException:
        raise
    except Exception as e:
        logger.error("booking_fetch_error", booking_id=str(booking_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch booking"
        )


@router.put("/{booking_id}",
    response_model=ApiResponse[BookingWithTour],
    summary="Change a pending or confirmed booking"
)
@limiter.limit(settings.RATE_LIMIT_UPDATE)
async def update_booking(
    request: Request,
    booking_id: UUID,
    booking_data: BookingUpdate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    try:
        booking = await _users_booking(session, booking_id, current_user)
        booking = await BookingService(session).update_booking(
            booking, booking_data.model_dump(exclude_unset=True)
        )
        logger.info("booking_updated", booking_id=str(booking_id))
        return ok(BookingWithTour.model_validate(booking), "Booking updated successfully")

    except HTTPException:
        raise
    except Exception as e:
        logger.error("booking_update_error", booking_id=str(booking_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update booking"
        )


@router.delete("/{booking_id}",
    response_model=ApiResponse[BookingWithTour],
    summary="Cancel a booking"
)
@limiter.limit(settings.RATE_LIMIT_DELETE)
async def cancel_booking(
    request: Request,
    booking_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    try:
        booking = await _users_booking(session, booking_id, current_user)
        booking = await BookingService(session).cancel_booking(booking)
        logger.info("booking_cancelled", booking_id=str(booking_id))
        return ok(BookingWithTour.model_validate(booking), "Booking cancelled successfully")

    except HTTPException:
        raise
    except Exception as e:
        logger.error("booking_cancel_error", booking_id=str(booking_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to cancel booking"
        )
