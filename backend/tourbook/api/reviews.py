from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tourbook.api.responses import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT, ApiResponse, offset_for, ok, paginate
from tourbook.api.schemas import ReviewCreate, ReviewWithReviewer
from tourbook.core.ratelimit import limiter
from tourbook.core.security import get_current_user
from tourbook.core.settings import get_settings
from tourbook.db import crud
from tourbook.db.models import BookingStatus, User
from tourbook.db.session import get_session

logger = structlog.get_logger(__name__)

settings = get_settings()

router = APIRouter(prefix="/reviews", tags=["reviews"])


@router.get("",
    response_model=ApiResponse[List[ReviewWithReviewer]],
    summary="Public reviews"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def list_reviews(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    tour_id: Optional[UUID] = None,
    provider_id: Optional[UUID] = None,
    rating_min: Optional[int] = Query(None, ge=1, le=5),
    verified: Optional[bool] = None,
    session: AsyncSession = Depends(get_session),
):
    try:
        reviews, total = await crud.list_reviews(
            session,
            tour_id=tour_id,
            provider_id=provider_id,
            rating_min=rating_min,
            verified=verified,
            offset=offset_for(page, limit),
            limit=limit,
        )
        return ok(
            [ReviewWithReviewer.model_validate(r) for r in reviews],
            pagination=paginate(page, limit, total),
        )
    except Exception as e:
        logger.error("review_list_error", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch reviews"
        )


@router.post("",
    response_model=ApiResponse[ReviewWithReviewer],
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Booking not reviewable"},
        404: {"description": "Booking not found"},
    },
    summary="Review a completed booking"
)
@limiter.limit(settings.RATE_LIMIT_REVIEW)
async def create_review(
    request: Request,
    review_data: ReviewCreate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    try:
        booking = await crud.get_booking(session, review_data.booking_id, user_id=current_user.id)
        if not booking:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")

        if booking.status != BookingStatus.COMPLETED:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Can only review completed bookings"
            )

        if await crud.review_exists_for_booking(session, booking.id):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="You have already reviewed this booking"
            )

        provider_id = booking.tour.provider_id if booking.tour else None
        if (
            (review_data.tour_id and review_data.tour_id != booking.tour_id)
            or (review_data.provider_id and review_data.provider_id != provider_id)
        ):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Review must be for the booked tour and its provider"
            )

        # A review always belongs to the tour and provider of its booking
        values = review_data.model_dump()
        values["user_id"] = current_user.id
        values["tour_id"] = booking.tour_id
        values["provider_id"] = provider_id
        # Only completed bookings get this far
        values["is_verified"] = True

        review = await crud.create_review(session, values)
        logger.info(
            "review_created",
            review_id=str(review.id),
            booking_id=str(booking.id),
            rating=review.rating
        )
        return ok(ReviewWithReviewer.model_validate(review), "Review submitted successfully")

    except HTTPException:
        raise
    except Exception as e:
        logger.error("review_create_error", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create review"
        )
