from typing import List, Literal, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tourbook.api.responses import MAX_PAGE_LIMIT, ApiResponse, offset_for, ok, paginate
from tourbook.api.schemas import TourCreate, TourDetail, TourUpdate, TourWithProvider
from tourbook.core.ratelimit import limiter
from tourbook.core.security import get_current_user, get_optional_user, require_roles
from tourbook.core.settings import get_settings
from tourbook.db import crud
from tourbook.db.models import Tour, User, UserType
from tourbook.db.session import get_session

logger = structlog.get_logger(__name__)

settings = get_settings()

router = APIRouter(prefix="/tours", tags=["tours"])

TourSort = Literal["price_asc", "price_desc", "duration_asc", "duration_desc", "newest", "rating"]


async def _owned_tour(session: AsyncSession, tour_id: UUID, user: User, action: str) -> Tour:
    """Load a tour the caller may change: its provider's owner or an admin"""
    tour = await crud.get_tour(session, tour_id, active_only=False)
    if not tour:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tour not found")

    if user.user_type != UserType.ADMIN:
        provider = await crud.get_provider_by_user(session, user.id)
        if not provider or tour.provider_id != provider.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"You can only {action} your own tours"
            )
    return tour


@router.get("",
    response_model=ApiResponse[List[TourWithProvider]],
    summary="Browse active tours"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def list_tours(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(12, ge=1, le=MAX_PAGE_LIMIT),
    category: Optional[str] = None,
    location: Optional[str] = None,
    price_min: Optional[float] = Query(None, ge=0),
    price_max: Optional[float] = Query(None, ge=0),
    duration: Optional[int] = Query(None, ge=1),
    search: Optional[str] = None,
    sort: TourSort = "rating",
    session: AsyncSession = Depends(get_session),
    current_user: Optional[User] = Depends(get_optional_user),
):
    try:
        tours, total = await crud.list_tours(
            session,
            category=category,
            location=location,
            price_min=price_min,
            price_max=price_max,
            duration=duration,
            search=search,
            sort=sort,
            offset=offset_for(page, limit),
            limit=limit,
        )
        logger.info(
            "tours_listed",
            total=total,
            user_id=str(current_user.id) if current_user else None
        )
        return ok(
            [TourWithProvider.model_validate(t) for t in tours],
            pagination=paginate(page, limit, total),
        )
    except Exception as e:
        logger.error("tour_list_error", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch tours"
        )


@router.post("",
    response_model=ApiResponse[TourWithProvider],
    status_code=status.HTTP_201_CREATED,
    summary="Create a tour"
)
@limiter.limit(settings.RATE_LIMIT_CREATE)
async def create_tour(
    request: Request,
    tour_data: TourCreate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(require_roles(UserType.PROVIDER, UserType.ADMIN)),
):
    try:
        values = tour_data.model_dump()

        if current_user.user_type == UserType.PROVIDER:
            provider = await crud.get_provider_by_user(session, current_user.id)
            if not provider:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Provider profile not found")
            values["provider_id"] = provider.id
        else:
            if not tour_data.provider_id:
                raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Provider ID is required")
            if not await crud.get_provider(session, tour_data.provider_id):
                raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Provider not found")

        values["price"] = crud.to_decimal(values["price"])
        tour = await crud.create_tour(session, values)
        logger.info("tour_created", tour_id=str(tour.id), user_id=str(current_user.id))
        return ok(TourWithProvider.model_validate(tour), "Tour created successfully")

    except HTTPException:
        raise
    except Exception as e:
        logger.error("tour_create_error", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create tour"
        )


@router.get("/{tour_id}",
    response_model=ApiResponse[TourDetail],
    responses={404: {"description": "Tour not found"}},
    summary="Tour details with reviews"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def get_tour(
    request: Request,
    tour_id: UUID,
    session: AsyncSession = Depends(get_session),
):
    try:
        tour = await crud.get_tour_detail(session, tour_id)
        if not tour:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Tour not found")
        return ok(TourDetail.model_validate(tour))

    except HTTPException:
        raise
    except Exception as e:
        logger.error("tour_fetch_error", tour_id=str(tour_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch tour"
        )


@router.put("/{tour_id}",
    response_model=ApiResponse[TourWithProvider],
    summary="Update a tour"
)
@limiter.limit(settings.RATE_LIMIT_UPDATE)
async def update_tour(
    request: Request,
    tour_id: UUID,
    tour_data: TourUpdate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    try:
        tour = await _owned_tour(session, tour_id, current_user, "update")

        changes = tour_data.model_dump(exclude_unset=True)
        if "price" in changes:
            changes["price"] = crud.to_decimal(changes["price"])

        tour = await crud.update_tour(session, tour, changes)
        logger.info("tour_updated", tour_id=str(tour.id), fields=sorted(changes))
        return ok(TourWithProvider.model_validate(tour), "Tour updated successfully")

    except HTTPException:
        raise
    except Exception as e:
        logger.error("tour_update_error", tour_id=str(tour_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update tour"
        )


@router.delete("/{tour_id}",
    response_model=ApiResponse[None],
    summary="Deactivate a tour"
)
@limiter.limit(settings.RATE_LIMIT_DELETE)
async def delete_tour(
    request: Request,
    tour_id: UUID,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    try:
        tour = await _owned_tour(session, tour_id, current_user, "delete")

        if await crud.count_active_bookings_for_tour(session, tour.id):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete tour with active bookings"
            )

        # Tours are never removed, only hidden from the catalog
        await crud.update_tour(session, tour, {"is_active": False})
        logger.info("tour_deactivated", tour_id=str(tour_id), user_id=str(current_user.id))
        return ok(None, "Tour deactivated successfully")

    except HTTPException:
        raise
    except Exception as e:
        logger.error("tour_delete_error", tour_id=str(tour_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete tour"
        )
