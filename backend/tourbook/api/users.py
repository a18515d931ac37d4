from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tourbook.api.responses import MAX_PAGE_LIMIT, ApiResponse, offset_for, ok, paginate
from tourbook.api.schemas import PreferencesRead, ProfileRead, ProfileStats, ProfileUpdate, ProviderRead, UserRead
from tourbook.core.ratelimit import limiter
from tourbook.core.security import get_current_user, require_admin
from tourbook.core.settings import get_settings
from tourbook.db import crud
from tourbook.db.models import User, UserType
from tourbook.db.session import get_session

logger = structlog.get_logger(__name__)

settings = get_settings()

router = APIRouter(prefix="/users", tags=["users"])

USER_LIST_DEFAULT_LIMIT = 50


async def _profile(session: AsyncSession, user: User) -> ProfileRead:
    profile_user = await crud.get_user_profile(session, user.id)
    stats = await crud.get_booking_stats(session, user.id)
    preferences = profile_user.preferences
    provider = profile_user.provider_profile
    return ProfileRead(
        **UserRead.model_validate(profile_user).model_dump(),
        preferences=PreferencesRead.model_validate(preferences) if preferences else None,
        provider_profile=ProviderRead.model_validate(provider) if provider else None,
        stats=ProfileStats(**stats),
    )


@router.get("",
    response_model=ApiResponse[List[UserRead]],
    summary="Admin user directory"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def list_users(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(USER_LIST_DEFAULT_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    search: Optional[str] = None,
    user_type: Optional[str] = None,
    exclude_providers: bool = True,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    if user_type and user_type != "all" and user_type not in {t.value for t in UserType}:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid user type")

    try:
        users, total = await crud.list_users(
            session,
            search=search,
            user_type=user_type,
            exclude_providers=exclude_providers,
            offset=offset_for(page, limit),
            limit=limit,
        )
        return ok(
            [UserRead.model_validate(u) for u in users],
            pagination=paginate(page, limit, total),
        )
    except Exception as e:
        logger.error("user_list_error", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch users"
        )


@router.get("/profile",
    response_model=ApiResponse[ProfileRead],
    summary="The caller's profile and booking stats"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def get_profile(
    request: Request,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    try:
        return ok(await _profile(session, current_user))
    except Exception as e:
        logger.error("profile_fetch_error", user_id=str(current_user.id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch profile"
        )


@router.put("/profile",
    response_model=ApiResponse[ProfileRead],
    summary="Update name, phone and country"
)
@limiter.limit(settings.RATE_LIMIT_UPDATE)
async def update_profile(
    request: Request,
    profile_data: ProfileUpdate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    user_id = current_user.id
    try:
        for key, value in profile_data.model_dump(exclude_unset=True).items():
            setattr(current_user, key, value)
        await session.commit()
        logger.info("profile_updated", user_id=str(current_user.id))
        return ok(await _profile(session, current_user), "Profile updated successfully")

    except Exception as e:
        await session.rollback()
        logger.error("profile_update_error", user_id=str(user_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update profile"
        )


@router.delete("/profile",
    response_model=ApiResponse[None],
    summary="Delete the caller's account"
)
@limiter.limit(settings.RATE_LIMIT_DELETE)
async def delete_profile(
    request: Request,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    user_id = current_user.id
    try:
        if await crud.count_active_bookings_for_user(session, current_user.id):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete account with active bookings. Please cancel or complete them first."
            )

        await crud.delete_user_account(session, current_user)
        logger.info("account_deleted", user_id=str(user_id))
        return ok(None, "Account deleted successfully")

    except HTTPException:
        raise
    except Exception as e:
        logger.error("account_delete_error", user_id=str(user_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete account"
        )
