from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tourbook.api.responses import ApiResponse, ok
from tourbook.api.schemas import (
    PreferencesIn, PreferencesRead, PreferencesUpdate, RecommendationsResponse, RecommendedTour,
    TourWithProvider,
)
from tourbook.core import scoring
from tourbook.core.ratelimit import limiter
from tourbook.core.security import get_current_user
from tourbook.core.settings import get_settings
from tourbook.db import crud
from tourbook.db.models import User
from tourbook.db.session import get_session

logger = structlog.get_logger(__name__)

settings = get_settings()

router = APIRouter(prefix="/preferences", tags=["preferences"])


@router.get("",
    response_model=ApiResponse[Optional[PreferencesRead]],
    summary="The caller's travel preferences"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def get_preferences(
    request: Request,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    try:
        prefs = await crud.get_preferences(session, current_user.id)
        if not prefs:
            return ok(None, "No preferences found")
        return ok(PreferencesRead.model_validate(prefs))
    except Exception as e:
        logger.error("preferences_fetch_error", user_id=str(current_user.id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch preferences"
        )


@router.post("",
    response_model=ApiResponse[PreferencesRead],
    summary="Save the preference questionnaire"
)
@limiter.limit(settings.RATE_LIMIT_CREATE)
async def save_preferences(
    request: Request,
    prefs_data: PreferencesIn,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    user_id = current_user.id
    try:
        prefs = await crud.upsert_preferences(session, user_id, prefs_data.model_dump())
        logger.info("preferences_saved", user_id=str(user_id))
        return ok(PreferencesRead.model_validate(prefs), "Preferences saved successfully")
    except Exception as e:
        logger.error("preferences_save_error", user_id=str(user_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to save preferences"
        )


@router.put("",
    response_model=ApiResponse[PreferencesRead],
    summary="Change some preferences"
)
@limiter.limit(settings.RATE_LIMIT_UPDATE)
async def update_preferences(
    request: Request,
    prefs_data: PreferencesUpdate,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    user_id = current_user.id
    try:
        prefs = await crud.get_preferences(session, user_id)
        if not prefs:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Preferences not found")

        prefs = await crud.update_preferences(session, prefs, prefs_data.model_dump(exclude_unset=True))
        logger.info("preferences_updated", user_id=str(user_id))
        return ok(PreferencesRead.model_validate(prefs), "Preferences updated successfully")

    except HTTPException:
        raise
    except Exception as e:
        logger.error("preferences_update_error", user_id=str(user_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update preferences"
        )


@router.delete("",
    response_model=ApiResponse[None],
    summary="Forget the caller's preferences"
)
@limiter.limit(settings.RATE_LIMIT_DELETE)
async def delete_preferences(
    request: Request,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    user_id = current_user.id
    try:
        await crud.delete_preferences(session, user_id)
        logger.info("preferences_deleted", user_id=str(user_id))
        return ok(None, "Preferences deleted successfully")
    except Exception as e:
        await session.rollback()
        logger.error("preferences_delete_error", user_id=str(user_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete preferences"
        )


async def recommend_tours(session: AsyncSession, prefs, limit: int):
    """Score in the database, or in process if the query fails"""
    try:
        rows = await crud.recommended_tours(session, prefs, limit)
        return [
            scoring.ScoredTour(tour=tour, points=points, reasons=scoring.generate_match_reasons(tour, prefs))
            for tour, points in rows
        ]
    except SQLAlchemyError as e:
        logger.warning("recommendation_query_failed", error=str(e), fallback="in_process")
        await session.rollback()
        tours = await crud.list_active_tours_with_provider(session)
        return scoring.rank_tours(tours, prefs, limit)


@router.get("/recommendations",
    response_model=ApiResponse[RecommendationsResponse],
    responses={404: {"description": "No preferences saved yet"}},
    summary="Tours ranked against the caller's preferences"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def get_recommendations(
    request: Request,
    limit: int = Query(scoring.DEFAULT_RECOMMENDATION_LIMIT, ge=1),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    user_id = current_user.id
    try:
        prefs = await crud.get_preferences(session, user_id)
        if not prefs:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="User preferences not found. Please complete the preference questionnaire first."
            )

        # Detached copy; the fallback path rolls back and expires ORM rows
        snapshot = PreferencesRead.model_validate(prefs)
        ranked = await recommend_tours(session, snapshot, scoring.clamp_limit(limit))
        recommendations = [
            RecommendedTour(
                tour=TourWithProvider.model_validate(item.tour),
                match_score=item.score,
                reasons=item.reasons,
            )
            for item in ranked
        ]
        logger.info("recommendations_generated", user_id=str(user_id), count=len(recommendations))
        return ok(
            RecommendationsResponse(
                recommendations=recommendations,
                preferences=snapshot,
                total=len(recommendations),
            )
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error("recommendations_error", user_id=str(user_id), error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to generate recommendations"
        )
