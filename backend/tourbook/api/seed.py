import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tourbook.api.responses import ApiResponse, ok
from tourbook.api.schemas import SeededTour, SeedResult
from tourbook.core.ratelimit import limiter
from tourbook.core.security import require_admin
from tourbook.core.settings import get_settings
from tourbook.db import crud
from tourbook.db.models import User
from tourbook.db.session import get_session

logger = structlog.get_logger(__name__)

settings = get_settings()

router = APIRouter(prefix="/seed", tags=["seed"])

SAMPLE_TOURS_PATH = Path(__file__).resolve().parents[1] / "data" / "sample_tours.json"


@lru_cache()
def load_sample_tours() -> List[Dict[str, Any]]:
    """The bundled Sri Lanka demo catalog"""
    with open(SAMPLE_TOURS_PATH, encoding="utf-8") as f:
        return json.load(f)


@router.post("/tours",
    response_model=ApiResponse[SeedResult],
    status_code=status.HTTP_201_CREATED,
    summary="Load the sample tour catalog into an empty database"
)
@limiter.limit(settings.RATE_LIMIT_CREATE)
async def seed_tours(
    request: Request,
    response: Response,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    try:
        existing = await crud.count_tours(session)
        if existing:
            response.status_code = status.HTTP_200_OK
            return ok(
                SeedResult(count=existing),
                f"Database already contains {existing} tours. Seeding skipped.",
            )

        provider = await crud.get_first_active_provider(session)
        rows = []
        for sample in load_sample_tours():
            row = dict(sample)
            row["price"] = crud.to_decimal(row["price"])
            row["provider_id"] = provider.id if provider else None
            row["is_active"] = True
            rows.append(row)

        tours = await crud.insert_tours(session, rows)
        logger.info("tours_seeded", count=len(tours), admin_id=str(admin.id))
        return ok(
            SeedResult(
                count=len(tours),
                tours=[SeededTour(id=t.id, title=t.title) for t in tours],
            ),
            f"Successfully seeded {len(tours)} sample tours",
        )

    except HTTPException:
        raise
    except Exception as e:
        logger.error("tour_seed_error", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to seed tours"
        )


@router.delete("/tours",
    response_model=ApiResponse[SeedResult],
    responses={400: {"description": "Active bookings remain"}},
    summary="Remove every tour"
)
@limiter.limit(settings.RATE_LIMIT_DELETE)
async def delete_seeded_tours(
    request: Request,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    admin_id = admin.id
    try:
        active = await crud.count_active_bookings(session)
        if active:
            logger.warning("tour_delete_all_refused", active_bookings=active, admin_id=str(admin_id))
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Cannot delete tours with active bookings"
            )

        deleted = await crud.delete_all_tours(session)
        logger.warning("tours_deleted", count=deleted, admin_id=str(admin_id))
        return ok(SeedResult(count=deleted), "All tours deleted successfully")
    except HTTPException:
        raise
    except Exception as e:
        logger.error("tour_delete_all_error", error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to delete tours"
        )
