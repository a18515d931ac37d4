from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tourbook.api.responses import DEFAULT_PAGE_LIMIT, MAX_PAGE_LIMIT, ApiResponse, offset_for, ok, paginate
from tourbook.api.schemas import ProviderRead, ProviderRegistration, ProviderStatusUpdate, ProviderWithOwner
from tourbook.core.ratelimit import limiter
from tourbook.core.security import get_current_user, require_admin
from tourbook.core.settings import get_settings
from tourbook.db import crud
from tourbook.db.models import User, UserType
from tourbook.db.session import get_session

logger = structlog.get_logger(__name__)

settings = get_settings()

router = APIRouter(prefix="/providers", tags=["providers"])


def _active_filter(value: Optional[str]) -> Optional[bool]:
    if value is None or value == "all":
        return None
    if value.lower() in ("true", "1", "yes"):
        return True
    if value.lower() in ("false", "0", "no"):
        return False
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="is_active must be true, false or all")


@router.get("",
    response_model=ApiResponse[List[ProviderWithOwner]],
    summary="List service providers"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def list_providers(
    request: Request,
    page: int = Query(1, ge=1),
    limit: int = Query(DEFAULT_PAGE_LIMIT, ge=1, le=MAX_PAGE_LIMIT),
    search: Optional[str] = None,
    business_type: Optional[str] = None,
    is_active: Optional[str] = None,
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    try:
        providers, total = await crud.list_providers(
            session,
            search=search,
            business_type=business_type,
            is_active=_active_filter(is_active),
            offset=offset_for(page, limit),
            limit=limit,
        )
        return ok(
            [ProviderWithOwner.model_validate(p) for p in providers],
            pagination=paginate(page, limit, total),
        )
    except HTTPException:
        raise
    except Exception as e:
        logger.error("provider_list_error", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to fetch providers"
        )


@router.post("",
    response_model=ApiResponse[ProviderRead],
    status_code=status.HTTP_201_CREATED,
    responses={
        404: {"description": "User not found"},
        409: {"description": "User already has a provider profile"},
    },
    summary="Register a service provider for an existing user"
)
@limiter.limit(settings.RATE_LIMIT_PROVIDER)
async def register_provider(
    request: Request,
    registration: ProviderRegistration,
    session: AsyncSession = Depends(get_session),
    admin: User = Depends(require_admin),
):
    try:
        user = await crud.get_user_by_id(session, registration.userId)
        if not user:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="User not found")

        if await crud.get_provider_by_user(session, user.id):
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="User already has a provider profile"
            )

        business = registration.businessInfo
        contact = registration.contactInfo
        values = {
            "business_name": business.businessName,
            "business_type": business.businessType,
            "description": business.description,
            "phone": contact.phone,
            "email": contact.email,
            "address": contact.address,
            "city": contact.city,
            "website": contact.website,
        }
        services = [
            {
                "name": s.name,
                "description": s.description,
                "price": crud.to_decimal(s.price),
                "category": s.category,
            }
            for s in registration.services or []
        ]

        provider = await crud.create_provider(
            session, user, values, services=services, amenities=registration.amenities or []
        )
        logger.info(
            "provider_registered",
            provider_id=str(provider.id),
            user_id=str(user.id),
            admin_id=str(admin.id)
        )
        return ok(ProviderRead.model_validate(provider), "Service provider registered successfully")

    except HTTPException:
        raise
    except Exception as e:
        logger.error("provider_register_error", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to register service provider"
        )


@router.put("",
    response_model=ApiResponse[ProviderRead],
    summary="Activate or deactivate a provider"
)
@limiter.limit(settings.RATE_LIMIT_UPDATE)
async def update_provider_status(
    request: Request,
    update: ProviderStatusUpdate,
    provider_id: Optional[UUID] = Query(None, alias="id"),
    session: AsyncSession = Depends(get_session),
    current_user: User = Depends(get_current_user),
):
    try:
        if not provider_id:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Provider ID required")

        provider = await crud.get_provider(session, provider_id)
        if not provider:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Provider not found")

        if current_user.user_type != UserType.ADMIN and provider.user_id != current_user.id:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Access denied")

        provider = await crud.set_provider_active(session, provider, update.is_active)
        logger.info("provider_status_updated", provider_id=str(provider.id), is_active=update.is_active)
        return ok(ProviderRead.model_validate(provider), "Provider updated successfully")

    except HTTPException:
        raise
    except Exception as e:
        logger.error("provider_update_error", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to update provider"
        )
