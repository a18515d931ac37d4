from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tourbook.api.responses import ApiResponse, ok
from tourbook.api.schemas import AdminSetup, AdminStatus, UserRead
from tourbook.core.ratelimit import limiter
from tourbook.core.security import get_password_hash
from tourbook.core.settings import get_settings
from tourbook.db import crud
from tourbook.db.models import UserType
from tourbook.db.session import get_session

logger = structlog.get_logger(__name__)

settings = get_settings()

router = APIRouter(prefix="/setup", tags=["setup"])


@router.get("/admin",
    response_model=ApiResponse[AdminStatus],
    summary="Whether the first admin has been created"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def admin_status(request: Request, session: AsyncSession = Depends(get_session)):
    return ok(AdminStatus(admin_exists=await crud.admin_exists(session)))


@router.post("/admin",
    response_model=ApiResponse[UserRead],
    status_code=status.HTTP_201_CREATED,
    responses={409: {"description": "An admin already exists"}},
    summary="Bootstrap the first admin account"
)
@limiter.limit(settings.RATE_LIMIT_REGISTER)
async def create_admin(
    request: Request,
    admin_data: AdminSetup,
    session: AsyncSession = Depends(get_session),
):
    try:
        if await crud.admin_exists(session):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Admin user already exists")

        if await crud.get_user_by_email(session, admin_data.email):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

        admin = await crud.create_user(
            session,
            email=admin_data.email,
            full_name=admin_data.full_name,
            password_hash=get_password_hash(admin_data.password),
            user_type=UserType.ADMIN,
        )
        logger.info("admin_created", user_id=str(admin.id))
        return ok(UserRead.model_validate(admin), "Admin user created successfully")

    except HTTPException:
        raise
    except Exception as e:
        logger.error("admin_setup_error", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to create admin user"
        )
