from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Request, Response, status
from sqlalchemy.ext.asyncio import AsyncSession
import structlog

from tourbook.api.responses import ApiResponse, ok
from tourbook.api.schemas import LoginRequest, RefreshTokenRequest, RegisterRequest, Token, UserRead
from tourbook.core.ratelimit import limiter
from tourbook.core.security import (
    authenticate_user,
    blacklist_token,
    create_access_token,
    create_refresh_token,
    decode_token,
    extract_token,
    get_current_user,
    get_password_hash,
    oauth2_scheme,
    validate_password_strength,
)
from tourbook.core.settings import get_settings
from tourbook.db import crud
from tourbook.db.models import User, UserType
from tourbook.db.session import get_session

logger = structlog.get_logger(__name__)

settings = get_settings()

router = APIRouter(prefix="/auth", tags=["auth"])


def _set_session_cookie(response: Response, token: str) -> None:
    response.set_cookie(
        key=settings.SESSION_COOKIE_NAME,
        value=token,
        max_age=settings.ACCESS_TOKEN_EXPIRE_MINUTES * 60,
        httponly=True,
        samesite="lax",
        secure=settings.SESSION_COOKIE_SECURE,
    )


@router.post("/register",
    response_model=ApiResponse[UserRead],
    status_code=status.HTTP_201_CREATED,
    responses={
        400: {"description": "Invalid input"},
        409: {"description": "Email already registered"},
    },
    summary="Register a traveller account"
)
@limiter.limit(settings.RATE_LIMIT_REGISTER)
async def register(
    request: Request,
    user_data: RegisterRequest,
    session: AsyncSession = Depends(get_session),
):
    try:
        strength = validate_password_strength(user_data.password)
        if not strength["is_valid"]:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="; ".join(strength["errors"])
            )

        if await crud.get_user_by_email(session, user_data.email):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Email already registered")

        user = await crud.create_user(
            session,
            email=user_data.email,
            full_name=user_data.full_name,
            password_hash=get_password_hash(user_data.password),
            user_type=UserType.TOURIST,
            phone=user_data.phone,
            country=user_data.country,
        )
        logger.info("user_registration_success", user_id=str(user.id))
        return ok(UserRead.model_validate(user), "Account created successfully")

    except HTTPException:
        raise
    except Exception as e:
        logger.error("user_registration_error", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Registration failed"
        )


@router.post("/login",
    response_model=ApiResponse[Token],
    responses={401: {"description": "Invalid credentials"}},
    summary="Log in and receive tokens"
)
@limiter.limit(settings.RATE_LIMIT_LOGIN)
async def login(
    request: Request,
    response: Response,
    credentials: LoginRequest,
    session: AsyncSession = Depends(get_session),
):
    try:
        user = await authenticate_user(credentials.email, credentials.password, session)
        if not user:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Invalid email or password",
                headers={"WWW-Authenticate": "Bearer"},
            )

        access_token = create_access_token({"sub": str(user.id), "role": user.user_type.value})
        refresh_token = create_refresh_token({"sub": str(user.id)})
        _set_session_cookie(response, access_token)

        logger.info("user_login_success", user_id=str(user.id))
        return ok(Token(access_token=access_token, refresh_token=refresh_token), "Login successful")

    except HTTPException:
        raise
    except Exception as e:
        logger.error("user_login_error", error=str(e), error_type=type(e).__name__)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Login failed"
        )


@router.post("/refresh",
    response_model=ApiResponse[Token],
    responses={401: {"description": "Invalid refresh token"}},
    summary="Exchange a refresh token for a new access token"
)
@limiter.limit(settings.RATE_LIMIT_CREATE)
async def refresh(
    request: Request,
    response: Response,
    refresh_data: RefreshTokenRequest,
    session: AsyncSession = Depends(get_session),
):
    user_id = decode_token(refresh_data.refresh_token, "refresh")
    user: Optional[User] = None
    if user_id:
        try:
            user = await crud.get_user_by_id(session, UUID(user_id))
        except ValueError:
            user = None

    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid refresh token")

    access_token = create_access_token({"sub": str(user.id), "role": user.user_type.value})
    _set_session_cookie(response, access_token)
    logger.info("token_refreshed", user_id=str(user.id))
    return ok(Token(access_token=access_token))


@router.post("/logout",
    response_model=ApiResponse[None],
    summary="Invalidate the current token"
)
@limiter.limit(settings.RATE_LIMIT_CREATE)
async def logout(
    request: Request,
    response: Response,
    bearer: Optional[str] = Depends(oauth2_scheme),
    current_user: User = Depends(get_current_user),
):
    token = extract_token(request, bearer)
    if token:
        blacklist_token(token)
    response.delete_cookie(settings.SESSION_COOKIE_NAME)
    logger.info("user_logout", user_id=str(current_user.id))
    return ok(None, "Successfully logged out")


@router.get("/me",
    response_model=ApiResponse[UserRead],
    summary="Current user"
)
@limiter.limit(settings.RATE_LIMIT_READ)
async def me(request: Request, current_user: User = Depends(get_current_user)):
    return ok(UserRead.model_validate(current_user))
