import logging
import re
from datetime import datetime, timedelta, timezone
from typing import Optional, Dict, Any
from uuid import UUID

from jose import JWTError, jwt
from passlib.context import CryptContext
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from tourbook.core.settings import get_settings
from tourbook.db.models import User, UserType
from tourbook.db.session import get_session

logger = logging.getLogger(__name__)

settings = get_settings()

ALGORITHM = "HS256"

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)

# In-memory token blacklist (use Redis in production)
token_blacklist = set()

AUTH_REQUIRED = "Authentication required"


class PasswordValidator:
    """Password policy: minimum length, mixed case and a digit"""

    @staticmethod
    def validate_password(password: str) -> Dict[str, Any]:
        errors = []

        if len(password) < settings.PASSWORD_MIN_LENGTH:
            errors.append(f"Password must be at least {settings.PASSWORD_MIN_LENGTH} characters")
        if not re.search(r"[a-z]", password):
            errors.append("Password must contain at least one lowercase letter")
        if not re.search(r"[A-Z]", password):
            errors.append("Password must contain at least one uppercase letter")
        if not re.search(r"\d", password):
            errors.append("Password must contain at least one number")

        return {"is_valid": not errors, "errors": errors}


def validate_password_strength(password: str) -> Dict[str, Any]:
    return PasswordValidator.validate_password(password)


def verify_password(plain: str, hashed: str) -> bool:
    try:
        return pwd_context.verify(plain, hashed)
    except Exception as e:
        logger.error(f"Password verification error: {e}")
        return False


def get_password_hash(password: str) -> str:
    try:
        return pwd_context.hash(password)
    except Exception as e:
        logger.error(f"Password hashing error: {e}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Password processing failed"
        )


def _create_token(data: dict, secret: str, token_type: str, expires: timedelta) -> str:
    to_encode = data.copy()
    to_encode.update({"exp": datetime.now(timezone.utc) + expires, "type": token_type})
    return jwt.encode(to_encode, secret, algorithm=ALGORITHM)


def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT access token"""
    expires = expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    token = _create_token(data, settings.JWT_SECRET, "access", expires)
    logger.info(f"Access token created for user {data.get('sub')}")
    return token


def create_refresh_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Create a JWT refresh token"""
    expires = expires_delta or timedelta(minutes=settings.REFRESH_TOKEN_EXPIRE_MINUTES)
    return _create_token(data, settings.JWT_REFRESH_SECRET, "refresh", expires)


def blacklist_token(token: str) -> None:
    token_blacklist.add(token)
    logger.info("Token added to blacklist")


def is_token_blacklisted(token: str) -> bool:
    return token in token_blacklist


def decode_token(token: str, token_type: str = "access") -> Optional[str]:
    """Return the subject of a valid token of ``token_type``, else None"""
    secret = settings.JWT_SECRET if token_type == "access" else settings.JWT_REFRESH_SECRET
    try:
        payload = jwt.decode(token, secret, algorithms=[ALGORITHM])
    except JWTError as e:
        logger.warning(f"JWT decode error: {e}")
        return None

    if payload.get("type") != token_type:
        logger.warning("Token type mismatch")
        return None
    return payload.get("sub")


async def authenticate_user(email: str, password: str, session: AsyncSession) -> Optional[User]:
    """Look up a user by email and check the password"""
    email = email.strip().lower()
    result = await session.execute(select(User).where(User.email == email))
    user = result.scalar_one_or_none()

    if not user:
        logger.warning(f"Authentication failed: user not found - {email}")
        return None

    if not verify_password(password, user.password_hash):
        logger.warning(f"Authentication failed: invalid password for user - {email}")
        return None

    logger.info(f"User authenticated successfully: {user.id}")
    return user


def extract_token(request: Request, bearer: Optional[str]) -> Optional[str]:
    """Bearer header first, then the session cookie"""
    if bearer:
        return bearer
    return request.cookies.get(settings.SESSION_COOKIE_NAME)


async def _resolve_user(token: Optional[str], session: AsyncSession) -> Optional[User]:
    if not token or is_token_blacklisted(token):
        return None

    user_id = decode_token(token, "access")
    if not user_id:
        return None

    try:
        return await session.get(User, UUID(user_id))
    except ValueError:
        logger.warning(f"Malformed subject in token: {user_id}")
        return None


async def get_current_user(
    request: Request,
    bearer: Optional[str] = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_session),
) -> User:
    """Resolve the caller from a bearer token or the session cookie"""
    user = await _resolve_user(extract_token(request, bearer), session)
    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=AUTH_REQUIRED,
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user


async def get_optional_user(
    request: Request,
    bearer: Optional[str] = Depends(oauth2_scheme),
    session: AsyncSession = Depends(get_session),
) -> Optional[User]:
    """Like get_current_user but anonymous callers get None"""
    return await _resolve_user(extract_token(request, bearer), session)


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if user.user_type != UserType.ADMIN:
        logger.warning(f"Admin access denied for user {user.id}")
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return user


def require_roles(*roles: UserType):
    """Dependency factory allowing only the given user types"""

    async def checker(user: User = Depends(get_current_user)) -> User:
        if user.user_type not in roles:
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Insufficient permissions")
        return user

    return checker
