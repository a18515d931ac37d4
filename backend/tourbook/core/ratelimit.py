"""
Per-client rate limiting.

Counters use a moving window keyed by client IP and endpoint. With the
default ``memory://`` storage they are per process; point
RATE_LIMIT_STORAGE_URI at redis to enforce limits across instances.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from slowapi import Limiter
from slowapi.errors import RateLimitExceeded

from tourbook.core.settings import get_settings

logger = logging.getLogger(__name__)

settings = get_settings()


def get_client_ip(request: Request) -> str:
    """Resolve the caller's address, preferring proxy headers"""
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded:
        return forwarded.split(",")[0].strip()

    real_ip = request.headers.get("x-real-ip")
    if real_ip:
        return real_ip.strip()

    client_ip = request.headers.get("x-client-ip")
    if client_ip:
        return client_ip.strip()

    if request.client and request.client.host:
        return request.client.host
    return "unknown"


limiter = Limiter(
    key_func=get_client_ip,
    strategy="moving-window",
    storage_uri=settings.RATE_LIMIT_STORAGE_URI,
    enabled=settings.ENABLE_RATE_LIMITING,
)


async def rate_limit_exceeded_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    logger.warning(
        f"Rate limit exceeded for {get_client_ip(request)} on "
        f"{request.method} {request.url.path}: {exc.detail}"
    )
    return JSONResponse(
        status_code=429,
        content={
            "success": False,
            "error": "Too many requests. Please try again later.",
        },
        headers={"Retry-After": "60"},
    )
