"""
Request screening and security headers for the /api surface.
"""
from typing import Callable, Iterable, Optional
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import JSONResponse, Response
import structlog

from tourbook.core import guards


logger = structlog.get_logger(__name__)

API_PREFIX = "/api"
WEBHOOK_PREFIX = "/api/webhooks/"
BODY_METHODS = ("POST", "PUT")
MUTATING_METHODS = ("POST", "PUT", "PATCH", "DELETE")


def _reject(error: str, status_code: int) -> JSONResponse:
    response = JSONResponse(status_code=status_code, content={"success": False, "error": error})
    response.headers.update(guards.security_headers())
    return response


def _has_body(request: Request) -> bool:
    if "transfer-encoding" in request.headers:
        return True
    try:
        return int(request.headers.get("content-length") or 0) > 0
    except ValueError:
        return True


class SecurityMiddleware(BaseHTTPMiddleware):
    """
    Checks size, content type and origin of API requests, in that order,
    then stamps the security headers on the response.
    """

    def __init__(
        self,
        app,
        allowed_origins: Iterable[str] = (),
        max_request_size_mb: int = 10,
        check_origin: bool = True,
    ):
        super().__init__(app)
        self.allowed_origins = list(allowed_origins)
        self.max_request_size_mb = max_request_size_mb
        self.check_origin = check_origin

    def screen(self, request: Request) -> Optional[JSONResponse]:
        method = request.method.upper()
        headers = request.headers

        if not guards.validate_request_size(headers.get("content-length"), self.max_request_size_mb):
            logger.warning("request_rejected", reason="size", content_length=headers.get("content-length"))
            return _reject("Request too large", 413)

        if method in BODY_METHODS and _has_body(request):
            if not guards.validate_content_type(method, headers.get("content-type")):
                logger.warning("request_rejected", reason="content_type", content_type=headers.get("content-type"))
                return _reject("Invalid content type", 400)

        origin = headers.get("origin")
        referer = headers.get("referer")
        if (
            self.check_origin
            and method in MUTATING_METHODS
            and (origin or referer)
            and not request.url.path.startswith(WEBHOOK_PREFIX)
            and not guards.validate_origin(method, origin, referer, self.allowed_origins)
        ):
            logger.warning("request_rejected", reason="origin", origin=origin, referer=referer)
            return _reject("Invalid request origin", 403)

        return None

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        if not request.url.path.startswith(API_PREFIX):
            return await call_next(request)

        rejection = self.screen(request)
        if rejection is not None:
            return rejection

        response = await call_next(request)
        response.headers.update(guards.security_headers())
        return response
