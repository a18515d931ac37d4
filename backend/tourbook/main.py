import logging
import re
from contextlib import asynccontextmanager
from datetime import datetime, timezone

from fastapi import FastAPI
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from prometheus_fastapi_instrumentator import Instrumentator
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
import structlog

from tourbook.api import (
    auth, bookings, payments, preferences, providers, reviews, seed, setup, tours, users, webhooks,
)
from tourbook.api.responses import (
    http_exception_handler, unhandled_exception_handler, validation_exception_handler,
)
from tourbook.core.guards import allowed_origins_for
from tourbook.core.ratelimit import limiter, rate_limit_exceeded_handler
from tourbook.core.settings import get_settings
from tourbook.db.session import db_manager
from tourbook.middleware.logging import RequestLoggingMiddleware
from tourbook.middleware.security import SecurityMiddleware

settings = get_settings()

API_VERSION = "1.0.0"

SECRET_PATTERNS = [
    (re.compile(r"sk_(live|test)_[0-9A-Za-z]+"), "sk_REDACTED"),
    (re.compile(r"whsec_[0-9A-Za-z]+"), "whsec_REDACTED"),
    (re.compile(r"(pi_[0-9A-Za-z]+_secret_)[0-9A-Za-z]+"), r"\1REDACTED"),
    (re.compile(r"(client_secret['\"]?\s*[:=]\s*['\"]?)[^\s'\",}]+"), r"\1REDACTED"),
    (re.compile(r"(Bearer\s+)[A-Za-z0-9\-_\.]+", re.IGNORECASE), r"\1REDACTED"),
]


# Redaction processor to scrub payment secrets and tokens from any string values in the event dict
def redact_secrets(logger, method_name, event_dict):
    def scrub(v):
        if isinstance(v, str):
            for pattern, replacement in SECRET_PATTERNS:
                v = pattern.sub(replacement, v)
            return v
        if isinstance(v, list):
            return [scrub(x) for x in v]
        if isinstance(v, dict):
            return {k: scrub(vv) for k, vv in v.items()}
        return v

    for k, v in list(event_dict.items()):
        event_dict[k] = scrub(v)
    return event_dict


# Configure structured logging with JSON output
structlog.configure(
    processors=[
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.filter_by_level,
        structlog.stdlib.add_logger_name,
        structlog.stdlib.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        redact_secrets,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        structlog.processors.JSONRenderer()
    ],
    wrapper_class=structlog.stdlib.BoundLogger,
    context_class=dict,
    logger_factory=structlog.stdlib.LoggerFactory(),
    cache_logger_on_first_use=True,
)

# Configure standard library logging to output to file and console
logging.basicConfig(
    level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
    format='%(message)s',  # structlog handles formatting
    handlers=[
        logging.StreamHandler(),
        logging.FileHandler(settings.LOG_FILE)
    ]
)

logger = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Starting application...")
    try:
        await db_manager.initialize()
        logger.info("Database manager initialized successfully")
    except Exception:
        logger.exception("Failed to initialize database manager")
        raise

    yield

    logger.info("Shutting down application...")
    try:
        await db_manager.close()
        logger.info("Database connections closed successfully")
    except Exception as e:
        logger.error("database_cleanup_error", error=str(e))


app = FastAPI(
    title="Tourbook API",
    description="Tour marketplace: catalog, bookings, payments and recommendations",
    version=API_VERSION,
    lifespan=lifespan
)

# Rate limiter and the envelope-producing exception handlers
app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.add_middleware(
    SecurityMiddleware,
    allowed_origins=allowed_origins_for(settings.APP_URL),
    max_request_size_mb=settings.MAX_REQUEST_SIZE_MB,
    check_origin=settings.ENABLE_CSRF_CHECK,
)
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

Instrumentator().instrument(app).expose(app, endpoint="/metrics")


@app.get("/")
def root():
    return {"status": "API active", "version": API_VERSION}


@app.get("/health")
async def health_check_detailed():
    """Detailed health check endpoint"""
    database = await db_manager.health_check()
    return {
        "status": "healthy" if database["status"] == "healthy" else "degraded",
        "version": API_VERSION,
        "components": {
            "database": database["status"],
            "api": "healthy"
        },
        "timestamp": datetime.now(timezone.utc).isoformat()
    }


prefix = "/api"

app.include_router(auth.router, prefix=prefix)
app.include_router(tours.router, prefix=prefix)
app.include_router(bookings.router, prefix=prefix)
app.include_router(reviews.router, prefix=prefix)
app.include_router(providers.router, prefix=prefix)
app.include_router(users.router, prefix=prefix)
app.include_router(preferences.router, prefix=prefix)
app.include_router(payments.router, prefix=prefix)
app.include_router(webhooks.router, prefix=prefix)
app.include_router(seed.router, prefix=prefix)
app.include_router(setup.router, prefix=prefix)
