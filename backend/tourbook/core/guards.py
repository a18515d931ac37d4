"""
Request hygiene checks: injection and XSS pattern detection, input
sanitizing, content type, request size and origin checks.

These are heuristics applied before a payload reaches validation; the
database layer always uses bound parameters regardless.
"""

import re
from typing import Iterable, Optional
from urllib.parse import urlparse

DEFAULT_ALLOWED_CONTENT_TYPES = (
    "application/json",
    "multipart/form-data",
    "text/plain",
)

LOCAL_ORIGINS = ("http://localhost:3000", "https://localhost:3000")

SQL_INJECTION_PATTERNS = [
    re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|DROP|CREATE|ALTER|EXEC|UNION|SCRIPT)\b", re.IGNORECASE),
    re.compile(r"\b(OR|AND)\s+\d+\s*=\s*\d+", re.IGNORECASE),
    re.compile(r"(--|/\*|\*/|;)"),
    re.compile(r"\b(UNION|SELECT)\b.*\b(FROM|WHERE)\b", re.IGNORECASE),
]

XSS_PATTERNS = [
    re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE),
    re.compile(r"javascript:", re.IGNORECASE),
    re.compile(r"on\w+\s*=", re.IGNORECASE),
    re.compile(r"<iframe\b[^<]*(?:(?!</iframe>)<[^<]*)*</iframe>", re.IGNORECASE),
    re.compile(r"<object\b[^<]*(?:(?!</object>)<[^<]*)*</object>", re.IGNORECASE),
]

_SCRIPT_TAG = re.compile(r"<script\b[^<]*(?:(?!</script>)<[^<]*)*</script>", re.IGNORECASE)
_JS_PROTOCOL = re.compile(r"javascript:", re.IGNORECASE)
_EVENT_HANDLER = re.compile(r"on\w+=", re.IGNORECASE)

UNSAFE_TEXT = re.compile(r"<script|javascript:|on\w+=", re.IGNORECASE)


def detect_sql_injection(value: str) -> bool:
    return any(pattern.search(value) for pattern in SQL_INJECTION_PATTERNS)


def detect_xss(value: str) -> bool:
    return any(pattern.search(value) for pattern in XSS_PATTERNS)


def is_unsafe_text(value: str) -> bool:
    return bool(UNSAFE_TEXT.search(value))


def sanitize_input(value: str) -> str:
    """Strip script tags, javascript: URLs and inline event handlers"""
    value = value.strip()
    value = _SCRIPT_TAG.sub("", value)
    value = _JS_PROTOCOL.sub("", value)
    return _EVENT_HANDLER.sub("", value)


def validate_content_type(
    method: str,
    content_type: Optional[str],
    allowed: Iterable[str] = DEFAULT_ALLOWED_CONTENT_TYPES,
) -> bool:
    if not content_type:
        # GET requests carry no body
        return method.upper() == "GET"
    return any(allowed_type in content_type for allowed_type in allowed)


def validate_request_size(content_length: Optional[str], max_size_mb: int = 10) -> bool:
    if not content_length:
        return True
    try:
        size_bytes = int(content_length)
    except ValueError:
        return False
    return size_bytes <= max_size_mb * 1024 * 1024


def allowed_origins_for(app_url: Optional[str]) -> list:
    return [origin for origin in (app_url, *LOCAL_ORIGINS) if origin]


def validate_origin(
    method: str,
    origin: Optional[str],
    referer: Optional[str],
    allowed_origins: Iterable[str],
) -> bool:
    """Same-site check for state changing requests"""
    if method.upper() == "GET":
        return True

    allowed = {o.rstrip("/") for o in allowed_origins}

    if origin and origin.rstrip("/") in allowed:
        return True

    if referer:
        parsed = urlparse(referer)
        if parsed.scheme and parsed.netloc and f"{parsed.scheme}://{parsed.netloc}" in allowed:
            return True

    return False


def validate_file_size(size: int, max_size_mb: int = 5) -> bool:
    return size <= max_size_mb * 1024 * 1024


def validate_file_type(filename: str, allowed_types: Iterable[str]) -> bool:
    extension = filename.lower().rsplit(".", 1)[-1] if "." in filename else ""
    return extension in allowed_types


def is_valid_url(url: str) -> bool:
    parsed = urlparse(url)
    return bool(parsed.scheme and parsed.netloc)


def security_headers() -> dict:
    return {
        "X-Content-Type-Options": "nosniff",
        "X-Frame-Options": "DENY",
        "X-XSS-Protection": "1; mode=block",
        "Referrer-Policy": "strict-origin-when-cross-origin",
        "Permissions-Policy": "camera=(), microphone=(), geolocation=()",
        "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    }
