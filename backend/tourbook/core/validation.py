"""
Reusable field checks shared by the request schemas
"""

import re
from datetime import datetime, timezone
from typing import List, Optional

from tourbook.core.guards import is_unsafe_text, is_valid_url

PHONE_PATTERN = re.compile(r"^\+?[\d\s\-()]{8,}$")
LOCATION_PATTERN = re.compile(r"^[a-zA-Z\s,.\-]+$")

MAX_IMAGES = 10
MAX_PRICE = 1_000_000


def safe_text(value: str) -> str:
    value = value.strip()
    if is_unsafe_text(value):
        raise ValueError("Text contains potentially unsafe content")
    return value


def phone_number(value: str) -> str:
    if not PHONE_PATTERN.match(value):
        raise ValueError("Please enter a valid phone number")
    return value


def location_name(value: str) -> str:
    value = value.strip()
    if not value:
        raise ValueError("Location is required")
    if len(value) > 100:
        raise ValueError("Location name too long")
    if not LOCATION_PATTERN.match(value):
        raise ValueError("Location contains invalid characters")
    return value


def url_list(values: List[str], max_items: int = MAX_IMAGES) -> List[str]:
    if len(values) > max_items:
        raise ValueError(f"Maximum {max_items} images allowed")
    for value in values:
        if not is_valid_url(value):
            raise ValueError("Must be a valid URL")
    return values


def ensure_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite hands back naive datetimes; treat them as UTC"""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def start_of_today() -> datetime:
    return datetime.now(timezone.utc).replace(hour=0, minute=0, second=0, microsecond=0)


def future_date(value: Optional[datetime]) -> Optional[datetime]:
    """Accept today (from midnight UTC) or any later moment"""
    if value is None:
        return None
    value = ensure_utc(value)
    if value < start_of_today():
        raise ValueError("Booking date must be today or in the future")
    return value
