"""
Tests for request hygiene checks and shared field validators
"""

from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from tourbook.core import guards, validation


def test_xss_detection():
    assert guards.detect_xss("<script>alert(1)</script>")
    assert guards.detect_xss("javascript:alert(1)")
    assert guards.detect_xss('<img src=x onerror="alert(1)">')
    assert not guards.detect_xss("A relaxing day on Mirissa beach")


def test_sql_injection_detection():
    assert guards.detect_sql_injection("1 OR 1=1")
    assert guards.detect_sql_injection("x'; DROP TABLE users --")
    assert not guards.detect_sql_injection("Sigiriya rock fortress")


def test_sanitize_input_strips_scripts_and_handlers():
    cleaned = guards.sanitize_input('  hello <script>bad()</script> javascript:go onclick=x ')
    assert "<script>" not in cleaned
    assert "javascript:" not in cleaned
    assert "onclick=" not in cleaned
    assert cleaned.startswith("hello")


def test_validate_content_type():
    assert guards.validate_content_type("POST", "application/json; charset=utf-8")
    assert guards.validate_content_type("GET", None)
    assert not guards.validate_content_type("POST", None)
    assert not guards.validate_content_type("POST", "application/xml")


def test_validate_request_size():
    assert guards.validate_request_size(None)
    assert guards.validate_request_size(str(10 * 1024 * 1024), max_size_mb=10)
    assert not guards.validate_request_size(str(10 * 1024 * 1024 + 1), max_size_mb=10)
    assert not guards.validate_request_size("not-a-number")


def test_validate_origin():
    allowed = guards.allowed_origins_for("https://tours.example.com")
    assert guards.validate_origin("GET", "https://evil.example", None, allowed)
    assert guards.validate_origin("POST", "https://tours.example.com", None, allowed)
    assert guards.validate_origin("POST", None, "http://localhost:3000/bookings", allowed)
    assert not guards.validate_origin("POST", "https://evil.example", None, allowed)
    assert not guards.validate_origin("DELETE", None, None, allowed)


def test_file_checks():
    assert guards.validate_file_size(1024)
    assert not guards.validate_file_size(6 * 1024 * 1024)
    assert guards.validate_file_type("beach.JPG", {"jpg", "png"})
    assert not guards.validate_file_type("script.exe", {"jpg", "png"})
    assert not guards.validate_file_type("noextension", {"jpg"})


def test_security_headers():
    headers = guards.security_headers()
    assert headers["X-Frame-Options"] == "DENY"
    assert headers["X-Content-Type-Options"] == "nosniff"


def test_safe_text_rejects_markup():
    assert validation.safe_text("  Ella hike ") == "Ella hike"
    with pytest.raises(ValueError):
        validation.safe_text("<script>alert(1)</script>")


def test_phone_number():
    assert validation.phone_number("+94 77 123 4567") == "+94 77 123 4567"
    with pytest.raises(ValueError):
        validation.phone_number("call me")


def test_location_name():
    assert validation.location_name(" Nuwara Eliya ") == "Nuwara Eliya"
    with pytest.raises(ValueError):
        validation.location_name("   ")
    with pytest.raises(ValueError):
        validation.location_name("Kandy <b>")
    with pytest.raises(ValueError):
        validation.location_name("x" * 101)


def test_url_list():
    urls = ["https://img.example.com/a.jpg"]
    assert validation.url_list(urls) == urls
    with pytest.raises(ValueError):
        validation.url_list(["not a url"])
    with pytest.raises(ValueError):
        validation.url_list(urls * 6, max_items=5)


def test_future_date_accepts_today_and_rejects_yesterday():
    """Today counts from midnight UTC"""
    midnight = validation.start_of_today()
    assert validation.future_date(midnight) == midnight
    assert validation.future_date(None) is None

    with pytest.raises(ValueError):
        validation.future_date(midnight - timedelta(days=1))


def test_future_date_treats_naive_as_utc():
    naive = datetime.now(timezone.utc).replace(tzinfo=None) + timedelta(days=1)
    assert validation.future_date(naive).tzinfo == timezone.utc


def test_ensure_utc():
    naive = datetime(2030, 5, 1, 9, 30)
    assert validation.ensure_utc(naive) == datetime(2030, 5, 1, 9, 30, tzinfo=timezone.utc)

    colombo = timezone(timedelta(hours=5, minutes=30))
    aware = datetime(2030, 5, 1, 15, 0, tzinfo=colombo)
    assert validation.ensure_utc(aware) == datetime(2030, 5, 1, 9, 30, tzinfo=timezone.utc)
    assert validation.ensure_utc(None) is None


def test_validation_does_not_depend_on_the_orm():
    source = Path(validation.__file__).read_text()
    assert "tourbook.db" not in source
