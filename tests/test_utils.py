"""
Pure helper tests: date arithmetic, money formatting, distances and the
token/password primitives.  No database needed.
"""
from datetime import date, datetime, timedelta, timezone

import pytest

from sitetrack.errors import ConflictError, NotFoundError, SiteTrackError
from sitetrack.security import create_access_token, decode_access_token, hash_password, verify_password
from sitetrack.utils import (
    add_months,
    day_bounds,
    format_currency,
    haversine_m,
    js_weekday,
    money,
    month_bounds,
    month_difference,
    to_naive_utc,
    week_bounds,
)


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------

def test_add_months_clamps_to_month_end():
    assert add_months(date(2024, 1, 31), 1) == date(2024, 2, 29)
    assert add_months(date(2023, 1, 31), 1) == date(2023, 2, 28)
    assert add_months(datetime(2024, 11, 15, 9, 30), 3) == datetime(2025, 2, 15, 9, 30)


def test_month_difference_ignores_day():
    assert month_difference(date(2024, 3, 1), date(2024, 1, 31)) == 2
    assert month_difference(date(2025, 1, 1), date(2024, 12, 31)) == 1


def test_js_weekday_starts_on_sunday():
    assert js_weekday(date(2024, 1, 7)) == 0  # Sunday
    assert js_weekday(date(2024, 1, 8)) == 1  # Monday
    assert js_weekday(date(2024, 1, 13)) == 6  # Saturday


def test_week_bounds_run_sunday_to_saturday():
    start, end = week_bounds(datetime(2024, 1, 10, 15, 0))  # Wednesday
    assert start == datetime(2024, 1, 7)
    assert end.date() == date(2024, 1, 13)
    assert end.hour == 23 and end.minute == 59


def test_day_and_month_bounds():
    start, end = day_bounds(datetime(2024, 2, 29, 13, 45))
    assert start == datetime(2024, 2, 29)
    assert end.date() == date(2024, 2, 29)

    start, end = month_bounds(datetime(2024, 2, 10, 8, 0))
    assert start == datetime(2024, 2, 1)
    assert end.date() == date(2024, 2, 29)


def test_to_naive_utc():
    aware = datetime(2024, 5, 1, 12, 0, tzinfo=timezone(timedelta(hours=4)))
    assert to_naive_utc(aware) == datetime(2024, 5, 1, 8, 0)
    assert to_naive_utc(datetime(2024, 5, 1, 12, 0)) == datetime(2024, 5, 1, 12, 0)
    assert to_naive_utc(None) is None


# ---------------------------------------------------------------------------
# Money / geometry
# ---------------------------------------------------------------------------

def test_format_currency():
    assert format_currency(1234.5) == "$1,234.50"
    assert format_currency(1234.5, "AED") == "AED 1,234.50"
    assert format_currency(-10, "USD") == "-$10.00"
    assert format_currency(None) == "$0.00"


def test_money_rounds_and_treats_none_as_zero():
    assert money(None) == 0.0
    assert money(3.14159) == 3.14


def test_haversine_known_distance():
    # One degree of latitude is roughly 111 km.
    distance = haversine_m(25.0, 55.0, 26.0, 55.0)
    assert 110_000 < distance < 112_500
    assert haversine_m(25.0, 55.0, 25.0, 55.0) == 0


# ---------------------------------------------------------------------------
# Security
# ---------------------------------------------------------------------------

def test_password_hash_round_trip():
    hashed = hash_password("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert verify_password("s3cret-pass", hashed)
    assert not verify_password("wrong-pass", hashed)
    assert not verify_password("anything", None)
    assert not verify_password("anything", "not-a-hash")


def test_access_token_claims():
    token = create_access_token(42, "supervisor")
    claims = decode_access_token(token)
    assert claims["sub"] == "42"
    assert claims["role"] == "supervisor"


def test_tampered_or_expired_token_rejected():
    token = create_access_token(1, "admin")
    header, payload, signature = token.split(".")
    forged = create_access_token(2, "admin").split(".")[1]
    assert decode_access_token(f"{header}.{forged}.{signature}") is None
    assert decode_access_token("garbage") is None
    assert decode_access_token(create_access_token(1, "admin", expires_in=-10)) is None


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

def test_error_status_codes():
    assert NotFoundError("x").status_code == 404
    assert ConflictError("x").status_code == 409
    err = SiteTrackError("bad input")
    assert err.status_code == 400
    assert err.detail == "bad input"
    with pytest.raises(SiteTrackError):
        raise NotFoundError("missing")
