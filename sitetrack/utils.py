"""Small date, money and geometry helpers shared by the services."""
import calendar
import math
from datetime import date, datetime, timedelta, timezone

_EARTH_RADIUS_M = 6_371_000


def utcnow() -> datetime:
    """Current UTC time as a naive datetime (all DateTime columns are naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime | None) -> datetime | None:
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def days_in_month(year: int, month: int) -> int:
    return calendar.monthrange(year, month)[1]


def add_months(value: datetime | date, months: int):
    """Shift *value* by *months* calendar months, clamping to the month end."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, days_in_month(year, month))
    return value.replace(year=year, month=month, day=day)


def month_difference(later: datetime | date, earlier: datetime | date) -> int:
    """Whole calendar months between two dates, ignoring the day of month."""
    return (later.year - earlier.year) * 12 + (later.month - earlier.month)


def js_weekday(value: datetime | date) -> int:
    """Weekday numbered 0=Sunday .. 6=Saturday."""
    return (value.weekday() + 1) % 7


def day_bounds(value: datetime) -> tuple[datetime, datetime]:
    start = value.replace(hour=0, minute=0, second=0, microsecond=0)
    return start, start + timedelta(days=1) - timedelta(microseconds=1)


def week_bounds(value: datetime) -> tuple[datetime, datetime]:
    """Sunday 00:00 to Saturday 23:59:59.999999 of the week containing *value*."""
    start = value.replace(hour=0, minute=0, second=0, microsecond=0)
    start -= timedelta(days=js_weekday(value))
    return start, start + timedelta(days=7) - timedelta(microseconds=1)


def month_bounds(value: datetime) -> tuple[datetime, datetime]:
    start = value.replace(day=1, hour=0, minute=0, second=0, microsecond=0)
    end = start.replace(day=days_in_month(value.year, value.month))
    return start, end + timedelta(days=1) - timedelta(microseconds=1)


def haversine_m(lat1: float, lng1: float, lat2: float, lng2: float) -> float:
    """Great-circle distance between two points in metres."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lng2 - lng1)
    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    return 2 * _EARTH_RADIUS_M * math.asin(math.sqrt(a))


def format_currency(amount: float | None, currency: str | None = "USD") -> str:
    """Render *amount* as ``$1,234.50`` or ``AED 1,234.50``."""
    amount = float(amount or 0)
    sign = "-" if amount < 0 else ""
    body = f"{abs(amount):,.2f}"
    if (currency or "USD").upper() == "AED":
        return f"{sign}AED {body}"
    return f"{sign}${body}"


def money(value: float | None) -> float:
    """Round to cents; None counts as zero."""
    return round(float(value or 0), 2)
