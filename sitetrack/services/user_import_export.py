"""
CSV import and export of user profiles.

Exports and the import template carry a few preamble lines above the
header row, so the parser scans for the header instead of assuming it is
the first line; an exported file can be edited and imported back.
"""
import csv
import io
import logging
import math
import re
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.errors import ValidationError
from sitetrack.models import Profile

logger = logging.getLogger(__name__)

EXPORT_COLUMNS = [
    "Full Name",
    "Email",
    "Role",
    "Status",
    "Wage Type",
    "Daily Rate",
    "Monthly Salary",
    "Working Days Per Month",
    "Created At",
]
TEMPLATE_COLUMNS = EXPORT_COLUMNS[:-1]

TEMPLATE_EXAMPLES = [
    ["John Doe", "john@example.com", "worker", "active", "daily", "100", "", ""],
    ["Jane Smith", "jane@example.com", "supervisor", "active", "monthly", "", "3000", "25"],
    ["Bob Johnson", "bob@example.com", "worker", "active", "daily", "150", "", ""],
]

IMPORTABLE_ROLES = ("admin", "supervisor", "worker")
_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def _write_rows(rows: list[list]) -> str:
    buffer = io.StringIO()
    writer = csv.writer(buffer, lineterminator="\n")
    writer.writerows(rows)
    return buffer.getvalue()


def _number_cell(value) -> str:
    return "" if not value else f"{value:g}" if isinstance(value, float) else str(value)


# ---------------------------------------------------------------------------
# Export
# ---------------------------------------------------------------------------

def export_users_csv(users: list[dict], generated_at: datetime | None = None) -> str:
    """Render serialised profiles as the ``User Information`` CSV."""
    generated_at = generated_at or datetime.now()
    rows: list[list] = [
        [f"User Export - {generated_at:%Y-%m-%d %H:%M:%S}"],
        [],
        ["User Information"],
        EXPORT_COLUMNS,
    ]
    for user in users:
        created_at = user.get("created_at") or ""
        rows.append([
            user.get("full_name") or "",
            user.get("email") or "",
            user.get("role") or "",
            user.get("status") or "",
            user.get("wage_type") or "",
            _number_cell(user.get("daily_rate")),
            _number_cell(user.get("monthly_salary")),
            _number_cell(user.get("default_working_days_per_month")),
            str(created_at)[:10],
        ])
    return _write_rows(rows)


def generate_user_template(generated_at: datetime | None = None) -> str:
    generated_at = generated_at or datetime.now()
    rows: list[list] = [
        ["User Import Template"],
        [f"Generated on: {generated_at:%Y-%m-%d %H:%M:%S}"],
        [],
        ["Instructions:"],
        ["1. Fill in the required fields (Full Name, Email)"],
        ["2. Optional fields: Role, Status, Wage Type, Daily Rate, Monthly Salary, Working Days"],
        ["3. Save as CSV and upload"],
        [],
        TEMPLATE_COLUMNS,
        *TEMPLATE_EXAMPLES,
    ]
    return _write_rows(rows)


# ---------------------------------------------------------------------------
# Import
# ---------------------------------------------------------------------------

def _normalise_header(cell: str) -> str:
    return cell.strip().lower().replace(" ", "_")


def _find_column(headers: list[str], *needles: str) -> int:
    for index, header in enumerate(headers):
        if any(needle in header for needle in needles):
            return index
    return -1


def _to_number(raw: str, cast=float):
    """Empty cells become None; unparsable ones become NaN so validation flags them."""
    raw = raw.strip()
    if not raw:
        return None
    try:
        return cast(float(raw)) if cast is int else cast(raw)
    except (ValueError, OverflowError):
        return math.nan


def parse_user_csv(text: str) -> list[dict]:
    """
    Parse an uploaded CSV into user dicts.

    The header row is the first row containing a ``name``/``full_name``
    column and an ``email`` column.  Rows without a name or email are
    dropped; role and status default to ``worker`` and ``active``.
    """
    rows = list(csv.reader(io.StringIO(text.lstrip("\ufeff"))))

    header_index = None
    for index, row in enumerate(rows):
        headers = [_normalise_header(cell) for cell in row]
        if ("full_name" in headers or "name" in headers) and "email" in headers:
            header_index = index
            break
    if header_index is None:
        raise ValidationError("Required columns (name, email) not found in CSV")

    headers = [_normalise_header(cell) for cell in rows[header_index]]
    columns = {
        "full_name": _find_column(headers, "name"),
        "email": _find_column(headers, "email"),
        "role": _find_column(headers, "role"),
        "status": _find_column(headers, "status"),
        "wage_type": _find_column(headers, "wage_type"),
        "daily_rate": _find_column(headers, "daily_rate"),
        "monthly_salary": _find_column(headers, "monthly_salary"),
        "working_days": _find_column(headers, "working_days"),
    }

    def cell(values: list[str], key: str) -> str:
        index = columns[key]
        return values[index].strip() if 0 <= index < len(values) else ""

    users: list[dict] = []
    for values in rows[header_index + 1:]:
        if not any(v.strip() for v in values):
            continue
        user = {
            "full_name": cell(values, "full_name"),
            "email": cell(values, "email"),
            "role": cell(values, "role") or "worker",
            "status": cell(values, "status") or "active",
        }
        if cell(values, "wage_type"):
            user["wage_type"] = cell(values, "wage_type")
        daily_rate = _to_number(cell(values, "daily_rate"))
        if daily_rate is not None:
            user["daily_rate"] = daily_rate
        monthly_salary = _to_number(cell(values, "monthly_salary"))
        if monthly_salary is not None:
            user["monthly_salary"] = monthly_salary
        working_days = _to_number(cell(values, "working_days"), int)
        if working_days is not None:
            user["default_working_days_per_month"] = working_days

        if user["full_name"] and user["email"]:
            users.append(user)
    return users


def _is_bad_number(value) -> bool:
    return value is not None and (isinstance(value, float) and math.isnan(value) or value < 0)


def validate_user_data(users: list[dict]) -> dict:
    """Split parsed rows into ``valid`` ones and ``invalid`` ones with their errors."""
    valid: list[dict] = []
    invalid: list[dict] = []

    for user in users:
        errors: list[str] = []

        if not (user.get("full_name") or "").strip():
            errors.append("Full name is required")
        email = (user.get("email") or "").strip()
        if not email:
            errors.append("Email is required")
        elif not _EMAIL_RE.match(email):
            errors.append("Invalid email format")

        if user.get("role") and user["role"] not in IMPORTABLE_ROLES:
            errors.append("Invalid role. Must be admin, supervisor, or worker")
        if user.get("status") and user["status"] not in ("active", "inactive"):
            errors.append("Invalid status. Must be active or inactive")

        wage_type = user.get("wage_type")
        if wage_type and wage_type not in ("daily", "monthly"):
            errors.append("Invalid wage type. Must be daily or monthly")
        if wage_type == "daily" and not user.get("daily_rate"):
            errors.append("Daily rate is required for daily wage type")
        if wage_type == "monthly" and not user.get("monthly_salary"):
            errors.append("Monthly salary is required for monthly wage type")

        if _is_bad_number(user.get("daily_rate")):
            errors.append("Daily rate must be a positive number")
        if _is_bad_number(user.get("monthly_salary")):
            errors.append("Monthly salary must be a positive number")
        working_days = user.get("default_working_days_per_month")
        if working_days is not None and (
            isinstance(working_days, float) and math.isnan(working_days) or not 1 <= working_days <= 31
        ):
            errors.append("Working days per month must be between 1 and 31")

        if errors:
            invalid.append({"user": user, "errors": errors})
        else:
            valid.append(user)

    return {"valid": valid, "invalid": invalid}


async def import_users(db: AsyncSession, users: list[dict]) -> dict:
    """
    Create a profile for each validated row.

    Emails that already exist (or repeat inside the file) are reported in
    ``skipped`` rather than failing the whole import.
    """
    emails = [u["email"].strip().lower() for u in users]
    existing = set()
    if emails:
        result = await db.execute(select(Profile.email).where(Profile.email.in_(emails)))
        existing = set(result.scalars().all())

    created: list[dict] = []
    skipped: list[dict] = []
    for user, email in zip(users, emails):
        if email in existing:
            skipped.append({"email": email, "reason": "Email already exists"})
            continue
        profile = Profile(
            full_name=user["full_name"].strip(),
            email=email,
            role=user.get("role") or "worker",
            status=user.get("status") or "active",
            wage_type=user.get("wage_type") or "daily",
            daily_rate=user.get("daily_rate"),
            monthly_salary=user.get("monthly_salary"),
            default_working_days_per_month=user.get("default_working_days_per_month") or 26,
        )
        db.add(profile)
        existing.add(email)
        created.append(profile)

    await db.flush()
    logger.info("Imported %d user(s), skipped %d", len(created), len(skipped))
    return {
        "created": [{"id": p.id, "full_name": p.full_name, "email": p.email} for p in created],
        "skipped": skipped,
    }
