"""
Budget service: wage configuration and labour-cost calculations.

Design notes
------------
- A member's wage settings come from a per-milestone ``MemberWageConfig``
  override when one exists, otherwise from the profile defaults.
- Attendance-based cost: one approved record is worth the member's
  effective daily rate times 1 (full day), 0.5 (half day) or 0 (absent).
- Monthly-based cost is the fallback used for members with no attendance
  in the window: salary pro-rated over the days covered, or daily rate
  times days.
- Reports are scoped to one milestone because membership, attendance and
  wage overrides are all keyed by milestone.
"""
import logging
from datetime import date

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.cache import cache
from sitetrack.config import settings
from sitetrack.errors import NotFoundError
from sitetrack.models import Attendance, MemberWageConfig, Milestone, Profile, ProjectMember, Project, Task
from sitetrack.schemas import WageConfigUpdate
from sitetrack.utils import days_in_month, money

logger = logging.getLogger(__name__)

STATUS_MULTIPLIERS = {"full_day": 1.0, "half_day": 0.5, "absent": 0.0}

# A record without a status is costed by its duration against an 8h day.
MINUTES_PER_DAY = 480


# ---------------------------------------------------------------------------
# Pure calculations
# ---------------------------------------------------------------------------

def calculate_task_budget(daily_rate: float | None, attendance_status: str | None) -> float:
    return (daily_rate or 0) * STATUS_MULTIPLIERS.get(attendance_status, 0.0)


def calculate_monthly_budget(
    wage_type: str,
    start: date,
    end: date,
    daily_rate: float | None = None,
    monthly_salary: float | None = None,
    working_days: int | None = None,
) -> float:
    """
    Cost of a member over ``start..end`` (inclusive) without attendance data.

    Monthly salaries are pro-rated by the days covered against the smaller
    of the start month's length and the configured working days.
    """
    days = (end - start).days + 1
    working_days = working_days or settings.DEFAULT_WORKING_DAYS_PER_MONTH
    if wage_type == "monthly" and monthly_salary:
        divisor = min(days_in_month(start.year, start.month), working_days)
        return monthly_salary * days / divisor
    if wage_type == "daily" and daily_rate:
        return daily_rate * days
    return 0.0


def effective_daily_rate(config: dict) -> float:
    if config.get("wage_type") == "daily":
        return config.get("daily_rate") or 0.0
    if config.get("monthly_salary"):
        working_days = config.get("working_days_per_month") or settings.DEFAULT_WORKING_DAYS_PER_MONTH
        return config["monthly_salary"] / working_days
    return 0.0


# ---------------------------------------------------------------------------
# Wage configuration
# ---------------------------------------------------------------------------

def _profile_wage_config(profile: Profile) -> dict:
    return {
        "user_id": profile.id,
        "wage_type": profile.wage_type or "daily",
        "daily_rate": profile.daily_rate,
        "monthly_salary": profile.monthly_salary,
        "working_days_per_month": profile.default_working_days_per_month
        or settings.DEFAULT_WORKING_DAYS_PER_MONTH,
        "source": "profile",
    }


def _override_wage_config(override: MemberWageConfig, profile: Profile | None) -> dict:
    fallback_days = profile.default_working_days_per_month if profile else None
    return {
        "user_id": override.user_id,
        "wage_type": override.wage_type,
        "daily_rate": override.daily_rate,
        "monthly_salary": override.monthly_salary,
        "working_days_per_month": override.working_days_per_month
        or fallback_days
        or settings.DEFAULT_WORKING_DAYS_PER_MONTH,
        "source": "milestone",
        "milestone_id": override.milestone_id,
    }


async def get_member_wage_config(
    db: AsyncSession, user_id: int, milestone_id: int | None = None
) -> dict | None:
    profile = await db.get(Profile, user_id)
    if profile is None:
        return None
    if milestone_id is not None:
        result = await db.execute(
            select(MemberWageConfig).where(
                MemberWageConfig.user_id == user_id, MemberWageConfig.milestone_id == milestone_id
            )
        )
        override = result.scalar_one_or_none()
        if override is not None:
            return _override_wage_config(override, profile)
    return _profile_wage_config(profile)


async def _load_wage_configs(db: AsyncSession, milestone_id: int, user_ids) -> dict[int, dict]:
    """Wage configs for many users in two queries."""
    user_ids = list(set(user_ids))
    if not user_ids:
        return {}
    profiles = {
        p.id: p
        for p in (await db.execute(select(Profile).where(Profile.id.in_(user_ids)))).scalars().all()
    }
    overrides = (
        await db.execute(
            select(MemberWageConfig).where(
                MemberWageConfig.milestone_id == milestone_id, MemberWageConfig.user_id.in_(user_ids)
            )
        )
    ).scalars().all()

    configs = {uid: _profile_wage_config(p) for uid, p in profiles.items()}
    for override in overrides:
        configs[override.user_id] = _override_wage_config(override, profiles.get(override.user_id))
    return configs


async def update_member_wage_config(db: AsyncSession, user_id: int, data: WageConfigUpdate) -> dict:
    """
    Upsert the milestone override when ``data.milestone_id`` is given,
    otherwise update the profile's default wage settings.
    """
    profile = await db.get(Profile, user_id)
    if profile is None:
        raise NotFoundError("User not found")

    if data.milestone_id is not None:
        if await db.get(Milestone, data.milestone_id) is None:
            raise NotFoundError("Milestone not found")
        result = await db.execute(
            select(MemberWageConfig).where(
                MemberWageConfig.user_id == user_id, MemberWageConfig.milestone_id == data.milestone_id
            )
        )
        override = result.scalar_one_or_none()
        if override is None:
            override = MemberWageConfig(user_id=user_id, milestone_id=data.milestone_id)
            db.add(override)
        override.wage_type = data.wage_type
        override.daily_rate = data.daily_rate
        override.monthly_salary = data.monthly_salary
        override.working_days_per_month = data.working_days_per_month
        await db.flush()
        await cache.invalidate_financials()
        return _override_wage_config(override, profile)

    profile.wage_type = data.wage_type
    profile.daily_rate = data.daily_rate
    profile.monthly_salary = data.monthly_salary
    if data.working_days_per_month:
        profile.default_working_days_per_month = data.working_days_per_month
    await db.flush()
    await cache.invalidate_financials()
    return _profile_wage_config(profile)


# ---------------------------------------------------------------------------
# Milestone / member budgets
# ---------------------------------------------------------------------------

async def calculate_milestone_budget(db: AsyncSession, milestone_id: int) -> float:
    """Labour cost of all approved attendance recorded against the milestone."""
    records = (
        await db.execute(
            select(Attendance).where(Attendance.milestone_id == milestone_id, Attendance.approved.is_(True))
        )
    ).scalars().all()
    if not records:
        return 0.0

    configs = await _load_wage_configs(db, milestone_id, [r.user_id for r in records])
    total = 0.0
    for record in records:
        rate = effective_daily_rate(configs.get(record.user_id, {}))
        if record.attendance_status is None:
            total += rate * (record.duration_minutes or 0) / MINUTES_PER_DAY
        else:
            total += calculate_task_budget(rate, record.attendance_status)
    return money(total)


async def _milestone_window(db: AsyncSession, milestone: Milestone) -> tuple[date, date]:
    """Milestone dates, falling back to the project's, then to today."""
    start, end = milestone.start_date, milestone.end_date
    if start is None or end is None:
        project = await db.get(Project, milestone.project_id)
        start = start or (project.start_date if project else None)
        end = end or (project.end_date if project else None)
    today = date.today()
    return start or today, end or today


def _attendance_window_filters(milestone_id: int, user_id: int | None, start: date | None, end: date | None):
    filters = [Attendance.milestone_id == milestone_id]
    if user_id is not None:
        filters.append(Attendance.user_id == user_id)
    if start is not None:
        filters.append(Attendance.work_date >= start)
    if end is not None:
        filters.append(Attendance.work_date <= end)
    return filters


def _summarise_member(profile: Profile | None, config: dict, records, start: date, end: date) -> dict:
    rate = effective_daily_rate(config)
    counts = {"full_day": 0, "half_day": 0, "absent": 0}
    task_budget = 0.0
    for record in records:
        if not record.approved:
            continue
        task_budget += calculate_task_budget(rate, record.attendance_status)
        if record.attendance_status in counts:
            counts[record.attendance_status] += 1

    monthly_budget = calculate_monthly_budget(
        config["wage_type"],
        start,
        end,
        config.get("daily_rate"),
        config.get("monthly_salary"),
        config.get("working_days_per_month"),
    )
    has_attendance_data = len(records) > 0
    return {
        "user_id": config["user_id"],
        "user_name": profile.full_name if profile else "Unknown",
        "wage_type": config["wage_type"],
        "daily_rate": config.get("daily_rate"),
        "monthly_salary": config.get("monthly_salary"),
        "effective_daily_rate": money(rate),
        "total_full_days": counts["full_day"],
        "total_half_days": counts["half_day"],
        "total_absent_days": counts["absent"],
        "total_task_budget": money(task_budget),
        "monthly_budget": money(monthly_budget),
        "final_budget": money(task_budget if has_attendance_data else monthly_budget),
        "has_attendance_data": has_attendance_data,
    }


async def calculate_member_budget(
    db: AsyncSession,
    user_id: int,
    milestone_id: int,
    start: date | None = None,
    end: date | None = None,
) -> dict | None:
    """
    Budget summary for one member of a milestone.

    ``has_attendance_data`` counts every record in the window, approved or
    not, while the day counts and task budget only use approved ones.
    """
    milestone = await db.get(Milestone, milestone_id)
    if milestone is None:
        return None
    config = await get_member_wage_config(db, user_id, milestone_id)
    if config is None:
        return None

    default_start, default_end = await _milestone_window(db, milestone)
    start, end = start or default_start, end or default_end
    records = (
        await db.execute(select(Attendance).where(*_attendance_window_filters(milestone_id, user_id, start, end)))
    ).scalars().all()
    profile = await db.get(Profile, user_id)
    return _summarise_member(profile, config, records, start, end)


async def get_detailed_task_budgets(
    db: AsyncSession,
    milestone_id: int,
    user_id: int | None = None,
    start: date | None = None,
    end: date | None = None,
) -> list[dict]:
    """One line per approved attendance record with its computed cost."""
    q = (
        select(Attendance, Task.title, Profile.full_name)
        .outerjoin(Task, Task.id == Attendance.task_id)
        .join(Profile, Profile.id == Attendance.user_id)
        .where(*_attendance_window_filters(milestone_id, user_id, start, end), Attendance.approved.is_(True))
        .order_by(Attendance.work_date, Attendance.id)
    )
    rows = (await db.execute(q)).all()
    configs = await _load_wage_configs(db, milestone_id, [r[0].user_id for r in rows])

    details = []
    for record, task_title, user_name in rows:
        config = configs.get(record.user_id, {"wage_type": "daily"})
        rate = effective_daily_rate(config)
        details.append({
            "attendance_id": record.id,
            "task_id": record.task_id,
            "task_title": task_title or "Daily attendance",
            "user_id": record.user_id,
            "user_name": user_name,
            "wage_type": config["wage_type"],
            "attendance_status": record.attendance_status,
            "daily_rate": money(rate),
            "calculated_amount": money(calculate_task_budget(rate, record.attendance_status)),
            "date": record.work_date.isoformat(),
        })
    return details


async def generate_budget_report(
    db: AsyncSession,
    milestone_id: int,
    user_id: int | None = None,
    start: date | None = None,
    end: date | None = None,
    wage_type: str | None = None,
) -> dict | None:
    milestone = await db.get(Milestone, milestone_id)
    if milestone is None:
        return None
    project = await db.get(Project, milestone.project_id)

    default_start, default_end = await _milestone_window(db, milestone)
    window_start, window_end = start or default_start, end or default_end

    member_q = (
        select(ProjectMember.user_id, Profile)
        .join(Profile, Profile.id == ProjectMember.user_id)
        .where(ProjectMember.milestone_id == milestone_id)
        .order_by(Profile.full_name)
    )
    if user_id is not None:
        member_q = member_q.where(ProjectMember.user_id == user_id)
    members = (await db.execute(member_q)).all()

    configs = await _load_wage_configs(db, milestone_id, [uid for uid, _ in members])
    records = (
        await db.execute(
            select(Attendance).where(*_attendance_window_filters(milestone_id, user_id, window_start, window_end))
        )
    ).scalars().all()
    by_user: dict[int, list] = {}
    for record in records:
        by_user.setdefault(record.user_id, []).append(record)

    summaries = []
    for uid, profile in members:
        config = configs[uid]
        if wage_type and config["wage_type"] != wage_type:
            continue
        summaries.append(_summarise_member(profile, config, by_user.get(uid, []), window_start, window_end))

    task_budgets = await get_detailed_task_budgets(db, milestone_id, user_id, window_start, window_end)

    return {
        "milestone_id": milestone.id,
        "milestone_name": milestone.name,
        "project_id": milestone.project_id,
        "project_name": project.name if project else None,
        "currency": project.currency if project else settings.DEFAULT_CURRENCY,
        "start_date": window_start.isoformat(),
        "end_date": window_end.isoformat(),
        "total_budget_allocated": money(milestone.budget),
        "total_budget_spent": money(sum(s["final_budget"] for s in summaries)),
        "member_summaries": summaries,
        "task_budgets": task_budgets,
    }


# ---------------------------------------------------------------------------
# Attendance entry points used by the budget screens
# ---------------------------------------------------------------------------

async def record_attendance(
    db: AsyncSession, user_id: int, task_id: int, attendance_status: str, work_date: date | None = None
) -> dict:
    """Insert an unapproved attendance row for a task and return its prospective cost."""
    task = await db.get(Task, task_id)
    if task is None:
        return {"success": False, "calculated_budget": 0.0}
    config = await get_member_wage_config(db, user_id, task.milestone_id)
    if config is None:
        return {"success": False, "calculated_budget": 0.0}

    record = Attendance(
        user_id=user_id,
        task_id=task_id,
        milestone_id=task.milestone_id,
        work_date=work_date or date.today(),
        attendance_type=attendance_status if attendance_status != "absent" else "leave",
        attendance_status=attendance_status,
        approved=False,
    )
    db.add(record)
    await db.flush()
    return {
        "success": True,
        "attendance_id": record.id,
        "calculated_budget": money(calculate_task_budget(effective_daily_rate(config), attendance_status)),
    }


async def update_attendance(db: AsyncSession, attendance_id: int, attendance_status: str) -> dict:
    record = await db.get(Attendance, attendance_id)
    if record is None or record.milestone_id is None:
        return {"success": False, "calculated_budget": 0.0}
    config = await get_member_wage_config(db, record.user_id, record.milestone_id)
    if config is None:
        return {"success": False, "calculated_budget": 0.0}

    record.attendance_status = attendance_status
    await db.flush()
    await cache.invalidate_financials()
    return {
        "success": True,
        "attendance_id": record.id,
        "calculated_budget": money(calculate_task_budget(effective_daily_rate(config), attendance_status)),
    }
