"""
Recurring task generator.

``process_recurring_tasks`` is a single pass over every open task with a
recurrence config.  For each one it:

1. skips it when a task with the same milestone and title was already
   created inside the current period (day, Sunday-to-Saturday week, or
   calendar month), which makes the job safe to run more than once a day;
2. skips it when the recurrence ``end_date`` lies before today;
3. applies the cadence rule for the recurrence type;
4. copies the task forward by one interval, assignments included.

Each template runs inside its own SAVEPOINT, so a failure rolls back only
that template.  Instances are flushed one at a time so the period check
for the next template already sees them.
"""
import logging
import math
from datetime import date, datetime, timedelta

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.cache import cache
from sitetrack.models import Profile, Task, TaskAssignment
from sitetrack.services import notification_service
from sitetrack.utils import (
    add_months,
    day_bounds,
    js_weekday,
    month_bounds,
    month_difference,
    utcnow,
    week_bounds,
)

logger = logging.getLogger(__name__)

ACTIVE_STATUSES = ("todo", "in_progress")

_PERIOD_BOUNDS = {
    "daily": day_bounds,
    "weekly": week_bounds,
    "monthly": month_bounds,
}

# Stored configs use snake_case; older rows may still carry camelCase keys.
_KEY_ALIASES = {
    "days_of_week": "daysOfWeek",
    "day_of_month": "dayOfMonth",
    "end_date": "endDate",
}


def _config_value(recurrence: dict, key: str):
    value = recurrence.get(key)
    if value is None and key in _KEY_ALIASES:
        value = recurrence.get(_KEY_ALIASES[key])
    return value


def _interval(recurrence: dict) -> int:
    try:
        return max(1, int(recurrence.get("interval") or 1))
    except (TypeError, ValueError):
        return 1


def _end_date(recurrence: dict) -> date | None:
    raw = _config_value(recurrence, "end_date")
    if not raw:
        return None
    if isinstance(raw, date):
        return raw
    return date.fromisoformat(str(raw)[:10])


def is_due(recurrence: dict, created_at: datetime, now: datetime) -> bool:
    """Cadence rule: does a template created at *created_at* fire on *now*?"""
    interval = _interval(recurrence)
    days_diff = math.floor((now - created_at).total_seconds() / 86400)
    kind = recurrence.get("type")

    if kind == "daily":
        return days_diff > 0 and days_diff % interval == 0

    if kind == "weekly":
        days_of_week = _config_value(recurrence, "days_of_week") or [js_weekday(now)]
        if js_weekday(now) not in days_of_week:
            return False
        weeks_diff = days_diff // 7
        return weeks_diff > 0 and weeks_diff % interval == 0

    if kind == "monthly":
        day_of_month = _config_value(recurrence, "day_of_month") or now.day
        if now.day != int(day_of_month):
            return False
        months_diff = month_difference(now, created_at)
        return months_diff > 0 and months_diff % interval == 0

    return False


def next_occurrence(value: datetime | None, recurrence: dict) -> datetime | None:
    """Shift *value* forward by one recurrence interval."""
    if value is None:
        return None
    interval = _interval(recurrence)
    kind = recurrence.get("type")
    if kind == "daily":
        return value + timedelta(days=interval)
    if kind == "weekly":
        return value + timedelta(weeks=interval)
    if kind == "monthly":
        return add_months(value, interval)
    return value


async def _exists_in_current_period(db: AsyncSession, task: Task, now: datetime) -> bool:
    bounds = _PERIOD_BOUNDS.get(task.recurrence.get("type"))
    if bounds is None:
        return False
    start, end = bounds(now)
    q = (
        select(func.count())
        .select_from(Task)
        .where(
            Task.milestone_id == task.milestone_id,
            Task.title == task.title,
            Task.created_at >= start,
            Task.created_at <= end,
        )
    )
    return (await db.execute(q)).scalar_one() > 0


async def should_create_instance(db: AsyncSession, task: Task, now: datetime) -> bool:
    recurrence = task.recurrence or {}
    if await _exists_in_current_period(db, task, now):
        return False
    end_date = _end_date(recurrence)
    if end_date is not None and end_date < now.date():
        return False
    return is_due(recurrence, task.created_at, now)


async def create_instance(db: AsyncSession, task: Task, now: datetime) -> Task:
    recurrence = task.recurrence
    new_start = next_occurrence(task.start_datetime, recurrence)
    new_end = None
    if task.end_datetime is not None:
        if new_start is not None and task.start_datetime is not None:
            new_end = new_start + (task.end_datetime - task.start_datetime)
        else:
            new_end = next_occurrence(task.end_datetime, recurrence)

    instance = Task(
        milestone_id=task.milestone_id,
        title=task.title,
        description=task.description,
        type=task.type,
        status="todo",
        billable=task.billable,
        estimated_hours=task.estimated_hours,
        start_datetime=new_start,
        end_datetime=new_end,
        geo_lat=task.geo_lat,
        geo_lng=task.geo_lng,
        geo_radius_m=task.geo_radius_m,
        recurrence=dict(recurrence),
        created_by=task.created_by,
        created_at=now,
    )
    db.add(instance)
    await db.flush()

    assignee_ids = (
        await db.execute(select(TaskAssignment.user_id).where(TaskAssignment.task_id == task.id))
    ).scalars().all()
    for user_id in assignee_ids:
        db.add(TaskAssignment(task_id=instance.id, user_id=user_id, assigned_at=now))
    await db.flush()
    return instance


async def _notify_supervisors(db: AsyncSession, instances: list[Task]) -> int:
    supervisor_ids = (
        await db.execute(select(Profile.id).where(Profile.role == "supervisor", Profile.status == "active"))
    ).scalars().all()
    return await notification_service.notify_users(
        db,
        supervisor_ids,
        "New Recurring Tasks Created",
        f"{len(instances)} new recurring task instance(s) have been created automatically.",
        {
            "type": "recurring_tasks_created",
            "task_count": len(instances),
            "tasks": [{"id": t.id, "title": t.title} for t in instances],
        },
    )


async def process_recurring_tasks(db: AsyncSession, now: datetime | None = None) -> list[Task]:
    """Generate today's recurring task instances and return them."""
    now = now or utcnow()
    templates = (
        await db.execute(
            select(Task)
            .where(Task.recurrence.is_not(None), Task.status.in_(ACTIVE_STATUSES))
            .order_by(Task.id)
        )
    ).scalars().all()

    created: list[Task] = []
    for task in templates:
        if not task.recurrence:
            continue
        try:
            async with db.begin_nested():
                if await should_create_instance(db, task, now):
                    created.append(await create_instance(db, task, now))
        except Exception:
            logger.exception("Failed to process recurring task %s", task.id)

    if created:
        logger.info("Created %d recurring task instance(s)", len(created))
        await _notify_supervisors(db, created)
        await cache.invalidate_dashboard()
    return created


async def get_recurring_task_stats(db: AsyncSession, milestone_id: int) -> dict:
    tasks = (
        await db.execute(
            select(Task.status, Task.recurrence).where(
                Task.milestone_id == milestone_id, Task.recurrence.is_not(None)
            )
        )
    ).all()
    by_type: dict[str, int] = {}
    active = 0
    for status, recurrence in tasks:
        if not recurrence:
            continue
        if status != "cancelled":
            active += 1
        kind = recurrence.get("type", "custom")
        by_type[kind] = by_type.get(kind, 0) + 1
    return {"total": sum(by_type.values()), "active": active, "by_type": by_type}
