"""
Task service: CRUD, assignment, filtering and statistics for tasks.

Assignments live in ``task_assignments`` and are always loaded with one
extra query per call (``_load_assignees``) rather than per task.
"""
import logging
from datetime import datetime, timedelta

from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.cache import cache
from sitetrack.errors import NotFoundError
from sitetrack.models import Attendance, BillingRecord, Milestone, Profile, Task, TaskAssignment
from sitetrack.schemas import TaskCreate, TaskUpdate
from sitetrack.services import attendance_service, notification_service, permission_service
from sitetrack.utils import utcnow

logger = logging.getLogger(__name__)


def _task_to_dict(task: Task, assignees: list[dict] | None = None) -> dict:
    return {
        "id": task.id,
        "milestone_id": task.milestone_id,
        "title": task.title,
        "description": task.description,
        "type": task.type,
        "status": task.status,
        "billable": task.billable,
        "estimated_hours": task.estimated_hours,
        "start_datetime": task.start_datetime.isoformat() if task.start_datetime else None,
        "end_datetime": task.end_datetime.isoformat() if task.end_datetime else None,
        "geo_lat": task.geo_lat,
        "geo_lng": task.geo_lng,
        "geo_radius_m": task.geo_radius_m,
        "recurrence": task.recurrence,
        "created_by": task.created_by,
        "created_at": task.created_at.isoformat() if task.created_at else None,
        "assignees": assignees or [],
    }


async def _load_assignees(db: AsyncSession, task_ids: list[int]) -> dict[int, list[dict]]:
    if not task_ids:
        return {}
    q = (
        select(TaskAssignment.task_id, Profile.id, Profile.full_name)
        .join(Profile, Profile.id == TaskAssignment.user_id)
        .where(TaskAssignment.task_id.in_(task_ids))
        .order_by(TaskAssignment.id)
    )
    assignees: dict[int, list[dict]] = {}
    for task_id, user_id, full_name in (await db.execute(q)).all():
        assignees.setdefault(task_id, []).append({"id": user_id, "full_name": full_name})
    return assignees


async def _serialise(db: AsyncSession, tasks) -> list[dict]:
    tasks = list(tasks)
    assignees = await _load_assignees(db, [t.id for t in tasks])
    return [_task_to_dict(t, assignees.get(t.id)) for t in tasks]


def _recurrence_json(recurrence) -> dict | None:
    return recurrence.model_dump(mode="json", exclude_none=True) if recurrence else None


async def _set_assignments(db: AsyncSession, task_id: int, user_ids: list[int]) -> list[int]:
    """Replace the task's assignment set; returns the ids that were newly added."""
    user_ids = list(dict.fromkeys(user_ids))
    if user_ids:
        found = set(
            (await db.execute(select(Profile.id).where(Profile.id.in_(user_ids)))).scalars().all()
        )
        missing = [uid for uid in user_ids if uid not in found]
        if missing:
            raise NotFoundError(f"Users not found: {', '.join(map(str, missing))}")

    current = set(
        (await db.execute(select(TaskAssignment.user_id).where(TaskAssignment.task_id == task_id))).scalars().all()
    )
    removed = current - set(user_ids)
    if removed:
        await db.execute(
            delete(TaskAssignment).where(TaskAssignment.task_id == task_id, TaskAssignment.user_id.in_(removed))
        )
    added = [uid for uid in user_ids if uid not in current]
    for uid in added:
        db.add(TaskAssignment(task_id=task_id, user_id=uid))
    await db.flush()
    return added


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

async def get_task(db: AsyncSession, task_id: int) -> dict | None:
    task = await db.get(Task, task_id)
    if task is None:
        return None
    return (await _serialise(db, [task]))[0]


async def create_task(db: AsyncSession, data: TaskCreate, created_by: int | None = None) -> dict:
    """
    Create a task, assign it, and notify the assignees.

    ``is_half_day`` / ``is_leave`` additionally record a half-day or leave
    attendance entry for every assignee.
    """
    if await db.get(Milestone, data.milestone_id) is None:
        raise NotFoundError("Milestone not found")

    values = data.model_dump(exclude={"assignee_ids", "is_half_day", "is_leave", "leave_type", "recurrence"})
    task = Task(**values, recurrence=_recurrence_json(data.recurrence), created_by=created_by)
    db.add(task)
    await db.flush()

    added = await _set_assignments(db, task.id, data.assignee_ids)
    if added:
        await notification_service.send_task_assignment_notification(db, task.id, added)

    for user_id in added:
        if data.is_half_day:
            await attendance_service.create_half_day_attendance(db, user_id, task.id, task.start_datetime)
        elif data.is_leave:
            await attendance_service.create_leave_attendance(db, user_id, task.id, data.leave_type)

    await cache.invalidate_dashboard()
    logger.info("Created task %s in milestone %s", task.id, task.milestone_id)
    return await get_task(db, task.id)


async def update_task(db: AsyncSession, task_id: int, data: TaskUpdate) -> dict | None:
    task = await db.get(Task, task_id)
    if task is None:
        return None

    update_data = data.model_dump(exclude_unset=True, exclude={"assignee_ids", "recurrence"})
    for field, value in update_data.items():
        setattr(task, field, value)
    if "recurrence" in data.model_fields_set:
        task.recurrence = _recurrence_json(data.recurrence)
    await db.flush()

    if data.assignee_ids is not None:
        added = await _set_assignments(db, task.id, data.assignee_ids)
        if added:
            await notification_service.send_task_assignment_notification(db, task.id, added)

    await cache.invalidate_dashboard()
    return await get_task(db, task.id)


async def update_task_status(db: AsyncSession, task_id: int, status: str) -> dict | None:
    task = await db.get(Task, task_id)
    if task is None:
        return None
    task.status = status
    await db.flush()
    await cache.invalidate_dashboard()
    return await get_task(db, task.id)


async def delete_task(db: AsyncSession, task_id: int) -> bool:
    """Delete a task and its assignments; attendance history is kept, unlinked."""
    task = await db.get(Task, task_id)
    if task is None:
        return False
    await db.execute(delete(TaskAssignment).where(TaskAssignment.task_id == task_id))
    await db.execute(update(Attendance).where(Attendance.task_id == task_id).values(task_id=None))
    await db.execute(update(BillingRecord).where(BillingRecord.task_id == task_id).values(task_id=None))
    await db.delete(task)
    await db.flush()
    await cache.invalidate_dashboard()
    return True


async def assign_task_to_users(db: AsyncSession, task_id: int, user_ids: list[int]) -> dict | None:
    if await db.get(Task, task_id) is None:
        return None
    added = await _set_assignments(db, task_id, user_ids)
    if added:
        await notification_service.send_task_assignment_notification(db, task_id, added)
    await cache.invalidate_dashboard()
    return await get_task(db, task_id)


async def duplicate_task(db: AsyncSession, task_id: int, created_by: int | None = None) -> dict | None:
    """Copy a task as a fresh, non-recurring ``todo`` with the same assignees."""
    original = await db.get(Task, task_id)
    if original is None:
        return None
    copy = Task(
        milestone_id=original.milestone_id,
        title=f"{original.title} (Copy)",
        description=original.description,
        type=original.type,
        status="todo",
        billable=original.billable,
        estimated_hours=original.estimated_hours,
        start_datetime=original.start_datetime,
        end_datetime=original.end_datetime,
        geo_lat=original.geo_lat,
        geo_lng=original.geo_lng,
        geo_radius_m=original.geo_radius_m,
        recurrence=None,
        created_by=created_by or original.created_by,
    )
    db.add(copy)
    await db.flush()

    assignee_ids = (
        await db.execute(select(TaskAssignment.user_id).where(TaskAssignment.task_id == task_id))
    ).scalars().all()
    for user_id in assignee_ids:
        db.add(TaskAssignment(task_id=copy.id, user_id=user_id))
    await db.flush()
    await cache.invalidate_dashboard()
    return await get_task(db, copy.id)


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------

async def get_tasks(
    db: AsyncSession,
    user: Profile,
    milestone_id: int | None = None,
    statuses: list[str] | None = None,
    types: list[str] | None = None,
    assignee_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    recurring_only: bool = False,
) -> list[dict]:
    """
    Filtered task list visible to *user*.

    The date range applies to ``start_datetime``; tasks without a start
    date are kept.
    """
    q = select(Task).order_by(Task.start_datetime.is_(None), Task.start_datetime, Task.id)
    if milestone_id is not None:
        q = q.where(Task.milestone_id == milestone_id)
    if statuses:
        q = q.where(Task.status.in_(statuses))
    if types:
        q = q.where(Task.type.in_(types))
    if assignee_id is not None:
        q = q.where(
            Task.id.in_(select(TaskAssignment.task_id).where(TaskAssignment.user_id == assignee_id))
        )
    if start is not None:
        q = q.where(or_(Task.start_datetime.is_(None), Task.start_datetime >= start))
    if end is not None:
        q = q.where(or_(Task.start_datetime.is_(None), Task.start_datetime <= end))
    if recurring_only:
        q = q.where(Task.recurrence.is_not(None))

    tasks = (await db.execute(q)).scalars().all()
    tasks = await permission_service.filter_tasks_by_access(db, user.id, user.role, list(tasks))
    return await _serialise(db, tasks)


async def get_overdue_tasks(
    db: AsyncSession, user: Profile, milestone_id: int | None = None, now: datetime | None = None
) -> list[dict]:
    now = now or utcnow()
    tasks = await get_tasks(db, user, milestone_id=milestone_id)
    return [
        t for t in tasks
        if t["status"] != "done" and t["end_datetime"] and datetime.fromisoformat(t["end_datetime"]) < now
    ]


async def get_upcoming_tasks(
    db: AsyncSession,
    user: Profile,
    milestone_id: int | None = None,
    days: int = 7,
    now: datetime | None = None,
) -> list[dict]:
    now = now or utcnow()
    horizon = now + timedelta(days=days)
    tasks = await get_tasks(db, user, milestone_id=milestone_id)
    return [
        t for t in tasks
        if t["status"] != "done"
        and t["start_datetime"]
        and now <= datetime.fromisoformat(t["start_datetime"]) <= horizon
    ]


def get_task_stats(tasks: list[dict], now: datetime | None = None) -> dict:
    now = now or utcnow()
    overdue = sum(
        1 for t in tasks
        if t["status"] != "done" and t["end_datetime"] and datetime.fromisoformat(t["end_datetime"]) < now
    )
    return {
        "total": len(tasks),
        "completed": sum(1 for t in tasks if t["status"] == "done"),
        "in_progress": sum(1 for t in tasks if t["status"] == "in_progress"),
        "overdue": overdue,
        "recurring": sum(1 for t in tasks if t["recurrence"]),
    }


def group_tasks_by_status(tasks: list[dict]) -> dict[str, list[dict]]:
    grouped: dict[str, list[dict]] = {}
    for task in tasks:
        grouped.setdefault(task["status"], []).append(task)
    return grouped
