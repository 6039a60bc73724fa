"""
Attendance service: clock-in/out sessions, half-day and leave entries,
daily marking by supervisors, and the approval workflow.

Every record carries the milestone it is billed to (taken from the task
when there is one) and a ``work_date``; budget calculations filter on
those two columns.  Writes that complete a record also append a
``BillingRecord`` priced at the member's hourly rate.
"""
import logging
import math
from datetime import date, datetime, timedelta

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.cache import cache
from sitetrack.errors import ConflictError, NotFoundError, ValidationError
from sitetrack.models import Attendance, BillingRecord, Milestone, Profile, ProjectMember, Task
from sitetrack.services import notification_service
from sitetrack.utils import haversine_m, utcnow

logger = logging.getLogger(__name__)

HALF_DAY_MINUTES = 240
# Hour-based sessions of at least six hours count as a full day.
FULL_DAY_THRESHOLD_MINUTES = 360


def derive_attendance_status(attendance_type: str | None, duration_minutes: int | None) -> str:
    if attendance_type == "full_day":
        return "full_day"
    if attendance_type == "half_day":
        return "half_day"
    if attendance_type == "leave":
        return "absent"
    return "full_day" if (duration_minutes or 0) >= FULL_DAY_THRESHOLD_MINUTES else "half_day"


def _attendance_to_dict(record: Attendance, task_title: str | None = None, user_name: str | None = None) -> dict:
    return {
        "id": record.id,
        "user_id": record.user_id,
        "user_name": user_name,
        "task_id": record.task_id,
        "task_title": task_title,
        "milestone_id": record.milestone_id,
        "work_date": record.work_date.isoformat() if record.work_date else None,
        "clock_in": record.clock_in.isoformat() if record.clock_in else None,
        "clock_out": record.clock_out.isoformat() if record.clock_out else None,
        "duration_minutes": record.duration_minutes,
        "attendance_type": record.attendance_type,
        "attendance_status": record.attendance_status,
        "leave_type": record.leave_type,
        "approved": record.approved,
        "rejected": record.rejected,
        "rejection_reason": record.rejection_reason,
        "created_at": record.created_at.isoformat() if record.created_at else None,
    }


async def _get_task(db: AsyncSession, task_id: int) -> Task:
    task = await db.get(Task, task_id)
    if task is None:
        raise NotFoundError("Task not found")
    return task


async def _create_billing_record(
    db: AsyncSession, record: Attendance, hours: float, rate: float = 0
) -> BillingRecord:
    """Price *hours* at *rate*, or at the member's hourly rate when *rate* is 0."""
    if not rate:
        profile = await db.get(Profile, record.user_id)
        rate = (profile.hourly_rate if profile else 0) or 0
    billing = BillingRecord(
        user_id=record.user_id,
        task_id=record.task_id,
        milestone_id=record.milestone_id,
        attendance_id=record.id,
        hours=hours,
        rate=rate,
        amount=round(hours * rate, 2),
    )
    db.add(billing)
    await db.flush()
    return billing


async def _invalidate(record: Attendance) -> None:
    await cache.invalidate_financials()
    await cache.invalidate_dashboard(record.user_id)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------

async def _open_session(db: AsyncSession, user_id: int) -> Attendance | None:
    q = (
        select(Attendance)
        .where(
            Attendance.user_id == user_id,
            Attendance.clock_in.is_not(None),
            Attendance.clock_out.is_(None),
        )
        .order_by(Attendance.clock_in.desc(), Attendance.id.desc())
        .limit(1)
    )
    return (await db.execute(q)).scalar_one_or_none()


async def is_user_checked_in(db: AsyncSession, user_id: int) -> bool:
    return await _open_session(db, user_id) is not None


async def get_current_session(db: AsyncSession, user_id: int) -> dict | None:
    session = await _open_session(db, user_id)
    if session is None:
        return None
    title = None
    if session.task_id is not None:
        task = await db.get(Task, session.task_id)
        title = task.title if task else None
    return _attendance_to_dict(session, task_title=title)


async def clock_in(
    db: AsyncSession,
    user_id: int,
    task_id: int,
    lat: float | None = None,
    lng: float | None = None,
    now: datetime | None = None,
) -> dict:
    """
    Open an hour-based session on *task_id*.

    When the task defines a geofence the caller's position is required and
    must fall within ``geo_radius_m`` of the task location.
    """
    if await _open_session(db, user_id) is not None:
        raise ConflictError("User is already checked in")

    task = await _get_task(db, task_id)
    if task.geo_lat is not None and task.geo_lng is not None and task.geo_radius_m:
        if lat is None or lng is None:
            raise ValidationError("Location is required to clock in to this task")
        distance = haversine_m(task.geo_lat, task.geo_lng, lat, lng)
        if distance > task.geo_radius_m:
            raise ValidationError(
                f"You are {distance:.0f} m from the task site (allowed {task.geo_radius_m} m)"
            )

    now = now or utcnow()
    record = Attendance(
        user_id=user_id,
        task_id=task.id,
        milestone_id=task.milestone_id,
        work_date=now.date(),
        clock_in=now,
        attendance_type="hour_based",
        geo_lat=lat,
        geo_lng=lng,
        approved=False,
    )
    db.add(record)
    await db.flush()
    logger.info("User %s clocked in on task %s", user_id, task_id)
    return _attendance_to_dict(record, task_title=task.title)


async def clock_out(db: AsyncSession, user_id: int, now: datetime | None = None) -> dict | None:
    """Close the latest open session; returns None when the user is not checked in."""
    session = await _open_session(db, user_id)
    if session is None:
        return None

    now = now or utcnow()
    session.clock_out = now
    session.duration_minutes = max(0, math.floor((now - session.clock_in).total_seconds() / 60))
    if session.attendance_status is None:
        session.attendance_status = derive_attendance_status(session.attendance_type, session.duration_minutes)
    await db.flush()

    await _create_billing_record(db, session, session.duration_minutes / 60)
    await _invalidate(session)
    logger.info("User %s clocked out after %d minutes", user_id, session.duration_minutes)
    return _attendance_to_dict(session)


# ---------------------------------------------------------------------------
# Half-day / leave
# ---------------------------------------------------------------------------

async def create_half_day_attendance(
    db: AsyncSession, user_id: int, task_id: int, start: datetime | None = None
) -> dict:
    task = await _get_task(db, task_id)
    start = start or utcnow()
    record = Attendance(
        user_id=user_id,
        task_id=task.id,
        milestone_id=task.milestone_id,
        work_date=start.date(),
        clock_in=start,
        clock_out=start + timedelta(minutes=HALF_DAY_MINUTES),
        duration_minutes=HALF_DAY_MINUTES,
        attendance_type="half_day",
        attendance_status="half_day",
        approved=False,
    )
    db.add(record)
    await db.flush()
    await _create_billing_record(db, record, HALF_DAY_MINUTES / 60)
    await _invalidate(record)
    return _attendance_to_dict(record, task_title=task.title)


async def create_leave_attendance(
    db: AsyncSession, user_id: int, task_id: int, leave_type: str = "vacation", on: date | None = None
) -> dict:
    """Record a leave day and tell the milestone's supervisors about it."""
    task = await _get_task(db, task_id)
    record = Attendance(
        user_id=user_id,
        task_id=task.id,
        milestone_id=task.milestone_id,
        work_date=on or date.today(),
        duration_minutes=0,
        attendance_type="leave",
        attendance_status="absent",
        leave_type=leave_type,
        approved=False,
    )
    db.add(record)
    await db.flush()
    await _create_billing_record(db, record, 0)

    profile = await db.get(Profile, user_id)
    supervisor_ids = (
        await db.execute(
            select(ProjectMember.user_id).where(
                ProjectMember.milestone_id == task.milestone_id, ProjectMember.role == "supervisor"
            )
        )
    ).scalars().all()
    await notification_service.notify_users(
        db,
        supervisor_ids,
        "Leave Request",
        f"{profile.full_name if profile else 'User'} has requested {leave_type} leave for task: {task.title}",
        {"type": "leave_request", "user_id": user_id, "task_id": task.id, "leave_type": leave_type},
    )
    await _invalidate(record)
    return _attendance_to_dict(record, task_title=task.title)


# ---------------------------------------------------------------------------
# Daily marking + review
# ---------------------------------------------------------------------------

async def mark_daily_attendance(
    db: AsyncSession,
    user_id: int,
    milestone_id: int,
    work_date: date,
    attendance_status: str,
    task_id: int | None = None,
) -> dict:
    """
    Upsert the day's record for a member of a milestone.

    Re-marking an existing day overwrites the status and sends the record
    back for approval.
    """
    if await db.get(Milestone, milestone_id) is None:
        raise NotFoundError("Milestone not found")
    if await db.get(Profile, user_id) is None:
        raise NotFoundError("User not found")
    if task_id is not None:
        task = await _get_task(db, task_id)
        if task.milestone_id != milestone_id:
            raise ValidationError("Task does not belong to this milestone")

    attendance_type = "leave" if attendance_status == "absent" else attendance_status
    result = await db.execute(
        select(Attendance)
        .where(
            Attendance.user_id == user_id,
            Attendance.milestone_id == milestone_id,
            Attendance.work_date == work_date,
        )
        .order_by(Attendance.id)
        .limit(1)
    )
    record = result.scalar_one_or_none()
    if record is None:
        record = Attendance(user_id=user_id, milestone_id=milestone_id, work_date=work_date)
        db.add(record)
    record.task_id = task_id if task_id is not None else record.task_id
    record.attendance_type = attendance_type
    record.attendance_status = attendance_status
    record.approved = False
    record.rejected = False
    record.rejection_reason = None
    record.reviewed_by = None
    record.reviewed_at = None
    await db.flush()
    await _invalidate(record)
    return _attendance_to_dict(record)


async def approve_attendance(db: AsyncSession, attendance_id: int, reviewer_id: int | None = None) -> dict | None:
    record = await db.get(Attendance, attendance_id)
    if record is None:
        return None
    record.approved = True
    record.rejected = False
    record.rejection_reason = None
    record.reviewed_by = reviewer_id
    record.reviewed_at = utcnow()
    await db.flush()
    await _invalidate(record)
    return _attendance_to_dict(record)


async def reject_attendance(
    db: AsyncSession, attendance_id: int, reason: str | None = None, reviewer_id: int | None = None
) -> dict | None:
    """Mark a record rejected; it stays in the history but never counts toward budgets."""
    record = await db.get(Attendance, attendance_id)
    if record is None:
        return None
    record.approved = False
    record.rejected = True
    record.rejection_reason = reason
    record.reviewed_by = reviewer_id
    record.reviewed_at = utcnow()
    await db.flush()
    await _invalidate(record)
    return _attendance_to_dict(record)


# ---------------------------------------------------------------------------
# Queries
# ---------------------------------------------------------------------------

async def _rows_to_dicts(db: AsyncSession, q) -> list[dict]:
    rows = (await db.execute(q)).all()
    return [_attendance_to_dict(record, task_title=title, user_name=name) for record, title, name in rows]


def _listing_query():
    return (
        select(Attendance, Task.title, Profile.full_name)
        .outerjoin(Task, Task.id == Attendance.task_id)
        .join(Profile, Profile.id == Attendance.user_id)
    )


async def get_attendance_summary(
    db: AsyncSession, user_id: int, start: date | None = None, end: date | None = None
) -> dict:
    q = _listing_query().where(Attendance.user_id == user_id)
    if start is not None:
        q = q.where(Attendance.work_date >= start)
    if end is not None:
        q = q.where(Attendance.work_date <= end)
    records = await _rows_to_dicts(db, q.order_by(Attendance.work_date.desc(), Attendance.id.desc()))

    total_minutes = sum(r["duration_minutes"] or 0 for r in records)
    approved_minutes = sum(r["duration_minutes"] or 0 for r in records if r["approved"])
    return {
        "total_records": len(records),
        "total_hours": round(total_minutes / 60, 2),
        "approved_hours": round(approved_minutes / 60, 2),
        "pending_approval": sum(1 for r in records if not r["approved"] and not r["rejected"]),
        "records": records,
    }


async def get_pending_attendance(
    db: AsyncSession, milestone_id: int | None = None, user_ids: list[int] | None = None
) -> list[dict]:
    """Records still awaiting review, newest first, optionally scoped."""
    q = _listing_query().where(Attendance.approved.is_(False), Attendance.rejected.is_(False))
    if milestone_id is not None:
        q = q.where(Attendance.milestone_id == milestone_id)
    if user_ids is not None:
        q = q.where(Attendance.user_id.in_(user_ids))
    return await _rows_to_dicts(db, q.order_by(Attendance.created_at.desc(), Attendance.id.desc()))


async def get_daily_attendance(db: AsyncSession, milestone_id: int, work_date: date) -> list[dict]:
    q = _listing_query().where(Attendance.milestone_id == milestone_id, Attendance.work_date == work_date)
    return await _rows_to_dicts(db, q.order_by(Profile.full_name))
