from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.database import get_db
from sitetrack.dependencies import DateRange
from sitetrack.models import Attendance, Profile
from sitetrack.schemas import AttendanceReject, ClockIn, DailyAttendanceMark, HalfDayCreate, LeaveCreate
from sitetrack.security import get_current_user, require_roles
from sitetrack.services import attendance_service, permission_service

router = APIRouter(prefix="/api/v1/attendance", tags=["attendance"])


async def _check_can_manage(db: AsyncSession, user: Profile, target_user_id: int) -> None:
    if not await permission_service.can_manage_user(db, user.id, user.role, target_user_id):
        raise HTTPException(status_code=403, detail="Insufficient permissions")


async def _check_can_review(db: AsyncSession, reviewer: Profile, attendance_id: int) -> None:
    record = await db.get(Attendance, attendance_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Attendance record not found")
    if record.user_id == reviewer.id and not permission_service.is_admin(reviewer.role):
        raise HTTPException(status_code=403, detail="You cannot review your own attendance")
    await _check_can_manage(db, reviewer, record.user_id)


# --- Sessions ---

@router.post("/clock-in", status_code=201)
async def clock_in(
    data: ClockIn,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await attendance_service.clock_in(db, current_user.id, data.task_id, data.lat, data.lng)


@router.post("/clock-out")
async def clock_out(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    record = await attendance_service.clock_out(db, current_user.id)
    if not record:
        raise HTTPException(status_code=404, detail="No open attendance session")
    return record


@router.get("/current")
async def current_session(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    session = await attendance_service.get_current_session(db, current_user.id)
    return {"checked_in": session is not None, "session": session}


# --- Entries ---

@router.post("/half-day", status_code=201)
async def create_half_day(
    data: HalfDayCreate,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _check_can_manage(db, current_user, data.user_id)
    return await attendance_service.create_half_day_attendance(db, data.user_id, data.task_id, data.start)


@router.post("/leave", status_code=201)
async def create_leave(
    data: LeaveCreate,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _check_can_manage(db, current_user, data.user_id)
    return await attendance_service.create_leave_attendance(db, data.user_id, data.task_id, data.leave_type)


@router.put("/daily")
async def mark_daily_attendance(
    data: DailyAttendanceMark,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    if not await permission_service.can_user_access_milestone(db, current_user.id, data.milestone_id, current_user.role):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return await attendance_service.mark_daily_attendance(
        db, data.user_id, data.milestone_id, data.work_date, data.status, data.task_id
    )


@router.get("/daily")
async def daily_attendance(
    milestone_id: int,
    work_date: date,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    if not await permission_service.can_user_access_milestone(db, current_user.id, milestone_id, current_user.role):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return await attendance_service.get_daily_attendance(db, milestone_id, work_date)


# --- Review ---

@router.get("/pending")
async def pending_attendance(
    milestone_id: int | None = None,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    user_ids = None
    if not permission_service.is_admin(current_user.role):
        user_ids = [
            uid for uid in await permission_service.get_team_member_ids(db, current_user.id, current_user.role)
            if uid != current_user.id
        ]
    return await attendance_service.get_pending_attendance(db, milestone_id, user_ids)


@router.post("/{attendance_id}/approve")
async def approve_attendance(
    attendance_id: int,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await _check_can_review(db, current_user, attendance_id)
    return await attendance_service.approve_attendance(db, attendance_id, current_user.id)


@router.post("/{attendance_id}/reject")
async def reject_attendance(
    attendance_id: int,
    data: AttendanceReject,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await _check_can_review(db, current_user, attendance_id)
    return await attendance_service.reject_attendance(db, attendance_id, data.reason, current_user.id)


# --- Reporting ---

@router.get("/summary")
async def attendance_summary(
    user_id: int | None = None,
    period: DateRange = Depends(),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    target = user_id or current_user.id
    await _check_can_manage(db, current_user, target)
    return await attendance_service.get_attendance_summary(db, target, period.start, period.end)
