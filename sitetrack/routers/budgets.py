from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.database import get_db
from sitetrack.dependencies import DateRange, ensure_milestone_access
from sitetrack.models import Profile
from sitetrack.schemas import AttendanceStatusUpdate, BudgetAttendanceCreate, WageType
from sitetrack.security import require_roles
from sitetrack.services import budget_service

router = APIRouter(prefix="/api/v1/budgets", tags=["budgets"])


@router.get("/milestones/{milestone_id}")
async def budget_report(
    milestone_id: int,
    user_id: int | None = None,
    wage_type: WageType | None = None,
    period: DateRange = Depends(),
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await ensure_milestone_access(db, current_user, milestone_id)
    report = await budget_service.generate_budget_report(db, milestone_id, user_id, period.start, period.end, wage_type)
    if not report:
        raise HTTPException(status_code=404, detail="Milestone not found")
    return report


@router.get("/milestones/{milestone_id}/spent")
async def milestone_spent(
    milestone_id: int,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await ensure_milestone_access(db, current_user, milestone_id)
    return {
        "milestone_id": milestone_id,
        "total_spent": await budget_service.calculate_milestone_budget(db, milestone_id),
    }


@router.get("/milestones/{milestone_id}/members/{user_id}")
async def member_budget(
    milestone_id: int,
    user_id: int,
    period: DateRange = Depends(),
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await ensure_milestone_access(db, current_user, milestone_id)
    summary = await budget_service.calculate_member_budget(db, user_id, milestone_id, period.start, period.end)
    if not summary:
        raise HTTPException(status_code=404, detail="Milestone or user not found")
    return summary


@router.post("/attendance", status_code=201)
async def record_attendance(
    data: BudgetAttendanceCreate,
    _user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    return await budget_service.record_attendance(db, data.user_id, data.task_id, data.status, data.work_date)


@router.put("/attendance/{attendance_id}")
async def update_attendance(
    attendance_id: int,
    data: AttendanceStatusUpdate,
    _user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    return await budget_service.update_attendance(db, attendance_id, data.status)
