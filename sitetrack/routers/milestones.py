from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.database import get_db
from sitetrack.dependencies import ensure_milestone_access, ensure_project_access
from sitetrack.models import Profile
from sitetrack.schemas import MemberCreate, MilestoneCreate, MilestoneUpdate
from sitetrack.security import get_current_user, require_roles
from sitetrack.services import (
    financial_service,
    milestone_service,
    notification_service,
    recurring_task_service,
)

router = APIRouter(prefix="/api/v1/milestones", tags=["milestones"])


@router.post("", status_code=201)
async def create_milestone(
    data: MilestoneCreate,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await ensure_project_access(db, current_user, data.project_id)
    return await milestone_service.create_milestone(db, data, current_user.id)


@router.get("/{milestone_id}")
async def get_milestone(
    milestone_id: int,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    milestone = await milestone_service.get_milestone(db, milestone_id)
    if not milestone:
        raise HTTPException(status_code=404, detail="Milestone not found")
    await ensure_milestone_access(db, current_user, milestone_id)
    return milestone


@router.get("/{milestone_id}/project")
async def get_milestone_with_project(
    milestone_id: int,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    milestone = await milestone_service.get_milestone_with_project(db, milestone_id)
    if not milestone:
        raise HTTPException(status_code=404, detail="Milestone not found")
    await ensure_milestone_access(db, current_user, milestone_id)
    return milestone


@router.put("/{milestone_id}")
async def update_milestone(
    milestone_id: int,
    data: MilestoneUpdate,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await ensure_milestone_access(db, current_user, milestone_id)
    milestone = await milestone_service.update_milestone(db, milestone_id, data)
    if not milestone:
        raise HTTPException(status_code=404, detail="Milestone not found")
    return milestone


@router.delete("/{milestone_id}", status_code=204)
async def delete_milestone(
    milestone_id: int,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    deleted = await milestone_service.delete_milestone(db, milestone_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Milestone not found")


# --- Members ---

@router.get("/{milestone_id}/members")
async def list_members(
    milestone_id: int,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await ensure_milestone_access(db, current_user, milestone_id)
    return await milestone_service.get_members(db, milestone_id)


@router.post("/{milestone_id}/members", status_code=201)
async def add_member(
    milestone_id: int,
    data: MemberCreate,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await ensure_milestone_access(db, current_user, milestone_id)
    return await milestone_service.add_member(db, milestone_id, data.user_id, data.role)


@router.delete("/{milestone_id}/members/{user_id}", status_code=204)
async def remove_member(
    milestone_id: int,
    user_id: int,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await ensure_milestone_access(db, current_user, milestone_id)
    removed = await milestone_service.remove_member(db, milestone_id, user_id)
    if not removed:
        raise HTTPException(status_code=404, detail="Member not found")


# --- Progress and money ---

@router.get("/{milestone_id}/progress")
async def milestone_progress(
    milestone_id: int,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await ensure_milestone_access(db, current_user, milestone_id)
    return await milestone_service.calculate_completion_percentage(db, milestone_id)


@router.get("/{milestone_id}/wage-summary")
async def milestone_wage_summary(
    milestone_id: int,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await ensure_milestone_access(db, current_user, milestone_id)
    summary = await milestone_service.get_milestone_wage_summary(db, milestone_id)
    if not summary:
        raise HTTPException(status_code=404, detail="Milestone not found")
    return summary


@router.get("/{milestone_id}/expenses")
async def milestone_expenses(
    milestone_id: int,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    return {
        "total": await milestone_service.get_milestone_expense_total(db, milestone_id),
        "expenses": await financial_service.get_milestone_expenses(db, milestone_id),
    }


@router.get("/{milestone_id}/can-invoice")
async def can_generate_invoice(
    milestone_id: int,
    _user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    return await milestone_service.can_generate_invoice(db, milestone_id)


@router.get("/{milestone_id}/recurring-stats")
async def recurring_task_stats(
    milestone_id: int,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await ensure_milestone_access(db, current_user, milestone_id)
    return await recurring_task_service.get_recurring_task_stats(db, milestone_id)


@router.post("/{milestone_id}/attendance-reminder")
async def send_attendance_reminder(
    milestone_id: int,
    _user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    return {"sent": await notification_service.send_daily_attendance_reminder(db, milestone_id)}
