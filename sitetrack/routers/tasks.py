from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.database import get_db
from sitetrack.models import Profile
from sitetrack.schemas import TaskAssign, TaskCreate, TaskStatusUpdate, TaskUpdate
from sitetrack.security import get_current_user, require_roles
from sitetrack.services import permission_service, task_service
from sitetrack.utils import to_naive_utc

router = APIRouter(prefix="/api/v1/tasks", tags=["tasks"])


async def _get_visible_task(db: AsyncSession, user: Profile, task_id: int) -> dict:
    task = await task_service.get_task(db, task_id)
    if not task:
        raise HTTPException(status_code=404, detail="Task not found")
    if not await permission_service.filter_tasks_by_access(db, user.id, user.role, [task]):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return task


@router.get("")
async def list_tasks(
    milestone_id: int | None = None,
    status: list[str] | None = Query(None),
    type: list[str] | None = Query(None),
    assignee_id: int | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    recurring: bool = False,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await task_service.get_tasks(
        db,
        current_user,
        milestone_id=milestone_id,
        statuses=status,
        types=type,
        assignee_id=assignee_id,
        start=to_naive_utc(start),
        end=to_naive_utc(end),
        recurring_only=recurring,
    )


@router.get("/by-status")
async def tasks_by_status(
    milestone_id: int | None = None,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    tasks = await task_service.get_tasks(db, current_user, milestone_id=milestone_id)
    return task_service.group_tasks_by_status(tasks)


@router.get("/overdue")
async def overdue_tasks(
    milestone_id: int | None = None,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await task_service.get_overdue_tasks(db, current_user, milestone_id)


@router.get("/upcoming")
async def upcoming_tasks(
    milestone_id: int | None = None,
    days: int = Query(7, ge=1, le=365),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await task_service.get_upcoming_tasks(db, current_user, milestone_id, days)


@router.get("/stats")
async def task_stats(
    milestone_id: int | None = None,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    tasks = await task_service.get_tasks(db, current_user, milestone_id=milestone_id)
    return task_service.get_task_stats(tasks)


@router.get("/{task_id}")
async def get_task(
    task_id: int,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await _get_visible_task(db, current_user, task_id)


@router.post("", status_code=201)
async def create_task(
    data: TaskCreate,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    if not await permission_service.can_user_access_milestone(db, current_user.id, data.milestone_id, current_user.role):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
    return await task_service.create_task(db, data, current_user.id)


@router.put("/{task_id}")
async def update_task(
    task_id: int,
    data: TaskUpdate,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await _get_visible_task(db, current_user, task_id)
    return await task_service.update_task(db, task_id, data)


@router.patch("/{task_id}/status")
async def update_task_status(
    task_id: int,
    data: TaskStatusUpdate,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await _get_visible_task(db, current_user, task_id)
    return await task_service.update_task_status(db, task_id, data.status)


@router.delete("/{task_id}", status_code=204)
async def delete_task(
    task_id: int,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    deleted = await task_service.delete_task(db, task_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Task not found")


@router.put("/{task_id}/assignees")
async def assign_task(
    task_id: int,
    data: TaskAssign,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await _get_visible_task(db, current_user, task_id)
    return await task_service.assign_task_to_users(db, task_id, data.user_ids)


@router.post("/{task_id}/duplicate", status_code=201)
async def duplicate_task(
    task_id: int,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await _get_visible_task(db, current_user, task_id)
    return await task_service.duplicate_task(db, task_id, current_user.id)
