from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.database import get_db
from sitetrack.models import Profile
from sitetrack.security import get_current_user
from sitetrack.services import dashboard_service

router = APIRouter(prefix="/api/v1/dashboard", tags=["dashboard"])


@router.get("")
async def worker_dashboard(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await dashboard_service.get_worker_dashboard(db, current_user.id)


@router.get("/stats")
async def worker_stats(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await dashboard_service.get_worker_task_stats(db, current_user.id)


@router.get("/projects")
async def worker_projects(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await dashboard_service.get_worker_projects(db, current_user.id)


@router.get("/milestones")
async def worker_milestones(
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await dashboard_service.get_worker_milestones(db, current_user.id)


@router.get("/recent-tasks")
async def worker_recent_tasks(
    limit: int = Query(5, ge=1, le=50),
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await dashboard_service.get_worker_recent_tasks(db, current_user.id, limit)
