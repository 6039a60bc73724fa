from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.database import get_db
from sitetrack.dependencies import ensure_project_access
from sitetrack.models import Profile
from sitetrack.schemas import ProjectCreate, ProjectUpdate
from sitetrack.security import get_current_user, require_roles
from sitetrack.services import financial_service, milestone_service, payment_service, project_service

router = APIRouter(prefix="/api/v1/projects", tags=["projects"])


@router.get("")
async def list_projects(
    status: str | None = None,
    search: str | None = None,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await project_service.get_projects(db, current_user, status, search)


@router.get("/active-count")
async def active_projects_count(
    _user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    return {"count": await project_service.get_active_projects_count(db)}


@router.get("/{project_id}")
async def get_project(
    project_id: int,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    project = await project_service.get_project(db, project_id, current_user)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    await ensure_project_access(db, current_user, project_id)
    return project


@router.post("", status_code=201)
async def create_project(
    data: ProjectCreate,
    current_user: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await project_service.create_project(db, data, current_user.id)


@router.put("/{project_id}")
async def update_project(
    project_id: int,
    data: ProjectUpdate,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await ensure_project_access(db, current_user, project_id)
    project = await project_service.update_project(db, project_id, data)
    if not project:
        raise HTTPException(status_code=404, detail="Project not found")
    return project


@router.delete("/{project_id}", status_code=204)
async def delete_project(
    project_id: int,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    deleted = await project_service.delete_project(db, project_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Project not found")


@router.get("/{project_id}/milestones")
async def list_project_milestones(
    project_id: int,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await milestone_service.get_milestones_by_project(db, project_id, current_user)


@router.get("/{project_id}/summary")
async def project_summary(
    project_id: int,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await ensure_project_access(db, current_user, project_id)
    summary = await project_service.get_project_summary(db, project_id)
    if not summary:
        raise HTTPException(status_code=404, detail="Project not found")
    return summary


@router.get("/{project_id}/financials")
async def project_financials(
    project_id: int,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    financials = await project_service.get_project_financials(db, project_id)
    if not financials:
        raise HTTPException(status_code=404, detail="Project not found")
    return financials


@router.get("/{project_id}/expenses")
async def project_expenses(
    project_id: int,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await financial_service.get_project_expenses(db, project_id)


@router.get("/{project_id}/payments")
async def project_payments(
    project_id: int,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    return {
        "total": await payment_service.get_project_total_payments(db, project_id),
        "payments": await payment_service.get_project_payment_history(db, project_id),
    }
