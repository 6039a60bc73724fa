"""
Project service: site projects and their money roll-ups.
"""
import logging

from sqlalchemy import delete, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sitetrack.cache import cache, project_summary_key
from sitetrack.config import settings
from sitetrack.models import Expense, Invoice, Milestone, Profile, Project
from sitetrack.schemas import ProjectCreate, ProjectUpdate
from sitetrack.services import financial_service, milestone_service, permission_service
from sitetrack.utils import money

logger = logging.getLogger(__name__)


def _project_to_dict(project: Project) -> dict:
    return {
        "id": project.id,
        "name": project.name,
        "description": project.description,
        "site_location": project.site_location,
        "site_address": project.site_address,
        "start_date": project.start_date.isoformat() if project.start_date else None,
        "end_date": project.end_date.isoformat() if project.end_date else None,
        "total_budget": project.total_budget,
        "received_amount": project.received_amount,
        "status": project.status,
        "currency": project.currency,
        "created_by": project.created_by,
        "created_at": project.created_at.isoformat() if project.created_at else None,
    }


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

async def create_project(db: AsyncSession, data: ProjectCreate, created_by: int | None = None) -> dict:
    project = Project(**data.model_dump(), created_by=created_by)
    db.add(project)
    await db.flush()
    await cache.invalidate_financials(project.id)
    logger.info("Created project %s (%s)", project.id, project.name)
    return _project_to_dict(project)


async def update_project(db: AsyncSession, project_id: int, data: ProjectUpdate) -> dict | None:
    project = await db.get(Project, project_id)
    if project is None:
        return None
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(project, field, value)
    await db.flush()
    await cache.invalidate_financials(project_id)
    return _project_to_dict(project)


async def get_project(db: AsyncSession, project_id: int, user: Profile | None = None) -> dict | None:
    """Project with its milestones, the latter filtered for *user* when given."""
    result = await db.execute(
        select(Project)
        .where(Project.id == project_id)
        .options(selectinload(Project.milestones))
        .execution_options(populate_existing=True)
    )
    project = result.scalar_one_or_none()
    if project is None:
        return None
    data = _project_to_dict(project)
    milestones = sorted(project.milestones, key=milestone_service.timeline_key)
    data["milestones"] = await milestone_service.milestones_for_user(db, milestones, user)
    return data


async def get_projects(
    db: AsyncSession,
    user: Profile,
    status: str | None = None,
    search: str | None = None,
) -> list[dict]:
    q = select(Project).order_by(Project.created_at.desc(), Project.id.desc())
    if status:
        q = q.where(Project.status == status)
    if search:
        pattern = f"%{search.lower()}%"
        q = q.where(
            or_(func.lower(Project.name).like(pattern), func.lower(Project.site_location).like(pattern))
        )
    projects = list((await db.execute(q)).scalars().all())
    projects = await permission_service.filter_projects_by_access(db, user.id, user.role, projects)
    return [_project_to_dict(p) for p in projects]


async def delete_project(db: AsyncSession, project_id: int) -> bool:
    project = await db.get(Project, project_id)
    if project is None:
        return False

    milestone_ids = (
        await db.execute(select(Milestone.id).where(Milestone.project_id == project_id))
    ).scalars().all()
    for milestone_id in milestone_ids:
        await milestone_service.delete_milestone_rows(db, milestone_id)
    await db.execute(delete(Expense).where(Expense.project_id == project_id))
    await db.delete(project)
    await db.flush()

    await cache.invalidate_financials(project_id)
    logger.info("Deleted project %s with %d milestone(s)", project_id, len(milestone_ids))
    return True


async def get_projects_by_status(db: AsyncSession, status: str) -> list[dict]:
    q = select(Project).where(Project.status == status).order_by(Project.created_at.desc())
    return [_project_to_dict(p) for p in (await db.execute(q)).scalars().all()]


async def get_active_projects_count(db: AsyncSession) -> int:
    q = select(func.count()).select_from(Project).where(Project.status == "active")
    return (await db.execute(q)).scalar_one()


# ---------------------------------------------------------------------------
# Summaries
# ---------------------------------------------------------------------------

async def get_project_summary(db: AsyncSession, project_id: int) -> dict | None:
    return await cache.get_or_compute(
        project_summary_key(project_id),
        lambda: _build_project_summary(db, project_id),
        ttl=settings.CACHE_TTL_SUMMARY,
    )


async def _build_project_summary(db: AsyncSession, project_id: int) -> dict | None:
    project = await db.get(Project, project_id)
    if project is None:
        return None

    counts = (
        await db.execute(
            select(Milestone.status, func.count()).where(Milestone.project_id == project_id).group_by(Milestone.status)
        )
    ).all()
    by_status = dict(counts)
    total_invoiced = await financial_service.get_project_invoiced_total(db, project_id)

    summary = {
        "project_id": project.id,
        "project_name": project.name,
        "currency": project.currency,
        "milestones_count": sum(by_status.values()),
        "completed_milestones": by_status.get("completed", 0),
        "total_budget": money(project.total_budget),
        "received_amount": money(project.received_amount),
        "total_spent": await financial_service.get_project_labour_cost(db, project_id),
        "total_expenses": await financial_service.get_project_expense_total(db, project_id),
        "total_invoiced": total_invoiced,
        "outstanding_amount": money(total_invoiced - money(project.received_amount)),
    }
    return summary


async def get_project_financials(db: AsyncSession, project_id: int) -> dict | None:
    financials = await financial_service.calculate_project_financials(db, project_id)
    if financials is None:
        return None
    outstanding = (
        await db.execute(
            select(func.count())
            .select_from(Invoice)
            .join(Milestone, Milestone.id == Invoice.milestone_id)
            .where(
                Milestone.project_id == project_id,
                Invoice.status.in_(financial_service.OUTSTANDING_STATUSES),
            )
        )
    ).scalar_one()
    financials["received_amount"] = financials["total_received"]
    financials["outstanding_invoices"] = outstanding
    return financials
