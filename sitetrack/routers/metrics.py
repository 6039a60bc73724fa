from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.cache import cache
from sitetrack.database import get_db
from sitetrack.models import Attendance, Invoice, Profile, Project, Task
from sitetrack.schemas import MetricsResponse
from sitetrack.security import require_roles
from sitetrack.services.financial_service import OUTSTANDING_STATUSES

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])


async def _count(db: AsyncSession, model, *where) -> int:
    return (await db.execute(select(func.count()).select_from(model).where(*where))).scalar_one()


@router.get("", response_model=MetricsResponse)
async def get_metrics(
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    return MetricsResponse(
        total_profiles=await _count(db, Profile),
        total_projects=await _count(db, Project),
        active_projects=await _count(db, Project, Project.status == "active"),
        total_tasks=await _count(db, Task),
        open_tasks=await _count(db, Task, Task.status.in_(("todo", "in_progress", "blocked"))),
        pending_attendance=await _count(db, Attendance, Attendance.approved.is_(False), Attendance.rejected.is_(False)),
        outstanding_invoices=await _count(db, Invoice, Invoice.status.in_(OUTSTANDING_STATUSES)),
        cache_info=cache.stats,
    )
