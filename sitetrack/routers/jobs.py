from datetime import date

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.database import get_db
from sitetrack.models import Profile
from sitetrack.security import require_roles
from sitetrack.services import invoice_service, notification_service, recurring_task_service

router = APIRouter(prefix="/api/v1/jobs", tags=["jobs"])


@router.post("/recurring-tasks")
async def run_recurring_tasks(
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    created = await recurring_task_service.process_recurring_tasks(db)
    return {"created": len(created), "task_ids": [t.id for t in created]}


@router.post("/notifications")
async def run_automated_notifications(
    today: date | None = None,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await notification_service.schedule_automated_notifications(db, today)


@router.post("/overdue-invoices")
async def run_overdue_invoices(
    today: date | None = None,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    return {"marked": await invoice_service.mark_overdue_invoices(db, today)}
