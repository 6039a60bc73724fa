from fastapi import APIRouter, Depends, HTTPException, Response
from fastapi.responses import HTMLResponse
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.database import get_db
from sitetrack.dependencies import ensure_milestone_access
from sitetrack.models import Milestone, Profile
from sitetrack.security import require_roles
from sitetrack.services import budget_service, export_service, invoice_service, task_service

router = APIRouter(prefix="/api/v1/exports", tags=["exports"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _attachment(filename: str) -> dict:
    return {"Content-Disposition": f'attachment; filename="{filename}"'}


async def _budget_report(db: AsyncSession, user: Profile, milestone_id: int) -> dict:
    await ensure_milestone_access(db, user, milestone_id)
    report = await budget_service.generate_budget_report(db, milestone_id)
    if not report:
        raise HTTPException(status_code=404, detail="Milestone not found")
    return report


@router.get("/budget/{milestone_id}.csv")
async def budget_csv(
    milestone_id: int,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    filename, content = export_service.budget_report_csv(await _budget_report(db, current_user, milestone_id))
    return Response(content=content, media_type="text/csv; charset=utf-8", headers=_attachment(filename))


@router.get("/budget/{milestone_id}.html", response_class=HTMLResponse)
async def budget_html(
    milestone_id: int,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    return export_service.budget_report_html(await _budget_report(db, current_user, milestone_id))


@router.get("/gantt/{milestone_id}")
async def gantt_workbook(
    milestone_id: int,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    milestone = await db.get(Milestone, milestone_id)
    if milestone is None:
        raise HTTPException(status_code=404, detail="Milestone not found")
    tasks = await task_service.get_tasks(db, current_user, milestone_id=milestone_id)
    filename, content = export_service.gantt_xlsx(tasks, milestone.name)
    return Response(content=content, media_type=XLSX_MEDIA_TYPE, headers=_attachment(filename))


@router.get("/invoices/{invoice_id}", response_class=HTMLResponse)
async def invoice_html(
    invoice_id: int,
    _user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    invoice = await invoice_service.get_invoice_with_context(db, invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    filename, html = export_service.invoice_html(invoice)
    return HTMLResponse(content=html, headers={"Content-Disposition": f'inline; filename="{filename}"'})
