from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.database import get_db
from sitetrack.models import Profile
from sitetrack.security import require_roles
from sitetrack.services import financial_service

router = APIRouter(prefix="/api/v1/financials", tags=["financials"])


@router.get("/summary")
async def financial_summary(
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await financial_service.get_financial_summary(db)


@router.get("/projects")
async def all_project_financials(
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await financial_service.get_all_project_financials(db)
