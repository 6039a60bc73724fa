from datetime import date

from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.database import get_db
from sitetrack.models import Profile
from sitetrack.schemas import ExpenseCreate, ExpenseUpdate
from sitetrack.security import require_roles
from sitetrack.services import financial_service

router = APIRouter(prefix="/api/v1/expenses", tags=["expenses"])


@router.get("")
async def list_expenses(
    start: date,
    end: date,
    project_id: int | None = None,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await financial_service.get_expenses_by_date_range(db, start, end, project_id)


@router.get("/by-category")
async def expenses_by_category(
    project_id: int | None = None,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await financial_service.get_expenses_by_category(db, project_id)


@router.get("/{expense_id}")
async def get_expense(
    expense_id: int,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    expense = await financial_service.get_expense(db, expense_id)
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")
    return expense


@router.post("", status_code=201)
async def record_expense(
    data: ExpenseCreate,
    current_user: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await financial_service.record_expense(db, data, current_user.id)


@router.put("/{expense_id}")
async def update_expense(
    expense_id: int,
    data: ExpenseUpdate,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    expense = await financial_service.update_expense(db, expense_id, data)
    if not expense:
        raise HTTPException(status_code=404, detail="Expense not found")
    return expense


@router.delete("/{expense_id}", status_code=204)
async def delete_expense(
    expense_id: int,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    deleted = await financial_service.delete_expense(db, expense_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Expense not found")
