"""
Financial service: expenses and the money roll-ups built on them.

Project spend is labour (``calculate_milestone_budget`` summed over the
project's milestones) plus expenses, where expenses include both the
project-level ones and those booked against any of its milestones.
"""
import logging
from datetime import date

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.cache import FINANCIAL_SUMMARY_KEY, cache
from sitetrack.config import settings
from sitetrack.errors import NotFoundError
from sitetrack.models import Expense, Invoice, Milestone, Project
from sitetrack.schemas import ExpenseCreate, ExpenseUpdate
from sitetrack.services import budget_service
from sitetrack.utils import money

logger = logging.getLogger(__name__)

OUTSTANDING_STATUSES = ("pending", "partial", "overdue")


def _expense_to_dict(expense: Expense) -> dict:
    return {
        "id": expense.id,
        "project_id": expense.project_id,
        "milestone_id": expense.milestone_id,
        "expense_category": expense.expense_category or "other",
        "description": expense.description,
        "amount": expense.amount,
        "expense_date": expense.expense_date.isoformat() if expense.expense_date else None,
        "vendor_name": expense.vendor_name,
        "receipt_url": expense.receipt_url,
        "payment_method": expense.payment_method,
        "assigned_to": expense.assigned_to,
        "created_by": expense.created_by,
        "created_at": expense.created_at.isoformat() if expense.created_at else None,
    }


def _project_scope(project_id: int):
    """Expenses of a project: its own plus those of its milestones."""
    return or_(
        Expense.project_id == project_id,
        Expense.milestone_id.in_(select(Milestone.id).where(Milestone.project_id == project_id)),
    )


async def _owning_project_id(db: AsyncSession, expense: Expense) -> int | None:
    if expense.project_id is not None:
        return expense.project_id
    milestone = await db.get(Milestone, expense.milestone_id)
    return milestone.project_id if milestone else None


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------

async def record_expense(db: AsyncSession, data: ExpenseCreate, created_by: int | None = None) -> dict:
    if data.project_id is not None and await db.get(Project, data.project_id) is None:
        raise NotFoundError("Project not found")
    if data.milestone_id is not None and await db.get(Milestone, data.milestone_id) is None:
        raise NotFoundError("Milestone not found")

    values = data.model_dump()
    values["expense_date"] = data.expense_date or date.today()
    expense = Expense(**values, created_by=created_by)
    db.add(expense)
    await db.flush()
    await cache.invalidate_financials(await _owning_project_id(db, expense))
    return _expense_to_dict(expense)


async def update_expense(db: AsyncSession, expense_id: int, data: ExpenseUpdate) -> dict | None:
    expense = await db.get(Expense, expense_id)
    if expense is None:
        return None
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(expense, field, value)
    await db.flush()
    await cache.invalidate_financials(await _owning_project_id(db, expense))
    return _expense_to_dict(expense)


async def delete_expense(db: AsyncSession, expense_id: int) -> bool:
    expense = await db.get(Expense, expense_id)
    if expense is None:
        return False
    project_id = await _owning_project_id(db, expense)
    await db.delete(expense)
    await db.flush()
    await cache.invalidate_financials(project_id)
    return True


async def get_expense(db: AsyncSession, expense_id: int) -> dict | None:
    expense = await db.get(Expense, expense_id)
    return _expense_to_dict(expense) if expense else None


async def get_project_expenses(db: AsyncSession, project_id: int) -> list[dict]:
    q = select(Expense).where(_project_scope(project_id)).order_by(Expense.expense_date.desc(), Expense.id.desc())
    return [_expense_to_dict(e) for e in (await db.execute(q)).scalars().all()]


async def get_milestone_expenses(db: AsyncSession, milestone_id: int) -> list[dict]:
    q = (
        select(Expense)
        .where(Expense.milestone_id == milestone_id)
        .order_by(Expense.expense_date.desc(), Expense.id.desc())
    )
    return [_expense_to_dict(e) for e in (await db.execute(q)).scalars().all()]


async def get_expenses_by_category(db: AsyncSession, project_id: int | None = None) -> dict[str, float]:
    q = select(func.coalesce(Expense.expense_category, "other"), func.sum(Expense.amount)).group_by(
        func.coalesce(Expense.expense_category, "other")
    )
    if project_id is not None:
        q = q.where(_project_scope(project_id))
    return {category: money(total) for category, total in (await db.execute(q)).all()}


async def get_expenses_by_date_range(
    db: AsyncSession, start: date, end: date, project_id: int | None = None
) -> list[dict]:
    q = (
        select(Expense)
        .where(Expense.expense_date >= start, Expense.expense_date <= end)
        .order_by(Expense.expense_date.desc(), Expense.id.desc())
    )
    if project_id is not None:
        q = q.where(_project_scope(project_id))
    return [_expense_to_dict(e) for e in (await db.execute(q)).scalars().all()]


async def get_project_expense_total(db: AsyncSession, project_id: int) -> float:
    q = select(func.coalesce(func.sum(Expense.amount), 0)).where(_project_scope(project_id))
    return money((await db.execute(q)).scalar_one())


# ---------------------------------------------------------------------------
# Roll-ups
# ---------------------------------------------------------------------------

async def get_project_labour_cost(db: AsyncSession, project_id: int) -> float:
    milestone_ids = (
        await db.execute(select(Milestone.id).where(Milestone.project_id == project_id))
    ).scalars().all()
    total = 0.0
    for milestone_id in milestone_ids:
        total += await budget_service.calculate_milestone_budget(db, milestone_id)
    return money(total)


async def get_project_invoiced_total(db: AsyncSession, project_id: int) -> float:
    q = (
        select(func.coalesce(func.sum(Invoice.total_amount), 0))
        .join(Milestone, Milestone.id == Invoice.milestone_id)
        .where(Milestone.project_id == project_id, Invoice.status != "cancelled")
    )
    return money((await db.execute(q)).scalar_one())


async def calculate_project_financials(db: AsyncSession, project_id: int) -> dict | None:
    project = await db.get(Project, project_id)
    if project is None:
        return None
    total_spent = await get_project_labour_cost(db, project_id)
    total_expenses = await get_project_expense_total(db, project_id)
    total_invoiced = await get_project_invoiced_total(db, project_id)
    received = money(project.received_amount)
    return {
        "project_id": project.id,
        "project_name": project.name,
        "currency": project.currency,
        "total_budget": money(project.total_budget),
        "total_spent": total_spent,
        "total_expenses": total_expenses,
        "total_invoiced": total_invoiced,
        "total_received": received,
        "profit_loss": money(received - (total_spent + total_expenses)),
    }


async def get_all_project_financials(db: AsyncSession) -> list[dict]:
    """Financials for every project; a project that fails to compute is skipped."""
    project_ids = (await db.execute(select(Project.id).order_by(Project.created_at.desc()))).scalars().all()
    results = []
    for project_id in project_ids:
        try:
            financials = await calculate_project_financials(db, project_id)
        except Exception:
            logger.exception("Failed to compute financials for project %s", project_id)
            continue
        if financials is not None:
            results.append(financials)
    return results


async def get_financial_summary(db: AsyncSession) -> dict:
    """Portfolio totals over active projects plus every outstanding invoice."""
    return await cache.get_or_compute(
        FINANCIAL_SUMMARY_KEY, lambda: _build_financial_summary(db), ttl=settings.CACHE_TTL_SUMMARY
    )


async def _build_financial_summary(db: AsyncSession) -> dict:
    projects = (
        await db.execute(select(Project.id, Project.received_amount).where(Project.status == "active"))
    ).all()
    revenue = 0.0
    expenses = 0.0
    labour = 0.0
    for project_id, received in projects:
        revenue += received or 0
        expenses += await get_project_expense_total(db, project_id)
        labour += await get_project_labour_cost(db, project_id)

    outstanding = (
        await db.execute(
            select(func.coalesce(func.sum(Invoice.balance_due), 0), func.count(Invoice.id)).where(
                Invoice.status.in_(OUTSTANDING_STATUSES)
            )
        )
    ).one()

    return {
        "total_revenue": money(revenue),
        "total_expenses": money(expenses + labour),
        "outstanding_invoices_amount": money(outstanding[0]),
        "outstanding_invoices_count": outstanding[1],
        "net_profit_loss": money(revenue - (labour + expenses)),
    }
