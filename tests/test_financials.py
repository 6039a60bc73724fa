"""
Expenses and the project / portfolio financial roll-ups.
"""
from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.errors import NotFoundError
from sitetrack.schemas import ExpenseCreate, ExpenseUpdate, InvoiceCreate, ProjectCreate
from sitetrack.services import attendance_service, financial_service, invoice_service, project_service


async def _seed_money(db: AsyncSession, site: dict) -> None:
    """200 labour, 500 expenses and one 4000 invoice on the site project."""
    await financial_service.record_expense(db, ExpenseCreate(
        project_id=site["project"]["id"], expense_category="materials", description="Sand",
        amount=200, expense_date=date(2024, 3, 2),
    ))
    await financial_service.record_expense(db, ExpenseCreate(
        milestone_id=site["milestone"]["id"], expense_category="equipment", description="Mixer rental",
        amount=300, expense_date=date(2024, 3, 10),
    ))
    record = await attendance_service.mark_daily_attendance(
        db, site["worker"]["id"], site["milestone"]["id"], date(2024, 3, 4), "full_day"
    )
    await attendance_service.approve_attendance(db, record["id"])
    await invoice_service.create_invoice(db, InvoiceCreate(
        milestone_id=site["milestone"]["id"], items=[{"description": "Stage 1", "amount": 4000}],
    ))


# ---------------------------------------------------------------------------
# Expenses
# ---------------------------------------------------------------------------

def test_expense_needs_exactly_one_owner():
    with pytest.raises(ValueError):
        ExpenseCreate(description="Both", amount=1, project_id=1, milestone_id=1)
    with pytest.raises(ValueError):
        ExpenseCreate(description="Neither", amount=1)


@pytest.mark.asyncio
async def test_record_expense_checks_owner(db_session: AsyncSession, site):
    with pytest.raises(NotFoundError):
        await financial_service.record_expense(db_session, ExpenseCreate(project_id=9999, description="x", amount=1))
    with pytest.raises(NotFoundError):
        await financial_service.record_expense(db_session, ExpenseCreate(milestone_id=9999, description="x", amount=1))


@pytest.mark.asyncio
async def test_expense_queries(db_session: AsyncSession, site):
    await _seed_money(db_session, site)
    other = await project_service.create_project(db_session, ProjectCreate(name="Elsewhere"))
    await financial_service.record_expense(db_session, ExpenseCreate(
        project_id=other["id"], expense_category="materials", description="Paint", amount=75,
        expense_date=date(2024, 3, 5),
    ))

    project_id = site["project"]["id"]
    assert await financial_service.get_expenses_by_category(db_session, project_id) == {
        "materials": 200, "equipment": 300,
    }
    assert (await financial_service.get_expenses_by_category(db_session))["materials"] == 275

    in_range = await financial_service.get_expenses_by_date_range(db_session, date(2024, 3, 1), date(2024, 3, 5))
    assert [e["description"] for e in in_range] == ["Paint", "Sand"]
    scoped = await financial_service.get_expenses_by_date_range(
        db_session, date(2024, 3, 1), date(2024, 3, 31), project_id
    )
    assert [e["description"] for e in scoped] == ["Mixer rental", "Sand"]

    assert [e["description"] for e in await financial_service.get_milestone_expenses(
        db_session, site["milestone"]["id"]
    )] == ["Mixer rental"]
    assert len(await financial_service.get_project_expenses(db_session, project_id)) == 2


@pytest.mark.asyncio
async def test_update_and_delete_expense(db_session: AsyncSession, site):
    expense = await financial_service.record_expense(db_session, ExpenseCreate(
        project_id=site["project"]["id"], description="Fuel", amount=60,
    ))
    assert expense["expense_category"] == "other"
    assert expense["expense_date"] == date.today().isoformat()

    updated = await financial_service.update_expense(db_session, expense["id"], ExpenseUpdate(amount=80))
    assert updated["amount"] == 80
    assert await financial_service.delete_expense(db_session, expense["id"]) is True
    assert await financial_service.get_expense(db_session, expense["id"]) is None
    assert await financial_service.delete_expense(db_session, expense["id"]) is False


# ---------------------------------------------------------------------------
# Roll-ups
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_calculate_project_financials(db_session: AsyncSession, site):
    await _seed_money(db_session, site)
    financials = await financial_service.calculate_project_financials(db_session, site["project"]["id"])
    assert financials == {
        "project_id": site["project"]["id"],
        "project_name": "Marina Villa",
        "currency": "AED",
        "total_budget": 100000,
        "total_spent": 200,
        "total_expenses": 500,
        "total_invoiced": 4000,
        "total_received": 1000,
        "profit_loss": 300,
    }
    assert await financial_service.calculate_project_financials(db_session, 9999) is None


@pytest.mark.asyncio
async def test_financial_summary_counts_active_projects(db_session: AsyncSession, site):
    await _seed_money(db_session, site)
    await project_service.create_project(
        db_session, ProjectCreate(name="Paused", status="on_hold", received_amount=5000)
    )

    summary = await financial_service.get_financial_summary(db_session)
    assert summary == {
        "total_revenue": 1000,
        "total_expenses": 700,
        "outstanding_invoices_amount": 4000,
        "outstanding_invoices_count": 1,
        "net_profit_loss": 300,
    }

    everything = await financial_service.get_all_project_financials(db_session)
    assert {f["project_name"] for f in everything} == {"Marina Villa", "Paused"}


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_expense_endpoints(async_client: AsyncClient, site, auth_headers):
    headers = auth_headers(site["admin"])

    both = await async_client.post(
        "/api/v1/expenses",
        json={"project_id": site["project"]["id"], "milestone_id": site["milestone"]["id"],
              "description": "x", "amount": 10},
        headers=headers,
    )
    assert both.status_code == 422

    created = await async_client.post(
        "/api/v1/expenses",
        json={"milestone_id": site["milestone"]["id"], "description": "Rebar", "amount": 120,
              "expense_category": "materials", "expense_date": "2024-03-12"},
        headers=headers,
    )
    assert created.status_code == 201

    listing = await async_client.get(
        "/api/v1/expenses", params={"start": "2024-03-01", "end": "2024-03-31"}, headers=headers
    )
    assert [e["description"] for e in listing.json()] == ["Rebar"]

    by_category = await async_client.get("/api/v1/expenses/by-category", headers=headers)
    assert by_category.json() == {"materials": 120}

    supervisor = await async_client.get("/api/v1/expenses/by-category", headers=auth_headers(site["supervisor"]))
    assert supervisor.status_code == 403


@pytest.mark.asyncio
async def test_financial_endpoints(async_client: AsyncClient, db_session: AsyncSession, site, auth_headers):
    await _seed_money(db_session, site)
    await db_session.commit()
    headers = auth_headers(site["admin"])

    summary = await async_client.get("/api/v1/financials/summary", headers=headers)
    assert summary.json()["net_profit_loss"] == 300

    projects = await async_client.get("/api/v1/financials/projects", headers=headers)
    assert [p["profit_loss"] for p in projects.json()] == [300]

    assert (await async_client.get("/api/v1/financials/summary", headers=auth_headers(site["worker"]))).status_code == 403
