"""
Labour-cost calculations: wage configs, member and milestone budgets and
the budget report.
"""
from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.errors import NotFoundError
from sitetrack.schemas import TaskCreate, WageConfigUpdate
from sitetrack.services import attendance_service, budget_service, task_service


# ---------------------------------------------------------------------------
# Pure calculations
# ---------------------------------------------------------------------------

def test_calculate_task_budget():
    assert budget_service.calculate_task_budget(200, "full_day") == 200
    assert budget_service.calculate_task_budget(200, "half_day") == 100
    assert budget_service.calculate_task_budget(200, "absent") == 0
    assert budget_service.calculate_task_budget(None, "full_day") == 0
    assert budget_service.calculate_task_budget(200, None) == 0


def test_calculate_monthly_budget():
    march = (date(2024, 3, 1), date(2024, 3, 31))
    assert budget_service.calculate_monthly_budget("daily", *march, daily_rate=200) == 6200
    # 31 covered days against min(31, 26) working days.
    assert budget_service.calculate_monthly_budget("monthly", *march, monthly_salary=5200, working_days=26) == 6200
    # February 2024 has 29 days, fewer than the 30 configured working days.
    feb = budget_service.calculate_monthly_budget(
        "monthly", date(2024, 2, 1), date(2024, 2, 29), monthly_salary=2900, working_days=30
    )
    assert feb == 2900
    assert budget_service.calculate_monthly_budget("monthly", *march) == 0


def test_effective_daily_rate():
    assert budget_service.effective_daily_rate({"wage_type": "daily", "daily_rate": 180}) == 180
    assert budget_service.effective_daily_rate(
        {"wage_type": "monthly", "monthly_salary": 5200, "working_days_per_month": 26}
    ) == 200
    assert budget_service.effective_daily_rate({"wage_type": "monthly"}) == 0


# ---------------------------------------------------------------------------
# Wage config
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_wage_config_override(db_session: AsyncSession, site):
    worker_id, milestone_id = site["worker"]["id"], site["milestone"]["id"]

    config = await budget_service.get_member_wage_config(db_session, worker_id, milestone_id)
    assert config["source"] == "profile"
    assert config["working_days_per_month"] == 26

    await budget_service.update_member_wage_config(
        db_session, worker_id, WageConfigUpdate(wage_type="daily", daily_rate=250, milestone_id=milestone_id)
    )
    config = await budget_service.get_member_wage_config(db_session, worker_id, milestone_id)
    assert config["source"] == "milestone"
    assert config["daily_rate"] == 250
    # The profile default is untouched.
    assert (await budget_service.get_member_wage_config(db_session, worker_id))["daily_rate"] == 200

    with pytest.raises(NotFoundError):
        await budget_service.update_member_wage_config(
            db_session, 9999, WageConfigUpdate(wage_type="daily", daily_rate=1)
        )
    assert await budget_service.get_member_wage_config(db_session, 9999) is None


# ---------------------------------------------------------------------------
# Member / milestone budgets
# ---------------------------------------------------------------------------

async def _mark(db: AsyncSession, site: dict, day: int, status: str, approve: bool = True) -> dict:
    record = await attendance_service.mark_daily_attendance(
        db, site["worker"]["id"], site["milestone"]["id"], date(2024, 3, day), status
    )
    if approve:
        await attendance_service.approve_attendance(db, record["id"], site["supervisor"]["id"])
    return record


@pytest.mark.asyncio
async def test_member_budget_falls_back_to_monthly(db_session: AsyncSession, site):
    summary = await budget_service.calculate_member_budget(
        db_session, site["worker"]["id"], site["milestone"]["id"]
    )
    assert summary["has_attendance_data"] is False
    assert summary["monthly_budget"] == 6200
    assert summary["final_budget"] == 6200

    supervisor = await budget_service.calculate_member_budget(
        db_session, site["supervisor"]["id"], site["milestone"]["id"]
    )
    assert supervisor["effective_daily_rate"] == 200
    assert supervisor["final_budget"] == 6200


@pytest.mark.asyncio
async def test_member_budget_uses_approved_attendance(db_session: AsyncSession, site):
    await _mark(db_session, site, 4, "full_day")
    await _mark(db_session, site, 5, "half_day")
    await _mark(db_session, site, 6, "full_day", approve=False)

    summary = await budget_service.calculate_member_budget(
        db_session, site["worker"]["id"], site["milestone"]["id"]
    )
    assert summary["has_attendance_data"] is True
    assert summary["total_full_days"] == 1
    assert summary["total_half_days"] == 1
    assert summary["total_task_budget"] == 300
    assert summary["final_budget"] == 300

    narrowed = await budget_service.calculate_member_budget(
        db_session, site["worker"]["id"], site["milestone"]["id"], date(2024, 3, 5), date(2024, 3, 5)
    )
    assert narrowed["final_budget"] == 100

    assert await budget_service.calculate_milestone_budget(db_session, site["milestone"]["id"]) == 300
    assert await budget_service.calculate_member_budget(db_session, site["worker"]["id"], 9999) is None


@pytest.mark.asyncio
async def test_budget_report(db_session: AsyncSession, site):
    await _mark(db_session, site, 4, "full_day")
    await _mark(db_session, site, 5, "half_day")

    report = await budget_service.generate_budget_report(db_session, site["milestone"]["id"])
    assert report["project_name"] == "Marina Villa"
    assert report["currency"] == "AED"
    assert report["start_date"] == "2024-03-01"
    assert report["end_date"] == "2024-03-31"
    assert report["total_budget_allocated"] == 20000
    assert [s["user_name"] for s in report["member_summaries"]] == ["Sam Supervisor", "Wes Worker"]
    assert report["total_budget_spent"] == 6500
    assert [line["calculated_amount"] for line in report["task_budgets"]] == [200, 100]
    assert report["task_budgets"][0]["task_title"] == "Daily attendance"

    monthly_only = await budget_service.generate_budget_report(
        db_session, site["milestone"]["id"], wage_type="monthly"
    )
    assert [s["user_name"] for s in monthly_only["member_summaries"]] == ["Sam Supervisor"]

    assert await budget_service.generate_budget_report(db_session, 9999) is None


@pytest.mark.asyncio
async def test_record_and_update_attendance(db_session: AsyncSession, site):
    task = await task_service.create_task(
        db_session, TaskCreate(milestone_id=site["milestone"]["id"], title="Plastering")
    )
    result = await budget_service.record_attendance(
        db_session, site["worker"]["id"], task["id"], "half_day", date(2024, 3, 8)
    )
    assert result["success"] is True
    assert result["calculated_budget"] == 100

    updated = await budget_service.update_attendance(db_session, result["attendance_id"], "full_day")
    assert updated["calculated_budget"] == 200

    missing = await budget_service.record_attendance(db_session, site["worker"]["id"], 9999, "full_day")
    assert missing == {"success": False, "calculated_budget": 0.0}
    assert (await budget_service.update_attendance(db_session, 9999, "full_day"))["success"] is False


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_budget_endpoints(async_client: AsyncClient, db_session: AsyncSession, site, auth_headers):
    await _mark(db_session, site, 4, "full_day")
    await db_session.commit()
    milestone_id = site["milestone"]["id"]
    headers = auth_headers(site["supervisor"])

    report = await async_client.get(f"/api/v1/budgets/milestones/{milestone_id}", headers=headers)
    assert report.status_code == 200
    assert len(report.json()["member_summaries"]) == 2

    spent = await async_client.get(f"/api/v1/budgets/milestones/{milestone_id}/spent", headers=headers)
    assert spent.json() == {"milestone_id": milestone_id, "total_spent": 200}

    member = await async_client.get(
        f"/api/v1/budgets/milestones/{milestone_id}/members/{site['worker']['id']}", headers=headers
    )
    assert member.json()["final_budget"] == 200

    worker = await async_client.get(
        f"/api/v1/budgets/milestones/{milestone_id}", headers=auth_headers(site["worker"])
    )
    assert worker.status_code == 403
