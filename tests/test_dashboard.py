"""
Worker dashboard counts.
"""
from datetime import date, datetime

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.schemas import MilestoneCreate, ProjectCreate, TaskCreate
from sitetrack.services import dashboard_service, milestone_service, project_service, task_service

NOW = datetime(2024, 3, 15, 12, 0)


async def _assigned(db: AsyncSession, milestone_id: int, worker_id: int, title: str, **kwargs) -> dict:
    return await task_service.create_task(
        db, TaskCreate(milestone_id=milestone_id, title=title, assignee_ids=[worker_id], **kwargs)
    )


@pytest.mark.asyncio
async def test_worker_dashboard_counts(db_session: AsyncSession, site):
    worker_id = site["worker"]["id"]
    milestone_id = site["milestone"]["id"]
    await _assigned(db_session, milestone_id, worker_id, "Late", end_datetime=datetime(2024, 3, 10))
    await _assigned(db_session, milestone_id, worker_id, "Running", status="in_progress")
    await _assigned(db_session, milestone_id, worker_id, "Finished", status="done", end_datetime=datetime(2024, 3, 1))
    await task_service.create_task(db_session, TaskCreate(milestone_id=milestone_id, title="Someone else's"))

    other_project = await project_service.create_project(db_session, ProjectCreate(name="Airport Hangar"))
    other_milestone = await milestone_service.create_milestone(
        db_session, MilestoneCreate(project_id=other_project["id"], name="Steel", start_date=date(2024, 2, 1))
    )
    await _assigned(db_session, other_milestone["id"], worker_id, "Stuck", status="blocked")

    stats = await dashboard_service.get_worker_task_stats(db_session, worker_id, now=NOW)
    assert stats == {"assigned": 4, "pending": 2, "completed": 1, "overdue": 1}

    projects = await dashboard_service.get_worker_projects(db_session, worker_id, now=NOW)
    assert [(p["project_name"], p["assigned"]) for p in projects] == [("Airport Hangar", 1), ("Marina Villa", 3)]

    milestones = await dashboard_service.get_worker_milestones(db_session, worker_id, now=NOW)
    assert [m["milestone_name"] for m in milestones] == ["Steel", "Foundations"]
    assert milestones[1]["overdue"] == 1

    recent = await dashboard_service.get_worker_recent_tasks(db_session, worker_id, limit=2)
    assert [t["title"] for t in recent] == ["Stuck", "Finished"]
    assert recent[0]["project_name"] == "Airport Hangar"


@pytest.mark.asyncio
async def test_dashboard_for_user_without_tasks(db_session: AsyncSession, users):
    dashboard = await dashboard_service.get_worker_dashboard(db_session, users["admin"]["id"])
    assert dashboard == {
        "stats": {"assigned": 0, "pending": 0, "completed": 0, "overdue": 0},
        "projects": [],
        "milestones": [],
        "recent_tasks": [],
    }


@pytest.mark.asyncio
async def test_dashboard_endpoints(async_client: AsyncClient, db_session: AsyncSession, site, auth_headers):
    await _assigned(db_session, site["milestone"]["id"], site["worker"]["id"], "Formwork")
    await db_session.commit()
    headers = auth_headers(site["worker"])

    full = await async_client.get("/api/v1/dashboard", headers=headers)
    assert full.status_code == 200
    assert full.json()["stats"]["assigned"] == 1

    assert (await async_client.get("/api/v1/dashboard/stats", headers=headers)).json()["pending"] == 1
    assert len((await async_client.get("/api/v1/dashboard/projects", headers=headers)).json()) == 1
    assert len((await async_client.get("/api/v1/dashboard/milestones", headers=headers)).json()) == 1
    recent = await async_client.get("/api/v1/dashboard/recent-tasks", params={"limit": 1}, headers=headers)
    assert [t["title"] for t in recent.json()] == ["Formwork"]

    assert (await async_client.get("/api/v1/dashboard")).status_code == 401
