"""
Tasks: creation side effects, assignment, filtering and the derived views.
"""
from datetime import datetime, timedelta

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.errors import NotFoundError
from sitetrack.models import Attendance, Notification, Profile
from sitetrack.schemas import TaskCreate, TaskUpdate
from sitetrack.services import attendance_service, task_service

NOW = datetime(2024, 3, 10, 12, 0)


async def _task(db: AsyncSession, site: dict, title: str, **kwargs) -> dict:
    return await task_service.create_task(
        db, TaskCreate(milestone_id=site["milestone"]["id"], title=title, **kwargs), site["supervisor"]["id"]
    )


# ---------------------------------------------------------------------------
# Create / update
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_create_task_notifies_assignees(db_session: AsyncSession, site):
    worker = site["worker"]
    task = await _task(db_session, site, "Pour slab", assignee_ids=[worker["id"], worker["id"]])
    assert task["assignees"] == [{"id": worker["id"], "full_name": "Wes Worker"}]
    assert task["created_by"] == site["supervisor"]["id"]

    notes = (await db_session.execute(select(Notification))).scalars().all()
    assert len(notes) == 1
    assert notes[0].user_id == worker["id"]
    assert notes[0].title == "New Task Assigned"
    assert notes[0].payload == {"type": "task_assignment", "task_id": task["id"]}


@pytest.mark.asyncio
async def test_create_task_unknown_assignee(db_session: AsyncSession, site):
    with pytest.raises(NotFoundError):
        await _task(db_session, site, "Ghost crew", assignee_ids=[424242])


@pytest.mark.asyncio
async def test_create_half_day_task_records_attendance(db_session: AsyncSession, site):
    start = datetime(2024, 3, 5, 7, 0)
    task = await _task(
        db_session, site, "Morning shift", assignee_ids=[site["worker"]["id"]],
        start_datetime=start, is_half_day=True,
    )
    record = (await db_session.execute(select(Attendance).where(Attendance.task_id == task["id"]))).scalar_one()
    assert record.attendance_type == "half_day"
    assert record.duration_minutes == 240
    assert record.clock_out == start + timedelta(hours=4)
    assert record.approved is False


@pytest.mark.asyncio
async def test_create_leave_task_notifies_supervisors(db_session: AsyncSession, site):
    task = await _task(
        db_session, site, "Annual leave", assignee_ids=[site["worker"]["id"]], is_leave=True, leave_type="sick",
    )
    record = (await db_session.execute(select(Attendance).where(Attendance.task_id == task["id"]))).scalar_one()
    assert record.attendance_status == "absent"
    assert record.leave_type == "sick"

    leave_notes = (
        await db_session.execute(select(Notification).where(Notification.title == "Leave Request"))
    ).scalars().all()
    assert [n.user_id for n in leave_notes] == [site["supervisor"]["id"]]


def test_half_day_and_leave_are_exclusive():
    with pytest.raises(ValueError):
        TaskCreate(milestone_id=1, title="Both", is_half_day=True, is_leave=True)


@pytest.mark.asyncio
async def test_update_task_replaces_assignees(db_session: AsyncSession, site):
    task = await _task(db_session, site, "Tiling", assignee_ids=[site["worker"]["id"]])
    updated = await task_service.update_task(
        db_session, task["id"], TaskUpdate(status="in_progress", assignee_ids=[site["supervisor"]["id"]])
    )
    assert updated["status"] == "in_progress"
    assert [a["id"] for a in updated["assignees"]] == [site["supervisor"]["id"]]

    cleared = await task_service.update_task(db_session, task["id"], TaskUpdate(recurrence=None))
    assert cleared["recurrence"] is None
    assert await task_service.update_task(db_session, 9999, TaskUpdate(title="x")) is None


@pytest.mark.asyncio
async def test_recurrence_stored_snake_case(db_session: AsyncSession, site):
    task = await _task(
        db_session, site, "Weekly safety walk",
        recurrence={"type": "weekly", "interval": 1, "daysOfWeek": [1, 3], "endDate": "2024-12-31"},
    )
    assert task["recurrence"] == {
        "type": "weekly", "interval": 1, "days_of_week": [1, 3], "end_date": "2024-12-31",
    }


@pytest.mark.asyncio
async def test_duplicate_task(db_session: AsyncSession, site):
    task = await _task(
        db_session, site, "Paint", status="done", assignee_ids=[site["worker"]["id"]],
        recurrence={"type": "daily"},
    )
    copy = await task_service.duplicate_task(db_session, task["id"])
    assert copy["title"] == "Paint (Copy)"
    assert copy["status"] == "todo"
    assert copy["recurrence"] is None
    assert [a["id"] for a in copy["assignees"]] == [site["worker"]["id"]]


@pytest.mark.asyncio
async def test_duplicate_task_drops_dashboard_cache(db_session: AsyncSession, site, dashboard_invalidations):
    task = await _task(db_session, site, "Paint", assignee_ids=[site["worker"]["id"]])
    dashboard_invalidations.clear()
    await task_service.duplicate_task(db_session, task["id"])
    assert dashboard_invalidations == [None]
    assert await task_service.duplicate_task(db_session, 9999) is None


@pytest.mark.asyncio
async def test_delete_task_keeps_attendance(db_session: AsyncSession, site):
    task = await _task(db_session, site, "Scaffold", assignee_ids=[site["worker"]["id"]])
    await attendance_service.clock_in(db_session, site["worker"]["id"], task["id"], now=NOW)
    await attendance_service.clock_out(db_session, site["worker"]["id"], now=NOW + timedelta(hours=7))

    assert await task_service.delete_task(db_session, task["id"]) is True
    record = (await db_session.execute(select(Attendance))).scalar_one()
    await db_session.refresh(record)
    assert record.task_id is None
    assert record.duration_minutes == 420
    assert await task_service.delete_task(db_session, task["id"]) is False


# ---------------------------------------------------------------------------
# Listing and derived views
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_get_tasks_filters(db_session: AsyncSession, site):
    admin = await db_session.get(Profile, site["admin"]["id"])
    worker_id = site["worker"]["id"]
    await _task(db_session, site, "A", status="todo", start_datetime=datetime(2024, 3, 2, 8))
    await _task(db_session, site, "B", status="done", start_datetime=datetime(2024, 3, 20, 8), assignee_ids=[worker_id])
    await _task(db_session, site, "C", type="attendance", recurrence={"type": "daily"})

    titles = lambda tasks: [t["title"] for t in tasks]  # noqa: E731
    assert titles(await task_service.get_tasks(db_session, admin)) == ["A", "B", "C"]
    assert titles(await task_service.get_tasks(db_session, admin, statuses=["done"])) == ["B"]
    assert titles(await task_service.get_tasks(db_session, admin, types=["attendance"])) == ["C"]
    assert titles(await task_service.get_tasks(db_session, admin, assignee_id=worker_id)) == ["B"]
    assert titles(await task_service.get_tasks(db_session, admin, recurring_only=True)) == ["C"]
    # Undated tasks survive a date window.
    window = await task_service.get_tasks(
        db_session, admin, start=datetime(2024, 3, 10), end=datetime(2024, 3, 31)
    )
    assert titles(window) == ["B", "C"]


@pytest.mark.asyncio
async def test_overdue_upcoming_and_stats(db_session: AsyncSession, site):
    admin = await db_session.get(Profile, site["admin"]["id"])
    await _task(db_session, site, "Late", end_datetime=NOW - timedelta(days=1))
    await _task(db_session, site, "Late but done", status="done", end_datetime=NOW - timedelta(days=1))
    await _task(db_session, site, "Soon", start_datetime=NOW + timedelta(days=2))
    await _task(db_session, site, "Later", start_datetime=NOW + timedelta(days=30), recurrence={"type": "monthly"})

    overdue = await task_service.get_overdue_tasks(db_session, admin, now=NOW)
    assert [t["title"] for t in overdue] == ["Late"]

    upcoming = await task_service.get_upcoming_tasks(db_session, admin, days=7, now=NOW)
    assert [t["title"] for t in upcoming] == ["Soon"]

    tasks = await task_service.get_tasks(db_session, admin)
    stats = task_service.get_task_stats(tasks, now=NOW)
    assert stats == {"total": 4, "completed": 1, "in_progress": 0, "overdue": 1, "recurring": 1}

    grouped = task_service.group_tasks_by_status(tasks)
    assert set(grouped) == {"todo", "done"}
    assert len(grouped["todo"]) == 3


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_task_endpoints_respect_visibility(
    async_client: AsyncClient, db_session: AsyncSession, site, auth_headers
):
    mine = await _task(db_session, site, "Mine", assignee_ids=[site["worker"]["id"]])
    other = await _task(db_session, site, "Not mine")
    await db_session.commit()
    worker_headers = auth_headers(site["worker"])

    listing = await async_client.get("/api/v1/tasks", headers=worker_headers)
    assert [t["title"] for t in listing.json()] == ["Mine"]

    assert (await async_client.get(f"/api/v1/tasks/{mine['id']}", headers=worker_headers)).status_code == 200
    assert (await async_client.get(f"/api/v1/tasks/{other['id']}", headers=worker_headers)).status_code == 403
    assert (await async_client.get("/api/v1/tasks/9999", headers=worker_headers)).status_code == 404

    status = await async_client.patch(
        f"/api/v1/tasks/{mine['id']}/status", json={"status": "in_progress"}, headers=worker_headers
    )
    assert status.status_code == 200
    assert status.json()["status"] == "in_progress"

    # Workers cannot create or delete tasks.
    create = await async_client.post(
        "/api/v1/tasks", json={"milestone_id": site["milestone"]["id"], "title": "x"}, headers=worker_headers
    )
    assert create.status_code == 403
    delete = await async_client.delete(f"/api/v1/tasks/{mine['id']}", headers=auth_headers(site["supervisor"]))
    assert delete.status_code == 403


@pytest.mark.asyncio
async def test_create_and_assign_via_api(async_client: AsyncClient, site, auth_headers):
    headers = auth_headers(site["supervisor"])
    response = await async_client.post(
        "/api/v1/tasks",
        json={
            "milestone_id": site["milestone"]["id"],
            "title": "Survey",
            "start_datetime": "2024-03-05T08:00:00+04:00",
            "end_datetime": "2024-03-05T16:00:00+04:00",
        },
        headers=headers,
    )
    assert response.status_code == 201
    task = response.json()
    # Stored as naive UTC.
    assert task["start_datetime"] == "2024-03-05T04:00:00"

    assigned = await async_client.put(
        f"/api/v1/tasks/{task['id']}/assignees", json={"user_ids": [site["worker"]["id"]]}, headers=headers
    )
    assert [a["full_name"] for a in assigned.json()["assignees"]] == ["Wes Worker"]

    by_status = await async_client.get(
        "/api/v1/tasks/by-status", params={"milestone_id": site["milestone"]["id"]}, headers=headers
    )
    assert list(by_status.json()) == ["todo"]

    duplicate = await async_client.post(f"/api/v1/tasks/{task['id']}/duplicate", headers=headers)
    assert duplicate.status_code == 201
    assert duplicate.json()["title"] == "Survey (Copy)"
