"""
In-app inbox and the daily automated reminder sweep.
"""
from datetime import date

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.models import Notification
from sitetrack.schemas import InvoiceCreate
from sitetrack.services import invoice_service, notification_service


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_inbox_pagination_and_unread(db_session: AsyncSession, users):
    worker_id = users["worker"]["id"]
    for i in range(25):
        await notification_service.create_notification(db_session, worker_id, f"Note {i}")
    await notification_service.create_notification(db_session, users["admin"]["id"], "Not for the worker")

    page = await notification_service.get_notifications(db_session, worker_id, page=2, page_size=10)
    assert page.total == 25
    assert page.pages == 3
    assert len(page.items) == 10

    first = page.items[0]
    assert (await notification_service.mark_as_read(db_session, first["id"], worker_id))["read"] is True
    assert await notification_service.get_unread_count(db_session, worker_id) == 24
    unread = await notification_service.get_notifications(db_session, worker_id, unread_only=True)
    assert unread.total == 24

    assert await notification_service.mark_all_as_read(db_session, worker_id) == 24
    assert await notification_service.get_unread_count(db_session, worker_id) == 0
    assert await notification_service.get_unread_count(db_session, users["admin"]["id"]) == 1


@pytest.mark.asyncio
async def test_inbox_is_per_user(db_session: AsyncSession, users):
    note = await notification_service.create_notification(db_session, users["admin"]["id"], "Private")
    worker_id = users["worker"]["id"]
    assert await notification_service.mark_as_read(db_session, note["id"], worker_id) is None
    assert await notification_service.delete_notification(db_session, note["id"], worker_id) is False
    assert await notification_service.delete_notification(db_session, note["id"], users["admin"]["id"]) is True


@pytest.mark.asyncio
async def test_notify_users_deduplicates(db_session: AsyncSession, users):
    ids = [users["worker"]["id"], users["worker"]["id"], users["admin"]["id"]]
    assert await notification_service.notify_users(db_session, ids, "Heads up") == 2
    assert await notification_service.notify_users(db_session, [], "Nobody") == 0


# ---------------------------------------------------------------------------
# Domain notifications
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_deadline_alert_wording(db_session: AsyncSession, site):
    milestone_id = site["milestone"]["id"]
    assert await notification_service.send_milestone_deadline_alert(db_session, milestone_id, 0) == 2
    assert await notification_service.send_milestone_deadline_alert(db_session, milestone_id, 1) == 2
    assert await notification_service.send_milestone_deadline_alert(db_session, 9999, 1) == 0

    bodies = (
        await db_session.execute(
            select(Notification.body).where(Notification.user_id == site["worker"]["id"]).order_by(Notification.id)
        )
    ).scalars().all()
    assert bodies == ['Milestone "Foundations" is due today!', 'Milestone "Foundations" is due in 1 day']


@pytest.mark.asyncio
async def test_attendance_reminder_goes_to_supervisors(db_session: AsyncSession, site):
    assert await notification_service.send_daily_attendance_reminder(db_session, site["milestone"]["id"]) == 1
    note = (await db_session.execute(select(Notification))).scalar_one()
    assert note.user_id == site["supervisor"]["id"]
    assert note.payload == {"type": "attendance_reminder", "milestone_id": site["milestone"]["id"]}


@pytest.mark.asyncio
async def test_automated_sweep(db_session: AsyncSession, site):
    invoice = await invoice_service.create_invoice(db_session, InvoiceCreate(
        milestone_id=site["milestone"]["id"], issue_date=date(2024, 2, 1),
        items=[{"description": "Mobilisation", "amount": 1500}],
    ))

    counts = await notification_service.schedule_automated_notifications(db_session, date(2024, 3, 28))
    assert counts == {
        "deadline_alerts": 2,
        "attendance_reminders": 1,
        "invoice_reminders": 1,
        "overdue_marked": 1,
    }
    assert (await invoice_service.get_invoice(db_session, invoice["id"]))["status"] == "overdue"

    reminder = (
        await db_session.execute(select(Notification).where(Notification.title == "Invoice Payment Reminder"))
    ).scalar_one()
    assert reminder.user_id == site["admin"]["id"]
    assert "AED 1,500.00" in reminder.body

    # After the end date only overdue invoices are chased.
    later = await notification_service.schedule_automated_notifications(db_session, date(2024, 4, 2))
    assert later == {"deadline_alerts": 0, "attendance_reminders": 0, "invoice_reminders": 1, "overdue_marked": 0}


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_notification_endpoints(async_client: AsyncClient, users, auth_headers):
    worker, supervisor = users["worker"], users["supervisor"]

    created = await async_client.post(
        "/api/v1/notifications",
        json={"user_id": worker["id"], "title": "Bring PPE", "payload": {"type": "manual"}},
        headers=auth_headers(supervisor),
    )
    assert created.status_code == 201
    forbidden = await async_client.post(
        "/api/v1/notifications", json={"user_id": supervisor["id"], "title": "x"}, headers=auth_headers(worker)
    )
    assert forbidden.status_code == 403

    headers = auth_headers(worker)
    inbox = await async_client.get("/api/v1/notifications", headers=headers)
    assert inbox.json()["total"] == 1
    assert inbox.json()["items"][0]["title"] == "Bring PPE"
    assert (await async_client.get("/api/v1/notifications/unread-count", headers=headers)).json() == {"count": 1}

    note_id = created.json()["id"]
    assert (await async_client.post(f"/api/v1/notifications/{note_id}/read", headers=headers)).json()["read"] is True
    assert (await async_client.post("/api/v1/notifications/read-all", headers=headers)).json() == {"updated": 0}

    assert (await async_client.delete(f"/api/v1/notifications/{note_id}", headers=headers)).status_code == 204
    assert (await async_client.delete(f"/api/v1/notifications/{note_id}", headers=headers)).status_code == 404


@pytest.mark.asyncio
async def test_notification_job_endpoint(async_client: AsyncClient, site, auth_headers):
    response = await async_client.post(
        "/api/v1/jobs/notifications", params={"today": "2024-03-31"}, headers=auth_headers(site["admin"])
    )
    assert response.status_code == 200
    assert response.json()["deadline_alerts"] == 2

    overdue = await async_client.post(
        "/api/v1/jobs/overdue-invoices", params={"today": "2024-03-31"}, headers=auth_headers(site["admin"])
    )
    assert overdue.json() == {"marked": 0}
