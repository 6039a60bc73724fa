"""
Notification service: in-app inbox plus the automated reminder fan-out.

Every ``send_*`` helper writes one ``Notification`` row per recipient and
returns how many were created; they flush but never commit, so a reminder
batch is rolled back together with the request that triggered it.
"""
import logging
import math
from datetime import date

from sqlalchemy import delete, func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.models import Invoice, Milestone, Notification, Profile, Project, ProjectMember, Task
from sitetrack.schemas import PaginatedResponse
from sitetrack.services import invoice_service
from sitetrack.utils import format_currency

logger = logging.getLogger(__name__)

DEADLINE_ALERT_DAYS = (3, 1, 0)


def _notification_to_dict(n: Notification) -> dict:
    return {
        "id": n.id,
        "user_id": n.user_id,
        "title": n.title,
        "body": n.body,
        "payload": n.payload,
        "read": n.read,
        "created_at": n.created_at.isoformat() if n.created_at else None,
    }


# ---------------------------------------------------------------------------
# Inbox
# ---------------------------------------------------------------------------

async def create_notification(
    db: AsyncSession, user_id: int, title: str, body: str | None = None, payload: dict | None = None
) -> dict:
    notification = Notification(user_id=user_id, title=title, body=body, payload=payload)
    db.add(notification)
    await db.flush()
    return _notification_to_dict(notification)


async def notify_users(
    db: AsyncSession, user_ids, title: str, body: str | None = None, payload: dict | None = None
) -> int:
    """Create the same notification for each id in *user_ids* (deduplicated)."""
    recipients = list(dict.fromkeys(user_ids))
    for user_id in recipients:
        db.add(Notification(user_id=user_id, title=title, body=body, payload=payload))
    if recipients:
        await db.flush()
    return len(recipients)


async def get_notifications(
    db: AsyncSession,
    user_id: int,
    unread_only: bool = False,
    page: int = 1,
    page_size: int = 20,
) -> PaginatedResponse:
    filters = [Notification.user_id == user_id]
    if unread_only:
        filters.append(Notification.read.is_(False))

    total = (await db.execute(select(func.count()).select_from(Notification).where(*filters))).scalar_one()
    q = (
        select(Notification)
        .where(*filters)
        .order_by(Notification.created_at.desc(), Notification.id.desc())
        .offset((page - 1) * page_size)
        .limit(page_size)
    )
    rows = (await db.execute(q)).scalars().all()
    return PaginatedResponse(
        items=[_notification_to_dict(n) for n in rows],
        total=total,
        page=page,
        page_size=page_size,
        pages=math.ceil(total / page_size) if total > 0 else 0,
    )


async def mark_as_read(db: AsyncSession, notification_id: int, user_id: int) -> dict | None:
    result = await db.execute(
        select(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    )
    notification = result.scalar_one_or_none()
    if notification is None:
        return None
    notification.read = True
    await db.flush()
    return _notification_to_dict(notification)


async def mark_all_as_read(db: AsyncSession, user_id: int) -> int:
    result = await db.execute(
        update(Notification)
        .where(Notification.user_id == user_id, Notification.read.is_(False))
        .values(read=True)
    )
    return result.rowcount or 0


async def get_unread_count(db: AsyncSession, user_id: int) -> int:
    q = select(func.count()).select_from(Notification).where(
        Notification.user_id == user_id, Notification.read.is_(False)
    )
    return (await db.execute(q)).scalar_one()


async def delete_notification(db: AsyncSession, notification_id: int, user_id: int) -> bool:
    result = await db.execute(
        delete(Notification).where(Notification.id == notification_id, Notification.user_id == user_id)
    )
    return bool(result.rowcount)


# ---------------------------------------------------------------------------
# Domain notifications
# ---------------------------------------------------------------------------

async def send_daily_attendance_reminder(db: AsyncSession, milestone_id: int) -> int:
    """Remind the milestone's supervisors to mark today's attendance."""
    milestone = await db.get(Milestone, milestone_id)
    if milestone is None:
        return 0
    q = (
        select(ProjectMember.user_id)
        .join(Profile, Profile.id == ProjectMember.user_id)
        .where(ProjectMember.milestone_id == milestone_id, Profile.role == "supervisor")
    )
    supervisor_ids = (await db.execute(q)).scalars().all()
    return await notify_users(
        db,
        supervisor_ids,
        "Daily Attendance Reminder",
        f"Please mark attendance for team members on {milestone.name}",
        {"type": "attendance_reminder", "milestone_id": milestone_id},
    )


async def send_milestone_deadline_alert(db: AsyncSession, milestone_id: int, days_until: int) -> int:
    milestone = await db.get(Milestone, milestone_id)
    if milestone is None:
        return 0
    member_ids = (
        await db.execute(select(ProjectMember.user_id).where(ProjectMember.milestone_id == milestone_id))
    ).scalars().all()

    if days_until == 0:
        message = f'Milestone "{milestone.name}" is due today!'
    else:
        unit = "day" if days_until == 1 else "days"
        message = f'Milestone "{milestone.name}" is due in {days_until} {unit}'

    return await notify_users(
        db,
        member_ids,
        "Milestone Deadline Alert",
        message,
        {"type": "milestone_deadline", "milestone_id": milestone_id, "days_until_deadline": days_until},
    )


async def send_invoice_reminder(db: AsyncSession, invoice_id: int) -> int:
    """Remind whoever created the invoice's milestone that money is still owed."""
    q = (
        select(Invoice, Milestone, Project.currency)
        .join(Milestone, Milestone.id == Invoice.milestone_id)
        .join(Project, Project.id == Milestone.project_id)
        .where(Invoice.id == invoice_id)
    )
    row = (await db.execute(q)).first()
    if row is None:
        return 0
    invoice, milestone, currency = row
    if milestone.created_by is None:
        return 0
    await create_notification(
        db,
        milestone.created_by,
        "Invoice Payment Reminder",
        f'Invoice {invoice.invoice_number} for "{milestone.name}" is {invoice.status}. '
        f"Balance due: {format_currency(invoice.balance_due, currency)}",
        {"type": "invoice_reminder", "invoice_id": invoice.id, "invoice_number": invoice.invoice_number},
    )
    return 1


async def send_task_assignment_notification(db: AsyncSession, task_id: int, user_ids) -> int:
    q = (
        select(Task.title, Milestone.name)
        .join(Milestone, Milestone.id == Task.milestone_id)
        .where(Task.id == task_id)
    )
    row = (await db.execute(q)).first()
    if row is None:
        return 0
    title, milestone_name = row
    return await notify_users(
        db,
        user_ids,
        "New Task Assigned",
        f'You have been assigned to task "{title}" in {milestone_name or "a milestone"}',
        {"type": "task_assignment", "task_id": task_id},
    )


async def send_payment_received_notification(db: AsyncSession, project_id: int, amount: float) -> int:
    project = await db.get(Project, project_id)
    if project is None or project.created_by is None:
        return 0
    await create_notification(
        db,
        project.created_by,
        "Payment Received",
        f'A payment of {format_currency(amount, project.currency)} has been received '
        f'for project "{project.name}"',
        {"type": "payment_received", "project_id": project_id, "amount": amount},
    )
    return 1


# ---------------------------------------------------------------------------
# Daily job
# ---------------------------------------------------------------------------

async def schedule_automated_notifications(db: AsyncSession, today: date | None = None) -> dict:
    """
    Run the daily reminder sweep.

    - milestones still open with an end date: a deadline alert at 3, 1 and 0
      days out, and an attendance reminder every day until the end date;
    - invoices: pending/partial ones past due are first flipped to overdue,
      then every unpaid invoice past its due date gets a reminder.

    A failure on one milestone or invoice is logged and the sweep continues.
    """
    today = today or date.today()
    counts = {"deadline_alerts": 0, "attendance_reminders": 0, "invoice_reminders": 0, "overdue_marked": 0}

    milestones = (
        await db.execute(
            select(Milestone.id, Milestone.end_date).where(
                Milestone.status != "completed", Milestone.end_date.is_not(None)
            )
        )
    ).all()
    for milestone_id, end_date in milestones:
        days_until = (end_date - today).days
        try:
            if days_until in DEADLINE_ALERT_DAYS:
                counts["deadline_alerts"] += await send_milestone_deadline_alert(db, milestone_id, days_until)
            if days_until >= 0:
                counts["attendance_reminders"] += await send_daily_attendance_reminder(db, milestone_id)
        except Exception:
            logger.exception("Reminder sweep failed for milestone %s", milestone_id)

    counts["overdue_marked"] = await invoice_service.mark_overdue_invoices(db, today)

    invoice_ids = (
        await db.execute(
            select(Invoice.id).where(
                Invoice.status.in_(("pending", "partial", "overdue")), Invoice.due_date < today
            )
        )
    ).scalars().all()
    for invoice_id in invoice_ids:
        try:
            counts["invoice_reminders"] += await send_invoice_reminder(db, invoice_id)
        except Exception:
            logger.exception("Invoice reminder failed for invoice %s", invoice_id)

    logger.info("Automated notifications sent: %s", counts)
    return counts
