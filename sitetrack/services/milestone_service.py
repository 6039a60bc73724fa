"""
Milestone service: milestones, their membership and progress figures.
"""
import logging
from datetime import date

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.cache import cache
from sitetrack.errors import ConflictError, NotFoundError
from sitetrack.models import (
    Attendance,
    BillingRecord,
    Expense,
    Invoice,
    InvoiceItem,
    MemberWageConfig,
    Milestone,
    PaymentRecord,
    Profile,
    Project,
    ProjectMember,
    Task,
    TaskAssignment,
)
from sitetrack.schemas import MilestoneCreate, MilestoneUpdate
from sitetrack.services import budget_service, permission_service, task_service
from sitetrack.utils import money

logger = logging.getLogger(__name__)


def _milestone_to_dict(milestone: Milestone) -> dict:
    return {
        "id": milestone.id,
        "project_id": milestone.project_id,
        "name": milestone.name,
        "description": milestone.description,
        "budget": milestone.budget,
        "start_date": milestone.start_date.isoformat() if milestone.start_date else None,
        "end_date": milestone.end_date.isoformat() if milestone.end_date else None,
        "status": milestone.status,
        "created_by": milestone.created_by,
        "created_at": milestone.created_at.isoformat() if milestone.created_at else None,
    }


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

async def create_milestone(db: AsyncSession, data: MilestoneCreate, created_by: int | None = None) -> dict:
    if await db.get(Project, data.project_id) is None:
        raise NotFoundError("Project not found")
    milestone = Milestone(**data.model_dump(), created_by=created_by)
    db.add(milestone)
    await db.flush()
    await cache.invalidate_financials(data.project_id)
    return _milestone_to_dict(milestone)


async def update_milestone(db: AsyncSession, milestone_id: int, data: MilestoneUpdate) -> dict | None:
    milestone = await db.get(Milestone, milestone_id)
    if milestone is None:
        return None
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(milestone, field, value)
    await db.flush()
    await cache.invalidate_financials(milestone.project_id)
    return _milestone_to_dict(milestone)


async def get_milestone(db: AsyncSession, milestone_id: int) -> dict | None:
    """Milestone with its tasks (assignees included) and members."""
    milestone = await db.get(Milestone, milestone_id)
    if milestone is None:
        return None
    tasks = (
        await db.execute(select(Task).where(Task.milestone_id == milestone_id).order_by(Task.id))
    ).scalars().all()
    data = _milestone_to_dict(milestone)
    data["tasks"] = await task_service._serialise(db, tasks)
    data["members"] = await get_members(db, milestone_id)
    return data


async def get_milestone_with_project(db: AsyncSession, milestone_id: int) -> dict | None:
    row = (
        await db.execute(
            select(Milestone, Project).join(Project, Project.id == Milestone.project_id).where(Milestone.id == milestone_id)
        )
    ).first()
    if row is None:
        return None
    milestone, project = row
    data = _milestone_to_dict(milestone)
    data["project"] = {
        "id": project.id,
        "name": project.name,
        "site_location": project.site_location,
        "currency": project.currency,
        "status": project.status,
    }
    return data


async def get_milestones_by_project(db: AsyncSession, project_id: int, user: Profile | None = None) -> list[dict]:
    q = (
        select(Milestone)
        .where(Milestone.project_id == project_id)
        .order_by(Milestone.start_date.is_(None), Milestone.start_date, Milestone.id)
    )
    return await milestones_for_user(db, list((await db.execute(q)).scalars().all()), user)


def timeline_key(milestone: Milestone) -> tuple:
    return (milestone.start_date is None, milestone.start_date or date.min, milestone.id)


async def milestones_for_user(db: AsyncSession, milestones: list[Milestone], user: Profile | None = None) -> list[dict]:
    """Serialise *milestones*, keeping only those *user* may see when given."""
    if user is not None:
        milestones = await permission_service.filter_milestones_by_access(db, user.id, user.role, milestones)
    return [_milestone_to_dict(m) for m in milestones]


async def delete_milestone_rows(db: AsyncSession, milestone_id: int) -> None:
    """Delete a milestone and every row hanging off it."""
    task_ids = select(Task.id).where(Task.milestone_id == milestone_id)
    invoice_ids = select(Invoice.id).where(Invoice.milestone_id == milestone_id)

    await db.execute(delete(TaskAssignment).where(TaskAssignment.task_id.in_(task_ids)))
    await db.execute(delete(BillingRecord).where(BillingRecord.milestone_id == milestone_id))
    await db.execute(delete(Attendance).where(Attendance.milestone_id == milestone_id))
    await db.execute(delete(Task).where(Task.milestone_id == milestone_id))
    await db.execute(delete(InvoiceItem).where(InvoiceItem.invoice_id.in_(invoice_ids)))
    await db.execute(delete(PaymentRecord).where(PaymentRecord.invoice_id.in_(invoice_ids)))
    await db.execute(delete(Invoice).where(Invoice.milestone_id == milestone_id))
    await db.execute(delete(Expense).where(Expense.milestone_id == milestone_id))
    await db.execute(delete(MemberWageConfig).where(MemberWageConfig.milestone_id == milestone_id))
    await db.execute(delete(ProjectMember).where(ProjectMember.milestone_id == milestone_id))
    await db.execute(delete(Milestone).where(Milestone.id == milestone_id))


async def delete_milestone(db: AsyncSession, milestone_id: int) -> bool:
    milestone = await db.get(Milestone, milestone_id)
    if milestone is None:
        return False
    project_id = milestone.project_id
    await delete_milestone_rows(db, milestone_id)
    await db.flush()
    db.expunge(milestone)
    await cache.invalidate_financials(project_id)
    logger.info("Deleted milestone %s", milestone_id)
    return True


# ---------------------------------------------------------------------------
# Members
# ---------------------------------------------------------------------------

async def get_members(db: AsyncSession, milestone_id: int) -> list[dict]:
    q = (
        select(ProjectMember, Profile)
        .join(Profile, Profile.id == ProjectMember.user_id)
        .where(ProjectMember.milestone_id == milestone_id)
        .order_by(Profile.full_name)
    )
    return [
        {
            "id": member.id,
            "user_id": profile.id,
            "full_name": profile.full_name,
            "email": profile.email,
            "profile_role": profile.role,
            "role": member.role,
        }
        for member, profile in (await db.execute(q)).all()
    ]


async def add_member(db: AsyncSession, milestone_id: int, user_id: int, role: str = "worker") -> dict:
    if await db.get(Milestone, milestone_id) is None:
        raise NotFoundError("Milestone not found")
    if await db.get(Profile, user_id) is None:
        raise NotFoundError("User not found")
    existing = await db.execute(
        select(ProjectMember.id).where(ProjectMember.milestone_id == milestone_id, ProjectMember.user_id == user_id)
    )
    if existing.scalar_one_or_none() is not None:
        raise ConflictError("User is already a member of this milestone")

    member = ProjectMember(milestone_id=milestone_id, user_id=user_id, role=role)
    db.add(member)
    try:
        await db.flush()
    except IntegrityError as exc:
        raise ConflictError("User is already a member of this milestone") from exc
    return {"id": member.id, "milestone_id": milestone_id, "user_id": user_id, "role": role}


async def remove_member(db: AsyncSession, milestone_id: int, user_id: int) -> bool:
    result = await db.execute(
        delete(ProjectMember).where(ProjectMember.milestone_id == milestone_id, ProjectMember.user_id == user_id)
    )
    return bool(result.rowcount)


# ---------------------------------------------------------------------------
# Progress / money
# ---------------------------------------------------------------------------

async def calculate_completion_percentage(db: AsyncSession, milestone_id: int) -> dict:
    rows = (
        await db.execute(
            select(Task.status, func.count()).where(Task.milestone_id == milestone_id).group_by(Task.status)
        )
    ).all()
    counts = dict(rows)
    total = sum(counts.values())
    done = counts.get("done", 0)
    return {
        "total_tasks": total,
        "completed_tasks": done,
        "in_progress_tasks": counts.get("in_progress", 0),
        "todo_tasks": counts.get("todo", 0),
        "completion_percentage": round(done / total * 100) if total else 0,
    }


async def get_milestone_wage_summary(db: AsyncSession, milestone_id: int) -> dict | None:
    report = await budget_service.generate_budget_report(db, milestone_id)
    if report is None:
        return None
    attendance_count = (
        await db.execute(select(func.count()).select_from(Attendance).where(Attendance.milestone_id == milestone_id))
    ).scalar_one()
    return {
        "total_wages": report["total_budget_spent"],
        "approved_wages": await budget_service.calculate_milestone_budget(db, milestone_id),
        "member_count": len(report["member_summaries"]),
        "attendance_records": attendance_count,
    }


async def get_milestone_expense_total(db: AsyncSession, milestone_id: int) -> float:
    q = select(func.coalesce(func.sum(Expense.amount), 0)).where(Expense.milestone_id == milestone_id)
    return money((await db.execute(q)).scalar_one())


async def can_generate_invoice(db: AsyncSession, milestone_id: int) -> dict:
    if await db.get(Milestone, milestone_id) is None:
        raise NotFoundError("Milestone not found")

    statuses = (await db.execute(select(Task.status).where(Task.milestone_id == milestone_id))).scalars().all()
    if not statuses:
        return {"can_generate": False, "reason": "Milestone has no tasks"}
    if "done" not in statuses:
        return {"can_generate": False, "reason": "No completed tasks in milestone"}

    existing = (
        await db.execute(
            select(func.count())
            .select_from(Invoice)
            .where(Invoice.milestone_id == milestone_id, Invoice.status != "cancelled")
        )
    ).scalar_one()
    if existing:
        return {"can_generate": False, "reason": "Invoice already exists for this milestone"}
    return {"can_generate": True, "reason": None}
