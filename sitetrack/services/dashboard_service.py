"""
Worker dashboard: counts over the tasks assigned to one user.

The task counters are cached per user under ``dashboard:{user_id}:stats``
for a short TTL.  Task writes drop every dashboard key; attendance writes
drop the owner's.
"""
import logging
from datetime import datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.cache import cache, dashboard_key
from sitetrack.config import settings
from sitetrack.models import Milestone, Project, Task, TaskAssignment
from sitetrack.utils import utcnow

logger = logging.getLogger(__name__)

PENDING_STATUSES = ("todo", "in_progress")


def _empty_counts() -> dict:
    return {"assigned": 0, "pending": 0, "completed": 0, "overdue": 0}


def _count(counts: dict, task: Task, now: datetime) -> None:
    counts["assigned"] += 1
    if task.status in PENDING_STATUSES:
        counts["pending"] += 1
    if task.status == "done":
        counts["completed"] += 1
    elif task.end_datetime is not None and task.end_datetime < now:
        counts["overdue"] += 1


def _assigned_tasks_query(user_id: int):
    return (
        select(Task, Milestone, Project)
        .join(TaskAssignment, TaskAssignment.task_id == Task.id)
        .join(Milestone, Milestone.id == Task.milestone_id)
        .join(Project, Project.id == Milestone.project_id)
        .where(TaskAssignment.user_id == user_id)
    )


async def get_worker_task_stats(db: AsyncSession, user_id: int, now: datetime | None = None) -> dict:
    async def compute() -> dict:
        moment = now or utcnow()
        counts = _empty_counts()
        for task, _milestone, _project in (await db.execute(_assigned_tasks_query(user_id))).all():
            _count(counts, task, moment)
        return counts

    return await cache.get_or_compute(dashboard_key(user_id), compute, ttl=settings.CACHE_TTL_DASHBOARD)


async def get_worker_projects(db: AsyncSession, user_id: int, now: datetime | None = None) -> list[dict]:
    now = now or utcnow()
    projects: dict[int, dict] = {}
    q = _assigned_tasks_query(user_id).order_by(Project.name)
    for task, _milestone, project in (await db.execute(q)).all():
        entry = projects.setdefault(
            project.id,
            {"project_id": project.id, "project_name": project.name, **_empty_counts()},
        )
        _count(entry, task, now)
    return list(projects.values())


async def get_worker_milestones(db: AsyncSession, user_id: int, now: datetime | None = None) -> list[dict]:
    now = now or utcnow()
    milestones: dict[int, dict] = {}
    q = _assigned_tasks_query(user_id).order_by(Milestone.start_date.is_(None), Milestone.start_date, Milestone.id)
    for task, milestone, project in (await db.execute(q)).all():
        entry = milestones.setdefault(
            milestone.id,
            {
                "milestone_id": milestone.id,
                "milestone_name": milestone.name,
                "project_id": project.id,
                "project_name": project.name,
                "status": milestone.status,
                "start_date": milestone.start_date.isoformat() if milestone.start_date else None,
                "end_date": milestone.end_date.isoformat() if milestone.end_date else None,
                **_empty_counts(),
            },
        )
        _count(entry, task, now)
    return list(milestones.values())


async def get_worker_recent_tasks(db: AsyncSession, user_id: int, limit: int = 5) -> list[dict]:
    q = _assigned_tasks_query(user_id).order_by(Task.created_at.desc(), Task.id.desc()).limit(limit)
    return [
        {
            "id": task.id,
            "title": task.title,
            "status": task.status,
            "start_datetime": task.start_datetime.isoformat() if task.start_datetime else None,
            "end_datetime": task.end_datetime.isoformat() if task.end_datetime else None,
            "milestone_id": milestone.id,
            "milestone_name": milestone.name,
            "project_name": project.name,
        }
        for task, milestone, project in (await db.execute(q)).all()
    ]


async def get_worker_dashboard(db: AsyncSession, user_id: int) -> dict:
    return {
        "stats": await get_worker_task_stats(db, user_id),
        "projects": await get_worker_projects(db, user_id),
        "milestones": await get_worker_milestones(db, user_id),
        "recent_tasks": await get_worker_recent_tasks(db, user_id),
    }
