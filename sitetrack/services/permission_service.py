"""
Permission service: role predicates and per-user data scoping.

Roles are ``admin``, ``supervisor``, ``worker`` and ``client``.  The
predicates below are pure functions of the role string; the scoping
helpers query ``project_members`` (milestone membership) and
``task_assignments`` to decide which projects, milestones and tasks a
user can see.
"""
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.models import Milestone, Profile, ProjectMember, Task, TaskAssignment

# ---------------------------------------------------------------------------
# Role predicates
# ---------------------------------------------------------------------------

_MANAGERS = ("admin", "supervisor")


def has_role(role: str | None, roles) -> bool:
    if isinstance(roles, str):
        roles = (roles,)
    return role is not None and role in roles


def is_admin(role: str | None) -> bool:
    return role == "admin"


def is_supervisor(role: str | None) -> bool:
    return role == "supervisor"


def is_worker(role: str | None) -> bool:
    return role == "worker"


def is_client(role: str | None) -> bool:
    return role == "client"


def can_manage_system_users(role: str | None) -> bool:
    return is_admin(role)


def can_manage_users(role: str | None) -> bool:
    return has_role(role, _MANAGERS)


def can_manage_projects(role: str | None) -> bool:
    return has_role(role, _MANAGERS)


def can_create_projects(role: str | None) -> bool:
    return is_admin(role)


def can_create_milestones(role: str | None) -> bool:
    return has_role(role, _MANAGERS)


def can_create_tasks(role: str | None) -> bool:
    return has_role(role, _MANAGERS)


def can_manage_tasks(role: str | None) -> bool:
    return has_role(role, _MANAGERS)


def can_delete_tasks(role: str | None) -> bool:
    return is_admin(role)


def can_approve_attendance(role: str | None) -> bool:
    return has_role(role, _MANAGERS)


def can_view_reports(role: str | None) -> bool:
    return has_role(role, _MANAGERS)


def can_manage_financials(role: str | None) -> bool:
    return is_admin(role)


# ---------------------------------------------------------------------------
# Assignment lookups
# ---------------------------------------------------------------------------

async def get_user_assigned_milestone_ids(db: AsyncSession, user_id: int) -> list[int]:
    """Milestones the user is a member of."""
    result = await db.execute(
        select(ProjectMember.milestone_id).where(ProjectMember.user_id == user_id)
    )
    return list(dict.fromkeys(result.scalars().all()))


async def get_user_assigned_project_ids(db: AsyncSession, user_id: int) -> list[int]:
    """Distinct projects owning any milestone the user is a member of."""
    q = (
        select(Milestone.project_id)
        .join(ProjectMember, ProjectMember.milestone_id == Milestone.id)
        .where(ProjectMember.user_id == user_id)
        .distinct()
    )
    return list((await db.execute(q)).scalars().all())


async def _task_milestone_ids_for_worker(db: AsyncSession, user_id: int) -> set[int]:
    q = (
        select(Task.milestone_id)
        .join(TaskAssignment, TaskAssignment.task_id == Task.id)
        .where(TaskAssignment.user_id == user_id)
        .distinct()
    )
    return set((await db.execute(q)).scalars().all())


# ---------------------------------------------------------------------------
# Access checks
# ---------------------------------------------------------------------------

async def can_user_access_project(
    db: AsyncSession, user_id: int, project_id: int, role: str | None
) -> bool:
    if is_admin(role):
        return True
    return project_id in await get_user_assigned_project_ids(db, user_id)


async def can_user_access_milestone(
    db: AsyncSession, user_id: int, milestone_id: int, role: str | None
) -> bool:
    """
    Admins see every milestone.  Workers reach a milestone through a task
    assignment in it; everyone else through milestone membership.
    """
    if is_admin(role):
        return True
    if is_worker(role):
        return milestone_id in await _task_milestone_ids_for_worker(db, user_id)
    return milestone_id in await get_user_assigned_milestone_ids(db, user_id)


async def filter_projects_by_access(
    db: AsyncSession, user_id: int, role: str | None, projects: list
) -> list:
    if is_admin(role):
        return projects
    allowed = set(await get_user_assigned_project_ids(db, user_id))
    return [p for p in projects if _id_of(p) in allowed]


async def filter_milestones_by_access(
    db: AsyncSession, user_id: int, role: str | None, milestones: list
) -> list:
    if is_admin(role):
        return milestones
    if is_worker(role):
        allowed = await _task_milestone_ids_for_worker(db, user_id)
    else:
        allowed = set(await get_user_assigned_milestone_ids(db, user_id))
    return [m for m in milestones if _id_of(m) in allowed]


async def filter_tasks_by_access(
    db: AsyncSession, user_id: int, role: str | None, tasks: list
) -> list:
    """
    Workers keep only tasks assigned to them; supervisors and clients keep
    tasks inside milestones they belong to.
    """
    if is_admin(role):
        return tasks
    if is_worker(role):
        result = await db.execute(
            select(TaskAssignment.task_id).where(TaskAssignment.user_id == user_id)
        )
        allowed = set(result.scalars().all())
        return [t for t in tasks if _id_of(t) in allowed]
    milestone_ids = set(await get_user_assigned_milestone_ids(db, user_id))
    return [t for t in tasks if _attr(t, "milestone_id") in milestone_ids]


async def get_team_member_ids(db: AsyncSession, user_id: int, role: str | None) -> list[int]:
    """Profiles the user may act on behalf of (approve, report, manage)."""
    if is_admin(role):
        result = await db.execute(select(Profile.id))
        return list(result.scalars().all())
    if is_worker(role):
        return [user_id]

    milestone_ids = await get_user_assigned_milestone_ids(db, user_id)
    if not milestone_ids:
        return []
    result = await db.execute(
        select(ProjectMember.user_id)
        .where(ProjectMember.milestone_id.in_(milestone_ids))
        .distinct()
    )
    return list(result.scalars().all())


async def can_manage_user(
    db: AsyncSession, manager_id: int, manager_role: str | None, target_user_id: int
) -> bool:
    if is_admin(manager_role):
        return True
    if manager_id == target_user_id:
        return True
    if is_worker(manager_role):
        return False
    return target_user_id in await get_team_member_ids(db, manager_id, manager_role)


# ---------------------------------------------------------------------------
# Helpers (accept ORM rows or serialised dicts)
# ---------------------------------------------------------------------------

def _attr(obj, name: str):
    return obj[name] if isinstance(obj, dict) else getattr(obj, name)


def _id_of(obj) -> int:
    return _attr(obj, "id")
