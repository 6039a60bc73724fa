"""
Role predicates and the membership/assignment based data scoping.
"""
import pytest
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.schemas import MilestoneCreate, ProfileCreate, ProjectCreate, TaskCreate
from sitetrack.services import milestone_service, permission_service, project_service, task_service, user_service


# ---------------------------------------------------------------------------
# Role predicates
# ---------------------------------------------------------------------------

def test_role_predicates():
    assert permission_service.is_admin("admin")
    assert not permission_service.is_admin("supervisor")
    assert permission_service.is_supervisor("supervisor")
    assert permission_service.is_worker("worker")
    assert permission_service.is_client("client")
    assert not permission_service.is_client("worker")
    assert permission_service.has_role("worker", ("admin", "worker"))
    assert permission_service.has_role("client", "client")
    assert not permission_service.has_role(None, ("admin",))


@pytest.mark.parametrize(
    "predicate, allowed",
    [
        (permission_service.can_manage_system_users, {"admin"}),
        (permission_service.can_manage_users, {"admin", "supervisor"}),
        (permission_service.can_manage_projects, {"admin", "supervisor"}),
        (permission_service.can_create_projects, {"admin"}),
        (permission_service.can_create_milestones, {"admin", "supervisor"}),
        (permission_service.can_create_tasks, {"admin", "supervisor"}),
        (permission_service.can_manage_tasks, {"admin", "supervisor"}),
        (permission_service.can_delete_tasks, {"admin"}),
        (permission_service.can_approve_attendance, {"admin", "supervisor"}),
        (permission_service.can_view_reports, {"admin", "supervisor"}),
        (permission_service.can_manage_financials, {"admin"}),
    ],
)
def test_capabilities_by_role(predicate, allowed):
    for role in ("admin", "supervisor", "worker", "client"):
        assert predicate(role) is (role in allowed)


# ---------------------------------------------------------------------------
# Scoping
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_assigned_project_and_milestone_ids(db_session: AsyncSession, site):
    supervisor = site["supervisor"]
    ids = await permission_service.get_user_assigned_milestone_ids(db_session, supervisor["id"])
    assert ids == [site["milestone"]["id"]]
    projects = await permission_service.get_user_assigned_project_ids(db_session, supervisor["id"])
    assert projects == [site["project"]["id"]]


@pytest.mark.asyncio
async def test_worker_reaches_milestone_through_task_assignment(db_session: AsyncSession, site):
    worker = site["worker"]
    milestone_id = site["milestone"]["id"]

    # Membership alone is not enough for a worker.
    assert not await permission_service.can_user_access_milestone(db_session, worker["id"], milestone_id, "worker")

    await task_service.create_task(db_session, TaskCreate(
        milestone_id=milestone_id, title="Rebar", assignee_ids=[worker["id"]],
    ))
    assert await permission_service.can_user_access_milestone(db_session, worker["id"], milestone_id, "worker")


@pytest.mark.asyncio
async def test_filters_by_role(db_session: AsyncSession, site):
    outsider_project = await project_service.create_project(db_session, ProjectCreate(name="Elsewhere"))
    outsider_milestone = await milestone_service.create_milestone(
        db_session, MilestoneCreate(project_id=outsider_project["id"], name="Other")
    )
    projects = [site["project"], outsider_project]
    milestones = [site["milestone"], outsider_milestone]

    admin, supervisor = site["admin"], site["supervisor"]
    assert await permission_service.filter_projects_by_access(db_session, admin["id"], "admin", projects) == projects
    visible = await permission_service.filter_projects_by_access(db_session, supervisor["id"], "supervisor", projects)
    assert [p["id"] for p in visible] == [site["project"]["id"]]

    visible = await permission_service.filter_milestones_by_access(
        db_session, supervisor["id"], "supervisor", milestones
    )
    assert [m["id"] for m in visible] == [site["milestone"]["id"]]


@pytest.mark.asyncio
async def test_filter_tasks_by_access(db_session: AsyncSession, site):
    worker = site["worker"]
    mine = await task_service.create_task(db_session, TaskCreate(
        milestone_id=site["milestone"]["id"], title="Mine", assignee_ids=[worker["id"]],
    ))
    other = await task_service.create_task(db_session, TaskCreate(
        milestone_id=site["milestone"]["id"], title="Someone else's",
    ))
    tasks = [mine, other]

    worker_view = await permission_service.filter_tasks_by_access(db_session, worker["id"], "worker", tasks)
    assert [t["id"] for t in worker_view] == [mine["id"]]

    supervisor_view = await permission_service.filter_tasks_by_access(
        db_session, site["supervisor"]["id"], "supervisor", tasks
    )
    assert len(supervisor_view) == 2


@pytest.mark.asyncio
async def test_team_members_and_can_manage_user(db_session: AsyncSession, site):
    supervisor, worker, admin = site["supervisor"], site["worker"], site["admin"]
    stranger = await user_service.create_user(
        db_session, ProfileCreate(full_name="Stranger", email="stranger@example.com")
    )

    team = await permission_service.get_team_member_ids(db_session, supervisor["id"], "supervisor")
    assert set(team) == {supervisor["id"], worker["id"]}
    assert await permission_service.get_team_member_ids(db_session, worker["id"], "worker") == [worker["id"]]

    assert await permission_service.can_manage_user(db_session, supervisor["id"], "supervisor", worker["id"])
    assert not await permission_service.can_manage_user(db_session, supervisor["id"], "supervisor", stranger["id"])
    assert await permission_service.can_manage_user(db_session, worker["id"], "worker", worker["id"])
    assert not await permission_service.can_manage_user(db_session, worker["id"], "worker", supervisor["id"])
    assert await permission_service.can_manage_user(db_session, admin["id"], "admin", stranger["id"])
