"""
Test infrastructure for the SiteTrack API.

Strategy
--------
- SQLite in-memory via aiosqlite; StaticPool makes every session share the
  single connection an in-memory database lives on.
- The app's get_db dependency is overridden with the test session factory.
- All tables are created before each test and dropped after.
- Redis is disabled by setting cache._redis = None; the CacheManager turns
  reads into misses and writes into no-ops, so the services always compute
  from the database.
- Seeding fixtures write through the services and commit before the test
  starts issuing HTTP requests.
"""
from datetime import date

import pytest
import pytest_asyncio
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from sitetrack.cache import cache
from sitetrack.database import create_schema, drop_schema, get_db
from sitetrack.main import app
from sitetrack.middleware import install_query_counter
from sitetrack.schemas import MilestoneCreate, ProfileCreate, ProjectCreate
from sitetrack.security import create_access_token
from sitetrack.services import milestone_service, project_service, user_service

TEST_PASSWORD = "correct-horse-1"

# ---------------------------------------------------------------------------
# Test database engine (SQLite in-memory with aiosqlite)
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ---------------------------------------------------------------------------
# Dependency override
# ---------------------------------------------------------------------------

async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    cache._redis = None
    await create_schema(engine_test)
    yield
    await drop_schema(engine_test)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    """A live AsyncSession for seeding data and calling services directly."""
    async with async_session_test() as session:
        yield session


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    """httpx.AsyncClient wired to the FastAPI app via ASGITransport."""
    cache._redis = None
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def auth_headers():
    """Build a bearer header for a serialised profile."""

    def _headers(user: dict) -> dict:
        return {"Authorization": f"Bearer {create_access_token(user['id'], user['role'])}"}

    return _headers


@pytest.fixture
def dashboard_invalidations(monkeypatch) -> list:
    """Record every dashboard invalidation instead of touching Redis."""
    calls = []

    async def _record(user_id=None):
        calls.append(user_id)

    monkeypatch.setattr(cache, "invalidate_dashboard", _record)
    return calls


@pytest_asyncio.fixture
async def users(db_session: AsyncSession) -> dict:
    """
    One profile per staff role:

    - admin
    - supervisor on a 5200/month salary over 26 working days
    - worker on a daily rate of 200 and an hourly rate of 25
    """
    admin = await user_service.create_user(db_session, ProfileCreate(
        full_name="Alex Admin", email="admin@example.com", role="admin", password=TEST_PASSWORD,
    ))
    supervisor = await user_service.create_user(db_session, ProfileCreate(
        full_name="Sam Supervisor", email="supervisor@example.com", role="supervisor",
        wage_type="monthly", monthly_salary=5200, password=TEST_PASSWORD,
    ))
    worker = await user_service.create_user(db_session, ProfileCreate(
        full_name="Wes Worker", email="worker@example.com", role="worker",
        wage_type="daily", daily_rate=200, hourly_rate=25, password=TEST_PASSWORD,
    ))
    await db_session.commit()
    return {"admin": admin, "supervisor": supervisor, "worker": worker}


@pytest_asyncio.fixture
async def site(db_session: AsyncSession, users: dict) -> dict:
    """
    A project with one March 2024 milestone that has the supervisor and the
    worker as members.
    """
    project = await project_service.create_project(db_session, ProjectCreate(
        name="Marina Villa",
        site_location="Dubai Marina",
        start_date=date(2024, 3, 1),
        end_date=date(2024, 6, 30),
        total_budget=100000,
        received_amount=1000,
        currency="AED",
    ), users["admin"]["id"])
    milestone = await milestone_service.create_milestone(db_session, MilestoneCreate(
        project_id=project["id"],
        name="Foundations",
        budget=20000,
        start_date=date(2024, 3, 1),
        end_date=date(2024, 3, 31),
    ), users["admin"]["id"])
    await milestone_service.add_member(db_session, milestone["id"], users["supervisor"]["id"], "supervisor")
    await milestone_service.add_member(db_session, milestone["id"], users["worker"]["id"], "worker")
    await db_session.commit()
    return {"project": project, "milestone": milestone, **users}
