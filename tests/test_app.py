"""
Application-level behaviour: health, metrics, the timing middleware and CORS.
"""
import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.schemas import TaskCreate
from sitetrack.services import attendance_service, task_service


@pytest.mark.asyncio
async def test_health(async_client: AsyncClient):
    response = await async_client.get("/health")
    assert response.status_code == 200
    assert response.json() == {"status": "healthy", "version": "1.0.0"}
    assert response.headers["x-query-count"] == "0"
    assert float(response.headers["x-response-time-ms"]) >= 0


@pytest.mark.asyncio
async def test_query_count_header_counts_statements(async_client: AsyncClient, users, auth_headers):
    response = await async_client.get("/api/v1/auth/me", headers=auth_headers(users["worker"]))
    assert response.status_code == 200
    assert int(response.headers["x-query-count"]) >= 1


@pytest.mark.asyncio
async def test_metrics(async_client: AsyncClient, db_session: AsyncSession, site, auth_headers):
    task = await task_service.create_task(db_session, TaskCreate(milestone_id=site["milestone"]["id"], title="Survey"))
    await attendance_service.clock_in(db_session, site["worker"]["id"], task["id"])
    await db_session.commit()

    response = await async_client.get("/api/v1/metrics", headers=auth_headers(site["admin"]))
    assert response.status_code == 200
    body = response.json()
    assert body["total_profiles"] == 3
    assert body["total_projects"] == 1
    assert body["active_projects"] == 1
    assert body["total_tasks"] == 1
    assert body["open_tasks"] == 1
    assert body["pending_attendance"] == 1
    assert body["outstanding_invoices"] == 0
    assert body["cache_info"]["connected"] is False

    forbidden = await async_client.get("/api/v1/metrics", headers=auth_headers(site["supervisor"]))
    assert forbidden.status_code == 403


@pytest.mark.asyncio
async def test_cors_no_credentials_with_wildcard_origin(async_client: AsyncClient):
    resp = await async_client.options(
        "/api/v1/projects",
        headers={"Origin": "https://example.com", "Access-Control-Request-Method": "GET"},
    )
    assert resp.headers.get("access-control-allow-credentials", "").lower() != "true"


@pytest.mark.asyncio
async def test_cache_without_redis_is_a_no_op():
    from sitetrack.cache import CacheManager

    manager = CacheManager()
    await manager.set("financials:summary", {"total_revenue": 1})
    assert await manager.get("financials:summary") is None
    await manager.invalidate_financials(7)
    await manager.invalidate_dashboard()
    assert manager.stats == {"connected": False, "hits": 0, "misses": 1, "hit_rate": 0.0}
