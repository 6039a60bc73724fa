"""
Shared request dependencies: paging, date windows and scope checks.
"""
from datetime import date

from fastapi import HTTPException, Query
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.config import settings
from sitetrack.models import Profile
from sitetrack.services import permission_service


class PaginationParams:
    """
    ``page`` / ``page_size`` query parameters for list endpoints::

        @router.get("/notifications")
        async def list_notifications(pagination: PaginationParams = Depends()):
            ...

    ``page_size`` is clamped to ``settings.MAX_PAGE_SIZE``.
    """

    def __init__(
        self,
        page: int = Query(1, ge=1, description="Page number (1-based)."),
        page_size: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, description="Items per page."),
    ) -> None:
        self.page = page
        self.page_size = min(page_size, settings.MAX_PAGE_SIZE)


class DateRange:
    """Optional inclusive ``start`` / ``end`` dates; 422 when reversed."""

    def __init__(
        self,
        start: date | None = Query(None, description="First day included (YYYY-MM-DD)."),
        end: date | None = Query(None, description="Last day included (YYYY-MM-DD)."),
    ) -> None:
        if start and end and start > end:
            raise HTTPException(status_code=422, detail="start must not be after end")
        self.start = start
        self.end = end


async def ensure_project_access(db: AsyncSession, user: Profile, project_id: int) -> None:
    if not await permission_service.can_user_access_project(db, user.id, project_id, user.role):
        raise HTTPException(status_code=403, detail="Insufficient permissions")


async def ensure_milestone_access(db: AsyncSession, user: Profile, milestone_id: int) -> None:
    if not await permission_service.can_user_access_milestone(db, user.id, milestone_id, user.role):
        raise HTTPException(status_code=403, detail="Insufficient permissions")
