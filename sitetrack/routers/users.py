from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.database import get_db
from sitetrack.models import Profile
from sitetrack.schemas import ProfileCreate, ProfileUpdate, WageConfigUpdate
from sitetrack.security import get_current_user, require_roles
from sitetrack.services import budget_service, permission_service, user_import_export, user_service

router = APIRouter(prefix="/api/v1/users", tags=["users"])


def _csv_response(content: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type="text/csv; charset=utf-8",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


async def _check_can_manage(db: AsyncSession, user: Profile, target_user_id: int) -> None:
    if not await permission_service.can_manage_user(db, user.id, user.role, target_user_id):
        raise HTTPException(status_code=403, detail="Insufficient permissions")


async def _read_csv_body(request: Request) -> str:
    raw = await request.body()
    if not raw:
        raise HTTPException(status_code=422, detail="CSV body is empty")
    try:
        return raw.decode("utf-8")
    except UnicodeDecodeError:
        raise HTTPException(status_code=422, detail="CSV body must be UTF-8 encoded")


@router.get("")
async def list_users(
    role: str | None = None,
    status: str | None = None,
    search: str | None = None,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    users = await user_service.get_users(db, role, status, search)
    if permission_service.is_admin(current_user.role):
        return users
    team = set(await permission_service.get_team_member_ids(db, current_user.id, current_user.role))
    return [u for u in users if u["id"] in team]


@router.get("/export")
async def export_users(
    role: str | None = None,
    status: str | None = None,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    users = await user_service.get_users(db, role, status)
    now = datetime.now()
    return _csv_response(
        user_import_export.export_users_csv(users, now),
        f"users_export_{now:%Y-%m-%d}.csv",
    )


@router.get("/template")
async def download_template(_admin: Profile = Depends(require_roles("admin"))):
    return _csv_response(user_import_export.generate_user_template(), "user_import_template.csv")


@router.post("/import/validate")
async def validate_import(request: Request, _admin: Profile = Depends(require_roles("admin"))):
    users = user_import_export.parse_user_csv(await _read_csv_body(request))
    return user_import_export.validate_user_data(users)


@router.post("/import")
async def import_users(
    request: Request,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    users = user_import_export.parse_user_csv(await _read_csv_body(request))
    checked = user_import_export.validate_user_data(users)
    result = await user_import_export.import_users(db, checked["valid"])
    result["invalid"] = checked["invalid"]
    return result


@router.get("/{user_id}")
async def get_user(
    user_id: int,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.get_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    await _check_can_manage(db, current_user, user_id)
    return user


@router.post("", status_code=201)
async def create_user(
    data: ProfileCreate,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await user_service.create_user(db, data)
    except IntegrityError:
        raise HTTPException(status_code=409, detail="A user with this email already exists")


@router.put("/{user_id}")
async def update_user(
    user_id: int,
    data: ProfileUpdate,
    current_user: Profile = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.update_user(db, user_id, data, current_user)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.delete("/{user_id}")
async def deactivate_user(
    user_id: int,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    user = await user_service.deactivate_user(db, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


@router.get("/{user_id}/wage-config")
async def get_wage_config(
    user_id: int,
    milestone_id: int | None = None,
    manager: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await _check_can_manage(db, manager, user_id)
    config = await budget_service.get_member_wage_config(db, user_id, milestone_id)
    if config is None:
        raise HTTPException(status_code=404, detail="User not found")
    return config


@router.put("/{user_id}/wage-config")
async def update_wage_config(
    user_id: int,
    data: WageConfigUpdate,
    manager: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    await _check_can_manage(db, manager, user_id)
    return await budget_service.update_member_wage_config(db, user_id, data)
