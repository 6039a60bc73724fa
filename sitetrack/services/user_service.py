"""
User service: CRUD for profiles (accounts plus default wage settings).

Email uniqueness is enforced by the database; the router translates the
resulting ``IntegrityError`` into a 409.
"""
import logging

from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.errors import PermissionDeniedError
from sitetrack.models import Profile
from sitetrack.schemas import ProfileCreate, ProfileUpdate
from sitetrack.security import hash_password
from sitetrack.services import permission_service

logger = logging.getLogger(__name__)


def _profile_to_dict(profile: Profile) -> dict:
    return {
        "id": profile.id,
        "full_name": profile.full_name,
        "email": profile.email,
        "phone": profile.phone,
        "role": profile.role,
        "status": profile.status,
        "hourly_rate": profile.hourly_rate,
        "wage_type": profile.wage_type,
        "daily_rate": profile.daily_rate,
        "monthly_salary": profile.monthly_salary,
        "default_working_days_per_month": profile.default_working_days_per_month,
        "created_at": profile.created_at.isoformat() if profile.created_at else None,
    }


async def get_users(
    db: AsyncSession,
    role: str | None = None,
    status: str | None = None,
    search: str | None = None,
) -> list[dict]:
    q = select(Profile).order_by(Profile.full_name)
    if role:
        q = q.where(Profile.role == role)
    if status:
        q = q.where(Profile.status == status)
    if search:
        pattern = f"%{search}%"
        q = q.where(or_(Profile.full_name.ilike(pattern), Profile.email.ilike(pattern)))
    result = await db.execute(q)
    return [_profile_to_dict(p) for p in result.scalars().all()]


async def get_user(db: AsyncSession, user_id: int) -> dict | None:
    profile = await db.get(Profile, user_id)
    return _profile_to_dict(profile) if profile else None


async def get_user_by_email(db: AsyncSession, email: str) -> Profile | None:
    result = await db.execute(select(Profile).where(Profile.email == email.strip().lower()))
    return result.scalar_one_or_none()


async def create_user(db: AsyncSession, data: ProfileCreate) -> dict:
    values = data.model_dump(exclude={"password"})
    values["email"] = values["email"].strip().lower()
    profile = Profile(**values)
    if data.password:
        profile.password_hash = hash_password(data.password)
    db.add(profile)
    await db.flush()
    logger.info("Created profile %s (%s)", profile.id, profile.role)
    return _profile_to_dict(profile)


async def update_user(
    db: AsyncSession, user_id: int, data: ProfileUpdate, actor: Profile
) -> dict | None:
    """
    Apply a partial update on behalf of *actor*.

    Only admins may change roles or account status; other callers must pass
    ``can_manage_user`` for the target profile.
    """
    profile = await db.get(Profile, user_id)
    if profile is None:
        return None

    if not await permission_service.can_manage_user(db, actor.id, actor.role, user_id):
        raise PermissionDeniedError("You cannot manage this user")

    update_data = data.model_dump(exclude_unset=True)
    if ("role" in update_data or "status" in update_data) and not permission_service.is_admin(actor.role):
        raise PermissionDeniedError("Only administrators can change roles or account status")

    password = update_data.pop("password", None)
    for field, value in update_data.items():
        setattr(profile, field, value)
    if password:
        profile.password_hash = hash_password(password)

    await db.flush()
    return _profile_to_dict(profile)


async def deactivate_user(db: AsyncSession, user_id: int) -> dict | None:
    profile = await db.get(Profile, user_id)
    if profile is None:
        return None
    profile.status = "inactive"
    await db.flush()
    logger.info("Deactivated profile %s", user_id)
    return _profile_to_dict(profile)
