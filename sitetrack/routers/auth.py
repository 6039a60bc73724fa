from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.database import get_db
from sitetrack.models import Profile
from sitetrack.schemas import LoginRequest, TokenResponse
from sitetrack.security import create_access_token, get_current_user, verify_password
from sitetrack.services import user_service

router = APIRouter(prefix="/api/v1/auth", tags=["auth"])


@router.post("/login", response_model=TokenResponse)
async def login(data: LoginRequest, db: AsyncSession = Depends(get_db)):
    user = await user_service.get_user_by_email(db, data.email)
    if user is None or not verify_password(data.password, user.password_hash):
        raise HTTPException(status_code=401, detail="Invalid email or password")
    if user.status != "active":
        raise HTTPException(status_code=401, detail="User account is inactive")
    return TokenResponse(access_token=create_access_token(user.id, user.role), user_id=user.id, role=user.role)


@router.get("/me")
async def me(current_user: Profile = Depends(get_current_user), db: AsyncSession = Depends(get_db)):
    return await user_service.get_user(db, current_user.id)
