from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.database import get_db
from sitetrack.models import Profile
from sitetrack.schemas import PaymentCreate, PaymentUpdate
from sitetrack.security import require_roles
from sitetrack.services import payment_service

router = APIRouter(prefix="/api/v1/payments", tags=["payments"])


@router.post("", status_code=201)
async def record_payment(
    data: PaymentCreate,
    current_user: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    return await payment_service.record_payment(db, data, current_user.id)


@router.put("/{payment_id}")
async def update_payment(
    payment_id: int,
    data: PaymentUpdate,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    payment = await payment_service.update_payment(db, payment_id, data)
    if not payment:
        raise HTTPException(status_code=404, detail="Payment not found")
    return payment


@router.delete("/{payment_id}", status_code=204)
async def delete_payment(
    payment_id: int,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    deleted = await payment_service.delete_payment(db, payment_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Payment not found")
