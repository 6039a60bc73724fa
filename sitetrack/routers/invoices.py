from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.database import get_db
from sitetrack.models import Profile
from sitetrack.schemas import InvoiceCreate, InvoiceUpdate
from sitetrack.security import require_roles
from sitetrack.services import invoice_service, notification_service, payment_service

router = APIRouter(prefix="/api/v1/invoices", tags=["invoices"])


@router.get("")
async def list_invoices(
    milestone_id: int | None = None,
    project_id: int | None = None,
    status: str | None = None,
    _user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    return await invoice_service.get_invoices(db, milestone_id, project_id, status)


@router.get("/shared/{share_token}")
async def get_shared_invoice(share_token: str, db: AsyncSession = Depends(get_db)):
    invoice = await invoice_service.get_invoice_by_share_token(db, share_token)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


@router.get("/suggestions/{milestone_id}")
async def suggest_items(
    milestone_id: int,
    _user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    return await invoice_service.suggest_invoice_items(db, milestone_id)


@router.get("/{invoice_id}")
async def get_invoice(
    invoice_id: int,
    _user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    invoice = await invoice_service.get_invoice(db, invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


@router.post("", status_code=201)
async def create_invoice(
    data: InvoiceCreate,
    current_user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    return await invoice_service.create_invoice(db, data, current_user.id)


@router.put("/{invoice_id}")
async def update_invoice(
    invoice_id: int,
    data: InvoiceUpdate,
    _user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    invoice = await invoice_service.update_invoice(db, invoice_id, data)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


@router.post("/{invoice_id}/cancel")
async def cancel_invoice(
    invoice_id: int,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    invoice = await invoice_service.cancel_invoice(db, invoice_id)
    if not invoice:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return invoice


@router.delete("/{invoice_id}", status_code=204)
async def delete_invoice(
    invoice_id: int,
    _admin: Profile = Depends(require_roles("admin")),
    db: AsyncSession = Depends(get_db),
):
    deleted = await invoice_service.delete_invoice(db, invoice_id)
    if not deleted:
        raise HTTPException(status_code=404, detail="Invoice not found")


@router.get("/{invoice_id}/payments")
async def list_invoice_payments(
    invoice_id: int,
    _user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    return await payment_service.get_payments_by_invoice(db, invoice_id)


@router.get("/{invoice_id}/balance")
async def invoice_balance(
    invoice_id: int,
    _user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    balance = await payment_service.calculate_invoice_balance(db, invoice_id)
    if not balance:
        raise HTTPException(status_code=404, detail="Invoice not found")
    return balance


@router.post("/{invoice_id}/remind")
async def send_reminder(
    invoice_id: int,
    _user: Profile = Depends(require_roles("admin", "supervisor")),
    db: AsyncSession = Depends(get_db),
):
    return {"sent": await notification_service.send_invoice_reminder(db, invoice_id)}
