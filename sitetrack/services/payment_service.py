"""
Payment service: payments recorded against invoices.

Every write re-derives the invoice's ``amount_paid``, ``balance_due`` and
status from the full set of its payments, so edits and deletions can
never leave the invoice out of step.
"""
import logging
from datetime import date

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from sitetrack.cache import cache
from sitetrack.errors import NotFoundError, ValidationError
from sitetrack.models import Invoice, Milestone, PaymentRecord
from sitetrack.schemas import PaymentCreate, PaymentUpdate
from sitetrack.services import notification_service
from sitetrack.utils import money

logger = logging.getLogger(__name__)


def _payment_to_dict(payment: PaymentRecord) -> dict:
    return {
        "id": payment.id,
        "invoice_id": payment.invoice_id,
        "payment_amount": payment.payment_amount,
        "payment_date": payment.payment_date.isoformat() if payment.payment_date else None,
        "payment_method": payment.payment_method,
        "transaction_reference": payment.transaction_reference,
        "notes": payment.notes,
        "recorded_by": payment.recorded_by,
        "created_at": payment.created_at.isoformat() if payment.created_at else None,
    }


def payment_status(total: float, paid: float) -> str:
    if paid >= total:
        return "paid"
    if paid > 0:
        return "partial"
    return "pending"


async def update_invoice_payment_status(db: AsyncSession, invoice_id: int) -> Invoice:
    invoice = await db.get(Invoice, invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    paid = (
        await db.execute(
            select(func.coalesce(func.sum(PaymentRecord.payment_amount), 0)).where(
                PaymentRecord.invoice_id == invoice_id
            )
        )
    ).scalar_one()
    invoice.amount_paid = money(paid)
    invoice.balance_due = money(invoice.total_amount - invoice.amount_paid)
    if invoice.status != "cancelled":
        invoice.status = payment_status(invoice.total_amount, invoice.amount_paid)
    await db.flush()
    return invoice


async def _project_id_for_invoice(db: AsyncSession, invoice: Invoice) -> int | None:
    milestone = await db.get(Milestone, invoice.milestone_id)
    return milestone.project_id if milestone else None


async def record_payment(db: AsyncSession, data: PaymentCreate, recorded_by: int | None = None) -> dict:
    invoice = await db.get(Invoice, data.invoice_id)
    if invoice is None:
        raise NotFoundError("Invoice not found")
    if invoice.status == "cancelled":
        raise ValidationError("Cannot record a payment against a cancelled invoice")

    payment = PaymentRecord(
        invoice_id=data.invoice_id,
        payment_amount=data.payment_amount,
        payment_date=data.payment_date or date.today(),
        payment_method=data.payment_method,
        transaction_reference=data.transaction_reference,
        notes=data.notes,
        recorded_by=recorded_by,
    )
    db.add(payment)
    await db.flush()

    invoice = await update_invoice_payment_status(db, data.invoice_id)
    project_id = await _project_id_for_invoice(db, invoice)
    if project_id is not None:
        await notification_service.send_payment_received_notification(db, project_id, data.payment_amount)
    await cache.invalidate_financials(project_id)

    logger.info(
        "Recorded payment of %.2f on invoice %s (status now %s)",
        data.payment_amount, invoice.invoice_number, invoice.status,
    )
    return _payment_to_dict(payment)


async def update_payment(db: AsyncSession, payment_id: int, data: PaymentUpdate) -> dict | None:
    payment = await db.get(PaymentRecord, payment_id)
    if payment is None:
        return None
    for field, value in data.model_dump(exclude_unset=True).items():
        setattr(payment, field, value)
    await db.flush()

    invoice = await update_invoice_payment_status(db, payment.invoice_id)
    await cache.invalidate_financials(await _project_id_for_invoice(db, invoice))
    return _payment_to_dict(payment)


async def delete_payment(db: AsyncSession, payment_id: int) -> bool:
    payment = await db.get(PaymentRecord, payment_id)
    if payment is None:
        return False
    invoice_id = payment.invoice_id
    await db.delete(payment)
    await db.flush()

    invoice = await update_invoice_payment_status(db, invoice_id)
    await cache.invalidate_financials(await _project_id_for_invoice(db, invoice))
    return True


async def get_payments_by_invoice(db: AsyncSession, invoice_id: int) -> list[dict]:
    q = (
        select(PaymentRecord)
        .where(PaymentRecord.invoice_id == invoice_id)
        .order_by(PaymentRecord.payment_date.desc(), PaymentRecord.id.desc())
    )
    return [_payment_to_dict(p) for p in (await db.execute(q)).scalars().all()]


async def calculate_invoice_balance(db: AsyncSession, invoice_id: int) -> dict | None:
    invoice = await db.get(Invoice, invoice_id)
    if invoice is None:
        return None
    return {
        "invoice_id": invoice.id,
        "total_amount": invoice.total_amount,
        "amount_paid": invoice.amount_paid,
        "balance_due": invoice.balance_due,
        "status": invoice.status,
    }


def _project_payments_query(project_id: int):
    return (
        select(PaymentRecord, Invoice.invoice_number)
        .join(Invoice, Invoice.id == PaymentRecord.invoice_id)
        .join(Milestone, Milestone.id == Invoice.milestone_id)
        .where(Milestone.project_id == project_id)
    )


async def get_project_payment_history(db: AsyncSession, project_id: int) -> list[dict]:
    q = _project_payments_query(project_id).order_by(PaymentRecord.payment_date.desc(), PaymentRecord.id.desc())
    history = []
    for payment, invoice_number in (await db.execute(q)).all():
        data = _payment_to_dict(payment)
        data["invoice_number"] = invoice_number
        history.append(data)
    return history


async def get_project_total_payments(db: AsyncSession, project_id: int) -> float:
    q = (
        select(func.coalesce(func.sum(PaymentRecord.payment_amount), 0))
        .join(Invoice, Invoice.id == PaymentRecord.invoice_id)
        .join(Milestone, Milestone.id == Invoice.milestone_id)
        .where(Milestone.project_id == project_id)
    )
    return money((await db.execute(q)).scalar_one())
