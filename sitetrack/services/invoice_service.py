"""
Invoice service: milestone invoices, their line items and totals.

Totals are always recomputed from the items:
``subtotal = sum(amount)``, ``tax = subtotal * tax_rate / 100``,
``total = subtotal + tax`` and ``balance_due = total - amount_paid``.
"""
import logging
import re
import uuid
from datetime import date, timedelta

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from sitetrack.cache import cache
from sitetrack.config import settings
from sitetrack.errors import ConflictError, NotFoundError
from sitetrack.models import Expense, Invoice, InvoiceItem, Milestone, PaymentRecord, Project
from sitetrack.schemas import InvoiceCreate, InvoiceItemIn, InvoiceUpdate
from sitetrack.services import budget_service, payment_service
from sitetrack.utils import money

logger = logging.getLogger(__name__)

UNPAID_STATUSES = ("pending", "partial", "overdue")
_NUMBER_RE = re.compile(r"^INV-(\d+)$")


def _item_to_dict(item: InvoiceItem) -> dict:
    return {
        "id": item.id,
        "item_type": item.item_type,
        "description": item.description,
        "quantity": item.quantity,
        "rate": item.rate,
        "amount": item.amount,
        "reference_id": item.reference_id,
        "reference_type": item.reference_type,
    }


def _invoice_to_dict(invoice: Invoice, items: list[InvoiceItem] | None = None) -> dict:
    data = {
        "id": invoice.id,
        "invoice_number": invoice.invoice_number,
        "milestone_id": invoice.milestone_id,
        "issue_date": invoice.issue_date.isoformat() if invoice.issue_date else None,
        "due_date": invoice.due_date.isoformat() if invoice.due_date else None,
        "status": invoice.status,
        "subtotal": invoice.subtotal,
        "tax_rate": invoice.tax_rate,
        "tax_amount": invoice.tax_amount,
        "total_amount": invoice.total_amount,
        "amount_paid": invoice.amount_paid,
        "balance_due": invoice.balance_due,
        "client_name": invoice.client_name,
        "client_email": invoice.client_email,
        "client_address": invoice.client_address,
        "notes": invoice.notes,
        "payment_terms": invoice.payment_terms,
        "share_token": invoice.share_token,
        "created_by": invoice.created_by,
        "created_at": invoice.created_at.isoformat() if invoice.created_at else None,
    }
    if items is not None:
        data["items"] = [_item_to_dict(i) for i in items]
    return data


def calculate_totals(items: list[dict], tax_rate: float, amount_paid: float = 0) -> dict:
    subtotal = money(sum(i["amount"] for i in items))
    tax_amount = money(subtotal * (tax_rate or 0) / 100)
    total = money(subtotal + tax_amount)
    return {
        "subtotal": subtotal,
        "tax_amount": tax_amount,
        "total_amount": total,
        "balance_due": money(total - (amount_paid or 0)),
    }


def _normalise_items(items: list[InvoiceItemIn]) -> list[dict]:
    rows = []
    for item in items:
        row = item.model_dump()
        if row["amount"] is None:
            row["amount"] = money(item.quantity * item.rate)
        rows.append(row)
    return rows


async def generate_invoice_number(db: AsyncSession) -> str:
    """Next ``INV-0001`` style number after the highest one in use."""
    numbers = (
        await db.execute(select(Invoice.invoice_number).where(Invoice.invoice_number.like("INV-%")))
    ).scalars().all()
    highest = 0
    for number in numbers:
        match = _NUMBER_RE.match(number)
        if match:
            highest = max(highest, int(match.group(1)))
    return f"INV-{highest + 1:04d}"


async def _get_items(db: AsyncSession, invoice_id: int) -> list[InvoiceItem]:
    result = await db.execute(
        select(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id).order_by(InvoiceItem.id)
    )
    return list(result.scalars().all())


async def _project_id_for(db: AsyncSession, milestone_id: int) -> int | None:
    milestone = await db.get(Milestone, milestone_id)
    return milestone.project_id if milestone else None


# ---------------------------------------------------------------------------
# CRUD
# ---------------------------------------------------------------------------

async def _get_invoice_with_items(db: AsyncSession, *criteria) -> dict | None:
    result = await db.execute(
        select(Invoice)
        .where(*criteria)
        .options(selectinload(Invoice.items))
        .execution_options(populate_existing=True)
    )
    invoice = result.scalar_one_or_none()
    if invoice is None:
        return None
    return _invoice_to_dict(invoice, invoice.items)


async def get_invoice(db: AsyncSession, invoice_id: int) -> dict | None:
    return await _get_invoice_with_items(db, Invoice.id == invoice_id)


async def get_invoice_by_share_token(db: AsyncSession, token: str) -> dict | None:
    return await _get_invoice_with_items(db, Invoice.share_token == token)


async def get_invoices(
    db: AsyncSession,
    milestone_id: int | None = None,
    project_id: int | None = None,
    status: str | None = None,
) -> list[dict]:
    q = select(Invoice).order_by(Invoice.issue_date.desc(), Invoice.id.desc())
    if milestone_id is not None:
        q = q.where(Invoice.milestone_id == milestone_id)
    if project_id is not None:
        q = q.where(Invoice.milestone_id.in_(select(Milestone.id).where(Milestone.project_id == project_id)))
    if status:
        q = q.where(Invoice.status == status)
    return [_invoice_to_dict(i) for i in (await db.execute(q)).scalars().all()]


async def create_invoice(db: AsyncSession, data: InvoiceCreate, created_by: int | None = None) -> dict:
    project_id = await _project_id_for(db, data.milestone_id)
    if project_id is None:
        raise NotFoundError("Milestone not found")

    number = data.invoice_number or await generate_invoice_number(db)
    existing = await db.execute(select(Invoice.id).where(Invoice.invoice_number == number))
    if existing.scalar_one_or_none() is not None:
        raise ConflictError(f"Invoice number {number} already exists")

    issue_date = data.issue_date or date.today()
    items = _normalise_items(data.items)
    invoice = Invoice(
        invoice_number=number,
        milestone_id=data.milestone_id,
        issue_date=issue_date,
        due_date=data.due_date or issue_date + timedelta(days=settings.INVOICE_DUE_DAYS),
        status=data.status,
        tax_rate=data.tax_rate,
        amount_paid=0,
        client_name=data.client_name,
        client_email=data.client_email,
        client_address=data.client_address,
        notes=data.notes,
        payment_terms=data.payment_terms,
        share_token=str(uuid.uuid4()),
        created_by=created_by,
        **calculate_totals(items, data.tax_rate),
    )
    db.add(invoice)
    await db.flush()

    for row in items:
        db.add(InvoiceItem(invoice_id=invoice.id, **row))
    await db.flush()

    await cache.invalidate_financials(project_id)
    logger.info("Created invoice %s for milestone %s", number, data.milestone_id)
    return _invoice_to_dict(invoice, await _get_items(db, invoice.id))


async def update_invoice(db: AsyncSession, invoice_id: int, data: InvoiceUpdate) -> dict | None:
    """Partial update; a supplied ``items`` list replaces every line item."""
    invoice = await db.get(Invoice, invoice_id)
    if invoice is None:
        return None

    update_data = data.model_dump(exclude_unset=True, exclude={"items"})
    for field, value in update_data.items():
        setattr(invoice, field, value)

    if data.items is not None:
        await db.execute(delete(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id))
        rows = _normalise_items(data.items)
        for row in rows:
            db.add(InvoiceItem(invoice_id=invoice_id, **row))
    else:
        rows = [_item_to_dict(i) for i in await _get_items(db, invoice_id)]

    for field, value in calculate_totals(rows, invoice.tax_rate, invoice.amount_paid).items():
        setattr(invoice, field, value)
    if invoice.status not in ("cancelled", "draft"):
        status = payment_service.payment_status(invoice.total_amount, invoice.amount_paid)
        if status == "paid" or invoice.status != "overdue":
            invoice.status = status
    await db.flush()

    await cache.invalidate_financials(await _project_id_for(db, invoice.milestone_id))
    return _invoice_to_dict(invoice, await _get_items(db, invoice_id))


async def cancel_invoice(db: AsyncSession, invoice_id: int) -> dict | None:
    invoice = await db.get(Invoice, invoice_id)
    if invoice is None:
        return None
    invoice.status = "cancelled"
    await db.flush()
    await cache.invalidate_financials(await _project_id_for(db, invoice.milestone_id))
    return _invoice_to_dict(invoice)


async def delete_invoice(db: AsyncSession, invoice_id: int) -> bool:
    invoice = await db.get(Invoice, invoice_id)
    if invoice is None:
        return False
    project_id = await _project_id_for(db, invoice.milestone_id)
    await db.execute(delete(InvoiceItem).where(InvoiceItem.invoice_id == invoice_id))
    await db.execute(delete(PaymentRecord).where(PaymentRecord.invoice_id == invoice_id))
    await db.delete(invoice)
    await db.flush()
    await cache.invalidate_financials(project_id)
    return True


async def mark_overdue_invoices(db: AsyncSession, today: date | None = None) -> int:
    """Flip pending/partial invoices past their due date to ``overdue``."""
    today = today or date.today()
    result = await db.execute(
        update(Invoice)
        .where(Invoice.status.in_(("pending", "partial")), Invoice.due_date < today)
        .values(status="overdue")
        .execution_options(synchronize_session="fetch")
    )
    count = result.rowcount or 0
    if count:
        logger.info("Marked %d invoice(s) overdue", count)
        await cache.invalidate_financials()
    return count


# ---------------------------------------------------------------------------
# Item suggestions
# ---------------------------------------------------------------------------

async def suggest_invoice_items(db: AsyncSession, milestone_id: int) -> list[dict]:
    """
    Draft line items for a milestone: one wage line per member with a
    non-zero budget and one line per milestone expense.
    """
    report = await budget_service.generate_budget_report(db, milestone_id)
    if report is None:
        raise NotFoundError("Milestone not found")

    items: list[dict] = []
    for member in report["member_summaries"]:
        if not member["final_budget"]:
            continue
        if member["has_attendance_data"]:
            days = member["total_full_days"] + 0.5 * member["total_half_days"]
            quantity, rate = (days, member["effective_daily_rate"]) if days else (1, member["final_budget"])
        else:
            quantity, rate = 1, member["final_budget"]
        items.append({
            "item_type": "wage",
            "description": f"Labour - {member['user_name']} ({member['wage_type']})",
            "quantity": quantity,
            "rate": rate,
            "amount": member["final_budget"],
            "reference_id": None,
            "reference_type": "none",
        })

    expenses = (
        await db.execute(select(Expense).where(Expense.milestone_id == milestone_id).order_by(Expense.expense_date))
    ).scalars().all()
    for expense in expenses:
        items.append({
            "item_type": "expense",
            "description": expense.description,
            "quantity": 1,
            "rate": expense.amount,
            "amount": expense.amount,
            "reference_id": expense.id,
            "reference_type": "expense",
        })
    return items


async def get_invoice_with_context(db: AsyncSession, invoice_id: int) -> dict | None:
    """Invoice, items, milestone and project names; used by the printable export."""
    invoice = await get_invoice(db, invoice_id)
    if invoice is None:
        return None
    row = (
        await db.execute(
            select(Milestone.name, Project.name, Project.site_location, Project.currency)
            .join(Project, Project.id == Milestone.project_id)
            .where(Milestone.id == invoice["milestone_id"])
        )
    ).first()
    if row is not None:
        invoice["milestone_name"], invoice["project_name"], invoice["site_location"], invoice["currency"] = row
    else:
        invoice.update(milestone_name=None, project_name=None, site_location=None, currency="USD")
    return invoice
