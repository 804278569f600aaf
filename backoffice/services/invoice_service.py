"""Invoices and payments.

One invoice per order. ``paid_amount`` only moves through a conditional
update on the value that was read, so two payments recorded at the same
time cannot both spend the same remaining balance.
"""

import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy import and_, not_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.config import settings
from backoffice.exceptions import ConflictError, NotFoundError, ValidationError
from backoffice.models.invoice import Invoice, InvoiceItem, InvoiceStatus, Payment, PaymentMethod
from backoffice.models.order import Order, OrderStatus, PaymentStatus
from backoffice.services import numbering_service

logger = logging.getLogger(__name__)

SETTLED = (InvoiceStatus.PAID.value, InvoiceStatus.CANCELED.value)
# Rounding tolerance on money amounts
EPSILON = 0.005


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def effective_status(invoice: Invoice, now: datetime | None = None) -> str:
    """Stored status, or ``overdue`` once an open invoice is past its due date."""
    now = now or _utcnow()
    if invoice.status not in SETTLED and invoice.due_date is not None and invoice.due_date < now:
        return InvoiceStatus.OVERDUE.value
    return invoice.status


def _invoice_items(order: Order) -> list[InvoiceItem]:
    return [
        InvoiceItem(
            position=item.position,
            product_id=item.product_id,
            product_type=item.product_type,
            product_name=item.product_name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            discount=item.discount,
            tax=round(item.subtotal * (order.tax_rate or 0.0), 2),
            total=item.total,
        )
        for item in order.items
    ]


def create_invoice(
    db: Session,
    order_id: str,
    actor_id: str,
    due_date: datetime | None = None,
    notes: str = "",
) -> Invoice:
    order = db.get(Order, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    if order.status == OrderStatus.CANCELED:
        raise ConflictError(f"Order {order.order_number} is canceled and cannot be invoiced")
    if get_invoice_for_order(db, order_id):
        raise ConflictError(f"Order {order.order_number} already has an invoice")

    # Nothing to collect: the invoice is born settled
    settled = order.total <= EPSILON
    for attempt in range(settings.NUMBER_MAX_ATTEMPTS):
        now = _utcnow()
        invoice = Invoice(
            invoice_number=numbering_service.next_number(db, settings.INVOICE_NUMBER_PREFIX, Invoice.invoice_number),
            order_id=order.id,
            client_name=order.client_name,
            client_address=order.client_address,
            subtotal=order.subtotal,
            discount=order.discount,
            tax=order.tax,
            total=order.total,
            paid_amount=0.0,
            remaining_amount=0.0 if settled else order.total,
            status=InvoiceStatus.PAID.value if settled else InvoiceStatus.DRAFT.value,
            due_date=due_date or now + timedelta(days=settings.INVOICE_DUE_DAYS),
            issued_at=now,
            paid_at=now if settled else None,
            notes=notes,
            created_by=actor_id,
        )
        invoice.items = _invoice_items(order)
        db.add(invoice)
        if settled:
            order.payment_status = PaymentStatus.PAID.value
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            if get_invoice_for_order(db, order_id):
                raise ConflictError(f"Order {order.order_number} already has an invoice")
            logger.warning("Invoice number collision on insert, retrying (%d)", attempt + 1)
            continue
        db.refresh(invoice)
        logger.info("Created invoice %s for order %s total=%.2f", invoice.invoice_number, order.order_number,
                    invoice.total)
        return invoice
    raise ConflictError("Could not allocate a unique invoice number, try again")


def get_invoice(db: Session, invoice_id: str) -> Invoice | None:
    return db.query(Invoice).filter(Invoice.id == invoice_id).first()


def get_invoice_or_404(db: Session, invoice_id: str) -> Invoice:
    invoice = get_invoice(db, invoice_id)
    if not invoice:
        raise NotFoundError(f"Invoice {invoice_id} not found")
    return invoice


def get_invoice_for_order(db: Session, order_id: str) -> Invoice | None:
    return db.query(Invoice).filter(Invoice.order_id == order_id).first()


def list_invoices(
    db: Session, status: str | None = None, skip: int = 0, limit: int = 100, now: datetime | None = None
) -> list[Invoice]:
    now = now or _utcnow()
    past_due = and_(Invoice.status.notin_(SETTLED), Invoice.due_date < now)
    q = db.query(Invoice)
    if status == InvoiceStatus.OVERDUE.value:
        q = q.filter(past_due)
    elif status:
        q = q.filter(Invoice.status == status)
        if status not in SETTLED:
            q = q.filter(not_(past_due))
    return q.order_by(Invoice.created_at.desc()).offset(skip).limit(limit).all()


def send_invoice(db: Session, invoice_id: str) -> Invoice:
    invoice = get_invoice_or_404(db, invoice_id)
    if invoice.status != InvoiceStatus.DRAFT.value:
        raise ConflictError(f"Only draft invoices can be sent (invoice is {invoice.status})")
    invoice.status = InvoiceStatus.SENT.value
    invoice.sent_at = _utcnow()
    db.commit()
    db.refresh(invoice)
    logger.info("Invoice %s sent", invoice.invoice_number)
    return invoice


def record_payment(
    db: Session,
    invoice_id: str,
    amount: float,
    method: PaymentMethod | str,
    actor_id: str,
    paid_at: datetime | None = None,
    reference: str = "",
    notes: str = "",
) -> Payment:
    """Apply a payment. Status moves to partial, then paid, never back."""
    if amount is None:
        raise ValidationError("Payment amount must be positive", field="amount")
    # Checked after rounding: a sub-cent amount would settle nothing
    amount = round(amount, 2)
    if amount <= 0:
        raise ValidationError("Payment amount must be positive", field="amount")
    method = PaymentMethod(method).value

    try:
        for _ in range(settings.STOCK_UPDATE_MAX_ATTEMPTS):
            invoice = get_invoice_or_404(db, invoice_id)
            db.refresh(invoice)
            if invoice.status == InvoiceStatus.CANCELED.value:
                raise ConflictError(f"Invoice {invoice.invoice_number} is canceled")
            paid_before = invoice.paid_amount or 0.0
            remaining = round(invoice.total - paid_before, 2)
            if amount > remaining + EPSILON:
                raise ConflictError(
                    f"Payment of {amount:.2f} exceeds remaining amount {remaining:.2f}",
                    remaining_amount=remaining,
                )

            paid_after = round(paid_before + amount, 2)
            remaining_after = round(invoice.total - paid_after, 2)
            if remaining_after <= EPSILON:
                remaining_after = 0.0
            settled = remaining_after == 0.0
            values = {
                "paid_amount": paid_after,
                "remaining_amount": remaining_after,
                "status": InvoiceStatus.PAID.value if settled else InvoiceStatus.PARTIAL.value,
            }
            if settled:
                values["paid_at"] = paid_at or _utcnow()
            result = db.execute(
                update(Invoice)
                .where(Invoice.id == invoice.id, Invoice.paid_amount == paid_before,
                       Invoice.status.notin_(SETTLED))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 1:
                db.expire(invoice)
                break
            db.rollback()
            logger.warning("Invoice %s paid concurrently, re-reading balance", invoice.invoice_number)
        else:
            raise ConflictError("Invoice is being paid concurrently, try again")

        payment = Payment(
            invoice_id=invoice.id,
            order_id=invoice.order_id,
            amount=amount,
            payment_method=method,
            paid_at=paid_at or _utcnow(),
            reference=reference,
            notes=notes,
            recorded_by=actor_id,
            remaining_after=remaining_after,
            created_at=_utcnow(),
        )
        db.add(payment)
        order = db.get(Order, invoice.order_id)
        order.payment_status = PaymentStatus.PAID.value if settled else PaymentStatus.PARTIAL.value
        db.commit()
    except Exception:
        db.rollback()
        raise

    db.refresh(payment)
    logger.info(
        "Payment %.2f on invoice %s by %s, remaining %.2f",
        amount, invoice.invoice_number, actor_id, remaining_after,
    )
    return payment


def list_payments(db: Session, invoice_id: str) -> list[Payment]:
    get_invoice_or_404(db, invoice_id)
    return db.execute(
        select(Payment).where(Payment.invoice_id == invoice_id).order_by(Payment.created_at)
    ).scalars().all()


def cancel_invoice(db: Session, invoice_id: str, actor_id: str, reason: str = "") -> Invoice:
    invoice = get_invoice_or_404(db, invoice_id)
    if invoice.status in SETTLED:
        raise ConflictError(f"Invoice {invoice.invoice_number} is {invoice.status} and cannot be canceled")
    invoice.status = InvoiceStatus.CANCELED.value
    invoice.canceled_at = _utcnow()
    if reason:
        invoice.notes = f"{invoice.notes}\n{reason}".strip()
    db.commit()
    db.refresh(invoice)
    logger.info("Invoice %s canceled by %s", invoice.invoice_number, actor_id)
    return invoice


def mark_email_sent(db: Session, invoice_id: str) -> Invoice:
    """Called once the email sender reports delivery."""
    invoice = get_invoice_or_404(db, invoice_id)
    invoice.email_sent = True
    invoice.email_sent_at = _utcnow()
    if invoice.status == InvoiceStatus.DRAFT.value:
        invoice.status = InvoiceStatus.SENT.value
        invoice.sent_at = invoice.email_sent_at
    db.commit()
    db.refresh(invoice)
    return invoice


def attach_pdf(db: Session, invoice_id: str, pdf_path: str) -> Invoice:
    if not pdf_path:
        raise ValidationError("A PDF path is required", field="pdf_path")
    invoice = get_invoice_or_404(db, invoice_id)
    invoice.pdf_path = pdf_path
    db.commit()
    db.refresh(invoice)
    return invoice
