from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from backoffice.api.auth import get_current_user
from backoffice.database import get_db, run_with_retry
from backoffice.models.invoice import InvoiceStatus
from backoffice.models.user import User
from backoffice.schemas.invoice import InvoiceCancel, InvoiceCreate, InvoiceOut, PaymentCreate, PaymentOut, PdfAttach
from backoffice.services import invoice_service

router = APIRouter(prefix="/invoices", tags=["Invoices"])


@router.post("", response_model=InvoiceOut, status_code=201)
def create_invoice(data: InvoiceCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return invoice_service.create_invoice(db, data.order_id, actor_id=user.id, due_date=data.due_date,
                                          notes=data.notes)


@router.get("", response_model=list[InvoiceOut])
def list_invoices(
    status: InvoiceStatus | None = None,
    skip: int = 0,
    limit: int = 100,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return invoice_service.list_invoices(db, status=status.value if status else None, skip=skip, limit=limit)


@router.get("/by-order/{order_id}", response_model=InvoiceOut)
def get_invoice_for_order(order_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    invoice = invoice_service.get_invoice_for_order(db, order_id)
    if not invoice:
        raise HTTPException(404, "Invoice not found")
    return invoice


@router.get("/{invoice_id}", response_model=InvoiceOut)
def get_invoice(invoice_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return invoice_service.get_invoice_or_404(db, invoice_id)


@router.post("/{invoice_id}/send", response_model=InvoiceOut)
def send_invoice(invoice_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return invoice_service.send_invoice(db, invoice_id)


@router.post("/{invoice_id}/payments", response_model=PaymentOut, status_code=201)
def record_payment(
    invoice_id: str, data: PaymentCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return run_with_retry(db, lambda: invoice_service.record_payment(
        db, invoice_id, data.amount, data.payment_method, actor_id=user.id,
        paid_at=data.paid_at, reference=data.reference, notes=data.notes,
    ))


@router.get("/{invoice_id}/payments", response_model=list[PaymentOut])
def list_payments(invoice_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return invoice_service.list_payments(db, invoice_id)


@router.post("/{invoice_id}/cancel", response_model=InvoiceOut)
def cancel_invoice(
    invoice_id: str, data: InvoiceCancel, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return invoice_service.cancel_invoice(db, invoice_id, actor_id=user.id, reason=data.reason)


@router.post("/{invoice_id}/email-sent", response_model=InvoiceOut)
def mark_email_sent(invoice_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return invoice_service.mark_email_sent(db, invoice_id)


@router.post("/{invoice_id}/pdf", response_model=InvoiceOut)
def attach_pdf(
    invoice_id: str, data: PdfAttach, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return invoice_service.attach_pdf(db, invoice_id, data.pdf_path)
