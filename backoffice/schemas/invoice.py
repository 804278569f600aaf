from datetime import datetime

from pydantic import BaseModel, Field, computed_field

from backoffice.models.invoice import PaymentMethod
from backoffice.services.invoice_service import effective_status


class InvoiceCreate(BaseModel):
    order_id: str
    due_date: datetime | None = None  # None = INVOICE_DUE_DAYS from now
    notes: str = ""


class PaymentCreate(BaseModel):
    amount: float = Field(gt=0)
    payment_method: PaymentMethod = PaymentMethod.CASH
    paid_at: datetime | None = None
    reference: str = ""
    notes: str = ""


class InvoiceCancel(BaseModel):
    reason: str = ""


class PdfAttach(BaseModel):
    pdf_path: str


class InvoiceItemOut(BaseModel):
    id: str
    position: int
    product_id: str
    product_type: str
    product_name: str
    quantity: int
    unit_price: float
    discount: float
    tax: float
    total: float

    model_config = {"from_attributes": True}


class PaymentOut(BaseModel):
    id: str
    invoice_id: str
    order_id: str
    amount: float
    payment_method: str
    paid_at: datetime
    reference: str
    notes: str
    recorded_by: str
    remaining_after: float
    created_at: datetime

    model_config = {"from_attributes": True}


class InvoiceOut(BaseModel):
    id: str
    invoice_number: str
    order_id: str
    client_name: str
    client_address: str
    items: list[InvoiceItemOut]
    subtotal: float
    discount: float
    tax: float
    total: float
    paid_amount: float
    remaining_amount: float
    status: str
    due_date: datetime
    issued_at: datetime
    sent_at: datetime | None = None
    paid_at: datetime | None = None
    canceled_at: datetime | None = None
    pdf_path: str
    email_sent: bool
    email_sent_at: datetime | None = None
    notes: str
    created_by: str
    created_at: datetime

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def effective_status(self) -> str:
        return effective_status(self)
