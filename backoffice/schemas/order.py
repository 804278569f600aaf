import json
from datetime import datetime

from pydantic import BaseModel, Field, field_validator

from backoffice.models.catalog import ProductType
from backoffice.models.order import OrderSource, OrderStatus, PriceTier


class OrderItemCreate(BaseModel):
    product_id: str
    # Resolved at ingress when omitted
    product_type: ProductType | None = None
    quantity: int = Field(default=1, ge=1)
    variant: str | None = None
    combination_id: str | None = None
    option_a: str | None = None
    option_b: str | None = None
    # Explicit price override, wins over the tier price
    unit_price: float | None = Field(default=None, ge=0)
    discount: float = Field(default=0.0, ge=0)


class OrderCreate(BaseModel):
    source: OrderSource = OrderSource.ADMIN
    client_name: str
    client_phone: str = ""
    client_email: str = ""
    client_address: str = ""
    items: list[OrderItemCreate]
    discount: float = 0.0
    tax_rate: float | None = None
    payment_method: str = "cash"
    notes: str = ""


class OrderUpdate(BaseModel):
    items: list[OrderItemCreate] | None = None
    discount: float | None = None
    tax_rate: float | None = None
    client_name: str | None = None
    client_phone: str | None = None
    client_email: str | None = None
    client_address: str | None = None
    notes: str | None = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: str = ""


class OrderCancel(BaseModel):
    reason: str = ""


class OrderItemOut(BaseModel):
    id: str
    position: int
    product_type: str
    product_id: str
    product_name: str
    variant_value: str | None = None
    variant_image: str = ""
    combination_id: str | None = None
    option_a: str | None = None
    option_b: str | None = None
    combination_image: str = ""
    quantity: int
    unit_price: float
    cost: float
    discount: float
    subtotal: float
    total: float

    model_config = {"from_attributes": True}


class OrderOut(BaseModel):
    id: str
    order_number: str
    client_name: str
    client_phone: str
    client_email: str
    client_address: str
    source: OrderSource
    price_tier: PriceTier
    status: OrderStatus
    items: list[OrderItemOut]
    subtotal: float
    discount: float
    tax_rate: float
    tax: float
    total: float
    cost: float
    profit: float
    payment_method: str
    payment_status: str
    stock_deducted: bool
    notes: str
    created_by: str
    completed_at: datetime | None = None
    canceled_at: datetime | None = None
    canceled_by: str | None = None
    cancel_reason: str = ""
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class OrderActivityOut(BaseModel):
    id: str
    order_id: str
    action: str
    actor_id: str
    status_before: str | None = None
    status_after: str | None = None
    changes: dict
    notes: str
    created_at: datetime

    model_config = {"from_attributes": True}

    @field_validator("changes", mode="before")
    @classmethod
    def _parse_changes(cls, v):
        if isinstance(v, str):
            return json.loads(v) if v else {}
        return v


class StockMovementOut(BaseModel):
    product_id: str
    variant_value: str | None = None
    quantity_change: int
    reason: str
    created_at: datetime

    model_config = {"from_attributes": True}


class OrderStockAudit(BaseModel):
    order_id: str
    status: OrderStatus
    stock_deducted: bool
    expected_change: int
    recorded_change: int
    reconciled: bool
    movements: list[StockMovementOut]
