from datetime import datetime

from pydantic import BaseModel

from backoffice.models.catalog import ProductType


class StockAdjustRequest(BaseModel):
    product_id: str
    product_type: ProductType = ProductType.REGULAR
    delta: int
    reason: str
    variant: str | None = None
    combination_id: str | None = None
    option_a: str | None = None
    option_b: str | None = None
    notes: str = ""


class StockAdjustmentOut(BaseModel):
    product_id: str
    variant: str | None = None
    before: int
    after: int
    change: int
    log_id: str


class StockCheckItem(BaseModel):
    product_id: str
    product_type: ProductType | None = None
    quantity: int = 1
    variant: str | None = None
    combination_id: str | None = None
    option_a: str | None = None
    option_b: str | None = None


class StockCheckRequest(BaseModel):
    items: list[StockCheckItem]


class StockIssueOut(BaseModel):
    product_id: str
    product_name: str
    error: str
    requested: int
    available: int
    product_type: str | None = None
    combination_id: str | None = None
    variant: str | None = None


class StockCheckResult(BaseModel):
    ok: bool
    stock_issues: list[StockIssueOut]


class InventoryLogOut(BaseModel):
    id: str
    product_id: str
    product_type: str
    special_product_id: str | None = None
    variant_value: str | None = None
    change_type: str
    reason: str
    quantity_before: int
    quantity_after: int
    quantity_change: int
    actor_id: str
    order_id: str | None = None
    invoice_id: str | None = None
    notes: str
    created_at: datetime

    model_config = {"from_attributes": True}


class StockAlertOut(BaseModel):
    id: str
    product_id: str
    product_type: str
    current_stock: int
    threshold: int
    status: str
    resolved_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
