from datetime import datetime

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from backoffice.api.auth import get_current_user
from backoffice.database import get_db
from backoffice.models.user import User
from backoffice.schemas.catalog import ProductOut
from backoffice.schemas.inventory import (
    InventoryLogOut,
    StockAdjustmentOut,
    StockAdjustRequest,
    StockAlertOut,
    StockCheckRequest,
    StockCheckResult,
)
from backoffice.services import inventory_service

router = APIRouter(prefix="/inventory", tags=["Inventory"])


@router.post("/adjust", response_model=list[StockAdjustmentOut])
def adjust_stock(data: StockAdjustRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    adjustments = inventory_service.adjust_stock(
        db,
        data.product_id,
        data.product_type.value,
        data.delta,
        data.reason,
        user.id,
        variant=data.variant,
        combination_id=data.combination_id,
        option_a=data.option_a,
        option_b=data.option_b,
        notes=data.notes,
    )
    return [StockAdjustmentOut(**vars(a)) for a in adjustments]


@router.post("/check", response_model=StockCheckResult)
def check_stock(data: StockCheckRequest, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    issues = inventory_service.validate_stock(db, data.items)
    return StockCheckResult(ok=not issues, stock_issues=[i.to_dict() for i in issues])


@router.get("/logs", response_model=list[InventoryLogOut])
def list_logs(
    product_id: str | None = None,
    change_type: str | None = None,
    order_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    skip: int = 0,
    limit: int = 50,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return inventory_service.list_inventory_logs(
        db, product_id=product_id, change_type=change_type, order_id=order_id,
        start=start, end=end, skip=skip, limit=limit,
    )


@router.get("/alerts", response_model=list[StockAlertOut])
def list_alerts(
    status: str | None = "active",
    skip: int = 0,
    limit: int = 100,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return inventory_service.list_stock_alerts(db, status=status, skip=skip, limit=limit)


@router.post("/alerts/{alert_id}/resolve", response_model=StockAlertOut)
def resolve_alert(alert_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return inventory_service.resolve_alert(db, alert_id)


@router.get("/low-stock", response_model=list[ProductOut])
def low_stock(threshold: int | None = None, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return inventory_service.low_stock_products(db, threshold=threshold)
