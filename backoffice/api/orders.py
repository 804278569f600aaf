from fastapi import APIRouter, Depends, HTTPException
from sqlalchemy.orm import Session

from backoffice.api.auth import get_current_user
from backoffice.database import get_db, run_with_retry
from backoffice.models.order import OrderSource, OrderStatus
from backoffice.models.user import User
from backoffice.schemas.order import (
    OrderActivityOut,
    OrderCancel,
    OrderCreate,
    OrderOut,
    OrderStatusUpdate,
    OrderStockAudit,
    OrderUpdate,
)
from backoffice.services import order_service

router = APIRouter(prefix="/orders", tags=["Orders"])


@router.post("", response_model=OrderOut, status_code=201)
def create_order(data: OrderCreate, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return run_with_retry(db, lambda: order_service.create_order(db, data, actor_id=user.id))


@router.get("", response_model=list[OrderOut])
def list_orders(
    skip: int = 0,
    limit: int = 100,
    status: OrderStatus | None = None,
    source: OrderSource | None = None,
    user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    return order_service.list_orders(db, skip=skip, limit=limit, status=status, source=source)


@router.get("/by-number/{order_number}", response_model=OrderOut)
def get_order_by_number(order_number: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = order_service.get_order_by_number(db, order_number)
    if not order:
        raise HTTPException(404, "Order not found")
    return order


@router.get("/{order_id}", response_model=OrderOut)
def get_order(order_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    order = order_service.get_order(db, order_id)
    if not order:
        raise HTTPException(404, "Order not found")
    return order


@router.patch("/{order_id}", response_model=OrderOut)
def update_order(
    order_id: str, data: OrderUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return order_service.update_order(db, order_id, data, actor_id=user.id)


@router.patch("/{order_id}/status", response_model=OrderOut)
def update_status(
    order_id: str, data: OrderStatusUpdate, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return run_with_retry(
        db, lambda: order_service.update_order_status(db, order_id, data.status, actor_id=user.id, notes=data.notes)
    )


@router.post("/{order_id}/cancel", response_model=OrderOut)
def cancel_order(
    order_id: str, data: OrderCancel, user: User = Depends(get_current_user), db: Session = Depends(get_db)
):
    return order_service.cancel_order(db, order_id, actor_id=user.id, reason=data.reason)


@router.get("/{order_id}/activity", response_model=list[OrderActivityOut])
def order_activity(order_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return order_service.get_order_activity(db, order_id)


@router.get("/{order_id}/stock-movements", response_model=OrderStockAudit)
def stock_movements(order_id: str, user: User = Depends(get_current_user), db: Session = Depends(get_db)):
    return order_service.order_stock_movements(db, order_id)
