import json
import logging
from datetime import datetime, timezone

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.config import settings
from backoffice.exceptions import ConflictError, InsufficientStockError, NotFoundError, ValidationError
from backoffice.models.catalog import ProductType
from backoffice.models.inventory import InventoryLog
from backoffice.models.invoice import Invoice, InvoiceStatus
from backoffice.models.order import Order, OrderActivity, OrderSource, OrderStatus
from backoffice.schemas.order import OrderCreate, OrderUpdate
from backoffice.services import inventory_service, invoice_service, numbering_service, pricing_service

logger = logging.getLogger(__name__)

# Forward path of an order; skipping steps is allowed, going back is not
STATUS_FLOW = [
    OrderStatus.PENDING,
    OrderStatus.PREPARING,
    OrderStatus.READY,
    OrderStatus.DELIVERED,
    OrderStatus.COMPLETED,
]


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _record_activity(
    db: Session,
    order: Order,
    action: str,
    actor_id: str,
    status_before: str | None = None,
    status_after: str | None = None,
    changes: dict | None = None,
    notes: str = "",
) -> OrderActivity:
    activity = OrderActivity(
        order_id=order.id,
        action=action,
        actor_id=actor_id,
        status_before=status_before,
        status_after=status_after,
        changes=json.dumps(changes or {}, default=str),
        notes=notes,
        created_at=_utcnow(),
    )
    db.add(activity)
    return activity


def _tag_items(db: Session, raw_items):
    """Resolve every line's product type once; unknown products stay untagged."""
    tagged = []
    for raw in raw_items:
        product_type = inventory_service.resolve_item_type(db, raw)
        tagged.append(raw.model_copy(update={"product_type": product_type}))
    return tagged


def _priced_items(db: Session, raw_items, tier):
    if not raw_items:
        raise ValidationError("An order needs at least one item", field="items")
    tagged = _tag_items(db, raw_items)
    issues = inventory_service.validate_stock(db, tagged)
    if issues:
        raise InsufficientStockError(issues)
    return pricing_service.build_order_items(db, tagged, tier)


def _apply_totals(order: Order, totals: pricing_service.OrderTotals) -> None:
    order.subtotal = totals.subtotal
    order.discount = totals.discount
    order.tax = totals.tax
    order.total = totals.total
    order.cost = totals.cost
    order.profit = totals.profit


def _create_once(db: Session, data: OrderCreate, actor_id: str) -> Order:
    tier = pricing_service.resolve_price_tier(data.source)
    items = _priced_items(db, data.items, tier)
    tax_rate = settings.DEFAULT_TAX_RATE if data.tax_rate is None else data.tax_rate
    totals = pricing_service.calculate_order_totals(items, data.discount, tax_rate)

    order = Order(
        order_number=numbering_service.next_number(db, settings.ORDER_NUMBER_PREFIX, Order.order_number),
        client_name=data.client_name,
        client_phone=data.client_phone,
        client_email=data.client_email,
        client_address=data.client_address,
        source=OrderSource(data.source),
        price_tier=tier,
        status=OrderStatus.PENDING,
        tax_rate=tax_rate,
        payment_method=data.payment_method,
        notes=data.notes,
        created_by=actor_id,
    )
    _apply_totals(order, totals)
    order.items = items
    db.add(order)
    db.flush()
    _record_activity(
        db, order, "created", actor_id,
        status_after=OrderStatus.PENDING.value,
        changes={"items": len(items), "total": order.total},
    )
    db.commit()
    return order


def create_order(db: Session, data: OrderCreate, actor_id: str) -> Order:
    """Validate stock, price the lines and persist a pending order.

    Stock is only checked here; it is deducted when the order completes.
    """
    for attempt in range(settings.NUMBER_MAX_ATTEMPTS):
        try:
            order = _create_once(db, data, actor_id)
        except IntegrityError:
            db.rollback()
            logger.warning("Order number collision on insert, retrying (%d)", attempt + 1)
            continue
        except Exception:
            db.rollback()
            raise
        db.refresh(order)
        logger.info("Created order %s (%s) total=%.2f", order.order_number, order.id, order.total)
        return order
    raise ConflictError("Could not allocate a unique order number, try again")


def get_order(db: Session, order_id: str) -> Order | None:
    return db.query(Order).filter(Order.id == order_id).first()


def get_order_or_404(db: Session, order_id: str) -> Order:
    order = get_order(db, order_id)
    if not order:
        raise NotFoundError(f"Order {order_id} not found")
    return order


def get_order_by_number(db: Session, order_number: str) -> Order | None:
    return db.query(Order).filter(Order.order_number == order_number).first()


def list_orders(
    db: Session,
    skip: int = 0,
    limit: int = 100,
    status: OrderStatus | str | None = None,
    source: OrderSource | str | None = None,
) -> list[Order]:
    q = db.query(Order)
    if status:
        q = q.filter(Order.status == OrderStatus(status))
    if source:
        q = q.filter(Order.source == OrderSource(source))
    return q.order_by(Order.created_at.desc()).offset(skip).limit(limit).all()


def update_order(db: Session, order_id: str, data: OrderUpdate, actor_id: str) -> Order:
    """Edit lines, discount, tax rate or client details. Stock is left alone."""
    order = get_order_or_404(db, order_id)
    if order.is_terminal:
        raise ConflictError(f"Cannot edit an order that is {order.status.value}")
    invoice = invoice_service.get_invoice_for_order(db, order.id)
    if invoice is not None and invoice.status != InvoiceStatus.CANCELED.value:
        # The invoice copied lines and totals when it was issued
        raise ConflictError(
            f"Order {order.order_number} is invoiced ({invoice.invoice_number}) and cannot be edited",
            invoice_id=invoice.id,
        )

    update_data = data.model_dump(exclude_unset=True, exclude={"items"})
    update_data = {k: v for k, v in update_data.items() if v is not None}
    changes = {}
    try:
        if data.items is not None:
            order.items = _priced_items(db, data.items, order.price_tier)
            changes["items"] = len(order.items)
        for field in ("client_name", "client_phone", "client_email", "client_address", "notes"):
            if field in update_data and update_data[field] != getattr(order, field):
                changes[field] = {"from": getattr(order, field), "to": update_data[field]}
                setattr(order, field, update_data[field])
        discount = update_data.get("discount", order.discount)
        tax_rate = update_data.get("tax_rate", order.tax_rate)
        before_total = order.total
        totals = pricing_service.calculate_order_totals(order.items, discount, tax_rate)
        order.tax_rate = tax_rate
        _apply_totals(order, totals)
        if order.total != before_total:
            changes["total"] = {"from": before_total, "to": order.total}

        _record_activity(db, order, "updated", actor_id, changes=changes)
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    logger.info("Updated order %s: %s", order.order_number, ", ".join(changes) or "no changes")
    return order


def _check_transition(order: Order, target: OrderStatus) -> None:
    current = OrderStatus(order.status)
    if current == target:
        raise ConflictError(f"Order {order.order_number} is already {current.value}")
    if order.is_terminal:
        raise ConflictError(f"Order {order.order_number} is {current.value} and cannot change status")
    if STATUS_FLOW.index(target) < STATUS_FLOW.index(current):
        raise ConflictError(f"Cannot move order {order.order_number} back from {current.value} to {target.value}")


def update_order_status(
    db: Session, order_id: str, status: OrderStatus | str, actor_id: str, notes: str = ""
) -> Order:
    """Move an order forward.

    Completing swaps the status conditionally on the status that was read,
    so only one caller can complete an order. The stock deduction, the new
    status and the activity row commit together.
    """
    target = OrderStatus(status)
    if target == OrderStatus.CANCELED:
        return cancel_order(db, order_id, actor_id, reason=notes)

    order = get_order_or_404(db, order_id)
    _check_transition(order, target)
    before = OrderStatus(order.status)

    values = {"status": target}
    if target == OrderStatus.COMPLETED:
        values.update(completed_at=_utcnow(), stock_deducted=True)
    try:
        result = db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == before, Order.stock_deducted.is_(False))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(f"Order {order.order_number} was changed by someone else, reload and retry")
        db.expire(order, list(values))

        if target == OrderStatus.COMPLETED:
            for item in order.items:
                inventory_service.apply_item_stock(
                    db, item, -item.quantity, "sale", actor_id,
                    order_id=order.id, notes=f"Order {order.order_number}",
                )
        _record_activity(
            db, order, "status_changed", actor_id,
            status_before=before.value, status_after=target.value, notes=notes,
        )
        db.commit()
    except ConflictError:
        db.rollback()
        raise
    except Exception:
        db.rollback()
        logger.exception("Status change of order %s to %s failed", order_id, target.value)
        raise

    db.refresh(order)
    logger.info("Order %s: %s -> %s by %s", order.order_number, before.value, target.value, actor_id)
    return order


def _cancel_open_invoice(db: Session, order: Order, now: datetime) -> None:
    """Cancel the order's unpaid invoice in the caller's transaction; refuse if money was taken."""
    invoice = invoice_service.get_invoice_for_order(db, order.id)
    if invoice is None or invoice.status == InvoiceStatus.CANCELED.value:
        return
    if invoice.status == InvoiceStatus.PAID.value or (invoice.paid_amount or 0.0) > invoice_service.EPSILON:
        raise ConflictError(
            f"Order {order.order_number} has payments on invoice {invoice.invoice_number} and cannot be canceled",
            invoice_id=invoice.id,
            paid_amount=invoice.paid_amount,
        )
    result = db.execute(
        update(Invoice)
        .where(Invoice.id == invoice.id, Invoice.status.notin_(invoice_service.SETTLED), Invoice.paid_amount == 0)
        .values(status=InvoiceStatus.CANCELED.value, canceled_at=now)
        .execution_options(synchronize_session=False)
    )
    if result.rowcount != 1:
        raise ConflictError(f"Invoice {invoice.invoice_number} was paid meanwhile, reload and retry")
    db.expire(invoice)
    logger.info("Invoice %s canceled with order %s", invoice.invoice_number, order.order_number)


def cancel_order(db: Session, order_id: str, actor_id: str, reason: str = "") -> Order:
    """Cancel before completion. Stock was never deducted, so nothing is restored.

    An unpaid invoice is canceled in the same commit. An order whose invoice
    has received money cannot be canceled.
    """
    order = get_order_or_404(db, order_id)
    before = OrderStatus(order.status)
    if before == OrderStatus.CANCELED:
        raise ConflictError(f"Order {order.order_number} is already canceled")
    if before == OrderStatus.COMPLETED or order.stock_deducted:
        raise ConflictError(f"Order {order.order_number} is completed and cannot be canceled")

    now = _utcnow()
    try:
        _cancel_open_invoice(db, order, now)
        result = db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == before)
            .values(status=OrderStatus.CANCELED, canceled_at=now, canceled_by=actor_id, cancel_reason=reason)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            raise ConflictError(f"Order {order.order_number} was changed by someone else, reload and retry")
        db.expire(order)
        _record_activity(
            db, order, "canceled", actor_id,
            status_before=before.value, status_after=OrderStatus.CANCELED.value, notes=reason,
        )
        db.commit()
    except Exception:
        db.rollback()
        raise
    db.refresh(order)
    logger.info("Order %s canceled by %s", order.order_number, actor_id)
    return order


def get_order_activity(db: Session, order_id: str) -> list[OrderActivity]:
    get_order_or_404(db, order_id)
    return (
        db.query(OrderActivity)
        .filter(OrderActivity.order_id == order_id)
        .order_by(OrderActivity.created_at)
        .all()
    )


def order_stock_movements(db: Session, order_id: str) -> dict:
    """Ledger rows written for an order, checked against its line quantities.

    A completed order should have moved exactly the ordered quantity out of
    every stock cell; ``reconciled`` is False when a clamp at zero or a
    partial failure left the ledger short.
    """
    order = get_order_or_404(db, order_id)
    movements = (
        db.query(InventoryLog)
        .filter(InventoryLog.order_id == order_id)
        .order_by(InventoryLog.created_at)
        .all()
    )
    expected = 0
    if order.stock_deducted:
        for item in order.items:
            sides = 2 if item.product_type == ProductType.SPECIAL.value else 1
            expected -= item.quantity * sides
    recorded = sum(m.quantity_change for m in movements)
    return {
        "order_id": order.id,
        "status": order.status,
        "stock_deducted": order.stock_deducted,
        "expected_change": expected,
        "recorded_change": recorded,
        "reconciled": expected == recorded,
        "movements": movements,
    }
