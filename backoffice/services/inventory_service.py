"""Stock ledger: stock mutations, their append-only history, and low-stock alerts.

Stock cells are updated with a compare-and-swap
(``UPDATE ... SET stock = :after WHERE id = :id AND stock = :before``) so two
writers on the same product can never lose an update; the losing writer
re-reads and retries. Stock is clamped at zero rather than going negative.
Callers that need a hard failure validate first with ``validate_stock``.
"""

import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from backoffice.config import settings
from backoffice.exceptions import ConflictError, InternalError, NotFoundError, ValidationError
from backoffice.models.catalog import Product, ProductType, SpecialProduct, Variant
from backoffice.models.inventory import AlertStatus, ChangeType, InventoryLog, StockAlert
from backoffice.services import stock_resolver

logger = logging.getLogger(__name__)

REASON_CHANGE_TYPES = {
    "sale": ChangeType.SALE,
    "return": ChangeType.RETURN,
    "purchase": ChangeType.PURCHASE,
}


@dataclass
class StockAdjustment:
    product_id: str
    variant: str | None
    before: int
    after: int
    change: int
    log_id: str


@dataclass
class StockIssue:
    product_id: str
    product_name: str
    error: str
    requested: int = 0
    available: int = 0
    product_type: str | None = None
    combination_id: str | None = None
    variant: str | None = None

    def to_dict(self) -> dict:
        return asdict(self)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def _change_type(reason: str, delta: int) -> ChangeType:
    if reason in REASON_CHANGE_TYPES:
        return REASON_CHANGE_TYPES[reason]
    if delta > 0:
        return ChangeType.INCREASE
    if delta < 0:
        return ChangeType.DECREASE
    return ChangeType.ADJUSTMENT


def _swap_stock(db: Session, product: Product, variant: Variant | None, delta: int) -> tuple[int, int]:
    """Apply ``delta`` to one stock cell; returns (before, after)."""
    if variant is not None:
        model, column, row_id = Variant, Variant.stock, variant.id
    else:
        model, column, row_id = Product, Product.base_stock, product.id

    for attempt in range(settings.STOCK_UPDATE_MAX_ATTEMPTS):
        before = db.execute(select(column).where(model.id == row_id)).scalar_one()
        before = before or 0
        after = max(0, before + delta)
        result = db.execute(
            update(model)
            .where(model.id == row_id, column == before)
            .values({column.key: after})
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 1:
            db.expire(variant if variant is not None else product, [column.key])
            return before, after
        logger.warning(
            "Stock of product %s changed concurrently, retrying (%d/%d)",
            product.id, attempt + 1, settings.STOCK_UPDATE_MAX_ATTEMPTS,
        )
    raise ConflictError(f"Stock of {product.name} is being updated concurrently, try again")


def apply_stock_change(
    db: Session,
    product: Product,
    delta: int,
    reason: str,
    actor_id: str,
    *,
    variant: str | None = None,
    product_type: str = ProductType.REGULAR.value,
    special_product_id: str | None = None,
    order_id: str | None = None,
    invoice_id: str | None = None,
    notes: str = "",
) -> StockAdjustment:
    """Mutate one stock cell and append its log row. Flushes, never commits."""
    if not reason:
        raise ValidationError("A reason is required for stock changes", field="reason")
    if not actor_id:
        raise ValidationError("An actor is required for stock changes", field="actor_id")

    db.flush()
    target = None
    if product.variants:
        if variant is None:
            raise ValidationError(f"{product.name} has variants; choose one to adjust", field="variant")
        target = product.find_variant(variant)
        if target is None:
            raise NotFoundError(f"Variant '{variant}' not found for {product.name}")
    elif variant is not None:
        raise ValidationError(f"{product.name} has no variants", field="variant")

    before, after = _swap_stock(db, product, target, delta)
    log = InventoryLog(
        product_id=product.id,
        product_type=product_type,
        special_product_id=special_product_id,
        variant_value=variant,
        change_type=_change_type(reason, delta).value,
        reason=reason,
        quantity_before=before,
        quantity_after=after,
        quantity_change=after - before,
        actor_id=actor_id,
        order_id=order_id,
        invoice_id=invoice_id,
        notes=notes,
    )
    db.add(log)
    db.flush()

    check_stock_alerts(db, product)
    return StockAdjustment(
        product_id=product.id, variant=variant, before=before, after=after,
        change=after - before, log_id=log.id,
    )


def _special_sides(special: SpecialProduct, combination_id: str | None, option_a: str | None, option_b: str | None):
    if combination_id:
        combination = special.find_combination(combination_id)
        if combination is None:
            raise NotFoundError(f"Combination {combination_id} not found for {special.name}")
        option_a, option_b = combination.option_a, combination.option_b
    sides = []
    for base, option in ((special.base_product_a, option_a), (special.base_product_b, option_b)):
        if base.variants and option is None:
            # The resolver reads this side as the ignored base stock (always 0): nothing to move
            raise ValidationError(f"Choose a variant of {base.name} for {special.name}", field="combination_id")
        sides.append((base, option if base.variants else None))
    return sides


def apply_special_stock_change(
    db: Session,
    special: SpecialProduct,
    delta: int,
    reason: str,
    actor_id: str,
    *,
    combination_id: str | None = None,
    option_a: str | None = None,
    option_b: str | None = None,
    order_id: str | None = None,
    invoice_id: str | None = None,
    notes: str = "",
) -> list[StockAdjustment]:
    """A composite holds no stock of its own: move both base product sides."""
    return [
        apply_stock_change(
            db, base, delta, reason, actor_id,
            variant=option,
            product_type=ProductType.SPECIAL.value,
            special_product_id=special.id,
            order_id=order_id,
            invoice_id=invoice_id,
            notes=notes or f"[{special.name}]",
        )
        for base, option in _special_sides(special, combination_id, option_a, option_b)
    ]


def adjust_stock(
    db: Session,
    product_id: str,
    product_type: str,
    delta: int,
    reason: str,
    actor_id: str,
    *,
    variant: str | None = None,
    combination_id: str | None = None,
    option_a: str | None = None,
    option_b: str | None = None,
    order_id: str | None = None,
    invoice_id: str | None = None,
    notes: str = "",
) -> list[StockAdjustment]:
    """Adjust stock of a regular or special product and commit.

    Returns one adjustment for a regular product, two (one per base
    product) for a special product.
    """
    try:
        if product_type == ProductType.SPECIAL.value:
            special = db.get(SpecialProduct, product_id)
            if special is None:
                raise NotFoundError(f"Special product {product_id} not found")
            adjustments = apply_special_stock_change(
                db, special, delta, reason, actor_id,
                combination_id=combination_id, option_a=option_a, option_b=option_b,
                order_id=order_id, invoice_id=invoice_id, notes=notes,
            )
        elif product_type == ProductType.REGULAR.value:
            product = db.get(Product, product_id)
            if product is None:
                raise NotFoundError(f"Product {product_id} not found")
            adjustments = [apply_stock_change(
                db, product, delta, reason, actor_id,
                variant=variant, order_id=order_id, invoice_id=invoice_id, notes=notes,
            )]
        else:
            raise ValidationError(f"Unknown product type '{product_type}'", field="product_type")
        db.commit()
    except Exception:
        db.rollback()
        raise

    for adj in adjustments:
        logger.info(
            "Stock %s%s: %d -> %d (%s, log %s)",
            adj.product_id, f"/{adj.variant}" if adj.variant else "", adj.before, adj.after, reason, adj.log_id,
        )
    return adjustments


def adjust_special_stock(db: Session, special_id: str, delta: int, reason: str, actor_id: str,
                         **kwargs) -> list[StockAdjustment]:
    return adjust_stock(db, special_id, ProductType.SPECIAL.value, delta, reason, actor_id, **kwargs)


def apply_item_stock(db: Session, item, delta: int, reason: str, actor_id: str, *, order_id: str | None = None,
                     notes: str = "") -> list[StockAdjustment]:
    """Stock change for one order line. Flushes only; the caller owns the transaction."""
    if item.product_type == ProductType.SPECIAL.value:
        special = db.get(SpecialProduct, item.product_id)
        if special is None:
            raise InternalError(f"Special product {item.product_id} of order {order_id} no longer exists")
        return apply_special_stock_change(
            db, special, delta, reason, actor_id,
            option_a=item.option_a, option_b=item.option_b, order_id=order_id, notes=notes,
        )
    product = db.get(Product, item.product_id)
    if product is None:
        raise InternalError(f"Product {item.product_id} of order {order_id} no longer exists")
    return [apply_stock_change(
        db, product, delta, reason, actor_id, variant=item.variant_value, order_id=order_id, notes=notes,
    )]


# --- Alerts ---

def check_stock_alerts(db: Session, product: Product) -> StockAlert | None:
    """Open, refresh or resolve the single active alert of a product.

    The threshold applies to the product's aggregate stock, not per variant.
    Alerts always name the base product, so they are stored as regular even
    when a composite sale moved the stock.
    """
    threshold = settings.LOW_STOCK_THRESHOLD
    current = stock_resolver.effective_stock(product)
    active = (
        db.query(StockAlert)
        .filter(StockAlert.product_id == product.id, StockAlert.status == AlertStatus.ACTIVE.value)
        .first()
    )

    if current > threshold:
        if active:
            active.status = AlertStatus.RESOLVED.value
            active.current_stock = current
            active.resolved_at = _utcnow()
            db.flush()
            logger.info("Resolved stock alert %s for product %s (stock %d)", active.id, product.id, current)
        return None

    if active:
        active.current_stock = current
        db.flush()
        return active

    alert = StockAlert(
        product_id=product.id,
        product_type=ProductType.REGULAR.value,
        current_stock=current,
        threshold=threshold,
        status=AlertStatus.ACTIVE.value,
    )
    try:
        with db.begin_nested():
            db.add(alert)
    except IntegrityError:
        # Another writer opened it first
        alert = (
            db.query(StockAlert)
            .filter(StockAlert.product_id == product.id, StockAlert.status == AlertStatus.ACTIVE.value)
            .one()
        )
        alert.current_stock = current
        db.flush()
        return alert
    logger.warning("Low stock: product %s at %d (threshold %d)", product.id, current, threshold)
    return alert


def list_stock_alerts(db: Session, status: str | None = AlertStatus.ACTIVE.value, skip: int = 0,
                      limit: int = 100) -> list[StockAlert]:
    q = db.query(StockAlert)
    if status:
        q = q.filter(StockAlert.status == status)
    return q.order_by(StockAlert.created_at.desc()).offset(skip).limit(limit).all()


def resolve_alert(db: Session, alert_id: str) -> StockAlert:
    alert = db.get(StockAlert, alert_id)
    if not alert:
        raise NotFoundError(f"Stock alert {alert_id} not found")
    if alert.status == AlertStatus.RESOLVED.value:
        raise ConflictError("Stock alert is already resolved")
    alert.status = AlertStatus.RESOLVED.value
    alert.resolved_at = _utcnow()
    db.commit()
    db.refresh(alert)
    return alert


def low_stock_products(db: Session, threshold: int | None = None) -> list[Product]:
    threshold = settings.LOW_STOCK_THRESHOLD if threshold is None else threshold
    return [p for p in db.query(Product).order_by(Product.name).all() if stock_resolver.effective_stock(p) <= threshold]


# --- Validation ---

def resolve_item_type(db: Session, item) -> str | None:
    """Tag a request line as regular or special, once, at ingress.

    An explicit ``product_type`` wins. Otherwise the regular catalog is
    tried first, then the special one.
    """
    if getattr(item, "product_type", None):
        return ProductType(item.product_type).value
    if db.get(Product, item.product_id) is not None:
        return ProductType.REGULAR.value
    if db.get(SpecialProduct, item.product_id) is not None:
        return ProductType.SPECIAL.value
    return None


def _line_cells(product: Product, variant: str | None) -> list[tuple[tuple, int]]:
    return [((product.id, variant), (
        stock_resolver.variant_stock(product, variant) if variant is not None
        else stock_resolver.effective_stock(product)
    ))]


def _side_cells(special: SpecialProduct, option_a: str | None, option_b: str | None) -> list[tuple[tuple, int]]:
    cells = []
    for base, option in ((special.base_product_a, option_a), (special.base_product_b, option_b)):
        # Same cell that side_stock reads
        pinned = option if base.variants and option is not None else None
        cells.append(((base.id, pinned), stock_resolver.side_stock(base, option)))
    return cells


def validate_stock(db: Session, items) -> list[StockIssue]:
    """Check every line against stock; one issue per failing line.

    Demand is summed per stock cell (a product, or one of its variants)
    before comparing, so two lines of one product, or a composite line and a
    regular line sharing a base, are checked together. Every line drawing on
    an over-demanded cell is reported. Lookups that miss are reported, not
    raised.
    """
    lines = []
    stock = {}
    demand = {}
    for item in items:
        product_type = resolve_item_type(db, item)
        requested = item.quantity
        special = db.get(SpecialProduct, item.product_id) if product_type == ProductType.SPECIAL.value else None
        product = db.get(Product, item.product_id) if product_type == ProductType.REGULAR.value else None

        if product is None and special is None:
            lines.append((StockIssue(
                product_id=item.product_id,
                product_name=getattr(item, "product_name", "") or "",
                error="Product not found",
                requested=requested,
                product_type=product_type,
            ), []))
            continue

        if special is not None:
            combination_id = getattr(item, "combination_id", None)
            option_a = getattr(item, "option_a", None)
            option_b = getattr(item, "option_b", None)
            if combination_id:
                combination = special.find_combination(combination_id)
                if combination is None:
                    lines.append((StockIssue(
                        product_id=special.id, product_name=special.name, error="Combination not found",
                        requested=requested, product_type=product_type, combination_id=combination_id,
                    ), []))
                    continue
                option_a, option_b = combination.option_a, combination.option_b
            issue = StockIssue(
                product_id=special.id, product_name=special.name, error="Insufficient stock",
                requested=requested, product_type=product_type, combination_id=combination_id,
            )
            cells = _side_cells(special, option_a, option_b)
        else:
            variant = getattr(item, "variant", None)
            if variant is not None and product.find_variant(variant) is None:
                lines.append((StockIssue(
                    product_id=product.id, product_name=product.name, error="Variant not found",
                    requested=requested, product_type=product_type, variant=variant,
                ), []))
                continue
            issue = StockIssue(
                product_id=product.id, product_name=product.name, error="Insufficient stock",
                requested=requested, product_type=product_type, variant=variant,
            )
            cells = _line_cells(product, variant)

        for key, available in cells:
            stock[key] = available
            demand[key] = demand.get(key, 0) + requested
        lines.append((issue, [key for key, _ in cells]))

    issues = []
    for issue, keys in lines:
        if not keys:
            issues.append(issue)
            continue
        if all(demand[key] <= stock[key] for key in keys):
            continue
        # What is left for this line once the other lines take their share
        issue.available = min(
            max(0, stock[key] - demand[key] + issue.requested * keys.count(key)) // keys.count(key)
            for key in keys
        )
        issues.append(issue)
    return issues


# --- History ---

def list_inventory_logs(
    db: Session,
    product_id: str | None = None,
    change_type: str | None = None,
    order_id: str | None = None,
    start: datetime | None = None,
    end: datetime | None = None,
    skip: int = 0,
    limit: int = 50,
) -> list[InventoryLog]:
    q = db.query(InventoryLog)
    if product_id:
        q = q.filter(InventoryLog.product_id == product_id)
    if change_type:
        q = q.filter(InventoryLog.change_type == change_type)
    if order_id:
        q = q.filter(InventoryLog.order_id == order_id)
    if start:
        q = q.filter(InventoryLog.created_at >= start)
    if end:
        q = q.filter(InventoryLog.created_at <= end)
    return q.order_by(InventoryLog.created_at.desc()).offset(skip).limit(limit).all()
