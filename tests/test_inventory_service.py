import pytest

from backoffice.exceptions import ConflictError, NotFoundError, ValidationError
from backoffice.models.inventory import AlertStatus, InventoryLog, StockAlert
from backoffice.schemas.inventory import StockCheckItem
from backoffice.services import inventory_service, stock_resolver


def logs_for(db, product_id):
    return db.query(InventoryLog).filter(InventoryLog.product_id == product_id).all()


def active_alerts(db, product_id):
    return (
        db.query(StockAlert)
        .filter(StockAlert.product_id == product_id, StockAlert.status == AlertStatus.ACTIVE.value)
        .all()
    )


def test_sale_adjustment_logs_and_alerts(db, make_product, user):
    product = make_product(stock=5)
    [adj] = inventory_service.adjust_stock(db, product.id, "regular", -3, "sale", user.id)

    assert (adj.before, adj.after, adj.change) == (5, 2, -3)
    [log] = logs_for(db, product.id)
    assert log.change_type == "sale"
    assert log.quantity_before == 5
    assert log.quantity_after == 2
    assert log.actor_id == user.id
    [alert] = active_alerts(db, product.id)
    assert alert.current_stock == 2


def test_stock_clamps_at_zero(db, make_product, user):
    product = make_product(stock=2)
    [adj] = inventory_service.adjust_stock(db, product.id, "regular", -5, "correction", user.id)
    db.refresh(product)
    assert product.base_stock == 0
    assert adj.after == 0
    assert adj.change == -2


def test_stock_never_negative_over_many_adjustments(db, make_product, user):
    product = make_product(stock=3)
    for delta in (-1, -4, 2, -10, 7, -3, -3):
        inventory_service.adjust_stock(db, product.id, "regular", delta, "correction", user.id)
        db.refresh(product)
        assert stock_resolver.effective_stock(product) >= 0
    assert product.base_stock == 0


def test_variant_required_for_product_with_variants(db, make_product, user):
    product = make_product(variants={"red": 5})
    with pytest.raises(ValidationError):
        inventory_service.adjust_stock(db, product.id, "regular", 1, "purchase", user.id)
    assert logs_for(db, product.id) == []


def test_unknown_variant(db, make_product, user):
    product = make_product(variants={"red": 5})
    with pytest.raises(NotFoundError):
        inventory_service.adjust_stock(db, product.id, "regular", 1, "purchase", user.id, variant="green")


def test_variant_adjustment(db, make_product, user):
    product = make_product(variants={"red": 5, "blue": 20})
    [adj] = inventory_service.adjust_stock(db, product.id, "regular", 4, "purchase", user.id, variant="red")
    db.refresh(product)
    assert product.find_variant("red").stock == 9
    assert adj.variant == "red"
    [log] = logs_for(db, product.id)
    assert log.change_type == "purchase"
    assert log.variant_value == "red"


def test_reason_and_actor_required(db, make_product, user):
    product = make_product(stock=5)
    with pytest.raises(ValidationError):
        inventory_service.adjust_stock(db, product.id, "regular", 1, "", user.id)
    with pytest.raises(ValidationError):
        inventory_service.adjust_stock(db, product.id, "regular", 1, "purchase", "")


def test_change_type_from_delta_sign(db, make_product, user):
    product = make_product(stock=50)
    inventory_service.adjust_stock(db, product.id, "regular", 5, "recount", user.id)
    inventory_service.adjust_stock(db, product.id, "regular", -5, "damaged", user.id)
    types = sorted(log.change_type for log in logs_for(db, product.id))
    assert types == ["decrease", "increase"]


def test_missing_product(db, user):
    with pytest.raises(NotFoundError):
        inventory_service.adjust_stock(db, "missing", "regular", 1, "purchase", user.id)
    with pytest.raises(NotFoundError):
        inventory_service.adjust_special_stock(db, "missing", 1, "purchase", user.id)


def test_special_adjustment_moves_both_sides(db, make_product, make_special, user):
    chair = make_product(variants={"red": 5, "blue": 2})
    table = make_product(stock=30)
    special = make_special(chair, table, [("red", None)])
    combination = special.combinations[0]

    adjustments = inventory_service.adjust_special_stock(
        db, special.id, -2, "sale", user.id, combination_id=combination.id
    )
    db.refresh(chair)
    db.refresh(table)
    assert len(adjustments) == 2
    assert chair.find_variant("red").stock == 3
    assert chair.find_variant("blue").stock == 2
    assert table.base_stock == 28
    for log in logs_for(db, chair.id) + logs_for(db, table.id):
        assert log.product_type == "special"
        assert log.special_product_id == special.id


def test_special_adjustment_needs_option_on_variant_base(db, make_product, make_special, user):
    chair = make_product(variants={"red": 5})
    table = make_product(stock=30)
    special = make_special(chair, table, [("red", None)])
    with pytest.raises(ValidationError):
        inventory_service.adjust_special_stock(db, special.id, -1, "sale", user.id)
    db.refresh(chair)
    db.refresh(table)
    assert chair.find_variant("red").stock == 5
    assert table.base_stock == 30


def test_failed_special_adjustment_rolls_back_first_side(db, make_product, make_special, user):
    chair = make_product(stock=10)
    table = make_product(variants={"oak": 4})
    special = make_special(chair, table, [(None, "oak")])
    with pytest.raises(NotFoundError):
        inventory_service.adjust_special_stock(
            db, special.id, -1, "sale", user.id, option_a=None, option_b="walnut"
        )
    db.refresh(chair)
    assert chair.base_stock == 10
    assert logs_for(db, chair.id) == []


def test_alert_resolves_when_restocked(db, make_product, user):
    product = make_product(stock=12)
    inventory_service.adjust_stock(db, product.id, "regular", -5, "sale", user.id)
    assert len(active_alerts(db, product.id)) == 1

    inventory_service.adjust_stock(db, product.id, "regular", 20, "purchase", user.id)
    assert active_alerts(db, product.id) == []
    resolved = db.query(StockAlert).filter(StockAlert.product_id == product.id).one()
    assert resolved.status == AlertStatus.RESOLVED.value
    assert resolved.resolved_at is not None


def test_single_active_alert_per_product(db, make_product, user):
    product = make_product(stock=9)
    for _ in range(3):
        inventory_service.adjust_stock(db, product.id, "regular", -1, "sale", user.id)
    [alert] = active_alerts(db, product.id)
    assert alert.current_stock == 6


def test_alert_uses_aggregate_stock_across_variants(db, make_product, user):
    product = make_product(variants={"red": 2, "blue": 30})
    inventory_service.adjust_stock(db, product.id, "regular", -1, "sale", user.id, variant="red")
    assert active_alerts(db, product.id) == []


def test_special_adjustment_alert_names_base_as_regular(db, make_product, make_special, user):
    chair = make_product(stock=12)
    table = make_product(stock=40)
    special = make_special(chair, table, [(None, None)])
    inventory_service.adjust_special_stock(db, special.id, -5, "sale", user.id)
    [alert] = active_alerts(db, chair.id)
    assert alert.product_type == "regular"
    assert alert.current_stock == 7
    assert active_alerts(db, table.id) == []


def test_resolve_alert_manually(db, make_product, user):
    product = make_product(stock=5)
    inventory_service.adjust_stock(db, product.id, "regular", -1, "sale", user.id)
    [alert] = inventory_service.list_stock_alerts(db)
    resolved = inventory_service.resolve_alert(db, alert.id)
    assert resolved.status == "resolved"
    with pytest.raises(ConflictError):
        inventory_service.resolve_alert(db, alert.id)


def test_low_stock_products(db, make_product):
    low = make_product(stock=3)
    make_product(stock=50)
    assert [p.id for p in inventory_service.low_stock_products(db)] == [low.id]


def test_resolve_item_type(db, make_product, make_special):
    chair = make_product(stock=1)
    special = make_special(chair, make_product(stock=1), [(None, None)])
    assert inventory_service.resolve_item_type(db, StockCheckItem(product_id=chair.id)) == "regular"
    assert inventory_service.resolve_item_type(db, StockCheckItem(product_id=special.id)) == "special"
    assert inventory_service.resolve_item_type(db, StockCheckItem(product_id="missing")) is None
    # Explicit tag is never second-guessed
    explicit = StockCheckItem(product_id=chair.id, product_type="special")
    assert inventory_service.resolve_item_type(db, explicit) == "special"


def test_validate_stock_reports_every_failing_line(db, make_product, make_special):
    chair = make_product(variants={"red": 10, "blue": 0})
    table = make_product(stock=3)
    special = make_special(chair, table, [("red", None)])
    items = [
        StockCheckItem(product_id=chair.id, quantity=2, variant="red"),
        StockCheckItem(product_id=chair.id, quantity=1, variant="blue"),
        StockCheckItem(product_id="missing", quantity=1),
        StockCheckItem(product_id=special.id, quantity=4, combination_id=special.combinations[0].id),
        StockCheckItem(product_id=special.id, quantity=1, combination_id="gone"),
        StockCheckItem(product_id=chair.id, quantity=1, variant="green"),
    ]
    issues = inventory_service.validate_stock(db, items)
    errors = [(i.product_id, i.error) for i in issues]
    assert errors == [
        (chair.id, "Insufficient stock"),
        ("missing", "Product not found"),
        (special.id, "Insufficient stock"),
        (special.id, "Combination not found"),
        (chair.id, "Variant not found"),
    ]
    blue, _, combo, _, _ = issues
    assert (blue.requested, blue.available) == (1, 0)
    assert (combo.requested, combo.available) == (4, 3)


def test_list_inventory_logs_filters(db, make_product, user):
    chair = make_product(stock=50)
    table = make_product(stock=50)
    inventory_service.adjust_stock(db, chair.id, "regular", -1, "sale", user.id, order_id="o-1")
    inventory_service.adjust_stock(db, table.id, "regular", 3, "purchase", user.id)

    assert len(inventory_service.list_inventory_logs(db)) == 2
    [log] = inventory_service.list_inventory_logs(db, product_id=table.id)
    assert log.change_type == "purchase"
    [log] = inventory_service.list_inventory_logs(db, order_id="o-1")
    assert log.product_id == chair.id
    assert len(inventory_service.list_inventory_logs(db, change_type="sale")) == 1


def test_validate_stock_sums_lines_of_one_product(db, make_product):
    chair = make_product(stock=5)
    items = [
        StockCheckItem(product_id=chair.id, quantity=3),
        StockCheckItem(product_id=chair.id, quantity=3),
    ]
    issues = inventory_service.validate_stock(db, items)
    assert [(i.error, i.requested, i.available) for i in issues] == [
        ("Insufficient stock", 3, 2),
        ("Insufficient stock", 3, 2),
    ]
    assert inventory_service.validate_stock(db, items[:1]) == []


def test_validate_stock_sums_composite_and_regular_lines(db, make_product, make_special):
    chair = make_product(variants={"red": 4, "blue": 9})
    table = make_product(stock=20)
    special = make_special(chair, table, [("red", None)])
    combination = special.combinations[0]
    items = [
        StockCheckItem(product_id=special.id, quantity=3, combination_id=combination.id),
        StockCheckItem(product_id=chair.id, quantity=2, variant="red"),
        StockCheckItem(product_id=chair.id, quantity=2, variant="blue"),
        StockCheckItem(product_id=table.id, quantity=17),
    ]
    issues = inventory_service.validate_stock(db, items)
    assert [(i.product_id, i.available) for i in issues] == [(special.id, 2), (chair.id, 1)]
