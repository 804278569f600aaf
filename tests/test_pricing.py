from types import SimpleNamespace

import pytest

from backoffice.config import settings
from backoffice.exceptions import NotFoundError, ValidationError
from backoffice.models.order import OrderSource, PriceTier
from backoffice.schemas.order import OrderItemCreate
from backoffice.services import pricing_service


def line(subtotal, quantity=1, cost=0.0):
    return SimpleNamespace(subtotal=subtotal, quantity=quantity, cost=cost)


@pytest.mark.parametrize("source,tier", [
    ("catalog", PriceTier.WHOLESALE),
    ("pos", PriceTier.RETAIL),
    ("commercial_pos", PriceTier.RETAIL),
    ("admin", PriceTier.RETAIL),
    ("page", PriceTier.CHANNEL),
])
def test_resolve_price_tier(source, tier):
    assert pricing_service.resolve_price_tier(source) == tier


def test_every_source_has_a_tier():
    assert set(pricing_service.PRICE_TIER_BY_SOURCE) == set(OrderSource)


def test_unknown_source_is_an_error():
    with pytest.raises(ValueError):
        pricing_service.resolve_price_tier("fax")


def test_totals_example():
    items = [line(200.0, quantity=2), line(50.0)]
    totals = pricing_service.calculate_order_totals(items, discount=20, tax_rate=0.19)
    assert totals.subtotal == 250.0
    assert totals.tax == pytest.approx(43.70)
    assert totals.total == pytest.approx(273.70)


def test_profit_is_before_tax():
    items = [line(300.0, quantity=3, cost=40.0)]
    totals = pricing_service.calculate_order_totals(items, discount=30, tax_rate=0.2)
    assert totals.cost == 120.0
    assert totals.profit == pytest.approx(300 - 30 - 120)
    assert totals.total == pytest.approx(totals.subtotal - totals.discount + totals.tax)


def test_negative_discount_rejected():
    with pytest.raises(ValidationError):
        pricing_service.calculate_order_totals([line(100.0)], discount=-1)


def test_discount_above_subtotal_rejected():
    with pytest.raises(ValidationError):
        pricing_service.calculate_order_totals([line(100.0)], discount=100.01)


def test_discount_equal_to_subtotal_allowed():
    totals = pricing_service.calculate_order_totals([line(100.0)], discount=100, tax_rate=0.19)
    assert totals.total == 0.0


def test_negative_tax_rate_rejected():
    with pytest.raises(ValidationError):
        pricing_service.calculate_order_totals([line(100.0)], tax_rate=-0.1)


def test_tier_price_falls_back_to_retail():
    product = SimpleNamespace(retail_price=100.0, wholesale_price=0.0, channel_price=90.0)
    assert pricing_service.tier_price(product, PriceTier.WHOLESALE) == 100.0
    assert pricing_service.tier_price(product, PriceTier.CHANNEL) == 90.0
    assert pricing_service.tier_price(product, PriceTier.RETAIL) == 100.0


def test_build_items_uses_tier_price_and_variant_addon(db, make_product):
    chair = make_product(variants={"red": 5}, retail_price=100, wholesale_price=80,
                         additional_prices={"red": 15})
    raw = [OrderItemCreate(product_id=chair.id, product_type="regular", quantity=2, variant="red", discount=10)]
    [item] = pricing_service.build_order_items(db, raw, PriceTier.WHOLESALE)
    assert item.unit_price == 95.0
    assert item.subtotal == 180.0
    assert item.product_name == chair.name
    assert item.variant_value == "red"
    assert item.cost == chair.cost


def test_build_items_override_price_wins(db, make_product):
    chair = make_product(stock=5, retail_price=100)
    raw = [OrderItemCreate(product_id=chair.id, product_type="regular", quantity=1, unit_price=70)]
    [item] = pricing_service.build_order_items(db, raw, PriceTier.RETAIL)
    assert item.unit_price == 70.0


def test_build_items_special_combination_price_and_cost(db, make_product, make_special):
    chair = make_product(variants={"red": 5})
    table = make_product(stock=3)
    special = make_special(chair, table, [("red", None)], final_price=500, additional_price=25)
    combination = special.combinations[0]
    raw = [OrderItemCreate(product_id=special.id, product_type="special", quantity=1,
                           combination_id=combination.id)]
    [item] = pricing_service.build_order_items(db, raw, PriceTier.RETAIL)
    assert item.unit_price == 525.0
    assert item.option_a == "red"
    assert item.option_b is None
    assert item.cost == pytest.approx(500 * settings.COMPOSITE_COST_RATIO)


def test_build_items_special_explicit_cost(db, make_product, make_special):
    chair = make_product(stock=5)
    table = make_product(stock=3)
    special = make_special(chair, table, [(None, None)], final_price=500, cost=210)
    raw = [OrderItemCreate(product_id=special.id, product_type="special", quantity=1)]
    [item] = pricing_service.build_order_items(db, raw, PriceTier.RETAIL)
    assert item.unit_price == 500.0
    assert item.cost == 210.0


def test_build_items_unknown_combination(db, make_product, make_special):
    special = make_special(make_product(stock=1), make_product(stock=1), [(None, None)])
    raw = [OrderItemCreate(product_id=special.id, product_type="special", quantity=1, combination_id="nope")]
    with pytest.raises(ValidationError):
        pricing_service.build_order_items(db, raw, PriceTier.RETAIL)


def test_build_items_missing_product(db):
    raw = [OrderItemCreate(product_id="missing", product_type="regular", quantity=1)]
    with pytest.raises(NotFoundError):
        pricing_service.build_order_items(db, raw, PriceTier.RETAIL)


def test_build_items_line_discount_above_gross(db, make_product):
    chair = make_product(stock=5, retail_price=10)
    raw = [OrderItemCreate(product_id=chair.id, product_type="regular", quantity=1, discount=11)]
    with pytest.raises(ValidationError):
        pricing_service.build_order_items(db, raw, PriceTier.RETAIL)
