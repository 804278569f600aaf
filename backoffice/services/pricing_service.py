import logging
from dataclasses import dataclass

from sqlalchemy.orm import Session

from backoffice.config import settings
from backoffice.exceptions import NotFoundError, ValidationError
from backoffice.models.catalog import Product, ProductType, SpecialProduct
from backoffice.models.order import OrderItem, OrderSource, PriceTier

logger = logging.getLogger(__name__)

PRICE_TIER_BY_SOURCE = {
    OrderSource.CATALOG: PriceTier.WHOLESALE,
    OrderSource.POS: PriceTier.RETAIL,
    OrderSource.COMMERCIAL_POS: PriceTier.RETAIL,
    OrderSource.ADMIN: PriceTier.RETAIL,
    OrderSource.PAGE: PriceTier.CHANNEL,
}


@dataclass
class OrderTotals:
    subtotal: float
    discount: float
    tax: float
    total: float
    cost: float
    profit: float


def _money(value: float) -> float:
    return round(value + 0.0, 2)


def resolve_price_tier(source: OrderSource | str) -> PriceTier:
    # OrderSource() rejects unknown strings; every member is mapped
    return PRICE_TIER_BY_SOURCE[OrderSource(source)]


def tier_price(product: Product, tier: PriceTier | str) -> float:
    """Price of a regular product for a tier; unset tier prices fall back to retail."""
    tier = PriceTier(tier)
    if tier == PriceTier.WHOLESALE:
        price = product.wholesale_price
    elif tier == PriceTier.CHANNEL:
        price = product.channel_price
    else:
        price = product.retail_price
    return price if price and price > 0 else product.retail_price


def composite_cost(special: SpecialProduct) -> float:
    if special.cost is not None:
        return special.cost
    # Approximation for composites without a recorded cost
    return _money(special.final_price * settings.COMPOSITE_COST_RATIO)


def _line_amounts(unit_price: float, quantity: int, discount: float) -> float:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1", field="quantity")
    if unit_price < 0:
        raise ValidationError("Unit price cannot be negative", field="unit_price")
    gross = unit_price * quantity
    if discount < 0 or discount > gross + 1e-9:
        raise ValidationError(
            f"Line discount {discount} must be between 0 and {_money(gross)}", field="discount"
        )
    return _money(gross - discount)


def _regular_item(product: Product, raw, tier: PriceTier) -> OrderItem:
    variant = None
    if raw.variant is not None:
        variant = product.find_variant(raw.variant)
        if variant is None:
            raise ValidationError(f"Variant '{raw.variant}' not found for {product.name}", field="variant")
    elif product.variants:
        raise ValidationError(f"{product.name} has variants; choose one", field="variant")

    unit_price = raw.unit_price if raw.unit_price is not None else tier_price(product, tier)
    if variant is not None:
        unit_price += variant.additional_price or 0.0

    return OrderItem(
        product_type=ProductType.REGULAR.value,
        product_id=product.id,
        product_name=product.name,
        variant_value=variant.value if variant else None,
        variant_image=variant.image if variant else "",
        unit_price=_money(unit_price),
        cost=product.cost or 0.0,
    )


def _special_item(special: SpecialProduct, raw) -> OrderItem:
    unit_price = raw.unit_price if raw.unit_price is not None else special.final_price
    item = OrderItem(
        product_type=ProductType.SPECIAL.value,
        product_id=special.id,
        product_name=special.name,
        option_a=raw.option_a,
        option_b=raw.option_b,
        cost=composite_cost(special),
    )
    if raw.combination_id:
        combination = special.find_combination(raw.combination_id)
        if combination is None:
            raise ValidationError(
                f"Combination {raw.combination_id} not found for {special.name}", field="combination_id"
            )
        item.combination_id = combination.id
        item.option_a = combination.option_a
        item.option_b = combination.option_b
        item.combination_image = combination.final_image
        unit_price = special.final_price + (combination.additional_price or 0.0)
    item.unit_price = _money(unit_price)
    return item


def build_order_items(db: Session, raw_items, tier: PriceTier | str) -> list[OrderItem]:
    """Price each requested line for ``tier``.

    Every line must already carry its ``product_type``. Names and prices are
    copied onto the item and do not follow later catalog edits.
    """
    tier = PriceTier(tier)
    items = []
    for position, raw in enumerate(raw_items):
        if raw.product_type == ProductType.SPECIAL.value:
            special = db.get(SpecialProduct, raw.product_id)
            if special is None:
                raise NotFoundError(f"Special product {raw.product_id} not found")
            item = _special_item(special, raw)
        elif raw.product_type == ProductType.REGULAR.value:
            product = db.get(Product, raw.product_id)
            if product is None:
                raise NotFoundError(f"Product {raw.product_id} not found")
            item = _regular_item(product, raw, tier)
        else:
            raise ValidationError(f"Line {position + 1} has no product type", field="product_type")

        item.position = position
        item.quantity = raw.quantity
        item.discount = _money(raw.discount or 0.0)
        item.subtotal = _line_amounts(item.unit_price, raw.quantity, item.discount)
        item.total = item.subtotal
        items.append(item)
    return items


def calculate_order_totals(items, discount: float = 0.0, tax_rate: float = 0.0) -> OrderTotals:
    """Order-level totals. Profit is taken before tax."""
    if discount is None:
        discount = 0.0
    if tax_rate is None:
        tax_rate = 0.0
    if tax_rate < 0:
        raise ValidationError("Tax rate cannot be negative", field="tax_rate")

    subtotal = _money(sum(item.subtotal for item in items))
    if discount < 0:
        raise ValidationError("Discount cannot be negative", field="discount")
    if discount > subtotal + 1e-9:
        raise ValidationError(f"Discount {discount} exceeds subtotal {subtotal}", field="discount")

    after_discount = _money(subtotal - discount)
    tax = _money(after_discount * tax_rate)
    cost = _money(sum((item.cost or 0.0) * item.quantity for item in items))
    return OrderTotals(
        subtotal=subtotal,
        discount=_money(discount),
        tax=tax,
        total=_money(after_discount + tax),
        cost=cost,
        profit=_money(after_discount - cost),
    )
