"""Sellable-stock arithmetic for products, variants and composite combinations.

Everything here is pure: no session, no writes, no exceptions. Missing or
malformed values read as zero stock.
"""


def _count(value) -> int:
    try:
        return max(0, int(value or 0))
    except (TypeError, ValueError):
        return 0


def effective_stock(product) -> int:
    """Sum of variant stocks, or the scalar base stock when there are no variants."""
    if product is None:
        return 0
    variants = getattr(product, "variants", None) or []
    if variants:
        return sum(_count(v.stock) for v in variants)
    return _count(getattr(product, "base_stock", 0))


def has_available_stock(product) -> bool:
    if product is None:
        return False
    variants = getattr(product, "variants", None) or []
    if variants:
        return any(_count(v.stock) > 0 for v in variants)
    return _count(getattr(product, "base_stock", 0)) > 0


def variant_stock(product, value: str | None) -> int:
    if product is None or value is None:
        return 0
    for variant in getattr(product, "variants", None) or []:
        if variant.value == value:
            return _count(variant.stock)
    return 0


def side_stock(product, option: str | None) -> int:
    """Stock of one side of a combination.

    Uses the pinned variant when the base product has variants and the side
    names one; otherwise the base product's scalar stock. Each side is
    resolved on its own.
    """
    if product is None:
        return 0
    variants = getattr(product, "variants", None) or []
    if not variants or option is None:
        return _count(getattr(product, "base_stock", 0))
    return variant_stock(product, option)


def combination_stock(combination, product_a, product_b) -> int:
    """Both components must be available: the minimum of the two sides."""
    option_a = getattr(combination, "option_a", None) if combination is not None else None
    option_b = getattr(combination, "option_b", None) if combination is not None else None
    return min(side_stock(product_a, option_a), side_stock(product_b, option_b))


def special_product_stock(special) -> int:
    # Display only: best single combination
    if special is None:
        return 0
    a, b = special.base_product_a, special.base_product_b
    combinations = special.combinations or []
    if not combinations:
        return min(side_stock(a, None), side_stock(b, None))
    return max(combination_stock(c, a, b) for c in combinations)
