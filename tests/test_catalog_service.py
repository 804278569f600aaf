import pytest

from backoffice.exceptions import ConflictError, NotFoundError, ValidationError
from backoffice.models.inventory import InventoryLog
from backoffice.schemas.catalog import (
    CategoryCreate,
    CombinationCreate,
    ProductCreate,
    ProductUpdate,
    SpecialProductCreate,
    SpecialProductUpdate,
    VariantCreate,
    VariantUpdate,
)
from backoffice.services import catalog_service


def test_slugify():
    assert catalog_service.slugify("Silla Épica  de Roble!") == "silla-epica-de-roble"
    assert catalog_service.slugify("***") == ""


def test_create_product_with_variants_logs_opening_stock(db, user):
    product = catalog_service.create_product(
        db,
        ProductCreate(
            name="Lounge chair",
            retail_price=300,
            variant_name="Color",
            variants=[VariantCreate(value="Red", stock=4), VariantCreate(value="Blue", stock=0)],
        ),
        actor_id=user.id,
    )
    assert product.slug == "lounge-chair"
    assert product.find_variant("Red").stock == 4
    [log] = db.query(InventoryLog).filter(InventoryLog.product_id == product.id).all()
    assert (log.change_type, log.variant_value, log.quantity_change) == ("initial_stock", "Red", 4)
    assert log.actor_id == user.id


def test_duplicate_variant_values_rejected(db):
    with pytest.raises(ValidationError):
        catalog_service.create_product(
            db, ProductCreate(name="Sofa", retail_price=1, variants=[VariantCreate(value="Red")] * 2)
        )


def test_duplicate_product_name(db):
    catalog_service.create_product(db, ProductCreate(name="Sofa", retail_price=1))
    with pytest.raises(ConflictError):
        catalog_service.create_product(db, ProductCreate(name="sofa", retail_price=1))


def test_unknown_category(db):
    with pytest.raises(NotFoundError):
        catalog_service.create_product(db, ProductCreate(name="Sofa", retail_price=1, category_id="nope"))


def test_categories(db):
    category = catalog_service.create_category(db, CategoryCreate(name="Living room"))
    assert category.slug == "living-room"
    product = catalog_service.create_product(
        db, ProductCreate(name="Sofa", retail_price=1, category_id=category.id)
    )
    assert [p.id for p in catalog_service.list_products(db, category_id=category.id)] == [product.id]


def test_update_product_ignores_explicit_nulls(db, make_product):
    product = make_product(name="Desk", retail_price=200)
    product = catalog_service.update_product(
        db, product.id, ProductUpdate(name=None, retail_price=None, cost=55, status="hidden")
    )
    assert product.name == "Desk"
    assert product.retail_price == 200
    assert product.cost == 55
    assert product.status == "hidden"


def test_rename_product_moves_slug(db, make_product):
    product = make_product(name="Desk")
    product = catalog_service.update_product(db, product.id, ProductUpdate(name="Writing desk"))
    assert product.slug == "writing-desk"
    assert catalog_service.get_product_by_slug(db, "writing-desk").id == product.id


def test_add_variant_refuses_to_drop_base_stock(db, make_product, user):
    product = make_product(stock=3)
    with pytest.raises(ConflictError):
        catalog_service.add_variant(db, product.id, VariantCreate(value="Oak"), actor_id=user.id)

    empty = make_product(stock=0)
    variant = catalog_service.add_variant(db, empty.id, VariantCreate(value="Oak", stock=6), actor_id=user.id)
    assert variant.stock == 6
    with pytest.raises(ConflictError):
        catalog_service.add_variant(db, empty.id, VariantCreate(value="Oak"), actor_id=user.id)


def test_variant_used_by_combination_is_protected(db, make_product, make_special):
    chair = make_product(variants={"red": 1, "blue": 1})
    table = make_product(stock=1)
    make_special(chair, table, [("red", None)])
    red = chair.find_variant("red")
    blue = chair.find_variant("blue")

    with pytest.raises(ConflictError):
        catalog_service.delete_variant(db, red.id)
    with pytest.raises(ConflictError):
        catalog_service.update_variant(db, red.id, VariantUpdate(value="crimson"))
    assert catalog_service.update_variant(db, red.id, VariantUpdate(image="red.jpg")).image == "red.jpg"
    assert catalog_service.delete_variant(db, blue.id) is True
    assert catalog_service.delete_variant(db, "missing") is False


def test_generate_combinations(make_product):
    chair = make_product(variants={"red": 1, "blue": 1}, additional_prices={"blue": 15})
    table = make_product(variants={"oak": 1, "pine": 1, "ash": 1}, additional_prices={"ash": 40, "oak": 5})
    plain = make_product(stock=1)
    combinations = catalog_service.generate_combinations(chair, table)
    prices = {(c.option_a, c.option_b): c.additional_price for c in combinations}
    assert len(prices) == 6
    assert prices[("blue", "ash")] == 55
    assert prices[("red", "oak")] == 5
    assert prices[("red", "pine")] == 0
    [only] = catalog_service.generate_combinations(plain, plain)
    assert (only.option_a, only.option_b, only.additional_price) == (None, None, 0)
    assert {c.additional_price for c in catalog_service.generate_combinations(chair, plain)} == {0, 15}


def test_create_special_product(db, make_product):
    chair = make_product(variants={"red": 1, "blue": 1})
    table = make_product(stock=1)
    special = catalog_service.create_special_product(
        db,
        SpecialProductCreate(
            name="Dining set", base_product_a_id=chair.id, base_product_b_id=table.id,
            final_price=900, generate_combinations=True,
        ),
    )
    assert special.slug == "dining-set"
    assert sorted(c.option_a for c in special.combinations) == ["blue", "red"]
    assert all(c.option_b is None for c in special.combinations)


def test_special_product_rejects_unknown_option(db, make_product):
    chair = make_product(variants={"red": 1})
    table = make_product(stock=1)
    with pytest.raises(ValidationError):
        catalog_service.create_special_product(
            db,
            SpecialProductCreate(
                name="Set", base_product_a_id=chair.id, base_product_b_id=table.id, final_price=1,
                combinations=[CombinationCreate(option_a="green")],
            ),
        )
    with pytest.raises(NotFoundError):
        catalog_service.create_special_product(
            db, SpecialProductCreate(name="Set", base_product_a_id="x", base_product_b_id=table.id, final_price=1)
        )


def test_update_special_product_replaces_combinations(db, make_product, make_special):
    chair = make_product(variants={"red": 1, "blue": 1})
    table = make_product(stock=1)
    special = make_special(chair, table, [("red", None)])
    special = catalog_service.update_special_product(
        db, special.id,
        SpecialProductUpdate(final_price=None, combinations=[CombinationCreate(option_a="blue", additional_price=20)]),
    )
    assert special.final_price == 500
    [combination] = special.combinations
    assert (combination.option_a, combination.additional_price) == ("blue", 20)


def test_base_product_of_special_cannot_be_deleted(db, make_product, make_special):
    chair = make_product(stock=1)
    table = make_product(stock=1)
    special = make_special(chair, table, [(None, None)])
    with pytest.raises(ConflictError):
        catalog_service.delete_product(db, chair.id)
    catalog_service.delete_special_product(db, special.id)
    catalog_service.delete_product(db, chair.id)
    assert catalog_service.get_product(db, chair.id) is None
