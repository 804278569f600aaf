import logging
import re
import unicodedata

from sqlalchemy import or_
from sqlalchemy.orm import Session

from backoffice.exceptions import ConflictError, NotFoundError, ValidationError
from backoffice.models.catalog import Category, Combination, Product, SpecialProduct, Variant
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

logger = logging.getLogger(__name__)

SYSTEM_ACTOR = "system"


def slugify(value: str) -> str:
    value = unicodedata.normalize("NFKD", value).encode("ascii", "ignore").decode("ascii")
    value = re.sub(r"[^a-zA-Z0-9]+", "-", value.lower()).strip("-")
    return value


def _slug_for(db: Session, model, name: str, exclude_id: str | None = None) -> str:
    slug = slugify(name)
    if not slug:
        raise ValidationError("Name must contain at least one letter or digit")
    q = db.query(model).filter(model.slug == slug)
    if exclude_id:
        q = q.filter(model.id != exclude_id)
    if q.first():
        raise ConflictError(f"'{name}' already exists", field="name")
    return slug


# --- Categories ---

def create_category(db: Session, data: CategoryCreate) -> Category:
    category = Category(
        name=data.name,
        slug=_slug_for(db, Category, data.name),
        description=data.description,
    )
    db.add(category)
    db.commit()
    db.refresh(category)
    return category


def list_categories(db: Session) -> list[Category]:
    return db.query(Category).order_by(Category.name).all()


# --- Products ---

def create_product(db: Session, data: ProductCreate, actor_id: str = SYSTEM_ACTOR) -> Product:
    from backoffice.services import inventory_service

    if data.category_id and not db.get(Category, data.category_id):
        raise NotFoundError(f"Category {data.category_id} not found")
    values = [v.value for v in data.variants]
    if len(values) != len(set(values)):
        raise ValidationError("Variant values must be unique within a product")

    product = Product(
        name=data.name,
        slug=_slug_for(db, Product, data.name),
        category_id=data.category_id,
        description=data.description,
        unit=data.unit,
        status=data.status.value,
        retail_price=data.retail_price,
        wholesale_price=data.wholesale_price,
        channel_price=data.channel_price,
        cost=data.cost,
        base_stock=0,
        variant_name=data.variant_name,
    )
    db.add(product)
    for v_data in data.variants:
        product.variants.append(Variant(
            value=v_data.value,
            stock=0,
            image=v_data.image,
            additional_price=v_data.additional_price,
        ))
    db.flush()

    # Opening stock goes through the ledger so it shows up in the history
    if data.variants:
        for v_data, variant in zip(data.variants, product.variants):
            if v_data.stock > 0:
                inventory_service.apply_stock_change(
                    db, product, v_data.stock, "initial_stock", actor_id,
                    variant=variant.value, notes="Initial stock on product creation",
                )
    elif data.base_stock > 0:
        inventory_service.apply_stock_change(
            db, product, data.base_stock, "initial_stock", actor_id,
            notes="Initial stock on product creation",
        )

    db.commit()
    db.refresh(product)
    logger.info("Created product %s (%s)", product.id, product.slug)
    return product


def get_product(db: Session, product_id: str) -> Product | None:
    return db.query(Product).filter(Product.id == product_id).first()


def get_product_or_404(db: Session, product_id: str) -> Product:
    product = get_product(db, product_id)
    if not product:
        raise NotFoundError(f"Product {product_id} not found")
    return product


def get_product_by_slug(db: Session, slug: str) -> Product | None:
    return db.query(Product).filter(Product.slug == slug).first()


def list_products(
    db: Session, skip: int = 0, limit: int = 100, category_id: str | None = None, status: str | None = None
) -> list[Product]:
    q = db.query(Product)
    if category_id:
        q = q.filter(Product.category_id == category_id)
    if status:
        q = q.filter(Product.status == status)
    return q.order_by(Product.name).offset(skip).limit(limit).all()


def update_product(db: Session, product_id: str, data: ProductUpdate) -> Product:
    product = get_product_or_404(db, product_id)
    update_data = data.model_dump(exclude_unset=True)
    if update_data.get("category_id") and not db.get(Category, update_data["category_id"]):
        raise NotFoundError(f"Category {update_data['category_id']} not found")
    for field in ("name", "status", "unit", "retail_price", "wholesale_price", "channel_price", "cost"):
        if field in update_data and update_data[field] is None:
            del update_data[field]
    if "name" in update_data and update_data["name"] != product.name:
        product.slug = _slug_for(db, Product, update_data["name"], exclude_id=product.id)
    if "status" in update_data:
        update_data["status"] = update_data["status"].value
    for field, value in update_data.items():
        setattr(product, field, value)
    db.commit()
    db.refresh(product)
    return product


def delete_product(db: Session, product_id: str) -> None:
    product = get_product_or_404(db, product_id)
    used_by = (
        db.query(SpecialProduct)
        .filter(or_(SpecialProduct.base_product_a_id == product_id, SpecialProduct.base_product_b_id == product_id))
        .first()
    )
    if used_by:
        raise ConflictError(f"Product is a base of special product '{used_by.name}'")
    db.delete(product)
    db.commit()


# --- Variants ---

def add_variant(db: Session, product_id: str, data: VariantCreate, actor_id: str = SYSTEM_ACTOR) -> Variant:
    from backoffice.services import inventory_service

    product = get_product_or_404(db, product_id)
    if product.find_variant(data.value):
        raise ConflictError(f"Variant '{data.value}' already exists for {product.name}")
    if not product.variants and product.base_stock > 0:
        # Base stock is ignored once variants exist; refuse to silently drop it
        raise ConflictError(
            f"{product.name} still has {product.base_stock} units of base stock; adjust it to 0 first"
        )
    variant = Variant(value=data.value, stock=0, image=data.image, additional_price=data.additional_price)
    product.variants.append(variant)
    db.flush()
    if data.stock > 0:
        inventory_service.apply_stock_change(
            db, product, data.stock, "initial_stock", actor_id,
            variant=variant.value, notes="Initial stock on variant creation",
        )
    db.commit()
    db.refresh(variant)
    return variant


def get_variant(db: Session, variant_id: str) -> Variant | None:
    return db.query(Variant).filter(Variant.id == variant_id).first()


def update_variant(db: Session, variant_id: str, data: VariantUpdate) -> Variant:
    variant = get_variant(db, variant_id)
    if not variant:
        raise NotFoundError(f"Variant {variant_id} not found")
    update_data = data.model_dump(exclude_unset=True)
    new_value = update_data.get("value")
    if new_value and new_value != variant.value:
        if variant.product.find_variant(new_value):
            raise ConflictError(f"Variant '{new_value}' already exists for {variant.product.name}")
        if _variant_in_use(db, variant.product_id, variant.value):
            raise ConflictError(f"Variant '{variant.value}' is used by a special product combination")
    for field, value in update_data.items():
        setattr(variant, field, value)
    db.commit()
    db.refresh(variant)
    return variant


def delete_variant(db: Session, variant_id: str) -> bool:
    variant = get_variant(db, variant_id)
    if not variant:
        return False
    if _variant_in_use(db, variant.product_id, variant.value):
        raise ConflictError(f"Variant '{variant.value}' is used by a special product combination")
    db.delete(variant)
    db.commit()
    return True


def _variant_in_use(db: Session, product_id: str, value: str) -> bool:
    as_a = (
        db.query(Combination)
        .join(SpecialProduct, Combination.special_product_id == SpecialProduct.id)
        .filter(SpecialProduct.base_product_a_id == product_id, Combination.option_a == value)
        .first()
    )
    as_b = (
        db.query(Combination)
        .join(SpecialProduct, Combination.special_product_id == SpecialProduct.id)
        .filter(SpecialProduct.base_product_b_id == product_id, Combination.option_b == value)
        .first()
    )
    return bool(as_a or as_b)


# --- Special products ---

def generate_combinations(product_a: Product, product_b: Product) -> list[CombinationCreate]:
    """Every option pair of the two base products; a side without variants is left unpinned.

    Each pair carries the surcharges of both of its variants.
    """
    variants_a = list(product_a.variants) or [None]
    variants_b = list(product_b.variants) or [None]
    return [
        CombinationCreate(
            option_a=va.value if va else None,
            option_b=vb.value if vb else None,
            additional_price=((va.additional_price or 0.0) if va else 0.0)
            + ((vb.additional_price or 0.0) if vb else 0.0),
        )
        for va in variants_a
        for vb in variants_b
    ]


def _build_combinations(
    product_a: Product, product_b: Product, combinations: list[CombinationCreate]
) -> list[Combination]:
    seen = set()
    result = []
    for c in combinations:
        if c.option_a is not None and not product_a.find_variant(c.option_a):
            raise ValidationError(f"'{c.option_a}' is not a variant of {product_a.name}", field="option_a")
        if c.option_b is not None and not product_b.find_variant(c.option_b):
            raise ValidationError(f"'{c.option_b}' is not a variant of {product_b.name}", field="option_b")
        key = (c.option_a, c.option_b)
        if key in seen:
            raise ValidationError(f"Duplicate combination {c.option_a} / {c.option_b}")
        seen.add(key)
        result.append(Combination(
            option_a=c.option_a,
            option_b=c.option_b,
            final_image=c.final_image,
            additional_price=c.additional_price,
        ))
    return result


def create_special_product(db: Session, data: SpecialProductCreate) -> SpecialProduct:
    product_a = get_product(db, data.base_product_a_id)
    if not product_a:
        raise NotFoundError(f"Base product {data.base_product_a_id} not found")
    product_b = get_product(db, data.base_product_b_id)
    if not product_b:
        raise NotFoundError(f"Base product {data.base_product_b_id} not found")

    combinations = data.combinations
    if data.generate_combinations and not combinations:
        combinations = generate_combinations(product_a, product_b)

    special = SpecialProduct(
        name=data.name,
        slug=_slug_for(db, SpecialProduct, data.name),
        base_product_a_id=product_a.id,
        base_product_b_id=product_b.id,
        final_price=data.final_price,
        cost=data.cost,
        description=data.description,
        status=data.status.value,
    )
    special.combinations = _build_combinations(product_a, product_b, combinations)
    db.add(special)
    db.commit()
    db.refresh(special)
    logger.info("Created special product %s with %d combinations", special.id, len(special.combinations))
    return special


def get_special_product(db: Session, special_id: str) -> SpecialProduct | None:
    return db.query(SpecialProduct).filter(SpecialProduct.id == special_id).first()


def get_special_product_or_404(db: Session, special_id: str) -> SpecialProduct:
    special = get_special_product(db, special_id)
    if not special:
        raise NotFoundError(f"Special product {special_id} not found")
    return special


def list_special_products(db: Session, skip: int = 0, limit: int = 100, status: str | None = None) -> list[SpecialProduct]:
    q = db.query(SpecialProduct)
    if status:
        q = q.filter(SpecialProduct.status == status)
    return q.order_by(SpecialProduct.name).offset(skip).limit(limit).all()


def update_special_product(db: Session, special_id: str, data: SpecialProductUpdate) -> SpecialProduct:
    special = get_special_product_or_404(db, special_id)
    update_data = data.model_dump(exclude_unset=True, exclude={"combinations"})
    for field in ("name", "status", "final_price"):
        if field in update_data and update_data[field] is None:
            del update_data[field]
    if "name" in update_data and update_data["name"] != special.name:
        special.slug = _slug_for(db, SpecialProduct, update_data["name"], exclude_id=special.id)
    if "status" in update_data:
        update_data["status"] = update_data["status"].value
    for field, value in update_data.items():
        setattr(special, field, value)
    if data.combinations is not None:
        # Orders snapshot combination options, so replacing them is safe
        special.combinations = _build_combinations(
            special.base_product_a, special.base_product_b, data.combinations
        )
    db.commit()
    db.refresh(special)
    return special


def delete_special_product(db: Session, special_id: str) -> None:
    special = get_special_product_or_404(db, special_id)
    db.delete(special)
    db.commit()
