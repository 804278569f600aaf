from datetime import datetime

from pydantic import BaseModel, Field, computed_field

from backoffice.models.catalog import ProductStatus
from backoffice.services import stock_resolver


# --- Category schemas ---

class CategoryCreate(BaseModel):
    name: str
    description: str = ""


class CategoryOut(BaseModel):
    id: str
    name: str
    slug: str
    description: str
    created_at: datetime

    model_config = {"from_attributes": True}


# --- Variant schemas ---

class VariantCreate(BaseModel):
    value: str
    stock: int = Field(default=0, ge=0)
    image: str = ""
    additional_price: float = 0.0


class VariantUpdate(BaseModel):
    value: str | None = None
    image: str | None = None
    additional_price: float | None = None


class VariantOut(BaseModel):
    id: str
    product_id: str
    value: str
    stock: int
    image: str
    additional_price: float

    model_config = {"from_attributes": True}


# --- Product schemas ---

class ProductCreate(BaseModel):
    name: str
    category_id: str | None = None
    description: str = ""
    unit: str = "piece"
    status: ProductStatus = ProductStatus.VISIBLE
    retail_price: float = Field(ge=0)
    wholesale_price: float = Field(default=0.0, ge=0)
    channel_price: float = Field(default=0.0, ge=0)
    cost: float = Field(default=0.0, ge=0)
    base_stock: int = Field(default=0, ge=0)
    variant_name: str = ""
    variants: list[VariantCreate] = []


class ProductUpdate(BaseModel):
    name: str | None = None
    category_id: str | None = None
    description: str | None = None
    unit: str | None = None
    status: ProductStatus | None = None
    retail_price: float | None = Field(default=None, ge=0)
    wholesale_price: float | None = Field(default=None, ge=0)
    channel_price: float | None = Field(default=None, ge=0)
    cost: float | None = Field(default=None, ge=0)
    variant_name: str | None = None


class ProductOut(BaseModel):
    id: str
    name: str
    slug: str
    category_id: str | None = None
    description: str
    unit: str
    status: str
    retail_price: float
    wholesale_price: float
    channel_price: float
    cost: float
    base_stock: int
    variant_name: str
    variants: list[VariantOut] = []
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}

    @computed_field
    @property
    def stock(self) -> int:
        return stock_resolver.effective_stock(self)

    @computed_field
    @property
    def in_stock(self) -> bool:
        return stock_resolver.has_available_stock(self)


# --- Special product schemas ---

class CombinationCreate(BaseModel):
    option_a: str | None = None
    option_b: str | None = None
    final_image: str = ""
    additional_price: float = 0.0


class CombinationOut(BaseModel):
    id: str
    option_a: str | None = None
    option_b: str | None = None
    final_image: str
    additional_price: float
    stock: int = 0


class SpecialProductCreate(BaseModel):
    name: str
    base_product_a_id: str
    base_product_b_id: str
    final_price: float = Field(ge=0)
    cost: float | None = Field(default=None, ge=0)
    description: str = ""
    status: ProductStatus = ProductStatus.VISIBLE
    combinations: list[CombinationCreate] = []
    # Build every option pair of the two base products instead of listing them
    generate_combinations: bool = False


class SpecialProductUpdate(BaseModel):
    name: str | None = None
    final_price: float | None = Field(default=None, ge=0)
    cost: float | None = Field(default=None, ge=0)
    description: str | None = None
    status: ProductStatus | None = None
    combinations: list[CombinationCreate] | None = None


class SpecialProductOut(BaseModel):
    id: str
    name: str
    slug: str
    base_product_a_id: str
    base_product_b_id: str
    final_price: float
    cost: float | None = None
    description: str
    status: str
    combinations: list[CombinationOut] = []
    stock: int = 0
    created_at: datetime
    updated_at: datetime


def special_product_out(special) -> SpecialProductOut:
    a, b = special.base_product_a, special.base_product_b
    return SpecialProductOut(
        id=special.id,
        name=special.name,
        slug=special.slug,
        base_product_a_id=special.base_product_a_id,
        base_product_b_id=special.base_product_b_id,
        final_price=special.final_price,
        cost=special.cost,
        description=special.description,
        status=special.status,
        combinations=[
            CombinationOut(
                id=c.id,
                option_a=c.option_a,
                option_b=c.option_b,
                final_image=c.final_image,
                additional_price=c.additional_price,
                stock=stock_resolver.combination_stock(c, a, b),
            )
            for c in special.combinations
        ],
        stock=stock_resolver.special_product_stock(special),
        created_at=special.created_at,
        updated_at=special.updated_at,
    )
