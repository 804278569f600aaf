import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Float, ForeignKey, Integer, String, Text, UniqueConstraint, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice.database import Base


class ProductType(str, PyEnum):
    REGULAR = "regular"
    SPECIAL = "special"


class ProductStatus(str, PyEnum):
    VISIBLE = "visible"
    HIDDEN = "hidden"


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String, nullable=False)
    slug: Mapped[str] = mapped_column(String, unique=True, index=True)
    description: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class Product(Base):
    __tablename__ = "products"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String, nullable=False)
    slug: Mapped[str] = mapped_column(String, unique=True, index=True)
    category_id: Mapped[str | None] = mapped_column(String, ForeignKey("categories.id"), nullable=True)
    description: Mapped[str] = mapped_column(Text, default="")
    unit: Mapped[str] = mapped_column(String, default="piece")
    status: Mapped[str] = mapped_column(String, default=ProductStatus.VISIBLE.value)

    # Price tiers
    retail_price: Mapped[float] = mapped_column(Float, default=0.0)
    wholesale_price: Mapped[float] = mapped_column(Float, default=0.0)
    channel_price: Mapped[float] = mapped_column(Float, default=0.0)  # social / page price
    cost: Mapped[float] = mapped_column(Float, default=0.0)

    # Only meaningful while the product has no variants
    base_stock: Mapped[int] = mapped_column(Integer, default=0)

    # Label of the variant axis, e.g. "Color" or "Fabric"
    variant_name: Mapped[str] = mapped_column(String, default="")

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    category: Mapped["Category | None"] = relationship("Category")
    variants: Mapped[list["Variant"]] = relationship(
        "Variant", back_populates="product", cascade="all, delete-orphan", order_by="Variant.created_at"
    )

    def find_variant(self, value: str | None) -> "Variant | None":
        if value is None:
            return None
        for variant in self.variants:
            if variant.value == value:
                return variant
        return None


class Variant(Base):
    __tablename__ = "variants"
    __table_args__ = (UniqueConstraint("product_id", "value", name="uq_variant_product_value"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False)
    value: Mapped[str] = mapped_column(String, nullable=False)  # e.g. "Red", "Oak"
    stock: Mapped[int] = mapped_column(Integer, default=0)
    image: Mapped[str] = mapped_column(String, default="")
    additional_price: Mapped[float] = mapped_column(Float, default=0.0)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    product: Mapped["Product"] = relationship("Product", back_populates="variants")


class SpecialProduct(Base):
    """A composite sold as one piece, built from a variant of each of two base products."""

    __tablename__ = "special_products"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String, nullable=False)
    slug: Mapped[str] = mapped_column(String, unique=True, index=True)
    base_product_a_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False)
    base_product_b_id: Mapped[str] = mapped_column(String, ForeignKey("products.id"), nullable=False)
    final_price: Mapped[float] = mapped_column(Float, nullable=False)
    # None = use the configured composite cost ratio
    cost: Mapped[float | None] = mapped_column(Float, nullable=True, default=None)
    description: Mapped[str] = mapped_column(Text, default="")
    status: Mapped[str] = mapped_column(String, default=ProductStatus.VISIBLE.value)

    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    base_product_a: Mapped["Product"] = relationship("Product", foreign_keys=[base_product_a_id])
    base_product_b: Mapped["Product"] = relationship("Product", foreign_keys=[base_product_b_id])
    combinations: Mapped[list["Combination"]] = relationship(
        "Combination", back_populates="special_product", cascade="all, delete-orphan"
    )

    def find_combination(self, combination_id: str | None) -> "Combination | None":
        if not combination_id:
            return None
        for combination in self.combinations:
            if combination.id == combination_id:
                return combination
        return None


class Combination(Base):
    __tablename__ = "combinations"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    special_product_id: Mapped[str] = mapped_column(String, ForeignKey("special_products.id"), nullable=False)
    # Variant value of base product A / B; None = not pinned, use the base product's scalar stock
    option_a: Mapped[str | None] = mapped_column(String, nullable=True)
    option_b: Mapped[str | None] = mapped_column(String, nullable=True)
    final_image: Mapped[str] = mapped_column(String, default="")
    additional_price: Mapped[float] = mapped_column(Float, default=0.0)

    special_product: Mapped["SpecialProduct"] = relationship("SpecialProduct", back_populates="combinations")

    @property
    def label(self) -> str:
        return " / ".join(v for v in (self.option_a, self.option_b) if v)
