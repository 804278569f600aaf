import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import Boolean, DateTime, Enum, Float, ForeignKey, Integer, String, Text, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from backoffice.database import Base


class OrderStatus(str, PyEnum):
    PENDING = "pending"
    PREPARING = "preparing"
    READY = "ready"
    DELIVERED = "delivered"
    COMPLETED = "completed"
    CANCELED = "canceled"


class OrderSource(str, PyEnum):
    CATALOG = "catalog"
    POS = "pos"
    COMMERCIAL_POS = "commercial_pos"
    ADMIN = "admin"
    PAGE = "page"


class PriceTier(str, PyEnum):
    WHOLESALE = "wholesale"
    RETAIL = "retail"
    CHANNEL = "channel"


class PaymentStatus(str, PyEnum):
    UNPAID = "unpaid"
    PARTIAL = "partial"
    PAID = "paid"


class Order(Base):
    __tablename__ = "orders"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_number: Mapped[str] = mapped_column(String, unique=True, index=True)

    client_name: Mapped[str] = mapped_column(String, nullable=False)
    client_phone: Mapped[str] = mapped_column(String, default="")
    client_email: Mapped[str] = mapped_column(String, default="")
    client_address: Mapped[str] = mapped_column(String, default="")

    source: Mapped[str] = mapped_column(
        Enum(OrderSource, values_callable=lambda x: [e.value for e in x]),
        default=OrderSource.ADMIN,
    )
    price_tier: Mapped[str] = mapped_column(
        Enum(PriceTier, values_callable=lambda x: [e.value for e in x]),
        nullable=False,
    )
    status: Mapped[str] = mapped_column(
        Enum(OrderStatus, values_callable=lambda x: [e.value for e in x]),
        default=OrderStatus.PENDING,
        index=True,
    )

    # Totals
    subtotal: Mapped[float] = mapped_column(Float, default=0.0)
    discount: Mapped[float] = mapped_column(Float, default=0.0)
    tax_rate: Mapped[float] = mapped_column(Float, default=0.0)
    tax: Mapped[float] = mapped_column(Float, default=0.0)
    total: Mapped[float] = mapped_column(Float, default=0.0)
    cost: Mapped[float] = mapped_column(Float, default=0.0)
    profit: Mapped[float] = mapped_column(Float, default=0.0)

    # Payment
    payment_method: Mapped[str] = mapped_column(String, default="cash")  # cash, card, credit, mixed
    payment_status: Mapped[str] = mapped_column(String, default=PaymentStatus.UNPAID.value)

    stock_deducted: Mapped[bool] = mapped_column(Boolean, default=False)

    notes: Mapped[str] = mapped_column(Text, default="")
    created_by: Mapped[str] = mapped_column(String, default="")
    completed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    canceled_by: Mapped[str | None] = mapped_column(String, nullable=True)
    cancel_reason: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.position"
    )

    @property
    def is_terminal(self) -> bool:
        return self.status in (OrderStatus.COMPLETED, OrderStatus.CANCELED)


class OrderItem(Base):
    __tablename__ = "order_items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id: Mapped[str] = mapped_column(String, ForeignKey("orders.id"), nullable=False)
    position: Mapped[int] = mapped_column(Integer, default=0)

    product_type: Mapped[str] = mapped_column(String, nullable=False)  # regular, special
    product_id: Mapped[str] = mapped_column(String, nullable=False)
    # Snapshot at order time, does not follow catalog edits
    product_name: Mapped[str] = mapped_column(String, default="")

    # Regular product variant
    variant_value: Mapped[str | None] = mapped_column(String, nullable=True)
    variant_image: Mapped[str] = mapped_column(String, default="")

    # Special product combination
    combination_id: Mapped[str | None] = mapped_column(String, nullable=True)
    option_a: Mapped[str | None] = mapped_column(String, nullable=True)
    option_b: Mapped[str | None] = mapped_column(String, nullable=True)
    combination_image: Mapped[str] = mapped_column(String, default="")

    quantity: Mapped[int] = mapped_column(Integer, default=1)
    unit_price: Mapped[float] = mapped_column(Float, default=0.0)
    cost: Mapped[float] = mapped_column(Float, default=0.0)
    discount: Mapped[float] = mapped_column(Float, default=0.0)
    subtotal: Mapped[float] = mapped_column(Float, default=0.0)
    total: Mapped[float] = mapped_column(Float, default=0.0)

    order: Mapped["Order"] = relationship("Order", back_populates="items")


class OrderActivity(Base):
    """Immutable audit row for every order change."""

    __tablename__ = "order_activities"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id: Mapped[str] = mapped_column(String, ForeignKey("orders.id"), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String, nullable=False)  # created, updated, status_changed, canceled
    actor_id: Mapped[str] = mapped_column(String, nullable=False)
    status_before: Mapped[str | None] = mapped_column(String, nullable=True)
    status_after: Mapped[str | None] = mapped_column(String, nullable=True)
    changes: Mapped[str] = mapped_column(Text, default="{}")  # JSON
    notes: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
