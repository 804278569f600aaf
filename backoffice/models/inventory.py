import uuid
from datetime import datetime
from enum import Enum as PyEnum

from sqlalchemy import DateTime, Index, Integer, String, Text, func, text
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.database import Base


class ChangeType(str, PyEnum):
    INCREASE = "increase"
    DECREASE = "decrease"
    ADJUSTMENT = "adjustment"
    SALE = "sale"
    RETURN = "return"
    PURCHASE = "purchase"


class AlertStatus(str, PyEnum):
    ACTIVE = "active"
    RESOLVED = "resolved"


class InventoryLog(Base):
    """Append-only record of one stock mutation."""

    __tablename__ = "inventory_logs"
    __table_args__ = (Index("ix_inventory_logs_product_created", "product_id", "created_at"),)

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    # Product whose stock cell changed (always a base product)
    product_id: Mapped[str] = mapped_column(String, nullable=False)
    # "special" when the change was made on behalf of a composite line
    product_type: Mapped[str] = mapped_column(String, nullable=False)
    special_product_id: Mapped[str | None] = mapped_column(String, nullable=True)
    variant_value: Mapped[str | None] = mapped_column(String, nullable=True)
    change_type: Mapped[str] = mapped_column(String, nullable=False, index=True)
    reason: Mapped[str] = mapped_column(String, nullable=False)
    quantity_before: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)
    quantity_change: Mapped[int] = mapped_column(Integer, nullable=False)  # applied, after clamping
    actor_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    order_id: Mapped[str | None] = mapped_column(String, nullable=True, index=True)
    invoice_id: Mapped[str | None] = mapped_column(String, nullable=True)
    notes: Mapped[str] = mapped_column(Text, default="")
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())


class StockAlert(Base):
    __tablename__ = "stock_alerts"
    __table_args__ = (
        # At most one active alert per product
        Index(
            "uq_stock_alerts_active_product",
            "product_id",
            unique=True,
            sqlite_where=text("status = 'active'"),
            postgresql_where=text("status = 'active'"),
        ),
    )

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    product_id: Mapped[str] = mapped_column(String, nullable=False, index=True)
    product_type: Mapped[str] = mapped_column(String, nullable=False)
    current_stock: Mapped[int] = mapped_column(Integer, nullable=False)
    threshold: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, default=AlertStatus.ACTIVE.value)
    notified_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, server_default=func.now(), onupdate=func.now())
