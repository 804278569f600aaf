from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from backoffice.database import Base


class SequenceCounter(Base):
    """One row per identifier scope, e.g. ``ORD-2026``."""

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
