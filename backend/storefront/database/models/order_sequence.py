"""
Per-day order number counter.

One row per calendar date. The order number generator advances
``last_value`` with a single upsert-and-increment statement, so the storage
layer hands out each value exactly once across processes.
"""

from datetime import date

from sqlalchemy import CheckConstraint, Date, Integer
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import Base


class OrderNumberSequence(Base):
    """Atomic counter scoped to one date."""

    __tablename__ = "order_number_sequences"

    sequence_date: Mapped[date] = mapped_column(Date, primary_key=True)

    last_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        CheckConstraint("last_value >= 0", name="ck_order_number_sequences_positive"),
    )
