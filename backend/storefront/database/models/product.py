"""
Product model.

The catalog is owned by the catalog service; the order pipeline maps the
table only to read authoritative prices and to move stock through the
inventory accessor.
"""

from decimal import Decimal

from sqlalchemy import Boolean, CheckConstraint, Index, Integer, Numeric, String
from sqlalchemy.orm import Mapped, mapped_column

from storefront.database.base import Base, TimestampMixin


class Product(Base, TimestampMixin):
    """
    Catalog product with available stock.

    Attributes:
        id: Catalog identifier
        sku: Stock keeping unit, unique
        name: Display name
        price: Current unit price in the catalog currency
        stock_quantity: Units available for sale, never negative
        is_active: Whether the product can be ordered
    """

    __tablename__ = "products"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    sku: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="Stock keeping unit",
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    price: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        comment="Authoritative unit price",
    )

    stock_quantity: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
        comment="Units available for sale",
    )

    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        Index("ix_products_is_active", "is_active"),
        CheckConstraint("price >= 0", name="ck_products_price_non_negative"),
        CheckConstraint(
            "stock_quantity >= 0",
            name="ck_products_stock_non_negative",
        ),
    )
