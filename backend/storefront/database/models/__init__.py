"""
Database models package initialization.

Models are imported here so they are registered with the Base metadata for
relationship resolution and Alembic autogeneration.
"""

from storefront.database.base import Base, BaseModel, TimestampMixin, UUIDMixin
from storefront.database.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusHistory,
    PaymentMethod,
)
from storefront.database.models.order_sequence import OrderNumberSequence
from storefront.database.models.payment import Payment, PaymentStatus
from storefront.database.models.product import Product

__all__ = [
    "Base",
    "BaseModel",
    "TimestampMixin",
    "UUIDMixin",
    "Order",
    "OrderItem",
    "OrderStatus",
    "OrderStatusHistory",
    "OrderNumberSequence",
    "Payment",
    "PaymentMethod",
    "PaymentStatus",
    "Product",
]
