"""
Order, order item and status history models.

An order header is created once by order assembly with its items and first
history row, and is afterwards mutated only through the order state machine
(status and fulfilment timestamps) and the payment service (payment rows).
Item prices, names and SKUs are snapshots taken at creation time and are
never rewritten.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.database.base import Base, BaseModel, UUIDMixin, utc_now

if TYPE_CHECKING:
    from storefront.database.models.payment import Payment


def enum_values(enum_cls: type[Enum]) -> list[str]:
    """Persist enum values rather than member names."""
    return [member.value for member in enum_cls]


class OrderStatus(str, Enum):
    """
    Order lifecycle status.

    Attributes:
        PENDING: Order created, awaiting payment settlement
        CONFIRMED: Payment settled or deferred to delivery
        PROCESSING: Order being prepared for shipment
        SHIPPED: Order handed to the carrier
        DELIVERED: Order received by the customer
        CANCELLED: Order cancelled, stock released
        REFUNDED: Settled payment returned to the customer
    """

    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @classmethod
    def from_string(cls, value: str) -> "OrderStatus":
        """
        Create OrderStatus from a case-insensitive string value.

        Raises:
            ValueError: If value is not a valid status
        """
        try:
            return cls(value.strip().lower())
        except (ValueError, AttributeError):
            raise ValueError(f"Invalid order status: {value}")

    @property
    def is_terminal(self) -> bool:
        """Check if status is terminal."""
        return self in (
            OrderStatus.DELIVERED,
            OrderStatus.CANCELLED,
            OrderStatus.REFUNDED,
        )


class PaymentMethod(str, Enum):
    """
    Payment method chosen at checkout.

    COD settles offline when the courier collects cash. ONLINE settles
    through the payment gateway.
    """

    COD = "cod"
    ONLINE = "online"

    @classmethod
    def from_string(cls, value: str) -> "PaymentMethod":
        try:
            return cls(value.strip().lower())
        except (ValueError, AttributeError):
            raise ValueError(f"Invalid payment method: {value}")

    @property
    def is_offline(self) -> bool:
        return self is PaymentMethod.COD


class Order(BaseModel):
    """
    Order header.

    Invariant: ``total_amount == subtotal + shipping_amount + tax_amount``
    where the subtotal is the sum of the item line totals. All amounts are
    computed server-side at creation.

    Attributes:
        order_number: Human-readable unique order number
        user_id: Owning user
        status: Current lifecycle status
        currency: ISO 4217 currency code
        payment_method: Settlement strategy selector
        stock_reserved: True while the order holds decremented stock
    """

    __tablename__ = "orders"

    order_number: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        unique=True,
        comment="Human-readable order number",
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        nullable=False,
        index=True,
        comment="Owning user identifier",
    )

    status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            values_callable=enum_values,
            create_constraint=True,
        ),
        nullable=False,
        default=OrderStatus.PENDING,
    )

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    shipping_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    tax_amount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    total_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    payment_method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(
            PaymentMethod,
            name="payment_method",
            values_callable=enum_values,
            create_constraint=True,
        ),
        nullable=False,
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    stock_reserved: Mapped[bool] = mapped_column(
        Boolean,
        nullable=False,
        default=False,
        comment="Whether item quantities are currently deducted from stock",
    )

    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    delivered_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    items: Mapped[list["OrderItem"]] = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.position",
    )

    status_history: Mapped[list["OrderStatusHistory"]] = relationship(
        "OrderStatusHistory",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderStatusHistory.sequence",
    )

    payments: Mapped[list["Payment"]] = relationship(
        "Payment",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="Payment.created_at",
    )

    __table_args__ = (
        Index("ix_orders_user_status", "user_id", "status"),
        Index("ix_orders_status_created", "status", "created_at"),
        CheckConstraint("subtotal >= 0", name="ck_orders_subtotal_non_negative"),
        CheckConstraint(
            "shipping_amount >= 0",
            name="ck_orders_shipping_non_negative",
        ),
        CheckConstraint("tax_amount >= 0", name="ck_orders_tax_non_negative"),
        CheckConstraint("total_amount >= 0", name="ck_orders_total_non_negative"),
    )

    @property
    def latest_payment(self) -> Optional["Payment"]:
        return self.payments[-1] if self.payments else None

    @property
    def effective_payment(self) -> Optional["Payment"]:
        """The payment that settled the order, else the latest attempt."""
        for payment in self.payments:
            if payment.status.is_settled:
                return payment
        return self.latest_payment

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def __repr__(self) -> str:
        return (
            f"<Order(id={self.id}, order_number={self.order_number!r}, "
            f"status={self.status.value if self.status else None})>"
        )


class OrderItem(BaseModel):
    """
    Order line with product data snapshotted at order time.

    ``product_id`` is kept by reference only; the snapshot columns stay
    valid if the catalog product is later edited or deleted.
    """

    __tablename__ = "order_items"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    position: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        comment="Line position within the order",
    )

    product_id: Mapped[int] = mapped_column(Integer, nullable=False, index=True)

    product_name: Mapped[str] = mapped_column(String(255), nullable=False)

    product_sku: Mapped[str] = mapped_column(String(64), nullable=False)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)

    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    line_total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    order: Mapped["Order"] = relationship("Order", back_populates="items")

    __table_args__ = (
        Index("ix_order_items_order_id", "order_id"),
        UniqueConstraint("order_id", "position", name="uq_order_items_position"),
        CheckConstraint("quantity >= 1", name="ck_order_items_quantity_positive"),
        CheckConstraint(
            "unit_price >= 0",
            name="ck_order_items_unit_price_non_negative",
        ),
    )


class OrderStatusHistory(Base, UUIDMixin):
    """
    Append-only audit entry for one status change.

    Entries are totally ordered per order by ``sequence``; ``changed_at`` never
    decreases along that order. Rows are never updated or deleted.
    """

    __tablename__ = "order_status_history"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    sequence: Mapped[int] = mapped_column(Integer, nullable=False)

    from_status: Mapped[Optional[OrderStatus]] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            values_callable=enum_values,
            create_constraint=True,
        ),
        nullable=True,
        comment="Status before the change, NULL for the creation entry",
    )

    to_status: Mapped[OrderStatus] = mapped_column(
        SQLEnum(
            OrderStatus,
            name="order_status",
            values_callable=enum_values,
            create_constraint=True,
        ),
        nullable=False,
    )

    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    actor_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        nullable=True,
        comment="User who requested the change, NULL for system changes",
    )

    changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=utc_now,
    )

    order: Mapped["Order"] = relationship("Order", back_populates="status_history")

    __table_args__ = (
        UniqueConstraint("order_id", "sequence", name="uq_order_status_history_sequence"),
        Index("ix_order_status_history_changed_at", "changed_at"),
    )

    def __repr__(self) -> str:
        return (
            f"<OrderStatusHistory(order_id={self.order_id}, sequence={self.sequence}, "
            f"to_status={self.to_status.value if self.to_status else None})>"
        )
