"""
Payment model for order settlement.

One row per settlement attempt. An order normally has one effective payment;
a gateway payment that failed may be followed by a new attempt row. Gateway
references are stored so callbacks and webhooks can be matched back to the
row, and every status change stamps its own timestamp.
"""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING, Optional

from sqlalchemy import (
    CheckConstraint,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    Uuid,
)
from sqlalchemy import Enum as SQLEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship

from storefront.core.logging import get_logger
from storefront.database.base import BaseModel, utc_now
from storefront.database.models.order import PaymentMethod, enum_values

if TYPE_CHECKING:
    from storefront.database.models.order import Order

logger = get_logger(__name__)


class PaymentStatus(str, Enum):
    """
    Payment status enumeration.

    Attributes:
        PENDING: Awaiting cash collection or gateway confirmation
        COMPLETED: Funds confirmed
        FAILED: Verification or capture failed
        CANCELLED: Abandoned because the order was cancelled
        REFUNDED: Completed payment returned to the customer
    """

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"

    @classmethod
    def from_string(cls, value: str) -> "PaymentStatus":
        try:
            return cls(value.strip().lower())
        except (ValueError, AttributeError):
            raise ValueError(f"Invalid payment status: {value}")

    @property
    def is_terminal(self) -> bool:
        """Check if status is terminal (no further transitions)."""
        return self in (PaymentStatus.CANCELLED, PaymentStatus.REFUNDED)

    @property
    def is_active(self) -> bool:
        """Pending or completed payments block a new settlement attempt."""
        return self in (PaymentStatus.PENDING, PaymentStatus.COMPLETED)

    @property
    def is_settled(self) -> bool:
        """Money was collected, whether or not it was later returned."""
        return self in (PaymentStatus.COMPLETED, PaymentStatus.REFUNDED)


# A late, independently verified success may still complete a FAILED payment.
PAYMENT_STATUS_TRANSITIONS: dict[PaymentStatus, set[PaymentStatus]] = {
    PaymentStatus.PENDING: {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    },
    PaymentStatus.FAILED: {PaymentStatus.COMPLETED},
    PaymentStatus.COMPLETED: {PaymentStatus.REFUNDED},
    PaymentStatus.CANCELLED: set(),
    PaymentStatus.REFUNDED: set(),
}


class Payment(BaseModel):
    """
    Settlement attempt for an order.

    Attributes:
        order_id: Order being settled
        method: Settlement method copied from the order
        status: Current payment status
        amount: Order total at initiation, must equal it at verification
        surcharge: Method surcharge (cash on delivery), zero otherwise
        total_due: ``amount + surcharge``, what the customer pays
        gateway_order_ref: Gateway intent/order id, unique when present
        gateway_payment_ref: Gateway payment id received on verification
        verification_attempts: Callback verifications processed for this row
    """

    __tablename__ = "payments"

    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
    )

    method: Mapped[PaymentMethod] = mapped_column(
        SQLEnum(
            PaymentMethod,
            name="payment_method",
            values_callable=enum_values,
            create_constraint=True,
        ),
        nullable=False,
    )

    status: Mapped[PaymentStatus] = mapped_column(
        SQLEnum(
            PaymentStatus,
            name="payment_status",
            values_callable=enum_values,
            create_constraint=True,
        ),
        nullable=False,
        default=PaymentStatus.PENDING,
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    surcharge: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0.00"),
    )

    total_due: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    gateway_order_ref: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        unique=True,
        comment="Gateway order or intent identifier",
    )

    gateway_payment_ref: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Gateway payment identifier",
    )

    gateway_signature: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        comment="Verified callback signature",
    )

    verification_attempts: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        default=0,
    )

    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    verified_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    confirmed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    failed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    cancelled_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    refunded_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    order: Mapped["Order"] = relationship("Order", back_populates="payments")

    __table_args__ = (
        Index("ix_payments_order_id", "order_id"),
        Index("ix_payments_status", "status"),
        CheckConstraint("amount >= 0", name="ck_payments_amount_non_negative"),
        CheckConstraint("surcharge >= 0", name="ck_payments_surcharge_non_negative"),
    )

    def __repr__(self) -> str:
        return (
            f"<Payment(id={self.id}, order_id={self.order_id}, "
            f"status={self.status.value if self.status else None})>"
        )

    def can_transition_to(self, new_status: PaymentStatus) -> bool:
        return new_status in PAYMENT_STATUS_TRANSITIONS.get(self.status, set())

    def update_status(
        self,
        new_status: PaymentStatus,
        reason: Optional[str] = None,
    ) -> None:
        """
        Update payment status with validation and stamp the matching timestamp.

        Args:
            new_status: New status to set
            reason: Failure or cancellation reason

        Raises:
            ValueError: If status transition is invalid
        """
        old_status = self.status
        if not self.can_transition_to(new_status):
            raise ValueError(
                f"Invalid payment status transition from {old_status.value} "
                f"to {new_status.value}"
            )

        now = utc_now()
        self.status = new_status

        if new_status == PaymentStatus.COMPLETED:
            self.failure_reason = None
            self.confirmed_at = now
        elif new_status == PaymentStatus.FAILED:
            self.failure_reason = reason
            self.failed_at = now
        elif new_status == PaymentStatus.CANCELLED:
            self.failure_reason = reason
            self.cancelled_at = now
        elif new_status == PaymentStatus.REFUNDED:
            self.refunded_at = now

        logger.info(
            "Payment status updated",
            payment_id=str(self.id),
            old_status=old_status.value,
            new_status=new_status.value,
        )
