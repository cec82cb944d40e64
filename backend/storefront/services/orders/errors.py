"""
Order service exceptions.

Every error carries a closed ``kind`` so callers can branch on the reason
without parsing messages, plus structured ``context`` for logs and API
responses.
"""

from dataclasses import asdict, dataclass
from typing import Any, Optional

from storefront.services.orders.enums import OrderErrorKind


@dataclass(frozen=True)
class FieldViolation:
    """One field-level problem found while validating an order request."""

    field: str
    code: str
    message: str

    def to_dict(self) -> dict[str, str]:
        return asdict(self)


class OrderServiceError(Exception):
    """Base exception for order service errors."""

    kind: OrderErrorKind = OrderErrorKind.STORAGE

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class OrderValidationError(OrderServiceError):
    """Raised with every violation found in an order request."""

    kind = OrderErrorKind.VALIDATION

    def __init__(self, violations: list[FieldViolation], **context: Any):
        super().__init__(
            f"Order request failed validation with {len(violations)} violation(s)",
            **context,
        )
        self.violations = list(violations)


class InsufficientStockError(OrderServiceError):
    """Raised when a product cannot cover the requested quantity."""

    kind = OrderErrorKind.INSUFFICIENT_STOCK

    def __init__(self, product_id: int, requested: int, available: Optional[int] = None):
        super().__init__(
            f"Insufficient stock for product {product_id}",
            product_id=product_id,
            requested=requested,
            available=available,
        )
        self.product_id = product_id
        self.requested = requested
        self.available = available


class OrderNotFoundError(OrderServiceError):
    """Raised when an order does not exist."""

    kind = OrderErrorKind.NOT_FOUND


class OrderAccessDeniedError(OrderServiceError):
    """Raised when a caller acts on an order they do not own."""

    kind = OrderErrorKind.ACCESS_DENIED


class OrderNumberExhaustedError(OrderServiceError):
    """Raised when no unique order number could be produced."""

    kind = OrderErrorKind.ORDER_NUMBER_EXHAUSTED


class OrderStorageError(OrderServiceError):
    """Raised when the database fails and the atomic unit was rolled back."""

    kind = OrderErrorKind.STORAGE
