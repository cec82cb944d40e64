"""Order lifecycle transition rules and error kinds.

The status enums themselves live with the models; this module holds the
legal transition table used by the order state machine and the closed sets
of error kinds that order assembly and the state machine report.
"""

from enum import Enum
from typing import Dict, Set

from storefront.database.models.order import OrderStatus


class OrderErrorKind(str, Enum):
    """Reasons an order assembly or lookup call can fail."""

    VALIDATION = "validation_error"
    INSUFFICIENT_STOCK = "insufficient_stock"
    NOT_FOUND = "order_not_found"
    ACCESS_DENIED = "access_denied"
    ORDER_NUMBER_EXHAUSTED = "order_number_exhausted"
    STORAGE = "storage_failure"


class TransitionErrorKind(str, Enum):
    """Reasons a status transition is rejected."""

    INVALID_TRANSITION = "invalid_transition"
    GUARD_REJECTED = "guard_rejected"


# Legal status transitions. REFUNDED additionally requires a completed
# payment, enforced by the state machine guard.
ORDER_STATUS_TRANSITIONS: Dict[OrderStatus, Set[OrderStatus]] = {
    OrderStatus.PENDING: {
        OrderStatus.CONFIRMED,
        OrderStatus.CANCELLED,
    },
    OrderStatus.CONFIRMED: {
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.PROCESSING: {
        OrderStatus.SHIPPED,
        OrderStatus.CANCELLED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.SHIPPED: {
        OrderStatus.DELIVERED,
        OrderStatus.REFUNDED,
    },
    OrderStatus.DELIVERED: {
        OrderStatus.REFUNDED,
    },
    OrderStatus.CANCELLED: set(),  # Terminal
    OrderStatus.REFUNDED: set(),  # Terminal
}

# Statuses a customer may request on their own order.
CUSTOMER_REQUESTABLE_STATUSES: Set[OrderStatus] = {OrderStatus.CANCELLED}


def validate_order_transition(
    current_status: OrderStatus,
    new_status: OrderStatus,
) -> bool:
    """Check whether the transition table allows ``current -> new``.

    Args:
        current_status: Current order status
        new_status: Target order status

    Returns:
        True if transition is valid, False otherwise
    """
    return new_status in ORDER_STATUS_TRANSITIONS.get(current_status, set())


def get_allowed_order_transitions(current_status: OrderStatus) -> Set[OrderStatus]:
    """Get the statuses reachable from ``current_status`` in one step."""
    return set(ORDER_STATUS_TRANSITIONS.get(current_status, set()))
