"""
Ownership checks for order reads and status changes.

The caller's identity is asserted upstream; these checks re-validate it
against the order itself. ``None`` stands for an internal system caller.
"""

from typing import Optional

from storefront.core.security import Principal
from storefront.database.models.order import Order, OrderStatus
from storefront.services.orders.enums import CUSTOMER_REQUESTABLE_STATUSES
from storefront.services.orders.errors import OrderAccessDeniedError


def ensure_can_view(order: Order, requester: Optional[Principal]) -> None:
    """
    Raises:
        OrderAccessDeniedError: If a non-admin requester does not own the order
    """
    if requester is None or requester.is_admin:
        return
    if not requester.owns(order.user_id):
        raise OrderAccessDeniedError(
            "Order belongs to another user",
            order_id=str(order.id),
        )


def ensure_can_transition(
    order: Order,
    target_status: OrderStatus,
    requester: Optional[Principal],
) -> None:
    """
    Admins may request any transition; customers may only cancel their own orders.

    Raises:
        OrderAccessDeniedError: If the requester may not request the change
    """
    ensure_can_view(order, requester)
    if requester is None or requester.is_admin:
        return
    if target_status not in CUSTOMER_REQUESTABLE_STATUSES:
        raise OrderAccessDeniedError(
            f"Customers cannot move orders to {target_status.value}",
            order_id=str(order.id),
            target_status=target_status.value,
        )
