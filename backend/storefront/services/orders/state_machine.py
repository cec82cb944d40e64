"""Order state machine implementation with transition validation.

This module implements the OrderStateMachine class that owns every order
status change after creation. A transition is validated against the order
row as currently persisted (locked inside the same atomic unit as the write),
appends exactly one history entry, and runs its side effects in that same
unit. Stock release on cancellation is one of those side effects, so the
status change and the stock credit commit together or not at all.
"""

import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.logging import get_logger
from storefront.core.security import Principal
from storefront.database.base import as_utc, utc_now
from storefront.database.models.order import Order, OrderStatus
from storefront.database.models.payment import PaymentStatus
from storefront.services.inventory.accessor import InventoryAccessor
from storefront.services.orders.access import ensure_can_transition
from storefront.services.orders.enums import (
    TransitionErrorKind,
    get_allowed_order_transitions,
    validate_order_transition,
)
from storefront.services.orders.errors import OrderNotFoundError, OrderStorageError
from storefront.services.orders.repository import OrderRepository

logger = get_logger(__name__)

SideEffect = Callable[[AsyncSession, Order, datetime], Awaitable[None]]


class StateTransitionError(Exception):
    """Raised when an invalid state transition is attempted."""

    def __init__(
        self,
        message: str,
        current_state: OrderStatus,
        target_state: OrderStatus,
        kind: TransitionErrorKind = TransitionErrorKind.INVALID_TRANSITION,
        **context: Any,
    ):
        super().__init__(message)
        self.message = message
        self.current_state = current_state
        self.target_state = target_state
        self.kind = kind
        self.context = context


class OrderStateMachine:
    """State machine for managing order lifecycle transitions.

    Attributes:
        session_factory: Factory used to open one atomic unit per transition
        inventory: Accessor used to release stock on cancellation
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        inventory: Optional[InventoryAccessor] = None,
    ):
        self.session_factory = session_factory
        self.inventory = inventory or InventoryAccessor()
        self._transition_guards: Dict[OrderStatus, Callable[[Order], bool]] = {
            OrderStatus.REFUNDED: self._guard_refund_eligible,
        }
        self._side_effects: Dict[OrderStatus, SideEffect] = {
            OrderStatus.CONFIRMED: self._effect_confirmed,
            OrderStatus.DELIVERED: self._effect_delivered,
            OrderStatus.CANCELLED: self._effect_cancelled,
            OrderStatus.REFUNDED: self._effect_refunded,
        }

    async def transition(
        self,
        order_id: uuid.UUID,
        new_status: OrderStatus,
        note: Optional[str] = None,
        requester: Optional[Principal] = None,
    ) -> Order:
        """Move an order to ``new_status`` in its own atomic unit.

        Requesting the status the order already has succeeds without writing
        anything, so retried requests are harmless.

        Args:
            order_id: Order to transition
            new_status: Target status
            note: Free-text reason recorded in the history entry
            requester: Caller, None for internal system callers

        Returns:
            The order after the transition

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderAccessDeniedError: If the requester may not make this change
            StateTransitionError: If the transition is not allowed
            OrderStorageError: If the database fails
        """
        try:
            async with self.session_factory.begin() as session:
                repository = OrderRepository(session)
                order = await repository.get_order_by_id(order_id, for_update=True)
                if order is None:
                    raise OrderNotFoundError(
                        "Order not found",
                        order_id=str(order_id),
                    )

                ensure_can_transition(order, new_status, requester)

                await self.apply_transition(
                    session,
                    order,
                    new_status,
                    note=note,
                    actor_id=requester.user_id if requester else None,
                )
        except SQLAlchemyError as e:
            logger.error(
                "Database error during status transition",
                order_id=str(order_id),
                target_status=new_status.value,
                error=str(e),
                exc_info=True,
            )
            raise OrderStorageError(
                "Failed to update order status",
                order_id=str(order_id),
            ) from e

        return order

    def validate_transition(self, order: Order, target_status: OrderStatus) -> None:
        """Check the transition table and any guard for the target status.

        Raises:
            StateTransitionError: If transition is invalid
        """
        current_status = order.status

        if not validate_order_transition(current_status, target_status):
            allowed = get_allowed_order_transitions(current_status)
            raise StateTransitionError(
                f"Invalid transition from {current_status.value} to "
                f"{target_status.value}",
                current_state=current_status,
                target_state=target_status,
                allowed_transitions=sorted(s.value for s in allowed),
            )

        guard = self._transition_guards.get(target_status)
        if guard is not None and not guard(order):
            raise StateTransitionError(
                f"Transition guard failed for {current_status.value} -> "
                f"{target_status.value}",
                current_state=current_status,
                target_state=target_status,
                kind=TransitionErrorKind.GUARD_REJECTED,
            )

    async def apply_transition(
        self,
        session: AsyncSession,
        order: Order,
        target_status: OrderStatus,
        note: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> bool:
        """Apply a transition to an order loaded and locked in ``session``.

        Used directly by callers that already hold an atomic unit, such as
        payment verification confirming the order it settles.

        Returns:
            True if the status changed, False for a same-status no-op
        """
        current_status = order.status

        if current_status == target_status:
            logger.info(
                "Status transition already applied",
                order_id=str(order.id),
                status=current_status.value,
            )
            return False

        try:
            self.validate_transition(order, target_status)
        except StateTransitionError as e:
            logger.warning(
                "Status transition rejected",
                order_id=str(order.id),
                transition=f"{current_status.value}->{target_status.value}",
                kind=e.kind.value,
            )
            raise

        changed_at = self._next_timestamp(order)
        order.status = target_status
        OrderRepository(session).append_status_history(
            order,
            from_status=current_status,
            to_status=target_status,
            changed_at=changed_at,
            note=note,
            actor_id=actor_id,
        )

        side_effect = self._side_effects.get(target_status)
        if side_effect is not None:
            await side_effect(session, order, changed_at)

        await session.flush()

        logger.info(
            "Status transition applied",
            order_id=str(order.id),
            order_number=order.order_number,
            transition=f"{current_status.value}->{target_status.value}",
            actor_id=str(actor_id) if actor_id else None,
        )
        return True

    def get_allowed_transitions(self, order: Order) -> Set[OrderStatus]:
        """Statuses reachable from the order's current status.

        The refund guard is applied, so REFUNDED is only listed once the
        order has a completed payment.
        """
        allowed = get_allowed_order_transitions(order.status)
        return {
            status
            for status in allowed
            if status not in self._transition_guards
            or self._transition_guards[status](order)
        }

    @staticmethod
    def _next_timestamp(order: Order) -> datetime:
        """Current time, never earlier than the order's last history entry."""
        now = utc_now()
        if order.status_history:
            last = as_utc(order.status_history[-1].changed_at)
            if last > now:
                return last
        return now

    # Transition Guards

    def _guard_refund_eligible(self, order: Order) -> bool:
        """Refunds require a payment that reached COMPLETED."""
        return any(p.status == PaymentStatus.COMPLETED for p in order.payments)

    # Side Effects

    async def _effect_confirmed(
        self, session: AsyncSession, order: Order, changed_at: datetime
    ) -> None:
        order.confirmed_at = changed_at

    async def _effect_delivered(
        self, session: AsyncSession, order: Order, changed_at: datetime
    ) -> None:
        order.delivered_at = changed_at

    async def _effect_cancelled(
        self, session: AsyncSession, order: Order, changed_at: datetime
    ) -> None:
        """Release reserved stock and abandon any pending payment."""
        order.cancelled_at = changed_at

        if order.stock_reserved:
            quantities = Counter()
            for item in order.items:
                quantities[item.product_id] += item.quantity

            for product_id in sorted(quantities):
                await self.inventory.increment(session, product_id, quantities[product_id])

            order.stock_reserved = False
            logger.info(
                "Stock released for cancelled order",
                order_id=str(order.id),
                products=len(quantities),
                units=sum(quantities.values()),
            )

        for payment in order.payments:
            if payment.status == PaymentStatus.PENDING:
                payment.update_status(PaymentStatus.CANCELLED, reason="Order cancelled")

    async def _effect_refunded(
        self, session: AsyncSession, order: Order, changed_at: datetime
    ) -> None:
        for payment in order.payments:
            if payment.status == PaymentStatus.COMPLETED:
                payment.update_status(PaymentStatus.REFUNDED)
