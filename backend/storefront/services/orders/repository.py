"""
Order data access repository.

The repository works inside the caller's session and never commits; order
assembly and the state machine own transaction boundaries. Reads that feed a
validate-then-write decision are taken ``FOR UPDATE`` so the decision is made
against the current persisted row.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Optional, Sequence

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.order import (
    Order,
    OrderStatus,
    OrderStatusHistory,
    PaymentMethod,
)

logger = get_logger(__name__)


@dataclass(frozen=True)
class OrderFilters:
    """Optional criteria for order listings; ``None`` means unfiltered."""

    user_id: Optional[uuid.UUID] = None
    status: Optional[OrderStatus] = None
    payment_method: Optional[PaymentMethod] = None
    created_from: Optional[datetime] = None
    created_to: Optional[datetime] = None

    def apply(self, stmt: Select) -> Select:
        if self.user_id is not None:
            stmt = stmt.where(Order.user_id == self.user_id)
        if self.status is not None:
            stmt = stmt.where(Order.status == self.status)
        if self.payment_method is not None:
            stmt = stmt.where(Order.payment_method == self.payment_method)
        if self.created_from is not None:
            stmt = stmt.where(Order.created_at >= self.created_from)
        if self.created_to is not None:
            stmt = stmt.where(Order.created_at <= self.created_to)
        return stmt


class OrderRepository:
    """
    Repository for order data access operations.
    """

    def __init__(self, session: AsyncSession):
        """
        Initialize order repository.

        Args:
            session: Async database session of the current atomic unit
        """
        self.session = session

    async def add_order(self, order: Order) -> Order:
        """
        Stage a new order with its items and history rows and flush it.

        Returns:
            The flushed order, primary keys assigned
        """
        self.session.add(order)
        await self.session.flush()

        logger.debug(
            "Order flushed",
            order_id=str(order.id),
            order_number=order.order_number,
            item_count=len(order.items),
        )
        return order

    async def get_order_by_id(
        self,
        order_id: uuid.UUID,
        for_update: bool = False,
    ) -> Optional[Order]:
        """
        Get order by ID with items, history and payments loaded.

        Args:
            order_id: Order identifier
            for_update: Lock the order row until the unit ends

        Returns:
            Order if found, None otherwise
        """
        stmt = (
            select(Order)
            .where(Order.id == order_id)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()

        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_order_by_number(self, order_number: str) -> Optional[Order]:
        result = await self.session.execute(
            select(Order).where(Order.order_number == order_number)
        )
        return result.scalar_one_or_none()

    async def order_number_exists(self, order_number: str) -> bool:
        result = await self.session.execute(
            select(Order.id).where(Order.order_number == order_number).limit(1)
        )
        return result.first() is not None

    async def get_orders(
        self,
        filters: OrderFilters,
        skip: int = 0,
        limit: int = 20,
    ) -> Sequence[Order]:
        """
        Get orders matching ``filters``, newest first.

        Args:
            filters: Owner, status, method and creation date filters
            skip: Number of records to skip
            limit: Maximum number of records to return

        Returns:
            Matching orders
        """
        stmt = filters.apply(select(Order))
        stmt = (
            stmt.order_by(Order.created_at.desc(), Order.order_number.desc())
            .offset(skip)
            .limit(limit)
        )

        result = await self.session.execute(stmt)
        return result.scalars().all()

    async def count_orders(self, filters: OrderFilters) -> int:
        result = await self.session.execute(filters.apply(select(func.count(Order.id))))
        return int(result.scalar_one())

    async def count_by_status(self) -> dict[OrderStatus, int]:
        result = await self.session.execute(
            select(Order.status, func.count(Order.id)).group_by(Order.status)
        )
        return {status: int(count) for status, count in result.all()}

    async def count_by_payment_method(self) -> dict[PaymentMethod, int]:
        result = await self.session.execute(
            select(Order.payment_method, func.count(Order.id)).group_by(Order.payment_method)
        )
        return {method: int(count) for method, count in result.all()}

    async def sum_totals(self, filters: OrderFilters) -> tuple[int, Decimal]:
        """Number of matching orders and the sum of their totals."""
        result = await self.session.execute(
            filters.apply(select(func.count(Order.id), func.sum(Order.total_amount)))
        )
        count, total = result.one()
        return int(count), Decimal(str(total)) if total is not None else Decimal("0")

    def append_status_history(
        self,
        order: Order,
        from_status: Optional[OrderStatus],
        to_status: OrderStatus,
        changed_at: datetime,
        note: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> OrderStatusHistory:
        """
        Append the next history entry to a loaded (and locked) order.

        The sequence is one past the last loaded entry, which is exact while
        the caller holds the order row lock.
        """
        last_sequence = order.status_history[-1].sequence if order.status_history else 0
        entry = OrderStatusHistory(
            order_id=order.id,
            sequence=last_sequence + 1,
            from_status=from_status,
            to_status=to_status,
            note=note,
            actor_id=actor_id,
            changed_at=changed_at,
        )
        order.status_history.append(entry)
        return entry
