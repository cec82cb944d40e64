"""
Payment data access repository.

Works inside the caller's session and never commits. Callers that verify a
payment lock its order first and the payment second, the same order the
state machine and settlement paths use.
"""

import uuid
from datetime import datetime
from typing import Optional, Sequence

from sqlalchemy import Row, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.order import PaymentMethod
from storefront.database.models.payment import Payment

logger = get_logger(__name__)


class PaymentRepository:
    """Repository for payment records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def add_payment(self, payment: Payment) -> Payment:
        self.session.add(payment)
        await self.session.flush()

        logger.debug(
            "Payment flushed",
            payment_id=str(payment.id),
            order_id=str(payment.order_id),
            method=payment.method.value,
        )
        return payment

    async def get_by_gateway_order_ref(
        self,
        gateway_order_ref: str,
        for_update: bool = False,
    ) -> Optional[Payment]:
        """
        Find the payment created for a gateway intent.

        Args:
            gateway_order_ref: Gateway order or intent identifier
            for_update: Lock the payment row until the unit ends

        Returns:
            Payment if found, None otherwise
        """
        stmt = (
            select(Payment)
            .where(Payment.gateway_order_ref == gateway_order_ref)
            .execution_options(populate_existing=True)
        )
        if for_update:
            stmt = stmt.with_for_update()

        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_order_id_for_gateway_ref(self, gateway_order_ref: str) -> Optional[uuid.UUID]:
        """Order of a gateway reference, read without locking."""
        result = await self.session.execute(
            select(Payment.order_id).where(Payment.gateway_order_ref == gateway_order_ref)
        )
        return result.scalar_one_or_none()

    async def get_by_id(self, payment_id: uuid.UUID) -> Optional[Payment]:
        result = await self.session.execute(select(Payment).where(Payment.id == payment_id))
        return result.scalar_one_or_none()

    async def summarize(
        self,
        method: Optional[PaymentMethod] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> Sequence[Row]:
        """
        Payment counts and amounts grouped by method and status.

        Returns:
            Rows of ``(method, status, count, total_amount)``
        """
        stmt = select(
            Payment.method,
            Payment.status,
            func.count(Payment.id),
            func.sum(Payment.amount),
        )
        if method is not None:
            stmt = stmt.where(Payment.method == method)
        if created_from is not None:
            stmt = stmt.where(Payment.created_at >= created_from)
        if created_to is not None:
            stmt = stmt.where(Payment.created_at <= created_to)
        stmt = stmt.group_by(Payment.method, Payment.status).order_by(
            Payment.method, Payment.status
        )

        result = await self.session.execute(stmt)
        return result.all()
