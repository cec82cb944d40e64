"""
Inventory accessor over the product stock column.

Stock is the one shared resource concurrent orders contend for, so it is
only ever changed by single conditional UPDATE statements evaluated by the
database. Callers pass the session of their own atomic unit; the accessor
never commits.
"""

from typing import Any, Iterable

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.core.logging import get_logger
from storefront.database.models.product import Product

logger = get_logger(__name__)


class InventoryError(Exception):
    """Base exception for inventory operations."""

    def __init__(self, message: str, code: str, **context: Any):
        super().__init__(message)
        self.code = code
        self.context = context


class InvalidQuantityError(InventoryError):
    """Raised when a stock movement quantity is not a positive integer."""

    def __init__(self, product_id: int, quantity: Any):
        super().__init__(
            f"Invalid stock quantity {quantity!r} for product {product_id}",
            code="INVALID_QUANTITY",
            product_id=product_id,
            quantity=quantity,
        )


def _check_quantity(product_id: int, quantity: int) -> None:
    if isinstance(quantity, bool) or not isinstance(quantity, int) or quantity < 1:
        raise InvalidQuantityError(product_id, quantity)


class InventoryAccessor:
    """
    Atomic reads and conditional writes of product stock.
    """

    async def get_products(
        self,
        session: AsyncSession,
        product_ids: Iterable[int],
    ) -> dict[int, Product]:
        """
        Load products by id.

        Returns:
            Mapping of product id to product for the ids that exist
        """
        ids = sorted(set(product_ids))
        if not ids:
            return {}

        result = await session.execute(
            select(Product)
            .where(Product.id.in_(ids))
            .execution_options(populate_existing=True)
        )
        return {product.id: product for product in result.scalars().all()}

    async def get_stock(self, session: AsyncSession, product_id: int) -> int:
        """
        Read the current stock of a product, 0 if it does not exist.
        """
        result = await session.execute(
            select(Product.stock_quantity).where(Product.id == product_id)
        )
        stock = result.scalar_one_or_none()
        return stock if stock is not None else 0

    async def decrement(
        self,
        session: AsyncSession,
        product_id: int,
        quantity: int,
    ) -> bool:
        """
        Decrement stock only if at least ``quantity`` units are available.

        The precondition and the write are one statement, so two concurrent
        callers can never both take the last unit.

        Returns:
            True if the stock was decremented, False if it was insufficient
        """
        _check_quantity(product_id, quantity)

        result = await session.execute(
            update(Product)
            .where(Product.id == product_id)
            .where(Product.stock_quantity >= quantity)
            .values(stock_quantity=Product.stock_quantity - quantity)
            .execution_options(synchronize_session=False)
        )
        decremented = result.rowcount == 1

        logger.debug(
            "Stock decrement attempted",
            product_id=product_id,
            quantity=quantity,
            decremented=decremented,
        )
        return decremented

    async def increment(
        self,
        session: AsyncSession,
        product_id: int,
        quantity: int,
    ) -> bool:
        """
        Return ``quantity`` units to a product's stock.

        Returns:
            True if the product exists and was credited
        """
        _check_quantity(product_id, quantity)

        result = await session.execute(
            update(Product)
            .where(Product.id == product_id)
            .values(stock_quantity=Product.stock_quantity + quantity)
            .execution_options(synchronize_session=False)
        )
        credited = result.rowcount == 1

        if not credited:
            logger.warning(
                "Stock increment skipped for missing product",
                product_id=product_id,
                quantity=quantity,
            )
        return credited
