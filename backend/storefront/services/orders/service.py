"""
Order service: order assembly and order queries.

``create_order`` validates a request, prices it from the catalog, reserves
stock with conditional decrements, numbers the order and persists header,
items and the first history entry, all inside one atomic unit. Any failure
rolls the whole unit back, so a caller never sees stock taken without an
order or an order without its items.
"""

import re
import uuid
from collections import Counter
from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Mapping, Optional, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger, log_performance
from storefront.core.security import Principal
from storefront.database.base import as_utc, utc_now
from storefront.database.models.order import (
    Order,
    OrderItem,
    OrderStatus,
    OrderStatusHistory,
    PaymentMethod,
)
from storefront.services.inventory.accessor import InventoryAccessor
from storefront.services.orders.access import ensure_can_view
from storefront.services.orders.errors import (
    FieldViolation,
    InsufficientStockError,
    OrderNotFoundError,
    OrderServiceError,
    OrderStorageError,
    OrderValidationError,
)
from storefront.services.orders.order_number import OrderNumberGenerator
from storefront.services.orders.pricing import OrderPricer, quantize_amount
from storefront.services.orders.repository import OrderFilters, OrderRepository
from storefront.services.orders.state_machine import OrderStateMachine
from storefront.services.payments.cod import CashOnDeliveryPolicy

logger = get_logger(__name__)

CURRENCY_PATTERN = re.compile(r"^[A-Z]{3}$")
MAX_NOTES_LENGTH = 1000


@dataclass(frozen=True)
class OrderLine:
    """A validated request line."""

    product_id: int
    quantity: int


@dataclass(frozen=True)
class OrderRequest:
    """A validated order request."""

    user_id: uuid.UUID
    payment_method: PaymentMethod
    currency: str
    lines: tuple[OrderLine, ...]
    notes: Optional[str]

    @property
    def quantities(self) -> Counter:
        """Requested units per product, duplicate lines summed."""
        totals: Counter = Counter()
        for line in self.lines:
            totals[line.product_id] += line.quantity
        return totals


@dataclass(frozen=True)
class OrderStats:
    """Back-office order statistics."""

    total_orders: int
    by_status: dict[str, int]
    by_payment_method: dict[str, int]
    delivered_orders: int
    total_revenue: Decimal
    average_order_value: Decimal
    recent_orders: int
    currency: str


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value > 0


def _item_value(item: Any, name: str) -> Any:
    if isinstance(item, Mapping):
        return item.get(name)
    return getattr(item, name, None)


class OrderService:
    """
    Order assembly and order queries.

    Attributes:
        session_factory: Factory used to open one atomic unit per call
        inventory: Accessor for product reads and conditional stock writes
        state_machine: State machine for later status changes
        order_numbers: Order number generator
        pricer: Server-side pricing rules
        cod_policy: Cash on delivery bounds, checked before stock is taken
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Optional[Settings] = None,
        inventory: Optional[InventoryAccessor] = None,
        state_machine: Optional[OrderStateMachine] = None,
        order_numbers: Optional[OrderNumberGenerator] = None,
        pricer: Optional[OrderPricer] = None,
        cod_policy: Optional[CashOnDeliveryPolicy] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.inventory = inventory or InventoryAccessor()
        self.state_machine = state_machine or OrderStateMachine(
            session_factory, self.inventory
        )
        self.order_numbers = order_numbers or OrderNumberGenerator(
            prefix=self.settings.order_number_prefix,
            max_attempts=self.settings.order_number_max_attempts,
        )
        self.pricer = pricer or OrderPricer(
            tax_rate=self.settings.tax_rate,
            shipping_fee=self.settings.shipping_fee,
            free_shipping_threshold=self.settings.free_shipping_threshold,
        )
        self.cod_policy = cod_policy or CashOnDeliveryPolicy.from_settings(self.settings)

    async def create_order(
        self,
        user_id: Optional[uuid.UUID],
        payment_method: Any,
        items: Sequence[Any],
        currency: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> Order:
        """
        Create a PENDING order with reserved stock.

        Items are ``{product_id, quantity}`` mappings or objects. A
        ``unit_price`` on an item is ignored; the catalog price is used.

        Args:
            user_id: Owning user
            payment_method: ``cod`` or ``online``
            items: Requested lines
            currency: ISO 4217 code; must be the catalog currency if given
            notes: Free-text order notes

        Returns:
            The persisted order with items and its first history entry

        Raises:
            OrderValidationError: If the request is malformed or names
                unknown or inactive products
            InsufficientStockError: If a product cannot cover its quantity
            PaymentAmountError: If a cash on delivery total is out of bounds
            PaymentMethodDisabledError: If cash on delivery is switched off
            OrderNumberExhaustedError: If no unique order number was found
            OrderStorageError: If the database fails
        """
        request = self._validate_order_request(
            user_id=user_id,
            payment_method=payment_method,
            items=items,
            currency=currency,
            notes=notes,
        )

        logger.info(
            "Creating order",
            user_id=str(request.user_id),
            payment_method=request.payment_method.value,
            line_count=len(request.lines),
        )

        try:
            with log_performance(logger, "create_order", user_id=str(request.user_id)):
                async with self.session_factory.begin() as session:
                    order = await self._assemble_order(session, request)
        except OrderServiceError:
            raise
        except SQLAlchemyError as e:
            logger.error(
                "Database error creating order",
                user_id=str(request.user_id),
                error=str(e),
                exc_info=True,
            )
            raise OrderStorageError(
                "Failed to create order",
                user_id=str(request.user_id),
            ) from e

        logger.info(
            "Order created",
            order_id=str(order.id),
            order_number=order.order_number,
            total_amount=str(order.total_amount),
            currency=order.currency,
        )
        return order

    async def _assemble_order(self, session: AsyncSession, request: OrderRequest) -> Order:
        """Price, reserve and persist inside the caller's atomic unit."""
        quantities = request.quantities
        products = await self.inventory.get_products(session, quantities.keys())

        violations = []
        for index, line in enumerate(request.lines):
            product = products.get(line.product_id)
            if product is None:
                violations.append(
                    FieldViolation(
                        f"items[{index}].product_id",
                        "product_not_found",
                        f"Product {line.product_id} does not exist",
                    )
                )
            elif not product.is_active:
                violations.append(
                    FieldViolation(
                        f"items[{index}].product_id",
                        "product_unavailable",
                        f"Product {line.product_id} is not available",
                    )
                )
        if violations:
            raise OrderValidationError(violations)

        for product_id in sorted(quantities):
            available = products[product_id].stock_quantity
            if available < quantities[product_id]:
                raise InsufficientStockError(product_id, quantities[product_id], available)

        priced_lines = [
            self.pricer.price_line(
                line.product_id,
                line.quantity,
                products[line.product_id].price,
                request.currency,
            )
            for line in request.lines
        ]
        totals = self.pricer.totals(priced_lines, request.currency)
        if request.payment_method.is_offline:
            self.cod_policy.quote(totals.total_amount, request.currency)

        # Ascending product order keeps lock acquisition consistent across orders.
        for product_id in sorted(quantities):
            if not await self.inventory.decrement(session, product_id, quantities[product_id]):
                available = await self.inventory.get_stock(session, product_id)
                raise InsufficientStockError(product_id, quantities[product_id], available)

        order_number = await self.order_numbers.generate(session)
        created_at = utc_now()

        order = Order(
            id=uuid.uuid4(),
            order_number=order_number,
            user_id=request.user_id,
            status=OrderStatus.PENDING,
            currency=request.currency,
            subtotal=totals.subtotal,
            shipping_amount=totals.shipping_amount,
            tax_amount=totals.tax_amount,
            total_amount=totals.total_amount,
            payment_method=request.payment_method,
            notes=request.notes,
            stock_reserved=True,
            created_at=created_at,
            updated_at=created_at,
            items=[
                OrderItem(
                    position=position,
                    product_id=priced.product_id,
                    product_name=products[priced.product_id].name,
                    product_sku=products[priced.product_id].sku,
                    quantity=priced.quantity,
                    unit_price=priced.unit_price,
                    line_total=priced.line_total,
                )
                for position, priced in enumerate(priced_lines, start=1)
            ],
            status_history=[
                OrderStatusHistory(
                    sequence=1,
                    from_status=None,
                    to_status=OrderStatus.PENDING,
                    note="Order created",
                    actor_id=request.user_id,
                    changed_at=created_at,
                )
            ],
            payments=[],
        )

        return await OrderRepository(session).add_order(order)

    def _validate_order_request(
        self,
        user_id: Any,
        payment_method: Any,
        items: Any,
        currency: Optional[str],
        notes: Optional[str],
    ) -> OrderRequest:
        """
        Validate the request shape, collecting every violation.

        Raises:
            OrderValidationError: If any rule is violated
        """
        violations: list[FieldViolation] = []

        parsed_user_id: Optional[uuid.UUID] = None
        if user_id is None or user_id == "":
            violations.append(FieldViolation("user_id", "required", "User is required"))
        else:
            try:
                parsed_user_id = (
                    user_id if isinstance(user_id, uuid.UUID) else uuid.UUID(str(user_id))
                )
            except ValueError:
                violations.append(
                    FieldViolation("user_id", "invalid", "User identifier is not a UUID")
                )

        method: Optional[PaymentMethod] = None
        if payment_method is None or payment_method == "":
            violations.append(
                FieldViolation("payment_method", "required", "Payment method is required")
            )
        else:
            try:
                method = (
                    payment_method
                    if isinstance(payment_method, PaymentMethod)
                    else PaymentMethod.from_string(str(payment_method))
                )
            except ValueError:
                allowed = ", ".join(m.value for m in PaymentMethod)
                violations.append(
                    FieldViolation(
                        "payment_method",
                        "invalid_choice",
                        f"Payment method must be one of: {allowed}",
                    )
                )

        resolved_currency = (currency or self.settings.default_currency).upper()
        if not CURRENCY_PATTERN.match(resolved_currency):
            violations.append(
                FieldViolation("currency", "invalid", "Currency must be a 3-letter ISO code")
            )
        elif resolved_currency != self.settings.default_currency:
            # Catalog prices are denominated in the default currency only.
            violations.append(
                FieldViolation(
                    "currency",
                    "unsupported",
                    f"Orders are priced in {self.settings.default_currency}",
                )
            )

        if notes is not None and len(notes) > MAX_NOTES_LENGTH:
            violations.append(
                FieldViolation(
                    "notes",
                    "too_long",
                    f"Notes must be at most {MAX_NOTES_LENGTH} characters",
                )
            )

        lines: list[OrderLine] = []
        if not items or isinstance(items, (str, bytes, Mapping)):
            violations.append(
                FieldViolation("items", "required", "At least one item is required")
            )
        else:
            if len(items) > self.settings.max_items_per_order:
                violations.append(
                    FieldViolation(
                        "items",
                        "too_many",
                        f"At most {self.settings.max_items_per_order} items per order",
                    )
                )
            for index, item in enumerate(items):
                product_id = _item_value(item, "product_id")
                quantity = _item_value(item, "quantity")
                line_ok = True

                if not _is_positive_int(product_id):
                    violations.append(
                        FieldViolation(
                            f"items[{index}].product_id",
                            "invalid",
                            "Product identifier must be a positive integer",
                        )
                    )
                    line_ok = False

                if not _is_positive_int(quantity):
                    violations.append(
                        FieldViolation(
                            f"items[{index}].quantity",
                            "invalid",
                            "Quantity must be a positive integer",
                        )
                    )
                    line_ok = False
                elif quantity > self.settings.max_quantity_per_item:
                    violations.append(
                        FieldViolation(
                            f"items[{index}].quantity",
                            "too_large",
                            f"Quantity must be at most {self.settings.max_quantity_per_item}",
                        )
                    )
                    line_ok = False

                if line_ok:
                    lines.append(OrderLine(product_id=product_id, quantity=quantity))

        if violations:
            logger.info(
                "Order request rejected",
                violations=[v.to_dict() for v in violations],
            )
            raise OrderValidationError(violations)

        return OrderRequest(
            user_id=parsed_user_id,
            payment_method=method,
            currency=resolved_currency,
            lines=tuple(lines),
            notes=notes,
        )

    async def get_order(
        self,
        order_id: uuid.UUID,
        requester: Optional[Principal] = None,
    ) -> Order:
        """
        Get an order with items, history and payments.

        Raises:
            OrderNotFoundError: If order not found
            OrderAccessDeniedError: If the requester does not own the order
        """
        try:
            async with self.session_factory.begin() as session:
                order = await OrderRepository(session).get_order_by_id(order_id)
        except SQLAlchemyError as e:
            logger.error("Database error reading order", order_id=str(order_id), error=str(e))
            raise OrderStorageError("Failed to read order", order_id=str(order_id)) from e

        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))

        ensure_can_view(order, requester)
        return order

    async def get_order_by_number(
        self,
        order_number: str,
        requester: Optional[Principal] = None,
    ) -> Order:
        try:
            async with self.session_factory.begin() as session:
                order = await OrderRepository(session).get_order_by_number(order_number)
        except SQLAlchemyError as e:
            logger.error("Database error reading order", order_number=order_number, error=str(e))
            raise OrderStorageError("Failed to read order", order_number=order_number) from e

        if order is None:
            raise OrderNotFoundError("Order not found", order_number=order_number)

        ensure_can_view(order, requester)
        return order

    async def list_user_orders(
        self,
        user_id: uuid.UUID,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Order], int]:
        """
        List a user's orders, newest first.

        Returns:
            The page of orders and the total count for the filter
        """
        filters = OrderFilters(user_id=user_id, status=status)
        try:
            async with self.session_factory.begin() as session:
                repository = OrderRepository(session)
                orders = await repository.get_orders(filters, skip, limit)
                total = await repository.count_orders(filters)
        except SQLAlchemyError as e:
            logger.error("Database error listing orders", user_id=str(user_id), error=str(e))
            raise OrderStorageError("Failed to list orders", user_id=str(user_id)) from e

        return list(orders), total

    async def list_all_orders(
        self,
        status: Optional[OrderStatus] = None,
        payment_method: Optional[PaymentMethod] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
        skip: int = 0,
        limit: int = 20,
    ) -> tuple[list[Order], int]:
        """
        List every customer's orders for back-office use, newest first.

        Naive datetimes are taken as UTC.

        Returns:
            The page of orders and the total count for the filter
        """
        filters = OrderFilters(
            status=status,
            payment_method=payment_method,
            created_from=as_utc(created_from),
            created_to=as_utc(created_to),
        )
        try:
            async with self.session_factory.begin() as session:
                repository = OrderRepository(session)
                orders = await repository.get_orders(filters, skip, limit)
                total = await repository.count_orders(filters)
        except SQLAlchemyError as e:
            logger.error("Database error listing all orders", error=str(e))
            raise OrderStorageError("Failed to list orders") from e

        return list(orders), total

    async def get_order_stats(self, recent_days: int = 30) -> OrderStats:
        """
        Order counts per status and payment method, delivered revenue and the
        number of orders created in the last ``recent_days`` days.
        """
        since = utc_now() - timedelta(days=recent_days)
        try:
            async with self.session_factory.begin() as session:
                repository = OrderRepository(session)
                by_status = await repository.count_by_status()
                by_method = await repository.count_by_payment_method()
                delivered, revenue = await repository.sum_totals(
                    OrderFilters(status=OrderStatus.DELIVERED)
                )
                recent = await repository.count_orders(OrderFilters(created_from=since))
        except SQLAlchemyError as e:
            logger.error("Database error computing order stats", error=str(e))
            raise OrderStorageError("Failed to compute order statistics") from e

        currency = self.settings.default_currency
        average = revenue / delivered if delivered else Decimal("0")
        return OrderStats(
            total_orders=sum(by_status.values()),
            by_status={status.value: count for status, count in by_status.items()},
            by_payment_method={method.value: count for method, count in by_method.items()},
            delivered_orders=delivered,
            total_revenue=quantize_amount(revenue, currency),
            average_order_value=quantize_amount(average, currency),
            recent_orders=recent,
            currency=currency,
        )

    async def get_status_history(
        self,
        order_id: uuid.UUID,
        requester: Optional[Principal] = None,
    ) -> list[OrderStatusHistory]:
        """Status history of an order, oldest first."""
        order = await self.get_order(order_id, requester)
        return list(order.status_history)

    async def transition_status(
        self,
        order_id: uuid.UUID,
        new_status: OrderStatus,
        note: Optional[str] = None,
        requester: Optional[Principal] = None,
    ) -> Order:
        """
        Change an order's status through the state machine.

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderAccessDeniedError: If the requester may not make this change
            StateTransitionError: If the transition is not allowed
        """
        return await self.state_machine.transition(
            order_id,
            new_status,
            note=note,
            requester=requester,
        )

