"""
Payment service orchestrating settlement and reconciliation with order state.

Two settlement strategies are selected by the order's payment method:

* cash on delivery: bounds check, surcharge, a PENDING payment row and the
  order confirmed immediately, all in one atomic unit;
* gateway: a remote intent is created through the gateway adapter, the
  returned reference is stored on a PENDING payment and the order waits for
  a signed callback or webhook.

Callback verification locks the order and then the payment, so duplicate or
replayed callbacks for one reference are serialized and cannot credit twice.
Gateway calls are made outside any open transaction.
"""

import asyncio
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from storefront.core.config import Settings, get_settings
from storefront.core.logging import get_logger, log_performance
from storefront.core.security import Principal
from storefront.database.base import as_utc, utc_now
from storefront.database.models.order import Order, OrderStatus, PaymentMethod
from storefront.database.models.payment import Payment, PaymentStatus
from storefront.services.orders.access import ensure_can_view
from storefront.services.orders.errors import OrderNotFoundError
from storefront.services.orders.pricing import quantize_amount, to_minor_units
from storefront.services.orders.repository import OrderRepository
from storefront.services.orders.state_machine import OrderStateMachine
from storefront.services.payments.cod import CashOnDeliveryPolicy
from storefront.services.payments.errors import (
    PaymentGatewayError,
    PaymentNotFoundError,
    PaymentStateError,
    PaymentStorageError,
    PaymentVerificationError,
)
from storefront.services.payments.gateway import (
    GatewayError,
    GatewayEvent,
    PaymentGateway,
    WebhookVerificationError,
    get_payment_gateway,
)
from storefront.services.payments.repository import PaymentRepository

logger = get_logger(__name__)

EVENT_PAYMENT_SUCCEEDED = "payment_intent.succeeded"
EVENT_PAYMENT_FAILED = "payment_intent.payment_failed"
EVENT_PAYMENT_CANCELED = "payment_intent.canceled"


@dataclass(frozen=True)
class PaymentInitiation:
    """
    Result of starting settlement for an order.

    ``client_secret`` is only set when a new gateway intent was created in
    this call; ``created`` is False when an active payment already existed.
    """

    order: Order
    payment: Payment
    client_secret: Optional[str] = None
    created: bool = True


@dataclass(frozen=True)
class PaymentSummary:
    """Payments of one method in one status."""

    method: PaymentMethod
    status: PaymentStatus
    count: int
    total_amount: Decimal
    average_amount: Decimal


@dataclass(frozen=True)
class SupportedPaymentMethod:
    """A settlement method offered at checkout."""

    method: PaymentMethod
    name: str
    description: str
    enabled: bool
    min_amount: Optional[Decimal] = None
    max_amount: Optional[Decimal] = None
    surcharge_percent: Optional[Decimal] = None
    surcharge_min: Optional[Decimal] = None
    surcharge_max: Optional[Decimal] = None


def _active_payment(order: Order) -> Optional[Payment]:
    for payment in reversed(order.payments):
        if payment.status.is_active:
            return payment
    return None


CLOSED_ORDER_STATUSES = (OrderStatus.CANCELLED, OrderStatus.REFUNDED)


def _completion_blocker(order: Order, payment: Payment) -> Optional[str]:
    """Why collected money cannot be booked against ``order``, if it cannot."""
    if order.status in CLOSED_ORDER_STATUSES:
        return f"Order is {order.status.value}"
    for other in order.payments:
        if other.id != payment.id and other.status.is_settled:
            return "Order is already settled by another payment"
    return None


class PaymentService:
    """
    Payment orchestration over orders.

    Attributes:
        session_factory: Factory used to open one atomic unit per step
        gateway: Payment gateway adapter
        state_machine: Order state machine used to confirm settled orders
        cod_policy: Cash on delivery bounds and surcharge
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        gateway: Optional[PaymentGateway] = None,
        settings: Optional[Settings] = None,
        state_machine: Optional[OrderStateMachine] = None,
        cod_policy: Optional[CashOnDeliveryPolicy] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self.gateway = gateway or get_payment_gateway()
        self.state_machine = state_machine or OrderStateMachine(session_factory)
        self.cod_policy = cod_policy or CashOnDeliveryPolicy.from_settings(self.settings)

    async def initiate_payment(
        self,
        order_id: uuid.UUID,
        requester: Optional[Principal] = None,
    ) -> PaymentInitiation:
        """
        Start settlement for a PENDING order.

        Calling again while a PENDING or COMPLETED payment exists returns that
        payment without side effects. A FAILED gateway payment may be followed
        by a new attempt.

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderAccessDeniedError: If the requester does not own the order
            PaymentStateError: If the order is no longer PENDING
            PaymentAmountError: If the total is outside cash on delivery bounds
            PaymentMethodDisabledError: If cash on delivery is switched off
            PaymentGatewayError: If the gateway call fails
            PaymentStorageError: If the database fails
        """
        try:
            async with self.session_factory.begin() as session:
                order = await self._load_order_for_settlement(session, order_id, requester)

                existing = _active_payment(order)
                if existing is not None:
                    logger.info(
                        "Payment already initiated",
                        order_id=str(order.id),
                        payment_id=str(existing.id),
                        payment_status=existing.status.value,
                    )
                    return PaymentInitiation(order=order, payment=existing, created=False)

                self._ensure_order_awaits_payment(order)

                if order.payment_method.is_offline:
                    payment = await self._settle_offline(session, order, requester)
                    return PaymentInitiation(order=order, payment=payment)

                amount = order.total_amount
                currency = order.currency
                receipt = order.order_number
                idempotency_key = f"order-{order.id}-attempt-{len(order.payments) + 1}"
        except SQLAlchemyError as e:
            logger.error(
                "Database error initiating payment",
                order_id=str(order_id),
                error=str(e),
                exc_info=True,
            )
            raise PaymentStorageError("Failed to initiate payment", order_id=str(order_id)) from e

        try:
            with log_performance(logger, "gateway_create_intent", order_id=str(order_id)):
                intent = await asyncio.to_thread(
                    self.gateway.create_intent,
                    amount,
                    currency,
                    receipt=receipt,
                    idempotency_key=idempotency_key,
                )
        except GatewayError as e:
            logger.error(
                "Gateway intent creation failed",
                order_id=str(order_id),
                error_code=e.code,
            )
            raise PaymentGatewayError(
                "Payment gateway is unavailable",
                order_id=str(order_id),
            ) from e

        try:
            async with self.session_factory.begin() as session:
                order = await self._load_order_for_settlement(session, order_id, requester)

                existing = _active_payment(order)
                if existing is not None:
                    logger.warning(
                        "Concurrent payment initiation, discarding new intent",
                        order_id=str(order.id),
                        payment_id=str(existing.id),
                        discarded_order_ref=intent.external_order_ref,
                    )
                    return PaymentInitiation(order=order, payment=existing, created=False)

                self._ensure_order_awaits_payment(order)

                payment = Payment(
                    id=uuid.uuid4(),
                    order_id=order.id,
                    method=PaymentMethod.ONLINE,
                    status=PaymentStatus.PENDING,
                    amount=order.total_amount,
                    surcharge=Decimal("0.00"),
                    total_due=order.total_amount,
                    currency=order.currency,
                    gateway_order_ref=intent.external_order_ref,
                    verification_attempts=0,
                )
                order.payments.append(payment)
                await PaymentRepository(session).add_payment(payment)
        except SQLAlchemyError as e:
            logger.error(
                "Database error recording gateway payment",
                order_id=str(order_id),
                gateway_order_ref=intent.external_order_ref,
                error=str(e),
                exc_info=True,
            )
            raise PaymentStorageError("Failed to initiate payment", order_id=str(order_id)) from e

        logger.info(
            "Gateway payment initiated",
            order_id=str(order.id),
            payment_id=str(payment.id),
            gateway_order_ref=payment.gateway_order_ref,
            amount=str(payment.amount),
            currency=payment.currency,
        )
        return PaymentInitiation(
            order=order,
            payment=payment,
            client_secret=intent.client_secret,
        )

    async def _load_order_for_settlement(
        self,
        session: AsyncSession,
        order_id: uuid.UUID,
        requester: Optional[Principal],
    ) -> Order:
        order = await OrderRepository(session).get_order_by_id(order_id, for_update=True)
        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))
        ensure_can_view(order, requester)
        return order

    @staticmethod
    def _ensure_order_awaits_payment(order: Order) -> None:
        if order.status != OrderStatus.PENDING:
            raise PaymentStateError(
                f"Order in status {order.status.value} cannot start a payment",
                order_id=str(order.id),
                order_status=order.status.value,
            )

    async def _settle_offline(
        self,
        session: AsyncSession,
        order: Order,
        requester: Optional[Principal],
    ) -> Payment:
        """Record a pending cash payment and confirm the order in the same unit."""
        quote = self.cod_policy.quote(order.total_amount, order.currency)

        payment = Payment(
            id=uuid.uuid4(),
            order_id=order.id,
            method=PaymentMethod.COD,
            status=PaymentStatus.PENDING,
            amount=quote.amount,
            surcharge=quote.surcharge,
            total_due=quote.total_due,
            currency=order.currency,
            verification_attempts=0,
        )
        order.payments.append(payment)
        await PaymentRepository(session).add_payment(payment)

        await self.state_machine.apply_transition(
            session,
            order,
            OrderStatus.CONFIRMED,
            note="Cash on delivery accepted",
            actor_id=requester.user_id if requester else None,
        )

        logger.info(
            "Offline payment initiated",
            order_id=str(order.id),
            payment_id=str(payment.id),
            surcharge=str(payment.surcharge),
            total_due=str(payment.total_due),
        )
        return payment

    async def verify_payment_callback(
        self,
        order_ref: Optional[str],
        payment_ref: Optional[str],
        signature: Optional[str],
    ) -> Order:
        """
        Verify a signed gateway callback and settle the order.

        A matching signature completes the payment and confirms the order. A
        mismatch, a missing field or an amount that no longer equals the order
        total fails the payment on its first verification attempt and leaves
        the order untouched. Replaying a valid callback for a completed
        payment returns the order unchanged.

        Returns:
            The order after verification

        Raises:
            PaymentVerificationError: If the callback could not be verified
            PaymentStateError: If the payment can no longer be completed
            PaymentGatewayError: If the gateway could not confirm the callback
            PaymentStorageError: If the database fails
        """
        try:
            verified = await asyncio.to_thread(
                self.gateway.verify_callback, order_ref, payment_ref, signature
            )
        except GatewayError as e:
            logger.error("Gateway callback check failed", error_code=e.code)
            raise PaymentGatewayError("Failed to verify payment with gateway") from e

        failure: Optional[str] = None

        try:
            async with self.session_factory.begin() as session:
                order, payment = await self._lock_gateway_payment(session, order_ref)

                if payment.status == PaymentStatus.COMPLETED:
                    if not verified:
                        logger.warning(
                            "Unverified callback for completed payment",
                            order_id=str(order.id),
                            payment_id=str(payment.id),
                        )
                        raise PaymentVerificationError(payment_id=str(payment.id))
                    logger.info(
                        "Payment callback replayed",
                        order_id=str(order.id),
                        payment_id=str(payment.id),
                    )
                    return order

                first_attempt = payment.verification_attempts == 0
                payment.verification_attempts += 1

                if not verified:
                    failure = "Signature verification failed"
                elif payment.amount != order.total_amount:
                    failure = "Payment amount does not match order total"

                if failure is not None:
                    if first_attempt and payment.status == PaymentStatus.PENDING:
                        payment.update_status(PaymentStatus.FAILED, reason=failure)
                    logger.warning(
                        "Payment verification failed",
                        order_id=str(order.id),
                        payment_id=str(payment.id),
                        attempt=payment.verification_attempts,
                        reason=failure,
                    )
                else:
                    await self._complete_payment(
                        session,
                        order,
                        payment,
                        payment_ref=payment_ref,
                        signature=signature,
                        source="callback",
                    )
        except SQLAlchemyError as e:
            logger.error(
                "Database error verifying payment",
                error=str(e),
                exc_info=True,
            )
            raise PaymentStorageError("Failed to verify payment") from e

        if failure is not None:
            raise PaymentVerificationError(payment_id=str(payment.id))

        return order

    async def _lock_gateway_payment(
        self,
        session: AsyncSession,
        gateway_order_ref: Optional[str],
    ) -> tuple[Order, Payment]:
        """
        Lock the order, then the payment, for a gateway reference.

        Raises:
            PaymentVerificationError: If the reference is unknown
        """
        if not gateway_order_ref:
            raise PaymentVerificationError()

        payments = PaymentRepository(session)
        order_id = await payments.get_order_id_for_gateway_ref(gateway_order_ref)
        if order_id is None:
            logger.warning("Callback for unknown gateway reference")
            raise PaymentVerificationError()

        order = await OrderRepository(session).get_order_by_id(order_id, for_update=True)
        payment = await payments.get_by_gateway_order_ref(gateway_order_ref, for_update=True)
        if order is None or payment is None:
            raise PaymentVerificationError()
        return order, payment

    async def _complete_payment(
        self,
        session: AsyncSession,
        order: Order,
        payment: Payment,
        payment_ref: Optional[str],
        signature: Optional[str],
        source: str,
    ) -> None:
        """
        Mark a verified payment COMPLETED and confirm a waiting order.

        Other PENDING attempts of the order are cancelled. Money arriving for
        a closed order, or for an order another payment already settled, is
        refused and left for manual reconciliation.

        Raises:
            PaymentStateError: If the payment cannot be booked
        """
        if not payment.can_transition_to(PaymentStatus.COMPLETED):
            raise PaymentStateError(
                f"Payment in status {payment.status.value} cannot be completed",
                payment_id=str(payment.id),
                payment_status=payment.status.value,
            )

        blocker = _completion_blocker(order, payment)
        if blocker is not None:
            logger.error(
                "Verified payment needs reconciliation",
                order_id=str(order.id),
                payment_id=str(payment.id),
                order_status=order.status.value,
                reason=blocker,
                source=source,
            )
            raise PaymentStateError(
                blocker,
                payment_id=str(payment.id),
                reconciliation_required=True,
            )

        payment.gateway_payment_ref = payment_ref
        payment.gateway_signature = signature
        payment.verified_at = utc_now()
        payment.update_status(PaymentStatus.COMPLETED)

        for other in order.payments:
            if other.id != payment.id and other.status == PaymentStatus.PENDING:
                other.update_status(
                    PaymentStatus.CANCELLED,
                    reason=f"Superseded by payment {payment.id}",
                )

        if order.status == OrderStatus.PENDING:
            await self.state_machine.apply_transition(
                session,
                order,
                OrderStatus.CONFIRMED,
                note=f"Payment verified via {source}",
            )

        logger.info(
            "Payment verified",
            order_id=str(order.id),
            payment_id=str(payment.id),
            source=source,
            order_status=order.status.value,
        )

    async def handle_webhook(self, payload: bytes, signature_header: str) -> dict[str, Any]:
        """
        Verify and apply a gateway webhook delivery.

        Returns:
            Processing summary: event id and type, whether it was handled and
            the outcome for the matched payment

        Raises:
            PaymentVerificationError: If the delivery could not be verified
            PaymentGatewayError: If the adapter fails
            PaymentStorageError: If the database fails
        """
        try:
            event = await asyncio.to_thread(self.gateway.parse_webhook, payload, signature_header)
        except WebhookVerificationError as e:
            logger.warning("Webhook verification failed", error_code=e.code)
            raise PaymentVerificationError(error_code=e.code) from e
        except GatewayError as e:
            logger.error("Webhook parsing failed", error_code=e.code)
            raise PaymentGatewayError("Failed to process webhook") from e

        logger.info("Webhook event verified", event_id=event.event_id, event_type=event.event_type)

        handlers = {
            EVENT_PAYMENT_SUCCEEDED: self._handle_payment_succeeded,
            EVENT_PAYMENT_FAILED: self._handle_payment_failed,
            EVENT_PAYMENT_CANCELED: self._handle_payment_canceled,
        }
        handler = handlers.get(event.event_type)
        if handler is None or not event.external_order_ref:
            logger.info(
                "Unhandled webhook event type",
                event_id=event.event_id,
                event_type=event.event_type,
            )
            return {
                "event_id": event.event_id,
                "event_type": event.event_type,
                "handled": False,
                "outcome": "ignored",
            }

        try:
            async with self.session_factory.begin() as session:
                payments = PaymentRepository(session)
                order_id = await payments.get_order_id_for_gateway_ref(event.external_order_ref)
                if order_id is None:
                    outcome, payment_id = "unknown_reference", None
                else:
                    order = await OrderRepository(session).get_order_by_id(
                        order_id, for_update=True
                    )
                    payment = await payments.get_by_gateway_order_ref(
                        event.external_order_ref, for_update=True
                    )
                    outcome = await handler(session, order, payment, event)
                    payment_id = str(payment.id)
        except SQLAlchemyError as e:
            logger.error(
                "Database error processing webhook",
                event_id=event.event_id,
                error=str(e),
                exc_info=True,
            )
            raise PaymentStorageError("Failed to process webhook", event_id=event.event_id) from e

        logger.info(
            "Webhook processed",
            event_id=event.event_id,
            event_type=event.event_type,
            payment_id=payment_id,
            outcome=outcome,
        )
        return {
            "event_id": event.event_id,
            "event_type": event.event_type,
            "handled": payment_id is not None,
            "payment_id": payment_id,
            "outcome": outcome,
        }

    async def _handle_payment_succeeded(
        self,
        session: AsyncSession,
        order: Order,
        payment: Payment,
        event: GatewayEvent,
    ) -> str:
        if payment.status == PaymentStatus.COMPLETED:
            return "already_completed"

        if not payment.can_transition_to(PaymentStatus.COMPLETED):
            logger.warning(
                "Succeeded event for payment that cannot complete",
                payment_id=str(payment.id),
                payment_status=payment.status.value,
            )
            return "ignored"

        blocker = _completion_blocker(order, payment)
        if blocker is not None:
            logger.error(
                "Succeeded event needs reconciliation",
                order_id=str(order.id),
                payment_id=str(payment.id),
                order_status=order.status.value,
                reason=blocker,
            )
            return "reconciliation_required"

        expected_minor = to_minor_units(order.total_amount, order.currency)
        if event.amount_minor is not None and event.amount_minor != expected_minor:
            if payment.status == PaymentStatus.PENDING:
                payment.update_status(
                    PaymentStatus.FAILED,
                    reason="Payment amount does not match order total",
                )
            logger.error(
                "Webhook amount mismatch",
                payment_id=str(payment.id),
                expected_minor=expected_minor,
                received_minor=event.amount_minor,
            )
            return "amount_mismatch"

        await self._complete_payment(
            session,
            order,
            payment,
            payment_ref=event.external_payment_ref,
            signature=None,
            source="webhook",
        )
        return "completed"

    async def _handle_payment_failed(
        self,
        session: AsyncSession,
        order: Order,
        payment: Payment,
        event: GatewayEvent,
    ) -> str:
        if payment.status != PaymentStatus.PENDING:
            return "ignored"
        payment.update_status(
            PaymentStatus.FAILED,
            reason=event.failure_reason or "Payment failed at gateway",
        )
        return "failed"

    async def _handle_payment_canceled(
        self,
        session: AsyncSession,
        order: Order,
        payment: Payment,
        event: GatewayEvent,
    ) -> str:
        if payment.status != PaymentStatus.PENDING:
            return "ignored"
        payment.update_status(PaymentStatus.CANCELLED, reason="Payment cancelled at gateway")
        return "cancelled"

    async def confirm_offline_payment(
        self,
        order_id: uuid.UUID,
        note: Optional[str] = None,
        actor_id: Optional[uuid.UUID] = None,
    ) -> Payment:
        """
        Record that cash was collected for a cash on delivery order.

        Confirming an already completed payment returns it unchanged.

        Raises:
            OrderNotFoundError: If the order does not exist
            PaymentNotFoundError: If the order has no payment
            PaymentStateError: If the payment is not a pending offline payment
            PaymentStorageError: If the database fails
        """
        try:
            async with self.session_factory.begin() as session:
                order = await OrderRepository(session).get_order_by_id(order_id, for_update=True)
                if order is None:
                    raise OrderNotFoundError("Order not found", order_id=str(order_id))

                payment = order.latest_payment
                if payment is None:
                    raise PaymentNotFoundError("Order has no payment", order_id=str(order_id))

                if not payment.method.is_offline:
                    raise PaymentStateError(
                        "Only cash on delivery payments can be confirmed manually",
                        payment_id=str(payment.id),
                    )

                if payment.status == PaymentStatus.COMPLETED:
                    return payment

                if payment.status != PaymentStatus.PENDING:
                    raise PaymentStateError(
                        f"Payment in status {payment.status.value} cannot be confirmed",
                        payment_id=str(payment.id),
                        payment_status=payment.status.value,
                    )

                payment.update_status(PaymentStatus.COMPLETED)
                await session.flush()
        except SQLAlchemyError as e:
            logger.error(
                "Database error confirming offline payment",
                order_id=str(order_id),
                error=str(e),
                exc_info=True,
            )
            raise PaymentStorageError(
                "Failed to confirm payment",
                order_id=str(order_id),
            ) from e

        logger.info(
            "Offline payment collected",
            order_id=str(order_id),
            payment_id=str(payment.id),
            actor_id=str(actor_id) if actor_id else None,
            note=note,
        )
        return payment

    async def get_order_payment(
        self,
        order_id: uuid.UUID,
        requester: Optional[Principal] = None,
    ) -> Payment:
        """
        The payment that settled an order, else its latest attempt.

        Raises:
            OrderNotFoundError: If the order does not exist
            OrderAccessDeniedError: If the requester does not own the order
            PaymentNotFoundError: If the order has no payment yet
        """
        try:
            async with self.session_factory.begin() as session:
                order = await OrderRepository(session).get_order_by_id(order_id)
        except SQLAlchemyError as e:
            logger.error("Database error reading payment", order_id=str(order_id), error=str(e))
            raise PaymentStorageError("Failed to read payment", order_id=str(order_id)) from e

        if order is None:
            raise OrderNotFoundError("Order not found", order_id=str(order_id))

        ensure_can_view(order, requester)

        payment = order.effective_payment
        if payment is None:
            raise PaymentNotFoundError("Order has no payment", order_id=str(order_id))
        return payment

    async def get_payment(
        self,
        payment_id: uuid.UUID,
        requester: Optional[Principal] = None,
    ) -> Payment:
        """
        Raises:
            PaymentNotFoundError: If the payment does not exist
            OrderAccessDeniedError: If the requester does not own its order
        """
        try:
            async with self.session_factory.begin() as session:
                payment = await PaymentRepository(session).get_by_id(payment_id)
                order = (
                    await OrderRepository(session).get_order_by_id(payment.order_id)
                    if payment is not None
                    else None
                )
        except SQLAlchemyError as e:
            logger.error("Database error reading payment", payment_id=str(payment_id), error=str(e))
            raise PaymentStorageError("Failed to read payment", payment_id=str(payment_id)) from e

        if payment is None or order is None:
            raise PaymentNotFoundError("Payment not found", payment_id=str(payment_id))

        ensure_can_view(order, requester)
        return payment

    async def get_payment_statistics(
        self,
        method: Optional[PaymentMethod] = None,
        created_from: Optional[datetime] = None,
        created_to: Optional[datetime] = None,
    ) -> list[PaymentSummary]:
        """Payment counts and amounts per method and status."""
        try:
            async with self.session_factory.begin() as session:
                rows = await PaymentRepository(session).summarize(
                    method=method,
                    created_from=as_utc(created_from),
                    created_to=as_utc(created_to),
                )
        except SQLAlchemyError as e:
            logger.error("Database error computing payment stats", error=str(e))
            raise PaymentStorageError("Failed to compute payment statistics") from e

        currency = self.settings.default_currency
        summaries = []
        for row_method, row_status, count, total in rows:
            total_amount = Decimal(str(total)) if total is not None else Decimal("0")
            summaries.append(
                PaymentSummary(
                    method=row_method,
                    status=row_status,
                    count=int(count),
                    total_amount=quantize_amount(total_amount, currency),
                    average_amount=quantize_amount(total_amount / count, currency),
                )
            )
        return summaries

    def get_supported_payment_methods(self) -> list[SupportedPaymentMethod]:
        """Settlement methods offered at checkout and their terms."""
        cod = self.cod_policy
        return [
            SupportedPaymentMethod(
                method=PaymentMethod.ONLINE,
                name="Online Payment",
                description="Pay securely by card or other methods enabled at the gateway",
                enabled=bool(self.settings.stripe_secret_key),
            ),
            SupportedPaymentMethod(
                method=PaymentMethod.COD,
                name="Cash on Delivery",
                description="Pay when your order is delivered",
                enabled=cod.enabled,
                min_amount=cod.min_amount,
                max_amount=cod.max_amount,
                surcharge_percent=cod.charge_percent,
                surcharge_min=cod.charge_min,
                surcharge_max=cod.charge_max,
            ),
        ]
