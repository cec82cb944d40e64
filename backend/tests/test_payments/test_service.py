"""
Tests for PaymentService.

Covers settlement initiation for both methods, signed callback verification,
webhook reconciliation and manual confirmation of cash collection. The
gateway adapter is a mock; the database is real.
"""

import asyncio
from decimal import Decimal
from unittest.mock import ANY
from uuid import uuid4

import pytest

from storefront.core.security import Principal
from storefront.database.models.order import OrderStatus, PaymentMethod
from storefront.database.models.payment import PaymentStatus
from storefront.services.orders.errors import OrderAccessDeniedError, OrderNotFoundError
from storefront.services.payments.errors import (
    PaymentGatewayError,
    PaymentNotFoundError,
    PaymentStateError,
    PaymentVerificationError,
)
from storefront.services.payments.gateway import (
    GatewayConnectionError,
    GatewayError,
    GatewayEvent,
    WebhookVerificationError,
)
from storefront.services.payments.service import (
    EVENT_PAYMENT_CANCELED,
    EVENT_PAYMENT_FAILED,
    EVENT_PAYMENT_SUCCEEDED,
)
from storefront.services.payments.signature import compute_callback_signature


# ============================================================================
# Test Fixtures
# ============================================================================


@pytest.fixture
def place_order(order_service, user_id):
    """Create a 300.00 order (two units of product 1) for the default user."""

    async def create(payment_method: str):
        return await order_service.create_order(
            user_id=user_id,
            payment_method=payment_method,
            items=[{"product_id": 1, "quantity": 2}],
        )

    return create


@pytest.fixture
def online_payment(payment_service, place_order):
    """Create an online order and initiate its gateway payment."""

    async def create():
        order = await place_order("online")
        return await payment_service.initiate_payment(order.id)

    return create


@pytest.fixture
def sign(settings):
    """Sign callback references the way the gateway does."""

    def signer(order_ref: str, payment_ref: str) -> str:
        return compute_callback_signature(settings.payment_signing_secret, order_ref, payment_ref)

    return signer


def succeeded_event(order_ref: str, amount_minor: int = 30000, **overrides) -> GatewayEvent:
    fields = {
        "event_id": f"evt_{uuid4().hex[:12]}",
        "event_type": EVENT_PAYMENT_SUCCEEDED,
        "external_order_ref": order_ref,
        "external_payment_ref": "ch_webhook_1",
        "amount_minor": amount_minor,
    }
    fields.update(overrides)
    return GatewayEvent(**fields)


# ============================================================================
# Offline Settlement
# ============================================================================


class TestCashOnDeliveryInitiation:
    """COD: surcharge, pending payment and immediate confirmation."""

    @pytest.mark.asyncio
    async def test_cod_confirms_order_with_surcharge(
        self, payment_service, place_order, mock_gateway
    ):
        order = await place_order("cod")

        initiation = await payment_service.initiate_payment(order.id)

        payment = initiation.payment
        assert initiation.created is True
        assert initiation.client_secret is None
        assert payment.method == PaymentMethod.COD
        assert payment.status == PaymentStatus.PENDING
        assert payment.amount == Decimal("300.00")
        assert payment.surcharge == Decimal("20.00")
        assert payment.total_due == Decimal("320.00")
        assert payment.gateway_order_ref is None

        assert initiation.order.status == OrderStatus.CONFIRMED
        assert initiation.order.confirmed_at is not None
        last = initiation.order.status_history[-1]
        assert last.from_status == OrderStatus.PENDING
        assert last.to_status == OrderStatus.CONFIRMED
        assert last.note == "Cash on delivery accepted"

        mock_gateway.create_intent.assert_not_called()

    @pytest.mark.asyncio
    async def test_cod_initiation_is_idempotent(self, payment_service, place_order):
        order = await place_order("cod")

        first = await payment_service.initiate_payment(order.id)
        second = await payment_service.initiate_payment(order.id)

        assert second.created is False
        assert second.payment.id == first.payment.id
        assert len(second.order.payments) == 1
        assert len(second.order.status_history) == 2

    @pytest.mark.asyncio
    async def test_cod_payment_readable_by_owner(
        self, payment_service, place_order, user_id
    ):
        order = await place_order("cod")
        await payment_service.initiate_payment(order.id, requester=Principal(user_id=user_id))

        payment = await payment_service.get_order_payment(
            order.id, requester=Principal(user_id=user_id)
        )

        assert payment.total_due == Decimal("320.00")

        with pytest.raises(OrderAccessDeniedError):
            await payment_service.get_order_payment(
                order.id, requester=Principal(user_id=uuid4())
            )


# ============================================================================
# Gateway Settlement
# ============================================================================


class TestGatewayInitiation:
    """ONLINE: a gateway intent is stored on a pending payment."""

    @pytest.mark.asyncio
    async def test_initiate_creates_intent_and_pending_payment(
        self, payment_service, place_order, mock_gateway
    ):
        order = await place_order("online")

        initiation = await payment_service.initiate_payment(order.id)

        mock_gateway.create_intent.assert_called_once_with(
            Decimal("300.00"),
            "INR",
            receipt=order.order_number,
            idempotency_key=f"order-{order.id}-attempt-1",
        )
        payment = initiation.payment
        assert payment.method == PaymentMethod.ONLINE
        assert payment.status == PaymentStatus.PENDING
        assert payment.gateway_order_ref == "pi_test_0001"
        assert payment.surcharge == Decimal("0.00")
        assert payment.total_due == Decimal("300.00")
        assert initiation.client_secret == "pi_test_0001_secret"
        assert initiation.order.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_initiate_twice_returns_existing_payment(
        self, payment_service, place_order, mock_gateway
    ):
        order = await place_order("online")

        first = await payment_service.initiate_payment(order.id)
        second = await payment_service.initiate_payment(order.id)

        assert second.created is False
        assert second.payment.id == first.payment.id
        assert second.client_secret is None
        assert mock_gateway.create_intent.call_count == 1

    @pytest.mark.asyncio
    async def test_gateway_failure_records_nothing(
        self, payment_service, place_order, mock_gateway
    ):
        order = await place_order("online")
        mock_gateway.create_intent.side_effect = GatewayConnectionError(
            "Gateway unavailable", retryable=True
        )

        with pytest.raises(PaymentGatewayError) as exc_info:
            await payment_service.initiate_payment(order.id)

        assert exc_info.value.message == "Payment gateway is unavailable"
        with pytest.raises(PaymentNotFoundError):
            await payment_service.get_order_payment(order.id)

    @pytest.mark.asyncio
    async def test_cancelled_order_cannot_start_payment(
        self, payment_service, order_service, place_order, mock_gateway
    ):
        order = await place_order("online")
        await order_service.transition_status(order.id, OrderStatus.CANCELLED)

        with pytest.raises(PaymentStateError):
            await payment_service.initiate_payment(order.id)

        mock_gateway.create_intent.assert_not_called()

    @pytest.mark.asyncio
    async def test_unknown_order(self, payment_service):
        with pytest.raises(OrderNotFoundError):
            await payment_service.initiate_payment(uuid4())

    @pytest.mark.asyncio
    async def test_other_customer_cannot_initiate(self, payment_service, place_order):
        order = await place_order("online")

        with pytest.raises(OrderAccessDeniedError):
            await payment_service.initiate_payment(
                order.id, requester=Principal(user_id=uuid4())
            )


# ============================================================================
# Callback Verification
# ============================================================================


class TestCallbackVerification:
    """Signed callbacks complete payments exactly once."""

    @pytest.mark.asyncio
    async def test_valid_callback_confirms_order(self, payment_service, online_payment, sign):
        initiation = await online_payment()
        order_ref = initiation.payment.gateway_order_ref

        order = await payment_service.verify_payment_callback(
            order_ref, "ch_123", sign(order_ref, "ch_123")
        )

        assert order.status == OrderStatus.CONFIRMED
        payment = order.latest_payment
        assert payment.status == PaymentStatus.COMPLETED
        assert payment.gateway_payment_ref == "ch_123"
        assert payment.verified_at is not None
        assert payment.confirmed_at is not None
        assert payment.verification_attempts == 1
        assert order.status_history[-1].note == "Payment verified via callback"

    @pytest.mark.asyncio
    async def test_tampered_callback_fails_payment(
        self, payment_service, order_service, online_payment, sign
    ):
        initiation = await online_payment()
        order_ref = initiation.payment.gateway_order_ref

        with pytest.raises(PaymentVerificationError) as exc_info:
            await payment_service.verify_payment_callback(
                order_ref, "ch_123", sign(order_ref, "ch_999")
            )

        assert exc_info.value.message == "Payment verification failed"
        order = await order_service.get_order(initiation.order.id)
        assert order.status == OrderStatus.PENDING
        assert len(order.status_history) == 1
        payment = order.latest_payment
        assert payment.status == PaymentStatus.FAILED
        assert payment.failure_reason == "Signature verification failed"
        assert payment.verification_attempts == 1

    @pytest.mark.asyncio
    async def test_missing_signature_fails(self, payment_service, order_service, online_payment):
        initiation = await online_payment()

        with pytest.raises(PaymentVerificationError):
            await payment_service.verify_payment_callback(
                initiation.payment.gateway_order_ref, "ch_123", None
            )

        order = await order_service.get_order(initiation.order.id)
        assert order.latest_payment.status == PaymentStatus.FAILED

    @pytest.mark.asyncio
    async def test_new_attempt_after_failed_payment(
        self, payment_service, online_payment, mock_gateway
    ):
        initiation = await online_payment()
        order_ref = initiation.payment.gateway_order_ref
        with pytest.raises(PaymentVerificationError):
            await payment_service.verify_payment_callback(order_ref, "ch_1", "bad")

        retry = await payment_service.initiate_payment(initiation.order.id)

        assert retry.created is True
        assert retry.payment.id != initiation.payment.id
        assert retry.payment.gateway_order_ref == "pi_test_0002"
        mock_gateway.create_intent.assert_called_with(
            ANY,
            "INR",
            receipt=ANY,
            idempotency_key=f"order-{initiation.order.id}-attempt-2",
        )

    @pytest.mark.asyncio
    async def test_late_valid_callback_completes_failed_payment(
        self, payment_service, online_payment, sign
    ):
        initiation = await online_payment()
        order_ref = initiation.payment.gateway_order_ref
        with pytest.raises(PaymentVerificationError):
            await payment_service.verify_payment_callback(order_ref, "ch_1", "bad")

        order = await payment_service.verify_payment_callback(
            order_ref, "ch_1", sign(order_ref, "ch_1")
        )

        assert order.status == OrderStatus.CONFIRMED
        assert order.latest_payment.status == PaymentStatus.COMPLETED
        assert order.latest_payment.verification_attempts == 2

    @pytest.mark.asyncio
    async def test_replayed_callback_is_noop(self, payment_service, online_payment, sign):
        initiation = await online_payment()
        order_ref = initiation.payment.gateway_order_ref
        signature = sign(order_ref, "ch_123")

        await payment_service.verify_payment_callback(order_ref, "ch_123", signature)
        replayed = await payment_service.verify_payment_callback(order_ref, "ch_123", signature)

        assert replayed.status == OrderStatus.CONFIRMED
        assert len(replayed.status_history) == 2
        assert replayed.latest_payment.verification_attempts == 1

    @pytest.mark.asyncio
    async def test_tampered_callback_after_completion_changes_nothing(
        self, payment_service, order_service, online_payment, sign
    ):
        initiation = await online_payment()
        order_ref = initiation.payment.gateway_order_ref
        await payment_service.verify_payment_callback(
            order_ref, "ch_123", sign(order_ref, "ch_123")
        )

        with pytest.raises(PaymentVerificationError):
            await payment_service.verify_payment_callback(order_ref, "ch_evil", "0" * 64)

        order = await order_service.get_order(initiation.order.id)
        assert order.status == OrderStatus.CONFIRMED
        assert order.latest_payment.status == PaymentStatus.COMPLETED
        assert order.latest_payment.gateway_payment_ref == "ch_123"

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_callbacks_confirm_once(
        self, payment_service, order_service, online_payment, sign
    ):
        initiation = await online_payment()
        order_ref = initiation.payment.gateway_order_ref
        signature = sign(order_ref, "ch_123")

        results = await asyncio.gather(
            *[
                payment_service.verify_payment_callback(order_ref, "ch_123", signature)
                for _ in range(3)
            ]
        )

        assert all(order.status == OrderStatus.CONFIRMED for order in results)
        order = await order_service.get_order(initiation.order.id)
        confirmations = [h for h in order.status_history if h.to_status == OrderStatus.CONFIRMED]
        assert len(confirmations) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("order_ref", [None, "", "pi_unknown"])
    async def test_unknown_reference_rejected(self, payment_service, order_ref):
        with pytest.raises(PaymentVerificationError):
            await payment_service.verify_payment_callback(order_ref, "ch_1", "sig")

    @pytest.mark.asyncio
    async def test_callback_for_cancelled_order_payment_rejected(
        self, payment_service, order_service, online_payment, sign
    ):
        initiation = await online_payment()
        order_ref = initiation.payment.gateway_order_ref
        await order_service.transition_status(initiation.order.id, OrderStatus.CANCELLED)

        with pytest.raises(PaymentStateError):
            await payment_service.verify_payment_callback(
                order_ref, "ch_1", sign(order_ref, "ch_1")
            )

        order = await order_service.get_order(initiation.order.id)
        assert order.status == OrderStatus.CANCELLED
        assert order.latest_payment.status == PaymentStatus.CANCELLED


# ============================================================================
# Webhooks
# ============================================================================


class TestWebhooks:
    """Webhook events reconcile payments against the same state rules."""

    @pytest.mark.asyncio
    async def test_succeeded_event_completes_payment(
        self, payment_service, online_payment, mock_gateway, order_service
    ):
        initiation = await online_payment()
        event = succeeded_event(initiation.payment.gateway_order_ref)
        mock_gateway.parse_webhook.return_value = event

        result = await payment_service.handle_webhook(b"{}", "t=1,v1=abc")

        mock_gateway.parse_webhook.assert_called_once_with(b"{}", "t=1,v1=abc")
        assert result == {
            "event_id": event.event_id,
            "event_type": EVENT_PAYMENT_SUCCEEDED,
            "handled": True,
            "payment_id": str(initiation.payment.id),
            "outcome": "completed",
        }
        order = await order_service.get_order(initiation.order.id)
        assert order.status == OrderStatus.CONFIRMED
        assert order.latest_payment.gateway_payment_ref == "ch_webhook_1"
        assert order.status_history[-1].note == "Payment verified via webhook"

    @pytest.mark.asyncio
    async def test_succeeded_event_after_callback_is_noop(
        self, payment_service, online_payment, mock_gateway, sign
    ):
        initiation = await online_payment()
        order_ref = initiation.payment.gateway_order_ref
        await payment_service.verify_payment_callback(
            order_ref, "ch_123", sign(order_ref, "ch_123")
        )
        mock_gateway.parse_webhook.return_value = succeeded_event(order_ref)

        result = await payment_service.handle_webhook(b"{}", "sig")

        assert result["outcome"] == "already_completed"

    @pytest.mark.asyncio
    async def test_amount_mismatch_fails_payment(
        self, payment_service, online_payment, mock_gateway, order_service
    ):
        initiation = await online_payment()
        mock_gateway.parse_webhook.return_value = succeeded_event(
            initiation.payment.gateway_order_ref, amount_minor=100
        )

        result = await payment_service.handle_webhook(b"{}", "sig")

        assert result["outcome"] == "amount_mismatch"
        order = await order_service.get_order(initiation.order.id)
        assert order.status == OrderStatus.PENDING
        assert order.latest_payment.status == PaymentStatus.FAILED

    @pytest.mark.asyncio
    async def test_failed_event(self, payment_service, online_payment, mock_gateway, order_service):
        initiation = await online_payment()
        mock_gateway.parse_webhook.return_value = GatewayEvent(
            event_id="evt_failed",
            event_type=EVENT_PAYMENT_FAILED,
            external_order_ref=initiation.payment.gateway_order_ref,
            failure_reason="Your card was declined.",
        )

        result = await payment_service.handle_webhook(b"{}", "sig")

        assert result["outcome"] == "failed"
        order = await order_service.get_order(initiation.order.id)
        assert order.latest_payment.status == PaymentStatus.FAILED
        assert order.latest_payment.failure_reason == "Your card was declined."

    @pytest.mark.asyncio
    async def test_canceled_event(self, payment_service, online_payment, mock_gateway, order_service):
        initiation = await online_payment()
        mock_gateway.parse_webhook.return_value = GatewayEvent(
            event_id="evt_canceled",
            event_type=EVENT_PAYMENT_CANCELED,
            external_order_ref=initiation.payment.gateway_order_ref,
        )

        result = await payment_service.handle_webhook(b"{}", "sig")

        assert result["outcome"] == "cancelled"
        order = await order_service.get_order(initiation.order.id)
        assert order.latest_payment.status == PaymentStatus.CANCELLED
        assert order.status == OrderStatus.PENDING

    @pytest.mark.asyncio
    async def test_unhandled_event_type_ignored(self, payment_service, mock_gateway):
        mock_gateway.parse_webhook.return_value = GatewayEvent(
            event_id="evt_other",
            event_type="charge.refund.updated",
            external_order_ref="pi_test_0001",
        )

        result = await payment_service.handle_webhook(b"{}", "sig")

        assert result == {
            "event_id": "evt_other",
            "event_type": "charge.refund.updated",
            "handled": False,
            "outcome": "ignored",
        }

    @pytest.mark.asyncio
    async def test_unknown_reference(self, payment_service, mock_gateway):
        mock_gateway.parse_webhook.return_value = succeeded_event("pi_unknown")

        result = await payment_service.handle_webhook(b"{}", "sig")

        assert result["handled"] is False
        assert result["outcome"] == "unknown_reference"

    @pytest.mark.asyncio
    async def test_invalid_signature_raises_verification_error(
        self, payment_service, mock_gateway
    ):
        mock_gateway.parse_webhook.side_effect = WebhookVerificationError(
            "Webhook signature verification failed", code="INVALID_SIGNATURE"
        )

        with pytest.raises(PaymentVerificationError) as exc_info:
            await payment_service.handle_webhook(b"{}", "bad")

        assert exc_info.value.context["error_code"] == "INVALID_SIGNATURE"

    @pytest.mark.asyncio
    async def test_adapter_failure_raises_gateway_error(self, payment_service, mock_gateway):
        mock_gateway.parse_webhook.side_effect = GatewayError("boom", code="UNEXPECTED")

        with pytest.raises(PaymentGatewayError):
            await payment_service.handle_webhook(b"{}", "sig")


# ============================================================================
# Offline Confirmation
# ============================================================================


class TestConfirmOfflinePayment:
    """Recording cash collection for COD orders."""

    @pytest.mark.asyncio
    async def test_confirm_completes_cod_payment(self, payment_service, place_order):
        order = await place_order("cod")
        await payment_service.initiate_payment(order.id)

        payment = await payment_service.confirm_offline_payment(
            order.id, note="Collected by courier", actor_id=uuid4()
        )

        assert payment.status == PaymentStatus.COMPLETED
        assert payment.confirmed_at is not None

    @pytest.mark.asyncio
    async def test_confirm_twice_returns_same_payment(self, payment_service, place_order):
        order = await place_order("cod")
        await payment_service.initiate_payment(order.id)

        first = await payment_service.confirm_offline_payment(order.id)
        second = await payment_service.confirm_offline_payment(order.id)

        assert second.id == first.id
        assert second.status == PaymentStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_online_payment_cannot_be_confirmed_manually(
        self, payment_service, online_payment
    ):
        initiation = await online_payment()

        with pytest.raises(PaymentStateError):
            await payment_service.confirm_offline_payment(initiation.order.id)

    @pytest.mark.asyncio
    async def test_order_without_payment(self, payment_service, place_order):
        order = await place_order("cod")

        with pytest.raises(PaymentNotFoundError):
            await payment_service.confirm_offline_payment(order.id)

    @pytest.mark.asyncio
    async def test_cancelled_cod_payment_cannot_be_confirmed(
        self, payment_service, order_service, place_order
    ):
        order = await place_order("cod")
        await payment_service.initiate_payment(order.id)
        await order_service.transition_status(order.id, OrderStatus.CANCELLED)

        with pytest.raises(PaymentStateError):
            await payment_service.confirm_offline_payment(order.id)

    @pytest.mark.asyncio
    async def test_unknown_order(self, payment_service):
        with pytest.raises(OrderNotFoundError):
            await payment_service.confirm_offline_payment(uuid4())


# ============================================================================
# Late Completions
# ============================================================================


class TestLateCompletion:
    """Money verified after the order moved on is never booked silently."""

    @pytest.mark.asyncio
    async def test_gateway_outage_during_callback_changes_nothing(
        self, payment_service, order_service, online_payment, mock_gateway, sign
    ):
        initiation = await online_payment()
        order_ref = initiation.payment.gateway_order_ref
        mock_gateway.verify_callback.side_effect = GatewayConnectionError(
            "Gateway unavailable", retryable=True
        )

        with pytest.raises(PaymentGatewayError):
            await payment_service.verify_payment_callback(
                order_ref, "ch_1", sign(order_ref, "ch_1")
            )

        order = await order_service.get_order(initiation.order.id)
        assert order.status == OrderStatus.PENDING
        assert order.latest_payment.status == PaymentStatus.PENDING
        assert order.latest_payment.verification_attempts == 0

    @pytest.mark.asyncio
    async def test_gateway_rejection_fails_payment(
        self, payment_service, order_service, online_payment, mock_gateway, sign
    ):
        """A correctly signed callback the gateway does not confirm is a failure."""
        initiation = await online_payment()
        order_ref = initiation.payment.gateway_order_ref
        mock_gateway.verify_callback.side_effect = None
        mock_gateway.verify_callback.return_value = False

        with pytest.raises(PaymentVerificationError):
            await payment_service.verify_payment_callback(
                order_ref, "ch_1", sign(order_ref, "ch_1")
            )

        mock_gateway.verify_callback.assert_called_once_with(
            order_ref, "ch_1", sign(order_ref, "ch_1")
        )
        order = await order_service.get_order(initiation.order.id)
        assert order.status == OrderStatus.PENDING
        assert order.latest_payment.status == PaymentStatus.FAILED

    @pytest.mark.asyncio
    async def test_valid_callback_after_cancellation_needs_reconciliation(
        self, payment_service, order_service, online_payment, sign
    ):
        initiation = await online_payment()
        order_ref = initiation.payment.gateway_order_ref
        with pytest.raises(PaymentVerificationError):
            await payment_service.verify_payment_callback(order_ref, "ch_1", "bad")
        await order_service.transition_status(initiation.order.id, OrderStatus.CANCELLED)

        with pytest.raises(PaymentStateError) as exc_info:
            await payment_service.verify_payment_callback(
                order_ref, "ch_1", sign(order_ref, "ch_1")
            )

        assert exc_info.value.context["reconciliation_required"] is True
        order = await order_service.get_order(initiation.order.id)
        assert order.status == OrderStatus.CANCELLED
        assert order.latest_payment.status == PaymentStatus.FAILED
        assert order.latest_payment.gateway_payment_ref is None

    @pytest.mark.asyncio
    async def test_succeeded_event_after_cancellation_needs_reconciliation(
        self, payment_service, order_service, online_payment, mock_gateway
    ):
        initiation = await online_payment()
        order_ref = initiation.payment.gateway_order_ref
        with pytest.raises(PaymentVerificationError):
            await payment_service.verify_payment_callback(order_ref, "ch_1", "bad")
        await order_service.transition_status(initiation.order.id, OrderStatus.CANCELLED)
        mock_gateway.parse_webhook.return_value = succeeded_event(order_ref)

        result = await payment_service.handle_webhook(b"{}", "sig")

        assert result["outcome"] == "reconciliation_required"
        order = await order_service.get_order(initiation.order.id)
        assert order.status == OrderStatus.CANCELLED
        assert order.latest_payment.status == PaymentStatus.FAILED

    @pytest.mark.asyncio
    async def test_late_first_attempt_supersedes_pending_retry(
        self, payment_service, order_service, online_payment, sign
    ):
        initiation = await online_payment()
        first_ref = initiation.payment.gateway_order_ref
        with pytest.raises(PaymentVerificationError):
            await payment_service.verify_payment_callback(first_ref, "ch_1", "bad")
        retry = await payment_service.initiate_payment(initiation.order.id)
        second_ref = retry.payment.gateway_order_ref
        assert second_ref == "pi_test_0002"

        order = await payment_service.verify_payment_callback(
            first_ref, "ch_1", sign(first_ref, "ch_1")
        )

        assert order.status == OrderStatus.CONFIRMED
        statuses = {p.gateway_order_ref: p.status for p in order.payments}
        assert statuses == {
            first_ref: PaymentStatus.COMPLETED,
            second_ref: PaymentStatus.CANCELLED,
        }

        with pytest.raises(PaymentStateError):
            await payment_service.verify_payment_callback(
                second_ref, "ch_2", sign(second_ref, "ch_2")
            )

        order = await order_service.get_order(initiation.order.id)
        completed = [p for p in order.payments if p.status == PaymentStatus.COMPLETED]
        assert [p.gateway_order_ref for p in completed] == [first_ref]
        payment = await payment_service.get_order_payment(initiation.order.id)
        assert payment.gateway_order_ref == first_ref

    @pytest.mark.asyncio
    async def test_late_first_attempt_after_retry_settled(
        self, payment_service, order_service, online_payment, sign
    ):
        initiation = await online_payment()
        first_ref = initiation.payment.gateway_order_ref
        with pytest.raises(PaymentVerificationError):
            await payment_service.verify_payment_callback(first_ref, "ch_1", "bad")
        retry = await payment_service.initiate_payment(initiation.order.id)
        second_ref = retry.payment.gateway_order_ref
        await payment_service.verify_payment_callback(
            second_ref, "ch_2", sign(second_ref, "ch_2")
        )

        with pytest.raises(PaymentStateError) as exc_info:
            await payment_service.verify_payment_callback(
                first_ref, "ch_1", sign(first_ref, "ch_1")
            )

        assert exc_info.value.context["reconciliation_required"] is True
        order = await order_service.get_order(initiation.order.id)
        assert order.status == OrderStatus.CONFIRMED
        statuses = {p.gateway_order_ref: p.status for p in order.payments}
        assert statuses == {
            first_ref: PaymentStatus.FAILED,
            second_ref: PaymentStatus.COMPLETED,
        }
        payment = await payment_service.get_order_payment(initiation.order.id)
        assert payment.gateway_order_ref == second_ref


# ============================================================================
# Payment Queries
# ============================================================================


class TestPaymentQueries:
    """Payment reads, statistics and the offered methods."""

    @pytest.mark.asyncio
    async def test_get_payment_by_id(self, payment_service, online_payment, user_id):
        initiation = await online_payment()

        payment = await payment_service.get_payment(
            initiation.payment.id, Principal(user_id=user_id)
        )

        assert payment.id == initiation.payment.id
        assert payment.gateway_order_ref == "pi_test_0001"

    @pytest.mark.asyncio
    async def test_get_payment_denied_to_other_customer(self, payment_service, online_payment):
        initiation = await online_payment()

        with pytest.raises(OrderAccessDeniedError):
            await payment_service.get_payment(initiation.payment.id, Principal(user_id=uuid4()))

    @pytest.mark.asyncio
    async def test_get_unknown_payment(self, payment_service):
        with pytest.raises(PaymentNotFoundError):
            await payment_service.get_payment(uuid4())

    @pytest.mark.asyncio
    async def test_payment_statistics(self, payment_service, place_order, online_payment, sign):
        cod_order = await place_order("cod")
        await payment_service.initiate_payment(cod_order.id)
        initiation = await online_payment()
        order_ref = initiation.payment.gateway_order_ref
        await payment_service.verify_payment_callback(
            order_ref, "ch_1", sign(order_ref, "ch_1")
        )

        summaries = await payment_service.get_payment_statistics()

        by_key = {(s.method, s.status): s for s in summaries}
        assert set(by_key) == {
            (PaymentMethod.COD, PaymentStatus.PENDING),
            (PaymentMethod.ONLINE, PaymentStatus.COMPLETED),
        }
        online = by_key[(PaymentMethod.ONLINE, PaymentStatus.COMPLETED)]
        assert online.count == 1
        assert online.total_amount == Decimal("300.00")
        assert online.average_amount == Decimal("300.00")

        cod_only = await payment_service.get_payment_statistics(method=PaymentMethod.COD)
        assert [(s.method, s.count) for s in cod_only] == [(PaymentMethod.COD, 1)]

    @pytest.mark.asyncio
    async def test_supported_payment_methods(self, payment_service):
        methods = {m.method: m for m in payment_service.get_supported_payment_methods()}

        assert methods[PaymentMethod.ONLINE].enabled is True
        cod = methods[PaymentMethod.COD]
        assert cod.enabled is True
        assert cod.min_amount == Decimal("100.00")
        assert cod.max_amount == Decimal("50000.00")
        assert cod.surcharge_percent == Decimal("2.0")
        assert cod.surcharge_min == Decimal("20.00")
        assert cod.surcharge_max == Decimal("100.00")
