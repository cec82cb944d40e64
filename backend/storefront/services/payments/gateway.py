"""
Payment gateway adapter.

``PaymentGateway`` is the narrow boundary the payment service depends on:
create a remote intent for an amount, verify a checkout callback, and turn a
signed webhook delivery into a verified ``GatewayEvent``. ``StripeGateway``
implements it on the Stripe API with exponential backoff for transient
failures.

Adapter methods are blocking; the payment service runs them in a worker
thread and never inside an open database transaction.
"""

import time
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Callable, Optional, Protocol

import stripe

from storefront.core.config import get_settings
from storefront.core.logging import get_logger
from storefront.services.orders.pricing import to_minor_units
from storefront.services.payments.signature import verify_callback_signature

logger = get_logger(__name__)


class GatewayError(Exception):
    """Base exception for gateway adapter errors."""

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        retryable: bool = False,
        **context: Any,
    ):
        super().__init__(message)
        self.code = code
        self.retryable = retryable
        self.context = context


class GatewayAuthenticationError(GatewayError):
    pass


class GatewayConnectionError(GatewayError):
    pass


class GatewayRequestError(GatewayError):
    pass


class WebhookVerificationError(GatewayError):
    """Raised when a webhook payload or its signature is invalid."""

    pass


@dataclass(frozen=True)
class GatewayIntent:
    """A remote payment intent created for an order."""

    external_order_ref: str
    amount_minor: int
    currency: str
    client_secret: Optional[str] = None


@dataclass(frozen=True)
class GatewayEvent:
    """A verified webhook event reduced to what reconciliation needs."""

    event_id: str
    event_type: str
    external_order_ref: Optional[str]
    external_payment_ref: Optional[str] = None
    amount_minor: Optional[int] = None
    failure_reason: Optional[str] = None


class PaymentGateway(Protocol):
    def create_intent(
        self,
        amount: Decimal,
        currency: str,
        receipt: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayIntent:
        ...

    def verify_callback(
        self,
        order_ref: Optional[str],
        payment_ref: Optional[str],
        signature: Optional[str],
    ) -> bool:
        ...

    def parse_webhook(self, payload: bytes, signature_header: str) -> GatewayEvent:
        ...


class StripeGateway:
    """
    Stripe implementation of the payment gateway adapter.

    Rate limits, connection failures and Stripe 5xx errors are retried with
    exponential backoff; everything else fails immediately.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        callback_secret: Optional[str] = None,
        max_retries: Optional[int] = None,
        initial_backoff: Optional[float] = None,
        max_backoff: float = 32.0,
        backoff_multiplier: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the adapter.

        Args:
            api_key: Stripe secret API key (defaults to settings)
            webhook_secret: Stripe webhook signing secret (defaults to settings)
            callback_secret: Secret the checkout page signs callbacks with
                (defaults to settings)
            max_retries: Maximum attempts for retryable errors
            initial_backoff: Initial backoff delay in seconds
            max_backoff: Maximum backoff delay in seconds
            backoff_multiplier: Backoff multiplier for exponential backoff
            sleep: Blocking sleep, replaceable in tests
        """
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.stripe_secret_key
        self.webhook_secret = (
            webhook_secret if webhook_secret is not None else settings.stripe_webhook_secret
        )
        self.callback_secret = (
            callback_secret if callback_secret is not None else settings.payment_signing_secret
        )
        self.max_retries = max_retries if max_retries is not None else settings.gateway_max_retries
        self.initial_backoff = (
            initial_backoff if initial_backoff is not None else settings.gateway_retry_delay
        )
        self.max_backoff = max_backoff
        self.backoff_multiplier = backoff_multiplier
        self._sleep = sleep

    def _calculate_backoff(self, attempt: int) -> float:
        return min(
            self.initial_backoff * (self.backoff_multiplier**attempt),
            self.max_backoff,
        )

    def _translate_error(self, operation: str, error: stripe.StripeError) -> GatewayError:
        message = getattr(error, "user_message", None) or str(error)
        code = getattr(error, "code", None)

        if isinstance(error, stripe.AuthenticationError):
            return GatewayAuthenticationError(f"Authentication failed: {message}", code=code)
        if isinstance(error, (stripe.APIConnectionError, stripe.RateLimitError)):
            return GatewayConnectionError(
                f"Gateway unavailable: {message}", code=code, retryable=True
            )
        if isinstance(error, stripe.APIError):
            return GatewayError(f"Gateway error: {message}", code=code, retryable=True)
        if isinstance(error, (stripe.InvalidRequestError, stripe.IdempotencyError, stripe.CardError)):
            return GatewayRequestError(f"Invalid request: {message}", code=code)
        return GatewayError(f"Stripe error: {message}", code=code, operation=operation)

    def _execute_with_retry(self, operation: str, func: Callable[..., Any], **kwargs: Any) -> Any:
        """
        Execute a Stripe API call with exponential backoff retry logic.

        Raises:
            GatewayError: If the call fails permanently or after all retries
        """
        for attempt in range(self.max_retries):
            try:
                result = func(**kwargs)
                if attempt > 0:
                    logger.info(
                        "Gateway operation succeeded after retry",
                        operation=operation,
                        attempt=attempt,
                    )
                return result
            except stripe.StripeError as e:
                error = self._translate_error(operation, e)
                if not error.retryable or attempt == self.max_retries - 1:
                    logger.error(
                        "Gateway operation failed",
                        operation=operation,
                        attempt=attempt,
                        error_type=type(e).__name__,
                        code=error.code,
                    )
                    raise error from e

                backoff = self._calculate_backoff(attempt)
                logger.warning(
                    "Gateway operation failed, retrying",
                    operation=operation,
                    attempt=attempt,
                    backoff_seconds=backoff,
                    error_type=type(e).__name__,
                )
                self._sleep(backoff)

        raise GatewayError(f"{operation} was not attempted", code="NO_ATTEMPTS")

    def create_intent(
        self,
        amount: Decimal,
        currency: str,
        receipt: Optional[str] = None,
        idempotency_key: Optional[str] = None,
    ) -> GatewayIntent:
        """
        Create a Stripe PaymentIntent for ``amount``.

        Args:
            amount: Amount in major units
            currency: Three-letter ISO currency code
            receipt: Merchant reference stored on the intent (order number)
            idempotency_key: Idempotency key for safe retries

        Returns:
            The created intent with its id as the external order reference
        """
        amount_minor = to_minor_units(amount, currency)
        params: dict[str, Any] = {
            "api_key": self.api_key,
            "amount": amount_minor,
            "currency": currency.lower(),
            "automatic_payment_methods": {"enabled": True},
        }
        if receipt:
            params["metadata"] = {"receipt": receipt}
        if idempotency_key:
            params["idempotency_key"] = idempotency_key

        intent = self._execute_with_retry(
            "create_intent",
            stripe.PaymentIntent.create,
            **params,
        )

        logger.info(
            "Payment intent created",
            external_order_ref=intent.id,
            amount_minor=amount_minor,
            currency=currency,
        )

        return GatewayIntent(
            external_order_ref=intent.id,
            amount_minor=amount_minor,
            currency=currency.upper(),
            client_secret=getattr(intent, "client_secret", None),
        )

    def verify_callback(
        self,
        order_ref: Optional[str],
        payment_ref: Optional[str],
        signature: Optional[str],
    ) -> bool:
        """
        Verify a checkout callback against its signature and against Stripe.

        The checkout page signs ``order_ref`` (the PaymentIntent id) and
        ``payment_ref`` (its charge id) with the callback secret. A valid
        signature is not enough: the intent is retrieved and must have
        succeeded with that charge as its latest one.

        Returns:
            True only if both checks pass

        Raises:
            GatewayError: If Stripe could not be reached
        """
        if not verify_callback_signature(self.callback_secret, order_ref, payment_ref, signature):
            return False

        try:
            intent = self._execute_with_retry(
                "retrieve_intent",
                stripe.PaymentIntent.retrieve,
                id=order_ref,
                api_key=self.api_key,
            )
        except GatewayRequestError:
            logger.warning("Callback names an unknown payment intent", external_order_ref=order_ref)
            return False

        charge = getattr(intent, "latest_charge", None)
        charge_id = getattr(charge, "id", charge)
        if intent.status != "succeeded" or charge_id != payment_ref:
            logger.warning(
                "Callback does not match gateway state",
                external_order_ref=order_ref,
                intent_status=intent.status,
            )
            return False
        return True

    def parse_webhook(self, payload: bytes, signature_header: str) -> GatewayEvent:
        """
        Verify a webhook delivery and reduce it to a ``GatewayEvent``.

        Raises:
            WebhookVerificationError: If the payload or signature is invalid
        """
        if not self.webhook_secret:
            raise WebhookVerificationError(
                "Webhook secret is not configured", code="NOT_CONFIGURED"
            )

        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature_header,
                self.webhook_secret,
            )
        except ValueError as e:
            raise WebhookVerificationError("Invalid webhook payload", code="INVALID_PAYLOAD") from e
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(
                "Webhook signature verification failed",
                code="INVALID_SIGNATURE",
            ) from e

        intent = event.data.object
        last_error = getattr(intent, "last_payment_error", None)

        return GatewayEvent(
            event_id=event.id,
            event_type=event.type,
            external_order_ref=getattr(intent, "id", None),
            external_payment_ref=getattr(intent, "latest_charge", None),
            amount_minor=getattr(intent, "amount", None),
            failure_reason=getattr(last_error, "message", None) if last_error else None,
        )


def get_payment_gateway() -> StripeGateway:
    """Get the configured payment gateway adapter."""
    return StripeGateway()
