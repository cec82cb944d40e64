"""
Payment service exceptions.
"""

from enum import Enum
from typing import Any


class PaymentErrorKind(str, Enum):
    """Reasons a payment operation can fail."""

    AMOUNT_OUT_OF_BOUNDS = "amount_out_of_bounds"
    METHOD_DISABLED = "payment_method_disabled"
    INVALID_STATE = "invalid_payment_state"
    NOT_FOUND = "payment_not_found"
    VERIFICATION_FAILED = "verification_failed"
    GATEWAY = "gateway_error"
    STORAGE = "storage_failure"


class PaymentServiceError(Exception):
    """Base exception for payment service errors."""

    kind: PaymentErrorKind = PaymentErrorKind.STORAGE

    def __init__(self, message: str, **context: Any):
        super().__init__(message)
        self.message = message
        self.context = context


class PaymentAmountError(PaymentServiceError):
    """Raised when an order total is outside the method's allowed range."""

    kind = PaymentErrorKind.AMOUNT_OUT_OF_BOUNDS


class PaymentMethodDisabledError(PaymentServiceError):
    kind = PaymentErrorKind.METHOD_DISABLED


class PaymentStateError(PaymentServiceError):
    """Raised when the order or payment is not in a state that allows the call."""

    kind = PaymentErrorKind.INVALID_STATE


class PaymentNotFoundError(PaymentServiceError):
    kind = PaymentErrorKind.NOT_FOUND


class PaymentVerificationError(PaymentServiceError):
    """
    Raised when a callback or webhook cannot be verified.

    The message is fixed so nothing about the expected signature, the
    stored references or the failing check reaches the caller.
    """

    kind = PaymentErrorKind.VERIFICATION_FAILED

    def __init__(self, **context: Any):
        super().__init__("Payment verification failed", **context)


class PaymentGatewayError(PaymentServiceError):
    """Raised when the payment gateway call fails."""

    kind = PaymentErrorKind.GATEWAY


class PaymentStorageError(PaymentServiceError):
    kind = PaymentErrorKind.STORAGE
