"""
Translation of service errors into HTTP responses.

Business-rule errors keep their structured reasons; verification, gateway
and storage failures get an opaque message so no signature, secret or
database detail reaches the client.
"""

from typing import Any, Union

from fastapi import HTTPException, status

from storefront.core.logging import get_logger
from storefront.services.orders.enums import OrderErrorKind
from storefront.services.orders.errors import (
    InsufficientStockError,
    OrderServiceError,
    OrderValidationError,
)
from storefront.services.orders.state_machine import StateTransitionError
from storefront.services.payments.errors import PaymentErrorKind, PaymentServiceError

logger = get_logger(__name__)

ServiceError = Union[OrderServiceError, StateTransitionError, PaymentServiceError]

SERVICE_ERRORS = (OrderServiceError, StateTransitionError, PaymentServiceError)

ORDER_ERROR_STATUS = {
    OrderErrorKind.VALIDATION: status.HTTP_422_UNPROCESSABLE_ENTITY,
    OrderErrorKind.INSUFFICIENT_STOCK: status.HTTP_409_CONFLICT,
    OrderErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    OrderErrorKind.ACCESS_DENIED: status.HTTP_403_FORBIDDEN,
    OrderErrorKind.ORDER_NUMBER_EXHAUSTED: status.HTTP_503_SERVICE_UNAVAILABLE,
    OrderErrorKind.STORAGE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

PAYMENT_ERROR_STATUS = {
    PaymentErrorKind.AMOUNT_OUT_OF_BOUNDS: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PaymentErrorKind.METHOD_DISABLED: status.HTTP_422_UNPROCESSABLE_ENTITY,
    PaymentErrorKind.INVALID_STATE: status.HTTP_409_CONFLICT,
    PaymentErrorKind.NOT_FOUND: status.HTTP_404_NOT_FOUND,
    PaymentErrorKind.VERIFICATION_FAILED: status.HTTP_400_BAD_REQUEST,
    PaymentErrorKind.GATEWAY: status.HTTP_502_BAD_GATEWAY,
    PaymentErrorKind.STORAGE: status.HTTP_500_INTERNAL_SERVER_ERROR,
}

# Kinds whose message and context never leave the service.
OPAQUE_KINDS = {
    OrderErrorKind.STORAGE,
    PaymentErrorKind.VERIFICATION_FAILED,
    PaymentErrorKind.GATEWAY,
    PaymentErrorKind.STORAGE,
}

OPAQUE_MESSAGES = {
    OrderErrorKind.STORAGE: "Failed to process order",
    PaymentErrorKind.VERIFICATION_FAILED: "Payment verification failed",
    PaymentErrorKind.GATEWAY: "Payment gateway is unavailable",
    PaymentErrorKind.STORAGE: "Failed to process payment",
}


def to_http_exception(error: ServiceError) -> HTTPException:
    """Build the HTTP error for a service exception."""
    if isinstance(error, StateTransitionError):
        return HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail={
                "message": error.message,
                "code": error.kind.value,
                "current_status": error.current_state.value,
                "target_status": error.target_state.value,
                **error.context,
            },
        )

    if isinstance(error, OrderServiceError):
        status_code = ORDER_ERROR_STATUS[error.kind]
    else:
        status_code = PAYMENT_ERROR_STATUS[error.kind]

    if error.kind in OPAQUE_KINDS:
        logger.error(
            "Request failed with opaque service error",
            code=error.kind.value,
            status_code=status_code,
        )
        return HTTPException(
            status_code=status_code,
            detail={"message": OPAQUE_MESSAGES[error.kind], "code": error.kind.value},
        )

    detail: dict[str, Any] = {"message": error.message, "code": error.kind.value}
    if isinstance(error, OrderValidationError):
        detail["violations"] = [v.to_dict() for v in error.violations]
    elif isinstance(error, InsufficientStockError):
        detail.update(
            product_id=error.product_id,
            requested=error.requested,
            available=error.available,
        )
    else:
        detail.update(error.context)

    return HTTPException(status_code=status_code, detail=detail)
