"""
Payment endpoints.

The callback and webhook endpoints require no bearer token: the gateway and
the storefront's checkout page call them, and trust comes only from
signature verification. Payment reads and statistics are authenticated.
"""

from datetime import datetime
from typing import Annotated, Optional
from uuid import UUID

from fastapi import APIRouter, Header, Query, Request, status

from storefront.api.deps import CurrentAdmin, CurrentPrincipal, PaymentServiceDep
from storefront.api.errors import SERVICE_ERRORS, to_http_exception
from storefront.core.logging import get_logger
from storefront.database.models.order import PaymentMethod
from storefront.schemas.payments import (
    PaymentCallbackRequest,
    PaymentMethodInfo,
    PaymentResponse,
    PaymentSummaryResponse,
    PaymentVerificationResponse,
    WebhookResponse,
)

logger = get_logger(__name__)

router = APIRouter(prefix="/payments", tags=["payments"])


@router.post(
    "/verify",
    response_model=PaymentVerificationResponse,
    status_code=status.HTTP_200_OK,
    summary="Verify gateway callback",
    description="Verify a signed checkout callback and confirm the order",
)
async def verify_payment(
    request: PaymentCallbackRequest,
    service: PaymentServiceDep,
) -> PaymentVerificationResponse:
    """
    Raises:
        HTTPException: 400 with an opaque message if verification fails
    """
    logger.info("Received payment callback")

    try:
        order = await service.verify_payment_callback(
            request.order_ref,
            request.payment_ref,
            request.signature,
        )
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    payment = next(
        p for p in order.payments if p.gateway_order_ref == request.order_ref
    )
    return PaymentVerificationResponse(
        order_id=order.id,
        order_number=order.order_number,
        order_status=order.status,
        payment=PaymentResponse.model_validate(payment),
    )


@router.post(
    "/webhook",
    response_model=WebhookResponse,
    status_code=status.HTTP_200_OK,
    summary="Handle gateway webhook",
    description="Process signed gateway webhook events",
)
async def handle_webhook(
    request: Request,
    service: PaymentServiceDep,
    stripe_signature: Annotated[Optional[str], Header(alias="stripe-signature")] = None,
) -> WebhookResponse:
    """
    Raises:
        HTTPException: 400 for an invalid signature, 500 for processing errors
    """
    logger.info("Received gateway webhook")

    payload = await request.body()
    try:
        result = await service.handle_webhook(payload, stripe_signature or "")
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    return WebhookResponse(**result)


@router.get(
    "/methods",
    response_model=list[PaymentMethodInfo],
    summary="List payment methods",
    description="Settlement methods offered at checkout with their limits and surcharges",
)
async def list_payment_methods(service: PaymentServiceDep) -> list[PaymentMethodInfo]:
    return [
        PaymentMethodInfo.model_validate(method)
        for method in service.get_supported_payment_methods()
    ]


@router.get(
    "/stats",
    response_model=list[PaymentSummaryResponse],
    summary="Payment statistics",
    description="Payment counts and amounts per method and status",
)
async def get_payment_stats(
    admin: CurrentAdmin,
    service: PaymentServiceDep,
    method: Optional[PaymentMethod] = Query(None),
    date_from: Optional[datetime] = Query(None, description="Created at or after"),
    date_to: Optional[datetime] = Query(None, description="Created at or before"),
) -> list[PaymentSummaryResponse]:
    try:
        summaries = await service.get_payment_statistics(
            method=method,
            created_from=date_from,
            created_to=date_to,
        )
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    return [PaymentSummaryResponse.model_validate(summary) for summary in summaries]


@router.get(
    "/{payment_id}",
    response_model=PaymentResponse,
    summary="Get payment",
)
async def get_payment(
    payment_id: UUID,
    principal: CurrentPrincipal,
    service: PaymentServiceDep,
) -> PaymentResponse:
    try:
        payment = await service.get_payment(payment_id, requester=principal)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    return PaymentResponse.model_validate(payment)
