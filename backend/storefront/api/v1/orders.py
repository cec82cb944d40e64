"""
Order API endpoints.

Order creation, reads, status changes and the payment sub-resource of an
order. Identity comes from the bearer token; ownership is re-validated by
the services.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Query, status

from storefront.api.deps import (
    CurrentAdmin,
    CurrentPrincipal,
    OrderServiceDep,
    PaymentServiceDep,
)
from storefront.api.errors import SERVICE_ERRORS, to_http_exception
from storefront.core.logging import get_logger
from storefront.database.models.order import Order, OrderStatus, PaymentMethod
from storefront.schemas.orders import (
    OrderCreateRequest,
    OrderCreateResponse,
    OrderDetailResponse,
    OrderListResponse,
    OrderResponse,
    OrderStatsResponse,
    OrderStatusUpdate,
    StatusHistoryResponse,
)
from storefront.schemas.payments import PaymentConfirmRequest, PaymentResponse
from storefront.services.orders.state_machine import OrderStateMachine
from storefront.services.payments.errors import PaymentGatewayError

logger = get_logger(__name__)

router = APIRouter(prefix="/orders", tags=["orders"])


def _order_detail(order: Order, state_machine: OrderStateMachine) -> OrderDetailResponse:
    detail = OrderDetailResponse.model_validate(order)
    payment = order.effective_payment
    detail.payment = PaymentResponse.model_validate(payment) if payment else None
    detail.allowed_transitions = sorted(
        state_machine.get_allowed_transitions(order),
        key=lambda s: s.value,
    )
    return detail


@router.post(
    "",
    response_model=OrderCreateResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Create new order",
    description="Create an order with reserved stock and start its settlement",
)
async def create_order(
    request: OrderCreateRequest,
    principal: CurrentPrincipal,
    order_service: OrderServiceDep,
    payment_service: PaymentServiceDep,
) -> OrderCreateResponse:
    """
    Create an order and start settlement for it.

    If the gateway is unreachable the order is still created and returned
    without a payment; the client retries ``POST /orders/{id}/payment``.

    Raises:
        HTTPException: 422 for validation errors, 409 for insufficient stock
    """
    logger.info(
        "Creating order",
        user_id=str(principal.user_id),
        item_count=len(request.items),
    )

    try:
        order = await order_service.create_order(
            user_id=principal.user_id,
            payment_method=request.payment_method,
            items=[item.model_dump(exclude={"unit_price"}) for item in request.items],
            currency=request.currency,
            notes=request.notes,
        )
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    try:
        initiation = await payment_service.initiate_payment(order.id, requester=principal)
    except PaymentGatewayError:
        logger.warning(
            "Order created without payment, gateway unavailable",
            order_id=str(order.id),
        )
        return OrderCreateResponse(order=OrderResponse.model_validate(order))
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    return OrderCreateResponse(
        order=OrderResponse.model_validate(initiation.order),
        payment=PaymentResponse.model_validate(initiation.payment),
        client_secret=initiation.client_secret,
    )


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List user orders",
    description="Get paginated list of orders for the authenticated user",
)
async def list_orders(
    principal: CurrentPrincipal,
    order_service: OrderServiceDep,
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(20, ge=1, le=100, description="Maximum number of records to return"),
) -> OrderListResponse:
    try:
        orders, total = await order_service.list_user_orders(
            user_id=principal.user_id,
            status=status_filter,
            skip=skip,
            limit=limit,
        )
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/all",
    response_model=OrderListResponse,
    summary="List all orders",
    description="Admin listing with status, payment method and creation date filters",
)
async def list_all_orders(
    admin: CurrentAdmin,
    order_service: OrderServiceDep,
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    payment_method: Optional[PaymentMethod] = Query(None),
    date_from: Optional[datetime] = Query(None, description="Created at or after"),
    date_to: Optional[datetime] = Query(None, description="Created at or before"),
    skip: int = Query(0, ge=0, description="Number of records to skip"),
    limit: int = Query(20, ge=1, le=100, description="Maximum number of records to return"),
) -> OrderListResponse:
    try:
        orders, total = await order_service.list_all_orders(
            status=status_filter,
            payment_method=payment_method,
            created_from=date_from,
            created_to=date_to,
            skip=skip,
            limit=limit,
        )
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    return OrderListResponse(
        items=[OrderResponse.model_validate(order) for order in orders],
        total=total,
        skip=skip,
        limit=limit,
    )


@router.get(
    "/stats",
    response_model=OrderStatsResponse,
    summary="Order statistics",
)
async def get_order_stats(
    admin: CurrentAdmin,
    order_service: OrderServiceDep,
    recent_days: int = Query(30, ge=1, le=365, description="Window for recent orders"),
) -> OrderStatsResponse:
    try:
        stats = await order_service.get_order_stats(recent_days=recent_days)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    return OrderStatsResponse.model_validate(stats)


@router.get(
    "/{order_id}",
    response_model=OrderDetailResponse,
    summary="Get order details",
)
async def get_order(
    order_id: UUID,
    principal: CurrentPrincipal,
    order_service: OrderServiceDep,
) -> OrderDetailResponse:
    try:
        order = await order_service.get_order(order_id, requester=principal)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    return _order_detail(order, order_service.state_machine)


@router.post(
    "/{order_id}/status",
    response_model=OrderDetailResponse,
    summary="Change order status",
    description="Admins may apply any legal transition; customers may cancel their own orders",
)
async def update_order_status(
    order_id: UUID,
    request: OrderStatusUpdate,
    principal: CurrentPrincipal,
    order_service: OrderServiceDep,
) -> OrderDetailResponse:
    """
    Raises:
        HTTPException: 409 for an illegal transition, 403 for a forbidden one
    """
    logger.info(
        "Order status change requested",
        order_id=str(order_id),
        target_status=request.status.value,
        user_id=str(principal.user_id),
    )

    try:
        order = await order_service.transition_status(
            order_id,
            request.status,
            note=request.note,
            requester=principal,
        )
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    return _order_detail(order, order_service.state_machine)


@router.get(
    "/{order_id}/history",
    response_model=list[StatusHistoryResponse],
    summary="Get order status history",
)
async def get_order_history(
    order_id: UUID,
    principal: CurrentPrincipal,
    order_service: OrderServiceDep,
) -> list[StatusHistoryResponse]:
    try:
        history = await order_service.get_status_history(order_id, requester=principal)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    return [StatusHistoryResponse.model_validate(entry) for entry in history]


@router.post(
    "/{order_id}/payment",
    response_model=OrderCreateResponse,
    summary="Start or retry settlement",
)
async def initiate_order_payment(
    order_id: UUID,
    principal: CurrentPrincipal,
    payment_service: PaymentServiceDep,
) -> OrderCreateResponse:
    try:
        initiation = await payment_service.initiate_payment(order_id, requester=principal)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    return OrderCreateResponse(
        order=OrderResponse.model_validate(initiation.order),
        payment=PaymentResponse.model_validate(initiation.payment),
        client_secret=initiation.client_secret,
    )


@router.get(
    "/{order_id}/payment",
    response_model=PaymentResponse,
    summary="Get the settling or latest payment of an order",
)
async def get_order_payment(
    order_id: UUID,
    principal: CurrentPrincipal,
    payment_service: PaymentServiceDep,
) -> PaymentResponse:
    try:
        payment = await payment_service.get_order_payment(order_id, requester=principal)
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    return PaymentResponse.model_validate(payment)


@router.post(
    "/{order_id}/payment/confirm",
    response_model=PaymentResponse,
    summary="Confirm cash collection",
    description="Mark a pending cash on delivery payment as collected",
)
async def confirm_offline_payment(
    order_id: UUID,
    admin: CurrentAdmin,
    payment_service: PaymentServiceDep,
    request: Optional[PaymentConfirmRequest] = None,
) -> PaymentResponse:
    try:
        payment = await payment_service.confirm_offline_payment(
            order_id,
            note=request.note if request else None,
            actor_id=admin.user_id,
        )
    except SERVICE_ERRORS as e:
        raise to_http_exception(e) from e

    return PaymentResponse.model_validate(payment)
