"""
Order Pydantic schemas for API request/response validation.

Request schemas only check that the payload is well formed JSON of the right
types. Business validation (positive quantities, supported payment methods,
known products) is done by the order service so every violation is reported
together in one response.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, field_validator

from storefront.database.models.order import OrderStatus, PaymentMethod
from storefront.schemas.payments import PaymentResponse


class OrderItemRequest(BaseModel):
    """Requested order line."""

    model_config = ConfigDict(validate_assignment=True)

    product_id: int = Field(..., description="Catalog product ID")
    quantity: int = Field(..., description="Units requested")
    unit_price: Optional[Decimal] = Field(
        None,
        description="Client-side price; ignored, the catalog price is charged",
    )


class OrderCreateRequest(BaseModel):
    """Request schema for creating a new order."""

    model_config = ConfigDict(str_strip_whitespace=True, validate_assignment=True)

    items: list[OrderItemRequest] = Field(
        default_factory=list,
        description="Order items",
    )
    payment_method: str = Field(
        ...,
        max_length=50,
        description="Payment method: cod or online",
    )
    currency: Optional[str] = Field(
        None,
        max_length=3,
        description="ISO 4217 currency code",
    )
    notes: Optional[str] = Field(
        None,
        description="Order notes",
    )


class OrderStatusUpdate(BaseModel):
    """Request schema for changing order status."""

    model_config = ConfigDict(validate_assignment=True)

    status: OrderStatus = Field(..., description="New order status")
    note: Optional[str] = Field(
        None,
        max_length=500,
        description="Status change note",
    )

    @field_validator("status", mode="before")
    @classmethod
    def normalize_status(cls, v):
        if isinstance(v, str):
            return v.strip().lower()
        return v


class OrderItemResponse(BaseModel):
    """Order item response."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    position: int
    product_id: int
    product_name: str
    product_sku: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal


class StatusHistoryResponse(BaseModel):
    """One status history entry."""

    model_config = ConfigDict(from_attributes=True)

    sequence: int
    from_status: Optional[OrderStatus] = None
    to_status: OrderStatus
    note: Optional[str] = None
    actor_id: Optional[UUID] = None
    changed_at: datetime


class OrderResponse(BaseModel):
    """Complete order response schema."""

    model_config = ConfigDict(from_attributes=True)

    id: UUID
    order_number: str
    user_id: UUID
    status: OrderStatus
    currency: str
    subtotal: Decimal
    shipping_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    payment_method: PaymentMethod
    notes: Optional[str] = None
    items: list[OrderItemResponse]
    confirmed_at: Optional[datetime] = None
    cancelled_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class OrderDetailResponse(OrderResponse):
    """Order with its settling payment and the statuses it can move to."""

    payment: Optional[PaymentResponse] = None
    allowed_transitions: list[OrderStatus] = Field(default_factory=list)


class OrderCreateResponse(BaseModel):
    """Created order and the settlement started for it."""

    order: OrderResponse
    payment: Optional[PaymentResponse] = None
    client_secret: Optional[str] = None


class OrderListResponse(BaseModel):
    """Paginated order list."""

    items: list[OrderResponse]
    total: int
    skip: int
    limit: int


class OrderStatsResponse(BaseModel):
    """Order counts and delivered revenue for the admin dashboard."""

    model_config = ConfigDict(from_attributes=True)

    total_orders: int
    by_status: dict[str, int]
    by_payment_method: dict[str, int]
    delivered_orders: int
    total_revenue: Decimal = Field(..., description="Sum of delivered order totals")
    average_order_value: Decimal = Field(..., description="Mean delivered order total")
    recent_orders: int = Field(..., description="Orders created in the recent window")
    currency: str
