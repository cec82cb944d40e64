"""
Payment schemas for settlement, callback verification and webhooks.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from storefront.database.models.order import OrderStatus, PaymentMethod
from storefront.database.models.payment import PaymentStatus


class PaymentResponse(BaseModel):
    """Response schema for a payment record."""

    model_config = ConfigDict(
        from_attributes=True,
        json_schema_extra={
            "examples": [
                {
                    "id": "123e4567-e89b-12d3-a456-426614174000",
                    "order_id": "123e4567-e89b-12d3-a456-426614174001",
                    "method": "cod",
                    "status": "pending",
                    "amount": "300.00",
                    "surcharge": "20.00",
                    "total_due": "320.00",
                    "currency": "INR",
                    "gateway_order_ref": None,
                    "created_at": "2024-01-07T22:34:38.719104Z",
                    "updated_at": "2024-01-07T22:34:38.719104Z",
                }
            ]
        },
    )

    id: UUID = Field(..., description="Internal payment record ID")
    order_id: UUID = Field(..., description="Settled order ID")
    method: PaymentMethod = Field(..., description="Settlement method")
    status: PaymentStatus = Field(..., description="Payment status")
    amount: Decimal = Field(..., description="Order total being settled")
    surcharge: Decimal = Field(..., description="Method surcharge")
    total_due: Decimal = Field(..., description="Amount the customer pays")
    currency: str = Field(..., description="Three-letter ISO currency code")
    gateway_order_ref: Optional[str] = Field(
        None,
        description="Gateway order or intent reference for checkout",
    )
    failure_reason: Optional[str] = None
    verified_at: Optional[datetime] = None
    confirmed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime


class PaymentCallbackRequest(BaseModel):
    """Signed callback forwarded by the storefront after gateway checkout.

    Fields are optional so a callback with missing fields is still seen,
    and rejected, by verification rather than by request parsing.
    """

    model_config = ConfigDict(str_strip_whitespace=True)

    order_ref: Optional[str] = Field(
        None,
        max_length=255,
        description="Gateway order reference",
    )
    payment_ref: Optional[str] = Field(
        None,
        max_length=255,
        description="Gateway payment reference",
    )
    signature: Optional[str] = Field(
        None,
        max_length=255,
        description="Hex HMAC-SHA256 signature",
    )


class PaymentVerificationResponse(BaseModel):
    """Order state after a verified callback."""

    order_id: UUID
    order_number: str
    order_status: OrderStatus
    payment: PaymentResponse


class PaymentConfirmRequest(BaseModel):
    """Courier or admin confirmation of cash collection."""

    note: Optional[str] = Field(None, max_length=500)


class WebhookResponse(BaseModel):
    """Webhook processing summary."""

    event_id: str
    event_type: str
    handled: bool
    payment_id: Optional[str] = None
    outcome: str


class PaymentSummaryResponse(BaseModel):
    """Payments of one method in one status."""

    model_config = ConfigDict(from_attributes=True)

    method: PaymentMethod
    status: PaymentStatus
    count: int
    total_amount: Decimal
    average_amount: Decimal


class PaymentMethodInfo(BaseModel):
    """A settlement method offered at checkout and its terms."""

    model_config = ConfigDict(from_attributes=True)

    method: PaymentMethod
    name: str
    description: str
    enabled: bool
    min_amount: Optional[Decimal] = Field(None, description="Smallest order total accepted")
    max_amount: Optional[Decimal] = Field(None, description="Largest order total accepted")
    surcharge_percent: Optional[Decimal] = None
    surcharge_min: Optional[Decimal] = None
    surcharge_max: Optional[Decimal] = None
