"""Order Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from src.models.cart import ShippingMethod
from src.models.order import OrderStatus, PaymentStatus, RefundMethod
from src.schemas.cart import CouponResponse
from src.schemas.common import Pagination

# Payment statuses an administrator may set directly; refund outcomes
# come from the refund action.
SettablePaymentStatus = Literal["pending", "paid", "failed"]


class AddressSchema(BaseModel):
    """Billing or shipping address."""

    model_config = ConfigDict(from_attributes=True)

    first_name: str = Field(min_length=1, max_length=100)
    last_name: str = Field(min_length=1, max_length=100)
    email: str = Field(pattern=r"^[^@\s]+@[^@\s]+\.[^@\s]+$", description="Contact email")
    phone: str | None = Field(default=None, max_length=30)
    street: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    zip_code: str = Field(min_length=1, max_length=20)
    country: str = Field(default="United States", max_length=100)


class CheckoutRequest(BaseModel):
    """Schema for placing an order via POST /orders."""

    payment_method: str = Field(min_length=1, max_length=50, description="Payment method label")
    billing_address: AddressSchema
    shipping_address: AddressSchema
    shipping_method: ShippingMethod
    notes: str | None = Field(default=None, max_length=500, description="Note from the customer")


class OrderStatusUpdate(BaseModel):
    """Schema for an administrative status change."""

    status: OrderStatus
    message: str | None = Field(default=None, max_length=500, description="Timeline message")


class ShippingTrackingUpdate(BaseModel):
    """Schema for recording carrier tracking."""

    tracking_number: str = Field(min_length=1, max_length=100)
    carrier: str = Field(min_length=1, max_length=100)
    estimated_delivery: datetime


class PaymentStatusUpdate(BaseModel):
    payment_status: SettablePaymentStatus


class RefundRequest(BaseModel):
    """Schema for an administrative refund."""

    amount: Decimal = Field(gt=0, decimal_places=2, description="Amount to refund")
    reason: str = Field(min_length=1, max_length=500)
    method: RefundMethod = Field(default="original_payment")


class OrderLineItemResponse(BaseModel):
    """Line item snapshot taken at checkout."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    product_id: str
    name: str
    sku: str = ""
    quantity: int
    unit_price: Decimal
    line_total: Decimal
    variant: dict[str, Any] | None = None
    image: str = ""


class ShippingInfoResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    method: ShippingMethod
    cost: Decimal
    tracking_number: str | None = None
    carrier: str | None = None
    estimated_delivery: datetime | None = None
    actual_delivery: datetime | None = None


class PricingResponse(BaseModel):
    """Financial breakdown; total == subtotal - discount + tax + shipping."""

    model_config = ConfigDict(from_attributes=True)

    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal


class TimelineEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    status: str
    message: str = ""
    date: datetime


class RefundEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    amount: Decimal
    reason: str
    method: RefundMethod
    processed_at: datetime


class FulfillmentResponse(BaseModel):
    """Progress of the checkout steps that follow order creation."""

    model_config = ConfigDict(from_attributes=True)

    stock_deducted: list[str] = Field(default_factory=list, description="Line IDs whose stock was taken")
    cart_cleared: bool = False


class OrderResponse(BaseModel):
    """Schema for order API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Order unique identifier")
    order_number: str = Field(description="Human-facing order number, e.g. ORD2610190001")
    user_id: str = Field(description="Owning account ID")
    items: list[OrderLineItemResponse]
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: str
    billing_address: AddressSchema
    shipping_address: AddressSchema
    shipping: ShippingInfoResponse
    pricing: PricingResponse
    coupon: CouponResponse | None = None
    notes: dict[str, str] = Field(default_factory=dict)
    timeline: list[TimelineEventResponse] = Field(default_factory=list)
    refunds: list[RefundEventResponse] = Field(default_factory=list)
    refund: RefundEventResponse | None = Field(default=None, description="Most recent refund")
    total_refunded: Decimal = Decimal("0.00")
    fulfillment: FulfillmentResponse | None = None
    created_at: datetime
    updated_at: datetime


class OrderEnvelope(BaseModel):
    """Order mutation response."""

    message: str
    order: OrderResponse


class OrderListResponse(BaseModel):
    orders: list[OrderResponse]
    pagination: Pagination


class OrderSummaryResponse(BaseModel):
    """Short order overview."""

    order_number: str
    status: OrderStatus
    payment_status: PaymentStatus
    total: Decimal
    item_count: int
    created_at: datetime | None = None
    estimated_delivery: datetime | None = None


class OrderTrackingResponse(BaseModel):
    """Schema for GET /orders/{order_id}/track."""

    order_number: str
    status: OrderStatus
    tracking_number: str | None = None
    carrier: str | None = None
    estimated_delivery: datetime | None = None
    timeline: list[TimelineEventResponse] = Field(default_factory=list)
