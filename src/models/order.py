"""Order model type definitions for database operations."""

from typing import Literal, TypedDict

from src.models.cart import Coupon, ShippingMethod


# Order status enum values matching database enum
OrderStatus = Literal[
    "pending",
    "confirmed",
    "processing",
    "shipped",
    "delivered",
    "cancelled",
    "refunded",
]

PaymentStatus = Literal["pending", "paid", "failed", "refunded", "partially_refunded"]

RefundMethod = Literal["original_payment", "store_credit"]


class OrderLineItem(TypedDict):
    """Snapshot of a cart line taken at checkout.

    Stored as part of the items JSONB array. Independent of later
    product edits or deletion.
    """

    id: str
    product_id: str
    name: str
    sku: str
    quantity: int
    unit_price: str
    line_total: str
    variant: dict | None
    image: str


class OrderAddress(TypedDict, total=False):
    """Billing or shipping address captured at checkout."""

    first_name: str
    last_name: str
    email: str
    phone: str | None
    street: str
    city: str
    state: str
    zip_code: str
    country: str


class ShippingInfo(TypedDict, total=False):
    """Shipping selection and carrier tracking."""

    method: ShippingMethod
    cost: str
    tracking_number: str | None
    carrier: str | None
    estimated_delivery: str | None
    actual_delivery: str | None


class PricingBreakdown(TypedDict):
    """Financial breakdown; total == subtotal - discount + tax + shipping."""

    subtotal: str
    discount: str
    tax: str
    shipping: str
    total: str


class TimelineEvent(TypedDict):
    """Append-only audit entry."""

    status: str
    message: str
    date: str


class RefundEvent(TypedDict):
    """A single refund action."""

    amount: str
    reason: str
    method: RefundMethod
    processed_at: str


class Fulfillment(TypedDict):
    """Progress of the post-persist checkout steps."""

    stock_deducted: list[str]
    cart_cleared: bool
    cart_line_ids: list[str]


class Order(TypedDict):
    """Order table row representation."""

    id: str
    order_number: str
    user_id: str
    items: list[OrderLineItem]
    status: OrderStatus
    payment_status: PaymentStatus
    payment_method: str
    billing_address: OrderAddress
    shipping_address: OrderAddress
    shipping: ShippingInfo
    pricing: PricingBreakdown
    coupon: Coupon | None
    notes: dict
    timeline: list[TimelineEvent]
    refunds: list[RefundEvent]
    refund: RefundEvent | None
    total_refunded: str
    fulfillment: Fulfillment
    created_at: str
    updated_at: str


class OrderUpdate(TypedDict, total=False):
    """Fields written by state transitions."""

    status: OrderStatus
    payment_status: PaymentStatus
    shipping: ShippingInfo
    timeline: list[TimelineEvent]
    refunds: list[RefundEvent]
    refund: RefundEvent | None
    total_refunded: str
    fulfillment: Fulfillment
    updated_at: str
