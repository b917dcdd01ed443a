"""Cart model type definitions for database operations."""

from typing import Literal, TypedDict


# Shipping method enum values matching the shipping cost table
ShippingMethod = Literal["standard", "express", "overnight"]

# Coupon discount kinds
DiscountType = Literal["percentage", "fixed"]

# Address kinds accepted on a cart shipping address
AddressType = Literal["home", "work", "other"]


class Variant(TypedDict, total=False):
    """Variant descriptor chosen for a line item (e.g. size: XL)."""

    name: str
    value: str
    price: str | None


class CartLineItem(TypedDict):
    """Structure for a single line item in a cart.

    Stored as part of the items JSONB array. Money fields are
    numeric strings so they survive JSON round trips exactly.
    """

    id: str
    product_id: str
    quantity: int
    unit_price: str
    variant: Variant | None
    line_total: str
    added_at: str


class Coupon(TypedDict):
    """Coupon attached to a cart or copied onto an order."""

    code: str
    discount: str
    discount_type: DiscountType


class CartAddress(TypedDict, total=False):
    """Shipping address stored on a cart."""

    type: AddressType
    street: str
    city: str
    state: str
    zip_code: str
    country: str


class Cart(TypedDict):
    """Cart table row representation.

    One row per customer key. Derived money fields are recomputed
    on every mutation before the row is written.
    """

    id: str
    customer_key: str
    items: list[CartLineItem]
    coupon: Coupon | None
    shipping_method: ShippingMethod | None
    shipping_cost: str
    shipping_address: CartAddress | None
    subtotal: str
    discount: str
    tax: str
    total: str
    version: int
    expires_at: str
    created_at: str
    updated_at: str
