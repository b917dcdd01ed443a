"""Cart Pydantic schemas for API request/response models."""

from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field

from src.models.cart import AddressType, DiscountType, ShippingMethod

# Registered product and account identifiers are 24-character hex strings.
OBJECT_ID_PATTERN = r"^[0-9a-fA-F]{24}$"


class VariantSchema(BaseModel):
    """Variant chosen for a line item."""

    model_config = ConfigDict(from_attributes=True)

    name: str = Field(min_length=1, max_length=50, description="Variant dimension, e.g. size")
    value: str = Field(min_length=1, max_length=50, description="Variant value, e.g. XL")
    price: Decimal | None = Field(default=None, ge=0, description="Variant price overriding the product price")


class CartItemAdd(BaseModel):
    """Schema for adding a product via POST /cart/{customer_key}/add."""

    product_id: str = Field(pattern=OBJECT_ID_PATTERN, description="Product ID to add")
    quantity: int = Field(ge=1, description="Units to add")
    variant: VariantSchema | None = Field(default=None, description="Optional variant")


class CartItemUpdate(BaseModel):
    """Schema for changing a line's quantity."""

    quantity: int = Field(ge=1, description="New quantity")


class CouponApply(BaseModel):
    """Schema for applying a coupon code."""

    code: str = Field(min_length=1, max_length=50, description="Coupon code")


class ShippingMethodUpdate(BaseModel):
    """Schema for selecting a shipping method.

    Cost is optional; the configured cost for the method is used
    when it is omitted.
    """

    method: ShippingMethod = Field(description="Shipping method")
    cost: Decimal | None = Field(default=None, ge=0, description="Shipping cost override")


class ShippingAddressUpdate(BaseModel):
    """Schema for the cart's shipping address."""

    type: AddressType = Field(default="home", description="Address kind")
    street: str = Field(min_length=1, max_length=200)
    city: str = Field(min_length=1, max_length=100)
    state: str = Field(min_length=1, max_length=100)
    zip_code: str = Field(min_length=1, max_length=20)
    country: str = Field(default="United States", max_length=100)


class CartLineItemResponse(BaseModel):
    """Schema for a cart line in API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Line item ID")
    product_id: str = Field(description="Product ID")
    quantity: int = Field(ge=1, description="Quantity")
    unit_price: Decimal = Field(description="Unit price captured when the line was added")
    line_total: Decimal = Field(description="unit_price x quantity")
    variant: VariantSchema | None = Field(default=None, description="Chosen variant")
    added_at: datetime | None = Field(default=None, description="When the line was added")


class CouponResponse(BaseModel):
    """Schema for the applied coupon."""

    model_config = ConfigDict(from_attributes=True)

    code: str
    discount: Decimal
    discount_type: DiscountType


class CartAddressResponse(ShippingAddressUpdate):
    model_config = ConfigDict(from_attributes=True)


class CartResponse(BaseModel):
    """Schema for cart API responses."""

    model_config = ConfigDict(from_attributes=True)

    id: str = Field(description="Cart ID")
    customer_key: str = Field(description="Account ID or temporary key owning the cart")
    items: list[CartLineItemResponse] = Field(default_factory=list)
    coupon: CouponResponse | None = None
    shipping_method: ShippingMethod | None = None
    shipping_cost: Decimal = Field(default=Decimal("0.00"))
    shipping_address: CartAddressResponse | None = None
    subtotal: Decimal = Field(description="Sum of line totals")
    discount: Decimal = Field(description="Coupon discount")
    tax: Decimal = Field(description="Tax on the discounted subtotal")
    total: Decimal = Field(description="subtotal - discount + tax + shipping_cost")
    item_count: int = Field(default=0, description="Total units across all lines")
    version: int = Field(description="Row version for concurrent writes")
    expires_at: datetime | None = Field(default=None, description="When an untouched cart is reset")
    updated_at: datetime | None = None

    @classmethod
    def from_record(cls, record: dict) -> "CartResponse":
        return cls.model_validate(
            {**record, "item_count": sum(item["quantity"] for item in record.get("items", []))}
        )


class CartEnvelope(BaseModel):
    """Cart mutation response."""

    message: str
    cart: CartResponse


class CartCountResponse(BaseModel):
    count: int = Field(ge=0, description="Total units in the cart")
