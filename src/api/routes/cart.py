"""Shopping cart API routes.

Carts are addressed by customer key: a registered account ID or an
anonymous ``temp_`` key. Authentication is optional, but a signed-in
customer may only address their own account cart.
"""

from fastapi import APIRouter

from src.api.deps import OptionalUser
from src.api.middleware.error_handler import AuthorizationError
from src.schemas.auth import UserContext
from src.schemas.cart import (
    CartCountResponse,
    CartEnvelope,
    CartItemAdd,
    CartItemUpdate,
    CartResponse,
    CouponApply,
    ShippingAddressUpdate,
    ShippingMethodUpdate,
)
from src.services.account_service import AccountService, is_account_id
from src.services.cart_service import CartService

router = APIRouter(prefix="/cart", tags=["cart"])


async def _resolve_key(customer_key: str, user: UserContext | None) -> str:
    """Validate the path key and check it against the caller."""
    key = await AccountService().resolve_customer_key(customer_key)
    if user and is_account_id(key) and key != user.user_id and not user.is_admin:
        raise AuthorizationError("Cannot access another customer's cart")
    return key


def _envelope(message: str, cart: dict) -> CartEnvelope:
    return CartEnvelope(message=message, cart=CartResponse.from_record(cart))


@router.get(
    "/{customer_key}",
    response_model=CartResponse,
    summary="Get cart",
    description="Fetch the cart for a customer key, creating an empty one on first access.",
)
async def get_cart(customer_key: str, user: OptionalUser) -> CartResponse:
    """Get or lazily create a cart.

    Raises:
        ValidationError: 400 if the key is malformed.
        NotFoundError: 404 if an account key has no account.
    """
    key = await _resolve_key(customer_key, user)
    cart = await CartService().get_or_create_cart(key)
    return CartResponse.from_record(cart)


@router.get(
    "/{customer_key}/count",
    response_model=CartCountResponse,
    summary="Cart item count",
)
async def get_cart_count(customer_key: str, user: OptionalUser) -> CartCountResponse:
    key = await _resolve_key(customer_key, user)
    return CartCountResponse(count=await CartService().get_item_count(key))


@router.post(
    "/{customer_key}/add",
    response_model=CartEnvelope,
    summary="Add item to cart",
    description="Add a product at its current price; repeat adds of the same product and variant merge.",
)
async def add_item(customer_key: str, data: CartItemAdd, user: OptionalUser) -> CartEnvelope:
    """Add a line item.

    Raises:
        NotFoundError: 404 if the product does not exist.
        BusinessRuleError: 400 if the product is unavailable or out of stock.
    """
    key = await _resolve_key(customer_key, user)
    variant = data.variant.model_dump() if data.variant else None
    cart = await CartService().add_item(key, data.product_id, data.quantity, variant)
    return _envelope("Item added to cart", cart)


@router.put(
    "/{customer_key}/update/{item_id}",
    response_model=CartEnvelope,
    summary="Update item quantity",
)
async def update_item(
    customer_key: str,
    item_id: str,
    data: CartItemUpdate,
    user: OptionalUser,
) -> CartEnvelope:
    key = await _resolve_key(customer_key, user)
    cart = await CartService().update_item_quantity(key, item_id, data.quantity)
    return _envelope("Cart updated", cart)


@router.delete(
    "/{customer_key}/remove/{item_id}",
    response_model=CartEnvelope,
    summary="Remove item from cart",
    description="Removing an item that is not in the cart leaves the cart unchanged.",
)
async def remove_item(customer_key: str, item_id: str, user: OptionalUser) -> CartEnvelope:
    key = await _resolve_key(customer_key, user)
    cart = await CartService().remove_item(key, item_id)
    return _envelope("Item removed from cart", cart)


@router.delete(
    "/{customer_key}/clear",
    response_model=CartEnvelope,
    summary="Clear cart",
)
async def clear_cart(customer_key: str, user: OptionalUser) -> CartEnvelope:
    key = await _resolve_key(customer_key, user)
    cart = await CartService().clear_cart(key)
    return _envelope("Cart cleared", cart)


@router.post(
    "/{customer_key}/apply-coupon",
    response_model=CartEnvelope,
    summary="Apply coupon",
)
async def apply_coupon(customer_key: str, data: CouponApply, user: OptionalUser) -> CartEnvelope:
    """Apply a coupon code, replacing any coupon already on the cart.

    Raises:
        InvalidCouponError: 400 if the code is unknown.
    """
    key = await _resolve_key(customer_key, user)
    cart = await CartService().apply_coupon(key, data.code)
    return _envelope("Coupon applied successfully", cart)


@router.delete(
    "/{customer_key}/remove-coupon",
    response_model=CartEnvelope,
    summary="Remove coupon",
)
async def remove_coupon(customer_key: str, user: OptionalUser) -> CartEnvelope:
    key = await _resolve_key(customer_key, user)
    cart = await CartService().remove_coupon(key)
    return _envelope("Coupon removed", cart)


@router.put(
    "/{customer_key}/shipping-method",
    response_model=CartEnvelope,
    summary="Set shipping method",
)
async def set_shipping_method(
    customer_key: str,
    data: ShippingMethodUpdate,
    user: OptionalUser,
) -> CartEnvelope:
    key = await _resolve_key(customer_key, user)
    cart = await CartService().set_shipping_method(key, data.method, data.cost)
    return _envelope("Shipping method updated", cart)


@router.put(
    "/{customer_key}/shipping-address",
    response_model=CartEnvelope,
    summary="Set shipping address",
)
async def set_shipping_address(
    customer_key: str,
    data: ShippingAddressUpdate,
    user: OptionalUser,
) -> CartEnvelope:
    key = await _resolve_key(customer_key, user)
    cart = await CartService().set_shipping_address(key, data.model_dump())
    return _envelope("Shipping address updated", cart)
