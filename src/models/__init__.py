"""Database model type definitions."""

from src.models.cart import Cart, CartLineItem, Coupon
from src.models.order import Order, OrderLineItem, OrderStatus, PaymentStatus
from src.models.product import Product

__all__ = [
    "Cart",
    "CartLineItem",
    "Coupon",
    "Order",
    "OrderLineItem",
    "OrderStatus",
    "PaymentStatus",
    "Product",
]
