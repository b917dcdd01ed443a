"""Product model type definitions for database operations."""

from typing import Any, Literal, TypedDict


ProductStatus = Literal["active", "inactive", "draft", "archived"]


class Product(TypedDict):
    """Product table row representation.

    Only the fields the cart and checkout read. Stock is changed
    exclusively through the stock RPC functions.
    """

    id: str
    name: str
    sku: str
    price: str
    stock: int
    status: ProductStatus
    is_active: bool
    images: list[dict[str, Any]]
