"""Catalog store access for the cart and checkout.

The catalog is owned elsewhere; this service only reads product
records and moves stock. Stock changes go through Postgres functions
so they are single arithmetic updates rather than read-then-write.
"""

import logging

from supabase import Client

from src.api.middleware.error_handler import InsufficientStockError
from src.core.supabase import get_supabase_client
from src.models.product import Product

logger = logging.getLogger(__name__)

PRODUCT_FIELDS = "id, name, sku, price, stock, status, is_active, images"


class CatalogService:
    """Service for product reads and atomic stock updates."""

    def __init__(self, supabase_client: Client | None = None) -> None:
        """Initialize catalog service.

        Args:
            supabase_client: Optional Supabase client for testing.
        """
        self._supabase_client = supabase_client

    @property
    def supabase(self) -> Client:
        """Get Supabase client."""
        if self._supabase_client is None:
            self._supabase_client = get_supabase_client()
        return self._supabase_client

    async def get_product(self, product_id: str) -> Product | None:
        """Get a product by ID.

        Args:
            product_id: Product identifier.

        Returns:
            Product or None if not found.
        """
        response = (
            self.supabase.table("products")
            .select(PRODUCT_FIELDS)
            .eq("id", product_id)
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def get_products(self, product_ids: list[str]) -> dict[str, Product]:
        """Get several products keyed by ID. Missing IDs are absent from the result."""
        if not product_ids:
            return {}
        response = (
            self.supabase.table("products")
            .select(PRODUCT_FIELDS)
            .in_("id", list(dict.fromkeys(product_ids)))
            .execute()
        )
        return {row["id"]: row for row in response.data or []}

    @staticmethod
    def is_available(product: Product) -> bool:
        """Whether a product can be sold."""
        return bool(product.get("is_active", True)) and product.get("status", "active") == "active"

    async def decrement_stock(self, product_id: str, quantity: int, product_name: str | None = None) -> int:
        """Atomically take ``quantity`` units out of stock.

        The store rejects a decrement that would make stock negative,
        which is the authoritative oversell guard.

        Returns:
            int: Remaining stock.

        Raises:
            InsufficientStockError: If stock is lower than ``quantity``
                or the product no longer exists.
        """
        response = self.supabase.rpc(
            "decrement_product_stock",
            {"p_product_id": product_id, "p_quantity": quantity},
        ).execute()

        if response.data is None:
            logger.warning("Stock decrement rejected for product %s (qty=%d)", product_id, quantity)
            raise InsufficientStockError(product_name or product_id)

        logger.info("Decremented stock for product %s by %d (remaining=%s)", product_id, quantity, response.data)
        return int(response.data)

    async def restore_stock(self, product_id: str, quantity: int) -> int | None:
        """Atomically put ``quantity`` units back into stock.

        Returns:
            int | None: New stock, or None if the product no longer exists.
        """
        response = self.supabase.rpc(
            "increment_product_stock",
            {"p_product_id": product_id, "p_quantity": quantity},
        ).execute()

        if response.data is None:
            logger.warning("Stock restore skipped, product %s not found", product_id)
            return None

        logger.info("Restored %d units to product %s (stock=%s)", quantity, product_id, response.data)
        return int(response.data)


def get_catalog_service() -> CatalogService:
    """Get catalog service instance."""
    return CatalogService()
