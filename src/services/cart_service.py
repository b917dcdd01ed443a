"""Shopping cart business logic service.

``CartAggregate`` holds the in-memory rules for one cart row and
reprices it after every mutation. ``CartService`` loads and stores
carts, guarding each read-modify-write with the row's ``version``.
"""

import inspect
import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Any, TypeVar
from uuid import uuid4

from supabase import Client
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_random

from src.api.middleware.error_handler import (
    ConflictError,
    InsufficientStockError,
    InvalidCouponError,
    InvalidQuantityError,
    ItemNotFoundError,
    NotFoundError,
    ProductUnavailableError,
    ValidationError,
)
from src.core.config import Settings, get_settings
from src.core.supabase import get_supabase_client
from src.models.cart import Cart, CartAddress, CartLineItem, Coupon, Variant
from src.services.catalog_service import CatalogService
from src.services.pricing_service import PricingConfig, compute_totals, line_total, to_money

logger = logging.getLogger(__name__)

T = TypeVar("T")

DISCOUNT_TYPES = ("percentage", "fixed")


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _parse_timestamp(value: str | datetime | None) -> datetime | None:
    if value is None or isinstance(value, datetime):
        return value
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    return parsed if parsed.tzinfo else parsed.replace(tzinfo=timezone.utc)


def _is_positive_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and value >= 1


class StaleCartError(ConflictError):
    """The cart row changed between read and write."""

    def __init__(self, customer_key: str) -> None:
        self.customer_key = customer_key
        super().__init__("Cart was modified by another request, please retry")


class CartAggregate:
    """Mutable cart with totals kept in step with its items.

    Operates on a cart row dict in place. Never touches catalog stock.
    """

    def __init__(self, record: Cart, pricing: PricingConfig) -> None:
        self.record = record
        self.pricing = pricing

    @classmethod
    def new_record(cls, customer_key: str, retention_days: int) -> Cart:
        """Blank cart row for ``customer_key``."""
        now = _now()
        return {
            "id": str(uuid4()),
            "customer_key": customer_key,
            "items": [],
            "coupon": None,
            "shipping_method": None,
            "shipping_cost": "0.00",
            "shipping_address": None,
            "subtotal": "0.00",
            "discount": "0.00",
            "tax": "0.00",
            "total": "0.00",
            "version": 0,
            "expires_at": (now + timedelta(days=retention_days)).isoformat(),
            "created_at": now.isoformat(),
            "updated_at": now.isoformat(),
        }

    @property
    def items(self) -> list[CartLineItem]:
        return self.record["items"]

    def find_item(self, item_id: str) -> CartLineItem | None:
        return next((item for item in self.items if item["id"] == item_id), None)

    def find_matching(self, product_id: str, variant: Variant | None = None) -> CartLineItem | None:
        """Line for the same product and variant value, if any."""
        wanted = variant.get("value") if variant else None
        for item in self.items:
            current = item["variant"].get("value") if item.get("variant") else None
            if item["product_id"] == product_id and current == wanted:
                return item
        return None

    def product_quantity(self, product_id: str, excluding: str | None = None) -> int:
        """Quantity of a product across all its lines, optionally skipping one line."""
        return sum(
            item["quantity"] for item in self.items if item["product_id"] == product_id and item["id"] != excluding
        )

    def recalculate(self) -> Cart:
        """Recompute line totals and derived cart totals."""
        for item in self.items:
            item["line_total"] = str(line_total(item["unit_price"], item["quantity"]))

        totals = compute_totals(
            self.items,
            self.record.get("coupon"),
            self.record.get("shipping_cost"),
            self.pricing.tax_rate,
        )
        self.record["shipping_cost"] = str(totals.shipping)
        self.record["subtotal"] = str(totals.subtotal)
        self.record["discount"] = str(totals.discount)
        self.record["tax"] = str(totals.tax)
        self.record["total"] = str(totals.total)
        return self.record

    def add_item(
        self,
        product_id: str,
        quantity: int,
        unit_price: Any = None,
        variant: Variant | None = None,
    ) -> CartLineItem:
        """Add ``quantity`` of a product, merging with an existing line.

        A merged line keeps the unit price captured when it was first
        added. A new line is priced from the variant price when the
        variant carries one, otherwise from ``unit_price``.

        Raises:
            InvalidQuantityError: If quantity is not a positive integer.
            ValueError: If a new line has no price to capture.
        """
        if not _is_positive_int(quantity):
            raise InvalidQuantityError(quantity)

        existing = self.find_matching(product_id, variant)
        if existing:
            existing["quantity"] += quantity
            self.recalculate()
            return existing

        price = variant.get("price") if variant else None
        if price is None:
            price = unit_price
        if price is None:
            raise ValueError("A unit price is required for a new cart line")

        item: CartLineItem = {
            "id": str(uuid4()),
            "product_id": product_id,
            "quantity": quantity,
            "unit_price": str(to_money(price)),
            "variant": dict(variant) if variant else None,
            "line_total": "0.00",
            "added_at": _now().isoformat(),
        }
        if item["variant"] and item["variant"].get("price") is not None:
            item["variant"]["price"] = str(to_money(item["variant"]["price"]))
        self.items.append(item)
        self.recalculate()
        return item

    def update_item_quantity(self, item_id: str, quantity: int) -> CartLineItem:
        """Set a line's quantity, floored at 1.

        Raises:
            InvalidQuantityError: If quantity is not an integer.
            ItemNotFoundError: If the line is not in the cart.
        """
        if not isinstance(quantity, int) or isinstance(quantity, bool):
            raise InvalidQuantityError(quantity)
        item = self.find_item(item_id)
        if item is None:
            raise ItemNotFoundError(item_id)
        item["quantity"] = max(1, quantity)
        self.recalculate()
        return item

    def remove_item(self, item_id: str) -> bool:
        """Drop a line. Returns False (and changes nothing) if it is absent."""
        remaining = [item for item in self.items if item["id"] != item_id]
        if len(remaining) == len(self.items):
            return False
        self.record["items"] = remaining
        self.recalculate()
        return True

    def apply_coupon(self, code: str, discount: Any, discount_type: str) -> Coupon:
        """Attach a coupon, replacing any coupon already applied."""
        if discount_type not in DISCOUNT_TYPES:
            raise ValueError(f"Unknown discount type: {discount_type}")
        coupon: Coupon = {
            "code": code,
            "discount": str(to_money(discount)),
            "discount_type": discount_type,
        }
        self.record["coupon"] = coupon
        self.recalculate()
        return coupon

    def remove_coupon(self) -> None:
        self.record["coupon"] = None
        self.recalculate()

    def set_shipping_method(self, method: str, cost: Any = None) -> None:
        """Select a shipping method; cost defaults to the method's table cost.

        Raises:
            ValidationError: If the method is not a known shipping method.
        """
        if method not in self.pricing.shipping_costs:
            raise ValidationError(
                "Valid shipping method is required",
                details=[{"loc": ["body", "method"], "msg": f"Expected one of {', '.join(self.pricing.shipping_methods)}", "type": "value_error"}],
            )
        self.record["shipping_method"] = method
        self.record["shipping_cost"] = str(
            self.pricing.shipping_cost_for(method) if cost is None else to_money(cost)
        )
        self.recalculate()

    def set_shipping_address(self, address: CartAddress) -> None:
        self.record["shipping_address"] = dict(address)

    def clear(self) -> None:
        """Empty the cart and drop its coupon."""
        self.record["items"] = []
        self.record["coupon"] = None
        self.recalculate()

    def is_empty(self) -> bool:
        return not self.items

    def item_count(self) -> int:
        return sum(item["quantity"] for item in self.items)

    def is_expired(self, at: datetime | None = None) -> bool:
        expires_at = _parse_timestamp(self.record.get("expires_at"))
        return expires_at is not None and expires_at <= (at or _now())


class CartService:
    """Service for loading, mutating and storing carts."""

    def __init__(
        self,
        supabase_client: Client | None = None,
        catalog_service: CatalogService | None = None,
        settings: Settings | None = None,
        pricing: PricingConfig | None = None,
    ) -> None:
        """Initialize cart service.

        Args:
            supabase_client: Optional Supabase client for testing.
            catalog_service: Optional catalog service for testing.
            settings: Optional settings override.
            pricing: Optional pricing configuration override.
        """
        self._supabase_client = supabase_client
        self._catalog_service = catalog_service
        self.settings = settings or get_settings()
        self.pricing = pricing or PricingConfig.from_settings(self.settings)

    @property
    def supabase(self) -> Client:
        """Get Supabase client."""
        if self._supabase_client is None:
            self._supabase_client = get_supabase_client()
        return self._supabase_client

    @property
    def catalog(self) -> CatalogService:
        """Get catalog service (shares this service's client)."""
        if self._catalog_service is None:
            self._catalog_service = CatalogService(self._supabase_client)
        return self._catalog_service

    def aggregate(self, record: Cart) -> CartAggregate:
        return CartAggregate(record, self.pricing)

    # Persistence

    async def find_cart(self, customer_key: str) -> Cart | None:
        """Get the cart row for a customer key without creating one."""
        response = (
            self.supabase.table("carts")
            .select("*")
            .eq("customer_key", customer_key)
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def _insert_cart(self, customer_key: str) -> Cart:
        record = CartAggregate.new_record(customer_key, self.settings.cart_retention_days)
        # A concurrent first access may insert the same key; keep whichever row won.
        self.supabase.table("carts").upsert(
            record, on_conflict="customer_key", ignore_duplicates=True
        ).execute()
        cart = await self.find_cart(customer_key)
        if cart is None:
            raise RuntimeError(f"Cart for {customer_key} missing after insert")
        logger.info("Created cart for %s", customer_key)
        return cart

    async def _save(self, record: Cart) -> Cart:
        """Write a mutated cart if nobody else wrote it since it was read.

        Raises:
            StaleCartError: If the stored version moved on.
        """
        expected_version = record["version"]
        now = _now()
        payload = {
            key: value
            for key, value in record.items()
            if key not in ("id", "customer_key", "created_at")
        }
        payload["version"] = expected_version + 1
        payload["updated_at"] = now.isoformat()
        payload["expires_at"] = (now + timedelta(days=self.settings.cart_retention_days)).isoformat()

        response = (
            self.supabase.table("carts")
            .update(payload)
            .eq("id", record["id"])
            .eq("version", expected_version)
            .execute()
        )
        if not response.data:
            raise StaleCartError(record["customer_key"])
        return response.data[0]

    async def _load(self, customer_key: str, create: bool) -> Cart:
        cart = await self.find_cart(customer_key)
        if cart is None:
            if not create:
                raise NotFoundError("Cart not found")
            cart = await self._insert_cart(customer_key)

        aggregate = self.aggregate(cart)
        if aggregate.is_expired() and (cart["items"] or cart.get("coupon")):
            logger.info("Cart for %s expired, resetting contents", customer_key)
            aggregate.clear()
            cart["shipping_method"] = None
            cart["shipping_cost"] = "0.00"
            aggregate.recalculate()
            cart = await self._save(cart)
        return cart

    async def _mutate(
        self,
        customer_key: str,
        change: Callable[[CartAggregate], Awaitable[T] | T],
        create: bool = False,
    ) -> tuple[Cart, T]:
        """Read-modify-write a cart, retrying when another write wins.

        Args:
            customer_key: Cart owner key.
            change: Applied to a fresh aggregate on each attempt.
            create: Create the cart if missing instead of raising 404.

        Returns:
            tuple: (stored cart row, value returned by ``change``).

        Raises:
            StaleCartError: If every attempt lost to a concurrent write.
        """
        async for attempt in AsyncRetrying(
            retry=retry_if_exception_type(StaleCartError),
            stop=stop_after_attempt(self.settings.cart_write_attempts),
            wait=wait_random(0, 0.05),
            reraise=True,
        ):
            with attempt:
                if attempt.retry_state.attempt_number > 1:
                    logger.info(
                        "Retrying cart write for %s (attempt %d)",
                        customer_key,
                        attempt.retry_state.attempt_number,
                    )
                cart = await self._load(customer_key, create=create)
                aggregate = self.aggregate(cart)
                result = change(aggregate)
                if inspect.isawaitable(result):
                    result = await result
                stored = await self._save(aggregate.record)
        return stored, result

    # Operations

    async def get_or_create_cart(self, customer_key: str) -> Cart:
        """Fetch a cart, creating an empty one on first access."""
        return await self._load(customer_key, create=True)

    async def add_item(
        self,
        customer_key: str,
        product_id: str,
        quantity: int,
        variant: Variant | None = None,
    ) -> Cart:
        """Add a product to the cart at its current catalog price.

        Raises:
            InvalidQuantityError: If quantity is not a positive integer.
            NotFoundError: If the product does not exist.
            ProductUnavailableError: If the product is inactive.
            InsufficientStockError: If stock cannot cover the product's total
                quantity across all of its lines.
        """
        if not _is_positive_int(quantity):
            raise InvalidQuantityError(quantity)

        product = await self.catalog.get_product(product_id)
        if not product:
            raise NotFoundError("Product not found")
        if not self.catalog.is_available(product):
            raise ProductUnavailableError()

        def change(aggregate: CartAggregate) -> CartLineItem:
            requested = quantity + aggregate.product_quantity(product_id)
            if int(product.get("stock", 0)) < requested:
                raise InsufficientStockError(product.get("name"))
            return aggregate.add_item(product_id, quantity, unit_price=product["price"], variant=variant)

        cart, item = await self._mutate(customer_key, change, create=True)
        logger.info("Added %d x %s to cart %s (line %s)", quantity, product_id, customer_key, item["id"])
        return cart

    async def update_item_quantity(self, customer_key: str, item_id: str, quantity: int) -> Cart:
        """Change a line's quantity after re-checking stock.

        Raises:
            NotFoundError: If the cart or line is missing.
            InsufficientStockError: If stock cannot cover the new quantity plus
                the product's other lines.
        """
        if not _is_positive_int(quantity):
            raise InvalidQuantityError(quantity)

        async def change(aggregate: CartAggregate) -> CartLineItem:
            item = aggregate.find_item(item_id)
            if item is None:
                raise ItemNotFoundError(item_id)
            product = await self.catalog.get_product(item["product_id"])
            requested = quantity + aggregate.product_quantity(item["product_id"], excluding=item_id)
            if not product or int(product.get("stock", 0)) < requested:
                raise InsufficientStockError(product.get("name") if product else None)
            return aggregate.update_item_quantity(item_id, quantity)

        cart, _ = await self._mutate(customer_key, change)
        return cart

    async def remove_item(self, customer_key: str, item_id: str) -> Cart:
        """Remove a line; removing an absent line leaves the cart as is."""
        cart = await self._load(customer_key, create=False)
        if self.aggregate(cart).find_item(item_id) is None:
            return cart
        cart, _ = await self._mutate(customer_key, lambda aggregate: aggregate.remove_item(item_id))
        return cart

    async def clear_cart(self, customer_key: str) -> Cart:
        cart, _ = await self._mutate(customer_key, lambda aggregate: aggregate.clear())
        return cart

    async def remove_lines(self, customer_key: str, item_ids: list[str]) -> Cart | None:
        """Drop the given lines and the coupon, keeping anything added since.

        Returns None when the customer no longer has a cart.
        """
        if await self.find_cart(customer_key) is None:
            return None

        def change(aggregate: CartAggregate) -> None:
            aggregate.record["items"] = [item for item in aggregate.items if item["id"] not in item_ids]
            aggregate.remove_coupon()

        cart, _ = await self._mutate(customer_key, change)
        return cart

    def lookup_coupon(self, code: str) -> dict[str, Any]:
        """Resolve a coupon code against the configured coupon table.

        Raises:
            InvalidCouponError: If the code is unknown or misconfigured.
        """
        normalized = code.strip().upper()
        for known_code, terms in self.settings.coupons.items():
            if known_code.upper() == normalized:
                if terms.get("discount_type", "percentage") not in DISCOUNT_TYPES:
                    logger.error("Coupon %s has unknown discount type %r", known_code, terms.get("discount_type"))
                    raise InvalidCouponError()
                return {
                    "code": known_code,
                    "discount": terms.get("discount", 0),
                    "discount_type": terms.get("discount_type", "percentage"),
                }
        raise InvalidCouponError()

    async def apply_coupon(self, customer_key: str, code: str) -> Cart:
        coupon = self.lookup_coupon(code)
        cart, _ = await self._mutate(
            customer_key,
            lambda aggregate: aggregate.apply_coupon(coupon["code"], coupon["discount"], coupon["discount_type"]),
        )
        logger.info("Applied coupon %s to cart %s", coupon["code"], customer_key)
        return cart

    async def remove_coupon(self, customer_key: str) -> Cart:
        cart, _ = await self._mutate(customer_key, lambda aggregate: aggregate.remove_coupon())
        return cart

    async def set_shipping_method(self, customer_key: str, method: str, cost: Any = None) -> Cart:
        cart, _ = await self._mutate(customer_key, lambda aggregate: aggregate.set_shipping_method(method, cost))
        return cart

    async def set_shipping_address(self, customer_key: str, address: CartAddress) -> Cart:
        cart, _ = await self._mutate(customer_key, lambda aggregate: aggregate.set_shipping_address(address))
        return cart

    async def get_item_count(self, customer_key: str) -> int:
        """Total quantity in the cart; 0 when the customer has no cart."""
        cart = await self.find_cart(customer_key)
        if cart is None:
            return 0
        aggregate = self.aggregate(cart)
        return 0 if aggregate.is_expired() else aggregate.item_count()


def get_cart_service() -> CartService:
    """Get cart service instance."""
    return CartService()
