"""Checkout orchestration: cart to order.

The order row is written before any stock moves. Each later step is
recorded in the order's ``fulfillment`` block, so a checkout that
stops part way can be finished with ``reconcile_order``.
"""

import logging
from collections import Counter
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from supabase import Client

from src.api.middleware.error_handler import (
    EmptyCartError,
    InsufficientStockError,
    IntegrityGapError,
    ProductUnavailableError,
    ValidationError,
)
from src.core.config import Settings, get_settings
from src.models.cart import Cart
from src.models.order import Fulfillment, Order, OrderAddress, OrderLineItem
from src.models.product import Product
from src.services.cart_service import CartService
from src.services.catalog_service import CatalogService
from src.services.order_service import OrderService, OrderStateMachine
from src.services.pricing_service import PricingConfig, compute_totals, line_total

logger = logging.getLogger(__name__)


def _first_image_url(product: Product) -> str:
    images = product.get("images") or []
    if not images:
        return ""
    first = images[0]
    return first.get("url", "") if isinstance(first, dict) else str(first)


def snapshot_line(cart_item: dict[str, Any], product: Product) -> OrderLineItem:
    """Freeze a cart line and its product details into an order line."""
    variant = cart_item.get("variant")
    return {
        "id": str(uuid4()),
        "product_id": cart_item["product_id"],
        "name": product["name"],
        "sku": product.get("sku", ""),
        "quantity": cart_item["quantity"],
        "unit_price": cart_item["unit_price"],
        "line_total": str(line_total(cart_item["unit_price"], cart_item["quantity"])),
        "variant": {"name": variant.get("name"), "value": variant.get("value")} if variant else None,
        "image": _first_image_url(product),
    }


class CheckoutService:
    """Service that converts a customer's cart into an order."""

    def __init__(
        self,
        supabase_client: Client | None = None,
        cart_service: CartService | None = None,
        order_service: OrderService | None = None,
        catalog_service: CatalogService | None = None,
        settings: Settings | None = None,
    ) -> None:
        """Initialize checkout service.

        Args:
            supabase_client: Optional Supabase client for testing.
            cart_service: Optional cart service for testing.
            order_service: Optional order service for testing.
            catalog_service: Optional catalog service for testing.
            settings: Optional settings override.
        """
        self.settings = settings or get_settings()
        self.pricing = PricingConfig.from_settings(self.settings)
        self.catalog = catalog_service or CatalogService(supabase_client)
        self.carts = cart_service or CartService(supabase_client, self.catalog, self.settings, self.pricing)
        self.orders = order_service or OrderService(supabase_client, self.catalog)

    async def _load_cart(self, user_id: str) -> Cart:
        cart = await self.carts.find_cart(user_id)
        if cart is None:
            raise EmptyCartError()
        aggregate = self.carts.aggregate(cart)
        if aggregate.is_empty() or aggregate.is_expired():
            raise EmptyCartError()
        return cart

    async def _validate_stock(self, cart: Cart) -> dict[str, Product]:
        """Re-check every line against current stock.

        Quantities are summed per product so two variants of the same
        product cannot each pass on their own.
        """
        requested: Counter[str] = Counter()
        for item in cart["items"]:
            requested[item["product_id"]] += item["quantity"]

        products = await self.catalog.get_products(list(requested))
        for product_id, quantity in requested.items():
            product = products.get(product_id)
            if product is None:
                raise InsufficientStockError(product_id)
            if not self.catalog.is_available(product):
                raise ProductUnavailableError(f"{product['name']} is no longer available")
            if int(product.get("stock", 0)) < quantity:
                raise InsufficientStockError(product["name"])
        return products

    async def checkout(
        self,
        user_id: str,
        payment_method: str,
        billing_address: OrderAddress,
        shipping_address: OrderAddress,
        shipping_method: str,
        notes: str | None = None,
    ) -> Order:
        """Place an order from the user's cart.

        Args:
            user_id: Authenticated account ID; also the cart key.
            payment_method: Payment method label recorded on the order.
            billing_address: Billing address.
            shipping_address: Delivery address.
            shipping_method: One of the configured shipping methods.
            notes: Optional customer note.

        Returns:
            Order: The stored order.

        Raises:
            EmptyCartError: If the cart is missing, expired or empty.
            InsufficientStockError: If any line cannot be covered, either
                before the order is written or when stock is taken (the
                order is then cancelled and any taken stock restored).
            IntegrityGapError: If the order was written but stock or cart
                updates failed for another reason.
        """
        if shipping_method not in self.pricing.shipping_costs:
            raise ValidationError(
                "Valid shipping method is required",
                details=[{"loc": ["body", "shipping_method"], "msg": shipping_method, "type": "value_error"}],
            )

        cart = await self._load_cart(user_id)
        products = await self._validate_stock(cart)

        items = [snapshot_line(item, products[item["product_id"]]) for item in cart["items"]]
        shipping_cost = self.pricing.shipping_cost_for(shipping_method)
        totals = compute_totals(items, cart.get("coupon"), shipping_cost, self.pricing.tax_rate)

        created_at = datetime.now(timezone.utc)
        order_number = await self.orders.next_order_number(created_at)
        fulfillment: Fulfillment = {
            "stock_deducted": [],
            "cart_cleared": False,
            "cart_line_ids": [item["id"] for item in cart["items"]],
        }
        record: dict[str, Any] = {
            "id": str(uuid4()),
            "order_number": order_number,
            "user_id": user_id,
            "items": items,
            "status": "pending",
            "payment_status": "pending",
            "payment_method": payment_method,
            "billing_address": dict(billing_address),
            "shipping_address": dict(shipping_address),
            "shipping": {
                "method": shipping_method,
                "cost": str(shipping_cost),
                "tracking_number": None,
                "carrier": None,
                "estimated_delivery": None,
                "actual_delivery": None,
            },
            "pricing": totals.as_record(),
            "coupon": cart.get("coupon"),
            "notes": {"customer": notes or ""},
            "timeline": [],
            "refunds": [],
            "refund": None,
            "total_refunded": "0.00",
            "fulfillment": fulfillment,
            "created_at": created_at.isoformat(),
            "updated_at": created_at.isoformat(),
        }
        OrderStateMachine(record).add_timeline_event("pending", "Order placed")
        order = await self.orders.create_order(record)

        order = await self._deduct_stock(order)
        order = await self._clear_cart(order)
        logger.info(
            "Checkout complete: order %s for %s, total %s",
            order["order_number"],
            user_id,
            order["pricing"]["total"],
        )
        return order

    async def _deduct_stock(self, order: Order) -> Order:
        """Take stock for every line not yet deducted.

        A store-side rejection cancels the order and puts back whatever
        was already taken.
        """
        fulfillment = dict(order["fulfillment"])
        deducted = list(fulfillment.get("stock_deducted", []))
        pending = [item for item in order["items"] if item["id"] not in deducted]
        if not pending:
            return order

        try:
            for item in pending:
                await self.catalog.decrement_stock(item["product_id"], item["quantity"], item["name"])
                deducted.append(item["id"])
        except InsufficientStockError as e:
            order["fulfillment"] = {**fulfillment, "stock_deducted": deducted}
            await self._cancel_for_stock(order, e)
            raise
        except Exception as e:
            order["fulfillment"] = {**fulfillment, "stock_deducted": deducted}
            await self._record_progress(order)
            logger.exception("Stock decrement failed for order %s", order["order_number"])
            raise IntegrityGapError(order["order_number"], "stock decrement") from e

        order["fulfillment"] = {**fulfillment, "stock_deducted": deducted}
        return order

    async def _cancel_for_stock(self, order: Order, error: InsufficientStockError) -> None:
        previous = order.get("updated_at")
        lines = OrderStateMachine(order).cancel(f"Cancelled: {error.message}")
        try:
            order = await self.orders.save(order, previous)
            await self.orders.restore_stock(order, lines)
        except Exception:
            logger.exception("Could not roll back order %s after stock rejection", order["order_number"])
            raise IntegrityGapError(order["order_number"], "stock rollback") from error
        logger.warning("Order %s cancelled: %s", order["order_number"], error.message)

    async def _record_progress(self, order: Order) -> None:
        try:
            await self.orders.save(order, order.get("updated_at"))
        except Exception:
            logger.exception("Could not record fulfillment progress for order %s", order["order_number"])

    async def _clear_cart(self, order: Order) -> Order:
        """Drop the ordered lines from the cart and persist the fulfillment block.

        Lines the customer added while checkout ran stay in the cart.
        """
        fulfillment = dict(order["fulfillment"])
        if not fulfillment.get("cart_cleared"):
            try:
                await self.carts.remove_lines(order["user_id"], fulfillment.get("cart_line_ids", []))
            except Exception as e:
                await self._record_progress(order)
                logger.exception("Cart clear failed for order %s", order["order_number"])
                raise IntegrityGapError(order["order_number"], "cart clearing") from e
            fulfillment["cart_cleared"] = True
            order["fulfillment"] = fulfillment

        try:
            return await self.orders.save(order, order.get("updated_at"))
        except Exception as e:
            logger.exception("Could not record fulfillment for order %s", order["order_number"])
            raise IntegrityGapError(order["order_number"], "fulfillment update") from e

    async def reconcile_order(self, order_id: str) -> Order:
        """Finish the checkout steps an order is still missing.

        Safe to call repeatedly: lines already deducted are skipped and a
        cleared cart is not touched again. A cancelled order instead gets
        back any stock it still holds. Refunded orders are left alone.
        """
        order = await self.orders.require_order(order_id)
        fulfillment = order.get("fulfillment") or {}
        deducted = set(fulfillment.get("stock_deducted", []))

        if order["status"] == "cancelled":
            held = [item for item in order["items"] if item["id"] in deducted]
            if held:
                logger.info("Reconciling cancelled order %s: restoring %d line(s)", order["order_number"], len(held))
            return await self.orders.restore_stock(order, held)
        if order["status"] == "refunded":
            return order

        missing = [item["id"] for item in order["items"] if item["id"] not in deducted]
        if not missing and fulfillment.get("cart_cleared"):
            return order
        if missing:
            logger.info("Reconciling order %s: deducting %d line(s)", order["order_number"], len(missing))
            order = await self._deduct_stock(order)
        return await self._clear_cart(order)


def get_checkout_service() -> CheckoutService:
    """Get checkout service instance."""
    return CheckoutService()
