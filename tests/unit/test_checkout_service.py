"""Unit tests for CheckoutService."""

import re
from collections.abc import Callable
from typing import Any

import pytest

from src.api.middleware.error_handler import (
    EmptyCartError,
    InsufficientStockError,
    IntegrityGapError,
    ProductUnavailableError,
    ValidationError,
)
from src.services.cart_service import CartService
from src.services.checkout_service import CheckoutService
from tests.conftest import CUSTOMER_ID
from tests.fakes import FakeSupabase

PRODUCT_A = "aaaaaaaaaaaaaaaaaaaaaaaa"
PRODUCT_B = "bbbbbbbbbbbbbbbbbbbbbbbb"

ADDRESS = {
    "first_name": "Ada",
    "last_name": "Lovelace",
    "email": "ada@example.com",
    "phone": None,
    "street": "12 Analytical Way",
    "city": "London",
    "state": "LDN",
    "zip_code": "N1 9GU",
    "country": "United Kingdom",
}


@pytest.fixture
def store(fake_supabase: FakeSupabase, product_factory: Callable[..., dict[str, Any]]) -> FakeSupabase:
    fake_supabase.seed(
        "products",
        product_factory(PRODUCT_A, name="Widget", price="10.00", stock=5),
        product_factory(PRODUCT_B, name="Gadget", price="25.00", stock=2),
    )
    return fake_supabase


@pytest.fixture
def carts(store: FakeSupabase) -> CartService:
    return CartService(store)


@pytest.fixture
def service(store: FakeSupabase) -> CheckoutService:
    return CheckoutService(store)


async def fill_cart(carts: CartService, coupon: str | None = "SAVE10") -> None:
    await carts.add_item(CUSTOMER_ID, PRODUCT_A, 2)
    await carts.add_item(CUSTOMER_ID, PRODUCT_B, 1)
    if coupon:
        await carts.apply_coupon(CUSTOMER_ID, coupon)


async def place(service: CheckoutService, shipping_method: str = "standard") -> dict[str, Any]:
    return await service.checkout(
        user_id=CUSTOMER_ID,
        payment_method="card",
        billing_address=ADDRESS,
        shipping_address=ADDRESS,
        shipping_method=shipping_method,
        notes="Leave at the door",
    )


def reject_product(store: FakeSupabase, product_id: str, error: Exception | None = None) -> None:
    """Make the store refuse (or fail) stock decrements for one product."""
    decrement = store._rpc_decrement_product_stock

    def _decrement(p_product_id: str, p_quantity: int) -> int | None:
        if p_product_id == product_id:
            if error is not None:
                raise error
            return None
        return decrement(p_product_id, p_quantity)

    store.rpc_overrides["decrement_product_stock"] = _decrement


class TestCheckout:
    """Tests for a successful checkout."""

    @pytest.mark.asyncio
    async def test_worked_example(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        """Test pricing, stock and cart effects of a two-line checkout with a coupon."""
        await fill_cart(carts)

        order = await place(service)

        assert order["pricing"] == {
            "subtotal": "45.00",
            "discount": "4.50",
            "tax": "3.24",
            "shipping": "5.99",
            "total": "49.73",
        }
        assert order["status"] == "pending"
        assert order["payment_status"] == "pending"
        assert order["coupon"]["code"] == "SAVE10"
        assert order["notes"] == {"customer": "Leave at the door"}
        assert store.row("products", id=PRODUCT_A)["stock"] == 3
        assert store.row("products", id=PRODUCT_B)["stock"] == 1
        assert store.row("carts", customer_key=CUSTOMER_ID)["items"] == []

    @pytest.mark.asyncio
    async def test_records_fulfillment_progress(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        await fill_cart(carts)

        order = await place(service)
        stored = store.row("orders", id=order["id"])

        assert sorted(stored["fulfillment"]["stock_deducted"]) == sorted(item["id"] for item in order["items"])
        assert stored["fulfillment"]["cart_cleared"] is True

    @pytest.mark.asyncio
    async def test_snapshots_lines(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        """Test that order lines carry product details frozen at checkout."""
        await carts.add_item(CUSTOMER_ID, PRODUCT_A, 1, {"name": "size", "value": "XL", "price": "12.00"})

        order = await place(service)
        store.tables["products"][0]["name"] = "Renamed Widget"

        item = store.row("orders", id=order["id"])["items"][0]
        assert item["name"] == "Widget"
        assert item["sku"] == "SKU-aaaa"
        assert item["unit_price"] == "12.00"
        assert item["variant"] == {"name": "size", "value": "XL"}
        assert item["image"] == f"https://images.example.com/{PRODUCT_A}.jpg"

    @pytest.mark.asyncio
    async def test_timeline_starts_with_placement(self, service: CheckoutService, carts: CartService) -> None:
        await fill_cart(carts, coupon=None)
        order = await place(service)

        assert [event["status"] for event in order["timeline"]] == ["pending"]
        assert order["timeline"][0]["message"] == "Order placed"

    @pytest.mark.asyncio
    async def test_order_numbers_increase(self, service: CheckoutService, carts: CartService) -> None:
        """Test that consecutive orders get strictly increasing numbers."""
        await carts.add_item(CUSTOMER_ID, PRODUCT_A, 1)
        first = await place(service)
        await carts.add_item(CUSTOMER_ID, PRODUCT_A, 1)
        second = await place(service)

        assert re.fullmatch(r"ORD\d{6}\d{4}", first["order_number"])
        assert first["order_number"].endswith("0001")
        assert second["order_number"] > first["order_number"]


class TestCheckoutRejections:
    """Tests for checkouts refused before the order is written."""

    @pytest.mark.asyncio
    async def test_missing_cart_writes_nothing(self, service: CheckoutService, store: FakeSupabase) -> None:
        with pytest.raises(EmptyCartError):
            await place(service)
        assert store.writes() == []

    @pytest.mark.asyncio
    async def test_emptied_cart(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        await fill_cart(carts)
        await carts.clear_cart(CUSTOMER_ID)

        with pytest.raises(EmptyCartError):
            await place(service)
        assert store.rows("orders") == []

    @pytest.mark.asyncio
    async def test_insufficient_stock_changes_nothing(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        """Test that a stock shortfall found up front leaves stock, cart and orders alone."""
        await fill_cart(carts)
        store.tables["products"][1]["stock"] = 0
        writes_before = len(store.writes())

        with pytest.raises(InsufficientStockError):
            await place(service)

        assert len(store.writes()) == writes_before
        assert store.rows("orders") == []
        assert store.row("products", id=PRODUCT_A)["stock"] == 5
        assert len(store.row("carts", customer_key=CUSTOMER_ID)["items"]) == 2

    @pytest.mark.asyncio
    async def test_stock_summed_across_variants(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        """Test that two variants of one product are checked against a shared stock."""
        await carts.add_item(CUSTOMER_ID, PRODUCT_A, 3, {"name": "size", "value": "M"})
        await carts.add_item(CUSTOMER_ID, PRODUCT_A, 2, {"name": "size", "value": "L"})
        store.tables["products"][0]["stock"] = 4

        with pytest.raises(InsufficientStockError):
            await place(service)
        assert store.rows("orders") == []

    @pytest.mark.asyncio
    async def test_inactive_product(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        await fill_cart(carts)
        store.tables["products"][1]["status"] = "archived"

        with pytest.raises(ProductUnavailableError):
            await place(service)

    @pytest.mark.asyncio
    async def test_unknown_shipping_method(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        await fill_cart(carts)
        with pytest.raises(ValidationError):
            await place(service, shipping_method="teleport")
        assert store.rows("orders") == []


class TestCheckoutCompensation:
    """Tests for failures after the order row exists."""

    @pytest.mark.asyncio
    async def test_rejected_decrement_cancels_and_restores(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        """Test that a store-side stock rejection cancels the order and returns taken stock."""
        await fill_cart(carts)
        reject_product(store, PRODUCT_B)

        with pytest.raises(InsufficientStockError):
            await place(service)

        order = store.rows("orders")[0]
        assert order["status"] == "cancelled"
        assert order["fulfillment"]["stock_deducted"] == []
        assert order["timeline"][-1]["status"] == "cancelled"
        assert store.row("products", id=PRODUCT_A)["stock"] == 5
        assert store.row("products", id=PRODUCT_B)["stock"] == 2
        assert len(store.row("carts", customer_key=CUSTOMER_ID)["items"]) == 2

    @pytest.mark.asyncio
    async def test_decrement_failure_reports_integrity_gap(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        """Test that a failing store leaves a recorded, reconcilable order."""
        await fill_cart(carts)
        reject_product(store, PRODUCT_B, RuntimeError("connection reset"))

        with pytest.raises(IntegrityGapError) as exc_info:
            await place(service)

        order = store.rows("orders")[0]
        assert exc_info.value.order_number == order["order_number"]
        assert exc_info.value.step == "stock decrement"
        assert len(order["fulfillment"]["stock_deducted"]) == 1
        assert order["fulfillment"]["cart_cleared"] is False
        assert store.row("products", id=PRODUCT_A)["stock"] == 3

    @pytest.mark.asyncio
    async def test_cart_failure_reports_integrity_gap(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        await fill_cart(carts)
        store.table_errors[("carts", "update")] = RuntimeError("carts unavailable")

        with pytest.raises(IntegrityGapError) as exc_info:
            await place(service)

        order = store.rows("orders")[0]
        assert exc_info.value.step == "cart clearing"
        assert len(order["fulfillment"]["stock_deducted"]) == 2
        assert order["fulfillment"]["cart_cleared"] is False


class TestReconcile:
    """Tests for CheckoutService.reconcile_order."""

    @pytest.mark.asyncio
    async def test_finishes_interrupted_checkout(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        await fill_cart(carts)
        reject_product(store, PRODUCT_B, RuntimeError("connection reset"))
        with pytest.raises(IntegrityGapError):
            await place(service)
        store.rpc_overrides.clear()
        order_id = store.rows("orders")[0]["id"]

        order = await service.reconcile_order(order_id)

        assert len(order["fulfillment"]["stock_deducted"]) == 2
        assert order["fulfillment"]["cart_cleared"] is True
        assert store.row("products", id=PRODUCT_A)["stock"] == 3
        assert store.row("products", id=PRODUCT_B)["stock"] == 1
        assert store.row("carts", customer_key=CUSTOMER_ID)["items"] == []

    @pytest.mark.asyncio
    async def test_is_idempotent(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        """Test that reconciling a complete order twice changes nothing."""
        await fill_cart(carts)
        order = await place(service)
        writes_before = len(store.writes())

        await service.reconcile_order(order["id"])
        await service.reconcile_order(order["id"])

        assert len(store.writes()) == writes_before
        assert store.row("products", id=PRODUCT_A)["stock"] == 3

    @pytest.mark.asyncio
    async def test_keeps_items_added_after_checkout(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        await fill_cart(carts)
        store.table_errors[("carts", "update")] = RuntimeError("carts unavailable")
        with pytest.raises(IntegrityGapError):
            await place(service)
        del store.table_errors[("carts", "update")]
        await carts.add_item(CUSTOMER_ID, PRODUCT_A, 1, {"name": "color", "value": "red"})

        await service.reconcile_order(store.rows("orders")[0]["id"])

        items = store.row("carts", customer_key=CUSTOMER_ID)["items"]
        assert [item["variant"]["value"] for item in items] == ["red"]

    @pytest.mark.asyncio
    async def test_checkout_keeps_line_added_while_running(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        """Test that a line added from another session mid-checkout is not lost."""
        await carts.add_item(CUSTOMER_ID, PRODUCT_A, 2)
        decrement = store._rpc_decrement_product_stock
        late_line = {
            "id": "late-line",
            "product_id": PRODUCT_B,
            "quantity": 1,
            "unit_price": "25.00",
            "line_total": "25.00",
            "variant": None,
            "added_at": "2026-10-19T09:00:00+00:00",
        }

        def _decrement_and_add(p_product_id: str, p_quantity: int) -> int | None:
            cart = next(row for row in store.tables["carts"] if row["customer_key"] == CUSTOMER_ID)
            if all(item["id"] != "late-line" for item in cart["items"]):
                cart["items"].append(dict(late_line))
            return decrement(p_product_id, p_quantity)

        store.rpc_overrides["decrement_product_stock"] = _decrement_and_add

        order = await place(service)

        assert [item["product_id"] for item in order["items"]] == [PRODUCT_A]
        items = store.row("carts", customer_key=CUSTOMER_ID)["items"]
        assert [item["id"] for item in items] == ["late-line"]

    @pytest.mark.asyncio
    async def test_returns_stock_held_by_cancelled_order(self, service: CheckoutService, carts: CartService, store: FakeSupabase) -> None:
        """Test that a cancelled order still holding stock gives it back."""
        await fill_cart(carts)
        order = await place(service)
        store.tables["orders"][0]["status"] = "cancelled"

        reconciled = await service.reconcile_order(order["id"])

        assert reconciled["fulfillment"]["stock_deducted"] == []
        assert store.row("products", id=PRODUCT_A)["stock"] == 5
        assert store.row("products", id=PRODUCT_B)["stock"] == 2
