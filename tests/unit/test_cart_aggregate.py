"""Unit tests for CartAggregate."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from src.api.middleware.error_handler import InvalidQuantityError, ItemNotFoundError, ValidationError
from src.services.cart_service import CartAggregate
from src.services.pricing_service import PricingConfig

PRODUCT_A = "aaaaaaaaaaaaaaaaaaaaaaaa"
PRODUCT_B = "bbbbbbbbbbbbbbbbbbbbbbbb"


@pytest.fixture
def cart() -> CartAggregate:
    record = CartAggregate.new_record("temp_abc123", retention_days=30)
    return CartAggregate(record, PricingConfig())


def assert_totals_consistent(cart: CartAggregate) -> None:
    record = cart.record
    assert Decimal(record["total"]) == (
        Decimal(record["subtotal"]) - Decimal(record["discount"]) + Decimal(record["tax"]) + Decimal(record["shipping_cost"])
    )
    for item in cart.items:
        assert Decimal(item["line_total"]) == Decimal(item["unit_price"]) * item["quantity"]


class TestNewRecord:
    def test_blank_cart(self, cart: CartAggregate) -> None:
        assert cart.is_empty()
        assert cart.item_count() == 0
        assert cart.record["total"] == "0.00"
        assert cart.record["version"] == 0
        assert not cart.is_expired()


class TestAddItem:
    """Tests for CartAggregate.add_item."""

    def test_adds_new_line_with_catalog_price(self, cart: CartAggregate) -> None:
        item = cart.add_item(PRODUCT_A, 2, unit_price="10.00")

        assert item["unit_price"] == "10.00"
        assert item["line_total"] == "20.00"
        assert cart.record["subtotal"] == "20.00"
        assert cart.record["tax"] == "1.60"
        assert cart.record["total"] == "21.60"

    def test_same_product_merges_quantity(self, cart: CartAggregate) -> None:
        cart.add_item(PRODUCT_A, 1, unit_price="10.00")
        cart.add_item(PRODUCT_A, 2, unit_price="10.00")

        assert len(cart.items) == 1
        assert cart.items[0]["quantity"] == 3
        assert cart.items[0]["line_total"] == "30.00"

    def test_merge_keeps_original_price(self, cart: CartAggregate) -> None:
        cart.add_item(PRODUCT_A, 1, unit_price="10.00")
        cart.add_item(PRODUCT_A, 1, unit_price="12.00")

        assert cart.items[0]["unit_price"] == "10.00"
        assert cart.record["subtotal"] == "20.00"

    def test_different_variant_values_get_separate_lines(self, cart: CartAggregate) -> None:
        cart.add_item(PRODUCT_A, 1, unit_price="10.00", variant={"name": "size", "value": "M"})
        cart.add_item(PRODUCT_A, 1, unit_price="10.00", variant={"name": "size", "value": "L"})
        cart.add_item(PRODUCT_A, 1, unit_price="10.00", variant={"name": "size", "value": "M"})

        assert len(cart.items) == 2
        assert [item["quantity"] for item in cart.items] == [2, 1]

    def test_variant_price_wins_over_catalog_price(self, cart: CartAggregate) -> None:
        item = cart.add_item(PRODUCT_A, 1, unit_price="10.00", variant={"name": "size", "value": "XL", "price": "12.5"})

        assert item["unit_price"] == "12.50"
        assert item["variant"]["price"] == "12.50"

    @pytest.mark.parametrize("quantity", [0, -1, 1.5, "2", True])
    def test_rejects_non_positive_integer_quantity(self, cart: CartAggregate, quantity: object) -> None:
        with pytest.raises(InvalidQuantityError):
            cart.add_item(PRODUCT_A, quantity, unit_price="10.00")  # type: ignore[arg-type]
        assert cart.is_empty()

    def test_new_line_without_price_is_rejected(self, cart: CartAggregate) -> None:
        with pytest.raises(ValueError):
            cart.add_item(PRODUCT_A, 1)


class TestUpdateAndRemove:
    def test_update_quantity(self, cart: CartAggregate) -> None:
        item = cart.add_item(PRODUCT_A, 1, unit_price="10.00")
        cart.update_item_quantity(item["id"], 4)

        assert cart.items[0]["quantity"] == 4
        assert cart.record["subtotal"] == "40.00"
        assert_totals_consistent(cart)

    def test_update_quantity_floors_at_one(self, cart: CartAggregate) -> None:
        item = cart.add_item(PRODUCT_A, 3, unit_price="10.00")
        cart.update_item_quantity(item["id"], 0)

        assert cart.items[0]["quantity"] == 1

    def test_update_missing_item(self, cart: CartAggregate) -> None:
        with pytest.raises(ItemNotFoundError):
            cart.update_item_quantity("missing", 2)

    def test_remove_item(self, cart: CartAggregate) -> None:
        item = cart.add_item(PRODUCT_A, 1, unit_price="10.00")
        cart.add_item(PRODUCT_B, 1, unit_price="5.00")

        assert cart.remove_item(item["id"]) is True
        assert [i["product_id"] for i in cart.items] == [PRODUCT_B]
        assert cart.record["subtotal"] == "5.00"

    def test_remove_absent_item_is_noop(self, cart: CartAggregate) -> None:
        cart.add_item(PRODUCT_A, 2, unit_price="10.00")
        before = dict(cart.record)

        assert cart.remove_item("does-not-exist") is False
        assert cart.record == before


class TestCouponAndShipping:
    def test_apply_coupon_recomputes(self, cart: CartAggregate) -> None:
        cart.add_item(PRODUCT_A, 2, unit_price="10.00")
        cart.add_item(PRODUCT_B, 1, unit_price="25.00")
        cart.apply_coupon("SAVE10", 10, "percentage")
        cart.set_shipping_method("standard")

        assert cart.record["subtotal"] == "45.00"
        assert cart.record["discount"] == "4.50"
        assert cart.record["tax"] == "3.24"
        assert cart.record["shipping_cost"] == "5.99"
        assert cart.record["total"] == "49.73"

    def test_second_coupon_replaces_first(self, cart: CartAggregate) -> None:
        cart.add_item(PRODUCT_A, 1, unit_price="100.00")
        cart.apply_coupon("SAVE10", 10, "percentage")
        cart.apply_coupon("FIVE", 5, "fixed")

        assert cart.record["coupon"]["code"] == "FIVE"
        assert cart.record["discount"] == "5.00"

    def test_remove_coupon(self, cart: CartAggregate) -> None:
        cart.add_item(PRODUCT_A, 1, unit_price="100.00")
        cart.apply_coupon("SAVE10", 10, "percentage")
        cart.remove_coupon()

        assert cart.record["coupon"] is None
        assert cart.record["discount"] == "0.00"

    def test_unknown_discount_type(self, cart: CartAggregate) -> None:
        with pytest.raises(ValueError):
            cart.apply_coupon("BOGUS", 10, "bogo")

    def test_shipping_cost_override(self, cart: CartAggregate) -> None:
        cart.set_shipping_method("express", cost="0")
        assert cart.record["shipping_method"] == "express"
        assert cart.record["shipping_cost"] == "0.00"

    def test_unknown_shipping_method(self, cart: CartAggregate) -> None:
        with pytest.raises(ValidationError):
            cart.set_shipping_method("teleport")

    def test_set_shipping_address(self, cart: CartAggregate) -> None:
        address = {"type": "home", "street": "1 Main St", "city": "Springfield", "state": "IL", "zip_code": "62701", "country": "United States"}
        cart.set_shipping_address(address)
        assert cart.record["shipping_address"] == address


class TestClearAndExpiry:
    def test_clear_empties_items_and_coupon(self, cart: CartAggregate) -> None:
        cart.add_item(PRODUCT_A, 2, unit_price="10.00")
        cart.apply_coupon("SAVE10", 10, "percentage")
        cart.clear()

        assert cart.is_empty()
        assert cart.record["coupon"] is None
        assert cart.record["subtotal"] == "0.00"

    def test_item_count_sums_quantities(self, cart: CartAggregate) -> None:
        cart.add_item(PRODUCT_A, 2, unit_price="10.00")
        cart.add_item(PRODUCT_B, 3, unit_price="1.00")
        assert cart.item_count() == 5

    def test_is_expired(self, cart: CartAggregate) -> None:
        cart.record["expires_at"] = (datetime.now(timezone.utc) - timedelta(seconds=1)).isoformat()
        assert cart.is_expired()

    def test_is_expired_accepts_z_suffix(self, cart: CartAggregate) -> None:
        cart.record["expires_at"] = "2000-01-01T00:00:00Z"
        assert cart.is_expired()


def test_totals_always_reflect_items(cart: CartAggregate) -> None:
    a = cart.add_item(PRODUCT_A, 3, unit_price="3.33")
    assert_totals_consistent(cart)
    cart.add_item(PRODUCT_B, 1, unit_price="0.99")
    assert_totals_consistent(cart)
    cart.apply_coupon("FIVE", "1.50", "fixed")
    assert_totals_consistent(cart)
    cart.update_item_quantity(a["id"], 7)
    assert_totals_consistent(cart)
    cart.set_shipping_method("overnight")
    assert_totals_consistent(cart)
    cart.remove_item(a["id"])
    assert_totals_consistent(cart)
