"""Cart and order pricing.

Pure computation over line items, an optional coupon and a shipping
cost. Every amount is quantized to cents (ROUND_HALF_UP) before it is
combined, so ``total == subtotal - discount + tax + shipping`` holds
exactly for the stored values.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from src.core.config import Settings, get_settings

CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Any) -> Decimal:
    """Convert a stored or submitted amount to a cent-quantized Decimal."""
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def line_total(unit_price: Any, quantity: int) -> Decimal:
    """Price of ``quantity`` units at ``unit_price``."""
    return to_money(to_money(unit_price) * quantity)


@dataclass(frozen=True)
class PricingConfig:
    """Tax rate and shipping cost table used for pricing."""

    tax_rate: Decimal = Decimal("0.08")
    shipping_costs: Mapping[str, Decimal] = field(
        default_factory=lambda: {
            "standard": Decimal("5.99"),
            "express": Decimal("12.99"),
            "overnight": Decimal("24.99"),
        }
    )

    @classmethod
    def from_settings(cls, settings: Settings | None = None) -> "PricingConfig":
        settings = settings or get_settings()
        return cls(
            tax_rate=Decimal(str(settings.tax_rate)),
            shipping_costs={method: to_money(cost) for method, cost in settings.shipping_costs.items()},
        )

    @property
    def shipping_methods(self) -> tuple[str, ...]:
        return tuple(self.shipping_costs)

    def shipping_cost_for(self, method: str | None) -> Decimal:
        """Look up the cost of a shipping method; no method costs nothing.

        Raises:
            KeyError: If the method is not in the cost table.
        """
        if method is None:
            return ZERO
        return to_money(self.shipping_costs[method])


@dataclass(frozen=True)
class PricingTotals:
    """Derived financial breakdown."""

    subtotal: Decimal
    discount: Decimal
    tax: Decimal
    shipping: Decimal
    total: Decimal

    def as_record(self) -> dict[str, str]:
        """Money fields as numeric strings for JSONB storage."""
        return {
            "subtotal": str(self.subtotal),
            "discount": str(self.discount),
            "tax": str(self.tax),
            "shipping": str(self.shipping),
            "total": str(self.total),
        }


def compute_discount(subtotal: Decimal, coupon: Mapping[str, Any] | None) -> Decimal:
    """Discount granted by a coupon, clamped to ``[0, subtotal]``."""
    if not coupon:
        return ZERO
    amount = Decimal(str(coupon.get("discount") or 0))
    if coupon.get("discount_type", "percentage") == "percentage":
        discount = to_money(subtotal * amount / 100)
    else:
        discount = to_money(amount)
    return max(ZERO, min(discount, subtotal))


def compute_totals(
    line_items: Iterable[Mapping[str, Any]],
    coupon: Mapping[str, Any] | None,
    shipping_cost: Any,
    tax_rate: Any,
) -> PricingTotals:
    """Derive subtotal, discount, tax and total.

    Line totals are recomputed from ``unit_price * quantity`` rather
    than read from the items. Input is assumed to be validated by the
    caller (positive quantities, known discount kind).

    Args:
        line_items: Mappings with ``unit_price`` and ``quantity``.
        coupon: Optional mapping with ``discount`` and ``discount_type``.
        shipping_cost: Shipping amount added after tax.
        tax_rate: Flat rate applied to the discounted subtotal.

    Returns:
        PricingTotals: The breakdown.
    """
    subtotal = sum(
        (line_total(item["unit_price"], int(item["quantity"])) for item in line_items),
        ZERO,
    )
    discount = compute_discount(subtotal, coupon)
    tax = to_money((subtotal - discount) * Decimal(str(tax_rate)))
    shipping = to_money(shipping_cost)
    total = subtotal - discount + tax + shipping
    return PricingTotals(
        subtotal=subtotal,
        discount=discount,
        tax=tax,
        shipping=shipping,
        total=total,
    )
