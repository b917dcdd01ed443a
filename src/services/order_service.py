"""Order lifecycle: state machine, queries and state-changing actions."""

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any

from supabase import Client

from src.api.middleware.error_handler import (
    ConflictError,
    InvalidTransitionError,
    NotFoundError,
    RefundExceedsTotalError,
    ValidationError,
)
from src.core.supabase import get_supabase_client
from src.models.order import Order, OrderLineItem, RefundEvent, TimelineEvent
from src.services.catalog_service import CatalogService
from src.services.pricing_service import ZERO, to_money

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = "ORD"

# Forward moves an administrator may make with a plain status update.
STATUS_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"confirmed", "cancelled"}),
    "confirmed": frozenset({"processing", "cancelled"}),
    "processing": frozenset({"shipped"}),
    "shipped": frozenset({"delivered"}),
    "delivered": frozenset(),
    "cancelled": frozenset(),
    "refunded": frozenset(),
}

CANCELLABLE_STATUSES = frozenset({"pending", "confirmed"})

# Refund outcomes are only reachable through the refund action.
PAYMENT_TRANSITIONS: dict[str, frozenset[str]] = {
    "pending": frozenset({"paid", "failed"}),
    "failed": frozenset({"paid", "pending"}),
    "paid": frozenset(),
    "partially_refunded": frozenset(),
    "refunded": frozenset(),
}


def _now() -> datetime:
    return datetime.now(timezone.utc)


def format_order_number(day: date, sequence: int) -> str:
    """``ORD`` + YYMMDD + zero-padded daily sequence, e.g. ORD2610190001."""
    return f"{ORDER_NUMBER_PREFIX}{day:%y%m%d}{sequence:04d}"


class OrderStateMachine:
    """Controlled mutations of an order row.

    Every change appends to the timeline; nothing else in the row
    (items, addresses, pricing) is touched.
    """

    def __init__(self, order: Order) -> None:
        self.order = order

    @property
    def status(self) -> str:
        return self.order["status"]

    @property
    def payment_status(self) -> str:
        return self.order["payment_status"]

    def add_timeline_event(self, status: str, message: str = "") -> TimelineEvent:
        event: TimelineEvent = {"status": status, "message": message, "date": _now().isoformat()}
        self.order["timeline"] = [*self.order.get("timeline", []), event]
        return event

    def can_transition(self, new_status: str) -> bool:
        return new_status in STATUS_TRANSITIONS.get(self.status, frozenset())

    def transition(self, new_status: str, message: str = "") -> None:
        """Move to ``new_status`` if the current status allows it.

        Raises:
            InvalidTransitionError: If the move is not allowed.
        """
        if new_status == "cancelled":
            self.cancel(message)
            return
        if new_status == "delivered" and self.can_transition("delivered"):
            self.mark_delivered(message)
            return
        if not self.can_transition(new_status):
            raise InvalidTransitionError(self.status, new_status)
        self.order["status"] = new_status
        self.add_timeline_event(new_status, message)

    def cancel(self, message: str = "Order cancelled") -> list[OrderLineItem]:
        """Cancel the order.

        Returns:
            list: Lines whose stock was taken at checkout and must be
            put back.

        Raises:
            InvalidTransitionError: Unless the order is pending or confirmed.
        """
        if self.status not in CANCELLABLE_STATUSES:
            raise InvalidTransitionError(
                self.status,
                "cancelled",
                "Order cannot be cancelled at this stage",
            )
        self.order["status"] = "cancelled"
        self.add_timeline_event("cancelled", message)
        deducted = set(self.order.get("fulfillment", {}).get("stock_deducted", []))
        return [item for item in self.order["items"] if item["id"] in deducted]

    def add_shipping_tracking(
        self,
        tracking_number: str,
        carrier: str,
        estimated_delivery: datetime | None,
    ) -> None:
        """Record carrier tracking; a processing order becomes shipped."""
        if self.status not in ("processing", "shipped"):
            raise InvalidTransitionError(self.status, "shipped")
        shipping = dict(self.order.get("shipping") or {})
        shipping["tracking_number"] = tracking_number
        shipping["carrier"] = carrier
        shipping["estimated_delivery"] = estimated_delivery.isoformat() if estimated_delivery else None
        self.order["shipping"] = shipping
        self.order["status"] = "shipped"
        self.add_timeline_event("shipped", f"Tracking number: {tracking_number}")

    def mark_delivered(self, message: str = "") -> None:
        if not self.can_transition("delivered"):
            raise InvalidTransitionError(self.status, "delivered")
        shipping = dict(self.order.get("shipping") or {})
        shipping["actual_delivery"] = _now().isoformat()
        self.order["shipping"] = shipping
        self.order["status"] = "delivered"
        self.add_timeline_event("delivered", message)

    def update_payment_status(self, new_status: str) -> None:
        if new_status not in PAYMENT_TRANSITIONS.get(self.payment_status, frozenset()):
            raise InvalidTransitionError(
                self.payment_status,
                new_status,
                f"Cannot change payment status from {self.payment_status} to {new_status}",
            )
        self.order["payment_status"] = new_status
        self.add_timeline_event(f"payment_{new_status}")

    def process_refund(self, amount: Any, reason: str, method: str = "original_payment") -> RefundEvent:
        """Record a refund event.

        Refunds accumulate; their sum may not exceed the order total.

        Raises:
            InvalidTransitionError: If the payment is already fully refunded.
            ValidationError: If the amount is not positive.
            RefundExceedsTotalError: If the refund would exceed the total.
        """
        if self.payment_status == "refunded":
            raise InvalidTransitionError(self.status, "refunded", "Order is already fully refunded")
        amount = to_money(amount)
        if amount <= ZERO:
            raise ValidationError(
                "Refund amount must be positive",
                details=[{"loc": ["body", "amount"], "msg": str(amount), "type": "value_error"}],
            )

        order_total = to_money(self.order["pricing"]["total"])
        already_refunded = to_money(self.order.get("total_refunded") or ZERO)
        if already_refunded + amount > order_total:
            raise RefundExceedsTotalError()

        event: RefundEvent = {
            "amount": str(amount),
            "reason": reason,
            "method": method,
            "processed_at": _now().isoformat(),
        }
        total_refunded = already_refunded + amount
        self.order["refunds"] = [*self.order.get("refunds", []), event]
        self.order["refund"] = event
        self.order["total_refunded"] = str(total_refunded)
        self.order["status"] = "refunded"
        self.order["payment_status"] = "refunded" if total_refunded == order_total else "partially_refunded"
        self.add_timeline_event("refunded", f"Refund amount: ${amount}, Reason: {reason}")
        return event

    def summary(self) -> dict[str, Any]:
        return {
            "order_number": self.order["order_number"],
            "status": self.status,
            "payment_status": self.payment_status,
            "total": self.order["pricing"]["total"],
            "item_count": sum(item["quantity"] for item in self.order["items"]),
            "created_at": self.order.get("created_at"),
            "estimated_delivery": (self.order.get("shipping") or {}).get("estimated_delivery"),
        }


# Columns a state transition may write.
MUTABLE_FIELDS = (
    "status",
    "payment_status",
    "shipping",
    "timeline",
    "refunds",
    "refund",
    "total_refunded",
    "fulfillment",
)


class OrderService:
    """Service for order queries and state transitions."""

    def __init__(
        self,
        supabase_client: Client | None = None,
        catalog_service: CatalogService | None = None,
    ) -> None:
        """Initialize order service.

        Args:
            supabase_client: Optional Supabase client for testing.
            catalog_service: Optional catalog service for testing.
        """
        self._supabase_client = supabase_client
        self._catalog_service = catalog_service

    @property
    def supabase(self) -> Client:
        """Get Supabase client."""
        if self._supabase_client is None:
            self._supabase_client = get_supabase_client()
        return self._supabase_client

    @property
    def catalog(self) -> CatalogService:
        if self._catalog_service is None:
            self._catalog_service = CatalogService(self._supabase_client)
        return self._catalog_service

    async def next_order_number(self, created_at: datetime | None = None) -> str:
        """Allocate the next order number for the local day of ``created_at``.

        The per-day sequence is an atomic counter in the store, so
        concurrent checkouts never share a number.
        """
        local_day = (created_at or _now()).astimezone().date()
        response = self.supabase.rpc("next_order_sequence", {"p_day": local_day.isoformat()}).execute()
        return format_order_number(local_day, int(response.data))

    async def create_order(self, order: Order) -> Order:
        response = self.supabase.table("orders").insert(order).execute()
        created = response.data[0]
        logger.info("Created order %s for user %s", created["order_number"], created["user_id"])
        return created

    async def get_order(self, order_id: str) -> Order | None:
        """Get an order by ID.

        Args:
            order_id: The order's ID.

        Returns:
            Order | None: The order data or None if not found.
        """
        response = (
            self.supabase.table("orders")
            .select("*")
            .eq("id", order_id)
            .maybe_single()
            .execute()
        )
        return response.data if response and response.data else None

    async def require_order(self, order_id: str, user_id: str | None = None) -> Order:
        """Get an order, optionally restricted to its owner.

        Raises:
            NotFoundError: If missing, or owned by someone else.
        """
        order = await self.get_order(order_id)
        if not order or (user_id is not None and order["user_id"] != user_id):
            raise NotFoundError("Order not found")
        return order

    async def list_orders(
        self,
        user_id: str | None = None,
        status: str | None = None,
        payment_status: str | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Order], int]:
        """List orders newest first.

        Returns:
            tuple: (orders on this page, total matching orders)
        """
        query = self.supabase.table("orders").select("*", count="exact")
        if user_id is not None:
            query = query.eq("user_id", user_id)
        if status:
            query = query.eq("status", status)
        if payment_status:
            query = query.eq("payment_status", payment_status)

        start = (page - 1) * limit
        response = (
            query.order("created_at", desc=True)
            .range(start, start + limit - 1)
            .execute()
        )
        return response.data or [], response.count or 0

    async def save(self, order: Order, previous_updated_at: str | None) -> Order:
        """Persist the mutable fields of an order.

        The write only applies if the row was not updated since it was
        read, so concurrent transitions cannot drop timeline entries.

        Raises:
            ConflictError: If the row changed in the meantime.
        """
        update = {field: order[field] for field in MUTABLE_FIELDS if field in order}
        update["updated_at"] = _now().isoformat()

        query = self.supabase.table("orders").update(update).eq("id", order["id"])
        if previous_updated_at is not None:
            query = query.eq("updated_at", previous_updated_at)
        response = query.execute()
        if not response.data:
            raise ConflictError("Order was modified concurrently, please retry")
        return response.data[0]

    async def restore_stock(self, order: Order, lines: list[OrderLineItem]) -> Order:
        """Put back stock for ``lines`` and drop them from ``stock_deducted``.

        Progress is saved even if a restore fails part way, so a retry
        never restores the same line twice.
        """
        if not lines:
            return order
        restored: set[str] = set()
        try:
            for item in lines:
                await self.catalog.restore_stock(item["product_id"], item["quantity"])
                restored.add(item["id"])
        finally:
            fulfillment = dict(order.get("fulfillment") or {})
            fulfillment["stock_deducted"] = [
                line_id for line_id in fulfillment.get("stock_deducted", []) if line_id not in restored
            ]
            order["fulfillment"] = fulfillment
            order = await self.save(order, order.get("updated_at"))
        return order

    async def cancel_order(self, order_id: str, user_id: str | None = None, message: str | None = None) -> Order:
        """Cancel a pending or confirmed order and restore its stock.

        Args:
            order_id: Order to cancel.
            user_id: Owner restriction for customer cancellations.
            message: Timeline message.
        """
        order = await self.require_order(order_id, user_id)
        previous = order.get("updated_at")
        lines = OrderStateMachine(order).cancel(
            message or ("Order cancelled by customer" if user_id else "Order cancelled")
        )
        order = await self.save(order, previous)
        order = await self.restore_stock(order, lines)
        logger.info("Cancelled order %s, restored %d line(s)", order["order_number"], len(lines))
        return order

    async def update_status(self, order_id: str, status: str, message: str | None = None) -> Order:
        """Administrative status change.

        Raises:
            InvalidTransitionError: If the change is not allowed, or is a
                refund (which must go through ``process_refund``).
        """
        if status == "cancelled":
            return await self.cancel_order(order_id, message=message)

        order = await self.require_order(order_id)
        if status == "refunded":
            raise InvalidTransitionError(order["status"], status, "Use the refund action to refund an order")

        previous = order.get("updated_at")
        OrderStateMachine(order).transition(status, message or "")
        order = await self.save(order, previous)
        logger.info("Order %s moved to %s", order["order_number"], status)
        return order

    async def update_shipping(
        self,
        order_id: str,
        tracking_number: str,
        carrier: str,
        estimated_delivery: datetime | None,
    ) -> Order:
        order = await self.require_order(order_id)
        previous = order.get("updated_at")
        OrderStateMachine(order).add_shipping_tracking(tracking_number, carrier, estimated_delivery)
        return await self.save(order, previous)

    async def update_payment_status(self, order_id: str, payment_status: str) -> Order:
        order = await self.require_order(order_id)
        previous = order.get("updated_at")
        OrderStateMachine(order).update_payment_status(payment_status)
        return await self.save(order, previous)

    async def process_refund(
        self,
        order_id: str,
        amount: Decimal,
        reason: str,
        method: str = "original_payment",
    ) -> Order:
        order = await self.require_order(order_id)
        previous = order.get("updated_at")
        event = OrderStateMachine(order).process_refund(amount, reason, method)
        order = await self.save(order, previous)
        logger.info("Refunded %s on order %s (%s)", event["amount"], order["order_number"], reason)
        return order

    async def get_tracking(self, order_id: str, user_id: str) -> dict[str, Any]:
        order = await self.require_order(order_id, user_id)
        shipping = order.get("shipping") or {}
        return {
            "order_number": order["order_number"],
            "status": order["status"],
            "tracking_number": shipping.get("tracking_number"),
            "carrier": shipping.get("carrier"),
            "estimated_delivery": shipping.get("estimated_delivery"),
            "timeline": order.get("timeline", []),
        }


def get_order_service() -> OrderService:
    """Get order service instance."""
    return OrderService()
