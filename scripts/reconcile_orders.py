#!/usr/bin/env python
"""Finish checkouts that stopped after the order was written.

Usage:
    python scripts/reconcile_orders.py

Finds open orders whose cart was never cleared and replays the missing
stock and cart steps. Cancelled orders that still hold stock get it
returned. Safe to run repeatedly; intended for a cron job
or to run after a restart.
"""

import asyncio
import logging
import sys
from pathlib import Path
from typing import Any

from supabase import Client

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.api.middleware.error_handler import APIError
from src.core.supabase import get_supabase_client
from src.services.checkout_service import CheckoutService

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def find_orders(client: Client) -> list[dict[str, Any]]:
    """Orders with unfinished fulfillment.

    Open orders whose cart was never cleared, plus cancelled orders
    that still hold deducted stock.
    """
    unfinished = (
        client.table("orders")
        .select("id, order_number, created_at")
        .eq("fulfillment->>cart_cleared", "false")
        .not_.in_("status", ["cancelled", "refunded"])
        .order("created_at")
        .execute()
    )
    cancelled = (
        client.table("orders")
        .select("id, order_number, created_at")
        .eq("status", "cancelled")
        .neq("fulfillment->stock_deducted", "[]")
        .order("created_at")
        .execute()
    )

    orders: dict[str, dict[str, Any]] = {}
    for order in (unfinished.data or []) + (cancelled.data or []):
        orders.setdefault(order["id"], order)
    return sorted(orders.values(), key=lambda order: order.get("created_at") or "")


async def main() -> None:
    """Reconcile every order with unfinished fulfillment."""
    client = get_supabase_client()
    orders = find_orders(client)
    logger.info("Found %d order(s) to reconcile", len(orders))

    service = CheckoutService(client)
    failed = 0
    for order in orders:
        try:
            await service.reconcile_order(order["id"])
            logger.info("Reconciled %s", order["order_number"])
        except APIError as e:
            failed += 1
            logger.error("Could not reconcile %s: %s", order["order_number"], e.message)

    if failed:
        logger.warning("%d order(s) still need attention", failed)
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
