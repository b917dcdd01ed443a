#!/usr/bin/env python
"""Seed sample products for local development.

Usage:
    python scripts/seed_products.py

Upserts a handful of products by SKU, so running it twice is safe.
"""

import logging
import sys
from pathlib import Path

# Add the project root to the path
sys.path.insert(0, str(Path(__file__).parent.parent))

from src.core.supabase import get_supabase_client

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

SAMPLE_PRODUCTS = [
    {
        "id": "64b7f0c2a1d3e4f5a6b7c801",
        "name": "Wireless Bluetooth Headphones",
        "sku": "AUDIO-HP-001",
        "price": "99.99",
        "stock": 50,
        "images": [{"url": "https://images.example.com/headphones.jpg"}],
    },
    {
        "id": "64b7f0c2a1d3e4f5a6b7c802",
        "name": "Organic Cotton T-Shirt",
        "sku": "APPAREL-TS-002",
        "price": "24.99",
        "stock": 120,
        "images": [{"url": "https://images.example.com/tshirt.jpg"}],
    },
    {
        "id": "64b7f0c2a1d3e4f5a6b7c803",
        "name": "Stainless Steel Water Bottle",
        "sku": "HOME-WB-003",
        "price": "19.50",
        "stock": 75,
        "images": [],
    },
    {
        "id": "64b7f0c2a1d3e4f5a6b7c804",
        "name": "Mechanical Keyboard",
        "sku": "TECH-KB-004",
        "price": "149.00",
        "stock": 5,
        "images": [{"url": "https://images.example.com/keyboard.jpg"}],
    },
]


def main() -> None:
    """Upsert the sample products."""
    try:
        client = get_supabase_client()
        rows = [{**product, "status": "active", "is_active": True} for product in SAMPLE_PRODUCTS]
        result = client.table("products").upsert(rows, on_conflict="sku").execute()
        logger.info("Seeded %d products", len(result.data or []))
    except Exception as e:
        logger.error(f"Seeding failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
