"""Pytest configuration and fixtures."""

import os
from collections.abc import Callable, Generator
from contextlib import ExitStack
from typing import Any
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

# Set test environment variables before importing application modules
os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("SUPABASE_URL", "https://test-project.supabase.co")
os.environ.setdefault("SUPABASE_SECRET_KEY", "test-secret-key")
os.environ.setdefault("JWT_SECRET", "test-jwt-secret-at-least-32-bytes-long")

from tests.fakes import FakeSupabase  # noqa: E402

CUSTOMER_ID = "64b7f0c2a1d3e4f5a6b7c8d9"
OTHER_CUSTOMER_ID = "64b7f0c2a1d3e4f5a6b7c8da"
ADMIN_ID = "64b7f0c2a1d3e4f5a6b7c8db"

# Modules that resolve the Supabase client lazily
SUPABASE_CLIENT_MODULES = (
    "src.core.supabase",
    "src.services.account_service",
    "src.services.cart_service",
    "src.services.catalog_service",
    "src.services.order_service",
)


@pytest.fixture(scope="session")
def test_settings() -> Generator[Any, None, None]:
    """Provide test settings with cleared cache.

    Yields:
        Settings: Test configuration settings.
    """
    from src.core.config import get_settings

    # Clear the cache to ensure fresh settings
    get_settings.cache_clear()

    settings = get_settings()
    yield settings

    # Clean up cache after tests
    get_settings.cache_clear()


@pytest.fixture
def fake_supabase() -> Generator[FakeSupabase, None, None]:
    """Provide an in-memory Supabase client wired into every service.

    Yields:
        FakeSupabase: The shared fake store.
    """
    fake = FakeSupabase()
    with ExitStack() as stack:
        for module in SUPABASE_CLIENT_MODULES:
            stack.enter_context(patch(f"{module}.get_supabase_client", return_value=fake))
        yield fake


def make_product(
    product_id: str,
    name: str = "Test Product",
    price: str = "10.00",
    stock: int = 10,
    **overrides: Any,
) -> dict[str, Any]:
    """Build a product row."""
    return {
        "id": product_id,
        "name": name,
        "sku": f"SKU-{product_id[-4:]}",
        "price": price,
        "stock": stock,
        "status": "active",
        "is_active": True,
        "images": [{"url": f"https://images.example.com/{product_id}.jpg"}],
        **overrides,
    }


@pytest.fixture
def product_factory() -> Callable[..., dict[str, Any]]:
    return make_product


@pytest.fixture
def token_factory() -> Callable[..., str]:
    """Sign test tokens with the configured secret."""
    from src.api.middleware.auth import encode_jwt

    def _make(user_id: str = CUSTOMER_ID, role: str | None = None, nested: bool = False) -> str:
        if nested:
            return encode_jwt({"user": {"id": user_id, "role": role or "customer"}})
        claims: dict[str, Any] = {"userId": user_id}
        if role:
            claims["role"] = role
        return encode_jwt(claims)

    return _make


@pytest.fixture
def accounts(fake_supabase: FakeSupabase) -> FakeSupabase:
    """Seed a customer, a second customer and an admin account."""
    fake_supabase.seed(
        "profiles",
        {"id": CUSTOMER_ID, "email": "customer@example.com", "role": "customer"},
        {"id": OTHER_CUSTOMER_ID, "email": "other@example.com", "role": "customer"},
        {"id": ADMIN_ID, "email": "admin@example.com", "role": "admin"},
    )
    return fake_supabase


@pytest.fixture
def customer_headers(accounts: FakeSupabase, token_factory: Callable[..., str]) -> dict[str, str]:
    return {"Authorization": f"Bearer {token_factory(CUSTOMER_ID)}"}


@pytest.fixture
def admin_headers(accounts: FakeSupabase, token_factory: Callable[..., str]) -> dict[str, str]:
    return {"Authorization": f"Bearer {token_factory(ADMIN_ID, role='admin')}"}


@pytest.fixture
def client(fake_supabase: FakeSupabase) -> Generator[TestClient, None, None]:
    """Provide a test client for the FastAPI application.

    Args:
        fake_supabase: In-memory Supabase fixture.

    Yields:
        TestClient: FastAPI test client.
    """
    from src.main import app

    with TestClient(app) as test_client:
        yield test_client
