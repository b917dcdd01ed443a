"""Unit tests for FastAPI dependency injection functions."""

from collections.abc import Callable

import pytest
from starlette.requests import Request

from src.api.deps import get_admin_user, get_current_user, get_optional_user, get_request_token
from src.api.middleware.error_handler import AuthenticationError, AuthorizationError
from src.schemas.auth import UserContext
from tests.fakes import FakeSupabase

CUSTOMER_ID = "64b7f0c2a1d3e4f5a6b7c8d9"
ADMIN_ID = "64b7f0c2a1d3e4f5a6b7c8db"
UNKNOWN_ID = "ffffffffffffffffffffffff"


def make_request(cookie: str | None = None) -> Request:
    """Build a bare request, optionally carrying a Cookie header."""
    headers = [(b"cookie", cookie.encode())] if cookie else []
    return Request({"type": "http", "method": "GET", "path": "/", "headers": headers})


class TestGetRequestToken:
    """Tests for token extraction."""

    def test_bearer_header(self) -> None:
        assert get_request_token(make_request(), "Bearer abc") == "abc"

    def test_header_wins_over_cookie(self) -> None:
        assert get_request_token(make_request("token=from-cookie"), "Bearer from-header") == "from-header"

    def test_cookie_fallback(self) -> None:
        assert get_request_token(make_request("token=from-cookie"), None) == "from-cookie"

    def test_nothing(self) -> None:
        assert get_request_token(make_request(), None) is None

    def test_malformed_header(self) -> None:
        """Test that a header without the Bearer scheme is rejected."""
        with pytest.raises(AuthenticationError) as exc_info:
            get_request_token(make_request(), "Token abc")
        assert "Invalid authorization header format" in exc_info.value.message


class TestGetCurrentUser:
    """Tests for get_current_user dependency."""

    @pytest.mark.asyncio
    async def test_extracts_user_context(self, accounts: FakeSupabase, token_factory: Callable[..., str]) -> None:
        """Test get_current_user returns the caller's context."""
        user = await get_current_user(make_request(), f"Bearer {token_factory(CUSTOMER_ID)}")

        assert isinstance(user, UserContext)
        assert user.user_id == CUSTOMER_ID
        assert not user.is_admin

    @pytest.mark.asyncio
    async def test_reads_cookie(self, accounts: FakeSupabase, token_factory: Callable[..., str]) -> None:
        user = await get_current_user(make_request(f"token={token_factory(CUSTOMER_ID)}"), None)
        assert user.user_id == CUSTOMER_ID

    @pytest.mark.asyncio
    async def test_missing_token(self, accounts: FakeSupabase) -> None:
        """Test get_current_user raises 401 without credentials."""
        with pytest.raises(AuthenticationError) as exc_info:
            await get_current_user(make_request(), None)

        assert exc_info.value.status_code == 401
        assert exc_info.value.message == "Access denied. Please log in."

    @pytest.mark.asyncio
    async def test_invalid_token(self, accounts: FakeSupabase) -> None:
        with pytest.raises(AuthenticationError):
            await get_current_user(make_request(), "Bearer garbage")

    @pytest.mark.asyncio
    async def test_unknown_account(self, accounts: FakeSupabase, token_factory: Callable[..., str]) -> None:
        """Test that a valid token for a deleted account is refused."""
        with pytest.raises(AuthenticationError) as exc_info:
            await get_current_user(make_request(), f"Bearer {token_factory(UNKNOWN_ID)}")

        assert exc_info.value.message == "User not found."


class TestGetOptionalUser:
    """Tests for get_optional_user dependency."""

    @pytest.mark.asyncio
    async def test_returns_none_without_token(self, accounts: FakeSupabase) -> None:
        assert await get_optional_user(make_request(), None) is None

    @pytest.mark.asyncio
    async def test_ignores_invalid_token(self, accounts: FakeSupabase) -> None:
        assert await get_optional_user(make_request(), "Bearer garbage") is None

    @pytest.mark.asyncio
    async def test_returns_user_for_valid_token(self, accounts: FakeSupabase, token_factory: Callable[..., str]) -> None:
        user = await get_optional_user(make_request(), f"Bearer {token_factory(CUSTOMER_ID, nested=True)}")
        assert user is not None
        assert user.user_id == CUSTOMER_ID


class TestGetAdminUser:
    @pytest.mark.asyncio
    async def test_admin_passes(self) -> None:
        admin = UserContext(user_id=ADMIN_ID, role="admin")
        assert await get_admin_user(admin) is admin

    @pytest.mark.asyncio
    async def test_customer_forbidden(self) -> None:
        with pytest.raises(AuthorizationError) as exc_info:
            await get_admin_user(UserContext(user_id=CUSTOMER_ID, role="customer"))

        assert exc_info.value.status_code == 403
