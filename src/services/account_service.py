"""Account lookups for customer keys."""

import re

from supabase import Client

from src.api.middleware.error_handler import NotFoundError, ValidationError
from src.core.supabase import get_supabase_client

ACCOUNT_ID_PATTERN = re.compile(r"^[0-9a-fA-F]{24}$")
TEMP_KEY_PREFIX = "temp_"


def is_account_id(value: str) -> bool:
    """Whether ``value`` has the shape of a registered account identifier."""
    return bool(ACCOUNT_ID_PATTERN.match(value))


def is_temporary_key(value: str) -> bool:
    """Whether ``value`` is an anonymous session key."""
    return value.startswith(TEMP_KEY_PREFIX) and len(value) > len(TEMP_KEY_PREFIX)


class AccountService:
    """Service for resolving cart customer keys."""

    def __init__(self, supabase_client: Client | None = None) -> None:
        self._supabase_client = supabase_client

    @property
    def supabase(self) -> Client:
        if self._supabase_client is None:
            self._supabase_client = get_supabase_client()
        return self._supabase_client

    async def account_exists(self, account_id: str) -> bool:
        response = (
            self.supabase.table("profiles")
            .select("id")
            .eq("id", account_id)
            .maybe_single()
            .execute()
        )
        return bool(response and response.data)

    async def resolve_customer_key(self, customer_key: str) -> str:
        """Validate a cart customer key.

        Account keys must belong to an existing account; temporary keys
        are accepted as-is.

        Args:
            customer_key: 24-character hex account ID or ``temp_`` key.

        Returns:
            str: The key, unchanged.

        Raises:
            ValidationError: If the key has neither shape.
            NotFoundError: If an account key has no account.
        """
        if is_account_id(customer_key):
            if not await self.account_exists(customer_key):
                raise NotFoundError("User not found")
            return customer_key

        if is_temporary_key(customer_key):
            return customer_key

        raise ValidationError(
            "Invalid user ID format",
            details=[{"loc": ["path", "customer_key"], "msg": "Expected a 24-character hex ID or a temp_ key", "type": "value_error"}],
        )


def get_account_service() -> AccountService:
    """Get account service instance."""
    return AccountService()
