"""Authentication schemas for JWT tokens and user context."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

ADMIN_ROLE = "admin"


class UserContext(BaseModel):
    """Authenticated user context extracted from JWT token.

    This model represents the authenticated user for the current request.
    It is populated by the auth middleware from the validated JWT.
    """

    model_config = ConfigDict(from_attributes=True)

    user_id: str = Field(description="24-character hex account identifier")
    email: str | None = Field(default=None, description="User's email address if available")
    role: str | None = Field(default=None, description="User's role (e.g., 'customer', 'admin')")

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


class TokenPayload(BaseModel):
    """JWT token payload.

    Tokens carry the account ID either as a top-level ``userId`` claim
    or nested as ``user.id`` (with the role beside it).
    """

    model_config = ConfigDict(from_attributes=True)

    user_id: str = Field(description="Account ID from userId or user.id")
    email: str | None = Field(default=None, description="User's email address")
    role: str | None = Field(default=None, description="User's role")
    exp: int | None = Field(default=None, description="Expiration timestamp (Unix epoch)")
    iat: int | None = Field(default=None, description="Issued at timestamp (Unix epoch)")

    @classmethod
    def from_claims(cls, claims: dict[str, Any]) -> "TokenPayload":
        """Build a payload from decoded claims.

        Raises:
            ValueError: If neither claim layout carries an account ID.
        """
        nested = claims.get("user") if isinstance(claims.get("user"), dict) else {}
        user_id = claims.get("userId") or nested.get("id")
        if not user_id:
            raise ValueError("Invalid token structure")
        return cls(
            user_id=str(user_id),
            email=claims.get("email") or nested.get("email"),
            role=claims.get("role") or nested.get("role"),
            exp=claims.get("exp"),
            iat=claims.get("iat"),
        )

    @property
    def expiration_datetime(self) -> datetime | None:
        """Get expiration as datetime object."""
        return datetime.fromtimestamp(self.exp) if self.exp is not None else None

    def to_user_context(self) -> UserContext:
        """Convert token payload to UserContext.

        Returns:
            UserContext: User context derived from token claims.
        """
        return UserContext(
            user_id=self.user_id,
            email=self.email,
            role=self.role,
        )
