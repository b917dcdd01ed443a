"""FastAPI dependency injection functions."""

import logging
from typing import Annotated

from fastapi import Depends, Header, Request

from src.api.middleware.auth import AuthError, AuthErrorCode, decode_jwt
from src.api.middleware.error_handler import AuthenticationError, AuthorizationError
from src.core.config import get_settings
from src.schemas.auth import UserContext
from src.services.account_service import AccountService

logger = logging.getLogger(__name__)


def get_request_token(request: Request, authorization: str | None = None) -> str | None:
    """Extract the JWT from the Authorization header or the auth cookie.

    The header wins when both are present.

    Args:
        request: FastAPI request object.
        authorization: The Authorization header value.

    Returns:
        str | None: The raw token or None if not present.
    """
    if authorization:
        parts = authorization.split()
        if len(parts) == 2 and parts[0].lower() == "bearer":
            return parts[1]
        raise AuthenticationError("Invalid authorization header format. Expected: Bearer <token>")

    return request.cookies.get(get_settings().auth_cookie_name) or None


async def _resolve_user(token: str) -> UserContext:
    try:
        payload = decode_jwt(token)
    except AuthError as e:
        # Map auth errors to appropriate HTTP responses
        if e.code == AuthErrorCode.TOKEN_EXPIRED:
            raise AuthenticationError("Token has expired") from e
        raise AuthenticationError(e.message) from e

    if not await AccountService().account_exists(payload.user_id):
        raise AuthenticationError("User not found.")
    return payload.to_user_context()


async def get_current_user(
    request: Request,
    authorization: Annotated[str | None, Header(description="Bearer token")] = None,
) -> UserContext:
    """Extract and validate the current user.

    This dependency requires a valid JWT in the Authorization header or
    the auth cookie, issued for an account that still exists.

    Returns:
        UserContext: The authenticated user's context.

    Raises:
        AuthenticationError: 401 if token is missing, invalid, or expired.
    """
    token = get_request_token(request, authorization)
    if not token:
        raise AuthenticationError("Access denied. Please log in.")
    return await _resolve_user(token)


async def get_optional_user(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> UserContext | None:
    """Extract the current user if a token is present.

    This dependency allows routes to work with or without authentication.
    A token that is present but invalid is ignored rather than rejected.

    Returns:
        UserContext | None: The user context if authenticated, None otherwise.
    """
    try:
        token = get_request_token(request, authorization)
        if not token:
            return None
        return await _resolve_user(token)
    except AuthenticationError as e:
        logger.debug("Ignoring invalid optional credentials: %s", e.message)
        return None


async def get_admin_user(user: Annotated[UserContext, Depends(get_current_user)]) -> UserContext:
    """Require an authenticated administrator.

    Raises:
        AuthorizationError: 403 if the user is not an admin.
    """
    if not user.is_admin:
        raise AuthorizationError("Admin access required")
    return user


# Type aliases for cleaner dependency injection
CurrentUser = Annotated[UserContext, Depends(get_current_user)]
OptionalUser = Annotated[UserContext | None, Depends(get_optional_user)]
AdminUser = Annotated[UserContext, Depends(get_admin_user)]
