"""Global error handling middleware for consistent error responses."""

import logging
import traceback
from typing import Any, Callable

from fastapi import HTTPException, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from src.core.config import get_settings
from src.schemas.common import ErrorResponse

logger = logging.getLogger(__name__)


class APIError(Exception):
    """Base exception for API errors.

    Use this class to raise application-specific errors that should
    be returned to the client with a specific status code and message.
    """

    def __init__(
        self,
        message: str,
        status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR,
        error_type: str = "api_error",
        details: list[dict[str, Any]] | None = None,
    ) -> None:
        """Initialize API error.

        Args:
            message: Human-readable error message.
            status_code: HTTP status code to return.
            error_type: Error category/type for client handling.
            details: Optional additional error details.
        """
        self.message = message
        self.status_code = status_code
        self.error_type = error_type
        self.details = details
        super().__init__(message)


class NotFoundError(APIError):
    """Resource not found error."""

    def __init__(self, message: str = "Resource not found", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_404_NOT_FOUND,
            error_type="not_found",
            details=details,
        )


class ItemNotFoundError(NotFoundError):
    """Line item id not present in the cart."""

    def __init__(self, item_id: str) -> None:
        self.item_id = item_id
        super().__init__("Item not found in cart")


class ValidationError(APIError):
    """Malformed input, reported with field-level details."""

    def __init__(self, message: str = "Validation error", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_type="validation_error",
            details=details,
        )


class AuthenticationError(APIError):
    """Authentication failure error."""

    def __init__(self, message: str = "Authentication required", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_401_UNAUTHORIZED,
            error_type="authentication_error",
            details=details,
        )


class AuthorizationError(APIError):
    """Authorization failure error."""

    def __init__(self, message: str = "Access denied", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_403_FORBIDDEN,
            error_type="authorization_error",
            details=details,
        )


class ConflictError(APIError):
    """Concurrent write lost against a newer version of the record."""

    def __init__(self, message: str = "Resource was modified concurrently", details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_409_CONFLICT,
            error_type="conflict",
            details=details,
        )


class BusinessRuleError(APIError):
    """A well-formed request that the current state does not allow."""

    error_code = "business_rule_violation"

    def __init__(self, message: str, details: list[dict[str, Any]] | None = None) -> None:
        super().__init__(
            message=message,
            status_code=status.HTTP_400_BAD_REQUEST,
            error_type=self.error_code,
            details=details,
        )


class EmptyCartError(BusinessRuleError):
    error_code = "empty_cart"

    def __init__(self, message: str = "Cart is empty") -> None:
        super().__init__(message)


class InsufficientStockError(BusinessRuleError):
    """Requested quantity exceeds available stock."""

    error_code = "insufficient_stock"

    def __init__(self, product_name: str | None = None) -> None:
        self.product_name = product_name
        message = f"Insufficient stock for {product_name}" if product_name else "Insufficient stock"
        super().__init__(message)


class InvalidQuantityError(BusinessRuleError):
    error_code = "invalid_quantity"

    def __init__(self, quantity: Any) -> None:
        self.quantity = quantity
        super().__init__(
            "Quantity must be a positive integer",
            details=[{"loc": ["quantity"], "msg": f"got {quantity!r}", "type": "value_error"}],
        )


class ProductUnavailableError(BusinessRuleError):
    error_code = "product_unavailable"

    def __init__(self, message: str = "Product is not available") -> None:
        super().__init__(message)


class InvalidCouponError(BusinessRuleError):
    error_code = "invalid_coupon"

    def __init__(self, message: str = "Invalid coupon code") -> None:
        super().__init__(message)


class InvalidTransitionError(BusinessRuleError):
    """Order status change not allowed from the current status."""

    error_code = "invalid_transition"

    def __init__(self, current: str, requested: str, message: str | None = None) -> None:
        self.current = current
        self.requested = requested
        super().__init__(message or f"Cannot change order status from {current} to {requested}")


class RefundExceedsTotalError(BusinessRuleError):
    error_code = "refund_exceeds_total"

    def __init__(self, message: str = "Refund amount cannot exceed order total") -> None:
        super().__init__(message)


class IntegrityGapError(APIError):
    """Order persisted but a follow-up checkout step did not complete.

    The order can be brought back in line with the reconcile action.
    """

    def __init__(self, order_number: str, step: str) -> None:
        self.order_number = order_number
        self.step = step
        super().__init__(
            message=f"Order {order_number} was created but {step} did not complete",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            error_type="integrity_gap",
            details=[{"loc": ["order_number"], "msg": order_number, "type": step}],
        )


def create_error_response(
    error_type: str,
    message: str,
    status_code: int,
    details: list[dict[str, Any]] | None = None,
    request_id: str | None = None,
    trace: str | None = None,
) -> JSONResponse:
    """Create a standardized JSON error response.

    Args:
        error_type: Error category for client handling.
        message: Human-readable error description.
        status_code: HTTP status code.
        details: Optional error details.
        request_id: Optional request ID for tracing.
        trace: Optional formatted stack trace (development only).

    Returns:
        JSONResponse: Formatted error response.
    """
    error_response = ErrorResponse.from_exception(
        error_type=error_type,
        message=message,
        details=details,
        request_id=request_id,
        traceback=trace,
    )
    return JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(mode="json", exclude_none=True),
    )


def _debug_trace() -> str | None:
    return traceback.format_exc() if get_settings().debug else None


async def validation_exception_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Render request validation failures as 400 with field-level details."""
    details = [
        {
            "loc": [str(part) for part in error.get("loc", ())],
            "msg": error.get("msg", "Invalid value"),
            "type": error.get("type", "value_error"),
        }
        for error in exc.errors()
    ]
    logger.info("Request validation failed on %s: %d error(s)", request.url.path, len(details))
    return create_error_response(
        error_type="validation_error",
        message="Validation error",
        status_code=status.HTTP_400_BAD_REQUEST,
        details=details,
        request_id=request.headers.get("X-Request-ID"),
    )


async def error_handler_middleware(request: Request, call_next: Callable[[Request], Any]) -> Response:
    """Middleware to catch and format all exceptions.

    Ensures consistent error response format across the application.
    Stack traces are logged for unexpected errors and only echoed to
    the client when running with debug enabled.

    Args:
        request: The incoming request.
        call_next: Next middleware or route handler.

    Returns:
        Response: Either the successful response or formatted error response.
    """
    request_id = request.headers.get("X-Request-ID")

    try:
        response = await call_next(request)
        return response

    except IntegrityGapError as e:
        logger.error(
            "Integrity gap: %s (step=%s)",
            e.order_number,
            e.step,
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type=e.error_type,
            message=e.message,
            status_code=e.status_code,
            details=e.details,
            request_id=request_id,
            trace=_debug_trace(),
        )

    except APIError as e:
        logger.warning(
            "API error: %s - %s",
            e.error_type,
            e.message,
            extra={"request_id": request_id, "status_code": e.status_code},
        )
        return create_error_response(
            error_type=e.error_type,
            message=e.message,
            status_code=e.status_code,
            details=e.details,
            request_id=request_id,
        )

    except HTTPException as e:
        logger.warning(
            "HTTP exception: %s - %s",
            e.status_code,
            e.detail,
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="http_error",
            message=str(e.detail),
            status_code=e.status_code,
            request_id=request_id,
        )

    except Exception as e:
        logger.error(
            "Unhandled exception: %s\n%s",
            str(e),
            traceback.format_exc(),
            extra={"request_id": request_id},
        )
        return create_error_response(
            error_type="internal_error",
            message="An unexpected error occurred",
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            request_id=request_id,
            trace=_debug_trace(),
        )
