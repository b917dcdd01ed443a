"""Order API routes: checkout, customer order views and admin actions."""

from uuid import UUID

from fastapi import APIRouter, Query, status

from src.api.deps import AdminUser, CurrentUser
from src.models.order import OrderStatus, PaymentStatus
from src.schemas.common import Pagination
from src.schemas.order import (
    CheckoutRequest,
    OrderEnvelope,
    OrderListResponse,
    OrderResponse,
    OrderStatusUpdate,
    OrderSummaryResponse,
    OrderTrackingResponse,
    PaymentStatusUpdate,
    RefundRequest,
    ShippingTrackingUpdate,
)
from src.services.checkout_service import CheckoutService
from src.services.order_service import OrderService, OrderStateMachine

router = APIRouter(prefix="/orders", tags=["orders"])


def _envelope(message: str, order: dict) -> OrderEnvelope:
    return OrderEnvelope(message=message, order=OrderResponse.model_validate(order))


@router.post(
    "",
    response_model=OrderEnvelope,
    status_code=status.HTTP_201_CREATED,
    summary="Checkout",
    description="Convert the signed-in customer's cart into an order.",
)
async def create_order(data: CheckoutRequest, user: CurrentUser) -> OrderEnvelope:
    """Place an order from the customer's cart.

    Raises:
        EmptyCartError: 400 if the cart is empty.
        InsufficientStockError: 400 if any line exceeds current stock.
        IntegrityGapError: 500 if the order was stored but a later step failed.
    """
    order = await CheckoutService().checkout(
        user_id=user.user_id,
        payment_method=data.payment_method,
        billing_address=data.billing_address.model_dump(),
        shipping_address=data.shipping_address.model_dump(),
        shipping_method=data.shipping_method,
        notes=data.notes,
    )
    return _envelope("Order created successfully", order)


@router.get(
    "",
    response_model=OrderListResponse,
    summary="List my orders",
)
async def list_orders(
    user: CurrentUser,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1, le=100),
    order_status: OrderStatus | None = Query(default=None, alias="status"),
) -> OrderListResponse:
    """List the caller's orders, newest first."""
    orders, total = await OrderService().list_orders(
        user_id=user.user_id,
        status=order_status,
        page=page,
        limit=limit,
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        pagination=Pagination.build(page, limit, total),
    )


# Admin routes are declared before /{order_id} so "admin" is never read as an ID.


@router.get(
    "/admin/all",
    response_model=OrderListResponse,
    summary="List all orders (admin)",
)
async def list_all_orders(
    admin: AdminUser,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1, le=100),
    order_status: OrderStatus | None = Query(default=None, alias="status"),
    payment_status: PaymentStatus | None = Query(default=None),
) -> OrderListResponse:
    orders, total = await OrderService().list_orders(
        status=order_status,
        payment_status=payment_status,
        page=page,
        limit=limit,
    )
    return OrderListResponse(
        orders=[OrderResponse.model_validate(order) for order in orders],
        pagination=Pagination.build(page, limit, total),
    )


@router.put(
    "/admin/{order_id}/status",
    response_model=OrderEnvelope,
    summary="Update order status (admin)",
)
async def update_order_status(order_id: UUID, data: OrderStatusUpdate, admin: AdminUser) -> OrderEnvelope:
    """Move an order along its lifecycle.

    Raises:
        InvalidTransitionError: 400 if the move is not allowed.
    """
    order = await OrderService().update_status(str(order_id), data.status, data.message)
    return _envelope("Order status updated", order)


@router.put(
    "/admin/{order_id}/shipping",
    response_model=OrderEnvelope,
    summary="Add shipping tracking (admin)",
)
async def update_shipping(order_id: UUID, data: ShippingTrackingUpdate, admin: AdminUser) -> OrderEnvelope:
    order = await OrderService().update_shipping(
        str(order_id),
        data.tracking_number,
        data.carrier,
        data.estimated_delivery,
    )
    return _envelope("Shipping information updated", order)


@router.put(
    "/admin/{order_id}/payment-status",
    response_model=OrderEnvelope,
    summary="Update payment status (admin)",
)
async def update_payment_status(order_id: UUID, data: PaymentStatusUpdate, admin: AdminUser) -> OrderEnvelope:
    order = await OrderService().update_payment_status(str(order_id), data.payment_status)
    return _envelope("Payment status updated", order)


@router.post(
    "/admin/{order_id}/refund",
    response_model=OrderEnvelope,
    summary="Refund order (admin)",
)
async def refund_order(order_id: UUID, data: RefundRequest, admin: AdminUser) -> OrderEnvelope:
    """Record a refund.

    Raises:
        RefundExceedsTotalError: 400 if refunds would exceed the order total.
    """
    order = await OrderService().process_refund(str(order_id), data.amount, data.reason, data.method)
    return _envelope("Refund processed successfully", order)


@router.post(
    "/admin/{order_id}/reconcile",
    response_model=OrderEnvelope,
    summary="Reconcile order (admin)",
    description="Finish stock and cart steps a checkout did not complete. Safe to repeat.",
)
async def reconcile_order(order_id: UUID, admin: AdminUser) -> OrderEnvelope:
    order = await CheckoutService().reconcile_order(str(order_id))
    return _envelope("Order reconciled", order)


@router.get(
    "/{order_id}",
    response_model=OrderResponse,
    summary="Get my order",
)
async def get_order(order_id: UUID, user: CurrentUser) -> OrderResponse:
    """Get one of the caller's orders.

    Raises:
        NotFoundError: 404 if missing or owned by someone else.
    """
    order = await OrderService().require_order(str(order_id), user.user_id)
    return OrderResponse.model_validate(order)


@router.get(
    "/{order_id}/summary",
    response_model=OrderSummaryResponse,
    summary="Order summary",
)
async def get_order_summary(order_id: UUID, user: CurrentUser) -> OrderSummaryResponse:
    order = await OrderService().require_order(str(order_id), user.user_id)
    return OrderSummaryResponse.model_validate(OrderStateMachine(order).summary())


@router.get(
    "/{order_id}/track",
    response_model=OrderTrackingResponse,
    summary="Track order",
)
async def track_order(order_id: UUID, user: CurrentUser) -> OrderTrackingResponse:
    tracking = await OrderService().get_tracking(str(order_id), user.user_id)
    return OrderTrackingResponse.model_validate(tracking)


@router.put(
    "/{order_id}/cancel",
    response_model=OrderEnvelope,
    summary="Cancel my order",
    description="Cancel a pending or confirmed order and return its stock.",
)
async def cancel_order(order_id: UUID, user: CurrentUser) -> OrderEnvelope:
    """Cancel one of the caller's orders.

    Raises:
        InvalidTransitionError: 400 unless the order is pending or confirmed.
    """
    order = await OrderService().cancel_order(str(order_id), user_id=user.user_id)
    return _envelope("Order cancelled successfully", order)
