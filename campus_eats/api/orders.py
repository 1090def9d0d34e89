"""
Campus Eats — Orders API

Direct placement is the non-payment path (no coupon). Paid orders are
created by the checkout webhook in ``campus_eats.api.payments``.
"""
from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.api.deps import get_current_user
from campus_eats.api.errors import to_http
from campus_eats.core.errors import CampusEatsError
from campus_eats.core.notifier import publish_order_update
from campus_eats.core.security import CurrentUser
from campus_eats.db.database import get_db
from campus_eats.db import order_ops
from campus_eats.models.order import OrderStatus
from campus_eats.schemas.order import CancelOrderResponse, OrderResponse, PlaceOrderRequest

router = APIRouter(prefix="/orders", tags=["orders"])


@router.post("", response_model=OrderResponse, status_code=status.HTTP_201_CREATED)
async def place_order(
    payload: PlaceOrderRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Place an order at current menu prices. Creates its kitchen task too."""
    try:
        order = await order_ops.place_order(
            db,
            user.user_id,
            [(item.menu_item_id, item.quantity) for item in payload.items],
            notes=payload.notes,
        )
    except CampusEatsError as exc:
        raise to_http(exc)

    await publish_order_update(order.id, order.status.value, user_id=order.user_id)
    return order


@router.get("", response_model=list[OrderResponse])
async def list_orders(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Students see their own orders, newest first; kitchen staff see all."""
    return await order_ops.list_orders(db, user)


@router.get("/{order_id}", response_model=OrderResponse)
async def get_order(
    order_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await order_ops.get_order(db, order_id, user)
    except CampusEatsError as exc:
        raise to_http(exc)


@router.post("/{order_id}/cancel", response_model=CancelOrderResponse)
async def cancel_order(
    order_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    Cancel an order (owner or manager). Points earned for it are taken back.
    Completed or already-cancelled orders are left as they are.
    """
    try:
        cancelled = await order_ops.cancel_order(db, order_id, user)
    except CampusEatsError as exc:
        raise to_http(exc)

    if not cancelled:
        return CancelOrderResponse(
            order_id=order_id,
            cancelled=False,
            message="Order is already completed or cancelled.",
        )

    await publish_order_update(order_id, OrderStatus.CANCELLED.value, user_id=cancelled.user_id)
    return CancelOrderResponse(order_id=order_id, cancelled=True, message="Order cancelled.")
