"""
Campus Eats — Coupons API

Purchases and withdrawals report business failures in the body
(``success: false``) rather than as HTTP errors.
"""
from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.api.deps import get_current_user, require_manager
from campus_eats.api.errors import to_http
from campus_eats.core.errors import CampusEatsError
from campus_eats.core.security import CurrentUser
from campus_eats.db.database import get_db
from campus_eats.db import coupon_ops
from campus_eats.schemas.coupon import (
    CouponActionResult,
    CouponCreateRequest,
    CouponResponse,
    UserCouponResponse,
)

router = APIRouter(prefix="/coupons", tags=["coupons"])


@router.get("", response_model=list[CouponResponse])
async def list_coupons(
    _: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Coupons currently on sale."""
    return await coupon_ops.list_available_coupons(db)


@router.get("/mine", response_model=list[UserCouponResponse])
async def list_my_coupons(
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    rows = await coupon_ops.list_user_coupons(db, user.user_id)
    return [
        UserCouponResponse(
            id=user_coupon.id,
            coupon_id=coupon.id,
            coupon_name=coupon.name,
            coupon_description=coupon.description,
            coupon_type=coupon.type,
            discount_value=coupon.discount_value,
            minimum_order_amount=coupon.minimum_order_amount,
            specific_menu_item_id=coupon.specific_menu_item_id,
            acquired_at=user_coupon.acquired_at,
            expires_at=user_coupon.expires_at,
            is_used=user_coupon.is_used,
            used_at=user_coupon.used_at,
        )
        for user_coupon, coupon in rows
    ]


@router.post("", response_model=CouponResponse, status_code=status.HTTP_201_CREATED)
async def create_coupon(
    payload: CouponCreateRequest,
    _: CurrentUser = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    try:
        return await coupon_ops.create_coupon(db, payload)
    except CampusEatsError as exc:
        raise to_http(exc)


@router.post("/{coupon_id}/purchase", response_model=CouponActionResult)
async def purchase_coupon(
    coupon_id: str,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Buy a coupon with loyalty points."""
    return await coupon_ops.purchase_coupon(db, user.user_id, coupon_id)


@router.delete("/{coupon_id}", response_model=CouponActionResult)
async def delete_coupon(
    coupon_id: str,
    _: CurrentUser = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    """Withdraw a coupon and refund every unused purchase."""
    result = await coupon_ops.delete_coupon_and_refund(db, coupon_id)
    if not result.success:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.message)
    return result
