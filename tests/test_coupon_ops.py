"""
Coupon engine: discount maths, purchase with points, withdrawal refunds.
"""
from decimal import Decimal

import pytest
from pydantic import ValidationError
from sqlalchemy import select

from campus_eats.core.errors import CouponAlreadyUsedError, MenuItemNotFoundError
from campus_eats.db import coupon_ops, loyalty_ops
from campus_eats.db.database import as_utc
from campus_eats.db.order_ops import PricedLine
from campus_eats.models.coupon import Coupon, CouponType, UserCoupon
from campus_eats.models.loyalty import LoyaltyTransactionType
from campus_eats.schemas.coupon import CouponCreateRequest


def _coupon(type, value="0", menu_item_id=None, minimum=None):
    return Coupon(
        name="c",
        type=type,
        discount_value=Decimal(value),
        points_cost=10,
        specific_menu_item_id=menu_item_id,
        minimum_order_amount=Decimal(minimum) if minimum else None,
    )


# ─── Discount calculation ──────────────────────────────────────────────────────
def test_percentage_discount():
    lines = [PricedLine("burger", 2, Decimal("25.00"))]
    coupon = _coupon(CouponType.PERCENTAGE_DISCOUNT, "20")
    assert coupon_ops.compute_discount(coupon, lines) == Decimal("10.00")


def test_free_item_discount_is_one_unit_of_that_item():
    lines = [PricedLine("burger", 1, Decimal("30.00")), PricedLine("drink", 2, Decimal("5.00"))]
    coupon = _coupon(CouponType.FREE_ITEM, menu_item_id="drink")
    assert coupon_ops.compute_discount(coupon, lines) == Decimal("5.00")


def test_free_item_not_in_cart_gives_nothing():
    lines = [PricedLine("burger", 1, Decimal("30.00"))]
    coupon = _coupon(CouponType.FREE_ITEM, menu_item_id="drink")
    assert coupon_ops.compute_discount(coupon, lines) == Decimal("0")


def test_fixed_discount_is_clamped_to_subtotal():
    lines = [PricedLine("burger", 1, Decimal("35.00"))]
    coupon = _coupon(CouponType.FIXED_AMOUNT_DISCOUNT, "100")
    assert coupon_ops.compute_discount(coupon, lines) == Decimal("35.00")


def test_minimum_order_amount_not_met():
    lines = [PricedLine("burger", 1, Decimal("50.00"))]
    coupon = _coupon(CouponType.FIXED_AMOUNT_DISCOUNT, "10", minimum="60")
    assert coupon_ops.compute_discount(coupon, lines) == Decimal("0")


def test_mark_used_twice_is_refused():
    user_coupon = UserCoupon(user_id="u", coupon_id="c", is_used=False)
    coupon_ops.mark_used(user_coupon)
    assert user_coupon.is_used and user_coupon.used_at is not None
    with pytest.raises(CouponAlreadyUsedError):
        coupon_ops.mark_used(user_coupon)


def test_create_request_validates_percentage_range():
    with pytest.raises(ValidationError):
        CouponCreateRequest(name="Too good", type=CouponType.PERCENTAGE_DISCOUNT, discount_value=150, points_cost=10)
    with pytest.raises(ValidationError):
        CouponCreateRequest(name="Free what?", type=CouponType.FREE_ITEM, points_cost=10)


# ─── Create / list ─────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_free_item_coupon_needs_existing_menu_item(db):
    payload = CouponCreateRequest(
        name="Free drink", type=CouponType.FREE_ITEM, points_cost=30, specific_menu_item_id="missing",
    )
    with pytest.raises(MenuItemNotFoundError) as exc_info:
        await coupon_ops.create_coupon(db, payload)
    assert exc_info.value.message == "Menu item not found"


@pytest.mark.asyncio
async def test_available_coupons_hide_inactive_and_expired(db, add_coupon):
    on_sale = await add_coupon(name="On sale")
    await add_coupon(name="Withdrawn", is_active=False)
    await add_coupon(name="Old", expires_in_days=-1)

    available = await coupon_ops.list_available_coupons(db)
    assert [c.id for c in available] == [on_sale.id]


# ─── Purchase ──────────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_purchase_with_insufficient_points(db, add_account, add_coupon):
    await add_account("student-1", 30)
    coupon = await add_coupon(points_cost=50)

    result = await coupon_ops.purchase_coupon(db, "student-1", coupon.id)

    assert result.success is False
    assert result.message == "Insufficient points"
    account = await loyalty_ops.get_account(db, "student-1")
    assert account.points == 30
    assert await coupon_ops.list_user_coupons(db, "student-1") == []


@pytest.mark.asyncio
async def test_purchase_failure_messages(db, add_account, add_coupon):
    await add_account("student-1", 500)
    inactive_and_expired_id = (await add_coupon(is_active=False, expires_in_days=-1)).id
    expired_id = (await add_coupon(expires_in_days=-1)).id
    on_sale_id = (await add_coupon()).id

    assert (await coupon_ops.purchase_coupon(db, "student-1", "nope")).message == "Coupon not found"
    assert (await coupon_ops.purchase_coupon(db, "student-1", inactive_and_expired_id)).message == "Coupon is not available"
    assert (await coupon_ops.purchase_coupon(db, "student-1", expired_id)).message == "Coupon has expired"

    result = await coupon_ops.purchase_coupon(db, "no-account", on_sale_id)
    assert result.message == "Loyalty account not found"


@pytest.mark.asyncio
async def test_purchase_success(db, add_account, add_coupon):
    await add_account("student-1", 120)
    coupon = await add_coupon(points_cost=50, name="Half price")

    result = await coupon_ops.purchase_coupon(db, "student-1", coupon.id)

    assert result.success is True
    assert result.message == "Coupon purchased successfully"
    assert result.remaining_points == 70

    [(user_coupon, owned)] = await coupon_ops.list_user_coupons(db, "student-1")
    assert owned.id == coupon.id
    assert user_coupon.is_used is False
    assert as_utc(user_coupon.expires_at) == as_utc(coupon.expires_at)

    entry = (await loyalty_ops.list_transactions(db, "student-1"))[0]
    assert entry.type == LoyaltyTransactionType.REDEEMED
    assert entry.points_change == -50
    assert "Half price" in entry.description


# ─── Withdrawal with refunds ───────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_delete_refunds_unused_copies(db, add_account, add_coupon, give_coupon):
    coupon = await add_coupon(points_cost=50)
    await add_account("holder-1", 0)
    await add_account("holder-2", 10)
    await add_account("used-holder", 5)
    await give_coupon("holder-1", coupon)
    await give_coupon("holder-2", coupon)
    await give_coupon("used-holder", coupon, is_used=True)
    await give_coupon("no-account", coupon)

    result = await coupon_ops.delete_coupon_and_refund(db, coupon.id)

    assert result.success is True
    assert result.message == "Coupon deleted. Refunded 2 users"
    assert result.refunded_users == 2
    assert (await loyalty_ops.get_account(db, "holder-1")).points == 50
    assert (await loyalty_ops.get_account(db, "holder-2")).points == 60
    assert (await loyalty_ops.get_account(db, "used-holder")).points == 5
    assert await loyalty_ops.get_account(db, "no-account") is None

    assert await db.get(Coupon, coupon.id) is None
    remaining = (await db.execute(select(UserCoupon).where(UserCoupon.coupon_id == coupon.id))).scalars().all()
    assert remaining == []

    refund = (await loyalty_ops.list_transactions(db, "holder-1"))[0]
    assert refund.type == LoyaltyTransactionType.ADJUSTED
    assert refund.points_change == 50


@pytest.mark.asyncio
async def test_delete_without_holders(db, add_coupon):
    coupon = await add_coupon()
    result = await coupon_ops.delete_coupon_and_refund(db, coupon.id)
    assert result.success is True
    assert result.message == "Coupon deleted. Refunded 0 users"


@pytest.mark.asyncio
async def test_delete_unknown_coupon(db):
    result = await coupon_ops.delete_coupon_and_refund(db, "missing")
    assert result.success is False
    assert result.message == "Coupon not found"
