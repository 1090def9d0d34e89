"""
Campus Eats — Coupon engine

Coupons are bought with loyalty points (Redeemed ledger rows), consumed at
payment confirmation, and refunded (Adjusted ledger rows) if a manager
withdraws the coupon while purchased copies are still unused.
"""
import logging
from decimal import Decimal
from typing import Iterable

from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.errors import (
    BusinessRuleError,
    CouponAlreadyUsedError,
    CouponExpiredError,
    CouponInactiveError,
    CouponNotFoundError,
    MenuItemNotFoundError,
    NotFoundError,
    UserCouponNotFoundError,
)
from campus_eats.core.optimistic_lock import with_optimistic_retry
from campus_eats.db import loyalty_ops
from campus_eats.db.database import as_utc, utcnow
from campus_eats.db.order_ops import PricedLine, subtotal_of, to_money
from campus_eats.models.coupon import Coupon, CouponType, UserCoupon
from campus_eats.models.loyalty import LoyaltyAccount
from campus_eats.models.menu import MenuItem
from campus_eats.schemas.coupon import CouponActionResult, CouponCreateRequest

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def is_expired(expires_at, now=None) -> bool:
    if expires_at is None:
        return False
    return (now or utcnow()) > as_utc(expires_at)


def compute_discount(coupon: Coupon, lines: Iterable[PricedLine]) -> Decimal:
    """
    Discount a coupon grants on a priced cart. Pure: reads, never writes.
    Always within [0, subtotal].
    """
    lines = list(lines)
    subtotal = subtotal_of(lines)
    if subtotal <= 0:
        return ZERO
    if coupon.minimum_order_amount is not None and subtotal < coupon.minimum_order_amount:
        return ZERO

    value = Decimal(coupon.discount_value or 0)
    if coupon.type == CouponType.PERCENTAGE_DISCOUNT:
        discount = subtotal * value / 100
    elif coupon.type == CouponType.FIXED_AMOUNT_DISCOUNT:
        discount = min(value, subtotal)
    elif coupon.type == CouponType.FREE_ITEM:
        discount = next(
            (line.unit_price for line in lines if line.menu_item_id == coupon.specific_menu_item_id),
            ZERO,
        )
    else:
        raise ValueError(f"Unhandled coupon type: {coupon.type!r}")

    return to_money(min(max(discount, ZERO), subtotal))


def mark_used(user_coupon: UserCoupon) -> None:
    """Consume a purchased coupon. A second use (replayed webhook) is refused."""
    if user_coupon.is_used:
        raise CouponAlreadyUsedError()
    user_coupon.is_used = True
    user_coupon.used_at = utcnow()


async def get_user_coupon(
    db: AsyncSession,
    user_coupon_id: str,
    user_id: str,
    for_update: bool = False,
) -> tuple[UserCoupon, Coupon]:
    """A user's purchased coupon with its definition. Other users' coupons read as not found."""
    query = (
        select(UserCoupon, Coupon)
        .join(Coupon, Coupon.id == UserCoupon.coupon_id)
        .where(UserCoupon.id == user_coupon_id, UserCoupon.user_id == user_id)
    )
    if for_update:
        query = query.with_for_update(of=UserCoupon).execution_options(populate_existing=True)
    row = (await db.execute(query)).first()
    if row is None:
        raise UserCouponNotFoundError(user_coupon_id)
    return row[0], row[1]


async def create_coupon(db: AsyncSession, payload: CouponCreateRequest) -> Coupon:
    if payload.type == CouponType.FREE_ITEM:
        menu_item = await db.get(MenuItem, payload.specific_menu_item_id)
        if menu_item is None:
            raise MenuItemNotFoundError()

    coupon = Coupon(
        name=payload.name.strip(),
        description=payload.description,
        type=payload.type,
        discount_value=payload.discount_value,
        points_cost=payload.points_cost,
        is_active=True,
        specific_menu_item_id=payload.specific_menu_item_id if payload.type == CouponType.FREE_ITEM else None,
        minimum_order_amount=payload.minimum_order_amount,
        expires_at=payload.expires_at,
        created_at=utcnow(),
    )
    db.add(coupon)
    await db.commit()
    logger.info("Coupon %s (%s) created, cost=%d points", coupon.id, coupon.type.value, coupon.points_cost)
    return coupon


async def list_available_coupons(db: AsyncSession) -> list[Coupon]:
    """Active coupons that have not expired, cheapest first."""
    result = await db.execute(
        select(Coupon)
        .where(Coupon.is_active.is_(True), or_(Coupon.expires_at.is_(None), Coupon.expires_at > utcnow()))
        .order_by(Coupon.points_cost, Coupon.name)
    )
    return list(result.scalars().all())


async def list_user_coupons(db: AsyncSession, user_id: str) -> list[tuple[UserCoupon, Coupon]]:
    result = await db.execute(
        select(UserCoupon, Coupon)
        .join(Coupon, Coupon.id == UserCoupon.coupon_id)
        .where(UserCoupon.user_id == user_id)
        .order_by(UserCoupon.acquired_at.desc())
    )
    return [(row[0], row[1]) for row in result.all()]


@with_optimistic_retry()
async def purchase_coupon(db: AsyncSession, user_id: str, coupon_id: str) -> CouponActionResult:
    """
    Buy a coupon with loyalty points.

    Failure precedence: not found, inactive, expired, then ledger failures
    (no account, insufficient points). Failures leave balance and coupons
    untouched and come back as success=False.
    """
    try:
        coupon = await db.get(Coupon, coupon_id)
        if coupon is None:
            raise CouponNotFoundError()
        if not coupon.is_active:
            raise CouponInactiveError()
        if is_expired(coupon.expires_at):
            raise CouponExpiredError()

        account = await loyalty_ops.redeem_points(
            db, user_id, coupon.points_cost, f"Purchased coupon: {coupon.name}"
        )
        db.add(UserCoupon(
            user_id=user_id,
            coupon_id=coupon.id,
            acquired_at=utcnow(),
            expires_at=coupon.expires_at,
            is_used=False,
        ))
        await db.commit()
    except (NotFoundError, BusinessRuleError) as exc:
        await db.rollback()
        logger.info("Coupon %s purchase refused for user %s: %s", coupon_id, user_id, exc.message)
        return CouponActionResult(success=False, message=exc.message)

    logger.info("User %s bought coupon %s, %d points left", user_id, coupon_id, account.points)
    return CouponActionResult(
        success=True,
        message="Coupon purchased successfully",
        remaining_points=account.points,
    )


@with_optimistic_retry()
async def delete_coupon_and_refund(db: AsyncSession, coupon_id: str) -> CouponActionResult:
    """
    Withdraw a coupon. Every unused purchased copy refunds its points_cost
    to the holder's account (holders without an account are skipped); all
    purchased copies and the coupon itself are deleted in the same commit.
    """
    coupon = await db.get(Coupon, coupon_id)
    if coupon is None:
        return CouponActionResult(success=False, message="Coupon not found")

    holders = list((await db.execute(
        select(UserCoupon).where(UserCoupon.coupon_id == coupon_id).with_for_update()
    )).scalars().all())

    unused_by_user: dict[str, int] = {}
    for user_coupon in holders:
        if not user_coupon.is_used:
            unused_by_user[user_coupon.user_id] = unused_by_user.get(user_coupon.user_id, 0) + 1

    accounts: dict[str, LoyaltyAccount] = {}
    if unused_by_user:
        result = await db.execute(
            select(LoyaltyAccount)
            .where(LoyaltyAccount.user_id.in_(list(unused_by_user)))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        accounts = {account.user_id: account for account in result.scalars().all()}

    refunded = 0
    for user_id, copies in unused_by_user.items():
        account = accounts.get(user_id)
        if account is None:
            logger.warning("Coupon %s: holder %s has no loyalty account, refund skipped", coupon_id, user_id)
            continue
        for _ in range(copies):
            loyalty_ops.refund_points(
                db, account, coupon.points_cost, f"Refund for deleted coupon: {coupon.name}"
            )
            refunded += 1

    for user_coupon in holders:
        await db.delete(user_coupon)
    await db.flush()
    await db.delete(coupon)
    await db.commit()

    logger.info("Coupon %s deleted, %d purchases refunded", coupon_id, refunded)
    return CouponActionResult(
        success=True,
        message=f"Coupon deleted. Refunded {refunded} users",
        refunded_users=refunded,
    )
