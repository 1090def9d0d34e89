"""
Campus Eats — Loyalty ledger

Points are never edited in place: every change is a LoyaltyTransaction row
and the cached LoyaltyAccount.points moves by exactly that row's
points_change. These helpers only stage changes on the caller's session;
the calling unit of work owns the commit.
"""
import logging
import uuid
from decimal import Decimal, ROUND_FLOOR

from sqlalchemy import select, func
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.config import get_settings
from campus_eats.core.errors import (
    InsufficientPointsError,
    InvalidPointsAmountError,
    LoyaltyAccountNotFoundError,
)
from campus_eats.core.optimistic_lock import with_optimistic_retry
from campus_eats.db.database import utcnow
from campus_eats.models.loyalty import LoyaltyAccount, LoyaltyTransaction, LoyaltyTransactionType

settings = get_settings()
logger = logging.getLogger(__name__)


def points_for_total(order_total: Decimal) -> int:
    """Integer points earned for a paid total: floor(total / LOYALTY_SPEND_PER_POINT)."""
    if order_total <= 0:
        return 0
    points = (Decimal(order_total) / settings.LOYALTY_SPEND_PER_POINT).to_integral_value(rounding=ROUND_FLOOR)
    return int(points)


async def get_account(db: AsyncSession, user_id: str, for_update: bool = False) -> LoyaltyAccount | None:
    query = select(LoyaltyAccount).where(LoyaltyAccount.user_id == user_id)
    if for_update:
        query = query.with_for_update().execution_options(populate_existing=True)
    result = await db.execute(query)
    return result.scalar_one_or_none()


async def list_transactions(db: AsyncSession, user_id: str) -> list[LoyaltyTransaction]:
    """All ledger rows for a user, newest first. Empty if the user has no account."""
    result = await db.execute(
        select(LoyaltyTransaction)
        .join(LoyaltyAccount, LoyaltyAccount.id == LoyaltyTransaction.loyalty_account_id)
        .where(LoyaltyAccount.user_id == user_id)
        .order_by(LoyaltyTransaction.created_at.desc())
    )
    return list(result.scalars().all())


def _append(
    db: AsyncSession,
    account: LoyaltyAccount,
    points_change: int,
    tx_type: LoyaltyTransactionType,
    description: str,
    related_order_id: str | None = None,
) -> LoyaltyTransaction:
    entry = LoyaltyTransaction(
        loyalty_account_id=account.id,
        points_change=points_change,
        type=tx_type,
        description=description,
        related_order_id=related_order_id,
        created_at=utcnow(),
    )
    db.add(entry)
    account.points += points_change
    account.updated_at = utcnow()
    return entry


async def _ensure_account(db: AsyncSession, user_id: str) -> LoyaltyAccount:
    """
    Insert the user's account unless one already exists, then lock it.
    Two first awards racing for the same user both land on one row.
    """
    dialect = db.get_bind().dialect.name
    insert = postgresql_insert if dialect == "postgresql" else sqlite_insert
    now = utcnow()
    result = await db.execute(
        insert(LoyaltyAccount)
        .values(id=str(uuid.uuid4()), user_id=user_id, points=0, created_at=now, updated_at=now, version_id=1)
        .on_conflict_do_nothing(index_elements=[LoyaltyAccount.user_id])
    )
    if result.rowcount == 0:
        logger.info("Loyalty account for user %s was created concurrently; reusing it", user_id)
    return (await db.execute(
        select(LoyaltyAccount)
        .where(LoyaltyAccount.user_id == user_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )).scalar_one()


async def award_points_for_order(
    db: AsyncSession,
    user_id: str,
    order_id: str,
    order_total: Decimal,
) -> int:
    """
    Credit 10% of the order total (integer points) to the user's account,
    creating the account on first use. Returns the points awarded.

    Not idempotent on its own: callers guard with Order.loyalty_points_awarded.
    """
    points = points_for_total(order_total)
    account = await get_account(db, user_id, for_update=True)
    if account is None:
        account = await _ensure_account(db, user_id)

    if points == 0:
        return 0

    _append(
        db, account, points, LoyaltyTransactionType.EARNED,
        f"Points earned for order {order_id}", related_order_id=order_id,
    )
    logger.info("Awarded %d points to user %s for order %s", points, user_id, order_id)
    return points


async def reverse_points_for_order(db: AsyncSession, order_id: str) -> int:
    """
    Take back the points earned for an order, never driving the balance
    below zero. Reversals already recorded for the order are netted out.
    Returns the points removed (0 when there is nothing to reverse).
    """
    earned_row = (await db.execute(
        select(
            LoyaltyTransaction.loyalty_account_id,
            func.coalesce(func.sum(LoyaltyTransaction.points_change), 0),
        )
        .where(
            LoyaltyTransaction.related_order_id == order_id,
            LoyaltyTransaction.type == LoyaltyTransactionType.EARNED,
        )
        .group_by(LoyaltyTransaction.loyalty_account_id)
    )).first()
    if earned_row is None:
        return 0
    account_id, earned = earned_row[0], int(earned_row[1])

    already_reversed = (await db.execute(
        select(func.coalesce(func.sum(LoyaltyTransaction.points_change), 0)).where(
            LoyaltyTransaction.related_order_id == order_id,
            LoyaltyTransaction.type == LoyaltyTransactionType.ADJUSTED,
            LoyaltyTransaction.points_change < 0,
        )
    )).scalar_one()
    outstanding = earned + int(already_reversed)
    if outstanding <= 0:
        return 0

    account = (await db.execute(
        select(LoyaltyAccount)
        .where(LoyaltyAccount.id == account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )).scalar_one_or_none()
    if account is None:
        return 0

    amount = min(account.points, outstanding)
    if amount <= 0:
        logger.info("Order %s: nothing left to reverse, balance already 0", order_id)
        return 0

    _append(
        db, account, -amount, LoyaltyTransactionType.ADJUSTED,
        f"Reversal for cancelled order {order_id}", related_order_id=order_id,
    )
    logger.info("Reversed %d of %d earned points for order %s", amount, earned, order_id)
    return amount


async def redeem_points(db: AsyncSession, user_id: str, points: int, description: str) -> LoyaltyAccount:
    """Spend points. Raises LoyaltyAccountNotFoundError / InsufficientPointsError."""
    if points <= 0:
        raise InvalidPointsAmountError()
    account = await get_account(db, user_id, for_update=True)
    if account is None:
        raise LoyaltyAccountNotFoundError()
    if account.points < points:
        raise InsufficientPointsError(available=account.points, requested=points)

    _append(db, account, -points, LoyaltyTransactionType.REDEEMED, description)
    return account


def refund_points(db: AsyncSession, account: LoyaltyAccount, points: int, description: str) -> LoyaltyTransaction:
    """Give points back as an Adjusted credit (coupon withdrawn, etc.)."""
    return _append(db, account, points, LoyaltyTransactionType.ADJUSTED, description)


@with_optimistic_retry()
async def redeem(db: AsyncSession, user_id: str, points: int, description: str) -> LoyaltyAccount:
    """Standalone redemption as its own unit of work."""
    account = await redeem_points(db, user_id, points, description)
    await db.commit()
    logger.info("User %s redeemed %d points (%s), %d left", user_id, points, description, account.points)
    return account
