"""
Campus Eats — Order workflow

Builds orders (with their items and kitchen task) and cancels them.
Coupons are applied only on the payment path (see payment_ops); direct
placement here never discounts.
"""
import logging
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.errors import (
    EmptyOrderError,
    ForbiddenError,
    InvalidQuantityError,
    MenuItemNotFoundError,
    MenuItemUnavailableError,
    OrderNotFoundError,
)
from campus_eats.core.optimistic_lock import with_optimistic_retry
from campus_eats.core.security import CurrentUser
from campus_eats.db import loyalty_ops
from campus_eats.db.database import utcnow
from campus_eats.models.kitchen import KitchenTask, KitchenTaskStatus
from campus_eats.models.menu import MenuItem
from campus_eats.models.order import Order, OrderItem, OrderStatus

logger = logging.getLogger(__name__)

CENT = Decimal("0.01")


def to_money(value: Decimal) -> Decimal:
    return Decimal(value).quantize(CENT, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class PricedLine:
    """One cart line priced at the menu's current price."""
    menu_item_id: str
    quantity: int
    unit_price: Decimal

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


def subtotal_of(lines: Iterable[PricedLine]) -> Decimal:
    return to_money(sum((line.line_total for line in lines), Decimal("0")))


async def load_menu_items(db: AsyncSession, menu_item_ids: Iterable[str]) -> dict[str, MenuItem]:
    ids = list(set(menu_item_ids))
    if not ids:
        return {}
    result = await db.execute(select(MenuItem).where(MenuItem.id.in_(ids)))
    return {item.id: item for item in result.scalars().all()}


async def price_cart(
    db: AsyncSession,
    items: Sequence[tuple[str, int]],
    skip_unknown: bool = False,
) -> list[PricedLine]:
    """
    Snapshot current prices for (menu_item_id, quantity) pairs.

    Strict mode (direct placement, checkout start) rejects unknown or
    inactive items. The webhook path passes skip_unknown=True: the payment
    has already been taken, so lines that no longer resolve are dropped.
    """
    menu = await load_menu_items(db, (menu_item_id for menu_item_id, _ in items))
    lines: list[PricedLine] = []
    for menu_item_id, quantity in items:
        if quantity <= 0:
            raise InvalidQuantityError(menu_item_id, quantity)
        menu_item = menu.get(menu_item_id)
        if menu_item is None:
            if skip_unknown:
                logger.warning("Skipping unknown menu item %s", menu_item_id)
                continue
            raise MenuItemNotFoundError(menu_item_id)
        if not menu_item.is_active and not skip_unknown:
            raise MenuItemUnavailableError(menu_item_id)
        lines.append(PricedLine(menu_item_id, quantity, to_money(menu_item.price)))
    return lines


def build_order(
    db: AsyncSession,
    user_id: str,
    lines: Sequence[PricedLine],
    discount: Decimal = Decimal("0"),
    notes: str | None = None,
) -> Order:
    """
    Stage an Order and its OrderItems on the session.
    The discount is clamped to [0, subtotal].
    """
    if not lines:
        raise EmptyOrderError()
    subtotal = subtotal_of(lines)
    discount = to_money(min(max(discount, Decimal("0")), subtotal))
    now = utcnow()

    order = Order(
        user_id=user_id,
        status=OrderStatus.PENDING,
        subtotal=subtotal,
        discount_amount=discount,
        total=subtotal - discount,
        loyalty_points_awarded=False,
        notes=notes or None,
        created_at=now,
        updated_at=now,
        items=[
            OrderItem(
                line_number=position,
                menu_item_id=line.menu_item_id,
                quantity=line.quantity,
                unit_price=line.unit_price,
            )
            for position, line in enumerate(lines)
        ],
    )
    db.add(order)
    return order


@with_optimistic_retry()
async def place_order(
    db: AsyncSession,
    user_id: str,
    items: Sequence[tuple[str, int]],
    notes: str | None = None,
) -> Order:
    """Direct, non-payment-gated order creation."""
    if not items:
        raise EmptyOrderError()
    lines = await price_cart(db, items)
    order, _ = await create_order_with_task(db, user_id, lines, notes=notes)
    await db.commit()
    logger.info("Order %s placed by user %s (total=%s)", order.id, user_id, order.total)
    return order


async def create_order_with_task(
    db: AsyncSession,
    user_id: str,
    lines: Sequence[PricedLine],
    discount: Decimal = Decimal("0"),
    notes: str | None = None,
) -> tuple[Order, KitchenTask]:
    """Stage order + items, flush for the id, then stage the kitchen task. No commit."""
    order = build_order(db, user_id, lines, discount=discount, notes=notes)
    await db.flush()
    task = KitchenTask(
        order_id=order.id,
        status=KitchenTaskStatus.NOT_STARTED,
        notes=notes or None,
        updated_at=order.created_at,
    )
    db.add(task)
    await db.flush()
    return order, task


async def get_order_for_update(db: AsyncSession, order_id: str) -> Order | None:
    result = await db.execute(
        select(Order)
        .where(Order.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def get_order(db: AsyncSession, order_id: str, caller: CurrentUser) -> Order:
    """Owners see their own orders; kitchen staff and managers see all."""
    order = (await db.execute(select(Order).where(Order.id == order_id))).scalar_one_or_none()
    if order is None:
        raise OrderNotFoundError(order_id)
    if not caller.is_staff and order.user_id != caller.user_id:
        raise ForbiddenError("You can only view your own orders.")
    return order


async def list_orders(db: AsyncSession, caller: CurrentUser) -> list[Order]:
    query = select(Order).order_by(Order.created_at.desc())
    if not caller.is_staff:
        query = query.where(Order.user_id == caller.user_id)
    result = await db.execute(query)
    return list(result.scalars().all())


@with_optimistic_retry()
async def cancel_order(db: AsyncSession, order_id: str, caller: CurrentUser) -> Order | None:
    """
    Cancel an order and reverse any loyalty points it earned, in one commit.

    Raises OrderNotFoundError / ForbiddenError. Returns the cancelled order,
    or None (no change) when it is already cancelled or completed.
    """
    order = await get_order_for_update(db, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    if not caller.is_manager and order.user_id != caller.user_id:
        raise ForbiddenError("Only the order owner or a manager can cancel this order.")
    if order.status.is_terminal:
        logger.info("Order %s not cancelled: already %s", order_id, order.status.value)
        return None

    order.status = OrderStatus.CANCELLED
    order.updated_at = utcnow()
    reversed_points = await loyalty_ops.reverse_points_for_order(db, order.id)
    await db.commit()
    logger.info(
        "Order %s cancelled by %s (%s); %d loyalty points reversed",
        order_id, caller.user_id, caller.role.value, reversed_points,
    )
    return order
