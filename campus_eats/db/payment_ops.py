"""
Campus Eats — Payment confirmation

Flow for a ``checkout.session.completed`` event:
  1. Extract metadata (flat or event-wrapped)          → data-format errors
  2. Lock the Payment row; SUCCEEDED means replay      → return existing order
  3. Price the cart at current menu prices
  4. Apply and consume the user's coupon, if any
  5. Create Order + OrderItems + KitchenTask
  6. Mark the Payment SUCCEEDED and link the order
Steps 2–6 are a single commit: a coupon is never consumed without its
order, and an order never exists without its payment marked succeeded.
"""
import json
import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Sequence

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.config import get_settings
from campus_eats.core.errors import (
    CouponAlreadyUsedError,
    CouponExpiredError,
    CouponNotApplicableError,
    MalformedMetadataError,
)
from campus_eats.core.optimistic_lock import with_optimistic_retry
from campus_eats.core.security import CurrentUser
from campus_eats.db import coupon_ops, order_ops
from campus_eats.db.database import utcnow
from campus_eats.models.order import Order
from campus_eats.models.payment import Payment, PaymentStatus
from campus_eats.schemas.payment import CartItem, parse_checkout_metadata

settings = get_settings()
logger = logging.getLogger(__name__)


@dataclass
class PaymentSession:
    payment: Payment
    subtotal: Decimal
    discount: Decimal
    metadata: dict[str, str]


@dataclass
class ConfirmationOutcome:
    processed: bool
    order: Order | None = None
    replay: bool = False
    message: str = ""


async def get_payment_for_update(db: AsyncSession, payment_id: str) -> Payment | None:
    result = await db.execute(
        select(Payment)
        .where(Payment.id == payment_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


def _cart_pairs(items: Sequence[CartItem]) -> list[tuple[str, int]]:
    return [(item.menu_item_id, item.quantity) for item in items]


async def create_payment_session(
    db: AsyncSession,
    caller: CurrentUser,
    items: Sequence[CartItem],
    notes: str | None = None,
    user_coupon_id: str | None = None,
) -> PaymentSession:
    """
    Start checkout: record a PENDING payment for the expected amount and
    return the metadata the checkout provider must send back on completion.
    The coupon is checked here but only consumed at confirmation.
    """
    lines = await order_ops.price_cart(db, _cart_pairs(items))
    subtotal = order_ops.subtotal_of(lines)
    discount = Decimal("0")

    if user_coupon_id:
        user_coupon, coupon = await coupon_ops.get_user_coupon(db, user_coupon_id, caller.user_id)
        if user_coupon.is_used:
            raise CouponAlreadyUsedError()
        if coupon_ops.is_expired(user_coupon.expires_at):
            raise CouponExpiredError()
        if coupon.minimum_order_amount is not None and subtotal < coupon.minimum_order_amount:
            raise CouponNotApplicableError(
                f"Coupon requires a minimum order of {coupon.minimum_order_amount}"
            )
        discount = coupon_ops.compute_discount(coupon, lines)

    payment = Payment(
        user_id=caller.user_id,
        amount=max(subtotal - discount, Decimal("0")),
        currency=settings.PAYMENT_CURRENCY,
        status=PaymentStatus.PENDING,
        created_at=utcnow(),
    )
    db.add(payment)
    await db.flush()

    metadata = {
        "payment_id": payment.id,
        "user_id": caller.user_id,
        "order_items": json.dumps(
            [{"menuItemId": line.menu_item_id, "quantity": line.quantity} for line in lines]
        ),
        "order_notes": notes or "",
    }
    if user_coupon_id:
        metadata["user_coupon_id"] = user_coupon_id

    await db.commit()
    logger.info("Payment %s opened for user %s: amount=%s", payment.id, caller.user_id, payment.amount)
    return PaymentSession(payment=payment, subtotal=subtotal, discount=discount, metadata=metadata)


@with_optimistic_retry()
async def confirm_payment(db: AsyncSession, event_type: str | None, payload: dict[str, Any]) -> ConfirmationOutcome:
    """
    Turn a completed checkout into an order. Safe to call repeatedly with
    the same event: once the payment is SUCCEEDED, later calls return the
    order it produced without touching anything.
    """
    if event_type != settings.CHECKOUT_COMPLETED_EVENT:
        return ConfirmationOutcome(processed=False, message=f"Ignored event type {event_type!r}")

    metadata = parse_checkout_metadata(payload)

    payment = await get_payment_for_update(db, metadata.payment_id)
    if payment is None:
        logger.warning("Checkout completed for unknown payment %s; ignoring", metadata.payment_id)
        return ConfirmationOutcome(processed=False, message="Unknown payment")

    if payment.status == PaymentStatus.SUCCEEDED:
        order = await db.get(Order, payment.order_id) if payment.order_id else None
        logger.info("Payment %s already confirmed (order %s); replay ignored", payment.id, payment.order_id)
        return ConfirmationOutcome(processed=False, order=order, replay=True, message="Payment already confirmed")

    lines = await order_ops.price_cart(db, _cart_pairs(metadata.order_items), skip_unknown=True)
    if not lines:
        raise MalformedMetadataError("order_items did not resolve to any menu item.")

    discount = Decimal("0")
    if metadata.user_coupon_id:
        user_coupon, coupon = await coupon_ops.get_user_coupon(
            db, metadata.user_coupon_id, metadata.user_id, for_update=True
        )
        discount = coupon_ops.compute_discount(coupon, lines)
        coupon_ops.mark_used(user_coupon)

    order, task = await order_ops.create_order_with_task(
        db, metadata.user_id, lines, discount=discount, notes=metadata.order_notes,
    )

    payment.status = PaymentStatus.SUCCEEDED
    payment.order_id = order.id
    payment.completed_at = utcnow()
    await db.commit()

    if payment.amount != order.total:
        logger.warning(
            "Payment %s amount %s differs from order %s total %s (prices changed during checkout)",
            payment.id, payment.amount, order.id, order.total,
        )
    logger.info(
        "Payment %s confirmed: order %s (subtotal=%s discount=%s total=%s), kitchen task %s",
        payment.id, order.id, order.subtotal, order.discount_amount, order.total, task.id,
    )
    return ConfirmationOutcome(processed=True, order=order, message="Order created")
