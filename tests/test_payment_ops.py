"""
Payment confirmation: checkout session → webhook → order, coupon and
payment committed together; replays and foreign events do nothing.
"""
import json
from decimal import Decimal

import pytest
from sqlalchemy import func, select

from campus_eats.core.errors import (
    CouponAlreadyUsedError,
    MalformedMetadataError,
    MissingMetadataError,
    UserCouponNotFoundError,
)
from campus_eats.core.security import CurrentUser
from campus_eats.db import payment_ops
from campus_eats.models.coupon import CouponType, UserCoupon
from campus_eats.models.kitchen import KitchenTask, KitchenTaskStatus
from campus_eats.models.order import Order, OrderStatus
from campus_eats.models.payment import Payment, PaymentStatus
from campus_eats.schemas.payment import CartItem

COMPLETED = "checkout.session.completed"
STUDENT = CurrentUser("student-1")


async def _order_count(db) -> int:
    return (await db.execute(select(func.count()).select_from(Order))).scalar_one()


async def _payment(db, payment_id) -> Payment:
    return await db.get(Payment, payment_id, populate_existing=True)


@pytest.fixture
def checkout(db, add_menu_item):
    """Open a checkout for 2 x 25.00 and return (session, menu item)."""
    async def _open(user_coupon_id=None, notes=None):
        burger = await add_menu_item("Burger", "25.00")
        session = await payment_ops.create_payment_session(
            db, STUDENT, [CartItem(menu_item_id=burger.id, quantity=2)],
            notes=notes, user_coupon_id=user_coupon_id,
        )
        return session, burger
    return _open


# ─── Checkout session ──────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_session_records_pending_payment_and_metadata(db, checkout):
    session, burger = await checkout(notes="extra napkins")

    assert session.payment.status == PaymentStatus.PENDING
    assert session.payment.amount == Decimal("50.00")
    assert session.metadata["payment_id"] == session.payment.id
    assert session.metadata["user_id"] == "student-1"
    assert json.loads(session.metadata["order_items"]) == [{"menuItemId": burger.id, "quantity": 2}]
    assert session.metadata["order_notes"] == "extra napkins"
    assert "user_coupon_id" not in session.metadata


@pytest.mark.asyncio
async def test_session_refuses_used_coupon(db, checkout, add_coupon, give_coupon):
    coupon = await add_coupon()
    used = await give_coupon("student-1", coupon, is_used=True)

    with pytest.raises(CouponAlreadyUsedError):
        await checkout(user_coupon_id=used.id)


# ─── Confirmation ──────────────────────────────────────────────────────────────
@pytest.mark.asyncio
async def test_confirmation_with_percentage_coupon(db, checkout, add_coupon, give_coupon):
    """50.00 with a 20% coupon: discount 10.00, total 40.00, coupon consumed."""
    coupon = await add_coupon(type=CouponType.PERCENTAGE_DISCOUNT, discount_value="20")
    user_coupon = await give_coupon("student-1", coupon)
    session, _ = await checkout(user_coupon_id=user_coupon.id, notes="no ketchup")
    assert session.payment.amount == Decimal("40.00")

    outcome = await payment_ops.confirm_payment(db, COMPLETED, {"type": COMPLETED, "metadata": session.metadata})

    assert outcome.processed is True
    order = outcome.order
    assert order.user_id == "student-1"
    assert order.status == OrderStatus.PENDING
    assert order.subtotal == Decimal("50.00")
    assert order.discount_amount == Decimal("10.00")
    assert order.total == Decimal("40.00")

    payment = await _payment(db, session.payment.id)
    assert payment.status == PaymentStatus.SUCCEEDED
    assert payment.order_id == order.id
    assert payment.completed_at is not None

    consumed = await db.get(UserCoupon, user_coupon.id, populate_existing=True)
    assert consumed.is_used is True and consumed.used_at is not None

    task = (await db.execute(select(KitchenTask).where(KitchenTask.order_id == order.id))).scalar_one()
    assert task.status == KitchenTaskStatus.NOT_STARTED
    assert task.notes == "no ketchup"


@pytest.mark.asyncio
async def test_confirmation_with_free_item_coupon(db, add_menu_item, add_coupon, give_coupon, add_account):
    burger = await add_menu_item("Burger", "30.00")
    drink = await add_menu_item("Lemonade", "5.00")
    coupon = await add_coupon(type=CouponType.FREE_ITEM, discount_value="0", specific_menu_item_id=drink.id)
    user_coupon = await give_coupon("student-1", coupon)
    session = await payment_ops.create_payment_session(
        db, STUDENT,
        [CartItem(menu_item_id=burger.id, quantity=1), CartItem(menu_item_id=drink.id, quantity=1)],
        user_coupon_id=user_coupon.id,
    )

    outcome = await payment_ops.confirm_payment(db, COMPLETED, {"type": COMPLETED, "metadata": session.metadata})

    assert outcome.order.subtotal == Decimal("35.00")
    assert outcome.order.discount_amount == Decimal("5.00")
    assert outcome.order.total == Decimal("30.00")


@pytest.mark.asyncio
async def test_replayed_webhook_is_a_noop(db, checkout):
    session, _ = await checkout()
    payload = {"type": COMPLETED, "metadata": session.metadata}

    first = await payment_ops.confirm_payment(db, COMPLETED, payload)
    replay = await payment_ops.confirm_payment(db, COMPLETED, payload)

    assert first.processed is True
    assert replay.processed is False
    assert replay.replay is True
    assert replay.order.id == first.order.id


@pytest.mark.asyncio
async def test_replayed_webhook_with_coupon_does_not_reuse_it(db, checkout, add_coupon, give_coupon):
    coupon = await add_coupon(type=CouponType.PERCENTAGE_DISCOUNT, discount_value="20")
    user_coupon_id = (await give_coupon("student-1", coupon)).id
    session, _ = await checkout(user_coupon_id=user_coupon_id)
    payload = {"type": COMPLETED, "metadata": session.metadata}

    first = await payment_ops.confirm_payment(db, COMPLETED, payload)
    first_order_id = first.order.id
    replay = await payment_ops.confirm_payment(db, COMPLETED, payload)

    assert replay.processed is False
    assert replay.replay is True
    assert replay.order.id == first_order_id
    assert replay.order.discount_amount == Decimal("10.00")
    assert await _order_count(db) == 1
    assert (await db.get(UserCoupon, user_coupon_id, populate_existing=True)).is_used is True
    assert await _order_count(db) == 1


@pytest.mark.asyncio
async def test_event_wrapped_metadata(db, checkout):
    session, _ = await checkout()
    payload = {"type": COMPLETED, "data": {"object": {"metadata": session.metadata}}}

    outcome = await payment_ops.confirm_payment(db, COMPLETED, payload)

    assert outcome.processed is True
    assert outcome.order.total == Decimal("50.00")


@pytest.mark.asyncio
async def test_other_event_types_are_ignored(db, checkout):
    session, _ = await checkout()

    outcome = await payment_ops.confirm_payment(
        db, "payment_intent.created", {"type": "payment_intent.created", "metadata": session.metadata},
    )

    assert outcome.processed is False
    assert await _order_count(db) == 0
    assert (await _payment(db, session.payment.id)).status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_unknown_payment_is_ignored(db, add_menu_item):
    burger = await add_menu_item()
    metadata = {
        "payment_id": "never-created",
        "user_id": "student-1",
        "order_items": json.dumps([{"menuItemId": burger.id, "quantity": 1}]),
    }

    outcome = await payment_ops.confirm_payment(db, COMPLETED, {"type": COMPLETED, "metadata": metadata})

    assert outcome.processed is False
    assert await _order_count(db) == 0


@pytest.mark.asyncio
async def test_unknown_menu_items_are_skipped(db, checkout):
    session, burger = await checkout()
    metadata = dict(session.metadata)
    metadata["order_items"] = json.dumps([
        {"menuItemId": burger.id, "quantity": 1},
        {"menuItemId": "removed-from-menu", "quantity": 3},
    ])

    outcome = await payment_ops.confirm_payment(db, COMPLETED, {"type": COMPLETED, "metadata": metadata})

    assert [item.menu_item_id for item in outcome.order.items] == [burger.id]
    assert outcome.order.total == Decimal("25.00")


@pytest.mark.asyncio
async def test_bad_metadata_is_a_data_format_error(db, checkout):
    session, _ = await checkout()
    payment_id = session.payment.id

    with pytest.raises(MissingMetadataError):
        await payment_ops.confirm_payment(db, COMPLETED, {"type": COMPLETED})

    broken = dict(session.metadata, order_items="[{not json")
    with pytest.raises(MalformedMetadataError):
        await payment_ops.confirm_payment(db, COMPLETED, {"type": COMPLETED, "metadata": broken})

    no_user = {k: v for k, v in session.metadata.items() if k != "user_id"}
    with pytest.raises(MalformedMetadataError):
        await payment_ops.confirm_payment(db, COMPLETED, {"type": COMPLETED, "metadata": no_user})

    nothing_known = dict(session.metadata, order_items=json.dumps([{"menuItemId": "gone", "quantity": 1}]))
    with pytest.raises(MalformedMetadataError):
        await payment_ops.confirm_payment(db, COMPLETED, {"type": COMPLETED, "metadata": nothing_known})

    assert (await _payment(db, payment_id)).status == PaymentStatus.PENDING


@pytest.mark.asyncio
async def test_failed_coupon_rolls_back_everything(db, checkout, add_coupon, give_coupon):
    coupon = await add_coupon()
    someone_elses_id = (await give_coupon("student-2", coupon)).id
    session, _ = await checkout()
    payment_id = session.payment.id
    metadata = dict(session.metadata, user_coupon_id=someone_elses_id)

    with pytest.raises(UserCouponNotFoundError):
        await payment_ops.confirm_payment(db, COMPLETED, {"type": COMPLETED, "metadata": metadata})

    assert await _order_count(db) == 0
    assert (await _payment(db, payment_id)).status == PaymentStatus.PENDING
    assert (await db.get(UserCoupon, someone_elses_id, populate_existing=True)).is_used is False
