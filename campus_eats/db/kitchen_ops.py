"""
Campus Eats — Kitchen task state machine

Task states: NotStarted → Preparing → Ready → Completed.
The owning order mirrors a subset:
    Preparing        → order preparing
    Ready, Completed → order completed
The first time the order leaves pending/confirmed this way, the customer is
awarded loyalty points for the order total. Order.loyalty_points_awarded is
checked and set under the order's row lock, in the same commit as the award,
so repeated or concurrent updates award at most once.
"""
import logging
from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.core.config import get_settings
from campus_eats.core.errors import (
    BusinessRuleError,
    InvalidStatusError,
    KitchenTaskNotFoundError,
    OrderCancelledError,
    OrderNotFoundError,
)
from campus_eats.core.optimistic_lock import with_optimistic_retry
from campus_eats.db import loyalty_ops
from campus_eats.db.database import utcnow
from campus_eats.db.order_ops import get_order_for_update
from campus_eats.models.kitchen import KitchenTask, KitchenTaskStatus
from campus_eats.models.order import Order, OrderStatus

settings = get_settings()
logger = logging.getLogger(__name__)

# Order status mirrored for each task status; NotStarted leaves the order alone.
ORDER_STATUS_FOR_TASK: dict[KitchenTaskStatus, OrderStatus | None] = {
    KitchenTaskStatus.NOT_STARTED: None,
    KitchenTaskStatus.PREPARING: OrderStatus.PREPARING,
    KitchenTaskStatus.READY: OrderStatus.COMPLETED,
    KitchenTaskStatus.COMPLETED: OrderStatus.COMPLETED,
}

# Order statuses that mean the kitchen has started on the order.
AWARD_TRIGGER_STATUSES = frozenset({OrderStatus.PREPARING, OrderStatus.COMPLETED})


@dataclass
class KitchenTaskUpdate:
    task: KitchenTask
    order: Order | None
    points_awarded: int = 0


def parse_status(value: str | None) -> KitchenTaskStatus:
    status = KitchenTaskStatus.parse(value)
    if status is None:
        raise InvalidStatusError(value)
    return status


async def get_task(db: AsyncSession, task_id: str) -> KitchenTask:
    task = await db.get(KitchenTask, task_id)
    if task is None:
        raise KitchenTaskNotFoundError(task_id)
    return task


async def list_kitchen_tasks(
    db: AsyncSession,
    status: str | None = None,
) -> list[tuple[KitchenTask, OrderStatus | None]]:
    """Kitchen board: tasks oldest first, each with its order's status."""
    query = (
        select(KitchenTask, Order.status)
        .outerjoin(Order, Order.id == KitchenTask.order_id)
        .order_by(KitchenTask.updated_at)
    )
    if status:
        query = query.where(KitchenTask.status == parse_status(status))
    result = await db.execute(query)
    return [(row[0], row[1]) for row in result.all()]


async def create_kitchen_task(
    db: AsyncSession,
    order_id: str,
    assigned_to: str | None = None,
    notes: str | None = None,
) -> KitchenTask:
    """Manually attach a task to an order that has none (one task per order)."""
    order = await db.get(Order, order_id)
    if order is None:
        raise OrderNotFoundError(order_id)
    existing = (await db.execute(
        select(KitchenTask.id).where(KitchenTask.order_id == order_id)
    )).scalar_one_or_none()
    if existing is not None:
        raise BusinessRuleError(f"Order {order_id} already has kitchen task {existing}.")

    task = KitchenTask(
        order_id=order_id,
        assigned_to=assigned_to,
        status=KitchenTaskStatus.NOT_STARTED,
        notes=_clean_notes(notes),
        updated_at=utcnow(),
    )
    db.add(task)
    try:
        await db.commit()
    except IntegrityError:
        await db.rollback()
        raise BusinessRuleError(f"Order {order_id} already has a kitchen task.")
    logger.info("Created kitchen task %s for order %s", task.id, order_id)
    return task


async def delete_kitchen_task(db: AsyncSession, task_id: str) -> None:
    """Admin removal. Does not touch the order or the ledger."""
    task = await get_task(db, task_id)
    await db.delete(task)
    await db.commit()
    logger.info("Deleted kitchen task %s (order %s)", task_id, task.order_id)


def _clean_notes(notes: str | None) -> str | None:
    if notes is None or not notes.strip():
        return None
    notes = notes.strip()
    if len(notes) > settings.KITCHEN_NOTES_MAX_LENGTH:
        raise BusinessRuleError(f"Notes cannot exceed {settings.KITCHEN_NOTES_MAX_LENGTH} characters.")
    return notes


@with_optimistic_retry()
async def update_kitchen_task(
    db: AsyncSession,
    task_id: str,
    status: str | None = None,
    assigned_to: str | None = None,
    notes: str | None = None,
) -> KitchenTaskUpdate:
    """
    Apply a kitchen worker's change to a task and mirror it onto the order.

    Notes and assignee are free-form and always accepted. A status change
    on a cancelled order is refused unless it is Completed, which only
    clears the task from the board and leaves the order cancelled.
    """
    task = await get_task(db, task_id)
    new_status = parse_status(status) if status is not None and status.strip() else None
    order = await get_order_for_update(db, task.order_id)

    if assigned_to:
        task.assigned_to = assigned_to
    cleaned_notes = _clean_notes(notes)
    if cleaned_notes is not None:
        task.notes = cleaned_notes

    update = KitchenTaskUpdate(task=task, order=order)

    if new_status is not None:
        if order is not None and order.status == OrderStatus.CANCELLED:
            if new_status != KitchenTaskStatus.COMPLETED:
                raise OrderCancelledError()
            task.status = new_status
        else:
            task.status = new_status
            if order is not None:
                update.points_awarded = await _mirror_onto_order(db, order, new_status)

    task.updated_at = utcnow()
    await db.commit()
    logger.info(
        "Kitchen task %s → %s (order %s: %s)",
        task.id, task.status.value, task.order_id, order.status.value if order else "missing",
    )
    return update


async def _mirror_onto_order(db: AsyncSession, order: Order, task_status: KitchenTaskStatus) -> int:
    """Sync the order with the task and award points once. Returns points awarded."""
    mirrored = ORDER_STATUS_FOR_TASK[task_status]
    if mirrored is None:
        return 0
    order.status = mirrored
    order.updated_at = utcnow()

    if order.status not in AWARD_TRIGGER_STATUSES or order.loyalty_points_awarded:
        return 0

    points = await loyalty_ops.award_points_for_order(db, order.user_id, order.id, order.total)
    order.loyalty_points_awarded = True
    return points
