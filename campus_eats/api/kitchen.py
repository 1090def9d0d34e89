"""
Campus Eats — Kitchen board API (WORKER / MANAGER)
"""
from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.api.deps import require_manager, require_staff
from campus_eats.api.errors import to_http
from campus_eats.core.errors import CampusEatsError
from campus_eats.core.notifier import publish_order_update
from campus_eats.core.security import CurrentUser
from campus_eats.db.database import get_db
from campus_eats.db import kitchen_ops
from campus_eats.models.kitchen import KitchenTask
from campus_eats.models.order import OrderStatus
from campus_eats.schemas.kitchen import (
    KitchenTaskCreateRequest,
    KitchenTaskResponse,
    KitchenTaskUpdateRequest,
)

router = APIRouter(prefix="/kitchen", tags=["kitchen"])


def _task_response(
    task: KitchenTask,
    order_status: OrderStatus | None,
    points_awarded: int | None = None,
) -> KitchenTaskResponse:
    return KitchenTaskResponse(
        id=task.id,
        order_id=task.order_id,
        assigned_to=task.assigned_to,
        status=task.status,
        notes=task.notes,
        updated_at=task.updated_at,
        order_status=order_status,
        points_awarded=points_awarded,
    )


@router.get("/tasks", response_model=list[KitchenTaskResponse])
async def list_tasks(
    status: str | None = Query(None, description="Filter by task status (NotStarted, Preparing, Ready, Completed)"),
    _: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """Kitchen display board, oldest first, with each order's status."""
    try:
        rows = await kitchen_ops.list_kitchen_tasks(db, status)
    except CampusEatsError as exc:
        raise to_http(exc)
    return [_task_response(task, order_status) for task, order_status in rows]


@router.post("/tasks", response_model=KitchenTaskResponse, status_code=status.HTTP_201_CREATED)
async def create_task(
    payload: KitchenTaskCreateRequest,
    _: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    try:
        task = await kitchen_ops.create_kitchen_task(
            db, payload.order_id, assigned_to=payload.assigned_to, notes=payload.notes,
        )
    except CampusEatsError as exc:
        raise to_http(exc)
    return _task_response(task, None)


@router.patch("/tasks/{task_id}", response_model=KitchenTaskResponse)
async def update_task(
    task_id: str,
    payload: KitchenTaskUpdateRequest,
    _: CurrentUser = Depends(require_staff),
    db: AsyncSession = Depends(get_db),
):
    """
    Advance a task and mirror it onto the order. The first move into
    Preparing / Ready / Completed awards the customer's loyalty points.
    """
    try:
        update = await kitchen_ops.update_kitchen_task(
            db, task_id, status=payload.status, assigned_to=payload.assigned_to, notes=payload.notes,
        )
    except CampusEatsError as exc:
        raise to_http(exc)

    order = update.order
    if order is not None and payload.status:
        await publish_order_update(
            order.id, order.status.value, user_id=order.user_id, kitchen_status=update.task.status.value,
        )
    return _task_response(update.task, order.status if order else None, update.points_awarded)


@router.delete("/tasks/{task_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_task(
    task_id: str,
    _: CurrentUser = Depends(require_manager),
    db: AsyncSession = Depends(get_db),
):
    """Admin removal. The order and the loyalty ledger are not touched."""
    try:
        await kitchen_ops.delete_kitchen_task(db, task_id)
    except CampusEatsError as exc:
        raise to_http(exc)
