"""
Campus Eats — Order status stream (SSE over Redis pub/sub)

Committed order changes are published to ``order:{order_id}`` by the routes
that make them; this endpoint relays the channel to the browser's
EventSource until the order is completed or cancelled.
"""
import json
import logging
import time
from typing import AsyncGenerator

from fastapi import APIRouter, Depends, Request
from fastapi.responses import StreamingResponse
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.api.deps import get_current_user
from campus_eats.api.errors import to_http
from campus_eats.core.config import get_settings
from campus_eats.core.errors import CampusEatsError
from campus_eats.core.notifier import get_redis, order_channel
from campus_eats.core.security import CurrentUser
from campus_eats.db.database import get_db
from campus_eats.db import order_ops
from campus_eats.models.order import OrderStatus

settings = get_settings()
logger = logging.getLogger(__name__)
router = APIRouter(prefix="/notifications", tags=["notifications"])

TERMINAL_STATUSES = {OrderStatus.COMPLETED.value, OrderStatus.CANCELLED.value}


def _event(name: str, payload: dict) -> str:
    return f"event: {name}\ndata: {json.dumps(payload)}\n\n"


async def _sse_generator(order_id: str, current: OrderStatus, request: Request) -> AsyncGenerator[str, None]:
    """Subscribe to the order's channel and yield SSE frames."""
    yield f"retry: {settings.SSE_RETRY_MILLISECONDS}\n\n"
    yield _event("order_update", {"order_id": order_id, "status": current.value})
    if current.is_terminal:
        return

    channel = order_channel(order_id)
    pubsub = get_redis().pubsub()
    await pubsub.subscribe(channel)
    last_sent = time.monotonic()

    try:
        while True:
            if await request.is_disconnected():
                break

            message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=1.0)
            if message and message["type"] == "message":
                try:
                    payload = json.loads(message["data"])
                except (TypeError, ValueError):
                    logger.warning("Order %s: dropping non-JSON message on %s", order_id, channel)
                    continue

                yield _event("order_update", payload)
                last_sent = time.monotonic()

                if payload.get("status") in TERMINAL_STATUSES:
                    break
            elif time.monotonic() - last_sent >= settings.SSE_KEEPALIVE_INTERVAL_SECONDS:
                yield ": keepalive\n\n"
                last_sent = time.monotonic()
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.aclose()


@router.get("/stream/{order_id}")
async def stream_order_updates(
    order_id: str,
    request: Request,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """
    SSE endpoint. The first event is the order's current status; later
    events follow each committed change until the order is terminal.
    """
    try:
        order = await order_ops.get_order(db, order_id, user)
    except CampusEatsError as exc:
        raise to_http(exc)

    return StreamingResponse(
        _sse_generator(order.id, order.status, request),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "X-Accel-Buffering": "no",  # Disable Nginx buffering
            "Connection": "keep-alive",
        },
    )
