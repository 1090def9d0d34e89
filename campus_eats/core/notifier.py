"""
Campus Eats — Order status notifications over Redis pub/sub

Committed order state changes are published to channel ``order:{order_id}``;
the SSE endpoint in ``campus_eats.api.notifications`` relays them to browsers.
Publishing is best-effort: the order is already committed when we get here.
"""
import json
import logging

import redis.asyncio as aioredis

from campus_eats.core.config import get_settings

settings = get_settings()
logger = logging.getLogger(__name__)

ORDER_CHANNEL = "order:{order_id}"

_redis_client: aioredis.Redis | None = None


def get_redis() -> aioredis.Redis:
    global _redis_client
    if _redis_client is None:
        _redis_client = aioredis.from_url(
            settings.redis_url,
            decode_responses=True,
            socket_connect_timeout=settings.HEALTH_CHECK_TIMEOUT,
        )
    return _redis_client


async def close_redis():
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


def order_channel(order_id: str) -> str:
    return ORDER_CHANNEL.format(order_id=order_id)


async def publish_order_update(
    order_id: str,
    status: str,
    user_id: str | None = None,
    kitchen_status: str | None = None,
) -> bool:
    """Push an order state change to subscribers. Returns False if Redis is unreachable."""
    payload = {"order_id": order_id, "status": status, "user_id": user_id}
    if kitchen_status is not None:
        payload["kitchen_status"] = kitchen_status
    try:
        await get_redis().publish(order_channel(order_id), json.dumps(payload))
    except Exception as exc:
        # Notification failures MUST NOT affect order processing
        logger.warning("Order %s: status notification not delivered: %s", order_id, exc)
        return False
    return True
