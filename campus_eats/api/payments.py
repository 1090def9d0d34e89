"""
Campus Eats — Payments API

Flow:
  1. POST /payments/session  → PENDING payment + metadata for the checkout provider
  2. Provider collects the money
  3. POST /payments/webhook  → order + kitchen task created, coupon consumed,
                                payment SUCCEEDED (one transaction)
Webhook deliveries are retried by the provider, so step 3 must be replay-safe.
"""
import logging
from typing import Any

from fastapi import APIRouter, Body, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from campus_eats.api.deps import get_current_user
from campus_eats.api.errors import to_http
from campus_eats.core.errors import CampusEatsError, DataFormatError
from campus_eats.core.notifier import publish_order_update
from campus_eats.core.security import CurrentUser
from campus_eats.db.database import get_db
from campus_eats.db import payment_ops
from campus_eats.schemas.payment import PaymentSessionRequest, PaymentSessionResponse, WebhookResponse

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/payments", tags=["payments"])


@router.post("/session", response_model=PaymentSessionResponse, status_code=status.HTTP_201_CREATED)
async def create_session(
    payload: PaymentSessionRequest,
    user: CurrentUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    try:
        session = await payment_ops.create_payment_session(
            db, user, payload.items, notes=payload.notes, user_coupon_id=payload.user_coupon_id,
        )
    except CampusEatsError as exc:
        raise to_http(exc)

    return PaymentSessionResponse(
        payment_id=session.payment.id,
        amount=session.payment.amount,
        currency=session.payment.currency,
        subtotal=session.subtotal,
        discount_amount=session.discount,
        metadata=session.metadata,
    )


@router.post("/webhook", response_model=WebhookResponse)
async def checkout_webhook(
    payload: dict[str, Any] = Body(...),
    db: AsyncSession = Depends(get_db),
):
    """
    Checkout provider callback. Only ``checkout.session.completed`` events
    do anything; everything else is acknowledged and ignored.
    """
    event_type = payload.get("type")
    try:
        outcome = await payment_ops.confirm_payment(db, event_type, payload)
    except DataFormatError as exc:
        logger.error("Rejected %s webhook: %s", event_type, exc.message)
        raise to_http(exc)
    except CampusEatsError as exc:
        logger.warning("Webhook %s could not be applied: %s", event_type, exc.message)
        raise to_http(exc)

    order = outcome.order
    if outcome.processed and order is not None:
        await publish_order_update(order.id, order.status.value, user_id=order.user_id)

    return WebhookResponse(
        processed=outcome.processed,
        order_id=order.id if order is not None else None,
        message=outcome.message,
    )
