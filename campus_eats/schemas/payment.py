"""
Campus Eats — Payment schemas and checkout webhook metadata
"""
import json
from decimal import Decimal
from typing import Any

from pydantic import AliasChoices, BaseModel, Field, ValidationError

from campus_eats.core.errors import MalformedMetadataError, MissingMetadataError


class CartItem(BaseModel):
    menu_item_id: str = Field(
        ...,
        min_length=1,
        validation_alias=AliasChoices("menuItemId", "menu_item_id", "MenuItemId"),
    )
    quantity: int = Field(..., ge=1, le=50, validation_alias=AliasChoices("quantity", "Quantity"))


class PaymentSessionRequest(BaseModel):
    items: list[CartItem] = Field(..., min_length=1, max_length=20)
    notes: str | None = Field(None, max_length=100)
    user_coupon_id: str | None = None


class PaymentSessionResponse(BaseModel):
    payment_id: str
    amount: Decimal
    currency: str
    subtotal: Decimal
    discount_amount: Decimal
    metadata: dict[str, str]


class WebhookResponse(BaseModel):
    received: bool = True
    processed: bool
    order_id: str | None = None
    message: str


class CheckoutMetadata(BaseModel):
    """Metadata attached to the checkout session and echoed back by the provider."""
    payment_id: str
    user_id: str
    order_items: list[CartItem]
    user_coupon_id: str | None = None
    order_notes: str | None = None


def _metadata_object(payload: dict[str, Any]) -> dict[str, Any]:
    """Flat ``metadata`` first, then the event-wrapped ``data.object.metadata``."""
    flat = payload.get("metadata")
    if isinstance(flat, dict):
        return flat

    data = payload.get("data")
    if isinstance(data, dict):
        obj = data.get("object")
        if isinstance(obj, dict) and isinstance(obj.get("metadata"), dict):
            return obj["metadata"]

    raise MissingMetadataError("Missing `metadata` in payload or in `data.object`.")


def _required(metadata: dict[str, Any], key: str) -> str:
    value = metadata.get(key)
    if value is None:
        raise MalformedMetadataError(
            "Required metadata keys (payment_id, user_id, order_items) are missing."
        )
    value = str(value).strip()
    if not value:
        raise MalformedMetadataError("One or more required metadata values are empty.")
    return value


def _optional(metadata: dict[str, Any], key: str) -> str | None:
    value = metadata.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def parse_checkout_metadata(payload: dict[str, Any]) -> CheckoutMetadata:
    """
    Pull the checkout metadata out of a webhook payload.
    Raises MissingMetadataError / MalformedMetadataError (data-format errors).
    """
    metadata = _metadata_object(payload)
    payment_id = _required(metadata, "payment_id")
    user_id = _required(metadata, "user_id")
    raw_items = metadata.get("order_items")
    if isinstance(raw_items, str):
        raw_items = _required(metadata, "order_items")
        try:
            raw_items = json.loads(raw_items)
        except json.JSONDecodeError as exc:
            raise MalformedMetadataError(f"order_items is not valid JSON: {exc.msg}") from exc
    elif raw_items is None:
        _required(metadata, "order_items")

    try:
        return CheckoutMetadata(
            payment_id=payment_id,
            user_id=user_id,
            order_items=raw_items,
            user_coupon_id=_optional(metadata, "user_coupon_id"),
            order_notes=_optional(metadata, "order_notes"),
        )
    except ValidationError as exc:
        raise MalformedMetadataError(f"Invalid checkout metadata: {exc.errors()[0]['msg']}") from exc
