"""
Campus Eats — Order schemas
"""
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field

from campus_eats.models.order import OrderStatus


class OrderItemRequest(BaseModel):
    menu_item_id: str = Field(..., examples=["item-001"])
    quantity: int = Field(..., ge=1, le=50)


class PlaceOrderRequest(BaseModel):
    items: list[OrderItemRequest] = Field(..., min_length=1, max_length=20)
    notes: str | None = Field(None, max_length=100)


class OrderItemResponse(BaseModel):
    menu_item_id: str
    quantity: int
    unit_price: Decimal
    line_total: Decimal

    model_config = {"from_attributes": True}


class OrderResponse(BaseModel):
    id: str
    user_id: str
    status: OrderStatus
    subtotal: Decimal
    discount_amount: Decimal
    total: Decimal
    loyalty_points_awarded: bool
    notes: str | None = None
    created_at: datetime
    updated_at: datetime
    items: list[OrderItemResponse]

    model_config = {"from_attributes": True}


class CancelOrderResponse(BaseModel):
    order_id: str
    cancelled: bool
    message: str
