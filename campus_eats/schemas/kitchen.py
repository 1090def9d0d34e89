"""
Campus Eats — Kitchen task schemas
"""
from datetime import datetime
from pydantic import BaseModel, Field

from campus_eats.models.kitchen import KitchenTaskStatus
from campus_eats.models.order import OrderStatus


class KitchenTaskCreateRequest(BaseModel):
    order_id: str
    assigned_to: str | None = None
    notes: str | None = Field(None, max_length=100)


class KitchenTaskUpdateRequest(BaseModel):
    """Any subset; status is matched case-insensitively ("preparing", "Ready", ...)."""
    status: str | None = None
    assigned_to: str | None = None
    notes: str | None = None


class KitchenTaskResponse(BaseModel):
    id: str
    order_id: str
    assigned_to: str | None = None
    status: KitchenTaskStatus
    notes: str | None = None
    updated_at: datetime
    order_status: OrderStatus | None = None
    points_awarded: int | None = None
