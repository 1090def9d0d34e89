"""
Campus Eats — Loyalty schemas
"""
from datetime import datetime
from pydantic import BaseModel, Field, field_validator

from campus_eats.models.loyalty import LoyaltyTransactionType


class LoyaltyAccountResponse(BaseModel):
    user_id: str
    points: int
    created_at: datetime | None = None
    updated_at: datetime | None = None

    model_config = {"from_attributes": True}


class LoyaltyTransactionResponse(BaseModel):
    id: str
    points_change: int
    type: LoyaltyTransactionType
    description: str
    related_order_id: str | None = None
    created_at: datetime

    model_config = {"from_attributes": True}


class RedeemPointsRequest(BaseModel):
    points: int = Field(..., gt=0)
    description: str = Field(..., min_length=1, max_length=255)

    @field_validator("description")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Description is required")
        return value.strip()


class RedeemPointsResult(BaseModel):
    success: bool
    message: str
    remaining_points: int | None = None
