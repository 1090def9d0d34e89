"""
Campus Eats — Coupon schemas
"""
from datetime import datetime
from decimal import Decimal
from pydantic import BaseModel, Field, model_validator

from campus_eats.models.coupon import CouponType


class CouponCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: str = Field("", max_length=500)
    type: CouponType
    discount_value: Decimal = Field(Decimal("0"), ge=0)
    points_cost: int = Field(..., ge=1)
    specific_menu_item_id: str | None = None
    minimum_order_amount: Decimal | None = Field(None, ge=0)
    expires_at: datetime | None = None

    @model_validator(mode="after")
    def _check_type_fields(self):
        if self.type == CouponType.PERCENTAGE_DISCOUNT and not (0 < self.discount_value <= 100):
            raise ValueError("Percentage discount must be between 0 and 100")
        if self.type == CouponType.FIXED_AMOUNT_DISCOUNT and self.discount_value <= 0:
            raise ValueError("Fixed discount must be greater than 0")
        if self.type == CouponType.FREE_ITEM and not self.specific_menu_item_id:
            raise ValueError("Free item coupons need specific_menu_item_id")
        return self


class CouponResponse(BaseModel):
    id: str
    name: str
    description: str
    type: CouponType
    discount_value: Decimal
    points_cost: int
    specific_menu_item_id: str | None = None
    minimum_order_amount: Decimal | None = None
    is_active: bool
    expires_at: datetime | None = None

    model_config = {"from_attributes": True}


class UserCouponResponse(BaseModel):
    id: str
    coupon_id: str
    coupon_name: str
    coupon_description: str
    coupon_type: CouponType
    discount_value: Decimal
    minimum_order_amount: Decimal | None = None
    specific_menu_item_id: str | None = None
    acquired_at: datetime
    expires_at: datetime | None = None
    is_used: bool
    used_at: datetime | None = None


class CouponActionResult(BaseModel):
    """Outcome of a purchase / refund. Business failures come back as success=False."""
    success: bool
    message: str
    remaining_points: int | None = None
    refunded_users: int | None = None
