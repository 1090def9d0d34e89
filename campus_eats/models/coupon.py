"""
Campus Eats — Coupons bought with loyalty points
"""
import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum as PyEnum
from sqlalchemy import String, Integer, Numeric, DateTime, Text, Boolean, Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from campus_eats.db.database import Base, utcnow


class CouponType(str, PyEnum):
    PERCENTAGE_DISCOUNT = "PercentageDiscount"
    FIXED_AMOUNT_DISCOUNT = "FixedAmountDiscount"
    FREE_ITEM = "FreeItem"


class Coupon(Base):
    """[CONFIG DATA] — managed by MANAGER users."""
    __tablename__ = "coupons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    type: Mapped[CouponType] = mapped_column(
        Enum(CouponType, name="coupon_type", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    discount_value: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    points_cost: Mapped[int] = mapped_column(Integer, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    specific_menu_item_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
    minimum_order_amount: Mapped[Decimal | None] = mapped_column(Numeric(10, 2), nullable=True)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)


class UserCoupon(Base):
    """[TRANSACTIONAL DATA] — one purchased, consumable instance of a Coupon."""
    __tablename__ = "user_coupons"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), index=True, nullable=False)
    coupon_id: Mapped[str] = mapped_column(ForeignKey("coupons.id"), index=True, nullable=False)
    acquired_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    expires_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_used: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    used_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
