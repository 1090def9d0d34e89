"""
Campus Eats — Loyalty ledger models

The transaction table is the source of truth; LoyaltyAccount.points is a
cached running sum that every ledger operation updates in the same commit.
"""
import uuid
from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import String, Integer, DateTime, Text, Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from campus_eats.db.database import Base, utcnow


class LoyaltyTransactionType(str, PyEnum):
    EARNED = "Earned"
    REDEEMED = "Redeemed"
    ADJUSTED = "Adjusted"


class LoyaltyAccount(Base):
    __tablename__ = "loyalty_accounts"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    user_id: Mapped[str] = mapped_column(String(36), unique=True, index=True, nullable=False)
    points: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
    version_id: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version_id}

    def __repr__(self) -> str:
        return f"<LoyaltyAccount user_id={self.user_id} points={self.points}>"


class LoyaltyTransaction(Base):
    """[AUDIT DATA] — append-only, never updated or deleted."""
    __tablename__ = "loyalty_transactions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    loyalty_account_id: Mapped[str] = mapped_column(
        ForeignKey("loyalty_accounts.id"), index=True, nullable=False
    )
    points_change: Mapped[int] = mapped_column(Integer, nullable=False)
    type: Mapped[LoyaltyTransactionType] = mapped_column(
        Enum(LoyaltyTransactionType, name="loyalty_transaction_type",
             values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    related_order_id: Mapped[str | None] = mapped_column(String(36), index=True, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow)
