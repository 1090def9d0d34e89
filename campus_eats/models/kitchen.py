"""
Campus Eats — Kitchen task model (1:1 with Order)
"""
import uuid
from datetime import datetime
from enum import Enum as PyEnum
from sqlalchemy import String, DateTime, Text, Enum, ForeignKey
from sqlalchemy.orm import Mapped, mapped_column
from campus_eats.db.database import Base, utcnow


class KitchenTaskStatus(str, PyEnum):
    NOT_STARTED = "NotStarted"
    PREPARING = "Preparing"
    READY = "Ready"
    COMPLETED = "Completed"

    @classmethod
    def parse(cls, value: str | None) -> "KitchenTaskStatus | None":
        """Case-insensitive lookup by value ("Preparing") or name ("NOT_STARTED")."""
        if not value:
            return None
        wanted = value.strip().replace("_", "").lower()
        for member in cls:
            if wanted in (member.value.lower(), member.name.replace("_", "").lower()):
                return member
        return None


class KitchenTask(Base):
    """
    [TRANSACTIONAL DATA] — created with its order, advanced by kitchen staff.
    Deleted only through the explicit admin delete.
    """
    __tablename__ = "kitchen_tasks"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=lambda: str(uuid.uuid4()))
    order_id: Mapped[str] = mapped_column(ForeignKey("orders.id"), unique=True, index=True, nullable=False)
    assigned_to: Mapped[str | None] = mapped_column(String(36), nullable=True)
    status: Mapped[KitchenTaskStatus] = mapped_column(
        Enum(KitchenTaskStatus, name="kitchen_task_status", values_callable=lambda e: [m.value for m in e]),
        default=KitchenTaskStatus.NOT_STARTED,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    updated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, onupdate=utcnow)
