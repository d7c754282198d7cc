"""
Module: settlement_kernel.models.notification
Responsibility: ORM persistence for delivered notifications (the pull feed).
Architecture position: Kernel > Models.  May import from db/base.py only
    (domain DTOs are imported lazily inside to_dto).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import BigInteger, Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from settlement_kernel.db.base import Base, UTCDateTime, UUIDString

if TYPE_CHECKING:
    from settlement_kernel.domain.notification import NotificationRecord


class NotificationModel(Base):
    """One delivered notification for one recipient."""

    __tablename__ = "notifications"

    __table_args__ = (
        Index("idx_notification_recipient", "recipient_id", "read"),
    )

    recipient_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    category: Mapped[str] = mapped_column(String(10), nullable=False)
    bill_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)
    # Delivery order; breaks ties between rows stamped at the same instant.
    sequence: Mapped[int] = mapped_column(BigInteger, nullable=False)
    read: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    read_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    def to_dto(self) -> NotificationRecord:
        from settlement_kernel.domain.notification import (
            NotificationCategory,
            NotificationRecord,
        )

        return NotificationRecord(
            id=self.id,
            recipient_id=self.recipient_id,
            title=self.title,
            message=self.message,
            category=NotificationCategory(self.category),
            created_at=self.created_at,
            read=self.read,
            read_at=self.read_at,
            bill_id=self.bill_id,
        )
