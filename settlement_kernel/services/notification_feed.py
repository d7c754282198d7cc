"""
settlement_kernel.services.notification_feed -- Pull side of notifications.

Lists a recipient's notifications newest first and tracks read state.
"""

from __future__ import annotations

from uuid import UUID

from sqlalchemy import func, select, update

from settlement_kernel.domain.clock import Clock, SystemClock
from settlement_kernel.domain.notification import NotificationRecord
from settlement_kernel.exceptions import NotificationNotFoundError, ValidationError
from settlement_kernel.logging_config import get_logger
from settlement_kernel.models.notification import NotificationModel
from settlement_kernel.services._transaction import SessionFactory, read_only, transaction

logger = get_logger("services.notification_feed")


class NotificationFeed:
    """Read and acknowledge delivered notifications."""

    def __init__(self, session_factory: SessionFactory, clock: Clock | None = None) -> None:
        self._session_factory = session_factory
        self._clock = clock or SystemClock()

    def list_for(
        self,
        recipient_id: UUID,
        unread_only: bool = False,
        limit: int = 50,
    ) -> tuple[NotificationRecord, ...]:
        if limit <= 0:
            raise ValidationError("limit", "must be positive")
        stmt = select(NotificationModel).where(NotificationModel.recipient_id == recipient_id)
        if unread_only:
            stmt = stmt.where(NotificationModel.read.is_(False))
        stmt = stmt.order_by(
            NotificationModel.created_at.desc(), NotificationModel.sequence.desc()
        ).limit(limit)
        with read_only(self._session_factory) as session:
            return tuple(m.to_dto() for m in session.execute(stmt).scalars())

    def unread_count(self, recipient_id: UUID) -> int:
        with read_only(self._session_factory) as session:
            return session.execute(
                select(func.count(NotificationModel.id)).where(
                    NotificationModel.recipient_id == recipient_id,
                    NotificationModel.read.is_(False),
                )
            ).scalar_one()

    def mark_read(self, notification_id: UUID) -> NotificationRecord:
        """Mark one notification read; re-marking keeps the first read_at."""
        with transaction(self._session_factory, "Notification", notification_id) as session:
            model = session.get(NotificationModel, notification_id)
            if model is None:
                raise NotificationNotFoundError(str(notification_id))
            if not model.read:
                model.read = True
                model.read_at = self._clock.now()
            session.flush()
            return model.to_dto()

    def mark_all_read(self, recipient_id: UUID) -> int:
        """Mark every unread notification of ``recipient_id`` read; returns the count."""
        with transaction(self._session_factory, "Notification", recipient_id) as session:
            result = session.execute(
                update(NotificationModel)
                .where(
                    NotificationModel.recipient_id == recipient_id,
                    NotificationModel.read.is_(False),
                )
                .values(read=True, read_at=self._clock.now())
            )
            count = result.rowcount
        logger.info(
            "notifications_marked_read",
            extra={"recipient_id": str(recipient_id), "count": count},
        )
        return count
