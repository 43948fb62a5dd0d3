"""Notification bell: list and mark-read for inbox entries."""

from __future__ import annotations

from sqlalchemy import func, select, update
from sqlalchemy.orm import Session

from quotetrack.exceptions import RecordNotFoundError
from quotetrack.storage.database.models import Notification
from quotetrack.utils.datetime import utc_now


class NotificationInbox:
    """Read side of the in-app notifications.

    Marking an entry read only touches the notification row; the quote and
    its event log are never affected.
    """

    def __init__(self, db: Session):
        self.db = db

    def list(
        self,
        recipient: str | None = None,
        unread_only: bool = False,
        limit: int = 50,
    ) -> list[Notification]:
        stmt = select(Notification)
        if recipient:
            stmt = stmt.where(Notification.recipient == recipient)
        if unread_only:
            stmt = stmt.where(Notification.is_read.is_(False))
        stmt = stmt.order_by(Notification.created_at.desc(), Notification.id.desc()).limit(limit)
        return list(self.db.scalars(stmt).all())

    def unread_count(self, recipient: str | None = None) -> int:
        stmt = select(func.count(Notification.id)).where(Notification.is_read.is_(False))
        if recipient:
            stmt = stmt.where(Notification.recipient == recipient)
        return self.db.scalar(stmt) or 0

    def mark_read(self, notification_id: int) -> Notification:
        """Raises RecordNotFoundError for an unknown id. Idempotent."""
        notification = self.db.get(Notification, notification_id)
        if notification is None:
            raise RecordNotFoundError(
                f"Notification {notification_id} not found",
                entity_type="notification",
                entity_id=notification_id,
            )
        if not notification.is_read:
            notification.is_read = True
            notification.read_at = utc_now()
            self.db.commit()
        return notification

    def mark_all_read(self, recipient: str | None = None) -> int:
        """Mark every unread entry (optionally for one recipient) read."""
        stmt = (
            update(Notification)
            .where(Notification.is_read.is_(False))
            .values(is_read=True, read_at=utc_now())
        )
        if recipient:
            stmt = stmt.where(Notification.recipient == recipient)
        result = self.db.execute(stmt.execution_options(synchronize_session=False))
        self.db.commit()
        return result.rowcount or 0
