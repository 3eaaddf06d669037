# app/repositories/notification_repo.py
import uuid

from sqlmodel import Session, select, col

from app.models.notification import Notification


class NotificationRepository:
    """
    Data access layer for Notification.
    """

    def get_by_id(self, session: Session, notification_id: uuid.UUID) -> Notification | None:
        return session.get(Notification, notification_id)

    def list_for_recipient(
        self,
        session: Session,
        recipient_id: uuid.UUID,
        unread_only: bool = False,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Notification]:
        stmt = select(Notification).where(Notification.recipient_id == recipient_id)
        if unread_only:
            stmt = stmt.where(Notification.is_read == False)  # noqa: E712
        stmt = stmt.order_by(col(Notification.created_at).desc()).offset(skip).limit(limit)
        return session.exec(stmt).all()

    def create(self, session: Session, notification: Notification) -> Notification:
        session.add(notification)
        session.commit()
        return notification

    def update(self, session: Session, notification: Notification) -> Notification:
        session.add(notification)
        session.commit()
        session.refresh(notification)
        return notification
