# app/services/notification_service.py
import logging
import uuid

from sqlmodel import Session

from app.core.errors import AccessDenied, NotFound
from app.models.notification import Notification
from app.repositories.notification_repo import NotificationRepository
from app.schemas.notification import NotificationEvent
from app.schemas.user import CallerContext

logger = logging.getLogger(__name__)


class NotificationService:
    """
    Stores in-app notifications produced by the order/delivery workflows.

    Dispatch happens after the workflow has committed. A failure here is
    logged and dropped; it never undoes or fails the state change that
    produced the event.
    """

    def __init__(self, repo: NotificationRepository):
        self.repo = repo

    def dispatch(self, session: Session, events: list[NotificationEvent]) -> int:
        """
        Persist each event as a Notification row.

        Returns the number of notifications stored.
        """
        stored = 0
        for event in events:
            try:
                self.repo.create(session, Notification(**event.model_dump()))
                stored += 1
            except Exception:
                session.rollback()
                logger.exception(
                    "Failed to store %s notification for user %s",
                    event.type,
                    event.recipient_id,
                )
        if events:
            logger.info("Dispatched %d/%d notifications", stored, len(events))
        return stored

    def list_for_caller(
        self,
        session: Session,
        caller: CallerContext,
        unread_only: bool = False,
        skip: int = 0,
        limit: int = 50,
    ) -> list[Notification]:
        return self.repo.list_for_recipient(
            session,
            caller.id,
            unread_only=unread_only,
            skip=skip,
            limit=limit,
        )

    def mark_read(
        self,
        session: Session,
        caller: CallerContext,
        notification_id: uuid.UUID,
    ) -> Notification:
        notification = self.repo.get_by_id(session, notification_id)
        if notification is None:
            raise NotFound("Notification not found")
        if notification.recipient_id != caller.id:
            raise AccessDenied("Not your notification")
        if not notification.is_read:
            notification.is_read = True
            notification = self.repo.update(session, notification)
        return notification
