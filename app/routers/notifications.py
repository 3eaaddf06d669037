# app/routers/notifications.py
import uuid

from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.core.auth import get_current_caller
from app.database import get_session
from app.repositories.notification_repo import NotificationRepository
from app.schemas.notification import NotificationRead
from app.schemas.user import CallerContext
from app.services.notification_service import NotificationService

router = APIRouter(prefix="/notifications", tags=["Notifications"])

repo = NotificationRepository()
service = NotificationService(repo)


@router.get("", response_model=list[NotificationRead])
def list_my_notifications(
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(get_current_caller),
    unread_only: bool = False,
    skip: int = 0,
    limit: int = 50,
):
    """
    The caller's notifications, newest first.
    """
    return service.list_for_caller(
        session, caller, unread_only=unread_only, skip=skip, limit=limit
    )


@router.post("/{notification_id}/read", response_model=NotificationRead)
def mark_notification_read(
    notification_id: uuid.UUID,
    session: Session = Depends(get_session),
    caller: CallerContext = Depends(get_current_caller),
):
    """
    Mark one of the caller's notifications as read.
    """
    return service.mark_read(session, caller, notification_id)
