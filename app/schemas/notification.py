# app/schemas/notification.py
import uuid
from datetime import datetime
from typing import Any, Literal

from sqlmodel import SQLModel

Priority = Literal["low", "medium", "high"]


class NotificationEvent(SQLModel):
    """
    Side effect produced by a workflow operation.

    Services return these alongside their result; the router dispatches
    them after the workflow has committed.
    """

    recipient_id: uuid.UUID
    type: str
    title: str
    message: str
    priority: Priority = "medium"
    related_order_id: uuid.UUID | None = None
    related_delivery_id: uuid.UUID | None = None
    data: dict[str, Any] = {}


class NotificationRead(SQLModel):
    id: uuid.UUID
    type: str
    title: str
    message: str
    priority: Priority
    related_order_id: uuid.UUID | None
    related_delivery_id: uuid.UUID | None
    data: dict[str, Any]
    is_read: bool
    created_at: datetime
