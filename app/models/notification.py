# app/models/notification.py
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field


class Notification(SQLModel, table=True):
    """
    In-app notification written after a workflow transition commits.
    """

    __tablename__ = "notifications"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    recipient_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    # order_placed | order_approved | order_rejected | order_cancelled |
    # order_status | delivery_assigned | delivery_picked_up |
    # delivery_delivered | delivery_issue | delivery_returned
    type: str = Field(index=True)

    title: str
    message: str

    # low | medium | high
    priority: str = Field(default="medium")

    related_order_id: uuid.UUID | None = Field(default=None, index=True)
    related_delivery_id: uuid.UUID | None = Field(default=None)

    data: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False, default=dict),
    )

    is_read: bool = Field(default=False, index=True)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation timestamp (UTC)",
    )
