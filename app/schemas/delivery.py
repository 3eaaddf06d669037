# app/schemas/delivery.py
import uuid
from datetime import datetime
from typing import Literal

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel

from app.schemas.common import Pagination

DeliveryStatus = Literal[
    "assigned",
    "picked_up",
    "in_transit",
    "delivered",
    "failed",
    "returned",
]

# Statuses a worker can set through the plain status endpoint
WorkerDeliveryStatus = Literal["picked_up", "in_transit"]

IssueType = Literal[
    "customer_unavailable",
    "wrong_address",
    "address_not_found",
    "customer_refused",
    "product_damaged",
    "vehicle_breakdown",
    "weather",
    "security",
    "other",
]

IssueStatus = Literal["delivery_failed", "resolved_and_completed", "reported"]


def _strip_or_none(v: str | None) -> str | None:
    if v is None:
        return v
    v = v.strip()
    return v or None


# -------- Input payloads --------


class DeliveryStatusUpdate(SQLModel):
    model_config = ConfigDict(extra="forbid")

    status: WorkerDeliveryStatus


class DeliveryComplete(SQLModel):
    """
    Proof of delivery. Signature is mandatory; photo (URL) and notes
    are optional.
    """

    model_config = ConfigDict(extra="forbid")

    signature: str = ""
    photo: str | None = None
    notes: str | None = None

    @field_validator("signature")
    @classmethod
    def strip_signature(cls, v: str) -> str:
        return v.strip()

    @field_validator("photo", "notes")
    @classmethod
    def normalize_optional(cls, v: str | None) -> str | None:
        return _strip_or_none(v)


class IssueReport(SQLModel):
    """
    Issue raised by the worker.

    can_complete:
      - False -> delivery fails, order is cancelled
      - True  -> resolved on the spot; `resolution` required, delivery completes
      - None  -> recorded only
    """

    model_config = ConfigDict(extra="forbid")

    issue_type: IssueType | None = None
    description: str = ""
    can_complete: bool | None = None
    resolution: str | None = None

    @field_validator("description")
    @classmethod
    def strip_description(cls, v: str) -> str:
        return v.strip()

    @field_validator("resolution")
    @classmethod
    def normalize_resolution(cls, v: str | None) -> str | None:
        return _strip_or_none(v)


class DeliveryReturn(SQLModel):
    model_config = ConfigDict(extra="forbid")

    reason: str | None = None


# -------- Read models --------


class DeliveryItemRead(SQLModel):
    product_id: uuid.UUID
    product_name: str
    quantity: int
    unit: str


class DeliveryIssueRead(SQLModel):
    issue_type: IssueType
    description: str
    resolution: str | None
    reported_at: datetime


class DeliveryProofRead(SQLModel):
    signature: str
    photo: str | None
    notes: str | None


class DeliverySummary(SQLModel):
    """
    Compact view returned by mutating endpoints and lists.
    """

    id: uuid.UUID
    delivery_number: str
    order_id: uuid.UUID
    status: DeliveryStatus
    delivery_area: str
    shopkeeper_name: str
    assigned_at: datetime
    delivered_at: datetime | None


class DeliveryRead(SQLModel):
    """
    Full delivery record.
    """

    id: uuid.UUID
    delivery_number: str
    order_id: uuid.UUID
    order_number: str | None
    delivery_worker_id: uuid.UUID
    delivery_worker_name: str
    delivery_worker_phone: str
    shopkeeper_id: uuid.UUID
    shopkeeper_name: str
    shopkeeper_phone: str
    company_id: uuid.UUID
    company_name: str
    company_phone: str
    items: list[DeliveryItemRead]
    pickup_location: str
    delivery_location: str
    delivery_area: str
    delivery_instructions: str
    status: DeliveryStatus
    assigned_at: datetime
    picked_up_at: datetime | None
    in_transit_at: datetime | None
    delivered_at: datetime | None
    returned_at: datetime | None
    proof: DeliveryProofRead | None
    failure_reason: str | None
    issues: list[DeliveryIssueRead]
    payment_method: str
    amount_to_collect: float


class DeliveryListResponse(SQLModel):
    deliveries: list[DeliverySummary]
    pagination: Pagination


class IssueReportResult(SQLModel):
    delivery: DeliverySummary
    issue_status: IssueStatus


class ProofPhotoRead(SQLModel):
    url: str
