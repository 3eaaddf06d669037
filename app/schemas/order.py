# app/schemas/order.py
import uuid
from dataclasses import dataclass
from datetime import date, datetime
from typing import Literal

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel

from app.schemas.common import Pagination

OrderStatus = Literal[
    "pending",
    "approved",
    "rejected",
    "assigned",
    "accepted",
    "rejected_by_worker",
    "picked_up",
    "delivered",
    "cancelled",
]
PaymentMethod = Literal["cash_on_delivery", "prepaid"]


# -------- Order reference --------


@dataclass(frozen=True)
class ById:
    id: uuid.UUID


@dataclass(frozen=True)
class ByNumber:
    number: str


OrderRef = ById | ByNumber


def parse_order_ref(raw: str) -> OrderRef:
    """
    Turn a path segment into an explicit order reference.

    UUID-shaped text is an id; anything else is an order number.
    """
    raw = raw.strip()
    try:
        return ById(uuid.UUID(raw))
    except ValueError:
        return ByNumber(raw.upper())


# -------- Input payloads --------


class OrderItemCreate(SQLModel):
    model_config = ConfigDict(extra="forbid")

    product_id: uuid.UUID
    quantity: int
    # Optional explicit price; falls back to the product's current price
    unit_price: float | None = None


class OrderCreate(SQLModel):
    """
    Payload for placing an order.

    Backend derives:
      - shopkeeper from token
      - status = 'pending'
      - product names, units, prices (unless given) from the catalogue
      - totals, tax and delivery charge
    """

    model_config = ConfigDict(extra="forbid")

    company_id: uuid.UUID | None = None
    items: list[OrderItemCreate] = []
    delivery_address: str = ""
    delivery_area: str = ""
    delivery_city: str = ""
    payment_method: PaymentMethod = "cash_on_delivery"
    preferred_delivery_date: date | None = None
    delivery_instructions: str | None = None
    notes: str | None = None

    @field_validator("delivery_address", "delivery_area", "delivery_city")
    @classmethod
    def strip_text(cls, v: str) -> str:
        return v.strip()

    @field_validator("delivery_instructions", "notes")
    @classmethod
    def normalize_optional(cls, v: str | None) -> str | None:
        if v is None:
            return v
        v = v.strip()
        return v or None


class OrderStatusUpdate(SQLModel):
    """
    Payload to move an order along its lifecycle.
    """

    model_config = ConfigDict(extra="forbid")

    status: OrderStatus
    rejection_reason: str | None = None
    assigned_delivery_worker_id: uuid.UUID | None = None


class AssignWorkerRequest(SQLModel):
    model_config = ConfigDict(extra="forbid")

    delivery_worker_id: uuid.UUID


# -------- Read models --------


class OrderItemRead(SQLModel):
    product_id: uuid.UUID
    product_name: str
    quantity: int
    unit_price: float
    line_total: float
    unit: str


class TimelineEntryRead(SQLModel):
    status: str
    timestamp: datetime
    note: str
    actor_name: str
    actor_role: str


class PartyRead(SQLModel):
    id: uuid.UUID | None
    name: str
    business_name: str | None = None
    phone: str


class OrderListItem(SQLModel):
    """
    Row in the order list (no timeline).
    """

    id: uuid.UUID
    order_number: str
    status: OrderStatus
    company_name: str
    shop_name: str | None
    delivery_area: str
    final_amount: float
    created_at: datetime
    delivered_at: datetime | None
    items: list[OrderItemRead]


class OrderListSummary(SQLModel):
    total_orders: int
    status_counts: dict[str, int]
    total_amount: float
    overdue: int


class OrderListResponse(SQLModel):
    orders: list[OrderListItem]
    pagination: Pagination
    summary: OrderListSummary


class OrderDetailRead(SQLModel):
    """
    Full order view including items, parties and timeline.
    """

    id: uuid.UUID
    order_number: str
    status: OrderStatus
    items: list[OrderItemRead]
    total_amount: float
    tax_amount: float
    delivery_charge: float
    final_amount: float
    delivery_address: str
    delivery_area: str
    delivery_city: str
    delivery_instructions: str
    preferred_delivery_date: date | None
    payment_method: PaymentMethod
    payment_status: str
    notes: str
    rejection_reason: str | None
    shopkeeper: PartyRead
    company: PartyRead
    delivery_worker: PartyRead | None
    timeline: list[TimelineEntryRead]
    created_at: datetime
    delivered_at: datetime | None


class OrderCreated(SQLModel):
    id: uuid.UUID
    order_number: str
    status: OrderStatus
    total_amount: float
    tax_amount: float
    delivery_charge: float
    final_amount: float
    created_at: datetime


class OrderStatusResult(SQLModel):
    id: uuid.UUID
    order_number: str
    status: OrderStatus
    updated_at: datetime


class AssignWorkerResult(SQLModel):
    id: uuid.UUID
    order_number: str
    status: OrderStatus
    delivery_id: uuid.UUID
    delivery_number: str
    delivery_worker: PartyRead

