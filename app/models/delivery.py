# app/models/delivery.py
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Delivery(SQLModel, table=True):
    """
    Physical fulfilment record for an assigned order.

    Status lifecycle:
      assigned -> picked_up -> in_transit -> delivered | failed
      any non-terminal -> returned (operator override)

    Each *_at timestamp is written once, the first time its status is
    reached. Contact details are snapshots taken at assignment time.
    """

    __tablename__ = "deliveries"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    delivery_number: str = Field(
        unique=True,
        index=True,
        description="DEL + YYYYMMDD + 4 random digits",
    )

    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)
    delivery_worker_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    shopkeeper_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    company_id: uuid.UUID = Field(foreign_key="users.id", index=True)

    # Snapshots
    shopkeeper_name: str
    shopkeeper_phone: str = Field(default="")
    company_name: str = Field(default="")
    company_phone: str = Field(default="")
    delivery_worker_name: str = Field(default="")
    delivery_worker_phone: str = Field(default="")

    pickup_location: str
    delivery_location: str
    delivery_area: str = Field(index=True)
    delivery_instructions: str = Field(default="")

    # assigned | picked_up | in_transit | delivered | failed | returned
    status: str = Field(default="assigned", index=True)

    assigned_at: datetime = Field(default_factory=_utcnow, index=True)
    picked_up_at: datetime | None = Field(default=None)
    in_transit_at: datetime | None = Field(default=None)
    delivered_at: datetime | None = Field(default=None)
    returned_at: datetime | None = Field(default=None)

    # Proof of delivery, captured on completion
    proof_signature: str | None = Field(default=None)
    proof_photo: str | None = Field(default=None)
    proof_notes: str | None = Field(default=None)

    failure_reason: str | None = Field(default=None)

    # cash_on_delivery | prepaid
    payment_method: str = Field(default="cash_on_delivery")
    amount_to_collect: float = Field(default=0)

    created_at: datetime = Field(default_factory=_utcnow)
    updated_at: datetime = Field(default_factory=_utcnow)


class DeliveryItem(SQLModel, table=True):
    """Snapshot of an order line carried by a delivery."""

    __tablename__ = "delivery_items"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    delivery_id: uuid.UUID = Field(foreign_key="deliveries.id", index=True)
    product_id: uuid.UUID = Field(foreign_key="products.id")
    position: int = Field(default=0)
    product_name: str
    quantity: int
    unit: str = Field(default="piece")


class DeliveryIssue(SQLModel, table=True):
    """Problem reported by the worker. Append-only."""

    __tablename__ = "delivery_issues"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    delivery_id: uuid.UUID = Field(foreign_key="deliveries.id", index=True)
    sequence: int = Field(default=0)

    # customer_unavailable | wrong_address | address_not_found |
    # customer_refused | product_damaged | vehicle_breakdown |
    # weather | security | other
    issue_type: str
    description: str
    resolution: str | None = Field(default=None)
    reported_at: datetime = Field(default_factory=_utcnow)
