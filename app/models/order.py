# app/models/order.py
import uuid
from datetime import datetime, date, timezone

from sqlmodel import SQLModel, Field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Order(SQLModel, table=True):
    """
    A shopkeeper's purchase request against one company's catalogue.

    Money:
      - total_amount    = sum of line totals
      - tax_amount      = 5% of total_amount
      - delivery_charge = fixed per order
      - final_amount    = total_amount + tax_amount + delivery_charge

    Status lifecycle:
      pending -> approved | rejected | cancelled
      approved -> assigned | cancelled
      assigned -> accepted | rejected_by_worker | cancelled
      accepted -> picked_up | cancelled
      picked_up -> delivered | cancelled
    """

    __tablename__ = "orders"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_number: str = Field(
        unique=True,
        index=True,
        description="Human-readable number, e.g. ORD-0001",
    )

    shopkeeper_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    company_id: uuid.UUID = Field(foreign_key="users.id", index=True)
    delivery_worker_id: uuid.UUID | None = Field(
        default=None,
        foreign_key="users.id",
        index=True,
    )
    approved_by_id: uuid.UUID | None = Field(default=None, foreign_key="users.id")

    # Party snapshots, kept so later profile edits don't blank out old orders
    shopkeeper_name: str = Field(default="")
    shop_name: str | None = Field(default=None)
    shopkeeper_phone: str = Field(default="")
    company_name: str = Field(default="")
    company_phone: str = Field(default="")
    delivery_worker_name: str | None = Field(default=None)
    delivery_worker_phone: str | None = Field(default=None)

    total_amount: float = Field(default=0)
    tax_amount: float = Field(default=0)
    delivery_charge: float = Field(default=0)
    final_amount: float = Field(default=0)

    delivery_address: str
    delivery_area: str = Field(index=True)
    delivery_city: str
    delivery_instructions: str = Field(default="")
    preferred_delivery_date: date | None = Field(default=None)
    notes: str = Field(default="")

    # cash_on_delivery | prepaid
    payment_method: str = Field(default="cash_on_delivery")
    # pending | completed | failed
    payment_status: str = Field(default="pending")

    status: str = Field(
        default="pending",
        index=True,
        description="Order status lifecycle",
    )
    rejection_reason: str | None = Field(default=None)

    created_at: datetime = Field(default_factory=_utcnow, index=True)
    updated_at: datetime = Field(default_factory=_utcnow)
    delivered_at: datetime | None = Field(default=None)


class OrderItem(SQLModel, table=True):
    """
    Line item inside an order. Name, unit and price are snapshots taken
    when the order was placed.
    """

    __tablename__ = "order_items"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)
    product_id: uuid.UUID = Field(foreign_key="products.id", index=True)

    # Preserves the order the shopkeeper listed the items in
    position: int = Field(default=0)

    product_name: str = Field(index=True)
    quantity: int = Field(gt=0)
    unit_price: float = Field(ge=0)
    line_total: float = Field(ge=0)
    unit: str = Field(default="piece")


class OrderTimelineEntry(SQLModel, table=True):
    """
    Append-only audit trail of an order's status changes.

    Rows are only ever inserted.
    """

    __tablename__ = "order_timeline"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    order_id: uuid.UUID = Field(foreign_key="orders.id", index=True)

    # Tie-breaker for entries written within the same clock tick
    sequence: int = Field(default=0)

    status: str
    note: str = Field(default="")
    actor_name: str = Field(default="System")
    actor_role: str = Field(default="system")
    timestamp: datetime = Field(default_factory=_utcnow)


class OrderSequence(SQLModel, table=True):
    """
    Named counter used to allocate order numbers.

    The row is locked and incremented inside the order-creation
    transaction, so two concurrent orders never read the same value.
    """

    __tablename__ = "order_sequences"

    name: str = Field(primary_key=True)
    value: int = Field(default=0)
