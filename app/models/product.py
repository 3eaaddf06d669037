# app/models/product.py
import uuid
from datetime import datetime, timezone

from sqlmodel import SQLModel, Field


class Product(SQLModel, table=True):
    """
    Catalogue entry owned by a company.

    Stock is decremented when a shopkeeper places an order and restored
    when that order is cancelled or rejected.
    """

    __tablename__ = "products"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
    )

    company_id: uuid.UUID = Field(
        foreign_key="users.id",
        index=True,
        description="Owning company representative",
    )

    name: str = Field(
        max_length=100,
        index=True,
        description="Display name of the product",
    )

    description: str | None = Field(default=None)

    # dairy | meat | seafood | fruits | vegetables | grains | bakery |
    # beverages | snacks | frozen | canned | condiments | other
    category: str = Field(default="other", index=True)

    unit_price: float = Field(
        gt=0,
        description="Current unit price",
    )

    # piece | kg | liter | box | pack | dozen
    unit: str = Field(default="piece")

    stock_quantity: int = Field(
        default=0,
        ge=0,
        description="Units currently in stock",
    )

    min_order_quantity: int = Field(default=1, ge=1)

    max_order_quantity: int | None = Field(
        default=None,
        description="Upper bound per order; None means no limit",
    )

    is_active: bool = Field(default=True, index=True)

    barcode: str | None = Field(
        default=None,
        unique=True,
        description="Optional unique barcode",
    )

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation timestamp (UTC)",
    )

    def order_rejection_reason(self, quantity: int) -> str | None:
        """
        Return why `quantity` cannot be ordered, or None if it can.
        """
        if not self.is_active:
            return f"Product {self.name} is not available"
        if quantity < self.min_order_quantity:
            return (
                f"Minimum order for {self.name} is {self.min_order_quantity}, "
                f"requested {quantity}"
            )
        if self.max_order_quantity is not None and quantity > self.max_order_quantity:
            return (
                f"Maximum order for {self.name} is {self.max_order_quantity}, "
                f"requested {quantity}"
            )
        if quantity > self.stock_quantity:
            return (
                f"Insufficient stock for {self.name}: cannot order {quantity}, "
                f"available {self.stock_quantity}"
            )
        return None

    def can_order(self, quantity: int) -> bool:
        return self.order_rejection_reason(quantity) is None
