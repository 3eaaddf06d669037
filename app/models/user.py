# app/models/user.py
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, JSON
from sqlmodel import SQLModel, Field


class User(SQLModel, table=True):
    """
    Directory entry for every party in the supply chain.

    Identity:
      - id: MUST match Supabase auth.users.id (UUID from JWT "sub")

    Role:
      - "shopkeeper" | "company_rep" | "delivery_worker" | "admin"

    Status:
      - "pending" | "active" | "suspended" | "inactive"
      - only "active" users may call the API

    Role-specific info is flattened onto the row:
      - shopkeeper      -> shop_name
      - company_rep     -> company_name
      - delivery_worker -> assigned_areas, availability, vehicle_*

    Registration and profile editing live outside this service; the
    order/delivery workflows only read this table.
    """

    __tablename__ = "users"

    id: uuid.UUID = Field(
        default_factory=uuid.uuid4,
        primary_key=True,
        index=True,
        description="Matches Supabase auth.users.id",
    )

    email: str = Field(
        unique=True,
        index=True,
        description="Email from Supabase auth.users",
    )

    name: str = Field(
        max_length=50,
        description="Display name",
    )

    phone: str = Field(
        default="",
        description="Contact phone number",
    )

    role: str = Field(
        index=True,
        description="Application role: shopkeeper | company_rep | delivery_worker | admin",
    )

    status: str = Field(
        default="pending",
        index=True,
        description="Account status: pending | active | suspended | inactive",
    )

    # Location
    area: str = Field(default="", index=True)
    city: str = Field(default="")
    address: str = Field(default="")

    # Shopkeeper / company info
    shop_name: str | None = Field(default=None)
    company_name: str | None = Field(default=None)

    # Delivery worker info
    assigned_areas: list[str] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False, default=list),
        description="Areas the worker may deliver to; empty means unrestricted",
    )
    availability: str = Field(
        default="offline",
        description="available | busy | offline",
    )
    vehicle_type: str | None = Field(default=None)
    vehicle_number: str | None = Field(default=None)

    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc),
        description="Creation timestamp (UTC)",
    )

    @property
    def display_name(self) -> str:
        """Business name when the role carries one, else the person's name."""
        if self.role == "company_rep" and self.company_name:
            return self.company_name
        if self.role == "shopkeeper" and self.shop_name:
            return self.shop_name
        return self.name
