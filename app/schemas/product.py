# app/schemas/product.py
import uuid
from datetime import datetime
from typing import Literal

from pydantic import ConfigDict, field_validator
from sqlmodel import SQLModel, Field

Category = Literal[
    "dairy",
    "meat",
    "seafood",
    "fruits",
    "vegetables",
    "grains",
    "bakery",
    "beverages",
    "snacks",
    "frozen",
    "canned",
    "condiments",
    "other",
]
Unit = Literal["piece", "kg", "liter", "box", "pack", "dozen"]


class ProductCreate(SQLModel):
    """
    Payload for adding a product to a company catalogue.

    - company_id is only honoured for admins; company reps always
      create in their own catalogue.
    """

    model_config = ConfigDict(extra="forbid")

    company_id: uuid.UUID | None = None
    name: str = Field(max_length=100)
    description: str | None = None
    category: Category = "other"
    unit_price: float = Field(gt=0)
    unit: Unit = "piece"
    stock_quantity: int = Field(default=0, ge=0)
    min_order_quantity: int = Field(default=1, ge=1)
    max_order_quantity: int | None = Field(default=None, ge=1)
    is_active: bool = True
    barcode: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("name cannot be empty")
        return v

    @field_validator("barcode")
    @classmethod
    def normalize_barcode(cls, v: str | None) -> str | None:
        if v is None:
            return None
        v = v.strip()
        return v or None


class StockUpdate(SQLModel):
    model_config = ConfigDict(extra="forbid")

    stock_quantity: int = Field(ge=0)


class ProductRead(SQLModel):
    """
    Product representation for clients.
    """

    id: uuid.UUID
    company_id: uuid.UUID
    name: str
    description: str | None
    category: str
    unit_price: float
    unit: str
    stock_quantity: int
    min_order_quantity: int
    max_order_quantity: int | None
    is_active: bool
    barcode: str | None
    created_at: datetime
