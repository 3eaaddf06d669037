# app/schemas/user.py
import uuid
from datetime import datetime
from typing import Literal

from pydantic import EmailStr
from sqlmodel import SQLModel

Role = Literal["shopkeeper", "company_rep", "delivery_worker", "admin"]
UserStatus = Literal["pending", "active", "suspended", "inactive"]
Availability = Literal["available", "busy", "offline"]


class CallerContext(SQLModel):
    """
    Identity of the authenticated caller.

    Built once per request by the auth dependency and passed explicitly
    into every service call.
    """

    id: uuid.UUID
    role: Role
    status: UserStatus
    name: str

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"


class UserRead(SQLModel):
    """
    Profile representation for clients.
    """

    id: uuid.UUID
    email: EmailStr
    name: str
    phone: str
    role: Role
    status: UserStatus
    area: str
    city: str
    address: str
    shop_name: str | None
    company_name: str | None
    created_at: datetime


class WorkerRead(SQLModel):
    """
    Delivery worker summary used when picking someone to assign.
    """

    id: uuid.UUID
    name: str
    phone: str
    area: str
    availability: Availability
    assigned_areas: list[str]
    vehicle_type: str | None
    vehicle_number: str | None
