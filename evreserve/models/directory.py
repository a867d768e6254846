"""Read-only views of entities owned by the station and vehicle services."""

from enum import Enum
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field


class ConnectorStandard(str, Enum):
    """Physical plug standards."""

    TYPE1 = "Type1"
    TYPE2 = "Type2"
    CCS1 = "CCS1"
    CCS2 = "CCS2"
    CHADEMO = "CHAdeMO"
    GBT = "GB/T"


class UserRole(str, Enum):
    """Caller role as forwarded by the auth gateway."""

    USER = "user"
    OPERATOR = "operator"
    ADMIN = "admin"


class Station(BaseModel):
    """Charging station."""

    id: UUID
    name: str
    address: Optional[str] = None
    operator_id: Optional[UUID] = None


class Connector(BaseModel):
    """Connector at a station."""

    id: UUID
    station_id: UUID
    standard: ConnectorStandard
    max_kw: float = Field(gt=0)
    price_per_kwh_bdt: Optional[float] = Field(default=None, ge=0)


class Vehicle(BaseModel):
    """Vehicle registered by a user."""

    id: UUID
    user_id: UUID
    connector_standards: list[ConnectorStandard] = Field(default_factory=list)
    usable_kwh: Optional[float] = Field(default=None, gt=0)


class UserContact(BaseModel):
    """Contact details used for reminders."""

    id: UUID
    email: Optional[str] = None
    display_name: Optional[str] = None
