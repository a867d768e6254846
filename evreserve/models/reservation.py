"""Reservation domain model."""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field, model_validator


def utcnow() -> datetime:
    """Current instant as an aware UTC datetime."""
    return datetime.now(timezone.utc)


class ReservationStatus(str, Enum):
    """Reservation status enumeration."""

    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CHECKED_IN = "CHECKED_IN"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"
    EXPIRED = "EXPIRED"


# Statuses that still occupy a connector
BLOCKING_STATUSES = frozenset(
    {ReservationStatus.PENDING, ReservationStatus.CONFIRMED, ReservationStatus.CHECKED_IN}
)

# Statuses with no outgoing transitions
TERMINAL_STATUSES = frozenset(
    {ReservationStatus.COMPLETED, ReservationStatus.CANCELED, ReservationStatus.EXPIRED}
)


def intervals_overlap(
    start_a: datetime, end_a: datetime, start_b: datetime, end_b: datetime
) -> bool:
    """Half-open overlap test: [s1, e1) and [s2, e2) share at least one instant."""
    return start_a < end_b and start_b < end_a


class Reservation(BaseModel):
    """Reservation of one connector for one time window."""

    id: UUID = Field(default_factory=uuid4)
    user_id: UUID
    vehicle_id: UUID
    station_id: UUID
    connector_id: UUID
    start_time: datetime
    end_time: datetime
    status: ReservationStatus = Field(default=ReservationStatus.PENDING)
    qr_code: str = Field(min_length=1, description="Opaque check-in token, unique across reservations")
    otp: str = Field(exclude=True, repr=False, description="Numeric check-in code, never serialized")
    payment_deadline: datetime
    is_paid: bool = False
    total_cost_bdt: Decimal = Field(ge=0)
    notes: Optional[str] = Field(default=None, max_length=500)
    cancellation_reason: Optional[str] = None
    canceled_at: Optional[datetime] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)

    @model_validator(mode="after")
    def validate_window(self) -> "Reservation":
        """End time must be strictly after start time."""
        if self.end_time <= self.start_time:
            raise ValueError("end_time must be after start_time")
        return self

    @property
    def is_blocking(self) -> bool:
        """Check if reservation still occupies its connector."""
        return self.status in BLOCKING_STATUSES

    @property
    def is_terminal(self) -> bool:
        """Check if reservation reached a final status."""
        return self.status in TERMINAL_STATUSES

    @property
    def credentials_visible(self) -> bool:
        """QR token is withheld once the reservation is voided."""
        return self.status not in (ReservationStatus.CANCELED, ReservationStatus.EXPIRED)

    def overlaps(self, start: datetime, end: datetime) -> bool:
        """Check if this reservation's window overlaps [start, end)."""
        return intervals_overlap(self.start_time, self.end_time, start, end)
