"""Request and response bodies for the reservation API."""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from uuid import UUID

from pydantic import AwareDatetime, BaseModel, Field

from evreserve.models.availability import Slot, TimeWindow
from evreserve.models.reservation import Reservation, ReservationStatus


class CheckAvailabilityRequest(BaseModel):
    """Window to test on one connector."""

    station_id: UUID
    connector_id: UUID
    start_time: AwareDatetime
    end_time: AwareDatetime


class AvailabilityResponse(BaseModel):
    available: bool
    conflicts: list[TimeWindow] = Field(default_factory=list)


class SlotsResponse(BaseModel):
    slots: list[Slot]


class CreateReservationRequest(BaseModel):
    """Booking request from the vehicle owner."""

    vehicle_id: UUID
    station_id: UUID
    connector_id: UUID
    start_time: AwareDatetime
    end_time: AwareDatetime
    notes: Optional[str] = Field(default=None, max_length=500)


class ReservationView(BaseModel):
    """Public view of a reservation. The OTP is never part of it."""

    id: UUID
    user_id: UUID
    vehicle_id: UUID
    station_id: UUID
    connector_id: UUID
    start_time: datetime
    end_time: datetime
    status: ReservationStatus
    qr_code: Optional[str] = None
    payment_deadline: datetime
    is_paid: bool
    total_cost_bdt: Decimal
    notes: Optional[str] = None
    cancellation_reason: Optional[str] = None
    canceled_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_reservation(cls, reservation: Reservation) -> "ReservationView":
        """Build the view, withholding the QR token once the reservation is voided."""
        data = reservation.model_dump(exclude={"otp"})
        if not reservation.credentials_visible:
            data["qr_code"] = None
        return cls(**data)


class ReservationResponse(BaseModel):
    reservation: ReservationView
    qr_code_data_url: Optional[str] = None


class ReservationListResponse(BaseModel):
    reservations: list[ReservationView]
    count: int

    @classmethod
    def of(cls, reservations: list[Reservation]) -> "ReservationListResponse":
        views = [ReservationView.from_reservation(r) for r in reservations]
        return cls(reservations=views, count=len(views))


class StatusUpdateRequest(BaseModel):
    status: ReservationStatus


class CancelRequest(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=500)


class CheckInRequest(BaseModel):
    """Either credential is enough."""

    qr_code: Optional[str] = None
    otp: Optional[str] = None


class PaymentRequest(BaseModel):
    """Payment service callback."""

    paid: bool


class PaymentOutcomeResponse(BaseModel):
    reservation: ReservationView
    applied: bool
    reason: Optional[str] = None
