"""Reservation routes - API v1.

Endpoints:
    POST /reservations/check-availability - Check if a window is free
    GET /reservations/available-slots - Slot grid for one connector and day
    POST /reservations - Create a PENDING reservation
    GET /reservations - Caller's reservations
    GET /reservations/{reservation_id} - Reservation details
    PATCH /reservations/{reservation_id} - Status update
    POST /reservations/{reservation_id}/cancel - Cancel a reservation
    POST /reservations/{reservation_id}/check-in - Check in with QR or OTP
    POST /reservations/{reservation_id}/payment - Payment service callback
    GET /stations/{station_id}/reservations - Operator view of a station
"""

from datetime import date
from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status

from evreserve.api.dependencies import Services, get_caller, get_services
from evreserve.api.schemas import (
    AvailabilityResponse,
    CancelRequest,
    CheckAvailabilityRequest,
    CheckInRequest,
    CreateReservationRequest,
    PaymentOutcomeResponse,
    PaymentRequest,
    ReservationListResponse,
    ReservationResponse,
    ReservationView,
    SlotsResponse,
    StatusUpdateRequest,
)
from evreserve.errors import InvalidTransitionError, NotFoundError
from evreserve.models.availability import TimeWindow
from evreserve.models.reservation import Reservation, ReservationStatus
from evreserve.security.permissions import Caller, Permission
from evreserve.services.credentials import render_qr_data_url
from evreserve.services.lifecycle import TransitionTrigger, allowed_targets

router = APIRouter(tags=["reservations-v1"])

# Targets reachable through PATCH; cancel, check-in and expiry have their own paths
PATCHABLE_STATUSES = frozenset(
    {ReservationStatus.CONFIRMED, ReservationStatus.CHECKED_IN, ReservationStatus.COMPLETED}
)

# PATCH targets that bypass payment or credential checks
STAFF_ONLY_STATUSES = frozenset({ReservationStatus.CONFIRMED, ReservationStatus.CHECKED_IN})

USER_LIST_LIMIT = 100
STATION_LIST_LIMIT = 200


async def _load_authorized(
    services: Services,
    caller: Caller,
    reservation_id: UUID,
    permission: Permission,
) -> tuple[Reservation, bool]:
    """Load a reservation the caller may act on. Returns it with the staff flag."""
    reservation = await services.reservation_repo.get_by_id(reservation_id)
    if reservation is None:
        raise NotFoundError("Reservation", reservation_id)

    station = await services.stations.get_station(reservation.station_id)
    is_staff = services.permissions.operates(caller, station)
    services.permissions.require(
        services.permissions.can_view_reservation(caller, reservation, station),
        caller,
        reservation_id,
        permission,
    )
    return reservation, is_staff


def _trigger(is_staff: bool) -> TransitionTrigger:
    return TransitionTrigger.OPERATOR if is_staff else TransitionTrigger.USER


@router.post("/reservations/check-availability", response_model=AvailabilityResponse)
async def check_availability(
    body: CheckAvailabilityRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> AvailabilityResponse:
    """Check if a time range is free on a connector."""
    result = await services.flow.check_availability(
        body.station_id, body.connector_id, body.start_time, body.end_time
    )
    return AvailabilityResponse(
        available=result.available,
        conflicts=[TimeWindow(start_time=r.start_time, end_time=r.end_time) for r in result.conflicts],
    )


@router.get("/reservations/available-slots", response_model=SlotsResponse)
async def available_slots(
    station_id: UUID,
    connector_id: UUID,
    day: date = Query(..., alias="date"),
    slot_duration_minutes: Optional[int] = Query(default=None, gt=0, le=24 * 60),
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> SlotsResponse:
    """Slot-aligned availability over the operating window."""
    slots = await services.flow.available_slots(
        station_id,
        connector_id,
        day,
        slot_duration_minutes or services.flow.default_slot_minutes,
    )
    return SlotsResponse(slots=slots)


@router.post(
    "/reservations",
    response_model=ReservationResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_reservation(
    body: CreateReservationRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> ReservationResponse:
    """Create a PENDING reservation with check-in credentials."""
    booking = await services.flow.create_reservation(
        user_id=caller.user_id,
        vehicle_id=body.vehicle_id,
        station_id=body.station_id,
        connector_id=body.connector_id,
        start=body.start_time,
        end=body.end_time,
        notes=body.notes,
    )
    return ReservationResponse(
        reservation=ReservationView.from_reservation(booking.reservation),
        qr_code_data_url=booking.qr_code_data_url,
    )


@router.get("/reservations", response_model=ReservationListResponse)
async def list_my_reservations(
    status_filter: Optional[ReservationStatus] = Query(default=None, alias="status"),
    upcoming: bool = False,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> ReservationListResponse:
    """Caller's reservations, latest start first."""
    reservations = await services.flow.list_user_reservations(
        caller.user_id, status=status_filter, upcoming=upcoming, limit=USER_LIST_LIMIT
    )
    return ReservationListResponse.of(reservations)


@router.get("/reservations/{reservation_id}", response_model=ReservationResponse)
async def get_reservation(
    reservation_id: UUID,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> ReservationResponse:
    """Reservation details; the QR image is included only while it is usable."""
    reservation, _ = await _load_authorized(
        services, caller, reservation_id, Permission.VIEW_RESERVATION
    )
    qr_code_data_url = None
    if reservation.credentials_visible:
        qr_code_data_url = render_qr_data_url(reservation.qr_code)
    return ReservationResponse(
        reservation=ReservationView.from_reservation(reservation),
        qr_code_data_url=qr_code_data_url,
    )


@router.patch("/reservations/{reservation_id}", response_model=ReservationView)
async def update_reservation_status(
    reservation_id: UUID,
    body: StatusUpdateRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> ReservationView:
    """Move a reservation to CONFIRMED, CHECKED_IN or COMPLETED."""
    reservation, is_staff = await _load_authorized(
        services, caller, reservation_id, Permission.MANAGE_RESERVATION
    )

    if body.status not in PATCHABLE_STATUSES:
        raise InvalidTransitionError(
            reservation.status,
            body.status,
            allowed_targets(reservation.status) & PATCHABLE_STATUSES,
        )

    if body.status in STAFF_ONLY_STATUSES and not is_staff:
        services.permissions.require(False, caller, reservation_id, Permission.MANAGE_RESERVATION)

    outcome = await services.lifecycle.transition(
        reservation_id,
        body.status,
        _trigger(is_staff),
        actor=str(caller.user_id),
    )
    return ReservationView.from_reservation(outcome.reservation)


@router.post("/reservations/{reservation_id}/cancel", response_model=ReservationView)
async def cancel_reservation(
    reservation_id: UUID,
    body: Optional[CancelRequest] = None,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> ReservationView:
    """Cancel; owners are bound by the cutoff window, station staff are not."""
    _, is_staff = await _load_authorized(
        services, caller, reservation_id, Permission.MANAGE_RESERVATION
    )
    outcome = await services.lifecycle.cancel(
        reservation_id,
        _trigger(is_staff),
        actor=str(caller.user_id),
        reason=body.reason if body else None,
    )
    return ReservationView.from_reservation(outcome.reservation)


@router.post("/reservations/{reservation_id}/check-in", response_model=ReservationView)
async def check_in(
    reservation_id: UUID,
    body: CheckInRequest,
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> ReservationView:
    """Check in at the connector with the QR token or the OTP."""
    _, is_staff = await _load_authorized(
        services, caller, reservation_id, Permission.MANAGE_RESERVATION
    )
    outcome = await services.lifecycle.check_in(
        reservation_id,
        _trigger(is_staff),
        actor=str(caller.user_id),
        qr_code=body.qr_code,
        otp=body.otp,
    )
    return ReservationView.from_reservation(outcome.reservation)


@router.post("/reservations/{reservation_id}/payment", response_model=PaymentOutcomeResponse)
async def record_payment(
    reservation_id: UUID,
    body: PaymentRequest,
    services: Services = Depends(get_services),
) -> PaymentOutcomeResponse:
    """Payment service callback. Late payments are acknowledged but not applied."""
    outcome = await services.lifecycle.record_payment(reservation_id, body.paid)
    return PaymentOutcomeResponse(
        reservation=ReservationView.from_reservation(outcome.reservation),
        applied=outcome.applied,
        reason=outcome.reason,
    )


@router.get("/stations/{station_id}/reservations", response_model=ReservationListResponse)
async def list_station_reservations(
    station_id: UUID,
    status_filter: Optional[ReservationStatus] = Query(default=None, alias="status"),
    day: Optional[date] = Query(default=None, alias="date"),
    caller: Caller = Depends(get_caller),
    services: Services = Depends(get_services),
) -> ReservationListResponse:
    """Reservations at a station for its operator or an admin."""
    if not caller.is_staff:
        services.permissions.require(
            False, caller, station_id, Permission.VIEW_STATION_RESERVATIONS
        )

    station = await services.stations.get_station(station_id)
    if station is None:
        raise NotFoundError("Station", station_id)

    services.permissions.require(
        services.permissions.can_view_station_reservations(caller, station),
        caller,
        station_id,
        Permission.VIEW_STATION_RESERVATIONS,
    )
    reservations = await services.flow.list_station_reservations(
        station_id, status=status_filter, day=day, limit=STATION_LIST_LIMIT
    )
    return ReservationListResponse.of(reservations)
