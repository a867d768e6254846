"""Reservation booking flow with race-free slot claiming."""

from datetime import date, datetime, timedelta
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, NamedTuple, Optional
from uuid import UUID

from evreserve.errors import (
    CredentialCollisionError,
    CredentialGenerationFailedError,
    IncompatibleConnectorError,
    NotFoundError,
    SchedulerUnavailableError,
    SlotUnavailableError,
    ValidationError,
)
from evreserve.logging import get_logger
from evreserve.logging.audit import AuditEventType, AuditLogger
from evreserve.models.availability import Slot
from evreserve.models.directory import Connector, Vehicle
from evreserve.models.jobs import JobKind
from evreserve.models.reservation import Reservation, ReservationStatus, utcnow
from evreserve.services.conflict_detector import ConflictDetector, validate_window
from evreserve.services.credentials import CredentialIssuer, render_qr_data_url
from evreserve.services.directory import StationDirectory, VehicleDirectory
from evreserve.services.scheduler import Scheduler
from evreserve.storage.repository_base import ReservationRepository

logger = get_logger(__name__)

CENT = Decimal("0.01")

SCHEDULING_FAILED_REASON = "scheduling_failed"


class BookingResult(NamedTuple):
    """A freshly created reservation and its rendered QR image."""

    reservation: Reservation
    qr_code_data_url: str


class AvailabilityResult(NamedTuple):
    """Availability answer for one window."""

    available: bool
    conflicts: list[Reservation]


def estimate_cost(
    start: datetime,
    end: datetime,
    max_kw: float,
    price_per_kwh_bdt: float,
    usable_kwh: float,
) -> Decimal:
    """
    Estimated charge for a window, capped by what the battery can take.

    cost = min(usable_kwh, hours * max_kw) * price_per_kwh_bdt
    """
    hours = Decimal(str((end - start).total_seconds())) / Decimal(3600)
    deliverable = hours * Decimal(str(max_kw))
    energy = min(Decimal(str(usable_kwh)), deliverable)
    return (energy * Decimal(str(price_per_kwh_bdt))).quantize(CENT, rounding=ROUND_HALF_UP)


class ReservationFlowService:
    """Coordinates directory checks, conflict checks, credentials and scheduling."""

    def __init__(
        self,
        reservation_repo: ReservationRepository,
        stations: StationDirectory,
        vehicles: VehicleDirectory,
        conflict_detector: ConflictDetector,
        credential_issuer: CredentialIssuer,
        scheduler: Scheduler,
        payment_grace_minutes: int = 10,
        reminder_lead_minutes: int = 5,
        slot_duration_minutes: int = 30,
        default_price_per_kwh_bdt: float = 15.0,
        default_usable_kwh: float = 50.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        """Initialize reservation flow service."""
        self.reservation_repo = reservation_repo
        self.stations = stations
        self.vehicles = vehicles
        self.conflict_detector = conflict_detector
        self.credential_issuer = credential_issuer
        self.scheduler = scheduler
        self.payment_grace = timedelta(minutes=payment_grace_minutes)
        self.reminder_lead = timedelta(minutes=reminder_lead_minutes)
        self.default_slot_minutes = slot_duration_minutes
        self.default_price_per_kwh_bdt = default_price_per_kwh_bdt
        self.default_usable_kwh = default_usable_kwh
        self.clock = clock

    async def create_reservation(
        self,
        user_id: UUID,
        vehicle_id: UUID,
        station_id: UUID,
        connector_id: UUID,
        start: datetime,
        end: datetime,
        notes: Optional[str] = None,
    ) -> BookingResult:
        """
        Create a PENDING reservation and schedule its deadline jobs.

        Raises:
            ValidationError: inverted window or start in the past
            NotFoundError: station, connector or vehicle missing
            IncompatibleConnectorError: vehicle cannot use the connector
            SlotUnavailableError: window overlaps a blocking reservation
            SchedulerUnavailableError: deadline jobs could not be queued; the booking is released
            CredentialGenerationFailedError: no unique QR token could be issued
        """
        validate_window(start, end)
        now = self.clock()
        if start < now:
            raise ValidationError("Cannot book a time slot in the past", start_time=start.isoformat())

        connector = await self._require_connector(station_id, connector_id)
        vehicle = await self._require_vehicle(user_id, vehicle_id)

        if connector.standard not in vehicle.connector_standards:
            self._reject(user_id, connector_id, "incompatible_connector")
            raise IncompatibleConnectorError(
                connector.standard.value, [s.value for s in vehicle.connector_standards]
            )

        conflicts = await self.conflict_detector.find_conflicts(connector_id, start, end)
        if conflicts:
            self._reject(user_id, connector_id, "slot_unavailable")
            raise SlotUnavailableError((r.start_time, r.end_time) for r in conflicts)

        total_cost = estimate_cost(
            start,
            end,
            max_kw=connector.max_kw,
            price_per_kwh_bdt=(
                connector.price_per_kwh_bdt
                if connector.price_per_kwh_bdt is not None
                else self.default_price_per_kwh_bdt
            ),
            usable_kwh=vehicle.usable_kwh or self.default_usable_kwh,
        )

        reservation = await self._insert(
            user_id=user_id,
            vehicle_id=vehicle_id,
            station_id=station_id,
            connector_id=connector_id,
            start=start,
            end=end,
            notes=notes,
            total_cost=total_cost,
            now=now,
        )

        try:
            await self._schedule_deadline_jobs(reservation, now)
        except Exception as e:
            await self._release_unscheduled(reservation, now, e)
            if isinstance(e, SchedulerUnavailableError):
                raise
            raise SchedulerUnavailableError(f"Could not schedule payment deadline: {e}") from e

        logger.info(
            "reservation_created",
            reservation_id=str(reservation.id),
            connector_id=str(connector_id),
            start_time=start.isoformat(),
            end_time=end.isoformat(),
            payment_deadline=reservation.payment_deadline.isoformat(),
        )
        AuditLogger.log_reservation_created(
            actor=str(user_id),
            reservation_id=reservation.id,
            connector_id=connector_id,
            start_time=start,
            end_time=end,
            total_cost_bdt=total_cost,
        )

        return BookingResult(reservation, render_qr_data_url(reservation.qr_code))

    async def check_availability(
        self,
        station_id: UUID,
        connector_id: UUID,
        start: datetime,
        end: datetime,
    ) -> AvailabilityResult:
        """Report whether the connector is free for [start, end) and what blocks it."""
        validate_window(start, end)
        await self._require_connector(station_id, connector_id)
        conflicts = await self.conflict_detector.find_conflicts(connector_id, start, end)
        return AvailabilityResult(available=not conflicts, conflicts=conflicts)

    async def available_slots(
        self,
        station_id: UUID,
        connector_id: UUID,
        day: date,
        slot_duration_minutes: int,
    ) -> list[Slot]:
        """Slot grid for one connector and day."""
        await self._require_connector(station_id, connector_id)
        return await self.conflict_detector.list_available_slots(
            connector_id, day, slot_duration_minutes
        )

    async def list_user_reservations(
        self,
        user_id: UUID,
        status: Optional[ReservationStatus] = None,
        upcoming: bool = False,
        limit: int = 100,
    ) -> list[Reservation]:
        """Caller's reservations, newest start first."""
        return await self.reservation_repo.list_by_user(
            user_id,
            status=status,
            starts_after=self.clock() if upcoming else None,
            limit=limit,
        )

    async def list_station_reservations(
        self,
        station_id: UUID,
        status: Optional[ReservationStatus] = None,
        day: Optional[date] = None,
        limit: int = 200,
    ) -> list[Reservation]:
        """Reservations at a station, optionally limited to one day."""
        window = None
        if day is not None:
            window = self.conflict_detector.day_window(day)
        return await self.reservation_repo.list_by_station(
            station_id, status=status, window=window, limit=limit
        )

    async def _insert(
        self,
        user_id: UUID,
        vehicle_id: UUID,
        station_id: UUID,
        connector_id: UUID,
        start: datetime,
        end: datetime,
        notes: Optional[str],
        total_cost: Decimal,
        now: datetime,
    ) -> Reservation:
        """Guarded insert; a QR collision at insert time re-issues credentials."""
        attempts = self.credential_issuer.max_attempts
        for attempt in range(1, attempts + 1):
            credentials = await self.credential_issuer.issue()
            reservation = Reservation(
                user_id=user_id,
                vehicle_id=vehicle_id,
                station_id=station_id,
                connector_id=connector_id,
                start_time=start,
                end_time=end,
                status=ReservationStatus.PENDING,
                qr_code=credentials.qr_token,
                otp=credentials.otp,
                payment_deadline=now + self.payment_grace,
                total_cost_bdt=total_cost,
                notes=notes,
                created_at=now,
                updated_at=now,
            )
            try:
                return await self.reservation_repo.insert_if_available(reservation)
            except CredentialCollisionError:
                logger.warning("qr_code_collision_on_insert", attempt=attempt)
            except SlotUnavailableError:
                self._reject(user_id, connector_id, "slot_taken_concurrently")
                raise

        raise CredentialGenerationFailedError(attempts)

    async def _schedule_deadline_jobs(self, reservation: Reservation, now: datetime) -> None:
        deadline = reservation.payment_deadline
        await self.scheduler.schedule_at(JobKind.RESERVATION_EXPIRY, reservation.id, deadline)
        await self.scheduler.schedule_at(
            JobKind.PAYMENT_REMINDER,
            reservation.id,
            max(now, deadline - self.reminder_lead),
        )

    async def _release_unscheduled(self, reservation: Reservation, now: datetime, error: Exception) -> None:
        """Cancel a booking whose expiry job never made it onto the queue."""
        logger.error(
            "deadline_scheduling_failed",
            reservation_id=str(reservation.id),
            error=str(error),
        )
        released = await self.reservation_repo.compare_and_set(
            reservation.id,
            expected_status=ReservationStatus.PENDING,
            changes={
                "status": ReservationStatus.CANCELED,
                "canceled_at": now,
                "cancellation_reason": SCHEDULING_FAILED_REASON,
            },
            require_unpaid=True,
        )
        if released is None:
            logger.warning("unscheduled_reservation_not_released", reservation_id=str(reservation.id))

    async def _require_connector(self, station_id: UUID, connector_id: UUID) -> Connector:
        station = await self.stations.get_station(station_id)
        if station is None:
            raise NotFoundError("Station", station_id)
        connector = await self.stations.get_connector(station_id, connector_id)
        if connector is None:
            raise NotFoundError("Connector", connector_id)
        return connector

    async def _require_vehicle(self, user_id: UUID, vehicle_id: UUID) -> Vehicle:
        vehicle = await self.vehicles.get_vehicle(vehicle_id)
        # Someone else's vehicle is reported as missing
        if vehicle is None or vehicle.user_id != user_id:
            raise NotFoundError("Vehicle", vehicle_id)
        return vehicle

    @staticmethod
    def _reject(user_id: UUID, connector_id: UUID, reason: str) -> None:
        AuditLogger.log_event(
            event_type=AuditEventType.RESERVATION_REJECTED,
            actor=str(user_id),
            resource_id=connector_id,
            action="Reservation rejected",
            success=False,
            error=reason,
        )
