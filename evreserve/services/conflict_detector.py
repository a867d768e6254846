"""Slot-conflict detection.

The module-level functions are pure and operate on an already-fetched set of
reservations; :class:`ConflictDetector` feeds them the store's blocking subset.
"""

from datetime import date, datetime, time, timedelta
from typing import Iterable, Optional
from uuid import UUID
from zoneinfo import ZoneInfo

from evreserve.errors import ValidationError
from evreserve.models.availability import Slot
from evreserve.models.reservation import Reservation, intervals_overlap
from evreserve.storage.repository_base import ReservationRepository


def validate_window(start: datetime, end: datetime) -> None:
    """Reject empty or inverted windows."""
    if end <= start:
        raise ValidationError(
            "End time must be after start time",
            start_time=start.isoformat(),
            end_time=end.isoformat(),
        )


def find_overlapping(
    reservations: Iterable[Reservation],
    start: datetime,
    end: datetime,
    exclude_reservation_id: Optional[UUID] = None,
) -> list[Reservation]:
    """Blocking reservations from ``reservations`` that overlap [start, end).

    Touching windows (one ends exactly when the other starts) do not overlap.
    """
    validate_window(start, end)
    return sorted(
        (
            r
            for r in reservations
            if r.is_blocking
            and r.id != exclude_reservation_id
            and intervals_overlap(r.start_time, r.end_time, start, end)
        ),
        key=lambda r: r.start_time,
    )


def slot_grid(
    day: date,
    start_hour: int,
    end_hour: int,
    slot_minutes: int,
    tz: ZoneInfo,
) -> list[tuple[datetime, datetime]]:
    """Partition the operating window of ``day`` into fixed-size slots.

    A trailing remainder shorter than one slot is dropped.
    """
    if slot_minutes <= 0:
        raise ValidationError("Slot duration must be positive", slot_duration_minutes=slot_minutes)
    if end_hour <= start_hour:
        raise ValidationError(
            "Operating window is empty",
            operating_start_hour=start_hour,
            operating_end_hour=end_hour,
        )

    window_start = datetime.combine(day, time(hour=start_hour), tzinfo=tz)
    window_end = datetime.combine(day, time(), tzinfo=tz) + timedelta(hours=end_hour)
    step = timedelta(minutes=slot_minutes)

    slots = []
    slot_start = window_start
    while slot_start + step <= window_end:
        slots.append((slot_start, slot_start + step))
        slot_start += step
    return slots


def mark_slots(
    grid: Iterable[tuple[datetime, datetime]],
    blocking: Iterable[Reservation],
) -> list[Slot]:
    """Mark each slot available iff no blocking reservation overlaps it."""
    blocking = [r for r in blocking if r.is_blocking]
    return [
        Slot(
            start_time=slot_start,
            end_time=slot_end,
            available=not any(r.overlaps(slot_start, slot_end) for r in blocking),
        )
        for slot_start, slot_end in grid
    ]


class ConflictDetector:
    """Read-only availability queries against the reservation store."""

    def __init__(
        self,
        reservation_repo: ReservationRepository,
        operating_start_hour: int = 6,
        operating_end_hour: int = 22,
        timezone: str = "UTC",
    ):
        self.reservation_repo = reservation_repo
        self.operating_start_hour = operating_start_hour
        self.operating_end_hour = operating_end_hour
        self.tz = ZoneInfo(timezone)

    async def find_conflicts(
        self,
        connector_id: UUID,
        start: datetime,
        end: datetime,
        exclude_reservation_id: Optional[UUID] = None,
    ) -> list[Reservation]:
        """Blocking reservations on the connector overlapping [start, end)."""
        validate_window(start, end)
        candidates = await self.reservation_repo.find_blocking(
            connector_id, start, end, exclude_id=exclude_reservation_id
        )
        return find_overlapping(candidates, start, end, exclude_reservation_id)

    async def is_available(
        self,
        connector_id: UUID,
        start: datetime,
        end: datetime,
        exclude_reservation_id: Optional[UUID] = None,
    ) -> bool:
        """Check if the connector is free for [start, end)."""
        conflicts = await self.find_conflicts(connector_id, start, end, exclude_reservation_id)
        return not conflicts

    def day_window(self, day: date) -> tuple[datetime, datetime]:
        """Calendar day in the operating timezone as a [start, end) pair."""
        start = datetime.combine(day, time(), tzinfo=self.tz)
        return start, start + timedelta(days=1)

    async def list_available_slots(
        self,
        connector_id: UUID,
        day: date,
        slot_duration_minutes: int = 30,
    ) -> list[Slot]:
        """Slot-aligned availability over the operating window of ``day``."""
        grid = slot_grid(
            day,
            self.operating_start_hour,
            self.operating_end_hour,
            slot_duration_minutes,
            self.tz,
        )
        if not grid:
            return []

        blocking = await self.reservation_repo.find_blocking(
            connector_id, grid[0][0], grid[-1][1]
        )
        return mark_slots(grid, blocking)
