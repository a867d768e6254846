"""In-process reservation store for tests and single-process runs."""

import asyncio
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from evreserve.errors import CredentialCollisionError, SlotUnavailableError
from evreserve.logging import get_logger
from evreserve.models.reservation import Reservation, ReservationStatus, utcnow
from evreserve.storage.repository_base import ReservationRepository

logger = get_logger(__name__)


class InMemoryReservationRepository(ReservationRepository):
    """Reservation repository backed by a dict guarded by one asyncio lock."""

    def __init__(self) -> None:
        self._rows: dict[UUID, Reservation] = {}
        self._lock = asyncio.Lock()

    async def get_by_id(self, id: UUID) -> Optional[Reservation]:
        row = self._rows.get(id)
        return row.model_copy() if row else None

    async def find_blocking(
        self,
        connector_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: Optional[UUID] = None,
    ) -> list[Reservation]:
        return [row.model_copy() for row in self._blocking(connector_id, start, end, exclude_id)]

    async def qr_code_exists(self, qr_code: str) -> bool:
        return any(row.qr_code == qr_code for row in self._rows.values())

    async def insert_if_available(self, reservation: Reservation) -> Reservation:
        async with self._lock:
            conflicts = self._blocking(
                reservation.connector_id, reservation.start_time, reservation.end_time
            )
            if conflicts:
                raise SlotUnavailableError((r.start_time, r.end_time) for r in conflicts)
            if await self.qr_code_exists(reservation.qr_code):
                raise CredentialCollisionError("QR code already in use")

            self._rows[reservation.id] = reservation.model_copy()

        logger.info(
            "reservation_inserted",
            reservation_id=str(reservation.id),
            connector_id=str(reservation.connector_id),
        )
        return reservation.model_copy()

    async def compare_and_set(
        self,
        id: UUID,
        expected_status: ReservationStatus,
        changes: dict[str, Any],
        require_unpaid: bool = False,
    ) -> Optional[Reservation]:
        async with self._lock:
            row = self._rows.get(id)
            if row is None or row.status != expected_status:
                return None
            if require_unpaid and row.is_paid:
                return None

            updated = row.model_copy(update={**changes, "updated_at": utcnow()})
            self._rows[id] = updated
            return updated.model_copy()

    async def list_by_user(
        self,
        user_id: UUID,
        status: Optional[ReservationStatus] = None,
        starts_after: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[Reservation]:
        rows = [
            row
            for row in self._rows.values()
            if row.user_id == user_id
            and (status is None or row.status == status)
            and (starts_after is None or row.start_time >= starts_after)
        ]
        rows.sort(key=lambda r: r.start_time, reverse=True)
        return [row.model_copy() for row in rows[:limit]]

    async def list_by_station(
        self,
        station_id: UUID,
        status: Optional[ReservationStatus] = None,
        window: Optional[tuple[datetime, datetime]] = None,
        limit: int = 200,
    ) -> list[Reservation]:
        rows = [
            row
            for row in self._rows.values()
            if row.station_id == station_id
            and (status is None or row.status == status)
            and (window is None or row.overlaps(*window))
        ]
        rows.sort(key=lambda r: r.start_time, reverse=True)
        return [row.model_copy() for row in rows[:limit]]

    def _blocking(
        self,
        connector_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: Optional[UUID] = None,
    ) -> list[Reservation]:
        rows = [
            row
            for row in self._rows.values()
            if row.connector_id == connector_id
            and row.is_blocking
            and row.id != exclude_id
            and row.overlaps(start, end)
        ]
        return sorted(rows, key=lambda r: r.start_time)
