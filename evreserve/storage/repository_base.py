"""Reservation store interface."""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from evreserve.models.reservation import Reservation, ReservationStatus


class ReservationRepository(ABC):
    """Authoritative store for reservations.

    Status is only ever changed through :meth:`compare_and_set`, and new rows
    only through :meth:`insert_if_available`, so both the no-overlap invariant
    and per-record serialization are enforced by the store itself.
    """

    @abstractmethod
    async def get_by_id(self, id: UUID) -> Optional[Reservation]:
        """Retrieve reservation by ID."""
        pass

    @abstractmethod
    async def find_blocking(
        self,
        connector_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: Optional[UUID] = None,
    ) -> list[Reservation]:
        """Blocking reservations on the connector overlapping [start, end)."""
        pass

    @abstractmethod
    async def qr_code_exists(self, qr_code: str) -> bool:
        """Check whether a QR token is already taken."""
        pass

    @abstractmethod
    async def insert_if_available(self, reservation: Reservation) -> Reservation:
        """Insert atomically unless an overlapping blocking reservation exists.

        Raises:
            SlotUnavailableError: another blocking reservation overlaps
            CredentialCollisionError: the QR token is already in use
        """
        pass

    @abstractmethod
    async def compare_and_set(
        self,
        id: UUID,
        expected_status: ReservationStatus,
        changes: dict[str, Any],
        require_unpaid: bool = False,
    ) -> Optional[Reservation]:
        """Apply ``changes`` only if the stored status still equals ``expected_status``.

        Returns the updated reservation, or None when the precondition failed
        (including when the reservation does not exist).
        """
        pass

    @abstractmethod
    async def list_by_user(
        self,
        user_id: UUID,
        status: Optional[ReservationStatus] = None,
        starts_after: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[Reservation]:
        """User's reservations, latest start first."""
        pass

    @abstractmethod
    async def list_by_station(
        self,
        station_id: UUID,
        status: Optional[ReservationStatus] = None,
        window: Optional[tuple[datetime, datetime]] = None,
        limit: int = 200,
    ) -> list[Reservation]:
        """Station's reservations, latest start first."""
        pass
