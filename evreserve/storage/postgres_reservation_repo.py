"""PostgreSQL repository for Reservation entities."""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from sqlalchemy import exists, func, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from evreserve.errors import CredentialCollisionError, SlotUnavailableError
from evreserve.logging import get_logger
from evreserve.models.reservation import BLOCKING_STATUSES, Reservation, ReservationStatus, utcnow
from evreserve.storage.database import Database
from evreserve.storage.db_models import (
    QR_CODE_CONSTRAINT,
    WINDOW_EXCLUSION_CONSTRAINT,
    ReservationTable,
)
from evreserve.storage.repository_base import ReservationRepository

logger = get_logger(__name__)


def connector_lock_key(connector_id: UUID) -> int:
    """Signed 64-bit advisory lock key derived from a connector ID."""
    return int.from_bytes(connector_id.bytes[:8], "big", signed=True)


class PostgresReservationRepository(ReservationRepository):
    """Reservation repository using PostgreSQL.

    Each call runs in its own transaction so the repository can be shared by
    request handlers and concurrent job workers.
    """

    def __init__(self, database: Database):
        """Initialize repository with the database manager."""
        self.database = database

    async def get_by_id(self, id: UUID) -> Optional[Reservation]:
        """Retrieve reservation by ID."""
        async with self.database.session() as session:
            stmt = select(ReservationTable).where(ReservationTable.id == id)
            result = await session.execute(stmt)
            db_reservation = result.scalar_one_or_none()

            if not db_reservation:
                return None

            return self._to_domain_model(db_reservation)

    async def find_blocking(
        self,
        connector_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: Optional[UUID] = None,
    ) -> list[Reservation]:
        """Blocking reservations on the connector overlapping [start, end)."""
        async with self.database.session() as session:
            return await self._find_blocking(session, connector_id, start, end, exclude_id)

    async def qr_code_exists(self, qr_code: str) -> bool:
        """Check whether a QR token is already taken."""
        async with self.database.session() as session:
            stmt = select(exists().where(ReservationTable.qr_code == qr_code))
            result = await session.execute(stmt)
            return bool(result.scalar())

    async def insert_if_available(self, reservation: Reservation) -> Reservation:
        """Insert under a per-connector advisory lock after re-checking overlap.

        The exclusion constraint from migration 001 backs this up if a writer
        bypasses the lock.
        """
        async with self.database.session() as session:
            await session.execute(
                select(func.pg_advisory_xact_lock(connector_lock_key(reservation.connector_id)))
            )

            conflicts = await self._find_blocking(
                session,
                reservation.connector_id,
                reservation.start_time,
                reservation.end_time,
            )
            if conflicts:
                raise SlotUnavailableError((r.start_time, r.end_time) for r in conflicts)

            db_reservation = ReservationTable(
                id=reservation.id,
                user_id=reservation.user_id,
                vehicle_id=reservation.vehicle_id,
                station_id=reservation.station_id,
                connector_id=reservation.connector_id,
                start_time=reservation.start_time,
                end_time=reservation.end_time,
                status=reservation.status,
                qr_code=reservation.qr_code,
                otp=reservation.otp,
                payment_deadline=reservation.payment_deadline,
                is_paid=reservation.is_paid,
                total_cost_bdt=reservation.total_cost_bdt,
                notes=reservation.notes,
                created_at=reservation.created_at,
                updated_at=reservation.updated_at,
            )
            session.add(db_reservation)

            try:
                await session.flush()
            except IntegrityError as e:
                message = str(e.orig)
                if QR_CODE_CONSTRAINT in message:
                    logger.warning("qr_code_collision", reservation_id=str(reservation.id))
                    raise CredentialCollisionError("QR code already in use") from e
                if WINDOW_EXCLUSION_CONSTRAINT in message:
                    logger.warning(
                        "reservation_window_exclusion_violation",
                        connector_id=str(reservation.connector_id),
                    )
                    raise SlotUnavailableError(
                        [(reservation.start_time, reservation.end_time)]
                    ) from e
                raise

            logger.info(
                "reservation_inserted",
                reservation_id=str(reservation.id),
                connector_id=str(reservation.connector_id),
            )
            return self._to_domain_model(db_reservation)

    async def compare_and_set(
        self,
        id: UUID,
        expected_status: ReservationStatus,
        changes: dict[str, Any],
        require_unpaid: bool = False,
    ) -> Optional[Reservation]:
        """Conditional UPDATE ... WHERE status = expected RETURNING *."""
        stmt = (
            update(ReservationTable)
            .where(ReservationTable.id == id)
            .where(ReservationTable.status == expected_status)
            .values(**changes, updated_at=utcnow())
            .returning(ReservationTable)
        )
        if require_unpaid:
            stmt = stmt.where(ReservationTable.is_paid.is_(False))

        async with self.database.session() as session:
            result = await session.execute(stmt)
            db_reservation = result.scalar_one_or_none()

            if not db_reservation:
                return None

            return self._to_domain_model(db_reservation)

    async def list_by_user(
        self,
        user_id: UUID,
        status: Optional[ReservationStatus] = None,
        starts_after: Optional[datetime] = None,
        limit: int = 100,
    ) -> list[Reservation]:
        """User's reservations, latest start first."""
        stmt = select(ReservationTable).where(ReservationTable.user_id == user_id)
        if status is not None:
            stmt = stmt.where(ReservationTable.status == status)
        if starts_after is not None:
            stmt = stmt.where(ReservationTable.start_time >= starts_after)
        stmt = stmt.order_by(ReservationTable.start_time.desc()).limit(limit)

        async with self.database.session() as session:
            result = await session.execute(stmt)
            return [self._to_domain_model(row) for row in result.scalars().all()]

    async def list_by_station(
        self,
        station_id: UUID,
        status: Optional[ReservationStatus] = None,
        window: Optional[tuple[datetime, datetime]] = None,
        limit: int = 200,
    ) -> list[Reservation]:
        """Station's reservations, latest start first."""
        stmt = select(ReservationTable).where(ReservationTable.station_id == station_id)
        if status is not None:
            stmt = stmt.where(ReservationTable.status == status)
        if window is not None:
            window_start, window_end = window
            stmt = stmt.where(ReservationTable.start_time < window_end).where(
                ReservationTable.end_time > window_start
            )
        stmt = stmt.order_by(ReservationTable.start_time.desc()).limit(limit)

        async with self.database.session() as session:
            result = await session.execute(stmt)
            return [self._to_domain_model(row) for row in result.scalars().all()]

    async def _find_blocking(
        self,
        session: AsyncSession,
        connector_id: UUID,
        start: datetime,
        end: datetime,
        exclude_id: Optional[UUID] = None,
    ) -> list[Reservation]:
        stmt = (
            select(ReservationTable)
            .where(ReservationTable.connector_id == connector_id)
            .where(ReservationTable.status.in_(list(BLOCKING_STATUSES)))
            .where(ReservationTable.start_time < end)
            .where(ReservationTable.end_time > start)
            .order_by(ReservationTable.start_time.asc())
        )
        if exclude_id is not None:
            stmt = stmt.where(ReservationTable.id != exclude_id)

        result = await session.execute(stmt)
        return [self._to_domain_model(row) for row in result.scalars().all()]

    def _to_domain_model(self, db_reservation: ReservationTable) -> Reservation:
        """Convert database model to domain model."""
        return Reservation(
            id=db_reservation.id,
            user_id=db_reservation.user_id,
            vehicle_id=db_reservation.vehicle_id,
            station_id=db_reservation.station_id,
            connector_id=db_reservation.connector_id,
            start_time=db_reservation.start_time,
            end_time=db_reservation.end_time,
            status=db_reservation.status,
            qr_code=db_reservation.qr_code,
            otp=db_reservation.otp,
            payment_deadline=db_reservation.payment_deadline,
            is_paid=db_reservation.is_paid,
            total_cost_bdt=db_reservation.total_cost_bdt,
            notes=db_reservation.notes,
            cancellation_reason=db_reservation.cancellation_reason,
            canceled_at=db_reservation.canceled_at,
            created_at=db_reservation.created_at,
            updated_at=db_reservation.updated_at,
        )
