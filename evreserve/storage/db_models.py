"""SQLAlchemy database models.

Maps domain models to PostgreSQL tables. Stations, connectors, vehicles and
users are owned by other services; this package only reads them.
"""

from datetime import datetime, timezone
from uuid import uuid4

from sqlalchemy import (
    ARRAY,
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import UUID as PG_UUID
from sqlalchemy.orm import DeclarativeBase

from evreserve.models.reservation import ReservationStatus

QR_CODE_CONSTRAINT = "uq_reservations_qr_code"
# Created by migration 001: EXCLUDE USING gist (connector_id WITH =,
# tstzrange(start_time, end_time, '[)') WITH &&) WHERE status is blocking
WINDOW_EXCLUSION_CONSTRAINT = "excl_reservations_connector_window"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all database models."""

    pass


class UserTable(Base):
    """User entity table (read-only here)."""

    __tablename__ = "users"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    email = Column(String(255), nullable=True, unique=True)
    display_name = Column(String(100), nullable=True)
    role = Column(String(20), nullable=False, default="user")


class StationTable(Base):
    """Station entity table (read-only here)."""

    __tablename__ = "stations"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    name = Column(String(200), nullable=False)
    address = Column(String(500), nullable=True)
    operator_id = Column(PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="SET NULL"), nullable=True, index=True)


class ConnectorTable(Base):
    """Connector entity table (read-only here)."""

    __tablename__ = "connectors"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    station_id = Column(PG_UUID(as_uuid=True), ForeignKey("stations.id", ondelete="CASCADE"), nullable=False, index=True)
    standard = Column(String(20), nullable=False)
    max_kw = Column(Numeric(6, 2), nullable=False)
    price_per_kwh_bdt = Column(Numeric(10, 2), nullable=True)


class VehicleTable(Base):
    """Vehicle entity table (read-only here)."""

    __tablename__ = "vehicles"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(PG_UUID(as_uuid=True), ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    connector_standards = Column(ARRAY(String(20)), nullable=False, default=list)
    usable_kwh = Column(Numeric(6, 2), nullable=True)


class ReservationTable(Base):
    """Reservation entity table."""

    __tablename__ = "reservations"

    id = Column(PG_UUID(as_uuid=True), primary_key=True, default=uuid4)
    user_id = Column(PG_UUID(as_uuid=True), ForeignKey("users.id"), nullable=False)
    vehicle_id = Column(PG_UUID(as_uuid=True), ForeignKey("vehicles.id"), nullable=False)
    station_id = Column(PG_UUID(as_uuid=True), ForeignKey("stations.id"), nullable=False)
    connector_id = Column(PG_UUID(as_uuid=True), ForeignKey("connectors.id"), nullable=False)
    start_time = Column(DateTime(timezone=True), nullable=False)
    end_time = Column(DateTime(timezone=True), nullable=False)
    status = Column(
        Enum(ReservationStatus, native_enum=True, name="reservationstatus"),
        nullable=False,
        default=ReservationStatus.PENDING,
    )
    qr_code = Column(String(64), nullable=False)
    otp = Column(String(10), nullable=False)
    payment_deadline = Column(DateTime(timezone=True), nullable=False)
    is_paid = Column(Boolean, nullable=False, default=False)
    total_cost_bdt = Column(Numeric(12, 2), nullable=False)
    notes = Column(String(500), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    canceled_at = Column(DateTime(timezone=True), nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=_utcnow, onupdate=_utcnow)

    __table_args__ = (
        CheckConstraint("start_time < end_time", name="check_time_range"),
        CheckConstraint("total_cost_bdt >= 0", name="check_nonnegative_cost"),
        Index(QR_CODE_CONSTRAINT, qr_code, unique=True),
        Index("ix_reservations_user_status", user_id, status),
        Index("ix_reservations_station_connector_start", station_id, connector_id, start_time),
        Index("ix_reservations_connector_window_status", connector_id, start_time, end_time, status),
        Index("ix_reservations_status_start", status, start_time),
    )
