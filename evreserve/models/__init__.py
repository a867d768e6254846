"""Models package - Pydantic domain models."""

from .availability import Slot, TimeWindow
from .directory import Connector, ConnectorStandard, Station, UserContact, UserRole, Vehicle
from .jobs import Job, JobKind, JobOutcome, JobState
from .reservation import (
    BLOCKING_STATUSES,
    TERMINAL_STATUSES,
    Reservation,
    ReservationStatus,
    intervals_overlap,
    utcnow,
)

__all__ = [
    "BLOCKING_STATUSES",
    "TERMINAL_STATUSES",
    "Connector",
    "ConnectorStandard",
    "Job",
    "JobKind",
    "JobOutcome",
    "JobState",
    "Reservation",
    "ReservationStatus",
    "Slot",
    "Station",
    "TimeWindow",
    "UserContact",
    "UserRole",
    "Vehicle",
    "intervals_overlap",
    "utcnow",
]
