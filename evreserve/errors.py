"""Domain exceptions for the reservation engine.

Every error carries an HTTP-ish ``status_code`` and a stable ``code`` so the
API layer can render it without knowing each type, plus ``extra`` with the
actionable detail (conflicting windows, standards, statuses).
"""

from datetime import datetime
from typing import Any, Iterable, Optional


class ReservationError(Exception):
    """Base class for all reservation engine errors."""

    status_code: int = 400
    code: str = "reservation_error"

    def __init__(self, message: str, **extra: Any):
        super().__init__(message)
        self.message = message
        self.extra = extra

    def to_dict(self) -> dict[str, Any]:
        """Serialize for an API error body."""
        return {"error": self.code, "detail": self.message, **self.extra}


class ValidationError(ReservationError):
    """Malformed or caller-fixable input."""

    status_code = 400
    code = "validation_error"


class NotFoundError(ReservationError):
    """A referenced entity does not exist."""

    status_code = 404
    code = "not_found"

    def __init__(self, entity: str, entity_id: Any):
        super().__init__(f"{entity} not found", entity=entity, id=str(entity_id))
        self.entity = entity
        self.entity_id = entity_id


class AccessDeniedError(ReservationError):
    """Caller does not own the resource or lacks the required role."""

    status_code = 403
    code = "access_denied"


class IncompatibleConnectorError(ReservationError):
    """Vehicle does not support the connector's standard."""

    status_code = 400
    code = "incompatible_connector"

    def __init__(self, connector_standard: str, vehicle_standards: Iterable[str]):
        vehicle_standards = sorted(vehicle_standards)
        super().__init__(
            f"Vehicle is not compatible with {connector_standard} connector",
            station_connector=connector_standard,
            vehicle_connectors=vehicle_standards,
        )
        self.connector_standard = connector_standard
        self.vehicle_standards = vehicle_standards


class SlotUnavailableError(ReservationError):
    """Requested window overlaps at least one blocking reservation."""

    status_code = 409
    code = "slot_unavailable"

    def __init__(self, conflicts: Iterable[tuple[datetime, datetime]]):
        self.conflicts = sorted(conflicts)
        super().__init__(
            "Time slot not available",
            conflicting_reservations=[
                {"start_time": start.isoformat(), "end_time": end.isoformat()}
                for start, end in self.conflicts
            ],
        )


class InvalidTransitionError(ReservationError):
    """Requested status change is not in the transition table."""

    status_code = 400
    code = "invalid_transition"

    def __init__(self, current: Any, attempted: Any, allowed: Iterable[Any] = ()):
        current_value = getattr(current, "value", current)
        attempted_value = getattr(attempted, "value", attempted)
        allowed_values = sorted(getattr(s, "value", s) for s in allowed)
        super().__init__(
            f"Cannot transition from {current_value} to {attempted_value}",
            current_status=current_value,
            attempted_status=attempted_value,
            allowed_transitions=allowed_values,
        )
        self.current = current
        self.attempted = attempted


class CancellationWindowClosedError(ReservationError):
    """User cancellation requested inside the cutoff window before start."""

    status_code = 400
    code = "cancellation_window_closed"

    def __init__(self, start_time: datetime, cutoff_minutes: int):
        super().__init__(
            f"Cannot cancel reservation less than {cutoff_minutes} minutes before start time",
            start_time=start_time.isoformat(),
            cutoff_minutes=cutoff_minutes,
        )
        self.start_time = start_time


class CredentialGenerationFailedError(ReservationError):
    """Could not produce a unique QR token within the retry budget."""

    status_code = 500
    code = "credential_generation_failed"

    def __init__(self, attempts: int):
        super().__init__(
            "Failed to generate unique QR code. Please try again.",
            attempts=attempts,
        )
        self.attempts = attempts


class CredentialCollisionError(ReservationError):
    """QR token collided at insert time; the caller should re-issue."""

    status_code = 500
    code = "credential_collision"


class StoreUnavailableError(ReservationError):
    """Transient persistence failure; workers retry these."""

    status_code = 503
    code = "store_unavailable"


class SchedulerUnavailableError(ReservationError):
    """The job queue backend cannot be reached."""

    status_code = 503
    code = "scheduler_unavailable"

    def __init__(self, message: str, backend: Optional[str] = None):
        super().__init__(message, backend=backend)
