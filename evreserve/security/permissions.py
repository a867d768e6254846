"""Permission checks for reservation access."""

from enum import Enum
from typing import NamedTuple, Optional
from uuid import UUID

from evreserve.errors import AccessDeniedError
from evreserve.logging.audit import AuditLogger
from evreserve.models.directory import Station, UserRole
from evreserve.models.reservation import Reservation


class Permission(str, Enum):
    """Permission types."""

    VIEW_RESERVATION = "view_reservation"
    MANAGE_RESERVATION = "manage_reservation"
    VIEW_STATION_RESERVATIONS = "view_station_reservations"


class Caller(NamedTuple):
    """Identity forwarded by the auth gateway."""

    user_id: UUID
    role: UserRole = UserRole.USER

    @property
    def is_staff(self) -> bool:
        return self.role in (UserRole.OPERATOR, UserRole.ADMIN)


class PermissionChecker:
    """Check caller permissions for actions."""

    def is_admin(self, caller: Caller) -> bool:
        """Check if caller is admin."""
        return caller.role == UserRole.ADMIN

    def operates(self, caller: Caller, station: Optional[Station]) -> bool:
        """Check if caller operates the station (admins operate all)."""
        if self.is_admin(caller):
            return True
        return (
            caller.role == UserRole.OPERATOR
            and station is not None
            and station.operator_id == caller.user_id
        )

    def can_view_reservation(
        self, caller: Caller, reservation: Reservation, station: Optional[Station] = None
    ) -> bool:
        """Owners, the station's operator and admins can view."""
        return reservation.user_id == caller.user_id or self.operates(caller, station)

    def can_view_station_reservations(self, caller: Caller, station: Optional[Station]) -> bool:
        """Operator of the station or admin."""
        return self.operates(caller, station)

    def require(self, allowed: bool, caller: Caller, resource_id: UUID | str, permission: Permission) -> None:
        """
        Raise unless ``allowed``.

        Raises:
            AccessDeniedError: permission check failed (audit logged)
        """
        if allowed:
            return
        reason = f"{caller.role.value} lacks {permission.value}"
        AuditLogger.log_access_denied(str(caller.user_id), resource_id, reason)
        raise AccessDeniedError("Access denied", permission=permission.value)
