"""Request-scoped dependencies: caller identity and the service container."""

from dataclasses import dataclass, field
from typing import Optional
from uuid import UUID

from fastapi import Header, HTTPException, Request, status

from evreserve.models.directory import UserRole
from evreserve.security.permissions import Caller, PermissionChecker
from evreserve.services.directory import StationDirectory
from evreserve.services.lifecycle import LifecycleManager
from evreserve.services.reservation_flow import ReservationFlowService
from evreserve.services.scheduler import Scheduler
from evreserve.storage.database import Database
from evreserve.storage.repository_base import ReservationRepository


@dataclass
class Services:
    """Everything the routes need, built once at startup."""

    flow: ReservationFlowService
    lifecycle: LifecycleManager
    reservation_repo: ReservationRepository
    stations: StationDirectory
    scheduler: Scheduler
    permissions: PermissionChecker = field(default_factory=PermissionChecker)
    database: Optional[Database] = None


def get_services(request: Request) -> Services:
    return request.app.state.services


def get_caller(
    x_user_id: Optional[str] = Header(default=None),
    x_user_role: Optional[str] = Header(default=None),
) -> Caller:
    """
    Identity forwarded by the upstream auth gateway.

    Raises:
        HTTPException: 401 when the identity headers are missing or malformed
    """
    if not x_user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing caller identity")
    try:
        user_id = UUID(x_user_id)
        role = UserRole(x_user_role.lower()) if x_user_role else UserRole.USER
    except ValueError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid caller identity")
    return Caller(user_id=user_id, role=role)
