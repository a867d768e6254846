"""Read-only directory collaborators (stations, connectors, vehicles, users)."""

from abc import ABC, abstractmethod
from typing import Iterable, Optional
from uuid import UUID

from evreserve.models.directory import Connector, Station, UserContact, Vehicle


class StationDirectory(ABC):
    """Station and connector lookups."""

    @abstractmethod
    async def get_station(self, station_id: UUID) -> Optional[Station]:
        pass

    @abstractmethod
    async def get_connector(self, station_id: UUID, connector_id: UUID) -> Optional[Connector]:
        """Connector only if it belongs to the given station."""
        pass


class VehicleDirectory(ABC):
    """Vehicle lookups."""

    @abstractmethod
    async def get_vehicle(self, vehicle_id: UUID) -> Optional[Vehicle]:
        pass


class UserDirectory(ABC):
    """User contact lookups for notifications."""

    @abstractmethod
    async def get_contact(self, user_id: UUID) -> Optional[UserContact]:
        pass


class InMemoryDirectory(StationDirectory, VehicleDirectory, UserDirectory):
    """Seedable directory used by tests and local runs."""

    def __init__(
        self,
        stations: Iterable[Station] = (),
        connectors: Iterable[Connector] = (),
        vehicles: Iterable[Vehicle] = (),
        users: Iterable[UserContact] = (),
    ):
        self.stations = {s.id: s for s in stations}
        self.connectors = {c.id: c for c in connectors}
        self.vehicles = {v.id: v for v in vehicles}
        self.users = {u.id: u for u in users}

    async def get_station(self, station_id: UUID) -> Optional[Station]:
        return self.stations.get(station_id)

    async def get_connector(self, station_id: UUID, connector_id: UUID) -> Optional[Connector]:
        connector = self.connectors.get(connector_id)
        if connector is None or connector.station_id != station_id:
            return None
        return connector

    async def get_vehicle(self, vehicle_id: UUID) -> Optional[Vehicle]:
        return self.vehicles.get(vehicle_id)

    async def get_contact(self, user_id: UUID) -> Optional[UserContact]:
        return self.users.get(user_id)
