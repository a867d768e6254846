"""PostgreSQL-backed read-only directory."""

from typing import Optional
from uuid import UUID

from sqlalchemy import select

from evreserve.models.directory import Connector, ConnectorStandard, Station, UserContact, Vehicle
from evreserve.services.directory import StationDirectory, UserDirectory, VehicleDirectory
from evreserve.storage.database import Database
from evreserve.storage.db_models import ConnectorTable, StationTable, UserTable, VehicleTable


class PostgresDirectory(StationDirectory, VehicleDirectory, UserDirectory):
    """Reads station, connector, vehicle and user rows owned by other services."""

    def __init__(self, database: Database):
        self.database = database

    async def get_station(self, station_id: UUID) -> Optional[Station]:
        async with self.database.session() as session:
            result = await session.execute(select(StationTable).where(StationTable.id == station_id))
            row = result.scalar_one_or_none()
            if not row:
                return None
            return Station(id=row.id, name=row.name, address=row.address, operator_id=row.operator_id)

    async def get_connector(self, station_id: UUID, connector_id: UUID) -> Optional[Connector]:
        stmt = (
            select(ConnectorTable)
            .where(ConnectorTable.id == connector_id)
            .where(ConnectorTable.station_id == station_id)
        )
        async with self.database.session() as session:
            result = await session.execute(stmt)
            row = result.scalar_one_or_none()
            if not row:
                return None
            return Connector(
                id=row.id,
                station_id=row.station_id,
                standard=ConnectorStandard(row.standard),
                max_kw=float(row.max_kw),
                price_per_kwh_bdt=float(row.price_per_kwh_bdt) if row.price_per_kwh_bdt is not None else None,
            )

    async def get_vehicle(self, vehicle_id: UUID) -> Optional[Vehicle]:
        async with self.database.session() as session:
            result = await session.execute(select(VehicleTable).where(VehicleTable.id == vehicle_id))
            row = result.scalar_one_or_none()
            if not row:
                return None
            return Vehicle(
                id=row.id,
                user_id=row.user_id,
                connector_standards=[ConnectorStandard(s) for s in row.connector_standards or []],
                usable_kwh=float(row.usable_kwh) if row.usable_kwh is not None else None,
            )

    async def get_contact(self, user_id: UUID) -> Optional[UserContact]:
        async with self.database.session() as session:
            result = await session.execute(select(UserTable).where(UserTable.id == user_id))
            row = result.scalar_one_or_none()
            if not row:
                return None
            return UserContact(id=row.id, email=row.email, display_name=row.display_name)
