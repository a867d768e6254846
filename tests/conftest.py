"""Pytest configuration and shared fixtures."""

import sys
from pathlib import Path

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from uuid import uuid4

import pytest

from evreserve.models.directory import (
    Connector,
    ConnectorStandard,
    Station,
    UserContact,
    Vehicle,
)
from evreserve.models.reservation import Reservation, ReservationStatus
from evreserve.services.conflict_detector import ConflictDetector
from evreserve.services.credentials import CredentialIssuer
from evreserve.services.directory import InMemoryDirectory
from evreserve.services.lifecycle import LifecycleManager
from evreserve.services.notifications import LogNotificationSender
from evreserve.services.reservation_flow import ReservationFlowService
from evreserve.services.scheduler import InMemoryScheduler
from evreserve.storage.memory_reservation_repo import InMemoryReservationRepository

NOW = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)


class FixedClock:
    """Manually advanced clock."""

    def __init__(self, now: datetime = NOW):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


def at(hour: int, minute: int = 0) -> datetime:
    """Instant on the test day."""
    return NOW.replace(hour=hour, minute=minute)


@pytest.fixture
def clock():
    """Clock frozen at 08:00 UTC on the test day."""
    return FixedClock()


@pytest.fixture
def operator_id():
    return uuid4()


@pytest.fixture
def user_id():
    return uuid4()


@pytest.fixture
def station(operator_id):
    """Sample station."""
    return Station(id=uuid4(), name="Gulshan Fast Charge", address="Road 11, Dhaka", operator_id=operator_id)


@pytest.fixture
def connector(station):
    """CCS2 connector, 50 kW, 20 BDT/kWh."""
    return Connector(
        id=uuid4(),
        station_id=station.id,
        standard=ConnectorStandard.CCS2,
        max_kw=50.0,
        price_per_kwh_bdt=20.0,
    )


@pytest.fixture
def vehicle(user_id):
    """Vehicle with CCS2 and Type2 inlets and a 60 kWh battery."""
    return Vehicle(
        id=uuid4(),
        user_id=user_id,
        connector_standards=[ConnectorStandard.CCS2, ConnectorStandard.TYPE2],
        usable_kwh=60.0,
    )


@pytest.fixture
def directory(station, connector, vehicle, user_id, operator_id):
    """Directory seeded with one station, connector, vehicle, user and operator."""
    return InMemoryDirectory(
        stations=[station],
        connectors=[connector],
        vehicles=[vehicle],
        users=[
            UserContact(id=user_id, email="rahim@example.com", display_name="Rahim"),
            UserContact(id=operator_id, email="ops@example.com", display_name="Ops"),
        ],
    )


@pytest.fixture
def reservation_repo():
    return InMemoryReservationRepository()


@pytest.fixture
def scheduler():
    return InMemoryScheduler()


@pytest.fixture
def notifier():
    return LogNotificationSender()


@pytest.fixture
def lifecycle(reservation_repo, clock):
    return LifecycleManager(reservation_repo, cancellation_cutoff_minutes=60, clock=clock)


@pytest.fixture
def flow(reservation_repo, directory, scheduler, clock):
    """Booking flow wired to in-memory collaborators."""
    return ReservationFlowService(
        reservation_repo,
        stations=directory,
        vehicles=directory,
        conflict_detector=ConflictDetector(reservation_repo),
        credential_issuer=CredentialIssuer(reservation_repo),
        scheduler=scheduler,
        payment_grace_minutes=10,
        reminder_lead_minutes=5,
        clock=clock,
    )


@pytest.fixture
def make_reservation(user_id, vehicle, station, connector):
    """Factory for reservation objects (not persisted)."""

    def _make(
        start: datetime = None,
        end: datetime = None,
        status: ReservationStatus = ReservationStatus.PENDING,
        **overrides,
    ) -> Reservation:
        start = start or at(14, 0)
        end = end or start + timedelta(minutes=30)
        fields = dict(
            user_id=user_id,
            vehicle_id=vehicle.id,
            station_id=station.id,
            connector_id=connector.id,
            start_time=start,
            end_time=end,
            status=status,
            qr_code=uuid4().hex,
            otp="042917",
            payment_deadline=NOW + timedelta(minutes=10),
            total_cost_bdt=Decimal("500.00"),
            created_at=NOW,
            updated_at=NOW,
        )
        fields.update(overrides)
        return Reservation(**fields)

    return _make


@pytest.fixture
def at_time():
    """Build instants on the test day: ``at_time(14, 30)``."""
    return at
