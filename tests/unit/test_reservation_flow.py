"""Unit tests for the booking flow."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from evreserve.errors import (
    CredentialCollisionError,
    CredentialGenerationFailedError,
    IncompatibleConnectorError,
    NotFoundError,
    SchedulerUnavailableError,
    SlotUnavailableError,
    ValidationError,
)
from evreserve.models.directory import Connector, ConnectorStandard, Vehicle
from evreserve.models.jobs import JobKind, JobState
from evreserve.models.reservation import ReservationStatus
from evreserve.services.conflict_detector import ConflictDetector
from evreserve.services.credentials import CredentialIssuer
from evreserve.services.directory import InMemoryDirectory
from evreserve.services.reservation_flow import (
    SCHEDULING_FAILED_REASON,
    ReservationFlowService,
    estimate_cost,
)

START = datetime(2026, 3, 2, 14, 0, tzinfo=timezone.utc)


def test_estimate_cost_limited_by_power():
    """30 min at 50 kW = 25 kWh, below a 60 kWh battery."""
    cost = estimate_cost(START, START + timedelta(minutes=30), max_kw=50, price_per_kwh_bdt=20, usable_kwh=60)
    assert cost == Decimal("500.00")


def test_estimate_cost_limited_by_battery():
    """3 h at 50 kW = 150 kWh, capped at the 60 kWh battery."""
    cost = estimate_cost(START, START + timedelta(hours=3), max_kw=50, price_per_kwh_bdt=20, usable_kwh=60)
    assert cost == Decimal("1200.00")


@pytest.mark.asyncio
async def test_create_reservation(flow, user_id, vehicle, station, connector, scheduler, clock):
    result = await flow.create_reservation(
        user_id, vehicle.id, station.id, connector.id, START, START + timedelta(minutes=30)
    )

    reservation = result.reservation
    assert reservation.status == ReservationStatus.PENDING
    assert not reservation.is_paid
    assert reservation.payment_deadline == clock.now + timedelta(minutes=10)
    assert reservation.total_cost_bdt == Decimal("500.00")
    assert len(reservation.otp) == 6
    assert result.qr_code_data_url.startswith("data:image/png;base64,")

    jobs = {j.kind: j for j in scheduler.jobs(JobState.SCHEDULED)}
    assert jobs[JobKind.RESERVATION_EXPIRY].fire_at == reservation.payment_deadline
    assert jobs[JobKind.PAYMENT_REMINDER].fire_at == reservation.payment_deadline - timedelta(minutes=5)
    assert all(j.reservation_id == reservation.id for j in jobs.values())


@pytest.mark.asyncio
async def test_reminder_not_scheduled_in_past(
    reservation_repo, directory, scheduler, clock, user_id, vehicle, station, connector
):
    flow = ReservationFlowService(
        reservation_repo,
        stations=directory,
        vehicles=directory,
        conflict_detector=ConflictDetector(reservation_repo),
        credential_issuer=CredentialIssuer(reservation_repo),
        scheduler=scheduler,
        payment_grace_minutes=3,
        reminder_lead_minutes=5,
        clock=clock,
    )

    await flow.create_reservation(user_id, vehicle.id, station.id, connector.id, START, START + timedelta(hours=1))

    jobs = {j.kind: j for j in scheduler.jobs()}
    assert jobs[JobKind.PAYMENT_REMINDER].fire_at == clock.now


@pytest.mark.asyncio
async def test_defaults_used_when_directory_has_no_pricing(
    reservation_repo, scheduler, clock, user_id, station
):
    connector = Connector(id=uuid4(), station_id=station.id, standard=ConnectorStandard.TYPE2, max_kw=7.0)
    vehicle = Vehicle(id=uuid4(), user_id=user_id, connector_standards=[ConnectorStandard.TYPE2])
    directory = InMemoryDirectory(stations=[station], connectors=[connector], vehicles=[vehicle])
    flow = ReservationFlowService(
        reservation_repo,
        stations=directory,
        vehicles=directory,
        conflict_detector=ConflictDetector(reservation_repo),
        credential_issuer=CredentialIssuer(reservation_repo),
        scheduler=scheduler,
        clock=clock,
    )

    result = await flow.create_reservation(
        user_id, vehicle.id, station.id, connector.id, START, START + timedelta(hours=2)
    )

    # 2 h * 7 kW = 14 kWh at 15 BDT
    assert result.reservation.total_cost_bdt == Decimal("210.00")


@pytest.mark.asyncio
async def test_rejects_inverted_window(flow, user_id, vehicle, station, connector):
    with pytest.raises(ValidationError):
        await flow.create_reservation(user_id, vehicle.id, station.id, connector.id, START, START)


@pytest.mark.asyncio
async def test_rejects_past_start(flow, user_id, vehicle, station, connector, clock):
    start = clock.now - timedelta(minutes=1)
    with pytest.raises(ValidationError):
        await flow.create_reservation(
            user_id, vehicle.id, station.id, connector.id, start, start + timedelta(minutes=30)
        )


@pytest.mark.asyncio
async def test_unknown_station_connector_vehicle(flow, user_id, vehicle, station, connector):
    end = START + timedelta(minutes=30)

    with pytest.raises(NotFoundError) as exc_info:
        await flow.create_reservation(user_id, vehicle.id, uuid4(), connector.id, START, end)
    assert exc_info.value.entity == "Station"

    with pytest.raises(NotFoundError) as exc_info:
        await flow.create_reservation(user_id, vehicle.id, station.id, uuid4(), START, end)
    assert exc_info.value.entity == "Connector"

    with pytest.raises(NotFoundError) as exc_info:
        await flow.create_reservation(user_id, uuid4(), station.id, connector.id, START, end)
    assert exc_info.value.entity == "Vehicle"


@pytest.mark.asyncio
async def test_someone_elses_vehicle_is_not_found(flow, vehicle, station, connector):
    with pytest.raises(NotFoundError):
        await flow.create_reservation(
            uuid4(), vehicle.id, station.id, connector.id, START, START + timedelta(minutes=30)
        )


@pytest.mark.asyncio
async def test_incompatible_connector(reservation_repo, scheduler, clock, user_id, station):
    connector = Connector(id=uuid4(), station_id=station.id, standard=ConnectorStandard.CHADEMO, max_kw=50)
    vehicle = Vehicle(
        id=uuid4(),
        user_id=user_id,
        connector_standards=[ConnectorStandard.CCS2, ConnectorStandard.TYPE2],
    )
    directory = InMemoryDirectory(stations=[station], connectors=[connector], vehicles=[vehicle])
    flow = ReservationFlowService(
        reservation_repo,
        stations=directory,
        vehicles=directory,
        conflict_detector=ConflictDetector(reservation_repo),
        credential_issuer=CredentialIssuer(reservation_repo),
        scheduler=scheduler,
        clock=clock,
    )

    with pytest.raises(IncompatibleConnectorError) as exc_info:
        await flow.create_reservation(
            user_id, vehicle.id, station.id, connector.id, START, START + timedelta(minutes=30)
        )

    assert exc_info.value.extra["station_connector"] == "CHAdeMO"
    assert exc_info.value.extra["vehicle_connectors"] == ["CCS2", "Type2"]
    assert scheduler.jobs() == []


@pytest.mark.asyncio
async def test_conflict_reports_windows(flow, user_id, vehicle, station, connector, scheduler):
    await flow.create_reservation(user_id, vehicle.id, station.id, connector.id, START, START + timedelta(minutes=30))

    with pytest.raises(SlotUnavailableError) as exc_info:
        await flow.create_reservation(
            user_id,
            vehicle.id,
            station.id,
            connector.id,
            START + timedelta(minutes=15),
            START + timedelta(minutes=45),
        )

    assert exc_info.value.status_code == 409
    assert exc_info.value.conflicts == [(START, START + timedelta(minutes=30))]
    assert len(scheduler.jobs()) == 2


@pytest.mark.asyncio
async def test_insert_collision_reissues_credentials(directory, scheduler, clock, user_id, vehicle, station, connector):
    repo = AsyncMock()
    repo.find_blocking.return_value = []
    repo.qr_code_exists.return_value = False
    inserted = []

    async def side_effect(reservation):
        inserted.append(reservation)
        if len(inserted) == 1:
            raise CredentialCollisionError("QR code already in use")
        return reservation

    repo.insert_if_available.side_effect = side_effect
    flow = ReservationFlowService(
        repo,
        stations=directory,
        vehicles=directory,
        conflict_detector=ConflictDetector(repo),
        credential_issuer=CredentialIssuer(repo, max_attempts=3),
        scheduler=scheduler,
        clock=clock,
    )

    result = await flow.create_reservation(
        user_id, vehicle.id, station.id, connector.id, START, START + timedelta(minutes=30)
    )

    assert len(inserted) == 2
    assert inserted[0].qr_code != inserted[1].qr_code
    assert result.reservation.qr_code == inserted[1].qr_code


@pytest.mark.asyncio
async def test_insert_collisions_exhaust_budget(directory, scheduler, clock, user_id, vehicle, station, connector):
    repo = AsyncMock()
    repo.find_blocking.return_value = []
    repo.qr_code_exists.return_value = False
    repo.insert_if_available.side_effect = CredentialCollisionError("QR code already in use")
    flow = ReservationFlowService(
        repo,
        stations=directory,
        vehicles=directory,
        conflict_detector=ConflictDetector(repo),
        credential_issuer=CredentialIssuer(repo, max_attempts=2),
        scheduler=scheduler,
        clock=clock,
    )

    with pytest.raises(CredentialGenerationFailedError):
        await flow.create_reservation(
            user_id, vehicle.id, station.id, connector.id, START, START + timedelta(minutes=30)
        )
    assert scheduler.jobs() == []


def flow_with_failing_scheduler(reservation_repo, directory, clock, failure):
    scheduler = AsyncMock()
    scheduler.schedule_at.side_effect = failure
    return ReservationFlowService(
        reservation_repo,
        stations=directory,
        vehicles=directory,
        conflict_detector=ConflictDetector(reservation_repo),
        credential_issuer=CredentialIssuer(reservation_repo),
        scheduler=scheduler,
        clock=clock,
    )


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "failure",
    [
        SchedulerUnavailableError("Redis schedule_at failed", backend="redis"),
        RedisConnectionError("Connection refused"),
    ],
)
async def test_scheduling_failure_releases_booking(
    failure, reservation_repo, directory, clock, user_id, vehicle, station, connector, flow
):
    failing = flow_with_failing_scheduler(reservation_repo, directory, clock, failure)

    with pytest.raises(SchedulerUnavailableError) as exc_info:
        await failing.create_reservation(
            user_id, vehicle.id, station.id, connector.id, START, START + timedelta(minutes=30)
        )

    assert exc_info.value.status_code == 503
    rows = list(reservation_repo._rows.values())
    assert [(r.status, r.is_paid) for r in rows] == [(ReservationStatus.CANCELED, False)]
    assert rows[0].cancellation_reason == SCHEDULING_FAILED_REASON
    assert rows[0].canceled_at == clock.now
    assert await reservation_repo.find_blocking(connector.id, START, START + timedelta(minutes=30)) == []

    # The window is bookable again once the queue is back
    retry = await flow.create_reservation(
        user_id, vehicle.id, station.id, connector.id, START, START + timedelta(minutes=30)
    )
    assert retry.reservation.status == ReservationStatus.PENDING


@pytest.mark.asyncio
async def test_reminder_scheduling_failure_also_releases_booking(
    reservation_repo, directory, clock, user_id, vehicle, station, connector
):
    failing = flow_with_failing_scheduler(
        reservation_repo, directory, clock, [object(), RedisConnectionError("Connection reset")]
    )

    with pytest.raises(SchedulerUnavailableError):
        await failing.create_reservation(
            user_id, vehicle.id, station.id, connector.id, START, START + timedelta(minutes=30)
        )

    assert [r.status for r in reservation_repo._rows.values()] == [ReservationStatus.CANCELED]
    assert failing.scheduler.schedule_at.await_count == 2


@pytest.mark.asyncio
async def test_check_availability(flow, user_id, vehicle, station, connector):
    await flow.create_reservation(user_id, vehicle.id, station.id, connector.id, START, START + timedelta(minutes=30))

    busy = await flow.check_availability(station.id, connector.id, START + timedelta(minutes=15), START + timedelta(minutes=45))
    free = await flow.check_availability(station.id, connector.id, START + timedelta(minutes=30), START + timedelta(hours=1))

    assert not busy.available
    assert len(busy.conflicts) == 1
    assert free.available


@pytest.mark.asyncio
async def test_check_availability_unknown_connector(flow, station):
    with pytest.raises(NotFoundError):
        await flow.check_availability(station.id, uuid4(), START, START + timedelta(minutes=30))


@pytest.mark.asyncio
async def test_list_user_reservations_upcoming(flow, user_id, vehicle, station, connector, clock):
    await flow.create_reservation(user_id, vehicle.id, station.id, connector.id, START, START + timedelta(minutes=30))
    later = START + timedelta(hours=2)
    await flow.create_reservation(user_id, vehicle.id, station.id, connector.id, later, later + timedelta(minutes=30))

    everything = await flow.list_user_reservations(user_id)
    assert [r.start_time for r in everything] == [later, START]

    clock.advance(hours=7)
    upcoming = await flow.list_user_reservations(user_id, upcoming=True)
    assert [r.start_time for r in upcoming] == [later]
