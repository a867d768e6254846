"""Unit tests for the reservation expiry worker."""

from datetime import timedelta
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from evreserve.errors import StoreUnavailableError
from evreserve.models.jobs import Job, JobKind
from evreserve.models.reservation import ReservationStatus
from evreserve.services.expiry_worker import ExpiryWorker


def expiry_job(reservation_id, fire_at):
    return Job(kind=JobKind.RESERVATION_EXPIRY, reservation_id=reservation_id, fire_at=fire_at)


@pytest.fixture
def worker(reservation_repo, lifecycle, clock):
    return ExpiryWorker(reservation_repo, lifecycle, clock=clock)


@pytest.mark.asyncio
async def test_expires_unpaid_past_deadline(worker, reservation_repo, make_reservation, clock):
    reservation = await reservation_repo.insert_if_available(make_reservation())
    clock.advance(minutes=10)

    outcome = await worker.handle(expiry_job(reservation.id, reservation.payment_deadline))

    assert outcome.action == "expired"
    stored = await reservation_repo.get_by_id(reservation.id)
    assert stored.status == ReservationStatus.EXPIRED


@pytest.mark.asyncio
async def test_second_delivery_is_skip(worker, reservation_repo, make_reservation, clock):
    """Redelivered expiry jobs find the reservation already EXPIRED."""
    reservation = await reservation_repo.insert_if_available(make_reservation())
    clock.advance(minutes=11)
    job = expiry_job(reservation.id, reservation.payment_deadline)

    first = await worker.handle(job)
    second = await worker.handle(job)

    assert first.action == "expired"
    assert second.is_skip
    assert second.reason == "Already EXPIRED"


@pytest.mark.asyncio
async def test_paid_reservation_skipped(worker, reservation_repo, make_reservation, clock):
    reservation = await reservation_repo.insert_if_available(
        make_reservation(status=ReservationStatus.CONFIRMED, is_paid=True)
    )
    clock.advance(minutes=15)

    outcome = await worker.handle(expiry_job(reservation.id, reservation.payment_deadline))

    assert outcome.is_skip
    assert outcome.reason == "Already paid"


@pytest.mark.asyncio
async def test_early_fire_skipped_without_reschedule(worker, reservation_repo, make_reservation, clock):
    reservation = await reservation_repo.insert_if_available(make_reservation())

    outcome = await worker.handle(expiry_job(reservation.id, clock.now))

    assert outcome.is_skip
    assert outcome.reason == "Deadline not yet reached"
    stored = await reservation_repo.get_by_id(reservation.id)
    assert stored.status == ReservationStatus.PENDING


@pytest.mark.asyncio
async def test_missing_reservation_skipped(worker, clock):
    outcome = await worker.handle(expiry_job(uuid4(), clock.now))

    assert outcome.is_skip
    assert outcome.reason == "Reservation not found"


@pytest.mark.asyncio
async def test_store_failure_propagates_for_retry(make_reservation, clock):
    repo = AsyncMock()
    repo.get_by_id.side_effect = StoreUnavailableError("Database unavailable")
    worker = ExpiryWorker(repo, lifecycle=AsyncMock(), clock=clock)

    with pytest.raises(StoreUnavailableError):
        await worker.handle(expiry_job(uuid4(), clock.now + timedelta(minutes=10)))
