"""Unit tests for the payment reminder worker."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from unittest.mock import AsyncMock
from uuid import uuid4

import pytest

from evreserve.models.jobs import Job, JobKind
from evreserve.models.reservation import ReservationStatus
from evreserve.services.directory import InMemoryDirectory
from evreserve.services.reminder_worker import (
    REMINDER_SUBJECT,
    ReminderWorker,
    minutes_remaining,
    render_reminder_body,
)

PAY_URL = "https://evreserve.example/my-reservations"


def reminder_job(reservation_id, fire_at):
    return Job(kind=JobKind.PAYMENT_REMINDER, reservation_id=reservation_id, fire_at=fire_at)


@pytest.fixture
def worker(reservation_repo, directory, notifier, clock):
    return ReminderWorker(
        reservation_repo,
        stations=directory,
        users=directory,
        notifier=notifier,
        payment_url=PAY_URL,
        clock=clock,
    )


def test_minutes_remaining_floors():
    now = datetime(2026, 3, 2, 8, 0, tzinfo=timezone.utc)

    assert minutes_remaining(now + timedelta(minutes=5, seconds=59), now) == 5
    assert minutes_remaining(now + timedelta(seconds=30), now) == 0
    assert minutes_remaining(now - timedelta(minutes=1), now) == -1


def test_reminder_body_contents():
    body = render_reminder_body("Rahim", "Gulshan Fast Charge", 5, Decimal("500"), PAY_URL)

    assert "Hi Rahim" in body
    assert "Gulshan Fast Charge" in body
    assert "5 minutes" in body
    assert "BDT 500.00" in body
    assert PAY_URL in body


@pytest.mark.asyncio
async def test_sends_reminder(worker, reservation_repo, make_reservation, notifier, clock):
    reservation = await reservation_repo.insert_if_available(make_reservation())
    clock.advance(minutes=5)

    outcome = await worker.handle(reminder_job(reservation.id, clock.now))

    assert outcome.action == "reminder_sent"
    [(email, subject, body)] = notifier.sent
    assert email == "rahim@example.com"
    assert subject == REMINDER_SUBJECT
    assert "5 minutes" in body
    assert "BDT 500.00" in body


@pytest.mark.asyncio
async def test_paid_skipped(worker, reservation_repo, make_reservation, notifier, clock):
    reservation = await reservation_repo.insert_if_available(
        make_reservation(status=ReservationStatus.CONFIRMED, is_paid=True)
    )

    outcome = await worker.handle(reminder_job(reservation.id, clock.now))

    assert outcome.is_skip
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_terminal_skipped(worker, reservation_repo, make_reservation, notifier, clock):
    reservation = await reservation_repo.insert_if_available(
        make_reservation(status=ReservationStatus.CANCELED)
    )

    outcome = await worker.handle(reminder_job(reservation.id, clock.now))

    assert outcome.is_skip
    assert outcome.reason == "Already CANCELED"


@pytest.mark.asyncio
async def test_deadline_passed_skipped(worker, reservation_repo, make_reservation, notifier, clock):
    reservation = await reservation_repo.insert_if_available(make_reservation())
    clock.advance(minutes=10)

    outcome = await worker.handle(reminder_job(reservation.id, clock.now))

    assert outcome.is_skip
    assert outcome.reason == "Deadline passed"
    assert notifier.sent == []


@pytest.mark.asyncio
async def test_missing_email_skipped(reservation_repo, make_reservation, station, notifier, clock):
    directory = InMemoryDirectory(stations=[station])
    worker = ReminderWorker(
        reservation_repo,
        stations=directory,
        users=directory,
        notifier=notifier,
        payment_url=PAY_URL,
        clock=clock,
    )
    reservation = await reservation_repo.insert_if_available(make_reservation())

    outcome = await worker.handle(reminder_job(reservation.id, clock.now))

    assert outcome.is_skip
    assert outcome.reason == "User email not found"


@pytest.mark.asyncio
async def test_delivery_failure_logged_not_raised(reservation_repo, make_reservation, directory, clock):
    notifier = AsyncMock()
    notifier.send.side_effect = RuntimeError("smtp down")
    worker = ReminderWorker(
        reservation_repo,
        stations=directory,
        users=directory,
        notifier=notifier,
        payment_url=PAY_URL,
        clock=clock,
    )
    reservation = await reservation_repo.insert_if_available(make_reservation())

    outcome = await worker.handle(reminder_job(reservation.id, clock.now))

    assert not outcome.success
    assert outcome.action == "reminder_failed"
    notifier.send.assert_awaited_once()


@pytest.mark.asyncio
async def test_missing_reservation_skipped(worker, clock):
    outcome = await worker.handle(reminder_job(uuid4(), clock.now))

    assert outcome.is_skip
