"""Integration test for double-booking prevention.

Concurrent booking attempts for overlapping windows on one connector must
produce exactly one reservation; the rest get SlotUnavailableError.
"""

import asyncio
from datetime import timedelta

import pytest

from evreserve.errors import SlotUnavailableError
from evreserve.models.reservation import ReservationStatus


@pytest.mark.asyncio
async def test_concurrent_overlapping_bookings_yield_one_winner(
    flow, reservation_repo, user_id, vehicle, station, connector, at_time
):
    """Ten overlapping requests, one reservation."""
    start = at_time(14, 0)

    async def attempt(offset_minutes: int):
        try:
            return await flow.create_reservation(
                user_id,
                vehicle.id,
                station.id,
                connector.id,
                start + timedelta(minutes=offset_minutes),
                start + timedelta(minutes=offset_minutes + 30),
            )
        except SlotUnavailableError as e:
            return e

    results = await asyncio.gather(*(attempt(i) for i in range(0, 20, 2)))

    winners = [r for r in results if not isinstance(r, SlotUnavailableError)]
    losers = [r for r in results if isinstance(r, SlotUnavailableError)]
    assert len(winners) == 1
    assert len(losers) == 9

    blocking = await reservation_repo.find_blocking(connector.id, start, start + timedelta(hours=1))
    assert len(blocking) == 1


@pytest.mark.asyncio
async def test_guarded_insert_closes_check_then_insert_gap(
    reservation_repo, make_reservation, at_time
):
    """Both requests passed the read-only check; the store still admits only one."""
    first = make_reservation(start=at_time(14, 0))
    second = make_reservation(start=at_time(14, 15))

    results = await asyncio.gather(
        reservation_repo.insert_if_available(first),
        reservation_repo.insert_if_available(second),
        return_exceptions=True,
    )

    assert sum(isinstance(r, SlotUnavailableError) for r in results) == 1


@pytest.mark.asyncio
async def test_conflict_scenario_then_touching_window(
    flow, user_id, vehicle, station, connector, at_time
):
    """14:00-14:30 PENDING blocks 14:15-14:45, allows 14:30-15:00."""
    await flow.create_reservation(user_id, vehicle.id, station.id, connector.id, at_time(14, 0), at_time(14, 30))

    with pytest.raises(SlotUnavailableError) as exc_info:
        await flow.create_reservation(user_id, vehicle.id, station.id, connector.id, at_time(14, 15), at_time(14, 45))
    assert exc_info.value.conflicts == [(at_time(14, 0), at_time(14, 30))]

    adjacent = await flow.create_reservation(
        user_id, vehicle.id, station.id, connector.id, at_time(14, 30), at_time(15, 0)
    )
    assert adjacent.reservation.status == ReservationStatus.PENDING


@pytest.mark.asyncio
async def test_voided_reservation_frees_the_window(
    flow, lifecycle, user_id, vehicle, station, connector, at_time, clock
):
    booking = await flow.create_reservation(
        user_id, vehicle.id, station.id, connector.id, at_time(14, 0), at_time(14, 30)
    )
    clock.advance(minutes=10)
    await lifecycle.expire(booking.reservation.id)

    rebooked = await flow.create_reservation(
        user_id, vehicle.id, station.id, connector.id, at_time(14, 15), at_time(14, 45)
    )

    assert rebooked.reservation.status == ReservationStatus.PENDING
