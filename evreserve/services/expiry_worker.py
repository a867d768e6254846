"""Reservation expiry worker.

Consumes expiry jobs fired at a reservation's payment deadline and voids the
reservation if it is still unpaid. Every branch other than an applied expiry
is a recorded skip, so redelivered or stale jobs are harmless.
"""

from datetime import datetime
from typing import Callable

from evreserve.logging import get_logger
from evreserve.models.jobs import Job, JobOutcome
from evreserve.models.reservation import utcnow
from evreserve.services.lifecycle import LifecycleManager
from evreserve.storage.repository_base import ReservationRepository

logger = get_logger(__name__)


class ExpiryWorker:
    """Expires unpaid reservations past their payment deadline."""

    def __init__(
        self,
        reservation_repo: ReservationRepository,
        lifecycle: LifecycleManager,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize expiry worker.

        Args:
            reservation_repo: Store for loading reservations
            lifecycle: Manager that applies the EXPIRED transition
            clock: Source of the current time
        """
        self.reservation_repo = reservation_repo
        self.lifecycle = lifecycle
        self.clock = clock

    async def handle(self, job: Job) -> JobOutcome:
        """
        Process one expiry job.

        Store failures propagate so the job runner retries the job.
        """
        reservation_id = job.reservation_id
        logger.info("expiry_check_started", reservation_id=str(reservation_id), attempt=job.attempts + 1)

        reservation = await self.reservation_repo.get_by_id(reservation_id)
        if reservation is None:
            logger.warning("expiry_reservation_not_found", reservation_id=str(reservation_id))
            return JobOutcome.skipped("Reservation not found", reservation_id)

        if reservation.is_paid:
            return JobOutcome.skipped("Already paid", reservation_id)

        if reservation.is_terminal:
            return JobOutcome.skipped(f"Already {reservation.status.value}", reservation_id)

        if self.clock() < reservation.payment_deadline:
            logger.info(
                "expiry_deadline_not_reached",
                reservation_id=str(reservation_id),
                payment_deadline=reservation.payment_deadline.isoformat(),
            )
            return JobOutcome.skipped("Deadline not yet reached", reservation_id)

        outcome = await self.lifecycle.expire(reservation_id)
        if not outcome.applied:
            # Lost the race to a payment or cancellation
            return JobOutcome.skipped(outcome.reason or "No change", reservation_id)

        logger.info("reservation_expired", reservation_id=str(reservation_id))
        return JobOutcome(
            action="expired",
            reason="Payment deadline exceeded",
            reservation_id=reservation_id,
        )
