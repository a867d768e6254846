"""Payment reminder worker."""

import math
from datetime import datetime
from decimal import Decimal
from typing import Callable

from evreserve.logging import get_logger
from evreserve.models.jobs import Job, JobOutcome
from evreserve.models.reservation import Reservation, utcnow
from evreserve.services.directory import StationDirectory, UserDirectory
from evreserve.services.notifications import NotificationSender

logger = get_logger(__name__)

REMINDER_SUBJECT = "Complete Your Payment - Reservation Expiring Soon"


def minutes_remaining(deadline: datetime, now: datetime) -> int:
    """Whole minutes left before ``deadline``; zero or less once it has passed."""
    return math.floor((deadline - now).total_seconds() / 60)


def render_reminder_body(
    display_name: str | None,
    station_name: str,
    minutes_left: int,
    amount_due: Decimal,
    payment_url: str,
) -> str:
    """Plain-text reminder e-mail body."""
    return (
        f"Hi {display_name or 'there'},\n\n"
        f"Your reservation at {station_name} will expire soon.\n\n"
        f"Time remaining: {minutes_left} minutes\n"
        f"Reservation amount: BDT {amount_due:.2f}\n\n"
        f"Complete your payment to confirm the reservation: {payment_url}\n\n"
        f"If you don't pay within {minutes_left} minutes, the reservation "
        f"will be cancelled automatically."
    )


class ReminderWorker:
    """Notifies users shortly before their payment deadline."""

    def __init__(
        self,
        reservation_repo,
        stations: StationDirectory,
        users: UserDirectory,
        notifier: NotificationSender,
        payment_url: str,
        clock: Callable[[], datetime] = utcnow,
    ):
        self.reservation_repo = reservation_repo
        self.stations = stations
        self.users = users
        self.notifier = notifier
        self.payment_url = payment_url
        self.clock = clock

    async def handle(self, job: Job) -> JobOutcome:
        """Process one reminder job. Delivery failures are logged, never retried."""
        reservation_id = job.reservation_id

        reservation = await self.reservation_repo.get_by_id(reservation_id)
        if reservation is None:
            logger.warning("reminder_reservation_not_found", reservation_id=str(reservation_id))
            return JobOutcome.skipped("Reservation not found", reservation_id)

        if reservation.is_paid:
            return JobOutcome.skipped("Already paid", reservation_id)

        if reservation.is_terminal:
            return JobOutcome.skipped(f"Already {reservation.status.value}", reservation_id)

        left = minutes_remaining(reservation.payment_deadline, self.clock())
        if left <= 0:
            return JobOutcome.skipped("Deadline passed", reservation_id)

        contact = await self.users.get_contact(reservation.user_id)
        if contact is None or not contact.email:
            logger.warning("reminder_email_missing", reservation_id=str(reservation_id))
            return JobOutcome.skipped("User email not found", reservation_id)

        body = await self._body(reservation, contact.display_name, left)
        try:
            await self.notifier.send(contact.email, REMINDER_SUBJECT, body)
        except Exception as e:
            logger.error(
                "reminder_delivery_failed",
                reservation_id=str(reservation_id),
                error=str(e),
                exc_info=True,
            )
            return JobOutcome(
                success=False,
                action="reminder_failed",
                reason=str(e),
                reservation_id=reservation_id,
            )

        logger.info("payment_reminder_sent", reservation_id=str(reservation_id), minutes_remaining=left)
        return JobOutcome(
            action="reminder_sent",
            reason=f"{left} minutes remaining",
            reservation_id=reservation_id,
        )

    async def _body(self, reservation: Reservation, display_name: str | None, left: int) -> str:
        station = await self.stations.get_station(reservation.station_id)
        return render_reminder_body(
            display_name=display_name,
            station_name=station.name if station else "charging station",
            minutes_left=left,
            amount_due=reservation.total_cost_bdt,
            payment_url=self.payment_url,
        )
