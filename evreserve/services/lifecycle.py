"""Reservation lifecycle manager.

The only component allowed to change a reservation's status. Every change is
a compare-and-set against the store, so a payment callback racing the expiry
worker resolves to exactly one winner; the loser re-reads the reservation and
takes the idempotent no-op path.
"""

import secrets
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Callable, NamedTuple, Optional
from uuid import UUID

from evreserve.errors import (
    AccessDeniedError,
    CancellationWindowClosedError,
    InvalidTransitionError,
    NotFoundError,
    StoreUnavailableError,
    ValidationError,
)
from evreserve.logging import get_logger
from evreserve.logging.audit import AuditLogger
from evreserve.models.reservation import Reservation, ReservationStatus, utcnow
from evreserve.storage.repository_base import ReservationRepository

logger = get_logger(__name__)

S = ReservationStatus

TRANSITIONS: dict[ReservationStatus, frozenset[ReservationStatus]] = {
    S.PENDING: frozenset({S.CONFIRMED, S.CANCELED, S.EXPIRED}),
    S.CONFIRMED: frozenset({S.CHECKED_IN, S.CANCELED}),
    S.CHECKED_IN: frozenset({S.COMPLETED, S.CANCELED}),
    S.COMPLETED: frozenset(),
    S.CANCELED: frozenset(),
    S.EXPIRED: frozenset(),
}

# Status can only move forward, so a CAS loop settles within this many rounds
MAX_CAS_ATTEMPTS = len(ReservationStatus)


class TransitionTrigger(str, Enum):
    """Who or what requested the transition."""

    USER = "user"
    OPERATOR = "operator"
    PAYMENT = "payment"
    EXPIRY = "expiry"
    SYSTEM = "system"

    @property
    def is_async(self) -> bool:
        """Callbacks and workers that may be redelivered."""
        return self in (TransitionTrigger.PAYMENT, TransitionTrigger.EXPIRY)


class TransitionOutcome(NamedTuple):
    """Result of a transition request. ``applied`` is False for idempotent no-ops."""

    reservation: Reservation
    applied: bool
    reason: Optional[str] = None


def allowed_targets(status: ReservationStatus) -> frozenset[ReservationStatus]:
    """Statuses reachable from ``status`` in one step."""
    return TRANSITIONS[status]


def is_allowed(current: ReservationStatus, target: ReservationStatus) -> bool:
    """Check the transition table."""
    return target in TRANSITIONS[current]


class _Skip(Exception):
    """Internal: evaluation decided the request is a no-op."""

    def __init__(self, reason: str):
        super().__init__(reason)
        self.reason = reason


class LifecycleManager:
    """Validates and applies reservation status transitions."""

    def __init__(
        self,
        reservation_repo: ReservationRepository,
        cancellation_cutoff_minutes: int = 60,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize lifecycle manager.

        Args:
            reservation_repo: Store providing compare-and-set updates
            cancellation_cutoff_minutes: Users cannot cancel this close to start
            clock: Source of the current time
        """
        self.reservation_repo = reservation_repo
        self.cancellation_cutoff = timedelta(minutes=cancellation_cutoff_minutes)
        self.clock = clock

    async def transition(
        self,
        reservation_id: UUID,
        target: ReservationStatus,
        trigger: TransitionTrigger,
        actor: str = "system",
        reason: Optional[str] = None,
    ) -> TransitionOutcome:
        """
        Move a reservation to ``target``.

        Raises:
            NotFoundError: reservation does not exist
            InvalidTransitionError: target not reachable from current status
            CancellationWindowClosedError: user cancellation inside the cutoff
            AccessDeniedError: operator-only transition requested by a user
        """
        for _ in range(MAX_CAS_ATTEMPTS):
            reservation = await self._load(reservation_id)
            now = self.clock()

            try:
                self._evaluate(reservation, target, trigger, now)
            except _Skip as skip:
                logger.info(
                    "transition_skipped",
                    reservation_id=str(reservation_id),
                    status=reservation.status.value,
                    target=target.value,
                    trigger=trigger.value,
                    reason=skip.reason,
                )
                return TransitionOutcome(reservation, applied=False, reason=skip.reason)

            changes: dict[str, Any] = {"status": target}
            if target == S.CANCELED:
                changes["canceled_at"] = now
                changes["cancellation_reason"] = reason

            updated = await self.reservation_repo.compare_and_set(
                reservation_id,
                expected_status=reservation.status,
                changes=changes,
                require_unpaid=target == S.EXPIRED,
            )
            if updated is None:
                logger.info(
                    "transition_precondition_changed",
                    reservation_id=str(reservation_id),
                    expected=reservation.status.value,
                    target=target.value,
                )
                continue

            logger.info(
                "reservation_transitioned",
                reservation_id=str(reservation_id),
                from_status=reservation.status.value,
                to_status=target.value,
                trigger=trigger.value,
            )
            AuditLogger.log_transition(
                actor=actor,
                reservation_id=reservation_id,
                from_status=reservation.status.value,
                to_status=target.value,
                trigger=trigger.value,
            )
            return TransitionOutcome(updated, applied=True)

        raise StoreUnavailableError(
            "Reservation kept changing during update", reservation_id=str(reservation_id)
        )

    async def confirm(self, reservation_id: UUID, trigger: TransitionTrigger, actor: str) -> TransitionOutcome:
        """Explicit PENDING -> CONFIRMED without payment."""
        return await self.transition(reservation_id, S.CONFIRMED, trigger, actor=actor)

    async def cancel(
        self,
        reservation_id: UUID,
        trigger: TransitionTrigger,
        actor: str,
        reason: Optional[str] = None,
    ) -> TransitionOutcome:
        """Cancel; users are bound by the cutoff window, operators are not."""
        return await self.transition(reservation_id, S.CANCELED, trigger, actor=actor, reason=reason)

    async def expire(self, reservation_id: UUID) -> TransitionOutcome:
        """PENDING -> EXPIRED if still unpaid and past the payment deadline."""
        return await self.transition(
            reservation_id, S.EXPIRED, TransitionTrigger.EXPIRY, actor="expiry-worker"
        )

    async def complete(self, reservation_id: UUID, trigger: TransitionTrigger, actor: str) -> TransitionOutcome:
        """CHECKED_IN -> COMPLETED when the charging session ends."""
        return await self.transition(reservation_id, S.COMPLETED, trigger, actor=actor)

    async def check_in(
        self,
        reservation_id: UUID,
        trigger: TransitionTrigger,
        actor: str,
        qr_code: Optional[str] = None,
        otp: Optional[str] = None,
    ) -> TransitionOutcome:
        """
        CONFIRMED -> CHECKED_IN after validating the QR token or the OTP.

        Raises:
            ValidationError: no credential given, or it does not match
        """
        if not qr_code and not otp:
            raise ValidationError("QR code or OTP is required for check-in")

        reservation = await self._load(reservation_id)
        valid = (qr_code and secrets.compare_digest(qr_code.encode(), reservation.qr_code.encode())) or (
            otp and secrets.compare_digest(otp.encode(), reservation.otp.encode())
        )
        if not valid:
            logger.warning("check_in_credential_rejected", reservation_id=str(reservation_id))
            AuditLogger.log_check_in_rejected(actor, reservation_id, credential="qr_code" if qr_code else "otp")
            raise ValidationError("Invalid check-in credential")

        return await self.transition(reservation_id, S.CHECKED_IN, trigger, actor=actor)

    async def record_payment(self, reservation_id: UUID, paid: bool) -> TransitionOutcome:
        """
        Apply a payment-service callback.

        A successful payment on a PENDING reservation confirms it in the same
        compare-and-set that flips ``is_paid``. A payment that arrives after the
        reservation was canceled or expired is ignored; refunds are the payment
        service's concern.
        """
        if not paid:
            reservation = await self._load(reservation_id)
            logger.info("payment_not_completed", reservation_id=str(reservation_id))
            return TransitionOutcome(reservation, applied=False, reason="payment not completed")

        for _ in range(MAX_CAS_ATTEMPTS):
            reservation = await self._load(reservation_id)

            if reservation.is_paid:
                return TransitionOutcome(reservation, applied=False, reason="already paid")

            if reservation.status in (S.CANCELED, S.EXPIRED):
                logger.warning(
                    "late_payment_ignored",
                    reservation_id=str(reservation_id),
                    status=reservation.status.value,
                )
                AuditLogger.log_payment(reservation_id, applied=False, status=reservation.status.value)
                return TransitionOutcome(
                    reservation, applied=False, reason=f"already {reservation.status.value}"
                )

            changes: dict[str, Any] = {"is_paid": True}
            if reservation.status == S.PENDING:
                changes["status"] = S.CONFIRMED

            updated = await self.reservation_repo.compare_and_set(
                reservation_id,
                expected_status=reservation.status,
                changes=changes,
                require_unpaid=True,
            )
            if updated is None:
                continue

            logger.info(
                "payment_recorded",
                reservation_id=str(reservation_id),
                from_status=reservation.status.value,
                to_status=updated.status.value,
            )
            AuditLogger.log_payment(reservation_id, applied=True, status=updated.status.value)
            return TransitionOutcome(updated, applied=True)

        raise StoreUnavailableError(
            "Reservation kept changing during payment update", reservation_id=str(reservation_id)
        )

    def cancellation_allowed(self, reservation: Reservation, now: datetime) -> bool:
        """Users may cancel only until ``cutoff`` before the start time."""
        return now < reservation.start_time - self.cancellation_cutoff

    def _evaluate(
        self,
        reservation: Reservation,
        target: ReservationStatus,
        trigger: TransitionTrigger,
        now: datetime,
    ) -> None:
        """Raise a domain error, raise _Skip for a no-op, or return to apply."""
        current = reservation.status

        if trigger.is_async:
            if current == target:
                raise _Skip(f"already {current.value}")
            if reservation.is_terminal:
                raise _Skip(f"already {current.value}")

        if trigger == TransitionTrigger.EXPIRY:
            if target != S.EXPIRED:
                raise InvalidTransitionError(current, target, allowed_targets(current))
            if reservation.is_paid:
                raise _Skip("already paid")
            if current != S.PENDING:
                raise _Skip(f"not pending ({current.value})")
            if now < reservation.payment_deadline:
                raise _Skip("deadline not yet reached")
            return

        if not is_allowed(current, target):
            raise InvalidTransitionError(current, target, allowed_targets(current))

        if target == S.EXPIRED:
            # Only the expiry worker may void a reservation for non-payment
            raise InvalidTransitionError(current, target, allowed_targets(current) - {S.EXPIRED})

        if target == S.CANCELED:
            if current == S.CHECKED_IN and trigger == TransitionTrigger.USER:
                raise AccessDeniedError(
                    "Only an operator can cancel a checked-in reservation",
                    current_status=current.value,
                )
            if trigger == TransitionTrigger.USER and not self.cancellation_allowed(reservation, now):
                raise CancellationWindowClosedError(
                    reservation.start_time,
                    int(self.cancellation_cutoff.total_seconds() // 60),
                )

    async def _load(self, reservation_id: UUID) -> Reservation:
        reservation = await self.reservation_repo.get_by_id(reservation_id)
        if reservation is None:
            raise NotFoundError("Reservation", reservation_id)
        return reservation
