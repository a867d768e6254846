"""Structured audit logging for reservation lifecycle actions.

Provides detailed audit trails for compliance and dispute handling.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional
from uuid import UUID

from evreserve.logging import get_logger

logger = get_logger(__name__)


class AuditEventType(str, Enum):
    """Types of auditable events."""

    # Booking
    RESERVATION_CREATED = "reservation_created"
    RESERVATION_REJECTED = "reservation_rejected"

    # Lifecycle
    RESERVATION_TRANSITIONED = "reservation_transitioned"
    RESERVATION_CANCELED = "reservation_canceled"
    RESERVATION_EXPIRED = "reservation_expired"
    RESERVATION_CHECKED_IN = "reservation_checked_in"

    # Payment
    PAYMENT_RECORDED = "payment_recorded"
    LATE_PAYMENT_IGNORED = "late_payment_ignored"

    # Security
    ACCESS_DENIED = "access_denied"
    INVALID_CHECK_IN_CREDENTIAL = "invalid_check_in_credential"


class AuditLogger:
    """Centralized audit logging service."""

    @staticmethod
    def log_event(
        event_type: AuditEventType,
        actor: str,
        resource_id: UUID | str,
        action: str,
        success: bool = True,
        metadata: Optional[dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> None:
        """
        Log an auditable event with structured context.

        Args:
            event_type: Type of audit event
            actor: User ID or system component performing the action
            resource_id: ID of the affected reservation
            action: Human-readable action description
            success: Whether the action succeeded
            metadata: Additional context (statuses, windows, amounts)
            error: Error message if action failed
        """
        audit_entry = {
            "event_type": event_type.value,
            "actor": actor,
            "resource_type": "reservation",
            "resource_id": str(resource_id),
            "action": action,
            "success": success,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "metadata": metadata or {},
        }

        if error:
            audit_entry["error"] = error

        logger.info("audit_event", **audit_entry)

    @staticmethod
    def log_reservation_created(
        actor: str,
        reservation_id: UUID,
        connector_id: UUID,
        start_time: datetime,
        end_time: datetime,
        total_cost_bdt: Any,
    ) -> None:
        """Log a new PENDING reservation."""
        AuditLogger.log_event(
            event_type=AuditEventType.RESERVATION_CREATED,
            actor=actor,
            resource_id=reservation_id,
            action="Created reservation",
            metadata={
                "connector_id": str(connector_id),
                "start_time": start_time.isoformat(),
                "end_time": end_time.isoformat(),
                "total_cost_bdt": str(total_cost_bdt),
            },
        )

    @staticmethod
    def log_transition(
        actor: str,
        reservation_id: UUID,
        from_status: str,
        to_status: str,
        trigger: str,
    ) -> None:
        """Log an applied status transition."""
        event_type = {
            "CANCELED": AuditEventType.RESERVATION_CANCELED,
            "EXPIRED": AuditEventType.RESERVATION_EXPIRED,
            "CHECKED_IN": AuditEventType.RESERVATION_CHECKED_IN,
        }.get(to_status, AuditEventType.RESERVATION_TRANSITIONED)

        AuditLogger.log_event(
            event_type=event_type,
            actor=actor,
            resource_id=reservation_id,
            action=f"{from_status} -> {to_status}",
            metadata={"from": from_status, "to": to_status, "trigger": trigger},
        )

    @staticmethod
    def log_payment(
        reservation_id: UUID,
        applied: bool,
        status: str,
    ) -> None:
        """Log a payment callback outcome."""
        AuditLogger.log_event(
            event_type=(
                AuditEventType.PAYMENT_RECORDED if applied else AuditEventType.LATE_PAYMENT_IGNORED
            ),
            actor="payment-service",
            resource_id=reservation_id,
            action="Payment recorded" if applied else "Payment ignored",
            success=applied,
            metadata={"status": status},
        )

    @staticmethod
    def log_access_denied(actor: str, reservation_id: UUID | str, reason: str) -> None:
        """Log an ownership or role mismatch."""
        AuditLogger.log_event(
            event_type=AuditEventType.ACCESS_DENIED,
            actor=actor,
            resource_id=reservation_id,
            action="Access denied",
            success=False,
            error=reason,
        )

    @staticmethod
    def log_check_in_rejected(actor: str, reservation_id: UUID, credential: str) -> None:
        """Log a check-in attempt with a wrong QR token or OTP. The value itself is never logged."""
        AuditLogger.log_event(
            event_type=AuditEventType.INVALID_CHECK_IN_CREDENTIAL,
            actor=actor,
            resource_id=reservation_id,
            action="Check-in rejected",
            success=False,
            metadata={"credential": credential},
            error="credential mismatch",
        )
