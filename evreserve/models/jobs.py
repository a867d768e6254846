"""Background job models."""

from datetime import datetime
from enum import Enum
from typing import Optional
from uuid import UUID, uuid4

from pydantic import BaseModel, Field


class JobKind(str, Enum):
    """Kinds of delayed jobs keyed by reservation."""

    RESERVATION_EXPIRY = "reservation-expiry"
    PAYMENT_REMINDER = "payment-reminder"


class JobState(str, Enum):
    """Job delivery state."""

    SCHEDULED = "SCHEDULED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    CANCELED = "CANCELED"
    DEAD_LETTER = "DEAD_LETTER"


class Job(BaseModel):
    """A fire-at job for one reservation."""

    id: UUID = Field(default_factory=uuid4)
    kind: JobKind
    reservation_id: UUID
    fire_at: datetime
    attempts: int = Field(default=0, ge=0)
    state: JobState = JobState.SCHEDULED
    last_error: Optional[str] = None


class JobOutcome(BaseModel):
    """Result of a handled job. Skips and applied actions are both completions."""

    success: bool = True
    action: str = "skip"
    reason: Optional[str] = None
    reservation_id: Optional[UUID] = None

    @classmethod
    def skipped(cls, reason: str, reservation_id: UUID | None = None) -> "JobOutcome":
        """Build a no-op outcome."""
        return cls(success=True, action="skip", reason=reason, reservation_id=reservation_id)

    @property
    def is_skip(self) -> bool:
        return self.action == "skip"
