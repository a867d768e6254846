"""Delayed job scheduling and the background worker pool.

``Scheduler`` is the queue abstraction the core depends on; the in-memory
implementation lives here and the durable one in
``evreserve.storage.redis_scheduler``. ``JobRunner`` polls due jobs and
dispatches them to handlers with bounded parallelism, retrying failures with
exponential backoff and dead-lettering them once attempts run out.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Awaitable, Callable, Optional
from uuid import UUID

from evreserve.logging import get_logger
from evreserve.models.jobs import Job, JobKind, JobOutcome, JobState
from evreserve.models.reservation import utcnow

logger = get_logger(__name__)

JobHandler = Callable[[Job], Awaitable[JobOutcome]]


class Scheduler(ABC):
    """Fire-at job queue with at-least-once delivery."""

    backend: str = "abstract"

    @abstractmethod
    async def schedule_at(self, kind: JobKind, reservation_id: UUID, fire_at: datetime) -> Job:
        """Enqueue a job to fire at or after ``fire_at``."""
        pass

    @abstractmethod
    async def cancel(self, job_id: UUID) -> bool:
        """Cancel a job that has not been claimed yet."""
        pass

    @abstractmethod
    async def due(self, now: datetime, limit: int) -> list[Job]:
        """Claim up to ``limit`` jobs whose fire time has passed."""
        pass

    @abstractmethod
    async def ack(self, job: Job) -> None:
        """Mark a claimed job as completed."""
        pass

    @abstractmethod
    async def retry(self, job: Job, error: str, retry_at: datetime) -> Job:
        """Return a failed job to the queue with one more attempt counted."""
        pass

    @abstractmethod
    async def dead_letter(self, job: Job, error: str) -> Job:
        """Park a job that exhausted its attempts for manual inspection."""
        pass

    @abstractmethod
    async def dead_letters(self) -> list[Job]:
        """Jobs waiting for operator attention."""
        pass

    @abstractmethod
    async def ping(self) -> bool:
        """Check backend reachability."""
        pass


class InMemoryScheduler(Scheduler):
    """Process-local scheduler for tests and single-process development runs."""

    backend = "memory"

    def __init__(self) -> None:
        self._jobs: dict[UUID, Job] = {}
        self._lock = asyncio.Lock()

    async def schedule_at(self, kind: JobKind, reservation_id: UUID, fire_at: datetime) -> Job:
        job = Job(kind=kind, reservation_id=reservation_id, fire_at=fire_at)
        self._jobs[job.id] = job
        logger.info(
            "job_scheduled",
            job_id=str(job.id),
            kind=kind.value,
            reservation_id=str(reservation_id),
            fire_at=fire_at.isoformat(),
        )
        return job.model_copy()

    async def cancel(self, job_id: UUID) -> bool:
        async with self._lock:
            job = self._jobs.get(job_id)
            if job is None or job.state != JobState.SCHEDULED:
                return False
            self._jobs[job_id] = job.model_copy(update={"state": JobState.CANCELED})
            return True

    async def due(self, now: datetime, limit: int) -> list[Job]:
        async with self._lock:
            ready = sorted(
                (j for j in self._jobs.values() if j.state == JobState.SCHEDULED and j.fire_at <= now),
                key=lambda j: j.fire_at,
            )[:limit]
            claimed = []
            for job in ready:
                running = job.model_copy(update={"state": JobState.RUNNING})
                self._jobs[job.id] = running
                claimed.append(running.model_copy())
            return claimed

    async def ack(self, job: Job) -> None:
        self._jobs[job.id] = job.model_copy(update={"state": JobState.COMPLETED})

    async def retry(self, job: Job, error: str, retry_at: datetime) -> Job:
        retried = job.model_copy(
            update={
                "state": JobState.SCHEDULED,
                "attempts": job.attempts + 1,
                "last_error": error,
                "fire_at": retry_at,
            }
        )
        self._jobs[job.id] = retried
        return retried.model_copy()

    async def dead_letter(self, job: Job, error: str) -> Job:
        dead = job.model_copy(
            update={"state": JobState.DEAD_LETTER, "attempts": job.attempts + 1, "last_error": error}
        )
        self._jobs[job.id] = dead
        return dead.model_copy()

    async def dead_letters(self) -> list[Job]:
        return [j.model_copy() for j in self._jobs.values() if j.state == JobState.DEAD_LETTER]

    async def ping(self) -> bool:
        return True

    def jobs(self, state: Optional[JobState] = None) -> list[Job]:
        """Snapshot of known jobs, optionally filtered by state."""
        return [
            j.model_copy()
            for j in sorted(self._jobs.values(), key=lambda j: j.fire_at)
            if state is None or j.state == state
        ]


class JobRunner:
    """Worker pool that drains due jobs from a Scheduler."""

    def __init__(
        self,
        scheduler: Scheduler,
        handlers: dict[JobKind, JobHandler],
        concurrency: int = 5,
        max_attempts: int = 3,
        backoff_base_seconds: float = 2.0,
        poll_interval_seconds: float = 1.0,
        clock: Callable[[], datetime] = utcnow,
    ):
        """
        Initialize job runner.

        Args:
            scheduler: Queue to claim jobs from
            handlers: Handler per job kind
            concurrency: Maximum jobs processed at once
            max_attempts: Deliveries before a failing job is dead-lettered
            backoff_base_seconds: Delay before the first retry, doubled each time
            poll_interval_seconds: Sleep between polls when idle
            clock: Source of the current time
        """
        self.scheduler = scheduler
        self.handlers = handlers
        self.concurrency = concurrency
        self.max_attempts = max_attempts
        self.backoff_base_seconds = backoff_base_seconds
        self.poll_interval_seconds = poll_interval_seconds
        self.clock = clock
        self._semaphore = asyncio.Semaphore(concurrency)
        self._running = False

    async def start(self) -> None:
        """Start polling loop."""
        self._running = True
        logger.info(
            "job_runner_started",
            backend=self.scheduler.backend,
            concurrency=self.concurrency,
            kinds=[k.value for k in self.handlers],
        )

        while self._running:
            try:
                processed = await self.run_due()
                if not processed:
                    await asyncio.sleep(self.poll_interval_seconds)
            except Exception as e:
                logger.error("job_runner_error", error=str(e), exc_info=True)
                await asyncio.sleep(self.poll_interval_seconds)

    async def stop(self) -> None:
        """Stop polling loop."""
        self._running = False
        logger.info("job_runner_stopped")

    async def run_due(self) -> list[Optional[JobOutcome]]:
        """Claim and process every job due now. Returns one entry per job."""
        jobs = await self.scheduler.due(self.clock(), limit=self.concurrency)
        if not jobs:
            return []
        return list(await asyncio.gather(*(self._bounded(job) for job in jobs)))

    def backoff(self, attempt: int) -> timedelta:
        """Delay before retry number ``attempt`` (1-based)."""
        return timedelta(seconds=self.backoff_base_seconds * 2 ** (attempt - 1))

    async def process(self, job: Job) -> Optional[JobOutcome]:
        """
        Run one job. Returns the handler outcome, or None if the job failed.

        Both skips and applied actions are acknowledged; only exceptions lead to
        a retry or, after ``max_attempts``, the dead-letter queue.
        """
        handler = self.handlers.get(job.kind)
        if handler is None:
            await self.scheduler.dead_letter(job, f"no handler for {job.kind.value}")
            logger.error("job_handler_missing", job_id=str(job.id), kind=job.kind.value)
            return None

        try:
            outcome = await handler(job)
        except Exception as e:
            await self._handle_failure(job, e)
            return None

        await self.scheduler.ack(job)
        logger.info(
            "job_completed",
            job_id=str(job.id),
            kind=job.kind.value,
            reservation_id=str(job.reservation_id),
            action=outcome.action,
            reason=outcome.reason,
        )
        return outcome

    async def _bounded(self, job: Job) -> Optional[JobOutcome]:
        async with self._semaphore:
            return await self.process(job)

    async def _handle_failure(self, job: Job, error: Exception) -> None:
        attempt = job.attempts + 1
        message = f"{type(error).__name__}: {error}"

        if attempt >= self.max_attempts:
            await self.scheduler.dead_letter(job, message)
            logger.error(
                "job_dead_lettered",
                job_id=str(job.id),
                kind=job.kind.value,
                reservation_id=str(job.reservation_id),
                attempts=attempt,
                error=message,
            )
            return

        retry_at = self.clock() + self.backoff(attempt)
        await self.scheduler.retry(job, message, retry_at)
        logger.warning(
            "job_retry_scheduled",
            job_id=str(job.id),
            kind=job.kind.value,
            reservation_id=str(job.reservation_id),
            attempt=attempt,
            retry_at=retry_at.isoformat(),
            error=message,
        )
