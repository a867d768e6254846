"""Service wiring and main application entry point.

Builds every collaborator once, injects it where needed, starts the job
runner next to the HTTP server and tears everything down on exit.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Optional

import uvicorn

from evreserve.api.app import create_app
from evreserve.api.dependencies import Services
from evreserve.config import Settings, load_settings
from evreserve.errors import SchedulerUnavailableError
from evreserve.logging import get_logger, setup_logging
from evreserve.models.jobs import JobKind
from evreserve.models.reservation import utcnow
from evreserve.security.permissions import PermissionChecker
from evreserve.services.conflict_detector import ConflictDetector
from evreserve.services.credentials import CredentialIssuer
from evreserve.services.directory import InMemoryDirectory
from evreserve.services.expiry_worker import ExpiryWorker
from evreserve.services.lifecycle import LifecycleManager
from evreserve.services.notifications import LogNotificationSender, NotificationSender
from evreserve.services.reminder_worker import ReminderWorker
from evreserve.services.reservation_flow import ReservationFlowService
from evreserve.services.scheduler import InMemoryScheduler, JobRunner, Scheduler
from evreserve.storage.database import Database
from evreserve.storage.memory_reservation_repo import InMemoryReservationRepository
from evreserve.storage.postgres_directory import PostgresDirectory
from evreserve.storage.postgres_reservation_repo import PostgresReservationRepository
from evreserve.storage.redis_scheduler import RedisScheduler

logger = get_logger(__name__)


@dataclass
class Runtime:
    """Wired services plus the resources that need closing."""

    services: Services
    runner: JobRunner
    database: Optional[Database] = None

    async def shutdown(self) -> None:
        await self.runner.stop()
        if isinstance(self.services.scheduler, RedisScheduler):
            await self.services.scheduler.disconnect()
        if self.database is not None:
            await self.database.disconnect()


async def build_scheduler(settings: Settings) -> Scheduler:
    """
    Create and connect the configured job queue.

    Raises:
        SchedulerUnavailableError: backend unknown or unreachable
    """
    if settings.scheduler_backend == "redis":
        scheduler = RedisScheduler(
            settings.redis_url,
            key_prefix=settings.redis_key_prefix,
            lease_seconds=settings.job_lease_seconds,
        )
        await scheduler.connect()
        return scheduler

    if settings.scheduler_backend == "memory":
        logger.warning("scheduler_not_durable", backend="memory")
        return InMemoryScheduler()

    raise SchedulerUnavailableError(
        f"Unknown scheduler backend: {settings.scheduler_backend}",
        backend=settings.scheduler_backend,
    )


async def build_runtime(
    settings: Settings,
    notifier: Optional[NotificationSender] = None,
    clock: Callable[[], datetime] = utcnow,
) -> Runtime:
    """Construct every service from settings. Fails fast if the queue is down."""
    database = None
    if settings.store_backend == "postgres":
        database = Database(settings)
        await database.connect()
        reservation_repo = PostgresReservationRepository(database)
        directory = PostgresDirectory(database)
    elif settings.store_backend == "memory":
        reservation_repo = InMemoryReservationRepository()
        directory = InMemoryDirectory()
    else:
        raise ValueError(f"Unknown store backend: {settings.store_backend}")

    try:
        scheduler = await build_scheduler(settings)
    except SchedulerUnavailableError:
        if database is not None:
            await database.disconnect()
        raise

    conflict_detector = ConflictDetector(
        reservation_repo,
        operating_start_hour=settings.operating_start_hour,
        operating_end_hour=settings.operating_end_hour,
        timezone=settings.operating_timezone,
    )
    credential_issuer = CredentialIssuer(
        reservation_repo,
        otp_length=settings.otp_length,
        max_attempts=settings.qr_max_attempts,
    )
    lifecycle = LifecycleManager(
        reservation_repo,
        cancellation_cutoff_minutes=settings.cancellation_cutoff_minutes,
        clock=clock,
    )
    flow = ReservationFlowService(
        reservation_repo,
        stations=directory,
        vehicles=directory,
        conflict_detector=conflict_detector,
        credential_issuer=credential_issuer,
        scheduler=scheduler,
        payment_grace_minutes=settings.payment_grace_minutes,
        reminder_lead_minutes=settings.reminder_lead_minutes,
        slot_duration_minutes=settings.slot_duration_minutes,
        default_price_per_kwh_bdt=settings.default_price_per_kwh_bdt,
        default_usable_kwh=settings.default_usable_kwh,
        clock=clock,
    )

    expiry_worker = ExpiryWorker(reservation_repo, lifecycle, clock=clock)
    reminder_worker = ReminderWorker(
        reservation_repo,
        stations=directory,
        users=directory,
        notifier=notifier or LogNotificationSender(),
        payment_url=f"{settings.frontend_url.rstrip('/')}/my-reservations",
        clock=clock,
    )
    runner = JobRunner(
        scheduler,
        handlers={
            JobKind.RESERVATION_EXPIRY: expiry_worker.handle,
            JobKind.PAYMENT_REMINDER: reminder_worker.handle,
        },
        concurrency=settings.worker_concurrency,
        max_attempts=settings.job_max_attempts,
        backoff_base_seconds=settings.job_backoff_base_seconds,
        poll_interval_seconds=settings.job_poll_interval_seconds,
        clock=clock,
    )

    services = Services(
        flow=flow,
        lifecycle=lifecycle,
        reservation_repo=reservation_repo,
        stations=directory,
        scheduler=scheduler,
        permissions=PermissionChecker(),
        database=database,
    )
    return Runtime(services=services, runner=runner, database=database)


async def main() -> None:
    """Initialize services and serve the API with the job runner alongside."""
    settings = load_settings()
    setup_logging(settings.log_level)

    logger.info("Starting EV reservation service", environment=settings.environment)

    try:
        runtime = await build_runtime(settings)
    except SchedulerUnavailableError as e:
        logger.error("startup_failed", error=e.message, backend=e.extra.get("backend"))
        raise

    app = create_app(runtime.services, title=settings.app_name)
    server = uvicorn.Server(
        uvicorn.Config(app, host=settings.api_host, port=settings.api_port, log_config=None)
    )

    # Start background job runner
    runner_task = asyncio.create_task(runtime.runner.start())

    try:
        await server.serve()
    finally:
        logger.info("Shutting down EV reservation service")
        await runtime.shutdown()
        runner_task.cancel()


def cli() -> None:
    """Console script entry point."""
    asyncio.run(main())


if __name__ == "__main__":
    cli()
