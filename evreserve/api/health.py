"""Liveness endpoint for load balancers and container probes.

``GET /health`` pings the reservation store and the job queue. The response is
200 while at least one of them answers and 503 once neither does.
"""

import os
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, Literal, Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from evreserve.api.dependencies import Services, get_services
from evreserve.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["health"])

STARTED_AT = time.monotonic()
APP_VERSION = os.environ.get("APP_VERSION", "0.0.0-dev")

Status = Literal["healthy", "degraded", "unhealthy"]


class ProbeResult(BaseModel):
    """One backend's answer to a ping."""

    status: Literal["healthy", "unhealthy"]
    backend: str
    response_time_ms: Optional[int] = None
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.status == "healthy"


class HealthReport(BaseModel):
    status: Status = "healthy"
    version: str = APP_VERSION
    uptime_seconds: int
    timestamp: str
    dependencies: dict[str, ProbeResult] = Field(default_factory=dict)
    dead_letter_jobs: Optional[int] = None

    def body(self) -> dict:
        return self.model_dump(exclude_none=True)


async def probe(ping: Callable[[], Awaitable[bool]], backend: str) -> ProbeResult:
    """Time one ping; exceptions count as a failed ping."""
    started = time.perf_counter()
    try:
        answered = await ping()
    except Exception as e:
        logger.error("health_probe_failed", backend=backend, error=str(e))
        return ProbeResult(status="unhealthy", backend=backend, error=str(e)[:100])

    elapsed_ms = int((time.perf_counter() - started) * 1000)
    if answered:
        return ProbeResult(status="healthy", backend=backend, response_time_ms=elapsed_ms)
    return ProbeResult(
        status="unhealthy", backend=backend, response_time_ms=elapsed_ms, error="Ping failed"
    )


def overall_status(results: list[ProbeResult]) -> Status:
    failing = sum(1 for r in results if not r.ok)
    if failing == 0:
        return "healthy"
    return "unhealthy" if failing == len(results) else "degraded"


async def build_report(services: Services) -> HealthReport:
    if services.database is None:
        store = ProbeResult(status="healthy", backend="memory")
    else:
        store = await probe(services.database.ping, "postgres")

    scheduler = services.scheduler
    queue = await probe(scheduler.ping, scheduler.backend)

    report = HealthReport(
        uptime_seconds=int(time.monotonic() - STARTED_AT),
        timestamp=datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
        dependencies={"database": store, "scheduler": queue},
        status=overall_status([store, queue]),
    )
    if queue.ok:
        report.dead_letter_jobs = len(await scheduler.dead_letters())
    return report


def http_status_for(status: Status) -> int:
    return 503 if status == "unhealthy" else 200


@router.get("/health")
async def health(services: Services = Depends(get_services)) -> JSONResponse:
    report = await build_report(services)
    return JSONResponse(
        status_code=http_status_for(report.status),
        content=report.body(),
        headers={"Cache-Control": "no-cache"},
    )
