"""Redis-backed durable job scheduler.

Layout under ``<prefix>:jobs``:

* ``<prefix>:jobs`` hash, job ID -> JSON job
* ``<prefix>:jobs:pending`` sorted set scored by fire time
* ``<prefix>:jobs:processing`` sorted set scored by lease expiry
* ``<prefix>:jobs:dead`` list of dead-lettered job IDs

Claims move IDs from pending to processing in one Lua script. Jobs whose lease
expired (worker crashed before ack) are moved back to pending by the same
script, which keeps delivery at-least-once.
"""

from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from typing import AsyncIterator, Optional
from uuid import UUID

import redis.asyncio as redis
from redis.exceptions import RedisError

from evreserve.errors import SchedulerUnavailableError
from evreserve.logging import get_logger
from evreserve.models.jobs import Job, JobKind, JobState
from evreserve.services.scheduler import Scheduler

logger = get_logger(__name__)

CLAIM_SCRIPT = """
local stale = redis.call('ZRANGEBYSCORE', KEYS[2], '-inf', ARGV[1])
for _, id in ipairs(stale) do
  redis.call('ZREM', KEYS[2], id)
  redis.call('ZADD', KEYS[1], ARGV[1], id)
end
local ids = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1], 'LIMIT', 0, tonumber(ARGV[2]))
for _, id in ipairs(ids) do
  redis.call('ZREM', KEYS[1], id)
  redis.call('ZADD', KEYS[2], ARGV[3], id)
end
return ids
"""


class RedisScheduler(Scheduler):
    """Durable scheduler shared by every API and worker process."""

    backend = "redis"

    def __init__(self, redis_url: str, key_prefix: str = "evreserve", lease_seconds: int = 60):
        """Initialize Redis scheduler."""
        self.redis_url = redis_url
        self.lease = timedelta(seconds=lease_seconds)
        self.jobs_key = f"{key_prefix}:jobs"
        self.pending_key = f"{key_prefix}:jobs:pending"
        self.processing_key = f"{key_prefix}:jobs:processing"
        self.dead_key = f"{key_prefix}:jobs:dead"
        self._client: redis.Redis | None = None
        self._claim = None

    async def connect(self) -> None:
        """
        Establish Redis connection.

        Raises:
            SchedulerUnavailableError: Redis cannot be reached
        """
        self._client = await redis.from_url(self.redis_url, encoding="utf-8", decode_responses=True)
        try:
            await self._client.ping()
        except (RedisError, OSError) as e:
            await self._client.aclose()
            self._client = None
            raise SchedulerUnavailableError(f"Redis unavailable: {e}", backend=self.backend) from e

        self._claim = self._client.register_script(CLAIM_SCRIPT)
        logger.info("redis_scheduler_connected")

    async def disconnect(self) -> None:
        """Close Redis connection."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def schedule_at(self, kind: JobKind, reservation_id: UUID, fire_at: datetime) -> Job:
        client = self._require_client()
        job = Job(kind=kind, reservation_id=reservation_id, fire_at=fire_at)

        async with self._unavailable_on_error("schedule_at"):
            async with client.pipeline(transaction=True) as pipe:
                pipe.hset(self.jobs_key, str(job.id), job.model_dump_json())
                pipe.zadd(self.pending_key, {str(job.id): fire_at.timestamp()})
                await pipe.execute()

        logger.info(
            "job_scheduled",
            job_id=str(job.id),
            kind=kind.value,
            reservation_id=str(reservation_id),
            fire_at=fire_at.isoformat(),
        )
        return job

    async def cancel(self, job_id: UUID) -> bool:
        client = self._require_client()
        async with self._unavailable_on_error("cancel"):
            removed = await client.zrem(self.pending_key, str(job_id))
            if not removed:
                return False

            job = await self._get(job_id)
            if job is not None:
                await self._save(job.model_copy(update={"state": JobState.CANCELED}))

        logger.info("job_canceled", job_id=str(job_id))
        return True

    async def due(self, now: datetime, limit: int) -> list[Job]:
        client = self._require_client()
        async with self._unavailable_on_error("due"):
            ids = await self._claim(
                keys=[self.pending_key, self.processing_key],
                args=[now.timestamp(), limit, (now + self.lease).timestamp()],
            )
            if not ids:
                return []

            payloads = await client.hmget(self.jobs_key, ids)
            jobs = []
            for job_id, payload in zip(ids, payloads):
                if payload is None:
                    logger.warning("job_payload_missing", job_id=job_id)
                    await client.zrem(self.processing_key, job_id)
                    continue
                job = Job.model_validate_json(payload).model_copy(update={"state": JobState.RUNNING})
                jobs.append(job)
        return jobs

    async def ack(self, job: Job) -> None:
        client = self._require_client()
        async with self._unavailable_on_error("ack"):
            async with client.pipeline(transaction=True) as pipe:
                pipe.zrem(self.processing_key, str(job.id))
                pipe.hdel(self.jobs_key, str(job.id))
                await pipe.execute()

    async def retry(self, job: Job, error: str, retry_at: datetime) -> Job:
        client = self._require_client()
        retried = job.model_copy(
            update={
                "state": JobState.SCHEDULED,
                "attempts": job.attempts + 1,
                "last_error": error,
                "fire_at": retry_at,
            }
        )
        async with self._unavailable_on_error("retry"):
            async with client.pipeline(transaction=True) as pipe:
                pipe.zrem(self.processing_key, str(job.id))
                pipe.hset(self.jobs_key, str(job.id), retried.model_dump_json())
                pipe.zadd(self.pending_key, {str(job.id): retry_at.timestamp()})
                await pipe.execute()
        return retried

    async def dead_letter(self, job: Job, error: str) -> Job:
        client = self._require_client()
        dead = job.model_copy(
            update={"state": JobState.DEAD_LETTER, "attempts": job.attempts + 1, "last_error": error}
        )
        async with self._unavailable_on_error("dead_letter"):
            async with client.pipeline(transaction=True) as pipe:
                pipe.zrem(self.processing_key, str(job.id))
                pipe.hset(self.jobs_key, str(job.id), dead.model_dump_json())
                pipe.rpush(self.dead_key, str(job.id))
                await pipe.execute()
        return dead

    async def dead_letters(self) -> list[Job]:
        client = self._require_client()
        async with self._unavailable_on_error("dead_letters"):
            ids = await client.lrange(self.dead_key, 0, -1)
            if not ids:
                return []
            payloads = await client.hmget(self.jobs_key, ids)
        return [Job.model_validate_json(p) for p in payloads if p is not None]

    async def ping(self) -> bool:
        if not self._client:
            return False
        try:
            return bool(await self._client.ping())
        except (RedisError, OSError) as e:
            logger.warning("redis_ping_failed", error=str(e))
            return False

    async def _get(self, job_id: UUID) -> Optional[Job]:
        payload = await self._require_client().hget(self.jobs_key, str(job_id))
        return Job.model_validate_json(payload) if payload else None

    async def _save(self, job: Job) -> None:
        await self._require_client().hset(self.jobs_key, str(job.id), job.model_dump_json())

    def _require_client(self) -> redis.Redis:
        if not self._client:
            raise SchedulerUnavailableError("Redis client not connected", backend=self.backend)
        return self._client

    @asynccontextmanager
    async def _unavailable_on_error(self, operation: str) -> AsyncIterator[None]:
        """Surface Redis failures as SchedulerUnavailableError."""
        try:
            yield
        except (RedisError, OSError) as e:
            logger.error("redis_operation_failed", operation=operation, error=str(e))
            raise SchedulerUnavailableError(
                f"Redis {operation} failed: {e}", backend=self.backend
            ) from e
