"""Unit tests for service wiring."""

from unittest.mock import AsyncMock, patch

import pytest

from evreserve.app.run import build_runtime, build_scheduler
from evreserve.config import Settings
from evreserve.errors import SchedulerUnavailableError
from evreserve.models.jobs import JobKind
from evreserve.services.scheduler import InMemoryScheduler


def memory_settings(**overrides):
    values = dict(store_backend="memory", scheduler_backend="memory", _env_file=None)
    values.update(overrides)
    return Settings(**values)


@pytest.mark.asyncio
async def test_memory_scheduler_selected_explicitly():
    scheduler = await build_scheduler(memory_settings())

    assert isinstance(scheduler, InMemoryScheduler)


@pytest.mark.asyncio
async def test_unknown_scheduler_backend_fails_fast():
    with pytest.raises(SchedulerUnavailableError) as exc_info:
        await build_scheduler(memory_settings(scheduler_backend="rabbit"))

    assert exc_info.value.extra["backend"] == "rabbit"


@pytest.mark.asyncio
async def test_unreachable_redis_fails_fast():
    settings = memory_settings(scheduler_backend="redis")
    failing_connect = AsyncMock(side_effect=SchedulerUnavailableError("Redis unavailable", backend="redis"))

    with patch("evreserve.app.run.RedisScheduler.connect", failing_connect):
        with pytest.raises(SchedulerUnavailableError):
            await build_runtime(settings)


@pytest.mark.asyncio
async def test_memory_runtime_is_fully_wired():
    settings = memory_settings(payment_grace_minutes=15, frontend_url="https://ev.example.com/")

    runtime = await build_runtime(settings)

    services = runtime.services
    assert services.database is None
    assert services.flow.scheduler is services.scheduler
    assert services.flow.payment_grace.total_seconds() == 15 * 60
    assert set(runtime.runner.handlers) == {JobKind.RESERVATION_EXPIRY, JobKind.PAYMENT_REMINDER}
    reminder = runtime.runner.handlers[JobKind.PAYMENT_REMINDER].__self__
    assert reminder.payment_url == "https://ev.example.com/my-reservations"

    await runtime.shutdown()


@pytest.mark.asyncio
async def test_unknown_store_backend_rejected():
    with pytest.raises(ValueError):
        await build_runtime(memory_settings(store_backend="sqlite"))
