"""Unit tests for the database session manager that need no database."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy.exc import OperationalError

from evreserve.config import Settings
from evreserve.errors import StoreUnavailableError
from evreserve.storage.database import Database


@pytest.fixture
def database():
    return Database(Settings(_env_file=None))


@pytest.mark.asyncio
async def test_unconnected_database(database):
    assert await database.ping() is False

    with pytest.raises(RuntimeError):
        async with database.session():
            pass

    # Disconnecting twice is harmless
    await database.disconnect()


@pytest.mark.asyncio
async def test_session_commits_on_success(database):
    session = AsyncMock()
    database._session_factory = MagicMock(return_value=session)

    async with database.session() as s:
        assert s is session

    session.commit.assert_awaited_once()
    session.rollback.assert_not_awaited()
    session.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_connection_failure_is_store_unavailable(database):
    session = AsyncMock()
    database._session_factory = MagicMock(return_value=session)

    with pytest.raises(StoreUnavailableError) as exc_info:
        async with database.session():
            raise OperationalError("SELECT 1", {}, ConnectionRefusedError("refused"))

    assert exc_info.value.status_code == 503
    session.rollback.assert_awaited_once()
    session.commit.assert_not_awaited()
    session.close.assert_awaited_once()


@pytest.mark.asyncio
async def test_other_errors_roll_back_and_propagate(database):
    session = AsyncMock()
    database._session_factory = MagicMock(return_value=session)

    with pytest.raises(ValueError):
        async with database.session():
            raise ValueError("bad row")

    session.rollback.assert_awaited_once()
    session.close.assert_awaited_once()
