"""Database connection and session management."""

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import text
from sqlalchemy.exc import DBAPIError, InterfaceError, OperationalError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from evreserve.config.settings import Settings
from evreserve.errors import StoreUnavailableError
from evreserve.logging import get_logger

logger = get_logger(__name__)


class Database:
    """Database connection manager, created once at startup and passed to repositories."""

    def __init__(self, settings: Settings):
        """
        Initialize database connection.

        Args:
            settings: Application settings with database URL
        """
        self.settings = settings
        self._engine: AsyncEngine | None = None
        self._session_factory: sessionmaker | None = None

    async def connect(self) -> None:
        """Create database engine and session factory."""
        if self._engine is not None:
            return

        self._engine = create_async_engine(
            self.settings.database_url,
            echo=self.settings.log_level == "DEBUG",
            pool_size=10,
            max_overflow=20,
            pool_pre_ping=True,
        )

        self._session_factory = sessionmaker(
            self._engine,
            class_=AsyncSession,
            expire_on_commit=False,
        )

        logger.info("database_connected", url=self.settings.database_url)

    async def disconnect(self) -> None:
        """Close database connections."""
        if self._engine is None:
            return

        await self._engine.dispose()
        self._engine = None
        self._session_factory = None

        logger.info("database_disconnected")

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Get a transactional session.

        Commits on normal exit, rolls back on error. Connection-level failures
        surface as StoreUnavailableError so job workers can retry them.
        """
        if self._session_factory is None:
            raise RuntimeError("Database not connected. Call connect() first.")

        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except (OperationalError, InterfaceError) as e:
            await session.rollback()
            raise StoreUnavailableError(f"Database unavailable: {e}") from e
        except DBAPIError as e:
            await session.rollback()
            if e.connection_invalidated:
                raise StoreUnavailableError(f"Database connection lost: {e}") from e
            raise
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    async def ping(self) -> bool:
        """Check database reachability."""
        if self._engine is None:
            return False
        try:
            async with self._engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            return True
        except (OperationalError, InterfaceError, OSError) as e:
            logger.warning("database_ping_failed", error=str(e))
            return False
