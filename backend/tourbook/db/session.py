"""
Async database session management for the booking store.

One DatabaseManager per process owns the engine and the session factory.
Route handlers receive an AsyncSession through the ``get_session``
dependency; booking creation locks the tour row inside that session.
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator, Optional, Dict, Any
from urllib.parse import urlparse

from sqlmodel import SQLModel, text
from sqlalchemy import event
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from tourbook.core.settings import get_settings

logger = logging.getLogger(__name__)


def prepare_database_url(database_url: str) -> str:
    """Map a plain database URL onto its async driver"""
    if not database_url:
        raise ValueError("DB_URL environment variable is required")

    parsed = urlparse(database_url)
    if not parsed.scheme:
        raise ValueError("Invalid database URL format")

    if database_url.startswith("postgres://"):
        database_url = "postgresql://" + database_url[len("postgres://"):]

    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("sqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


class DatabaseManager:
    """Owns the async engine and the session factory"""

    def __init__(self):
        self.settings = get_settings()
        self.engine: Optional[AsyncEngine] = None
        self.async_session: Optional[async_sessionmaker] = None
        self.failed_statements = 0

    def _create_engine(self) -> AsyncEngine:
        database_url = prepare_database_url(self.settings.DB_URL)

        options: Dict[str, Any] = {"echo": self.settings.DB_ECHO, "pool_pre_ping": True}
        if database_url.startswith("postgresql"):
            options.update(
                pool_size=self.settings.DB_POOL_SIZE,
                max_overflow=self.settings.DB_MAX_OVERFLOW,
                pool_timeout=self.settings.DB_POOL_TIMEOUT,
                pool_recycle=self.settings.DB_POOL_RECYCLE,
            )

        engine = create_async_engine(database_url, **options)

        @event.listens_for(engine.sync_engine, "handle_error")
        def on_error(exception_context):
            self.failed_statements += 1
            logger.error(f"Database error: {exception_context.original_exception}")

        logger.info(f"Database engine created for {urlparse(database_url).scheme}")
        return engine

    async def initialize(self) -> None:
        """Create the engine and session factory, then create tables"""
        try:
            self.engine = self._create_engine()
            self.async_session = async_sessionmaker(self.engine, class_=AsyncSession, expire_on_commit=False)
            await self.init_db()
            logger.info("Booking store ready")
        except Exception as e:
            logger.error(f"Failed to initialize database manager: {e}")
            raise

    @asynccontextmanager
    async def get_session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session, rolling back on any error"""
        if not self.async_session:
            raise RuntimeError("Database manager not initialized")

        session = self.async_session()
        try:
            yield session
        except Exception as e:
            if isinstance(e, SQLAlchemyError):
                logger.error(f"Database session error: {e}")
            await session.rollback()
            raise
        finally:
            await session.close()

    async def health_check(self) -> Dict[str, Any]:
        started = time.perf_counter()
        try:
            async with self.get_session() as session:
                await session.execute(text("SELECT 1"))
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": "unhealthy", "error": str(e), "failed_statements": self.failed_statements}

        return {
            "status": "healthy",
            "response_time": f"{time.perf_counter() - started:.3f}s",
            "failed_statements": self.failed_statements,
        }

    async def init_db(self) -> None:
        """Create the user, catalog, booking and payment tables"""
        if not self.engine:
            raise RuntimeError("Database engine not initialized")

        # Registers every table on the metadata
        from tourbook.db import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info(f"Tables ready: {', '.join(sorted(SQLModel.metadata.tables))}")

    async def close(self) -> None:
        if self.engine:
            logger.info("Closing database connections...")
            await self.engine.dispose()
            self.engine = None
            self.async_session = None


db_manager = DatabaseManager()


async def get_session() -> AsyncGenerator[AsyncSession, None]:
    """FastAPI dependency yielding a request-scoped session"""
    async with db_manager.get_session() as session:
        yield session
