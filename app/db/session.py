"""Async engine and session factory for the analysis store."""

from __future__ import annotations

import structlog
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlmodel import SQLModel

logger = structlog.get_logger(__name__)


class DatabaseManager:
    """Owns the engine used by :class:`~app.services.sql_session_store.SqlSessionStore`."""

    def __init__(
        self,
        database_url: str,
        echo: bool = False,
        pool_size: int = 5,
        max_overflow: int = 10,
        pool_recycle: int = 3600,
    ):
        self.database_url = database_url
        self.echo = echo
        self.pool_size = pool_size
        self.max_overflow = max_overflow
        self.pool_recycle = pool_recycle
        self._engine: AsyncEngine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def engine(self) -> AsyncEngine:
        if self._engine is None:
            options: dict = {"echo": self.echo, "future": True}
            # SQLite engines reject queue-pool sizing arguments
            if not self.database_url.startswith("sqlite"):
                options.update(
                    pool_size=self.pool_size,
                    max_overflow=self.max_overflow,
                    pool_recycle=self.pool_recycle,
                    pool_pre_ping=True,
                )
            self._engine = create_async_engine(self.database_url, **options)
            logger.info("database_engine_created", dialect=self._engine.dialect.name)
        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )
        return self._session_factory

    async def create_tables(self) -> None:
        """Create the session, provider result and aggregate tables."""
        # Registers the table models on SQLModel.metadata.
        from . import models  # noqa: F401

        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)

    async def drop_tables(self) -> None:
        async with self.engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.drop_all)

    async def close(self) -> None:
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None


def init_db(database_url: str, echo: bool = False, **pool_options) -> DatabaseManager:
    """Build a :class:`DatabaseManager` for ``database_url``."""
    return DatabaseManager(database_url=database_url, echo=echo, **pool_options)
