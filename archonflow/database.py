"""Database configuration and connection management."""

from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncGenerator, Dict, Optional

import structlog
from sqlalchemy import JSON, DateTime, Integer, MetaData, String, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.pool import StaticPool
from sqlalchemy.sql import func

from archonflow.config import Settings, settings as default_settings
from archonflow.exceptions import ServiceUnavailableError

logger = structlog.get_logger()


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    metadata = MetaData(
        naming_convention={
            "ix": "ix_%(column_0_label)s",
            "uq": "uq_%(table_name)s_%(column_0_name)s",
            "ck": "ck_%(table_name)s_%(constraint_name)s",
            "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
            "pk": "pk_%(table_name)s",
        }
    )


class EntityRecord(Base):
    """A JSON record stored in a named collection."""

    __tablename__ = "entity_records"

    collection: Mapped[str] = mapped_column(String(100), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    data: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False)
    # Bumped on every write; conditional updates match on it
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=func.now(), onupdate=func.now())


class DatabaseManager:
    """Database connection manager for the SQL entity store."""

    def __init__(self, app_settings: Optional[Settings] = None):
        self.settings = app_settings or default_settings
        self.engine: Optional[AsyncEngine] = None
        self.async_session_maker: Optional[async_sessionmaker[AsyncSession]] = None

    async def initialize(self) -> None:
        """Create the engine, verify connectivity and create tables."""
        logger.info("Initializing database connection...")

        try:
            engine_kwargs: Dict[str, Any] = {
                "echo": self.settings.database_echo,
                "pool_pre_ping": True,
            }
            if ":memory:" in self.settings.database_url:
                # A single shared connection keeps the in-memory database alive
                engine_kwargs["poolclass"] = StaticPool
                engine_kwargs["connect_args"] = {"check_same_thread": False}

            self.engine = create_async_engine(self.settings.database_url, **engine_kwargs)

            self.async_session_maker = async_sessionmaker(
                self.engine,
                class_=AsyncSession,
                expire_on_commit=False,
            )

            async with self.engine.begin() as conn:
                await conn.execute(text("SELECT 1"))
                await conn.run_sync(Base.metadata.create_all)

            logger.info("Database connection established")

        except Exception as e:
            logger.error("Failed to initialize database", error=str(e))
            raise ServiceUnavailableError(f"Database unavailable: {str(e)}") from e

    async def close(self) -> None:
        """Dispose of the engine."""
        if self.engine:
            await self.engine.dispose()
            self.engine = None
            self.async_session_maker = None
            logger.info("Database connection closed")

    @asynccontextmanager
    async def session(self) -> AsyncGenerator[AsyncSession, None]:
        """Yield a session inside a transaction, rolling back on error."""
        if not self.async_session_maker:
            raise ServiceUnavailableError("Database not initialized")

        async with self.async_session_maker() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    async def health_check(self) -> dict:
        """Perform health check on the database."""
        health_status = {"database": {"status": "unknown", "error": None}}

        try:
            if self.engine:
                async with self.engine.begin() as conn:
                    await conn.execute(text("SELECT 1"))
                health_status["database"]["status"] = "healthy"
            else:
                health_status["database"]["status"] = "disabled"
        except Exception as e:
            health_status["database"]["status"] = "unhealthy"
            health_status["database"]["error"] = str(e)

        return health_status
