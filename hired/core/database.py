"""
Database configuration and connection management.

This module provides:
- SQLAlchemy Core table definitions for the record store
- An explicitly constructed Database owning the async engine and sessions
- Translation of driver failures into StoreUnavailableError
"""
import asyncio
import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    UniqueConstraint,
    select,
)
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.sql import func

from hired.core.config import Settings
from hired.core.errors import StoreUnavailableError

logger = logging.getLogger(__name__)

# SQLAlchemy metadata for table definitions
metadata = MetaData()

# Errors raised by drivers that mean "the store could not be reached"
STORE_ERRORS = (SQLAlchemyError, OSError, asyncio.TimeoutError)


class Database:
    """
    Async engine + session factory for the record store.

    Constructed once at startup and handed to every service that needs it.
    """

    def __init__(
        self,
        url: str,
        *,
        pool_size: int = 10,
        max_overflow: int = 20,
        pool_timeout: int = 30,
        pool_recycle: int = 3600,
        echo: bool = False,
    ):
        if not url:
            raise ValueError(
                "DATABASE_URL is not configured. "
                "Set DATABASE_URL in environment or .env file."
            )
        self.url = url
        engine_kwargs = {"echo": echo}
        if url.startswith("sqlite"):
            # Writers wait for the database lock instead of failing immediately
            engine_kwargs["connect_args"] = {"timeout": 30}
        else:
            engine_kwargs.update(
                pool_size=pool_size,
                max_overflow=max_overflow,
                pool_timeout=pool_timeout,
                pool_recycle=pool_recycle,
                pool_pre_ping=True,
            )
        self.engine: AsyncEngine = create_async_engine(url, **engine_kwargs)
        self._session_factory = async_sessionmaker(self.engine, expire_on_commit=False, autoflush=False)

    @classmethod
    def from_settings(cls, cfg: Settings) -> "Database":
        return cls(
            cfg.TEST_DATABASE_URL or cfg.DATABASE_URL,
            pool_size=cfg.DB_POOL_SIZE,
            max_overflow=cfg.DB_MAX_OVERFLOW,
            pool_timeout=cfg.DB_POOL_TIMEOUT,
            pool_recycle=cfg.DB_POOL_RECYCLE,
            echo=cfg.DB_ECHO,
        )

    @property
    def dialect_name(self) -> str:
        return self.engine.dialect.name

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Context manager for database sessions.

        Commits on success, rolls back on any error. Driver and connection
        failures surface as StoreUnavailableError.

        Usage:
            async with db.session() as session:
                await session.execute(...)
        """
        session = self._session_factory()
        try:
            yield session
            await session.commit()
        except STORE_ERRORS as exc:
            await _safe_rollback(session)
            logger.warning("[database] store operation failed", extra={"error_type": type(exc).__name__})
            raise StoreUnavailableError(f"Record store unavailable: {exc}") from exc
        except Exception:
            await _safe_rollback(session)
            raise
        finally:
            await session.close()

    async def create_all(self) -> None:
        """Create all tables defined in metadata (idempotent)."""
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.create_all)

    async def drop_all(self) -> None:
        """
        Drop all tables defined in metadata.

        WARNING: This is destructive! Only use in tests or development.
        """
        async with self.engine.begin() as conn:
            await conn.run_sync(metadata.drop_all)

    async def check_connection(self) -> bool:
        """Return True if the store answers a trivial query."""
        try:
            async with self.engine.connect() as conn:
                await conn.execute(select(1))
            return True
        except STORE_ERRORS as e:
            logger.warning(f"Database connection check failed: {e}")
            return False

    async def dispose(self) -> None:
        await self.engine.dispose()


async def _safe_rollback(session: AsyncSession) -> None:
    try:
        await session.rollback()
    except STORE_ERRORS:
        logger.debug("[database] rollback failed after store error", exc_info=True)


# Plans: immutable reference data written by the billing process
plans = Table(
    'plans',
    metadata,
    Column('id', String(50), primary_key=True),
    Column('name', String(200), nullable=False),
    Column('slug', String(50), nullable=False, unique=True),
    Column('price_monthly', Float, nullable=False, server_default='0'),
    Column('price_yearly', Float, nullable=False, server_default='0'),
    # NULL means unlimited
    Column('max_simulations_per_month', Integer, nullable=True),
    Column('features', JSON, nullable=False),
    Column('is_featured', Boolean, nullable=False, server_default='0'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_plans_price_monthly', 'price_monthly'),
)

# Profiles: one per identity, plan_id written by the billing webhook
profiles = Table(
    'profiles',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('full_name', Text, nullable=True),
    Column('plan_id', String(50), ForeignKey('plans.id'), nullable=False),
    Column('plan_expires_at', DateTime(timezone=True), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), onupdate=func.now(), nullable=False),
    Index('idx_profiles_plan_id', 'plan_id'),
)

technologies = Table(
    'technologies',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('name', String(200), nullable=False),
    Column('slug', String(100), nullable=False, unique=True),
    Column('icon_url', Text, nullable=True),
    Column('category', String(100), nullable=True),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
)

simulations = Table(
    'simulations',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('title', Text, nullable=False),
    Column('description', Text, nullable=True),
    Column('technology_id', String(100), ForeignKey('technologies.id'), nullable=False),
    Column('difficulty', String(20), nullable=False),
    Column('duration_minutes', Integer, nullable=False),
    # List of {id, prompt, choices}; expected answers never live here
    Column('questions', JSON, nullable=False),
    Column('is_active', Boolean, nullable=False, server_default='1'),
    Column('created_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    Index('idx_simulations_active_created', 'is_active', 'created_at'),
)

simulation_attempts = Table(
    'simulation_attempts',
    metadata,
    Column('id', String(100), primary_key=True),
    Column('user_id', String(100), ForeignKey('profiles.id'), nullable=False),
    Column('simulation_id', String(100), ForeignKey('simulations.id'), nullable=False),
    Column('status', String(20), nullable=False),  # in_progress, completed, timed_out, abandoned
    Column('answers', JSON, nullable=False),
    Column('score', Integer, nullable=True),
    Column('started_at', DateTime(timezone=True), nullable=False),
    Column('completed_at', DateTime(timezone=True), nullable=True),
    Column('duration_seconds', Integer, nullable=True),
    Column('created_at', DateTime(timezone=True), nullable=False),
    # Composite index for the period count: (user_id, created_at)
    Index('idx_attempts_user_created', 'user_id', 'created_at'),
    Index('idx_attempts_user_simulation_status', 'user_id', 'simulation_id', 'status'),
    Index('idx_attempts_status_started', 'status', 'started_at'),
)

# Maintained by the scoring collaborator; read-only for this package
technical_scores = Table(
    'technical_scores',
    metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('user_id', String(100), ForeignKey('profiles.id'), nullable=False),
    Column('technology_id', String(100), ForeignKey('technologies.id'), nullable=False),
    Column('average_score', Float, nullable=False, server_default='0'),
    Column('total_attempts', Integer, nullable=False, server_default='0'),
    Column('last_attempted_at', DateTime(timezone=True), nullable=True),
    Column('updated_at', DateTime(timezone=True), server_default=func.now(), nullable=False),
    UniqueConstraint('user_id', 'technology_id', name='uq_technical_scores_user_technology'),
    Index('idx_technical_scores_user', 'user_id'),
)
