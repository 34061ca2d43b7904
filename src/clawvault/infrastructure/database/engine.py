"""Async database engine and unit-of-work management.

Provides:
    - build_engine / build_session_factory: construct an engine for a URL.
    - get_session_factory: the process-wide factory built from settings.
    - unit_of_work: one transaction per engine operation, committed on
      success, rolled back on error, with driver failures surfaced as
      StoreUnavailableError.
    - init_db / close_db: startup and shutdown hooks.

Usage:
    factory = get_session_factory()
    async with unit_of_work(factory) as session:
        repo = EscrowRepository(session)
        ...
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import TYPE_CHECKING

from sqlalchemy.exc import DBAPIError, IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

from clawvault.config import get_settings
from clawvault.domain.exceptions import ClawVaultError, StoreUnavailableError
from clawvault.logging_config import get_logger

if TYPE_CHECKING:
    from collections.abc import AsyncIterator

logger = get_logger(__name__)

# Module-level singletons (initialized lazily from settings)
_engine: AsyncEngine | None = None
_session_factory: async_sessionmaker[AsyncSession] | None = None


def build_engine(database_url: str, **kwargs) -> AsyncEngine:  # noqa: ANN003
    """Create an async engine; pool options only apply to server databases."""
    if database_url.startswith("sqlite"):
        return create_async_engine(database_url, **kwargs)
    settings = get_settings()
    return create_async_engine(
        database_url,
        pool_size=settings.db_pool_size,
        max_overflow=settings.db_max_overflow,
        pool_timeout=settings.db_pool_timeout,
        pool_pre_ping=True,
        echo=settings.db_echo_sql,
        **kwargs,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


def _get_engine() -> AsyncEngine:
    """Get or create the async engine (lazy singleton)."""
    global _engine
    if _engine is None:
        settings = get_settings()
        _engine = build_engine(settings.database_url)
        logger.info(
            "database.engine_created",
            pool_size=settings.db_pool_size,
            max_overflow=settings.db_max_overflow,
        )
    return _engine


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Get or create the session factory (lazy singleton)."""
    global _session_factory
    if _session_factory is None:
        _session_factory = build_session_factory(_get_engine())
    return _session_factory


@asynccontextmanager
async def unit_of_work(
    factory: async_sessionmaker[AsyncSession],
) -> AsyncIterator[AsyncSession]:
    """Yield a session whose work is committed atomically.

    Domain errors pass through untouched after rollback. Integrity
    conflicts are left to the caller (they signal a lost race, not an
    outage). Any other SQLAlchemy failure becomes StoreUnavailableError.
    """
    async with factory() as session:
        try:
            yield session
            await session.commit()
        except (ClawVaultError, IntegrityError):
            await session.rollback()
            raise
        except (DBAPIError, SQLAlchemyError) as exc:
            await session.rollback()
            logger.error("database.unavailable", error=str(exc))
            raise StoreUnavailableError(f"Escrow store unavailable: {exc}") from exc
        except BaseException:
            await session.rollback()
            raise


async def create_schema(engine: AsyncEngine) -> None:
    """Create all tables that do not exist yet."""
    from clawvault.infrastructure.database.orm_models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("database.tables_created")


async def init_db() -> None:
    """Initialize the engine and, in development, create the tables."""
    engine = _get_engine()
    settings = get_settings()

    if settings.is_development:
        await create_schema(engine)
    else:
        logger.info("database.skipping_create_all", reason="not in development mode")


async def close_db() -> None:
    """Dispose of the database engine."""
    global _engine, _session_factory
    if _engine is not None:
        await _engine.dispose()
        logger.info("database.engine_disposed")
        _engine = None
        _session_factory = None
