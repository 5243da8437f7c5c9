import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

from sqlalchemy import event
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm import DeclarativeBase

from fulfillment.config import settings
from fulfillment.core.exceptions import IntegrityViolation

logger = logging.getLogger(__name__)


def _normalize_url(database_url: str) -> str:
    """Route PostgreSQL URLs through the async psycopg driver."""
    if database_url.startswith("postgresql+asyncpg://"):
        return database_url.replace("postgresql+asyncpg://", "postgresql+psycopg://")
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+psycopg://")
    return database_url


def _install_sqlite_listeners(engine: AsyncEngine) -> None:
    """
    Make SQLite behave like a transactional store.

    - Foreign keys are enforced (ON DELETE RESTRICT / CASCADE / SET NULL).
    - The driver's implicit BEGIN is disabled and every transaction starts
      with BEGIN IMMEDIATE, so writers queue on the database lock instead of
      failing on lock upgrade, and SAVEPOINTs work.
    """

    @event.listens_for(engine.sync_engine, "connect")
    def _on_connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

    @event.listens_for(engine.sync_engine, "begin")
    def _on_begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")


def build_engine(database_url: Optional[str] = None) -> AsyncEngine:
    """Create an async engine with the settings-driven pool configuration."""
    database_url = database_url or settings.DATABASE_URL

    if database_url.startswith("sqlite"):
        engine = create_async_engine(
            database_url,
            echo=settings.DEBUG,
            connect_args={"timeout": settings.SQLITE_BUSY_TIMEOUT},
        )
        _install_sqlite_listeners(engine)
        return engine

    return create_async_engine(
        _normalize_url(database_url),
        echo=settings.DEBUG,
        pool_pre_ping=True,  # Check connection health before use
        pool_size=settings.DB_POOL_SIZE,
        max_overflow=settings.DB_MAX_OVERFLOW,
        pool_timeout=settings.DB_POOL_TIMEOUT,
        pool_recycle=settings.DB_POOL_RECYCLE,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """
    Session factory for units of work.

    Autobegin is off: every read and write happens inside transaction().
    """
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
        autobegin=False,
    )


engine = build_engine()
async_session_factory = build_session_factory(engine)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    pass


@asynccontextmanager
async def transaction(session: AsyncSession) -> AsyncIterator[AsyncSession]:
    """
    Run a block as one atomic unit of work.

    Opens a transaction that commits on success, or a SAVEPOINT when the
    session is already inside one, so nested operations join the caller's
    unit. Any exception rolls the unit back in full. Store constraint
    failures surface as IntegrityViolation.
    """
    if session.in_transaction():
        unit = session.begin_nested()
    else:
        unit = session.begin()

    try:
        async with unit:
            yield session
    except IntegrityError as e:
        logger.error(f"Store constraint violated, unit of work rolled back: {e.orig}")
        raise IntegrityViolation(
            "Store constraint violated",
            details={"statement": e.statement, "error": str(e.orig)},
        ) from e


@asynccontextmanager
async def get_db_session(
    session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
) -> AsyncIterator[AsyncSession]:
    """Context manager for getting a database session (for background jobs)."""
    factory = session_factory or async_session_factory
    async with factory() as session:
        yield session


async def init_db(target: Optional[AsyncEngine] = None) -> None:
    """Create all tables registered on Base.metadata."""
    # Import all models to register them with Base.metadata
    from fulfillment import models  # noqa: F401

    target = target or engine
    async with target.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info(f"Registered {len(Base.metadata.tables)} tables")
