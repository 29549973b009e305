"""
Database Management and Configuration.

Builds the asynchronous SQLAlchemy engine and session factory used by the
relational repository and the SQL session store. SQLModel supplies the table
metadata.

Key Components:
- `build_engine`: Creates the async engine for a database URL. SQLite (through
  `aiosqlite`) is used for development and tests, PostgreSQL (through
  `asyncpg`) in production.
- `build_session_factory`: An `async_sessionmaker` bound to an engine.
- `create_db_and_tables`: Creates every SQLModel table. Called at startup.
- `get_database_info`: Diagnostic snapshot for the detailed health check.

Nothing here is module-level state. The application context owns the engine
and disposes of it on shutdown.
"""

from typing import Any, Dict

from sqlalchemy import event, text
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.pool import AsyncAdaptedQueuePool, StaticPool
from sqlmodel import SQLModel

from .logging_config import get_logger

# Table classes must be imported before create_all so their metadata is registered
from . import models  # noqa: F401

logger = get_logger("core.database")


def _enable_sqlite_foreign_keys(engine: AsyncEngine):
    @event.listens_for(engine.sync_engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def build_engine(database_url: str, echo: bool = False) -> AsyncEngine:
    """Create async engine based on database type"""
    if database_url.startswith("sqlite"):
        if ":memory:" in database_url or database_url.endswith("://"):
            # One shared connection, otherwise every checkout sees an empty database
            engine = create_async_engine(
                database_url,
                connect_args={"check_same_thread": False},
                poolclass=StaticPool,
                echo=echo,
            )
            _enable_sqlite_foreign_keys(engine)
            return engine
        engine = create_async_engine(
            database_url,
            connect_args={"check_same_thread": False, "timeout": 30},
            poolclass=AsyncAdaptedQueuePool,
            echo=echo,
        )
        _enable_sqlite_foreign_keys(engine)
        return engine

    return create_async_engine(
        database_url,
        poolclass=AsyncAdaptedQueuePool,
        pool_size=5,
        max_overflow=10,
        pool_pre_ping=True,  # Validate connections before use
        echo=echo,
    )


def build_session_factory(engine: AsyncEngine) -> async_sessionmaker:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


async def create_db_and_tables(engine: AsyncEngine):
    """
    Initialize the database and create all tables.
    Called during application startup.
    """
    try:
        async with engine.begin() as conn:
            await conn.run_sync(SQLModel.metadata.create_all)
        logger.info("Database tables created successfully")
    except Exception as e:
        logger.error(f"Failed to create database tables: {e}")
        raise


def mask_database_url(database_url: str) -> str:
    """Hide credentials before a URL is logged or returned"""
    if "@" in database_url:
        scheme = database_url.split("://", 1)[0]
        return f"{scheme}://***@{database_url.split('@', 1)[1]}"
    return database_url


async def get_database_info(engine: AsyncEngine) -> Dict[str, Any]:
    """
    Get basic database information for health checks.
    """
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        connection_healthy = True
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        connection_healthy = False

    url = engine.url.render_as_string(hide_password=True)
    return {
        "database_url": mask_database_url(url),
        "connection_healthy": connection_healthy,
        "database_type": engine.dialect.name,
    }
