"""
Database Session Management

This module provides the async SQLAlchemy engine and session factory used by
the relational assessment store.
"""

from typing import Any, Dict, Optional

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from codeassess.common.logger import app_logger
from codeassess.config import Settings, settings as default_settings

# Set up logging
logger = app_logger.getChild("db.session")


def get_engine_kwargs(database_url: str, settings: Optional[Settings] = None) -> Dict[str, Any]:
    """
    Get engine keyword arguments based on database type.
    Different databases support different connection options.
    """
    settings = settings or default_settings
    kwargs: Dict[str, Any] = {"echo": settings.SQL_ECHO}

    if database_url.startswith("postgresql"):
        kwargs.update({
            "pool_size": settings.DB_POOL_SIZE,
            "max_overflow": settings.DB_MAX_OVERFLOW,
            "pool_timeout": settings.DB_POOL_TIMEOUT,
            "pool_pre_ping": True,
            "pool_recycle": 300,
        })
    elif database_url.startswith("sqlite") and ":memory:" in database_url:
        # One shared connection, otherwise every checkout sees an empty database
        kwargs.update({
            "poolclass": StaticPool,
            "connect_args": {"check_same_thread": False},
        })

    return kwargs


def create_engine(database_url: Optional[str] = None, settings: Optional[Settings] = None) -> AsyncEngine:
    """
    Create an async engine for the configured database.

    SQLite connections get foreign key enforcement switched on.
    """
    settings = settings or default_settings
    database_url = database_url or settings.DATABASE_URL
    engine = create_async_engine(database_url, **get_engine_kwargs(database_url, settings))

    if database_url.startswith("sqlite"):
        @event.listens_for(engine.sync_engine, "connect")
        def _enable_foreign_keys(dbapi_connection, connection_record):
            cursor = dbapi_connection.cursor()
            cursor.execute("PRAGMA foreign_keys=ON")
            cursor.close()

    logger.debug(f"Created engine for {database_url.split('://', 1)[0]}")
    return engine


def create_session_factory(engine: AsyncEngine) -> sessionmaker:
    """Session factory for SQLAlchemy 1.4 async sessions."""
    return sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


