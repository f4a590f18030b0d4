"""
Database lifecycle for the assessment store.

A host application calls ``initialize_database`` once at startup, builds
stores with ``get_store`` and calls ``close_database`` on shutdown.
Production schemas come from the alembic revisions; ``create_schema`` is for
tests and local SQLite files.
"""

from typing import Optional

from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine

from codeassess.common.db.session import create_engine, create_session_factory
from codeassess.common.logger import get_logger
from codeassess.config import Settings, settings as default_settings
from codeassess.database.base import Base
from codeassess.assessments.sql_repository import SQLAssessmentStore

logger = get_logger("database")

_engine: Optional[AsyncEngine] = None


def get_engine() -> AsyncEngine:
    if _engine is None:
        raise RuntimeError("initialize_database() has not been called")
    return _engine


async def initialize_database(
    database_url: Optional[str] = None,
    settings: Optional[Settings] = None,
    create_tables: bool = False
) -> AsyncEngine:
    """
    Open the process-wide engine and check that the database answers.

    Args:
        database_url: Connection URL; ``DATABASE_URL`` by default
        settings: Settings holding pool and echo options
        create_tables: Build the schema from the ORM models

    Returns:
        The engine
    """
    global _engine
    settings = settings or default_settings
    database_url = database_url or settings.DATABASE_URL
    backend = database_url.split("://", 1)[0]

    engine = create_engine(database_url, settings)
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        if create_tables:
            await create_schema(engine)
    except Exception:
        logger.exception(f"Could not reach the {backend} database")
        await engine.dispose()
        raise

    _engine = engine
    logger.info(f"Connected to {backend} database", extra={"data": {"create_tables": create_tables}})
    return engine


async def create_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


async def drop_schema(engine: AsyncEngine) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


def get_store() -> SQLAssessmentStore:
    """Assessment store bound to the process-wide engine."""
    return SQLAssessmentStore(create_session_factory(get_engine()))


async def close_database() -> None:
    """Dispose of the process-wide engine; safe to call when none is open."""
    global _engine
    if _engine is None:
        return
    engine, _engine = _engine, None
    await engine.dispose()
    logger.info("Database connections closed")
