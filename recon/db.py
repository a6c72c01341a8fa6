"""SQLAlchemy 2.x async engine construction and additive schema checks.

Nothing here connects at import time; callers build an engine from
settings and pass it to the store.
"""

from __future__ import annotations

import logging

from sqlalchemy import inspect
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.schema import CreateColumn

from .config import DatabaseSettings
from .models import Base

logger = logging.getLogger(__name__)


def create_engine(config: DatabaseSettings) -> AsyncEngine:
    """Create the async engine for the configured database URL."""
    kwargs = {"echo": config.echo}
    if not config.url.startswith("sqlite"):
        kwargs.update(pool_size=config.pool_size, max_overflow=config.max_overflow, pool_pre_ping=True)
    return create_async_engine(config.url, **kwargs)


def _add_missing_columns(conn: Connection) -> list[str]:
    inspector = inspect(conn)
    added = []
    for table in Base.metadata.sorted_tables:
        existing = {col["name"] for col in inspector.get_columns(table.name)}
        for column in table.columns:
            if column.name in existing:
                continue
            ddl = str(CreateColumn(column).compile(dialect=conn.dialect))
            if column.server_default is None:
                # Existing rows are backfilled with NULL
                ddl = ddl.replace(" NOT NULL", "")
            conn.exec_driver_sql(f"ALTER TABLE {table.name} ADD COLUMN {ddl}")
            added.append(f"{table.name}.{column.name}")
    return added


async def ensure_schema(engine: AsyncEngine) -> list[str]:
    """Create missing tables and add missing columns. Safe to re-run.

    Returns:
        Names of the columns that were added, as ``table.column``
    """
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
        added = await conn.run_sync(_add_missing_columns)

    if added:
        logger.info(f"Added columns: {', '.join(added)}")
    else:
        logger.info("Database schema verified")
    return added
