"""
db/bootstrap.py
---------------
Idempotent schema bootstrap.

Runs once per process from the application lifespan (and from
create_tables.py). Each run:
  1. creates missing tables,
  2. adds columns that exist on the models but not yet in the database
     (older deployments), always as nullable columns,
  3. creates missing indexes.

Nothing is ever dropped or altered, so running it repeatedly is a no-op.
On PostgreSQL the whole step holds a transaction-scoped advisory lock, so
several workers starting at once cannot race each other.
"""

from typing import List

from sqlalchemy import Column, inspect, text
from sqlalchemy.engine import Connection
from sqlalchemy.ext.asyncio import AsyncEngine
from sqlalchemy.sql.elements import TextClause

from dealerdesk.core.logging import get_logger
from dealerdesk.models import Base

logger = get_logger(__name__)

BOOTSTRAP_LOCK_ID = 72_451_903


def _render_default(column: Column, connection: Connection) -> str | None:
    default = column.server_default
    if default is None:
        return None
    arg = getattr(default, "arg", None)
    if isinstance(arg, str):
        return "'" + arg.replace("'", "''") + "'"
    if isinstance(arg, TextClause):
        return arg.text
    # SQL functions such as now() are not constant; SQLite rejects them in
    # ALTER TABLE ADD COLUMN.
    if connection.dialect.name == "sqlite":
        return None
    return str(arg.compile(dialect=connection.dialect))


def _add_missing_columns(connection: Connection) -> List[str]:
    inspector = inspect(connection)
    existing_tables = set(inspector.get_table_names())
    added: List[str] = []

    for table in Base.metadata.sorted_tables:
        if table.name not in existing_tables:
            continue
        present = {col["name"] for col in inspector.get_columns(table.name)}
        for column in table.columns:
            if column.name in present:
                continue
            column_type = column.type.compile(dialect=connection.dialect)
            ddl = f"ALTER TABLE {table.name} ADD COLUMN {column.name} {column_type}"
            default = _render_default(column, connection)
            if default is not None:
                ddl += f" DEFAULT {default}"
            connection.execute(text(ddl))
            added.append(f"{table.name}.{column.name}")
    return added


def _sync_schema(connection: Connection) -> List[str]:
    Base.metadata.create_all(connection, checkfirst=True)
    added = _add_missing_columns(connection)
    for table in Base.metadata.sorted_tables:
        for index in table.indexes:
            index.create(connection, checkfirst=True)
    return added


async def bootstrap_schema(engine: AsyncEngine) -> None:
    """Bring the database schema up to the current models. Safe to repeat."""
    async with engine.begin() as conn:
        if conn.dialect.name == "postgresql":
            await conn.execute(
                text("SELECT pg_advisory_xact_lock(:lock_id)"),
                {"lock_id": BOOTSTRAP_LOCK_ID},
            )
        added = await conn.run_sync(_sync_schema)

    if added:
        logger.info("Schema bootstrap added columns", columns=added)
    logger.info("Schema bootstrap complete", tables=sorted(Base.metadata.tables))
