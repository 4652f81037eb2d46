"""
create_tables.py
----------------
One-shot script to create or upgrade the database schema.
The API runs the same bootstrap on startup; use this to prepare a database
ahead of a deploy.

Usage:
    python create_tables.py
"""

import asyncio

from sqlalchemy.ext.asyncio import create_async_engine

from dealerdesk.core.config import settings
from dealerdesk.core.logging import configure_logging
from dealerdesk.db.bootstrap import bootstrap_schema
from dealerdesk.db.session import engine_options


async def create_all_tables() -> None:
    configure_logging()
    engine = create_async_engine(settings.DATABASE_URL, **engine_options(settings.DATABASE_URL))
    try:
        await bootstrap_schema(engine)
    finally:
        await engine.dispose()
    print("All tables are up to date.")


if __name__ == "__main__":
    asyncio.run(create_all_tables())
