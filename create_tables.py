"""
Script to create all database tables.

This script creates all tables defined in the models.
Run this after starting PostgreSQL with Docker.
"""
import asyncio
import sys

from app.database import engine
from app.logging_config import get_logger
from app.models.base import Base

# Import all models to register them with Base
from app.models.user import User  # noqa: F401
from app.models.project import Project  # noqa: F401
from app.models.credit import CreditTransaction  # noqa: F401
from app.models.job import Transformation, Description  # noqa: F401


log = get_logger(component="create_tables")


async def create_all_tables():
    """Create all tables in the database."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    log.info("tables_created", tables=sorted(Base.metadata.tables))


async def drop_all_tables():
    """Drop all tables in the database (for testing)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    log.info("tables_dropped")


async def main(reset: bool = False):
    """Main entry point. Pass --reset to drop everything first."""
    if reset:
        await drop_all_tables()
    await create_all_tables()
    await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main(reset="--reset" in sys.argv[1:]))
