"""Database schema CLI commands."""

import asyncio

import typer
from loguru import logger

db_app = typer.Typer()


@db_app.command()
def init() -> None:
    """Create the plates and import_jobs tables if they do not exist."""
    asyncio.run(_init())


async def _init() -> None:
    from plate_registry.core.config import get_settings
    from plate_registry.core.database import create_all_tables, dispose_engine, init_engine

    settings = get_settings()
    init_engine(settings.database_url, schema=settings.database_schema)
    try:
        logger.info("Creating database tables")
        await create_all_tables()
        typer.echo("Database tables created")
    finally:
        await dispose_engine()
