"""FastAPI dependency injection for database sessions and the record store."""

from collections.abc import AsyncGenerator

from sqlalchemy.ext.asyncio import AsyncSession

from plate_registry.core.database import get_session_factory
from plate_registry.services.store import SqlAlchemyRecordStore


async def get_async_session() -> AsyncGenerator[AsyncSession]:
    """Yield an async database session with per-request lifecycle."""
    factory = get_session_factory()
    async with factory() as session:
        yield session


def get_record_store() -> SqlAlchemyRecordStore:
    """Return a record store bound to the application's session factory."""
    return SqlAlchemyRecordStore(get_session_factory())
