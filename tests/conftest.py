"""Shared test fixtures for the async database, the record store, and settings."""

import uuid
from collections.abc import AsyncGenerator, Callable, Collection, Sequence
from types import SimpleNamespace
from typing import Any

import pytest
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from plate_registry.core.config import Settings
from plate_registry.lib.importer.types import ImportRow, KeyKind
from plate_registry.models.base import Base
from plate_registry.services.store import InsertResult, KeyConflict, SqlAlchemyRecordStore


class FakeRecordStore:
    """In-memory ``RecordStore`` with hooks for injecting failures.

    Attributes:
        insert_failures: Insert call number (1-based, counting retries) ->
            exception raised instead of inserting.
        before_insert: Called with the batch before conflicts are checked,
            e.g. to simulate a concurrent writer.
    """

    def __init__(self) -> None:
        self.primary: dict[str, str] = {}
        self.secondary: dict[str, str] = {}
        self.rows: dict[str, dict[str, Any]] = {}
        self.jobs: dict[uuid.UUID, dict[str, Any]] = {}
        self.job_updates: list[dict[str, Any]] = []
        self.exists_calls: list[tuple[KeyKind, list[str]]] = []
        self.insert_calls = 0
        self.insert_failures: dict[int, Exception] = {}
        self.before_insert: Callable[[Sequence[ImportRow]], None] | None = None

    def seed(self, primary_key: str, secondary_key: str) -> None:
        self.primary[primary_key] = secondary_key
        self.secondary[secondary_key] = primary_key

    async def exists_any(self, kind: KeyKind, keys: Collection[str]) -> set[str]:
        self.exists_calls.append((kind, list(keys)))
        index = self.primary if kind is KeyKind.PRIMARY else self.secondary
        return {key for key in keys if key in index}

    async def insert_batch_if_absent(
        self,
        rows: Sequence[ImportRow],
        *,
        office_id: int,
        initial_status: str,
        job_id: uuid.UUID | None = None,
    ) -> InsertResult:
        self.insert_calls += 1
        failure = self.insert_failures.pop(self.insert_calls, None)
        if failure is not None:
            raise failure
        if self.before_insert is not None:
            self.before_insert(rows)

        result = InsertResult()
        for row in rows:
            stored = self.rows.get(row.primary_key)
            if (
                stored is not None
                and job_id is not None
                and (stored["mv_file"], stored["import_job_id"]) == (row.secondary_key, job_id)
            ):
                result.inserted_keys.append(row.primary_key)
            elif row.primary_key in self.primary:
                result.conflicts.append(KeyConflict(row.primary_key, KeyKind.PRIMARY))
            elif row.secondary_key in self.secondary:
                result.conflicts.append(KeyConflict(row.secondary_key, KeyKind.SECONDARY))
            else:
                self.seed(row.primary_key, row.secondary_key)
                self.rows[row.primary_key] = {
                    "mv_file": row.secondary_key,
                    "dealer": row.attributes.get("dealer"),
                    "office_id": office_id,
                    "status": initial_status,
                    "import_job_id": job_id,
                }
                result.inserted_keys.append(row.primary_key)
        return result

    async def create_job(
        self,
        office_id: int,
        *,
        file_name: str | None = None,
        mode: str = "bounded",
        triggered_by: uuid.UUID | None = None,
    ) -> uuid.UUID:
        job_id = uuid.uuid4()
        self.jobs[job_id] = {
            "id": job_id,
            "office_id": office_id,
            "file_name": file_name,
            "mode": mode,
            "status": "PENDING",
            "total_rows": -1,
            "processed_rows": 0,
            "inserted_rows": 0,
            "rejected_rows": 0,
            "skipped_rows": 0,
            "batches_committed": 0,
            "failure_reason": None,
            "error_message": None,
            "error_log": None,
            "triggered_by": triggered_by,
        }
        return job_id

    async def update_job(self, job_id: uuid.UUID, **fields: Any) -> None:
        self.job_updates.append(dict(fields))
        self.jobs[job_id].update(fields)

    async def get_job(self, job_id: uuid.UUID) -> SimpleNamespace | None:
        job = self.jobs.get(job_id)
        return SimpleNamespace(**job) if job is not None else None


@pytest.fixture
def settings() -> Settings:
    """Test application settings."""
    return Settings(
        database_url="sqlite+aiosqlite:///:memory:",
        import_retry_base_delay=0,
        _env_file=None,  # type: ignore[call-arg]
    )


@pytest.fixture
def memory_store() -> FakeRecordStore:
    """Fresh in-memory record store."""
    return FakeRecordStore()


@pytest.fixture
async def async_engine() -> AsyncGenerator[AsyncEngine]:
    """Create an in-memory async SQLite engine for testing."""
    engine = create_async_engine("sqlite+aiosqlite:///:memory:", echo=False)

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def session_factory(async_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test engine."""
    return async_sessionmaker(async_engine, expire_on_commit=False)


@pytest.fixture
async def async_session(session_factory: async_sessionmaker[AsyncSession]) -> AsyncGenerator[AsyncSession]:
    """Create a per-test async session."""
    async with session_factory() as session:
        yield session


@pytest.fixture
def record_store(session_factory: async_sessionmaker[AsyncSession]) -> SqlAlchemyRecordStore:
    """SQLAlchemy record store over the test database."""
    return SqlAlchemyRecordStore(session_factory)


@pytest.fixture
def store_factory() -> Callable[[], FakeRecordStore]:
    """Factory for independent in-memory record stores within one test."""
    return FakeRecordStore
