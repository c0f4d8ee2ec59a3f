"""Record store: the persistence collaborator of the import pipeline.

``RecordStore`` is the narrow interface the pipeline depends on.
``SqlAlchemyRecordStore`` implements it over an async session factory,
opening one short-lived session (and transaction) per call so every batch
commits independently of every other batch and of job updates.
"""

import uuid
from collections.abc import AsyncIterator, Collection, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import Any, Protocol

from loguru import logger
from sqlalchemy import select
from sqlalchemy import exc as sa_exc
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from plate_registry.lib.importer.types import ImportRow, KeyKind
from plate_registry.models.import_job import ImportJob
from plate_registry.models.plate import Plate
from plate_registry.services import job_service

# asyncpg has a hard limit of 32767 query parameters
_IN_CLAUSE_BATCH = 5000

# ~7 columns * 500 rows stays far below the parameter limit
_INSERT_SUB_BATCH = 500


class StoreError(Exception):
    """A store operation failed and retrying will not help."""


class TransientStoreError(StoreError):
    """A store operation failed for a reason that may clear on retry."""


@dataclass(frozen=True)
class KeyConflict:
    """A row the store refused because one of its keys already exists.

    Attributes:
        key: The conflicting key value.
        key_kind: Which unique key collided.
    """

    key: str
    key_kind: KeyKind


@dataclass
class InsertResult:
    """Result of one conditional insert-many."""

    inserted_keys: list[str] = field(default_factory=list)
    conflicts: list[KeyConflict] = field(default_factory=list)


class RecordStore(Protocol):
    """Persistence operations the import pipeline needs."""

    async def exists_any(self, kind: KeyKind, keys: Collection[str]) -> set[str]:
        """Return the subset of ``keys`` already present for ``kind``."""
        ...

    async def insert_batch_if_absent(
        self,
        rows: Sequence[ImportRow],
        *,
        office_id: int,
        initial_status: str,
        job_id: uuid.UUID | None = None,
    ) -> InsertResult:
        """Insert every row whose keys are both absent, atomically."""
        ...

    async def create_job(
        self,
        office_id: int,
        *,
        file_name: str | None = None,
        mode: str = "bounded",
        triggered_by: uuid.UUID | None = None,
    ) -> uuid.UUID:
        """Create a PENDING job and return its ID."""
        ...

    async def update_job(self, job_id: uuid.UUID, **fields: Any) -> None:
        """Persist a partial job update."""
        ...

    async def get_job(self, job_id: uuid.UUID) -> ImportJob | None:
        """Return the job or None."""
        ...


def _is_transient(exc: sa_exc.SQLAlchemyError) -> bool:
    if isinstance(exc, sa_exc.DBAPIError) and exc.connection_invalidated:
        return True
    return isinstance(exc, sa_exc.OperationalError | sa_exc.InterfaceError | sa_exc.TimeoutError)


def _key_column(kind: KeyKind) -> Any:
    return Plate.plate_number if kind is KeyKind.PRIMARY else Plate.mv_file


class SqlAlchemyRecordStore:
    """``RecordStore`` backed by the ``plates`` and ``import_jobs`` tables.

    Works on PostgreSQL (asyncpg) and SQLite (aiosqlite); both support
    ``INSERT ... ON CONFLICT DO NOTHING RETURNING``.
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
        self._session_factory = session_factory

    @asynccontextmanager
    async def _session(self) -> AsyncIterator[AsyncSession]:
        """Open a session and translate driver errors into store errors."""
        try:
            async with self._session_factory() as session:
                yield session
        except sa_exc.SQLAlchemyError as exc:
            if _is_transient(exc):
                raise TransientStoreError(str(exc)) from exc
            raise StoreError(str(exc)) from exc
        except (TimeoutError, ConnectionError, OSError) as exc:
            raise TransientStoreError(str(exc)) from exc

    async def exists_any(self, kind: KeyKind, keys: Collection[str]) -> set[str]:
        """Return the subset of ``keys`` already present for ``kind``.

        Splits the IN-list into chunks to stay under the driver's
        parameter limit.
        """
        key_list = list(dict.fromkeys(keys))
        if not key_list:
            return set()

        column = _key_column(kind)
        found: set[str] = set()
        async with self._session() as session:
            for i in range(0, len(key_list), _IN_CLAUSE_BATCH):
                chunk = key_list[i : i + _IN_CLAUSE_BATCH]
                result = await session.execute(select(column).where(column.in_(chunk)))
                found.update(result.scalars().all())
        return found

    async def insert_batch_if_absent(
        self,
        rows: Sequence[ImportRow],
        *,
        office_id: int,
        initial_status: str,
        job_id: uuid.UUID | None = None,
    ) -> InsertResult:
        """Insert a batch in one transaction, skipping rows whose keys exist.

        Conflict detection is delegated to the unique indexes on
        ``plate_number`` and ``mv_file``, so a row written concurrently by
        another session is still refused.  Refused rows are classified by
        one follow-up lookup on ``plate_number`` in the same transaction.
        A refused row whose stored record already carries this ``job_id``
        and the same key pair was committed by an earlier attempt whose
        acknowledgement was lost, and is reported as inserted.

        Args:
            rows: Normalized rows, already free of intra-batch duplicates.
            office_id: Owning branch office.
            initial_status: Status assigned to every inserted plate.
            job_id: Import job recorded on every inserted plate.

        Returns:
            Inserted plate numbers and the conflicts for the rest.
        """
        if not rows:
            return InsertResult()

        records = [
            {
                "id": uuid.uuid4(),
                "plate_number": row.primary_key,
                "mv_file": row.secondary_key,
                "dealer": row.attributes.get("dealer"),
                "office_id": office_id,
                "status": initial_status,
                "import_job_id": job_id,
            }
            for row in rows
        ]

        inserted: set[str] = set()
        async with self._session() as session:
            dialect = session.bind.dialect.name if session.bind is not None else "postgresql"
            insert = sqlite_insert if dialect == "sqlite" else pg_insert

            for i in range(0, len(records), _INSERT_SUB_BATCH):
                batch = records[i : i + _INSERT_SUB_BATCH]
                stmt = insert(Plate).values(batch).on_conflict_do_nothing().returning(Plate.plate_number)
                result = await session.execute(stmt)
                inserted.update(result.scalars().all())

            refused = [row for row in rows if row.primary_key not in inserted]
            conflicts: list[KeyConflict] = []
            if refused:
                stored: dict[str, tuple[str, uuid.UUID | None]] = {}
                refused_keys = [row.primary_key for row in refused]
                for i in range(0, len(refused_keys), _IN_CLAUSE_BATCH):
                    chunk = refused_keys[i : i + _IN_CLAUSE_BATCH]
                    result = await session.execute(
                        select(Plate.plate_number, Plate.mv_file, Plate.import_job_id).where(
                            Plate.plate_number.in_(chunk)
                        )
                    )
                    for plate_number, mv_file, import_job_id in result.all():
                        stored[plate_number] = (mv_file, import_job_id)
                for row in refused:
                    existing = stored.get(row.primary_key)
                    if existing is None:
                        conflicts.append(KeyConflict(row.secondary_key, KeyKind.SECONDARY))
                    elif job_id is not None and existing == (row.secondary_key, job_id):
                        # Committed by an earlier attempt of this same write
                        inserted.add(row.primary_key)
                    else:
                        conflicts.append(KeyConflict(row.primary_key, KeyKind.PRIMARY))

            await session.commit()

        if conflicts:
            logger.debug(f"Insert refused {len(conflicts)} of {len(rows)} rows on key conflicts")
        return InsertResult(
            inserted_keys=[row.primary_key for row in rows if row.primary_key in inserted],
            conflicts=conflicts,
        )

    async def create_job(
        self,
        office_id: int,
        *,
        file_name: str | None = None,
        mode: str = "bounded",
        triggered_by: uuid.UUID | None = None,
    ) -> uuid.UUID:
        async with self._session() as session:
            job = await job_service.create_import_job(
                session,
                office_id=office_id,
                file_name=file_name,
                mode=mode,
                triggered_by=triggered_by,
            )
            return job.id

    async def update_job(self, job_id: uuid.UUID, **fields: Any) -> None:
        async with self._session() as session:
            await job_service.update_import_job(session, job_id, **fields)

    async def get_job(self, job_id: uuid.UUID) -> ImportJob | None:
        async with self._session() as session:
            return await job_service.get_import_job(session, job_id)
