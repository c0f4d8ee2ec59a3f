"""Tests for the SQLAlchemy record store on an in-memory SQLite database."""

import uuid

import pytest
from sqlalchemy import exc as sa_exc
from sqlalchemy import select

from plate_registry.lib.importer.types import ImportRow, KeyKind
from plate_registry.models.plate import Plate
from plate_registry.services.store import KeyConflict, SqlAlchemyRecordStore, StoreError, TransientStoreError


def _row(plate: str, mv: str, dealer: str = "N/A") -> ImportRow:
    return ImportRow(primary_key=plate, secondary_key=mv, attributes={"dealer": dealer}, source_line=2)


class _FailingSession:
    def __init__(self, exc: Exception) -> None:
        self.exc = exc

    async def __aenter__(self) -> "_FailingSession":
        return self

    async def __aexit__(self, *args: object) -> bool:
        return False

    async def execute(self, *args: object, **kwargs: object) -> None:
        raise self.exc


class TestInsertBatchIfAbsent:
    """Tests for the conditional insert."""

    @pytest.mark.asyncio
    async def test_inserts_rows_with_stamped_fields(self, record_store, async_session) -> None:
        job_id = await record_store.create_job(5, file_name="plates.csv")

        result = await record_store.insert_batch_if_absent(
            [_row("ABC123", "MV-1", "ACME"), _row("XYZ789", "MV-2")],
            office_id=5,
            initial_status="Available",
            job_id=job_id,
        )

        assert result.inserted_keys == ["ABC123", "XYZ789"]
        assert result.conflicts == []
        plates = (await async_session.execute(select(Plate).order_by(Plate.plate_number))).scalars().all()
        assert [(p.plate_number, p.mv_file, p.dealer) for p in plates] == [
            ("ABC123", "MV-1", "ACME"),
            ("XYZ789", "MV-2", "N/A"),
        ]
        assert {p.office_id for p in plates} == {5}
        assert {p.status for p in plates} == {"Available"}
        assert {p.import_job_id for p in plates} == {job_id}

    @pytest.mark.asyncio
    async def test_conflicts_are_classified_by_key(self, record_store) -> None:
        await record_store.insert_batch_if_absent([_row("P1", "M1")], office_id=1, initial_status="Available")

        result = await record_store.insert_batch_if_absent(
            [_row("P1", "M9"), _row("P2", "M1"), _row("P3", "M3")],
            office_id=1,
            initial_status="Available",
        )

        assert result.inserted_keys == ["P3"]
        assert result.conflicts == [KeyConflict("P1", KeyKind.PRIMARY), KeyConflict("M1", KeyKind.SECONDARY)]

    @pytest.mark.asyncio
    async def test_rerun_inserts_nothing(self, record_store) -> None:
        rows = [_row(f"P{i}", f"M{i}") for i in range(20)]
        await record_store.insert_batch_if_absent(rows, office_id=1, initial_status="Available")

        result = await record_store.insert_batch_if_absent(rows, office_id=1, initial_status="Available")

        assert result.inserted_keys == []
        assert len(result.conflicts) == 20

    @pytest.mark.asyncio
    async def test_repeat_under_same_job_reports_rows_as_inserted(self, record_store) -> None:
        job_id = await record_store.create_job(1)
        rows = [_row("P1", "M1"), _row("P2", "M2")]
        await record_store.insert_batch_if_absent(rows, office_id=1, initial_status="Available", job_id=job_id)

        result = await record_store.insert_batch_if_absent(
            rows, office_id=1, initial_status="Available", job_id=job_id
        )

        assert result.inserted_keys == ["P1", "P2"]
        assert result.conflicts == []

    @pytest.mark.asyncio
    async def test_same_job_with_other_key_pair_is_a_conflict(self, record_store) -> None:
        first_job = await record_store.create_job(1)
        second_job = await record_store.create_job(1)
        await record_store.insert_batch_if_absent(
            [_row("P1", "M1"), _row("P2", "M2")], office_id=1, initial_status="Available", job_id=first_job
        )

        same_job = await record_store.insert_batch_if_absent(
            [_row("P1", "M7")], office_id=1, initial_status="Available", job_id=first_job
        )
        other_job = await record_store.insert_batch_if_absent(
            [_row("P2", "M2")], office_id=1, initial_status="Available", job_id=second_job
        )

        assert same_job.inserted_keys == []
        assert same_job.conflicts == [KeyConflict("P1", KeyKind.PRIMARY)]
        assert other_job.inserted_keys == []
        assert other_job.conflicts == [KeyConflict("P2", KeyKind.PRIMARY)]

    @pytest.mark.asyncio
    async def test_large_batch_spans_sub_batches(self, record_store) -> None:
        rows = [_row(f"P{i:05d}", f"M{i:05d}") for i in range(1200)]
        result = await record_store.insert_batch_if_absent(rows, office_id=1, initial_status="Available")
        assert len(result.inserted_keys) == 1200

    @pytest.mark.asyncio
    async def test_empty_batch(self, record_store) -> None:
        result = await record_store.insert_batch_if_absent([], office_id=1, initial_status="Available")
        assert result.inserted_keys == []


class TestExistsAny:
    """Tests for the existence lookup."""

    @pytest.mark.asyncio
    async def test_returns_present_keys(self, record_store) -> None:
        await record_store.insert_batch_if_absent(
            [_row("P1", "M1"), _row("P2", "M2")], office_id=1, initial_status="Available"
        )

        assert await record_store.exists_any(KeyKind.PRIMARY, ["P1", "P3"]) == {"P1"}
        assert await record_store.exists_any(KeyKind.SECONDARY, ["M2", "M2", "M4"]) == {"M2"}

    @pytest.mark.asyncio
    async def test_empty_keys(self, record_store) -> None:
        assert await record_store.exists_any(KeyKind.PRIMARY, []) == set()


class TestJobs:
    """Tests for job persistence through the store."""

    @pytest.mark.asyncio
    async def test_create_update_get(self, record_store) -> None:
        job_id = await record_store.create_job(3, file_name="a.csv", mode="stream")

        await record_store.update_job(
            job_id, status="COMPLETED", processed_rows=4, error_log={"entries": [], "summary": {"inserted": 4}}
        )
        job = await record_store.get_job(job_id)

        assert job is not None
        assert job.office_id == 3
        assert job.mode == "stream"
        assert job.status == "COMPLETED"
        assert job.processed_rows == 4
        assert job.error_log["summary"]["inserted"] == 4

    @pytest.mark.asyncio
    async def test_get_unknown_job(self, record_store) -> None:
        assert await record_store.get_job(uuid.uuid4()) is None


class TestErrorMapping:
    """Tests for translating driver errors."""

    @pytest.mark.asyncio
    async def test_operational_error_is_transient(self) -> None:
        exc = sa_exc.OperationalError("SELECT 1", {}, Exception("connection lost"))
        store = SqlAlchemyRecordStore(lambda: _FailingSession(exc))  # type: ignore[arg-type]
        with pytest.raises(TransientStoreError):
            await store.exists_any(KeyKind.PRIMARY, ["P1"])

    @pytest.mark.asyncio
    async def test_os_error_is_transient(self) -> None:
        store = SqlAlchemyRecordStore(lambda: _FailingSession(ConnectionRefusedError("refused")))  # type: ignore[arg-type]
        with pytest.raises(TransientStoreError, match="refused"):
            await store.exists_any(KeyKind.SECONDARY, ["M1"])

    @pytest.mark.asyncio
    async def test_integrity_error_is_fatal(self) -> None:
        exc = sa_exc.IntegrityError("INSERT", {}, Exception("check constraint"))
        store = SqlAlchemyRecordStore(lambda: _FailingSession(exc))  # type: ignore[arg-type]
        with pytest.raises(StoreError) as exc_info:
            await store.exists_any(KeyKind.PRIMARY, ["P1"])
        assert not isinstance(exc_info.value, TransientStoreError)
