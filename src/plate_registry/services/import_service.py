"""Import service: orchestrates plate CSV ingestion in bounded or streaming mode.

Both modes feed the same pipeline: normalize each record, drop rows whose
keys repeat earlier rows of the same file, precheck each batch against the
store, write it with a conditional insert, then persist progress.  Batches
run strictly one after another; each commits on its own, so a failure
leaves every earlier batch in place.
"""

import asyncio
import uuid
from collections.abc import AsyncIterable, Coroutine, Iterable, Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any, BinaryIO

from loguru import logger
from pydantic import BaseModel, ConfigDict, Field

from plate_registry.core.background import CancelToken, JobStatus
from plate_registry.core.config import Settings
from plate_registry.lib.importer import AuditReporter, LocalDeduplicator, is_blank, normalize_record, parse_bounded
from plate_registry.lib.importer.errors import BatchWriteError, ImportCancelledError, ImportPipelineError
from plate_registry.lib.importer.normalizer import HeaderMap
from plate_registry.lib.importer.stream import iter_stream_records
from plate_registry.lib.importer.types import ImportRow, ReasonCode, RowRejection
from plate_registry.models.import_job import ImportJob
from plate_registry.services.batch_writer import BatchWriter
from plate_registry.services.precheck import precheck_rows
from plate_registry.services.progress import JobSnapshot, ProgressObserver, ProgressTracker
from plate_registry.services.store import RecordStore, StoreError


class RunConfig(BaseModel):
    """Per-run import options."""

    model_config = ConfigDict(frozen=True)

    office_id: int
    initial_status: str = "Available"
    batch_size: int = Field(default=500, gt=0)
    precheck_enabled: bool = True
    max_audit_entries: int = Field(default=50_000, gt=0)
    max_retries: int = Field(default=3, ge=1)
    retry_base_delay: float = Field(default=0.5, ge=0)
    triggered_by: uuid.UUID | None = None
    file_name: str | None = None

    @classmethod
    def from_settings(cls, settings: Settings, *, office_id: int, **overrides: object) -> "RunConfig":
        """Build a run config from application settings.

        Overrides that are None fall back to the settings value.
        """
        values: dict[str, object] = {
            "initial_status": settings.import_default_status,
            "batch_size": settings.import_batch_size,
            "precheck_enabled": settings.import_precheck_enabled,
            "max_audit_entries": settings.import_max_audit_entries,
            "max_retries": settings.import_max_retries,
            "retry_base_delay": settings.import_retry_base_delay,
        }
        values.update({key: value for key, value in overrides.items() if value is not None})
        return cls(office_id=office_id, **values)  # type: ignore[arg-type]


@dataclass
class ImportResult:
    """Outcome of one run.

    Attributes:
        job: Final job snapshot (always present, also on failure).
        report: Rendered audit report.
        error: Fatal error description, or None on success.
        audit: The run's audit trail.
    """

    job: JobSnapshot
    report: str
    error: str | None
    audit: AuditReporter

    @property
    def job_id(self) -> uuid.UUID:
        return self.job.job_id

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.job.status is JobStatus.COMPLETED


@dataclass
class _Carry:
    """Rows dropped before reaching a batch, accounted with the next one."""

    duplicates: int = 0
    skipped: int = 0

    def __iadd__(self, other: "_Carry") -> "_Carry":
        self.duplicates += other.duplicates
        self.skipped += other.skipped
        return self

    def __bool__(self) -> bool:
        return bool(self.duplicates or self.skipped)


class _Pipeline:
    """Dedup, precheck, write, and progress for one run."""

    def __init__(
        self,
        store: RecordStore,
        config: RunConfig,
        job_id: uuid.UUID,
        tracker: ProgressTracker,
        reporter: AuditReporter,
        cancel_token: CancelToken | None,
    ) -> None:
        self._store = store
        self._config = config
        self._tracker = tracker
        self._reporter = reporter
        self._cancel_token = cancel_token
        self._dedup = LocalDeduplicator(reporter)
        self._writer = BatchWriter(
            store,
            office_id=config.office_id,
            initial_status=config.initial_status,
            job_id=job_id,
            precheck_enabled=config.precheck_enabled,
            max_attempts=config.max_retries,
            base_delay=config.retry_base_delay,
        )
        self._carry = _Carry()
        self._pending: list[ImportRow] = []
        self._pending_carry = _Carry()
        self.batch_number = 0
        self.total_rows = -1

    def admit(self, source_line: int, values: list[str | None], header: HeaderMap) -> ImportRow | None:
        """Normalize and dedup one record without touching the store."""
        if is_blank(values):
            return None
        self._reporter.raw_rows += 1

        record = normalize_record(values, header, source_line)
        if isinstance(record, RowRejection):
            logger.debug(f"Line {source_line} skipped: {record.detail}")
            self._reporter.skipped_rows += 1
            self._carry.skipped += 1
            return None
        if not self._dedup.admit(record):
            self._carry.duplicates += 1
            return None
        return record

    def take_carry(self) -> _Carry:
        carry, self._carry = self._carry, _Carry()
        return carry

    async def submit(self, row: ImportRow, carry: _Carry) -> None:
        self._pending.append(row)
        self._pending_carry += carry
        if len(self._pending) >= self._config.batch_size:
            await self.flush()

    async def finish(self, carry: _Carry) -> None:
        self._pending_carry += carry
        await self.flush()

    async def flush(self) -> None:
        """Write the pending batch and record its progress.

        Raises:
            ImportCancelledError: If cancellation was requested.
            BatchWriteError: If the batch could not be prechecked or written.
        """
        if self._cancel_token is not None and self._cancel_token.cancelled:
            msg = f"Import cancelled after {self.batch_number} batches"
            raise ImportCancelledError(msg)

        if self._tracker.status is JobStatus.PENDING:
            await self._tracker.start(self.total_rows)

        rows, self._pending = self._pending, []
        carry, self._pending_carry = self._pending_carry, _Carry()

        if not rows:
            if carry:
                await self._tracker.record_batch(
                    processed=carry.duplicates + carry.skipped,
                    inserted=0,
                    rejected=carry.duplicates,
                    skipped=carry.skipped,
                    new_batch=False,
                )
            return

        self.batch_number += 1
        batch_number = self.batch_number

        to_write: list[ImportRow] = rows
        store_duplicates: list[ImportRow] = []
        if self._config.precheck_enabled:
            try:
                checked = await precheck_rows(
                    self._store,
                    rows,
                    max_attempts=self._config.max_retries,
                    base_delay=self._config.retry_base_delay,
                )
            except StoreError as exc:
                raise BatchWriteError(batch_number, f"precheck failed: {exc}") from exc
            to_write, store_duplicates = checked.admitted, checked.duplicates
            for row in store_duplicates:
                self._reporter.record_row(row, ReasonCode.STORE_DUPLICATE)

        outcome = await self._writer.write(batch_number, to_write)
        for rejected in outcome.rejected:
            self._reporter.record_row(rejected.row, rejected.reason.to_reason_code())
        self._reporter.inserted_rows += outcome.inserted_count

        await self._tracker.record_batch(
            processed=len(rows) + carry.duplicates + carry.skipped,
            inserted=outcome.inserted_count,
            rejected=carry.duplicates + len(store_duplicates) + len(outcome.rejected),
            skipped=carry.skipped,
        )


class IngestionOrchestrator:
    """Runs plate imports and owns their control flow.

    Args:
        store: Record store for plates and jobs.
        config: Per-run options.
        observers: Push observers notified after every progress change.
        cancel_token: Polled before each batch.
    """

    def __init__(
        self,
        store: RecordStore,
        config: RunConfig,
        *,
        observers: Iterable[ProgressObserver] = (),
        cancel_token: CancelToken | None = None,
    ) -> None:
        self._store = store
        self._config = config
        self._observers = list(observers)
        self._cancel_token = cancel_token

    async def _prepare(self, mode: str, job_id: uuid.UUID | None) -> tuple[_Pipeline, ProgressTracker, AuditReporter]:
        if job_id is None:
            job_id = await self._store.create_job(
                self._config.office_id,
                file_name=self._config.file_name,
                mode=mode,
                triggered_by=self._config.triggered_by,
            )
        logger.info(
            f"Starting {mode} import job {job_id} for office {self._config.office_id} "
            f"(batch_size={self._config.batch_size}, precheck={self._config.precheck_enabled})"
        )
        reporter = AuditReporter(self._config.max_audit_entries)
        tracker = ProgressTracker(
            self._store,
            job_id,
            observers=self._observers,
            max_attempts=self._config.max_retries,
            base_delay=self._config.retry_base_delay,
        )
        pipeline = _Pipeline(self._store, self._config, job_id, tracker, reporter, self._cancel_token)
        return pipeline, tracker, reporter

    async def run_bounded(
        self,
        source: Path | str | bytes | BinaryIO,
        *,
        job_id: uuid.UUID | None = None,
    ) -> ImportResult:
        """Import a file that fits in memory.

        The whole file is parsed, normalized, and deduplicated before the
        first batch is written, so ``total_rows`` is known up front.

        Args:
            source: Path, raw bytes, or binary file object.
            job_id: Existing PENDING job to run under; created when omitted.

        Returns:
            The final job snapshot, audit report, and error (if any).
        """
        pipeline, tracker, reporter = await self._prepare("bounded", job_id)

        async def _drive() -> None:
            parsed = await asyncio.to_thread(parse_bounded, source)
            staged: list[tuple[ImportRow, _Carry]] = []
            for source_line, values in parsed:
                row = pipeline.admit(source_line, values, parsed.header)
                if row is not None:
                    staged.append((row, pipeline.take_carry()))
            trailing = pipeline.take_carry()
            pipeline.total_rows = reporter.raw_rows
            logger.info(
                f"Staged {len(staged)} of {reporter.raw_rows} rows "
                f"({reporter.skipped_rows} skipped, {reporter.total_rejected} duplicate in file)"
            )

            for row, carry in staged:
                await pipeline.submit(row, carry)
            await pipeline.finish(trailing)

        return await self._run(_drive(), tracker, reporter, pipeline)

    async def run_stream(
        self,
        chunks: AsyncIterable[bytes],
        *,
        job_id: uuid.UUID | None = None,
    ) -> ImportResult:
        """Import from an async byte stream of unknown length.

        Each batch is written as soon as it fills; ``total_rows`` stays -1
        until the stream ends.

        Args:
            chunks: Async iterable of raw byte chunks.
            job_id: Existing PENDING job to run under; created when omitted.

        Returns:
            The final job snapshot, audit report, and error (if any).
        """
        pipeline, tracker, reporter = await self._prepare("stream", job_id)

        async def _drive() -> None:
            async for header, source_line, values in iter_stream_records(chunks):
                row = pipeline.admit(source_line, values, header)
                if row is not None:
                    await pipeline.submit(row, pipeline.take_carry())
            await pipeline.finish(pipeline.take_carry())

        return await self._run(_drive(), tracker, reporter, pipeline)

    async def _run(
        self,
        drive: Coroutine[Any, Any, None],
        tracker: ProgressTracker,
        reporter: AuditReporter,
        pipeline: _Pipeline,
    ) -> ImportResult:
        error: str | None = None
        try:
            await drive
            await tracker.complete(error_log=reporter.to_error_log())
        except ImportPipelineError as exc:
            error = _failure_message(exc, tracker.snapshot)
            if isinstance(exc, ImportCancelledError):
                logger.warning(f"Import job {tracker.job_id} cancelled before batch {pipeline.batch_number + 1}")
            await tracker.fail(exc.failure_reason, error, error_log=reporter.to_error_log())
        except StoreError as exc:
            error = _failure_message(exc, tracker.snapshot)
            await tracker.fail("store_error", error, error_log=reporter.to_error_log())
        except asyncio.CancelledError:
            await tracker.fail("cancelled", "Import task was cancelled", error_log=reporter.to_error_log())
            raise
        except Exception as exc:
            logger.exception(f"Import job {tracker.job_id} failed unexpectedly")
            await tracker.fail(
                "internal_error", _failure_message(exc, tracker.snapshot), error_log=reporter.to_error_log()
            )
            raise

        return ImportResult(
            job=tracker.snapshot,
            report=reporter.render(tracker.job_id),
            error=error,
            audit=reporter,
        )


def _failure_message(exc: Exception, snapshot: JobSnapshot) -> str:
    return (
        f"{exc}. {snapshot.inserted_rows} rows committed in "
        f"{snapshot.batches_committed} batches before the failure"
    )


def iter_job_report(job: ImportJob) -> Iterator[str]:
    """Render a finished job's persisted audit trail line by line."""
    return AuditReporter.from_error_log(job.error_log).iter_lines(job.id)
