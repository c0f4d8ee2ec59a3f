"""Job progress tracking.

``ProgressTracker`` owns the job state machine
``PENDING -> PROCESSING -> {COMPLETED, FAILED}``, persists cumulative
counters through the record store after every batch, and pushes a
snapshot to each registered observer.  Observers that need to pull can
read the job row instead.
"""

import uuid
from collections.abc import Iterable
from dataclasses import dataclass, replace
from datetime import UTC, datetime
from typing import Any, Protocol

from loguru import logger

from plate_registry.core.background import JobStatus
from plate_registry.models.import_job import ImportJob
from plate_registry.services.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, call_with_retry
from plate_registry.services.store import RecordStore, StoreError

_TRANSITIONS: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.PENDING: frozenset({JobStatus.PROCESSING, JobStatus.FAILED}),
    JobStatus.PROCESSING: frozenset({JobStatus.COMPLETED, JobStatus.FAILED}),
    JobStatus.COMPLETED: frozenset(),
    JobStatus.FAILED: frozenset(),
}


class InvalidJobTransition(Exception):
    """A status change not allowed by the job state machine."""

    def __init__(self, current: JobStatus, target: JobStatus) -> None:
        self.current = current
        self.target = target
        super().__init__(f"Illegal job transition {current} -> {target}")


@dataclass(frozen=True)
class JobSnapshot:
    """Point-in-time view of a job's progress."""

    job_id: uuid.UUID
    status: JobStatus
    total_rows: int = -1
    processed_rows: int = 0
    inserted_rows: int = 0
    rejected_rows: int = 0
    skipped_rows: int = 0
    batches_committed: int = 0
    failure_reason: str | None = None
    error_message: str | None = None

    @classmethod
    def from_job(cls, job: ImportJob) -> "JobSnapshot":
        return cls(
            job_id=job.id,
            status=JobStatus(job.status),
            total_rows=job.total_rows,
            processed_rows=job.processed_rows,
            inserted_rows=job.inserted_rows,
            rejected_rows=job.rejected_rows,
            skipped_rows=job.skipped_rows,
            batches_committed=job.batches_committed,
            failure_reason=job.failure_reason,
            error_message=job.error_message,
        )


class ProgressObserver(Protocol):
    """Receives a snapshot after every persisted progress change."""

    async def on_progress(self, snapshot: JobSnapshot) -> None: ...


class ProgressTracker:
    """Persists and broadcasts the progress of one import job.

    Counters only ever grow.  Every change is written to the store before
    observers are notified, so a pulled job row is never behind a pushed
    snapshot.
    """

    def __init__(
        self,
        store: RecordStore,
        job_id: uuid.UUID,
        *,
        observers: Iterable[ProgressObserver] = (),
        total_rows: int = -1,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
    ) -> None:
        self._store = store
        self._observers = list(observers)
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self.snapshot = JobSnapshot(job_id=job_id, status=JobStatus.PENDING, total_rows=total_rows)

    @property
    def job_id(self) -> uuid.UUID:
        return self.snapshot.job_id

    @property
    def status(self) -> JobStatus:
        return self.snapshot.status

    def add_observer(self, observer: ProgressObserver) -> None:
        self._observers.append(observer)

    def _transition(self, target: JobStatus) -> None:
        current = self.snapshot.status
        if target not in _TRANSITIONS[current]:
            raise InvalidJobTransition(current, target)

    async def _persist(self, **fields: Any) -> None:
        await call_with_retry(
            lambda: self._store.update_job(self.job_id, **fields),
            description=f"Job {self.job_id} update",
            max_attempts=self._max_attempts,
            base_delay=self._base_delay,
        )

    async def _notify(self) -> None:
        for observer in self._observers:
            try:
                await observer.on_progress(self.snapshot)
            except Exception:
                logger.exception(f"Progress observer {observer!r} failed for job {self.job_id}")

    async def start(self, total_rows: int | None = None) -> None:
        """Move the job to PROCESSING."""
        self._transition(JobStatus.PROCESSING)
        if total_rows is None:
            total_rows = self.snapshot.total_rows
        await self._persist(status=JobStatus.PROCESSING.value, total_rows=total_rows, started_at=datetime.now(UTC))
        self.snapshot = replace(self.snapshot, status=JobStatus.PROCESSING, total_rows=total_rows)
        logger.info(f"Import job {self.job_id} started (total_rows={total_rows})")
        await self._notify()

    async def record_batch(
        self, *, processed: int, inserted: int, rejected: int, skipped: int = 0, new_batch: bool = True
    ) -> None:
        """Add one finished batch's deltas to the cumulative counters.

        ``new_batch=False`` records trailing rows that never reached a
        batch (duplicates or skipped rows after the last write).

        Raises:
            InvalidJobTransition: If the job is not PROCESSING.
            ValueError: If any delta is negative.
        """
        if self.snapshot.status is not JobStatus.PROCESSING:
            raise InvalidJobTransition(self.snapshot.status, JobStatus.PROCESSING)
        if min(processed, inserted, rejected, skipped) < 0:
            msg = "Progress deltas must be non-negative"
            raise ValueError(msg)

        updated = replace(
            self.snapshot,
            processed_rows=self.snapshot.processed_rows + processed,
            inserted_rows=self.snapshot.inserted_rows + inserted,
            rejected_rows=self.snapshot.rejected_rows + rejected,
            skipped_rows=self.snapshot.skipped_rows + skipped,
            batches_committed=self.snapshot.batches_committed + int(new_batch),
        )
        await self._persist(
            processed_rows=updated.processed_rows,
            inserted_rows=updated.inserted_rows,
            rejected_rows=updated.rejected_rows,
            skipped_rows=updated.skipped_rows,
            batches_committed=updated.batches_committed,
        )
        self.snapshot = updated
        await self._notify()

    async def complete(self, *, total_rows: int | None = None, error_log: dict | None = None) -> None:
        """Mark the job COMPLETED; ``total_rows`` defaults to rows processed."""
        self._transition(JobStatus.COMPLETED)
        if total_rows is None:
            total_rows = self.snapshot.processed_rows
        await self._persist(
            status=JobStatus.COMPLETED.value,
            total_rows=total_rows,
            error_log=error_log,
            completed_at=datetime.now(UTC),
        )
        self.snapshot = replace(self.snapshot, status=JobStatus.COMPLETED, total_rows=total_rows)
        logger.info(
            f"Import job {self.job_id} completed: {self.snapshot.processed_rows} processed, "
            f"{self.snapshot.inserted_rows} inserted, {self.snapshot.rejected_rows} rejected, "
            f"{self.snapshot.skipped_rows} skipped"
        )
        await self._notify()

    async def fail(self, reason: str, message: str, *, error_log: dict | None = None) -> None:
        """Mark the job FAILED.

        The in-memory snapshot always ends FAILED.  If the store cannot
        record the failure, the error is logged rather than raised so the
        original failure is the one reported.
        """
        self._transition(JobStatus.FAILED)
        self.snapshot = replace(self.snapshot, status=JobStatus.FAILED, failure_reason=reason, error_message=message)
        try:
            await self._persist(
                status=JobStatus.FAILED.value,
                failure_reason=reason,
                error_message=message,
                error_log=error_log,
                completed_at=datetime.now(UTC),
            )
        except StoreError:
            logger.exception(f"Could not persist failure of import job {self.job_id}")
        logger.error(f"Import job {self.job_id} failed ({reason}): {message}")
        await self._notify()
