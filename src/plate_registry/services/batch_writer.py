"""Batch writer: one atomic conditional insert per batch."""

import time
import uuid
from collections.abc import Sequence

from loguru import logger

from plate_registry.lib.importer.errors import BatchWriteError
from plate_registry.lib.importer.types import ConflictReason, ImportRow, KeyKind, RejectedRow, WriteOutcome
from plate_registry.services.retry import DEFAULT_BASE_DELAY, DEFAULT_MAX_ATTEMPTS, call_with_retry
from plate_registry.services.store import RecordStore, StoreError


class BatchWriter:
    """Writes batches of rows, never inserting a row that collides on either key.

    Args:
        store: Record store to write to.
        office_id: Owning branch office stamped on every row.
        initial_status: Status stamped on every new row.
        job_id: Import job stamped on every new row.
        precheck_enabled: Whether batches were prechecked.  Write-time
            collisions are then races with other writers and are reported
            as ``CONCURRENT_CONFLICT``; otherwise as ``ALREADY_IN_STORE``.
        max_attempts: Attempts per batch on transient errors.
        base_delay: Backoff base in seconds.
    """

    def __init__(
        self,
        store: RecordStore,
        *,
        office_id: int,
        initial_status: str,
        job_id: uuid.UUID | None = None,
        precheck_enabled: bool = True,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        base_delay: float = DEFAULT_BASE_DELAY,
    ) -> None:
        self._store = store
        self._office_id = office_id
        self._initial_status = initial_status
        self._job_id = job_id
        self._max_attempts = max_attempts
        self._base_delay = base_delay
        self.conflict_reason = (
            ConflictReason.CONCURRENT_CONFLICT if precheck_enabled else ConflictReason.ALREADY_IN_STORE
        )

    async def write(self, batch_number: int, rows: Sequence[ImportRow]) -> WriteOutcome:
        """Insert one batch atomically.

        Args:
            batch_number: 1-based batch index, used in logs and errors.
            rows: Rows to insert.

        Returns:
            Inserted keys and the rows refused on key conflicts.

        Raises:
            BatchWriteError: If the store fails fatally or retries run out.
        """
        outcome = WriteOutcome(batch_number=batch_number)
        if not rows:
            return outcome

        start = time.monotonic()
        try:
            result = await call_with_retry(
                lambda: self._store.insert_batch_if_absent(
                    rows,
                    office_id=self._office_id,
                    initial_status=self._initial_status,
                    job_id=self._job_id,
                ),
                description=f"Batch {batch_number} insert",
                max_attempts=self._max_attempts,
                base_delay=self._base_delay,
            )
        except StoreError as exc:
            raise BatchWriteError(batch_number, str(exc)) from exc

        by_primary = {row.primary_key: row for row in rows}
        by_secondary = {row.secondary_key: row for row in rows}

        outcome.inserted_keys = list(result.inserted_keys)
        for conflict in result.conflicts:
            lookup = by_primary if conflict.key_kind is KeyKind.PRIMARY else by_secondary
            row = lookup.get(conflict.key)
            if row is None:
                msg = f"store reported a conflict on unknown {conflict.key_kind} key {conflict.key!r}"
                raise BatchWriteError(batch_number, msg)
            outcome.rejected.append(RejectedRow(row=row, reason=self.conflict_reason, key_kind=conflict.key_kind))

        elapsed = time.monotonic() - start
        logger.info(
            f"Batch {batch_number} committed: {outcome.inserted_count} inserted, "
            f"{len(outcome.rejected)} refused ({elapsed:.2f}s)"
        )
        if outcome.rejected and self.conflict_reason is ConflictReason.CONCURRENT_CONFLICT:
            logger.warning(f"Batch {batch_number}: {len(outcome.rejected)} rows lost a race with another writer")
        return outcome
