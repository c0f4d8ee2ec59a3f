"""Audit trail for rejected rows and its plain-text report.

Entries are kept up to a cap so pathological files cannot exhaust memory;
per-reason tallies keep counting past the cap and the report header notes
the truncation.
"""

from __future__ import annotations

from collections import Counter
from collections.abc import Iterator, Mapping
from typing import Any

from plate_registry.lib.importer.types import AuditEntry, ImportRow, ReasonCode

DEFAULT_MAX_ENTRIES = 50_000

_RULE = "=" * 60
_TITLE = "PLATE IMPORT AUDIT REPORT"


class AuditReporter:
    """Accumulates rejection entries and run tallies for one import.

    Attributes:
        max_entries: Cap on stored entries.
        raw_rows: Non-blank data lines read from the source.
        skipped_rows: Rows dropped for a missing key (not duplicates).
        inserted_rows: Rows committed to the store.
    """

    def __init__(self, max_entries: int = DEFAULT_MAX_ENTRIES) -> None:
        if max_entries <= 0:
            msg = "max_entries must be positive"
            raise ValueError(msg)
        self.max_entries = max_entries
        self.raw_rows = 0
        self.skipped_rows = 0
        self.inserted_rows = 0
        self._entries: list[AuditEntry] = []
        self._counts: Counter[ReasonCode] = Counter()

    @property
    def entries(self) -> list[AuditEntry]:
        return list(self._entries)

    @property
    def total_rejected(self) -> int:
        return sum(self._counts.values())

    @property
    def truncated(self) -> bool:
        return self.total_rejected > len(self._entries)

    def count(self, reason: ReasonCode) -> int:
        return self._counts[reason]

    def record(self, entry: AuditEntry) -> None:
        """Append an entry, or only tally it once the cap is reached."""
        self._counts[entry.reason_code] += 1
        if len(self._entries) < self.max_entries:
            self._entries.append(entry)

    def record_row(self, row: ImportRow, reason: ReasonCode) -> None:
        self.record(
            AuditEntry(
                source_line=row.source_line,
                primary_key=row.primary_key,
                secondary_key=row.secondary_key,
                reason_code=reason,
            )
        )

    def summary(self) -> dict[str, int]:
        """Aggregate counts shown at the top of the report."""
        return {
            "total_raw_rows": self.raw_rows,
            "skipped_rows": self.skipped_rows,
            "inserted": self.inserted_rows,
            "duplicate_in_file": self._counts[ReasonCode.FILE_DUPLICATE_PRIMARY]
            + self._counts[ReasonCode.FILE_DUPLICATE_SECONDARY],
            "duplicate_in_store": self._counts[ReasonCode.STORE_DUPLICATE],
            "concurrent_conflict": self._counts[ReasonCode.CONCURRENT_CONFLICT],
        }

    def iter_lines(self, job_id: object | None = None) -> Iterator[str]:
        """Yield the report one newline-terminated line at a time."""
        summary = self.summary()
        yield f"{_TITLE}\n"
        if job_id is not None:
            yield f"JOB: {job_id}\n"
        yield f"{_RULE}\n"
        yield f"Total raw rows:          {summary['total_raw_rows']}\n"
        yield f"Skipped (missing key):   {summary['skipped_rows']}\n"
        yield f"Inserted:                {summary['inserted']}\n"
        yield f"Duplicate in file:       {summary['duplicate_in_file']}\n"
        yield f"Duplicate in store:      {summary['duplicate_in_store']}\n"
        yield f"Concurrent conflict:     {summary['concurrent_conflict']}\n"
        if self.truncated:
            omitted = self.total_rejected - len(self._entries)
            yield f"NOTE: truncated after {self.max_entries} entries ({omitted} rejected rows not listed)\n"
        yield f"{_RULE}\n"
        yield "\n"
        for entry in self._entries:
            yield (
                f"ROW {entry.source_line}: [Plate: {entry.primary_key}] [MV: {entry.secondary_key}]"
                f" - REASON: {entry.reason_code.value}\n"
            )

    def render(self, job_id: object | None = None) -> str:
        return "".join(self.iter_lines(job_id))

    def to_error_log(self) -> dict[str, Any]:
        """Serialize for the job's JSON ``error_log`` column."""
        return {
            "summary": self.summary(),
            "reason_counts": {reason.value: n for reason, n in self._counts.items()},
            "max_entries": self.max_entries,
            "truncated": self.truncated,
            "entries": [e.to_dict() for e in self._entries],
        }

    @classmethod
    def from_error_log(cls, error_log: Mapping[str, Any] | None) -> AuditReporter:
        """Rebuild a reporter from a persisted ``error_log`` (None gives an empty one)."""
        if not error_log:
            return cls()
        reporter = cls(max_entries=int(error_log.get("max_entries", DEFAULT_MAX_ENTRIES)))
        summary = error_log.get("summary", {})
        reporter.raw_rows = int(summary.get("total_raw_rows", 0))
        reporter.skipped_rows = int(summary.get("skipped_rows", 0))
        reporter.inserted_rows = int(summary.get("inserted", 0))
        reporter._entries = [AuditEntry.from_dict(e) for e in error_log.get("entries", [])]
        reporter._counts = Counter({ReasonCode(k): int(v) for k, v in error_log.get("reason_counts", {}).items()})
        return reporter
