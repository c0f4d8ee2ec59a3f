"""Intra-file duplicate detection.

First occurrence wins: any later row that repeats either key of an
admitted row is rejected, even when its other key is new.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from plate_registry.lib.importer.audit import AuditReporter
from plate_registry.lib.importer.types import ImportRow, ReasonCode


@dataclass
class DedupKeySet:
    """Keys admitted so far in one run."""

    primary: set[str] = field(default_factory=set)
    secondary: set[str] = field(default_factory=set)

    def __len__(self) -> int:
        return len(self.primary)


class LocalDeduplicator:
    """Admits rows whose keys are new to this run and audits the rest."""

    def __init__(self, reporter: AuditReporter | None = None) -> None:
        self.keys = DedupKeySet()
        self._reporter = reporter
        self.rejected = 0

    def admit(self, row: ImportRow) -> bool:
        """Return True and remember the row's keys if neither was seen before.

        A rejected row's keys are not added, so only admitted rows
        define what counts as a repeat.
        """
        if row.primary_key in self.keys.primary:
            reason = ReasonCode.FILE_DUPLICATE_PRIMARY
        elif row.secondary_key in self.keys.secondary:
            reason = ReasonCode.FILE_DUPLICATE_SECONDARY
        else:
            self.keys.primary.add(row.primary_key)
            self.keys.secondary.add(row.secondary_key)
            return True

        self.rejected += 1
        if self._reporter is not None:
            self._reporter.record_row(row, reason)
        return False
