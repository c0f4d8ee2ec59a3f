"""Data types shared by the plate import pipeline.

Defines the normalized row, the rejection/audit records, and the transient
per-batch results exchanged between the prechecker, the batch writer, and
the audit reporter.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from enum import StrEnum


class KeyKind(StrEnum):
    """Which of the two unique keys a value belongs to."""

    PRIMARY = "primary"
    SECONDARY = "secondary"


class ReasonCode(StrEnum):
    """Reason a normalized row was rejected, as shown in the audit report."""

    FILE_DUPLICATE_PRIMARY = "FILE_DUPLICATE_PRIMARY"
    FILE_DUPLICATE_SECONDARY = "FILE_DUPLICATE_SECONDARY"
    STORE_DUPLICATE = "STORE_DUPLICATE"
    CONCURRENT_CONFLICT = "CONCURRENT_CONFLICT"


class ConflictReason(StrEnum):
    """Reason the batch writer skipped a row at write time."""

    ALREADY_IN_STORE = "ALREADY_IN_STORE"
    CONCURRENT_CONFLICT = "CONCURRENT_CONFLICT"

    def to_reason_code(self) -> ReasonCode:
        if self is ConflictReason.ALREADY_IN_STORE:
            return ReasonCode.STORE_DUPLICATE
        return ReasonCode.CONCURRENT_CONFLICT


class RowDefect(StrEnum):
    """Row-level defect that drops a record before it enters the pipeline."""

    MALFORMED = "MALFORMED"


@dataclass(frozen=True)
class ImportRow:
    """One normalized candidate record.

    Attributes:
        primary_key: Upper-cased plate number.
        secondary_key: Upper-cased MV file number.
        attributes: Auxiliary fields keyed by canonical column name.
        source_line: 1-based physical line in the source file (header is line 1).
    """

    primary_key: str
    secondary_key: str
    attributes: Mapping[str, str] = field(default_factory=dict)
    source_line: int = 0

    def __post_init__(self) -> None:
        if not self.primary_key or not self.secondary_key:
            msg = "primary_key and secondary_key must both be non-empty"
            raise ValueError(msg)

    def key(self, kind: KeyKind) -> str:
        return self.primary_key if kind is KeyKind.PRIMARY else self.secondary_key


@dataclass(frozen=True)
class RowRejection:
    """A raw record that could not be normalized."""

    source_line: int
    reason: RowDefect
    detail: str


@dataclass(frozen=True)
class AuditEntry:
    """One rejected row in the audit trail."""

    source_line: int
    primary_key: str
    secondary_key: str
    reason_code: ReasonCode

    def to_dict(self) -> dict[str, object]:
        return {
            "source_line": self.source_line,
            "primary_key": self.primary_key,
            "secondary_key": self.secondary_key,
            "reason_code": self.reason_code.value,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, object]) -> AuditEntry:
        return cls(
            source_line=int(data["source_line"]),  # type: ignore[call-overload]
            primary_key=str(data["primary_key"]),
            secondary_key=str(data["secondary_key"]),
            reason_code=ReasonCode(str(data["reason_code"])),
        )


@dataclass(frozen=True)
class ExistenceResult:
    """Outcome of one precheck: key -> already present, per key kind."""

    primary: Mapping[str, bool]
    secondary: Mapping[str, bool]

    def is_present(self, row: ImportRow) -> bool:
        return self.primary.get(row.primary_key, False) or self.secondary.get(row.secondary_key, False)


@dataclass(frozen=True)
class RejectedRow:
    """A row the batch writer could not insert."""

    row: ImportRow
    reason: ConflictReason
    key_kind: KeyKind

    @property
    def key(self) -> str:
        return self.row.key(self.key_kind)


@dataclass
class WriteOutcome:
    """Per-batch result of a conditional insert.

    Attributes:
        batch_number: 1-based batch index within the run.
        inserted_keys: Primary keys committed by this batch.
        rejected: Rows skipped at write time, with reason and conflicting key.
    """

    batch_number: int
    inserted_keys: list[str] = field(default_factory=list)
    rejected: list[RejectedRow] = field(default_factory=list)

    @property
    def inserted_count(self) -> int:
        return len(self.inserted_keys)

    @property
    def rejected_keys(self) -> list[tuple[str, ConflictReason]]:
        return [(r.key, r.reason) for r in self.rejected]
