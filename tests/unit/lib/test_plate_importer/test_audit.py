"""Unit tests for the audit reporter."""

import pytest

from plate_registry.lib.importer.audit import AuditReporter
from plate_registry.lib.importer.types import AuditEntry, ImportRow, ReasonCode


def _entry(line: int, reason: ReasonCode = ReasonCode.STORE_DUPLICATE) -> AuditEntry:
    return AuditEntry(source_line=line, primary_key=f"P{line}", secondary_key=f"M{line}", reason_code=reason)


class TestAuditReporter:
    """Tests for entry accumulation and tallies."""

    def test_records_entries_and_counts(self) -> None:
        reporter = AuditReporter()
        reporter.record(_entry(3, ReasonCode.FILE_DUPLICATE_PRIMARY))
        reporter.record(_entry(4, ReasonCode.FILE_DUPLICATE_SECONDARY))
        reporter.record(_entry(5, ReasonCode.STORE_DUPLICATE))

        assert reporter.total_rejected == 3
        assert [e.source_line for e in reporter.entries] == [3, 4, 5]
        assert reporter.summary()["duplicate_in_file"] == 2
        assert reporter.summary()["duplicate_in_store"] == 1
        assert not reporter.truncated

    def test_cap_truncates_entries_but_keeps_counting(self) -> None:
        reporter = AuditReporter(max_entries=2)
        for line in range(2, 7):
            reporter.record(_entry(line, ReasonCode.CONCURRENT_CONFLICT))

        assert len(reporter.entries) == 2
        assert reporter.count(ReasonCode.CONCURRENT_CONFLICT) == 5
        assert reporter.truncated
        assert "NOTE: truncated after 2 entries (3 rejected rows not listed)" in reporter.render()

    def test_record_row(self) -> None:
        reporter = AuditReporter()
        reporter.record_row(ImportRow("ABC", "MV1", source_line=9), ReasonCode.STORE_DUPLICATE)
        assert reporter.entries == [AuditEntry(9, "ABC", "MV1", ReasonCode.STORE_DUPLICATE)]

    def test_max_entries_must_be_positive(self) -> None:
        with pytest.raises(ValueError, match="max_entries"):
            AuditReporter(max_entries=0)


class TestRender:
    """Tests for the plain-text report."""

    def test_report_layout(self) -> None:
        reporter = AuditReporter()
        reporter.raw_rows = 5
        reporter.inserted_rows = 3
        reporter.record(AuditEntry(4, "ABC123", "MV-1", ReasonCode.FILE_DUPLICATE_PRIMARY))
        reporter.record(AuditEntry(6, "XYZ9", "MV-5", ReasonCode.STORE_DUPLICATE))

        report = reporter.render("job-1")
        lines = report.splitlines()

        assert lines[0] == "PLATE IMPORT AUDIT REPORT"
        assert lines[1] == "JOB: job-1"
        assert "Total raw rows:          5" in lines
        assert "Inserted:                3" in lines
        assert "Duplicate in file:       1" in lines
        assert "Duplicate in store:      1" in lines
        assert lines[-2] == "ROW 4: [Plate: ABC123] [MV: MV-1] - REASON: FILE_DUPLICATE_PRIMARY"
        assert lines[-1] == "ROW 6: [Plate: XYZ9] [MV: MV-5] - REASON: STORE_DUPLICATE"

    def test_iter_lines_matches_render(self) -> None:
        reporter = AuditReporter()
        reporter.record(_entry(2))
        assert "".join(reporter.iter_lines("j")) == reporter.render("j")
        assert all(line.endswith("\n") for line in reporter.iter_lines("j"))


class TestErrorLog:
    """Tests for persisting the audit trail on the job."""

    def test_error_log_rebuilds_same_report(self) -> None:
        reporter = AuditReporter(max_entries=1)
        reporter.raw_rows = 4
        reporter.skipped_rows = 1
        reporter.inserted_rows = 1
        reporter.record(_entry(2, ReasonCode.STORE_DUPLICATE))
        reporter.record(_entry(3, ReasonCode.CONCURRENT_CONFLICT))

        restored = AuditReporter.from_error_log(reporter.to_error_log())

        assert restored.render("job") == reporter.render("job")
        assert restored.truncated

    def test_missing_error_log_gives_empty_report(self) -> None:
        restored = AuditReporter.from_error_log(None)
        assert restored.total_rejected == 0
        assert restored.entries == []
