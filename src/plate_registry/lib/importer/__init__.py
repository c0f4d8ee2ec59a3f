"""Importer library public API.

Provides plate CSV parsing (bounded and streaming), row normalization,
intra-file deduplication, and the rejected-row audit trail.
"""

from plate_registry.lib.importer.audit import AuditReporter
from plate_registry.lib.importer.dedup import LocalDeduplicator
from plate_registry.lib.importer.normalizer import build_header_map, is_blank, normalize_record
from plate_registry.lib.importer.reader import parse_bounded
from plate_registry.lib.importer.stream import iter_bytes_chunks, iter_file_chunks, iter_lines, iter_stream_records

__all__ = [
    "AuditReporter",
    "LocalDeduplicator",
    "build_header_map",
    "is_blank",
    "iter_bytes_chunks",
    "iter_file_chunks",
    "iter_lines",
    "iter_stream_records",
    "normalize_record",
    "parse_bounded",
]
