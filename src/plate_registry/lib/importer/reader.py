"""Bounded-mode source reader.

Loads the whole file into memory and splits it into one record per
physical line, the same way the streaming reader does, then squares the
rows to the header width with pandas.  Records carry their physical line
numbers so audit entries match the streaming reader line for line.
"""

from __future__ import annotations

from collections.abc import Iterator
from dataclasses import dataclass, field
from pathlib import Path
from typing import BinaryIO

import pandas as pd
from loguru import logger

from plate_registry.lib.importer.errors import HeaderError, StreamReadError
from plate_registry.lib.importer.normalizer import HeaderMap, build_header_map, detect_delimiter, split_fields


@dataclass
class BoundedSource:
    """A fully parsed file.

    Attributes:
        header: Resolved header map.
        records: ``(source_line, values)`` for every line after the header.
    """

    header: HeaderMap
    records: list[tuple[int, list[str | None]]] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.records)

    def __iter__(self) -> Iterator[tuple[int, list[str | None]]]:
        return iter(self.records)


def read_source_bytes(source: Path | str | bytes | BinaryIO) -> bytes:
    """Read a path, raw bytes, or binary file object fully into memory."""
    try:
        if isinstance(source, bytes | bytearray):
            return bytes(source)
        if isinstance(source, str | Path):
            return Path(source).read_bytes()
        return source.read()
    except OSError as exc:
        msg = f"Cannot read import source: {exc}"
        raise StreamReadError(msg) from exc


def decode_source(data: bytes) -> str:
    """Decode UTF-8 (optionally BOM-prefixed) file content."""
    try:
        return data.decode("utf-8-sig")
    except UnicodeDecodeError as exc:
        msg = f"Source is not valid UTF-8 (byte offset {exc.start})"
        raise StreamReadError(msg) from exc


def parse_bounded(source: Path | str | bytes | BinaryIO) -> BoundedSource:
    """Parse an entire delimited file into memory.

    Args:
        source: Path, raw bytes, or binary file object.

    Returns:
        The header map and every record with its 1-based line number.

    Raises:
        HeaderError: If the file has no header or fewer than two columns.
        StreamReadError: If the file cannot be read, decoded, or parsed.
    """
    text = decode_source(read_source_bytes(source))
    lines = [line.removesuffix("\r") for line in text.split("\n")]
    if lines and not lines[-1]:
        lines.pop()

    leading_blank = 0
    for line in lines:
        if line.strip():
            break
        leading_blank += 1
    else:
        msg = "Source is empty; a header row is required"
        raise HeaderError(msg)

    header_line = lines[leading_blank]
    delimiter = detect_delimiter(header_line)
    header_cells = split_fields(header_line, delimiter)
    header = build_header_map(header_cells, delimiter)
    width = len(header_cells)
    header_line_no = leading_blank + 1

    logger.info(f"Parsing bounded source with delimiter={delimiter!r}, columns={list(header.columns)}")

    # One record per physical line, split exactly as the streaming reader
    # splits it; a stray quote never swallows the lines after it.
    raw_rows = [split_fields(line, delimiter) for line in lines[leading_blank + 1 :]]

    # Square the ragged rows to the header width: missing cells become NaN,
    # extra trailing cells are dropped.
    frame = pd.DataFrame(raw_rows, dtype=object).reindex(columns=range(width))

    records: list[tuple[int, list[str | None]]] = []
    for offset, values in enumerate(frame.itertuples(index=False, name=None), start=1):
        cells = [None if pd.isna(v) else str(v) for v in values]
        records.append((header_line_no + offset, cells))

    logger.info(f"Parsed {len(records)} data lines")
    return BoundedSource(header=header, records=records)
