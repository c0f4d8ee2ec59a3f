"""Header mapping and row normalization for plate CSV files.

Maps the header line onto the two key columns (plate number and MV file)
plus auxiliary attribute columns, and turns one raw record into an
``ImportRow`` or a ``RowRejection``.
"""

from __future__ import annotations

import csv
from collections.abc import Sequence
from dataclasses import dataclass

from loguru import logger

from plate_registry.lib.importer.errors import HeaderError, StreamReadError
from plate_registry.lib.importer.types import ImportRow, RowDefect, RowRejection

# Longest physical line accepted, in characters
MAX_LINE_LENGTH = 4 * 1024 * 1024

# Value stored for blank auxiliary fields
PLACEHOLDER = "N/A"

# Canonical header spellings accepted for each key column
PRIMARY_ALIASES = frozenset({"plate_number", "plate", "plate_no", "plateno", "plate_num"})
SECONDARY_ALIASES = frozenset({"mv_file", "mv", "mvfile", "mv_file_no", "mv_file_number", "mv_number"})

# Known auxiliary attributes: canonical attribute name -> accepted header spellings
ATTRIBUTE_ALIASES: dict[str, frozenset[str]] = {
    "dealer": frozenset({"dealer", "dealer_name", "dealership"}),
}

_DELIMITERS = (",", "|", "\t")


def canonical_column(name: str) -> str:
    """Normalize a header cell: strip BOM/whitespace, lower-case, snake-case."""
    cleaned = name.replace("\ufeff", "").strip().lower()
    for sep in (" ", "-", "."):
        cleaned = cleaned.replace(sep, "_")
    while "__" in cleaned:
        cleaned = cleaned.replace("__", "_")
    return cleaned.strip("_")


def detect_delimiter(header_line: str) -> str:
    """Detect the delimiter from the header line.

    Args:
        header_line: First non-blank line of the file.

    Returns:
        The most frequent of comma, pipe, or tab.

    Raises:
        HeaderError: If no candidate delimiter occurs in the header.
    """
    counts = {d: header_line.count(d) for d in _DELIMITERS}
    delimiter = max(counts, key=counts.get)  # type: ignore[arg-type]
    if counts[delimiter] == 0:
        msg = f"Cannot detect delimiter in header {header_line[:80]!r}; at least two columns are required"
        raise HeaderError(msg)
    logger.debug(f"Detected delimiter: {delimiter!r}")
    return delimiter


def split_fields(line: str, delimiter: str) -> list[str]:
    """Split one physical line into fields, honoring double quotes.

    A quote left open at the end of the line closes there, so a quoted
    field never spans lines.
    """
    if len(line) > MAX_LINE_LENGTH:
        msg = f"Line exceeds the maximum length of {MAX_LINE_LENGTH} characters"
        raise StreamReadError(msg)
    try:
        return next(csv.reader([line], delimiter=delimiter), [])
    except csv.Error as exc:
        msg = f"Cannot split line: {exc}"
        raise StreamReadError(msg) from exc


@dataclass(frozen=True)
class HeaderMap:
    """Column positions resolved from the header line.

    Attributes:
        columns: Canonical column names in file order.
        delimiter: Field delimiter detected from the header.
        primary_index: Position of the plate number column.
        secondary_index: Position of the MV file column.
        attribute_indexes: Attribute name -> column position for every other column.
    """

    columns: tuple[str, ...]
    delimiter: str
    primary_index: int
    secondary_index: int
    attribute_indexes: dict[str, int]


def build_header_map(raw_columns: Sequence[str], delimiter: str = ",") -> HeaderMap:
    """Resolve key and attribute column positions from header cells.

    Key columns are matched by alias.  When either key column cannot be
    found, the first two columns are used positionally and the third
    column, if any, is treated as the dealer.

    Raises:
        HeaderError: If the header has fewer than two columns.
    """
    columns = tuple(canonical_column(c) for c in raw_columns)
    if len(columns) < 2:
        msg = f"Header must have at least two columns, got {len(columns)}"
        raise HeaderError(msg)

    primary_index = next((i for i, c in enumerate(columns) if c in PRIMARY_ALIASES), None)
    secondary_index = next((i for i, c in enumerate(columns) if c in SECONDARY_ALIASES), None)

    if primary_index is None or secondary_index is None:
        logger.warning(
            f"Key columns not found in header {list(columns)!r}; using columns 1 and 2 as plate_number and mv_file"
        )
        primary_index, secondary_index = 0, 1
        positional = {"dealer": 2} if len(columns) > 2 else {}
        for i, name in enumerate(columns[3:], start=3):
            if name and name not in positional:
                positional[name] = i
        return HeaderMap(columns, delimiter, primary_index, secondary_index, positional)

    attribute_indexes: dict[str, int] = {}
    for i, name in enumerate(columns):
        if i in (primary_index, secondary_index) or not name:
            continue
        attr = next((a for a, aliases in ATTRIBUTE_ALIASES.items() if name in aliases), name)
        attribute_indexes.setdefault(attr, i)
    for attr in ATTRIBUTE_ALIASES:
        if attr not in attribute_indexes:
            logger.debug(f"Header has no {attr!r} column; rows get the {PLACEHOLDER!r} placeholder")
    return HeaderMap(columns, delimiter, primary_index, secondary_index, attribute_indexes)


def _cell(values: Sequence[str | None], index: int) -> str:
    if index >= len(values):
        return ""
    value = values[index]
    return "" if value is None else str(value).strip()


def is_blank(values: Sequence[str | None]) -> bool:
    """Whether every cell in the record is empty or whitespace."""
    return all(not _cell(values, i) for i in range(len(values)))


def normalize_record(values: Sequence[str | None], header: HeaderMap, source_line: int) -> ImportRow | RowRejection:
    """Normalize one raw record.

    Keys are trimmed and upper-cased; blank auxiliary fields (and auxiliary
    fields the header does not provide) become ``PLACEHOLDER``.

    Args:
        values: Raw field values in file order.
        header: Resolved header map.
        source_line: 1-based physical line number of the record.

    Returns:
        The normalized row, or a MALFORMED rejection when a key is missing.
    """
    primary = _cell(values, header.primary_index).upper()
    secondary = _cell(values, header.secondary_index).upper()

    if not primary or not secondary:
        missing = "plate_number" if not primary else "mv_file"
        return RowRejection(source_line=source_line, reason=RowDefect.MALFORMED, detail=f"missing {missing}")

    attributes = {name: (_cell(values, idx) or PLACEHOLDER) for name, idx in header.attribute_indexes.items()}
    for attr in ATTRIBUTE_ALIASES:
        attributes.setdefault(attr, PLACEHOLDER)

    return ImportRow(
        primary_key=primary,
        secondary_key=secondary,
        attributes=attributes,
        source_line=source_line,
    )
