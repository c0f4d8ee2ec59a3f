"""Streaming-mode source reader.

Splits an async byte stream into physical lines with a carry-over buffer,
so a line cut across two reads is emitted exactly once.  Both ``\\n`` and
``\\r\\n`` endings are accepted.
"""

from __future__ import annotations

import asyncio
import codecs
from collections.abc import AsyncIterable, AsyncIterator
from pathlib import Path

from plate_registry.lib.importer.errors import HeaderError, StreamReadError
from plate_registry.lib.importer.normalizer import (
    MAX_LINE_LENGTH,
    HeaderMap,
    build_header_map,
    detect_delimiter,
    split_fields,
)

DEFAULT_CHUNK_SIZE = 64 * 1024


async def iter_lines(
    chunks: AsyncIterable[bytes], max_line_length: int = MAX_LINE_LENGTH
) -> AsyncIterator[tuple[int, str]]:
    """Yield ``(line_number, line)`` for every physical line in the stream.

    Line numbers are 1-based and count blank lines.  Line terminators are
    stripped.

    Raises:
        StreamReadError: If the stream fails, is not valid UTF-8, or holds
            an unterminated line longer than ``max_line_length``.
    """
    decoder = codecs.getincrementaldecoder("utf-8-sig")()
    carry = ""
    line_no = 0
    try:
        async for chunk in chunks:
            if not chunk:
                continue
            parts = (carry + decoder.decode(bytes(chunk))).split("\n")
            carry = parts.pop()
            for part in parts:
                line_no += 1
                yield line_no, part.removesuffix("\r")
            if len(carry) > max_line_length:
                msg = f"Line {line_no + 1} exceeds the maximum length of {max_line_length} characters"
                raise StreamReadError(msg)
        carry += decoder.decode(b"", final=True)
    except UnicodeDecodeError as exc:
        msg = f"Source is not valid UTF-8 near line {line_no + 1}"
        raise StreamReadError(msg) from exc
    except OSError as exc:
        msg = f"Reading the source stream failed after line {line_no}: {exc}"
        raise StreamReadError(msg) from exc

    if carry:
        yield line_no + 1, carry.removesuffix("\r")


async def iter_stream_records(
    chunks: AsyncIterable[bytes],
) -> AsyncIterator[tuple[HeaderMap, int, list[str | None]]]:
    """Yield ``(header, source_line, values)`` for each data line.

    The first non-blank line is the header and is never yielded.  Blank
    lines are skipped.

    Raises:
        HeaderError: If the stream holds no header line.
    """
    header: HeaderMap | None = None
    async for line_no, line in iter_lines(chunks):
        if not line.strip():
            continue
        if header is None:
            delimiter = detect_delimiter(line)
            header = build_header_map(split_fields(line, delimiter), delimiter)
            continue
        values: list[str | None] = list(split_fields(line, header.delimiter))
        yield header, line_no, values

    if header is None:
        msg = "Source is empty; a header row is required"
        raise HeaderError(msg)


async def iter_file_chunks(path: Path, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Read a file in chunks without blocking the event loop."""
    try:
        with path.open("rb") as f:
            while chunk := await asyncio.to_thread(f.read, chunk_size):
                yield chunk
    except OSError as exc:
        msg = f"Cannot read {path}: {exc}"
        raise StreamReadError(msg) from exc


async def iter_bytes_chunks(data: bytes, chunk_size: int = DEFAULT_CHUNK_SIZE) -> AsyncIterator[bytes]:
    """Serve in-memory bytes as a chunked stream."""
    for start in range(0, len(data), chunk_size):
        yield data[start : start + chunk_size]
