"""Byte-range parsing and incremental file reads for media streaming."""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from mirror.exceptions import RangeNotSatisfiable

if TYPE_CHECKING:
    from collections.abc import Iterator
    from pathlib import Path

_UNIT_PREFIX = "bytes="


@dataclass(frozen=True)
class ByteRange:
    """Inclusive byte span within a file."""

    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    def content_range(self, file_size: int) -> str:
        return f"bytes {self.start}-{self.end}/{file_size}"


def _parse_position(text: str) -> int | None:
    text = text.strip()
    if not (text.isascii() and text.isdigit()):
        return None
    return int(text)


def parse_range_header(header: str, file_size: int) -> ByteRange:
    """Parse ``bytes=<start>-<end>`` against a file of ``file_size`` bytes.

    ``end`` defaults to the last byte. Anything else (other units, multiple
    ranges, suffix ranges, reversed or out-of-bounds spans) is unsatisfiable.
    """
    value = header.strip()
    if not value.lower().startswith(_UNIT_PREFIX):
        raise RangeNotSatisfiable(file_size, header)
    span = value[len(_UNIT_PREFIX) :]
    if "," in span or span.count("-") != 1:
        raise RangeNotSatisfiable(file_size, header)

    raw_start, raw_end = span.split("-")
    start = _parse_position(raw_start)
    end = file_size - 1 if raw_end.strip() == "" else _parse_position(raw_end)
    if start is None or end is None or start > end or end >= file_size:
        raise RangeNotSatisfiable(file_size, header)
    return ByteRange(start=start, end=end)


def iter_file_range(
    path: Path, start: int, length: int, chunk_size: int = 256 * 1024
) -> Iterator[bytes]:
    """Yield ``length`` bytes of ``path`` starting at ``start``, one chunk at a time.

    Stops early if the file shrinks underneath the reader.
    """
    remaining = length
    with open(path, "rb") as fh:
        fh.seek(start)
        while remaining > 0:
            chunk = fh.read(min(chunk_size, remaining))
            if not chunk:
                break
            remaining -= len(chunk)
            yield chunk
