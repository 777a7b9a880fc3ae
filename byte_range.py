"""Parsing of single-range ``Range: bytes=...`` request headers."""

from __future__ import annotations

from dataclasses import dataclass

from errors import UnsatisfiableRange


@dataclass(slots=True, frozen=True)
class ByteRange:
    start: int
    end: int
    total: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.total}"

    @classmethod
    def whole(cls, total: int) -> "ByteRange":
        return cls(start=0, end=total - 1, total=total)


def _parse_offset(token: str, total: int) -> int:
    if not (token.isascii() and token.isdigit()):
        raise UnsatisfiableRange(f"Invalid range offset: {token!r}", total=total)
    return int(token)


def parse_range_header(header: str, total: int) -> ByteRange:
    """Parse ``header`` against a file of ``total`` bytes.

    Supports ``bytes=start-end``, ``bytes=start-`` and ``bytes=-suffix``. The
    end offset is clamped to the last byte. Multiple ranges are not supported.
    """
    value = header.strip()
    unit, sep, range_set = value.partition("=")
    if not sep or unit.strip().lower() != "bytes":
        raise UnsatisfiableRange("Only byte ranges are supported", total=total)

    range_set = range_set.strip()
    if "," in range_set:
        raise UnsatisfiableRange("Multiple ranges are not supported", total=total)

    first, dash, last = range_set.partition("-")
    if not dash:
        raise UnsatisfiableRange("Range is missing '-'", total=total)
    first = first.strip()
    last = last.strip()

    if total <= 0:
        raise UnsatisfiableRange("Empty file has no satisfiable range", total=total)

    if not first:
        suffix_length = _parse_offset(last, total)
        if suffix_length == 0:
            raise UnsatisfiableRange("Zero-length suffix range", total=total)
        start = max(0, total - suffix_length)
        return ByteRange(start=start, end=total - 1, total=total)

    start = _parse_offset(first, total)
    if start >= total:
        raise UnsatisfiableRange("Range start is beyond end of file", total=total)

    if not last:
        return ByteRange(start=start, end=total - 1, total=total)

    end = _parse_offset(last, total)
    if end < start:
        raise UnsatisfiableRange("Range end precedes start", total=total)
    return ByteRange(start=start, end=min(end, total - 1), total=total)
