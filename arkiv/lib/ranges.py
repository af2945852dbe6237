"""HTTP ``Range`` header handling for media delivery."""

from __future__ import annotations

import re
from dataclasses import dataclass

from arkiv.lib.errors import RangeNotSatisfiableError

_SINGLE_RANGE = re.compile(r"^bytes=(\d*)-(\d*)$")


@dataclass(frozen=True)
class ByteRange:
    """An inclusive byte window ``start..end`` of a ``total``-byte resource."""

    start: int
    end: int
    total: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1

    @property
    def content_range(self) -> str:
        return f"bytes {self.start}-{self.end}/{self.total}"

    def slice(self, data: bytes) -> bytes:
        return data[self.start:self.end + 1]


def parse_range(header: str | None, total: int) -> ByteRange | None:
    """Resolve a ``Range`` header against a resource of ``total`` bytes.

    Returns None when there is no usable single range (absent, malformed or
    multi-range headers), which means "serve the full body". Raises
    ``RangeNotSatisfiableError`` when the range is well formed but lies
    outside the resource.
    """
    if not header:
        return None

    match = _SINGLE_RANGE.match(header.strip().replace(" ", ""))
    if match is None:
        return None

    first, last = match.groups()
    if not first and not last:
        return None

    if not first:
        # Suffix range: the final N bytes
        suffix = int(last)
        if suffix == 0 or total == 0:
            raise RangeNotSatisfiableError(total)
        return ByteRange(start=max(total - suffix, 0), end=total - 1, total=total)

    start = int(first)
    end = int(last) if last else total - 1
    if last and end < start:
        return None
    if start >= total:
        raise RangeNotSatisfiableError(total)
    return ByteRange(start=start, end=min(end, total - 1), total=total)
