"""Byte-range to chunk mapping."""

from __future__ import annotations

import re
from dataclasses import dataclass

from permadeploy_core.reassembly.manifest import ChunkEntry, ChunkManifest

_RANGE_HEADER = re.compile(r"^\s*bytes\s*=\s*(\d*)\s*-\s*(\d*)\s*$")


@dataclass(frozen=True)
class ByteRange:
    start: int
    end: int

    @property
    def length(self) -> int:
        return self.end - self.start + 1


@dataclass(frozen=True)
class ChunkSlice:
    """A chunk needed for a range, with the inclusive slice bounds inside it."""

    chunk: ChunkEntry
    file_start: int
    file_end: int
    slice_start: int
    slice_end: int

    @property
    def length(self) -> int:
        return self.slice_end - self.slice_start + 1


def parse_range_header(header: str, total_size: int) -> ByteRange | None:
    """Parse a single ``bytes=a-b`` range; None when invalid or unsatisfiable.

    ``bytes=a-`` runs to the end of the file; ``bytes=-n`` is the last n bytes.
    An end past the file is clamped to the last byte.
    """
    m = _RANGE_HEADER.match(header)
    if not m or total_size <= 0:
        return None
    first, last = m.group(1), m.group(2)
    if not first and not last:
        return None
    if not first:
        suffix = int(last)
        if suffix == 0:
            return None
        return ByteRange(max(total_size - suffix, 0), total_size - 1)
    start = int(first)
    end = int(last) if last else total_size - 1
    end = min(end, total_size - 1)
    if start > end or start >= total_size:
        return None
    return ByteRange(start, end)


def chunks_for_range(manifest: ChunkManifest, start: int, end: int) -> list[ChunkSlice]:
    """Walk chunks in index order and select those intersecting ``[start, end]``."""
    if start < 0 or end < start or end >= manifest.total_size:
        raise ValueError(
            f"Range [{start}, {end}] outside file of {manifest.total_size} bytes"
        )
    needed: list[ChunkSlice] = []
    offset = 0
    for chunk in sorted(manifest.chunks, key=lambda c: c.index):
        chunk_start = offset
        chunk_end = offset + chunk.size - 1
        if chunk_end >= start and chunk_start <= end:
            needed.append(
                ChunkSlice(
                    chunk=chunk,
                    file_start=chunk_start,
                    file_end=chunk_end,
                    slice_start=max(start - chunk_start, 0),
                    slice_end=min(end - chunk_start, chunk.size - 1),
                )
            )
        offset += chunk.size
        if offset > end:
            break
    return needed


def extracted_size(slices: list[ChunkSlice]) -> int:
    return sum(s.length for s in slices)
