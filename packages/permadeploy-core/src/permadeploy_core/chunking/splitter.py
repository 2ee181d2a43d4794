"""Chunk Splitter: divide oversized payloads into an ordered, bounded sequence."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import PurePosixPath

from permadeploy_core.constants import (
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CHUNK_THRESHOLD,
    MAX_PROGRESSIVE_CHUNK_SIZE,
    PROGRESSIVE_CHUNK_SCHEDULE,
    VIDEO_FILE_EXTENSIONS,
)
from permadeploy_core.scheduling import is_root_document


@dataclass(frozen=True)
class Chunk:
    index: int
    offset: int
    data: bytes

    @property
    def size(self) -> int:
        return len(self.data)


def is_streaming_media(path: str) -> bool:
    return PurePosixPath(path).suffix.lower() in VIDEO_FILE_EXTENSIONS


def should_chunk(size: int, path: str, threshold: int = DEFAULT_CHUNK_THRESHOLD) -> bool:
    """Root documents are never chunked; everything else only above *threshold*."""
    if is_root_document(path):
        return False
    return size > threshold


def chunk_sizes(total: int, path: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[int]:
    """Sizes of the chunks *total* bytes of *path* are split into.

    Streaming media uses the progressive schedule (small first chunks for a
    fast first byte, then constant at the schedule maximum); everything else
    uses uniform *chunk_size* pieces with a short final chunk.
    """
    if chunk_size <= 0:
        raise ValueError(f"chunk_size must be positive, got {chunk_size}")
    if total < 0:
        raise ValueError(f"total must be non-negative, got {total}")

    sizes: list[int] = []
    remaining = total
    progressive = is_streaming_media(path)
    i = 0
    while remaining > 0:
        if progressive:
            nominal = (
                PROGRESSIVE_CHUNK_SCHEDULE[i]
                if i < len(PROGRESSIVE_CHUNK_SCHEDULE)
                else MAX_PROGRESSIVE_CHUNK_SIZE
            )
            nominal = min(nominal, chunk_size)
        else:
            nominal = chunk_size
        size = min(nominal, remaining)
        sizes.append(size)
        remaining -= size
        i += 1
    return sizes


def split(data: bytes, path: str, chunk_size: int = DEFAULT_CHUNK_SIZE) -> list[Chunk]:
    """Split *data* into index-ordered chunks whose concatenation is *data*."""
    chunks: list[Chunk] = []
    offset = 0
    for index, size in enumerate(chunk_sizes(len(data), path, chunk_size)):
        chunks.append(Chunk(index=index, offset=offset, data=data[offset : offset + size]))
        offset += size
    return chunks
