"""Splitting of files too large for a single carrier."""

from permadeploy_core.chunking.splitter import (
    Chunk,
    chunk_sizes,
    is_streaming_media,
    should_chunk,
    split,
)

__all__ = ["Chunk", "chunk_sizes", "is_streaming_media", "should_chunk", "split"]
