"""Chunk manifest format, range mapping and lazy reassembly."""

from permadeploy_core.reassembly.helper import (
    generate_helper_script,
    helper_bytes,
    helper_hash,
)
from permadeploy_core.reassembly.manifest import ChunkEntry, ChunkManifest
from permadeploy_core.reassembly.ranges import (
    ByteRange,
    ChunkSlice,
    chunks_for_range,
    extracted_size,
    parse_range_header,
)
from permadeploy_core.reassembly.streamer import (
    ChunkCache,
    ChunkFetcher,
    ChunkStreamer,
    HttpChunkFetcher,
)

__all__ = [
    "ByteRange",
    "ChunkCache",
    "ChunkEntry",
    "ChunkFetcher",
    "ChunkManifest",
    "ChunkSlice",
    "ChunkStreamer",
    "HttpChunkFetcher",
    "chunks_for_range",
    "extracted_size",
    "generate_helper_script",
    "helper_bytes",
    "helper_hash",
    "parse_range_header",
]
