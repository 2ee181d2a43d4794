"""Lazy, cache-first delivery of chunked files and byte ranges."""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

import httpx

from permadeploy_core.errors import IntegrityError, TransientNetworkError
from permadeploy_core.reassembly.manifest import ChunkEntry, ChunkManifest
from permadeploy_core.reassembly.ranges import chunks_for_range

logger = logging.getLogger(__name__)


@runtime_checkable
class ChunkFetcher(Protocol):
    async def fetch(self, url_path: str) -> bytes: ...


class HttpChunkFetcher:
    """Fetches chunk bytes from a content delivery service via httpx."""

    def __init__(
        self,
        base_url: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._client = client
        self._timeout = timeout

    async def fetch(self, url_path: str) -> bytes:
        url = f"{self._base_url}{url_path}"
        try:
            if self._client is not None:
                resp = await self._client.get(url, timeout=self._timeout)
            else:
                async with httpx.AsyncClient() as client:
                    resp = await client.get(url, timeout=self._timeout)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise TransientNetworkError(
                f"Failed to fetch chunk {url} ({e.response.status_code})", e
            ) from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Failed to fetch chunk {url}: {e}", e) from e
        return resp.content


class ChunkCache:
    """In-memory LRU cache of chunk bytes bounded by a byte budget."""

    def __init__(self, max_bytes: int = 64 * 1024 * 1024) -> None:
        self.max_bytes = max_bytes
        self._entries: OrderedDict[str, bytes] = OrderedDict()
        self._size = 0

    def get(self, key: str) -> bytes | None:
        data = self._entries.get(key)
        if data is not None:
            self._entries.move_to_end(key)
        return data

    def put(self, key: str, data: bytes) -> None:
        if len(data) > self.max_bytes:
            return
        if key in self._entries:
            self._size -= len(self._entries.pop(key))
        self._entries[key] = data
        self._size += len(data)
        while self._size > self.max_bytes:
            _, evicted = self._entries.popitem(last=False)
            self._size -= len(evicted)

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def size(self) -> int:
        return self._size


class ChunkStreamer:
    """Produces the bytes of a chunked file one chunk at a time.

    Each chunk is fetched only when the consumer asks for the next piece, so
    memory stays bounded by one chunk regardless of file or range size.
    Iteration can be restarted by calling the stream method again.
    """

    def __init__(self, fetcher: ChunkFetcher, cache: ChunkCache | None = None) -> None:
        self._fetcher = fetcher
        self._cache = cache if cache is not None else ChunkCache()

    async def fetch_chunk(self, chunk: ChunkEntry) -> bytes:
        cached = self._cache.get(chunk.url_path)
        if cached is not None:
            return cached
        data = await self._fetcher.fetch(chunk.url_path)
        if len(data) != chunk.size:
            raise IntegrityError(
                f"Chunk {chunk.index} at {chunk.url_path} is {len(data)} bytes, "
                f"manifest says {chunk.size}"
            )
        self._cache.put(chunk.url_path, data)
        return data

    async def stream_range(
        self, manifest: ChunkManifest, start: int, end: int
    ) -> AsyncIterator[bytes]:
        for piece in chunks_for_range(manifest, start, end):
            data = await self.fetch_chunk(piece.chunk)
            yield data[piece.slice_start : piece.slice_end + 1]

    async def stream_full(self, manifest: ChunkManifest) -> AsyncIterator[bytes]:
        if manifest.total_size == 0:
            return
        async for piece in self.stream_range(manifest, 0, manifest.total_size - 1):
            yield piece

    async def read_range(self, manifest: ChunkManifest, start: int, end: int) -> bytes:
        return b"".join([piece async for piece in self.stream_range(manifest, start, end)])

    async def prefetch(self, manifest: ChunkManifest, indices: list[int] | None = None) -> int:
        """Warm the cache for the given chunk indices (all by default).

        Prefetch is best-effort: failures are logged and counted, not raised.
        Returns the number of chunks that could not be fetched.
        """
        wanted = [c for c in manifest.chunks if indices is None or c.index in indices]
        pending = [c for c in wanted if c.url_path not in self._cache]
        results = await asyncio.gather(
            *(self.fetch_chunk(c) for c in pending), return_exceptions=True
        )
        failures = 0
        for chunk, result in zip(pending, results):
            if isinstance(result, Exception):
                failures += 1
                logger.warning("Prefetch failed for %s: %s", chunk.url_path, result)
        return failures
