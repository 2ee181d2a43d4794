"""Cache Analyzer: decide which files can reuse their previous publication."""

from __future__ import annotations

import hashlib
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field

from permadeploy_core.analysis.models import DependencyGraph, FileReference
from permadeploy_core.constants import REASSEMBLY_HELPER_FILENAME, content_url_path
from permadeploy_core.errors import IntegrityError
from permadeploy_core.reassembly.helper import helper_hash
from permadeploy_core.reassembly.manifest import ChunkManifest
from permadeploy_core.record.models import InscribedFile
from permadeploy_core.scheduling import is_root_document

logger = logging.getLogger(__name__)


def dependency_hash(dependencies: tuple[str, ...] | list[str], url_map: Mapping[str, str]) -> str:
    """SHA-256 of the sorted URLs of *dependencies* that have one, joined by ``|``."""
    urls = sorted(url_map[d] for d in dependencies if d in url_map)
    return hashlib.sha256("|".join(urls).encode()).hexdigest()


@dataclass(frozen=True)
class ReuseDecision:
    reusable: bool
    reason: str
    legacy_size_match: bool = False

    def __bool__(self) -> bool:
        return self.reusable


def can_reuse(
    path: str,
    file: FileReference,
    previous: InscribedFile | None,
    url_map: Mapping[str, str],
    trust_legacy_chunks: bool = True,
) -> ReuseDecision:
    """Check whether *previous* can stand in for publishing *file* again.

    Chunked records from before content hashing was recorded only match on
    size. That is weaker than a hash match, so such decisions are flagged
    and can be refused with ``trust_legacy_chunks=False``.
    """
    if previous is None:
        return ReuseDecision(False, "no previous publication")
    if is_root_document(path):
        return ReuseDecision(False, "root document is always republished")

    legacy = False
    if previous.content_hash:
        if previous.content_hash != file.content_hash:
            return ReuseDecision(False, "content changed")
    elif previous.is_chunked and previous.chunks:
        if not trust_legacy_chunks:
            return ReuseDecision(False, "legacy chunked record without content hash")
        if previous.size != file.size:
            return ReuseDecision(False, "size changed (legacy chunked record)")
        legacy = True
    else:
        return ReuseDecision(False, "previous record has no content hash")

    if file.dependencies:
        current = dependency_hash(file.dependencies, url_map)
        if previous.dependency_hash != current:
            return ReuseDecision(False, "dependency URLs changed", legacy)

    if legacy:
        logger.warning(
            "Reusing %s from a legacy chunked record matched by size only (%d bytes)",
            path,
            file.size,
        )
        return ReuseDecision(True, "legacy size match", legacy_size_match=True)
    return ReuseDecision(True, "content and dependencies unchanged")


def rebuild_manifest(file: FileReference, previous: InscribedFile) -> ChunkManifest:
    """Reconstruct the ChunkManifest of a previously published chunked file.

    Raises IntegrityError when the stored chunk list is inconsistent.
    """
    if not previous.chunks:
        raise IntegrityError(f"Chunked record for {previous.original_path} lists no chunks")
    chunks = sorted(previous.chunks, key=lambda c: c.index)
    return ChunkManifest.from_wire(
        {
            "originalPath": previous.original_path,
            "mimeType": file.content_type,
            "totalSize": previous.size,
            "chunkSize": previous.chunk_size or chunks[0].size,
            "chunks": [
                {
                    "index": c.index,
                    "txid": c.txid,
                    "vout": c.vout,
                    "urlPath": content_url_path(c.txid, c.vout),
                    "size": c.size,
                }
                for c in chunks
            ],
        }
    )


@dataclass
class CacheAnalysis:
    reused: dict[str, InscribedFile] = field(default_factory=dict)
    cached_manifests: dict[str, ChunkManifest] = field(default_factory=dict)
    legacy_matches: list[str] = field(default_factory=list)
    helper: InscribedFile | None = None
    total_files: int = 0

    @property
    def cached_files(self) -> list[str]:
        return list(self.reused)

    @property
    def cached_count(self) -> int:
        return len(self.reused)

    @property
    def to_publish_count(self) -> int:
        return self.total_files - self.cached_count


def analyze_cache(
    order: list[str],
    graph: DependencyGraph,
    previous: Mapping[str, InscribedFile],
    content_url: str = "",
    trust_legacy_chunks: bool = True,
) -> CacheAnalysis:
    """Walk *order* (dependencies first) and collect every reusable publication.

    Reused URLs feed a working url map so each file's dependency hash is
    computed against the URLs its dependencies will actually have. Cached
    chunked files get their manifests rebuilt, and a previously published
    reassembly helper is kept only if regenerating it from those manifests
    reproduces its hash.
    """
    result = CacheAnalysis(total_files=len(order))
    url_map: dict[str, str] = {}

    for path in order:
        node = graph.get(path)
        if node is None:
            continue
        prev = previous.get(path)
        decision = can_reuse(path, node.file, prev, url_map, trust_legacy_chunks)
        if not decision or prev is None:
            continue

        if prev.is_chunked:
            try:
                result.cached_manifests[prev.url_path] = rebuild_manifest(node.file, prev)
            except IntegrityError as e:
                logger.warning("Not reusing %s: %s", path, e)
                continue
        if decision.legacy_size_match:
            result.legacy_matches.append(path)
        result.reused[path] = prev.as_cached()
        url_map[path] = prev.url_path

    prev_helper = previous.get(REASSEMBLY_HELPER_FILENAME)
    if prev_helper is not None and result.cached_manifests:
        expected = helper_hash(result.cached_manifests, content_url)
        if prev_helper.content_hash == expected:
            result.helper = prev_helper.as_cached()
        else:
            logger.info("Reassembly helper changed, it will be republished")

    logger.info(
        "Cache analysis: %d reusable, %d to publish",
        result.cached_count,
        result.to_publish_count,
    )
    return result
