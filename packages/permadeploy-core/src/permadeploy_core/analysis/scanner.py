"""Reference Graph Builder: scan a build tree and link files by their references."""

from __future__ import annotations

import hashlib
import logging
import re
from pathlib import Path

from permadeploy_core.analysis.content_types import category_for, content_type_for
from permadeploy_core.analysis.extractors import extractor_for
from permadeploy_core.analysis.models import AnalysisResult, DependencyGraph, FileReference
from permadeploy_core.analysis.resolver import resolve_all
from permadeploy_core.errors import InputError

logger = logging.getLogger(__name__)

# Matched against every path component: secrets, VCS history, OS/editor metadata
DEFAULT_EXCLUDE = (
    r"^\.env",
    r"^deployment-manifest.*\.json$",
    r"^\.git",
    r"^\.DS_Store$",
    r"^Thumbs\.db$",
    r"^node_modules$",
    r"^\.vscode$",
    r"^\.idea$",
)


def compute_hash(content: bytes) -> str:
    """Full SHA-256 hex digest."""
    return hashlib.sha256(content).hexdigest()


def compute_file_hash(path: Path) -> str:
    return compute_hash(path.read_bytes())


def _compile(patterns: list[str] | tuple[str, ...]) -> list[re.Pattern[str]]:
    return [re.compile(p) for p in patterns]


def _is_excluded(rel: Path, patterns: list[re.Pattern[str]]) -> bool:
    """Check whether any component of *rel* matches one of *patterns*."""
    return any(p.search(part) for part in rel.parts for p in patterns)


def scan_tree(root: Path, exclude_patterns: list[str] | None = None) -> list[Path]:
    """List every publishable file under *root*, sorted, excluding the deny-list."""
    if not root.is_dir():
        raise InputError(f"Build directory not found: {root}")
    patterns = _compile(DEFAULT_EXCLUDE + tuple(exclude_patterns or ()))
    files: list[Path] = []
    for p in sorted(root.rglob("*")):
        if _is_excluded(p.relative_to(root), patterns):
            continue
        if p.is_file():
            files.append(p)
    return files


def extract_references(text: str, content_type: str) -> list[str]:
    """Raw references found in *text* (empty for formats with no extractor)."""
    category = category_for(content_type)
    if category is None:
        return []
    extractor = extractor_for(category)
    return extractor.extract(text) if extractor else []


def analyze_tree(root: Path, exclude_patterns: list[str] | None = None) -> AnalysisResult:
    """Scan *root*, hash every file, extract and resolve references, build the graph.

    A file that cannot be read or decoded is skipped with a warning rather
    than failing the whole analysis.
    """
    root = root.resolve()
    paths = scan_tree(root, exclude_patterns)
    known = {p.relative_to(root).as_posix() for p in paths}

    files: list[FileReference] = []
    skipped: list[str] = []
    for path in paths:
        rel = path.relative_to(root).as_posix()
        try:
            files.append(_analyze_file(path, rel, known))
        except (OSError, UnicodeDecodeError, ValueError) as e:
            logger.warning("Skipping %s: %s", rel, e)
            skipped.append(rel)

    graph = DependencyGraph(files)
    order = graph.topological_order()
    logger.info(
        "Analyzed %d files (%d skipped, %d edges)",
        len(files),
        len(skipped),
        sum(len(f.dependencies) for f in files),
    )
    return AnalysisResult(files=files, graph=graph, order=order, skipped=skipped)


def _analyze_file(path: Path, rel: str, known: set[str]) -> FileReference:
    data = path.read_bytes()
    content_type = content_type_for(rel)
    dependencies: list[str] = []
    if category_for(content_type) is not None:
        text = data.decode("utf-8")
        dependencies = resolve_all(extract_references(text, content_type), rel, known)
    return FileReference(
        original_path=rel,
        absolute_path=path,
        content_type=content_type,
        dependencies=tuple(dependencies),
        content_hash=compute_hash(data),
        size=len(data),
    )
