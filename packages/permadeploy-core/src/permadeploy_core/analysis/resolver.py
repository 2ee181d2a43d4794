"""Format-agnostic filtering and resolution of raw reference strings."""

from __future__ import annotations

import posixpath
from collections.abc import Iterable, Set

_SKIP_PREFIXES = ("http://", "https://", "//", "data:", "blob:", "mailto:", "tel:", "javascript:", "#")
_SKIP_MARKERS = ("__webpack_", "__NEXT_", "${")


def should_skip(ref: str) -> bool:
    """True for references that never name a file in the tree."""
    ref = ref.strip()
    if not ref:
        return True
    lowered = ref.lower()
    if lowered.startswith(_SKIP_PREFIXES):
        return True
    return any(marker in ref for marker in _SKIP_MARKERS)


def _strip_suffixes(ref: str) -> str:
    for sep in ("#", "?"):
        ref = ref.split(sep, 1)[0]
    return ref.strip()


def _normalize(path: str) -> str | None:
    normalized = posixpath.normpath(path)
    if normalized in (".", "") or normalized.startswith("../") or normalized == "..":
        return None
    return normalized.lstrip("/")


def resolve_reference(ref: str, source_path: str, known_paths: Set[str]) -> str | None:
    """Resolve *ref* found in *source_path* to a tree-relative path.

    ``/x`` resolves against the tree root; ``./x`` and ``../x`` against the
    source file's directory; bare ``x/y`` tries the source directory first
    and then the tree root. Returns None when the reference is skipped,
    escapes the root, or names no scanned file.
    """
    if should_skip(ref):
        return None
    cleaned = _strip_suffixes(ref)
    if not cleaned:
        return None

    source_dir = posixpath.dirname(source_path)

    if cleaned.startswith("/"):
        candidates = [cleaned[1:]]
    elif cleaned.startswith(("./", "../")):
        candidates = [posixpath.join(source_dir, cleaned)]
    else:
        candidates = [posixpath.join(source_dir, cleaned), cleaned]

    for candidate in candidates:
        resolved = _normalize(candidate)
        if resolved is not None and resolved in known_paths:
            return resolved
    return None


def resolve_all(
    refs: Iterable[str], source_path: str, known_paths: Set[str]
) -> list[str]:
    """Resolve and deduplicate *refs*, preserving first-seen order."""
    seen: dict[str, None] = {}
    for ref in refs:
        resolved = resolve_reference(ref, source_path, known_paths)
        if resolved is None or resolved == source_path:
            continue
        seen.setdefault(resolved, None)
    return list(seen)
