"""Reference graph construction for a build tree."""

from permadeploy_core.analysis.content_types import content_type_for
from permadeploy_core.analysis.extractors import EXTRACTORS, ReferenceExtractor, extractor_for
from permadeploy_core.analysis.models import (
    AnalysisResult,
    DependencyGraph,
    DependencyNode,
    FileReference,
)
from permadeploy_core.analysis.resolver import resolve_reference, should_skip
from permadeploy_core.analysis.scanner import (
    analyze_tree,
    compute_hash,
    extract_references,
    scan_tree,
)

__all__ = [
    "AnalysisResult",
    "DependencyGraph",
    "DependencyNode",
    "EXTRACTORS",
    "FileReference",
    "ReferenceExtractor",
    "analyze_tree",
    "compute_hash",
    "content_type_for",
    "extract_references",
    "extractor_for",
    "resolve_reference",
    "scan_tree",
    "should_skip",
]
