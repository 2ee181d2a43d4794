"""Incremental redeploy support: reuse decisions against the previous record."""

from permadeploy_core.caching.analyzer import (
    CacheAnalysis,
    ReuseDecision,
    analyze_cache,
    can_reuse,
    dependency_hash,
    rebuild_manifest,
)

__all__ = [
    "CacheAnalysis",
    "ReuseDecision",
    "analyze_cache",
    "can_reuse",
    "dependency_hash",
    "rebuild_manifest",
]
