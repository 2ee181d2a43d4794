"""Version Chain Manager."""

from permadeploy_core.versioning.chain import VersionChain, VersionReader
from permadeploy_core.versioning.models import (
    ChainInfo,
    VersionDetails,
    VersionEntry,
    parse_history,
    suggest_next_version,
    version_key,
)

__all__ = [
    "ChainInfo",
    "VersionChain",
    "VersionDetails",
    "VersionEntry",
    "VersionReader",
    "parse_history",
    "suggest_next_version",
    "version_key",
]
