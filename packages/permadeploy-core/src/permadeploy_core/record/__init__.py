"""Deployment record models and persistence."""

from permadeploy_core.record.models import (
    ChunkRecord,
    DeploymentEntry,
    DeploymentHistory,
    InscribedFile,
    decode_cached_file,
    encode_cached_file,
)
from permadeploy_core.record.store import (
    RecordStore,
    dry_run_record_path,
    previous_inscriptions,
)

__all__ = [
    "ChunkRecord",
    "DeploymentEntry",
    "DeploymentHistory",
    "InscribedFile",
    "RecordStore",
    "decode_cached_file",
    "dry_run_record_path",
    "encode_cached_file",
    "previous_inscriptions",
]
