"""Load and persist the local deployment record."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError

from permadeploy_core.record.models import (
    DeploymentEntry,
    DeploymentHistory,
    InscribedFile,
    decode_cached_file,
)

logger = logging.getLogger(__name__)


class RecordStore:
    """Reads and writes ``deployment-manifest.json`` style history files."""

    def __init__(self, path: Path) -> None:
        self.path = path

    def load(self) -> DeploymentHistory | None:
        """Return the stored history, or None when absent or unreadable.

        A legacy single-deployment document (``timestamp`` + ``entryPoint``
        at top level) is upgraded to a one-entry history.
        """
        if not self.path.exists():
            return None
        try:
            raw = json.loads(self.path.read_text())
        except (OSError, ValueError) as e:
            logger.warning("Failed to read deployment record %s: %s, treating as absent", self.path, e)
            return None
        if not isinstance(raw, dict):
            logger.warning("Deployment record %s is not an object, treating as absent", self.path)
            return None

        try:
            if "deployments" in raw:
                return DeploymentHistory.model_validate(raw)
            if "timestamp" in raw and "entryPoint" in raw:
                entry = DeploymentEntry.model_validate(raw)
                history = DeploymentHistory(chain_origin_id=entry.chain_origin_id)
                history.append(entry)
                return history
        except ValidationError as e:
            logger.warning("Malformed deployment record %s: %s, treating as absent", self.path, e)
            return None

        logger.warning("Unrecognized deployment record format in %s, treating as absent", self.path)
        return None

    def save(self, history: DeploymentHistory) -> None:
        """Write *history* atomically (temp file + rename)."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        payload = history.model_dump_json(by_alias=True, indent=2, exclude_none=True)
        fd, tmp = tempfile.mkstemp(dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp")
        try:
            with os.fdopen(fd, "w") as f:
                f.write(payload)
                f.write("\n")
            os.replace(tmp, self.path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise

    def append(self, entry: DeploymentEntry) -> DeploymentHistory:
        history = self.load() or DeploymentHistory()
        history.append(entry)
        self.save(history)
        return history


def dry_run_record_path(path: Path) -> Path:
    """``deployment-manifest.json`` -> ``deployment-manifest-dry-run.json``."""
    return path.with_name(f"{path.stem}-dry-run{path.suffix}")


def previous_inscriptions(history: DeploymentHistory | None) -> dict[str, InscribedFile]:
    """Map each path to its most recent publication.

    New files of the latest live entry are taken directly; its cached-file
    references are resolved by searching earlier entries newest-first.
    Dry-run entries are skipped since their txids were never broadcast.
    Unresolvable references are dropped with a warning.
    """
    result: dict[str, InscribedFile] = {}
    latest = history.latest_live if history is not None else None
    if latest is None:
        return result

    for f in latest.files:
        result[f.original_path] = f.model_copy(update={"cached": False})

    for encoded in latest.cached_files:
        try:
            path, txid, vout = decode_cached_file(encoded)
        except ValueError as e:
            logger.warning("Ignoring cached file entry: %s", e)
            continue
        found = _find_file(history, path, txid, vout)
        if found is None:
            logger.warning("Cached file %s (%s_%d) not found in earlier deployments", path, txid, vout)
            continue
        result[path] = found.model_copy(update={"cached": False})
    return result


def _find_file(
    history: DeploymentHistory, path: str, txid: str, vout: int
) -> InscribedFile | None:
    for deployment in reversed(history.live_deployments):
        for f in deployment.files:
            if f.original_path == path and f.txid == txid and f.vout == vout:
                return f
    return None
