"""Version-chain metadata records."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from typing import Any

from permadeploy_core.constants import DEFAULT_APP_NAME, VERSION_KEY_PREFIX

logger = logging.getLogger(__name__)


def version_key(version: str) -> str:
    return f"{VERSION_KEY_PREFIX}{version}"


@dataclass(frozen=True)
class VersionEntry:
    """One version's value in the chain metadata: where it lives and when."""

    outpoint: str
    description: str = ""
    utc_timestamp: int = field(default_factory=lambda: int(time.time() * 1000))

    def encode(self) -> str:
        return json.dumps(
            {
                "outpoint": self.outpoint,
                "description": self.description,
                "utcTimeStamp": self.utc_timestamp,
            },
            separators=(",", ":"),
        )

    @classmethod
    def decode(cls, raw: Any) -> VersionEntry | None:
        """Parse an encoded entry; anything malformed is treated as absent."""
        if not isinstance(raw, str):
            return None
        try:
            data = json.loads(raw)
        except json.JSONDecodeError:
            return None
        if not isinstance(data, dict) or not isinstance(data.get("outpoint"), str):
            return None
        description = data.get("description")
        timestamp = data.get("utcTimeStamp")
        return cls(
            outpoint=data["outpoint"],
            description=description if isinstance(description, str) else "",
            utc_timestamp=timestamp if isinstance(timestamp, int) else 0,
        )


@dataclass(frozen=True)
class VersionDetails:
    version: str
    outpoint: str
    description: str
    utc_timestamp: int = 0


@dataclass(frozen=True)
class ChainInfo:
    origin: str
    app_name: str
    metadata: dict[str, str]
    history: list[VersionDetails]

    @property
    def latest(self) -> VersionDetails | None:
        return self.history[0] if self.history else None


def parse_history(metadata: dict[str, str]) -> list[VersionDetails]:
    """All well-formed version entries, newest version string first."""
    entries = []
    for key, raw in metadata.items():
        if not key.startswith(VERSION_KEY_PREFIX):
            continue
        version = key[len(VERSION_KEY_PREFIX) :]
        entry = VersionEntry.decode(raw)
        if entry is None:
            logger.warning("Skipping malformed version entry %s", key)
            continue
        entries.append(
            VersionDetails(
                version=version,
                outpoint=entry.outpoint,
                description=entry.description,
                utc_timestamp=entry.utc_timestamp,
            )
        )
    entries.sort(key=lambda e: e.version, reverse=True)
    return entries


def app_name_of(metadata: dict[str, str]) -> str:
    return metadata.get("app") or DEFAULT_APP_NAME


def suggest_next_version(version: str) -> str:
    """Increment the last dot-separated number: ``1.2.3`` -> ``1.2.4``.

    A non-numeric last part gets ``.1`` appended instead.
    """
    head, sep, last = version.rpartition(".")
    if last.isdigit():
        bumped = str(int(last) + 1)
        return f"{head}{sep}{bumped}" if sep else bumped
    return f"{version}.1"
