"""Pydantic models for published files and the deployment record."""

from __future__ import annotations

from pydantic import AliasChoices, BaseModel, ConfigDict, Field

from permadeploy_core.constants import (
    CACHED_FILE_DELIMITER,
    MANIFEST_VERSION,
    format_outpoint,
    parse_outpoint,
)


class _Wire(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ChunkRecord(_Wire):
    index: int
    txid: str
    vout: int
    size: int


class InscribedFile(_Wire):
    """A file as published. For chunked files the carrier is the manifest's."""

    original_path: str = Field(alias="originalPath")
    txid: str
    vout: int
    url_path: str = Field(alias="urlPath")
    size: int
    content_hash: str | None = Field(default=None, alias="contentHash")
    dependency_hash: str | None = Field(default=None, alias="dependencyHash")
    cached: bool = False
    is_chunked: bool = Field(default=False, alias="isChunked")
    chunk_size: int | None = Field(default=None, alias="chunkSize")
    chunks: list[ChunkRecord] | None = None

    @property
    def outpoint(self) -> str:
        return format_outpoint(self.txid, self.vout)

    def as_cached(self) -> InscribedFile:
        return self.model_copy(update={"cached": True})


def encode_cached_file(file: InscribedFile) -> str:
    return f"{file.original_path}{CACHED_FILE_DELIMITER}{file.outpoint}"


def decode_cached_file(encoded: str) -> tuple[str, str, int]:
    """Split ``path::*::txid_vout`` into ``(path, txid, vout)``.

    Raises ValueError on malformed input.
    """
    path, sep, outpoint = encoded.rpartition(CACHED_FILE_DELIMITER)
    if not sep or not path:
        raise ValueError(f"Malformed cached file reference '{encoded}'")
    txid, vout = parse_outpoint(outpoint)
    return path, txid, vout


class DeploymentEntry(_Wire):
    version: str | None = None
    description: str | None = None
    timestamp: str
    build_dir: str = Field(default="", alias="buildDir")
    entry_point: str = Field(default="", alias="entryPoint")
    files: list[InscribedFile] = Field(default_factory=list)
    cached_files: list[str] = Field(default_factory=list, alias="cachedFiles")
    total_files: int = Field(default=0, alias="totalFiles")
    new_files: int = Field(default=0, alias="newFiles")
    cached_count: int = Field(default=0, alias="cachedCount")
    total_size: int = Field(default=0, alias="totalSize")
    total_cost: int = Field(default=0, alias="totalCost")
    txids: list[str] = Field(default_factory=list)
    chain_origin_id: str | None = Field(default=None, alias="chainOriginId")
    latest_chain_outpoint: str | None = Field(default=None, alias="latestChainOutpoint")
    dry_run: bool = Field(default=False, alias="dryRun")


class DeploymentHistory(_Wire):
    manifest_version: str = Field(
        default=MANIFEST_VERSION,
        validation_alias=AliasChoices("manifestVersion", "schemaVersion"),
        serialization_alias="manifestVersion",
    )
    chain_origin_id: str | None = Field(default=None, alias="chainOriginId")
    total_deployments: int = Field(default=0, alias="totalDeployments")
    deployments: list[DeploymentEntry] = Field(default_factory=list)

    @property
    def latest(self) -> DeploymentEntry | None:
        return self.deployments[-1] if self.deployments else None

    @property
    def live_deployments(self) -> list[DeploymentEntry]:
        """Entries that were broadcast; dry runs never reached the chain."""
        return [d for d in self.deployments if not d.dry_run]

    @property
    def latest_live(self) -> DeploymentEntry | None:
        live = self.live_deployments
        return live[-1] if live else None

    def existing_versions(self) -> list[str]:
        return [d.version for d in self.live_deployments if d.version]

    def append(self, entry: DeploymentEntry) -> None:
        self.deployments.append(entry)
        self.total_deployments = len(self.deployments)
        if entry.chain_origin_id and not self.chain_origin_id:
            self.chain_origin_id = entry.chain_origin_id
