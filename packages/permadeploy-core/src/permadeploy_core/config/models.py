from pydantic import BaseModel, Field
from typing import Literal

from permadeploy_core.constants import (
    DEFAULT_APP_NAME,
    DEFAULT_BATCH_SIZE,
    DEFAULT_CHUNK_SIZE,
    DEFAULT_CHUNK_THRESHOLD,
    DEFAULT_SATS_PER_KB,
    MANIFEST_FILENAME,
)
from permadeploy_core.retry import RetryPolicy


class NetworkConfig(BaseModel):
    indexer_url: str = "https://ordinals.1sat.app"
    content_url: str = "https://ordfs.network"
    timeout: float = Field(default=30.0, gt=0)
    page_limit: int = Field(default=100, gt=0)


class PublishConfig(BaseModel):
    sats_per_kb: int = Field(default=DEFAULT_SATS_PER_KB, gt=0)
    batch_size: int = Field(default=DEFAULT_BATCH_SIZE, gt=0)
    destination_address: str | None = None


class ChunkingConfig(BaseModel):
    enabled: bool = True
    threshold: int = Field(default=DEFAULT_CHUNK_THRESHOLD, gt=0)
    chunk_size: int = Field(default=DEFAULT_CHUNK_SIZE, gt=0)
    publish_helper: bool = True


class CacheConfig(BaseModel):
    enabled: bool = True
    trust_legacy_chunks: bool = True


class RetryConfig(BaseModel):
    max_attempts: int = Field(default=5, gt=0)
    initial_delay: float = Field(default=2.0, ge=0)
    max_delay: float = Field(default=30.0, ge=0)
    multiplier: float = Field(default=2.0, ge=1)

    def to_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_attempts=self.max_attempts,
            initial_delay=self.initial_delay,
            max_delay=self.max_delay,
            multiplier=self.multiplier,
        )


class VersioningConfig(BaseModel):
    enabled: bool = True
    app_name: str = DEFAULT_APP_NAME
    origin: str | None = None


class RecordConfig(BaseModel):
    path: str = MANIFEST_FILENAME
    write_on_dry_run: bool = False


class PluginsConfig(BaseModel):
    builder: str | None = None
    rewriter: str | None = None
    indexer: str | None = None


class AnalysisConfig(BaseModel):
    exclude_patterns: list[str] = Field(default_factory=list)


class PermadeployConfig(BaseModel):
    network: NetworkConfig = Field(default_factory=NetworkConfig)
    publish: PublishConfig = Field(default_factory=PublishConfig)
    chunking: ChunkingConfig = Field(default_factory=ChunkingConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    retry: RetryConfig = Field(default_factory=RetryConfig)
    versioning: VersioningConfig = Field(default_factory=VersioningConfig)
    record: RecordConfig = Field(default_factory=RecordConfig)
    plugins: PluginsConfig = Field(default_factory=PluginsConfig)
    analysis: AnalysisConfig = Field(default_factory=AnalysisConfig)
    log_level: Literal["debug", "info", "warn", "error"] = "info"
    log_format: Literal["text", "json"] = "text"
