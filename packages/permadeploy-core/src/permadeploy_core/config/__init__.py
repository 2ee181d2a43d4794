from .loader import load_config
from .models import (
    AnalysisConfig,
    CacheConfig,
    ChunkingConfig,
    NetworkConfig,
    PermadeployConfig,
    PluginsConfig,
    PublishConfig,
    RecordConfig,
    RetryConfig,
    VersioningConfig,
)

__all__ = [
    "AnalysisConfig",
    "CacheConfig",
    "ChunkingConfig",
    "NetworkConfig",
    "PermadeployConfig",
    "PluginsConfig",
    "PublishConfig",
    "RecordConfig",
    "RetryConfig",
    "VersioningConfig",
    "load_config",
]
