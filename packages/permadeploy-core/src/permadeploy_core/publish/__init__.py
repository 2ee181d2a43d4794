"""Fee-Exact Publish Engine and its strategies."""

from permadeploy_core.publish.dry_run import DryRunStrategy
from permadeploy_core.publish.engine import PublishEngine
from permadeploy_core.publish.models import (
    BuiltJob,
    FeeQuote,
    Provision,
    PublishBatchResult,
    PublishJob,
    PublishResult,
)
from permadeploy_core.publish.network import NetworkStrategy, estimate_fee
from permadeploy_core.publish.strategy import PublishStrategy

__all__ = [
    "BuiltJob",
    "DryRunStrategy",
    "FeeQuote",
    "NetworkStrategy",
    "Provision",
    "PublishBatchResult",
    "PublishEngine",
    "PublishJob",
    "PublishResult",
    "PublishStrategy",
    "estimate_fee",
]
